import numpy as np
from typing import Dict, Type, Union

from manifold.exceptions import InvalidParameterError


class Activation:
    """Base class for all activation functions.

    Every activation is a stateless pair of elementwise functions. ``backward``
    is evaluated at the *pre-activation* value ``z`` (the value that was passed
    to ``forward``), which is what the layers cache during their forward pass.
    """

    #: Recommended scaling factor for the initializers (see ``calculate_gain``).
    gain: float = 1.0

    def forward(self, z: np.ndarray) -> np.ndarray:
        """Compute the activation function value.

        Args:
            z: Pre-activation values.

        Returns:
            Activated output, same shape as ``z``.
        """
        raise NotImplementedError

    def backward(self, z: np.ndarray) -> np.ndarray:
        """Compute the derivative of the activation with respect to its input.

        Args:
            z: Pre-activation values where the derivative is evaluated.

        Returns:
            dA/dZ, same shape as ``z``.
        """
        raise NotImplementedError

    @property
    def name(self) -> str:
        return self.__class__.__name__.lower()

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class Identity(Activation):
    """Identity activation.

    Mathematical form:
        forward: f(z) = z
        backward: f'(z) = 1
    """

    gain = 1.0

    def forward(self, z: np.ndarray) -> np.ndarray:
        return z

    def backward(self, z: np.ndarray) -> np.ndarray:
        return np.ones_like(z)


class ReLU(Activation):
    """Rectified Linear Unit activation function.

    Mathematical form:
        forward: f(z) = max(0, z)
        backward: f'(z) = 1 if z > 0 else 0
    """

    gain = float(np.sqrt(2.0))

    def forward(self, z: np.ndarray) -> np.ndarray:
        """Compute ReLU activation: max(0, z)"""
        return np.maximum(0.0, z)

    def backward(self, z: np.ndarray) -> np.ndarray:
        """Compute ReLU derivative: 1 if z > 0 else 0"""
        return np.where(z > 0, 1.0, 0.0)


class Sigmoid(Activation):
    """Sigmoid activation function.

    Mathematical form:
        forward: f(z) = 1 / (1 + e^-z)
        backward: f'(z) = f(z) * (1 - f(z))
    """

    gain = 1.0

    def forward(self, z: np.ndarray) -> np.ndarray:
        """Compute sigmoid activation with clipping for numerical stability."""
        # exp(-z) overflows for large negative z
        clipped = np.clip(z, -500, 500)
        return 1.0 / (1.0 + np.exp(-clipped))

    def backward(self, z: np.ndarray) -> np.ndarray:
        sig = self.forward(z)
        return sig * (1.0 - sig)


class Tanh(Activation):
    """Hyperbolic tangent activation function.

    Mathematical form:
        forward: f(z) = tanh(z)
        backward: f'(z) = 1 - tanh^2(z)
    """

    gain = 5.0 / 3.0

    def forward(self, z: np.ndarray) -> np.ndarray:
        return np.tanh(z)

    def backward(self, z: np.ndarray) -> np.ndarray:
        return 1.0 - np.tanh(z) ** 2


def softmax(z: np.ndarray) -> np.ndarray:
    """Row-wise softmax using the max subtraction trick.

    Args:
        z: Logits of shape (batch_size, num_classes). A 1D array is treated as a
           single sample and a 1D result is returned.

    Returns:
        Probabilities with the same shape as ``z``; every row sums to 1.
    """
    z = np.asarray(z, dtype=float)
    squeeze = z.ndim == 1
    if squeeze:
        z = z.reshape(1, -1)

    exp_z = np.exp(z - np.max(z, axis=1, keepdims=True))
    probs = exp_z / np.sum(exp_z, axis=1, keepdims=True)

    return probs[0] if squeeze else probs


# Dictionary mapping activation function names to their classes
ACTIVATION_FUNCTIONS: Dict[str, Type[Activation]] = {
    'identity': Identity,
    'linear': Identity,
    'relu': ReLU,
    'sigmoid': Sigmoid,
    'tanh': Tanh,
}


def get_activation(activation: Union[str, Activation, None]) -> Activation:
    """Resolve an activation function by name, or pass an instance through.

    Args:
        activation: Name of the activation function (case-insensitive), an
                    Activation instance, or None for Identity.

    Returns:
        An instance of the requested Activation class.

    Raises:
        InvalidParameterError: If the activation function name is not recognized.
    """
    if activation is None:
        return Identity()
    if isinstance(activation, Activation):
        return activation
    if not isinstance(activation, str):
        raise InvalidParameterError(
            f"Activation must be a name or an Activation instance, got {type(activation).__name__}"
        )

    name_lower = activation.lower()
    if name_lower not in ACTIVATION_FUNCTIONS:
        raise InvalidParameterError(
            f"Unknown activation function '{activation}'. "
            f"Available functions: {sorted(ACTIVATION_FUNCTIONS.keys())}"
        )
    return ACTIVATION_FUNCTIONS[name_lower]()
