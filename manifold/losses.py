import numpy as np
from typing import Dict, Tuple, Type, Union

from manifold.activations import softmax
from manifold.exceptions import InvalidParameterError, ShapeError


class Loss:
    """Base class for loss functions.

    A loss is a pair of a batch-averaged scalar ``forward`` and a ``gradient``
    with respect to the network's raw outputs. ``output`` maps raw outputs to
    the predictions a caller sees (probabilities for losses that fuse an
    activation into themselves).
    """

    def forward(self, outputs: np.ndarray, targets: np.ndarray) -> float:
        raise NotImplementedError

    def gradient(self, outputs: np.ndarray, targets: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def output(self, outputs: np.ndarray) -> np.ndarray:
        """Map raw network outputs to predictions. Identity by default."""
        return outputs

    def compute(self, outputs: np.ndarray, targets: np.ndarray) -> Tuple[float, np.ndarray]:
        """
        Computes the loss value and the initial gradient for backpropagation.

        Args:
            outputs: Raw network outputs (batch_size, output_dim).
            targets: True values (batch_size, output_dim).

        Returns:
            Tuple of the scalar loss and dL/dOutputs.
        """
        outputs, targets = _check_pair(self.name, outputs, targets)
        if outputs.shape[0] == 0:
            return 0.0, np.zeros_like(outputs)
        return self.forward(outputs, targets), self.gradient(outputs, targets)

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def __repr__(self):
        return f"{self.__class__.__name__}()"


def _check_pair(name: str, outputs, targets) -> Tuple[np.ndarray, np.ndarray]:
    outputs = np.asarray(outputs, dtype=float)
    targets = np.asarray(targets, dtype=float)
    if outputs.shape != targets.shape:
        raise ShapeError(f"{name}: Output shape {outputs.shape} must match target shape {targets.shape}")
    return outputs, targets


class MeanSquaredError(Loss):
    """
    Mean Squared Error.

    Loss = mean((output - target)^2)
    Gradient (dL/dOutput) = 2 * (output - target) / output.size
    """

    def forward(self, outputs: np.ndarray, targets: np.ndarray) -> float:
        outputs, targets = _check_pair(self.name, outputs, targets)
        if outputs.size == 0:
            return 0.0
        return float(np.mean((outputs - targets) ** 2))

    def gradient(self, outputs: np.ndarray, targets: np.ndarray) -> np.ndarray:
        outputs, targets = _check_pair(self.name, outputs, targets)
        if outputs.size == 0:
            return np.zeros_like(outputs)
        return 2.0 * (outputs - targets) / outputs.size


class SoftmaxCrossEntropy(Loss):
    """
    Cross-entropy over a softmax that is fused into the loss.

    ``outputs`` are logits (the output layer uses the Identity activation) and
    ``targets`` are one-hot rows.

    Loss = -(1/N) * Σ_samples Σ_classes [ target * log_softmax(z) ]
    Gradient (dL/dz) = (softmax(z) - target) / N

    The gradient is taken with respect to the logits directly, so the softmax
    Jacobian never has to be formed.
    """

    def forward(self, outputs: np.ndarray, targets: np.ndarray) -> float:
        outputs, targets = _check_pair(self.name, outputs, targets)
        num_samples = outputs.shape[0]
        if num_samples == 0:
            return 0.0

        shifted = outputs - np.max(outputs, axis=1, keepdims=True)
        log_probs = shifted - np.log(np.sum(np.exp(shifted), axis=1, keepdims=True))
        return float(-np.sum(targets * log_probs) / num_samples)

    def gradient(self, outputs: np.ndarray, targets: np.ndarray) -> np.ndarray:
        outputs, targets = _check_pair(self.name, outputs, targets)
        num_samples = outputs.shape[0]
        if num_samples == 0:
            return np.zeros_like(outputs)
        return (softmax(outputs) - targets) / num_samples

    def output(self, outputs: np.ndarray) -> np.ndarray:
        return softmax(outputs)


class BinaryCrossEntropy(Loss):
    """
    Binary Cross-Entropy for Sigmoid outputs.

    Loss = -(1/N) * Σ [ target * log(output) + (1 - target) * log(1 - output) ]
    Gradient (dL/dOutput) = (1/N) * [ -target/output + (1 - target)/(1 - output) ]
    """

    epsilon = 1e-15

    def forward(self, outputs: np.ndarray, targets: np.ndarray) -> float:
        outputs, targets = _check_pair(self.name, outputs, targets)
        num_samples = outputs.shape[0]
        if num_samples == 0:
            return 0.0

        clipped = np.clip(outputs, self.epsilon, 1.0 - self.epsilon)
        term1 = targets * np.log(clipped)
        term2 = (1 - targets) * np.log(1 - clipped)
        return float(-np.sum(term1 + term2) / num_samples)

    def gradient(self, outputs: np.ndarray, targets: np.ndarray) -> np.ndarray:
        outputs, targets = _check_pair(self.name, outputs, targets)
        num_samples = outputs.shape[0]
        if num_samples == 0:
            return np.zeros_like(outputs)

        clipped = np.clip(outputs, self.epsilon, 1.0 - self.epsilon)
        return (-targets / clipped + (1 - targets) / (1 - clipped)) / num_samples


# Dictionary mapping loss names to loss classes
LOSS_FUNCTIONS: Dict[str, Type[Loss]] = {
    'softmax_cross_entropy': SoftmaxCrossEntropy,
    'mse': MeanSquaredError,
    'binary_cross_entropy': BinaryCrossEntropy,
}


def get_loss(loss: Union[str, Loss]) -> Loss:
    """Resolve a loss function by name, or pass an instance through.

    Raises:
        InvalidParameterError: If the loss name is not recognized.
    """
    if isinstance(loss, Loss):
        return loss
    if isinstance(loss, str) and loss.lower() in LOSS_FUNCTIONS:
        return LOSS_FUNCTIONS[loss.lower()]()
    raise InvalidParameterError(
        f"Unsupported loss '{loss}'. Valid options: {sorted(LOSS_FUNCTIONS.keys())}"
    )
