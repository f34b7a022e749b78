import numpy as np
from enum import Enum
from typing import Optional, Tuple, Union
import logging

from manifold.activations import Activation, get_activation
from manifold.exceptions import InvalidParameterError, ShapeError, UninitializedStateError, UnimplementedOperationError
from manifold.initializers import default_initializer, get_initializer, uniform

logger = logging.getLogger(__name__)


def positive_int(value, what: str) -> int:
    """Returns value as an int, rejecting bools, floats and non-positive numbers."""
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value <= 0:
        raise InvalidParameterError(f"{what} must be a positive integer, got {value!r}")
    return int(value)


class GradientRetention(Enum):
    """How a layer stores the parameter gradients produced by ``backward``."""

    #: Each backward pass overwrites the stored gradients.
    REPLACE = 'replace'
    #: Each backward pass adds to the stored gradients; ``update`` clears them.
    ACCUMULATE = 'accumulate'


class Layer:
    """
    Abstract base class for all layers in the network.

    Layers that do not provide an operation fail loudly with
    UnimplementedOperationError instead of returning zero gradients.
    """

    has_parameters = False

    def forward(self, inputs: np.ndarray) -> np.ndarray:
        """Performs the forward pass for the layer."""
        raise UnimplementedOperationError(f"{self.__class__.__name__} does not implement forward().")

    def backward(self, grad_output: np.ndarray) -> np.ndarray:
        """Propagates dL/dOutput back to dL/dInput, computing parameter gradients on the way."""
        raise UnimplementedOperationError(f"{self.__class__.__name__} does not implement backward().")

    def gradients(self):
        """Returns the most recent (weight_gradient, bias_gradient) pair."""
        raise UnimplementedOperationError(f"{self.__class__.__name__} does not implement gradients().")

    def update(self, learning_rate: float):
        """Applies one gradient-descent step to the layer's parameters, if it has any."""

    def zero_grad(self):
        """Resets stored gradients, if the layer has any."""


class ParametricLayer(Layer):
    """
    Shared state and bookkeeping for layers with a weight tensor, a bias vector
    and an activation.

    Key Attributes:
        weights (np.ndarray): Weight tensor; the first two dimensions are
                              (out, in) so the initializers can compute fans.
        biases (np.ndarray): Bias vector of shape (out,).
        activation_fn (Activation): Applied elementwise to the pre-activation values.
        inputs (np.ndarray): Input cached by the last forward pass; None before
                             the first forward and after each backward.
        z_values (np.ndarray): Pre-activation values cached alongside ``inputs``.
        weight_gradients, bias_gradients (np.ndarray): Set by backward; None until then.
    """

    has_parameters = True

    def __init__(
        self,
        weight_shape: Tuple[int, ...],
        activation: Union[str, Activation, None] = 'identity',
        weight_init: Optional[str] = None,
        initial_weights: Optional[np.ndarray] = None,
        initial_biases: Optional[np.ndarray] = None,
        rng: Optional[np.random.Generator] = None,
        retention: GradientRetention = GradientRetention.REPLACE,
    ):
        self.activation_fn = get_activation(activation)
        self.retention = GradientRetention(retention)
        rng = rng if rng is not None else np.random.default_rng()

        if initial_weights is not None:
            initial_weights = np.asarray(initial_weights, dtype=float)
            if initial_weights.shape != tuple(weight_shape):
                raise ShapeError(
                    f"{self.__class__.__name__}: Initial weights shape {initial_weights.shape} "
                    f"does not match expected shape {tuple(weight_shape)}"
                )
            self.weights = initial_weights.copy()
            self.weight_init = None
        else:
            self.weight_init = weight_init or default_initializer(self.activation_fn)
            self.weights = get_initializer(self.weight_init)(weight_shape, self.activation_fn, rng)

        bias_shape = (weight_shape[0],)
        if initial_biases is not None:
            initial_biases = np.asarray(initial_biases, dtype=float)
            if initial_biases.shape != bias_shape:
                raise ShapeError(
                    f"{self.__class__.__name__}: Initial biases shape {initial_biases.shape} "
                    f"does not match expected shape {bias_shape}"
                )
            self.biases = initial_biases.copy()
        else:
            # U(-1/sqrt(fan_in), 1/sqrt(fan_in)), fan_in = in * receptive field
            bound = 1.0 / np.sqrt(np.prod(weight_shape[1:]))
            self.biases = uniform(bias_shape, -bound, bound, rng)

        self.inputs: Optional[np.ndarray] = None
        self.z_values: Optional[np.ndarray] = None
        self.weight_gradients: Optional[np.ndarray] = None
        self.bias_gradients: Optional[np.ndarray] = None

    def _require_cache(self) -> Tuple[np.ndarray, np.ndarray]:
        if self.inputs is None or self.z_values is None:
            raise UninitializedStateError(f"{self.__class__.__name__}: Must call forward() before backward().")
        inputs, z_values = self.inputs, self.z_values
        # Invalidate the slot so a second backward needs a fresh forward
        self.inputs, self.z_values = None, None
        return inputs, z_values

    def _store_gradients(self, dW: np.ndarray, db: np.ndarray):
        if self.retention is GradientRetention.ACCUMULATE and self.weight_gradients is not None:
            self.weight_gradients = self.weight_gradients + dW
            self.bias_gradients = self.bias_gradients + db
        else:
            self.weight_gradients = dW
            self.bias_gradients = db

    def gradients(self) -> Tuple[np.ndarray, np.ndarray]:
        """Returns the most recently computed (weight_gradient, bias_gradient) pair.

        Raises:
            UninitializedStateError: If no backward pass has run since creation or the last reset.
        """
        if self.weight_gradients is None or self.bias_gradients is None:
            raise UninitializedStateError(f"{self.__class__.__name__}: gradients() queried before any backward().")
        return self.weight_gradients, self.bias_gradients

    def update(self, learning_rate: float):
        """
        Applies plain SGD: W -= learning_rate * dW, b -= learning_rate * db.

        In ACCUMULATE mode the gradients are cleared afterwards.
        """
        dW, db = self.gradients()

        grad_norm = np.linalg.norm(dW)
        if grad_norm > 1e6:
            logger.warning(f"{self.__class__.__name__}: Large gradient norm detected ({grad_norm:.2e}) before update.")

        self.weights -= learning_rate * dW
        self.biases -= learning_rate * db

        if self.retention is GradientRetention.ACCUMULATE:
            self.zero_grad()

    def zero_grad(self):
        self.weight_gradients = None
        self.bias_gradients = None

    def get_weights(self) -> Tuple[np.ndarray, np.ndarray]:
        """Returns copies of the current weights and biases."""
        return self.weights.copy(), self.biases.copy()

    def set_weights(self, weights: np.ndarray, biases: np.ndarray):
        """Replaces the parameters in place; shapes must match the existing tensors."""
        weights = np.asarray(weights, dtype=float)
        biases = np.asarray(biases, dtype=float)
        if weights.shape != self.weights.shape or biases.shape != self.biases.shape:
            raise ShapeError(
                f"{self.__class__.__name__}: Expected weights {self.weights.shape} and biases "
                f"{self.biases.shape}, got {weights.shape} and {biases.shape}"
            )
        self.weights[...] = weights
        self.biases[...] = biases

    @property
    def num_parameters(self) -> int:
        return int(self.weights.size + self.biases.size)
