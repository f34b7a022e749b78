import numpy as np
from typing import Optional, Union
import logging

from manifold.activations import Activation
from manifold.exceptions import ShapeError
from manifold.layers.base import GradientRetention, ParametricLayer, positive_int

logger = logging.getLogger(__name__)


class Dense(ParametricLayer):
    """
    Fully connected layer, performing vectorized operations over a batch.

    Key Attributes:
        weights (np.ndarray): Weight matrix of shape (out_features, in_features). Each row
                              holds the weights of one output unit.
        biases (np.ndarray): Bias vector of shape (out_features,).
        activation_fn (Activation): Applied element-wise to the weighted sum plus bias.
    """

    def __init__(
        self,
        in_features: int,
        out_features: int,
        activation: Union[str, Activation, None] = 'identity',
        weight_init: Optional[str] = None,
        initial_weights: Optional[np.ndarray] = None,  # Expected shape (out_features, in_features)
        initial_biases: Optional[np.ndarray] = None,   # Expected shape (out_features,)
        rng: Optional[np.random.Generator] = None,
        retention: GradientRetention = GradientRetention.REPLACE,
    ):
        """
        Initializes the layer.

        Args:
            in_features: Number of input features (size of the previous layer).
            out_features: Number of output units.
            activation: Activation name (e.g. 'relu') or Activation instance. Defaults to identity.
            weight_init: Initializer name from ``manifold.initializers.INITIALIZERS``. Defaults to
                         Kaiming uniform for ReLU and Xavier uniform otherwise.
            initial_weights: Optional pre-defined weight matrix, overrides ``weight_init``.
            initial_biases: Optional pre-defined bias vector.
            rng: Random generator used for initialization.
            retention: Whether backward replaces or accumulates parameter gradients.
        """
        self.in_features = positive_int(in_features, "Dense: in_features")
        self.out_features = positive_int(out_features, "Dense: out_features")
        super().__init__(
            (self.out_features, self.in_features),
            activation=activation,
            weight_init=weight_init,
            initial_weights=initial_weights,
            initial_biases=initial_biases,
            rng=rng,
            retention=retention,
        )
        logger.debug(
            f"Dense created: in_features={self.in_features}, out_features={self.out_features}, "
            f"activation={self.activation_fn.__class__.__name__}, weight_shape={self.weights.shape}"
        )

    def forward(self, inputs: np.ndarray) -> np.ndarray:
        """
        Computes Z = X @ W.T + b, followed by A = activation_fn(Z).

        Args:
            inputs: Input data matrix of shape (batch_size, in_features). A 1D
                    array is treated as a single sample.

        Returns:
            Output activations matrix of shape (batch_size, out_features).

        Raises:
            ShapeError: If the input shape is incorrect.
        """
        inputs = np.asarray(inputs, dtype=float)
        if inputs.ndim == 1:
            inputs = inputs.reshape(1, -1)
        if inputs.ndim != 2 or inputs.shape[1] != self.in_features:
            raise ShapeError(
                f"Dense: Expected input of shape (batch, {self.in_features}), got {inputs.shape}"
            )

        # (batch, in) @ (in, out) -> (batch, out); biases broadcast over the batch
        z = np.dot(inputs, self.weights.T) + self.biases
        self.inputs = inputs
        self.z_values = z
        return self.activation_fn.forward(z)

    def backward(self, grad_output: np.ndarray) -> np.ndarray:
        """
        Computes dW, db and the gradient for the previous layer.

        Args:
            grad_output: dL/dA for this layer's output, shape (batch_size, out_features).

        Returns:
            dL/dX, shape (batch_size, in_features).

        Raises:
            UninitializedStateError: If forward() has not populated the input cache.
            ShapeError: If the incoming gradient shape is incorrect.
        """
        inputs, z_values = self._require_cache()

        grad_output = np.asarray(grad_output, dtype=float)
        if grad_output.ndim == 1:
            grad_output = grad_output.reshape(1, -1)
        if grad_output.shape != z_values.shape:
            raise ShapeError(f"Dense: Expected gradient of shape {z_values.shape}, got {grad_output.shape}")

        # dL/dZ = dL/dA * dA/dZ
        delta = grad_output * self.activation_fn.backward(z_values)

        # (out, batch) @ (batch, in) -> (out, in), summed over the batch
        dW = np.dot(delta.T, inputs)
        db = np.sum(delta, axis=0)
        self._store_gradients(dW, db)

        # (batch, out) @ (out, in) -> (batch, in)
        return np.dot(delta, self.weights)

    def __repr__(self):
        return (f"Dense(in_features={self.in_features}, out_features={self.out_features}, "
                f"activation={self.activation_fn.__class__.__name__})")


class IndependentDense(Dense):
    """
    A Dense layer that trains itself, for use outside a Manifold.

    Gradients from successive backward passes accumulate; ``step`` applies their
    mean and resets the accumulator. This lets a caller feed samples one at a
    time and update once per group.
    """

    def __init__(self, *args, **kwargs):
        kwargs['retention'] = GradientRetention.ACCUMULATE
        super().__init__(*args, **kwargs)
        self.accumulated_steps = 0

    def backward(self, grad_output: np.ndarray) -> np.ndarray:
        grad_input = super().backward(grad_output)
        self.accumulated_steps += 1
        return grad_input

    def step(self, learning_rate: float):
        """Updates with the mean of the accumulated gradients, then resets them."""
        dW, db = self.gradients()
        self.weight_gradients = dW / self.accumulated_steps
        self.bias_gradients = db / self.accumulated_steps
        self.update(learning_rate)

    def zero_grad(self):
        super().zero_grad()
        self.accumulated_steps = 0
