import numpy as np
from typing import Optional, Tuple

from manifold.exceptions import ShapeError, UninitializedStateError
from manifold.layers.base import Layer


class Flatten(Layer):
    """
    Flattens (N, C, H, W) into (N, C*H*W) between convolutional and dense stages.
    """

    def __init__(self):
        self.original_shape: Optional[Tuple[int, ...]] = None

    def forward(self, inputs: np.ndarray) -> np.ndarray:
        inputs = np.asarray(inputs, dtype=float)
        if inputs.ndim < 2:
            raise ShapeError(f"Flatten: Expected at least 2D input (batch, ...), got shape {inputs.shape}")
        self.original_shape = inputs.shape
        return inputs.reshape(inputs.shape[0], -1)

    def backward(self, grad_output: np.ndarray) -> np.ndarray:
        if self.original_shape is None:
            raise UninitializedStateError("Flatten: Must call forward() before backward().")
        grad_input = np.asarray(grad_output, dtype=float).reshape(self.original_shape)
        self.original_shape = None
        return grad_input

    def gradients(self) -> tuple:
        """Flatten has no parameters."""
        return ()

    def __repr__(self):
        return "Flatten()"
