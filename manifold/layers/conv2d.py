"""
2D convolutional layer (valid padding, stride 1).

Shapes:
    input:   (N, C_in, H, W)
    kernel:  (C_out, C_in, K_h, K_w)
    output:  (N, C_out, H - K_h + 1, W - K_w + 1)

The forward pass is a cross-correlation (no kernel flip). Windows are taken
with ``sliding_window_view`` so the per-position products reduce to a single
einsum instead of nested Python loops.
"""
import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from typing import Optional, Tuple, Union
import logging

from manifold.activations import Activation
from manifold.exceptions import ShapeError
from manifold.layers.base import GradientRetention, ParametricLayer, positive_int

logger = logging.getLogger(__name__)


def _windows(arr: np.ndarray, kernel_shape: Tuple[int, int]) -> np.ndarray:
    """(N, C, H, W) -> read-only view (N, C, H_out, W_out, K_h, K_w)."""
    return sliding_window_view(arr, kernel_shape, axis=(2, 3))


class Conv2D(ParametricLayer):
    """2D Convolutional Layer."""

    def __init__(
        self,
        in_channels: int,
        out_channels: int,
        kernel_shape: Union[int, Tuple[int, int]],
        activation: Union[str, Activation, None] = 'identity',
        weight_init: Optional[str] = 'kaiming_uniform',
        initial_weights: Optional[np.ndarray] = None,
        initial_biases: Optional[np.ndarray] = None,
        rng: Optional[np.random.Generator] = None,
        retention: GradientRetention = GradientRetention.REPLACE,
    ):
        if isinstance(kernel_shape, int):
            kernel_shape = (kernel_shape, kernel_shape)
        kh, kw = kernel_shape
        kh = positive_int(kh, "Conv2D: kernel height")
        kw = positive_int(kw, "Conv2D: kernel width")

        self.in_channels = positive_int(in_channels, "Conv2D: in_channels")
        self.out_channels = positive_int(out_channels, "Conv2D: out_channels")
        self.kernel_shape = (kh, kw)
        super().__init__(
            (self.out_channels, self.in_channels, kh, kw),
            activation=activation,
            weight_init=weight_init,
            initial_weights=initial_weights,
            initial_biases=initial_biases,
            rng=rng,
            retention=retention,
        )
        logger.debug(
            f"Conv2D created: in_channels={self.in_channels}, out_channels={self.out_channels}, "
            f"kernel={self.kernel_shape}, activation={self.activation_fn.__class__.__name__}"
        )

    def output_shape(self, height: int, width: int) -> Tuple[int, int]:
        """Spatial output size for an input of (height, width).

        Raises:
            ShapeError: If the kernel does not fit inside the input.
        """
        kh, kw = self.kernel_shape
        if height < kh or width < kw:
            raise ShapeError(
                f"Conv2D: Kernel {self.kernel_shape} exceeds input spatial size ({height}, {width})"
            )
        return height - kh + 1, width - kw + 1

    def forward(self, inputs: np.ndarray) -> np.ndarray:
        """
        Performs the forward pass of the convolution.

        Args:
            inputs: (N, C_in, H, W)

        Returns:
            activation(Z), Z of shape (N, C_out, H_out, W_out).
        """
        inputs = np.asarray(inputs, dtype=float)
        if inputs.ndim != 4:
            raise ShapeError(f"Conv2D: Expected 4D input (N, C, H, W), got shape {inputs.shape}")
        if inputs.shape[1] != self.in_channels:
            raise ShapeError(f"Conv2D: Expected {self.in_channels} input channels, got {inputs.shape[1]}")
        self.output_shape(inputs.shape[2], inputs.shape[3])

        # Sum over C_in, K_h, K_w of window * kernel for every (n, c_out, i, j)
        z = np.einsum('ncijhw,ochw->noij', _windows(inputs, self.kernel_shape), self.weights)
        z += self.biases[None, :, None, None]

        self.inputs = inputs
        self.z_values = z
        return self.activation_fn.forward(z)

    def backward(self, grad_output: np.ndarray) -> np.ndarray:
        """
        Performs the backward pass of the convolution.

        Computes:
            dW: cross-correlation of the cached input with delta,
            db: delta summed over batch, height and width,
            dX: full correlation of delta with the spatially flipped kernel.

        Args:
            grad_output: dL/dA, shape (N, C_out, H_out, W_out).

        Returns:
            dL/dX, shape (N, C_in, H, W).
        """
        inputs, z_values = self._require_cache()

        grad_output = np.asarray(grad_output, dtype=float)
        if grad_output.shape != z_values.shape:
            raise ShapeError(f"Conv2D: Expected gradient of shape {z_values.shape}, got {grad_output.shape}")

        delta = grad_output * self.activation_fn.backward(z_values)
        kh, kw = self.kernel_shape

        dW = np.einsum('ncijhw,noij->ochw', _windows(inputs, self.kernel_shape), delta)
        db = np.sum(delta, axis=(0, 2, 3))
        self._store_gradients(dW, db)

        # Pad by K-1 on each spatial side so every input pixel sees every kernel tap
        padded = np.pad(delta, ((0, 0), (0, 0), (kh - 1, kh - 1), (kw - 1, kw - 1)), mode='constant')
        flipped = self.weights[:, :, ::-1, ::-1]
        grad_input = np.einsum('noijhw,ochw->ncij', _windows(padded, self.kernel_shape), flipped)

        logger.debug(f"Conv2D backward - delta shape: {delta.shape}, input gradient shape: {grad_input.shape}")
        return grad_input

    def __repr__(self):
        return (f"Conv2D(in_channels={self.in_channels}, out_channels={self.out_channels}, "
                f"kernel_shape={self.kernel_shape}, activation={self.activation_fn.__class__.__name__})")
