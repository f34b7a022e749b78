"""
Weight initializers.

Every function returns a freshly allocated float64 array of exactly the
requested shape, filled with independent draws from ``rng``. Pass a seeded
``np.random.default_rng(seed)`` for reproducible weights; when ``rng`` is
omitted a new unseeded generator is created for the call.

Fan computation follows the (out_channels, in_channels, *receptive_field)
convention used by both the Dense weight matrix (out_features, in_features)
and the Conv2D kernel (out_channels, in_channels, kh, kw).
"""
import numpy as np
from typing import Callable, Dict, Optional, Tuple, Union

from manifold.activations import Activation, get_activation
from manifold.exceptions import InvalidParameterError, ShapeError

ShapeLike = Union[int, Tuple[int, ...]]


def _as_shape(shape: ShapeLike) -> Tuple[int, ...]:
    if isinstance(shape, (int, np.integer)):
        shape = (int(shape),)
    shape = tuple(int(dim) for dim in shape)
    if any(dim <= 0 for dim in shape):
        raise ShapeError(f"All dimensions must be positive, got {shape}")
    return shape


def _rng(rng: Optional[np.random.Generator]) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng()


def uniform(shape: ShapeLike, a: float, b: float,
            rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Samples from a uniform distribution over [a, b].

    Raises:
        InvalidParameterError: If a > b or either bound is not finite.
    """
    if not (np.isfinite(a) and np.isfinite(b)):
        raise InvalidParameterError(f"Uniform bounds must be finite, got [{a}, {b}]")
    if a > b:
        raise InvalidParameterError(f"Uniform lower bound {a} exceeds upper bound {b}")
    return _rng(rng).uniform(a, b, _as_shape(shape))


def normal(shape: ShapeLike, mean: float, sd: float,
           rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Samples from a normal distribution with the given mean and standard deviation.

    Raises:
        InvalidParameterError: If sd is not strictly positive.
    """
    if not np.isfinite(mean):
        raise InvalidParameterError(f"Mean must be finite, got {mean}")
    if not (np.isfinite(sd) and sd > 0):
        raise InvalidParameterError(f"Standard deviation must be positive, got {sd}")
    return _rng(rng).normal(mean, sd, _as_shape(shape))


def calculate_fans(shape: ShapeLike) -> Tuple[float, float]:
    """
    Computes (fan_in, fan_out) for a weight shape.

    Args:
        shape: (out_channels, in_channels, *receptive_field).

    Returns:
        fan_in = in_channels * receptive_field_size,
        fan_out = out_channels * receptive_field_size.

    Raises:
        ShapeError: If the shape has fewer than 2 dimensions.
    """
    dims = _as_shape(shape)
    if len(dims) < 2:
        raise ShapeError(f"Fan computation needs at least 2 dimensions, got shape {dims}")

    fan_out, fan_in = dims[0], dims[1]
    receptive_field_size = int(np.prod(dims[2:])) if len(dims) > 2 else 1
    return float(fan_in * receptive_field_size), float(fan_out * receptive_field_size)


def calculate_gain(activation: Union[str, Activation, None]) -> float:
    """Recommended gain for an activation: Identity 1, ReLU sqrt(2), Sigmoid 1, Tanh 5/3."""
    return float(get_activation(activation).gain)


def xavier_uniform(shape: ShapeLike, gain: float = 1.0,
                   rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Xavier/Glorot uniform: U(-a, a) with a = gain * sqrt(6 / (fan_in + fan_out)).

    Recommended for Identity, Sigmoid and Tanh layers.
    """
    fan_in, fan_out = calculate_fans(shape)
    bound = gain * np.sqrt(6.0 / (fan_in + fan_out))
    return uniform(shape, -bound, bound, rng)


def xavier_normal(shape: ShapeLike, gain: float = 1.0,
                  rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Xavier/Glorot normal: N(0, sd) with sd = gain * sqrt(2 / (fan_in + fan_out))."""
    fan_in, fan_out = calculate_fans(shape)
    sd = gain * np.sqrt(2.0 / (fan_in + fan_out))
    return normal(shape, 0.0, sd, rng)


def kaiming_uniform(shape: ShapeLike, activation: Union[str, Activation, None] = 'relu',
                    rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Kaiming/He uniform: U(-a, a) with a = gain * sqrt(6 / fan_in).

    Recommended for ReLU layers.
    """
    fan_in, _ = calculate_fans(shape)
    bound = calculate_gain(activation) * np.sqrt(6.0 / fan_in)
    return uniform(shape, -bound, bound, rng)


def kaiming_normal(shape: ShapeLike, activation: Union[str, Activation, None] = 'relu',
                   rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Kaiming/He normal: N(0, sd) with sd = gain * sqrt(2 / fan_in)."""
    fan_in, _ = calculate_fans(shape)
    sd = calculate_gain(activation) * np.sqrt(2.0 / fan_in)
    return normal(shape, 0.0, sd, rng)


# Weight initializers usable by name. Each takes (shape, activation, rng).
INITIALIZERS: Dict[str, Callable[..., np.ndarray]] = {
    'xavier_uniform': lambda shape, activation, rng: xavier_uniform(shape, calculate_gain(activation), rng),
    'xavier_normal': lambda shape, activation, rng: xavier_normal(shape, calculate_gain(activation), rng),
    'kaiming_uniform': kaiming_uniform,
    'kaiming_normal': kaiming_normal,
}


def get_initializer(name: str) -> Callable[..., np.ndarray]:
    """Looks up a weight initializer by name.

    Raises:
        InvalidParameterError: If the initializer name is not recognized.
    """
    if name not in INITIALIZERS:
        raise InvalidParameterError(
            f"Unknown weight initializer '{name}'. Available: {sorted(INITIALIZERS.keys())}"
        )
    return INITIALIZERS[name]


def default_initializer(activation: Union[str, Activation, None]) -> str:
    """Kaiming for ReLU layers, Xavier with the activation's gain for everything else."""
    if get_activation(activation).name == 'relu':
        return 'kaiming_uniform'
    return 'xavier_uniform'
