"""
conftest.py
~~~~~~~~~~~

Shared fixtures and helpers for the manifold test suite.
"""

import numpy as np
import pytest

# (input, one-hot label) pairs of the XOR-like control task
XOR_CLASSES = [
    ([0.0, 1.0], [1.0, 0.0]),
    ([1.0, 1.0], [0.0, 1.0]),
    ([1.0, 0.0], [1.0, 0.0]),
    ([0.0, 0.0], [0.0, 1.0]),
]


def xor_samples(n_samples, rng):
    """Draws n_samples examples uniformly from the four XOR classes."""
    choices = rng.integers(0, len(XOR_CLASSES), size=n_samples)
    x = np.array([XOR_CLASSES[c][0] for c in choices])
    y = np.array([XOR_CLASSES[c][1] for c in choices])
    return x, y


def numerical_gradient(f, param, eps=1e-6):
    """Central-difference gradient of the scalar f() with respect to param, perturbed in place."""
    grad = np.zeros_like(param)
    it = np.nditer(param, flags=['multi_index'])
    while not it.finished:
        idx = it.multi_index
        original = param[idx]
        param[idx] = original + eps
        f_plus = f()
        param[idx] = original - eps
        f_minus = f()
        param[idx] = original
        grad[idx] = (f_plus - f_minus) / (2 * eps)
        it.iternext()
    return grad


@pytest.fixture
def rng():
    """A seeded generator so every test is deterministic."""
    return np.random.default_rng(1234)


@pytest.fixture
def xor_data(rng):
    """200 training examples of the XOR-like task."""
    return xor_samples(200, rng)
