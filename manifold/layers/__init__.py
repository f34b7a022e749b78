"""
Layer implementations with hand-derived forward and backward passes.
"""
from manifold.layers.base import GradientRetention, Layer, ParametricLayer
from manifold.layers.conv2d import Conv2D
from manifold.layers.dense import Dense, IndependentDense
from manifold.layers.flatten import Flatten

__all__ = [
    'GradientRetention',
    'Layer',
    'ParametricLayer',
    'Dense',
    'IndependentDense',
    'Conv2D',
    'Flatten',
]
