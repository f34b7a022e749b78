"""
Manifold: a small NumPy neural-network training engine.

Layers with hand-derived gradients, weight initializers, activation and loss
functions, a configure-then-weave network container and a mini-batch
gradient-descent optimizer.
"""
from manifold.activations import (
    Activation,
    Identity,
    ReLU,
    Sigmoid,
    Tanh,
    get_activation,
    softmax,
)
from manifold.exceptions import (
    AlreadyWovenError,
    DatasetMismatchError,
    InvalidParameterError,
    ManifoldError,
    ShapeError,
    StateError,
    TrainingError,
    UninitializedStateError,
    UnimplementedOperationError,
)
from manifold.layers import Conv2D, Dense, Flatten, GradientRetention, IndependentDense, Layer
from manifold.losses import BinaryCrossEntropy, Loss, MeanSquaredError, SoftmaxCrossEntropy, get_loss
from manifold.network import Manifold, ManifoldState
from manifold.optimizers import MiniBatchGradientDescent, PreparedDataset, log_progress

__version__ = '0.1.0'

__all__ = [
    'Activation',
    'Identity',
    'ReLU',
    'Sigmoid',
    'Tanh',
    'get_activation',
    'softmax',
    'Loss',
    'SoftmaxCrossEntropy',
    'MeanSquaredError',
    'BinaryCrossEntropy',
    'get_loss',
    'Layer',
    'Dense',
    'IndependentDense',
    'Conv2D',
    'Flatten',
    'GradientRetention',
    'Manifold',
    'ManifoldState',
    'MiniBatchGradientDescent',
    'PreparedDataset',
    'log_progress',
    'ManifoldError',
    'ShapeError',
    'InvalidParameterError',
    'DatasetMismatchError',
    'StateError',
    'UninitializedStateError',
    'AlreadyWovenError',
    'UnimplementedOperationError',
    'TrainingError',
]
