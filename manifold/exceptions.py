"""
Exception hierarchy for the training engine.

Every error raised by the package derives from ``ManifoldError`` and also from
the closest builtin, so callers that already catch ``ValueError`` or
``RuntimeError`` keep working.
"""


class ManifoldError(Exception):
    """Base class for all errors raised by manifold."""


class ShapeError(ManifoldError, ValueError):
    """A tensor has a shape or rank an operation cannot accept."""


class InvalidParameterError(ManifoldError, ValueError):
    """A numeric or named parameter is outside its valid domain."""


class DatasetMismatchError(ManifoldError, ValueError):
    """Inputs and labels do not pair up one-to-one."""


class StateError(ManifoldError, RuntimeError):
    """An object was used in the wrong lifecycle state."""


class UninitializedStateError(StateError):
    """Something that must happen first has not happened yet
    (forward before backward, weave before forward, backward before gradients)."""


class AlreadyWovenError(StateError):
    """The network has already been woven and can no longer be configured."""


class UnimplementedOperationError(ManifoldError, NotImplementedError):
    """A layer variant does not provide the requested operation."""


class TrainingError(ManifoldError, RuntimeError):
    """The training loop hit a terminal numerical failure, such as a NaN loss."""
