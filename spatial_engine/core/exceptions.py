"""
Custom exception classes for Spatial Engine.
"""


class SpatialEngineError(Exception):
    """Base exception for all Spatial Engine errors."""
    pass


class ConfigurationError(SpatialEngineError):
    """Error in configuration settings."""
    pass


class GeometryError(SpatialEngineError):
    """Malformed or degenerate input geometry."""
    pass


class IsolatedUnitError(SpatialEngineError):
    """A unit without neighbours under a strict zero policy."""

    def __init__(self, message: str, unit_ids=()):
        super().__init__(message)
        self.unit_ids = tuple(unit_ids)


class DimensionMismatchError(SpatialEngineError):
    """Misaligned vectors, matrices or identifiers."""
    pass


class ModelError(SpatialEngineError):
    """Base class for model-related errors."""
    pass


class SingularMatrixError(ModelError):
    """Non-invertible design or system matrix."""
    pass


class ConvergenceError(ModelError):
    """Optimizer failed to bracket or converge within its budget."""

    def __init__(self, message: str, iterations: int = 0):
        super().__init__(message)
        self.iterations = iterations


class NotFittedError(ModelError):
    """Result queried before a successful fit."""
    pass


class InsufficientNeighborsError(ModelError):
    """Local regression starved of data."""

    def __init__(self, message: str, unit_id=None):
        super().__init__(message)
        self.unit_id = unit_id


class ComputationError(SpatialEngineError):
    """Error in computation operations."""
    pass


class ComputationTimeoutError(ComputationError):
    """Parallel work abandoned after the caller's timeout expired."""
    pass
