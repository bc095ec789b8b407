"""
Core module for Spatial Engine.
"""
from .config import Config, config, initialize_config, get_config, DEFAULT_CONFIG
from .decorators import map_errors, performance_tracker, performance_context
from .exceptions import (
    SpatialEngineError, ConfigurationError, GeometryError, IsolatedUnitError,
    DimensionMismatchError, ModelError, SingularMatrixError, ConvergenceError,
    NotFittedError, InsufficientNeighborsError, ComputationError,
    ComputationTimeoutError
)
from .logging_setup import setup_logging, setup_logging_from_config, JsonFormatter

__all__ = [
    'Config', 'config', 'initialize_config', 'get_config', 'DEFAULT_CONFIG',
    'map_errors', 'performance_tracker', 'performance_context',
    'SpatialEngineError', 'ConfigurationError', 'GeometryError', 'IsolatedUnitError',
    'DimensionMismatchError', 'ModelError', 'SingularMatrixError', 'ConvergenceError',
    'NotFittedError', 'InsufficientNeighborsError', 'ComputationError',
    'ComputationTimeoutError',
    'setup_logging', 'setup_logging_from_config', 'JsonFormatter'
]
