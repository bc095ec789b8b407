"""
Common decorators for Spatial Engine.
"""
import time
import logging
import functools
from typing import Any, Callable, Dict, Optional, Type, TypeVar, cast

import numpy as np

from .exceptions import SpatialEngineError, SingularMatrixError

F = TypeVar('F', bound=Callable[..., Any])
logger = logging.getLogger(__name__)


# Library exceptions translated into the engine taxonomy
ERROR_REGISTRY: Dict[Type[Exception], Type[SpatialEngineError]] = {
    np.linalg.LinAlgError: SingularMatrixError,
}


def map_errors(
    error_map: Optional[Dict[Type[Exception], Type[SpatialEngineError]]] = None,
    log_level: str = "error"
) -> Callable[[F], F]:
    """Log library exceptions and re-raise them as engine exceptions.

    Engine exceptions pass through untouched; exceptions without a mapping
    are logged and re-raised as they are.
    """
    combined_map = dict(ERROR_REGISTRY)
    if error_map:
        combined_map.update(error_map)

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except SpatialEngineError:
                raise
            except Exception as e:
                log_method = getattr(logger, log_level.lower(), logger.error)
                log_method(f"Error in {func.__qualname__}: {str(e)}")
                for source, target in combined_map.items():
                    if isinstance(e, source):
                        raise target(f"{func.__name__}: {e}") from e
                raise
        return cast(F, wrapper)
    return decorator


def performance_tracker(name: Optional[str] = None, level: str = "debug") -> Callable[[F], F]:
    """Track function execution time."""
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            func_name = name or func.__name__
            start_time = time.time()

            try:
                result = func(*args, **kwargs)
                elapsed = time.time() - start_time
                log_method = getattr(logger, level.lower(), logger.debug)
                log_method(f"{func_name} completed in {elapsed:.3f} seconds")
                return result
            except Exception as e:
                elapsed = time.time() - start_time
                logger.debug(f"{func_name} failed after {elapsed:.3f} seconds: {str(e)}")
                raise

        return cast(F, wrapper)
    return decorator


class performance_context:
    """Context manager for performance tracking."""

    def __init__(self, name: str, level: str = "debug"):
        self.name = name
        self.level = level
        self.start_time = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> 'performance_context':
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.elapsed = time.time() - self.start_time
        log_method = getattr(logger, self.level.lower(), logger.debug)

        if exc_type:
            log_method(f"{self.name} failed after {self.elapsed:.3f} seconds: {str(exc_val)}")
        else:
            log_method(f"{self.name} completed in {self.elapsed:.3f} seconds")
