"""
Standardized Error Handling for preserve
========================================

This module provides the exception hierarchy shared by every save/load
operation, plus consistent logging around those operations.

File and stream failures are not wrapped: ``OSError`` (including
``FileNotFoundError``) reaches the caller unmodified.
"""

import functools
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Base exception for all persistence errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.context = context or {}
        super().__init__(message)

        # Log error with context for debugging
        context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        logger.error(
            f"Persistence error: {message}"
            + (f" ({context_str})" if context_str else "")
        )


class DecompressionError(PersistenceError):
    """Raised when a byte stream is not valid compressed data."""

    pass


class SerializationError(PersistenceError):
    """Raised when the codec rejects a value graph or a payload."""

    pass


class TypeMismatchError(PersistenceError, TypeError):
    """Raised when a decoded value cannot be coerced to the requested type."""

    def __init__(
        self,
        decoded_type: Any,
        requested_type: Any,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.decoded_type = decoded_type
        self.requested_type = requested_type
        context = dict(context or {})
        context.setdefault("decoded_type", _type_name(decoded_type))
        context.setdefault("requested_type", _type_name(requested_type))
        super().__init__(
            f"Cannot convert decoded value of type {_type_name(decoded_type)} "
            f"to requested type {_type_name(requested_type)}",
            context,
        )


class InvalidCompressionError(PersistenceError, ValueError):
    """Raised when an unrecognized compression mode is requested."""

    pass


class UnresolvableModuleError(PersistenceError, ImportError):
    """Raised when the module-loading fallback cannot resolve a module name."""

    def __init__(self, module_name: str, context: Optional[Dict[str, Any]] = None):
        self.module_name = module_name
        context = dict(context or {})
        context.setdefault("module_name", module_name)
        super().__init__(f"Cannot resolve module '{module_name}'", context)


def _type_name(tp: Any) -> str:
    if isinstance(tp, type):
        return f"{tp.__module__}.{tp.__qualname__}"
    return repr(tp)


@contextmanager
def persistence_operation_context(operation: str, **context):
    """
    Context manager for save/load operations with standardized logging.

    Exceptions are logged and re-raised unchanged.

    Args:
        operation: Description of the operation
        **context: Additional context for logging
    """
    logger.debug(f"Starting persistence operation: {operation}", extra=context)
    start_time = time.perf_counter()

    try:
        yield
    except PersistenceError:
        logger.error(f"Persistence operation failed: {operation}", extra=context)
        raise
    except Exception as e:
        logger.error(
            f"Unexpected error in persistence operation: {operation} - {e}",
            extra=context,
        )
        raise

    duration = time.perf_counter() - start_time
    logger.debug(
        f"Persistence operation completed: {operation} ({duration:.3f}s)",
        extra=context,
    )


def log_performance(func: Callable) -> Callable:
    """Decorator to log how long a persistence call took."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            duration = time.perf_counter() - start_time
            logger.warning(f"{func.__name__} failed after {duration:.3f}s: {e}")
            raise

        duration = time.perf_counter() - start_time
        logger.debug(f"{func.__name__} completed in {duration:.3f}s")
        return result

    return wrapper
