"""Shared error handling helpers.

Best-effort code paths (pruned file purging, notification delivery,
bookkeeping writes) wrap their bodies with these decorators so a failure is
logged with the same fields everywhere and then swallowed.
"""

import functools
import inspect
from collections.abc import Callable
from typing import Any

import structlog

logger = structlog.get_logger()


def log_failure(operation_name: str, exception: Exception, **context: Any) -> None:
    logger.error(
        f"Failed to {operation_name}",
        error=str(exception),
        error_type=type(exception).__name__,
        **context,
    )


def safe_with_default(operation_name: str, default_value: Any, **log_kwargs: Any):
    """Decorator: log any exception raised by the wrapped callable and return
    ``default_value`` instead. Works for plain and ``async`` functions.
    """

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    log_failure(operation_name, e, **log_kwargs)
                    return default_value

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                log_failure(operation_name, e, **log_kwargs)
                return default_value

        return wrapper

    return decorator


def safe_operation(operation_name: str, **log_kwargs: Any):
    """Swallow failures, returning None"""
    return safe_with_default(operation_name, None, **log_kwargs)
