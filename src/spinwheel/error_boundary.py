"""Decorators that keep one failing coroutine from unwinding into its caller.

Used where a failure must stay local: a single overlay delivery, or the
chat callbacks run from the listen loop.
"""

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


def _log_failure(func: Callable, error: Exception, level: int) -> None:
    qualified = f"{func.__module__}.{func.__qualname__}"
    logger.log(
        level,
        f"{qualified} failed with {type(error).__name__}: {error}",
        exc_info=True,
        # "module" and "funcName" are reserved LogRecord attributes
        extra={"func_name": func.__qualname__, "func_module": func.__module__},
    )


def error_boundary(
    *,
    log_level: int = logging.ERROR,
    reraise: bool = False,
    default_return: Any = None,
    catch_exceptions: tuple[type[Exception], ...] = (Exception,),
    ignore_exceptions: tuple[type[BaseException], ...] = (asyncio.CancelledError,),
) -> Callable:
    """Wrap a coroutine function so matching exceptions are logged instead of raised.

    ``ignore_exceptions`` always propagate (cancellation by default). Anything
    in ``catch_exceptions`` is logged at ``log_level`` and either re-raised
    or replaced by ``default_return``. Other exceptions pass through.

    Example:
        @error_boundary(log_level=logging.WARNING)
        async def deliver(connection, message):
            await connection.send_str(message)
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"error_boundary needs a coroutine function, got {func!r}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except ignore_exceptions:
                raise
            except catch_exceptions as e:
                _log_failure(func, e, log_level)
                if reraise:
                    raise
                return default_return

        return wrapper

    return decorator


def safe_handler(func: Callable) -> Callable:
    """Log at WARNING and return None on any error."""
    return error_boundary(log_level=logging.WARNING)(func)
