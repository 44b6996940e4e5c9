"""
Timing for command handling.

``timed_async`` logs how long a coroutine took and warns when it exceeds
LIGHT_PERF_THRESHOLD_MS. Disabled entirely with LIGHT_PERF_TRACKING=false.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable, Coroutine
from typing import Any, ParamSpec, TypeVar

__all__ = [
    "measure_time",
    "timed_async",
]

P = ParamSpec("P")
T = TypeVar("T")


def measure_time(start_time: float) -> float:
    """Milliseconds elapsed since ``start_time`` (a ``time.perf_counter()`` value)."""
    return (time.perf_counter() - start_time) * 1000


def timed_async(
    operation_name: str | None = None,
) -> Callable[[Callable[P, Coroutine[Any, Any, T]]], Callable[P, Coroutine[Any, Any, T]]]:
    """
    Decorator timing an async function.

    Args:
        operation_name: Name for the operation (defaults to function name)

    Example:
        @timed_async("handle_connection")
        async def handle(reader, writer):
            ...
    """

    def decorator(func: Callable[P, Coroutine[Any, Any, T]]) -> Callable[P, Coroutine[Any, Any, T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            from light_controller.const import (  # noqa: PLC0415
                LIGHT_PERF_THRESHOLD_MS,
                LIGHT_PERF_TRACKING,
            )
            from light_controller.logging_abstraction import get_logger  # noqa: PLC0415

            if not LIGHT_PERF_TRACKING:
                return await func(*args, **kwargs)

            op_name = operation_name or func.__name__
            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                elapsed_ms = measure_time(start_time)
                logger = get_logger(__name__)
                context = {
                    "operation": op_name,
                    "duration_ms": round(elapsed_ms, 2),
                    "threshold_ms": LIGHT_PERF_THRESHOLD_MS,
                }
                if elapsed_ms > LIGHT_PERF_THRESHOLD_MS:
                    logger.warning(
                        "[%s] completed in %.1fms (threshold: %dms)",
                        op_name,
                        elapsed_ms,
                        LIGHT_PERF_THRESHOLD_MS,
                        extra=context,
                    )
                else:
                    logger.debug("[%s] completed in %.1fms", op_name, elapsed_ms, extra=context)

        return wrapper

    return decorator
