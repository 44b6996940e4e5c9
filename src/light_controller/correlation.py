"""
Correlation IDs for tracing one local command through decode, apply and publish.

Backed by a ContextVar, so every asyncio task sees its own value and a command
handled inside ``correlation_context()`` tags all of its log lines.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "light_correlation_id",
    default=None,
)


def generate_correlation_id() -> str:
    """Return a new UUID4 hex string (32 characters, no dashes)."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _ = _correlation_id.set(correlation_id)


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str]:
    """
    Scope a correlation ID, restoring the previous one on exit.

    Args:
        correlation_id: ID to use; a new one is generated when omitted

    Yields:
        The correlation ID active inside the block

    Example:
        with correlation_context() as corr_id:
            logger.info("Handling command")  # tagged with corr_id
    """
    active_id = correlation_id or generate_correlation_id()
    token = _correlation_id.set(active_id)
    try:
        yield active_id
    finally:
        _correlation_id.reset(token)
