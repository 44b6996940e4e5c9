"""Race-to-first-completion supervision of the server loops.

Both loops are expected to run forever. Whichever stops first, by returning or
raising, decides the outcome; the others are cancelled and awaited before
``supervise`` returns, so nothing is left running in the background.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine, Mapping
from typing import Any

from light_controller.exceptions import LightControlError
from light_controller.logging_abstraction import get_logger

__all__ = ["supervise"]

logger = get_logger(__name__)
lp = "supervisor:"


async def _cancel_all(tasks: list[asyncio.Task[Any]]) -> None:
    for task in tasks:
        if not task.done():
            logger.debug("%s Cancelling task: %s", lp, task.get_name())
            _ = task.cancel()
    # wait for cancellation to finish; secondary errors are not the outcome
    _ = await asyncio.gather(*tasks, return_exceptions=True)


async def supervise(loops: Mapping[str, Coroutine[Any, Any, Any]]) -> object:
    """Run named loops concurrently until the first one stops.

    Args:
        loops: Loop name -> coroutine. The name ends up on ``err.loop`` for
            LightControlError instances and in the log.

    Returns:
        The first finished loop's return value.

    Raises:
        Whatever the first finished loop raised. If ``supervise`` itself is
        cancelled, every loop is cancelled and CancelledError propagates.

    """
    if not loops:
        msg = "supervise() needs at least one loop"
        raise ValueError(msg)

    tasks = {asyncio.create_task(coro, name=name): name for name, coro in loops.items()}
    logger.info("%s Started loops: %s", lp, ", ".join(tasks.values()))
    try:
        done, _pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        logger.info("%s Cancelled, stopping all loops", lp)
        await _cancel_all(list(tasks))
        raise

    # several loops can finish in the same iteration; report them in start order
    first = next(task for task in tasks if task in done)
    name = tasks[first]
    await _cancel_all([task for task in tasks if task is not first])

    if first.cancelled():
        logger.warning("%s Loop '%s' was cancelled externally", lp, name)
        raise asyncio.CancelledError

    error = first.exception()
    if error is None:
        logger.warning("%s Loop '%s' returned, shutting down", lp, name)
        return first.result()

    if isinstance(error, LightControlError):
        error.loop = name
    logger.error(
        "%s Loop '%s' terminated: %s",
        lp,
        name,
        error,
        extra={"loop": name, "error_type": type(error).__name__},
    )
    raise error
