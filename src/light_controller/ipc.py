"""Local control channel over a Unix domain socket.

Protocol: a client connects, writes one encoded command, and closes. Nothing
is sent back.
"""

from __future__ import annotations

import asyncio
import contextlib
from pathlib import Path
from types import TracebackType
from typing import Self

from light_controller.codec import encode_command
from light_controller.const import LIGHT_MAX_PENDING_CONNECTIONS
from light_controller.exceptions import ConnectionLost, StartupError
from light_controller.logging_abstraction import get_logger
from light_controller.structs import Command

__all__ = [
    "ConnectionListener",
    "LocalConnection",
    "remove_stale_socket",
    "send_command",
]

logger = get_logger(__name__)

type LocalConnection = tuple[asyncio.StreamReader, asyncio.StreamWriter]


def remove_stale_socket(path: str | Path) -> None:
    """Remove a socket file left behind by a previous run.

    A missing file is fine; any other failure is fatal.

    Raises:
        StartupError: If the file exists but cannot be removed

    """
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return
    except OSError as e:
        raise StartupError("remove_stale_socket", f"deleting old socket at {path}: {e}") from e
    logger.debug("Removed stale socket at %s", path)


class ConnectionListener:
    """Accepts local connections and hands them out one at a time.

    ``asyncio.start_unix_server`` runs a callback per connection concurrently;
    the callback only queues the stream pair so ``accept()`` callers see
    connections strictly in arrival order. At most ``max_pending`` connections
    wait in the queue; later arrivals are closed straight away.

    Usage:
        async with ConnectionListener("/tmp/lights.sock") as listener:
            reader, writer = await listener.accept()
    """

    lp: str = "ipc:"

    def __init__(self, path: str | Path, max_pending: int = LIGHT_MAX_PENDING_CONNECTIONS) -> None:
        self.path: Path = Path(path)
        self.max_pending: int = max_pending
        self.rejected: int = 0
        self._server: asyncio.Server | None = None
        self._pending: asyncio.Queue[LocalConnection | None] = asyncio.Queue(maxsize=max_pending)
        self._closed: bool = False

    async def start(self) -> None:
        """Bind the socket.

        Raises:
            StartupError: If the socket cannot be bound

        """
        try:
            self._server = await asyncio.start_unix_server(self._on_connect, path=str(self.path))
        except OSError as e:
            raise StartupError("bind_socket", f"failed to bind to socket at {self.path}: {e}") from e
        logger.info("%s Listening on %s", self.lp, self.path)

    async def _on_connect(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if self._closed:
            writer.close()
            return
        try:
            self._pending.put_nowait((reader, writer))
        except asyncio.QueueFull:
            self.rejected += 1
            logger.warning(
                "%s Dropping connection, %d already waiting (rejected so far: %d)",
                self.lp,
                self.max_pending,
                self.rejected,
            )
            writer.close()

    async def accept(self) -> LocalConnection:
        """Wait for the next client connection.

        Raises:
            ConnectionLost: If the listener was closed

        """
        if self._closed:
            error_reason = "local listener closed"
            raise ConnectionLost(error_reason)
        connection = await self._pending.get()
        if connection is None:
            error_reason = "local listener closed"
            raise ConnectionLost(error_reason)
        return connection

    async def close(self) -> None:
        """Stop accepting, drop queued connections and remove the socket file."""
        if self._closed:
            return
        self._closed = True
        server, self._server = self._server, None
        if server is not None:
            server.close()
        while not self._pending.empty():
            queued = self._pending.get_nowait()
            if queued is not None:
                queued[1].close()
        # wakes a pending accept()
        self._pending.put_nowait(None)
        if server is not None:
            # returns once every client transport is closed
            await server.wait_closed()
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()
        logger.debug("%s Listener on %s closed", self.lp, self.path)

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


async def send_command(path: str | Path, cmd: Command) -> None:
    """Client side: connect, write one command, close."""
    _reader, writer = await asyncio.open_unix_connection(str(path))
    try:
        writer.write(encode_command(cmd))
        await writer.drain()
        if writer.can_write_eof():
            writer.write_eof()
    finally:
        writer.close()
        await writer.wait_closed()
