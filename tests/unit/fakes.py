"""
In-memory stand-ins for the aiomqtt client and the local listener.

Lets the loops be driven without a broker or a socket.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from unittest.mock import AsyncMock, MagicMock

import aiomqtt

from light_controller.exceptions import ConnectionLost

TOPIC = "zigbee2mqtt/lamp"


@dataclass
class FakeMessage:
    topic: object
    payload: bytes | str | None


class FakeBusClient:
    """Records subscribes/publishes and replays queued messages.

    ``feed`` queues a message. ``end`` and ``drop`` stop the stream the way
    aiomqtt does on a clean and an unexpected broker disconnect; ``exhaust``
    lets the iterator return; ``fail`` makes it raise the given error.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[FakeMessage | BaseException | None] = asyncio.Queue()
        self.subscriptions: list[tuple[str, int]] = []
        self.published: list[tuple[str, bytes, int]] = []
        self.publish_error: BaseException | None = None
        self.subscribe_error: BaseException | None = None
        self.publish_delay: float = 0
        self.exited: bool = False

    def feed(self, payload: bytes | str | None, topic: str = TOPIC) -> None:
        self._queue.put_nowait(FakeMessage(topic, payload))

    def end(self) -> None:
        self._queue.put_nowait(aiomqtt.MqttError("Disconnected during message iteration"))

    def drop(self) -> None:
        error = aiomqtt.MqttError("Disconnected during message iteration")
        error.__cause__ = aiomqtt.MqttCodeError(7, "Unexpected disconnection")
        self._queue.put_nowait(error)

    def exhaust(self) -> None:
        self._queue.put_nowait(None)

    def fail(self, error: BaseException) -> None:
        self._queue.put_nowait(error)

    @property
    def messages(self) -> AsyncIterator[FakeMessage]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[FakeMessage]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def subscribe(self, topic: str, qos: int = 0) -> None:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscriptions.append((topic, qos))

    async def publish(self, topic: str, payload: bytes | str | None = None, qos: int = 0, retain: bool = False) -> None:
        if self.publish_delay:
            await asyncio.sleep(self.publish_delay)
        if self.publish_error is not None:
            raise self.publish_error
        assert isinstance(payload, bytes)
        self.published.append((topic, payload, qos))

    async def __aexit__(self, *_exc_info: object) -> None:
        self.exited = True


def make_connection(data: bytes, eof: bool = True) -> tuple[asyncio.StreamReader, MagicMock]:
    """A fed StreamReader and a mock writer. Call from inside a running loop."""
    reader = asyncio.StreamReader()
    if data:
        reader.feed_data(data)
    if eof:
        reader.feed_eof()
    writer = MagicMock()
    writer.wait_closed = AsyncMock()
    return reader, writer


class FakeListener:
    """Hands out queued connections in order, like ConnectionListener.accept()."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[tuple[asyncio.StreamReader, MagicMock] | None] = asyncio.Queue()
        self.readers: list[asyncio.StreamReader] = []
        self.writers: list[MagicMock] = []

    def push(self, data: bytes, eof: bool = True) -> MagicMock:
        reader, writer = make_connection(data, eof=eof)
        self.readers.append(reader)
        self.writers.append(writer)
        self._queue.put_nowait((reader, writer))
        return writer

    def close_listener(self) -> None:
        self._queue.put_nowait(None)

    async def accept(self) -> tuple[asyncio.StreamReader, MagicMock]:
        item = await self._queue.get()
        if item is None:
            raise ConnectionLost("local listener closed")
        return item

    async def close(self) -> None:
        self.close_listener()
