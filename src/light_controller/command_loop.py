"""Command loop: local client commands into published state deltas.

Each connection carries exactly one command. It is decoded, applied to the
state cache, and the resulting delta is published to ``<topic>/set``. The
cache lock is released before the publish. Connections are handled strictly
one after another.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any, NoReturn

import aiomqtt

from light_controller.codec import command_name, decode_command, encode_delta
from light_controller.const import MAX_COMMAND_BYTES, SET_TOPIC_SUFFIX
from light_controller.correlation import correlation_context
from light_controller.exceptions import ConnectionLost, MalformedCommand, OperationTimeout, PublishFailed
from light_controller.instrumentation import timed_async
from light_controller.ipc import ConnectionListener
from light_controller.logging_abstraction import get_logger
from light_controller.state_cache import ApplyPolicy, StateCache
from light_controller.structs import BusClientProtocol, StateDelta

logger = get_logger(__name__)


class CommandLoop:
    """Serves the local control socket until an error stops it."""

    lp: str = "command:"

    def __init__(
        self,
        client: BusClientProtocol,
        cache: StateCache,
        listener: ConnectionListener,
        topic: str,
        policy: ApplyPolicy | None = None,
        publish_qos: int = 0,
        read_timeout: float = 0,
        publish_timeout: float = 0,
    ) -> None:
        """Initialize the command loop.

        Args:
            client: Connected MQTT client used for publishing
            cache: Shared state cache
            listener: Source of local client connections
            topic: Device base topic; deltas go to ``<topic>/set``
            policy: Brightness ceiling and update variant
            publish_qos: MQTT QoS for published deltas
            read_timeout: Seconds to wait for a client payload, 0 to wait forever
            publish_timeout: Seconds to wait for a publish, 0 to wait forever

        """
        self.client: BusClientProtocol = client
        self.cache: StateCache = cache
        self.listener: ConnectionListener = listener
        self.set_topic: str = f"{topic}{SET_TOPIC_SUFFIX}"
        self.policy: ApplyPolicy = policy or ApplyPolicy()
        self.publish_qos: int = publish_qos
        self.read_timeout: float = read_timeout
        self.publish_timeout: float = publish_timeout
        self.handled: int = 0

    async def _bounded[R](self, awaitable: Coroutine[Any, Any, R], operation: str, timeout: float) -> R:
        if not timeout:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except TimeoutError as e:
            raise OperationTimeout(operation, timeout) from e

    async def _read_to_eof(self, reader: asyncio.StreamReader) -> bytes:
        data = b""
        # one byte past the largest encoding is enough to detect trailing data
        while len(data) <= MAX_COMMAND_BYTES:
            try:
                chunk = await reader.read(MAX_COMMAND_BYTES + 1 - len(data))
            except OSError as e:
                raise ConnectionLost(f"client read failed: {e}") from e
            if not chunk:
                return data
            data += chunk
        error_reason = "trailing_bytes"
        raise MalformedCommand(error_reason, data)

    async def _close_client(self, writer: asyncio.StreamWriter) -> None:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug("%s Error closing client connection: %s", self.lp, e)

    async def publish_delta(self, delta: StateDelta) -> None:
        """Publish a delta to ``<topic>/set``.

        Raises:
            PublishFailed: If the broker rejects the publish or the connection is gone
            OperationTimeout: If the publish exceeds ``publish_timeout``

        """
        payload = encode_delta(delta)
        try:
            await self._bounded(
                self.client.publish(self.set_topic, payload, qos=self.publish_qos, retain=False),
                "publish",
                self.publish_timeout,
            )
        except aiomqtt.MqttError as e:
            raise PublishFailed(self.set_topic, str(e)) from e
        logger.info(
            "%s Published delta to %s",
            self.lp,
            self.set_topic,
            extra={"payload": payload.decode(), "qos": self.publish_qos},
        )

    @timed_async("handle_connection")
    async def handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> StateDelta:
        """Read, decode, apply and publish one client command."""
        lp = f"{self.lp}handle:"
        try:
            data = await self._bounded(self._read_to_eof(reader), "client_read", self.read_timeout)
        finally:
            await self._close_client(writer)

        cmd = decode_command(data)
        logger.info("%s Received command", lp, extra={"command": command_name(cmd), "detail": repr(cmd)})
        delta = await self.cache.apply(cmd, self.policy)
        await self.publish_delta(delta)
        self.handled += 1
        return delta

    async def run(self) -> NoReturn:
        """Accept and handle connections until something fails.

        Raises:
            MalformedCommand: A client sent an invalid payload
            StateNotYetKnown: A relative command arrived before the first report
            PublishFailed: The delta could not be published
            OperationTimeout: A client read or publish exceeded its timeout
            ConnectionLost: The local listener was closed or a client connection failed mid-read

        """
        lp = f"{self.lp}run:"
        logger.info("%s Accepting commands, publishing deltas to %s", lp, self.set_topic)
        try:
            while True:
                reader, writer = await self.listener.accept()
                with correlation_context():
                    _ = await self.handle_connection(reader, writer)
        except asyncio.CancelledError:
            logger.debug("%s Command loop cancelled after %d commands", lp, self.handled)
            raise
