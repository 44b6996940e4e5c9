"""Subscription loop: device state reports from MQTT into the state cache."""

from __future__ import annotations

import asyncio
from typing import NoReturn

import aiomqtt

from light_controller.codec import decode_state
from light_controller.exceptions import ConnectionLost, MalformedState, SubscriptionEnded
from light_controller.logging_abstraction import get_logger
from light_controller.state_cache import StateCache
from light_controller.structs import BusClientProtocol, MessageProtocol

logger = get_logger(__name__)


def _topic_of(message: MessageProtocol) -> str:
    topic = message.topic
    return topic.value if isinstance(topic, aiomqtt.Topic) else str(topic)


class SubscriptionLoop:
    """Refreshes the cache from every report on ``topic``.

    A report that fails to decode stops the loop: serving commands from a stale
    cache is worse than stopping.
    """

    lp: str = "subscription:"

    def __init__(self, client: BusClientProtocol, cache: StateCache, topic: str) -> None:
        self.client: BusClientProtocol = client
        self.cache: StateCache = cache
        self.topic: str = topic
        self.reports: int = 0

    async def handle_message(self, message: MessageProtocol) -> None:
        """Decode one bus message and replace the cached state.

        Raises:
            MalformedState: If the payload is not a valid device report

        """
        lp = f"{self.lp}handle:"
        topic = _topic_of(message)
        if topic != self.topic:
            logger.debug("%s Ignoring message on unrelated topic %s", lp, topic)
            return

        payload = message.payload
        if not isinstance(payload, bytes | bytearray | str):
            error_reason = f"unexpected payload type {type(payload).__name__}"
            raise MalformedState(error_reason)

        state = decode_state(payload)
        await self.cache.replace(state)
        self.reports += 1
        logger.info(
            "%s Device reported state",
            lp,
            extra={
                "state": state.power.value,
                "brightness": state.brightness,
                "color_temp": state.color_temperature,
            },
        )

    async def run(self) -> NoReturn:
        """Consume reports until the stream ends or fails.

        Raises:
            MalformedState: On the first report that fails to decode
            SubscriptionEnded: When the broker closes the connection cleanly or the
                stream stops delivering messages
            ConnectionLost: When the MQTT connection drops unexpectedly

        """
        lp = f"{self.lp}run:"
        logger.info("%s Waiting for device reports on %s", lp, self.topic)
        try:
            async for message in self.client.messages:
                await self.handle_message(message)
        except asyncio.CancelledError:
            logger.debug("%s Subscription loop cancelled after %d reports", lp, self.reports)
            raise
        except aiomqtt.MqttError as e:
            # aiomqtt reports a clean broker disconnect as an MqttError without a cause
            if e.__cause__ is None:
                logger.warning("%s Broker closed the connection after %d reports", lp, self.reports)
                raise SubscriptionEnded(self.topic) from e
            raise ConnectionLost(f"MQTT connection lost while waiting for reports: {e}") from e
        logger.warning("%s Message stream ended after %d reports", lp, self.reports)
        raise SubscriptionEnded(self.topic)
