"""Light server: wires the MQTT client, local listener, cache and both loops."""

from __future__ import annotations

from types import TracebackType
from typing import Self

import aiomqtt

from light_controller.command_loop import CommandLoop
from light_controller.const import COMMAND_LOOP_NAME, SUBSCRIPTION_LOOP_NAME
from light_controller.exceptions import StartupError
from light_controller.ipc import ConnectionListener, remove_stale_socket
from light_controller.logging_abstraction import get_logger
from light_controller.state_cache import ApplyPolicy, StateCache
from light_controller.structs import BusClientProtocol, ServerConfig
from light_controller.subscription import SubscriptionLoop
from light_controller.supervisor import supervise

logger = get_logger(__name__)


def build_mqtt_client(config: ServerConfig) -> aiomqtt.Client:
    return aiomqtt.Client(
        hostname=config.mqtt_host,
        port=config.mqtt_port,
        username=config.mqtt_user,
        password=config.mqtt_pass,
        identifier=config.mqtt_client_id,
    )


class LightServer:
    """One light, one socket, one broker connection.

    ``connect()`` performs the startup steps (stale socket removal, socket
    bind, broker connect); ``start()`` confirms the subscription and then runs
    both loops until the first one stops.
    """

    lp: str = "LightServer:"

    def __init__(
        self,
        config: ServerConfig,
        client: BusClientProtocol,
        listener: ConnectionListener,
    ) -> None:
        self.config: ServerConfig = config
        self.client: BusClientProtocol = client
        self.listener: ConnectionListener = listener
        self.cache: StateCache | None = None

    @classmethod
    async def connect(cls, config: ServerConfig) -> LightServer:
        """Prepare the socket and connect to the broker.

        Raises:
            StartupError: If the socket cannot be prepared or the broker refuses us

        """
        lp = f"{cls.lp}connect:"
        remove_stale_socket(config.socket_path)
        listener = ConnectionListener(config.socket_path, max_pending=config.max_pending_connections)
        await listener.start()

        client = build_mqtt_client(config)
        logger.debug("%s Connecting to MQTT broker %s:%s", lp, config.mqtt_host, config.mqtt_port)
        try:
            _ = await client.__aenter__()
        except aiomqtt.MqttError as e:
            await listener.close()
            raise StartupError(
                "mqtt_connect",
                f"failed to connect to MQTT broker {config.mqtt_host}:{config.mqtt_port}: {e}",
            ) from e
        logger.info("%s Connected to MQTT broker: %s port: %s", lp, config.mqtt_host, config.mqtt_port)
        return cls(config, client, listener)

    async def start(self) -> object:
        """Subscribe to the device topic and run both loops.

        Returns only if a loop returns; in practice it raises the error of the
        first loop to stop.

        Raises:
            StartupError: If the subscription is refused
            LightControlError: The first loop's terminal error, tagged with its name

        """
        lp = f"{self.lp}start:"
        topic = self.config.topic
        try:
            _ = await self.client.subscribe(topic, qos=self.config.subscribe_qos)
        except aiomqtt.MqttError as e:
            raise StartupError("subscribe", f"unable to subscribe to topic {topic}: {e}") from e
        logger.info("%s Subscribed to %s (qos=%d)", lp, topic, self.config.subscribe_qos)

        self.cache = StateCache()
        policy = ApplyPolicy(
            ceiling=self.config.brightness_ceiling,
            optimistic=self.config.optimistic_updates,
        )
        subscription = SubscriptionLoop(self.client, self.cache, topic)
        commands = CommandLoop(
            self.client,
            self.cache,
            self.listener,
            topic,
            policy=policy,
            publish_qos=self.config.publish_qos,
            read_timeout=self.config.read_timeout,
            publish_timeout=self.config.publish_timeout,
        )
        return await supervise(
            {
                SUBSCRIPTION_LOOP_NAME: subscription.run(),
                COMMAND_LOOP_NAME: commands.run(),
            },
        )

    async def close(self) -> None:
        """Close the listener (removing the socket file) and disconnect from the broker."""
        lp = f"{self.lp}close:"
        await self.listener.close()
        try:
            _ = await self.client.__aexit__(None, None, None)
        except aiomqtt.MqttError as e:
            logger.warning("%s MQTT disconnect failed: %s", lp, e)
        else:
            logger.info("%s Disconnected from MQTT broker", lp)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
