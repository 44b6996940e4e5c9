"""Core data structures and typing protocols for the light controller."""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Protocol

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

from light_controller.const import (
    LIGHT_BRIGHTNESS_CEILING,
    LIGHT_MAX_PENDING_CONNECTIONS,
    LIGHT_MQTT_CLIENT_ID,
    LIGHT_MQTT_HOST,
    LIGHT_MQTT_PASS,
    LIGHT_MQTT_PORT,
    LIGHT_MQTT_USER,
    LIGHT_OPTIMISTIC_UPDATES,
    LIGHT_PUBLISH_QOS,
    LIGHT_PUBLISH_TIMEOUT,
    LIGHT_READ_TIMEOUT,
    LIGHT_SOCKET_PATH,
    LIGHT_SUBSCRIBE_QOS,
    LIGHT_TOPIC,
)

NonNegativeInt = Annotated[StrictInt, Field(ge=0)]
# Command payloads travel as unsigned 64 bit integers
MAX_WIRE_INT = 2**64 - 1


class PowerState(StrEnum):
    """Power state as reported by, and sent to, the device."""

    ON = "ON"
    OFF = "OFF"


class DeviceState(BaseModel):
    """Last state reported by the device.

    Reports usually carry more fields (linkquality, color_mode, ...); those are
    ignored. The whole model is replaced on every report, never merged.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    power: PowerState = Field(alias="state")
    brightness: NonNegativeInt
    color_temperature: NonNegativeInt = Field(alias="color_temp")


class StateDelta(BaseModel):
    """Sparse set of fields to change on the device.

    Unset fields are left out of the JSON document entirely rather than being
    sent as null.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    power: PowerState | None = Field(default=None, alias="state")
    brightness: NonNegativeInt | None = None
    color_temperature: NonNegativeInt | None = Field(default=None, alias="color_temp")


@dataclass(frozen=True, slots=True)
class TurnOn:
    """Switch the light on."""


@dataclass(frozen=True, slots=True)
class TurnOff:
    """Switch the light off."""


@dataclass(frozen=True, slots=True)
class Dim:
    """Lower brightness by ``amount``, stopping at 0."""

    amount: int


@dataclass(frozen=True, slots=True)
class Brighten:
    """Raise brightness by ``amount``, stopping at the ceiling."""

    amount: int


@dataclass(frozen=True, slots=True)
class SetBrightness:
    """Set brightness to an absolute ``value``."""

    value: int


type Command = TurnOn | TurnOff | Dim | Brighten | SetBrightness


class ServerConfig(BaseModel):
    """Runtime settings for the daemon.

    Defaults come from the LIGHT_* environment variables; ``from_env`` re-reads
    them after a ``--env`` file has been loaded.
    """

    mqtt_host: str = LIGHT_MQTT_HOST
    mqtt_port: int = LIGHT_MQTT_PORT
    mqtt_user: str | None = LIGHT_MQTT_USER
    mqtt_pass: str | None = LIGHT_MQTT_PASS
    mqtt_client_id: str = LIGHT_MQTT_CLIENT_ID
    topic: str = LIGHT_TOPIC
    socket_path: str = LIGHT_SOCKET_PATH
    subscribe_qos: int = LIGHT_SUBSCRIBE_QOS
    publish_qos: int = LIGHT_PUBLISH_QOS
    brightness_ceiling: int = Field(default=LIGHT_BRIGHTNESS_CEILING, ge=0)
    optimistic_updates: bool = LIGHT_OPTIMISTIC_UPDATES
    read_timeout: float = Field(default=LIGHT_READ_TIMEOUT, ge=0)
    publish_timeout: float = Field(default=LIGHT_PUBLISH_TIMEOUT, ge=0)
    max_pending_connections: int = Field(default=LIGHT_MAX_PENDING_CONNECTIONS, ge=1)

    @field_validator("subscribe_qos", "publish_qos")
    @classmethod
    def _check_qos(cls, value: int) -> int:
        if value not in (0, 1, 2):
            msg = f"QoS must be 0, 1 or 2, got {value}"
            raise ValueError(msg)
        return value

    @field_validator("topic")
    @classmethod
    def _check_topic(cls, value: str) -> str:
        if not value or any(ch in value for ch in "+#"):
            msg = f"topic must be a non-empty topic name without wildcards, got {value!r}"
            raise ValueError(msg)
        return value

    @classmethod
    def from_env(cls, environ: Mapping[str, str], **overrides: object) -> ServerConfig:
        """Build a config from an environment mapping, then apply CLI overrides."""
        mapping = {
            "mqtt_host": "LIGHT_MQTT_HOST",
            "mqtt_port": "LIGHT_MQTT_PORT",
            "mqtt_user": "LIGHT_MQTT_USER",
            "mqtt_pass": "LIGHT_MQTT_PASS",
            "mqtt_client_id": "LIGHT_MQTT_CLIENT_ID",
            "topic": "LIGHT_TOPIC",
            "socket_path": "LIGHT_SOCKET_PATH",
            "subscribe_qos": "LIGHT_SUBSCRIBE_QOS",
            "publish_qos": "LIGHT_PUBLISH_QOS",
            "brightness_ceiling": "LIGHT_BRIGHTNESS_CEILING",
            "optimistic_updates": "LIGHT_OPTIMISTIC_UPDATES",
            "read_timeout": "LIGHT_READ_TIMEOUT",
            "publish_timeout": "LIGHT_PUBLISH_TIMEOUT",
            "max_pending_connections": "LIGHT_MAX_PENDING_CONNECTIONS",
        }
        values: dict[str, object] = {field: environ[var] for field, var in mapping.items() if environ.get(var)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)


class MessageProtocol(Protocol):
    """The parts of ``aiomqtt.Message`` the loops rely on."""

    topic: object
    payload: bytes | bytearray | str | int | float | None


class BusClientProtocol(Protocol):
    """The parts of ``aiomqtt.Client`` the loops rely on."""

    @property
    def messages(self) -> AsyncIterator[MessageProtocol]:
        """Async iterator over incoming messages."""
        ...

    async def subscribe(self, topic: str, qos: int = 0) -> object:
        """Subscribe to a topic."""
        ...

    async def publish(self, topic: str, payload: bytes | str | None = None, qos: int = 0, retain: bool = False) -> None:
        """Publish a payload to a topic."""
        ...

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> object:
        """Disconnect from the broker."""
        ...
