import logging
import os
import socket

from light_controller import __version__

__all__ = [
    "COMMAND_LOOP_NAME",
    "LIGHT_BRIGHTNESS_CEILING",
    "LIGHT_DEBUG",
    "LIGHT_LOG_FORMAT",
    "LIGHT_LOG_HUMAN_OUTPUT",
    "LIGHT_LOG_JSON_FILE",
    "LIGHT_MAX_PENDING_CONNECTIONS",
    "LIGHT_MQTT_CLIENT_ID",
    "LIGHT_MQTT_HOST",
    "LIGHT_MQTT_PASS",
    "LIGHT_MQTT_PORT",
    "LIGHT_MQTT_USER",
    "LIGHT_OPTIMISTIC_UPDATES",
    "LIGHT_PERF_THRESHOLD_MS",
    "LIGHT_PERF_TRACKING",
    "LIGHT_PUBLISH_QOS",
    "LIGHT_PUBLISH_TIMEOUT",
    "LIGHT_READ_TIMEOUT",
    "LIGHT_SOCKET_PATH",
    "LIGHT_SUBSCRIBE_QOS",
    "LIGHT_TOPIC",
    "LIGHT_VERSION",
    "LOG_FORMATTER",
    "MAX_COMMAND_BYTES",
    "SET_TOPIC_SUFFIX",
    "SUBSCRIPTION_LOOP_NAME",
    "YES_ANSWER",
    "reload_env",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", "on", "o")

LOG_FORMATTER = logging.Formatter(
    "%(asctime)s.%(msecs)d %(levelname)s [%(module)s:%(lineno)d] > %(message)s",
    "%m/%d/%y %H:%M:%S",
)
LIGHT_VERSION: str = __version__


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).casefold() in YES_ANSWER


LIGHT_MQTT_HOST: str = os.environ.get("LIGHT_MQTT_HOST", "localhost")
LIGHT_MQTT_PORT: int = _env_int("LIGHT_MQTT_PORT", 1883)
LIGHT_MQTT_USER: str | None = os.environ.get("LIGHT_MQTT_USER") or None
LIGHT_MQTT_PASS: str | None = os.environ.get("LIGHT_MQTT_PASS") or None
LIGHT_MQTT_CLIENT_ID: str = os.environ.get("LIGHT_MQTT_CLIENT_ID", f"light_controller_{socket.gethostname()}")
LIGHT_TOPIC: str = os.environ.get("LIGHT_TOPIC", "zigbee2mqtt/lamp")
LIGHT_SOCKET_PATH: str = os.environ.get("LIGHT_SOCKET_PATH", "/tmp/lights.sock")

# 0 = at most once, 1 = at least once
LIGHT_SUBSCRIBE_QOS: int = _env_int("LIGHT_SUBSCRIBE_QOS", 0)
LIGHT_PUBLISH_QOS: int = _env_int("LIGHT_PUBLISH_QOS", 0)

LIGHT_BRIGHTNESS_CEILING: int = _env_int("LIGHT_BRIGHTNESS_CEILING", 1000)
LIGHT_OPTIMISTIC_UPDATES: bool = _env_flag("LIGHT_OPTIMISTIC_UPDATES", "true")

# Seconds, 0 disables the timeout
LIGHT_READ_TIMEOUT: float = _env_float("LIGHT_READ_TIMEOUT", 5.0)
LIGHT_PUBLISH_TIMEOUT: float = _env_float("LIGHT_PUBLISH_TIMEOUT", 10.0)

# Accepted connections waiting to be handled; more are closed on arrival
LIGHT_MAX_PENDING_CONNECTIONS: int = _env_int("LIGHT_MAX_PENDING_CONNECTIONS", 16)

LIGHT_DEBUG: bool = _env_flag("LIGHT_DEBUG", "0")

SET_TOPIC_SUFFIX = "/set"
SUBSCRIPTION_LOOP_NAME = "subscription"
COMMAND_LOOP_NAME = "command"
# Largest valid encoding is a 4 byte tag plus an 8 byte payload
MAX_COMMAND_BYTES = 12

# Logging Configuration
LIGHT_LOG_FORMAT: str = os.environ.get("LIGHT_LOG_FORMAT", "human")  # "json", "human", or "both"
LIGHT_LOG_JSON_FILE: str | None = os.environ.get("LIGHT_LOG_JSON_FILE") or None
LIGHT_LOG_HUMAN_OUTPUT: str = os.environ.get("LIGHT_LOG_HUMAN_OUTPUT", "stderr")  # "stdout", "stderr", or file path

# Performance Instrumentation
LIGHT_PERF_TRACKING: bool = _env_flag("LIGHT_PERF_TRACKING", "true")
LIGHT_PERF_THRESHOLD_MS: int = _env_int("LIGHT_PERF_THRESHOLD_MS", 100)


def reload_env() -> None:
    """Re-evaluate the runtime switches after a ``--env`` file was loaded.

    Covers LIGHT_DEBUG and the LIGHT_PERF_* settings. The LIGHT_LOG_* settings
    shape handlers when each logger is created at import, so they only take
    effect from the process environment. Settings that feed ServerConfig are
    re-read by ``ServerConfig.from_env`` instead.
    """
    global LIGHT_DEBUG, LIGHT_PERF_TRACKING, LIGHT_PERF_THRESHOLD_MS  # noqa: PLW0603

    LIGHT_DEBUG = _env_flag("LIGHT_DEBUG", "0")
    LIGHT_PERF_TRACKING = _env_flag("LIGHT_PERF_TRACKING", "true")
    LIGHT_PERF_THRESHOLD_MS = _env_int("LIGHT_PERF_THRESHOLD_MS", 100)
