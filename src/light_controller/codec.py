"""Wire encodings for commands (local socket) and device state (MQTT).

Commands use a fixed binary layout::

    tag: u32 little-endian   (0 TurnOn, 1 TurnOff, 2 Dim, 3 Brighten, 4 SetBrightness)
    arg: u64 little-endian   (Dim, Brighten and SetBrightness only)

Device state and deltas travel as JSON documents with the keys ``state``,
``brightness`` and ``color_temp``.
"""

from __future__ import annotations

import struct

from pydantic import ValidationError

from light_controller.exceptions import MalformedCommand, MalformedState
from light_controller.logging_abstraction import get_logger
from light_controller.structs import (
    MAX_WIRE_INT,
    Brighten,
    Command,
    DeviceState,
    Dim,
    SetBrightness,
    StateDelta,
    TurnOff,
    TurnOn,
)

__all__ = [
    "COMMAND_NAMES",
    "command_name",
    "decode_command",
    "decode_delta",
    "decode_state",
    "encode_command",
    "encode_delta",
    "encode_state",
    "parse_command",
]

logger = get_logger(__name__)

_TAG = struct.Struct("<I")
_ARG = struct.Struct("<Q")

TAG_TURN_ON = 0
TAG_TURN_OFF = 1
TAG_DIM = 2
TAG_BRIGHTEN = 3
TAG_SET_BRIGHTNESS = 4

COMMAND_NAMES: dict[str, type[Command]] = {
    "on": TurnOn,
    "off": TurnOff,
    "dim": Dim,
    "brighten": Brighten,
    "set-brightness": SetBrightness,
}


def command_name(cmd: Command) -> str:
    """Return the CLI verb for a command (``Dim(5)`` -> ``"dim"``)."""
    for name, cls in COMMAND_NAMES.items():
        if isinstance(cmd, cls):
            return name
    msg = f"not a command: {cmd!r}"
    raise TypeError(msg)


def _check_arg(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= MAX_WIRE_INT:
        error_reason = "argument_out_of_range"
        raise MalformedCommand(error_reason)
    return value


def encode_command(cmd: Command) -> bytes:
    """Encode a command for the local socket.

    Raises:
        MalformedCommand: If the argument is negative or does not fit in 64 bits

    """
    if isinstance(cmd, TurnOn):
        return _TAG.pack(TAG_TURN_ON)
    if isinstance(cmd, TurnOff):
        return _TAG.pack(TAG_TURN_OFF)
    if isinstance(cmd, Dim):
        return _TAG.pack(TAG_DIM) + _ARG.pack(_check_arg(cmd.amount))
    if isinstance(cmd, Brighten):
        return _TAG.pack(TAG_BRIGHTEN) + _ARG.pack(_check_arg(cmd.amount))
    if isinstance(cmd, SetBrightness):
        return _TAG.pack(TAG_SET_BRIGHTNESS) + _ARG.pack(_check_arg(cmd.value))
    msg = f"not a command: {cmd!r}"
    raise TypeError(msg)


def decode_command(data: bytes) -> Command:
    """Decode exactly one command from a complete client payload.

    Raises:
        MalformedCommand: On truncated input, an unknown tag or trailing bytes

    """
    if len(data) < _TAG.size:
        error_reason = "too_short"
        raise MalformedCommand(error_reason, data)

    (tag,) = _TAG.unpack_from(data)
    if tag in (TAG_TURN_ON, TAG_TURN_OFF):
        expected_len = _TAG.size
    elif tag in (TAG_DIM, TAG_BRIGHTEN, TAG_SET_BRIGHTNESS):
        expected_len = _TAG.size + _ARG.size
    else:
        error_reason = "unknown_variant"
        raise MalformedCommand(error_reason, data)

    if len(data) < expected_len:
        error_reason = "too_short"
        raise MalformedCommand(error_reason, data)
    if len(data) > expected_len:
        error_reason = "trailing_bytes"
        raise MalformedCommand(error_reason, data)

    if tag == TAG_TURN_ON:
        return TurnOn()
    if tag == TAG_TURN_OFF:
        return TurnOff()

    (arg,) = _ARG.unpack_from(data, _TAG.size)
    if tag == TAG_DIM:
        return Dim(arg)
    if tag == TAG_BRIGHTEN:
        return Brighten(arg)
    return SetBrightness(arg)


def parse_command(name: str, value: int | None = None) -> Command:
    """Build a command from a CLI verb and optional argument.

    Raises:
        MalformedCommand: For an unknown verb, or a missing or invalid argument

    """
    cls = COMMAND_NAMES.get(name.casefold())
    if cls is None:
        error_reason = f"unknown_command:{name}"
        raise MalformedCommand(error_reason)
    if cls in (TurnOn, TurnOff):
        if value is not None:
            error_reason = f"unexpected_argument:{name}"
            raise MalformedCommand(error_reason)
        return cls()
    if value is None:
        error_reason = f"missing_argument:{name}"
        raise MalformedCommand(error_reason)
    return cls(_check_arg(value))


def _as_bytes(payload: bytes | bytearray | str) -> bytes:
    return payload.encode() if isinstance(payload, str) else bytes(payload)


def decode_state(payload: bytes | bytearray | str) -> DeviceState:
    """Decode a device state report.

    Raises:
        MalformedState: If the payload is not JSON or does not match the schema

    """
    raw = _as_bytes(payload)
    try:
        return DeviceState.model_validate_json(raw)
    except ValidationError as e:
        logger.debug("Rejected device report: %s", e)
        raise MalformedState(_summarize(e), raw) from e


def encode_state(state: DeviceState) -> bytes:
    return state.model_dump_json(by_alias=True).encode()


def decode_delta(payload: bytes | bytearray | str) -> StateDelta:
    """Decode a delta document (as published to ``<topic>/set``).

    Raises:
        MalformedState: If the payload is not JSON or has unknown/invalid fields

    """
    raw = _as_bytes(payload)
    try:
        return StateDelta.model_validate_json(raw)
    except ValidationError as e:
        raise MalformedState(_summarize(e), raw) from e


def encode_delta(delta: StateDelta) -> bytes:
    """Encode a delta, omitting unset fields."""
    return delta.model_dump_json(by_alias=True, exclude_none=True).encode()


def _summarize(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "document"
    return f"{location}: {first['type']}"
