"""Authoritative cache of the device's last reported state.

The subscription loop replaces the cached state on every report, the command
loop reads it to turn relative commands into absolute deltas. Both go through
one ``asyncio.Lock``; each operation holds it for a single read-modify-write
and never across a bus round-trip.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from light_controller.const import LIGHT_BRIGHTNESS_CEILING, LIGHT_OPTIMISTIC_UPDATES
from light_controller.exceptions import StateNotYetKnown
from light_controller.logging_abstraction import get_logger
from light_controller.structs import (
    Brighten,
    Command,
    DeviceState,
    Dim,
    PowerState,
    SetBrightness,
    StateDelta,
    TurnOff,
    TurnOn,
)

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ApplyPolicy:
    """How ``StateCache.apply`` treats brightness and the cached state.

    Attributes:
        ceiling: Highest brightness a command may produce
        optimistic: Write the new state back immediately so the next command
            composes on it. The cache can drift from the device if the
            publish fails or the device ignores the change, until the next
            report overwrites it. With ``False`` the cache is only ever written
            by device reports, and two relative commands issued faster than the
            device reports back both start from the same brightness.

    """

    ceiling: int = LIGHT_BRIGHTNESS_CEILING
    optimistic: bool = LIGHT_OPTIMISTIC_UPDATES


def compute_delta(
    state: DeviceState | None,
    cmd: Command,
    ceiling: int,
) -> tuple[DeviceState | None, StateDelta]:
    """Compute the delta for ``cmd`` and the state it would leave behind.

    Power and absolute brightness commands do not need a prior state. With no
    prior state the returned state is ``None``: there is no full state to
    write a single field into.

    Raises:
        StateNotYetKnown: For Dim/Brighten when ``state`` is None

    """
    if isinstance(cmd, TurnOn | TurnOff):
        power = PowerState.ON if isinstance(cmd, TurnOn) else PowerState.OFF
        new_state = state.model_copy(update={"power": power}) if state else None
        return new_state, StateDelta(power=power)

    if isinstance(cmd, SetBrightness):
        brightness = min(cmd.value, ceiling)
    elif isinstance(cmd, Dim | Brighten):
        if state is None:
            raise StateNotYetKnown(type(cmd).__name__)
        if isinstance(cmd, Dim):
            brightness = max(state.brightness - cmd.amount, 0)
        else:
            brightness = min(state.brightness + cmd.amount, ceiling)
    else:
        msg = f"not a command: {cmd!r}"
        raise TypeError(msg)

    new_state = state.model_copy(update={"brightness": brightness}) if state else None
    return new_state, StateDelta(brightness=brightness)


class StateCache:
    """Last-known device state, ``None`` until the first report arrives."""

    lp: str = "StateCache:"

    def __init__(self) -> None:
        self._state: DeviceState | None = None
        self._lock: asyncio.Lock = asyncio.Lock()

    async def read(self) -> DeviceState | None:
        """Snapshot of the cached state (DeviceState is immutable)."""
        async with self._lock:
            return self._state

    async def replace(self, new: DeviceState) -> None:
        """Overwrite the cached state wholesale with a fresh device report."""
        async with self._lock:
            previous = self._state
            self._state = new
        logger.debug("%s replaced %s -> %s", self.lp, previous, new)

    async def apply(self, cmd: Command, policy: ApplyPolicy | None = None) -> StateDelta:
        """Turn ``cmd`` into a delta against the cached state.

        Under an optimistic policy the resulting state is written back within
        the same lock acquisition.

        Raises:
            StateNotYetKnown: If ``cmd`` is relative and no report has arrived

        """
        policy = policy or ApplyPolicy()
        async with self._lock:
            new_state, delta = compute_delta(self._state, cmd, policy.ceiling)
            if policy.optimistic and new_state is not None:
                self._state = new_state
        logger.debug(
            "%s applied %s -> %s",
            self.lp,
            cmd,
            delta,
            extra={"optimistic": policy.optimistic, "ceiling": policy.ceiling},
        )
        return delta
