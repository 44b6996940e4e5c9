"""Shared fixtures for unit tests."""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from fakes import FakeBusClient, FakeListener

from light_controller.structs import DeviceState, PowerState


@pytest.fixture
def bus() -> FakeBusClient:
    return FakeBusClient()


@pytest.fixture
def listener() -> FakeListener:
    return FakeListener()


@pytest.fixture
def lamp_state() -> DeviceState:
    """Cached state used by the documented scenarios: OFF, brightness 500, temp 300."""
    return DeviceState(power=PowerState.OFF, brightness=500, color_temperature=300)


@pytest.fixture
def socket_path() -> Generator[Path]:
    """Short socket path; AF_UNIX paths are limited to ~100 bytes."""
    directory = Path(tempfile.mkdtemp(prefix="lc-"))
    yield directory / "lights.sock"
    shutil.rmtree(directory, ignore_errors=True)
