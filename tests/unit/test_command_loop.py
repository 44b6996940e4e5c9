"""
Unit tests for command_loop module.

Connections come from the fake listener, publishes land on the fake bus.
"""

import json

import aiomqtt
import pytest
from fakes import TOPIC

from light_controller.codec import encode_command
from light_controller.command_loop import CommandLoop
from light_controller.exceptions import (
    ConnectionLost,
    MalformedCommand,
    OperationTimeout,
    PublishFailed,
    StateNotYetKnown,
)
from light_controller.state_cache import ApplyPolicy, StateCache
from light_controller.structs import Brighten, Dim, PowerState, SetBrightness, StateDelta, TurnOff, TurnOn

SET_TOPIC = f"{TOPIC}/set"
OPTIMISTIC = ApplyPolicy(ceiling=1000, optimistic=True)


def make_loop(bus, listener, cache=None, **kwargs) -> CommandLoop:
    kwargs.setdefault("policy", OPTIMISTIC)
    return CommandLoop(bus, cache or StateCache(), listener, TOPIC, **kwargs)


def published_documents(bus) -> list[dict]:
    return [json.loads(payload) for _, payload, _ in bus.published]


class TestPublishDelta:
    """Tests for CommandLoop.publish_delta"""

    @pytest.mark.asyncio
    async def test_publishes_to_set_topic(self, bus, listener):
        loop = make_loop(bus, listener, publish_qos=1)

        await loop.publish_delta(StateDelta(brightness=10))

        assert bus.published == [(SET_TOPIC, b'{"brightness":10}', 1)]

    @pytest.mark.asyncio
    async def test_mqtt_error_becomes_publish_failed(self, bus, listener):
        bus.publish_error = aiomqtt.MqttError("Could not publish message")
        loop = make_loop(bus, listener)

        with pytest.raises(PublishFailed) as exc_info:
            await loop.publish_delta(StateDelta(power=PowerState.ON))
        assert exc_info.value.topic == SET_TOPIC

    @pytest.mark.asyncio
    async def test_publish_timeout(self, bus, listener):
        bus.publish_delay = 1
        loop = make_loop(bus, listener, publish_timeout=0.05)

        with pytest.raises(OperationTimeout) as exc_info:
            await loop.publish_delta(StateDelta(power=PowerState.ON))
        assert exc_info.value.operation == "publish"


class TestHandleConnection:
    """Tests for CommandLoop.handle_connection"""

    @pytest.mark.asyncio
    async def test_brighten_scenario(self, bus, listener, lamp_state):
        """Cached {OFF, 500, 300} + Brighten(700) publishes {"brightness": 1000}."""
        cache = StateCache()
        await cache.replace(lamp_state)
        loop = make_loop(bus, listener, cache=cache)
        writer = listener.push(encode_command(Brighten(700)))

        delta = await loop.handle_connection(*(await listener.accept()))

        assert delta == StateDelta(brightness=1000)
        assert published_documents(bus) == [{"brightness": 1000}]
        writer.close.assert_called_once()
        writer.wait_closed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_turn_on_without_report(self, bus, listener):
        loop = make_loop(bus, listener)
        _ = listener.push(encode_command(TurnOn()))

        _ = await loop.handle_connection(*(await listener.accept()))

        assert published_documents(bus) == [{"state": "ON"}]

    @pytest.mark.asyncio
    async def test_dim_without_report(self, bus, listener):
        loop = make_loop(bus, listener)
        _ = listener.push(encode_command(Dim(10)))

        with pytest.raises(StateNotYetKnown):
            _ = await loop.handle_connection(*(await listener.accept()))
        assert bus.published == []

    @pytest.mark.asyncio
    async def test_trailing_byte(self, bus, listener):
        loop = make_loop(bus, listener)
        writer = listener.push(encode_command(TurnOff()) + b"\x00")

        with pytest.raises(MalformedCommand) as exc_info:
            _ = await loop.handle_connection(*(await listener.accept()))
        assert exc_info.value.reason == "trailing_bytes"
        writer.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_oversized_payload(self, bus, listener):
        loop = make_loop(bus, listener)
        _ = listener.push(b"\x04" * 64)

        with pytest.raises(MalformedCommand) as exc_info:
            _ = await loop.handle_connection(*(await listener.accept()))
        assert exc_info.value.reason == "trailing_bytes"

    @pytest.mark.asyncio
    async def test_empty_payload(self, bus, listener):
        loop = make_loop(bus, listener)
        _ = listener.push(b"")

        with pytest.raises(MalformedCommand) as exc_info:
            _ = await loop.handle_connection(*(await listener.accept()))
        assert exc_info.value.reason == "too_short"

    @pytest.mark.asyncio
    async def test_client_reset_mid_read(self, bus, listener):
        loop = make_loop(bus, listener)
        _ = listener.push(b"\x02\x00", eof=False)
        reader, writer = await listener.accept()
        reader.set_exception(ConnectionResetError("Connection reset by peer"))

        with pytest.raises(ConnectionLost) as exc_info:
            _ = await loop.handle_connection(reader, writer)
        assert isinstance(exc_info.value.__cause__, ConnectionResetError)
        writer.close.assert_called_once()
        assert bus.published == []

    @pytest.mark.asyncio
    async def test_close_error_does_not_drop_command(self, bus, listener):
        loop = make_loop(bus, listener)
        writer = listener.push(encode_command(TurnOn()))
        writer.wait_closed.side_effect = BrokenPipeError()

        delta = await loop.handle_connection(*(await listener.accept()))

        assert delta == StateDelta(power=PowerState.ON)
        assert published_documents(bus) == [{"state": "ON"}]

    @pytest.mark.asyncio
    async def test_client_that_never_closes(self, bus, listener):
        loop = make_loop(bus, listener, read_timeout=0.05)
        writer = listener.push(encode_command(TurnOn()), eof=False)

        with pytest.raises(OperationTimeout) as exc_info:
            _ = await loop.handle_connection(*(await listener.accept()))
        assert exc_info.value.operation == "client_read"
        writer.close.assert_called_once()
        assert bus.published == []


class TestRun:
    """Tests for CommandLoop.run"""

    @pytest.mark.asyncio
    async def test_commands_handled_in_order(self, bus, listener, lamp_state):
        cache = StateCache()
        await cache.replace(lamp_state)
        loop = make_loop(bus, listener, cache=cache)
        for cmd in (TurnOn(), Dim(100), Dim(100), SetBrightness(5000), TurnOff()):
            _ = listener.push(encode_command(cmd))
        listener.close_listener()

        with pytest.raises(ConnectionLost):
            await loop.run()

        assert published_documents(bus) == [
            {"state": "ON"},
            {"brightness": 400},
            {"brightness": 300},
            {"brightness": 1000},
            {"state": "OFF"},
        ]
        assert loop.handled == 5
        assert all(topic == SET_TOPIC for topic, _, _ in bus.published)

    @pytest.mark.asyncio
    async def test_report_driven_variant(self, bus, listener, lamp_state):
        cache = StateCache()
        await cache.replace(lamp_state)
        loop = make_loop(bus, listener, cache=cache, policy=ApplyPolicy(ceiling=1000, optimistic=False))
        for _ in range(2):
            _ = listener.push(encode_command(Dim(100)))
        listener.close_listener()

        with pytest.raises(ConnectionLost):
            await loop.run()

        assert published_documents(bus) == [{"brightness": 400}, {"brightness": 400}]

    @pytest.mark.asyncio
    async def test_malformed_command_stops_loop(self, bus, listener):
        loop = make_loop(bus, listener)
        _ = listener.push(encode_command(TurnOn()))
        _ = listener.push(b"\x09\x00\x00\x00")
        _ = listener.push(encode_command(TurnOff()))

        with pytest.raises(MalformedCommand) as exc_info:
            await loop.run()
        assert exc_info.value.reason == "unknown_variant"
        assert published_documents(bus) == [{"state": "ON"}]

    @pytest.mark.asyncio
    async def test_publish_failure_stops_loop(self, bus, listener):
        bus.publish_error = aiomqtt.MqttError("Disconnected")
        loop = make_loop(bus, listener)
        _ = listener.push(encode_command(TurnOn()))

        with pytest.raises(PublishFailed):
            await loop.run()
        assert loop.handled == 0

    @pytest.mark.asyncio
    async def test_client_reset_stops_loop(self, bus, listener):
        loop = make_loop(bus, listener)
        _ = listener.push(encode_command(TurnOn()))
        _ = listener.push(b"", eof=False)
        listener.readers[-1].set_exception(ConnectionResetError("Connection reset by peer"))

        with pytest.raises(ConnectionLost) as exc_info:
            await loop.run()
        assert "client read failed" in str(exc_info.value)
        assert loop.handled == 1
