"""Exception hierarchy for the light controller.

Every failure inside the subscription or command loop is fatal to that loop
and is raised as one of these types, so the supervisor and tests can tell the
causes apart. Once an error escapes a loop, the supervisor records the loop
name on ``loop``.
"""

from __future__ import annotations


class LightControlError(Exception):
    """Base exception for all light controller errors.

    Attributes:
        reason: Short machine-friendly cause (e.g. "too_short", "unknown_variant")
        loop: Name of the loop the error terminated, set by the supervisor

    """

    def __init__(self, message: str, reason: str = "") -> None:
        self.reason: str = reason
        self.loop: str | None = None
        super().__init__(message)


class MalformedCommand(LightControlError):
    """A local client payload is not a valid command encoding.

    Attributes:
        data_preview: First 16 bytes of the offending payload

    """

    def __init__(self, reason: str, data: bytes = b"") -> None:
        self.data_preview: bytes = data[:16]
        super().__init__(f"Malformed command: {reason}", reason)


class MalformedState(LightControlError):
    """A device report (or delta document) does not match the expected schema."""

    def __init__(self, reason: str, payload: bytes | str = b"") -> None:
        self.payload_preview: bytes | str = payload[:64]
        super().__init__(f"Malformed device state: {reason}", reason)


class StateNotYetKnown(LightControlError):
    """A relative command arrived before the device reported any state.

    Attributes:
        command: Name of the command that needed prior state

    """

    def __init__(self, command: str) -> None:
        self.command: str = command
        super().__init__(
            f"Cannot apply {command}: device has not reported its state yet",
            "state_not_known",
        )


class PublishFailed(LightControlError):
    """Publishing a delta to the bus failed."""

    def __init__(self, topic: str, reason: str) -> None:
        self.topic: str = topic
        super().__init__(f"Publish to {topic} failed: {reason}", reason)


class SubscriptionEnded(LightControlError):
    """The bus stopped delivering messages without an error."""

    def __init__(self, topic: str) -> None:
        self.topic: str = topic
        super().__init__(f"Subscription to {topic} ended", "end_of_stream")


class ConnectionLost(LightControlError):
    """The bus connection, the local listener or a client connection went away."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Connection lost: {reason}", reason)


class OperationTimeout(LightControlError):
    """A client read or a bus round-trip exceeded its configured timeout.

    Attributes:
        operation: What timed out ("client_read", "publish")
        timeout_seconds: The limit that was exceeded

    """

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        self.operation: str = operation
        self.timeout_seconds: float = timeout_seconds
        super().__init__(f"{operation} timed out after {timeout_seconds}s", "timeout")


class StartupError(LightControlError):
    """A startup collaborator failed (socket cleanup/bind, broker connect, subscribe)."""

    def __init__(self, step: str, reason: str) -> None:
        self.step: str = step
        super().__init__(f"Startup failed at {step}: {reason}", reason)
