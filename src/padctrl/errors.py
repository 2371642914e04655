"""Error types for WalkingPad link and session failures."""

from __future__ import annotations


class PadError(Exception):
    """Base error for WalkingPad control failures."""


class UnsupportedTransport(PadError):
    """No usable Bluetooth LE capability on this host."""


class UserCancelledSelection(PadError):
    """Device selection produced no device."""


class ServiceNotFound(PadError):
    """Peripheral lacks the WalkingPad service; not a WalkingPad."""


class LinkUnstable(PadError):
    """Transient GATT-level failure while connecting or resolving."""


class ReconnectExhausted(PadError):
    """All automatic reconnection attempts failed."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Failed to reconnect after {attempts} attempts")
        self.attempts = attempts


class MalformedFrame(PadError):
    """A notification could not be classified."""

    def __init__(self, raw: bytes) -> None:
        super().__init__(f"Malformed frame: {raw.hex(' ') or '(empty)'}")
        self.raw = raw


class WriteFailed(PadError):
    """A single outbound command could not be sent."""
