"""WalkingPad wire protocol: command frames and notification parsing.

Outbound frame layout::

    byte form:  F7 A2 <kind> <value>                     <checksum> FD
    int form:   F7 A6 <kind> 00 <b2> <b1> <b0>           <checksum> FD
    sync:       F7 A7 AA <n>                             <checksum> FD

The checksum is the low byte of the sum of every byte between the header and
the checksum. Inbound notifications carry the message kind at offset 1 and
big-endian 3-byte counters. Parsing never raises: anything that cannot be
classified comes back as an ``UnknownEvent`` holding the raw bytes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .models import (
    BeltState,
    DeviceParameters,
    DeviceStatus,
    Mode,
    WorkoutRecord,
)

HEADER = 0xF7
TRAILER = 0xFD

KIND_INFO = 0xA2
KIND_PARAMS = 0xA6
KIND_RECORD = 0xA7
SYNC_RECORD_MARKER = 0xAA

INFO_MIN_LENGTH = 15
PARAMS_MIN_LENGTH = 14
RECORD_MIN_LENGTH = 18

# Command kinds (byte form)
CMD_QUERY = 0
CMD_SET_SPEED = 1
CMD_SET_MODE = 2
CMD_START = 4

# Command kinds (int form)
CMD_QUERY_PARAMS = 0
CMD_SET_CALIBRATION = 2
CMD_SET_MAX_SPEED = 3
CMD_SET_START_SPEED = 4
CMD_SET_AUTO_START = 5
CMD_SET_SENSITIVITY = 6
CMD_SET_DISPLAY_INFO = 7
CMD_SET_UNIT = 8
CMD_SET_LOCK = 9


@dataclass(frozen=True)
class InfoEvent:
    status: DeviceStatus


@dataclass(frozen=True)
class ParamsEvent:
    params: DeviceParameters


@dataclass(frozen=True)
class RecordEvent:
    record: WorkoutRecord


@dataclass(frozen=True)
class UnknownEvent:
    raw: bytes

    def __repr__(self) -> str:
        return f"UnknownEvent(raw={self.raw.hex(' ') or '(empty)'})"


ParsedEvent = Union[InfoEvent, ParamsEvent, RecordEvent, UnknownEvent]


def _check_byte(name: str, value: int) -> int:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} must fit in one byte, got {value}")
    return value


def frame_checksum(frame: bytes) -> int:
    """Checksum over the bytes between header and checksum slot."""
    return sum(frame[1:-2]) & 0xFF


def verify_frame(frame: bytes) -> bool:
    """Return True if ``frame`` ends with a valid checksum and trailer."""
    if len(frame) < 4 or frame[-1] != TRAILER:
        return False
    return frame[-2] == frame_checksum(frame)


def encode_byte_command(kind: int, value: int) -> bytes:
    """Build a 6-byte command carrying a single-byte value."""
    _check_byte("kind", kind)
    _check_byte("value", value)
    checksum = (KIND_INFO + kind + value) & 0xFF
    return bytes([HEADER, KIND_INFO, kind, value, checksum, TRAILER])


def encode_int_command(kind: int, value: int) -> bytes:
    """Build a 9-byte command carrying a 3-byte big-endian value."""
    _check_byte("kind", kind)
    value &= 0xFFFFFF
    frame = bytearray(
        [
            HEADER,
            KIND_PARAMS,
            kind,
            0,
            (value >> 16) & 0xFF,
            (value >> 8) & 0xFF,
            value & 0xFF,
            0,
            TRAILER,
        ]
    )
    frame[7] = sum(frame[1:7]) & 0xFF
    return bytes(frame)


def encode_sync_record(n: int = 0xFF) -> bytes:
    """Build a request for stored workout record ``n`` (255 = latest)."""
    _check_byte("n", n)
    checksum = (KIND_RECORD + SYNC_RECORD_MARKER + n) & 0xFF
    return bytes([HEADER, KIND_RECORD, SYNC_RECORD_MARKER, n, checksum, TRAILER])


# Named commands


def query() -> bytes:
    return encode_byte_command(CMD_QUERY, 0)


def query_params() -> bytes:
    return encode_int_command(CMD_QUERY_PARAMS, 0)


def set_speed(speed: int) -> bytes:
    return encode_byte_command(CMD_SET_SPEED, speed)


def set_mode(mode: int) -> bytes:
    return encode_byte_command(CMD_SET_MODE, mode)


def start_belt() -> bytes:
    return encode_byte_command(CMD_START, 1)


def set_calibration(enable: bool) -> bytes:
    return encode_int_command(CMD_SET_CALIBRATION, int(enable))


def set_max_speed(speed: int) -> bytes:
    return encode_int_command(CMD_SET_MAX_SPEED, speed)


def set_start_speed(speed: int) -> bytes:
    return encode_int_command(CMD_SET_START_SPEED, speed)


def set_auto_start(enable: bool) -> bytes:
    return encode_int_command(CMD_SET_AUTO_START, int(enable))


def set_sensitivity(sensitivity: int) -> bytes:
    return encode_int_command(CMD_SET_SENSITIVITY, sensitivity)


def set_display_info(flags: int) -> bytes:
    return encode_int_command(CMD_SET_DISPLAY_INFO, flags)


def set_unit(unit: int) -> bytes:
    return encode_int_command(CMD_SET_UNIT, unit)


def set_lock(enable: bool) -> bytes:
    return encode_int_command(CMD_SET_LOCK, int(enable))


def sync_record(n: int = 0xFF) -> bytes:
    return encode_sync_record(n)


# Parsing


def _u24(data: bytes, offset: int) -> int:
    return (data[offset] << 16) | (data[offset + 1] << 8) | data[offset + 2]


def _has_valid_tail(data: bytes, min_length: int) -> bool:
    # Frames too short to carry checksum and trailer past the payload are
    # accepted on length alone.
    if len(data) < min_length + 2:
        return True
    return verify_frame(data)


def decode(data: bytes) -> ParsedEvent:
    """Classify a notification payload.

    Args:
        data: Raw notification bytes

    Returns:
        InfoEvent, ParamsEvent or RecordEvent; UnknownEvent for anything
        that is too short, of an unknown kind or fails tail validation
    """
    raw = bytes(data)
    if len(raw) < 2:
        return UnknownEvent(raw)

    kind = raw[1]

    if kind == KIND_INFO and len(raw) >= INFO_MIN_LENGTH:
        if not _has_valid_tail(raw, INFO_MIN_LENGTH):
            return UnknownEvent(raw)
        return InfoEvent(
            DeviceStatus(
                state=raw[2],
                speed=raw[3],
                mode=raw[4],
                time=_u24(raw, 5),
                distance=_u24(raw, 8),
                steps=_u24(raw, 11),
            )
        )

    if kind == KIND_PARAMS and len(raw) >= PARAMS_MIN_LENGTH:
        if not _has_valid_tail(raw, PARAMS_MIN_LENGTH):
            return UnknownEvent(raw)
        return ParamsEvent(
            DeviceParameters(
                goal_type=raw[2],
                goal=_u24(raw, 3),
                regulate=raw[6],
                max_speed=raw[7],
                start_speed=raw[8],
                start_mode=raw[9],
                sensitivity=raw[10],
                display=raw[11],
                lock=raw[12],
                unit=raw[13],
            )
        )

    if kind == KIND_RECORD and len(raw) >= RECORD_MIN_LENGTH:
        if not _has_valid_tail(raw, RECORD_MIN_LENGTH):
            return UnknownEvent(raw)
        return RecordEvent(
            WorkoutRecord(
                on_time=_u24(raw, 2),
                start_time=_u24(raw, 5),
                duration=_u24(raw, 8),
                distance=_u24(raw, 11),
                steps=_u24(raw, 14),
                remaining=raw[17],
            )
        )

    return UnknownEvent(raw)


# Formatting helpers


def format_time(seconds: int) -> str:
    """Format seconds as M:SS, or H:MM:SS from one hour on."""
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_distance(distance_10m: int) -> str:
    """Format a distance in 10 m units as kilometres."""
    return f"{distance_10m / 100:.2f}"


def format_speed(speed_10: int) -> str:
    """Format a speed in 0.1 km/h units."""
    return f"{speed_10 / 10:.1f}"


def mode_name(mode: int) -> str:
    try:
        return Mode(mode).name.capitalize()
    except ValueError:
        return "Unknown"


def state_name(state: int) -> str:
    try:
        return BeltState(state).name.capitalize()
    except ValueError:
        return "Unknown"
