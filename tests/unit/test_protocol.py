"""Frame encoding and notification parsing tests."""

import pytest

from padctrl import protocol
from padctrl.models import BeltState, Mode
from padctrl.protocol import (
    InfoEvent,
    ParamsEvent,
    RecordEvent,
    UnknownEvent,
    decode,
    encode_byte_command,
    encode_int_command,
    encode_sync_record,
)


def test_set_mode_manual_literal():
    assert encode_byte_command(2, 1) == bytes([0xF7, 0xA2, 0x02, 0x01, 0xA5, 0xFD])


def test_int_command_checksum_follows_formula():
    frame = encode_int_command(3, 60)
    assert frame[:7] == bytes([0xF7, 0xA6, 0x03, 0x00, 0x00, 0x00, 0x3C])
    assert frame[7] == (0xA6 + 0x03 + 0x3C) & 0xFF == 0xE5
    assert frame[8] == 0xFD
    assert len(frame) == 9


def test_int_command_big_endian_value():
    frame = encode_int_command(7, 0x123456)
    assert frame[4:7] == bytes([0x12, 0x34, 0x56])
    assert protocol.verify_frame(frame)


def test_int_command_masks_value_to_24_bits():
    assert encode_int_command(4, 0x1000005)[4:7] == bytes([0, 0, 5])


def test_sync_record_frame():
    frame = encode_sync_record(0xFF)
    assert frame == bytes([0xF7, 0xA7, 0xAA, 0xFF, (0xA7 + 0xAA + 0xFF) & 0xFF, 0xFD])


@pytest.mark.parametrize(
    "frame",
    [
        protocol.query(),
        protocol.query_params(),
        protocol.set_speed(35),
        protocol.set_mode(Mode.SLEEP),
        protocol.start_belt(),
        protocol.set_calibration(True),
        protocol.set_max_speed(60),
        protocol.set_start_speed(20),
        protocol.set_auto_start(False),
        protocol.set_sensitivity(3),
        protocol.set_display_info(0b10101),
        protocol.set_unit(1),
        protocol.set_lock(True),
        protocol.sync_record(3),
    ],
)
def test_named_commands_are_valid_frames(frame):
    assert frame[0] == protocol.HEADER
    assert protocol.verify_frame(frame)


def test_named_command_kinds():
    assert protocol.query() == bytes([0xF7, 0xA2, 0, 0, 0xA2, 0xFD])
    assert protocol.start_belt()[2:4] == bytes([4, 1])
    assert protocol.set_speed(35)[2:4] == bytes([1, 35])
    assert protocol.set_lock(True)[2] == 9
    assert protocol.set_unit(1)[2] == 8


@pytest.mark.parametrize("value", [-1, 256])
def test_byte_command_rejects_out_of_range(value):
    with pytest.raises(ValueError):
        encode_byte_command(1, value)


def test_decode_info(frames):
    event = decode(frames.info(state=1, speed=35, mode=1, time=125, distance=124, steps=156))
    assert isinstance(event, InfoEvent)
    status = event.status
    assert status.state == BeltState.RUNNING
    assert status.speed == 35
    assert status.mode == Mode.MANUAL
    assert status.time == 125
    assert status.distance == 124
    assert status.steps == 156
    assert status.is_running


@pytest.mark.parametrize("distance", [0, 1, 255, 256, 65535, 65536, 0xFFFFFF])
def test_decode_info_distance_field(frames, distance):
    event = decode(frames.info(distance=distance))
    assert event.status.distance == distance


def test_decode_starting_counts_as_running(frames):
    assert decode(frames.info(state=5)).status.is_running
    assert not decode(frames.info(state=2)).status.is_running


def test_decode_params(frames):
    event = decode(frames.params(max_speed=80, start_speed=15, start_mode=1, sensitivity=3, unit=1))
    assert isinstance(event, ParamsEvent)
    assert event.params.max_speed == 80
    assert event.params.start_speed == 15
    assert event.params.auto_start
    assert event.params.sensitivity == 3
    assert event.params.unit == 1
    assert event.params.display == 0b11111


def test_decode_record(frames):
    event = decode(frames.record(duration=600, remaining=2))
    assert isinstance(event, RecordEvent)
    assert event.record.duration == 600
    assert event.record.distance == 35
    assert event.record.steps == 400
    assert event.record.remaining == 2


@pytest.mark.parametrize(
    "raw",
    [
        b"",
        b"\xf8",
        bytes([0xF8, 0xA2, 1, 2, 3]),
        bytes([0xF8, 0xA6] + [0] * 11),
        bytes([0xF8, 0xA7] + [0] * 15),
        bytes([0xF8, 0x99] + [0] * 20),
    ],
)
def test_decode_short_or_unknown_is_unknown(raw):
    event = decode(raw)
    assert isinstance(event, UnknownEvent)
    assert event.raw == raw


def test_decode_accepts_valid_tail(frames):
    assert isinstance(decode(frames.with_tail(frames.info())), InfoEvent)


def test_decode_rejects_bad_checksum(frames):
    frame = bytearray(frames.with_tail(frames.info(speed=40)))
    frame[-2] ^= 0xFF
    assert isinstance(decode(bytes(frame)), UnknownEvent)


def test_decode_rejects_bad_trailer(frames):
    frame = bytearray(frames.with_tail(frames.params()))
    frame[-1] = 0x00
    assert isinstance(decode(bytes(frame)), UnknownEvent)


def test_unknown_event_repr_shows_hex():
    assert "f8 99" in repr(UnknownEvent(b"\xf8\x99"))


@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "0:00"), (65, "1:05"), (3599, "59:59"), (3600, "1:00:00"), (3725, "1:02:05")],
)
def test_format_time(seconds, expected):
    assert protocol.format_time(seconds) == expected


def test_format_distance_and_speed():
    assert protocol.format_distance(124) == "1.24"
    assert protocol.format_distance(5) == "0.05"
    assert protocol.format_speed(35) == "3.5"


def test_code_names():
    assert protocol.mode_name(0) == "Auto"
    assert protocol.mode_name(9) == "Unknown"
    assert protocol.state_name(5) == "Starting"
    assert protocol.state_name(3) == "Unknown"
