"""Pytest configuration and fixtures for padctrl tests."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Awaitable, Callable, Optional

import pytest

from padctrl import protocol
from padctrl.core import SessionConfig
from padctrl.errors import ServiceNotFound
from padctrl.link import BleLink, ScanFilter
from padctrl.state import DeviceState


class FakeGatt:
    """Stand-in for a connected GATT client."""

    def __init__(self, handle: Any) -> None:
        self.handle = handle
        self.connected = True


class FakeLink(BleLink):
    """In-memory BleLink recording every call."""

    can_list_bonded = True
    can_watch_advertisements = False

    def __init__(self) -> None:
        self.scan_result: Any = "AA:BB:CC:DD:EE:FF"
        self.scan_error: Optional[Exception] = None
        self.connect_errors: list[Exception] = []
        self.always_fail: Optional[Exception] = None
        self.service_error: Optional[Exception] = None
        self.write_error: Optional[Exception] = None
        self.drop_after_connect = False
        self.drop_on_subscribe = 0
        self.bonded: list[Any] = []

        self.connect_calls = 0
        self.disconnect_calls = 0
        self.unsubscribe_calls = 0
        self.writes: list[bytes] = []
        self.gatts: list[FakeGatt] = []
        self.on_value: Optional[Callable[[bytes], None]] = None
        self._callbacks: dict[int, Callable[[], None]] = {}
        self.advertisement_callback: Optional[Callable[[], None]] = None
        self.watch_stopped = False

    async def scan(self, criteria: ScanFilter) -> Any:
        if self.scan_error is not None:
            raise self.scan_error
        return self.scan_result

    async def connect_gatt(self, handle: Any) -> FakeGatt:
        self.connect_calls += 1
        await asyncio.sleep(0)
        if self.always_fail is not None:
            raise self.always_fail
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        gatt = FakeGatt(handle)
        if self.drop_after_connect:
            gatt.connected = False
        self.gatts.append(gatt)
        return gatt

    def is_connected(self, gatt: FakeGatt) -> bool:
        return gatt.connected

    async def get_service(self, gatt: FakeGatt, uuid: str) -> str:
        if self.service_error is not None:
            raise self.service_error
        return uuid

    async def get_characteristic(self, service: Any, uuid: str) -> str:
        return uuid

    async def subscribe_notifications(
        self, characteristic: Any, on_value: Callable[[bytes], None]
    ) -> None:
        self.on_value = on_value
        if self.drop_on_subscribe:
            self.drop_on_subscribe -= 1
            self.drop_link()

    async def unsubscribe_notifications(self, characteristic: Any) -> None:
        self.unsubscribe_calls += 1
        self.on_value = None

    async def write_without_response(self, characteristic: Any, data: bytes) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(bytes(data))

    async def disconnect(self, gatt: FakeGatt) -> None:
        self.disconnect_calls += 1
        self._drop(gatt)

    def on_disconnected(self, gatt: FakeGatt, callback: Callable[[], None]) -> None:
        self._callbacks[id(gatt)] = callback

    async def get_bonded_devices(self) -> list[Any]:
        return list(self.bonded)

    def _drop(self, gatt: FakeGatt) -> None:
        if not gatt.connected:
            return
        gatt.connected = False
        callback = self._callbacks.pop(id(gatt), None)
        if callback is not None:
            callback()

    def drop_link(self) -> None:
        """Simulate the peripheral going away."""
        self._drop(self.gatts[-1])

    def notify(self, data: bytes) -> None:
        assert self.on_value is not None, "not subscribed"
        self.on_value(data)


class WatchingFakeLink(FakeLink):
    """FakeLink that also supports advertisement watching."""

    can_watch_advertisements = True

    async def watch_advertisements(self, handle: Any, callback: Callable[[], None]):
        self.advertisement_callback = callback

        async def stop() -> None:
            self.watch_stopped = True

        return stop

    def advertise(self) -> None:
        assert self.advertisement_callback is not None
        self.advertisement_callback()


def with_tail(frame: bytes) -> bytes:
    """Append checksum and trailer to a frame body."""
    return bytes(frame) + bytes([sum(frame[1:]) & 0xFF, protocol.TRAILER])


def info_frame(
    state: int = 1,
    speed: int = 30,
    mode: int = 1,
    time: int = 0,
    distance: int = 0,
    steps: int = 0,
) -> bytes:
    """Build a 15-byte status notification."""
    return bytes(
        [0xF8, protocol.KIND_INFO, state, speed, mode]
        + list(time.to_bytes(3, "big"))
        + list(distance.to_bytes(3, "big"))
        + list(steps.to_bytes(3, "big"))
        + [0]
    )


def params_frame(
    max_speed: int = 60,
    start_speed: int = 20,
    start_mode: int = 0,
    sensitivity: int = 2,
    unit: int = 0,
) -> bytes:
    """Build a 14-byte params notification."""
    return bytes(
        [0xF8, protocol.KIND_PARAMS, 0, 0, 0, 0, 0]
        + [max_speed, start_speed, start_mode, sensitivity, 0b11111, 0, unit]
    )


def record_frame(duration: int = 120, remaining: int = 0) -> bytes:
    """Build an 18-byte workout record notification."""
    return bytes(
        [0xF8, protocol.KIND_RECORD]
        + list((1000).to_bytes(3, "big"))
        + list((2000).to_bytes(3, "big"))
        + list(duration.to_bytes(3, "big"))
        + list((35).to_bytes(3, "big"))
        + list((400).to_bytes(3, "big"))
        + [remaining]
    )


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or fail the test."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def fake_link() -> FakeLink:
    return FakeLink()


@pytest.fixture
def fast_config() -> SessionConfig:
    """Timings shrunk so state machines run in milliseconds."""
    return SessionConfig(
        send_interval=0.005,
        query_interval=0.02,
        settle_delay=0,
        initial_query_delay=0,
        connect_retries=3,
        retry_backoff=0.001,
        reconnect_delay=0.02,
        max_reconnect_attempts=5,
        persistent_retry_interval=0.02,
    )


@pytest.fixture
def device_state() -> DeviceState:
    return DeviceState()


@pytest.fixture
def not_a_walkingpad() -> ServiceNotFound:
    return ServiceNotFound("Service 0000fe00 not found")


@pytest.fixture
def watching_link() -> WatchingFakeLink:
    return WatchingFakeLink()


@pytest.fixture
def frames() -> SimpleNamespace:
    """Notification frame builders."""
    return SimpleNamespace(
        info=info_frame,
        params=params_frame,
        record=record_frame,
        with_tail=with_tail,
    )


@pytest.fixture(name="wait_for")
def wait_for_fixture() -> Callable[..., Awaitable[None]]:
    return wait_for
