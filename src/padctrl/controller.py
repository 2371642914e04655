"""
Async facade for WalkingPad control.

This module wires the BLE link, the reconnect supervisor and the observable
device state together, and exposes the fire-and-forget command entry points
used by the REPL and one-shot CLI.
"""

import asyncio
import logging
from typing import Any, AsyncGenerator, Callable, Optional

from . import protocol
from .core import (
    MAX_SPEED_LIMIT,
    SPEED_MAX,
    SPEED_MIN,
    START_SPEED_MIN,
    SessionConfig,
)
from .errors import PadError
from .link import BleakLink, BleLink, ScanFilter
from .models import (
    DeviceParameters,
    DeviceStatus,
    Mode,
    Sensitivity,
    SessionState,
    Unit,
    WorkoutRecord,
)
from .state import DeviceState, Snapshot
from .supervisor import ReconnectSupervisor

logger = logging.getLogger(__name__)


class TreadmillController:
    """Manages connection and control of a WalkingPad treadmill."""

    SPEED_MIN = SPEED_MIN
    SPEED_MAX = SPEED_MAX

    def __init__(
        self,
        link: Optional[BleLink] = None,
        config: Optional[SessionConfig] = None,
        auto_reconnect: bool = True,
    ) -> None:
        """Initialize controller with no device connection.

        Args:
            link: Bluetooth LE link (a BleakLink if None)
            config: Timing and retry settings
            auto_reconnect: Reconnect automatically after link loss
        """
        self.link = link or BleakLink()
        self.state = DeviceState()
        self.supervisor = ReconnectSupervisor(
            self.link, self.state, config, auto_reconnect=auto_reconnect
        )
        self.supervisor.on_disconnect = self._on_device_disconnect
        self._update_queue: asyncio.Queue = asyncio.Queue(maxsize=10)
        self._is_running = True

        # Callbacks
        self._on_update: Optional[Callable[[Snapshot], None]] = None
        self._on_disconnect: Optional[Callable[[], None]] = None
        self.state.subscribe(self._on_state_change)

    @property
    def is_connected(self) -> bool:
        return self.supervisor.is_connected

    @property
    def session_state(self) -> SessionState:
        return self.state.session_state

    @property
    def status(self) -> DeviceStatus:
        return self.state.status

    @property
    def params(self) -> DeviceParameters:
        return self.state.params

    @property
    def records(self) -> list[WorkoutRecord]:
        return list(self.state.records)

    @property
    def last_error(self) -> Optional[PadError]:
        return self.state.last_error

    @property
    def device_name(self) -> str:
        return self.state.device_name

    @property
    def auto_reconnect(self) -> bool:
        return self.supervisor.auto_reconnect

    def snapshot(self) -> Snapshot:
        return self.state.snapshot()

    def set_on_update(self, callback: Callable[[Snapshot], None]) -> None:
        """Set callback for state changes.

        Args:
            callback: Function called with a Snapshot on every change
        """
        self._on_update = callback

    def set_on_disconnect(self, callback: Callable[[], None]) -> None:
        """Set callback for unsolicited link loss.

        Args:
            callback: Function called when the device drops
        """
        self._on_disconnect = callback

    # ========== Connection ==========

    async def _select(self, criteria: ScanFilter, address: Optional[str]) -> Any:
        if address:
            return address
        return await self.link.scan(criteria)

    async def connect(self, address: Optional[str] = None) -> bool:
        """Connect to a WalkingPad.

        Scans for known WalkingPad names unless an address is given.

        Returns:
            True if connected successfully, False otherwise
        """
        if self.is_connected:
            logger.warning("Already connected")
            return True
        return await self._connect(ScanFilter(), address)

    async def connect_any(self, address: Optional[str] = None) -> bool:
        """Connect to any nearby device, preferring ones advertising the service."""
        if self.is_connected:
            logger.warning("Already connected")
            return True
        return await self._connect(ScanFilter(accept_all=True), address)

    async def _connect(self, criteria: ScanFilter, address: Optional[str]) -> bool:
        try:
            handle = await self._select(criteria, address)
        except PadError as e:
            logger.error(f"Device selection failed: {e}")
            self.supervisor.report_error(e)
            return False
        return await self.supervisor.connect(handle)

    async def disconnect(self) -> None:
        """Disconnect from device."""
        await self.supervisor.disconnect()

    def cancel_reconnect(self) -> None:
        self.supervisor.cancel_reconnect()

    def set_auto_reconnect(self, enabled: bool) -> None:
        self.supervisor.set_auto_reconnect(enabled)

    async def start_persistent_reconnect(self) -> bool:
        return await self.supervisor.start_persistent_reconnect()

    async def shutdown(self) -> None:
        self._is_running = False
        await self.supervisor.shutdown()

    # ========== Commands ==========

    def _send(self, name: str, frame: bytes) -> bool:
        if not self.supervisor.send(frame):
            logger.error(f"{name} not sent: not connected")
            return False
        logger.debug(f"Queued {name}")
        return True

    @staticmethod
    def _in_range(name: str, value: int, low: int, high: int) -> bool:
        if low <= value <= high:
            return True
        logger.error(f"{name} {value} out of range [{low}, {high}]")
        return False

    def set_speed(self, speed: int) -> bool:
        """Set belt speed.

        Args:
            speed: Speed in 0.1 km/h units

        Returns:
            True if the command was queued
        """
        if not self._in_range("Speed", speed, self.SPEED_MIN, self.SPEED_MAX):
            return False
        return self._send("set_speed", protocol.set_speed(speed))

    def set_mode(self, mode: int) -> bool:
        try:
            mode = Mode(mode)
        except ValueError:
            logger.error(f"Invalid mode: {mode}")
            return False
        return self._send("set_mode", protocol.set_mode(mode))

    def start(self) -> bool:
        """Start the belt, leaving sleep mode first if needed."""
        if not self.is_connected:
            logger.error("Not connected")
            return False
        if self.status.mode == Mode.SLEEP:
            self._send("set_mode", protocol.set_mode(Mode.MANUAL))
        return self._send("start", protocol.start_belt())

    def stop(self) -> bool:
        """Stop the belt by switching to sleep mode."""
        return self._send("stop", protocol.set_mode(Mode.SLEEP))

    def set_start_speed(self, speed: int) -> bool:
        if not self._in_range("Start speed", speed, START_SPEED_MIN, self.SPEED_MAX):
            return False
        return self._send("set_start_speed", protocol.set_start_speed(speed))

    def set_max_speed(self, speed: int) -> bool:
        if not self._in_range("Max speed", speed, START_SPEED_MIN, MAX_SPEED_LIMIT):
            return False
        return self._send("set_max_speed", protocol.set_max_speed(speed))

    def set_sensitivity(self, sensitivity: int) -> bool:
        try:
            sensitivity = Sensitivity(sensitivity)
        except ValueError:
            logger.error(f"Invalid sensitivity: {sensitivity}")
            return False
        return self._send("set_sensitivity", protocol.set_sensitivity(sensitivity))

    def set_auto_start(self, enabled: bool) -> bool:
        return self._send("set_auto_start", protocol.set_auto_start(enabled))

    def set_unit(self, unit: int) -> bool:
        try:
            unit = Unit(unit)
        except ValueError:
            logger.error(f"Invalid unit: {unit}")
            return False
        return self._send("set_unit", protocol.set_unit(unit))

    def set_lock(self, enabled: bool) -> bool:
        return self._send("set_lock", protocol.set_lock(enabled))

    def set_display_info(self, flags: int) -> bool:
        if not self._in_range("Display flags", flags, 0, 0b11111):
            return False
        return self._send("set_display_info", protocol.set_display_info(flags))

    def set_calibration(self, enabled: bool) -> bool:
        return self._send("set_calibration", protocol.set_calibration(enabled))

    def sync_records(self, n: int = 0xFF) -> bool:
        """Ask the device for stored workout record ``n`` (255 = latest)."""
        if not self._in_range("Record index", n, 0, 0xFF):
            return False
        return self._send("sync_records", protocol.sync_record(n))

    # ========== Updates ==========

    def get_status(self) -> dict:
        """Get current values without waiting for an update."""
        return self.snapshot().to_dict()

    def _on_state_change(self, snapshot: Snapshot) -> None:
        if self._is_running:
            try:
                self._update_queue.put_nowait(snapshot)
            except asyncio.QueueFull:
                # Drop if backed up - live display can skip a frame
                pass
        if self._on_update:
            try:
                self._on_update(snapshot)
            except Exception as e:
                logger.error(f"Update callback error: {e}")

    def _on_device_disconnect(self) -> None:
        logger.warning("Device disconnected")
        if self._on_disconnect:
            try:
                self._on_disconnect()
            except Exception as e:
                logger.error(f"Disconnect callback error: {e}")

    async def get_updates(self) -> AsyncGenerator[Snapshot, None]:
        """Async generator that yields snapshots as the state changes."""
        while self._is_running:
            try:
                snapshot = await asyncio.wait_for(self._update_queue.get(), timeout=0.5)
                yield snapshot
            except asyncio.TimeoutError:
                # Continue - device may be idle
                continue
