"""
One live connection to one WalkingPad.

A session acquires the GATT link, resolves the WalkingPad service, then runs
the command drain and status poll timers until it is closed or the link
drops. Transient failures while acquiring or resolving are retried a few
times with linear backoff; everything else is raised to the owner.
"""

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Optional

from . import protocol
from .command_queue import CommandQueue
from .core import NOTIFY_CHAR_UUID, SERVICE_UUID, WRITE_CHAR_UUID, SessionConfig
from .errors import LinkUnstable, MalformedFrame, PadError, ServiceNotFound, WriteFailed
from .link import BleLink, handle_name
from .poller import StatusPoller
from .scheduler import PeriodicTask
from .state import DeviceState

logger = logging.getLogger(__name__)

TRANSIENT_MARKERS = ("disconnected", "gatt", "connection lost", "not connected")
MAX_DISCARDED_FRAMES = 16


class SessionPhase(Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    RESOLVING = "resolving"
    ACTIVE = "active"
    CLOSED = "closed"


def is_transient(error: BaseException) -> bool:
    """Whether a connect/resolve failure is worth retrying."""
    if isinstance(error, LinkUnstable):
        return True
    if isinstance(error, PadError):
        return False
    if isinstance(error, asyncio.TimeoutError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def _as_pad_error(error: Exception) -> PadError:
    if isinstance(error, PadError):
        return error
    if is_transient(error):
        return LinkUnstable(str(error) or type(error).__name__)
    return PadError(str(error) or type(error).__name__)


class ConnectionSession:
    """Owns the GATT link, command queue and poller for one peripheral."""

    def __init__(
        self,
        link: BleLink,
        handle: Any,
        state: DeviceState,
        config: Optional[SessionConfig] = None,
        on_link_lost: Optional[Callable[["ConnectionSession"], None]] = None,
    ) -> None:
        self.link = link
        self.handle = handle
        self.config = config or SessionConfig()
        self._state = state
        self._on_link_lost = on_link_lost

        self.queue = CommandQueue(coalesce=self.config.coalesce_commands)
        self.poller = StatusPoller(self.queue, self.config.query_interval)
        self._drain: Optional[PeriodicTask] = None

        self.phase = SessionPhase.IDLE
        self.attempts = 0
        self.write_failures = 0
        self.discarded_frames: Deque[bytes] = deque(maxlen=MAX_DISCARDED_FRAMES)

        self._gatt: Any = None
        self._read_char: Any = None
        self._write_char: Any = None
        self._subscribed = False
        self._lost = False

    @property
    def name(self) -> str:
        return handle_name(self.handle)

    @property
    def is_active(self) -> bool:
        return self.phase is SessionPhase.ACTIVE

    @property
    def closed(self) -> bool:
        return self.phase is SessionPhase.CLOSED

    async def open(self) -> None:
        """Connect, resolve and start talking to the device.

        Raises:
            ServiceNotFound: Peripheral is not a WalkingPad
            LinkUnstable: Link kept failing after all retries
            PadError: Any other connection failure
        """
        while True:
            if self.closed:
                raise LinkUnstable("Session closed while connecting")
            self._lost = False
            try:
                await self._acquire()
                await self._resolve()
                await self._subscribe()
                if self._lost or not self.link.is_connected(self._gatt):
                    raise LinkUnstable("Connection lost during setup")
                break
            except Exception as e:
                error = _as_pad_error(e)
                retry = (
                    isinstance(error, LinkUnstable)
                    and self.attempts < self.config.connect_retries
                    and not self.closed
                )
                if not retry:
                    logger.error(f"Connection error: {error}")
                    if error is e:
                        raise
                    raise error from e
                self.attempts += 1
                logger.warning(
                    f"Retrying connection ({self.attempts}/{self.config.connect_retries}): {error}"
                )
                await asyncio.sleep(self.config.retry_backoff * self.attempts)

        await self._activate()

    async def _acquire(self) -> None:
        self.phase = SessionPhase.ACQUIRING
        if self._gatt is not None and self.link.is_connected(self._gatt):
            logger.info("Device already connected, using existing connection")
        else:
            logger.info(f"Connecting to {self.name}...")
            self._gatt = await self.link.connect_gatt(self.handle)
            self.link.on_disconnected(self._gatt, self._handle_disconnect)

        await asyncio.sleep(self.config.settle_delay)

        if not self.link.is_connected(self._gatt):
            raise LinkUnstable("Connection lost after connect")

    async def _resolve(self) -> None:
        self.phase = SessionPhase.RESOLVING
        logger.info("Getting WalkingPad service...")
        try:
            service = await self.link.get_service(self._gatt, SERVICE_UUID)
        except Exception as e:
            # A drop mid-resolution is retried; anything else means wrong device
            if is_transient(e):
                raise
            raise ServiceNotFound(
                "Device does not appear to be a WalkingPad. Service not found."
            ) from e

        logger.info("Getting characteristics...")
        self._read_char = await self.link.get_characteristic(service, NOTIFY_CHAR_UUID)
        self._write_char = await self.link.get_characteristic(service, WRITE_CHAR_UUID)

    async def _subscribe(self) -> None:
        logger.info("Starting notifications...")
        await self.link.subscribe_notifications(self._read_char, self.handle_notification)
        self._subscribed = True

    async def _activate(self) -> None:
        self.phase = SessionPhase.ACTIVE
        self._drain = PeriodicTask(self.config.send_interval, self._send_next, name="command-drain")
        self._drain.start()
        self.poller.start()
        logger.info(f"Connected to {self.name}")

        # Seed state without waiting a full poll interval
        await asyncio.sleep(self.config.initial_query_delay)
        if self.is_active:
            self.poller.tick()

    def send(self, frame: bytes) -> bool:
        """Queue a command frame; False when the session is not active."""
        if not self.is_active:
            logger.warning("Session not active, dropping command")
            return False
        self.queue.enqueue(frame)
        return True

    async def _send_next(self) -> None:
        frame = self.queue.drain_one()
        if frame is None or not self.is_active:
            return
        try:
            await self.link.write_without_response(self._write_char, frame)
            logger.debug(f"Sent {frame.hex(' ')}")
        except Exception as e:
            self.write_failures += 1
            logger.warning(f"Error sending command: {WriteFailed(str(e))}")

    def handle_notification(self, data: bytes) -> None:
        """Apply one notification to the device state."""
        if not self.is_active:
            return

        event = protocol.decode(data)
        if isinstance(event, protocol.InfoEvent):
            self._state.update_status(event.status)
        elif isinstance(event, protocol.ParamsEvent):
            self.poller.mark_params_received()
            self._state.update_params(event.params)
        elif isinstance(event, protocol.RecordEvent):
            self._state.add_record(event.record)
        else:
            self.discarded_frames.append(event.raw)
            logger.debug(f"Discarding notification: {MalformedFrame(event.raw)}")

    def _stop_timers(self) -> int:
        if self._drain is not None:
            self._drain.cancel()
            self._drain = None
        self.poller.stop()
        return self.queue.clear()

    def _handle_disconnect(self) -> None:
        if self.phase is not SessionPhase.ACTIVE:
            # open() checks this before activating and retries
            self._lost = True
            return
        logger.warning("Device disconnected")
        self.phase = SessionPhase.CLOSED
        dropped = self._stop_timers()
        if dropped:
            logger.info(f"Dropped {dropped} unsent commands")
        if self._on_link_lost is not None:
            self._on_link_lost(self)

    async def close(self, release: bool = True) -> None:
        """Stop timers, drop unsent commands and optionally release the link."""
        self.phase = SessionPhase.CLOSED
        dropped = self._stop_timers()
        if dropped:
            logger.info(f"Dropped {dropped} unsent commands")

        if self._subscribed:
            self._subscribed = False
            try:
                await self.link.unsubscribe_notifications(self._read_char)
            except Exception as e:
                logger.debug(f"Unsubscribe failed: {e}")

        if release and self._gatt is not None:
            try:
                if self.link.is_connected(self._gatt):
                    await self.link.disconnect(self._gatt)
            except Exception as e:
                logger.error(f"Disconnect failed: {e}")
        self._gatt = None
