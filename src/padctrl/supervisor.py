"""
Connection lifecycle and reconnection.

The supervisor owns at most one ``ConnectionSession`` and is the only writer
of the session state. It decides whether a failure is retried:

- an explicit ``connect()`` is tried once (the session retries transient
  link errors internally);
- a link loss schedules up to ``max_reconnect_attempts`` reconnects against
  the same handle with linear backoff;
- ``start_persistent_reconnect()`` waits for a remembered device to come back,
  either on advertisement sightings or by polling.

Only one connection attempt per peripheral is ever in flight.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .core import BONDED_NAME_HINTS, SessionConfig
from .errors import LinkUnstable, PadError, ReconnectExhausted, ServiceNotFound
from .link import BleLink, StopWatching, handle_address, handle_name
from .models import SessionState
from .scheduler import Timer
from .session import ConnectionSession
from .state import DeviceState

logger = logging.getLogger(__name__)


def pick_bonded_device(devices: list[Any]) -> Any:
    """Prefer a device whose name looks like a WalkingPad."""
    for device in devices:
        name = (getattr(device, "name", None) or "").lower()
        if any(hint in name for hint in BONDED_NAME_HINTS):
            return device
    return devices[0]


class ReconnectSupervisor:
    """Drives SessionState transitions for one remembered peripheral."""

    def __init__(
        self,
        link: BleLink,
        state: DeviceState,
        config: Optional[SessionConfig] = None,
        auto_reconnect: bool = True,
    ) -> None:
        self._link = link
        self._state = state
        self.config = config or SessionConfig()
        self.auto_reconnect = auto_reconnect
        self.on_disconnect: Optional[Callable[[], None]] = None

        self.attempts = 0
        self._session: Optional[ConnectionSession] = None
        self._handle: Any = None
        self._manual_disconnect = False

        self._reconnect_timer: Optional[Timer] = None
        self._persistent_timer: Optional[Timer] = None
        self._persistent_active = False
        self._stop_watching: Optional[StopWatching] = None

        self._in_flight: dict[str, asyncio.Event] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def session_state(self) -> SessionState:
        return self._state.session_state

    @property
    def session(self) -> Optional[ConnectionSession]:
        return self._session

    @property
    def handle(self) -> Any:
        return self._handle

    @property
    def is_connected(self) -> bool:
        return self._session is not None and self._session.is_active

    @property
    def manual_disconnect(self) -> bool:
        return self._manual_disconnect

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None and self._reconnect_timer.active

    def _set_state(self, session_state: SessionState, error: Optional[PadError] = None) -> None:
        if session_state is not self._state.session_state:
            logger.debug(f"Session state: {self._state.session_state.value} -> {session_state.value}")
        self._state.set_session_state(session_state, error)

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def report_error(self, error: PadError) -> None:
        """Record a failure that happened outside a connection attempt."""
        self._set_state(self.session_state, error)

    def send(self, frame: bytes) -> bool:
        """Queue a command on the active session."""
        session = self._session
        if session is None or not session.is_active:
            logger.error("Not connected")
            return False
        return session.send(frame)

    # ========== Session plumbing ==========

    async def _open_session(self, handle: Any) -> ConnectionSession:
        key = handle_address(handle)
        if key in self._in_flight:
            raise PadError(f"Connection attempt to {key} already in progress")

        self._in_flight[key] = asyncio.Event()
        session = ConnectionSession(
            self._link,
            handle,
            self._state,
            self.config,
            on_link_lost=self._handle_link_lost,
        )
        try:
            await session.open()
        except BaseException:
            await session.close(release=True)
            raise
        finally:
            self._in_flight.pop(key).set()

        if not session.is_active:
            raise LinkUnstable("Connection lost during setup")
        return session

    def _handle_link_lost(self, session: ConnectionSession) -> None:
        if session is not self._session:
            return

        self._session = None
        self._state.reset_status()

        if self.auto_reconnect and not self._manual_disconnect and self._handle is not None:
            logger.info("Auto-reconnect enabled, attempting to reconnect...")
            self._set_state(SessionState.RECONNECTING)
            self._schedule_reconnect(self.config.reconnect_delay)
        else:
            self._set_state(SessionState.DISCONNECTED)

        if self.on_disconnect is not None:
            try:
                self.on_disconnect()
            except Exception as e:
                logger.error(f"Disconnect callback error: {e}")

    def _cancel_timers(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None
        if self._persistent_timer is not None:
            self._persistent_timer.cancel()
            self._persistent_timer = None
        self._persistent_active = False

    async def _stop_watching_advertisements(self) -> None:
        stop, self._stop_watching = self._stop_watching, None
        if stop is None:
            return
        try:
            await stop()
        except Exception as e:
            logger.warning(f"Failed to stop advertisement watch: {e}")

    # ========== Explicit connect / disconnect ==========

    async def connect(self, handle: Any) -> bool:
        """Connect to ``handle`` once.

        Returns:
            True if connected, False with ``last_error`` set otherwise
        """
        if self.is_connected:
            logger.warning("Already connected")
            return True

        pending = self._in_flight.get(handle_address(handle))
        if pending is not None:
            # Let a background attempt on the same device finish and keep its session
            logger.info(f"Waiting for connection attempt to {handle_name(handle)} in progress")
            self._manual_disconnect = False
            await pending.wait()
            if self.is_connected:
                return True

        self._manual_disconnect = False
        self._cancel_timers()
        await self._stop_watching_advertisements()
        self.attempts = 0
        self._handle = handle
        self._state.set_device_name(handle_name(handle))
        self._set_state(SessionState.CONNECTING)

        try:
            session = await self._open_session(handle)
        except PadError as e:
            self._set_state(SessionState.DISCONNECTED, e)
            return False

        if self._manual_disconnect or self._session is not None:
            # Disconnected while connecting, or another path won
            await session.close(release=self._session is None)
            if self._session is None:
                self._set_state(SessionState.DISCONNECTED)
            return self.is_connected

        self._session = session
        self._set_state(SessionState.CONNECTED)
        return True

    async def disconnect(self) -> None:
        """User-initiated disconnect; suppresses reconnection until connect()."""
        self._manual_disconnect = True
        self.attempts = 0
        self._cancel_timers()
        await self._stop_watching_advertisements()

        session, self._session = self._session, None
        if session is not None:
            logger.info("Disconnecting...")
            await session.close(release=True)
            logger.info("Disconnected")

        self._state.reset_status()
        self._set_state(SessionState.DISCONNECTED)

    def cancel_reconnect(self) -> None:
        """Stop reconnecting; an attempt already running is left to finish."""
        self._manual_disconnect = True
        self.attempts = 0
        self._cancel_timers()
        if self._stop_watching is not None:
            self._spawn(self._stop_watching_advertisements())
        if self._session is None and self.session_state is not SessionState.DISCONNECTED:
            self._set_state(SessionState.DISCONNECTED)
        logger.info("Reconnection cancelled")

    def set_auto_reconnect(self, enabled: bool) -> None:
        self.auto_reconnect = enabled
        if not enabled:
            if self._session is None and self.session_state is SessionState.RECONNECTING:
                self._cancel_timers()
                if self._stop_watching is not None:
                    self._spawn(self._stop_watching_advertisements())
                self.attempts = 0
                self._set_state(SessionState.DISCONNECTED)
        elif self._session is None and self.session_state is SessionState.DISCONNECTED:
            self._spawn(self.start_persistent_reconnect())

    async def shutdown(self) -> None:
        """Disconnect and cancel every background task."""
        await self.disconnect()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ========== Link-loss reconnect ==========

    def _schedule_reconnect(self, delay: float) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
        self._reconnect_timer = Timer(delay, self._fire_reconnect, name="reconnect")

    def _fire_reconnect(self) -> None:
        self._spawn(self._attempt_reconnect())

    async def _attempt_reconnect(self) -> None:
        if self._manual_disconnect or self._handle is None or self._session is not None:
            return
        if handle_address(self._handle) in self._in_flight:
            logger.debug("Connection attempt already in flight, retrying later")
            self._schedule_reconnect(self.config.reconnect_delay)
            return

        logger.info(
            f"Reconnection attempt {self.attempts + 1}/{self.config.max_reconnect_attempts}"
        )
        self._set_state(SessionState.RECONNECTING)

        try:
            session = await self._open_session(self._handle)
        except PadError as e:
            if self._manual_disconnect:
                return
            self.attempts += 1
            logger.error(f"Reconnection failed: {e}")
            if self.attempts < self.config.max_reconnect_attempts:
                self._schedule_reconnect(self.config.reconnect_delay * self.attempts)
            else:
                error = ReconnectExhausted(self.attempts)
                logger.error(str(error))
                self.attempts = 0
                self._set_state(SessionState.DISCONNECTED, error)
            return

        if self._manual_disconnect or self._session is not None:
            await session.close(release=self._session is None)
            return

        self.attempts = 0
        self._session = session
        self._set_state(SessionState.CONNECTED)
        logger.info("Reconnection successful!")

    # ========== Persistent reconnect ==========

    async def start_persistent_reconnect(self) -> bool:
        """Wait for a previously paired device and connect when it shows up.

        Returns:
            True if a device was targeted, False if nothing to do
        """
        if not self._link.can_list_bonded:
            logger.debug("Bonded device listing not supported")
            return False
        if not self.auto_reconnect or self._manual_disconnect or self._persistent_active:
            return False
        if self._session is not None or self.session_state is not SessionState.DISCONNECTED:
            return False

        try:
            devices = await self._link.get_bonded_devices()
        except Exception as e:
            logger.warning(f"Could not list paired devices: {e}")
            return False

        if not devices:
            logger.info("No previously paired devices found")
            return False
        if self._manual_disconnect or self._session is not None or self._persistent_active:
            return False

        handle = pick_bonded_device(devices)
        logger.info(f"Targeting device for auto-reconnect: {handle_name(handle)}")
        self._handle = handle
        self._persistent_active = True
        self._state.set_device_name(handle_name(handle))
        self._set_state(SessionState.RECONNECTING)

        if self._link.can_watch_advertisements:
            try:
                self._stop_watching = await self._link.watch_advertisements(
                    handle, self._on_advertisement
                )
            except Exception as e:
                logger.info(f"Advertisement watch failed, falling back to polling: {e}")

        self._spawn(self._persistent_attempt())
        return True

    def _fire_persistent(self) -> None:
        self._spawn(self._persistent_attempt())

    def _on_advertisement(self) -> None:
        if not self._persistent_active or self._session is not None:
            return
        if handle_address(self._handle) in self._in_flight:
            return
        logger.debug("Advertisement received, device is awake")
        self._spawn(self._persistent_attempt())

    async def _persistent_attempt(self) -> None:
        self._persistent_timer = None
        if not self._persistent_active or self._manual_disconnect or self._session is not None:
            return
        if handle_address(self._handle) in self._in_flight:
            return

        try:
            session = await self._open_session(self._handle)
        except PadError as e:
            if not self._persistent_active or self._manual_disconnect:
                return
            if isinstance(e, ServiceNotFound):
                self._persistent_active = False
                await self._stop_watching_advertisements()
                self._set_state(SessionState.DISCONNECTED, e)
                return
            logger.info(f"Device {handle_name(self._handle)} still not in range, waiting...")
            if self._stop_watching is None:
                self._persistent_timer = Timer(
                    self.config.persistent_retry_interval,
                    self._fire_persistent,
                    name="persistent-reconnect",
                )
            return

        if not self._persistent_active or self._manual_disconnect or self._session is not None:
            await session.close(release=self._session is None)
            return

        self._persistent_active = False
        self.attempts = 0
        self._session = session
        self._set_state(SessionState.CONNECTED)
        await self._stop_watching_advertisements()
        logger.info("Auto-reconnect successful!")
