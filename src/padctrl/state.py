"""
Observable device state shared between the session and front-ends.

Status, params and records are written only from the notification path of
the active session; session state and the last error only by the
supervisor. Everything else reads snapshots.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from .errors import PadError
from .models import DeviceParameters, DeviceStatus, SessionState, WorkoutRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """Point-in-time view of everything a front-end shows."""

    status: DeviceStatus
    params: DeviceParameters
    session_state: SessionState
    last_error: Optional[PadError] = None
    device_name: str = ""
    records: tuple[WorkoutRecord, ...] = field(default_factory=tuple)

    @property
    def is_connected(self) -> bool:
        return self.session_state is SessionState.CONNECTED

    def to_dict(self) -> dict:
        return {
            "state": self.status.state,
            "speed": self.status.speed,
            "mode": self.status.mode,
            "time": self.status.time,
            "distance": self.status.distance,
            "steps": self.status.steps,
            "is_running": self.status.is_running,
            "session_state": self.session_state.value,
            "last_error": str(self.last_error) if self.last_error else None,
            "device_name": self.device_name,
        }


class DeviceState:
    """Holds the current snapshot and notifies listeners on change."""

    def __init__(self) -> None:
        self.status = DeviceStatus()
        self.params = DeviceParameters()
        self.records: list[WorkoutRecord] = []
        self.session_state = SessionState.DISCONNECTED
        self.last_error: Optional[PadError] = None
        self.device_name = ""
        self._listeners: list[Callable[[Snapshot], None]] = []

    def subscribe(self, listener: Callable[[Snapshot], None]) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            Function that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> Snapshot:
        return Snapshot(
            status=self.status,
            params=self.params,
            session_state=self.session_state,
            last_error=self.last_error,
            device_name=self.device_name,
            records=tuple(self.records),
        )

    def _notify(self) -> None:
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception as e:
                logger.error(f"State listener error: {e}")

    def update_status(self, status: DeviceStatus) -> None:
        self.status = status
        self._notify()

    def update_params(self, params: DeviceParameters) -> None:
        self.params = params
        self._notify()

    def add_record(self, record: WorkoutRecord) -> bool:
        """Store a workout record; zero-duration records are dropped."""
        if record.duration <= 0:
            logger.debug("Ignoring zero-duration workout record")
            return False
        self.records.append(record)
        self._notify()
        return True

    def reset_status(self) -> None:
        self.status = DeviceStatus()
        self._notify()

    def set_session_state(
        self, session_state: SessionState, error: Optional[PadError] = None
    ) -> None:
        self.session_state = session_state
        self.last_error = error
        self._notify()

    def set_device_name(self, name: str) -> None:
        self.device_name = name
        self._notify()
