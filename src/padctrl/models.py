"""
Device state models and protocol code tables.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum, IntFlag


class BeltState(IntEnum):
    """Belt state codes reported in status frames."""

    STANDBY = 0
    RUNNING = 1
    PAUSED = 2
    STARTING = 5


class Mode(IntEnum):
    """Operating modes."""

    AUTO = 0
    MANUAL = 1
    SLEEP = 2


class Sensitivity(IntEnum):
    """Auto-mode foot sensor sensitivity."""

    HIGH = 1
    MEDIUM = 2
    LOW = 3


class Unit(IntEnum):
    """Measurement unit shown on the device."""

    METRIC = 0
    IMPERIAL = 1


class StartMode(IntEnum):
    """Whether the belt starts by itself when stepped on."""

    MANUAL = 0
    AUTO_START = 1


class DisplayFlag(IntFlag):
    """Fields shown on the device display."""

    TIME = 0b1
    SPEED = 0b10
    DISTANCE = 0b100
    CALORIE = 0b1000
    STEP = 0b10000


class SessionState(Enum):
    """Externally visible connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class DeviceStatus:
    """Live belt status.

    Speed is in 0.1 km/h units, distance in 10 m units, time in seconds.
    """

    state: int = BeltState.STANDBY
    speed: int = 0
    mode: int = Mode.SLEEP
    time: int = 0
    distance: int = 0
    steps: int = 0

    @property
    def is_running(self) -> bool:
        # STARTING behaves as running for display purposes
        return self.state in (BeltState.RUNNING, BeltState.STARTING)


@dataclass(frozen=True)
class DeviceParameters:
    """Device settings as last reported by a params frame."""

    max_speed: int = 60
    start_speed: int = 20
    start_mode: int = StartMode.MANUAL
    sensitivity: int = Sensitivity.MEDIUM
    unit: int = Unit.METRIC
    goal_type: int = 0
    goal: int = 0
    regulate: int = 0
    display: int = 0
    lock: int = 0

    @property
    def auto_start(self) -> bool:
        return self.start_mode == StartMode.AUTO_START

    @property
    def locked(self) -> bool:
        return bool(self.lock)


@dataclass(frozen=True)
class WorkoutRecord:
    """Summary of a completed session stored on the device."""

    on_time: int
    start_time: int
    duration: int
    distance: int
    steps: int
    remaining: int
