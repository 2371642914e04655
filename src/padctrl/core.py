"""
Core constants and configuration for WalkingPad control.
"""

from dataclasses import dataclass

BASE_UUID_FMT = "0000{short:04x}-0000-1000-8000-00805f9b34fb"


def short_uuid(short: int) -> str:
    """Expand a 16-bit Bluetooth UUID to its 128-bit string form."""
    return BASE_UUID_FMT.format(short=short)


# GATT identifiers
SERVICE_UUID = short_uuid(0xFE00)
NOTIFY_CHAR_UUID = short_uuid(0xFE01)
WRITE_CHAR_UUID = short_uuid(0xFE02)

# Advertised name prefixes of known WalkingPad models
DEVICE_NAME_PREFIXES = (
    "WalkingPad",
    "KS-",  # Kingsmith
    "R1",
    "R2",
    "A1",
    "C1",
    "C2",
    "X21",
    "P1",
)

# Substrings used to pick a remembered device out of the bonded list
BONDED_NAME_HINTS = ("walkingpad", "r1", "r2", "ks-")

# Speed constraints in 0.1 km/h units
SPEED_MIN = 0
SPEED_MAX = 60
START_SPEED_MIN = 5
MAX_SPEED_LIMIT = 120

# Timing (seconds)
SEND_INTERVAL = 0.05
QUERY_INTERVAL = 0.75
SETTLE_DELAY = 0.5
INITIAL_QUERY_DELAY = 0.1
CONNECT_RETRIES = 3
RETRY_BACKOFF = 1.0
RECONNECT_DELAY = 2.0
MAX_RECONNECT_ATTEMPTS = 5
PERSISTENT_RETRY_INTERVAL = 5.0
SCAN_TIMEOUT = 10.0
CONNECT_TIMEOUT = 10.0

# Environment variable listing known device addresses (comma separated)
ADDRESS_ENV_VAR = "PADCTRL_ADDRESS"


@dataclass
class SessionConfig:
    """Timing and retry knobs shared by sessions and the supervisor."""

    send_interval: float = SEND_INTERVAL
    query_interval: float = QUERY_INTERVAL
    settle_delay: float = SETTLE_DELAY
    initial_query_delay: float = INITIAL_QUERY_DELAY
    connect_retries: int = CONNECT_RETRIES
    retry_backoff: float = RETRY_BACKOFF
    reconnect_delay: float = RECONNECT_DELAY
    max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS
    persistent_retry_interval: float = PERSISTENT_RETRY_INTERVAL
    coalesce_commands: bool = False


# Application metadata
__version__ = "0.1.0"
__description__ = "CLI and REPL interface for controlling WalkingPad treadmills"
