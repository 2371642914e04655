"""
PadCtrl - WalkingPad Treadmill Control Library

A Python library for controlling WalkingPad treadmills via Bluetooth LE.
"""

__version__ = "0.1.0"
__description__ = "CLI and REPL interface for controlling WalkingPad treadmills"

from .controller import TreadmillController
from .display import DisplayManager
from .models import SessionState
from .supervisor import ReconnectSupervisor

__all__ = ["TreadmillController", "DisplayManager", "ReconnectSupervisor", "SessionState"]
