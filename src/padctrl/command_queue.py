"""
Outbound command queue.

Producers append at any rate; the session drains one frame per send
interval so the device's receive buffer is never flooded.
"""

import logging
from collections import deque
from typing import Deque, Optional

logger = logging.getLogger(__name__)


def _command_key(frame: bytes) -> bytes:
    # message kind + command kind
    return frame[1:3]


class CommandQueue:
    """FIFO of pending command frames."""

    def __init__(self, coalesce: bool = False) -> None:
        """Initialize an empty queue.

        Args:
            coalesce: Replace a pending frame of the same command in place
                instead of appending a second one
        """
        self._frames: Deque[bytes] = deque()
        self._coalesce = coalesce

    def __len__(self) -> int:
        return len(self._frames)

    def enqueue(self, frame: bytes) -> None:
        frame = bytes(frame)
        if self._coalesce:
            key = _command_key(frame)
            for index, pending in enumerate(self._frames):
                if _command_key(pending) == key:
                    self._frames[index] = frame
                    logger.debug(f"Coalesced pending command {frame.hex(' ')}")
                    return
        self._frames.append(frame)

    def drain_one(self) -> Optional[bytes]:
        """Remove and return the oldest frame, or None when empty."""
        if not self._frames:
            return None
        return self._frames.popleft()

    def clear(self) -> int:
        """Drop all pending frames.

        Returns:
            Number of frames dropped
        """
        dropped = len(self._frames)
        self._frames.clear()
        return dropped

    def pending(self) -> list[bytes]:
        return list(self._frames)
