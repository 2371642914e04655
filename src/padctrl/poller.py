"""
Periodic status polling.

Each tick queues a status query. Until the first params frame arrives in
this session, each tick also queues a params query.
"""

import logging

from . import protocol
from .command_queue import CommandQueue
from .scheduler import PeriodicTask

logger = logging.getLogger(__name__)


class StatusPoller:
    """Queues status and params queries on a fixed cadence."""

    def __init__(self, queue: CommandQueue, interval: float) -> None:
        self._queue = queue
        self._interval = interval
        self._task: PeriodicTask | None = None
        self.has_queried_params = False

    @property
    def running(self) -> bool:
        return self._task is not None and self._task.running

    def tick(self) -> None:
        self._queue.enqueue(protocol.query())
        if not self.has_queried_params:
            self._queue.enqueue(protocol.query_params())

    def mark_params_received(self) -> None:
        if not self.has_queried_params:
            logger.debug("Parameters received, stopping params queries")
        self.has_queried_params = True

    def start(self) -> None:
        if self.running:
            return
        self._task = PeriodicTask(self._interval, self.tick, name="status-poll")
        self._task.start()

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
