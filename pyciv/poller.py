import asyncio
import logging
from typing import Any, Callable, Optional

from pyciv.codec import LEVEL_AF, LEVEL_SQUELCH, METER_S, CivCommand
from pyciv.command_queue import CommandQueue

DEFAULT_STATUS_INTERVAL = 0.5
DEFAULT_TELEMETRY_INTERVAL = 5.0


class Poller:
    """Two fixed-interval refresh loops feeding the command queue.

    The status loop reads the S-meter, AF level and squelch level; the telemetry
    loop reads the GPS position. A tick is skipped outright when the queue is
    busy or the link is not writable, so a slow radio gets fewer polls instead of
    a growing backlog.
    """

    def __init__(
        self,
        queue: CommandQueue,
        is_writable: Callable[[], bool],
        status_interval: float = DEFAULT_STATUS_INTERVAL,
        telemetry_interval: float = DEFAULT_TELEMETRY_INTERVAL,
    ):
        self._queue = queue
        self._is_writable = is_writable
        self._status_interval = status_interval
        self._telemetry_interval = telemetry_interval
        self._status_task: Optional[asyncio.Task[Any]] = None
        self._telemetry_task: Optional[asyncio.Task[Any]] = None
        self._skipped_ticks = 0
        self._logger = logging.getLogger(__name__)

    @property
    def running(self) -> bool:
        return self._status_task is not None and not self._status_task.done()

    @property
    def skipped_ticks(self) -> int:
        return self._skipped_ticks

    def start(self):
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._status_task = loop.create_task(self._poll(self._status_interval, self._status_commands, "status"))
        self._telemetry_task = loop.create_task(
            self._poll(self._telemetry_interval, self._telemetry_commands, "telemetry")
        )
        self._logger.info(
            f"Polling started (status={self._status_interval}s, telemetry={self._telemetry_interval}s)"
        )

    def stop(self):
        stopped = False
        for task in (self._status_task, self._telemetry_task):
            if task is not None and not task.done():
                task.cancel()
                stopped = True
        self._status_task = None
        self._telemetry_task = None
        if stopped:
            self._logger.info("Polling stopped")

    @staticmethod
    def _status_commands() -> list[bytes]:
        return [
            CivCommand.read_meter(METER_S),
            CivCommand.read_level(LEVEL_AF),
            CivCommand.read_level(LEVEL_SQUELCH),
        ]

    @staticmethod
    def _telemetry_commands() -> list[bytes]:
        return [CivCommand.read_gps()]

    def tick(self, commands: Callable[[], list[bytes]], name: str = "poll") -> bool:
        """Enqueue one round of ``commands`` unless the queue is busy. Returns whether it did."""
        if self._queue.busy or not self._is_writable():
            self._skipped_ticks += 1
            self._logger.debug(f"Skipping {name} poll (busy={self._queue.busy})")
            return False
        for data in commands():
            # Results land in shadow state through the router
            self._queue.enqueue(data).add_done_callback(self._poll_done)
        return True

    def _poll_done(self, future: asyncio.Future):
        if not future.cancelled() and future.exception() is not None:
            self._logger.debug(f"Poll command failed: {future.exception()}")

    async def _poll(self, interval: float, commands: Callable[[], list[bytes]], name: str):
        try:
            while True:
                await asyncio.sleep(interval)
                self.tick(commands, name)
        except asyncio.CancelledError:
            self._logger.debug(f"{name} poller cancelled")
            raise
