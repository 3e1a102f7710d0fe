"""Serialized command queue with single in-flight tracking and timeout recovery."""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional, Protocol

from pyciv.enums import Channel
from pyciv.errors import TransportWriteError
from pyciv.responses import ParsedResponse

DEFAULT_COMMAND_TIMEOUT = 2.0


class CommandLink(Protocol):
    """Write half of the link as seen by the queue."""

    def is_writable(self) -> bool:
        ...

    async def write(self, data: bytes) -> None:
        ...


@dataclass
class PendingCommand:
    data: bytes
    channel: Optional[Channel]
    future: asyncio.Future
    sequence_number: int
    timeout_handle: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    def resolve(self, result: Optional[ParsedResponse]):
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None
        if not self.future.done():
            self.future.set_result(result)

    def reject(self, exc: BaseException):
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None
        if not self.future.done():
            self.future.set_exception(exc)


class CommandQueue:
    """FIFO of outbound commands; at most one is written and awaiting a response.

    Every future returned by :meth:`enqueue` resolves. It resolves to ``None``
    when the command timed out, was drained, or was never sent because the
    queue is closing or the link is not writable. Only a failed write rejects it,
    with :class:`~pyciv.errors.TransportWriteError`.
    """

    def __init__(self, link: CommandLink, timeout: float = DEFAULT_COMMAND_TIMEOUT,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self._link = link
        self._timeout = timeout
        self._loop = loop
        self._queue: deque[PendingCommand] = deque()
        self._in_flight: Optional[PendingCommand] = None
        self._closing = False
        self._sequence_number = 0
        self._write_tasks: set[asyncio.Task] = set()
        self._logger = logging.getLogger(__name__)

    @property
    def in_flight(self) -> Optional[PendingCommand]:
        return self._in_flight

    @property
    def pending(self) -> int:
        """Number of commands waiting behind the in-flight one."""
        return len(self._queue)

    @property
    def busy(self) -> bool:
        return self._in_flight is not None or bool(self._queue)

    @property
    def closing(self) -> bool:
        return self._closing

    @closing.setter
    def closing(self, value: bool):
        self._closing = value

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def enqueue(self, data: bytes, channel: Optional[Channel] = None) -> asyncio.Future:
        """Queue ``data`` for sending and return a future for its response.

        ``channel`` is attached to whatever response answers this command.
        """
        future = self._get_loop().create_future()
        if self._closing:
            self._logger.debug(f"QUEUE: Closing, not queueing {data.hex(' ')}")
            future.set_result(None)
            return future

        self._sequence_number += 1
        command = PendingCommand(data, channel, future, self._sequence_number)
        self._queue.append(command)
        self._logger.info(
            f"QUEUE: Adding command #{command.sequence_number} (channel={channel.value if channel else '-'}): "
            f"{data.hex(' ')}, queue size = {len(self._queue)}"
        )
        self.pump()
        return future

    def pump(self):
        """Start the next command if nothing is in flight."""
        if self._in_flight is not None or not self._queue:
            return
        if not self._link.is_writable():
            self._logger.warning(f"Link not writable, dropping {len(self._queue)} queued commands")
            self.drain()
            return

        command = self._queue.popleft()
        self._in_flight = command
        command.timeout_handle = self._get_loop().call_later(self._timeout, self._on_timeout, command)
        task = self._get_loop().create_task(self._write(command))
        self._write_tasks.add(task)
        task.add_done_callback(self._write_tasks.discard)

    async def _write(self, command: PendingCommand):
        self._logger.info(f"SEND: Command #{command.sequence_number}: {command.data.hex(' ')}")
        try:
            await self._link.write(command.data)
        except Exception as e:
            self._logger.error(f"SEND FAILED: Command #{command.sequence_number} - {e}")
            error = e if isinstance(e, TransportWriteError) else TransportWriteError(str(e))
            if error is not e:
                error.__cause__ = e
            command.reject(error)
            if self._in_flight is command:
                self._in_flight = None
            self.pump()

    def _on_timeout(self, command: PendingCommand):
        command.timeout_handle = None
        if self._in_flight is not command:
            return
        self._logger.warning(
            f"TIMEOUT: Command #{command.sequence_number} got no response within {self._timeout}s: "
            f"{command.data.hex(' ')}"
        )
        self._in_flight = None
        command.resolve(None)
        self.pump()

    def resolve_in_flight(self, response: Optional[ParsedResponse]) -> Optional[PendingCommand]:
        """Resolve the in-flight command with ``response`` and advance the queue.

        Returns the command that was resolved, or ``None`` if nothing was in flight.
        """
        command = self._in_flight
        if command is None:
            return None
        self._in_flight = None
        self._logger.info(f"RECV: Command #{command.sequence_number} resolved with {response!r}")
        command.resolve(response)
        self.pump()
        return command

    def cancel_in_flight(self):
        """Resolve the in-flight command with ``None`` without advancing the queue."""
        command = self._in_flight
        if command is None:
            return
        self._in_flight = None
        self._logger.debug(f"Cancelling in-flight command #{command.sequence_number}")
        command.resolve(None)

    def drain(self) -> int:
        """Resolve every queued (not in-flight) command with ``None``. Returns how many."""
        count = 0
        while self._queue:
            self._queue.popleft().resolve(None)
            count += 1
        if count:
            self._logger.info(f"QUEUE: Drained {count} pending commands")
        return count
