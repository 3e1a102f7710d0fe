import asyncio
import logging
from typing import Callable, Optional

from pyciv.codec import FrameBuffer
from pyciv.errors import CodecError, FrameDecodeError, TransportWriteError
from pyciv.responses import ParsedResponse

ResponseCallback = Callable[[list[ParsedResponse], Optional[CodecError]], None]


class CivProtocol(asyncio.Protocol):
    """asyncio protocol for one open CI-V link.

    The read side feeds incoming bytes through a :class:`FrameBuffer` and hands
    whatever decodes to ``on_responses``. The write side is used by the command
    queue, one frame at a time.
    """

    def __init__(
        self,
        on_responses: ResponseCallback,
        on_connection_lost: Optional[Callable[[Optional[Exception]], None]] = None,
        frame_buffer: Optional[FrameBuffer] = None,
    ):
        self._on_responses = on_responses
        self._on_connection_lost = on_connection_lost
        self._frame_buffer = frame_buffer or FrameBuffer()
        self._transport: Optional[asyncio.Transport] = None
        self._closed: Optional[asyncio.Future] = None
        self._write_paused = False
        self._drain_waiter: Optional[asyncio.Future] = None
        self.tx_bytes = 0
        self.rx_bytes = 0
        self._logger = logging.getLogger(__name__)

    @property
    def frame_buffer(self) -> FrameBuffer:
        return self._frame_buffer

    def connection_made(self, transport):
        """Method from asyncio.Protocol"""
        self._transport = transport
        self._closed = asyncio.get_running_loop().create_future()
        self._logger.info(f"Connection made: {transport.get_extra_info('serial', transport)}")

    def connection_lost(self, exc):
        """Method from asyncio.Protocol"""
        self._transport = None
        self._frame_buffer.clear()
        if self._drain_waiter is not None and not self._drain_waiter.done():
            self._drain_waiter.set_result(None)
        if self._closed is not None and not self._closed.done():
            self._closed.set_result(None)
        if exc is not None:
            self._logger.error(f"Connection lost: {exc}")
        else:
            self._logger.info("Connection closed")
        if self._on_connection_lost is not None:
            self._on_connection_lost(exc)

    def data_received(self, data):
        """Method from asyncio.Protocol"""
        self.rx_bytes += len(data)
        self._logger.debug(f"RX: {data.hex(' ')}")
        try:
            responses = self._frame_buffer.feed(data)
        except FrameDecodeError as e:
            self._on_responses(e.responses, e)
            return
        if responses:
            self._on_responses(responses, None)

    def pause_writing(self):
        self._write_paused = True

    def resume_writing(self):
        self._write_paused = False
        if self._drain_waiter is not None and not self._drain_waiter.done():
            self._drain_waiter.set_result(None)

    def is_writable(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    async def write(self, data: bytes):
        """Write one frame. Raises TransportWriteError if the link is gone or the write fails."""
        if not self.is_writable():
            raise TransportWriteError("Transport is not open")
        try:
            self._transport.write(data)
        except Exception as e:
            raise TransportWriteError(f"Write failed: {e}") from e
        self.tx_bytes += len(data)
        self._logger.debug(f"TX: {data.hex(' ')}")
        if self._write_paused:
            self._drain_waiter = asyncio.get_running_loop().create_future()
            await self._drain_waiter

    def close(self):
        if self._transport is not None:
            self._transport.close()

    async def wait_closed(self):
        if self._closed is not None:
            await asyncio.shield(self._closed)
