"""Radio session - connection lifecycle and imperative operations for a CI-V radio.

This module contains the high-level session abstraction with:
- Connect-time initialization of both channels
- Command queue, response router and shadow state wiring
- Status and telemetry polling
- Idempotent teardown that drains every pending command
- Thin async operations (select channel, set frequency, tone, power, ...)

A fresh queue, frame buffer and shadow state are built on every connect, so
nothing from a previous connection leaks into the next one."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Union

import serial_asyncio

from pyciv.codec import (
    LEVEL_AF,
    LEVEL_SQUELCH,
    TONE_RX,
    TONE_TX,
    CivCommand,
    FrameBuffer,
)
from pyciv.command_queue import DEFAULT_COMMAND_TIMEOUT, CommandQueue
from pyciv.enums import Channel, DuplexDirection, OperatingMode, SessionState, ToneMode
from pyciv.errors import CodecError, TransportWriteError
from pyciv.listener import MultiplexingListener, RadioListener
from pyciv.poller import DEFAULT_STATUS_INTERVAL, DEFAULT_TELEMETRY_INTERVAL, Poller
from pyciv.protocol import CivProtocol
from pyciv.responses import ParsedResponse
from pyciv.router import ResponseRouter
from pyciv.state import ChannelState, ChannelStateStore, MeterState, TelemetryState

DEFAULT_BAUDRATE = 19200
DEFAULT_CLOSE_TIMEOUT = 1.0

ConnectionFactory = Callable[[Callable[[], asyncio.Protocol]], Awaitable[tuple[asyncio.BaseTransport, asyncio.Protocol]]]


class RadioSession:
    """One interactive session with a radio on a serial port.

    Example::

        session = RadioSession("/dev/ttyUSB0")
        session.register_listener(LoggingListener())
        await session.connect()
        await session.set_frequency(145_500_000)
        await session.disconnect()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        status_interval: float = DEFAULT_STATUS_INTERVAL,
        telemetry_interval: float = DEFAULT_TELEMETRY_INTERVAL,
        enable_polling: bool = True,
        default_channel: Channel = Channel.A,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
        connection_factory: Optional[ConnectionFactory] = None,
    ):
        self._logger = logging.getLogger(__name__)
        self._port = port
        self._baudrate = baudrate
        self._command_timeout = command_timeout
        self._status_interval = status_interval
        self._telemetry_interval = telemetry_interval
        self._enable_polling = enable_polling
        self._default_channel = default_channel
        self._close_timeout = close_timeout
        self._connection_factory = connection_factory

        self._listener = MultiplexingListener()
        self._state = SessionState.DISCONNECTED
        self._disconnecting = False

        self._selected_channel = default_channel
        self._ui_active_channel = default_channel
        self._store = ChannelStateStore()
        self._meters = MeterState()
        self._telemetry = TelemetryState()

        # Per-connection objects, rebuilt on every connect
        self._transport: Optional[asyncio.BaseTransport] = None
        self._protocol: Optional[CivProtocol] = None
        self._queue: Optional[CommandQueue] = None
        self._router: Optional[ResponseRouter] = None
        self._poller: Optional[Poller] = None
        self._disconnect_task: Optional[asyncio.Task[Any]] = None

    # ========== Accessors ==========

    @property
    def port(self) -> str:
        return self._port

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state in (SessionState.INITIALIZING, SessionState.ACTIVE)

    @property
    def disconnecting(self) -> bool:
        return self._disconnecting

    @property
    def selected_channel(self) -> Channel:
        """Channel the radio currently has selected."""
        return self._selected_channel

    @property
    def ui_active_channel(self) -> Channel:
        """Channel the user is viewing. May lag the radio briefly during a switch."""
        return self._ui_active_channel

    @property
    def meters(self) -> MeterState:
        return self._meters

    @property
    def telemetry(self) -> TelemetryState:
        return self._telemetry

    @property
    def command_queue(self) -> Optional[CommandQueue]:
        return self._queue

    @property
    def poller(self) -> Optional[Poller]:
        return self._poller

    def get_channel_state(self, channel: Channel) -> ChannelState:
        return self._store.get(channel)

    def register_listener(self, listener: RadioListener):
        self._listener.register_listener(listener)

    def unregister_listener(self, listener: RadioListener):
        self._listener.unregister_listener(listener)

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready view of everything the session knows."""
        return {
            "port": self._port,
            "state": self._state.value,
            "selected_channel": self._selected_channel.value,
            "ui_active_channel": self._ui_active_channel.value,
            "channels": {channel.value: self._store.get(channel).as_dict() for channel in Channel},
            "meters": self._meters.as_dict(),
            "telemetry": self._telemetry.as_dict(),
            "queue": {
                "in_flight": self._queue is not None and self._queue.in_flight is not None,
                "pending": self._queue.pending if self._queue is not None else 0,
            },
            "polling": self._poller is not None and self._poller.running,
            "link": {
                "tx_bytes": self._protocol.tx_bytes if self._protocol else 0,
                "rx_bytes": self._protocol.rx_bytes if self._protocol else 0,
            },
        }

    # ========== Lifecycle ==========

    def _set_state(self, state: SessionState):
        if state is self._state:
            return
        self._logger.info(f"Session state {self._state.value} -> {state.value}")
        self._state = state
        self._listener.state_changed(state)

    async def connect(self):
        """Open the link, initialize both channels and start polling.

        Raises whatever the transport raises if the port cannot be opened.
        """
        if self._state is not SessionState.DISCONNECTED:
            self._logger.warning(f"connect() called while {self._state.value}, ignoring")
            return

        self._set_state(SessionState.CONNECTING)
        self._store.reset()
        self._meters = MeterState()
        self._telemetry = TelemetryState()
        self._selected_channel = self._default_channel
        self._ui_active_channel = self._default_channel

        protocol = CivProtocol(self._on_responses, self._on_connection_lost, FrameBuffer())
        queue = CommandQueue(protocol, timeout=self._command_timeout)
        self._queue = queue
        self._router = ResponseRouter(
            self._queue, self._store, self._meters, self._telemetry, self._listener,
            lambda: self._selected_channel,
        )
        self._poller = Poller(self._queue, protocol.is_writable, self._status_interval, self._telemetry_interval)

        self._logger.info(f"Connecting to {self._port} at {self._baudrate} baud")
        try:
            transport, _ = await self._open_connection(lambda: protocol)
        except Exception as e:
            self._logger.error(f"Failed to open {self._port}: {e}")
            self._listener.error(f"Connect error: {e}")
            if not self._connect_abandoned(queue):
                self._queue = None
                self._router = None
                self._poller = None
                self._set_state(SessionState.DISCONNECTED)
            raise

        if self._connect_abandoned(queue):
            self._logger.info(f"Disconnected while opening {self._port}, closing the new link")
            transport.close()
            try:
                await asyncio.wait_for(protocol.wait_closed(), self._close_timeout)
            except asyncio.TimeoutError:
                self._logger.warning(f"Link did not close within {self._close_timeout}s")
            return

        self._transport = transport
        self._protocol = protocol
        self._listener.connected()

        self._set_state(SessionState.INITIALIZING)
        try:
            await self._initialize_channels()
        except TransportWriteError as e:
            self._logger.error(f"Initialization failed: {e}")
            await self.disconnect()
            raise
        if self._state is not SessionState.INITIALIZING:
            # Torn down while initializing
            return
        self._set_state(SessionState.ACTIVE)
        self._start_polling()

    def _connect_abandoned(self, queue: CommandQueue) -> bool:
        """Whether a disconnect ran while this connect was waiting for the port."""
        return self._disconnecting or self._state is not SessionState.CONNECTING or self._queue is not queue

    async def _open_connection(self, protocol_factory: Callable[[], asyncio.Protocol]):
        if self._connection_factory is not None:
            return await self._connection_factory(protocol_factory)
        loop = asyncio.get_running_loop()
        return await serial_asyncio.create_serial_connection(
            loop, protocol_factory, self._port, baudrate=self._baudrate
        )

    async def _initialize_channels(self):
        """Wake the radio, read both channels, then reselect the default one."""
        self._logger.info("Initializing radio state")
        # Idempotent if the radio is already on
        await self._send(CivCommand.power_on())
        await self._read_both_channels()
        await self.select_channel(self._ui_active_channel)

    async def _read_both_channels(self):
        for channel in Channel:
            await self.select_channel(channel)
            await self.read_channel_state(channel)

    def _start_polling(self):
        if self._enable_polling and self._poller is not None and not self._disconnecting:
            self._poller.start()

    async def disconnect(self):
        """Tear the session down. Calling it again while it runs is a no-op."""
        if self._disconnecting or self._state is SessionState.DISCONNECTED:
            return
        self._disconnecting = True
        if self._queue is not None:
            self._queue.closing = True
        self._set_state(SessionState.DISCONNECTING)
        self._logger.info(f"Disconnecting from {self._port}")

        try:
            if self._poller is not None:
                self._poller.stop()
            if self._queue is not None:
                self._queue.drain()
                self._queue.cancel_in_flight()
            if self._protocol is not None:
                self._protocol.close()
                try:
                    await asyncio.wait_for(self._protocol.wait_closed(), self._close_timeout)
                except asyncio.TimeoutError:
                    self._logger.warning(f"Link did not close within {self._close_timeout}s")
                self._protocol.frame_buffer.clear()
        finally:
            self._transport = None
            self._protocol = None
            self._queue = None
            self._router = None
            self._poller = None
            self._store.reset()
            self._disconnecting = False
            self._set_state(SessionState.DISCONNECTED)
            self._listener.disconnected()

    def _on_connection_lost(self, exc: Optional[Exception]):
        if self._disconnecting or self._state is SessionState.DISCONNECTED:
            return
        self._logger.error(f"Link to {self._port} lost unexpectedly: {exc}")
        self._listener.error(f"Connection lost: {exc}")
        self._disconnect_task = asyncio.get_running_loop().create_task(self.disconnect())

    def _on_responses(self, responses: list[ParsedResponse], error: Optional[CodecError]):
        if self._router is not None:
            self._router.on_responses_parsed(responses, error)

    async def _send(self, data: bytes, channel: Optional[Channel] = None) -> Optional[ParsedResponse]:
        """Queue one command and wait for its response. None means no answer."""
        if self._queue is None:
            return None
        return await self._queue.enqueue(data, channel=channel)

    def _can_operate(self, operation: str) -> bool:
        if self._queue is None or self._disconnecting:
            self._logger.error(f"Cannot {operation}: not connected")
            return False
        return True

    # ========== Channel selection ==========

    async def select_channel(self, channel: Channel) -> Optional[ParsedResponse]:
        """Make ``channel`` the radio's active channel. Does not read anything back."""
        channel = _coerce_channel(channel)
        if channel is None:
            self._logger.error("Invalid channel, must be A or B")
            return None
        if not self._can_operate("select channel"):
            return None
        self._selected_channel = channel
        return await self._send(CivCommand.select_channel(channel), channel=channel)

    async def read_channel_state(self, channel: Channel):
        """Read frequency, mode and tone state for ``channel``, which must already be selected."""
        await self._send(CivCommand.read_frequency(), channel=channel)
        await self._send(CivCommand.read_mode(), channel=channel)
        await self.read_tone_state(channel)

    async def read_tone_state(self, channel: Channel):
        await self._send(CivCommand.read_tone_mode(), channel=channel)
        await self._send(CivCommand.read_tone_frequency(TONE_TX), channel=channel)
        await self._send(CivCommand.read_tone_frequency(TONE_RX), channel=channel)
        await self._send(CivCommand.read_dtcs(), channel=channel)

    async def view_channel(self, channel: Channel):
        """Switch the viewed channel, then select it on the radio and refresh it.

        Listeners get the cached state straight away through ``channel_viewed``.
        """
        channel = _coerce_channel(channel)
        if channel is None:
            self._logger.error("Invalid channel, must be A or B")
            return
        self._ui_active_channel = channel
        self._listener.channel_viewed(channel, self._store.get(channel))
        if not self._can_operate("view channel"):
            return
        await self.select_channel(channel)
        await self.read_channel_state(channel)

    # ========== Channel settings ==========

    async def set_frequency(self, hz: int) -> Optional[ParsedResponse]:
        """Set the selected channel's frequency and read it back."""
        if isinstance(hz, bool) or not isinstance(hz, int) or hz <= 0:
            self._logger.error(f"Invalid frequency {hz}, must be a positive number of Hz")
            return None
        try:
            data = CivCommand.set_frequency(hz)
        except ValueError as e:
            self._logger.error(f"Invalid frequency: {e}")
            return None
        if not self._can_operate("set frequency"):
            return None
        channel = self._selected_channel
        await self._send(data, channel=channel)
        return await self._send(CivCommand.read_frequency(), channel=channel)

    async def set_mode(self, mode: Union[OperatingMode, str]) -> Optional[ParsedResponse]:
        if not isinstance(mode, OperatingMode):
            try:
                mode = OperatingMode.parse(str(mode))
            except ValueError as e:
                self._logger.error(str(e))
                return None
        if not self._can_operate("set mode"):
            return None
        channel = self._selected_channel
        await self._send(CivCommand.set_mode(mode), channel=channel)
        return await self._send(CivCommand.read_mode(), channel=channel)

    async def set_tone_mode(self, mode: int) -> Optional[ParsedResponse]:
        """Set tone squelch function (0 CSQ, 1 Tone, 2 TSQL, 3 DTCS) and read it back."""
        try:
            mode = ToneMode(mode)
        except ValueError:
            self._logger.error(f"Invalid tone mode {mode}, must be 0-3")
            return None
        if not self._can_operate("set tone mode"):
            return None
        channel = self._selected_channel
        await self._send(CivCommand.set_tone_mode(int(mode)), channel=channel)
        return await self._send(CivCommand.read_tone_mode(), channel=channel)

    async def set_tone_frequency(self, tenths_hz: int) -> Optional[ParsedResponse]:
        """Write the tone frequency the current tone mode uses.

        In Tone mode only the Tx tone is written. In TSQL mode Tx and Rx are set
        to the same value and both are read back. Any other mode is refused.
        """
        if isinstance(tenths_hz, bool) or not isinstance(tenths_hz, int) or not (0 < tenths_hz <= 9999):
            self._logger.error(f"Invalid tone frequency {tenths_hz}, must be 0.1-999.9 Hz in tenths")
            return None
        if not self._can_operate("set tone frequency"):
            return None
        channel = self._selected_channel
        tone_mode = self._store.get(channel).tone_mode

        if tone_mode == ToneMode.TONE:
            await self._send(CivCommand.set_tone_frequency(TONE_TX, tenths_hz), channel=channel)
            return await self._send(CivCommand.read_tone_frequency(TONE_TX), channel=channel)
        if tone_mode == ToneMode.TSQL:
            await self._send(CivCommand.set_tone_frequency(TONE_TX, tenths_hz), channel=channel)
            await self._send(CivCommand.set_tone_frequency(TONE_RX, tenths_hz), channel=channel)
            await self._send(CivCommand.read_tone_frequency(TONE_TX), channel=channel)
            return await self._send(CivCommand.read_tone_frequency(TONE_RX), channel=channel)

        self._logger.error(
            f"Tone frequency only applies in Tone or TSQL mode, channel {channel.value} is in mode {tone_mode}"
        )
        return None

    async def set_dtcs(self, code: int, tx_polarity: int = 0, rx_polarity: int = 0) -> Optional[ParsedResponse]:
        """Set DTCS code (octal digits, e.g. 23 for 023) and polarities (0 normal, 1 reverse)."""
        if isinstance(code, bool) or not isinstance(code, int) or not (0 <= code <= 777) \
                or any(digit > "7" for digit in f"{code:03d}"):
            self._logger.error(f"Invalid DTCS code {code}, must be three octal digits")
            return None
        try:
            data = CivCommand.set_dtcs(code, tx_polarity, rx_polarity)
        except ValueError as e:
            self._logger.error(f"Invalid DTCS setting: {e}")
            return None
        if not self._can_operate("set DTCS"):
            return None
        channel = self._selected_channel
        await self._send(data, channel=channel)
        return await self._send(CivCommand.read_dtcs(), channel=channel)

    # ========== Levels ==========

    async def set_af_level(self, value: int) -> Optional[ParsedResponse]:
        return await self._set_level(LEVEL_AF, value, "AF level")

    async def set_squelch(self, value: int) -> Optional[ParsedResponse]:
        return await self._set_level(LEVEL_SQUELCH, value, "squelch")

    async def _set_level(self, sub: int, value: int, name: str) -> Optional[ParsedResponse]:
        if isinstance(value, bool) or not isinstance(value, int) or not (0 <= value <= 255):
            self._logger.error(f"Invalid {name} {value}, must be 0-255")
            return None
        if not self._can_operate(f"set {name}"):
            return None
        await self._send(CivCommand.set_level(sub, value))
        return await self._send(CivCommand.read_level(sub))

    # ========== Power ==========

    async def power_on(self) -> Optional[ParsedResponse]:
        """Power the radio on, re-read both channels and resume polling."""
        if not self._can_operate("power on"):
            return None
        response = await self._send(CivCommand.power_on())
        await self._read_both_channels()
        await self.select_channel(self._ui_active_channel)
        self._start_polling()
        return response

    async def power_off(self) -> Optional[ParsedResponse]:
        if not self._can_operate("power off"):
            return None
        if self._poller is not None:
            self._poller.stop()
        return await self._send(CivCommand.power_off())

    # ========== Auxiliary ==========

    async def read_transceiver_id(self) -> Optional[ParsedResponse]:
        if not self._can_operate("read transceiver ID"):
            return None
        return await self._send(CivCommand.read_transceiver_id())

    async def read_duplex(self) -> Optional[ParsedResponse]:
        if not self._can_operate("read duplex"):
            return None
        return await self._send(CivCommand.read_duplex(), channel=self._selected_channel)

    async def set_duplex(self, direction: DuplexDirection) -> Optional[ParsedResponse]:
        try:
            direction = DuplexDirection(direction)
        except ValueError:
            self._logger.error(f"Invalid duplex direction {direction}")
            return None
        if not self._can_operate("set duplex"):
            return None
        await self._send(CivCommand.set_duplex(direction), channel=self._selected_channel)
        return await self.read_duplex()

    async def read_offset(self) -> Optional[ParsedResponse]:
        if not self._can_operate("read offset"):
            return None
        return await self._send(CivCommand.read_offset(), channel=self._selected_channel)

    async def set_offset(self, hz: int) -> Optional[ParsedResponse]:
        try:
            data = CivCommand.set_offset(hz)
        except (TypeError, ValueError) as e:
            self._logger.error(f"Invalid offset: {e}")
            return None
        if not self._can_operate("set offset"):
            return None
        await self._send(data, channel=self._selected_channel)
        return await self.read_offset()


def _coerce_channel(channel) -> Optional[Channel]:
    if isinstance(channel, Channel):
        return channel
    try:
        return Channel(str(channel).strip().upper())
    except ValueError:
        return None
