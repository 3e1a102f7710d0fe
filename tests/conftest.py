import asyncio
from dataclasses import dataclass
from typing import Optional

import pytest

from pyciv.codec import (
    ADDR_CONTROLLER,
    ADDR_RADIO,
    NG,
    OK,
    Frame,
    encode_bcd_be,
    encode_bcd_le,
    parse_frame,
)
from pyciv.enums import Channel, OperatingMode

# 35°41.123'N 139°46.456'E, 40.5 m, course 123, 12.3 km/h, 2026-10-18 12:34:56 UTC
GPS_PAYLOAD = bytes([
    0x35, 0x41, 0x12, 0x30, 0x01,
    0x01, 0x39, 0x46, 0x45, 0x60, 0x01,
    0x00, 0x04, 0x05, 0x00,
    0x12, 0x30,
    0x00, 0x01, 0x23,
    0x20, 0x26, 0x10, 0x18, 0x12, 0x34, 0x56,
])


def radio_frame(command: int, sub_command: Optional[int] = None, data: bytes = b"") -> bytes:
    """Bytes of a frame sent by the radio to the controller."""
    return Frame(command, sub_command, data, dst=ADDR_CONTROLLER, src=ADDR_RADIO).to_bytes()


@dataclass
class Register:
    frequency_hz: int = 145_000_000
    mode: OperatingMode = OperatingMode.FM
    tone_mode: int = 0
    tx_tone: int = 885
    rx_tone: int = 885
    dtcs_code: int = 23
    dtcs_tx_polarity: int = 0
    dtcs_rx_polarity: int = 0
    duplex: int = 0x10
    offset_hz: int = 600_000


class FakeRadio:
    """Answers controller frames the way an ID-52A Plus does, one register set per channel."""

    def __init__(self):
        self.registers = {
            Channel.A: Register(),
            Channel.B: Register(frequency_hz=433_500_000, mode=OperatingMode.FM_N, tone_mode=2, tx_tone=1000,
                                rx_tone=1000),
        }
        self.selected = Channel.A
        self.powered = False
        self.levels = {0x01: 128, 0x03: 40}
        self.meters = {0x02: 120}
        self.transceiver_id = 0xB4
        self.echo = False
        self.silent = False
        self.corrupt_frequency = False
        self.received: list[Frame] = []

    @property
    def current(self) -> Register:
        return self.registers[self.selected]

    def handle(self, data: bytes) -> bytes:
        parsed = parse_frame(data)
        assert parsed is not None, f"incomplete frame written: {data.hex(' ')}"
        frame = parsed[0]
        self.received.append(frame)
        if self.silent:
            return b""
        reply = self._answer(frame)
        return (data if self.echo else b"") + reply

    def _answer(self, frame: Frame) -> bytes:
        cmd = frame.command
        payload = frame.payload
        reg = self.current

        if cmd == 0x18:
            self.powered = payload[:1] == b"\x01"
            return self._ok()
        if cmd == 0x07:
            self.selected = Channel.A if payload[0] == 0xD0 else Channel.B
            return self._ok()
        if cmd == 0x03:
            if self.corrupt_frequency:
                self.corrupt_frequency = False
                return radio_frame(0x03, data=bytes([0x0A, 0x00, 0x00, 0x45, 0x01]))
            return radio_frame(0x03, data=encode_bcd_le(reg.frequency_hz, 5))
        if cmd == 0x05:
            value = 0
            for byte in reversed(payload):
                value = value * 100 + (byte >> 4) * 10 + (byte & 0x0F)
            reg.frequency_hz = value
            return self._ok()
        if cmd == 0x04:
            mode, width = reg.mode.civ_bytes
            return radio_frame(0x04, mode, bytes([width]))
        if cmd == 0x06:
            reg.mode = OperatingMode.from_civ_bytes(payload[0], payload[1])
            return self._ok()
        if cmd == 0x16 and payload[:1] == b"\x5d":
            if len(payload) > 1:
                reg.tone_mode = payload[1]
                return self._ok()
            return radio_frame(0x16, 0x5D, bytes([reg.tone_mode]))
        if cmd == 0x1B:
            return self._tone(frame, reg)
        if cmd == 0x14:
            if frame.data:
                self.levels[frame.sub_command] = (frame.data[0] >> 4) * 1000 + (frame.data[0] & 0x0F) * 100 \
                    + (frame.data[1] >> 4) * 10 + (frame.data[1] & 0x0F)
                return self._ok()
            return radio_frame(0x14, frame.sub_command, encode_bcd_be(self.levels.get(frame.sub_command, 0), 2))
        if cmd == 0x15:
            return radio_frame(0x15, frame.sub_command, encode_bcd_be(self.meters.get(frame.sub_command, 0), 2))
        if cmd == 0x19:
            return radio_frame(0x19, 0x00, bytes([self.transceiver_id]))
        if cmd == 0x0F:
            if payload:
                reg.duplex = payload[0]
                return self._ok()
            return radio_frame(0x0F, reg.duplex)
        if cmd == 0x0C:
            return radio_frame(0x0C, data=encode_bcd_le(reg.offset_hz // 100, 3))
        if cmd == 0x0D:
            value = 0
            for byte in reversed(payload):
                value = value * 100 + (byte >> 4) * 10 + (byte & 0x0F)
            reg.offset_hz = value * 100
            return self._ok()
        if cmd == 0x23:
            return radio_frame(0x23, 0x00, GPS_PAYLOAD)
        return radio_frame(NG)

    def _tone(self, frame: Frame, reg: Register) -> bytes:
        sub, data = frame.sub_command, frame.data
        if sub in (0x00, 0x01):
            if data:
                tenths = ((data[1] >> 4) * 10 + (data[1] & 0x0F)) * 100 + (data[2] >> 4) * 10 + (data[2] & 0x0F)
                if sub == 0x00:
                    reg.tx_tone = tenths
                else:
                    reg.rx_tone = tenths
                return self._ok()
            tenths = reg.tx_tone if sub == 0x00 else reg.rx_tone
            return radio_frame(0x1B, sub, bytes([0x00]) + encode_bcd_be(tenths // 100, 1) + encode_bcd_be(tenths % 100, 1))
        if sub == 0x02:
            if data:
                reg.dtcs_tx_polarity = data[0] >> 4
                reg.dtcs_rx_polarity = data[0] & 0x0F
                reg.dtcs_code = ((data[1] & 0x0F) * 100) + (data[2] >> 4) * 10 + (data[2] & 0x0F)
                return self._ok()
            polarity = (reg.dtcs_tx_polarity << 4) | reg.dtcs_rx_polarity
            return radio_frame(0x1B, 0x02, bytes([polarity]) + encode_bcd_be(reg.dtcs_code // 100, 1)
                               + encode_bcd_be(reg.dtcs_code % 100, 1))
        return radio_frame(NG)

    @staticmethod
    def _ok() -> bytes:
        return radio_frame(OK)


class FakeTransport(asyncio.Transport):
    """In-memory transport wiring a protocol to a :class:`FakeRadio`."""

    def __init__(self, protocol: asyncio.Protocol, radio: FakeRadio, loop: asyncio.AbstractEventLoop):
        super().__init__()
        self._protocol = protocol
        self._radio = radio
        self._loop = loop
        self._closing = False
        self.written: list[bytes] = []
        self.fail_writes = False
        self.close_calls = 0

    def write(self, data):
        if self.fail_writes:
            raise OSError("device reports an I/O error")
        self.written.append(bytes(data))
        reply = self._radio.handle(bytes(data))
        if reply:
            self._loop.call_soon(self._deliver, reply)

    def _deliver(self, data: bytes):
        if not self._closing:
            self._protocol.data_received(data)

    def is_closing(self) -> bool:
        return self._closing

    def close(self):
        self.close_calls += 1
        if self._closing:
            return
        self._closing = True
        self._loop.call_soon(self._protocol.connection_lost, None)

    def lose(self, exc: Exception):
        """Simulate the cable being pulled."""
        self._closing = True
        self._protocol.connection_lost(exc)

    def get_extra_info(self, name, default=None):
        return default


@pytest.fixture
def radio() -> FakeRadio:
    return FakeRadio()


@pytest.fixture
def connection_factory(radio):
    opened: list[FakeTransport] = []

    async def factory(protocol_factory):
        protocol = protocol_factory()
        transport = FakeTransport(protocol, radio, asyncio.get_running_loop())
        opened.append(transport)
        protocol.connection_made(transport)
        return transport, protocol

    factory.opened = opened
    return factory
