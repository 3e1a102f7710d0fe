"""CI-V frame codec.

Wire format of every frame::

    FE FE <dst> <src> <cmd> [<sub>] [<data>...] FD

Commands are built with the :class:`CivCommand` static methods. Incoming bytes
are reassembled and decoded by a :class:`FrameBuffer`, one instance per open
connection.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from pyciv.enums import FILTER_WIDE, MODE_DV, Channel, DuplexDirection, OperatingMode
from pyciv.errors import CodecError, FrameDecodeError
from pyciv.responses import (
    DtcsResponse,
    DuplexResponse,
    FrequencyResponse,
    GpsResponse,
    LevelResponse,
    MeterResponse,
    ModeResponse,
    OffsetResponse,
    Ok,
    ParsedResponse,
    Reject,
    ToneFrequencyResponse,
    ToneModeResponse,
    TransceiverIdResponse,
    UnknownResponse,
)

PREAMBLE = 0xFE
EOM = 0xFD
OK = 0xFB
NG = 0xFA

# Default CI-V addresses: the ID-52A Plus and the controlling PC
ADDR_RADIO = 0xB4
ADDR_CONTROLLER = 0xE0

# Command bytes
CMD_TRANSCEIVE_FREQ = 0x00  # unsolicited frequency broadcast (CI-V transceive on)
CMD_TRANSCEIVE_MODE = 0x01  # unsolicited mode broadcast
CMD_READ_FREQ = 0x03
CMD_READ_MODE = 0x04
CMD_SET_FREQ = 0x05
CMD_SET_MODE = 0x06
CMD_SELECT_VFO = 0x07
CMD_READ_OFFSET = 0x0C
CMD_SET_OFFSET = 0x0D
CMD_DUPLEX = 0x0F
CMD_LEVEL = 0x14
CMD_METER = 0x15
CMD_VARIOUS = 0x16
CMD_POWER = 0x18
CMD_READ_ID = 0x19
CMD_TONE = 0x1B
CMD_READ_GPS = 0x23

# Level (0x14) sub-commands
LEVEL_AF = 0x01
LEVEL_RF_GAIN = 0x02
LEVEL_SQUELCH = 0x03
LEVEL_RF_POWER = 0x0A

# Meter (0x15) sub-commands
METER_S = 0x02
METER_POWER = 0x11

# Various (0x16) sub-commands
VARIOUS_TONE_SQUELCH = 0x5D

# Tone (0x1B) sub-commands
TONE_TX = 0x00
TONE_RX = 0x01
TONE_DTCS = 0x02

# The ID-52A uses D0/D1 for band A/B, not the 00/01 used by HF rigs
VFO_CODES = {Channel.A: 0xD0, Channel.B: 0xD1}

POWER_OFF = 0x00
POWER_ON = 0x01

MAX_FREQUENCY_HZ = 9_999_999_999
MAX_BUFFER_SIZE = 4096
MIN_FRAME_SIZE = 6  # FE FE dst src cmd FD
GPS_PAYLOAD_SIZE = 27


# ========== BCD helpers ==========

def _check_bcd(byte: int) -> None:
    if (byte >> 4) > 9 or (byte & 0x0F) > 9:
        raise CodecError(f"Invalid BCD byte 0x{byte:02X}")


def encode_bcd_le(value: int, length: int) -> bytes:
    """Encode ``value`` as ``length`` BCD bytes, least significant pair first."""
    if value < 0 or value >= 100 ** length:
        raise ValueError(f"{value} does not fit in {length} BCD bytes")
    out = bytearray()
    for _ in range(length):
        value, pair = divmod(value, 100)
        out.append(((pair // 10) << 4) | (pair % 10))
    return bytes(out)


def encode_bcd_be(value: int, length: int) -> bytes:
    """Encode ``value`` as ``length`` BCD bytes, most significant pair first."""
    return encode_bcd_le(value, length)[::-1]


def decode_bcd_le(data: bytes) -> int:
    value = 0
    for byte in reversed(data):
        _check_bcd(byte)
        value = value * 100 + (byte >> 4) * 10 + (byte & 0x0F)
    return value


def decode_bcd_be(data: bytes) -> int:
    return decode_bcd_le(bytes(reversed(data)))


def _hi(byte: int) -> int:
    return (byte >> 4) & 0x0F


def _lo(byte: int) -> int:
    return byte & 0x0F


# ========== Frames ==========

@dataclass(frozen=True)
class Frame:
    """One complete CI-V message."""

    command: int
    sub_command: Optional[int] = None
    data: bytes = b""
    dst: int = ADDR_RADIO
    src: int = ADDR_CONTROLLER

    @property
    def payload(self) -> bytes:
        """Everything between the command byte and EOM."""
        if self.sub_command is None:
            return bytes(self.data)
        return bytes([self.sub_command]) + bytes(self.data)

    @property
    def is_ok(self) -> bool:
        return self.command == OK

    @property
    def is_ng(self) -> bool:
        return self.command == NG

    def to_bytes(self) -> bytes:
        return bytes([PREAMBLE, PREAMBLE, self.dst, self.src, self.command]) + self.payload + bytes([EOM])

    def __repr__(self) -> str:
        return (
            f"Frame(dst=0x{self.dst:02X}, src=0x{self.src:02X}, command=0x{self.command:02X}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


def parse_frame(buffer: bytes) -> Optional[tuple[Frame, int, int]]:
    """Find the first complete frame in ``buffer``.

    Returns ``(frame, start, end)`` where ``buffer[start:end]`` holds the frame,
    or ``None`` if no complete frame is present yet.

    Raises:
        CodecError: a delimited frame is too short to be valid.
    """
    start = bytes(buffer).find(bytes([PREAMBLE, PREAMBLE]))
    if start < 0:
        return None
    # Some radios send a longer run of preamble bytes; keep only the last two
    while start + 2 < len(buffer) and buffer[start + 2] == PREAMBLE:
        start += 1

    eom = bytes(buffer).find(bytes([EOM]), start)
    if eom < 0:
        return None

    raw = bytes(buffer[start:eom + 1])
    if len(raw) < MIN_FRAME_SIZE:
        raise CodecError(f"Truncated frame: {raw.hex(' ')}")

    dst, src, command = raw[2], raw[3], raw[4]
    payload = raw[5:-1]
    if command in (OK, NG) or not payload:
        frame = Frame(command, None, b"", dst=dst, src=src)
    else:
        frame = Frame(command, payload[0], payload[1:], dst=dst, src=src)
    return frame, start, eom + 1


# ========== Response decoding ==========

def decode_response(frame: Frame) -> ParsedResponse:
    """Turn a radio-originated frame into a typed response.

    Unrecognized command bytes yield an :class:`UnknownResponse`; malformed
    payloads for recognized commands raise :class:`CodecError`.
    """
    if frame.is_ok:
        return Ok()
    if frame.is_ng:
        return Reject()

    command = frame.command
    if command in (CMD_TRANSCEIVE_FREQ, CMD_READ_FREQ, CMD_SET_FREQ):
        return FrequencyResponse(_decode_frequency(frame.payload))

    if command in (CMD_TRANSCEIVE_MODE, CMD_READ_MODE):
        payload = frame.payload
        if not payload or (len(payload) < 2 and payload[0] != MODE_DV):
            raise CodecError(f"Mode response too short: {frame!r}")
        filter_width = payload[1] if len(payload) > 1 else FILTER_WIDE
        try:
            return ModeResponse(OperatingMode.from_civ_bytes(payload[0], filter_width))
        except ValueError as e:
            raise CodecError(str(e)) from e

    if command in (CMD_LEVEL, CMD_METER):
        if frame.sub_command is None or len(frame.data) != 2:
            raise CodecError(f"Level/meter response has wrong length: {frame!r}")
        value = decode_bcd_be(frame.data)
        if command == CMD_LEVEL:
            return LevelResponse(frame.sub_command, value)
        return MeterResponse(frame.sub_command, value)

    if command == CMD_VARIOUS and frame.sub_command == VARIOUS_TONE_SQUELCH:
        if not frame.data:
            raise CodecError(f"Tone mode response has no value: {frame!r}")
        # Raw byte, not BCD
        return ToneModeResponse(frame.sub_command, frame.data[0])

    if command == CMD_TONE:
        return _decode_tone(frame)

    if command == CMD_DUPLEX:
        if frame.sub_command is None:
            raise CodecError(f"Duplex response has no direction: {frame!r}")
        return DuplexResponse(frame.sub_command)

    if command == CMD_READ_OFFSET:
        payload = frame.payload
        if len(payload) != 3:
            raise CodecError(f"Offset response has wrong length: {frame!r}")
        return OffsetResponse(decode_bcd_le(payload) * 100)

    if command == CMD_READ_ID:
        if frame.data:
            return TransceiverIdResponse(frame.data[0])
        if frame.sub_command is None:
            raise CodecError(f"Transceiver ID response is empty: {frame!r}")
        return TransceiverIdResponse(frame.sub_command)

    if command == CMD_READ_GPS:
        return _decode_gps(frame)

    return UnknownResponse(command, frame.sub_command, bytes(frame.data))


def _decode_frequency(payload: bytes) -> int:
    if len(payload) != 5:
        raise CodecError(f"Frequency payload must be 5 bytes, got {payload.hex(' ')}")
    return decode_bcd_le(payload)


def _decode_tone(frame: Frame) -> ParsedResponse:
    sub = frame.sub_command
    data = frame.data
    if len(data) != 3:
        raise CodecError(f"Tone response has wrong length: {frame!r}")
    if sub in (TONE_TX, TONE_RX):
        # [0x00, hundreds_tens, units_tenths]
        tenths = decode_bcd_be(data[1:2]) * 100 + decode_bcd_be(data[2:3])
        return ToneFrequencyResponse(sub, tenths)
    if sub == TONE_DTCS:
        # [tx_pol << 4 | rx_pol, first digit, second and third digits]
        code = decode_bcd_be(data[1:2]) * 100 + decode_bcd_be(data[2:3])
        return DtcsResponse(code, _hi(data[0]), _lo(data[0]))
    raise CodecError(f"Unknown tone sub-command: {frame!r}")


def _decode_gps(frame: Frame) -> GpsResponse:
    if frame.sub_command != 0x00 or len(frame.data) != GPS_PAYLOAD_SIZE:
        raise CodecError(f"GPS response has wrong layout: {frame!r}")
    d = frame.data
    for byte in d:
        _check_bcd(byte)

    # Latitude dd mm.mmm, byte 4 low nibble is the N flag
    lat_deg = _hi(d[0]) * 10 + _lo(d[0])
    lat_min = _hi(d[1]) * 10 + _lo(d[1]) + (_hi(d[2]) * 100 + _lo(d[2]) * 10 + _hi(d[3])) / 1000.0
    latitude = lat_deg + lat_min / 60.0
    if _lo(d[4]) != 1:
        latitude = -latitude

    # Longitude ddd mm.mmm, byte 10 low nibble is the E flag
    lon_deg = _lo(d[5]) * 100 + _hi(d[6]) * 10 + _lo(d[6])
    lon_min = _hi(d[7]) * 10 + _lo(d[7]) + (_hi(d[8]) * 100 + _lo(d[8]) * 10 + _hi(d[9])) / 1000.0
    longitude = lon_deg + lon_min / 60.0
    if _lo(d[10]) != 1:
        longitude = -longitude

    altitude = (
        _hi(d[11]) * 100_000 + _lo(d[11]) * 10_000 + _hi(d[12]) * 1_000
        + _lo(d[12]) * 100 + _hi(d[13]) * 10 + _lo(d[13])
    ) / 10.0
    if _lo(d[14]) == 1:
        altitude = -altitude

    course = _hi(d[15]) * 100 + _lo(d[15]) * 10 + _hi(d[16])
    speed = (
        _hi(d[17]) * 100_000 + _lo(d[17]) * 10_000 + _hi(d[18]) * 1_000
        + _lo(d[18]) * 100 + _hi(d[19]) * 10 + _lo(d[19])
    ) / 10.0

    year = decode_bcd_be(d[20:22])
    month, day, hour, minute, second = (decode_bcd_be(d[i:i + 1]) for i in range(22, 27))
    try:
        utc = datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    except ValueError:
        # No fix yet: the radio reports an all-zero date
        utc = None

    return GpsResponse(
        latitude=latitude,
        longitude=longitude,
        altitude_m=altitude,
        speed_kmh=speed,
        course=course,
        utc=utc,
    )


# ========== Reassembly ==========

class FrameBuffer:
    """Accumulates raw bytes from the link and extracts decoded responses.

    Frame boundaries do not line up with read chunks, so a call to :meth:`feed`
    may return zero, one or several responses. Echoes of our own commands
    (source address = controller) are dropped.
    """

    def __init__(self, controller_address: int = ADDR_CONTROLLER, max_size: int = MAX_BUFFER_SIZE):
        self._buffer = bytearray()
        self._controller_address = controller_address
        self._max_size = max_size
        self._logger = logging.getLogger(__name__)

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def clear(self):
        self._buffer.clear()

    def feed(self, data: bytes) -> list[ParsedResponse]:
        """Append ``data`` and return every response that is now complete.

        Raises:
            FrameDecodeError: a complete frame could not be decoded. The error
                carries the responses that did decode from this chunk.
        """
        self._buffer.extend(data)
        if len(self._buffer) > self._max_size:
            dropped = len(self._buffer) - self._max_size
            del self._buffer[:dropped]
            self._logger.warning(f"Receive buffer overflow, dropped {dropped} oldest bytes")

        responses: list[ParsedResponse] = []
        failures: list[str] = []
        while True:
            try:
                parsed = parse_frame(self._buffer)
            except CodecError as e:
                self._logger.debug(f"Discarding invalid frame: {e}")
                self._discard_to_next_preamble()
                continue
            if parsed is None:
                break

            frame, _, end = parsed
            del self._buffer[:end]
            if frame.src == self._controller_address:
                self._logger.debug(f"Skipping echo frame {frame!r}")
                continue
            try:
                responses.append(decode_response(frame))
            except CodecError as e:
                failures.append(str(e))

        if failures:
            raise FrameDecodeError("; ".join(failures), responses)
        return responses

    def _discard_to_next_preamble(self):
        marker = bytes([PREAMBLE, PREAMBLE])
        start = self._buffer.find(marker)
        next_start = self._buffer.find(marker, start + 1) if start >= 0 else -1
        if next_start < 0:
            self._buffer.clear()
        else:
            del self._buffer[:next_start]


# ========== Command encoders ==========

class CivCommand:
    """Static builders returning the wire bytes for each supported command."""

    @staticmethod
    def _frame(command: int, sub_command: Optional[int] = None, data: bytes = b"") -> bytes:
        return Frame(command, sub_command, data).to_bytes()

    @staticmethod
    def read_frequency() -> bytes:
        return CivCommand._frame(CMD_READ_FREQ)

    @staticmethod
    def set_frequency(hz: int) -> bytes:
        if not (0 <= hz <= MAX_FREQUENCY_HZ):
            raise ValueError(f"Frequency out of range: {hz} Hz")
        return CivCommand._frame(CMD_SET_FREQ, data=encode_bcd_le(hz, 5))

    @staticmethod
    def read_mode() -> bytes:
        return CivCommand._frame(CMD_READ_MODE)

    @staticmethod
    def set_mode(mode: OperatingMode) -> bytes:
        return CivCommand._frame(CMD_SET_MODE, data=bytes(mode.civ_bytes))

    @staticmethod
    def select_channel(channel: Channel) -> bytes:
        return CivCommand._frame(CMD_SELECT_VFO, VFO_CODES[channel])

    @staticmethod
    def read_level(sub: int) -> bytes:
        return CivCommand._frame(CMD_LEVEL, sub)

    @staticmethod
    def set_level(sub: int, value: int) -> bytes:
        if not (0 <= value <= 255):
            raise ValueError(f"Level out of range: {value}")
        return CivCommand._frame(CMD_LEVEL, sub, encode_bcd_be(value, 2))

    @staticmethod
    def read_meter(sub: int) -> bytes:
        return CivCommand._frame(CMD_METER, sub)

    @staticmethod
    def power_on() -> bytes:
        return CivCommand._frame(CMD_POWER, POWER_ON)

    @staticmethod
    def power_off() -> bytes:
        return CivCommand._frame(CMD_POWER, POWER_OFF)

    @staticmethod
    def read_transceiver_id() -> bytes:
        return CivCommand._frame(CMD_READ_ID, 0x00)

    @staticmethod
    def read_tone_mode() -> bytes:
        return CivCommand._frame(CMD_VARIOUS, VARIOUS_TONE_SQUELCH)

    @staticmethod
    def set_tone_mode(mode: int) -> bytes:
        if not (0 <= mode <= 0xFF):
            raise ValueError(f"Tone mode out of range: {mode}")
        return CivCommand._frame(CMD_VARIOUS, VARIOUS_TONE_SQUELCH, bytes([mode]))

    @staticmethod
    def read_tone_frequency(sub: int) -> bytes:
        return CivCommand._frame(CMD_TONE, sub)

    @staticmethod
    def set_tone_frequency(sub: int, tenths_hz: int) -> bytes:
        if sub not in (TONE_TX, TONE_RX):
            raise ValueError(f"Not a tone frequency sub-command: 0x{sub:02X}")
        if not (0 <= tenths_hz <= 9999):
            raise ValueError(f"Tone frequency out of range: {tenths_hz / 10:.1f} Hz")
        hundreds_tens, units_tenths = divmod(tenths_hz, 100)
        data = bytes([0x00]) + encode_bcd_be(hundreds_tens, 1) + encode_bcd_be(units_tenths, 1)
        return CivCommand._frame(CMD_TONE, sub, data)

    @staticmethod
    def read_dtcs() -> bytes:
        return CivCommand._frame(CMD_TONE, TONE_DTCS)

    @staticmethod
    def set_dtcs(code: int, tx_polarity: int, rx_polarity: int) -> bytes:
        if not (0 <= code <= 777):
            raise ValueError(f"DTCS code out of range: {code}")
        if tx_polarity not in (0, 1) or rx_polarity not in (0, 1):
            raise ValueError(f"DTCS polarity must be 0 or 1, got {tx_polarity}/{rx_polarity}")
        first, rest = divmod(code, 100)
        data = bytes([(tx_polarity << 4) | rx_polarity]) + encode_bcd_be(first, 1) + encode_bcd_be(rest, 1)
        return CivCommand._frame(CMD_TONE, TONE_DTCS, data)

    @staticmethod
    def read_duplex() -> bytes:
        return CivCommand._frame(CMD_DUPLEX)

    @staticmethod
    def set_duplex(direction: DuplexDirection) -> bytes:
        return CivCommand._frame(CMD_DUPLEX, int(DuplexDirection(direction)))

    @staticmethod
    def read_offset() -> bytes:
        return CivCommand._frame(CMD_READ_OFFSET)

    @staticmethod
    def set_offset(hz: int) -> bytes:
        # 3-byte LE BCD in 100 Hz units
        if not (0 <= hz < 100_000_000):
            raise ValueError(f"Offset out of range: {hz} Hz")
        return CivCommand._frame(CMD_SET_OFFSET, data=encode_bcd_le(hz // 100, 3))

    @staticmethod
    def read_gps() -> bytes:
        return CivCommand._frame(CMD_READ_GPS, 0x00)
