"""Typed responses produced by the frame codec.

Every variant is a frozen dataclass. ``channel`` is never read from the wire:
the response router fills it in from the hint of the command that the
response answered, via :func:`dataclasses.replace`.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Optional

from pyciv.enums import Channel, DuplexDirection, OperatingMode


@dataclass(frozen=True)
class ParsedResponse:
    kind: ClassVar[str] = "response"
    channel: Optional[Channel] = field(default=None, kw_only=True)

    def as_dict(self) -> dict[str, Any]:
        """Structured event payload for listeners and the status endpoint."""
        payload = asdict(self)
        payload["type"] = self.kind
        payload["channel"] = self.channel.value if self.channel else None
        for key, value in payload.items():
            if isinstance(value, (OperatingMode, DuplexDirection)):
                payload[key] = str(value) if isinstance(value, OperatingMode) else value.label
            elif isinstance(value, datetime):
                payload[key] = value.isoformat()
            elif isinstance(value, bytes):
                payload[key] = value.hex(" ")
        return payload


@dataclass(frozen=True)
class Ok(ParsedResponse):
    kind: ClassVar[str] = "ok"


@dataclass(frozen=True)
class Reject(ParsedResponse):
    """The device answered NG. An expected protocol outcome, not an error."""
    kind: ClassVar[str] = "reject"


@dataclass(frozen=True)
class FrequencyResponse(ParsedResponse):
    kind: ClassVar[str] = "frequency"
    hz: int

    @property
    def display(self) -> str:
        return format_frequency(self.hz)


@dataclass(frozen=True)
class ModeResponse(ParsedResponse):
    kind: ClassVar[str] = "mode"
    mode: OperatingMode


@dataclass(frozen=True)
class LevelResponse(ParsedResponse):
    kind: ClassVar[str] = "level"
    sub: int
    value: int


@dataclass(frozen=True)
class MeterResponse(ParsedResponse):
    kind: ClassVar[str] = "meter"
    sub: int
    value: int


@dataclass(frozen=True)
class ToneModeResponse(ParsedResponse):
    kind: ClassVar[str] = "tone_mode"
    sub: int
    value: int


@dataclass(frozen=True)
class ToneFrequencyResponse(ParsedResponse):
    """Tone frequency in tenths of Hz (885 = 88.5 Hz). sub 0x00 is Tx, 0x01 is Rx."""
    kind: ClassVar[str] = "tone_frequency"
    sub: int
    tenths_hz: int


@dataclass(frozen=True)
class DtcsResponse(ParsedResponse):
    """DTCS code with polarities (0 = normal, 1 = reverse)."""
    kind: ClassVar[str] = "dtcs"
    code: int
    tx_polarity: int
    rx_polarity: int


@dataclass(frozen=True)
class DuplexResponse(ParsedResponse):
    kind: ClassVar[str] = "duplex"
    raw: int

    @property
    def direction(self) -> Optional[DuplexDirection]:
        try:
            return DuplexDirection(self.raw)
        except ValueError:
            return None


@dataclass(frozen=True)
class OffsetResponse(ParsedResponse):
    kind: ClassVar[str] = "offset"
    hz: int

    @property
    def display(self) -> str:
        return format_frequency(self.hz)


@dataclass(frozen=True)
class TransceiverIdResponse(ParsedResponse):
    kind: ClassVar[str] = "transceiver_id"
    transceiver_id: int


@dataclass(frozen=True)
class GpsResponse(ParsedResponse):
    """Position report in decimal degrees. ``utc`` is None when the receiver has no fix time."""
    kind: ClassVar[str] = "gps"
    latitude: float
    longitude: float
    altitude_m: float
    speed_kmh: float
    course: int
    utc: Optional[datetime] = None


@dataclass(frozen=True)
class UnknownResponse(ParsedResponse):
    """Catch-all for command bytes this package does not understand."""
    kind: ClassVar[str] = "unknown"
    command: int
    sub_command: Optional[int] = None
    data: bytes = b""


def format_frequency(hz: int) -> str:
    """Render 145012500 as '145.012.500 MHz'."""
    mhz, remainder = divmod(hz, 1_000_000)
    khz, units = divmod(remainder, 1_000)
    return f"{mhz}.{khz:03d}.{units:03d} MHz"
