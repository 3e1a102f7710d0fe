"""Shadow state mirrored from device responses.

The radio only reports the registers of its currently selected channel, so
the session keeps one :class:`ChannelState` per channel and updates each from
responses tagged with that channel.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from pyciv.codec import LEVEL_AF, LEVEL_SQUELCH, METER_S, TONE_RX, TONE_TX
from pyciv.enums import TONE_MODE_LABELS, Channel, DuplexDirection, OperatingMode, ToneMode
from pyciv.responses import (
    DtcsResponse,
    DuplexResponse,
    FrequencyResponse,
    GpsResponse,
    LevelResponse,
    MeterResponse,
    ModeResponse,
    OffsetResponse,
    ParsedResponse,
    ToneFrequencyResponse,
    ToneModeResponse,
    TransceiverIdResponse,
    format_frequency,
)

CHANNEL_RESPONSES = (
    FrequencyResponse,
    ModeResponse,
    ToneModeResponse,
    ToneFrequencyResponse,
    DtcsResponse,
)
TELEMETRY_RESPONSES = (TransceiverIdResponse, DuplexResponse, OffsetResponse)


@dataclass
class ChannelState:
    frequency_hz: Optional[int] = None
    mode: Optional[OperatingMode] = None
    tone_mode: Optional[int] = None
    tx_tone_tenths: Optional[int] = None
    rx_tone_tenths: Optional[int] = None
    dtcs_code: Optional[int] = None
    dtcs_tx_polarity: Optional[int] = None
    dtcs_rx_polarity: Optional[int] = None

    def relevant_tone_fields(self) -> tuple[str, ...]:
        """Which tone fields mean something for the current tone mode.

        The store records whatever the device reports; this only tells a UI what
        to show or allow editing.
        """
        if self.tone_mode == ToneMode.TONE:
            return ("tx_tone_tenths",)
        if self.tone_mode == ToneMode.TSQL:
            return ("tx_tone_tenths", "rx_tone_tenths")
        if self.tone_mode == ToneMode.DTCS:
            return ("dtcs_code", "dtcs_tx_polarity", "dtcs_rx_polarity")
        return ()

    def tone_summary(self) -> str:
        if self.tone_mode is None:
            return "--"
        if self.tone_mode == ToneMode.CSQ:
            return "CSQ"
        if self.tone_mode == ToneMode.TONE:
            return f"T {_format_tone(self.tx_tone_tenths)}"
        if self.tone_mode == ToneMode.TSQL:
            return f"TSQL {_format_tone(self.rx_tone_tenths)}"
        if self.tone_mode == ToneMode.DTCS:
            if self.dtcs_code is None:
                return "DCS ---"
            polarity = "".join("R" if p else "N" for p in (self.dtcs_tx_polarity, self.dtcs_rx_polarity))
            return f"DCS {self.dtcs_code:03d} {polarity}"
        return f"Mode {self.tone_mode}"

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["mode"] = str(self.mode) if self.mode else None
        payload["frequency"] = format_frequency(self.frequency_hz) if self.frequency_hz is not None else None
        payload["tone_mode_label"] = TONE_MODE_LABELS.get(self.tone_mode) if self.tone_mode is not None else None
        payload["tone_summary"] = self.tone_summary()
        return payload


def _format_tone(tenths: Optional[int]) -> str:
    if tenths is None:
        return "---"
    return f"{tenths / 10:.1f}"


class ChannelStateStore:
    """Two independent :class:`ChannelState` records keyed by channel."""

    def __init__(self):
        self._states = {channel: ChannelState() for channel in Channel}
        self._logger = logging.getLogger(__name__)

    def get(self, channel: Channel) -> ChannelState:
        return self._states[channel]

    def reset(self):
        for channel in Channel:
            self._states[channel] = ChannelState()

    def apply(self, channel: Channel, response: ParsedResponse) -> bool:
        """Record ``response`` against ``channel``. Returns whether anything changed.

        Only frequency, mode, tone mode, tone frequency and DTCS responses touch
        channel state; everything else is ignored here.
        """
        state = self._states[channel]
        before = ChannelState(**asdict(state))

        if isinstance(response, FrequencyResponse):
            state.frequency_hz = response.hz
        elif isinstance(response, ModeResponse):
            state.mode = response.mode
        elif isinstance(response, ToneModeResponse):
            state.tone_mode = response.value
        elif isinstance(response, ToneFrequencyResponse):
            if response.sub == TONE_TX:
                state.tx_tone_tenths = response.tenths_hz
            elif response.sub == TONE_RX:
                state.rx_tone_tenths = response.tenths_hz
        elif isinstance(response, DtcsResponse):
            state.dtcs_code = response.code
            state.dtcs_tx_polarity = response.tx_polarity
            state.dtcs_rx_polarity = response.rx_polarity
        else:
            return False

        changed = state != before
        if changed:
            self._logger.debug(f"Channel {channel.value} updated: {state}")
        return changed


@dataclass
class MeterState:
    """Last known meter and level scalars from the status poll."""
    s_meter: Optional[int] = None
    af_level: Optional[int] = None
    squelch: Optional[int] = None
    other: dict[str, int] = field(default_factory=dict)

    def apply(self, response: ParsedResponse) -> bool:
        if isinstance(response, MeterResponse):
            if response.sub == METER_S:
                return self._set("s_meter", response.value)
            return self._set_other(f"meter_{response.sub:02x}", response.value)
        if isinstance(response, LevelResponse):
            if response.sub == LEVEL_AF:
                return self._set("af_level", response.value)
            if response.sub == LEVEL_SQUELCH:
                return self._set("squelch", response.value)
            return self._set_other(f"level_{response.sub:02x}", response.value)
        return False

    def _set(self, name: str, value: int) -> bool:
        changed = getattr(self, name) != value
        setattr(self, name, value)
        return changed

    def _set_other(self, name: str, value: int) -> bool:
        changed = self.other.get(name) != value
        self.other[name] = value
        return changed

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TelemetryState:
    """Last known auxiliary readings: position, radio identity, repeater settings."""
    gps: Optional[GpsResponse] = None
    transceiver_id: Optional[int] = None
    duplex: Optional[int] = None
    offset_hz: Optional[int] = None

    def apply(self, response: ParsedResponse) -> bool:
        if isinstance(response, GpsResponse):
            changed = self.gps != response
            self.gps = response
        elif isinstance(response, TransceiverIdResponse):
            changed = self.transceiver_id != response.transceiver_id
            self.transceiver_id = response.transceiver_id
        elif isinstance(response, DuplexResponse):
            changed = self.duplex != response.raw
            self.duplex = response.raw
        elif isinstance(response, OffsetResponse):
            changed = self.offset_hz != response.hz
            self.offset_hz = response.hz
        else:
            return False
        return changed

    @property
    def duplex_direction(self) -> Optional[DuplexDirection]:
        if self.duplex is None:
            return None
        try:
            return DuplexDirection(self.duplex)
        except ValueError:
            return None

    def as_dict(self) -> dict[str, Any]:
        direction = self.duplex_direction
        return {
            "gps": self.gps.as_dict() if self.gps else None,
            "transceiver_id": f"0x{self.transceiver_id:02X}" if self.transceiver_id is not None else None,
            "duplex": direction.label if direction else self.duplex,
            "offset_hz": self.offset_hz,
        }
