from enum import Enum, IntEnum


class Channel(Enum):
    """One of the two independently tracked register sets (VFO A / VFO B)."""
    A = "A"
    B = "B"

    @property
    def other(self) -> "Channel":
        return Channel.B if self is Channel.A else Channel.A


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    DISCONNECTING = "disconnecting"


# CI-V mode bytes and filter widths
MODE_AM = 0x02
MODE_FM = 0x05
MODE_DV = 0x17
FILTER_WIDE = 0x01
FILTER_NARROW = 0x02


class OperatingMode(Enum):
    FM = "FM"
    FM_N = "FM-N"
    AM = "AM"
    AM_N = "AM-N"
    DV = "DV"

    @property
    def civ_bytes(self) -> tuple[int, int]:
        """(mode, filter) byte pair as sent in a set-mode frame."""
        return _MODE_TO_CIV[self]

    @property
    def is_narrow(self) -> bool:
        return self in (OperatingMode.FM_N, OperatingMode.AM_N)

    @classmethod
    def from_civ_bytes(cls, mode: int, filter_width: int) -> "OperatingMode":
        # DV ignores the filter byte
        if mode == MODE_DV:
            return cls.DV
        try:
            return _CIV_TO_MODE[(mode, filter_width)]
        except KeyError:
            raise ValueError(f"Unknown operating mode 0x{mode:02X}/0x{filter_width:02X}") from None

    @classmethod
    def parse(cls, label: str) -> "OperatingMode":
        """Parse a user supplied label such as 'fm', 'FM-N' or 'FMN'."""
        key = label.strip().upper()
        if key in ("FMN", "AMN"):
            key = f"{key[:2]}-N"
        for mode in cls:
            if mode.value == key:
                return mode
        raise ValueError(f"Unknown operating mode: {label}")

    def __str__(self) -> str:
        return self.value


_MODE_TO_CIV = {
    OperatingMode.FM: (MODE_FM, FILTER_WIDE),
    OperatingMode.FM_N: (MODE_FM, FILTER_NARROW),
    OperatingMode.AM: (MODE_AM, FILTER_WIDE),
    OperatingMode.AM_N: (MODE_AM, FILTER_NARROW),
    OperatingMode.DV: (MODE_DV, FILTER_WIDE),
}
_CIV_TO_MODE = {value: mode for mode, value in _MODE_TO_CIV.items() if mode is not OperatingMode.DV}


class ToneMode(IntEnum):
    """Tone/squelch function values the radio reports for sub-command 0x5D.

    The device may report values above 3 (other squelch combinations); those are
    stored as raw integers and never coerced into this enum.
    """
    CSQ = 0   # carrier squelch, no tone
    TONE = 1  # tone on transmit only
    TSQL = 2  # tone squelch, tx and rx tone
    DTCS = 3  # digital coded squelch


TONE_MODE_LABELS = {
    ToneMode.CSQ: "CSQ",
    ToneMode.TONE: "Tone",
    ToneMode.TSQL: "TSQL",
    ToneMode.DTCS: "DTCS",
}


class DuplexDirection(IntEnum):
    SIMPLEX = 0x10
    DUP_MINUS = 0x11
    DUP_PLUS = 0x12

    @property
    def label(self) -> str:
        return {0x10: "simplex", 0x11: "dup-", 0x12: "dup+"}[self.value]
