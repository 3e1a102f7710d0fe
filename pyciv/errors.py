"""Exception hierarchy for pyciv.

Only :class:`TransportWriteError` ever reaches a caller awaiting a queued
command. Timeouts, drained commands and codec failures resolve to ``None``;
an explicit device rejection resolves to a :class:`~pyciv.responses.Reject`.
"""


class CivError(Exception):
    """Base class for all pyciv errors."""


class CodecError(CivError):
    """A frame could not be parsed or its payload could not be decoded."""


class FrameDecodeError(CodecError):
    """One or more frames in a chunk failed to decode.

    ``responses`` holds the responses from the same chunk that did decode, in
    wire order, so they can still be routed.
    """

    def __init__(self, message: str, responses=None):
        super().__init__(message)
        self.responses = list(responses or [])


class TransportWriteError(CivError):
    """Writing a command to the link failed."""


class NotConnectedError(CivError):
    """The operation needs an active session."""
