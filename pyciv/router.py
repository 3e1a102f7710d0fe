import logging
from dataclasses import replace
from typing import Callable, Optional

from pyciv.command_queue import CommandQueue
from pyciv.enums import Channel
from pyciv.errors import CodecError
from pyciv.listener import RadioListener
from pyciv.responses import (
    DtcsResponse,
    FrequencyResponse,
    GpsResponse,
    LevelResponse,
    MeterResponse,
    ModeResponse,
    Ok,
    ParsedResponse,
    Reject,
    ToneFrequencyResponse,
    ToneModeResponse,
    UnknownResponse,
)
from pyciv.state import CHANNEL_RESPONSES, TELEMETRY_RESPONSES, ChannelStateStore, MeterState, TelemetryState


class ResponseRouter:
    """Matches parsed responses to the in-flight command and applies them to shadow state.

    Matching is positional: the first response of a parsed chunk answers the
    command in flight. Any further responses in the same chunk, and any response
    that arrives while nothing is in flight, are treated as unsolicited and only
    applied to state.
    """

    def __init__(
        self,
        queue: CommandQueue,
        store: ChannelStateStore,
        meters: MeterState,
        telemetry: TelemetryState,
        listener: RadioListener,
        selected_channel: Callable[[], Channel],
    ):
        self._queue = queue
        self._store = store
        self._meters = meters
        self._telemetry = telemetry
        self._listener = listener
        self._selected_channel = selected_channel
        self._logger = logging.getLogger(__name__)

    def on_responses_parsed(self, responses: list[ParsedResponse], error: Optional[CodecError] = None):
        matched = False
        for response in responses:
            command = self._queue.in_flight if not matched else None
            channel = command.channel if command is not None and command.channel else self._selected_channel()

            self._dispatch(replace(response, channel=channel), solicited=command is not None)
            if command is not None:
                # Callers get back the hint they enqueued with, not the store key
                self._queue.resolve_in_flight(replace(response, channel=command.channel))
                matched = True

        if error is not None:
            self._logger.error(f"Failed to decode response: {error}")
            self._listener.error(f"Decode error: {error}")
            if not matched and self._queue.in_flight is not None:
                # Resolve and advance; a corrupt frame must not stall the queue
                self._queue.resolve_in_flight(None)

    def _dispatch(self, response: ParsedResponse, solicited: bool):
        self._listener.response_received(response)

        if isinstance(response, CHANNEL_RESPONSES):
            channel = response.channel
            if not self._store.apply(channel, response):
                return
            state = self._store.get(channel)
            if isinstance(response, FrequencyResponse):
                self._listener.frequency_changed(channel, response.hz)
            elif isinstance(response, ModeResponse):
                self._listener.mode_changed(channel, response.mode)
            elif isinstance(response, (ToneModeResponse, ToneFrequencyResponse, DtcsResponse)):
                self._listener.tone_changed(channel, state)
        elif isinstance(response, (MeterResponse, LevelResponse)):
            if self._meters.apply(response):
                self._listener.meter_changed(self._meters)
        elif isinstance(response, GpsResponse):
            if self._telemetry.apply(response):
                self._listener.gps_changed(response)
        elif isinstance(response, TELEMETRY_RESPONSES):
            if self._telemetry.apply(response):
                self._listener.telemetry_changed(self._telemetry)
        elif isinstance(response, Reject):
            self._logger.warning(f"Command rejected by radio (solicited={solicited})")
            self._listener.command_rejected(response)
        elif isinstance(response, Ok):
            pass
        elif isinstance(response, UnknownResponse):
            self._logger.warning(
                f"Ignoring unrecognized response: command=0x{response.command:02X} "
                f"sub={response.sub_command} data={response.data.hex(' ')}"
            )
        else:
            self._logger.warning(f"Unhandled response type: {type(response).__name__}")
