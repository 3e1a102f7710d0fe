from abc import ABC, abstractmethod
from typing import List
import logging

from pyciv.enums import Channel, OperatingMode, SessionState
from pyciv.responses import GpsResponse, ParsedResponse, Reject


class RadioListener(ABC):

    @abstractmethod
    def connected(self):
        pass

    @abstractmethod
    def disconnected(self):
        pass

    def state_changed(self, state: SessionState):
        pass

    def response_received(self, response: ParsedResponse):
        """Called for every routed response, solicited or not, with its channel filled in."""
        pass

    def frequency_changed(self, channel: Channel, hz: int):
        pass

    def mode_changed(self, channel: Channel, mode: OperatingMode):
        pass

    def tone_changed(self, channel: Channel, state):
        """Called when tone mode, tone frequency or DTCS of a channel changes.

        Args:
            channel: Channel the change belongs to
            state: The channel's full ChannelState after the change
        """
        pass

    def meter_changed(self, meters):
        """Called when the S-meter, AF level or squelch reading changes."""
        pass

    def gps_changed(self, gps: GpsResponse):
        pass

    def telemetry_changed(self, telemetry):
        """Called when transceiver ID, duplex or offset changes."""
        pass

    def channel_viewed(self, channel: Channel, state):
        """Called when the viewed channel switches, with the cached state for it."""
        pass

    def command_rejected(self, response: Reject):
        pass

    def error(self, error_message: str):
        # By default, do nothing but can be overwritten to be notified of these messages.
        pass


class MultiplexingListener(RadioListener):
    _listeners: List[RadioListener]

    def __init__(self):
        self._listeners = []

    def connected(self):
        for listener in self._listeners:
            listener.connected()

    def disconnected(self):
        for listener in self._listeners:
            listener.disconnected()

    def state_changed(self, state: SessionState):
        for listener in self._listeners:
            listener.state_changed(state)

    def response_received(self, response: ParsedResponse):
        for listener in self._listeners:
            listener.response_received(response)

    def frequency_changed(self, channel: Channel, hz: int):
        for listener in self._listeners:
            listener.frequency_changed(channel, hz)

    def mode_changed(self, channel: Channel, mode: OperatingMode):
        for listener in self._listeners:
            listener.mode_changed(channel, mode)

    def tone_changed(self, channel: Channel, state):
        for listener in self._listeners:
            listener.tone_changed(channel, state)

    def meter_changed(self, meters):
        for listener in self._listeners:
            listener.meter_changed(meters)

    def gps_changed(self, gps: GpsResponse):
        for listener in self._listeners:
            listener.gps_changed(gps)

    def telemetry_changed(self, telemetry):
        for listener in self._listeners:
            listener.telemetry_changed(telemetry)

    def channel_viewed(self, channel: Channel, state):
        for listener in self._listeners:
            listener.channel_viewed(channel, state)

    def command_rejected(self, response: Reject):
        for listener in self._listeners:
            listener.command_rejected(response)

    def error(self, error_message: str):
        for listener in self._listeners:
            listener.error(error_message)

    def register_listener(self, listener: RadioListener):
        self._listeners.append(listener)

    def unregister_listener(self, listener: RadioListener):
        if listener in self._listeners:
            self._listeners.remove(listener)
        else:
            logging.info("Listener isn't registered")


class LoggingListener(RadioListener):

    def __init__(self, logger = logging):
        self.logger = logger

    def connected(self):
        self.logger.info("Connected")

    def disconnected(self):
        self.logger.info("Disconnected")

    def state_changed(self, state: SessionState):
        self.logger.info(f"Session state: {state.value}")

    def frequency_changed(self, channel: Channel, hz: int):
        self.logger.info(f"Channel {channel.value} frequency: {hz / 1_000_000:.6f} MHz")

    def mode_changed(self, channel: Channel, mode: OperatingMode):
        self.logger.info(f"Channel {channel.value} mode: {mode}")

    def tone_changed(self, channel: Channel, state):
        self.logger.info(f"Channel {channel.value} tone: {state.tone_summary()}")

    def meter_changed(self, meters):
        self.logger.info(f"S-meter: {meters.s_meter}, AF: {meters.af_level}, SQL: {meters.squelch}")

    def gps_changed(self, gps: GpsResponse):
        self.logger.info(
            f"GPS: {gps.latitude:.5f}, {gps.longitude:.5f} alt {gps.altitude_m:.1f} m "
            f"speed {gps.speed_kmh:.1f} km/h course {gps.course}"
        )

    def telemetry_changed(self, telemetry):
        self.logger.info(f"Telemetry: {telemetry.as_dict()}")

    def channel_viewed(self, channel: Channel, state):
        self.logger.info(f"Viewing channel {channel.value}")

    def command_rejected(self, response: Reject):
        self.logger.info("Command rejected (NG)")

    def error(self, error_message: str):
        self.logger.info(f"Error: {error_message}")
