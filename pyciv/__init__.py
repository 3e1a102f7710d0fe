"""pyciv Python Package

Python library for driving an Icom radio over CI-V: a serialized command queue,
A/B channel shadow state and polling on top of a serial link.
"""

from pyciv.enums import Channel, DuplexDirection, OperatingMode, SessionState, ToneMode
from pyciv.listener import LoggingListener, RadioListener
from pyciv.session import RadioSession

__all__ = [
    "Channel",
    "DuplexDirection",
    "LoggingListener",
    "OperatingMode",
    "RadioListener",
    "RadioSession",
    "SessionState",
    "ToneMode",
]
