from .channel import CommandChannel, SendOutcome
from .protocol import CommandFrame, MotorMode, encode_frame, parse_command_frame
from .session import DeviceSession, SessionState
from .telemetry import PowerTelemetry, decode_notification
from .transport import BleLink

__all__ = [
    "BleLink",
    "CommandChannel",
    "CommandFrame",
    "DeviceSession",
    "MotorMode",
    "PowerTelemetry",
    "SendOutcome",
    "SessionState",
    "decode_notification",
    "encode_frame",
    "parse_command_frame",
]
