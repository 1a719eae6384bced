from .bus import BatteryUpdated, ConnectionStateChanged, EventBus, ModeChanged
from .config import TeleopConfig
from .control_logic import Mode
from .controller_input import ButtonState, ControllerSnapshot
from .teleop_node import TeleopNode

__all__ = [
    "BatteryUpdated",
    "ButtonState",
    "ConnectionStateChanged",
    "ControllerSnapshot",
    "EventBus",
    "Mode",
    "ModeChanged",
    "TeleopConfig",
    "TeleopNode",
]
