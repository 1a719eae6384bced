from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, NamedTuple, Optional, Tuple

from .config import DriveConfig
from .sphero_comms.protocol import MotorMode


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round halves up. Only valid for non-negative values."""
    return int(math.floor(value + 0.5))


class Mode(Enum):
    NORMAL = "normal"
    EXPERT = "expert"
    TRICK = "trick"
    AIMING = "aiming"


DRIVING_MODES = (Mode.NORMAL, Mode.EXPERT)
CYCLE_ORDER = (Mode.NORMAL, Mode.EXPERT, Mode.TRICK)


class Color(NamedTuple):
    red: int
    green: int
    blue: int


class ModeMachine:
    """Normal/Expert/Trick modes plus the transient Aiming overlay."""

    def __init__(self, mode: Mode = Mode.NORMAL) -> None:
        if mode is Mode.AIMING:
            raise ValueError("Aiming cannot be an initial mode")
        self._mode = mode
        self._driving_mode = mode if mode in DRIVING_MODES else Mode.NORMAL

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def driving_mode(self) -> Mode:
        return self._driving_mode

    @property
    def cap_mode(self) -> Mode:
        return self._driving_mode if self._mode is Mode.AIMING else self._mode

    def _set(self, mode: Mode) -> Mode:
        self._mode = mode
        if mode in DRIVING_MODES:
            self._driving_mode = mode
        return mode

    def toggle_trick(self) -> Mode:
        if self._mode is Mode.AIMING:
            return self._mode
        if self._mode is Mode.TRICK:
            return self._set(self._driving_mode)
        return self._set(Mode.TRICK)

    def cycle(self) -> Mode:
        if self._mode is Mode.AIMING:
            return self._mode
        index = CYCLE_ORDER.index(self._mode)
        return self._set(CYCLE_ORDER[(index + 1) % len(CYCLE_ORDER)])

    def enter_aiming(self) -> Mode:
        if self._mode in DRIVING_MODES:
            self._mode = Mode.AIMING
        return self._mode

    def exit_aiming(self) -> Mode:
        if self._mode is Mode.AIMING:
            self._mode = self._driving_mode
        return self._mode


def mode_cap(mode: Mode, drive: DriveConfig) -> float:
    if mode is Mode.NORMAL:
        return drive.normal_cap
    if mode is Mode.EXPERT:
        return drive.expert_cap
    return 1.0


def adjust_speed_fraction(current: float, delta: float, minimum: float, cap: float) -> float:
    return clamp(round(current + delta, 3), minimum, max(minimum, cap))


def scaled_speed(speed: int, fraction: float) -> int:
    return int(clamp(round_half_up(speed * fraction), 0, 255))


def scale_color(color: Tuple[int, int, int], fraction: float) -> Color:
    red, green, blue = color
    return Color(*(int(clamp(round_half_up(channel * fraction), 0, 255)) for channel in (red, green, blue)))


@dataclass(frozen=True, slots=True)
class TrickMove:
    left_mode: MotorMode
    left_power: int
    right_mode: MotorMode
    right_power: int
    duration_s: float


TRICKS: Dict[str, TrickMove] = {
    "spin_left": TrickMove(MotorMode.REVERSE, 200, MotorMode.FORWARD, 200, 0.5),
    "spin_right": TrickMove(MotorMode.FORWARD, 200, MotorMode.REVERSE, 200, 0.5),
    "flip_forward": TrickMove(MotorMode.FORWARD, 255, MotorMode.FORWARD, 255, 0.3),
    "flip_backward": TrickMove(MotorMode.REVERSE, 255, MotorMode.REVERSE, 255, 0.3),
}


def aim_spin(lateral: float, power: int) -> Tuple[MotorMode, int, MotorMode, int]:
    """Differential in-place spin; positive lateral turns clockwise."""
    level = int(clamp(round_half_up(power * abs(lateral)), 0, 255))
    if lateral > 0:
        return MotorMode.FORWARD, level, MotorMode.REVERSE, level
    return MotorMode.REVERSE, level, MotorMode.FORWARD, level


def advance_heading(heading: float, lateral: float, rate_deg_s: float, dt_s: float) -> float:
    return (heading + clamp(lateral, -1.0, 1.0) * rate_deg_s * max(0.0, dt_s)) % 360.0


class AimEvent(Enum):
    NONE = "none"
    SHORT_PRESS = "short_press"
    ENTER_AIM = "enter_aim"
    EXIT_AIM = "exit_aim"


class AimHold:
    """Hold-to-aim gesture measured on a wall clock.

    ``press`` starts tracking; ``poll`` reports ENTER_AIM once when the hold
    crosses ``hold_s``, then EXIT_AIM on release, or SHORT_PRESS when the
    button is released first.
    """

    def __init__(self, hold_s: float) -> None:
        self.hold_s = float(hold_s)
        self._pressed_at: Optional[float] = None
        self._aiming = False

    @property
    def tracking(self) -> bool:
        return self._pressed_at is not None

    @property
    def aiming(self) -> bool:
        return self._aiming

    def press(self, now_s: float) -> None:
        self._pressed_at = now_s
        self._aiming = False

    def cancel(self) -> None:
        self._pressed_at = None
        self._aiming = False

    def poll(self, held: bool, now_s: float) -> AimEvent:
        if self._pressed_at is None:
            return AimEvent.NONE

        if held:
            if not self._aiming and (now_s - self._pressed_at) >= self.hold_s:
                self._aiming = True
                return AimEvent.ENTER_AIM
            return AimEvent.NONE

        was_aiming = self._aiming
        self.cancel()
        return AimEvent.EXIT_AIM if was_aiming else AimEvent.SHORT_PRESS
