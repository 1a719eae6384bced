from __future__ import annotations

import math
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Protocol, Sequence, Tuple

from .config import DriveConfig
from .control_logic import round_half_up

SpeedBands = Sequence[Tuple[float, int]]


@dataclass(frozen=True, slots=True)
class ButtonState:
    pressed: bool = False
    value: float = 0.0


@dataclass(frozen=True, slots=True)
class ControllerSnapshot:
    buttons: Tuple[ButtonState, ...] = ()
    axes: Tuple[float, ...] = ()

    def axis(self, index: int) -> float:
        if 0 <= index < len(self.axes):
            return max(-1.0, min(1.0, float(self.axes[index])))
        return 0.0


class InputSource(Protocol):
    def snapshot(self) -> Optional[ControllerSnapshot]: ...


@dataclass(frozen=True, slots=True)
class DriveIntent:
    heading: int
    speed: int
    magnitude: float


@dataclass(frozen=True, slots=True)
class TickInput:
    drive: Optional[DriveIntent]
    lateral: float
    pressed: FrozenSet[int]
    released: FrozenSet[int]
    held: FrozenSet[int]
    combo: bool


def heading_from_vector(x: float, y: float) -> int:
    degrees = math.degrees(math.atan2(x, y))
    if degrees < 0:
        degrees += 360.0
    return round_half_up(degrees) % 360


def speed_for_magnitude(magnitude: float, bands: SpeedBands) -> int:
    """Quantize a stick magnitude onto the configured speed bands.

    The highest band whose threshold is at or below ``magnitude`` wins;
    anything under the first threshold uses the first band.
    """
    speed = bands[0][1]
    for threshold, band_speed in bands:
        if magnitude >= threshold:
            speed = band_speed
    return speed


def drive_intent(x: float, y: float, deadzone: float, bands: SpeedBands) -> Optional[DriveIntent]:
    magnitude = math.hypot(x, y)
    if magnitude < deadzone:
        return None
    return DriveIntent(
        heading=heading_from_vector(x, y),
        speed=speed_for_magnitude(magnitude, bands),
        magnitude=magnitude,
    )


class InputTranslator:
    """Turns one snapshot per tick into drive intents and button edges."""

    def __init__(self, drive_config: Optional[DriveConfig] = None, combo: Tuple[int, int] = (4, 6)) -> None:
        self._config = drive_config if drive_config is not None else DriveConfig()
        self._analog = frozenset(self._config.analog_buttons)
        self._combo = tuple(combo)
        self._previous: Optional[FrozenSet[int]] = None

    def reset(self) -> None:
        self._previous = None

    def pressed_buttons(self, snapshot: ControllerSnapshot) -> FrozenSet[int]:
        held = set()
        for index, button in enumerate(snapshot.buttons):
            if index in self._analog:
                if button.value > self._config.trigger_threshold:
                    held.add(index)
            elif button.pressed:
                held.add(index)
        return frozenset(held)

    def _combo_held(self, held: Iterable[int]) -> bool:
        held = set(held)
        return all(index in held for index in self._combo)

    def translate(self, snapshot: ControllerSnapshot) -> TickInput:
        held = self.pressed_buttons(snapshot)
        previous = self._previous if self._previous is not None else held
        self._previous = held

        pressed = held - previous
        released = previous - held

        combo = self._combo_held(held) and not self._combo_held(previous)
        if combo:
            pressed = pressed - frozenset(self._combo)

        x = snapshot.axis(0)
        y = -snapshot.axis(1)
        return TickInput(
            drive=drive_intent(x, y, self._config.deadzone, self._config.speed_bands),
            lateral=x,
            pressed=pressed,
            released=released,
            held=held,
            combo=combo,
        )
