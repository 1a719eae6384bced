import pytest

from ollie_teleop.config import DriveConfig
from ollie_teleop.controller_input import (
    ButtonState,
    ControllerSnapshot,
    InputTranslator,
    drive_intent,
    heading_from_vector,
    speed_for_magnitude,
)

BANDS = ((0.2, 85), (0.65, 170), (0.9, 255))


def test_scenario_lateral_push_is_east_at_first_band() -> None:
    intent = drive_intent(0.6, 0.0, deadzone=0.15, bands=BANDS)

    assert intent is not None
    assert intent.magnitude == pytest.approx(0.6)
    assert intent.heading == 90
    assert intent.speed == 85


def test_below_deadzone_has_no_intent() -> None:
    assert drive_intent(0.1, 0.1, deadzone=0.15, bands=BANDS) is None
    assert drive_intent(0.0, 0.1499, deadzone=0.15, bands=BANDS) is None


def test_deadzone_boundary_is_inclusive() -> None:
    intent = drive_intent(0.0, 0.15, deadzone=0.15, bands=BANDS)

    assert intent is not None
    assert intent.speed == 85


@pytest.mark.parametrize(
    "magnitude, speed",
    [(0.16, 85), (0.2, 85), (0.64, 85), (0.65, 170), (0.89, 170), (0.9, 255), (1.41, 255)],
)
def test_speed_bands(magnitude: float, speed: int) -> None:
    assert speed_for_magnitude(magnitude, BANDS) == speed


@pytest.mark.parametrize(
    "x, y, heading",
    [(0.0, 1.0, 0), (1.0, 0.0, 90), (0.0, -1.0, 180), (-1.0, 0.0, 270), (-0.001, 1.0, 0), (1.0, 1.0, 45)],
)
def test_heading_is_normalized(x: float, y: float, heading: int) -> None:
    assert heading_from_vector(x, y) == heading


def test_stick_up_drives_forward(snapshot) -> None:
    translator = InputTranslator(DriveConfig())
    tick = translator.translate(snapshot(axes=(0.0, -1.0)))

    assert tick.drive is not None
    assert tick.drive.heading == 0
    assert tick.drive.speed == 255


def test_press_edges_fire_once(snapshot) -> None:
    translator = InputTranslator(DriveConfig())
    translator.translate(snapshot())

    first = translator.translate(snapshot(pressed={0}))
    held = translator.translate(snapshot(pressed={0}))
    released = translator.translate(snapshot())

    assert first.pressed == {0}
    assert held.pressed == frozenset()
    assert held.held == {0}
    assert released.released == {0}


def test_first_snapshot_does_not_fire_held_buttons(snapshot) -> None:
    translator = InputTranslator(DriveConfig())
    tick = translator.translate(snapshot(pressed={1}))

    assert tick.pressed == frozenset()
    assert tick.held == {1}


def test_combo_on_same_tick_is_one_event(snapshot) -> None:
    translator = InputTranslator(DriveConfig(), combo=(4, 6))
    translator.translate(snapshot())

    tick = translator.translate(snapshot(pressed={4, 6}))
    again = translator.translate(snapshot(pressed={4, 6}))

    assert tick.combo is True
    assert 4 not in tick.pressed and 6 not in tick.pressed
    assert again.combo is False


def test_combo_completed_across_ticks(snapshot) -> None:
    translator = InputTranslator(DriveConfig(), combo=(4, 6))
    translator.translate(snapshot())

    first = translator.translate(snapshot(pressed={4}))
    second = translator.translate(snapshot(pressed={4, 6}))

    assert first.pressed == {4}
    assert first.combo is False
    assert second.combo is True
    assert second.pressed == frozenset()


def test_analog_trigger_uses_threshold() -> None:
    translator = InputTranslator(DriveConfig(trigger_threshold=0.5, analog_buttons=(6,)))
    soft = ControllerSnapshot(buttons=tuple([ButtonState()] * 6 + [ButtonState(pressed=True, value=0.3)]))
    hard = ControllerSnapshot(buttons=tuple([ButtonState()] * 6 + [ButtonState(pressed=True, value=0.8)]))

    assert translator.pressed_buttons(soft) == frozenset()
    assert translator.pressed_buttons(hard) == {6}


def test_missing_axes_read_as_centered() -> None:
    translator = InputTranslator(DriveConfig())
    tick = translator.translate(ControllerSnapshot())

    assert tick.drive is None
    assert tick.lateral == 0.0
