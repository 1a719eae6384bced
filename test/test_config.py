import pytest
from pydantic import ValidationError

from ollie_teleop.config import DriveConfig, LinkConfig, TeleopConfig, TelemetryConfig


def test_defaults() -> None:
    cfg = TeleopConfig()

    assert cfg.tick_hz == 30.0
    assert cfg.link.unlock_code == b"011i3"
    assert cfg.link.tx_power == 7
    assert cfg.drive.deadzone == 0.15
    assert cfg.drive.speed_bands[0] == (0.2, 85)
    assert cfg.drive.normal_cap < cfg.drive.expert_cap
    assert cfg.buttons.combo == (4, 6)
    assert cfg.aim.hold_s == 2.0
    assert cfg.joystick.port == 8765


def test_overrides_are_validated() -> None:
    cfg = TeleopConfig(link=LinkConfig(device_name="2B-", subscribe_telemetry=False), tick_hz=60)

    assert cfg.link.device_name == "2B-"
    assert cfg.tick_hz == 60.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"speed_bands": ()},
        {"speed_bands": ((0.6, 170), (0.2, 85))},
        {"speed_bands": ((0.2, 300),)},
        {"deadzone": 1.0},
        {"normal_cap": 0.0},
    ],
)
def test_invalid_drive_config(kwargs) -> None:
    with pytest.raises(ValidationError):
        DriveConfig(**kwargs)


def test_invalid_voltage_range() -> None:
    with pytest.raises(ValidationError):
        TelemetryConfig(min_voltage_v=4.2, max_voltage_v=3.5)


def test_invalid_link_settings() -> None:
    with pytest.raises(ValidationError):
        LinkConfig(tx_power=8)
    with pytest.raises(ValidationError):
        TeleopConfig(tick_hz=0)
