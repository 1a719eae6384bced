from __future__ import annotations

from typing import Dict, Optional, Tuple

from pydantic import BaseModel, Field, model_validator


class LinkConfig(BaseModel):
    """BLE link and wake sequence settings"""
    device_name: Optional[str] = Field(None, description="Advertised name prefix; None matches by service UUID")
    scan_timeout_s: float = Field(10.0, gt=0.0, le=60.0, description="Scan timeout")
    connect_timeout_s: float = Field(10.0, gt=0.0, le=60.0, description="GATT connect timeout")
    write_with_response: bool = Field(True, description="Write framed commands with response")
    unlock_code: bytes = Field(b"011i3", description="Anti-DOS unlock payload")
    tx_power: int = Field(7, ge=0, le=7, description="Radio transmit power level")
    sop2: int = Field(0xFF, ge=0x00, le=0xFF, description="SOP2 flag byte of outgoing frames")
    subscribe_telemetry: bool = Field(True, description="Subscribe to power notifications during init")


class TelemetryConfig(BaseModel):
    """Battery voltage to percentage mapping"""
    min_voltage_v: float = Field(3.5, gt=0.0, description="Voltage reported as 0 %")
    max_voltage_v: float = Field(4.2, gt=0.0, description="Voltage reported as 100 %")

    @model_validator(mode="after")
    def _check_range(self) -> "TelemetryConfig":
        if self.max_voltage_v <= self.min_voltage_v:
            raise ValueError("max_voltage_v must be greater than min_voltage_v")
        return self


class DriveConfig(BaseModel):
    """Stick to drive command mapping"""
    deadzone: float = Field(0.15, ge=0.0, lt=1.0, description="Minimum stick magnitude treated as motion")
    speed_bands: Tuple[Tuple[float, int], ...] = Field(
        ((0.2, 85), (0.65, 170), (0.9, 255)),
        description="(magnitude threshold, speed) pairs, ascending",
    )
    trigger_threshold: float = Field(0.5, ge=0.0, le=1.0, description="Analog button press threshold")
    analog_buttons: Tuple[int, ...] = Field((6, 7), description="Buttons read through their analog value")
    stop_watchdog_s: float = Field(0.25, gt=0.0, le=5.0, description="Stop re-send interval while idle")
    min_speed_fraction: float = Field(0.1, gt=0.0, le=1.0)
    initial_speed_fraction: float = Field(0.5, gt=0.0, le=1.0)
    speed_step: float = Field(0.1, gt=0.0, le=1.0)
    normal_cap: float = Field(0.6, gt=0.0, le=1.0, description="Speed ceiling in Normal mode")
    expert_cap: float = Field(1.0, gt=0.0, le=1.0, description="Speed ceiling in Expert mode")

    @model_validator(mode="after")
    def _check_bands(self) -> "DriveConfig":
        if not self.speed_bands:
            raise ValueError("speed_bands must not be empty")
        thresholds = [threshold for threshold, _ in self.speed_bands]
        if thresholds != sorted(thresholds):
            raise ValueError("speed_bands thresholds must be ascending")
        for threshold, speed in self.speed_bands:
            if not 0 <= speed <= 255:
                raise ValueError(f"speed band {threshold} has out-of-range speed {speed}")
        return self


class AimConfig(BaseModel):
    """Hold-to-aim gesture"""
    button: int = Field(3, ge=0, description="Button held to enter aim mode")
    hold_s: float = Field(2.0, gt=0.0, le=10.0, description="Hold duration before aiming starts")
    spin_power: int = Field(60, ge=0, le=255, description="Raw motor power at full lateral deflection")
    rate_deg_s: float = Field(90.0, gt=0.0, description="Heading change per second at full deflection")
    back_led_brightness: int = Field(255, ge=0, le=255, description="Tail light while aiming")


class ButtonMap(BaseModel):
    """Gamepad button indices (standard mapping)"""
    colors: Dict[int, Tuple[int, int, int]] = Field(
        {0: (255, 0, 0), 1: (0, 0, 255), 2: (0, 255, 0), 3: (255, 255, 0)},
        description="Short-press colors in Normal/Expert",
    )
    tricks: Dict[int, str] = Field(
        {0: "spin_left", 1: "flip_forward", 2: "flip_backward", 3: "spin_right"},
        description="Trick per button in Trick mode",
    )
    speed_down: int = Field(4, ge=0, description="Steps one tick late when it is also a combo member")
    speed_up: int = Field(5, ge=0)
    combo: Tuple[int, int] = Field((4, 6), description="Held together to toggle Trick mode")
    cycle_mode: int = Field(9, ge=0, description="Cycles Normal, Expert, Trick")
    brake: int = Field(7, ge=0, description="Priority stop")


class JoystickConfig(BaseModel):
    """Virtual joystick WebSocket server"""
    enabled: bool = Field(True)
    host: str = Field("0.0.0.0", description="Bind address")
    port: int = Field(8765, ge=1, le=65535, description="Bind port")


class TeleopConfig(BaseModel):
    """Top-level teleoperation settings"""
    tick_hz: float = Field(30.0, gt=0.0, le=240.0, description="Control loop rate")
    initial_color: Tuple[int, int, int] = Field((0, 191, 255), description="Color applied after connecting")
    link: LinkConfig = LinkConfig()
    telemetry: TelemetryConfig = TelemetryConfig()
    drive: DriveConfig = DriveConfig()
    aim: AimConfig = AimConfig()
    buttons: ButtonMap = ButtonMap()
    joystick: JoystickConfig = JoystickConfig()

