from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from .errors import TelemetryParseError

logger = logging.getLogger(__name__)

ASYNC_SOP1 = 0xFF
ASYNC_SOP2 = 0xFE
ASYNC_HEADER_SIZE = 5

ID_POWER_NOTIFICATION = 0x01
POWER_DATA_SIZE = 3

DEFAULT_MIN_VOLTAGE_V = 3.5
DEFAULT_MAX_VOLTAGE_V = 4.2


class PowerState(IntEnum):
    UNKNOWN = 0
    CHARGING = 1
    OK = 2
    LOW = 3
    CRITICAL = 4


@dataclass(slots=True)
class PowerTelemetry:
    power_state: PowerState
    voltage_v: float
    battery_pct: float
    raw_centivolts: int
    rx_monotonic_s: float

    @property
    def charging(self) -> bool:
        return self.power_state == PowerState.CHARGING

    @property
    def low(self) -> bool:
        return self.power_state in (PowerState.LOW, PowerState.CRITICAL)


def async_checksum(body: bytes) -> int:
    return (~sum(body)) & 0xFF


def battery_percent(
    voltage_v: float,
    min_voltage_v: float = DEFAULT_MIN_VOLTAGE_V,
    max_voltage_v: float = DEFAULT_MAX_VOLTAGE_V,
) -> float:
    if max_voltage_v <= min_voltage_v:
        raise ValueError("max_voltage_v must be greater than min_voltage_v")
    ratio = (voltage_v - min_voltage_v) / (max_voltage_v - min_voltage_v)
    return max(0.0, min(100.0, ratio * 100.0))


def decode_power_frame(
    frame: bytes,
    min_voltage_v: float = DEFAULT_MIN_VOLTAGE_V,
    max_voltage_v: float = DEFAULT_MAX_VOLTAGE_V,
    rx_monotonic_s: Optional[float] = None,
) -> PowerTelemetry:
    if len(frame) < ASYNC_HEADER_SIZE + 1:
        raise TelemetryParseError(f"Notification too short: {len(frame)} bytes")
    if frame[0] != ASYNC_SOP1 or frame[1] != ASYNC_SOP2:
        raise TelemetryParseError(f"Not an async notification: {bytes(frame[:2]).hex(' ')}")
    if frame[2] != ID_POWER_NOTIFICATION:
        raise TelemetryParseError(f"Unsupported notification id: 0x{frame[2]:02X}")

    dlen = (frame[3] << 8) | frame[4]
    if len(frame) != ASYNC_HEADER_SIZE + dlen:
        raise TelemetryParseError(f"Invalid notification length: dlen={dlen}, got {len(frame)} bytes")

    expected = async_checksum(bytes(frame[2:-1]))
    if frame[-1] != expected:
        raise TelemetryParseError(
            f"Invalid notification checksum: got 0x{frame[-1]:02X}, expected 0x{expected:02X}"
        )

    data = frame[ASYNC_HEADER_SIZE:-1]
    if len(data) < POWER_DATA_SIZE:
        raise TelemetryParseError(f"Power notification data too short: {len(data)} bytes")

    try:
        state = PowerState(data[0])
    except ValueError:
        state = PowerState.UNKNOWN
    centivolts = (data[1] << 8) | data[2]
    voltage_v = centivolts / 100.0

    return PowerTelemetry(
        power_state=state,
        voltage_v=voltage_v,
        battery_pct=battery_percent(voltage_v, min_voltage_v, max_voltage_v),
        raw_centivolts=centivolts,
        rx_monotonic_s=time.monotonic() if rx_monotonic_s is None else rx_monotonic_s,
    )


def decode_notification(
    frame: bytes,
    min_voltage_v: float = DEFAULT_MIN_VOLTAGE_V,
    max_voltage_v: float = DEFAULT_MAX_VOLTAGE_V,
    rx_monotonic_s: Optional[float] = None,
) -> Optional[PowerTelemetry]:
    try:
        return decode_power_frame(frame, min_voltage_v, max_voltage_v, rx_monotonic_s)
    except TelemetryParseError as exc:
        logger.debug("Ignoring notification %s: %s", bytes(frame).hex(" "), exc)
        return None
