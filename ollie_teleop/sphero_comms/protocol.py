from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Iterator, Union

SOP1 = 0xFF
SOP2_ANSWER = 0x01
SOP2_RESET_TIMEOUT = 0x02
# Upper six bits are reserved and sent as ones.
SOP2_DEFAULT = 0xFC | SOP2_ANSWER | SOP2_RESET_TIMEOUT

HEADER_SIZE = 6
MAX_PAYLOAD_SIZE = 254

DID_CORE = 0x00
DID_SPHERO = 0x02

CID_SET_POWER_NOTIFICATION = 0x21
CID_SLEEP = 0x22

CID_SET_HEADING = 0x01
CID_SET_RGB_LED = 0x20
CID_SET_BACK_LED = 0x21
CID_ROLL = 0x30
CID_SET_RAW_MOTORS = 0x33

ROLL_STATE_GO = 0x01
RGB_FLAG_PERSIST = 0x01

Payload = Union[bytes, bytearray, Iterable[int]]


class MotorMode(IntEnum):
    OFF = 0x00
    FORWARD = 0x01
    REVERSE = 0x02
    BRAKE = 0x03


def _clamp_byte(value: float) -> int:
    return max(0, min(255, int(round(value))))


def _as_payload(payload: Payload) -> bytes:
    data = bytes(payload)
    if len(data) > MAX_PAYLOAD_SIZE:
        raise ValueError(f"Payload too long: {len(data)} bytes (max {MAX_PAYLOAD_SIZE})")
    return data


def checksum(device_id: int, command_id: int, sequence: int, payload: Payload) -> int:
    data = bytes(payload)
    total = sum(data) + device_id + command_id + sequence + (len(data) + 1)
    return (~total) & 0xFF


@dataclass(slots=True)
class CommandFrame:
    device_id: int
    command_id: int
    sequence: int
    payload: bytes = b""
    sop2: int = SOP2_DEFAULT

    @property
    def length(self) -> int:
        return len(self.payload) + 1

    @property
    def checksum(self) -> int:
        return checksum(self.device_id, self.command_id, self.sequence, self.payload)

    def to_bytes(self) -> bytes:
        return encode_frame(self.device_id, self.command_id, self.sequence, self.payload, self.sop2)

    def __repr__(self) -> str:
        return (
            f"CommandFrame(did=0x{self.device_id:02X}, cid=0x{self.command_id:02X}, "
            f"seq={self.sequence}, payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


def encode_frame(
    device_id: int,
    command_id: int,
    sequence: int,
    payload: Payload = b"",
    sop2: int = SOP2_DEFAULT,
) -> bytes:
    data = _as_payload(payload)
    frame = bytearray(HEADER_SIZE + len(data) + 1)
    frame[0] = SOP1
    frame[1] = sop2 & 0xFF
    frame[2] = device_id & 0xFF
    frame[3] = command_id & 0xFF
    frame[4] = sequence & 0xFF
    frame[5] = len(data) + 1
    frame[HEADER_SIZE:-1] = data
    frame[-1] = checksum(frame[2], frame[3], frame[4], data)
    return bytes(frame)


def parse_command_frame(raw: bytes) -> CommandFrame:
    if len(raw) < HEADER_SIZE + 1:
        raise ValueError(f"Frame too short: {len(raw)} bytes")
    if raw[0] != SOP1:
        raise ValueError(f"Invalid SOP1: 0x{raw[0]:02X}")

    dlen = raw[5]
    if dlen < 1 or len(raw) != HEADER_SIZE + dlen:
        raise ValueError(f"Invalid frame length: dlen={dlen}, got {len(raw)} bytes")

    payload = bytes(raw[HEADER_SIZE:-1])
    expected = checksum(raw[2], raw[3], raw[4], payload)
    if raw[-1] != expected:
        raise ValueError(f"Invalid checksum: got 0x{raw[-1]:02X}, expected 0x{expected:02X}")

    return CommandFrame(
        device_id=raw[2],
        command_id=raw[3],
        sequence=raw[4],
        payload=payload,
        sop2=raw[1],
    )


class SequenceCounter:
    """Wrapping 8-bit sequence number source."""

    __slots__ = ("_next",)

    def __init__(self, start: int = 0) -> None:
        self._next = start & 0xFF

    def __iter__(self) -> Iterator[int]:
        return self

    def __next__(self) -> int:
        value = self._next
        self._next = (self._next + 1) & 0xFF
        return value


def normalize_heading(heading: float) -> int:
    return int(round(heading)) % 360


def roll_payload(speed: int, heading: int) -> bytes:
    heading = normalize_heading(heading)
    return bytes([_clamp_byte(speed), (heading >> 8) & 0xFF, heading & 0xFF, ROLL_STATE_GO])


def heading_payload(heading: int) -> bytes:
    heading = normalize_heading(heading)
    return bytes([(heading >> 8) & 0xFF, heading & 0xFF])


def rgb_payload(red: int, green: int, blue: int, persist: bool = True) -> bytes:
    flag = RGB_FLAG_PERSIST if persist else 0x00
    return bytes([_clamp_byte(red), _clamp_byte(green), _clamp_byte(blue), flag])


def back_led_payload(brightness: int) -> bytes:
    return bytes([_clamp_byte(brightness)])


def raw_motor_payload(left_mode: int, left_power: int, right_mode: int, right_power: int) -> bytes:
    return bytes(
        [
            MotorMode(left_mode),
            _clamp_byte(left_power),
            MotorMode(right_mode),
            _clamp_byte(right_power),
        ]
    )


def sleep_payload(wakeup_s: int = 0, macro: int = 0, orb_basic_line: int = 0) -> bytes:
    wakeup_s = max(0, min(0xFFFF, int(wakeup_s)))
    orb_basic_line = max(0, min(0xFFFF, int(orb_basic_line)))
    return bytes(
        [
            (wakeup_s >> 8) & 0xFF,
            wakeup_s & 0xFF,
            macro & 0xFF,
            (orb_basic_line >> 8) & 0xFF,
            orb_basic_line & 0xFF,
        ]
    )


def power_notification_payload(enabled: bool) -> bytes:
    return bytes([0x01 if enabled else 0x00])
