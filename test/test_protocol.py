import pytest

from ollie_teleop.sphero_comms.protocol import (
    CID_ROLL,
    DID_SPHERO,
    MAX_PAYLOAD_SIZE,
    CommandFrame,
    MotorMode,
    SequenceCounter,
    checksum,
    encode_frame,
    heading_payload,
    parse_command_frame,
    raw_motor_payload,
    rgb_payload,
    roll_payload,
    sleep_payload,
)


def test_golden_roll_frame() -> None:
    frame = encode_frame(device_id=0x02, command_id=0x30, sequence=5, payload=[100, 0, 90, 1])

    assert frame == bytes([0xFF, 0xFF, 0x02, 0x30, 0x05, 0x05, 0x64, 0x00, 0x5A, 0x01, 0x04])


@pytest.mark.parametrize(
    "payload",
    [b"", b"\x00", bytes([255] * 8), bytes(range(40)), bytes([0x07, 0xFF, 0x80])],
)
def test_checksum_matches_ones_complement_sum(payload: bytes) -> None:
    frame = encode_frame(0x02, 0x21, 200, payload)
    expected = (~(sum(payload) + 0x02 + 0x21 + 200 + len(payload) + 1)) & 0xFF

    assert frame[-1] == expected
    assert checksum(0x02, 0x21, 200, payload) == expected
    assert frame[5] == len(payload) + 1
    assert len(frame) == 6 + len(payload) + 1


def test_parse_recovers_payload_and_header() -> None:
    payload = bytes([12, 34, 56, 78, 90])
    parsed = parse_command_frame(encode_frame(0x00, 0x22, 255, payload, sop2=0xFE))

    assert parsed.payload == payload
    assert parsed.device_id == 0x00
    assert parsed.command_id == 0x22
    assert parsed.sequence == 255
    assert parsed.sop2 == 0xFE
    assert parsed.checksum == checksum(0x00, 0x22, 255, payload)


def test_command_frame_to_bytes_matches_encode() -> None:
    frame = CommandFrame(device_id=DID_SPHERO, command_id=CID_ROLL, sequence=9, payload=roll_payload(50, 270))

    assert frame.to_bytes() == encode_frame(DID_SPHERO, CID_ROLL, 9, roll_payload(50, 270))
    assert frame.length == 5


def test_parse_rejects_bad_checksum() -> None:
    frame = bytearray(encode_frame(0x02, 0x20, 1, b"\x01\x02\x03\x01"))
    frame[-1] ^= 0xFF
    with pytest.raises(ValueError, match="checksum"):
        parse_command_frame(bytes(frame))


def test_parse_rejects_bad_length_and_sop() -> None:
    frame = encode_frame(0x02, 0x20, 1, b"\x01\x02\x03\x01")
    with pytest.raises(ValueError, match="length"):
        parse_command_frame(frame[:-2])
    with pytest.raises(ValueError, match="SOP1"):
        parse_command_frame(b"\x00" + frame[1:])


def test_payload_too_long_raises() -> None:
    with pytest.raises(ValueError, match="too long"):
        encode_frame(0x02, 0x20, 0, bytes(MAX_PAYLOAD_SIZE + 1))


def test_sequence_counter_wraps_without_repeats() -> None:
    counter = SequenceCounter(start=250)
    values = [next(counter) for _ in range(600)]

    assert values[:8] == [250, 251, 252, 253, 254, 255, 0, 1]
    for start in range(len(values) - 256):
        assert len(set(values[start:start + 256])) == 256


def test_roll_payload_layout() -> None:
    assert roll_payload(255, 300) == bytes([255, 0x01, 0x2C, 0x01])
    assert roll_payload(400, 360) == bytes([255, 0x00, 0x00, 0x01])
    assert roll_payload(-5, -90) == bytes([0, 0x01, 0x0E, 0x01])


def test_heading_and_led_payloads() -> None:
    assert heading_payload(0) == b"\x00\x00"
    assert heading_payload(359) == bytes([0x01, 0x67])
    assert rgb_payload(255, 128, 0) == bytes([255, 128, 0, 1])
    assert rgb_payload(1, 2, 3, persist=False) == bytes([1, 2, 3, 0])


def test_raw_motor_and_sleep_payloads() -> None:
    assert raw_motor_payload(MotorMode.REVERSE, 200, MotorMode.FORWARD, 200) == bytes([2, 200, 1, 200])
    assert sleep_payload() == bytes(5)
    assert sleep_payload(wakeup_s=300) == bytes([0x01, 0x2C, 0, 0, 0])
    with pytest.raises(ValueError):
        raw_motor_payload(9, 0, 0, 0)
    assert raw_motor_payload(MotorMode.BRAKE, 0, MotorMode.BRAKE, 0) == bytes([3, 0, 3, 0])
    with pytest.raises(ValueError):
        raw_motor_payload(4, 0, 4, 0)
