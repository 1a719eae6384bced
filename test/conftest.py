import asyncio
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pytest

from ollie_teleop.controller_input import ButtonState, ControllerSnapshot
from ollie_teleop.sphero_comms.errors import DeviceConnectionError
from ollie_teleop.sphero_comms.protocol import CommandFrame, parse_command_frame
from ollie_teleop.sphero_comms.transport import CONTROL_CHAR_UUID, RESPONSE_CHAR_UUID

BUTTON_COUNT = 17


class FakeLink:
    """In-memory link; ``gate`` holds every write open until it is set."""

    def __init__(self) -> None:
        self.writes: List[Tuple[str, bytes]] = []
        self.connected = False
        self.fail_request = False
        self.fail_connect = False
        self.fail_uuid: Optional[str] = None
        self.fail_command_id: Optional[int] = None
        self.gate: Optional[asyncio.Event] = None
        self.subscriptions: Dict[str, Callable[[bytes], None]] = {}
        self.disconnect_calls = 0
        self._on_disconnect: Optional[Callable[[], None]] = None

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def request(self) -> str:
        if self.fail_request:
            raise DeviceConnectionError("No robot found")
        return "2B-1234 (AA:BB:CC:DD:EE:FF)"

    async def connect(self, on_disconnect: Callable[[], None]) -> None:
        if self.fail_connect:
            raise DeviceConnectionError("Connection failed")
        self.connected = True
        self._on_disconnect = on_disconnect

    async def write(self, char_uuid: str, data: bytes) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_uuid == char_uuid:
            raise OSError(f"write to {char_uuid} failed")
        if char_uuid == CONTROL_CHAR_UUID and self.fail_command_id is not None and data[3] == self.fail_command_id:
            raise OSError(f"command 0x{data[3]:02X} failed")
        self.writes.append((char_uuid, bytes(data)))

    async def subscribe(self, char_uuid: str, handler: Callable[[bytes], None]) -> None:
        self.subscriptions[char_uuid] = handler

    async def disconnect(self) -> None:
        self.connected = False
        self.disconnect_calls += 1

    def drop(self) -> None:
        self.connected = False
        handler, self._on_disconnect = self._on_disconnect, None
        if handler is not None:
            handler()

    def notify(self, data: bytes) -> None:
        self.subscriptions[RESPONSE_CHAR_UUID](data)

    def control_frames(self) -> List[CommandFrame]:
        return [parse_command_frame(data) for uuid, data in self.writes if uuid == CONTROL_CHAR_UUID]

    def clear(self) -> None:
        self.writes.clear()


class FakeSource:
    def __init__(self) -> None:
        self.current: Optional[ControllerSnapshot] = make_snapshot()

    def snapshot(self) -> Optional[ControllerSnapshot]:
        return self.current

    def set(self, pressed: Iterable[int] = (), axes: Tuple[float, ...] = (0.0, 0.0)) -> None:
        self.current = make_snapshot(pressed, axes)


def make_snapshot(pressed: Iterable[int] = (), axes: Tuple[float, ...] = (0.0, 0.0)) -> ControllerSnapshot:
    pressed = set(pressed)
    buttons = [ButtonState(pressed=i in pressed, value=1.0 if i in pressed else 0.0) for i in range(BUTTON_COUNT)]
    return ControllerSnapshot(buttons=tuple(buttons), axes=tuple(axes) + (0.0, 0.0))


@pytest.fixture
def fake_link() -> FakeLink:
    return FakeLink()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def snapshot() -> Callable[..., ControllerSnapshot]:
    return make_snapshot
