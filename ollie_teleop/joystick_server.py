from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import websockets

from .controller_input import ButtonState, ControllerSnapshot

logger = logging.getLogger(__name__)


def _parse_button(raw: Any, index: int) -> ButtonState:
    if isinstance(raw, bool):
        return ButtonState(pressed=raw, value=1.0 if raw else 0.0)
    if isinstance(raw, (int, float)):
        value = max(0.0, min(1.0, float(raw)))
        return ButtonState(pressed=value > 0.0, value=value)
    if isinstance(raw, dict):
        pressed = raw.get("pressed", False)
        if not isinstance(pressed, bool):
            raise ValueError(f"button {index}: 'pressed' must be boolean")
        value = float(raw.get("value", 1.0 if pressed else 0.0))
        return ButtonState(pressed=pressed, value=max(0.0, min(1.0, value)))
    if isinstance(raw, (list, tuple)) and len(raw) == 2 and isinstance(raw[0], bool):
        return ButtonState(pressed=raw[0], value=max(0.0, min(1.0, float(raw[1]))))
    raise ValueError(f"button {index}: unsupported value {raw!r}")


def parse_snapshot(data: Any) -> ControllerSnapshot:
    if not isinstance(data, dict):
        raise ValueError("payload must be object")

    buttons_raw = data.get("buttons", [])
    axes_raw = data.get("axes", [])
    if not isinstance(buttons_raw, list) or not isinstance(axes_raw, list):
        raise ValueError("'buttons' and 'axes' must be arrays")

    buttons = tuple(_parse_button(raw, index) for index, raw in enumerate(buttons_raw))
    axes = []
    for index, raw in enumerate(axes_raw):
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise ValueError(f"axis {index} must be a number")
        axes.append(max(-1.0, min(1.0, float(raw))))
    return ControllerSnapshot(buttons=buttons, axes=tuple(axes))


class JoystickServer:
    """Virtual joystick fed over WebSocket; polled like a gamepad."""

    def __init__(self, host: str = "0.0.0.0", port: int = 8765) -> None:
        self.host = host
        self.port = int(port)
        self._snapshot: Optional[ControllerSnapshot] = None
        self._clients = 0
        self._server = None

    def snapshot(self) -> Optional[ControllerSnapshot]:
        return self._snapshot

    def handle_message(self, raw: str) -> Dict[str, Any]:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            return {"ok": False, "error": f"invalid_json: {exc}"}

        try:
            snapshot = parse_snapshot(data)
        except (TypeError, ValueError) as exc:
            return {"ok": False, "error": str(exc)}

        self._snapshot = snapshot
        return {"ok": True}

    async def _handler(self, websocket) -> None:
        self._clients += 1
        logger.info("Joystick client connected (%d active)", self._clients)
        try:
            await websocket.send(json.dumps({"ok": True, "message": "joystick ready"}, ensure_ascii=True))
            async for raw in websocket:
                response = self.handle_message(raw)
                await websocket.send(json.dumps(response, ensure_ascii=True))
        finally:
            self._clients -= 1
            if self._clients == 0:
                self._snapshot = None
            logger.info("Joystick client disconnected (%d active)", self._clients)

    async def start(self) -> None:
        self._server = await websockets.serve(self._handler, self.host, self.port)
        logger.info("Joystick server listening on ws://%s:%d", self.host, self.port)

    async def stop(self) -> None:
        server, self._server = self._server, None
        if server is None:
            return
        server.close()
        await server.wait_closed()
