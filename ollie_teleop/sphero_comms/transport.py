from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from .errors import DeviceConnectionError

logger = logging.getLogger(__name__)

RADIO_SERVICE_UUID = "22bb746f-2bb0-7554-2d6f-726568705327"
ANTI_DOS_CHAR_UUID = "22bb746f-2bbd-7554-2d6f-726568705327"
TX_POWER_CHAR_UUID = "22bb746f-2bb2-7554-2d6f-726568705327"
WAKE_CPU_CHAR_UUID = "22bb746f-2bbf-7554-2d6f-726568705327"

ROBOT_SERVICE_UUID = "22bb746f-2ba0-7554-2d6f-726568705327"
CONTROL_CHAR_UUID = "22bb746f-2ba1-7554-2d6f-726568705327"
RESPONSE_CHAR_UUID = "22bb746f-2ba6-7554-2d6f-726568705327"

NotificationHandler = Callable[[bytes], None]
DisconnectHandler = Callable[[], None]


class Link(Protocol):
    """What a device session needs from the radio."""

    @property
    def is_connected(self) -> bool: ...

    async def request(self) -> str: ...

    async def connect(self, on_disconnect: DisconnectHandler) -> None: ...

    async def write(self, char_uuid: str, data: bytes) -> None: ...

    async def subscribe(self, char_uuid: str, handler: NotificationHandler) -> None: ...

    async def disconnect(self) -> None: ...


class BleLink:
    """BLE link to one robot, backed by bleak."""

    def __init__(
        self,
        device_name: Optional[str] = None,
        scan_timeout_s: float = 10.0,
        connect_timeout_s: float = 10.0,
        write_with_response: bool = True,
    ) -> None:
        if scan_timeout_s <= 0:
            raise ValueError("scan_timeout_s must be > 0")

        self.device_name = device_name
        self.scan_timeout_s = float(scan_timeout_s)
        self.connect_timeout_s = float(connect_timeout_s)
        self.write_with_response = bool(write_with_response)

        self._device: Optional[BLEDevice] = None
        self._client: Optional[BleakClient] = None
        self._on_disconnect: Optional[DisconnectHandler] = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    def _matches(self, device: BLEDevice, adv: AdvertisementData) -> bool:
        if self.device_name is not None:
            name = adv.local_name or device.name or ""
            return name.startswith(self.device_name)
        uuids = {uuid.lower() for uuid in adv.service_uuids}
        return bool(uuids & {RADIO_SERVICE_UUID, ROBOT_SERVICE_UUID})

    async def request(self) -> str:
        logger.info("Scanning for robot (name=%s, timeout=%.1fs)", self.device_name, self.scan_timeout_s)
        try:
            device = await BleakScanner.find_device_by_filter(self._matches, timeout=self.scan_timeout_s)
        except (BleakError, OSError) as exc:
            raise DeviceConnectionError(f"BLE scan failed: {exc}") from exc

        if device is None:
            raise DeviceConnectionError("No robot found")

        self._device = device
        logger.info("Found %s at %s", device.name, device.address)
        return f"{device.name} ({device.address})"

    async def connect(self, on_disconnect: DisconnectHandler) -> None:
        if self._device is None:
            raise DeviceConnectionError("Device is not requested yet")

        self._on_disconnect = on_disconnect
        client = BleakClient(
            self._device,
            disconnected_callback=self._handle_disconnect,
            timeout=self.connect_timeout_s,
        )
        try:
            await client.connect()
        except (BleakError, OSError, asyncio.TimeoutError) as exc:
            raise DeviceConnectionError(f"Connection to {self._device.address} failed: {exc}") from exc

        if not client.is_connected:
            raise DeviceConnectionError(f"Connection to {self._device.address} failed")
        self._client = client

    def _handle_disconnect(self, client: BleakClient) -> None:
        logger.info("Link to %s lost", client.address)
        self._client = None
        handler, self._on_disconnect = self._on_disconnect, None
        if handler is not None:
            handler()

    def _require_client(self) -> BleakClient:
        if self._client is None or not self._client.is_connected:
            raise BleakError("link not connected")
        return self._client

    async def write(self, char_uuid: str, data: bytes) -> None:
        client = self._require_client()
        await client.write_gatt_char(char_uuid, data, response=self.write_with_response)

    async def subscribe(self, char_uuid: str, handler: NotificationHandler) -> None:
        client = self._require_client()

        def _on_notify(sender: BleakGATTCharacteristic, data: bytearray) -> None:
            handler(bytes(data))

        await client.start_notify(char_uuid, _on_notify)

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        self._on_disconnect = None
        if client is None:
            return
        try:
            await client.disconnect()
        except (BleakError, OSError) as exc:
            logger.warning("Disconnect failed: %s", exc)
