from __future__ import annotations

import logging
from enum import Enum
from functools import partial
from typing import Optional

from ..bus import BatteryUpdated, ConnectionStateChanged, EventBus
from ..config import LinkConfig, TelemetryConfig
from .channel import ChannelStats, CommandChannel, SendOutcome
from .errors import DeviceConnectionError, InitializationError
from .protocol import (
    CID_ROLL,
    CID_SET_BACK_LED,
    CID_SET_HEADING,
    CID_SET_POWER_NOTIFICATION,
    CID_SET_RAW_MOTORS,
    CID_SET_RGB_LED,
    CID_SLEEP,
    DID_CORE,
    DID_SPHERO,
    MotorMode,
    SequenceCounter,
    back_led_payload,
    encode_frame,
    heading_payload,
    normalize_heading,
    power_notification_payload,
    raw_motor_payload,
    rgb_payload,
    roll_payload,
    sleep_payload,
)
from .telemetry import PowerTelemetry, decode_notification
from .transport import (
    ANTI_DOS_CHAR_UUID,
    CONTROL_CHAR_UUID,
    RESPONSE_CHAR_UUID,
    TX_POWER_CHAR_UUID,
    WAKE_CPU_CHAR_UUID,
    Link,
)

logger = logging.getLogger(__name__)

WAKE_CPU_VALUE = b"\x01"


class SessionState(Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    CONNECTING = "connecting"
    INITIALIZING = "initializing"
    READY = "ready"
    DISCONNECTED = "disconnected"


class DeviceSession:
    """One connection attempt to one robot.

    A session moves IDLE -> REQUESTING -> CONNECTING -> INITIALIZING -> READY
    and ends in DISCONNECTED. It is never reused; reconnecting means building
    a new session, which builds a new command channel.
    """

    def __init__(
        self,
        link: Link,
        bus: Optional[EventBus] = None,
        link_config: Optional[LinkConfig] = None,
        telemetry_config: Optional[TelemetryConfig] = None,
    ) -> None:
        self._link = link
        self._bus = bus if bus is not None else EventBus()
        self._link_config = link_config if link_config is not None else LinkConfig()
        self._telemetry_config = telemetry_config if telemetry_config is not None else TelemetryConfig()

        self._state = SessionState.IDLE
        self._channel: Optional[CommandChannel] = None
        self._sequence = SequenceCounter()

        self.device_label: Optional[str] = None
        self.current_heading = 0
        self.latest_telemetry: Optional[PowerTelemetry] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is SessionState.READY and self._channel is not None

    @property
    def channel(self) -> Optional[CommandChannel]:
        return self._channel

    def get_stats(self) -> ChannelStats:
        if self._channel is None:
            return ChannelStats()
        return self._channel.get_stats()

    def _set_state(self, state: SessionState, error: Optional[BaseException] = None) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        logger.info("Session %s -> %s", previous.name, state.name)
        self._bus.publish(ConnectionStateChanged(state=state, previous=previous, error=error))

    def _frame(self, device_id: int, command_id: int, payload: bytes) -> bytes:
        return encode_frame(device_id, command_id, next(self._sequence), payload, sop2=self._link_config.sop2)

    def _drop_handles(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            channel.close()

    async def _abort(self, error: BaseException) -> None:
        self._drop_handles()
        await self._link.disconnect()
        self._set_state(SessionState.DISCONNECTED, error)

    async def connect(self) -> None:
        if self._state is not SessionState.IDLE:
            raise DeviceConnectionError(f"Session cannot be reused (state={self._state.name})")

        self._set_state(SessionState.REQUESTING)
        try:
            self.device_label = await self._link.request()
            self._set_state(SessionState.CONNECTING)
            await self._link.connect(self._on_link_lost)
        except Exception as exc:
            error = exc if isinstance(exc, DeviceConnectionError) else DeviceConnectionError(str(exc))
            await self._abort(error)
            if error is exc:
                raise
            raise error from exc

        self._set_state(SessionState.INITIALIZING)
        self._channel = CommandChannel(partial(self._link.write, CONTROL_CHAR_UUID))
        try:
            await self._initialize(self._channel)
        except Exception as exc:
            error = InitializationError(f"Initialization failed: {exc}")
            await self._abort(error)
            raise error from exc

        if self._state is not SessionState.INITIALIZING:
            raise InitializationError("Link lost during initialization")
        self._set_state(SessionState.READY)

    async def _initialize(self, channel: CommandChannel) -> None:
        cfg = self._link_config

        await self._link.write(ANTI_DOS_CHAR_UUID, bytes(cfg.unlock_code))
        logger.info("Wrote anti-DOS unlock")
        await self._link.write(TX_POWER_CHAR_UUID, bytes([cfg.tx_power]))
        logger.info("Wrote TX power %d", cfg.tx_power)
        await self._link.write(WAKE_CPU_CHAR_UUID, WAKE_CPU_VALUE)
        logger.info("Wrote wake CPU")

        if cfg.subscribe_telemetry:
            await self._link.subscribe(RESPONSE_CHAR_UUID, self._on_notification)
            await channel.write_checked(
                self._frame(DID_CORE, CID_SET_POWER_NOTIFICATION, power_notification_payload(True))
            )
            logger.info("Subscribed to power notifications")

        await channel.write_checked(self._frame(DID_SPHERO, CID_SET_BACK_LED, back_led_payload(0)))
        await channel.write_checked(self._frame(DID_SPHERO, CID_SET_HEADING, heading_payload(0)))
        self.current_heading = 0
        logger.info("Heading zeroed, device is ready")

    def _on_link_lost(self) -> None:
        if self._state is SessionState.DISCONNECTED:
            return
        logger.warning("Link lost while %s", self._state.name)
        self._drop_handles()
        self._set_state(SessionState.DISCONNECTED)

    def _on_notification(self, data: bytes) -> None:
        telemetry = decode_notification(
            data,
            min_voltage_v=self._telemetry_config.min_voltage_v,
            max_voltage_v=self._telemetry_config.max_voltage_v,
        )
        if telemetry is None:
            return
        self.latest_telemetry = telemetry
        self._bus.publish(BatteryUpdated(telemetry=telemetry))

    def _send(self, device_id: int, command_id: int, payload: bytes, priority: bool) -> SendOutcome:
        channel = self._channel
        if self._state is not SessionState.READY or channel is None:
            return SendOutcome.OFFLINE
        return channel.send(self._frame(device_id, command_id, payload), priority=priority)

    def drive(self, heading: int, speed: int, priority: bool = False) -> SendOutcome:
        heading = normalize_heading(heading)
        if self.ready:
            self.current_heading = heading
        return self._send(DID_SPHERO, CID_ROLL, roll_payload(speed, heading), priority)

    def set_color(self, red: int, green: int, blue: int, priority: bool = False) -> SendOutcome:
        return self._send(DID_SPHERO, CID_SET_RGB_LED, rgb_payload(red, green, blue), priority)

    def set_back_led(self, brightness: int, priority: bool = False) -> SendOutcome:
        return self._send(DID_SPHERO, CID_SET_BACK_LED, back_led_payload(brightness), priority)

    def set_heading(self, heading: int, priority: bool = False) -> SendOutcome:
        return self._send(DID_SPHERO, CID_SET_HEADING, heading_payload(heading), priority)

    def set_raw_motors(
        self,
        left_mode: int,
        left_power: int,
        right_mode: int,
        right_power: int,
        priority: bool = False,
    ) -> SendOutcome:
        payload = raw_motor_payload(left_mode, left_power, right_mode, right_power)
        return self._send(DID_SPHERO, CID_SET_RAW_MOTORS, payload, priority)

    def stop(self) -> SendOutcome:
        return self.set_raw_motors(MotorMode.BRAKE, 0, MotorMode.BRAKE, 0, priority=True)

    async def sleep(self) -> SendOutcome:
        channel = self._channel
        if self._state is not SessionState.READY or channel is None:
            return SendOutcome.OFFLINE
        outcome = await channel.send_and_wait(self._frame(DID_CORE, CID_SLEEP, sleep_payload()), priority=True)
        logger.info("Sleep command %s", outcome.value)
        await self.disconnect()
        return outcome

    async def disconnect(self) -> None:
        if self._state is SessionState.DISCONNECTED:
            return
        self._drop_handles()
        await self._link.disconnect()
        self._set_state(SessionState.DISCONNECTED)
