from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Set, Tuple

from .bus import BatteryUpdated, EventBus, ModeChanged
from .config import TeleopConfig
from .control_logic import (
    DRIVING_MODES,
    TRICKS,
    AimEvent,
    AimHold,
    Color,
    Mode,
    ModeMachine,
    adjust_speed_fraction,
    advance_heading,
    aim_spin,
    clamp,
    mode_cap,
    round_half_up,
    scale_color,
    scaled_speed,
)
from .controller_input import DriveIntent, InputSource, InputTranslator, TickInput
from .sphero_comms.channel import SendOutcome
from .sphero_comms.protocol import MotorMode
from .sphero_comms.session import DeviceSession, SessionState
from .sphero_comms.transport import BleLink

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], DeviceSession]
Command = Callable[[DeviceSession], SendOutcome]


class TeleopNode:
    """Per-tick orchestrator between a controller source and one robot session."""

    def __init__(
        self,
        source: InputSource,
        bus: Optional[EventBus] = None,
        config: Optional[TeleopConfig] = None,
        session_factory: Optional[SessionFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config if config is not None else TeleopConfig()
        self._source = source
        self._bus = bus if bus is not None else EventBus()
        self._session_factory = session_factory if session_factory is not None else self._ble_session
        self._clock = clock

        self._session: Optional[DeviceSession] = None
        self._translator = InputTranslator(self._config.drive, combo=self._config.buttons.combo)
        self._modes = ModeMachine()
        self._aim = AimHold(self._config.aim.hold_s)

        drive = self._config.drive
        self.max_speed_fraction = clamp(
            drive.initial_speed_fraction, drive.min_speed_fraction, mode_cap(Mode.NORMAL, drive)
        )
        self.current_color = Color(*self._config.initial_color)
        self.battery_pct: Optional[float] = None

        self._driving = False
        self._last_heading = 0
        self._last_stop_s: Optional[float] = None
        self._led_pending = False
        self._aim_heading = 0.0
        self._aim_spinning = False
        self._last_tick_s: Optional[float] = None
        self._deferred_step = 0.0
        self._pulses: Set[asyncio.Task] = set()

        self._bus.subscribe(BatteryUpdated, self._on_battery)

    def _ble_session(self) -> DeviceSession:
        link_cfg = self._config.link
        link = BleLink(
            device_name=link_cfg.device_name,
            scan_timeout_s=link_cfg.scan_timeout_s,
            connect_timeout_s=link_cfg.connect_timeout_s,
            write_with_response=link_cfg.write_with_response,
        )
        return DeviceSession(link, bus=self._bus, link_config=link_cfg, telemetry_config=self._config.telemetry)

    @property
    def mode(self) -> Mode:
        return self._modes.mode

    @property
    def session(self) -> Optional[DeviceSession]:
        return self._session

    @property
    def driving(self) -> bool:
        return self._driving

    @property
    def aim_heading(self) -> int:
        return round_half_up(self._aim_heading) % 360

    # Session lifecycle

    async def connect(self) -> DeviceSession:
        if self._session is not None and self._session.state is not SessionState.DISCONNECTED:
            await self._session.disconnect()

        self._reset_motion()
        session = self._session_factory()
        self._session = session
        await session.connect()

        self._led_pending = True
        self._flush_led()
        return session

    async def disconnect(self) -> None:
        self._cancel_pulses()
        self._reset_motion()
        if self._session is not None:
            await self._session.disconnect()

    async def sleep(self) -> SendOutcome:
        self._cancel_pulses()
        self._reset_motion()
        if self._session is None:
            return SendOutcome.OFFLINE
        return await self._session.sleep()

    def _reset_motion(self) -> None:
        self._deferred_step = 0.0
        self._driving = False
        self._last_stop_s = None
        self._led_pending = False
        self._aim_spinning = False
        self._aim.cancel()
        if self._modes.mode is Mode.AIMING:
            self._modes.exit_aiming()
        self._translator.reset()

    def _send(self, command: Command) -> SendOutcome:
        session = self._session
        if session is None:
            return SendOutcome.OFFLINE
        return command(session)

    def _on_battery(self, event: BatteryUpdated) -> None:
        self.battery_pct = event.battery_pct

    # Tick

    def tick(self, now: Optional[float] = None) -> Optional[TickInput]:
        now = self._clock() if now is None else now
        dt = 0.0 if self._last_tick_s is None else max(0.0, now - self._last_tick_s)
        self._last_tick_s = now

        snapshot = self._source.snapshot()
        if snapshot is None:
            self._on_source_lost(now)
            return None

        tick = self._translator.translate(snapshot)
        buttons = self._config.buttons

        deferred, self._deferred_step = self._deferred_step, 0.0
        if tick.combo:
            deferred = 0.0
            self._change_mode(self._modes.toggle_trick)
        if buttons.cycle_mode in tick.pressed:
            self._change_mode(self._modes.cycle)
        if deferred:
            self._adjust_speed(deferred)
        step = self._config.drive.speed_step
        if buttons.speed_down in tick.pressed:
            self._speed_button(buttons.speed_down, -step)
        if buttons.speed_up in tick.pressed:
            self._speed_button(buttons.speed_up, step)
        if buttons.brake in tick.pressed:
            self._brake()

        if self._modes.mode is Mode.TRICK:
            self._tick_trick(tick)
        else:
            self._tick_driving(tick, now, dt)
        return tick

    def _on_source_lost(self, now: float) -> None:
        self._deferred_step = 0.0
        self._translator.reset()
        if self._modes.mode is Mode.AIMING:
            self._exit_aiming()
        self._aim.cancel()
        if self._modes.mode in DRIVING_MODES:
            self._flush_led()
            self._tick_motion(None, now)

    # Modes and speed

    def _change_mode(self, transition: Callable[[], Mode]) -> None:
        previous = self._modes.mode
        mode = transition()
        if mode is previous:
            return

        if mode is Mode.TRICK:
            if self._driving:
                self._send(lambda s: s.stop())
            self._driving = False
            self._last_stop_s = None
        elif previous is Mode.TRICK:
            self._cancel_pulses(stop=True)
        self._aim.cancel()

        self._clamp_speed()
        self._led_pending = True
        logger.info("Mode %s -> %s", previous.name, mode.name)
        self._bus.publish(ModeChanged(mode=mode, previous=previous))

    def _clamp_speed(self) -> None:
        drive = self._config.drive
        cap = mode_cap(self._modes.cap_mode, drive)
        self.max_speed_fraction = clamp(self.max_speed_fraction, drive.min_speed_fraction, cap)

    def _speed_button(self, index: int, delta: float) -> None:
        # A combo member waits one tick: the other member may still follow.
        if index in self._config.buttons.combo:
            self._deferred_step += delta
        else:
            self._adjust_speed(delta)

    def _adjust_speed(self, delta: float) -> None:
        drive = self._config.drive
        cap = mode_cap(self._modes.cap_mode, drive)
        fraction = adjust_speed_fraction(self.max_speed_fraction, delta, drive.min_speed_fraction, cap)
        if fraction != self.max_speed_fraction:
            self.max_speed_fraction = fraction
            self._led_pending = True
            logger.info("Max speed %d%%", round(fraction * 100))

    def _brake(self) -> None:
        self._cancel_pulses()
        self._driving = False
        self._last_stop_s = None
        self._aim_spinning = False
        self._send(lambda s: s.stop())

    # LED

    def apply_color(self, color: Tuple[int, int, int]) -> SendOutcome:
        self.current_color = Color(*color)
        self._led_pending = True
        return self._flush_led()

    def _flush_led(self) -> SendOutcome:
        if not self._led_pending:
            return SendOutcome.SENT
        red, green, blue = scale_color(self.current_color, self.max_speed_fraction)
        outcome = self._send(lambda s: s.set_color(red, green, blue))
        if outcome is not SendOutcome.DROPPED:
            self._led_pending = False
        return outcome

    # Trick mode

    def _tick_trick(self, tick: TickInput) -> None:
        self._flush_led()
        for index in sorted(tick.pressed):
            name = self._config.buttons.tricks.get(index)
            if name in TRICKS:
                self._start_trick(name)

    def _start_trick(self, name: str) -> None:
        move = TRICKS[name]
        self._cancel_pulses()
        outcome = self._send(
            lambda s: s.set_raw_motors(
                move.left_mode, move.left_power, move.right_mode, move.right_power, priority=True
            )
        )
        if outcome is not SendOutcome.SENT:
            return

        logger.info("Trick %s", name)
        task = asyncio.get_running_loop().create_task(self._end_pulse(move.duration_s))
        self._pulses.add(task)
        task.add_done_callback(self._pulses.discard)

    async def _end_pulse(self, duration_s: float) -> None:
        await asyncio.sleep(duration_s)
        self._motors_off()

    def _motors_off(self) -> SendOutcome:
        return self._send(lambda s: s.set_raw_motors(MotorMode.OFF, 0, MotorMode.OFF, 0, priority=True))

    def _cancel_pulses(self, stop: bool = False) -> None:
        pending = bool(self._pulses)
        for task in list(self._pulses):
            task.cancel()
        self._pulses.clear()
        if stop and pending:
            self._motors_off()

    # Normal / Expert / Aiming

    def _tick_driving(self, tick: TickInput, now: float, dt: float) -> None:
        buttons = self._config.buttons
        aim_button = self._config.aim.button

        if aim_button in tick.pressed and self._modes.mode in DRIVING_MODES:
            self._aim.press(now)
        event = self._aim.poll(aim_button in tick.held, now)
        if event is AimEvent.SHORT_PRESS:
            color = buttons.colors.get(aim_button)
            if color is not None:
                self.apply_color(color)
        elif event is AimEvent.ENTER_AIM:
            self._enter_aiming()
        elif event is AimEvent.EXIT_AIM:
            self._exit_aiming()

        for index in sorted(tick.pressed):
            if index == aim_button:
                continue
            color = buttons.colors.get(index)
            if color is not None:
                self.apply_color(color)

        self._flush_led()
        if self._modes.mode is Mode.AIMING:
            self._tick_aiming(tick.lateral, dt)
        else:
            self._tick_motion(tick.drive, now)

    def _tick_motion(self, intent: Optional[DriveIntent], now: float) -> None:
        if intent is not None:
            speed = scaled_speed(intent.speed, self.max_speed_fraction)
            self._driving = True
            self._last_heading = intent.heading
            self._last_stop_s = None
            self._send(lambda s: s.drive(intent.heading, speed))
            return

        if self._driving:
            self._driving = False
            self._send_stop(now)
        elif self._last_stop_s is not None and now - self._last_stop_s >= self._config.drive.stop_watchdog_s:
            self._send_stop(now)

    def _send_stop(self, now: float) -> SendOutcome:
        # Re-sent by the watchdog: a busy channel may have dropped the last one.
        self._last_stop_s = now
        heading = self._last_heading
        return self._send(lambda s: s.drive(heading, 0))

    def _enter_aiming(self) -> None:
        previous = self._modes.mode
        if self._modes.enter_aiming() is not Mode.AIMING:
            return

        if self._driving:
            self._send(lambda s: s.stop())
        self._driving = False
        self._last_stop_s = None
        self._aim_heading = 0.0
        self._aim_spinning = False

        brightness = self._config.aim.back_led_brightness
        self._send(lambda s: s.set_back_led(brightness, priority=True))
        logger.info("Aiming")
        self._bus.publish(ModeChanged(mode=Mode.AIMING, previous=previous))

    def _tick_aiming(self, lateral: float, dt: float) -> None:
        aim = self._config.aim
        if abs(lateral) >= self._config.drive.deadzone:
            self._aim_heading = advance_heading(self._aim_heading, lateral, aim.rate_deg_s, dt)
            left_mode, left_power, right_mode, right_power = aim_spin(lateral, aim.spin_power)
            self._send(lambda s: s.set_raw_motors(left_mode, left_power, right_mode, right_power))
            self._aim_spinning = True
        elif self._aim_spinning:
            self._aim_spinning = False
            self._send(lambda s: s.stop())

    def _exit_aiming(self) -> None:
        heading = self.aim_heading
        self._aim_spinning = False

        self._send(lambda s: s.stop())
        self._send(lambda s: s.set_heading(heading, priority=True))
        self._send(lambda s: s.set_back_led(0, priority=True))
        self._last_heading = heading

        mode = self._modes.exit_aiming()
        self._led_pending = True
        logger.info("Aim committed at %d deg", heading)
        self._bus.publish(ModeChanged(mode=mode, previous=Mode.AIMING))

    # Loop

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        stop_event = stop_event if stop_event is not None else asyncio.Event()
        period_s = 1.0 / self._config.tick_hz
        next_tick = time.monotonic()
        while not stop_event.is_set():
            self.tick()
            next_tick += period_s
            wait_s = max(0.0, next_tick - time.monotonic())
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=wait_s)
            except asyncio.TimeoutError:
                pass
