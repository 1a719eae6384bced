from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from .bus import BatteryUpdated, ConnectionStateChanged, EventBus, ModeChanged
from .config import JoystickConfig, LinkConfig, TeleopConfig
from .joystick_server import JoystickServer
from .sphero_comms.errors import DeviceConnectionError, InitializationError
from .sphero_comms.session import SessionState
from .teleop_node import TeleopNode

logger = logging.getLogger(__name__)


def _config_from_args(args: argparse.Namespace) -> TeleopConfig:
    return TeleopConfig(
        tick_hz=args.tick_hz,
        link=LinkConfig(device_name=args.name, subscribe_telemetry=not args.no_telemetry),
        joystick=JoystickConfig(host=args.host, port=args.port),
    )


def _log_connection(event: ConnectionStateChanged) -> None:
    if event.error is not None:
        logger.error("Robot %s: %s", event.state.value, event.error)
    else:
        logger.info("Robot %s", event.state.value)


def _log_mode(event: ModeChanged) -> None:
    logger.info("Mode: %s", event.mode.value)


def _log_battery(event: BatteryUpdated) -> None:
    telemetry = event.telemetry
    logger.info("Battery: %.0f%% (%.2f V, %s)", telemetry.battery_pct, telemetry.voltage_v, telemetry.power_state.name)


async def _run(args: argparse.Namespace) -> int:
    cfg = _config_from_args(args)
    bus = EventBus()
    bus.subscribe(ConnectionStateChanged, _log_connection)
    bus.subscribe(ModeChanged, _log_mode)
    bus.subscribe(BatteryUpdated, _log_battery)

    joystick = JoystickServer(cfg.joystick.host, cfg.joystick.port)
    node = TeleopNode(joystick, bus=bus, config=cfg)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass

    def _on_connection(event: ConnectionStateChanged) -> None:
        if event.state is SessionState.DISCONNECTED:
            stop_event.set()

    await joystick.start()
    try:
        try:
            await node.connect()
        except (DeviceConnectionError, InitializationError) as exc:
            logger.error("Connection failed: %s", exc)
            return 1

        bus.subscribe(ConnectionStateChanged, _on_connection)
        await node.run(stop_event)
    finally:
        if args.sleep_on_exit:
            await node.sleep()
        else:
            await node.disconnect()
        await joystick.stop()

    return 0


def run_cli(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(levelname)s:     %(name)s - %(message)s",
    )
    return asyncio.run(_run(args))


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Drive a Sphero Ollie from a virtual joystick over BLE")
    parser.add_argument("--host", default="0.0.0.0", help="Joystick WebSocket bind address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8765, help="Joystick WebSocket port (default: 8765)")
    parser.add_argument("--name", default=None, help="Robot advertised name prefix (default: match by service)")
    parser.add_argument("--tick-hz", type=float, default=30.0, help="Control loop rate (default: 30)")
    parser.add_argument("--no-telemetry", action="store_true", help="Skip the power notification subscription")
    parser.add_argument("--sleep-on-exit", action="store_true", help="Put the robot to sleep when exiting")
    parser.add_argument("--log-level", default="info", help="Logging level (default: info)")
    return parser
