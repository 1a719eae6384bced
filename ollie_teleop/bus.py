from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, DefaultDict, List, Optional, Type, TypeVar

if TYPE_CHECKING:
    from .control_logic import Mode
    from .sphero_comms.session import SessionState
    from .sphero_comms.telemetry import PowerTelemetry

logger = logging.getLogger(__name__)

E = TypeVar("E")
Handler = Callable[[E], None]


@dataclass(frozen=True, slots=True)
class ConnectionStateChanged:
    state: SessionState
    previous: Optional[SessionState] = None
    error: Optional[BaseException] = None


@dataclass(frozen=True, slots=True)
class ModeChanged:
    mode: Mode
    previous: Mode


@dataclass(frozen=True, slots=True)
class BatteryUpdated:
    telemetry: PowerTelemetry

    @property
    def battery_pct(self) -> float:
        return self.telemetry.battery_pct


class EventBus:
    """Typed, synchronous fan-out of core events to external collaborators."""

    def __init__(self) -> None:
        self._subscribers: DefaultDict[type, List[Handler[Any]]] = defaultdict(list)

    def subscribe(self, event_type: Type[E], handler: Handler[E]) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: Type[E], handler: Handler[E]) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: Any) -> None:
        for handler in list(self._subscribers.get(type(event), [])):
            try:
                handler(event)
            except Exception:
                logger.exception("Handler %r failed for %s", handler, type(event).__name__)
