from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Set

from .errors import TransmitError

logger = logging.getLogger(__name__)

Writer = Callable[[bytes], Awaitable[None]]


class Decision(Enum):
    SEND = "send"
    DROP = "drop"


class SendOutcome(Enum):
    SENT = "sent"
    DROPPED = "dropped"
    FAILED = "failed"
    OFFLINE = "offline"


def decide(busy: bool, priority: bool) -> Decision:
    """Single-slot gate: a write in flight drops everything except priority frames."""
    if busy and not priority:
        return Decision.DROP
    return Decision.SEND


@dataclass(slots=True)
class ChannelStats:
    tx_frames_ok: int = 0
    tx_errors: int = 0
    tx_dropped: int = 0
    tx_preempted: int = 0


class CommandChannel:
    """Serializes frames onto one write characteristic.

    Non-priority frames sent while a write is outstanding are dropped, never
    queued, so stale motion commands cannot replay once the link catches up.
    Priority frames (stop/brake) always go out.
    """

    def __init__(self, writer: Writer, name: str = "control") -> None:
        self._writer = writer
        self.name = name
        self._in_flight = 0
        self._tasks: Set[asyncio.Task] = set()
        self._stats = ChannelStats()
        self._closed = False

    @property
    def busy(self) -> bool:
        return self._in_flight > 0

    @property
    def closed(self) -> bool:
        return self._closed

    def get_stats(self) -> ChannelStats:
        return ChannelStats(
            tx_frames_ok=self._stats.tx_frames_ok,
            tx_errors=self._stats.tx_errors,
            tx_dropped=self._stats.tx_dropped,
            tx_preempted=self._stats.tx_preempted,
        )

    def _admit(self, frame: bytes, priority: bool) -> bool:
        if self._closed or decide(self.busy, priority) is Decision.DROP:
            self._stats.tx_dropped += 1
            logger.debug("[%s] drop %s", self.name, frame.hex(" "))
            return False
        if self.busy:
            self._stats.tx_preempted += 1
        self._in_flight += 1
        return True

    def _release(self) -> None:
        self._in_flight = max(0, self._in_flight - 1)

    async def _transmit(self, frame: bytes) -> bool:
        try:
            await self._writer(frame)
        except Exception as exc:
            self._stats.tx_errors += 1
            logger.warning("[%s] write failed for %s: %s", self.name, frame.hex(" "), exc)
            return False
        finally:
            self._release()

        self._stats.tx_frames_ok += 1
        logger.debug("[%s] TX %s", self.name, frame.hex(" "))
        return True

    def send(self, frame: bytes, priority: bool = False) -> SendOutcome:
        """Start a write without waiting for it. Must be called from the running loop."""
        loop = asyncio.get_running_loop()
        if not self._admit(frame, priority):
            return SendOutcome.DROPPED

        task = loop.create_task(self._transmit(frame))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return SendOutcome.SENT

    async def send_and_wait(self, frame: bytes, priority: bool = False) -> SendOutcome:
        if not self._admit(frame, priority):
            return SendOutcome.DROPPED
        ok = await self._transmit(frame)
        return SendOutcome.SENT if ok else SendOutcome.FAILED

    async def write_checked(self, frame: bytes) -> None:
        if self._closed:
            raise TransmitError(f"[{self.name}] channel closed")

        self._in_flight += 1
        try:
            await self._writer(frame)
        except Exception as exc:
            self._stats.tx_errors += 1
            raise TransmitError(f"[{self.name}] write failed for {frame.hex(' ')}: {exc}") from exc
        finally:
            self._release()

        self._stats.tx_frames_ok += 1
        logger.debug("[%s] TX %s", self.name, frame.hex(" "))

    async def wait_idle(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Abandon outstanding writes; nothing in flight is retried."""
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._in_flight = 0
