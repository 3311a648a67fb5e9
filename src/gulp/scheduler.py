from __future__ import annotations

import asyncio
import logging
from typing import Callable, Protocol

__all__ = [
    "CallLater",
    "TimerHandle",
    "TimingScheduler",
    "base_delay_ms",
    "compute_delay",
    "loop_call_later",
    "pacing_multiplier",
]

logger = logging.getLogger(__name__)

SENTENCE_END_CHARS = frozenset(".!?")
CLAUSE_END_CHARS = frozenset(",;:")
SENTENCE_MULTIPLIER = 1.5
CLAUSE_MULTIPLIER = 1.2


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


# Same contract as ``asyncio.AbstractEventLoop.call_later``: delay in seconds.
CallLater = Callable[[float, Callable[[], None]], TimerHandle]


def loop_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    """Arm ``callback`` on the running asyncio loop."""
    return asyncio.get_running_loop().call_later(delay, callback)


def base_delay_ms(wpm: int) -> float:
    if wpm <= 0:
        raise ValueError(f"wpm must be positive, got {wpm!r}")
    return 60000 / wpm


def pacing_multiplier(token: str) -> float:
    if not token:
        return 1.0
    last = token[-1]
    if last in SENTENCE_END_CHARS:
        return SENTENCE_MULTIPLIER
    if last in CLAUSE_END_CHARS:
        return CLAUSE_MULTIPLIER
    return 1.0


def compute_delay(token: str, wpm: int) -> float:
    """Milliseconds ``token`` stays on screen at ``wpm``."""
    return base_delay_ms(wpm) * pacing_multiplier(token)


class TimingScheduler:
    """
    Owns the single pending "advance" timer of a reading session.

    The scheduler never re-arms itself: every fired timer is reported to
    ``on_advance`` and the owner decides whether to call :meth:`schedule`
    again. Each arm carries a generation number so a callback that slips past
    :meth:`cancel` (already queued by the loop) is dropped instead of reported.
    """

    def __init__(
        self,
        on_advance: Callable[[], None],
        *,
        call_later: CallLater | None = None,
    ) -> None:
        self._on_advance = on_advance
        self._call_later = call_later or loop_call_later
        self._handle: TimerHandle | None = None
        self._generation = 0
        self.last_delay_ms: float | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, token: str, wpm: int) -> float:
        self.cancel()
        delay = compute_delay(token, wpm)
        generation = self._generation
        self.last_delay_ms = delay
        self._handle = self._call_later(delay / 1000, lambda: self._fire(generation))
        logger.debug("Scheduled advance in %.1f ms for %r at %d wpm", delay, token, wpm)
        return delay

    def cancel(self) -> None:
        self._generation += 1
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()

    def _fire(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._handle = None
        self._generation += 1
        self._on_advance()
