from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from gulp.playback import PlaybackStateMachine
from gulp.storage import SessionStore


class _ManualHandle:
    def __init__(self, due: float, delay_ms: float, seq: int, callback: Callable[[], None]) -> None:
        self.due = due
        self.delay_ms = delay_ms
        self.seq = seq
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Deterministic stand-in for ``loop.call_later`` driven in milliseconds."""

    def __init__(self) -> None:
        self.now = 0.0
        self._seq = 0
        self._handles: list[_ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualHandle:
        self._seq += 1
        delay_ms = delay * 1000
        handle = _ManualHandle(self.now + delay_ms, delay_ms, self._seq, callback)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> list[_ManualHandle]:
        live = [h for h in self._handles if not h.cancelled and not h.fired]
        return sorted(live, key=lambda h: (h.due, h.seq))

    def advance(self, ms: float) -> None:
        target = self.now + ms
        while True:
            due = [h for h in self.pending if h.due <= target + 1e-6]
            if not due:
                break
            handle = due[0]
            self.now = max(self.now, handle.due)
            handle.fired = True
            handle.callback()
        self.now = target


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "state.json"


@pytest.fixture
def make_machine(clock: ManualClock, state_path: Path):
    created: list[PlaybackStateMachine] = []

    def _make(**kwargs) -> PlaybackStateMachine:
        machine = PlaybackStateMachine(
            SessionStore(state_path),
            call_later=clock.call_later,
            **kwargs,
        )
        created.append(machine)
        return machine

    yield _make
    for machine in created:
        machine.close()
