from __future__ import annotations

import asyncio
import contextlib
import io
import json
import os

import pytest
from rich.console import Console

from gulp.pivot import split_at_pivot
from gulp.playback import PlaybackState, PlaybackStateMachine
from gulp.storage import STORAGE_KEY, SessionStore
from gulp import terminal
from gulp.terminal import PIVOT_COLUMN, TerminalPlayer, decode_keys, render_frame


@pytest.mark.parametrize(
    ("chunk", "expected"),
    [
        (" ", [(" ", False)]),
        ("\x1b[D", [("ArrowLeft", False)]),
        ("\x1b[1;2C", [("ArrowRight", True)]),
        ("\x1b[A\x1b[B", [("ArrowUp", False), ("ArrowDown", False)]),
        ("\x1b", [("Escape", False)]),
        ("q", [("Escape", False)]),
        ("x y", [(" ", False)]),
    ],
)
def test_decode_keys(chunk: str, expected) -> None:
    assert decode_keys(chunk) == expected


def _word_line(frame) -> str:
    panel = frame.renderables[0]
    return panel.renderable.renderables[1].plain


@pytest.mark.parametrize("text", ["a", "hello", "reading,", "characteristically"])
def test_render_frame_aligns_pivot_on_guide(make_machine, clock, text: str) -> None:
    machine = make_machine()
    machine.submit_text(text)
    clock.advance(1500)
    machine.pause()
    line = _word_line(render_frame(machine))
    assert line[PIVOT_COLUMN] == split_at_pivot(text).pivot
    assert line.strip() == text


def test_render_frame_shows_countdown(make_machine) -> None:
    machine = make_machine()
    machine.submit_text("soon")
    frame = render_frame(machine)
    assert _word_line(frame).strip() == "3"
    console = Console(file=io.StringIO(), width=80, record=True)
    console.print(frame)
    assert "countdown" in console.export_text()


def test_terminal_player_reads_to_the_end(state_path) -> None:
    console = Console(file=io.StringIO(), width=80)

    async def _run() -> PlaybackState:
        machine = PlaybackStateMachine(SessionStore(state_path), wpm=2000)
        machine.submit_text("one two three")
        return await TerminalPlayer(machine, console).run()

    assert asyncio.run(_run()) is PlaybackState.FINISHED
    saved = json.loads(state_path.read_text(encoding="utf-8"))[STORAGE_KEY]
    assert saved["wordIndex"] == 2
    assert saved["sourceText"] == "one two three"


class _PipeStdin:
    def __init__(self, fd: int) -> None:
        self._fd = fd

    def isatty(self) -> bool:
        return True

    def fileno(self) -> int:
        return self._fd


def test_interactive_player_stays_open_after_last_word(monkeypatch, state_path) -> None:
    read_fd, write_fd = os.pipe()
    monkeypatch.setattr("sys.stdin", _PipeStdin(read_fd))
    monkeypatch.setattr(terminal, "_cbreak", lambda fd: contextlib.nullcontext(True))
    console = Console(file=io.StringIO(), width=80)

    async def _wait_until(condition) -> None:
        for _ in range(300):
            if condition():
                return
            await asyncio.sleep(0.01)
        raise AssertionError("condition not reached")

    async def _run() -> tuple[PlaybackState, list[str]]:
        machine = PlaybackStateMachine(SessionStore(state_path), wpm=2000)
        seen: list[str] = []
        machine.subscribe(lambda m: seen.append(m.state.value))
        machine.submit_text("one two")
        task = asyncio.create_task(TerminalPlayer(machine, console).run())
        await _wait_until(lambda: machine.state is PlaybackState.FINISHED)
        await asyncio.sleep(0.05)
        assert not task.done()
        before = len(seen)
        os.write(write_fd, b" ")
        await _wait_until(lambda: len(seen) > before)
        os.write(write_fd, b"q")
        return await asyncio.wait_for(task, timeout=3), seen

    try:
        final, seen = asyncio.run(_run())
    finally:
        os.close(read_fd)
        os.close(write_fd)
    assert final is PlaybackState.INPUT
    assert seen.index("finished") < len(seen) - 1
    assert "playing" in seen[seen.index("finished") :]
