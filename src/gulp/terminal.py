from __future__ import annotations

import asyncio
import contextlib
import os
import sys
from typing import Iterator

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.text import Text

from .pivot import pivot_offset, split_at_pivot
from .playback import PlaybackState, PlaybackStateMachine

try:
    import termios
    import tty
except ImportError:  # pragma: no cover - non-POSIX terminals play without key controls
    termios = None  # type: ignore[assignment]
    tty = None  # type: ignore[assignment]

__all__ = ["TerminalPlayer", "decode_keys", "render_frame"]

PIVOT_COLUMN = 18
_ESCAPE_SEQUENCES: dict[str, tuple[str, bool]] = {
    "\x1b[D": ("ArrowLeft", False),
    "\x1b[C": ("ArrowRight", False),
    "\x1b[A": ("ArrowUp", False),
    "\x1b[B": ("ArrowDown", False),
    "\x1b[1;2D": ("ArrowLeft", True),
    "\x1b[1;2C": ("ArrowRight", True),
    "\x1b[1;2A": ("ArrowUp", True),
    "\x1b[1;2B": ("ArrowDown", True),
}
# Without a keyboard nothing can restart a finished session, so it ends the run.
_EXIT_STATES = (PlaybackState.INPUT,)
_UNATTENDED_EXIT_STATES = (PlaybackState.INPUT, PlaybackState.FINISHED)


def decode_keys(chunk: str) -> list[tuple[str, bool]]:
    """Translate raw terminal input into ``(key, modifier)`` pairs."""
    keys: list[tuple[str, bool]] = []
    pos = 0
    while pos < len(chunk):
        if chunk[pos] == "\x1b":
            for sequence, key in _ESCAPE_SEQUENCES.items():
                if chunk.startswith(sequence, pos):
                    keys.append(key)
                    pos += len(sequence)
                    break
            else:
                keys.append(("Escape", False))
                pos += 1
            continue
        char = chunk[pos]
        if char == " ":
            keys.append((" ", False))
        elif char in "qQ":
            keys.append(("Escape", False))
        pos += 1
    return keys


def render_frame(machine: PlaybackStateMachine) -> Group:
    state = machine.state
    if state is PlaybackState.COUNTDOWN:
        word = Text(" " * PIVOT_COLUMN + str(machine.countdown_value or ""), style="bold dim")
    else:
        token = machine.current_token
        split = split_at_pivot(token)
        pad = max(0, PIVOT_COLUMN - pivot_offset(token))
        word = Text(" " * pad)
        word.append(split.left)
        word.append(split.pivot, style="bold red")
        word.append(split.right)
    guide = Text(" " * PIVOT_COLUMN + "│", style="red")
    snapshot = machine.snapshot()
    status = Text(
        f"{state.value:<9} {snapshot['index'] + 1}/{snapshot['total']}  "
        f"{snapshot['wpm']} wpm  {snapshot['remaining'] or ''}",
        style="dim",
    )
    return Group(Panel(Group(guide, word, guide), width=PIVOT_COLUMN * 3), status)


@contextlib.contextmanager
def _cbreak(fd: int) -> Iterator[bool]:
    if termios is None or not os.isatty(fd):
        yield False
        return
    saved = termios.tcgetattr(fd)
    try:
        tty.setcbreak(fd)
        yield True
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


class TerminalPlayer:
    """Drive a :class:`PlaybackStateMachine` on an asyncio loop and draw it with rich."""

    def __init__(self, machine: PlaybackStateMachine, console: Console | None = None) -> None:
        self.machine = machine
        self.console = console or Console()

    async def run(self, *, start_playing: bool = False) -> PlaybackState:
        loop = asyncio.get_running_loop()
        done = asyncio.Event()
        machine = self.machine
        fd = sys.stdin.fileno() if sys.stdin and sys.stdin.isatty() else -1
        exit_states = _UNATTENDED_EXIT_STATES

        with Live(render_frame(machine), console=self.console, auto_refresh=False) as live:

            def _on_change(engine: PlaybackStateMachine) -> None:
                live.update(render_frame(engine), refresh=True)
                if engine.state in exit_states:
                    done.set()

            unsubscribe = machine.subscribe(_on_change)
            with _cbreak(fd) if fd >= 0 else contextlib.nullcontext(False) as interactive:
                if interactive:
                    exit_states = _EXIT_STATES

                    def _on_input() -> None:
                        chunk = os.read(fd, 32).decode("utf-8", errors="ignore")
                        for key, modifier in decode_keys(chunk):
                            machine.handle_key(key, modifier)

                    loop.add_reader(fd, _on_input)
                try:
                    if start_playing:
                        machine.play()
                    if machine.state in exit_states:
                        done.set()
                    await done.wait()
                finally:
                    if interactive:
                        loop.remove_reader(fd)
                    unsubscribe()
                    machine.close()
        return machine.state
