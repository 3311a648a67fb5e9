from __future__ import annotations

import argparse
import asyncio
import json
import sys
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .acquire import extract_upload_text, fetch_url_text, is_url_like
from .errors import AcquisitionError
from .logging_utils import build_log_config, configure_logging
from .pivot import split_at_pivot
from .playback import MAX_WPM, MIN_WPM, PlaybackState, PlaybackStateMachine
from .storage import DEFAULT_WPM, SessionStore
from .terminal import TerminalPlayer
from .tokens import estimate_reading_time, format_reading_time, tokenize
from .web import WebConfig, create_app


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - installed without a source tree
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("gulp-rsvp")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"gulp {__version__}",
    )


def _add_state_file_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--state-file",
        help="Session state file (default: $GULP_STATE_PATH or ~/.gulp-rsvp-state.json).",
    )


def _wpm_value(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid wpm: {value!r}") from exc
    if not MIN_WPM <= parsed <= MAX_WPM:
        raise argparse.ArgumentTypeError(f"wpm must be between {MIN_WPM} and {MAX_WPM}")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="gulp",
        description=(
            "Read text one word at a time (RSVP). "
            "Commands: play, serve, state, stats. Run `gulp <command> -h` for details."
        ),
    )
    _add_version_flag(ap)
    return ap


def build_play_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="gulp play",
        description="Play a text file, URL or stdin in the terminal.",
    )
    _add_version_flag(ap)
    ap.add_argument(
        "source",
        nargs="?",
        help="Text/markdown/HTML/EPUB file, URL, or '-' for stdin.",
    )
    ap.add_argument(
        "--wpm",
        type=_wpm_value,
        help=f"Reading speed in words per minute ({MIN_WPM}-{MAX_WPM}; default: saved or {DEFAULT_WPM}).",
    )
    ap.add_argument(
        "--resume",
        action="store_true",
        help="Continue the saved session instead of reading a new source.",
    )
    _add_state_file_flag(ap)
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose engine logging.",
    )
    return ap


def build_serve_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="gulp serve",
        description="Serve the browser reader.",
    )
    _add_version_flag(ap)
    ap.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the web server (default: 127.0.0.1).",
    )
    ap.add_argument(
        "--port",
        type=int,
        default=4500,
        help="Port for the web server (default: 4500).",
    )
    ap.add_argument(
        "--wpm",
        type=_wpm_value,
        help="Initial reading speed; the saved speed is used when omitted.",
    )
    ap.add_argument(
        "--fetch-timeout",
        type=float,
        default=15.0,
        help="Seconds to wait when fetching a URL (default: 15).",
    )
    _add_state_file_flag(ap)
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose engine and server logging.",
    )
    return ap


def build_state_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="gulp state",
        description="Show or clear the saved reading session.",
    )
    _add_state_file_flag(ap)
    ap.add_argument(
        "--clear",
        action="store_true",
        help="Delete the saved session.",
    )
    ap.add_argument(
        "--json",
        action="store_true",
        help="Print the saved record as JSON.",
    )
    return ap


def build_stats_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="gulp stats",
        description="Print word count and reading time for a source.",
    )
    ap.add_argument(
        "source",
        help="Text/markdown/HTML/EPUB file, URL, or '-' for stdin.",
    )
    ap.add_argument(
        "--wpm",
        type=_wpm_value,
        default=DEFAULT_WPM,
        help=f"Reading speed for the estimate (default: {DEFAULT_WPM}).",
    )
    ap.add_argument(
        "--tokens",
        action="store_true",
        help="Also list every token with its pivot letter highlighted.",
    )
    return ap


def _read_source(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    if is_url_like(source):
        return fetch_url_text(source)
    path = Path(source).expanduser()
    if not path.is_file():
        raise FileNotFoundError(f"Input not found: {path}")
    return extract_upload_text(path.name, path.read_bytes())


async def _play(args: argparse.Namespace, console: Console) -> int:
    machine = PlaybackStateMachine(SessionStore(args.state_file), wpm=args.wpm)
    if args.resume:
        if not machine.accept_resume():
            machine.close()
            console.print("[red]No saved session to resume.[/red]")
            return 1
        await TerminalPlayer(machine, console).run(start_playing=True)
        return 0

    machine.submit(args.source or "")
    if machine.state is PlaybackState.LOADING:
        loop = asyncio.get_running_loop()
        try:
            text = await loop.run_in_executor(None, _read_source, args.source)
        except (AcquisitionError, OSError) as exc:
            machine.load_failed(exc if isinstance(exc, AcquisitionError) else str(exc))
        else:
            machine.load_succeeded(text)
    if machine.state is PlaybackState.INPUT:
        console.print(f"[red]{machine.error or 'Nothing to read.'}[/red]")
        machine.close()
        return 1
    await TerminalPlayer(machine, console).run()
    return 0


def _run_play(args: argparse.Namespace) -> int:
    configure_logging(args.debug)
    if not args.resume and not args.source:
        raise SystemExit("gulp play: a source is required unless --resume is given.")
    console = Console()
    try:
        return asyncio.run(_play(args, console))
    except KeyboardInterrupt:
        console.print("[dim]Stopped; progress saved.[/dim]")
        return 130


def _run_serve(args: argparse.Namespace) -> None:
    state_path = Path(args.state_file).expanduser().resolve() if args.state_file else None
    config = WebConfig(
        state_path=state_path,
        fetch_timeout=args.fetch_timeout,
        wpm=args.wpm,
    )
    app = create_app(config)
    store_path = app.state.store.path
    print(f"Serving gulp reader at http://{args.host}:{args.port}/")
    print(f"Session state: {store_path}")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(app, host=args.host, port=args.port, log_config=build_log_config(args.debug))


def _run_state(args: argparse.Namespace) -> int:
    store = SessionStore(args.state_file)
    if args.clear:
        store.clear()
        print(f"Cleared {store.path}")
        return 0
    state = store.load()
    if args.json:
        print(json.dumps(state.to_payload(), ensure_ascii=False, indent=2))
        return 0
    tokens = tokenize(state.source_text)
    if not tokens:
        print(f"No saved session ({store.path}); speed {state.wpm} wpm.")
        return 0
    index = min(state.word_index, len(tokens) - 1)
    remaining = estimate_reading_time(" ".join(tokens[index + 1 :]), state.wpm)
    console = Console()
    table = Table(show_header=False, box=None)
    table.add_row("file", str(store.path))
    table.add_row("position", f"{index + 1} / {len(tokens)}")
    table.add_row("speed", f"{state.wpm} wpm")
    table.add_row("remaining", format_reading_time(remaining))
    table.add_row("current", tokens[index])
    console.print(table)
    return 0


def _run_stats(args: argparse.Namespace) -> int:
    try:
        text = _read_source(args.source)
    except (AcquisitionError, OSError) as exc:
        message = exc.user_message if isinstance(exc, AcquisitionError) else str(exc)
        raise SystemExit(message) from exc
    tokens = tokenize(text)
    minutes = estimate_reading_time(text, args.wpm)
    console = Console()
    console.print(f"words: {len(tokens)}")
    console.print(f"reading time at {args.wpm} wpm: {format_reading_time(minutes)}")
    if args.tokens:
        for token in tokens:
            split = split_at_pivot(token)
            line = Text(split.left)
            line.append(split.pivot, style="bold red")
            line.append(split.right)
            console.print(line)
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "play":
        play_args = build_play_parser().parse_args(argv[1:])
        return _run_play(play_args)
    if argv and argv[0] == "serve":
        serve_args = build_serve_parser().parse_args(argv[1:])
        _run_serve(serve_args)
        return 0
    if argv and argv[0] == "state":
        state_args = build_state_parser().parse_args(argv[1:])
        return _run_state(state_args)
    if argv and argv[0] == "stats":
        stats_args = build_stats_parser().parse_args(argv[1:])
        return _run_stats(stats_args)

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
