from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .scheduler import CallLater, TimerHandle, loop_call_later

__all__ = [
    "DEFAULT_STATE_FILENAME",
    "DEFAULT_WPM",
    "PersistedState",
    "SessionStore",
    "DebouncedSaver",
    "STATE_PATH_ENV",
    "STORAGE_KEY",
    "resolve_state_path",
]

logger = logging.getLogger(__name__)

STORAGE_KEY = "rsvp-state"
STATE_PATH_ENV = "GULP_STATE_PATH"
DEFAULT_STATE_FILENAME = ".gulp-rsvp-state.json"
DEFAULT_WPM = 450
SAVE_DEBOUNCE_MS = 500


@dataclass(slots=True)
class PersistedState:
    url: str = ""
    source_text: str = ""
    wpm: int = DEFAULT_WPM
    word_index: int = 0

    def to_payload(self) -> dict[str, object]:
        return {
            "url": self.url,
            "sourceText": self.source_text,
            "wpm": self.wpm,
            "wordIndex": self.word_index,
        }

    @classmethod
    def from_payload(cls, raw: object) -> "PersistedState":
        """Build a state from decoded JSON, defaulting each bad field on its own."""
        if not isinstance(raw, dict):
            return cls()
        defaults = cls()
        url = raw.get("url")
        source_text = raw.get("sourceText")
        wpm = _positive_int(raw.get("wpm"))
        word_index = _non_negative_int(raw.get("wordIndex"))
        return cls(
            url=url if isinstance(url, str) else defaults.url,
            source_text=source_text if isinstance(source_text, str) else defaults.source_text,
            wpm=wpm if wpm is not None else defaults.wpm,
            word_index=word_index if word_index is not None else defaults.word_index,
        )


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _positive_int(value: object) -> int | None:
    parsed = _as_int(value)
    if parsed is None or parsed <= 0:
        return None
    return parsed


def _non_negative_int(value: object) -> int | None:
    parsed = _as_int(value)
    if parsed is None or parsed < 0:
        return None
    return parsed


def resolve_state_path(path: Path | str | None = None) -> Path:
    if path:
        return Path(path).expanduser()
    env_path = os.getenv(STATE_PATH_ENV)
    if env_path and env_path.strip():
        return Path(env_path.strip()).expanduser()
    return Path.home() / DEFAULT_STATE_FILENAME


class SessionStore:
    """
    Single-slot persistence of the last reading session.

    The slot lives under :data:`STORAGE_KEY` in a small JSON file. Reads never
    fail (anything unexpected yields defaults) and writes are best effort.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = resolve_state_path(path)

    def load(self) -> PersistedState:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return PersistedState()
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable session state %s: %s", self.path, exc)
            return PersistedState()
        if not isinstance(raw, dict):
            return PersistedState()
        return PersistedState.from_payload(raw.get(STORAGE_KEY))

    def save(self, state: PersistedState) -> bool:
        try:
            payload = json.dumps({STORAGE_KEY: state.to_payload()}, ensure_ascii=False)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_name(f"{self.path.name}.tmp")
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to save session state to %s: %s", self.path, exc)
            return False
        return True

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Failed to clear session state %s: %s", self.path, exc)

    def debounced(
        self,
        interval_ms: float = SAVE_DEBOUNCE_MS,
        *,
        call_later: CallLater | None = None,
    ) -> "DebouncedSaver":
        return DebouncedSaver(self, interval_ms, call_later=call_later)


class DebouncedSaver:
    """Coalesce bursts of save requests into one write of the latest state."""

    def __init__(
        self,
        store: SessionStore,
        interval_ms: float = SAVE_DEBOUNCE_MS,
        *,
        call_later: CallLater | None = None,
    ) -> None:
        self.store = store
        self.interval_ms = interval_ms
        self._call_later = call_later or loop_call_later
        self._handle: TimerHandle | None = None
        self._latest: PersistedState | None = None

    @property
    def pending(self) -> bool:
        return self._latest is not None

    def request(self, state: PersistedState) -> None:
        self._latest = state
        if self._handle is not None:
            self._handle.cancel()
        self._handle = self._call_later(self.interval_ms / 1000, self._fire)

    __call__ = request

    def flush(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        state, self._latest = self._latest, None
        if state is not None:
            self.store.save(state)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._latest = None

    def _fire(self) -> None:
        self._handle = None
        state, self._latest = self._latest, None
        if state is not None:
            self.store.save(state)
