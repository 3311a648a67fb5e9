from __future__ import annotations

import json
from pathlib import Path

import pytest

from gulp.storage import (
    DEFAULT_STATE_FILENAME,
    DEFAULT_WPM,
    STATE_PATH_ENV,
    STORAGE_KEY,
    PersistedState,
    SessionStore,
    resolve_state_path,
)


def _write(path: Path, payload: object) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_load_missing_file_returns_defaults(state_path: Path) -> None:
    state = SessionStore(state_path).load()
    assert state == PersistedState()
    assert state.wpm == DEFAULT_WPM
    assert state.word_index == 0


def test_save_then_load_uses_camel_case_slot(state_path: Path) -> None:
    store = SessionStore(state_path)
    assert store.save(PersistedState(url="", source_text="a b c", wpm=300, word_index=2))
    raw = json.loads(state_path.read_text(encoding="utf-8"))
    assert raw == {
        STORAGE_KEY: {"url": "", "sourceText": "a b c", "wpm": 300, "wordIndex": 2}
    }
    assert store.load() == PersistedState(source_text="a b c", wpm=300, word_index=2)
    assert not state_path.with_name(f"{state_path.name}.tmp").exists()


def test_invalid_fields_fall_back_individually(state_path: Path) -> None:
    _write(
        state_path,
        {STORAGE_KEY: {"url": 5, "sourceText": "kept", "wpm": "fast", "wordIndex": -3}},
    )
    state = SessionStore(state_path).load()
    assert state.url == ""
    assert state.source_text == "kept"
    assert state.wpm == DEFAULT_WPM
    assert state.word_index == 0


@pytest.mark.parametrize(
    ("wpm", "expected"),
    [(0, DEFAULT_WPM), (-10, DEFAULT_WPM), (True, DEFAULT_WPM), (300.0, 300), (300.5, DEFAULT_WPM), (None, DEFAULT_WPM)],
)
def test_wpm_must_be_a_positive_integer(state_path: Path, wpm: object, expected: int) -> None:
    _write(state_path, {STORAGE_KEY: {"wpm": wpm}})
    assert SessionStore(state_path).load().wpm == expected


@pytest.mark.parametrize("content", ["{not json", "[1, 2]", '"text"', "null"])
def test_corrupt_or_foreign_documents_yield_defaults(state_path: Path, content: str) -> None:
    state_path.write_text(content, encoding="utf-8")
    assert SessionStore(state_path).load() == PersistedState()


def test_slot_that_is_not_an_object_yields_defaults(state_path: Path) -> None:
    _write(state_path, {STORAGE_KEY: "oops", "other": 1})
    assert SessionStore(state_path).load() == PersistedState()


def test_save_failure_is_reported_not_raised(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    store = SessionStore(blocker / "nested" / "state.json")
    assert store.save(PersistedState(source_text="x")) is False


def test_clear_removes_slot(state_path: Path) -> None:
    store = SessionStore(state_path)
    store.save(PersistedState(source_text="x"))
    store.clear()
    assert not state_path.exists()
    store.clear()


def test_resolve_state_path_precedence(monkeypatch, tmp_path: Path) -> None:
    explicit = tmp_path / "explicit.json"
    from_env = tmp_path / "env.json"
    monkeypatch.setenv(STATE_PATH_ENV, str(from_env))
    assert resolve_state_path(explicit) == explicit
    assert resolve_state_path() == from_env
    monkeypatch.delenv(STATE_PATH_ENV)
    monkeypatch.setenv("HOME", str(tmp_path))
    assert resolve_state_path() == tmp_path / DEFAULT_STATE_FILENAME


def test_debounced_saver_writes_latest_after_quiet_period(clock, state_path: Path) -> None:
    store = SessionStore(state_path)
    saver = store.debounced(500, call_later=clock.call_later)
    saver.request(PersistedState(source_text="a b", word_index=0))
    clock.advance(300)
    saver.request(PersistedState(source_text="a b", word_index=1))
    clock.advance(499)
    assert not state_path.exists()
    assert saver.pending
    clock.advance(1)
    assert store.load().word_index == 1
    assert not saver.pending


def test_debounced_saver_flush_and_cancel(clock, state_path: Path) -> None:
    store = SessionStore(state_path)
    saver = store.debounced(500, call_later=clock.call_later)
    saver(PersistedState(source_text="flushed"))
    saver.flush()
    assert store.load().source_text == "flushed"
    assert clock.pending == []

    saver(PersistedState(source_text="dropped"))
    saver.cancel()
    clock.advance(1000)
    assert store.load().source_text == "flushed"
