from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from .errors import (
    AcquisitionError,
    EmptyContentError,
    ValidationError,
    safe_error_message,
)
from .pivot import split_at_pivot
from .scheduler import CallLater, TimerHandle, TimingScheduler, loop_call_later
from .storage import (
    DEFAULT_WPM,
    SAVE_DEBOUNCE_MS,
    DebouncedSaver,
    PersistedState,
    SessionStore,
)
from .tokens import format_reading_time, tokenize

__all__ = [
    "Action",
    "COUNTDOWN_INTERVAL_MS",
    "COUNTDOWN_TICKS",
    "MAX_WPM",
    "MIN_WPM",
    "PlaybackState",
    "PlaybackStateMachine",
    "ResumeOffer",
    "Session",
    "TRANSITIONS",
    "Trigger",
    "WPM_STEP",
    "key_to_action",
]

logger = logging.getLogger(__name__)

MIN_WPM = 50
MAX_WPM = 2000
WPM_STEP = 25
COUNTDOWN_TICKS = 3
COUNTDOWN_INTERVAL_MS = 500
SEEK_SMALL = 1
SEEK_LARGE = 10
EMPTY_SUBMISSION_MESSAGE = "Please enter some text or a URL to read."
_PREVIEW_WORDS = 12


class PlaybackState(str, Enum):
    INPUT = "input"
    LOADING = "loading"
    COUNTDOWN = "countdown"
    PLAYING = "playing"
    PAUSED = "paused"
    FINISHED = "finished"


class Trigger(str, Enum):
    SUBMIT = "submit"
    REJECT = "reject"
    LOAD_SUCCEEDED = "load_succeeded"
    LOAD_FAILED = "load_failed"
    COUNTDOWN_TICK = "countdown_tick"
    COUNTDOWN_ELAPSED = "countdown_elapsed"
    ADVANCE = "advance"
    FINISH = "finish"
    PAUSE = "pause"
    PLAY = "play"
    RESTART = "restart"
    BACK = "back"
    SEEK = "seek"
    CHANGE_WPM = "change_wpm"
    ACCEPT_RESUME = "accept_resume"
    DISMISS_RESUME = "dismiss_resume"


_S = PlaybackState
_T = Trigger
_ACTIVE = (_S.PLAYING, _S.PAUSED, _S.FINISHED)

# Every (state, trigger) pair the machine accepts, mapped to the next state.
TRANSITIONS: dict[tuple[PlaybackState, Trigger], PlaybackState] = {
    (_S.INPUT, _T.SUBMIT): _S.LOADING,
    (_S.INPUT, _T.REJECT): _S.INPUT,
    (_S.INPUT, _T.ACCEPT_RESUME): _S.PAUSED,
    (_S.INPUT, _T.DISMISS_RESUME): _S.INPUT,
    (_S.LOADING, _T.LOAD_SUCCEEDED): _S.COUNTDOWN,
    (_S.LOADING, _T.LOAD_FAILED): _S.INPUT,
    (_S.COUNTDOWN, _T.COUNTDOWN_TICK): _S.COUNTDOWN,
    (_S.COUNTDOWN, _T.COUNTDOWN_ELAPSED): _S.PLAYING,
    (_S.PLAYING, _T.ADVANCE): _S.PLAYING,
    (_S.PLAYING, _T.FINISH): _S.FINISHED,
    (_S.PLAYING, _T.PAUSE): _S.PAUSED,
    (_S.PAUSED, _T.PLAY): _S.PLAYING,
    (_S.FINISHED, _T.PLAY): _S.PLAYING,
    (_S.PLAYING, _T.RESTART): _S.PLAYING,
    (_S.FINISHED, _T.RESTART): _S.PLAYING,
}
for _state in (_S.COUNTDOWN, *_ACTIVE):
    TRANSITIONS[(_state, _T.BACK)] = _S.INPUT
for _state in _ACTIVE:
    TRANSITIONS[(_state, _T.SEEK)] = _state
    TRANSITIONS[(_state, _T.CHANGE_WPM)] = _state
del _state


class Action(str, Enum):
    TOGGLE = "toggle"
    PLAY = "play"
    PAUSE = "pause"
    RESTART = "restart"
    BACK = "back"
    SEEK = "seek"
    WPM = "wpm"


# Keyboard surface: key -> (action, argument, argument with modifier held).
_KEY_BINDINGS: dict[str, tuple[Action, int, int]] = {
    " ": (Action.TOGGLE, 0, 0),
    "Space": (Action.TOGGLE, 0, 0),
    "ArrowLeft": (Action.SEEK, -SEEK_SMALL, -SEEK_LARGE),
    "ArrowRight": (Action.SEEK, SEEK_SMALL, SEEK_LARGE),
    "ArrowUp": (Action.WPM, 1, 1),
    "ArrowDown": (Action.WPM, -1, -1),
    "Escape": (Action.BACK, 0, 0),
}


def key_to_action(key: str, modifier: bool = False) -> tuple[Action, int] | None:
    binding = _KEY_BINDINGS.get(key)
    if binding is None:
        return None
    action, plain, modified = binding
    return action, (modified if modifier else plain)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def step_wpm(wpm: int, direction: int) -> int:
    """Move ``wpm`` one step, snapping off-grid values onto the step grid."""
    if direction == 0:
        return _clamp(wpm, MIN_WPM, MAX_WPM)
    remainder = wpm % WPM_STEP
    if remainder:
        base = wpm - remainder
        stepped = base + WPM_STEP if direction > 0 else base
    else:
        stepped = wpm + WPM_STEP * (1 if direction > 0 else -1)
    return _clamp(stepped, MIN_WPM, MAX_WPM)


@dataclass(slots=True)
class Session:
    source_text: str
    tokens: list[str]
    index: int = 0
    wpm: int = DEFAULT_WPM

    @property
    def last_index(self) -> int:
        return len(self.tokens) - 1

    @property
    def current_token(self) -> str:
        if not self.tokens:
            return ""
        return self.tokens[self.index]

    def to_persisted(self) -> PersistedState:
        # url is reserved for URL-sourced sessions and always written empty.
        return PersistedState(
            url="",
            source_text=self.source_text,
            wpm=self.wpm,
            word_index=self.index,
        )


@dataclass(slots=True)
class ResumeOffer:
    source_text: str
    tokens: list[str] = field(repr=False)
    index: int
    wpm: int

    @property
    def word_count(self) -> int:
        return len(self.tokens)

    @property
    def preview(self) -> str:
        words = self.tokens[:_PREVIEW_WORDS]
        suffix = "…" if len(self.tokens) > _PREVIEW_WORDS else ""
        return " ".join(words) + suffix

    def to_payload(self) -> dict[str, object]:
        return {
            "word_count": self.word_count,
            "index": self.index,
            "wpm": self.wpm,
            "preview": self.preview,
        }


Listener = Callable[["PlaybackStateMachine"], None]


class _Countdown:
    """Fixed 3→2→1 countdown driven by its own cancelable timer."""

    def __init__(
        self,
        on_tick: Callable[[int], None],
        on_elapsed: Callable[[], None],
        call_later: CallLater,
    ) -> None:
        self._on_tick = on_tick
        self._on_elapsed = on_elapsed
        self._call_later = call_later
        self._handle: TimerHandle | None = None
        self.value: int | None = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        self.cancel()
        self.value = COUNTDOWN_TICKS
        self._arm()

    def cancel(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.cancel()
        self.value = None

    def _arm(self) -> None:
        self._handle = self._call_later(COUNTDOWN_INTERVAL_MS / 1000, self._tick)

    def _tick(self) -> None:
        self._handle = None
        if self.value is None:
            return
        if self.value > 1:
            self.value -= 1
            self._arm()
            self._on_tick(self.value)
            return
        self.value = None
        self._on_elapsed()


class PlaybackStateMachine:
    """
    Reading-session engine: owns the live :class:`Session` and drives it.

    All mutations go through :meth:`_transition`, which checks the
    ``(state, trigger)`` pair against :data:`TRANSITIONS`, cancels the advance
    timer before entering any non-playing state, and notifies listeners.
    Undefined pairs are ignored and reported as ``False``.
    """

    def __init__(
        self,
        store: SessionStore | None = None,
        *,
        call_later: CallLater | None = None,
        save_debounce_ms: float = SAVE_DEBOUNCE_MS,
        wpm: int | None = None,
    ) -> None:
        self._call_later = call_later or loop_call_later
        self.store = store if store is not None else SessionStore()
        self.saver = DebouncedSaver(self.store, save_debounce_ms, call_later=self._call_later)
        self.scheduler = TimingScheduler(self._on_scheduler_advance, call_later=self._call_later)
        self._countdown = _Countdown(self._on_countdown_tick, self._on_countdown_elapsed, self._call_later)
        self._listeners: list[Listener] = []
        self.state = PlaybackState.INPUT
        self.session: Session | None = None
        self.error: str | None = None
        self.resume_offer: ResumeOffer | None = None
        self._closed = False

        saved = self.store.load()
        self._wpm = _clamp(saved.wpm, MIN_WPM, MAX_WPM)
        if wpm is not None:
            self._wpm = _clamp(wpm, MIN_WPM, MAX_WPM)
        saved_tokens = tokenize(saved.source_text)
        if saved_tokens:
            self.resume_offer = ResumeOffer(
                source_text=saved.source_text,
                tokens=saved_tokens,
                index=saved.word_index,
                wpm=self._wpm,
            )

    # ------------------------------------------------------------------ views

    @property
    def wpm(self) -> int:
        if self.session is not None:
            return self.session.wpm
        return self._wpm

    @property
    def index(self) -> int:
        return self.session.index if self.session is not None else 0

    @property
    def tokens(self) -> list[str]:
        return self.session.tokens if self.session is not None else []

    @property
    def current_token(self) -> str:
        return self.session.current_token if self.session is not None else ""

    @property
    def countdown_value(self) -> int | None:
        return self._countdown.value

    @property
    def controls_active(self) -> bool:
        return self.state in _ACTIVE

    def snapshot(self) -> dict[str, object]:
        session = self.session
        total = len(session.tokens) if session else 0
        index = session.index if session else 0
        token = session.current_token if session else ""
        progress = 0.0
        remaining = None
        if session and total:
            progress = (index + 1) / total
            remaining = format_reading_time((total - index - 1) / session.wpm)
        return {
            "state": self.state.value,
            "index": index,
            "total": total,
            "wpm": self.wpm,
            "token": token,
            "split": split_at_pivot(token).to_payload(),
            "countdown": self._countdown.value,
            "error": self.error,
            "resume": self.resume_offer.to_payload() if self.resume_offer else None,
            "progress": progress,
            "remaining": remaining,
        }

    # -------------------------------------------------------------- listeners

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Playback listener failed")

    # ------------------------------------------------------------ transitions

    def _transition(self, trigger: Trigger, effect: Callable[[], None] | None = None) -> bool:
        if self._closed:
            return False
        target = TRANSITIONS.get((self.state, trigger))
        if target is None:
            logger.debug("Ignoring %s in state %s", trigger.value, self.state.value)
            return False
        if target is not PlaybackState.PLAYING:
            self.scheduler.cancel()
        if self.state is PlaybackState.COUNTDOWN and target is not PlaybackState.COUNTDOWN:
            self._countdown.cancel()
        previous = self.state
        self.state = target
        if effect is not None:
            effect()
        if previous is not target:
            logger.debug("%s --%s--> %s", previous.value, trigger.value, target.value)
        self._notify()
        return True

    def _persist(self) -> None:
        if self.session is not None:
            self.saver.request(self.session.to_persisted())

    def _schedule_current(self) -> None:
        session = self.session
        if session is None or self.state is not PlaybackState.PLAYING:
            return
        self.scheduler.schedule(session.current_token, session.wpm)

    # ---------------------------------------------------------------- loading

    def submit(self, content: object) -> bool:
        """Start loading ``content`` (pasted text, a URL, or an uploaded file name).

        Empty submissions stay on the input screen with a validation message.
        """
        if not isinstance(content, str) or not content.strip():

            def _reject() -> None:
                self.error = ValidationError(EMPTY_SUBMISSION_MESSAGE).user_message

            self._transition(Trigger.REJECT, _reject)
            return False

        def _begin() -> None:
            self.error = None
            self.resume_offer = None

        return self._transition(Trigger.SUBMIT, _begin)

    def load_succeeded(self, text: object) -> bool:
        if self.state is not PlaybackState.LOADING:
            return False
        tokens = tokenize(text)
        if not tokens:
            self.load_failed(EmptyContentError())
            return False
        source_text = str(text)

        def _create() -> None:
            self.session = Session(source_text=source_text, tokens=tokens, index=0, wpm=self._wpm)
            self.error = None
            self._persist()
            self._countdown.start()

        return self._transition(Trigger.LOAD_SUCCEEDED, _create)

    def load_failed(self, exc: BaseException | str | None) -> bool:
        if isinstance(exc, AcquisitionError):
            logger.info("Content acquisition failed: %s", exc)
        elif isinstance(exc, BaseException):
            logger.warning("Content acquisition failed unexpectedly: %r", exc)

        def _fail() -> None:
            self.session = None
            self.error = safe_error_message(exc)

        return self._transition(Trigger.LOAD_FAILED, _fail)

    def submit_text(self, text: object) -> bool:
        """Plain-text shortcut: submit and load without an acquisition step."""
        if not self.submit(text):
            return False
        return self.load_succeeded(text)

    # -------------------------------------------------------------- countdown

    def _on_countdown_tick(self, value: int) -> None:
        self._transition(Trigger.COUNTDOWN_TICK)

    def _on_countdown_elapsed(self) -> None:
        self._transition(Trigger.COUNTDOWN_ELAPSED, self._schedule_current)

    # ---------------------------------------------------------------- playing

    def _on_scheduler_advance(self) -> None:
        session = self.session
        if session is None or self.state is not PlaybackState.PLAYING:
            return
        if session.index >= session.last_index:
            self._transition(Trigger.FINISH)
            return

        def _advance() -> None:
            session.index += 1
            self._persist()
            if session.index < session.last_index:
                self._schedule_current()

        self._transition(Trigger.ADVANCE, _advance)
        if session.index >= session.last_index:
            self._transition(Trigger.FINISH)

    def play(self) -> bool:
        session = self.session
        if session is None:
            return False

        def _play() -> None:
            if session.index >= session.last_index:
                session.index = 0
                self._persist()
            self._schedule_current()

        return self._transition(Trigger.PLAY, _play)

    def pause(self) -> bool:
        return self._transition(Trigger.PAUSE)

    def toggle(self) -> bool:
        if self.state is PlaybackState.PLAYING:
            return self.pause()
        return self.play()

    def restart(self) -> bool:
        session = self.session
        if session is None:
            return False

        def _restart() -> None:
            session.index = 0
            self._persist()
            self._schedule_current()

        return self._transition(Trigger.RESTART, _restart)

    def back(self) -> bool:
        def _discard() -> None:
            if self.session is not None:
                self._wpm = self.session.wpm
            self.session = None
            self.error = None

        return self._transition(Trigger.BACK, _discard)

    def seek(self, delta: int) -> bool:
        session = self.session
        if session is None:
            return False

        def _seek() -> None:
            session.index = _clamp(session.index + int(delta), 0, session.last_index)
            self._persist()
            self._schedule_current()

        return self._transition(Trigger.SEEK, _seek)

    def change_wpm(self, direction: int) -> bool:
        session = self.session
        if session is None:
            return False

        def _change() -> None:
            session.wpm = step_wpm(session.wpm, direction)
            self._wpm = session.wpm
            self._persist()
            self._schedule_current()

        return self._transition(Trigger.CHANGE_WPM, _change)

    # ----------------------------------------------------------------- resume

    def accept_resume(self) -> bool:
        offer = self.resume_offer
        if offer is None:
            return False

        def _resume() -> None:
            index = _clamp(offer.index, 0, len(offer.tokens) - 1)
            wpm = _clamp(offer.wpm, MIN_WPM, MAX_WPM)
            self.session = Session(
                source_text=offer.source_text,
                tokens=list(offer.tokens),
                index=index,
                wpm=wpm,
            )
            self._wpm = wpm
            self.resume_offer = None
            self.error = None

        return self._transition(Trigger.ACCEPT_RESUME, _resume)

    def dismiss_resume(self) -> bool:
        if self.resume_offer is None:
            return False

        def _dismiss() -> None:
            self.resume_offer = None
            self.saver.cancel()
            self.store.save(PersistedState(wpm=self._wpm))

        return self._transition(Trigger.DISMISS_RESUME, _dismiss)

    # ---------------------------------------------------------------- controls

    def perform(self, action: Action | str, argument: int = 0) -> bool:
        action = Action(action)
        if action is Action.TOGGLE:
            return self.toggle()
        if action is Action.PLAY:
            return self.play()
        if action is Action.PAUSE:
            return self.pause()
        if action is Action.RESTART:
            return self.restart()
        if action is Action.BACK:
            return self.back()
        if action is Action.SEEK:
            return self.seek(argument)
        return self.change_wpm(argument)

    def handle_key(self, key: str, modifier: bool = False) -> bool:
        """Apply a keyboard binding; keys are inert outside an active session."""
        if not self.controls_active:
            return False
        binding = key_to_action(key, modifier)
        if binding is None:
            return False
        action, argument = binding
        return self.perform(action, argument)

    # --------------------------------------------------------------- teardown

    def close(self) -> None:
        if self._closed:
            return
        self.scheduler.cancel()
        self._countdown.cancel()
        self.saver.flush()
        self._closed = True
        self._listeners.clear()
