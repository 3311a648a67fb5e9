from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Callable

from fastapi import Body, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse

from .acquire import DEFAULT_FETCH_TIMEOUT, extract_upload_text, fetch_url_text, is_url_like
from .playback import Action, PlaybackState, PlaybackStateMachine
from .scheduler import CallLater
from .storage import SAVE_DEBOUNCE_MS, SessionStore
from .web_assets import GULP_FAVICON_URL

__all__ = ["WebConfig", "create_app"]

logger = logging.getLogger(__name__)

_EVENT_QUEUE_SIZE = 64
_KEEPALIVE_SECONDS = 15.0


@dataclass(slots=True)
class WebConfig:
    state_path: Path | None = None
    save_debounce_ms: float = SAVE_DEBOUNCE_MS
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    wpm: int | None = None


INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>gulp</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <link rel="icon" type="image/svg+xml" href="__GULP_FAVICON__">
  <style>
    :root {
      color-scheme: dark;
      font-family: -apple-system, BlinkMacSystemFont, "Helvetica Neue", "Segoe UI", sans-serif;
      --bg: #0b0d14;
      --panel: #141724;
      --text: #f5f5f5;
      --muted: #9aa0b5;
      --accent: #3b82f6;
      --pivot: #ef4444;
      --danger: #f87171;
      --radius: 18px;
    }
    body {
      margin: 0;
      background: var(--bg);
      color: var(--text);
      min-height: 100vh;
    }
    .hidden {
      display: none !important;
    }
    main {
      max-width: 860px;
      margin: 0 auto;
      padding: 2rem 1.4rem;
    }
    section.panel {
      background: var(--panel);
      border-radius: var(--radius);
      padding: 1.4rem;
      box-shadow: 0 16px 30px rgba(7, 9, 19, 0.28);
    }
    h1 {
      margin: 0 0 1rem;
      font-size: 1.5rem;
    }
    textarea {
      width: 100%;
      min-height: 12rem;
      box-sizing: border-box;
      border-radius: 12px;
      border: 1px solid rgba(255,255,255,0.12);
      background: #0f1220;
      color: var(--text);
      padding: 0.8rem;
      font: inherit;
    }
    .row {
      display: flex;
      gap: 0.75rem;
      flex-wrap: wrap;
      align-items: center;
      margin-top: 0.9rem;
    }
    button {
      border: none;
      border-radius: 999px;
      padding: 0.55rem 1.1rem;
      background: var(--accent);
      color: white;
      font-weight: 600;
      cursor: pointer;
    }
    button.secondary {
      background: #252a40;
    }
    .error {
      color: var(--danger);
      margin-top: 0.8rem;
    }
    .muted {
      color: var(--muted);
      font-size: 0.9rem;
    }
    .stage {
      position: relative;
      height: 9rem;
      display: flex;
      align-items: center;
      justify-content: center;
    }
    .stage::before,
    .stage::after {
      content: "";
      position: absolute;
      left: 50%;
      width: 2px;
      height: 1.2rem;
      background: var(--pivot);
      opacity: 0.7;
    }
    .stage::before { top: 0.6rem; }
    .stage::after { bottom: 0.6rem; }
    .word {
      display: grid;
      grid-template-columns: 1fr auto 1fr;
      width: 100%;
      font-family: Menlo, "DejaVu Sans Mono", monospace;
      font-size: 3rem;
      white-space: pre;
    }
    .word .left { text-align: right; }
    .word .pivot { color: var(--pivot); }
    .word .right { text-align: left; }
    .countdown {
      font-size: 4rem;
      font-weight: 700;
      color: var(--muted);
    }
    progress {
      width: 100%;
      height: 6px;
    }
  </style>
</head>
<body>
  <main>
    <section id="input-panel" class="panel">
      <h1>gulp</h1>
      <div id="resume" class="hidden">
        <p class="muted">Continue where you left off? <span id="resume-detail"></span></p>
        <div class="row">
          <button id="resume-accept">Resume</button>
          <button id="resume-dismiss" class="secondary">Start over</button>
        </div>
      </div>
      <textarea id="content" placeholder="Paste text or a URL"></textarea>
      <div class="row">
        <button id="submit">Read</button>
        <label class="muted">or upload <input id="file" type="file"></label>
      </div>
      <div id="error" class="error hidden"></div>
    </section>
    <section id="reader-panel" class="panel hidden">
      <div class="stage">
        <div id="countdown" class="countdown hidden"></div>
        <div id="word" class="word"><span class="left"></span><span class="pivot"></span><span class="right"></span></div>
      </div>
      <progress id="progress" max="1" value="0"></progress>
      <div class="row muted">
        <span id="position"></span>
        <span id="wpm"></span>
        <span id="remaining"></span>
        <span id="status"></span>
      </div>
      <div class="row">
        <button data-action="toggle">Play / Pause</button>
        <button data-action="restart" class="secondary">Restart</button>
        <button data-action="back" class="secondary">Back</button>
      </div>
      <p class="muted">Space play/pause · ←/→ seek (Shift ×10) · ↑/↓ speed · Esc back</p>
    </section>
  </main>
  <script>
    const ui = {
      inputPanel: document.getElementById('input-panel'),
      readerPanel: document.getElementById('reader-panel'),
      content: document.getElementById('content'),
      submit: document.getElementById('submit'),
      file: document.getElementById('file'),
      error: document.getElementById('error'),
      resume: document.getElementById('resume'),
      resumeDetail: document.getElementById('resume-detail'),
      countdown: document.getElementById('countdown'),
      word: document.getElementById('word'),
      progress: document.getElementById('progress'),
      position: document.getElementById('position'),
      wpm: document.getElementById('wpm'),
      remaining: document.getElementById('remaining'),
      status: document.getElementById('status'),
    };
    let current = null;

    async function postJSON(url, body) {
      const res = await fetch(url, {
        method: 'POST',
        cache: 'no-store',
        headers: { 'Content-Type': 'application/json' },
        body: JSON.stringify(body || {}),
      });
      if (!res.ok) {
        const text = await res.text();
        throw new Error(text || `HTTP ${res.status}`);
      }
      return res.json();
    }

    function render(snapshot) {
      current = snapshot;
      const onInput = snapshot.state === 'input' || snapshot.state === 'loading';
      ui.inputPanel.classList.toggle('hidden', !onInput);
      ui.readerPanel.classList.toggle('hidden', onInput);
      ui.submit.disabled = snapshot.state === 'loading';
      ui.submit.textContent = snapshot.state === 'loading' ? 'Loading…' : 'Read';
      ui.error.textContent = snapshot.error || '';
      ui.error.classList.toggle('hidden', !snapshot.error);
      if (snapshot.resume && snapshot.state === 'input') {
        const offer = snapshot.resume;
        ui.resumeDetail.textContent = `word ${offer.index + 1} of ${offer.word_count} at ${offer.wpm} wpm: “${offer.preview}”`;
        ui.resume.classList.remove('hidden');
      } else {
        ui.resume.classList.add('hidden');
      }
      const counting = snapshot.state === 'countdown';
      ui.countdown.classList.toggle('hidden', !counting);
      ui.word.classList.toggle('hidden', counting);
      ui.countdown.textContent = counting ? String(snapshot.countdown || '') : '';
      const parts = ui.word.children;
      parts[0].textContent = snapshot.split.left;
      parts[1].textContent = snapshot.split.pivot;
      parts[2].textContent = snapshot.split.right;
      ui.progress.value = snapshot.progress || 0;
      ui.position.textContent = snapshot.total ? `${snapshot.index + 1} / ${snapshot.total}` : '';
      ui.wpm.textContent = `${snapshot.wpm} wpm`;
      ui.remaining.textContent = snapshot.remaining ? `${snapshot.remaining} left` : '';
      ui.status.textContent = snapshot.state;
    }

    async function run(promise) {
      try {
        render(await promise);
      } catch (err) {
        ui.error.textContent = err.message;
        ui.error.classList.remove('hidden');
      }
    }

    ui.submit.addEventListener('click', () => {
      run(postJSON('/api/session/submit', { content: ui.content.value }));
    });
    ui.file.addEventListener('change', () => {
      const file = ui.file.files[0];
      if (!file) {
        return;
      }
      const form = new FormData();
      form.append('file', file);
      run(fetch('/api/session/upload', { method: 'POST', body: form }).then((res) => res.json()));
      ui.file.value = '';
    });
    document.getElementById('resume-accept').addEventListener('click', () => {
      run(postJSON('/api/session/resume', { accept: true }));
    });
    document.getElementById('resume-dismiss').addEventListener('click', () => {
      run(postJSON('/api/session/resume', { accept: false }));
    });
    document.querySelectorAll('button[data-action]').forEach((button) => {
      button.addEventListener('click', () => {
        run(postJSON('/api/session/action', { action: button.dataset.action }));
      });
    });
    const boundKeys = new Set([' ', 'ArrowLeft', 'ArrowRight', 'ArrowUp', 'ArrowDown', 'Escape']);
    document.addEventListener('keydown', (event) => {
      if (!current || !['playing', 'paused', 'finished'].includes(current.state)) {
        return;
      }
      if (!boundKeys.has(event.key)) {
        return;
      }
      event.preventDefault();
      run(postJSON('/api/session/key', { key: event.key, modifier: event.shiftKey }));
    });

    const events = new EventSource('/api/session/events');
    events.onmessage = (event) => render(JSON.parse(event.data));
  </script>
</body>
</html>
"""


def _sse(payload: dict[str, object]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def create_app(
    config: WebConfig,
    *,
    call_later: CallLater | None = None,
    fetch: Callable[[str], str] | None = None,
) -> FastAPI:
    store = SessionStore(config.state_path)
    machine = PlaybackStateMachine(
        store,
        call_later=call_later,
        save_debounce_ms=config.save_debounce_ms,
        wpm=config.wpm,
    )

    def _default_fetch(url: str) -> str:
        return fetch_url_text(url, timeout=config.fetch_timeout)

    fetch_text = fetch or _default_fetch

    @contextlib.asynccontextmanager
    async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            machine.close()

    app = FastAPI(title="gulp RSVP", lifespan=_lifespan)
    app.state.config = config
    app.state.store = store
    app.state.machine = machine

    async def _load(work: Callable[[], str]) -> None:
        loop = asyncio.get_running_loop()
        try:
            text = await loop.run_in_executor(None, work)
        except Exception as exc:
            machine.load_failed(exc)
            return
        machine.load_succeeded(text)

    def _require_input_state() -> None:
        if machine.state is not PlaybackState.INPUT:
            raise HTTPException(status_code=409, detail="A reading session is already active.")

    @app.get("/", response_class=HTMLResponse)
    def index() -> str:
        return INDEX_HTML.replace("__GULP_FAVICON__", GULP_FAVICON_URL)

    @app.get("/api/health")
    def api_health() -> JSONResponse:
        return JSONResponse(
            {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
        )

    @app.get("/api/session")
    async def api_session() -> JSONResponse:
        return JSONResponse(machine.snapshot())

    @app.post("/api/session/submit")
    async def api_submit(payload: dict[str, object] = Body(...)) -> JSONResponse:
        content = payload.get("content", "")
        if not isinstance(content, str):
            raise HTTPException(status_code=400, detail="Invalid content.")
        _require_input_state()
        if machine.submit(content):
            if is_url_like(content):
                await _load(lambda: fetch_text(content.strip()))
            else:
                machine.load_succeeded(content)
        return JSONResponse(machine.snapshot())

    @app.post("/api/session/upload")
    async def api_upload(file: UploadFile = File(...)) -> JSONResponse:
        _require_input_state()
        data = await file.read()
        filename = file.filename
        content_type = file.content_type
        if machine.submit(filename or "upload"):
            await _load(lambda: extract_upload_text(filename, data, content_type))
        return JSONResponse(machine.snapshot())

    @app.post("/api/session/action")
    async def api_action(payload: dict[str, object] = Body(...)) -> JSONResponse:
        raw_action = payload.get("action")
        try:
            action = Action(raw_action)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Unknown action.") from exc
        delta = payload.get("delta", 0)
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise HTTPException(status_code=400, detail="delta must be an integer.")
        applied = machine.perform(action, delta)
        return JSONResponse({"applied": applied, **machine.snapshot()})

    @app.post("/api/session/key")
    async def api_key(payload: dict[str, object] = Body(...)) -> JSONResponse:
        key = payload.get("key")
        if not isinstance(key, str):
            raise HTTPException(status_code=400, detail="key must be a string.")
        applied = machine.handle_key(key, bool(payload.get("modifier")))
        return JSONResponse({"applied": applied, **machine.snapshot()})

    @app.post("/api/session/resume")
    async def api_resume(payload: dict[str, object] = Body(...)) -> JSONResponse:
        if machine.resume_offer is None:
            raise HTTPException(status_code=404, detail="No saved session to resume.")
        if payload.get("accept"):
            machine.accept_resume()
        else:
            machine.dismiss_resume()
        return JSONResponse(machine.snapshot())

    @app.get("/api/session/events")
    async def api_events(request: Request) -> StreamingResponse:
        queue: asyncio.Queue[dict[str, object]] = asyncio.Queue(maxsize=_EVENT_QUEUE_SIZE)

        def _listener(engine: PlaybackStateMachine) -> None:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(engine.snapshot())

        unsubscribe = machine.subscribe(_listener)

        async def _stream() -> AsyncIterator[str]:
            try:
                yield _sse(machine.snapshot())
                while not await request.is_disconnected():
                    try:
                        snapshot = await asyncio.wait_for(queue.get(), timeout=_KEEPALIVE_SECONDS)
                    except asyncio.TimeoutError:
                        yield ": keep-alive\n\n"
                        continue
                    yield _sse(snapshot)
            finally:
                unsubscribe()

        return StreamingResponse(
            _stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    return app
