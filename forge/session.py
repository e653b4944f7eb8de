"""
BuildSession — one user's live build loop.

    network chunks → StreamEventParser → phase / file events
                   → VirtualFileStore.merge() → PreviewHost.render()

Everything the UI needs is pushed through `emit(dict)` in arrival order.
Only one generation runs at a time: starting a new one cancels the previous
stream and waits for it to unwind, so the store has a single writer.
"""
import logging, threading, time
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from forge.client import GenerationError
from forge.config import PLANNING_DELAY
from forge.files import VirtualFileStore, normalize_path
from forge.host import PreviewHost
from forge.linker import COMPONENTS_DIR
from forge.stream import (
    BuildPhase, CostBreakdown, CreditUpdate, FileChanges, PhaseChanged,
    PhaseTracker, StreamEventParser, TextDelta,
)

log = logging.getLogger("session")

FAILURE_MESSAGE   = "❌ Generation failed. Please try again."
CANCELLED_MESSAGE = "⛔ Generation cancelled."


def _size(content: str) -> str:
    return f"{len(content)/1024:.1f}KB" if len(content) >= 1024 else f"{len(content)}B"


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'s' if n != 1 else ''}"


def summarize(changed_paths: list, thinking: str, credits: float) -> str:
    """Chat line shown once a generation finishes."""
    cost = f" • {credits:.2f} credits" if credits > 0 else ""
    if changed_paths:
        comps  = [p for p in changed_paths if p.startswith(COMPONENTS_DIR)]
        others = [p for p in changed_paths if not p.startswith(COMPONENTS_DIR)]
        parts = []
        if comps:
            names = ", ".join(PurePosixPath(p).stem for p in comps[:3])
            more  = "..." if len(comps) > 3 else ""
            parts.append(f"{_plural(len(comps), 'component')} ({names}{more})")
        if others:
            parts.append(_plural(len(others), "file"))
        return f"✅ Updated {' and '.join(parts)}{cost}"
    summary = thinking[:150] or "Generation complete."
    if len(thinking) > 150:
        summary += "..."
    return summary + cost


@dataclass
class GenerationResult:
    phase: BuildPhase = BuildPhase.IDLE
    summary: str = ""
    changed_paths: list = field(default_factory=list)
    credits_used: float = 0.0
    cost_breakdown: object = None
    error: str = ""
    cancelled: bool = False
    revision: int = 0

    @property
    def ok(self) -> bool:
        return not self.error and not self.cancelled


class BuildSession:
    def __init__(self, client, store: VirtualFileStore = None, host: PreviewHost = None,
                 emit=None, clock=time.monotonic, planning_delay: float = PLANNING_DELAY):
        self.client         = client
        self.store          = store or VirtualFileStore()
        self.host           = host or PreviewHost(self.store)
        self.emit           = emit or (lambda msg: None)
        self.clock          = clock
        self.planning_delay = planning_delay
        self.project_id     = None
        self.parser         = None
        self.last_result    = None

        self._run_lock = threading.Lock()
        self._guard    = threading.Lock()
        self._cancel   = threading.Event()
        self._stream   = None
        self._running  = False

    # ── Control ───────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    def cancel(self) -> bool:
        with self._guard:
            if not self._running:
                return False
            self._cancel.set()
            stream = self._stream
        if stream is not None:
            stream.close()
        log.info("   ⛔ Cancelling in-flight generation")
        return True

    def generate(self, project_id: str, prompt: str, model_id: str) -> GenerationResult:
        self.cancel()
        with self._run_lock:
            with self._guard:
                self._cancel  = threading.Event()
                self._running = True
                self._stream  = None
                cancel = self._cancel
            try:
                self.last_result = self._run(project_id, prompt, model_id, cancel)
                return self.last_result
            finally:
                with self._guard:
                    self._running = False
                    self._stream  = None

    def load_project(self, project_id: str):
        data = self.client.get_project(project_id)
        self.project_id = project_id
        state = self.store.load(data.get("files") or [])
        self.host.reset()
        self.host.on_merge(state)
        self._emit_files(list(state.files))
        self._emit_preview()
        return state

    def reload(self):
        mount = self.host.force_reload()
        self._emit_preview(mount)
        return mount

    # ── Stream loop ───────────────────────────────────────────────────────────

    def _run(self, project_id, prompt, model_id, cancel: threading.Event) -> GenerationResult:
        result = GenerationResult()
        parser = self.parser = StreamEventParser(PhaseTracker(self.planning_delay))
        self.project_id = project_id

        log.info("━" * 40)
        log.info(f"💡 {prompt[:90]}")
        log.info(f"🧠 Model: {model_id}   📁 Project: {project_id}")
        if parser.tracker.start():
            self._apply(PhaseChanged(parser.phase, parser.message), result)
        started = self.clock()

        try:
            stream = self.client.generate(project_id, prompt, model_id)
            with self._guard:
                self._stream = stream
            if cancel.is_set():
                stream.close()
            with stream:
                for chunk in stream.chunks():
                    if cancel.is_set():
                        break
                    for event in parser.tick(self.clock() - started) + parser.feed(chunk):
                        self._apply(event, result)
                if not cancel.is_set():
                    for event in parser.close():
                        self._apply(event, result)
        except GenerationError as e:
            log.error(f"   ❌ {e}")
            result.error = FAILURE_MESSAGE
            self.emit({"type": "error", "text": FAILURE_MESSAGE})
        finally:
            result.cancelled = cancel.is_set()
            if parser.tracker.finish():
                self._apply(PhaseChanged(parser.phase, parser.message), result)

        result.phase    = parser.phase
        result.revision = self.store.revision
        if result.error:
            result.summary = result.error
        elif result.cancelled:
            result.summary = CANCELLED_MESSAGE
        else:
            result.summary = summarize(result.changed_paths, parser.tracker.thinking_summary(),
                                       result.credits_used)
        log.info(f"   {result.summary}")
        self.emit({"type": "done", "summary": result.summary, "phase": result.phase.label,
                   "cancelled": result.cancelled, "revision": result.revision})
        return result

    def _apply(self, event, result: GenerationResult):
        if isinstance(event, TextDelta):
            self.emit({"type": "stream", "token": event.text})
        elif isinstance(event, PhaseChanged):
            self.emit({"type": "phase", "phase": event.phase.label, "message": event.message})
        elif isinstance(event, FileChanges):
            state = self.store.merge(event.changes)
            self.host.on_merge(state)
            merged = [state.get(normalize_path(c.path)) for c in event.changes]
            merged = [f for f in merged if f is not None]
            for f in merged:
                if f.path not in result.changed_paths:
                    result.changed_paths.append(f.path)
            self._emit_files(merged)
            self._emit_preview()
        elif isinstance(event, CreditUpdate):
            result.credits_used = event.amount
            self.emit({"type": "credits", "used": event.amount})
        elif isinstance(event, CostBreakdown):
            result.cost_breakdown = event.detail

    # ── UI events ─────────────────────────────────────────────────────────────

    def _emit_files(self, files: list):
        for f in files:
            log.info(f"   ✎ {f.path} ({_size(f.content)})")
            self.emit({"type": "file", "name": f.path, "size": _size(f.content),
                       "content": f.content, "revision": self.store.revision})

    def _emit_preview(self, mount=None):
        mount = mount or self.host.render()
        if mount is None:
            return
        for d in mount.program.diagnostics:
            self.emit({"type": "log", "level": "WARN", "text": d})
        self.emit({"type": "preview", "key": mount.key, "revision": mount.revision,
                   "order": list(mount.program.order)})
