from __future__ import annotations

import json
import threading

from forge.client import GenerationError
from forge.session import (
    CANCELLED_MESSAGE, FAILURE_MESSAGE, BuildSession, summarize,
)
from forge.stream import BuildPhase


def record(payload) -> bytes:
    return f"data: {json.dumps(payload)}\n".encode()


SCENARIO = [
    record({"content": "<thinking>Building a landing page"}),
    record({"content": "</thinking>"}),
    record({"fileChanges": [{"path": "src/App.jsx", "content": "export default function App(){return null}"}]}),
    b"data: [DONE]\n",
]


class FakeStream:
    def __init__(self, chunks, fail_after=None, gate=None):
        self._chunks = list(chunks)
        self._fail_after = fail_after
        self._gate = gate
        self.closed = False

    def chunks(self):
        for i, chunk in enumerate(self._chunks):
            if self._fail_after is not None and i >= self._fail_after:
                raise GenerationError("stream interrupted")
            if self._gate is not None and i > 0:
                self._gate.wait(timeout=5)
                if self.closed:
                    return
            yield chunk

    def close(self):
        self.closed = True
        if self._gate is not None:
            self._gate.set()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class FakeClient:
    def __init__(self, stream=None, project=None, error=None):
        self.stream = stream
        self.project = project or {}
        self.error = error
        self.calls: list = []

    def generate(self, project_id, prompt, model_id):
        self.calls.append((project_id, prompt, model_id))
        if self.error:
            raise self.error
        return self.stream

    def get_project(self, project_id):
        return self.project


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        self.now += 0.4
        return self.now


def make_session(client) -> tuple[BuildSession, list]:
    events: list = []
    return BuildSession(client, emit=events.append, clock=Clock()), events


def test_landing_page_scenario() -> None:
    session, events = make_session(FakeClient(FakeStream(SCENARIO)))

    result = session.generate("p1", "Build a landing page", "model")

    assert result.ok
    assert result.phase == BuildPhase.DONE
    assert session.store.paths() == ["src/App.jsx"]
    assert session.host.ready
    script = session.host.render().program.script
    assert "function App(){return null}" in script
    assert "export default" not in script
    assert result.changed_paths == ["src/App.jsx"]
    assert events[-1]["type"] == "done"
    assert events[-1]["phase"] == "done"


def test_events_are_emitted_in_arrival_order() -> None:
    session, events = make_session(FakeClient(FakeStream(SCENARIO)))
    session.generate("p1", "x", "m")

    kinds = [e["type"] for e in events]
    assert kinds[0] == "phase"
    assert kinds.index("stream") < kinds.index("file") < kinds.index("preview") < kinds.index("done")
    phases = [e["phase"] for e in events if e["type"] == "phase"]
    assert phases[0] == "thinking"
    assert phases[-1] == "done"
    assert "thinking" not in phases[phases.index("coding"):]


def test_planning_timer_fires_between_chunks() -> None:
    chunks = [record({"content": "<thinking>a"})] + [record({"creditsUsed": 0})] * 3
    session, events = make_session(FakeClient(FakeStream(chunks)))
    session.generate("p1", "x", "m")

    phases = [e["phase"] for e in events if e["type"] == "phase"]
    assert phases == ["thinking", "thinking", "planning", "done"]


def test_transport_failure_keeps_earlier_merges() -> None:
    chunks = [
        record({"fileChanges": [{"path": "src/App.jsx", "content": "export default function App(){}"}]}),
        record({"content": "never seen"}),
    ]
    session, events = make_session(FakeClient(FakeStream(chunks, fail_after=1)))

    result = session.generate("p1", "x", "m")

    assert result.error == FAILURE_MESSAGE
    assert result.summary == FAILURE_MESSAGE
    assert not result.ok
    assert result.phase == BuildPhase.DONE
    assert "src/App.jsx" in session.store
    assert {"type": "error", "text": FAILURE_MESSAGE} in events
    assert sum(1 for e in events if e["type"] == "error") == 1


def test_request_failure_before_streaming() -> None:
    session, events = make_session(FakeClient(error=GenerationError("500")))

    result = session.generate("p1", "x", "m")

    assert result.error == FAILURE_MESSAGE
    assert len(session.store) == 0
    assert events[-1]["type"] == "done"


def test_cancel_stops_the_stream_and_keeps_merged_files() -> None:
    gate = threading.Event()
    chunks = [
        record({"fileChanges": [{"path": "src/App.jsx", "content": "export default function App(){}"}]}),
        record({"fileChanges": [{"path": "src/components/Late.jsx", "content": "x"}]}),
    ]
    stream = FakeStream(chunks, gate=gate)
    session, events = make_session(FakeClient(stream))
    merged = threading.Event()

    def emit(msg):
        events.append(msg)
        if msg["type"] == "file":
            merged.set()
    session.emit = emit

    results: list = []
    worker = threading.Thread(target=lambda: results.append(session.generate("p1", "x", "m")))
    worker.start()
    assert merged.wait(timeout=5)
    assert session.running
    assert session.cancel()
    worker.join(timeout=5)

    result = results[0]
    assert result.cancelled
    assert result.summary == CANCELLED_MESSAGE
    assert stream.closed
    assert session.store.paths() == ["src/App.jsx"]
    assert not session.running
    assert not session.cancel()


def test_new_generation_after_cancel_runs_normally() -> None:
    client = FakeClient(FakeStream(SCENARIO))
    session, _ = make_session(client)
    session.generate("p1", "first", "m")
    client.stream = FakeStream([record({"content": "<thinking>Tweak</thinking>"}), b"data: [DONE]\n"])

    result = session.generate("p1", "second", "m")

    assert result.ok
    assert not result.cancelled
    assert result.summary == "Tweak"
    assert [c[1] for c in client.calls] == ["first", "second"]


def test_new_generate_cancels_the_running_one() -> None:
    gate = threading.Event()
    first = FakeStream([
        record({"fileChanges": [{"path": "src/App.jsx", "content": "export default function App(){}"}]}),
        record({"fileChanges": [{"path": "src/components/Late.jsx", "content": "x"}]}),
    ], gate=gate)
    second = FakeStream([
        record({"fileChanges": [{"path": "src/components/Next.jsx", "content": "y"}]}),
        b"data: [DONE]\n",
    ])
    client = FakeClient(first)
    session, events = make_session(client)
    merged = threading.Event()

    def emit(msg):
        events.append(msg)
        if msg["type"] == "file":
            merged.set()
    session.emit = emit

    results: dict = {}
    run_a = threading.Thread(target=lambda: results.update(a=session.generate("p1", "first", "m")))
    run_a.start()
    assert merged.wait(timeout=5)
    client.stream = second
    run_b = threading.Thread(target=lambda: results.update(b=session.generate("p1", "second", "m")))
    run_b.start()
    run_a.join(timeout=5)
    run_b.join(timeout=5)

    assert results["a"].cancelled
    assert results["a"].summary == CANCELLED_MESSAGE
    assert first.closed
    assert results["b"].ok
    assert not results["b"].cancelled
    assert [c[1] for c in client.calls] == ["first", "second"]
    assert "src/components/Late.jsx" not in session.store
    assert session.store.paths() == ["src/App.jsx", "src/components/Next.jsx"]
    # run A finished before run B merged anything
    kinds = [(e["type"], e.get("name")) for e in events if e["type"] in ("file", "done")]
    assert kinds == [("file", "src/App.jsx"), ("done", None),
                     ("file", "src/components/Next.jsx"), ("done", None)]


def test_credits_and_cost_breakdown_are_recorded() -> None:
    chunks = [
        record({"fileChanges": [{"path": "src/components/Hero.jsx", "content": "x"}]}),
        record({"creditsUsed": 2.5, "costBreakdown": {"tokens": 10}}),
    ]
    session, events = make_session(FakeClient(FakeStream(chunks)))

    result = session.generate("p1", "x", "m")

    assert result.credits_used == 2.5
    assert result.cost_breakdown == {"tokens": 10}
    assert {"type": "credits", "used": 2.5} in events
    assert result.summary == "✅ Updated 1 component (Hero) • 2.50 credits"


def test_load_project_replaces_files_and_renders() -> None:
    project = {"files": [{"path": "src/App.jsx", "content": "export default function App(){}"}]}
    session, events = make_session(FakeClient(project=project))

    state = session.load_project("p9")

    assert session.project_id == "p9"
    assert state.snapshot() == {"src/App.jsx": "export default function App(){}"}
    assert session.host.ready
    assert [e["type"] for e in events] == ["file", "preview"]


def test_reload_emits_new_preview_key() -> None:
    session, events = make_session(FakeClient(FakeStream(SCENARIO)))
    session.generate("p1", "x", "m")
    before = [e for e in events if e["type"] == "preview"][-1]["key"]

    mount = session.reload()

    assert mount.key != before
    assert events[-1] == {"type": "preview", "key": mount.key, "revision": mount.revision,
                          "order": ["src/App.jsx"]}


def test_summarize_messages() -> None:
    paths = ["src/components/A.jsx", "src/components/B.jsx", "src/components/C.jsx",
             "src/components/D.jsx", "src/App.jsx"]

    assert summarize(paths, "", 1.234) == "✅ Updated 4 components (A, B, C...) and 1 file • 1.23 credits"
    assert summarize(["src/App.jsx", "src/index.css"], "", 0) == "✅ Updated 2 files"
    assert summarize([], "", 0) == "Generation complete."
    assert summarize([], "x" * 200, 0) == "x" * 150 + "..."
