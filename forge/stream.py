"""
Streaming response parser.

The generation endpoint answers with SSE-style lines:

    data: {"content": "<thinking>Building a landing"}
    data: {"fileChanges": [{"path": "src/App.jsx", "content": "..."}]}
    data: [DONE]

Chunks arrive with arbitrary boundaries, so lines are buffered until their
newline shows up. Each complete record is decoded into GenerationEvents and
the cumulative text is fed to a PhaseTracker that decides what the user
sees while the model is still reasoning.
"""
import codecs, enum, json, logging, re
from dataclasses import dataclass

from forge.config import PLANNING_DELAY

log = logging.getLogger("stream")

RECORD_PREFIX  = "data: "
DONE_SENTINEL  = "[DONE]"
OPEN_MARKER    = "<thinking>"
CLOSE_MARKER   = "</thinking>"
PLACEHOLDER    = "Analyzing your request..."

_CLOSED_BLOCK = re.compile(r"<thinking>([\s\S]*?)</thinking>")
_OPEN_BLOCK   = re.compile(r"<thinking>([\s\S]*)$")


class BuildPhase(enum.IntEnum):
    IDLE     = 0
    THINKING = 1
    PLANNING = 2
    CODING   = 3
    DONE     = 4

    @property
    def label(self) -> str:
        return self.name.lower()


# ── Events ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class FileChange:
    path: str
    content: str


@dataclass(frozen=True)
class FileChanges:
    changes: tuple


@dataclass(frozen=True)
class CreditUpdate:
    amount: float


@dataclass(frozen=True)
class CostBreakdown:
    detail: object


@dataclass(frozen=True)
class PhaseChanged:
    phase: BuildPhase
    message: str


@dataclass(frozen=True)
class Done:
    pass


# ── Phase state machine ───────────────────────────────────────────────────────

def has_open_marker(text: str) -> bool:
    return OPEN_MARKER in text


def has_closed_block(text: str) -> bool:
    return _CLOSED_BLOCK.search(text) is not None


def has_any_marker(text: str) -> bool:
    return "<" in text


class PhaseTracker:
    """
    Linear progress indicator over the cumulative text of one stream.

    Phase never moves backwards. Once a closed thinking block is seen the
    surfaced message is cleared and stays cleared: coding progress is only
    visible through file events after that point.
    """

    def __init__(self, planning_delay: float = PLANNING_DELAY):
        self.planning_delay = planning_delay
        self.reset()

    def reset(self):
        self.phase   = BuildPhase.IDLE
        self.message = ""
        self.text    = ""
        self.locked  = False

    def _advance(self, phase: BuildPhase) -> bool:
        if phase > self.phase:
            self.phase = phase
            return True
        return False

    def start(self) -> bool:
        return self._advance(BuildPhase.THINKING)

    def observe_text(self, delta: str) -> bool:
        """Append a text delta; return True if phase or message changed."""
        self.text += delta
        before = (self.phase, self.message)
        if self.locked:
            return False
        if has_closed_block(self.text):
            self.locked = True
            self._advance(BuildPhase.CODING)
            self.message = ""
        elif has_open_marker(self.text):
            self._advance(BuildPhase.THINKING)
            m = _OPEN_BLOCK.search(self.text)
            self.message = (m.group(1).strip() if m else "") or PLACEHOLDER
        elif not has_any_marker(self.text):
            cleaned = self.text.strip()
            if cleaned:
                self._advance(BuildPhase.THINKING)
                self.message = cleaned
        return (self.phase, self.message) != before

    def observe_files(self) -> bool:
        return self._advance(BuildPhase.DONE)

    def on_timer(self, elapsed: float) -> bool:
        if self.phase == BuildPhase.THINKING and elapsed >= self.planning_delay:
            return self._advance(BuildPhase.PLANNING)
        return False

    def finish(self) -> bool:
        return self._advance(BuildPhase.DONE)

    def thinking_summary(self) -> str:
        m = _CLOSED_BLOCK.search(self.text)
        return m.group(1).strip() if m else ""


# ── Record parser ─────────────────────────────────────────────────────────────

def decode_record(payload: str) -> list:
    """Decode one record payload. Malformed payloads yield no events."""
    if payload.strip() == DONE_SENTINEL:
        return []
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        log.debug(f"   dropped malformed record: {payload[:80]!r}")
        return []
    if not isinstance(data, dict):
        return []

    events = []
    content = data.get("content")
    if isinstance(content, str) and content:
        events.append(TextDelta(content))

    raw_changes = data.get("fileChanges")
    if isinstance(raw_changes, list) and raw_changes:
        changes = tuple(
            FileChange(c["path"], c.get("content") if isinstance(c.get("content"), str) else "")
            for c in raw_changes
            if isinstance(c, dict) and isinstance(c.get("path"), str)
        )
        if changes:
            events.append(FileChanges(changes))

    credits = data.get("creditsUsed")
    if isinstance(credits, (int, float)) and not isinstance(credits, bool) and credits:
        events.append(CreditUpdate(float(credits)))

    if data.get("costBreakdown") is not None:
        events.append(CostBreakdown(data["costBreakdown"]))
    return events


class StreamEventParser:
    def __init__(self, tracker: PhaseTracker = None):
        self.tracker  = tracker or PhaseTracker()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer  = ""
        self._closed  = False

    @property
    def phase(self) -> BuildPhase:
        return self.tracker.phase

    @property
    def message(self) -> str:
        return self.tracker.message

    def feed(self, chunk) -> list:
        if isinstance(chunk, (bytes, bytearray)):
            chunk = self._decoder.decode(bytes(chunk))
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        events = []
        for line in lines:
            events.extend(self._line(line))
        return events

    def close(self) -> list:
        """Flush a trailing unterminated record and mark the stream finished."""
        if self._closed:
            return []
        self._closed = True
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        events = self._line(tail) if tail else []
        events.append(Done())
        return events

    def _line(self, line: str) -> list:
        line = line.rstrip("\r")
        if not line.startswith(RECORD_PREFIX):
            return []
        events = []
        for event in decode_record(line[len(RECORD_PREFIX):]):
            events.append(event)
            changed = False
            if isinstance(event, TextDelta):
                changed = self.tracker.observe_text(event.text)
            elif isinstance(event, FileChanges):
                changed = self.tracker.observe_files()
            if changed:
                events.append(PhaseChanged(self.tracker.phase, self.tracker.message))
        return events

    def tick(self, elapsed: float) -> list:
        """Timer hook; returns a PhaseChanged event when PLANNING is entered."""
        if self.tracker.on_timer(elapsed):
            return [PhaseChanged(self.tracker.phase, self.tracker.message)]
        return []
