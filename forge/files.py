"""
In-memory project files. The store is the single owner of the current
path → content mapping; merges upsert, nothing is ever deleted.
"""
import io, logging, re, threading, zipfile
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger("files")

_KINDS = {
    ".js": "script", ".jsx": "script", ".ts": "script", ".tsx": "script",
    ".css": "style",
    ".html": "markup",
    ".json": "data",
}


def kind_for(path: str) -> str:
    return _KINDS.get(Path(path).suffix.lower(), "file")


def normalize_path(path: str) -> str:
    p = path.strip().replace("\\", "/")
    while p.startswith("./"):
        p = p[2:]
    return p.lstrip("/")


@dataclass(frozen=True)
class VirtualFile:
    path: str
    content: str
    kind: str = "file"


@dataclass(frozen=True)
class ProjectState:
    files: tuple = ()
    revision: int = 0

    def get(self, path: str):
        for f in self.files:
            if f.path == path:
                return f
        return None

    def __contains__(self, path) -> bool:
        return self.get(path) is not None

    def snapshot(self) -> dict[str, str]:
        return {f.path: f.content for f in self.files}


def _change_fields(change):
    """Accept {path, content} mappings and FileChange-like objects alike."""
    if isinstance(change, dict):
        return change.get("path"), change.get("content")
    return getattr(change, "path", None), getattr(change, "content", None)


class VirtualFileStore:
    """
    Writers (merge/load) and readers (state/snapshot/...) may run on different
    threads; every access holds the lock, so a reader sees a store either
    before or after a whole merge, never in between.
    """

    def __init__(self, files=None):
        self._files: dict[str, VirtualFile] = {}   # insertion order = display order
        self._revision = 0
        self._lock = threading.RLock()
        if files:
            self.load(files)

    # ── Mutation ──────────────────────────────────────────────────────────────

    def merge(self, changes) -> ProjectState:
        """
        Upsert each change in order. Existing paths keep their position,
        new paths are appended. Duplicate paths inside one batch resolve to
        the last one applied.
        """
        with self._lock:
            applied = 0
            for change in changes:
                path, content = _change_fields(change)
                if not isinstance(path, str) or not path.strip():
                    log.warning(f"   merge: skipping change without a path ({change!r:.80})")
                    continue
                path = normalize_path(path)
                self._files[path] = VirtualFile(path, content if isinstance(content, str) else "", kind_for(path))
                applied += 1
            if applied:
                self._revision += 1
                log.info(f"   ✎ merged {applied} change(s) → r{self._revision}")
            return self.state

    def load(self, files) -> ProjectState:
        """Replace the whole project, e.g. after fetching it from the backend."""
        loaded = {}
        for f in files:
            path, content = _change_fields(f)
            if not isinstance(path, str) or not path.strip():
                continue
            path = normalize_path(path)
            loaded[path] = VirtualFile(path, content if isinstance(content, str) else "", kind_for(path))
        with self._lock:
            self._files = loaded
            self._revision += 1
            log.info(f"   📂 loaded {len(loaded)} file(s) → r{self._revision}")
            return self.state

    # ── Read API ──────────────────────────────────────────────────────────────

    @property
    def state(self) -> ProjectState:
        with self._lock:
            return ProjectState(tuple(self._files.values()), self._revision)

    @property
    def revision(self) -> int:
        return self._revision

    def get(self, path: str):
        with self._lock:
            return self._files.get(normalize_path(path))

    def paths(self) -> list[str]:
        with self._lock:
            return list(self._files)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return {p: f.content for p, f in self._files.items()}

    def __contains__(self, path) -> bool:
        with self._lock:
            return isinstance(path, str) and normalize_path(path) in self._files

    def __len__(self) -> int:
        return len(self._files)


# ── Download archive ──────────────────────────────────────────────────────────

def to_zip(files) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for f in files:
            path, content = _change_fields(f)
            if isinstance(path, str) and path.strip():
                zf.writestr(normalize_path(path), content or "")
    return buf.getvalue()


def archive_name(project_name) -> str:
    """Filesystem-safe archive stem; path separators never survive."""
    name = re.sub(r"[^\w\- ]+", "_", str(project_name or "")).strip(" _")
    return name or "project"


def write_zip(out_dir: Path, payload: dict) -> Path:
    """Write a download payload ({projectName, files}) as <projectName>.zip inside out_dir."""
    out = Path(out_dir) / f"{archive_name(payload.get('projectName'))}.zip"
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(to_zip(payload.get("files", [])))
    log.info(f"   📦 {out.name} ({len(payload.get('files', []))} files)")
    return out
