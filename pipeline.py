#!/usr/bin/env python3
import re, sys, time, logging
from pathlib import Path
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler

from forge.checker import PreviewChecker
from forge.client import BackendClient, GenerationError, project_name_for
from forge.config import BACKEND_URL, DEFAULT_MODEL, LOGS_DIR, OUTPUT_DIR, PROMPTS_DIR
from forge.files import write_zip
from forge.session import BuildSession

LOGS_DIR.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[
        logging.FileHandler(LOGS_DIR / "pipeline.log"),
        logging.StreamHandler(sys.stdout)
    ]
)
log = logging.getLogger("pipeline")


class PromptFileHandler(FileSystemEventHandler):
    def __init__(self, run=None):
        self.processing = set()
        self.run = run or run_pipeline
    def on_created(self, event):  self._handle(event.src_path)
    def on_modified(self, event): self._handle(event.src_path)
    def _handle(self, path):
        p = Path(path)
        if p.suffix == ".txt" and p not in self.processing:
            time.sleep(0.5)
            self.processing.add(p)
            try: self.run(p)
            finally: self.processing.discard(p)


def slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_") or "project"


def run_pipeline(prompt_file: Path, client: BackendClient = None, checker: PreviewChecker = None,
                 out_root: Path = OUTPUT_DIR, model: str = DEFAULT_MODEL):
    log.info("=" * 60)
    log.info("🚀 PIPELINE STARTED")
    log.info("=" * 60)
    prompt = prompt_file.read_text(encoding="utf-8").strip()
    if not prompt:
        log.warning("Prompt file is empty. Skipping.")
        return None
    log.info(f"💡 Prompt: {prompt[:200]}...")

    client  = client or BackendClient()
    session = BuildSession(client)
    try:
        project = client.create_project(project_name_for(prompt))
    except GenerationError as e:
        log.error(f"Could not create project: {e}")
        return None
    project_id = str(project["id"])
    log.info(f"📁 Project {project.get('name', project_id)} ({project_id})")

    log.info(f"\n🏗️  Generating with {model}...")
    result = session.generate(project_id, prompt, model)
    if not result.ok:
        log.error(f"Generation did not complete: {result.summary}")
        return None
    log.info(f"✅ {result.summary}")

    out_dir = out_root / slug(prompt_file.stem)
    out_dir.mkdir(parents=True, exist_ok=True)
    write_files(out_dir, session.store.snapshot())

    mount = session.host.render()
    if mount is None:
        log.warning("⚠️  No entry component was generated, nothing to preview.")
    else:
        (out_dir / "preview.html").write_text(mount.document, encoding="utf-8")
        log.info(f"🖥️  Preview written → {out_dir / 'preview.html'}")

    write_archive(client, project_id, out_dir, session)

    if mount is not None:
        log.info("\n🧪 Checking preview...")
        errors = (checker or PreviewChecker()).check(mount.document)
        if errors:
            log.warning(f"⚠️  {len(errors)} issue(s):")
            for e in errors: log.warning(f"   • {e}")
        else:
            log.info("✅ Preview rendered cleanly!")

    write_readme(out_dir, prompt, result.changed_paths)

    log.info("=" * 60)
    log.info(f"🎉 DONE!  📁 {out_dir}")
    log.info("=" * 60)
    return out_dir


def write_files(out_dir: Path, files: dict):
    for path, content in files.items():
        if ".." in Path(path).parts:
            log.warning(f"   skipping {path!r}: escapes the project directory")
            continue
        dest = out_dir / path
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(content, encoding="utf-8")
    log.info(f"   📝 {len(files)} file(s) → {out_dir}")


def write_archive(client, project_id: str, out_dir: Path, session: BuildSession):
    try:
        payload = client.download(project_id)
    except GenerationError as e:
        log.warning(f"⚠️  Download failed ({e}); archiving local files instead")
        payload = {"projectName": out_dir.name,
                   "files": [{"path": p, "content": c} for p, c in session.store.snapshot().items()]}
    return write_zip(out_dir, payload)


def write_readme(out_dir: Path, prompt: str, changed: list):
    listing = "\n".join(f"- `{p}`" for p in changed) or "- (none)"
    (out_dir / "README.md").write_text(
        f"# {out_dir.name.replace('_', ' ').title()}\n\n"
        f"## Prompt\n{prompt}\n\n"
        f"## Files\n{listing}\n\n"
        f"## Preview\nOpen `preview.html` in a browser.\n",
        encoding="utf-8",
    )


if __name__ == "__main__":
    for d in [PROMPTS_DIR, OUTPUT_DIR, LOGS_DIR]:
        d.mkdir(parents=True, exist_ok=True)

    log.info("🤖 WebForge Pipeline")
    log.info(f"   👁️  Watching : {PROMPTS_DIR}")
    log.info(f"   📦 Output   : {OUTPUT_DIR}")
    log.info(f"   🧠 Model    : {DEFAULT_MODEL}")
    log.info(f"   🌐 Backend  : {BACKEND_URL}")
    log.info("\nDrop a .txt file into prompts/ to start!\n")

    handler = PromptFileHandler()
    observer = Observer()
    observer.schedule(handler, str(PROMPTS_DIR), recursive=False)
    observer.start()
    try:
        while True: time.sleep(1)
    except KeyboardInterrupt:
        log.info("\n⛔ Stopping...")
        observer.stop()
    observer.join()
