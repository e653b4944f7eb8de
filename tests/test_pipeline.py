from __future__ import annotations

import json
import zipfile

import pipeline
from forge.client import GenerationError


def record(payload) -> bytes:
    return f"data: {json.dumps(payload)}\n".encode()


class FakeStream:
    def __init__(self, chunks):
        self._chunks = chunks

    def chunks(self):
        yield from self._chunks

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeClient:
    def __init__(self, files, download_fails=False):
        self.files = files
        self.download_fails = download_fails

    def create_project(self, name):
        return {"id": "p1", "name": name}

    def generate(self, project_id, prompt, model_id):
        return FakeStream([
            record({"content": "<thinking>Plan</thinking>"}),
            record({"fileChanges": self.files}),
            b"data: [DONE]\n",
        ])

    def download(self, project_id):
        if self.download_fails:
            raise GenerationError("nope")
        return {"projectName": "Bakery", "files": self.files}


class FakeChecker:
    def __init__(self):
        self.documents: list = []

    def check(self, document):
        self.documents.append(document)
        return []


FILES = [
    {"path": "src/App.jsx", "content": "export default function App(){return <Hero/>}"},
    {"path": "src/components/Hero.jsx", "content": "export const Hero = () => <h1>Bread</h1>"},
]


def test_pipeline_writes_sources_preview_and_archive(tmp_path) -> None:
    prompt = tmp_path / "My Bakery.txt"
    prompt.write_text("a site for my bakery", encoding="utf-8")
    checker = FakeChecker()

    out = pipeline.run_pipeline(prompt, client=FakeClient(FILES), checker=checker, out_root=tmp_path / "out")

    assert out == tmp_path / "out" / "my_bakery"
    assert (out / "src" / "components" / "Hero.jsx").read_text() == FILES[1]["content"]
    preview = (out / "preview.html").read_text(encoding="utf-8")
    assert "// --- Hero ---" in preview
    assert checker.documents == [preview]
    with zipfile.ZipFile(out / "Bakery.zip") as zf:
        assert sorted(zf.namelist()) == ["src/App.jsx", "src/components/Hero.jsx"]
    assert "`src/App.jsx`" in (out / "README.md").read_text()


def test_pipeline_archives_local_files_when_download_fails(tmp_path) -> None:
    prompt = tmp_path / "site.txt"
    prompt.write_text("anything", encoding="utf-8")

    out = pipeline.run_pipeline(prompt, client=FakeClient(FILES, download_fails=True),
                                checker=FakeChecker(), out_root=tmp_path)

    assert (out / "site.zip").exists()


def test_empty_prompt_is_skipped(tmp_path) -> None:
    prompt = tmp_path / "empty.txt"
    prompt.write_text("   ", encoding="utf-8")

    assert pipeline.run_pipeline(prompt, client=FakeClient(FILES)) is None


def test_watcher_only_reacts_to_txt_files(tmp_path, monkeypatch) -> None:
    seen: list = []
    monkeypatch.setattr(pipeline.time, "sleep", lambda s: None)
    handler = pipeline.PromptFileHandler(run=seen.append)

    handler._handle(str(tmp_path / "notes.md"))
    handler._handle(str(tmp_path / "idea.txt"))

    assert seen == [tmp_path / "idea.txt"]
    assert handler.processing == set()


def test_slug() -> None:
    assert pipeline.slug("My Bakery!") == "my_bakery"
    assert pipeline.slug("???") == "project"
