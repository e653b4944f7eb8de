from __future__ import annotations

import html

from forge.files import VirtualFileStore
from forge.host import SANDBOX, PreviewHost

APP = "export default function App() { return <h1>Hi</h1>; }"


def ready_host() -> tuple[VirtualFileStore, PreviewHost]:
    store = VirtualFileStore()
    host = PreviewHost(store)
    host.on_merge(store.merge([{"path": "src/App.jsx", "content": APP}]))
    return store, host


def test_not_ready_until_entry_exists() -> None:
    store = VirtualFileStore()
    host = PreviewHost(store)

    assert not host.on_merge(store.merge([{"path": "src/components/Card.jsx", "content": "x"}]))
    assert host.render() is None
    assert host.on_merge(store.merge([{"path": "src/App.jsx", "content": APP}]))
    assert host.ready


def test_render_recompiles_only_when_revision_moves() -> None:
    store, host = ready_host()
    first = host.render()

    assert host.render() is first
    host.on_merge(store.merge([{"path": "src/index.css", "content": ".a{}"}]))
    second = host.render()

    assert second is not first
    assert second.revision == store.revision
    assert ".a{}" in second.document


def test_force_reload_changes_key_but_keeps_program() -> None:
    _, host = ready_host()
    mount = host.render()
    reloaded = host.force_reload()

    assert reloaded.key != mount.key
    assert reloaded.program is mount.program
    assert reloaded.revision == mount.revision
    assert host.render() is reloaded


def test_force_reload_before_ready_returns_none() -> None:
    host = PreviewHost(VirtualFileStore())

    assert host.force_reload() is None
    assert host.reload_key == 1


def test_frame_is_sandboxed_to_scripts_only() -> None:
    _, host = ready_host()
    frame = host.frame_html()

    assert f'sandbox="{SANDBOX}"' in frame
    assert SANDBOX == "allow-scripts"
    assert "allow-same-origin" not in frame
    assert html.escape(host.render().document, quote=True) in frame
    assert f'data-key="{host.render().key}"' in frame


def test_placeholder_before_ready() -> None:
    host = PreviewHost(VirtualFileStore())

    assert "Enter a prompt to generate" in host.frame_html()
    assert "<iframe" not in host.frame_html()


def test_reset_clears_readiness() -> None:
    _, host = ready_host()
    host.reset()

    assert not host.ready
    assert host.render() is None
