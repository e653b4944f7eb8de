"""
Preview host: decides when there is something to show and embeds the linked
document in a sandboxed frame. The frame gets `allow-scripts` only, so the
preview can run but cannot touch the host page's storage, navigation or DOM.
"""
import html, logging
from dataclasses import dataclass

from forge.linker import ENTRY_PATH, LinkedProgram, ModuleLinker

log = logging.getLogger("host")

SANDBOX = "allow-scripts"
CSP_SANDBOX = f"sandbox {SANDBOX}"


@dataclass(frozen=True)
class Mount:
    revision: int
    reload_key: int
    program: LinkedProgram

    @property
    def key(self) -> str:
        return f"{self.revision}:{self.reload_key}"

    @property
    def document(self) -> str:
        return self.program.document


class PreviewHost:
    def __init__(self, store, linker: ModuleLinker = None, entry_path: str = ENTRY_PATH):
        self.store      = store
        self.linker     = linker or ModuleLinker(entry_path=entry_path)
        self.entry_path = entry_path
        self.ready      = False
        self.reload_key = 0
        self._mount: Mount = None

    def on_merge(self, state=None) -> bool:
        """Called after every merge/load; flips `ready` once the entry exists."""
        state = state if state is not None else self.store.state
        if not self.ready and self.entry_path in state:
            self.ready = True
            log.info(f"   🖥️  preview ready (r{state.revision})")
        return self.ready

    def reset(self):
        self.ready = False
        self._mount = None

    def render(self):
        """Current mount, recompiled only when the store revision moved."""
        if not self.ready:
            return None
        mount = self._mount
        if mount is None or mount.revision != self.store.revision:
            state = self.store.state
            mount = Mount(state.revision, self.reload_key, self.linker.compile(state))
            self._mount = mount
        return mount

    def force_reload(self):
        """New mount identity over the same program; runtime state restarts."""
        self.reload_key += 1
        if self._mount is None:
            return self.render()
        self._mount = Mount(self._mount.revision, self.reload_key, self._mount.program)
        log.info(f"   🔄 preview reload → {self._mount.key}")
        return self._mount

    def frame_html(self, mount: Mount = None) -> str:
        mount = mount or self.render()
        if mount is None:
            return self.placeholder_html()
        return (
            f'<iframe data-key="{mount.key}" srcdoc="{html.escape(mount.document, quote=True)}" '
            f'sandbox="{SANDBOX}" title="Preview" '
            'style="width:100%;height:100%;border:0;background:#fff"></iframe>'
        )

    @staticmethod
    def placeholder_html() -> str:
        return (
            '<div class="preview-empty" style="display:flex;align-items:center;'
            'justify-content:center;height:100%;color:#6b7280;font-family:system-ui">'
            "<p>Enter a prompt to generate</p></div>"
        )
