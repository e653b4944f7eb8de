#!/usr/bin/env python3
"""
Preview Checker — loads a linked preview document in headless Chromium and
reports what the sandbox error paths caught. Python Playwright API only.
"""
import logging

log = logging.getLogger("checker")
_emit = None

def set_emit(fn):
    global _emit
    _emit = fn

def elog(lvl, txt):
    if _emit:
        _emit({"type": "log", "level": lvl, "text": txt})
    log.info(f"[{lvl}] {txt}")

def echeck(status, msg, detail=""):
    """Emit a structured check result event to the UI."""
    if _emit:
        _emit({"type": "check_result", "status": status, "msg": msg, "detail": detail})


# Console lines that never indicate a broken preview
NOISE = [
    "favicon", "Warning:", "DevTools", "Download the React",
    "You are using the in-browser Babel transformer",
    "cdn.tailwindcss.com should not be used in production",
    "net::ERR_", "Failed to load resource",
    "Cross-Origin", "Content-Security-Policy",
]
REAL_SIGNALS = [
    "is not defined", "is not a function",
    "Cannot read prop", "Cannot read properties",
    "SyntaxError", "ReferenceError", "TypeError",
    "has already been declared", "Component error",
]


def filter_console_errors(messages: list) -> list:
    """Keep messages that match a real failure signal and no known noise."""
    return [
        m for m in messages
        if not any(n.lower() in m.lower() for n in NOISE)
        and any(s in m for s in REAL_SIGNALS)
    ]


class PreviewChecker:
    def __init__(self, timeout_ms: int = 15000, viewport=(1280, 720)):
        self.timeout_ms = timeout_ms
        self.viewport   = viewport

    def check(self, document: str) -> list:
        try:
            from playwright.sync_api import sync_playwright  # noqa
        except ImportError:
            elog("WARN", "⚠ Playwright unavailable — skipping preview check")
            echeck("skip", "Playwright unavailable")
            return []
        return self._run(document)

    def _run(self, document: str) -> list:
        from playwright.sync_api import sync_playwright, TimeoutError as PWTimeout

        elog("INFO", "🎭 Launching Chromium (headless)...")
        errors, console = [], []
        try:
            with sync_playwright() as pw:
                browser = pw.chromium.launch(headless=True)
                w, h = self.viewport
                page = browser.new_context(viewport={"width": w, "height": h}).new_page()
                page.on("console", lambda m: console.append(m.text) if m.type == "error" else None)
                page.on("pageerror", lambda e: console.append(f"PageError: {e}"))

                page.set_content(document, wait_until="load", timeout=self.timeout_ms)
                try:
                    page.wait_for_selector("#root > *, #error-display[style*='block']",
                                           timeout=self.timeout_ms)
                except PWTimeout:
                    pass

                errors.extend(self._inspect(page))
                for ce in filter_console_errors(console)[:5]:
                    short = ce[:160]
                    elog("WARN", f"⚠ JS error: {short}")
                    echeck("fail", "JS runtime error", short)
                    errors.append(f"Console error: {short}")
                browser.close()
        except Exception as e:
            msg = f"Playwright runtime error: {e}"
            elog("WARN", f"⚠ {msg}")
            echeck("fail", msg)
            errors.append(msg)

        if errors:
            elog("WARN", f"❌ {len(errors)} issue(s) found")
        else:
            elog("INFO", "🎉 Preview rendered cleanly")
            echeck("pass", "Preview rendered")
        return errors

    def _inspect(self, page) -> list:
        """Read the two error panels and the blank-page state from the DOM."""
        errors = []
        state = page.evaluate("""() => {
            const panel = document.getElementById('error-display');
            const boundary = document.getElementById('component-error');
            const root = document.getElementById('root');
            let visible = false;
            for (const el of root ? root.querySelectorAll('*') : []) {
                const r = el.getBoundingClientRect();
                if (r.width > 5 && r.height > 5) { visible = true; break; }
            }
            return {
                panel: panel && panel.style.display === 'block'
                    ? document.getElementById('error-message').textContent : '',
                boundary: boundary ? boundary.textContent : '',
                visible,
            };
        }""")
        if state.get("panel"):
            msg = state["panel"].strip()[:300]
            errors.append(f"Preview error: {msg}")
            echeck("fail", "Preview error", msg[:120])
        if state.get("boundary"):
            msg = state["boundary"].replace("Component Error", "").strip()[:300]
            errors.append(f"Component error: {msg}")
            echeck("fail", "Component error", msg[:120])
        if not errors and not state.get("visible"):
            errors.append("Preview appears blank — nothing rendered")
            echeck("fail", "Blank preview")
        return errors
