#!/usr/bin/env python3
"""
WebForge Preview Server  —  HTTP :7824  |  WebSocket :7825
- Streams generation progress (phase, tokens, files) to every connected UI
- Serves the linked preview document behind a sandbox boundary
- One build at a time: a new prompt cancels the one in flight
"""
import sys, json, asyncio, logging, threading
from http.server import ThreadingHTTPServer, SimpleHTTPRequestHandler

import websockets

from forge.checker import PreviewChecker, set_emit as set_checker_emit
from forge.client import BackendClient, GenerationError, project_name_for
from forge.config import BASE_DIR, DEFAULT_MODEL, LOGS_DIR, UI_PORT, WS_PORT
from forge.host import CSP_SANDBOX
from forge.session import BuildSession

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
log = logging.getLogger("server")

clients   = set()
MAIN_LOOP = None


# ── Broadcast helpers ─────────────────────────────────────────────────────────

def emit(msg: dict):
    if MAIN_LOOP is None: return
    data = json.dumps(msg, ensure_ascii=False)
    async def _s():
        dead = set()
        for ws in list(clients):
            try: await ws.send(data)
            except websockets.exceptions.ConnectionClosed: dead.add(ws)
        clients.difference_update(dead)
    asyncio.run_coroutine_threadsafe(_s(), MAIN_LOOP)

def elog(lvl, txt):      emit({"type": "log",     "level": lvl, "text": txt})
def eerr(txt):           emit({"type": "error",   "text": txt})
def eproject(pid, name): emit({"type": "project", "id": pid,    "name": name})


client  = BackendClient()
session = BuildSession(client, emit=emit)
checker = PreviewChecker()
set_checker_emit(emit)


# ── Jobs (each runs on its own daemon thread) ─────────────────────────────────

def _spawn(target, *args):
    threading.Thread(target=target, args=args, daemon=True).start()


def run_generation(prompt: str, model: str, project_id: str = ""):
    try:
        if not project_id:
            proj = client.create_project(project_name_for(prompt))
            project_id = str(proj["id"])
            eproject(project_id, proj.get("name", ""))
            elog("INFO", f"📁 Created project {proj.get('name', project_id)}")
        session.generate(project_id, prompt, model)
    except GenerationError as e:
        log.error(f"Generation setup failed: {e}")
        eerr("❌ Generation failed. Please try again.")
    except Exception as e:
        eerr(f"Pipeline error: {e}")
        log.exception("Pipeline error")


def run_load(project_id: str):
    try:
        state = session.load_project(project_id)
        elog("INFO", f"📂 Loaded {len(state.files)} files (r{state.revision})")
    except GenerationError as e:
        eerr(f"Project not found: {project_id}")
        log.error(f"Load failed: {e}")
    except Exception as e:
        eerr(f"Load error: {e}")
        log.exception("Load error")


def run_reload():
    try:
        if session.reload() is None:
            elog("INFO", "Nothing to reload yet")
    except Exception as e:
        eerr(f"Reload error: {e}")
        log.exception("Reload error")


def run_check():
    mount = session.host.render()
    if mount is None:
        elog("WARN", "Nothing to check yet — generate something first")
        return
    issues = checker.check(mount.document)
    emit({"type": "check_done", "issues": issues, "key": mount.key})


def handle_message(msg: dict):
    kind = msg.get("type")
    if kind == "generate":
        p = msg.get("prompt", "").strip()
        if p:
            _spawn(run_generation, p, msg.get("model") or DEFAULT_MODEL, msg.get("project", ""))
    elif kind == "cancel":
        if not session.cancel():
            elog("INFO", "Nothing to cancel")
    elif kind == "reload":
        _spawn(run_reload)
    elif kind == "load":
        proj = msg.get("project", "").strip()
        if proj:
            _spawn(run_load, proj)
    elif kind == "check":
        _spawn(run_check)
    else:
        log.warning(f"Unknown message type: {kind!r}")


# ── WebSocket handler ─────────────────────────────────────────────────────────

async def ws_handler(websocket, path=None):
    clients.add(websocket)
    log.info(f"WS connected ({len(clients)})")
    try:
        await websocket.send(json.dumps({
            "type": "log", "level": "INFO",
            "text": "✅ WebForge connected — describe a website and press Generate"
        }))
        async for raw in websocket:
            try:
                handle_message(json.loads(raw))
            except (json.JSONDecodeError, AttributeError):
                log.warning(f"Ignoring malformed WS message: {raw[:80]!r}")
    except websockets.exceptions.ConnectionClosed: pass
    finally:
        clients.discard(websocket)
        log.info(f"WS disconnected ({len(clients)})")


# ── HTTP handler ──────────────────────────────────────────────────────────────

def frame_page() -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset='UTF-8'/><title>Preview</title>"
        "<style>html,body{margin:0;height:100%}</style></head><body>"
        f"{session.host.frame_html()}</body></html>"
    )


class UIHandler(SimpleHTTPRequestHandler):
    def __init__(self, *a, **k):
        super().__init__(*a, directory=str(BASE_DIR / "ui"), **k)
    def log_message(self, *a): pass

    def _send(self, code: int, body: bytes, ctype: str, extra: dict = None):
        self.send_response(code)
        self.send_header("Content-Type", ctype)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Cache-Control", "no-store, no-cache, must-revalidate")
        for k, v in (extra or {}).items():
            self.send_header(k, v)
        self.end_headers()
        self.wfile.write(body)

    def _json(self, data, code: int = 200):
        self._send(code, json.dumps(data).encode(), "application/json")

    def _body(self) -> dict:
        length = int(self.headers.get("Content-Length", 0))
        try:
            return json.loads(self.rfile.read(length) or b"{}")
        except json.JSONDecodeError:
            return {}

    def do_OPTIONS(self):
        self.send_response(200)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.end_headers()

    def do_GET(self):
        if self.path == "/preview":
            mount = session.host.render()
            doc = mount.document if mount else session.host.placeholder_html()
            # Served bare, the document still runs in an opaque sandbox origin.
            self._send(200, doc.encode(), "text/html; charset=utf-8",
                       {"Content-Security-Policy": CSP_SANDBOX})
        elif self.path in ("/", "/frame"):
            self._send(200, frame_page().encode(), "text/html; charset=utf-8")
        elif self.path == "/files":
            self._json(session.store.snapshot())
        elif self.path == "/state":
            self._json({
                "project": session.project_id,
                "ready": session.host.ready,
                "revision": session.store.revision,
                "reload_key": session.host.reload_key,
                "running": session.running,
                "phase": session.parser.phase.label if session.parser else "idle",
            })
        else:
            super().do_GET()

    def do_POST(self):
        if self.path == "/generate":
            body = self._body()
            handle_message({"type": "generate", **body})
            self._json({"ok": True})
        elif self.path == "/cancel":
            self._json({"ok": session.cancel()})
        elif self.path == "/reload":
            mount = session.reload()
            self._json({"ok": mount is not None, "key": mount.key if mount else None})
        else:
            self._json({"ok": False, "error": "not found"}, 404)


def start_http():
    try:
        httpd = ThreadingHTTPServer(("127.0.0.1", UI_PORT), UIHandler)
        log.info(f"HTTP server listening on 127.0.0.1:{UI_PORT}")
        httpd.serve_forever()
    except OSError as e:
        log.error(f"HTTP server failed: {e}")


# ── Main ──────────────────────────────────────────────────────────────────────

async def main():
    global MAIN_LOOP
    MAIN_LOOP = asyncio.get_running_loop()
    threading.Thread(target=start_http, daemon=True).start()
    log.info("━" * 46)
    log.info("  ⚡ WebForge Preview Starting...")
    log.info(f"  ⚡ UI / Preview →  http://127.0.0.1:{UI_PORT}")
    log.info(f"  🔌 WebSocket    →  ws://127.0.0.1:{WS_PORT}")
    log.info(f"  🧠 Model        :  {DEFAULT_MODEL}")
    log.info("━" * 46)
    async with websockets.serve(ws_handler, "127.0.0.1", WS_PORT):
        await asyncio.Future()


def shutdown_all():
    log.info("🛑 Shutting down WebForge...")
    if session.cancel():
        log.info("   ✅ In-flight generation cancelled")


if __name__ == "__main__":
    LOGS_DIR.mkdir(exist_ok=True)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n⛔ Stopped.")
    finally:
        shutdown_all()
        sys.exit(0)
