"""
Thin client for the website-builder backend. Storage, auth and billing live
on the other side of these calls; this module only frames requests and turns
transport problems into GenerationError.
"""
import logging, re
import requests

from forge.config import API_TOKEN, BACKEND_URL, GENERATE_TIMEOUT, REQUEST_TIMEOUT

log = logging.getLogger("client")


class GenerationError(Exception):
    """Transport failure: non-success status or a network error."""


def project_name_for(prompt: str) -> str:
    words = re.findall(r"[A-Za-z0-9]+", prompt)[:4]
    name = " ".join(w.capitalize() for w in words)
    return name[:40] or "Untitled Website"


class GenerationStream:
    """Open streaming response. Iterate `chunks()`; always `close()`."""

    def __init__(self, response: requests.Response):
        self.response = response
        self.closed   = False

    def chunks(self):
        try:
            for chunk in self.response.iter_content(chunk_size=None):
                if chunk:
                    yield chunk
        except Exception as e:
            # close() from another thread tears the socket down under us
            if self.closed:
                return
            if isinstance(e, requests.RequestException):
                raise GenerationError(f"stream interrupted: {e}") from e
            raise

    def close(self):
        if not self.closed:
            self.closed = True
            self.response.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class BackendClient:
    def __init__(self, base_url: str = BACKEND_URL, token: str = API_TOKEN,
                 timeout: float = REQUEST_TIMEOUT, session: requests.Session = None):
        self.base_url = base_url.rstrip("/")
        self.token    = token
        self.timeout  = timeout
        self.http     = session or requests.Session()

    def _headers(self) -> dict:
        h = {"Content-Type": "application/json"}
        if self.token:
            h["Authorization"] = f"Bearer {self.token}"
        return h

    def _url(self, path: str) -> str:
        return f"{self.base_url}/website-builder/{path.lstrip('/')}"

    def _json(self, method: str, path: str, **kw):
        try:
            r = self.http.request(method, self._url(path), headers=self._headers(),
                                  timeout=self.timeout, **kw)
            r.raise_for_status()
        except requests.RequestException as e:
            log.error(f"   {method} {path} failed: {e}")
            raise GenerationError(f"{method} {path} failed: {e}") from e
        return r.json() if r.content else {}

    # ── Projects ──────────────────────────────────────────────────────────────

    def list_models(self) -> list:
        return self._json("GET", "models")

    def create_project(self, name: str, framework: str = "vite-react") -> dict:
        return self._json("POST", "projects", json={"name": name, "framework": framework})

    def get_project(self, project_id: str) -> dict:
        return self._json("GET", f"projects/{project_id}")

    def delete_project(self, project_id: str):
        self._json("DELETE", f"projects/{project_id}")

    def download(self, project_id: str) -> dict:
        """{projectName, files: [{path, content}]}"""
        return self._json("GET", f"projects/{project_id}/download")

    # ── Generation ────────────────────────────────────────────────────────────

    def generate(self, project_id: str, prompt: str, model_id: str) -> GenerationStream:
        try:
            r = self.http.post(
                self._url(f"projects/{project_id}/generate"),
                json={"prompt": prompt, "modelId": model_id},
                headers=self._headers(),
                stream=True,
                timeout=GENERATE_TIMEOUT,
            )
            r.raise_for_status()
        except requests.RequestException as e:
            log.error(f"   generate failed: {e}")
            raise GenerationError(f"Generation failed: {e}") from e
        return GenerationStream(r)
