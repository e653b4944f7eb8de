import os
from pathlib import Path

BASE_DIR      = Path(os.environ.get("WEBFORGE_HOME", Path(__file__).resolve().parent.parent))
BACKEND_URL   = os.environ.get("WEBFORGE_BACKEND_URL", "http://localhost:3001/api")
API_TOKEN     = os.environ.get("WEBFORGE_TOKEN", "")
DEFAULT_MODEL = os.environ.get("WEBFORGE_MODEL", "claude-sonnet")
UI_PORT       = int(os.environ.get("WEBFORGE_UI_PORT", "7824"))
WS_PORT       = int(os.environ.get("WEBFORGE_WS_PORT", "7825"))
REQUEST_TIMEOUT  = float(os.environ.get("WEBFORGE_TIMEOUT", "30"))
GENERATE_TIMEOUT = float(os.environ.get("WEBFORGE_GENERATE_TIMEOUT", "240"))
PLANNING_DELAY   = 1.0

PROMPTS_DIR = BASE_DIR / "prompts"
OUTPUT_DIR  = BASE_DIR / "production-ready"
LOGS_DIR    = BASE_DIR / "logs"
