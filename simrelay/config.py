"""Central configuration — network, paths, timing windows, validation bounds."""
from pathlib import Path
import os

# ── Network ───────────────────────────────────────────────────────────────────
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "7080"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "info").upper()
if LOG_LEVEL == "WARN":
    LOG_LEVEL = "WARNING"
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]

# ── Filesystem paths ──────────────────────────────────────────────────────────
ROOT = Path(__file__).parent.parent
DATA_DIR = Path(os.environ.get("DATA_DIR", str(ROOT / "data")))

# ── Best-lap persistence ──────────────────────────────────────────────────────
DEFAULT_EVENT_NAME = "default-event"
WRITE_DEBOUNCE_MS = int(os.environ.get("WRITE_DEBOUNCE_MS", "5000"))          # quiet period before a write
RECONCILE_THROTTLE_MS = int(os.environ.get("RECONCILE_THROTTLE_MS", "5000"))  # per-pilot repeat suppression
WATCH_INTERVAL_MS = int(os.environ.get("WATCH_INTERVAL_MS", "1000"))          # data dir polling period

# ── Ingress validation ────────────────────────────────────────────────────────
MIN_SIM_NUM = 1
MAX_SIM_NUM = int(os.environ.get("MAX_SIM_NUM", "3"))

# ── Reporting ─────────────────────────────────────────────────────────────────
STATS_LOG_INTERVAL_S = int(os.environ.get("STATS_LOG_INTERVAL_S", "60"))
