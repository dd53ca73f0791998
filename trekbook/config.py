import logging
import os
from pathlib import Path


# -------------------------
# Env loader (.env o env)
# -------------------------
def load_env() -> None:
    for p in (".env", "env"):
        if os.path.exists(p):
            with open(p, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    k, v = line.split("=", 1)
                    os.environ.setdefault(k.strip(), v.strip())


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring %s=%r (not an integer)", name, raw)
        return default


load_env()

DATA_DIR = Path(os.getenv("TREKBOOK_DATA_DIR", "data").strip() or "data")
SESSION_SECRET = os.getenv("SESSION_SECRET", "dev_secret_change_me").strip()
ATTRACTION_CAPACITY = _env_int("TREKBOOK_ATTRACTION_CAPACITY", 20)
SEED_DEFAULTS = os.getenv("TREKBOOK_SEED_DEFAULTS", "1").strip().lower() not in ("0", "false", "no")
LOG_LEVEL = os.getenv("TREKBOOK_LOG_LEVEL", "INFO").strip().upper() or "INFO"
