import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env early so os.getenv picks up local dev secrets.
_DOTENV_PATHS = [Path.cwd() / ".env", Path(__file__).resolve().parent / ".env"]
for _env_path in _DOTENV_PATHS:
    if _env_path.exists():
        load_dotenv(dotenv_path=_env_path, override=False)

APP_NAME = "Beeinside Bling Backend"
APP_VERSION = "1.0.0"

logger = logging.getLogger(__name__)


# ----------------------------
# Helpers
# ----------------------------
def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid float for %s=%r; using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid int for %s=%r; using %s", name, raw, default)
        return default


def _float_list(name: str, default: str) -> tuple[float, ...]:
    raw = _env_str(name, default)
    try:
        return tuple(float(x) for x in raw.split(",") if x.strip())
    except ValueError:
        logger.warning("Invalid delay list for %s=%r; using %s", name, raw, default)
        return tuple(float(x) for x in default.split(","))


# ----------------------------
# Bling API
# ----------------------------
BLING_API_BASE = _env_str("BLING_API_BASE", "https://api.bling.com.br/Api/v3")
BLING_TOKEN_URL = _env_str("BLING_TOKEN_URL", "https://www.bling.com.br/Api/v3/oauth/token")
BLING_AUTHORIZE_URL = _env_str("BLING_AUTHORIZE_URL", "https://www.bling.com.br/Api/v3/oauth/authorize")
BLING_REDIRECT_URI = _env_str("BLING_REDIRECT_URI")

# Per-account OAuth apps (optional at startup; connect/refresh fail without them)
BLING_CLIENT_IDS = {
    1: _env_str("BLING_CLIENT_ID_1"),
    2: _env_str("BLING_CLIENT_ID_2"),
}
BLING_CLIENT_SECRETS = {
    1: _env_str("BLING_CLIENT_SECRET_1"),
    2: _env_str("BLING_CLIENT_SECRET_2"),
}

# ----------------------------
# Request pacing / retries
# ----------------------------
BLING_MIN_REQUEST_INTERVAL_SECONDS = _env_float("BLING_MIN_REQUEST_INTERVAL_SECONDS", 0.35)
BLING_RETRY_DELAYS_SECONDS = _float_list("BLING_RETRY_DELAYS_SECONDS", "1,2,4")
BLING_REQUEST_TIMEOUT_SECONDS = _env_float("BLING_REQUEST_TIMEOUT_SECONDS", 30.0)
BLING_PAGE_SIZE = _env_int("BLING_PAGE_SIZE", 100)
BLING_TOKEN_REFRESH_BUFFER_SECONDS = _env_int("BLING_TOKEN_REFRESH_BUFFER_SECONDS", 60)

# ----------------------------
# Storage / UI
# ----------------------------
BLING_DB_PATH = Path(_env_str("BLING_DB_PATH") or Path(__file__).resolve().parent / "bling.db")
SETTINGS_URL = _env_str("SETTINGS_URL", "/settings")
