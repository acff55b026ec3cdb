import logging
import os
from pathlib import Path

# Load .env early so os.getenv picks up local dev secrets.
try:  # pragma: no cover - environment bootstrap
    from dotenv import load_dotenv

    _DOTENV_PATHS = [Path.cwd() / ".env", Path(__file__).resolve().parent / ".env"]
    for _env_path in _DOTENV_PATHS:
        if _env_path.exists():
            load_dotenv(dotenv_path=_env_path, override=False)
except Exception as exc:
    logging.getLogger(__name__).warning("Failed to load .env: %s", exc)

APP_NAME = "Vendor Sync"
APP_VERSION = "1.0.0"

# ----------------------------
# Helpers
# ----------------------------
def _csv_list(name: str, default: str = "") -> list[str]:
    raw = (os.getenv(name) or default).strip()
    if not raw:
        return []
    return [x.strip() for x in raw.split(",") if x.strip()]

# ----------------------------
# LWA credentials
# ----------------------------
# Checked lazily by the token manager so the status API can start without them.
LWA_CLIENT_ID = os.getenv("LWA_CLIENT_ID", "")
LWA_CLIENT_SECRET = os.getenv("LWA_CLIENT_SECRET", "")
# Only used to seed oauth_tokens; the sync itself reads tokens from the DB.
LWA_REFRESH_TOKEN = os.getenv("LWA_REFRESH_TOKEN", "")
LWA_TOKEN_URL = os.getenv("LWA_TOKEN_URL", "https://api.amazon.com/auth/o2/token")

# ----------------------------
# Marketplace / region
# ----------------------------
# Preferred: MARKETPLACE_IDS="A2EUQ1WTGCTBG2" (comma-separated supported)
MARKETPLACE_IDS = _csv_list("MARKETPLACE_IDS")

# Back-compat: MARKETPLACE_ID="A2EUQ1WTGCTBG2"
if not MARKETPLACE_IDS:
    single = (os.getenv("MARKETPLACE_ID") or "").strip()
    if single:
        MARKETPLACE_IDS = [single]

# Hard default (Canada) to avoid empty marketplaceIds breaking reports
if not MARKETPLACE_IDS:
    MARKETPLACE_IDS = ["A2EUQ1WTGCTBG2"]

MARKETPLACE_ID = MARKETPLACE_IDS[0]

SPAPI_HOST = os.getenv("SPAPI_HOST", "https://sellingpartnerapi-na.amazon.com")

# ----------------------------
# Storage / logging
# ----------------------------
DB_PATH = Path(
    os.getenv("VENDOR_SYNC_DB_PATH") or Path(__file__).resolve().parent / "vendor_sync.db"
)
LOG_DIR = Path(os.getenv("VENDOR_SYNC_LOG_DIR") or Path(__file__).resolve().parent / "logs")
LOG_LEVEL = os.getenv("SPAPI_LOG_LEVEL", "INFO").upper()
