# =============================================
#  VENDOR SYNC - STATUS API ENTRYPOINT
# =============================================
#
# The sync itself runs from sync.py under the external scheduler.
# This app only exposes read-only status/coverage endpoints:
#
#       GET  /api/sync/status
#       GET  /api/sync/coverage
#       GET  /api/health

import logging
import os

import uvicorn
from fastapi import FastAPI

from config import APP_NAME, APP_VERSION
from routes.sync_status_routes import register_sync_status_routes
from services.log_config import configure_logging

configure_logging(log_file="vendor_sync_api.log")
logging.getLogger("uvicorn").propagate = True
logging.getLogger("uvicorn.error").propagate = True
logging.getLogger("uvicorn.access").propagate = True

logger = logging.getLogger(__name__)

app = FastAPI(title=f"{APP_NAME} Status API", version=APP_VERSION)
register_sync_status_routes(app)


@app.get("/api/health")
def health() -> dict:
    return {"ok": True, "app": APP_NAME, "version": APP_VERSION}


if __name__ == "__main__":
    port = int(os.getenv("PORT", "8001"))
    logger.info("Starting %s status API on port %s", APP_NAME, port)
    uvicorn.run(app, host="0.0.0.0", port=port, log_config=None)
