# ================================================================
#  LWA TOKEN MANAGER
#  ---------------------------------------------------------------
#  - Reads the latest OAuth token row from oauth_tokens
#  - Refreshes the access token when it expires within 5 minutes
#  - Persists refreshed tokens in place (keyed by refresh_token)
# ================================================================

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from services.sync_context import SyncContext
from services.sync_errors import AuthError

logger = logging.getLogger("token_manager")

EXPIRY_MARGIN = timedelta(minutes=5)
DEFAULT_EXPIRES_IN = 3600
TOKEN_TIMEOUT = 15


def _parse_expires_at(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        candidate = str(value).strip()
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(candidate)
        except ValueError:
            logger.warning("[Auth] Could not parse expires_at %r; treating as expired", value)
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class TokenManager:
    def __init__(self, ctx: SyncContext):
        self.ctx = ctx

    def _latest_token_row(self) -> Optional[Dict[str, Any]]:
        row = self.ctx.db.execute(
            """
            SELECT refresh_token, access_token, expires_at
            FROM oauth_tokens
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """
        ).fetchone()
        return dict(row) if row else None

    def is_fresh(self, token: Dict[str, Any]) -> bool:
        expires_at = _parse_expires_at(token.get("expires_at"))
        if not token.get("access_token") or expires_at is None:
            return False
        return expires_at > self.ctx.now() + EXPIRY_MARGIN

    def get_valid_access_token(self) -> str:
        token = self._latest_token_row()
        if token is None:
            raise AuthError("No OAuth tokens found. Please complete OAuth authorization first.")

        if self.is_fresh(token):
            return token["access_token"]

        logger.info("[Auth] Access token expired, refreshing...")
        return self.refresh(token["refresh_token"])

    def refresh(self, refresh_token: str) -> str:
        if not self.ctx.lwa_client_id or not self.ctx.lwa_client_secret:
            raise AuthError("LWA credentials not configured")

        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.ctx.lwa_client_id,
            "client_secret": self.ctx.lwa_client_secret,
        }
        resp = self.ctx.retry.call(
            lambda: self.ctx.session.post(self.ctx.token_url, data=data, timeout=TOKEN_TIMEOUT),
            label="LWA token refresh",
        )
        if not 200 <= resp.status_code < 300:
            logger.error("[Auth] Token request failed %s: %s", resp.status_code, resp.text[:500])
            raise AuthError(f"Token refresh failed: {resp.status_code} - {resp.text[:500]}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise AuthError(f"Token refresh returned non-JSON body: {resp.text[:200]}") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not access_token:
            raise AuthError("No access token received from refresh")

        expires_in = payload.get("expires_in") or DEFAULT_EXPIRES_IN
        expires_at = self.ctx.now() + timedelta(seconds=int(expires_in))
        self.ctx.db.execute(
            """
            UPDATE oauth_tokens
            SET access_token = ?, expires_at = ?, updated_at = ?
            WHERE refresh_token = ?
            """,
            (
                access_token,
                expires_at.isoformat(),
                self.ctx.now().replace(microsecond=0).isoformat(),
                refresh_token,
            ),
        )
        self.ctx.db.commit()
        logger.info("[Auth] Access token refreshed successfully")
        return access_token

    def store_token(
        self,
        refresh_token: str,
        access_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> int:
        """Insert a token row; the newest row becomes the active token."""
        if not refresh_token:
            raise AuthError("refresh_token is required")
        cur = self.ctx.db.execute(
            """
            INSERT INTO oauth_tokens (refresh_token, access_token, expires_at, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                refresh_token,
                access_token,
                expires_at.isoformat() if expires_at else None,
                self.ctx.now().isoformat(),
            ),
        )
        self.ctx.db.commit()
        logger.info("[Auth] Stored OAuth token row id=%s", cur.lastrowid)
        return cur.lastrowid
