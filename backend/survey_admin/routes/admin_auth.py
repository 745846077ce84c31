"""
Admin guard for the /api/admin routes.

Token issuance lives elsewhere; this only checks the shared admin token.
When SURVEY_ADMIN_TOKEN is unset (local dev) the admin routes are open.
"""
import hmac
import logging

from fastapi import Depends, HTTPException, Request

from survey_admin.services.config import Settings
from survey_admin.services.deps import get_settings

log = logging.getLogger("survey_admin.auth")

ADMIN_TOKEN_HEADER = "X-Admin-Token"


def require_admin(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """FastAPI dependency: 401 unless the request carries the configured admin token."""
    expected = settings.admin_token
    if not expected:
        return
    supplied = request.headers.get(ADMIN_TOKEN_HEADER, "")
    if not hmac.compare_digest(supplied.encode(), expected.encode()):
        log.warning("admin auth failed: path=%s header present=%s", request.url.path, bool(supplied))
        raise HTTPException(status_code=401, detail="Not authenticated")
