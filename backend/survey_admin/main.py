"""
Survey Admin - FastAPI Backend
"""
import os
import logging
import sys
import traceback
from pathlib import Path

# Make `survey_admin` importable when run from a source checkout
BACKEND_ROOT = Path(__file__).resolve().parent.parent
REPO_ROOT = BACKEND_ROOT.parent
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Load .env for local dev (when file exists or SURVEY_ADMIN_LOAD_DOTENV=1).
# Does not override existing env vars; container env wins.
_envfile = REPO_ROOT / ".env"
if os.getenv("SURVEY_ADMIN_LOAD_DOTENV") == "1" or _envfile.exists():
    from dotenv import load_dotenv

    load_dotenv(_envfile)

from fastapi import Depends, FastAPI, Request
from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from survey_admin.routes import meta
from survey_admin.services.config import Settings
from survey_admin.services.db import ConfigError, get_dsn, mask_dsn
from survey_admin.services.deps import get_settings, get_store
from survey_admin.services.errors import (
    ConflictError,
    InvalidArgument,
    NotFound,
    ReconciliationError,
    TransientStoreError,
)
from survey_admin.services.store import SurveyStore


def register_routers(app: FastAPI) -> None:
    """
    Register all routers in one place so the entrypoint can't forget one.
    Imports are inside this function to avoid circular imports.
    """
    from survey_admin.routes import admin_surveys, meta

    app.include_router(meta.router, prefix="/api", tags=["meta"])
    app.include_router(admin_surveys.health_router, prefix="/api/admin", tags=["admin"])
    app.include_router(admin_surveys.router, prefix="/api/admin/surveys", tags=["admin-surveys"])


app = FastAPI(
    title="Survey Admin",
    description="Survey reconciliation and admin API",
    version=meta.API_VERSION,
)

log = logging.getLogger("survey_admin")


@app.on_event("startup")
async def startup_event():
    settings = get_settings()
    log.info("ENV_CHECK: store backend=%s", settings.store_backend)
    log.info(
        "ENV_CHECK: default daysOld=%d stage timeout=%ss admin token present=%s",
        settings.default_days_old,
        settings.stage_timeout_seconds,
        bool(settings.admin_token),
    )
    if settings.store_backend != "postgres":
        return
    try:
        log.info("ENV_CHECK: DSN(masked)=%s", mask_dsn(get_dsn()))
    except ConfigError:
        log.error("ENV_CHECK: NO DB CONFIG - both DATABASE_URL and DB_HOST/DB_PASS missing")


# =============================================================================
# Consistent error shape
# =============================================================================

def _error_response(status: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={
            "success": False,
            "message": message,
            "error": {
                "code": code,
                "message": message,
            },
        },
    )


_STATUS_BY_ERROR = (
    (InvalidArgument, 400),
    (NotFound, 404),
    (ConflictError, 409),
    (TransientStoreError, 503),
)


@app.exception_handler(ReconciliationError)
def reconciliation_error_handler(request: Request, exc: ReconciliationError):
    status = next((s for cls, s in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    if status >= 500:
        log.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _error_response(status, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
def request_validation_error_handler(_request: Request, exc: RequestValidationError):
    """Malformed query parameters (e.g. daysOld=abc) use the invalid-argument shape, not FastAPI's 422."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "query")
        parts.append(f"{loc}: {err.get('msg')}")
    return _error_response(400, InvalidArgument.code, "; ".join(parts) or "Invalid request")


@app.exception_handler(ConfigError)
def config_error_handler(_request: Request, exc: ConfigError):
    return _error_response(500, "CONFIG_ERROR", str(exc))


@app.exception_handler(HTTPException)
def http_exception_handler(_request: Request, exc: HTTPException):
    status = exc.status_code
    if status == 404:
        code = "NOT_FOUND"
    elif status == 400:
        code = "VALIDATION_ERROR"
    elif status == 401:
        code = "UNAUTHORIZED"
    elif status == 409:
        code = "CONFLICT"
    else:
        code = f"HTTP_{status}"
    return _error_response(status, code, str(exc.detail))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Catch unhandled exceptions, log them, and return a consistent JSON 500.
    Detail is only included when SURVEY_ADMIN_DEBUG=1.
    """
    log.error(
        "Unhandled exception: %s\nPath: %s %s\nTraceback:\n%s",
        exc,
        request.method,
        request.url.path,
        traceback.format_exc(),
    )
    msg = str(exc)[:200] if get_settings().debug else "Internal server error"
    return _error_response(500, "INTERNAL_ERROR", msg)


app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "X-Admin-Token"],
)

register_routers(app)


@app.get("/health")
def health(store: SurveyStore = Depends(get_store), settings: Settings = Depends(get_settings)):
    """
    Health check endpoint.

    Returns:
    - status: ok
    - build: short git SHA if available
    - store: backend name and connectivity (failure detail is logged, not returned)
    """
    store_ok = False
    store_error = None
    try:
        store_ok = store.ping()
    except ConfigError as e:
        log.warning("health: store not configured: %s", e)
        store_error = "Store not configured"
    except ReconciliationError as e:
        log.warning("health: store check failed: %s", e.message)
        store_error = "Store unavailable"

    out = {"status": "ok", "build": meta.get_git_sha(), "store": {"backend": settings.store_backend, "ok": store_ok}}
    if store_error and not store_ok:
        out["store"]["error"] = store_error
    return out
