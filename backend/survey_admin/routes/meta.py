"""
Meta endpoints - version, contract info
"""
import os
import subprocess
from fastapi import APIRouter, Depends

from survey_admin.services.config import Settings
from survey_admin.services.deps import get_settings

router = APIRouter()

CONTRACT_VERSION = "v1"
API_VERSION = "0.1.0"


def get_git_sha() -> str:
    """Get current git SHA for build info."""
    sha = (os.getenv("GIT_SHA") or os.getenv("SURVEY_ADMIN_GIT_SHA") or "").strip()
    if sha:
        return sha
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (OSError, subprocess.SubprocessError):
        pass
    return "unknown"


@router.get("/meta")
def get_meta(settings: Settings = Depends(get_settings)):
    """
    Return API metadata including contract version and the active store backend.
    """
    return {
        "contract_version": CONTRACT_VERSION,
        "api_version": API_VERSION,
        "build": get_git_sha(),
        "store_backend": settings.store_backend,
        "default_days_old": settings.default_days_old,
    }
