"""
Runtime settings for the survey admin service.

All values come from the environment (a .env file is loaded by main.py for
local dev). Database credentials are resolved separately in services/db.py.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from survey_admin.services.db import DEFAULT_CONNECT_TIMEOUT_SECONDS, ConfigError

DEFAULT_DAYS_OLD = 30
DEFAULT_STAGE_TIMEOUT_SECONDS = 30.0
STORE_BACKENDS = ("postgres", "memory")


def _env_int(env: Mapping[str, str], name: str, *, default: int, minimum: int = 0) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(env: Mapping[str, str], name: str, *, default: float, minimum: float = 0.0) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    store_backend: str = "postgres"
    default_days_old: int = DEFAULT_DAYS_OLD
    # 0 disables the per-stage budget
    stage_timeout_seconds: float = DEFAULT_STAGE_TIMEOUT_SECONDS
    db_connect_timeout_seconds: int = DEFAULT_CONNECT_TIMEOUT_SECONDS
    admin_token: Optional[str] = None
    debug: bool = False
    cors_origins: Tuple[str, ...] = field(default_factory=lambda: ("http://localhost:5173",))

    @property
    def stage_timeout(self) -> Optional[float]:
        return self.stage_timeout_seconds or None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        backend = (env.get("SURVEY_STORE_BACKEND") or "postgres").strip().lower()
        if backend not in STORE_BACKENDS:
            raise ConfigError(
                f"SURVEY_STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, got {backend!r}"
            )
        origins_raw = env.get("SURVEY_ADMIN_CORS_ORIGINS") or ""
        origins = tuple(o.strip() for o in origins_raw.split(",") if o.strip())
        return cls(
            store_backend=backend,
            default_days_old=_env_int(env, "RECONCILE_DEFAULT_DAYS_OLD", default=DEFAULT_DAYS_OLD),
            stage_timeout_seconds=_env_float(
                env, "RECONCILE_STAGE_TIMEOUT_SECONDS", default=DEFAULT_STAGE_TIMEOUT_SECONDS
            ),
            db_connect_timeout_seconds=_env_int(
                env, "DB_CONNECT_TIMEOUT_SECONDS", default=DEFAULT_CONNECT_TIMEOUT_SECONDS
            ),
            admin_token=(env.get("SURVEY_ADMIN_TOKEN") or "").strip() or None,
            debug=env.get("SURVEY_ADMIN_DEBUG") == "1",
            cors_origins=origins or ("http://localhost:5173",),
        )
