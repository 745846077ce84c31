"""
Process-level wiring: settings, store, orchestrator.

Routes take these through FastAPI dependencies so tests can swap them with
app.dependency_overrides.
"""
from __future__ import annotations

import logging
from functools import lru_cache

from survey_admin.services.config import Settings
from survey_admin.services.orchestrator import ReconciliationOrchestrator
from survey_admin.services.store import InMemorySurveyStore, SurveyStore
from survey_admin.services.survey_admin import SurveyAdminService

log = logging.getLogger("survey_admin")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def build_store(settings: Settings) -> SurveyStore:
    if settings.store_backend == "memory":
        log.warning("Using in-memory survey store (data is not persisted)")
        return InMemorySurveyStore()
    from survey_admin.services.pg_store import PostgresSurveyStore

    return PostgresSurveyStore(connect_timeout_seconds=settings.db_connect_timeout_seconds)


@lru_cache(maxsize=1)
def get_store() -> SurveyStore:
    return build_store(get_settings())


@lru_cache(maxsize=1)
def get_orchestrator() -> ReconciliationOrchestrator:
    settings = get_settings()
    return ReconciliationOrchestrator(get_store(), stage_timeout_seconds=settings.stage_timeout)


def get_admin_service() -> SurveyAdminService:
    return SurveyAdminService(get_orchestrator())
