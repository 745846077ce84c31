"""
Admin survey endpoints: inconsistency listings, per-category cleanup,
comprehensive cleanup, and single-survey admin operations.

Mounted under /api/admin/surveys. Errors raised by the services are turned
into the standard error envelope by the handlers in main.py.
"""
import logging
import time
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from survey_admin.routes.admin_auth import require_admin
from survey_admin.services.config import Settings
from survey_admin.services.deps import get_admin_service, get_orchestrator, get_settings
from survey_admin.services.detectors import validate_days_old
from survey_admin.services.models import StatusAction, Survey
from survey_admin.services.orchestrator import ReconciliationOrchestrator
from survey_admin.services.survey_admin import SurveyAdminService

log = logging.getLogger("survey_admin.admin")

router = APIRouter(dependencies=[Depends(require_admin)])
health_router = APIRouter(dependencies=[Depends(require_admin)])


# =============================================================================
# Response Models
# =============================================================================

class SurveyOut(BaseModel):
    id: int
    title: str
    creatorId: Optional[int] = None
    isActive: bool
    status: str
    createdAt: datetime
    questionCount: int
    responseCount: int


class SurveyListResponse(BaseModel):
    success: bool = True
    message: str
    count: int
    surveys: List[SurveyOut]


class StaleSurveyListResponse(SurveyListResponse):
    daysOld: int


class DeletedCountResponse(BaseModel):
    success: bool = True
    message: str
    deletedCount: int


class SoftDeletedCountResponse(BaseModel):
    success: bool = True
    message: str
    softDeletedCount: int


class CleanedCountResponse(BaseModel):
    success: bool = True
    message: str
    cleanedCount: int
    daysOld: Optional[int] = None


class CleanupReportResponse(BaseModel):
    success: bool
    message: str
    state: str
    daysOldThreshold: int
    orphanDeleted: int
    inactiveCreatorSoftDeleted: int
    emptyCleaned: int
    staleCleaned: int
    totalProcessed: int
    failedStages: List[str]


class RunStateResponse(BaseModel):
    success: bool = True
    message: str
    state: str


class SurveyResponse(BaseModel):
    success: bool = True
    message: str
    survey: SurveyOut


class StatusUpdateResponse(SurveyResponse):
    surveyId: int
    action: str


class StatusCountOut(BaseModel):
    status: str
    total: int
    active: int


class StatisticsResponse(BaseModel):
    success: bool = True
    message: str
    statistics: List[StatusCountOut]


def _survey_out(s: Survey) -> SurveyOut:
    return SurveyOut(
        id=s.id,
        title=s.title,
        creatorId=s.creator_id,
        isActive=s.is_active,
        status=s.status.value,
        createdAt=s.created_at,
        questionCount=s.question_count,
        responseCount=s.response_count,
    )


def _listing(surveys: List[Survey], message: str) -> dict:
    return {"message": message, "count": len(surveys), "surveys": [_survey_out(s) for s in surveys]}


def _days_old(raw: Optional[int], settings: Settings) -> int:
    # validated here so a bad value is rejected before any store access
    return validate_days_old(settings.default_days_old if raw is None else raw)


# =============================================================================
# Inconsistency listings
# =============================================================================

@router.get("/orphaned", response_model=SurveyListResponse)
def list_orphaned(orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator)):
    """Surveys whose creator user row no longer exists."""
    surveys = orchestrator.list_orphaned()
    return SurveyListResponse(**_listing(surveys, "Orphaned surveys retrieved successfully"))


@router.get("/inactive-creator", response_model=SurveyListResponse)
def list_inactive_creator(orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator)):
    """Surveys whose creator exists but is deactivated."""
    surveys = orchestrator.list_inactive_creator()
    return SurveyListResponse(**_listing(surveys, "Surveys with inactive creator retrieved successfully"))


@router.get("/without-questions", response_model=SurveyListResponse)
def list_without_questions(orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator)):
    surveys = orchestrator.list_without_questions()
    return SurveyListResponse(**_listing(surveys, "Surveys without questions retrieved successfully"))


@router.get("/old-without-responses", response_model=StaleSurveyListResponse)
def list_old_without_responses(
    days_old: Optional[int] = Query(None, alias="daysOld"),
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
):
    days = _days_old(days_old, settings)
    surveys = orchestrator.list_stale(days)
    return StaleSurveyListResponse(
        daysOld=days,
        **_listing(surveys, "Old surveys without responses retrieved successfully"),
    )


# =============================================================================
# Per-category cleanup
# =============================================================================

@router.delete("/orphaned", response_model=DeletedCountResponse)
def delete_orphaned(orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator)):
    """Hard delete orphaned surveys together with their questions and responses."""
    deleted = orchestrator.purge_orphaned()
    return DeletedCountResponse(message="Orphaned surveys deleted successfully", deletedCount=deleted)


@router.put("/inactive-creator/soft-delete", response_model=SoftDeletedCountResponse)
def soft_delete_inactive_creator(orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator)):
    count = orchestrator.soft_delete_inactive_creator()
    return SoftDeletedCountResponse(
        message="Surveys with inactive creator soft deleted successfully",
        softDeletedCount=count,
    )


@router.put("/without-questions/cleanup", response_model=CleanedCountResponse)
def cleanup_without_questions(orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator)):
    count = orchestrator.cleanup_empty()
    return CleanedCountResponse(message="Surveys without questions cleaned up successfully", cleanedCount=count)


@router.put("/old-without-responses/cleanup", response_model=CleanedCountResponse)
def cleanup_old_without_responses(
    days_old: Optional[int] = Query(None, alias="daysOld"),
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
):
    days = _days_old(days_old, settings)
    count = orchestrator.cleanup_stale(days)
    return CleanedCountResponse(
        message="Old surveys without responses cleaned up successfully",
        cleanedCount=count,
        daysOld=days,
    )


# =============================================================================
# Comprehensive cleanup
# =============================================================================

@router.post("/comprehensive-cleanup", response_model=CleanupReportResponse)
def comprehensive_cleanup(
    days_old: Optional[int] = Query(None, alias="daysOldForCleanup"),
    orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
):
    """
    Run every cleanup stage in order and return the aggregate report.

    Stage failures do not fail the request; they show up as success=false,
    state PARTIALLY_FAILED/FAILED and the failed stage names.
    """
    days = _days_old(days_old, settings)
    t0 = time.monotonic()
    report = orchestrator.run_comprehensive_cleanup(days)
    log.info("comprehensive cleanup request done in %.2fs state=%s", time.monotonic() - t0, report.state.value)
    return CleanupReportResponse(**report.to_dict())


@router.get("/comprehensive-cleanup/state", response_model=RunStateResponse)
def comprehensive_cleanup_state(orchestrator: ReconciliationOrchestrator = Depends(get_orchestrator)):
    return RunStateResponse(message="Reconciliation run state", state=orchestrator.state.value)


# =============================================================================
# Single-survey admin
# =============================================================================

@router.get("", response_model=SurveyListResponse)
def list_surveys(service: SurveyAdminService = Depends(get_admin_service)):
    """All surveys, soft-deleted ones included."""
    return SurveyListResponse(**_listing(service.list_surveys(), "Surveys retrieved successfully"))


@router.get("/statistics", response_model=StatisticsResponse)
def survey_statistics(service: SurveyAdminService = Depends(get_admin_service)):
    rows = service.statistics()
    return StatisticsResponse(
        message="Survey statistics retrieved successfully",
        statistics=[StatusCountOut(**r.to_dict()) for r in rows],
    )


@router.delete("/{survey_id}", response_model=SurveyResponse)
def delete_survey(survey_id: int, service: SurveyAdminService = Depends(get_admin_service)):
    """Soft delete one survey."""
    survey = service.delete_survey(survey_id)
    return SurveyResponse(message="Survey deleted successfully", survey=_survey_out(survey))


@router.put("/{survey_id}/status", response_model=StatusUpdateResponse)
def update_survey_status(
    survey_id: int,
    action: str = Query(...),
    service: SurveyAdminService = Depends(get_admin_service),
):
    parsed = StatusAction.parse(action)
    survey = service.update_status(survey_id, parsed)
    verb = "activated" if parsed is StatusAction.ACTIVATE else "closed"
    return StatusUpdateResponse(
        message=f"Survey {verb} successfully",
        survey=_survey_out(survey),
        surveyId=survey_id,
        action=parsed.value,
    )


# =============================================================================
# Admin health
# =============================================================================

@health_router.get("/health")
def admin_health():
    return {"success": True, "status": "OK", "message": "Admin panel is active", "timestamp": int(time.time() * 1000)}
