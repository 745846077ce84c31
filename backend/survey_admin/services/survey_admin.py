"""
Single-survey admin operations: list, soft delete by id, status transitions,
per-status statistics.

Mutations here share the reconciliation lock so an admin edit can never
interleave with a cleanup run touching the same survey.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from survey_admin.services.errors import InvalidArgument, NotFound
from survey_admin.services.models import StatusAction, Survey, SurveyStatus, SurveyStatusCount
from survey_admin.services.orchestrator import ReconciliationOrchestrator

log = logging.getLogger("survey_admin.admin")


class SurveyAdminService:
    def __init__(self, orchestrator: ReconciliationOrchestrator):
        self.orchestrator = orchestrator
        self.store = orchestrator.store

    def _transaction(self):
        return self.store.transaction(timeout_seconds=self.orchestrator.stage_timeout_seconds)

    def list_surveys(self) -> List[Survey]:
        with self._transaction() as session:
            return session.list_surveys()

    def statistics(self) -> List[SurveyStatusCount]:
        with self._transaction() as session:
            return session.count_by_status()

    def delete_survey(self, survey_id: int) -> Survey:
        """Soft delete one survey. Deleting an already-deleted survey is a no-op."""
        with self.orchestrator.single_flight():
            with self._transaction() as session:
                if session.get_survey(survey_id) is None:
                    raise NotFound(f"Survey not found: {survey_id}")
                changed = session.mark_deleted([survey_id])
                survey = session.get_survey(survey_id)
        log.info("survey %s soft deleted (changed=%d)", survey_id, changed)
        return survey

    def update_status(self, survey_id: int, action) -> Survey:
        """
        Apply a status action ("activate" / "close" or a StatusAction).

        The action is validated before the store is touched; transitions not
        allowed from the survey's current status (anything out of DELETED
        included) are rejected as InvalidArgument.
        """
        if not isinstance(action, StatusAction):
            action = StatusAction.parse(action)
        target = action.target
        with self.orchestrator.single_flight():
            with self._transaction() as session:
                survey = session.get_survey(survey_id)
                if survey is None:
                    raise NotFound(f"Survey not found: {survey_id}")
                if not survey.status.can_transition_to(target):
                    raise InvalidArgument(
                        f"Cannot {action.value} survey {survey_id} in status {survey.status.value}"
                    )
                is_active: Optional[bool] = True if target is SurveyStatus.ACTIVE else None
                session.set_status(survey_id, target, is_active=is_active)
                updated = session.get_survey(survey_id)
        log.info("survey %s: %s -> %s", survey_id, survey.status.value, target.value)
        return updated
