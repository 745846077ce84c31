"""
Reconciliation policy: which action each category gets, and the exact row
mutations that implement it.

  orphaned          -> HARD_DELETE  responses, then questions, then the survey rows
  inactive_creator  -> SOFT_DELETE  is_active = false, status = DELETED
  without_questions -> SOFT_DELETE
  stale             -> SOFT_DELETE

Cascades are explicit deletes issued here, in child-first order, inside the
caller's transaction; nothing relies on database or mapper cascades.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Sequence

from survey_admin.services.detectors import Category
from survey_admin.services.models import Survey
from survey_admin.services.store import StoreSession

log = logging.getLogger("survey_admin.reconcile")


class Action(str, Enum):
    HARD_DELETE = "hard_delete"
    SOFT_DELETE = "soft_delete"


DEFAULT_ACTIONS: Dict[Category, Action] = {
    Category.ORPHANED: Action.HARD_DELETE,
    Category.INACTIVE_CREATOR: Action.SOFT_DELETE,
    Category.WITHOUT_QUESTIONS: Action.SOFT_DELETE,
    Category.STALE: Action.SOFT_DELETE,
}


class ReconciliationPolicy:
    def __init__(self, actions: Dict[Category, Action] = None):
        self.actions = dict(DEFAULT_ACTIONS if actions is None else actions)

    def action_for(self, category: Category) -> Action:
        return self.actions[category]

    def apply(self, session: StoreSession, category: Category, surveys: Sequence[Survey]) -> int:
        """Mutate `surveys` per the category's action; returns the number of surveys affected."""
        if not surveys:
            return 0
        survey_ids = [s.id for s in surveys]
        action = self.action_for(category)
        if action is Action.HARD_DELETE:
            return self._hard_delete(session, survey_ids)
        return self._soft_delete(session, survey_ids)

    def _hard_delete(self, session: StoreSession, survey_ids: Sequence[int]) -> int:
        responses = session.delete_responses(survey_ids)
        questions = session.delete_questions(survey_ids)
        surveys = session.delete_surveys(survey_ids)
        log.info(
            "hard delete: surveys=%d questions=%d responses=%d",
            surveys, questions, responses,
        )
        return surveys

    def _soft_delete(self, session: StoreSession, survey_ids: Sequence[int]) -> int:
        changed = session.mark_deleted(survey_ids)
        log.info("soft delete: surveys=%d (of %d candidates)", changed, len(survey_ids))
        return changed
