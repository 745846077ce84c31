"""
Inconsistency detectors.

Each detector is a read-only predicate over one store session and maps to
exactly one reconciliation category. Detectors hold no state between calls,
so every stage of a run re-queries the store fresh.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List

from survey_admin.services.errors import InvalidArgument
from survey_admin.services.models import Survey
from survey_admin.services.store import StoreSession

log = logging.getLogger("survey_admin.reconcile")

DEFAULT_DAYS_OLD = 30


class Category(str, Enum):
    """Reconciliation categories, in comprehensive-run order."""

    ORPHANED = "orphaned"
    INACTIVE_CREATOR = "inactive_creator"
    WITHOUT_QUESTIONS = "without_questions"
    STALE = "stale"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def validate_days_old(days_old) -> int:
    """Reject (never clamp) anything but a non-negative integer."""
    if isinstance(days_old, bool) or not isinstance(days_old, int):
        raise InvalidArgument(f"daysOld must be an integer, got {days_old!r}")
    if days_old < 0:
        raise InvalidArgument(f"daysOld must be >= 0, got {days_old}")
    return days_old


class Detector:
    category: Category
    label: str = ""

    def find(self, session: StoreSession) -> List[Survey]:
        surveys = self._query(session)
        log.info("%s: found %d survey(s)", self.label or self.category.value, len(surveys))
        return surveys

    def _query(self, session: StoreSession) -> List[Survey]:
        raise NotImplementedError


class OrphanDetector(Detector):
    """Creator row physically gone (or never set)."""

    category = Category.ORPHANED
    label = "orphaned surveys"

    def _query(self, session):
        return session.find_orphaned()


class InactiveCreatorDetector(Detector):
    """Creator row exists but is deactivated. Disjoint from OrphanDetector."""

    category = Category.INACTIVE_CREATOR
    label = "surveys with inactive creator"

    def _query(self, session):
        return session.find_inactive_creator()


class EmptySurveyDetector(Detector):
    category = Category.WITHOUT_QUESTIONS
    label = "surveys without questions"

    def _query(self, session):
        return session.find_without_questions()


class StaleSurveyDetector(Detector):
    """
    Surveys created at least `days_old` days ago that never received a
    response. A survey created exactly `days_old` days ago counts as stale;
    any response at all exempts a survey regardless of age.
    """

    category = Category.STALE
    label = "old surveys without responses"

    def __init__(self, days_old: int = DEFAULT_DAYS_OLD, *, clock: Callable[[], datetime] = utc_now):
        self.days_old = validate_days_old(days_old)
        self._clock = clock

    def cutoff(self) -> datetime:
        return self._clock() - timedelta(days=self.days_old)

    def _query(self, session):
        return session.find_stale(self.cutoff())
