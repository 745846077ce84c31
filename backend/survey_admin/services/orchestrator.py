"""
Reconciliation orchestrator.

Runs detectors, applies the policy per category inside its own transaction,
and aggregates the outcome of a comprehensive run into a CleanupReport.

Single-flight: every mutation (one category or the comprehensive run) holds
the "reconciliation-run" lock for its whole duration, both the process-wide
mutex and the store's cross-process lock. A second caller gets ConflictError.

Failure semantics:
- Single-category operations propagate the first error to the caller.
- The comprehensive run isolates failures per stage: a failed stage is rolled
  back, recorded with a zero count, and the remaining stages still run.
"""
from __future__ import annotations

import logging
from contextlib import ExitStack, contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional

from survey_admin.services.db import ConfigError
from survey_admin.services.detectors import (
    DEFAULT_DAYS_OLD,
    Category,
    Detector,
    EmptySurveyDetector,
    InactiveCreatorDetector,
    OrphanDetector,
    StaleSurveyDetector,
    utc_now,
    validate_days_old,
)
from survey_admin.services.errors import TransientStoreError
from survey_admin.services.locking import RECONCILIATION_LOCK_KEY, SingleFlightLock
from survey_admin.services.models import Survey
from survey_admin.services.policy import ReconciliationPolicy
from survey_admin.services.report import CleanupReport, RunState
from survey_admin.services.store import SurveyStore

log = logging.getLogger("survey_admin.reconcile")

STAGE_ORDER = (
    Category.ORPHANED,
    Category.INACTIVE_CREATOR,
    Category.WITHOUT_QUESTIONS,
    Category.STALE,
)


class ReconciliationOrchestrator:
    def __init__(
        self,
        store: SurveyStore,
        *,
        policy: Optional[ReconciliationPolicy] = None,
        lock: Optional[SingleFlightLock] = None,
        stage_timeout_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.policy = policy or ReconciliationPolicy()
        self.lock = lock or SingleFlightLock(RECONCILIATION_LOCK_KEY)
        self.stage_timeout_seconds = stage_timeout_seconds
        self._clock = clock
        self._state = RunState.NOT_STARTED

    @property
    def state(self) -> RunState:
        """State of the current comprehensive run, or of the last one."""
        return self._state

    # -------------------------------------------------------------------------
    # Detectors
    # -------------------------------------------------------------------------

    def _detector(self, category: Category, days_old: int = DEFAULT_DAYS_OLD) -> Detector:
        if category is Category.ORPHANED:
            return OrphanDetector()
        if category is Category.INACTIVE_CREATOR:
            return InactiveCreatorDetector()
        if category is Category.WITHOUT_QUESTIONS:
            return EmptySurveyDetector()
        return StaleSurveyDetector(days_old, clock=self._clock)

    def _list(self, detector: Detector) -> List[Survey]:
        with self.store.transaction(timeout_seconds=self.stage_timeout_seconds) as session:
            return detector.find(session)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def list_orphaned(self) -> List[Survey]:
        return self._list(self._detector(Category.ORPHANED))

    def list_inactive_creator(self) -> List[Survey]:
        return self._list(self._detector(Category.INACTIVE_CREATOR))

    def list_without_questions(self) -> List[Survey]:
        return self._list(self._detector(Category.WITHOUT_QUESTIONS))

    def list_stale(self, days_old: int = DEFAULT_DAYS_OLD) -> List[Survey]:
        return self._list(self._detector(Category.STALE, days_old))

    # -------------------------------------------------------------------------
    # Single-category mutations
    # -------------------------------------------------------------------------

    @contextmanager
    def single_flight(self) -> Iterator[None]:
        with self.lock.hold():
            with self.store.run_lock(self.lock.key):
                yield

    def _run_category(self, detector: Detector) -> int:
        """Detect and mutate one category inside one transaction."""
        with self.store.transaction(timeout_seconds=self.stage_timeout_seconds) as session:
            surveys = detector.find(session)
            count = self.policy.apply(session, detector.category, surveys)
        log.info("%s: %s applied to %d survey(s)", detector.category.value,
                 self.policy.action_for(detector.category).value, count)
        return count

    def _mutate(self, detector: Detector) -> int:
        with self.single_flight():
            return self._run_category(detector)

    def purge_orphaned(self) -> int:
        return self._mutate(self._detector(Category.ORPHANED))

    def soft_delete_inactive_creator(self) -> int:
        return self._mutate(self._detector(Category.INACTIVE_CREATOR))

    def cleanup_empty(self) -> int:
        return self._mutate(self._detector(Category.WITHOUT_QUESTIONS))

    def cleanup_stale(self, days_old: int = DEFAULT_DAYS_OLD) -> int:
        return self._mutate(self._detector(Category.STALE, days_old))

    # -------------------------------------------------------------------------
    # Comprehensive run
    # -------------------------------------------------------------------------

    def run_comprehensive_cleanup(self, days_old: int = DEFAULT_DAYS_OLD) -> CleanupReport:
        """
        Run all four stages in fixed order (orphan purge, inactive-creator soft
        delete, empty cleanup, stale cleanup) and report per-stage counts.

        Raises only before any stage starts: InvalidArgument for a bad
        `days_old`, ConflictError if another run holds the lock. A store that
        cannot even be locked fails every stage and yields a FAILED report.
        """
        days_old = validate_days_old(days_old)
        with self.lock.hold(), ExitStack() as stack:
            log.info("Comprehensive survey cleanup starting (daysOld=%d)", days_old)
            try:
                stack.enter_context(self.store.run_lock(self.lock.key))
            except (TransientStoreError, ConfigError):
                log.exception("Could not take the store lock; every cleanup stage fails")
                counts, failed = dict.fromkeys(STAGE_ORDER, 0), list(STAGE_ORDER)
            else:
                self._state = RunState.RUNNING
                try:
                    counts, failed = self._run_stages(days_old)
                except BaseException:
                    self._state = RunState.FAILED
                    raise
            report = self._build_report(days_old, counts, failed)
            self._state = report.state
        log.info(
            "Comprehensive survey cleanup finished: state=%s orphaned=%d inactive_creator=%d "
            "without_questions=%d stale=%d",
            report.state.value,
            report.orphan_deleted,
            report.inactive_creator_soft_deleted,
            report.empty_cleaned,
            report.stale_cleaned,
        )
        return report

    def _run_stages(self, days_old: int):
        counts: Dict[Category, int] = {}
        failed: List[Category] = []
        for category in STAGE_ORDER:
            try:
                counts[category] = self._run_category(self._detector(category, days_old))
            except Exception:
                log.exception("Cleanup stage %s failed; continuing with remaining stages", category.value)
                counts[category] = 0
                failed.append(category)
        return counts, failed

    def _build_report(self, days_old: int, counts: Dict[Category, int], failed: List[Category]) -> CleanupReport:
        if not failed:
            state = RunState.SUCCEEDED
            message = "Comprehensive survey cleanup completed successfully"
        elif len(failed) == len(STAGE_ORDER):
            state = RunState.FAILED
            message = "Comprehensive survey cleanup failed: all stages failed"
        else:
            state = RunState.PARTIALLY_FAILED
            message = (
                f"Comprehensive survey cleanup partially failed: {len(failed)} of "
                f"{len(STAGE_ORDER)} stages failed ({', '.join(c.value for c in failed)})"
            )
        return CleanupReport(
            days_old_threshold=days_old,
            orphan_deleted=counts[Category.ORPHANED],
            inactive_creator_soft_deleted=counts[Category.INACTIVE_CREATOR],
            empty_cleaned=counts[Category.WITHOUT_QUESTIONS],
            stale_cleaned=counts[Category.STALE],
            state=state,
            message=message,
            failed_stages=tuple(c.value for c in failed),
        )
