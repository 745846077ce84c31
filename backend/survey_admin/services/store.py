"""
Entity store interface and the in-memory backend.

The store is a repository over surveys, questions, responses and users. All
reads and writes go through `transaction()`, which yields a StoreSession:
commit on normal exit, rollback on any exception. References between records
(creator, survey ownership) are NOT enforced here; detecting and repairing the
resulting inconsistencies is the reconciliation engine's job.

Backends:
  - InMemorySurveyStore (this module): local dev + tests.
  - PostgresSurveyStore (pg_store.py): production.
"""
from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import Counter
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from survey_admin.services.errors import TransientStoreError
from survey_admin.services.models import (
    Question,
    Response,
    Survey,
    SurveyStatus,
    SurveyStatusCount,
    User,
)

log = logging.getLogger("survey_admin.store")


# =============================================================================
# Interface
# =============================================================================

class StoreSession(ABC):
    """
    One unit of work against the store.

    Sessions carry an optional execution budget; every statement checks it
    first and raises TransientStoreError once it is exhausted, which aborts
    (rolls back) the enclosing transaction.
    """

    def __init__(
        self,
        *,
        timeout_seconds: Optional[float] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._monotonic = monotonic
        self._deadline = monotonic() + timeout_seconds if timeout_seconds else None

    def check_budget(self) -> None:
        if self._deadline is not None and self._monotonic() > self._deadline:
            raise TransientStoreError("Transaction exceeded its execution budget")

    # -- category queries (all exclude status = DELETED) -----------------------

    @abstractmethod
    def find_orphaned(self) -> List[Survey]:
        """Surveys whose creator_id resolves to no user row (or is NULL)."""

    @abstractmethod
    def find_inactive_creator(self) -> List[Survey]:
        """Surveys whose creator row exists with is_active = false."""

    @abstractmethod
    def find_without_questions(self) -> List[Survey]:
        ...

    @abstractmethod
    def find_stale(self, cutoff: datetime) -> List[Survey]:
        """Surveys created at or before `cutoff` with zero responses."""

    # -- plain reads ------------------------------------------------------------

    @abstractmethod
    def get_survey(self, survey_id: int) -> Optional[Survey]:
        ...

    @abstractmethod
    def list_surveys(self) -> List[Survey]:
        ...

    @abstractmethod
    def count_by_status(self) -> List[SurveyStatusCount]:
        ...

    # -- row mutations ----------------------------------------------------------

    @abstractmethod
    def delete_responses(self, survey_ids: Sequence[int]) -> int:
        ...

    @abstractmethod
    def delete_questions(self, survey_ids: Sequence[int]) -> int:
        ...

    @abstractmethod
    def delete_surveys(self, survey_ids: Sequence[int]) -> int:
        ...

    @abstractmethod
    def mark_deleted(self, survey_ids: Sequence[int]) -> int:
        """Set is_active = false, status = DELETED on rows not already DELETED."""

    @abstractmethod
    def set_status(self, survey_id: int, status: SurveyStatus, *, is_active: Optional[bool] = None) -> bool:
        ...


class SurveyStore(ABC):
    backend = "abstract"

    @abstractmethod
    def transaction(self, *, timeout_seconds: Optional[float] = None):
        """Context manager yielding a StoreSession."""

    @contextmanager
    def run_lock(self, key: str) -> Iterator[None]:
        """
        Cross-process lock for `key`. Backends without shared state have
        nothing to coordinate; the process-wide mutex in locking.py covers them.
        """
        yield

    def ping(self) -> bool:
        return True


# =============================================================================
# In-memory backend
# =============================================================================

class InMemorySurveyStore(SurveyStore):
    """
    Dict-backed store. Transactions are serialized by a re-entrant lock and
    rolled back by restoring a snapshot taken at transaction start.
    """

    backend = "memory"

    def __init__(self, *, monotonic: Callable[[], float] = time.monotonic):
        self._lock = threading.RLock()
        self._monotonic = monotonic
        self.users: Dict[int, User] = {}
        self.surveys: Dict[int, Survey] = {}
        self.questions: Dict[int, Question] = {}
        self.responses: Dict[int, Response] = {}

    @contextmanager
    def transaction(self, *, timeout_seconds: Optional[float] = None) -> Iterator["InMemorySession"]:
        with self._lock:
            snapshot = self._snapshot()
            session = InMemorySession(self, timeout_seconds=timeout_seconds, monotonic=self._monotonic)
            try:
                yield session
            except BaseException:
                self._restore(snapshot)
                log.debug("memory transaction rolled back")
                raise

    def _snapshot(self):
        return (
            dict(self.users),
            dict(self.surveys),
            dict(self.questions),
            dict(self.responses),
        )

    def _restore(self, snapshot) -> None:
        users, surveys, questions, responses = snapshot
        self.users = users
        self.surveys = surveys
        self.questions = questions
        self.responses = responses

    # -- seeding (outside reconciliation; stands in for the CRUD flows) --------

    @staticmethod
    def _next_id(table: Dict[int, object]) -> int:
        return max(table, default=0) + 1

    def add_user(self, user_id: Optional[int] = None, *, is_active: bool = True) -> User:
        with self._lock:
            user = User(id=user_id if user_id is not None else self._next_id(self.users), is_active=is_active)
            self.users[user.id] = user
            return user

    def remove_user(self, user_id: int) -> None:
        with self._lock:
            self.users.pop(user_id, None)

    def deactivate_user(self, user_id: int) -> None:
        with self._lock:
            self.users[user_id] = replace(self.users[user_id], is_active=False)

    def add_survey(
        self,
        survey_id: Optional[int] = None,
        *,
        title: str = "Untitled survey",
        creator_id: Optional[int] = None,
        created_at: Optional[datetime] = None,
        status: SurveyStatus = SurveyStatus.ACTIVE,
        is_active: bool = True,
    ) -> Survey:
        with self._lock:
            survey = Survey(
                id=survey_id if survey_id is not None else self._next_id(self.surveys),
                title=title,
                creator_id=creator_id,
                is_active=is_active,
                status=status,
                created_at=created_at or datetime.now(timezone.utc),
            )
            self.surveys[survey.id] = survey
            return survey

    def add_question(self, survey_id: int, question_id: Optional[int] = None) -> Question:
        with self._lock:
            question = Question(id=question_id if question_id is not None else self._next_id(self.questions), survey_id=survey_id)
            self.questions[question.id] = question
            return question

    def add_response(
        self,
        survey_id: int,
        respondent_id: Optional[int] = None,
        response_id: Optional[int] = None,
    ) -> Response:
        with self._lock:
            response = Response(
                id=response_id if response_id is not None else self._next_id(self.responses),
                survey_id=survey_id,
                respondent_id=respondent_id,
            )
            self.responses[response.id] = response
            return response


class InMemorySession(StoreSession):
    def __init__(self, store: InMemorySurveyStore, **kwargs):
        super().__init__(**kwargs)
        self._store = store

    def _with_counts(self, surveys) -> List[Survey]:
        question_counts = Counter(q.survey_id for q in self._store.questions.values())
        response_counts = Counter(r.survey_id for r in self._store.responses.values())
        return [
            replace(s, question_count=question_counts[s.id], response_count=response_counts[s.id])
            for s in sorted(surveys, key=lambda s: s.id)
        ]

    def _live(self) -> List[Survey]:
        return self._with_counts(
            s for s in self._store.surveys.values() if s.status is not SurveyStatus.DELETED
        )

    def find_orphaned(self) -> List[Survey]:
        self.check_budget()
        users = self._store.users
        return [s for s in self._live() if s.creator_id is None or s.creator_id not in users]

    def find_inactive_creator(self) -> List[Survey]:
        self.check_budget()
        users = self._store.users
        return [
            s for s in self._live()
            if s.creator_id in users and not users[s.creator_id].is_active
        ]

    def find_without_questions(self) -> List[Survey]:
        self.check_budget()
        return [s for s in self._live() if s.question_count == 0]

    def find_stale(self, cutoff: datetime) -> List[Survey]:
        self.check_budget()
        return [s for s in self._live() if s.created_at <= cutoff and s.response_count == 0]

    def get_survey(self, survey_id: int) -> Optional[Survey]:
        self.check_budget()
        survey = self._store.surveys.get(survey_id)
        if survey is None:
            return None
        return self._with_counts([survey])[0]

    def list_surveys(self) -> List[Survey]:
        self.check_budget()
        return self._with_counts(self._store.surveys.values())

    def count_by_status(self) -> List[SurveyStatusCount]:
        self.check_budget()
        totals: Counter = Counter()
        active: Counter = Counter()
        for s in self._store.surveys.values():
            totals[s.status] += 1
            if s.is_active:
                active[s.status] += 1
        return [
            SurveyStatusCount(status=status, total=totals[status], active=active[status])
            for status in SurveyStatus
            if totals[status]
        ]

    def _delete_where(self, table: Dict[int, object], survey_ids: Sequence[int], attr: str) -> int:
        wanted = set(survey_ids)
        doomed = [k for k, row in table.items() if getattr(row, attr) in wanted]
        for k in doomed:
            del table[k]
        return len(doomed)

    def delete_responses(self, survey_ids: Sequence[int]) -> int:
        self.check_budget()
        return self._delete_where(self._store.responses, survey_ids, "survey_id")

    def delete_questions(self, survey_ids: Sequence[int]) -> int:
        self.check_budget()
        return self._delete_where(self._store.questions, survey_ids, "survey_id")

    def delete_surveys(self, survey_ids: Sequence[int]) -> int:
        self.check_budget()
        return self._delete_where(self._store.surveys, survey_ids, "id")

    def mark_deleted(self, survey_ids: Sequence[int]) -> int:
        self.check_budget()
        changed = 0
        for survey_id in survey_ids:
            survey = self._store.surveys.get(survey_id)
            if survey is None or survey.status is SurveyStatus.DELETED:
                continue
            self._store.surveys[survey_id] = replace(survey, is_active=False, status=SurveyStatus.DELETED)
            changed += 1
        return changed

    def set_status(self, survey_id: int, status: SurveyStatus, *, is_active: Optional[bool] = None) -> bool:
        self.check_budget()
        survey = self._store.surveys.get(survey_id)
        if survey is None:
            return False
        updated = replace(survey, status=status)
        if is_active is not None:
            updated = replace(updated, is_active=is_active)
        self._store.surveys[survey_id] = updated
        return True
