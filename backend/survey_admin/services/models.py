"""
Survey domain records.

Rows are plain dataclasses; the store fills in derived counts
(question_count, response_count) when it reads a survey.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from survey_admin.services.errors import InvalidArgument


class SurveyStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"
    DELETED = "DELETED"

    def can_transition_to(self, target: "SurveyStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS.get(self, set())


_ALLOWED_TRANSITIONS = {
    SurveyStatus.DRAFT: {SurveyStatus.ACTIVE, SurveyStatus.CLOSED},
    SurveyStatus.ACTIVE: {SurveyStatus.CLOSED},
    SurveyStatus.CLOSED: {SurveyStatus.ACTIVE},
    # DELETED is terminal for admin transitions
}


class StatusAction(str, Enum):
    """Closed set of admin status transitions."""

    ACTIVATE = "activate"
    CLOSE = "close"

    @property
    def target(self) -> SurveyStatus:
        if self is StatusAction.ACTIVATE:
            return SurveyStatus.ACTIVE
        return SurveyStatus.CLOSED

    @classmethod
    def parse(cls, raw: Optional[str]) -> "StatusAction":
        value = (raw or "").strip().lower()
        for action in cls:
            if action.value == value:
                return action
        valid = ", ".join(a.value for a in cls)
        raise InvalidArgument(f"Invalid action: {raw!r} (expected one of: {valid})")


@dataclass(frozen=True)
class User:
    id: int
    is_active: bool = True


@dataclass(frozen=True)
class Question:
    id: int
    survey_id: int


@dataclass(frozen=True)
class Response:
    id: int
    survey_id: int
    respondent_id: Optional[int] = None


@dataclass(frozen=True)
class Survey:
    id: int
    title: str
    creator_id: Optional[int]
    is_active: bool
    status: SurveyStatus
    created_at: datetime
    question_count: int = 0
    response_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape used by the admin API."""
        return {
            "id": self.id,
            "title": self.title,
            "creatorId": self.creator_id,
            "isActive": self.is_active,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "questionCount": self.question_count,
            "responseCount": self.response_count,
        }


@dataclass(frozen=True)
class SurveyStatusCount:
    """One row of the per-status survey statistics."""

    status: SurveyStatus
    total: int
    active: int

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status.value, "total": self.total, "active": self.active}
