"""
Comprehensive cleanup report.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple


class RunState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    PARTIALLY_FAILED = "PARTIALLY_FAILED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class CleanupReport:
    """Transient result of one comprehensive run; built once, never mutated or persisted."""

    days_old_threshold: int
    orphan_deleted: int
    inactive_creator_soft_deleted: int
    empty_cleaned: int
    stale_cleaned: int
    state: RunState
    message: str
    failed_stages: Tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return self.state is RunState.SUCCEEDED

    @property
    def total_processed(self) -> int:
        return (
            self.orphan_deleted
            + self.inactive_creator_soft_deleted
            + self.empty_cleaned
            + self.stale_cleaned
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "state": self.state.value,
            "daysOldThreshold": self.days_old_threshold,
            "orphanDeleted": self.orphan_deleted,
            "inactiveCreatorSoftDeleted": self.inactive_creator_soft_deleted,
            "emptyCleaned": self.empty_cleaned,
            "staleCleaned": self.stale_cleaned,
            "totalProcessed": self.total_processed,
            "failedStages": list(self.failed_stages),
        }
