import sys
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path

import psycopg2
import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
for p in (REPO_ROOT / "backend", REPO_ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from survey_admin.services.db import ConfigError
from survey_admin.services.errors import TransientStoreError
from survey_admin.services.orchestrator import ReconciliationOrchestrator
from survey_admin.services.store import InMemorySurveyStore

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def days_ago(n: float) -> datetime:
    return NOW - timedelta(days=n)


# what libpq actually says when the server is unreachable; it names host, port and user
DRIVER_ERROR_TEXT = (
    'connection to server at "10.1.2.3", port 5432 failed: '
    'FATAL:  password authentication failed for user "survey_prod"'
)


def unreachable_db():
    raise psycopg2.OperationalError(DRIVER_ERROR_TEXT)


def unconfigured_db():
    raise ConfigError("Database not configured. Set DATABASE_URL, or set DB_HOST + DB_PASS.")


class BrokenStore(InMemorySurveyStore):
    """Every transaction fails to open, like a database that is down."""

    @contextmanager
    def transaction(self, *, timeout_seconds=None):
        raise TransientStoreError("store unreachable")
        yield  # pragma: no cover


@pytest.fixture
def store():
    return InMemorySurveyStore()


@pytest.fixture
def orchestrator(store):
    return ReconciliationOrchestrator(store, clock=lambda: NOW)


def seed_mixed(store: InMemorySurveyStore) -> InMemorySurveyStore:
    """
    One survey per category, each with children arranged so it only matches
    its own category:

      10  orphan (creator 7 missing)       1 question, 1 response
      20  inactive creator (user 3)        1 question, 1 response
      30  no questions (creator 1)         created today
      40  stale (creator 1)                1 question, 0 responses, 45 days old
      50  healthy (creator 1)              1 question, 1 response, 90 days old
    """
    store.add_user(1)
    store.add_user(3, is_active=False)

    store.add_survey(10, title="Orphan", creator_id=7, created_at=days_ago(1))
    store.add_question(10)
    store.add_response(10, respondent_id=1)

    store.add_survey(20, title="Inactive creator", creator_id=3, created_at=days_ago(1))
    store.add_question(20)
    store.add_response(20, respondent_id=1)

    store.add_survey(30, title="Empty", creator_id=1, created_at=NOW)

    store.add_survey(40, title="Stale", creator_id=1, created_at=days_ago(45))
    store.add_question(40)

    store.add_survey(50, title="Healthy", creator_id=1, created_at=days_ago(90))
    store.add_question(50)
    store.add_response(50, respondent_id=3)
    return store


@pytest.fixture
def mixed_store(store):
    return seed_mixed(store)
