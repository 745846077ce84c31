"""
Postgres-backed survey store (psycopg2).

The schema intentionally has no foreign keys between surveys, users,
questions and responses; see ensure_schema(). Every transaction runs on its
own connection with `SET LOCAL statement_timeout` when a budget is given.
Driver errors are translated to TransientStoreError at this boundary.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from functools import partial
from typing import Callable, Iterator, List, Optional, Sequence

import psycopg2
from psycopg2 import errors as pg_errors

from survey_admin.services.db import DEFAULT_CONNECT_TIMEOUT_SECONDS, open_connection
from survey_admin.services.errors import ConflictError, TransientStoreError
from survey_admin.services.models import Survey, SurveyStatus, SurveyStatusCount
from survey_admin.services.store import StoreSession, SurveyStore

log = logging.getLogger("survey_admin.store")

UNAVAILABLE = "Database unavailable"


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
  id BIGSERIAL PRIMARY KEY,
  username TEXT,
  is_active BOOLEAN NOT NULL DEFAULT TRUE
);
CREATE TABLE IF NOT EXISTS surveys (
  id BIGSERIAL PRIMARY KEY,
  title TEXT NOT NULL,
  creator_id BIGINT,
  is_active BOOLEAN NOT NULL DEFAULT TRUE,
  status TEXT NOT NULL DEFAULT 'DRAFT'
    CHECK (status IN ('DRAFT','ACTIVE','CLOSED','DELETED')),
  created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS questions (
  id BIGSERIAL PRIMARY KEY,
  survey_id BIGINT NOT NULL,
  text TEXT
);
CREATE TABLE IF NOT EXISTS responses (
  id BIGSERIAL PRIMARY KEY,
  survey_id BIGINT NOT NULL,
  respondent_id BIGINT
);
CREATE INDEX IF NOT EXISTS idx_surveys_creator_id ON surveys(creator_id);
CREATE INDEX IF NOT EXISTS idx_questions_survey_id ON questions(survey_id);
CREATE INDEX IF NOT EXISTS idx_responses_survey_id ON responses(survey_id);
"""

# Derived counts are computed per row; callers never see stale counters.
SURVEY_SELECT = """
    SELECT
        s.id,
        s.title,
        s.creator_id,
        s.is_active,
        s.status,
        s.created_at,
        (SELECT COUNT(*) FROM questions q WHERE q.survey_id = s.id) AS question_count,
        (SELECT COUNT(*) FROM responses r WHERE r.survey_id = s.id) AS response_count
    FROM surveys s
"""


def _row_to_survey(row) -> Survey:
    return Survey(
        id=int(row[0]),
        title=row[1],
        creator_id=int(row[2]) if row[2] is not None else None,
        is_active=bool(row[3]),
        status=SurveyStatus(row[4]),
        created_at=row[5],
        question_count=int(row[6]),
        response_count=int(row[7]),
    )


def ensure_schema(conn) -> None:
    with conn.cursor() as cur:
        cur.execute(SCHEMA_SQL)
    conn.commit()


def set_statement_timeout(cur, timeout_seconds: Optional[float]) -> None:
    """
    Scope a statement_timeout to the current transaction.

    No budget (None / 0 / negative) issues nothing, so the role or server
    default timeout stays in force.
    """
    timeout_ms = int((timeout_seconds or 0) * 1000)
    if timeout_ms <= 0:
        return
    # SET does not accept a parameter placeholder reliably across drivers.
    cur.execute(f"SET LOCAL statement_timeout = {timeout_ms}")


class PostgresSession(StoreSession):
    def __init__(self, conn, **kwargs):
        super().__init__(**kwargs)
        self._conn = conn

    def _fetch_surveys(self, where_sql: str, params: tuple = ()) -> List[Survey]:
        self.check_budget()
        with self._conn.cursor() as cur:
            cur.execute(f"{SURVEY_SELECT} {where_sql} ORDER BY s.id", params)
            return [_row_to_survey(r) for r in cur.fetchall()]

    def _execute(self, sql: str, params: tuple) -> int:
        self.check_budget()
        with self._conn.cursor() as cur:
            cur.execute(sql, params)
            return cur.rowcount

    def find_orphaned(self) -> List[Survey]:
        return self._fetch_surveys(
            """
            WHERE s.status <> 'DELETED'
              AND (s.creator_id IS NULL
                   OR NOT EXISTS (SELECT 1 FROM users u WHERE u.id = s.creator_id))
            """
        )

    def find_inactive_creator(self) -> List[Survey]:
        return self._fetch_surveys(
            """
            WHERE s.status <> 'DELETED'
              AND EXISTS (SELECT 1 FROM users u WHERE u.id = s.creator_id AND u.is_active = FALSE)
            """
        )

    def find_without_questions(self) -> List[Survey]:
        return self._fetch_surveys(
            """
            WHERE s.status <> 'DELETED'
              AND NOT EXISTS (SELECT 1 FROM questions q WHERE q.survey_id = s.id)
            """
        )

    def find_stale(self, cutoff) -> List[Survey]:
        return self._fetch_surveys(
            """
            WHERE s.status <> 'DELETED'
              AND s.created_at <= %s
              AND NOT EXISTS (SELECT 1 FROM responses r WHERE r.survey_id = s.id)
            """,
            (cutoff,),
        )

    def get_survey(self, survey_id: int) -> Optional[Survey]:
        rows = self._fetch_surveys("WHERE s.id = %s", (survey_id,))
        return rows[0] if rows else None

    def list_surveys(self) -> List[Survey]:
        return self._fetch_surveys("")

    def count_by_status(self) -> List[SurveyStatusCount]:
        self.check_budget()
        with self._conn.cursor() as cur:
            cur.execute(
                """
                SELECT status, COUNT(*)::int, COUNT(*) FILTER (WHERE is_active)::int
                FROM surveys
                GROUP BY status
                ORDER BY status
                """
            )
            return [
                SurveyStatusCount(status=SurveyStatus(r[0]), total=int(r[1]), active=int(r[2]))
                for r in cur.fetchall()
            ]

    def delete_responses(self, survey_ids: Sequence[int]) -> int:
        if not survey_ids:
            return 0
        return self._execute("DELETE FROM responses WHERE survey_id = ANY(%s)", (list(survey_ids),))

    def delete_questions(self, survey_ids: Sequence[int]) -> int:
        if not survey_ids:
            return 0
        return self._execute("DELETE FROM questions WHERE survey_id = ANY(%s)", (list(survey_ids),))

    def delete_surveys(self, survey_ids: Sequence[int]) -> int:
        if not survey_ids:
            return 0
        return self._execute("DELETE FROM surveys WHERE id = ANY(%s)", (list(survey_ids),))

    def mark_deleted(self, survey_ids: Sequence[int]) -> int:
        if not survey_ids:
            return 0
        return self._execute(
            """
            UPDATE surveys
            SET is_active = FALSE, status = 'DELETED'
            WHERE id = ANY(%s) AND status <> 'DELETED'
            """,
            (list(survey_ids),),
        )

    def set_status(self, survey_id: int, status: SurveyStatus, *, is_active: Optional[bool] = None) -> bool:
        if is_active is None:
            updated = self._execute("UPDATE surveys SET status = %s WHERE id = %s", (status.value, survey_id))
        else:
            updated = self._execute(
                "UPDATE surveys SET status = %s, is_active = %s WHERE id = %s",
                (status.value, is_active, survey_id),
            )
        return updated > 0


class PostgresSurveyStore(SurveyStore):
    backend = "postgres"

    def __init__(
        self,
        connect: Optional[Callable[[], object]] = None,
        *,
        connect_timeout_seconds: int = DEFAULT_CONNECT_TIMEOUT_SECONDS,
    ):
        self._connect = connect or partial(open_connection, connect_timeout_seconds=connect_timeout_seconds)

    def _open(self):
        try:
            return self._connect()
        except psycopg2.OperationalError as e:
            # driver text carries host/port/user; it goes to the log only
            log.error("connect failed: %s", str(e).strip())
            raise TransientStoreError(UNAVAILABLE) from e

    @contextmanager
    def transaction(self, *, timeout_seconds: Optional[float] = None) -> Iterator[PostgresSession]:
        conn = self._open()
        try:
            try:
                with conn.cursor() as cur:
                    set_statement_timeout(cur, timeout_seconds)
                yield PostgresSession(conn, timeout_seconds=timeout_seconds)
                conn.commit()
            except pg_errors.QueryCanceled as e:
                conn.rollback()
                raise TransientStoreError("Transaction exceeded its execution budget") from e
            except psycopg2.Error as e:
                conn.rollback()
                log.error("transaction aborted: %s", str(e).strip())
                raise TransientStoreError(f"Transaction aborted: {e.__class__.__name__}") from e
            except BaseException:
                conn.rollback()
                raise
        finally:
            conn.close()

    @contextmanager
    def run_lock(self, key: str) -> Iterator[None]:
        """
        Session-level advisory lock on a dedicated connection. It survives the
        per-stage commits and is released when the connection closes.
        """
        conn = self._open()
        try:
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT pg_try_advisory_lock(hashtext(%s))", (key,))
                    locked = cur.fetchone()[0]
                conn.commit()
            except psycopg2.Error as e:
                log.error("advisory lock query failed for key=%s: %s", key, str(e).strip())
                raise TransientStoreError(UNAVAILABLE) from e
            if not locked:
                raise ConflictError("Reconciliation already running (advisory lock held by another process)")
            try:
                yield
            finally:
                try:
                    with conn.cursor() as cur:
                        cur.execute("SELECT pg_advisory_unlock(hashtext(%s))", (key,))
                    conn.commit()
                except psycopg2.Error:
                    # closing the connection below releases it anyway
                    log.warning("advisory unlock failed for key=%s", key)
        finally:
            conn.close()

    def ping(self) -> bool:
        conn = self._open()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
            return True
        except psycopg2.Error as e:
            log.warning("ping failed: %s", str(e).strip())
            raise TransientStoreError(UNAVAILABLE) from e
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        conn = self._open()
        try:
            ensure_schema(conn)
        finally:
            conn.close()
