"""
scripts/reconcile_surveys.py: dry-run output, --apply, exit codes.
"""
import json
from io import StringIO

import pytest

from conftest import NOW, BrokenStore, unconfigured_db, unreachable_db
from scripts.reconcile_surveys import (
    EXIT_CONFLICT,
    EXIT_FAILED,
    EXIT_INVALID,
    EXIT_OK,
    build_parser,
    main,
    run,
)
from survey_admin.services.models import SurveyStatus
from survey_admin.services.orchestrator import ReconciliationOrchestrator
from survey_admin.services.pg_store import PostgresSurveyStore


def _args(*argv, days_old=30):
    args = build_parser().parse_args(list(argv))
    if args.days_old is None:
        args.days_old = days_old
    return args


def test_dry_run_lists_candidates_without_mutating(mixed_store, orchestrator):
    before = dict(mixed_store.surveys)
    out = StringIO()
    assert run(orchestrator, _args(), out) == EXIT_OK
    text = out.getvalue()
    assert "[DRY RUN]" in text
    assert "orphaned: 1 candidate(s) -> hard_delete" in text
    assert "stale: 1 candidate(s) -> soft_delete" in text
    assert "survey_id=10" in text
    assert mixed_store.surveys == before


def test_dry_run_json_single_category(mixed_store, orchestrator):
    out = StringIO()
    assert run(orchestrator, _args("--category", "stale", "--json", "--days-old", "40"), out) == EXIT_OK
    payload = json.loads(out.getvalue())
    assert payload["dryRun"] is True
    assert payload["daysOld"] == 40
    assert list(payload["categories"]) == ["stale"]
    assert payload["categories"]["stale"]["count"] == 1
    assert payload["categories"]["stale"]["surveys"][0]["id"] == 40


def test_apply_comprehensive(mixed_store, orchestrator):
    out = StringIO()
    assert run(orchestrator, _args("--apply", "--json"), out) == EXIT_OK
    report = json.loads(out.getvalue())
    assert report["state"] == "SUCCEEDED"
    assert report["totalProcessed"] == 4
    assert 10 not in mixed_store.surveys


def test_apply_single_category(mixed_store, orchestrator):
    out = StringIO()
    assert run(orchestrator, _args("--apply", "--category", "without_questions"), out) == EXIT_OK
    assert "without_questions: soft_delete applied to 1 survey(s)" in out.getvalue()
    assert mixed_store.surveys[30].status is SurveyStatus.DELETED
    assert mixed_store.surveys[40].status is SurveyStatus.ACTIVE


def test_apply_failed_run_exits_1():
    orchestrator = ReconciliationOrchestrator(BrokenStore(), clock=lambda: NOW)
    out = StringIO()
    assert run(orchestrator, _args("--apply"), out) == EXIT_FAILED
    assert "failed stages:" in out.getvalue()


def test_store_down_in_dry_run_exits_1():
    orchestrator = ReconciliationOrchestrator(BrokenStore(), clock=lambda: NOW)
    assert run(orchestrator, _args(), StringIO()) == EXIT_FAILED


def test_negative_days_old_exits_2(mixed_store, orchestrator):
    before = dict(mixed_store.surveys)
    assert run(orchestrator, _args("--apply", "--days-old", "-1"), StringIO()) == EXIT_INVALID
    assert mixed_store.surveys == before


def test_conflict_exits_3(mixed_store, orchestrator):
    with orchestrator.lock.hold():
        assert run(orchestrator, _args("--apply"), StringIO()) == EXIT_CONFLICT


def test_unknown_category_rejected_by_parser():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--category", "everything"])


def test_main_bad_config_exits_2(monkeypatch):
    monkeypatch.setenv("SURVEY_STORE_BACKEND", "sqlite")
    assert main([]) == EXIT_INVALID


def test_main_memory_backend(monkeypatch, capsys):
    monkeypatch.setenv("SURVEY_STORE_BACKEND", "memory")
    monkeypatch.setenv("RECONCILE_DEFAULT_DAYS_OLD", "7")
    assert main(["--json"]) == EXIT_OK
    payload = json.loads(capsys.readouterr().out)
    assert payload["daysOld"] == 7
    assert all(c["count"] == 0 for c in payload["categories"].values())


class TestDatabaseConfig:
    @pytest.fixture
    def no_db_env(self, monkeypatch):
        for name in ("DATABASE_URL", "DB_HOST", "DB_PASS"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("SURVEY_STORE_BACKEND", "postgres")

    @pytest.mark.parametrize("argv", [[], ["--apply"], ["--apply", "--category", "stale"]])
    def test_main_without_db_config_exits_2(self, no_db_env, capsys, argv):
        assert main(argv) == EXIT_INVALID
        assert "Database not configured" in capsys.readouterr().err

    @pytest.mark.parametrize("argv", [(), ("--apply", "--category", "orphaned")])
    def test_run_with_unconfigured_store_exits_2(self, argv):
        orchestrator = ReconciliationOrchestrator(PostgresSurveyStore(connect=unconfigured_db), clock=lambda: NOW)
        assert run(orchestrator, _args(*argv), StringIO()) == EXIT_INVALID

    def test_apply_with_database_down_exits_1(self, capsys):
        orchestrator = ReconciliationOrchestrator(PostgresSurveyStore(connect=unreachable_db), clock=lambda: NOW)
        out = StringIO()
        assert run(orchestrator, _args("--apply"), out) == EXIT_FAILED
        assert "failed stages:" in out.getvalue()
        assert "10.1.2.3" not in out.getvalue() + capsys.readouterr().err
