"""
Admin HTTP surface via FastAPI TestClient.

Dependencies are overridden with an in-memory store, so these run without a
database. Checks status codes, response keys and the error envelope.
"""
import pytest
from fastapi.testclient import TestClient

from conftest import DRIVER_ERROR_TEXT, NOW, BrokenStore, unconfigured_db, unreachable_db
from survey_admin.main import app
from survey_admin.services.config import Settings
from survey_admin.services.deps import get_admin_service, get_orchestrator, get_settings, get_store
from survey_admin.services.models import SurveyStatus
from survey_admin.services.orchestrator import ReconciliationOrchestrator
from survey_admin.services.pg_store import PostgresSurveyStore
from survey_admin.services.survey_admin import SurveyAdminService

BASE = "/api/admin/surveys"


def _override(orchestrator, settings=None):
    settings = settings or Settings(store_backend="memory")
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_admin_service] = lambda: SurveyAdminService(orchestrator)


@pytest.fixture
def client(mixed_store, orchestrator):
    _override(orchestrator)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def broken_client():
    _override(ReconciliationOrchestrator(BrokenStore(), clock=lambda: NOW))
    yield TestClient(app)
    app.dependency_overrides.clear()


def _assert_error(resp, status, code):
    assert resp.status_code == status, resp.text
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == code
    assert body["message"] == body["error"]["message"]


class TestListings:
    def test_orphaned(self, client):
        resp = client.get(f"{BASE}/orphaned")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["count"] == 1
        survey = body["surveys"][0]
        assert survey["id"] == 10
        assert survey["creatorId"] == 7
        assert survey["questionCount"] == 1
        assert survey["responseCount"] == 1

    def test_inactive_creator(self, client):
        body = client.get(f"{BASE}/inactive-creator").json()
        assert [s["id"] for s in body["surveys"]] == [20]

    def test_without_questions(self, client):
        body = client.get(f"{BASE}/without-questions").json()
        assert [s["id"] for s in body["surveys"]] == [30]

    def test_old_without_responses_default_threshold(self, client):
        body = client.get(f"{BASE}/old-without-responses").json()
        assert body["daysOld"] == 30
        assert [s["id"] for s in body["surveys"]] == [40]

    def test_old_without_responses_custom_threshold(self, client):
        body = client.get(f"{BASE}/old-without-responses", params={"daysOld": 60}).json()
        assert body["daysOld"] == 60
        assert body["count"] == 0

    @pytest.mark.parametrize("value", ["abc", "-1", "1.5"])
    def test_bad_days_old_is_400(self, client, value):
        resp = client.get(f"{BASE}/old-without-responses", params={"daysOld": value})
        _assert_error(resp, 400, "VALIDATION_ERROR")

    def test_store_down_is_503(self, broken_client):
        resp = broken_client.get(f"{BASE}/orphaned")
        _assert_error(resp, 503, "STORE_UNAVAILABLE")


class TestCategoryCleanup:
    def test_delete_orphaned(self, client, mixed_store):
        resp = client.delete(f"{BASE}/orphaned")
        assert resp.status_code == 200
        assert resp.json()["deletedCount"] == 1
        assert 10 not in mixed_store.surveys

    def test_soft_delete_inactive_creator(self, client, mixed_store):
        body = client.put(f"{BASE}/inactive-creator/soft-delete").json()
        assert body["softDeletedCount"] == 1
        assert mixed_store.surveys[20].status is SurveyStatus.DELETED

    def test_cleanup_without_questions(self, client):
        assert client.put(f"{BASE}/without-questions/cleanup").json()["cleanedCount"] == 1

    def test_cleanup_old_without_responses(self, client):
        body = client.put(f"{BASE}/old-without-responses/cleanup", params={"daysOld": 30}).json()
        assert body["cleanedCount"] == 1
        assert body["daysOld"] == 30

    def test_negative_days_old_mutates_nothing(self, client, mixed_store):
        before = dict(mixed_store.surveys)
        resp = client.put(f"{BASE}/old-without-responses/cleanup", params={"daysOld": -1})
        _assert_error(resp, 400, "VALIDATION_ERROR")
        assert mixed_store.surveys == before

    def test_conflict_while_run_in_progress(self, client, orchestrator):
        with orchestrator.lock.hold():
            resp = client.delete(f"{BASE}/orphaned")
        _assert_error(resp, 409, "CONFLICT")


class TestComprehensiveCleanup:
    def test_report(self, client):
        resp = client.post(f"{BASE}/comprehensive-cleanup", params={"daysOldForCleanup": 30})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["state"] == "SUCCEEDED"
        assert body["daysOldThreshold"] == 30
        assert body["orphanDeleted"] == 1
        assert body["inactiveCreatorSoftDeleted"] == 1
        assert body["emptyCleaned"] == 1
        assert body["staleCleaned"] == 1
        assert body["totalProcessed"] == 4
        assert body["failedStages"] == []

    def test_state_endpoint(self, client):
        assert client.get(f"{BASE}/comprehensive-cleanup/state").json()["state"] == "NOT_STARTED"
        client.post(f"{BASE}/comprehensive-cleanup")
        assert client.get(f"{BASE}/comprehensive-cleanup/state").json()["state"] == "SUCCEEDED"

    def test_invalid_threshold(self, client, mixed_store):
        before = dict(mixed_store.surveys)
        resp = client.post(f"{BASE}/comprehensive-cleanup", params={"daysOldForCleanup": -5})
        _assert_error(resp, 400, "VALIDATION_ERROR")
        assert mixed_store.surveys == before

    def test_conflict(self, client, orchestrator):
        with orchestrator.lock.hold():
            resp = client.post(f"{BASE}/comprehensive-cleanup")
        _assert_error(resp, 409, "CONFLICT")

    def test_all_stages_failed_still_returns_report(self, broken_client):
        resp = broken_client.post(f"{BASE}/comprehensive-cleanup")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is False
        assert body["state"] == "FAILED"
        assert body["totalProcessed"] == 0
        assert len(body["failedStages"]) == 4


class TestSingleSurveyAdmin:
    def test_list_all(self, client):
        body = client.get(BASE).json()
        assert [s["id"] for s in body["surveys"]] == [10, 20, 30, 40, 50]

    def test_delete_by_id(self, client, mixed_store):
        body = client.delete(f"{BASE}/50").json()
        assert body["survey"]["status"] == "DELETED"
        assert body["survey"]["isActive"] is False
        assert 50 in mixed_store.surveys

    def test_delete_missing(self, client):
        _assert_error(client.delete(f"{BASE}/999"), 404, "NOT_FOUND")

    def test_close(self, client):
        resp = client.put(f"{BASE}/50/status", params={"action": "close"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["surveyId"] == 50
        assert body["action"] == "close"
        assert body["survey"]["status"] == "CLOSED"

    def test_unknown_action(self, client):
        _assert_error(client.put(f"{BASE}/50/status", params={"action": "archive"}), 400, "VALIDATION_ERROR")

    def test_missing_action(self, client):
        _assert_error(client.put(f"{BASE}/50/status"), 400, "VALIDATION_ERROR")

    def test_statistics(self, client):
        client.delete(f"{BASE}/50")
        stats = {r["status"]: r for r in client.get(f"{BASE}/statistics").json()["statistics"]}
        assert stats["ACTIVE"] == {"status": "ACTIVE", "total": 4, "active": 4}
        assert stats["DELETED"] == {"status": "DELETED", "total": 1, "active": 0}


class TestAdminAuth:
    @pytest.fixture
    def guarded_client(self, mixed_store, orchestrator):
        _override(orchestrator, Settings(store_backend="memory", admin_token="s3cret"))
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_missing_token(self, guarded_client):
        _assert_error(guarded_client.get(f"{BASE}/orphaned"), 401, "UNAUTHORIZED")

    def test_wrong_token(self, guarded_client):
        resp = guarded_client.get(f"{BASE}/orphaned", headers={"X-Admin-Token": "nope"})
        _assert_error(resp, 401, "UNAUTHORIZED")

    def test_valid_token(self, guarded_client):
        resp = guarded_client.get(f"{BASE}/orphaned", headers={"X-Admin-Token": "s3cret"})
        assert resp.status_code == 200

    def test_admin_health_guarded(self, guarded_client):
        assert guarded_client.get("/api/admin/health").status_code == 401
        resp = guarded_client.get("/api/admin/health", headers={"X-Admin-Token": "s3cret"})
        assert resp.json()["status"] == "OK"


def test_meta(client):
    body = client.get("/api/meta").json()
    assert body["contract_version"] == "v1"
    assert body["store_backend"] == "memory"


class TestDatabaseDown:
    @pytest.fixture
    def pg_down_client(self):
        store = PostgresSurveyStore(connect=unreachable_db)
        _override(ReconciliationOrchestrator(store, clock=lambda: NOW))
        app.dependency_overrides[get_store] = lambda: store
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_503_hides_driver_detail(self, pg_down_client):
        resp = pg_down_client.get(f"{BASE}/orphaned")
        _assert_error(resp, 503, "STORE_UNAVAILABLE")
        assert resp.json()["message"] == "Database unavailable"
        for leaked in ("10.1.2.3", "5432", "survey_prod", DRIVER_ERROR_TEXT):
            assert leaked not in resp.text

    def test_comprehensive_cleanup_reports_failure(self, pg_down_client):
        resp = pg_down_client.post(f"{BASE}/comprehensive-cleanup")
        assert resp.status_code == 200
        body = resp.json()
        assert body["state"] == "FAILED"
        assert body["failedStages"] == ["orphaned", "inactive_creator", "without_questions", "stale"]
        assert "10.1.2.3" not in resp.text

    def test_health_reports_store_down(self, pg_down_client):
        resp = pg_down_client.get("/health")
        assert resp.status_code == 200
        store = resp.json()["store"]
        assert store["ok"] is False
        assert store["error"] == "Store unavailable"
        assert "10.1.2.3" not in resp.text

    def test_health_reports_missing_config(self):
        _override(ReconciliationOrchestrator(BrokenStore(), clock=lambda: NOW))
        app.dependency_overrides[get_store] = lambda: PostgresSurveyStore(connect=unconfigured_db)
        try:
            store = TestClient(app).get("/health").json()["store"]
        finally:
            app.dependency_overrides.clear()
        assert store == {"backend": "memory", "ok": False, "error": "Store not configured"}


def test_health_ok(client, store):
    app.dependency_overrides[get_store] = lambda: store
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["store"] == {"backend": "memory", "ok": True}
