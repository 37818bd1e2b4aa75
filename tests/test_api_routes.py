"""
API tests for the pipeline and note routes.

The application is exercised through ``TestClient`` without entering its
lifespan, so no MongoDB connection is made; the case and audit stores are
replaced through ``app.dependency_overrides``.
"""

import pytest
from fastapi.testclient import TestClient

import caseflow.main as main_module
from caseflow.app.api.deps import get_app_settings, get_audit_store, get_case_store
from caseflow.config.settings import Settings
from caseflow.main import create_application

from fakes import (
    COLLEAGUE_ID,
    FIRM_ID,
    LAWYER_ID,
    OTHER_FIRM_ID,
    OUTSIDER_ID,
    FakeCaseRepository,
    RecordingAuditRepository,
    make_case,
    make_note,
    new_id,
    pipeline_settings,
)

BASE = "/api/v1/cases"
LAWYER_HEADERS = {"X-User-Id": LAWYER_ID, "X-Firm-Id": FIRM_ID}
COLLEAGUE_HEADERS = {"X-User-Id": COLLEAGUE_ID, "X-Firm-Id": FIRM_ID}
OUTSIDER_HEADERS = {"X-User-Id": OUTSIDER_ID, "X-Firm-Id": OTHER_FIRM_ID}


class ApiTestBase:

    def setup_method(self):
        self.repository = FakeCaseRepository()
        self.audit = RecordingAuditRepository()
        self.app = create_application()
        self.app.dependency_overrides[get_case_store] = lambda: self.repository
        self.app.dependency_overrides[get_audit_store] = lambda: self.audit
        self.settings = Settings(pipeline=pipeline_settings(trust_identity_headers=True))
        self.app.dependency_overrides[get_app_settings] = lambda: self.settings
        self.client = TestClient(self.app)

    def add_case(self, **overrides):
        return self.repository.insert(make_case(**overrides))

    def error_of(self, response):
        body = response.json()
        assert body["success"] is False
        return body["error"]


class TestStageRoutes(ApiTestBase):
    """Test suite for stage transitions and case ending over HTTP."""

    def test_move_case_to_stage(self):
        case = self.add_case()

        response = self.client.patch(
            f"{BASE}/{case.case_id}/stage",
            json={"newStage": "reconciliation", "notes": "moving forward"},
            headers={**LAWYER_HEADERS, "X-Correlation-ID": "req-123"}
        )

        assert response.status_code == 200
        assert response.headers["X-Correlation-ID"] == "req-123"
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Case stage updated successfully"
        assert body["data"]["caseId"] == case.case_id
        assert body["data"]["currentStage"] == "reconciliation"
        assert len(body["data"]["stageHistory"]) == 2
        assert body["data"]["stageHistory"][1]["notes"] == "moving forward"
        assert self.audit.records[0]["details"]["action"] == "stage_change"

    def test_correlation_id_is_generated(self):
        case = self.add_case()
        response = self.client.patch(f"{BASE}/{case.case_id}/stage", json={"newStage": "appeal"}, headers=LAWYER_HEADERS)
        assert response.headers["X-Correlation-ID"]

    def test_missing_identity_is_unauthorized(self):
        case = self.add_case()
        response = self.client.patch(f"{BASE}/{case.case_id}/stage", json={"newStage": "appeal"})

        assert response.status_code == 401
        assert self.error_of(response)["code"] == "AUTH_MISSING_IDENTITY"

    def test_identity_headers_are_ignored_unless_trusted(self):
        case = self.add_case()
        self.settings = Settings()

        response = self.client.patch(f"{BASE}/{case.case_id}/stage", json={"newStage": "appeal"}, headers=LAWYER_HEADERS)

        assert response.status_code == 401
        assert self.error_of(response)["code"] == "AUTH_MISSING_IDENTITY"
        assert self.repository.stored(case.case_id).current_stage == "filing"

    def test_invalid_stage_envelope(self):
        case = self.add_case(category="labor")

        response = self.client.patch(
            f"{BASE}/{case.case_id}/stage",
            json={"newStage": "mediation"},
            headers={**LAWYER_HEADERS, "X-Correlation-ID": "req-456"}
        )

        assert response.status_code == 400
        error = self.error_of(response)
        assert error["code"] == "CASE_INVALID_STAGE"
        assert error["details"]["category"] == "labor"
        assert error["details"]["requested_stage"] == "mediation"
        assert error["details"]["valid_stages"][0] == "filing"
        assert error["correlation_id"] == "req-456"
        assert response.json()["correlation_id"] == "req-456"

    def test_non_string_stage_is_invalid_input(self):
        case = self.add_case()
        response = self.client.patch(f"{BASE}/{case.case_id}/stage", json={"newStage": 5}, headers=LAWYER_HEADERS)

        assert response.status_code == 400
        error = self.error_of(response)
        assert error["code"] == "CASE_INVALID_INPUT"
        assert error["message"] == "Valid stage is required"

    def test_malformed_body(self):
        case = self.add_case()
        response = self.client.patch(f"{BASE}/{case.case_id}/stage", json=["appeal"], headers=LAWYER_HEADERS)

        assert response.status_code == 400
        error = self.error_of(response)
        assert error["code"] == "CASE_INVALID_INPUT"
        assert error["details"]["field_errors"]

    def test_extra_body_fields_are_ignored(self):
        case = self.add_case()
        response = self.client.patch(
            f"{BASE}/{case.case_id}/stage",
            json={"newStage": "appeal", "currentStage": "execution", "revision": 99, "status": "closed"},
            headers=LAWYER_HEADERS
        )

        assert response.status_code == 200
        stored = self.repository.stored(case.case_id)
        assert stored.current_stage == "appeal"
        assert stored.status == "open"
        assert stored.revision == 1

    def test_other_firm_is_forbidden(self):
        case = self.add_case()
        response = self.client.patch(f"{BASE}/{case.case_id}/stage", json={"newStage": "appeal"}, headers=OUTSIDER_HEADERS)

        assert response.status_code == 403
        assert self.error_of(response)["code"] == "CASE_ACCESS_DENIED"

    def test_unknown_and_malformed_case_ids(self):
        missing = self.client.patch(f"{BASE}/{new_id()}/stage", json={"newStage": "appeal"}, headers=LAWYER_HEADERS)
        assert missing.status_code == 404
        assert self.error_of(missing)["code"] == "CASE_NOT_FOUND"

        malformed = self.client.patch(f"{BASE}/not-an-id/stage", json={"newStage": "appeal"}, headers=LAWYER_HEADERS)
        assert malformed.status_code == 400
        assert self.error_of(malformed)["message"] == "Invalid case ID"

    def test_end_case_then_end_again(self):
        case = self.add_case()

        response = self.client.post(
            f"{BASE}/{case.case_id}/end",
            json={"outcome": "won", "endReason": "Judgment", "finalAmount": 100000},
            headers=LAWYER_HEADERS
        )
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Case ended successfully"
        assert body["data"]["status"] == "closed"
        assert body["data"]["outcome"] == "won"
        assert body["data"]["endDetails"]["finalAmount"] == 100000.0

        again = self.client.post(f"{BASE}/{case.case_id}/end", json={"outcome": "lost"}, headers=LAWYER_HEADERS)
        assert again.status_code == 400
        error = self.error_of(again)
        assert error["code"] == "CASE_INVALID_STATE"
        assert error["message"] == "Case is already ended"

        move = self.client.patch(f"{BASE}/{case.case_id}/stage", json={"newStage": "appeal"}, headers=LAWYER_HEADERS)
        assert move.status_code == 400
        assert self.error_of(move)["message"] == "Cannot modify ended case"

    def test_end_case_with_negative_amount(self):
        case = self.add_case()
        response = self.client.post(
            f"{BASE}/{case.case_id}/end",
            json={"outcome": "won", "finalAmount": -5},
            headers=LAWYER_HEADERS
        )
        assert response.status_code == 400
        assert self.error_of(response)["code"] == "CASE_INVALID_INPUT"


class TestPipelineRoutes(ApiTestBase):
    """Test suite for the pipeline views."""

    def setup_method(self):
        super().setup_method()
        self.add_case(title="Open civil")
        self.add_case(title="Won labor", category="labor", outcome="won", status="closed")
        self.add_case(title="Foreign", firm_id=OTHER_FIRM_ID, lawyer_id=OUTSIDER_ID)

    def test_pipeline_list(self):
        response = self.client.get(f"{BASE}/pipeline", params={"limit": 1}, headers=COLLEAGUE_HEADERS)

        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["cases"]) == 1
        assert data["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}
        assert data["statistics"]["total"] == 2
        assert data["statistics"]["byOutcome"] == {"ongoing": 1, "won": 1}
        row = data["cases"][0]
        assert "daysInCurrentStage" in row
        assert row["tasksCount"] == 0

    def test_pipeline_board(self):
        active = self.client.get(f"{BASE}/pipeline/board", headers=COLLEAGUE_HEADERS).json()["data"]
        assert list(active) == ["filing"]
        assert active["filing"][0]["title"] == "Open civil"

        closed = self.client.get(f"{BASE}/pipeline/board", params={"status": "closed"}, headers=COLLEAGUE_HEADERS)
        assert [card["title"] for card in closed.json()["data"]["filing"]] == ["Won labor"]

        invalid = self.client.get(f"{BASE}/pipeline/board", params={"status": "pending"}, headers=COLLEAGUE_HEADERS)
        assert invalid.status_code == 400

    def test_pipeline_statistics(self):
        response = self.client.get(f"{BASE}/pipeline/statistics", headers=COLLEAGUE_HEADERS)

        data = response.json()["data"]
        assert data["totalCases"] == 2
        assert data["wonCases"] == 1
        assert data["successRate"] == 1.0
        assert data["byCategory"] == {"civil": 1, "labor": 1}

    def test_statistics_with_bad_date(self):
        response = self.client.get(
            f"{BASE}/pipeline/statistics",
            params={"dateFrom": "not-a-date"},
            headers=COLLEAGUE_HEADERS
        )
        assert response.status_code == 400

    def test_valid_stages(self):
        labor = self.client.get(f"{BASE}/pipeline/stages/labor", headers=COLLEAGUE_HEADERS).json()["data"]
        assert labor["stages"][3] == "labor_court"
        assert "commercial" in labor["allCategories"]

        unknown = self.client.get(f"{BASE}/pipeline/stages/Unknown", headers=COLLEAGUE_HEADERS).json()["data"]
        assert unknown["category"] == "unknown"
        assert unknown["stages"] == ["filing", "first_hearing", "ongoing_hearings", "appeal", "final"]


class TestNoteRoutes(ApiTestBase):
    """Test suite for note CRUD over HTTP."""

    def setup_method(self):
        super().setup_method()
        self.case = self.add_case()
        self.url = f"{BASE}/{self.case.case_id}/notes"

    def test_note_lifecycle(self):
        created = self.client.post(self.url, json={"text": "  First call  "}, headers=LAWYER_HEADERS)
        assert created.status_code == 201
        note = created.json()["data"]
        assert note["text"] == "First call"
        assert note["stageId"] == "filing"

        updated = self.client.patch(
            f"{self.url}/{note['id']}",
            json={"text": "First call, rescheduled", "isPrivate": True},
            headers=LAWYER_HEADERS
        )
        assert updated.status_code == 200
        assert updated.json()["data"]["isPrivate"] is True

        hidden = self.client.get(self.url, headers=COLLEAGUE_HEADERS).json()["data"]
        assert hidden["notes"] == []
        assert hidden["pagination"]["total"] == 0

        own = self.client.get(self.url, headers=LAWYER_HEADERS).json()["data"]
        assert [item["text"] for item in own["notes"]] == ["First call, rescheduled"]

        deleted = self.client.delete(f"{self.url}/{note['id']}", headers=LAWYER_HEADERS)
        assert deleted.status_code == 200
        assert deleted.json()["message"] == "Note deleted successfully"
        assert self.repository.stored(self.case.case_id).notes == []

    def test_explicit_null_text_is_rejected(self):
        note = make_note()
        self.repository.stored(self.case.case_id).notes = [note]

        response = self.client.patch(f"{self.url}/{note.note_id}", json={"text": None}, headers=LAWYER_HEADERS)

        assert response.status_code == 400
        assert self.error_of(response)["message"] == "Note text must be a non-empty string"

    def test_private_flag_parses_as_boolean(self):
        created = self.client.post(self.url, json={"text": "Call client", "isPrivate": "false"}, headers=LAWYER_HEADERS)

        assert created.status_code == 201
        assert created.json()["data"]["isPrivate"] is False
        assert self.repository.stored(self.case.case_id).notes[0].is_private is False

    def test_unparseable_private_flag_is_invalid_input(self):
        response = self.client.post(self.url, json={"text": "Call client", "isPrivate": "maybe"}, headers=LAWYER_HEADERS)

        assert response.status_code == 400
        assert self.error_of(response)["code"] == "CASE_INVALID_INPUT"
        assert self.repository.stored(self.case.case_id).notes == []

        note = make_note()
        self.repository.stored(self.case.case_id).notes = [note]
        response = self.client.patch(f"{self.url}/{note.note_id}", json={"isPrivate": "maybe"}, headers=LAWYER_HEADERS)
        assert response.status_code == 400
        assert self.repository.stored(self.case.case_id).notes[0].is_private is False

    def test_only_creator_can_edit(self):
        note = make_note()
        self.repository.stored(self.case.case_id).notes = [note]

        response = self.client.patch(f"{self.url}/{note.note_id}", json={"text": "Hijack"}, headers=COLLEAGUE_HEADERS)

        assert response.status_code == 403
        assert self.error_of(response)["code"] == "NOTE_ACCESS_DENIED"

    def test_missing_note(self):
        response = self.client.delete(f"{self.url}/{new_id()}", headers=LAWYER_HEADERS)
        assert response.status_code == 404
        assert self.error_of(response)["code"] == "NOTE_NOT_FOUND"

    def test_empty_note_text(self):
        response = self.client.post(self.url, json={"text": "   "}, headers=LAWYER_HEADERS)
        assert response.status_code == 400
        assert self.error_of(response)["message"] == "Note text is required"


class FakeDatabaseManager:

    def __init__(self, status):
        self.status = status

    async def health_check(self):
        return {"status": self.status}


class TestHealth(ApiTestBase):

    @pytest.mark.parametrize("status,expected", [("healthy", 200), ("unhealthy", 503)])
    def test_health_reports_database_status(self, monkeypatch, status, expected):
        monkeypatch.setattr(main_module, "get_database_manager", lambda: FakeDatabaseManager(status))

        response = self.client.get("/health")

        assert response.status_code == expected
        assert response.json()["services"]["mongodb"]["status"] == status
