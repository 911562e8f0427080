"""
Tests for the Advisor CRM API endpoints.

Tests are organized by endpoint group:
- Evidence (review queue, triage, link decisions, manual evidence)
- People (creation with duplicate protection)
- Notes (analysis and ingestion)
- Insights (listing, dismissal, dedup)
- Imports (status and kicks)
"""
import pytest
from fastapi.testclient import TestClient

# These tests use TestClient which initializes the app (slow)
pytestmark = pytest.mark.slow

from api.services.crm_repository import StoreConflictError
from api.services.evidence_upsert import EvidenceUpsertEngine
from api.services.import_coordinator import ImportConfig, ImportCoordinator, register_import_coordinator
from api.services.insight import Insight, InsightTarget
from api.services.source_adapters import StaticSourceAdapter
from api.services.store_access import StoreWriteError
from api.utils.datetime_utils import utc_now
from tests.factories import hint, make_record

NEW_SON_NOTE = (
    "I just had a son. His name is William. "
    "We want to discuss a $50,000 life insurance policy for William."
)


@pytest.fixture
def client(store, monkeypatch):
    """Test client whose routes use the in-memory store."""
    monkeypatch.setattr("api.services.store_access._store_access", store)
    from api.main import app
    return TestClient(app)


@pytest.fixture
def engine(store, matcher, fixed_clock):
    return EvidenceUpsertEngine(store, matcher=matcher, clock=fixed_clock)


class TestHealth:
    """Tests for /health."""

    def test_health(self, client):
        """The store is readable."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["store"] is True


class TestEvidenceEndpoints:
    """Tests for /api/evidence."""

    def test_create_and_get_manual(self, client):
        """POST creates manual evidence that GET returns."""
        response = client.post("/api/evidence", json={"title": "Phone call", "snippet": "Asked about a trust"})
        assert response.status_code == 201
        created = response.json()
        assert created["source"] == "manual"
        assert created["external_uid"] is None

        response = client.get(f"/api/evidence/{created['id']}")
        assert response.status_code == 200
        assert response.json()["title"] == "Phone call"

    def test_blank_title_is_400(self, client):
        """A blank title is rejected."""
        response = client.post("/api/evidence", json={"title": "   "})
        assert response.status_code == 400

    def test_missing_title_is_400(self, client):
        """Validation errors are reported as 400."""
        response = client.post("/api/evidence", json={"snippet": "no title"})
        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"

    def test_list_filters(self, client, engine):
        """The review queue can be filtered by source and triage state."""
        engine.upsert([make_record("e1"), make_record("e2")], "calendar")
        client.post("/api/evidence", json={"title": "Walk-in"})

        data = client.get("/api/evidence?source=calendar").json()
        assert data["count"] == 2

        evidence_id = data["evidence"][0]["id"]
        assert client.post(f"/api/evidence/{evidence_id}/review").json()["triage_state"] == "reviewed"

        data = client.get("/api/evidence?triage_state=needs_review").json()
        assert data["count"] == 2
        assert evidence_id not in {e["id"] for e in data["evidence"]}

        back = client.post(f"/api/evidence/{evidence_id}/needs-review").json()
        assert back["triage_state"] == "needs_review"

    def test_invalid_source_filter(self, client):
        """Unknown sources are validation errors."""
        assert client.get("/api/evidence?source=fax").status_code == 400

    def test_accept_and_decline_links(self, client, engine):
        """Link decisions update the evidence."""
        robert = client.post("/api/people", json={"display_name": "Robert Smith"}).json()
        engine.upsert([
            make_record("e1", hints=[hint("Bob Smith", "bob@gmail.com")]),
            make_record("e2", hints=[hint("Bob Smith")]),
        ], "calendar")
        items = {e["external_uid"]: e for e in client.get("/api/evidence").json()["evidence"]}

        first = items["calendar:e1"]
        response = client.post(f"/api/evidence/{first['id']}/links/{first['proposed_links'][0]['id']}/accept")
        assert response.status_code == 200
        assert response.json()["linked_people"] == [robert["id"]]
        assert client.get(f"/api/people/{robert['id']}").json()["email"] == "bob@gmail.com"

        second = items["calendar:e2"]
        response = client.post(f"/api/evidence/{second['id']}/links/{second['proposed_links'][0]['id']}/decline")
        assert response.json()["proposed_links"][0]["status"] == "declined"

    def test_unknown_link_404(self, client):
        """Decisions on unknown links are 404."""
        created = client.post("/api/evidence", json={"title": "Walk-in"}).json()
        response = client.post(f"/api/evidence/{created['id']}/links/missing/accept")
        assert response.status_code == 404

    def test_delete(self, client):
        """DELETE removes evidence; a second delete is 404."""
        created = client.post("/api/evidence", json={"title": "Walk-in"}).json()
        assert client.delete(f"/api/evidence/{created['id']}").status_code == 200
        assert client.get(f"/api/evidence/{created['id']}").status_code == 404
        assert client.delete(f"/api/evidence/{created['id']}").status_code == 404

    def test_store_write_error_is_503(self, client, monkeypatch):
        """A write that keeps conflicting is reported as 503."""
        def failing_write(fn, operation="write"):
            raise StoreWriteError(operation, StoreConflictError("locked"))

        from api.services.store_access import get_store_access
        monkeypatch.setattr(get_store_access(), "write", failing_write)

        response = client.post("/api/evidence", json={"title": "Walk-in"})
        assert response.status_code == 503


class TestPeopleEndpoints:
    """Tests for /api/people."""

    def test_create_list_get_delete(self, client):
        """Basic person lifecycle."""
        response = client.post("/api/people", json={"display_name": "Robert Smith", "role_badges": ["Client"]})
        assert response.status_code == 201
        person = response.json()

        assert client.get("/api/people?q=rob").json()["count"] == 1
        assert client.get(f"/api/people/{person['id']}").json()["role_badges"] == ["Client"]
        assert client.delete(f"/api/people/{person['id']}").status_code == 200
        assert client.get(f"/api/people/{person['id']}").status_code == 404

    def test_duplicate_is_409_with_matches(self, client):
        """A probable duplicate is refused with the matches."""
        existing = client.post("/api/people", json={"display_name": "Robert Smith"}).json()

        response = client.post("/api/people", json={"display_name": "Bob Smith"})

        assert response.status_code == 409
        matches = response.json()["matches"]
        assert matches[0]["id"] == existing["id"]
        assert matches[0]["score"] == 1.0

    def test_force(self, client):
        """force=true creates anyway."""
        client.post("/api/people", json={"display_name": "Robert Smith"})
        response = client.post("/api/people", json={"display_name": "Bob Smith", "force": True})
        assert response.status_code == 201

    def test_duplicate_check(self, client):
        """POST /duplicates scores without creating."""
        client.post("/api/people", json={"display_name": "Robert Smith"})
        data = client.post("/api/people/duplicates", json={"name": "Bob Smith"}).json()
        assert data["count"] == 1
        assert client.get("/api/people").json()["count"] == 1


class TestNoteEndpoints:
    """Tests for /api/notes."""

    def test_analyze(self, client, mock_settings):
        """Analysis returns the artifact without storing anything."""
        response = client.post("/api/notes/analyze", json={"text": NEW_SON_NOTE})
        assert response.status_code == 200
        data = response.json()
        assert data["extractor_used"] == "heuristic"
        assert data["people"][0]["name"] == "William"
        assert data["topics"][0]["amount"] == "$50,000"
        assert client.get("/api/evidence").json()["count"] == 0

    def test_empty_text_is_400(self, client):
        """Empty notes are rejected."""
        assert client.post("/api/notes/analyze", json={"text": ""}).status_code == 400

    def test_ingest(self, client, mock_settings):
        """Ingesting stores evidence, creates the new person and returns insights."""
        robert = client.post("/api/people", json={"display_name": "Robert Smith"}).json()

        response = client.post("/api/notes", json={
            "note_id": "n1",
            "text": NEW_SON_NOTE,
            "related_person_ids": [robert["id"]],
        })

        assert response.status_code == 201
        data = response.json()
        assert data["note_id"] == "n1"
        assert [p["display_name"] for p in data["created_people"]] == ["William"]
        assert data["insights"]

        evidence = client.get(f"/api/evidence/{data['evidence_id']}").json()
        assert evidence["external_uid"] == "note:n1"

    def test_ingest_generates_note_id(self, client, mock_settings):
        """A note id is generated when none is given."""
        data = client.post("/api/notes", json={"text": "Quick check-in."}).json()
        assert data["note_id"]


class TestInsightEndpoints:
    """Tests for /api/insights."""

    def _insert(self, store, confidence, **kwargs):
        insight = Insight(
            target=InsightTarget.person("p1"),
            kind=kwargs.pop("kind", "follow_up"),
            message=kwargs.pop("message", "Suggested follow-up."),
            confidence=confidence,
            **kwargs,
        )
        return store.write(lambda repo: repo.insert_insight(insight))

    def test_list_sorted_and_filtered(self, client, store):
        """Insights are listed by descending confidence and can be filtered."""
        low = self._insert(store, 0.55)
        high = self._insert(store, 0.9, kind="opportunity", message="Possible opportunity.")

        data = client.get("/api/insights").json()
        assert [i["id"] for i in data["insights"]] == [high.id, low.id]

        data = client.get("/api/insights?kind=follow_up").json()
        assert [i["id"] for i in data["insights"]] == [low.id]

    def test_dismiss(self, client, store):
        """Dismissed insights are hidden unless requested."""
        insight = self._insert(store, 0.6)

        response = client.post(f"/api/insights/{insight.id}/dismiss")
        assert response.status_code == 200
        assert response.json()["dismissed_at"] is not None

        assert client.get("/api/insights").json()["count"] == 0
        assert client.get("/api/insights?include_dismissed=true").json()["count"] == 1
        assert client.post("/api/insights/missing/dismiss").status_code == 404

    def test_deduplicate(self, client, store):
        """POST /deduplicate merges duplicates."""
        self._insert(store, 0.6, based_on_evidence={"a"})
        self._insert(store, 0.7, based_on_evidence={"b"})

        assert client.post("/api/insights/deduplicate").json() == {"removed": 1}
        data = client.get("/api/insights").json()
        assert sorted(data["insights"][0]["based_on_evidence"]) == ["a", "b"]


class TestImportEndpoints:
    """Tests for /api/imports."""

    def _register(self, store):
        adapter = StaticSourceAdapter("calendar", [make_record("e1", occurred_at=utc_now())])
        config = ImportConfig(scope="work")
        return register_import_coordinator(
            ImportCoordinator("calendar", adapter, store, config_provider=lambda: config)
        )

    def test_unknown_source_404(self, client):
        """Sources without a coordinator are 404."""
        assert client.get("/api/imports/calendar").status_code == 404
        assert client.post("/api/imports/calendar/kick").status_code == 404

    def test_kick_and_status(self, client, store):
        """A manual kick runs a cycle that the status endpoint reports."""
        coordinator = self._register(store)

        response = client.post("/api/imports/calendar/kick")
        assert response.status_code == 200
        assert response.json()["accepted"] is True
        assert response.json()["reason"] == "manual"
        assert coordinator.wait_until_idle(5.0)

        status = client.get("/api/imports/calendar").json()
        assert status["status"] == "success"
        assert status["last_result"]["created"] == 1

    def test_throttled_kick(self, client, store):
        """A periodic kick right after a cycle is not accepted."""
        coordinator = self._register(store)
        coordinator.import_now()

        response = client.post("/api/imports/calendar/kick", json={"reason": "periodic"})
        assert response.json()["accepted"] is False

    def test_invalid_reason_400(self, client, store):
        """Unknown kick reasons are validation errors."""
        self._register(store)
        response = client.post("/api/imports/calendar/kick", json={"reason": "whenever"})
        assert response.status_code == 400
