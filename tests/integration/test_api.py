"""
Integration tests for the HTTP API.

Tests cover:
- Health, schema, definitions, records and problems endpoints
- Query execution and its error statuses
- Reloading, and the degraded state when the store cannot load
"""

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from plaixt.api import StoreService, create_app
from plaixt.config import Settings
from plaixt.query import interpreter

PURCHASE_NAMES = """
{
  RecordsOfKind(kind: "purchase") {
    ... on p_purchase {
      name @output
      count @filter(op: ">=", value: ["$min"])
    }
  }
}
"""


@pytest.fixture
def client(sample_root):
    app = create_app(service=StoreService(Settings(root_folder=sample_root)))
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def degraded_client(tmp_path):
    app = create_app(service=StoreService(Settings(root_folder=tmp_path / "missing")))
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:
    """Tests for /health."""

    def test_healthy(self, client):
        """A loaded store reports healthy."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "plaixt", "loaded": True}

    def test_degraded(self, degraded_client):
        """A store that failed to load keeps the service up, degraded."""
        response = degraded_client.get("/health")

        assert response.json()["status"] == "degraded"


class TestSchemaEndpoints:
    """Tests for /schema and /definitions."""

    def test_schema(self, client):
        """The schema carries SDL, kinds and definitions."""
        data = client.get("/api/v1/schema").json()

        assert data["kinds"] == ["Store", "person", "purchase"]
        assert "type p_purchase implements Record {" in data["sdl"]
        assert len(data["definitions"]["purchase"]["versions"]) == 2

    def test_definition(self, client):
        """One definition with all of its versions."""
        data = client.get("/api/v1/definitions/purchase").json()

        assert data["versions"][0]["live_from"] == "2024-10-26T00:00:00"
        assert data["versions"][1]["fields"]["price"] == "currency"
        assert data["versions"][1]["check_with"] == "links_exist"

    def test_unknown_definition(self, client):
        """Unknown kinds are 404."""
        response = client.get("/api/v1/definitions/invoice")

        assert response.status_code == 404
        assert response.json()["detail"] == "Kind 'invoice' not found"


class TestRecordEndpoints:
    """Tests for /records and /problems."""

    def test_records_of_kind(self, client):
        """Records render with their metadata."""
        data = client.get("/api/v1/records", params={"kind": "Store"}).json()

        assert data["total"] == 2
        assert data["items"][0] == {
            "_kind": "Store",
            "_at": "2024-01-01T00:00:00",
            "_id": "FarmerBernard",
            "name": "Farmer Bernard",
            "city": "Lyon",
        }

    def test_pagination(self, client):
        """offset and limit page through all records."""
        first = client.get("/api/v1/records", params={"limit": 4}).json()
        last = client.get("/api/v1/records", params={"offset": 8, "limit": 4}).json()

        assert first["total"] == 9
        assert first["has_more"] is True
        assert len(first["items"]) == 4
        assert [item["_id"] for item in last["items"]] == ["dave"]
        assert last["has_more"] is False

    def test_unknown_kind(self, client):
        """Listing an unknown kind is 404."""
        assert client.get("/api/v1/records", params={"kind": "invoice"}).status_code == 404

    def test_invalid_limit(self, client):
        """Page sizes are bounded."""
        assert client.get("/api/v1/records", params={"limit": 0}).status_code == 422

    def test_problems(self, make_store, tmp_path):
        """Rejected records are listed with a summary."""
        make_store(records={"a.plrecs": "invoice 01-01-2024\n"})
        app = create_app(service=StoreService(Settings(root_folder=tmp_path)))

        with TestClient(app) as test_client:
            data = test_client.get("/api/v1/problems").json()

        assert data["summary"]["errors_by_code"] == {"UNKNOWN_KIND": 1}
        assert data["problems"][0]["code"] == "UNKNOWN_KIND"


class TestQueryEndpoint:
    """Tests for POST /query."""

    def test_query(self, client):
        """Rows come back with their count."""
        response = client.post(
            "/api/v1/query", json={"query": PURCHASE_NAMES, "variables": {"min": 2}}
        )

        assert response.status_code == 200
        assert response.json() == {
            "results": [{"name": "Organic apples"}, {"name": "Milk"}],
            "count": 2,
        }

    def test_invalid_query(self, client):
        """Compile errors are 400 with their code."""
        response = client.post(
            "/api/v1/query", json={"query": '{ RecordsOfKind(kind: "purchase") { colour @output } }'}
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "UNKNOWN_SCHEMA_ELEMENT"

    def test_missing_variable(self, client):
        """Missing variables are 400."""
        response = client.post("/api/v1/query", json={"query": PURCHASE_NAMES})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "UNKNOWN_VARIABLE"

    def test_timeout(self, client, monkeypatch):
        """Queries running past their timeout are 408."""
        ticks = iter(range(0, 1000, 10))
        monkeypatch.setattr(interpreter, "time", SimpleNamespace(monotonic=lambda: next(ticks)))

        response = client.post(
            "/api/v1/query",
            json={"query": PURCHASE_NAMES, "variables": {"min": 0}, "timeout_seconds": 5},
        )

        assert response.status_code == 408
        assert response.json()["detail"]["code"] == "QUERY_CANCELLED"

    def test_invalid_timeout(self, client):
        """Timeouts must be positive."""
        response = client.post(
            "/api/v1/query", json={"query": PURCHASE_NAMES, "timeout_seconds": 0}
        )

        assert response.status_code == 422


class TestReload:
    """Tests for POST /reload and the degraded state."""

    def test_reload_picks_up_changes(self, client, sample_root):
        """New record files are visible after a reload."""
        (sample_root / "records" / "extra.plrecs").write_text(
            "Store:New 01-01-2024\n    name <- New\n"
        )

        summary = client.post("/api/v1/reload").json()
        data = client.get("/api/v1/records", params={"kind": "Store"}).json()

        assert summary["records"] == 10
        assert data["total"] == 3

    def test_degraded_endpoints(self, degraded_client):
        """Without a snapshot, data endpoints are 503."""
        response = degraded_client.get("/api/v1/schema")

        assert response.status_code == 503
        assert response.json()["detail"]["code"] == "STORE_NOT_LOADED"

    def test_reload_still_unavailable(self, degraded_client):
        """Reloading a store without definitions is 503."""
        response = degraded_client.post("/api/v1/reload")

        assert response.status_code == 503
        assert response.json()["detail"]["code"] == "DEFINITION_STORE_UNAVAILABLE"
