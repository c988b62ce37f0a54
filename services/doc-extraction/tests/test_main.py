"""Tests for the HTTP layer: routing, error mapping, persistence endpoints."""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

import main
from errors import QuotaExceeded
from store import ResultStore

PDF = ("invoice.pdf", b"%PDF-1.4 fake document", "application/pdf")
NO_DETECTION = json.dumps({"detectDocumentType": False})


@pytest.fixture
def store(tmp_path: Path, monkeypatch) -> ResultStore:
    result_store = ResultStore(tmp_path)
    monkeypatch.setattr(main, "_store", result_store)
    return result_store


@pytest.fixture
def api(mock_client: MagicMock, store: ResultStore, monkeypatch) -> TestClient:
    """Test client with a mocked model; lifespan is not run."""
    monkeypatch.setattr(main, "_model_client", mock_client)
    return TestClient(main.app)


class TestExtractEndpoint:
    def test_successful_extraction(self, api: TestClient, mock_client: MagicMock, invoice_reply: str):
        mock_client.generate.return_value = invoice_reply

        resp = api.post(
            "/api/v1/extract",
            files={"file": PDF},
            data={"instruction": "extract the invoice number", "options": NO_DETECTION},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["data"]["invoice_number"] == {"value": "INV-2024", "confidence": 0.97}
        assert "cashier" not in body["data"]
        assert body["metadata"]["modelId"] == "test-model"
        assert body["metadata"]["options"]["detectDocumentType"] is False
        assert body["metadata"]["instruction"] == "extract the invoice number"

    def test_no_model_configured(self, store: ResultStore, monkeypatch):
        monkeypatch.setattr(main, "_model_client", None)
        resp = TestClient(main.app).post("/api/v1/extract", files={"file": PDF})

        assert resp.status_code == 503
        assert resp.json()["error"] == "model_unavailable"

    def test_empty_file(self, api: TestClient, mock_client: MagicMock):
        resp = api.post("/api/v1/extract", files={"file": ("empty.pdf", b"", "application/pdf")})

        assert resp.status_code == 400
        mock_client.generate.assert_not_called()

    def test_invalid_options(self, api: TestClient):
        resp = api.post(
            "/api/v1/extract",
            files={"file": PDF},
            data={"options": json.dumps({"temperature": 5})},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_unparseable_reply(self, api: TestClient, mock_client: MagicMock):
        mock_client.generate.return_value = "Sorry, this document is unreadable."

        resp = api.post("/api/v1/extract", files={"file": PDF}, data={"options": NO_DETECTION})

        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "parse_failure"
        assert body["preview"] == "Sorry, this document is unreadable."
        assert body["suggestion"]

    def test_quota_exceeded(self, api: TestClient, mock_client: MagicMock):
        mock_client.generate.side_effect = QuotaExceeded("You exceeded your current quota")

        resp = api.post("/api/v1/extract", files={"file": PDF}, data={"options": NO_DETECTION})

        assert resp.status_code == 429
        assert resp.json() == {
            "error": "quota_exceeded",
            "detail": "You exceeded your current quota",
            "retryable": True,
        }


class TestDocumentEndpoints:
    def test_extract_persist_and_read(self, api: TestClient, mock_client: MagicMock, invoice_reply: str):
        mock_client.generate.return_value = invoice_reply

        resp = api.post(
            "/api/v1/documents/doc-1/extract",
            files={"file": PDF},
            data={"options": NO_DETECTION},
        )
        assert resp.status_code == 200

        stored = api.get("/api/v1/documents/doc-1/result")
        assert stored.status_code == 200
        assert stored.json() == resp.json()

    def test_result_not_found(self, api: TestClient):
        resp = api.get("/api/v1/documents/missing/result")
        assert resp.status_code == 404
        assert resp.json()["error"] == "result_not_found"

    def test_busy_document(self, api: TestClient, store: ResultStore, mock_client: MagicMock):
        with store.claim("doc-1"):
            resp = api.post("/api/v1/documents/doc-1/extract", files={"file": PDF})

        assert resp.status_code == 409
        assert resp.json()["retryable"] is True
        mock_client.generate.assert_not_called()

    def test_update_replaces_data(self, api: TestClient, store: ResultStore, sample_result):
        store.save("doc-1", sample_result)

        resp = api.put(
            "/api/v1/documents/doc-1/result",
            json={"data": {"total": {"value": "250.00", "confidence": 1.0}}},
        )

        assert resp.status_code == 200
        assert resp.json()["data"] == {"total": {"value": "250.00", "confidence": 1.0}}
        assert resp.json()["metadata"]["documentType"] == "Invoice"
        assert api.get("/api/v1/documents/doc-1/result").json() == resp.json()

    def test_update_rejects_bare_field(self, api: TestClient, store: ResultStore, sample_result):
        store.save("doc-1", sample_result)
        resp = api.put("/api/v1/documents/doc-1/result", json={"data": {"value": "x"}})
        assert resp.status_code == 400

    def test_update_missing_result(self, api: TestClient):
        resp = api.put("/api/v1/documents/doc-1/result", json={"data": {"total": {"value": 1}}})
        assert resp.status_code == 404


class TestExportEndpoint:
    def test_csv_export(self, api: TestClient, store: ResultStore, sample_result):
        store.save("doc-1", sample_result)

        resp = api.get("/api/v1/documents/doc-1/export", params={"format": "csv"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "attachment" in resp.headers["content-disposition"]
        lines = resp.text.splitlines()
        assert lines[0] == "Field,Value,Confidence"
        assert lines[1] == "Invoice Number,INV-2024,0.97"

    def test_json_export_with_threshold(self, api: TestClient, store: ResultStore, sample_result):
        store.save("doc-1", sample_result)

        resp = api.get("/api/v1/documents/doc-1/export", params={"min_confidence": 0.9})

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert "city" not in data["sender_address"]
        assert len(data["line_items"]) == 1

    def test_invalid_threshold(self, api: TestClient, store: ResultStore, sample_result):
        store.save("doc-1", sample_result)
        resp = api.get("/api/v1/documents/doc-1/export", params={"min_confidence": 2})
        assert resp.status_code == 422

    def test_export_missing(self, api: TestClient):
        assert api.get("/api/v1/documents/doc-1/export").status_code == 404


class TestHealth:
    def test_with_model(self, api: TestClient, mock_client: MagicMock):
        mock_client.health.return_value = {"status": "ready", "model_id": "test-model"}

        body = api.get("/health").json()

        assert body["status"] == "healthy"
        assert body["model_configured"] is True
        assert body["model_health"]["status"] == "ready"

    def test_without_model(self, store: ResultStore, monkeypatch):
        monkeypatch.setattr(main, "_model_client", None)
        body = TestClient(main.app).get("/health").json()
        assert body["model_configured"] is False
        assert "model_health" not in body


class TestSchemaEndpoint:
    def test_schema_generated(self, api: TestClient, mock_client: MagicMock):
        schema = {"type": "object", "properties": {"total": {"type": "number"}}, "required": ["total"]}
        mock_client.generate.return_value = json.dumps(schema)

        resp = api.post("/api/v1/schema", json={"description": "Receipt total"})

        assert resp.status_code == 200
        assert resp.json() == {"schema": schema}

    def test_unparseable_schema_reply(self, api: TestClient, mock_client: MagicMock):
        mock_client.generate.return_value = "No schema today."
        resp = api.post("/api/v1/schema", json={"description": "Receipt total"})
        assert resp.status_code == 422
        assert resp.json()["preview"] == "No schema today."

    def test_empty_description(self, api: TestClient):
        assert api.post("/api/v1/schema", json={"description": ""}).status_code == 400

    def test_no_model_configured(self, store: ResultStore, monkeypatch):
        monkeypatch.setattr(main, "_model_client", None)
        resp = TestClient(main.app).post("/api/v1/schema", json={"description": "Receipt total"})
        assert resp.status_code == 503
