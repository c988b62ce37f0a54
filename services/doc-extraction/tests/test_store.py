"""Tests for persisted extraction results."""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from errors import DocumentBusy, InvalidRequest, ResultNotFound
from models import ExtractedField, ExtractionResult
from store import RESULT_FILENAME, ResultStore


@pytest.fixture
def store(tmp_path: Path) -> ResultStore:
    return ResultStore(tmp_path)


class TestSaveAndGet:
    def test_round_trip(self, store: ResultStore, sample_result: ExtractionResult):
        store.save("doc-1", sample_result)
        assert store.get("doc-1") == sample_result

    def test_file_layout(self, store: ResultStore, tmp_path: Path, sample_result: ExtractionResult):
        store.save("doc-1", sample_result)
        document = json.loads((tmp_path / "doc-1" / RESULT_FILENAME).read_text())
        assert set(document) == {"data", "metadata"}
        assert document["data"]["invoice_number"] == {"value": "INV-2024", "confidence": 0.97}
        assert document["metadata"]["modelId"] == "test-model"
        assert document["metadata"]["documentType"] == "Invoice"

    def test_no_temp_files_left(self, store: ResultStore, tmp_path: Path, sample_result: ExtractionResult):
        store.save("doc-1", sample_result)
        store.save("doc-1", sample_result)
        assert [p.name for p in (tmp_path / "doc-1").iterdir()] == [RESULT_FILENAME]

    def test_missing_result(self, store: ResultStore):
        with pytest.raises(ResultNotFound):
            store.get("nope")

    @pytest.mark.parametrize("document_id", ["", "../etc", "a/b", "doc 1", "x" * 129])
    def test_invalid_document_id(self, store: ResultStore, document_id: str):
        with pytest.raises(InvalidRequest):
            store.get(document_id)


class TestReplaceData:
    def test_replaces_wholesale(self, store: ResultStore, sample_result: ExtractionResult):
        store.save("doc-1", sample_result)

        updated = store.replace_data("doc-1", {"total": {"value": "250.00", "confidence": 1.0}})

        assert updated.data.fields == {"total": ExtractedField(value="250.00", confidence=1.0)}
        assert updated.metadata == sample_result.metadata
        assert store.get("doc-1") == updated

    def test_missing_result(self, store: ResultStore):
        with pytest.raises(ResultNotFound):
            store.replace_data("doc-1", {"total": {"value": 1}})

    def test_rejects_non_object(self, store: ResultStore, sample_result: ExtractionResult):
        store.save("doc-1", sample_result)
        with pytest.raises(InvalidRequest):
            store.replace_data("doc-1", ["not", "an", "object"])

    def test_rejects_bare_field(self, store: ResultStore, sample_result: ExtractionResult):
        store.save("doc-1", sample_result)
        with pytest.raises(InvalidRequest):
            store.replace_data("doc-1", {"value": "x", "confidence": 0.5})
        assert store.get("doc-1") == sample_result


class TestClaim:
    def test_second_claim_is_busy(self, store: ResultStore):
        with store.claim("doc-1"):
            with pytest.raises(DocumentBusy):
                with store.claim("doc-1"):
                    pass

    def test_other_documents_not_blocked(self, store: ResultStore):
        with store.claim("doc-1"):
            with store.claim("doc-2"):
                pass

    def test_released_after_error(self, store: ResultStore):
        with pytest.raises(RuntimeError):
            with store.claim("doc-1"):
                raise RuntimeError("extraction failed")
        with store.claim("doc-1"):
            pass

    def test_invalid_id_rejected(self, store: ResultStore):
        with pytest.raises(InvalidRequest):
            with store.claim("../x"):
                pass

    def test_released_claims_leave_no_state(self, store: ResultStore):
        for index in range(50):
            with store.claim(f"doc-{index}"):
                assert f"doc-{index}" in store._active
        assert store._active == set()

    def test_busy_claim_keeps_holder_active(self, store: ResultStore):
        with store.claim("doc-1"):
            with pytest.raises(DocumentBusy):
                with store.claim("doc-1"):
                    pass
            assert store._active == {"doc-1"}
        assert store._active == set()
