"""File-backed store for persisted extraction results.

One JSON document (``{data, metadata}``) per document id. Results are
replaced wholesale, never merged. ``claim`` guarantees that at most one
extraction or update per document id is in flight in this process.
"""

import json
import logging
import os
import re
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from config import settings
from errors import DocumentBusy, InvalidRequest, ResultNotFound
from models import ExtractionResult, RecordObject, node_from_wire

logger = logging.getLogger(__name__)

RESULT_FILENAME = "extracted_data.json"

_DOCUMENT_ID = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class ResultStore:
    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.RESULTS_DIR)
        # Document ids with an extraction or update in flight
        self._active: set[str] = set()
        self._guard = threading.Lock()

    def _path(self, document_id: str) -> Path:
        if not _DOCUMENT_ID.match(document_id or ""):
            raise InvalidRequest(f"Invalid document id: {document_id!r}")
        return self._root / document_id / RESULT_FILENAME

    @contextmanager
    def claim(self, document_id: str) -> Iterator[None]:
        """Mark ``document_id`` as in flight; raise DocumentBusy if it already is."""
        self._path(document_id)
        with self._guard:
            if document_id in self._active:
                raise DocumentBusy(f"An extraction for document {document_id} is already running")
            self._active.add(document_id)
        try:
            yield
        finally:
            with self._guard:
                self._active.discard(document_id)

    def get(self, document_id: str) -> ExtractionResult:
        path = self._path(document_id)
        if not path.is_file():
            raise ResultNotFound(f"No extraction result for document {document_id}")
        return ExtractionResult.model_validate_json(path.read_text(encoding="utf-8"))

    def save(self, document_id: str, result: ExtractionResult) -> None:
        path = self._path(document_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        # Write to a temp file and rename so readers never see partial JSON
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(result.to_document(), fh, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Saved extraction result for document %s (%d fields)", document_id, len(result.data.fields))

    def replace_data(self, document_id: str, data: Any) -> ExtractionResult:
        """Replace the stored data tree wholesale, keeping the metadata."""
        if not isinstance(data, dict):
            raise InvalidRequest("data must be a JSON object")
        tree = node_from_wire(data)
        if not isinstance(tree, RecordObject):
            raise InvalidRequest("data must be a JSON object of fields")

        updated = self.get(document_id).with_data(tree)
        self.save(document_id, updated)
        return updated
