"""FastAPI document extraction service.

Accepts a document plus a free-text instruction, asks the generative model
for the requested data and returns a normalized field tree with metadata.
Documents are processed in memory; only byte counts are logged.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastapi import FastAPI, File, Form, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError

from config import settings
from errors import ExtractionError, InvalidRequest, ModelUnavailable
from export import filter_by_confidence, flatten_tree, rows_to_csv
from extraction import extract_document, generate_schema, guess_mime_type
from model_client import GeminiClient
from models import ExtractionOptions, ExtractionResult, node_to_wire
from store import ResultStore

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_model_client: GeminiClient | None = None
_store = ResultStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the model client on startup if an API key is configured."""
    global _model_client

    if not settings.GEMINI_API_KEY:
        logger.info("GEMINI_API_KEY is empty, document extraction disabled")
    else:
        logger.info("Using model %s at %s", settings.GEMINI_MODEL_ID, settings.GEMINI_BASE_URL)
        _model_client = GeminiClient()

    yield

    if _model_client is not None:
        _model_client.close()


app = FastAPI(title="Document Extraction Service", version="1.0.0", lifespan=lifespan)


class SchemaRequest(BaseModel):
    description: str


class DataUpdate(BaseModel):
    data: dict[str, Any]


@app.exception_handler(ExtractionError)
async def extraction_error_handler(request: Request, exc: ExtractionError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_content())


def parse_options(options_json: str | None) -> ExtractionOptions:
    """Merge the submitted options JSON over the configured defaults."""
    if not options_json or not options_json.strip():
        return ExtractionOptions()
    try:
        return ExtractionOptions.model_validate_json(options_json)
    except ValidationError as e:
        raise InvalidRequest(f"Invalid extraction options: {e.errors(include_url=False)}") from e


async def _read_upload(file: UploadFile) -> tuple[bytes, str]:
    data = await file.read()
    if not data:
        raise InvalidRequest("Empty file uploaded")
    return data, guess_mime_type(file.filename, file.content_type)


def _require_client() -> GeminiClient:
    if _model_client is None:
        raise ModelUnavailable("Document extraction is not available - no model API key configured")
    return _model_client


@app.post("/api/v1/extract")
async def extract(
    file: UploadFile = File(...),
    instruction: str = Form(""),
    options: str | None = Form(None),
):
    """Extract structured fields from a document according to an instruction."""
    client = _require_client()
    extraction_options = parse_options(options)
    data, mime_type = await _read_upload(file)

    logger.info(
        "Processing extraction: mime=%s size=%d bytes instruction=%s",
        mime_type, len(data), "yes" if instruction.strip() else "general",
    )

    result = await run_in_threadpool(
        extract_document, data, mime_type, instruction, extraction_options, client,
    )
    return result.to_document()


@app.post("/api/v1/documents/{document_id}/extract")
async def extract_and_store(
    document_id: str,
    file: UploadFile = File(...),
    instruction: str = Form(""),
    options: str | None = Form(None),
):
    """Run an extraction and persist the result under ``document_id``."""
    client = _require_client()
    extraction_options = parse_options(options)
    data, mime_type = await _read_upload(file)

    def run() -> ExtractionResult:
        with _store.claim(document_id):
            result = extract_document(data, mime_type, instruction, extraction_options, client)
            _store.save(document_id, result)
            return result

    logger.info("Processing extraction for document %s: size=%d bytes", document_id, len(data))
    result = await run_in_threadpool(run)
    return result.to_document()


@app.get("/api/v1/documents/{document_id}/result")
async def get_result(document_id: str):
    result = await run_in_threadpool(_store.get, document_id)
    return result.to_document()


@app.put("/api/v1/documents/{document_id}/result")
async def update_result(document_id: str, update: DataUpdate):
    """Replace the stored data tree wholesale (no partial field updates)."""

    def run() -> ExtractionResult:
        with _store.claim(document_id):
            return _store.replace_data(document_id, update.data)

    result = await run_in_threadpool(run)
    logger.info("Replaced extraction data for document %s", document_id)
    return result.to_document()


@app.get("/api/v1/documents/{document_id}/export")
async def export_result(
    document_id: str,
    format: Literal["csv", "json"] = Query("json"),
    min_confidence: float = Query(0.0, ge=0.0, le=1.0),
):
    """Export the stored data, optionally without low-confidence fields."""
    result = await run_in_threadpool(_store.get, document_id)
    tree = filter_by_confidence(result.data, min_confidence)

    if format == "csv":
        return Response(
            content=rows_to_csv(flatten_tree(tree)),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="extracted_data.csv"'},
        )
    return {"data": node_to_wire(tree), "metadata": result.metadata.model_dump(mode="json", by_alias=True)}


@app.post("/api/v1/schema")
async def create_schema(request: SchemaRequest):
    """Generate a JSON Schema for the data described in plain language."""
    client = _require_client()
    schema = await run_in_threadpool(generate_schema, request.description, client)
    return {"schema": schema}


@app.get("/health")
async def health():
    """Return service status and model reachability."""
    base = {
        "status": "healthy",
        "model_configured": _model_client is not None,
        "model_id": settings.GEMINI_MODEL_ID,
    }

    if _model_client is not None:
        base["model_health"] = _model_client.health()

    return base


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
