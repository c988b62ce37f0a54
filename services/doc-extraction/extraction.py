"""Extraction orchestrator: build prompts, call the model, normalize the reply.

Prompt Builder -> model call -> Repairer -> Normalizer -> Relevance Filter.
The model client and logger are passed in; nothing here keeps state between
calls, so extractions for different documents can run concurrently.
"""

import logging
import mimetypes
import time
from datetime import datetime, timezone

from config import settings
from errors import (
    InvalidRequest,
    ModelTimeout,
    ModelUnavailable,
    ParseFailure,
    QuotaExceeded,
    RateLimited,
)
from model_client import ModelClient
from models import ExtractionMetadata, ExtractionOptions, ExtractionResult, RecordObject
from normalizer import DEFAULT_SPLIT_POLICY, SplitPolicy, apply_missing_field_policy, normalize_tree
from prompts import build_prompts, build_schema_prompt, sanitize_document_type
from relevance import filter_relevant
from repair import find_json_object, repair_response, strip_fences

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


def extract_document(
    document_bytes: bytes,
    mime_type: str,
    instruction: str,
    options: ExtractionOptions,
    client: ModelClient,
    log: logging.Logger | None = None,
) -> ExtractionResult:
    """Run the full pipeline for one document.

    Raises ParseFailure when the reply holds no recoverable structure and
    the model errors (ModelUnavailable, QuotaExceeded, RateLimited,
    ModelTimeout) when the extraction call fails.
    """
    log = log or logger
    if not document_bytes:
        raise InvalidRequest("Empty document")

    start = time.monotonic()
    instruction = (instruction or "").strip()

    document_type = None
    detection_prompt = build_prompts(instruction, options).detection
    if detection_prompt:
        document_type = detect_document_type(document_bytes, mime_type, detection_prompt, client, log)

    prompts = build_prompts(instruction, options, document_type)
    raw_text = client.generate(
        prompts.extraction,
        document_bytes,
        mime_type,
        temperature=options.temperature,
        max_output_tokens=settings.MAX_OUTPUT_TOKENS,
    )
    log.info("Model reply received (%d chars)", len(raw_text))

    data = process_reply(raw_text, instruction, options, log=log)
    elapsed_ms = int((time.monotonic() - start) * 1000)

    metadata = ExtractionMetadata(
        timestamp=datetime.now(timezone.utc),
        model_id=client.model_id,
        document_type=document_type,
        prompt_used=prompts.extraction,
        instruction=instruction,
        processing_time_ms=elapsed_ms,
        options=options,
    )
    log.info(
        "Extraction completed: type=%s fields=%d time=%dms",
        document_type or "unknown", len(data.fields), elapsed_ms,
    )
    return ExtractionResult(data=data, metadata=metadata)


def process_reply(
    raw_text: str,
    instruction: str,
    options: ExtractionOptions,
    policy: SplitPolicy = DEFAULT_SPLIT_POLICY,
    log: logging.Logger | None = None,
) -> RecordObject:
    """Turn raw model text into the final data tree (no model call)."""
    log = log or logger
    tree = repair_response(raw_text)
    tree = normalize_tree(tree, policy)
    tree = apply_missing_field_policy(tree, options.include_confidence, policy)
    filtered = filter_relevant(tree, instruction)
    log.debug("Reply processed: %d fields, %d after filtering", len(tree.fields), len(filtered.fields))
    return filtered


def detect_document_type(
    document_bytes: bytes,
    mime_type: str,
    prompt: str,
    client: ModelClient,
    log: logging.Logger | None = None,
) -> str | None:
    """Ask the model for the document type. Failures are logged, not raised."""
    log = log or logger
    try:
        reply = client.generate(
            prompt,
            document_bytes,
            mime_type,
            temperature=0.0,
            max_output_tokens=settings.DETECTION_MAX_OUTPUT_TOKENS,
            response_mime_type="text/plain",
        )
    except (ModelUnavailable, ModelTimeout, QuotaExceeded, RateLimited) as e:
        log.warning("Document type detection failed, continuing without it: %s", e)
        return None

    document_type = sanitize_document_type(reply)
    log.info("Detected document type: %s", document_type or "unknown")
    return document_type


def guess_mime_type(filename: str | None, declared: str | None = None) -> str:
    """Prefer the declared content type, else guess from the file name."""
    if declared and declared != DEFAULT_MIME_TYPE:
        return declared
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or DEFAULT_MIME_TYPE


def generate_schema(description: str, client: ModelClient, log: logging.Logger | None = None) -> dict:
    """Ask the model for a JSON Schema describing the data in ``description``.

    Raises InvalidRequest for an empty description, ParseFailure when the
    reply holds no JSON object, and the model errors when the call fails.
    """
    log = log or logger
    description = (description or "").strip()
    if not description:
        raise InvalidRequest("Schema description must not be empty")

    raw_text = client.generate(
        build_schema_prompt(description),
        temperature=settings.DEFAULT_TEMPERATURE,
        max_output_tokens=settings.MAX_OUTPUT_TOKENS,
    )
    schema = find_json_object(strip_fences(raw_text))
    if schema is None:
        log.warning("Schema reply held no JSON object (%d chars)", len(raw_text))
        raise ParseFailure("Model did not return a JSON schema", raw=raw_text)

    log.info("Generated schema with %d top-level properties", len(schema.get("properties") or {}))
    return schema
