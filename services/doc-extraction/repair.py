"""Recover a data tree from a generative model reply.

Handles: direct JSON, markdown fences, ``<think>`` blocks, prose around a
JSON object and, as a last resort, "key: value" prose lines.
"""

import json
import logging
import re

from errors import ParseFailure, make_preview
from models import ExtractedField, RecordObject, node_from_wire

logger = logging.getLogger(__name__)

# Confidence assigned to values recovered from non-JSON text
RECOVERY_CONFIDENCE = 0.8

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)
_LEADING_FENCE = re.compile(r"^```(?:json|JSON)?[ \t]*\n?")
_TRAILING_FENCE = re.compile(r"\n?```\s*$")
_WIRE_VALUE_KEY = re.compile(r"\"value\"\s*:")

# A comma/semicolon followed by something that looks like the next "label:"
_PAIR_BOUNDARY = re.compile(r"[,;]\s*(?=[\"']?[A-Za-z][\w .\-/]{0,40}[\"']?\s*:)")
_KEY_STRIP = "{}\"'*-•# \t"
_VALUE_STRIP = "{}\"', \t"


def strip_fences(raw: str) -> str:
    """Remove reasoning blocks, code fences and surrounding whitespace."""
    cleaned = _THINK_BLOCK.sub("", raw or "").strip()
    cleaned = _LEADING_FENCE.sub("", cleaned)
    cleaned = _TRAILING_FENCE.sub("", cleaned)
    return cleaned.strip()


def repair_response(raw: str) -> RecordObject:
    """Turn a model reply into a (not yet normalized) tree.

    Raises ParseFailure when no structure at all can be recovered.
    """
    cleaned = strip_fences(raw)
    if not cleaned:
        raise ParseFailure("Model returned an empty response", raw="")

    parsed = find_json_object(cleaned)
    if parsed is not None:
        return _to_tree(parsed)

    if cleaned.startswith("{") and _WIRE_VALUE_KEY.search(cleaned):
        # Unparseable wire-format JSON is never treated as prose
        logger.warning("Model response looks like truncated JSON: %s", make_preview(raw))
        raise ParseFailure("Response is incomplete JSON (output may have been truncated)", raw=raw)

    logger.info("No parseable JSON object, falling back to line recovery")
    tree = recover_lines(cleaned)
    if not tree.fields:
        logger.warning("Could not recover any fields from model response: %s", make_preview(raw))
        raise ParseFailure("Response is not valid JSON and line recovery found no fields", raw=raw)

    logger.info("Recovered %d fields from non-JSON response", len(tree.fields))
    return tree


def find_json_object(cleaned: str) -> dict | None:
    """Parse ``cleaned`` as a JSON object, or the ``{...}`` span inside surrounding prose."""
    if cleaned.startswith("{"):
        parsed = load_json_object(cleaned)
        if parsed is not None:
            return parsed

    embedded = _embedded_object(cleaned)
    if embedded is not None and embedded != cleaned:
        parsed = load_json_object(embedded)
        if parsed is not None:
            logger.info("Parsed JSON object embedded in surrounding text")
            return parsed
    return None


def recover_lines(text: str) -> RecordObject:
    """Build fields from "key: value" lines, each with the low recovery confidence."""
    fields: dict = {}
    for line in text.splitlines():
        for segment in _PAIR_BOUNDARY.split(line):
            colon = segment.find(":")
            if colon <= 0:
                continue
            key = _normalize_key(segment[:colon])
            value = segment[colon + 1:].strip().strip(_VALUE_STRIP)
            if not key or not value:
                continue
            fields[key] = ExtractedField(value=value, confidence=RECOVERY_CONFIDENCE)
    return RecordObject(fields=fields)


def _normalize_key(text: str) -> str:
    return re.sub(r"\s+", "_", text.strip().strip(_KEY_STRIP).lower())


def load_json_object(text: str) -> dict | None:
    """Strict parse; None unless ``text`` is a single JSON object."""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug("JSON decode error: %s", e)
        return None
    return parsed if isinstance(parsed, dict) else None


def _to_tree(parsed: dict) -> RecordObject:
    tree = node_from_wire(parsed)
    if isinstance(tree, RecordObject):
        return tree
    # The whole reply was a single {"value": ...} leaf
    return RecordObject(fields={"value": tree})


def _embedded_object(text: str) -> str | None:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]
