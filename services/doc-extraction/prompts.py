"""Prompt construction for instruction-driven document extraction.

Pure string building: the extraction prompt quotes the user instruction (or a
general "extract everything" request) and appends the output rules the reply
parser relies on. An optional short classification prompt asks for the
document type.
"""

import re
from dataclasses import dataclass

from models import ExtractionOptions

GENERAL_REQUEST = (
    "Extract all key information and any repeating tabular data "
    "(line items, products, rows) found in the document."
)

DETECTION_PROMPT = """Analyze the content and layout of this document. What is its primary type?
Examples: Invoice, Receipt, Purchase Order, Packing Slip, Manifest, Contract, Resume, Business Card, Email, Report, Form.
Respond with ONLY the document type name."""

NOT_FOUND_CONFIDENCE = 0.1

_FIELD_EXAMPLE_CONFIDENCE = '"confidence": 0.95'
_FIELD_EXAMPLE_POSITION = '"position": {"page_number": 1, "bounding_box": [10.5, 20.3, 30.2, 25.1]}'

_LINE_ITEMS_EXAMPLE = """  "line_items": [
    {"product_code": {"value": "123456"%(conf)s}, "description": {"value": "PRODUCT NAME"%(conf)s}},
    {"product_code": {"value": "789012"%(conf)s}, "description": {"value": "ANOTHER PRODUCT"%(conf)s}}
  ]"""

_HIERARCHY_EXAMPLE = """  "sender_address": {
    "street": {"value": "123 Main St"%(conf)s},
    "city": {"value": "Anytown"%(conf)s}
  }"""


@dataclass(frozen=True)
class ExtractionPrompts:
    extraction: str
    detection: str | None = None


def build_prompts(
    instruction: str,
    options: ExtractionOptions,
    document_type: str | None = None,
) -> ExtractionPrompts:
    """Build the extraction prompt and, if enabled, the classification prompt."""
    detection = DETECTION_PROMPT if options.detect_document_type else None
    return ExtractionPrompts(
        extraction=build_extraction_prompt(instruction, options, document_type),
        detection=detection,
    )


def build_extraction_prompt(
    instruction: str,
    options: ExtractionOptions,
    document_type: str | None = None,
) -> str:
    request = (instruction or "").strip()
    type_hint = f" (likely a {document_type})" if document_type else ""

    if request:
        scope = (
            "Extract ONLY the data fields explicitly mentioned or implied by the "
            "USER'S REQUEST. Do NOT add fields that were not requested."
        )
    else:
        request = GENERAL_REQUEST
        scope = (
            "The request is general: identify and extract the key fields relevant "
            "to this type of document, and every repeating group of data."
        )

    conf = f", {_FIELD_EXAMPLE_CONFIDENCE}" if options.include_confidence else ""
    examples = "\n".join([
        "EXAMPLES:",
        "{",
        _LINE_ITEMS_EXAMPLE % {"conf": conf} + ",",
        _HIERARCHY_EXAMPLE % {"conf": conf},
        "}",
    ])

    return "\n\n".join([
        f"Analyze the following document{type_hint}.",
        "Your goal is to extract data based on the user's request and return it as JSON.",
        f'USER\'S REQUEST:\n"{request}"',
        f"SCOPE:\n{scope}",
        "OUTPUT RULES (follow strictly):\n" + format_rules(options),
        examples,
        "If the data has a natural hierarchy (for example an address with street and city), "
        "represent it with nested JSON objects.",
    ])


def format_rules(options: ExtractionOptions) -> str:
    """Return the normative output rules for the given options."""
    scalar_parts = ['"value": ...']
    if options.include_confidence:
        scalar_parts.append('"confidence": <number between 0 and 1>')
    if options.include_positions:
        scalar_parts.append(
            '"position": {"page_number": <int>, "bounding_box": [x1, y1, x2, y2]}'
        )
    scalar = "{ " + ", ".join(scalar_parts) + " }"

    not_found = '{ "value": null'
    if options.include_confidence:
        not_found += f', "confidence": {NOT_FOUND_CONFIDENCE}'
    not_found += " }"

    rules = [
        "- Respond with exactly one JSON object, no surrounding prose, no code fences.",
        f"- Every scalar field: {scalar}.",
        f"- Fields not found: {not_found}. Never omit a requested field.",
        "- Repeating data: array of objects, one object per record, never a delimited string.",
    ]
    if options.include_positions:
        rules.append(
            "- bounding_box values are percentages of the page width and height, "
            "with x1 < x2 and y1 < y2."
        )
    return "\n".join(rules)


def sanitize_document_type(text: str | None) -> str | None:
    """Clean a classifier reply down to a plain type name."""
    if not text:
        return None
    cleaned = re.sub(r"[^a-zA-Z0-9\s-]", "", text.strip())
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned or None


SCHEMA_PROMPT = """You write JSON Schemas that describe the data a user wants extracted from documents.

Rules:
- The top level is a single object schema with a "description" and no "title".
- Every object defines "properties" and lists all of them in "required".
- Each "type" is a single value, never an array of types.
- Do not use "$schema", "$defs", "$ref", "examples" or "default". Put examples or defaults in the "description" instead.
- Order properties so that supporting information comes before the values that depend on it.
- A short request gets a single object schema with the fields you would expect for it.
- A detailed request gets only the fields it mentions. Do not add others.
- Repeating data (line items, rows) is an array of objects.
- Respond with the schema JSON only.

Example request: Book with title, author, and publication year.
Example schema:
{
  "description": "A book and its publication details.",
  "type": "object",
  "properties": {
    "title": {"type": "string", "description": "The title of the book."},
    "author": {"type": "string", "description": "The author of the book."},
    "publicationYear": {"type": "integer", "description": "The year the book was published."}
  },
  "required": ["title", "author", "publicationYear"]
}

Request: %s"""


def build_schema_prompt(description: str) -> str:
    """Meta-prompt asking the model for a JSON Schema matching ``description``."""
    return SCHEMA_PROMPT % description.strip()
