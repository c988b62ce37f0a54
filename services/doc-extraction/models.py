"""Pydantic models for extracted data trees, extraction options and metadata.

An extracted tree is an explicit tagged variant: ``ExtractedField`` (leaf),
``RecordArray`` or ``RecordObject``. The JSON shape the model emits and the
persisted shape both use the untagged "wire" form, converted with
``node_from_wire`` / ``node_to_wire``.
"""

import logging
import math
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from config import settings

logger = logging.getLogger(__name__)


class Position(BaseModel):
    """Location of a field on a page, bounding box in percent of page size."""

    model_config = ConfigDict(frozen=True)

    page_number: int = Field(ge=1)
    bounding_box: tuple[float, float, float, float]

    @model_validator(mode="after")
    def _check_box(self) -> "Position":
        x1, y1, x2, y2 = self.bounding_box
        if not (x1 < x2 and y1 < y2):
            raise ValueError("bounding_box must satisfy x1 < x2 and y1 < y2")
        return self


class ExtractedField(BaseModel):
    """Leaf value. ``value=None`` means requested but not found."""

    kind: Literal["field"] = "field"
    value: str | int | float | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    position: Position | None = None


class RecordArray(BaseModel):
    kind: Literal["array"] = "array"
    items: list["ExtractedNode"] = Field(default_factory=list)


class RecordObject(BaseModel):
    kind: Literal["object"] = "object"
    fields: dict[str, "ExtractedNode"] = Field(default_factory=dict)


ExtractedNode = Annotated[
    Union[ExtractedField, RecordArray, RecordObject],
    Field(discriminator="kind"),
]

RecordArray.model_rebuild()
RecordObject.model_rebuild()


# --- Wire format conversion ---


def node_from_wire(raw: Any) -> ExtractedNode:
    """Convert untagged JSON data into a tagged tree.

    A dict with a scalar ``value`` key is a field; any other dict is an
    object; a list is an array; a bare scalar becomes a field without
    confidence.
    """
    if isinstance(raw, dict):
        if "value" in raw and not isinstance(raw["value"], (dict, list)):
            return ExtractedField(
                value=_coerce_scalar(raw["value"]),
                confidence=_coerce_confidence(raw.get("confidence")),
                position=_coerce_position(raw.get("position")),
            )
        return RecordObject(fields={str(k): node_from_wire(v) for k, v in raw.items()})
    if isinstance(raw, list):
        return RecordArray(items=[node_from_wire(v) for v in raw])
    return ExtractedField(value=_coerce_scalar(raw))


def node_to_wire(node: ExtractedNode) -> Any:
    """Convert a tagged tree back into plain JSON-compatible data."""
    if isinstance(node, ExtractedField):
        out: dict[str, Any] = {"value": node.value}
        if node.confidence is not None:
            out["confidence"] = node.confidence
        if node.position is not None:
            out["position"] = {
                "page_number": node.position.page_number,
                "bounding_box": list(node.position.bounding_box),
            }
        return out
    if isinstance(node, RecordArray):
        return [node_to_wire(item) for item in node.items]
    return {key: node_to_wire(child) for key, child in node.fields.items()}


def _coerce_scalar(value: Any) -> str | int | float | None:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    return str(value)


def _coerce_confidence(value: Any) -> float | None:
    """Read a confidence score; percentages are scaled, the rest clamped to [0, 1]."""
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric confidence: %r", value)
        return None
    if not math.isfinite(score):
        return None
    if 1.0 < score <= 100.0:
        score = score / 100.0
    return min(max(score, 0.0), 1.0)


def _coerce_position(value: Any) -> Position | None:
    if not isinstance(value, dict):
        return None
    page = value.get("page_number", value.get("pageNumber"))
    box = value.get("bounding_box", value.get("boundingBox"))
    try:
        return Position(page_number=page, bounding_box=box)
    except (ValidationError, TypeError, ValueError) as e:
        logger.warning("Dropping malformed position %r: %s", value, e)
        return None


# --- Options, metadata and persisted result ---


class CamelModel(BaseModel):
    """Serializes with camelCase keys, accepts either camelCase or snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExtractionOptions(CamelModel):
    model_config = ConfigDict(frozen=True)

    include_confidence: bool = Field(default_factory=lambda: settings.DEFAULT_INCLUDE_CONFIDENCE)
    include_positions: bool = Field(default_factory=lambda: settings.DEFAULT_INCLUDE_POSITIONS)
    detect_document_type: bool = Field(default_factory=lambda: settings.DEFAULT_DETECT_DOCUMENT_TYPE)
    temperature: float = Field(default_factory=lambda: settings.DEFAULT_TEMPERATURE, ge=0.0, le=2.0)


class ExtractionMetadata(CamelModel):
    """Provenance of one extraction run. Created once, never mutated."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    model_id: str
    document_type: str | None = None
    prompt_used: str
    instruction: str = ""
    processing_time_ms: int = Field(ge=0)
    options: ExtractionOptions


class ExtractionResult(CamelModel):
    """Data tree plus metadata, persisted and returned as one JSON document."""

    data: RecordObject
    metadata: ExtractionMetadata

    @field_validator("data", mode="before")
    @classmethod
    def _data_from_wire(cls, value: Any) -> Any:
        if isinstance(value, dict):
            node = node_from_wire(value)
            if not isinstance(node, RecordObject):
                raise ValueError("data must be a JSON object of fields")
            return node
        return value

    @field_serializer("data")
    def _data_to_wire(self, data: RecordObject) -> Any:
        return node_to_wire(data)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    def with_data(self, data: RecordObject) -> "ExtractionResult":
        """Return a copy whose data tree is replaced wholesale."""
        return ExtractionResult(data=data, metadata=self.metadata)
