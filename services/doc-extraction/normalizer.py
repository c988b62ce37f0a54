"""Structure normalization for repaired model replies.

Repeating data (line items, products, rows) must come out as an array of
record objects. Models sometimes collapse such a group into one delimited
string; ``normalize_tree`` splits those strings back into records using a
chain of fallback heuristics configured by ``SplitPolicy``.

Fields of a record that is an element of a repeating-group array are record
attributes and are never split again, which keeps the normalizer idempotent.
Objects inside any other array are recursed into like the rest of the tree.
"""

import logging
import re
from dataclasses import dataclass

from models import ExtractedField, ExtractedNode, RecordArray, RecordObject

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SplitPolicy:
    """Tunable constants for repeating-group detection and string splitting."""

    # Substrings of a key that mark it as a repeating group
    indicators: tuple[str, ...] = ("item", "product", "detail", "line", "row", "entr", "list")

    # Step a: comma (outside parentheses), semicolon or newline
    primary_separators: re.Pattern = re.compile(r",(?![^(]*\))|;|\n")

    # Step b only runs for single-segment strings longer than this
    aggressive_min_length: int = 30
    # "digits, separator, capital letter", e.g. "123456 - WIDGET"
    code_marker: re.Pattern = re.compile(r"\d+[\s-]+[A-Z]")
    fallback_separators: re.Pattern = re.compile(r"[,;]|\s+(?=\d+\s*[-:])")

    # Step c: <code><separator><description>; the second form needs a digit in the code
    segment_patterns: tuple[re.Pattern, ...] = (
        re.compile(r"^(\d+)[\s-]+(.+)$"),
        re.compile(r"^(?=[A-Z0-9]*\d)([A-Z0-9]+)[\s:-]+(.+)$", re.IGNORECASE),
    )
    split_confidence_factor: float = 0.95

    # Upper bound for the confidence of a "requested but not found" field
    missing_confidence_cap: float = 0.1

    def is_repeating_key(self, key: str) -> bool:
        lowered = key.lower()
        return any(indicator in lowered for indicator in self.indicators)


DEFAULT_SPLIT_POLICY = SplitPolicy()


def normalize_tree(tree: RecordObject, policy: SplitPolicy = DEFAULT_SPLIT_POLICY) -> RecordObject:
    """Return a copy of ``tree`` where repeating groups are arrays of records."""
    return _normalize_object(tree, policy, in_record=False)


def _normalize_object(obj: RecordObject, policy: SplitPolicy, in_record: bool) -> RecordObject:
    fields: dict[str, ExtractedNode] = {}
    for key, child in obj.fields.items():
        repeating = policy.is_repeating_key(key)
        if isinstance(child, ExtractedField):
            if repeating and not in_record and isinstance(child.value, str):
                logger.debug("Splitting string-valued repeating group %r", key)
                fields[key] = split_field(child, policy)
            else:
                fields[key] = child
        elif isinstance(child, RecordArray):
            fields[key] = _normalize_array(child, policy, repeating, in_record)
        else:
            fields[key] = _normalize_object(child, policy, in_record)
    return RecordObject(fields=fields)


def _normalize_array(
    arr: RecordArray, policy: SplitPolicy, repeating: bool, in_record: bool
) -> RecordArray:
    items: list[ExtractedNode] = []
    for element in arr.items:
        if isinstance(element, RecordObject):
            items.append(_normalize_object(element, policy, in_record=in_record or repeating))
            continue
        if isinstance(element, RecordArray):
            element = _normalize_array(element, policy, repeating, in_record)
        if repeating:
            # Bare values in a repeating group become single-item records
            items.append(RecordObject(fields={"item": element}))
        else:
            items.append(element)
    return RecordArray(items=items)


def split_field(field: ExtractedField, policy: SplitPolicy = DEFAULT_SPLIT_POLICY) -> RecordArray:
    """Replace a delimited string field with an array of records."""
    segments = split_segments(str(field.value), policy)
    records = [_build_record(segment, field.confidence, policy) for segment in segments]
    return RecordArray(items=records)


def split_segments(text: str, policy: SplitPolicy = DEFAULT_SPLIT_POLICY) -> list[str]:
    segments = _clean(policy.primary_separators.split(text))
    if len(segments) > 1 or len(text) <= policy.aggressive_min_length:
        return segments

    markers = list(policy.code_marker.finditer(text))
    if len(markers) >= 2:
        bounds = [0] + [m.start() for m in markers[1:]] + [len(text)]
        return _clean(text[start:end] for start, end in zip(bounds, bounds[1:]))

    return _clean(policy.fallback_separators.split(text))


def _build_record(segment: str, confidence: float | None, policy: SplitPolicy) -> RecordObject:
    for pattern in policy.segment_patterns:
        match = pattern.match(segment)
        if match:
            scaled = None if confidence is None else confidence * policy.split_confidence_factor
            return RecordObject(fields={
                "product_code": ExtractedField(value=match.group(1).strip(), confidence=scaled),
                "description": ExtractedField(value=match.group(2).strip(), confidence=scaled),
            })

    # Ambiguous segment: keep it whole rather than guess at a split
    logger.debug("No code/description pattern matched segment %r", segment)
    return RecordObject(fields={"item": ExtractedField(value=segment, confidence=confidence)})


def _clean(parts) -> list[str]:
    return [part.strip() for part in parts if part and part.strip()]


def apply_missing_field_policy(
    tree: RecordObject,
    include_confidence: bool = True,
    policy: SplitPolicy = DEFAULT_SPLIT_POLICY,
) -> RecordObject:
    """Cap the confidence of every ``value: null`` field.

    With confidence reporting enabled, a null field without a score gets the
    cap as its score.
    """
    return _cap_missing(tree, include_confidence, policy.missing_confidence_cap)


def _cap_missing(node: ExtractedNode, include_confidence: bool, cap: float) -> ExtractedNode:
    if isinstance(node, ExtractedField):
        if node.value is not None:
            return node
        if node.confidence is None:
            return node.model_copy(update={"confidence": cap}) if include_confidence else node
        if node.confidence > cap:
            return node.model_copy(update={"confidence": cap})
        return node
    if isinstance(node, RecordArray):
        return RecordArray(items=[_cap_missing(item, include_confidence, cap) for item in node.items])
    return RecordObject(fields={
        key: _cap_missing(child, include_confidence, cap) for key, child in node.fields.items()
    })
