"""Flat views of an extracted tree: table rows, confidence filtering, CSV."""

import csv
import io
from dataclasses import dataclass

from models import ExtractedField, ExtractedNode, RecordArray, RecordObject

CSV_HEADER = ("Field", "Value", "Confidence")


@dataclass(frozen=True)
class FlatRow:
    field: str
    value: str | int | float | None
    confidence: float | None
    path: str
    page_number: int | None = None


def format_field_name(name: str) -> str:
    """``line_items`` -> ``Line Items``."""
    return " ".join(word[:1].upper() + word[1:] for word in name.replace("_", " ").split(" ") if word)


def flatten_tree(tree: RecordObject) -> list[FlatRow]:
    """One row per leaf field, in tree order."""
    rows: list[FlatRow] = []
    for key, child in tree.fields.items():
        _flatten(child, format_field_name(key), key, rows)
    return rows


def _flatten(node: ExtractedNode, label: str, path: str, rows: list[FlatRow]) -> None:
    if isinstance(node, ExtractedField):
        page = node.position.page_number if node.position else None
        rows.append(FlatRow(label, node.value, node.confidence, path, page))
    elif isinstance(node, RecordArray):
        for index, item in enumerate(node.items):
            _flatten(item, f"{label} [{index + 1}]", f"{path}[{index}]", rows)
    else:
        for key, child in node.fields.items():
            _flatten(child, f"{label} {format_field_name(key)}", f"{path}.{key}", rows)


def filter_by_confidence(tree: RecordObject, min_confidence: float) -> RecordObject:
    """Drop fields scored below ``min_confidence``; unscored fields are kept.

    Containers left empty by the filter are dropped as well.
    """
    if min_confidence <= 0:
        return tree
    filtered = _filter(tree, min_confidence)
    return filtered if isinstance(filtered, RecordObject) else RecordObject()


def _filter(node: ExtractedNode, threshold: float) -> ExtractedNode | None:
    if isinstance(node, ExtractedField):
        if node.confidence is not None and node.confidence < threshold:
            return None
        return node
    if isinstance(node, RecordArray):
        items = [kept for kept in (_filter(item, threshold) for item in node.items) if kept is not None]
        return RecordArray(items=items) if items or not node.items else None
    fields = {}
    for key, child in node.fields.items():
        kept = _filter(child, threshold)
        if kept is not None:
            fields[key] = kept
    return RecordObject(fields=fields) if fields or not node.fields else None


def rows_to_csv(rows: list[FlatRow]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for row in rows:
        value = "" if row.value is None else row.value
        confidence = "" if row.confidence is None else row.confidence
        writer.writerow((row.field, value, confidence))
    return buf.getvalue()
