"""Drop top-level fields the model added without being asked.

Only applies when the user gave a specific instruction. Matching is lexical:
a key survives when it overlaps with a word of the instruction. The filter
never empties a non-empty result.
"""

import logging
import re

from models import RecordObject

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 4

ALWAYS_KEPT_KEYS = frozenset({"table"})
TABLE_KEYS = frozenset({"table", "items", "line_items"})
TABLE_MENTIONS = ("table", "items")

# Key fragment -> instruction words that stand for it, in both directions
SYNONYMS: tuple[tuple[str, str], ...] = (
    ("sender", "from"),
    ("recipient", "to"),
)


def instruction_words(instruction: str) -> list[str]:
    return re.findall(r"[a-z0-9]+", instruction.lower())


def instruction_tokens(instruction: str) -> set[str]:
    """Lower-cased instruction words longer than three characters."""
    return {word for word in instruction_words(instruction) if len(word) >= MIN_TOKEN_LENGTH}


def is_relevant(key: str, instruction: str) -> bool:
    lowered = key.lower()
    if lowered in ALWAYS_KEPT_KEYS:
        return True

    for token in instruction_tokens(instruction):
        if token in lowered or lowered in token:
            return True

    words = set(instruction_words(instruction))
    key_parts = set(re.split(r"[^a-z0-9]+", lowered))
    for left, right in SYNONYMS:
        if left in lowered and right in words:
            return True
        if right in key_parts and left in words:
            return True

    if lowered in TABLE_KEYS:
        mentioned = instruction.lower()
        if any(word in mentioned for word in TABLE_MENTIONS):
            return True

    return False


def filter_relevant(tree: RecordObject, instruction: str) -> RecordObject:
    """Keep the top-level keys related to ``instruction``."""
    if not instruction or not instruction.strip():
        return tree

    kept = {key: node for key, node in tree.fields.items() if is_relevant(key, instruction)}
    if not kept and tree.fields:
        logger.info("Relevance filter matched no keys, keeping all %d", len(tree.fields))
        return tree

    dropped = [key for key in tree.fields if key not in kept]
    if dropped:
        logger.info("Relevance filter dropped unrequested keys: %s", ", ".join(dropped))
    return RecordObject(fields=kept)
