"""Approximate token accounting (1 token ~ 4 characters of English text)."""

import math
from typing import Iterable, Optional

from lorekit.types import Item, SearchResult

CHARS_PER_TOKEN = 4


def estimate_tokens(text: Optional[str]) -> int:
    """Estimate the token cost of a string. Empty or None costs 0."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _join(values: Optional[list[str]]) -> str:
    return " ".join(values) if values else ""


def count_item_tokens(item: Item) -> int:
    """Sum the estimated cost of every text field an item contributes to context."""
    return (
        estimate_tokens(item.summary)
        + estimate_tokens(item.content)
        + estimate_tokens(item.file_context)
        + estimate_tokens(item.decision_rationale)
        + estimate_tokens(_join(item.alternatives_considered))
        + estimate_tokens(_join(item.tags))
        + estimate_tokens(_join(item.related_issues))
    )


def count_total_tokens(results: Iterable[SearchResult]) -> int:
    return sum(count_item_tokens(r.item) for r in results)
