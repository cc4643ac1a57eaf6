"""
Result-list shaping: de-duplication and token-budget enforcement.

Both preserve the order they are given. Dedup keeps first-seen order so the
diversifier sees a stable input; budget enforcement only ever truncates.
"""

from lorekit.core.tokens import count_item_tokens
from lorekit.types import SearchResult

# Admit up to 10% over budget so one item straddling the line isn't lost
BUDGET_OVERFLOW_TOLERANCE = 1.10


def deduplicate_results(results: list[SearchResult]) -> list[SearchResult]:
    """One entry per item id, keeping the highest-similarity occurrence.

    Output order is the order each id was first seen.
    """
    best_by_id: dict[str, SearchResult] = {}
    for result in results:
        existing = best_by_id.get(result.item.id)
        if existing is None or result.similarity > existing.similarity:
            # dict keeps the first insertion position on overwrite
            best_by_id[result.item.id] = result
    return list(best_by_id.values())


def enforce_token_budget(
    results: list[SearchResult],
    budget: int,
) -> tuple[list[SearchResult], bool]:
    """
    Keep the longest prefix of `results` whose cumulative estimated token
    cost fits within budget * 1.10.

    Returns (kept, enforced). enforced is True when anything was dropped.
    Walking stops at the first item that does not fit; nothing after it is
    considered.
    """
    if not results:
        return [], False

    ceiling = budget * BUDGET_OVERFLOW_TOLERANCE
    kept: list[SearchResult] = []
    total = 0

    for result in results:
        cost = count_item_tokens(result.item)
        if budget <= 0 or total + cost > ceiling:
            return kept, True
        kept.append(result)
        total += cost

    return kept, False
