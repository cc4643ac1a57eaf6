"""
Diversity metrics and round-robin interleaving.

Interleaving reorders a result list so that consecutive entries come from
different groups (category, project, or both). It never drops anything:
the output is always a permutation of the input, so a later budget cut
keeps a balanced head of the list.
"""

import logging
import math
from collections import Counter
from typing import Callable, Hashable

from lorekit.types import DiversifyStrategy, DiversityMetrics, SearchResult

logger = logging.getLogger(__name__)


def _normalized_entropy(counts: Counter, total: int) -> float:
    """Shannon entropy divided by its maximum, log(distinct keys). One key -> 0."""
    distinct = len(counts)
    if distinct <= 1:
        return 0.0
    entropy = 0.0
    for count in counts.values():
        p = count / total
        entropy -= p * math.log(p)
    return entropy / math.log(distinct)


def calculate_diversity_metrics(results: list[SearchResult]) -> DiversityMetrics:
    """
    Category/project distributions, dominance flags, and a diversity score.

    score is the mean of the normalized category and project entropies, in
    [0, 1]. A key dominates when it holds more than half of the results.
    """
    if not results:
        return DiversityMetrics()

    total = len(results)
    categories = Counter(r.item.category.value for r in results)
    projects = Counter(r.item.project for r in results)

    score = (
        _normalized_entropy(categories, total) + _normalized_entropy(projects, total)
    ) / 2

    return DiversityMetrics(
        score=score,
        category_distribution=dict(categories),
        project_distribution=dict(projects),
        category_dominance=max(categories.values()) > total * 0.5,
        project_dominance=max(projects.values()) > total * 0.5,
    )


_GROUP_KEYS: dict[DiversifyStrategy, Callable[[SearchResult], Hashable]] = {
    DiversifyStrategy.CATEGORY: lambda r: r.item.category,
    DiversifyStrategy.PROJECT: lambda r: r.item.project,
    DiversifyStrategy.BOTH: lambda r: (r.item.category, r.item.project),
}


def apply_diversification(
    results: list[SearchResult],
    strategy: DiversifyStrategy,
) -> list[SearchResult]:
    """
    Round-robin across groups: take one item from each non-exhausted group,
    in the order groups were first seen, until every group is empty.
    Order within a group is preserved.
    """
    strategy = DiversifyStrategy(strategy)
    if strategy is DiversifyStrategy.NONE or not results:
        return list(results)

    key_fn = _GROUP_KEYS[strategy]
    groups: dict[Hashable, list[SearchResult]] = {}
    for result in results:
        groups.setdefault(key_fn(result), []).append(result)

    queues = [iter(group) for group in groups.values()]
    diversified: list[SearchResult] = []
    rounds = 0

    while queues:
        still_open = []
        for queue in queues:
            nxt = next(queue, None)
            if nxt is not None:
                diversified.append(nxt)
                still_open.append(queue)
        queues = still_open

        rounds += 1
        if queues and rounds > len(results):
            logger.warning(
                "Diversification hit its round cap (%d); returning %d of %d items",
                len(results), len(diversified), len(results),
            )
            break

    return diversified
