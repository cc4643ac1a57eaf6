"""
lorekit Tiered Retrieval

Four-tier pipeline for assembling a bounded, ranked context slice:

Tier 1: Project fingerprint - aggregate counts plus recent wins, query-independent
Tier 2: Semantic search - cosine top-K over stored embeddings, recency fallback
Tier 3: Usage-boosted search - Tier 2 re-scored by access frequency/recency
Tier 4: Orchestration - dedup, diversify, budget-cap, track usage
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from lorekit.config import LorekitConfig
from lorekit.core.capping import deduplicate_results, enforce_token_budget
from lorekit.core.diversity import apply_diversification, calculate_diversity_metrics
from lorekit.core.embeddings import prepare_query_for_embedding
from lorekit.core.similarity import find_top_k
from lorekit.core.tokens import count_item_tokens, count_total_tokens, estimate_tokens
from lorekit.core.usage import boost_result
from lorekit.protocols import EmbedProvider, ItemStore
from lorekit.types import (
    Category,
    RetrievalOptions,
    SearchResult,
    SearchTier,
    Tier1Context,
    Tier2Results,
    Tier3Results,
    TieredRetrievalResult,
)

logger = logging.getLogger(__name__)


class TieredRetriever:
    """
    Runs the tiered retrieval pipeline against an item store.

    All collaborators are injected: the store, the embedding provider, and
    optionally a background worker that receives usage-tracking jobs. Without
    a worker, retrieval still works but access counts are never updated.
    """

    def __init__(
        self,
        store: ItemStore,
        embed: EmbedProvider,
        config: LorekitConfig,
        worker=None,
    ):
        self.store = store
        self.embed = embed
        self.config = config
        self.worker = worker

    # ========================================================================
    # TIER 1: FINGERPRINT
    # ========================================================================

    def get_tier1_context(self, project: Optional[str] = None) -> Tier1Context:
        """Always-on project overview. An empty store yields zero counts, not an error."""
        fingerprint = self.store.get_aggregate_fingerprint(project, top_n=self.config.fingerprint_top_n)
        recent_wins = self.store.get_recent_high_value_items(
            project, limit=self.config.recent_wins_limit
        )

        token_count = (
            estimate_tokens(json.dumps(fingerprint.to_dict(), default=str))
            + sum(count_item_tokens(win) for win in recent_wins)
        )
        return Tier1Context(fingerprint=fingerprint, recent_wins=recent_wins, token_count=token_count)

    # ========================================================================
    # TIER 2: SEMANTIC SEARCH
    # ========================================================================

    def get_tier2_results(
        self,
        query: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        project: Optional[str] = None,
        category: Optional[Category] = None,
        tags: Optional[list[str]] = None,
    ) -> Tier2Results:
        """
        Vector similarity search with optional tag filtering.

        Never raises for provider or store trouble: an empty query, an
        embedding failure, a store failure, or a store with no embedded items
        all degrade to the recency fallback.
        """
        limit = limit if limit is not None else self.config.search_limit
        threshold = threshold if threshold is not None else self.config.search_threshold

        if not query or not query.strip():
            return self._tier2_fallback(project, category, limit)

        try:
            query_vector = self.embed.embed_query(prepare_query_for_embedding(query))
            candidates = self.store.get_items_with_vectors(project, category)
        except Exception:
            logger.warning("Semantic search unavailable, falling back to recent items", exc_info=True)
            return self._tier2_fallback(project, category, limit)

        if not candidates:
            logger.info("No embedded items to search, falling back to recent items")
            return self._tier2_fallback(project, category, limit)

        results = find_top_k(query_vector, candidates, limit, threshold)

        if tags:
            wanted = set(tags)
            results = [r for r in results if r.item.tags and wanted.intersection(r.item.tags)]

        return Tier2Results(results=results, token_count=count_total_tokens(results))

    def _tier2_fallback(
        self,
        project: Optional[str],
        category: Optional[Category],
        limit: int,
    ) -> Tier2Results:
        """Most recent items, newest first, marked unranked with similarity 1.0."""
        items = self.store.get_recent_items(project, category, limit)
        results = [SearchResult(item=item, similarity=1.0, unranked=True) for item in items[:limit]]
        return Tier2Results(results=results, token_count=count_total_tokens(results))

    # ========================================================================
    # TIER 3: USAGE-BOOSTED SEARCH
    # ========================================================================

    def get_tier3_results(
        self,
        query: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        project: Optional[str] = None,
        category: Optional[Category] = None,
        tags: Optional[list[str]] = None,
        boost_factor: Optional[float] = None,
        time_decay_days: Optional[float] = None,
        min_access_count: Optional[int] = None,
    ) -> Tier3Results:
        """Tier 2 results re-scored by usage and re-sorted by boosted similarity."""
        config = self.config
        boost_factor = config.boost_factor if boost_factor is None else boost_factor
        time_decay_days = config.time_decay_days if time_decay_days is None else time_decay_days
        min_access_count = config.min_access_count if min_access_count is None else min_access_count

        tier2 = self.get_tier2_results(
            query, limit=limit, threshold=threshold, project=project, category=category, tags=tags,
        )

        now = datetime.now(timezone.utc)
        boosted = []
        for result in tier2.results:
            # Re-read for current usage counters; the candidate copy may be stale
            current = self.store.get_item_by_id(result.item.id)
            boosted.append(boost_result(
                result,
                current,
                boost_factor=boost_factor,
                time_decay_days=time_decay_days,
                min_access_count=min_access_count,
                now=now,
            ))

        # Stable sort: ties keep Tier 2 order
        boosted.sort(key=lambda r: r.boosted_similarity, reverse=True)
        return Tier3Results(results=boosted, token_count=count_total_tokens(boosted))

    # ========================================================================
    # TIER 4: ORCHESTRATION
    # ========================================================================

    def retrieve(self, query: str, options: Optional[RetrievalOptions] = None) -> TieredRetrievalResult:
        """
        Run the enabled tiers and shape the candidates into the final result.

        Pipeline:
        1. Tier 1 (if enabled), independent of the query
        2. Tier 3 if enabled, else Tier 2 if enabled - never both
        3. Deduplicate by item id
        4. Diversify (round-robin by category/project)
        5. Enforce the token budget (prefix cut)
        6. Queue usage tracking for the surviving items
        7. Diversity metrics and token total for the final list
        """
        if options is None:
            options = RetrievalOptions(
                token_budget=self.config.token_budget,
                diversify=self.config.diversify,
            )

        start = time.perf_counter()
        result = TieredRetrievalResult(
            final_results=[], total_tokens=0, budget_enforced=False, diversity_score=0.0,
        )
        candidates: list[SearchResult] = []

        if options.include_tier1:
            result.tier1 = self.get_tier1_context(options.project)

        search_tier = options.search_tier
        search_kwargs = dict(
            limit=self.config.pool_limit,
            threshold=self.config.pool_threshold,
            project=options.project,
            tags=options.tags,
        )
        if search_tier is SearchTier.USAGE_BOOSTED:
            result.tier3 = self.get_tier3_results(query, **search_kwargs)
            candidates.extend(result.tier3.results)
        elif search_tier is SearchTier.SEMANTIC:
            result.tier2 = self.get_tier2_results(query, **search_kwargs)
            candidates.extend(result.tier2.results)

        # Diversify before truncating so the budget cut keeps a balanced head
        deduplicated = deduplicate_results(candidates)
        diversified = apply_diversification(deduplicated, options.diversify)
        final_results, budget_enforced = enforce_token_budget(diversified, options.token_budget)

        self._track_usage([r.item.id for r in final_results])

        metrics = calculate_diversity_metrics(final_results)
        result.final_results = final_results
        result.budget_enforced = budget_enforced
        result.diversity_score = metrics.score
        result.total_tokens = count_total_tokens(final_results)

        logger.debug(
            "Tiered retrieval: %d candidates -> %d final (%d tokens, enforced=%s, diversity=%.2f) in %.1fms",
            len(candidates), len(final_results), result.total_tokens, budget_enforced,
            metrics.score, (time.perf_counter() - start) * 1000,
        )
        return result

    def _track_usage(self, item_ids: list[str]):
        """Hand usage tracking to the background worker. Never raises."""
        if not item_ids:
            return
        if self.worker is None:
            logger.debug("No background worker attached, skipping usage tracking")
            return
        try:
            if not self.worker.record_access(item_ids):
                logger.debug("Usage tracking job not queued for %d items", len(item_ids))
        except Exception:
            logger.warning("Failed to queue usage tracking", exc_info=True)
