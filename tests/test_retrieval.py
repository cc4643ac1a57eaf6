"""
Tests for the tiered retrieval pipeline: Tier 1 fingerprint, Tier 2 semantic
search and its recency fallback, Tier 3 usage boosting, and the Tier 4
orchestration (dedup, diversify, budget, usage tracking).

Uses a real SQLite store per test and a keyword-axis embedding provider so
similarities are predictable.
"""

import math

import pytest

import lorekit
from lorekit.config import LorekitConfig
from lorekit.core.db import connect, utc_now
from lorekit.core.retrieval import TieredRetriever
from lorekit.core.similarity import DimensionMismatchError
from lorekit.core.store import SQLiteItemStore
from lorekit.lifecycle.worker import BackgroundWorker
from lorekit.report import format_retrieval_report
from lorekit.types import Category, RetrievalOptions, UsageBoostedResult


# ============================================================================
# MOCK PROVIDERS
# ============================================================================

class KeywordEmbedProvider:
    """One axis per keyword; text with no keyword lands on the last axis."""

    KEYWORDS = ("websocket", "database", "deploy")

    def __init__(self):
        self.dims = len(self.KEYWORDS) + 1

    def embed(self, text: str) -> list[float]:
        lowered = text.lower()
        vec = [1.0 if kw in lowered else 0.0 for kw in self.KEYWORDS]
        vec.append(0.0 if any(vec) else 1.0)
        norm = math.sqrt(sum(x * x for x in vec))
        return [x / norm for x in vec]

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)


class BrokenEmbedProvider:
    def embed(self, text: str) -> list[float]:
        raise ConnectionError("embedding service down")

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)


class RecordingWorker:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def record_access(self, item_ids):
        if self.fail:
            raise RuntimeError("store closed")
        self.calls.append(list(item_ids))
        return True


# ============================================================================
# FIXTURES
# ============================================================================

def _unit(x, y=None):
    """4-d unit vector whose cosine with the 'websocket' axis is x."""
    rest = math.sqrt(max(1.0 - x * x, 0.0))
    return [x, rest, 0.0, 0.0] if y is None else [x, 0.0, y, 0.0]


@pytest.fixture
def config(tmp_path):
    return LorekitConfig(db_path=tmp_path / "knowledge.db", embed_dims=4)


@pytest.fixture
def store(config):
    return SQLiteItemStore(config.db_path)


@pytest.fixture
def retriever(store, config):
    return TieredRetriever(store=store, embed=KeywordEmbedProvider(), config=config)


def _add(store, summary, vector=None, category="solution", project="alpha", content="details", **kwargs):
    item = store.create_item(
        project=project,
        file_context="src/app.py",
        category=category,
        summary=summary,
        content=content,
        **kwargs,
    )
    if vector is not None:
        store.update_item_embedding(item.id, vector, "keyword")
    return item


def _set_usage(store, item_id, count):
    with connect(store.db_path) as db:
        db.execute(
            "UPDATE knowledge_items SET access_count = ?, last_accessed_at = ? WHERE id = ?",
            (count, utc_now(), item_id),
        )
        db.commit()


# ============================================================================
# 1. TIER 1
# ============================================================================

class TestTier1:
    def test_empty_store(self, retriever):
        tier1 = retriever.get_tier1_context()
        assert tier1.fingerprint.total_items == 0
        assert tier1.recent_wins == []
        assert tier1.token_count > 0

    def test_wins_and_tokens(self, retriever, store):
        _add(store, "Routine fix")
        win = _add(store, "Cut p99 latency by 40%", category="win")
        tier1 = retriever.get_tier1_context("alpha")
        assert [w.id for w in tier1.recent_wins] == [win.id]
        assert tier1.fingerprint.total_items == 2
        assert tier1.token_count > 0

    def test_fingerprint_size_from_config(self, store, config):
        config.fingerprint_top_n = 2
        retriever = TieredRetriever(store=store, embed=KeywordEmbedProvider(), config=config)
        for i in range(4):
            _add(store, f"note {i}")
        fingerprint = retriever.get_tier1_context().fingerprint
        assert len(fingerprint.recently_created) == 2
        assert len(fingerprint.most_accessed) == 2
        assert fingerprint.total_items == 4


# ============================================================================
# 2. TIER 2
# ============================================================================

class TestTier2:
    def test_empty_query_returns_recent_items(self, retriever, store):
        first = _add(store, "first")
        second = _add(store, "second")
        third = _add(store, "third")

        tier2 = retriever.get_tier2_results("")
        assert [r.item.id for r in tier2.results] == [third.id, second.id, first.id]
        assert all(r.similarity == 1.0 for r in tier2.results)
        assert all(r.unranked for r in tier2.results)

    def test_whitespace_query_is_empty(self, retriever, store):
        _add(store, "only")
        assert retriever.get_tier2_results("   ").results[0].unranked is True

    def test_fallback_respects_limit(self, retriever, store):
        for i in range(5):
            _add(store, f"item {i}")
        assert len(retriever.get_tier2_results("", limit=2).results) == 2

    def test_no_vectors_falls_back(self, retriever, store):
        item = _add(store, "never embedded")
        tier2 = retriever.get_tier2_results("websocket")
        assert [r.item.id for r in tier2.results] == [item.id]
        assert tier2.results[0].unranked is True

    def test_embed_failure_falls_back(self, store, config):
        _add(store, "websocket reconnect", vector=_unit(1.0))
        retriever = TieredRetriever(store=store, embed=BrokenEmbedProvider(), config=config)
        tier2 = retriever.get_tier2_results("websocket")
        assert len(tier2.results) == 1
        assert tier2.results[0].unranked is True

    def test_store_failure_falls_back(self, config):
        class ClosedVectorStore(SQLiteItemStore):
            def get_items_with_vectors(self, project=None, category=None):
                raise RuntimeError("store closed")

        store = ClosedVectorStore(config.db_path)
        item = _add(store, "websocket reconnect", vector=_unit(1.0))
        retriever = TieredRetriever(store=store, embed=KeywordEmbedProvider(), config=config)
        tier2 = retriever.get_tier2_results("websocket")
        assert [r.item.id for r in tier2.results] == [item.id]
        assert tier2.results[0].unranked is True
        assert tier2.results[0].similarity == 1.0

    def test_default_limit_and_threshold_from_config(self, store, config):
        config.search_limit = 2
        config.search_threshold = 0.75
        retriever = TieredRetriever(store=store, embed=KeywordEmbedProvider(), config=config)
        for sim in (1.0, 0.9, 0.8, 0.7):
            _add(store, f"sim {sim}", vector=_unit(sim))
        results = retriever.get_tier2_results("websocket").results
        assert [r.item.summary for r in results] == ["sim 1.0", "sim 0.9"]
        assert len(retriever.get_tier2_results("websocket", limit=10).results) == 3

    def test_semantic_ranking(self, retriever, store):
        best = _add(store, "exact", vector=_unit(1.0))
        good = _add(store, "close", vector=_unit(0.8))
        _add(store, "unrelated", vector=_unit(0.1))

        tier2 = retriever.get_tier2_results("websocket", threshold=0.5)
        assert [r.item.id for r in tier2.results] == [best.id, good.id]
        assert tier2.results[0].similarity == pytest.approx(1.0)
        assert tier2.results[1].similarity == pytest.approx(0.8)
        assert not any(r.unranked for r in tier2.results)
        assert tier2.token_count > 0

    def test_project_and_category_filters(self, retriever, store):
        _add(store, "alpha solution", vector=_unit(1.0))
        beta = _add(store, "beta gotcha", vector=_unit(0.9), category="gotcha", project="beta")

        assert [r.item.id for r in retriever.get_tier2_results("websocket", project="beta").results] == [beta.id]
        gotchas = retriever.get_tier2_results("websocket", category=Category.GOTCHA).results
        assert [r.item.id for r in gotchas] == [beta.id]

    def test_tag_filter(self, retriever, store):
        tagged = _add(store, "tagged", vector=_unit(0.9), tags=["network", "ws"])
        _add(store, "untagged", vector=_unit(1.0))
        _add(store, "other tag", vector=_unit(0.95), tags=["ui"])

        results = retriever.get_tier2_results("websocket", tags=["ws"]).results
        assert [r.item.id for r in results] == [tagged.id]

    def test_dimension_mismatch_propagates(self, retriever, store):
        _add(store, "bad vector", vector=[1.0, 0.0])
        with pytest.raises(DimensionMismatchError):
            retriever.get_tier2_results("websocket")


# ============================================================================
# 3. TIER 3
# ============================================================================

class TestTier3:
    def test_usage_reorders(self, retriever, store):
        top = _add(store, "top by similarity", vector=_unit(0.9))
        popular = _add(store, "popular", vector=_unit(0.85))
        _set_usage(store, popular.id, 100)

        tier3 = retriever.get_tier3_results("websocket", threshold=0.4)
        assert [r.item.id for r in tier3.results] == [popular.id, top.id]

        boosted = tier3.results[0]
        assert isinstance(boosted, UsageBoostedResult)
        assert boosted.base_similarity == pytest.approx(0.85)
        assert boosted.usage_score == pytest.approx(math.log(101) / 10, abs=1e-3)
        assert boosted.boosted_similarity == pytest.approx(0.85 + boosted.usage_score * 0.2)

    def test_boost_bounds(self, retriever, store):
        for i, sim in enumerate((1.0, 0.95, 0.7, 0.5)):
            item = _add(store, f"item {i}", vector=_unit(sim))
            _set_usage(store, item.id, 10 ** (i + 1))

        for result in retriever.get_tier3_results("websocket", threshold=0.0).results:
            assert result.base_similarity <= result.boosted_similarity <= 1.0

    def test_unused_items_keep_tier2_order(self, retriever, store):
        a = _add(store, "a", vector=_unit(0.9))
        b = _add(store, "b", vector=_unit(0.8))
        tier3 = retriever.get_tier3_results("websocket", threshold=0.4)
        assert [r.item.id for r in tier3.results] == [a.id, b.id]
        assert all(r.usage_score == 0.0 for r in tier3.results)

    def test_fallback_results_pass_through(self, retriever, store):
        _add(store, "recent")
        tier3 = retriever.get_tier3_results("")
        assert tier3.results[0].unranked is True
        assert tier3.results[0].boosted_similarity == 1.0


# ============================================================================
# 4. ORCHESTRATION
# ============================================================================

class TestRetrieve:
    def test_default_tiers(self, retriever, store):
        _add(store, "websocket fix", vector=_unit(1.0))
        result = retriever.retrieve("websocket")
        assert result.tier1 is not None
        assert result.tier2 is not None
        assert result.tier3 is None
        assert len(result.final_results) == 1
        assert result.total_tokens > 0

    def test_tier3_replaces_tier2(self, retriever, store):
        _add(store, "websocket fix", vector=_unit(1.0))
        result = retriever.retrieve("websocket", RetrievalOptions(include_tier3=True))
        assert result.tier2 is None
        assert result.tier3 is not None
        assert isinstance(result.final_results[0], UsageBoostedResult)

    def test_search_tiers_off(self, retriever, store):
        _add(store, "websocket fix", vector=_unit(1.0))
        result = retriever.retrieve("websocket", RetrievalOptions(include_tier2=False))
        assert result.tier1 is not None
        assert result.final_results == []
        assert result.budget_enforced is False
        assert result.diversity_score == 0.0

    def test_tier1_off(self, retriever, store):
        result = retriever.retrieve("websocket", RetrievalOptions(include_tier1=False))
        assert result.tier1 is None

    def test_diversifies_by_category(self, retriever, store):
        _add(store, "s1", vector=_unit(1.0), category="solution")
        _add(store, "s2", vector=_unit(0.95), category="solution")
        _add(store, "g1", vector=_unit(0.9), category="gotcha")

        result = retriever.retrieve("websocket")
        assert [r.item.category.value for r in result.final_results] == ["solution", "gotcha", "solution"]
        assert 0.0 < result.diversity_score <= 1.0

    def test_budget_cuts_oversized_item(self, retriever, store):
        _add(store, "huge", vector=_unit(1.0), content="x" * 10_000)
        result = retriever.retrieve("websocket", RetrievalOptions(token_budget=100))
        assert result.final_results == []
        assert result.budget_enforced is True
        assert result.total_tokens == 0

    def test_total_tokens_within_tolerance(self, retriever, store):
        for i in range(20):
            _add(store, f"websocket note {i}", vector=_unit(1.0 - i * 0.01), content="y" * 800)
        result = retriever.retrieve("websocket", RetrievalOptions(token_budget=1000))
        assert result.budget_enforced is True
        assert 0 < result.total_tokens <= 1000 * 1.1

    def test_project_scope(self, retriever, store):
        _add(store, "alpha", vector=_unit(1.0), project="alpha")
        beta = _add(store, "beta", vector=_unit(1.0), project="beta")
        result = retriever.retrieve("websocket", RetrievalOptions(project="beta"))
        assert [r.item.id for r in result.final_results] == [beta.id]
        assert result.tier1.fingerprint.project == "beta"

    def test_default_options_come_from_config(self, store, config):
        config.diversify = "none"
        retriever = TieredRetriever(store=store, embed=KeywordEmbedProvider(), config=config)
        _add(store, "s1", vector=_unit(1.0), category="solution")
        _add(store, "s2", vector=_unit(0.95), category="solution")
        _add(store, "g1", vector=_unit(0.9), category="gotcha")
        result = retriever.retrieve("websocket")
        assert [r.item.summary for r in result.final_results] == ["s1", "s2", "g1"]

    def test_to_dict(self, retriever, store):
        _add(store, "websocket fix", vector=_unit(1.0))
        data = retriever.retrieve("websocket").to_dict()
        assert data["tier3"] is None
        assert data["final_results"][0]["item"]["category"] == "solution"
        assert set(data) == {
            "tier1", "tier2", "tier3", "final_results",
            "total_tokens", "budget_enforced", "diversity_score",
        }


class TestUsageTracking:
    def test_tracks_only_final_items(self, store, config):
        worker = RecordingWorker()
        retriever = TieredRetriever(store=store, embed=KeywordEmbedProvider(), config=config, worker=worker)
        small = _add(store, "small", vector=_unit(1.0), content="x" * 100)
        _add(store, "large", vector=_unit(0.9), content="x" * 10_000)

        result = retriever.retrieve("websocket", RetrievalOptions(token_budget=1000, diversify="none"))
        assert [r.item.id for r in result.final_results] == [small.id]
        assert worker.calls == [[small.id]]

    def test_nothing_tracked_for_empty_result(self, store, config):
        worker = RecordingWorker()
        retriever = TieredRetriever(store=store, embed=KeywordEmbedProvider(), config=config, worker=worker)
        retriever.retrieve("websocket")
        assert worker.calls == []

    def test_tracking_failure_is_swallowed(self, store, config):
        retriever = TieredRetriever(
            store=store, embed=KeywordEmbedProvider(), config=config, worker=RecordingWorker(fail=True),
        )
        item = _add(store, "websocket fix", vector=_unit(1.0))
        result = retriever.retrieve("websocket")
        assert [r.item.id for r in result.final_results] == [item.id]

    def test_background_worker_updates_counts(self, store, config):
        worker = BackgroundWorker(store)
        retriever = TieredRetriever(store=store, embed=KeywordEmbedProvider(), config=config, worker=worker)
        item = _add(store, "websocket fix", vector=_unit(1.0))
        try:
            retriever.retrieve("websocket")
            retriever.retrieve("websocket")
            assert worker.flush(timeout=5.0)
        finally:
            worker.stop()
        assert store.get_item_by_id(item.id).access_count == 2


# ============================================================================
# 5. WIRING AND REPORT
# ============================================================================

class TestCreateRetriever:
    def test_wires_store_and_worker(self, config):
        retriever = lorekit.create_retriever(config, KeywordEmbedProvider())
        try:
            assert isinstance(retriever.store, SQLiteItemStore)
            assert isinstance(retriever.worker, BackgroundWorker)
            assert config.db_path.exists()
        finally:
            retriever.worker.stop()

    def test_without_worker(self, config):
        retriever = lorekit.create_retriever(config, KeywordEmbedProvider(), start_worker=False)
        assert retriever.worker is None

    def test_dimension_check(self, tmp_path):
        config = LorekitConfig(db_path=tmp_path / "k.db", embed_dims=384)
        with pytest.raises(ValueError, match="dimension mismatch"):
            lorekit.create_retriever(config, KeywordEmbedProvider())

    def test_broken_provider_fails_validation(self, config):
        with pytest.raises(RuntimeError):
            lorekit.create_retriever(config, BrokenEmbedProvider())

    def test_unknown_shortcut(self, config):
        with pytest.raises(ValueError):
            lorekit.create_retriever(config, "carrier-pigeon")


class TestReport:
    def test_markdown_report(self, retriever, store):
        _add(store, "Shipped the new pipeline", category="win")
        _add(store, "websocket reconnect", vector=_unit(1.0), tags=["ws"],
             alternatives_considered=["long polling"], decision_rationale="fewer moving parts")

        report = format_retrieval_report(retriever.retrieve("websocket"))
        assert "## Project Context (Tier 1)" in report
        assert "Shipped the new pipeline" in report
        assert "### 1. websocket reconnect" in report
        assert "**Similarity:** 100.0%" in report
        assert "**Tags:** ws" in report
        assert "1. long polling" in report
        assert "- Budget Enforced: No" in report

    def test_no_results(self, retriever):
        report = format_retrieval_report(
            retriever.retrieve("websocket", RetrievalOptions(include_tier1=False))
        )
        assert "## No Results Found" in report
        assert "Project Context" not in report

    def test_recent_items_marked(self, retriever, store):
        _add(store, "unembedded")
        report = format_retrieval_report(retriever.retrieve(""))
        assert "n/a (recent item)" in report
