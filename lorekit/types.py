"""
lorekit data model.

Knowledge items, search results, and the per-tier result containers
produced by the tiered retrieval pipeline. Everything here except Item is
request-scoped: built for one retrieve() call and discarded afterwards.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Category(str, Enum):
    """Kinds of knowledge item. WIN marks high-value items for Tier 1."""
    SOLUTION = "solution"
    PATTERN = "pattern"
    GOTCHA = "gotcha"
    WIN = "win"
    TROUBLESHOOTING = "troubleshooting"


class DiversifyStrategy(str, Enum):
    """Grouping key used when interleaving results."""
    NONE = "none"
    CATEGORY = "category"
    PROJECT = "project"
    BOTH = "both"


class SearchTier(str, Enum):
    """Which search tier feeds the candidate pool."""
    SEMANTIC = "semantic"
    USAGE_BOOSTED = "usage_boosted"


@dataclass
class Item:
    """A stored knowledge item plus its usage metadata."""

    id: str
    category: Category
    project: str
    file_context: str
    summary: str
    content: str
    decision_rationale: Optional[str] = None
    alternatives_considered: Optional[list[str]] = None
    solution_verified: bool = False
    tags: Optional[list[str]] = None
    related_issues: Optional[list[str]] = None
    created_at: str = ""
    updated_at: str = ""

    # Usage tracking
    access_count: int = 0
    first_accessed_at: Optional[str] = None
    last_accessed_at: Optional[str] = None

    # Embedding provenance (the vector itself travels separately)
    embedding_model: Optional[str] = None
    embedding_generated_at: Optional[str] = None

    def to_dict(self) -> dict:
        data = dict(self.__dict__)
        data["category"] = self.category.value
        return data


@dataclass
class SearchResult:
    """An item with its similarity to the query.

    similarity is always in [0, 1]. unranked is True when the item was
    chosen by recency rather than relevance (the no-query fallback); such
    results carry similarity 1.0.
    """

    item: Item
    similarity: float
    unranked: bool = False

    def to_dict(self) -> dict:
        return {
            "item": self.item.to_dict(),
            "similarity": self.similarity,
            "unranked": self.unranked,
        }


@dataclass
class UsageBoostedResult(SearchResult):
    """SearchResult re-scored with the item's usage pattern."""

    base_similarity: float = 0.0
    usage_score: float = 0.0
    boosted_similarity: float = 0.0

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            base_similarity=self.base_similarity,
            usage_score=self.usage_score,
            boosted_similarity=self.boosted_similarity,
        )
        return data


@dataclass
class ProjectFingerprint:
    """Query-independent overview of a project's (or all) stored items."""

    project: Optional[str] = None
    total_items: int = 0
    category_counts: dict[str, int] = field(default_factory=dict)
    most_accessed: list[dict] = field(default_factory=list)
    recently_created: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "project": self.project,
            "total_items": self.total_items,
            "category_counts": dict(self.category_counts),
            "most_accessed": list(self.most_accessed),
            "recently_created": list(self.recently_created),
        }


@dataclass
class DiversityMetrics:
    score: float = 0.0
    category_distribution: dict[str, int] = field(default_factory=dict)
    project_distribution: dict[str, int] = field(default_factory=dict)
    category_dominance: bool = False
    project_dominance: bool = False


@dataclass
class Tier1Context:
    fingerprint: ProjectFingerprint
    recent_wins: list[Item]
    token_count: int

    def to_dict(self) -> dict:
        return {
            "fingerprint": self.fingerprint.to_dict(),
            "recent_wins": [w.to_dict() for w in self.recent_wins],
            "token_count": self.token_count,
        }


@dataclass
class Tier2Results:
    results: list[SearchResult]
    token_count: int

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "token_count": self.token_count,
        }


@dataclass
class Tier3Results:
    results: list[UsageBoostedResult]
    token_count: int

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "token_count": self.token_count,
        }


@dataclass
class RetrievalOptions:
    """Options for TieredRetriever.retrieve(), validated on construction."""

    token_budget: int = 8000
    diversify: DiversifyStrategy = DiversifyStrategy.CATEGORY
    include_tier1: bool = True
    include_tier2: bool = True
    include_tier3: bool = False
    project: Optional[str] = None
    tags: Optional[list[str]] = None

    def __post_init__(self):
        # Accept plain strings from callers; unknown values raise ValueError
        self.diversify = DiversifyStrategy(self.diversify)
        if self.token_budget < 0:
            raise ValueError(f"token_budget must be >= 0, got {self.token_budget}")
        if self.project is not None and not self.project.strip():
            self.project = None
        if self.tags is not None:
            self.tags = [t for t in self.tags if t] or None

    @property
    def search_tier(self) -> Optional[SearchTier]:
        """Tier 3 supersedes Tier 2; at most one of them runs."""
        if self.include_tier3:
            return SearchTier.USAGE_BOOSTED
        if self.include_tier2:
            return SearchTier.SEMANTIC
        return None


@dataclass
class TieredRetrievalResult:
    final_results: list[SearchResult]
    total_tokens: int
    budget_enforced: bool
    diversity_score: float
    tier1: Optional[Tier1Context] = None
    tier2: Optional[Tier2Results] = None
    tier3: Optional[Tier3Results] = None

    def to_dict(self) -> dict:
        return {
            "tier1": self.tier1.to_dict() if self.tier1 else None,
            "tier2": self.tier2.to_dict() if self.tier2 else None,
            "tier3": self.tier3.to_dict() if self.tier3 else None,
            "final_results": [r.to_dict() for r in self.final_results],
            "total_tokens": self.total_tokens,
            "budget_enforced": self.budget_enforced,
            "diversity_score": self.diversity_score,
        }
