"""
lorekit configuration.

All paths, model names, and tuning parameters are set here.
No hardcoded values in the rest of the package.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class LorekitConfig:
    """Configuration for the lorekit retrieval pipeline."""

    # Database
    db_path: Path

    # Embedding
    embed_dims: int = 384
    embed_model: str = "all-MiniLM-L6-v2"  # recorded on each item's embedding

    # Tier 1: fingerprint
    fingerprint_top_n: int = 5
    recent_wins_limit: int = 5

    # Tier 2: semantic search (direct calls)
    search_limit: int = 20
    search_threshold: float = 0.5

    # Tier 2/3 as run by the orchestrator (wider candidate pool)
    pool_limit: int = 50
    pool_threshold: float = 0.4

    # Tier 3: usage boosting
    boost_factor: float = 0.2
    time_decay_days: float = 30.0
    min_access_count: int = 1

    # Tier 4 defaults
    token_budget: int = 8000
    diversify: str = "category"

    # Background worker
    worker_queue_size: int = 200

    # Embedding backfill batch size
    backfill_batch_size: int = 50

