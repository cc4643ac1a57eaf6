"""
lorekit — Tiered retrieval for institutional knowledge.

Captures solutions, patterns, gotchas and wins per project, and assembles a
token-bounded, diversity-balanced slice of them for an LLM context window.

Usage:
    import lorekit
    from lorekit.config import LorekitConfig

    config = LorekitConfig(db_path=Path("data/knowledge.db"))
    retriever = lorekit.create_retriever(config, embed=my_embed_provider)

    result = retriever.retrieve("flaky websocket reconnect")
"""

import logging
import math

from lorekit.config import LorekitConfig
from lorekit.protocols import EmbedProvider

__version__ = "0.1.0"

_log = logging.getLogger(__name__)

_PROVIDER_SHORTCUTS: dict[str, type] = {}


def _get_provider_class(name: str) -> type:
    """Lazy-load provider classes to avoid import cost when not used."""
    if not _PROVIDER_SHORTCUTS:
        from lorekit.providers.ollama import OllamaEmbed
        from lorekit.providers.local import SentenceTransformerEmbed
        _PROVIDER_SHORTCUTS["ollama"] = OllamaEmbed
        _PROVIDER_SHORTCUTS["local"] = SentenceTransformerEmbed
    cls = _PROVIDER_SHORTCUTS.get(name)
    if cls is None:
        raise ValueError(
            f"Unknown embed provider shortcut {name!r}. "
            f"Available: {', '.join(sorted(_PROVIDER_SHORTCUTS))}"
        )
    return cls


def create_retriever(
    config: LorekitConfig,
    embed: "EmbedProvider | str",
    *,
    store=None,
    start_worker: bool = True,
    validate: bool = True,
):
    """
    Wire up a store, background worker and TieredRetriever.

    Args:
        config: Database path, model names, tuning parameters
        embed: Provider for text embeddings, or a shortcut string ("ollama", "local")
        store: Use this ItemStore instead of opening config.db_path
        start_worker: Attach a BackgroundWorker for usage tracking and embedding jobs
        validate: Make one embedding call to check the provider's dimensions

    Returns:
        The TieredRetriever. Its store and worker are reachable as attributes.
    """
    from lorekit.core.retrieval import TieredRetriever
    from lorekit.core.store import SQLiteItemStore
    from lorekit.lifecycle.worker import BackgroundWorker

    # Resolve string shortcut to provider instance
    if isinstance(embed, str):
        cls = _get_provider_class(embed)
        embed = cls(dims=config.embed_dims)

    if validate:
        _validate_embed(embed, config)

    if store is None:
        store = SQLiteItemStore(config.db_path)

    worker = None
    if start_worker:
        worker = BackgroundWorker(
            store,
            embed=embed,
            embed_model=config.embed_model,
            max_queue_size=config.worker_queue_size,
        )

    return TieredRetriever(store=store, embed=embed, config=config, worker=worker)


def _validate_embed(embed: EmbedProvider, config: LorekitConfig) -> None:
    """Check that the provider returns vectors matching config expectations."""
    try:
        vec = embed.embed("lorekit validation")
    except Exception as exc:
        raise RuntimeError(
            f"Embedding provider failed validation call: {exc}"
        ) from exc

    if len(vec) != config.embed_dims:
        raise ValueError(
            f"Embedding dimension mismatch: provider returned {len(vec)}d "
            f"but config.embed_dims={config.embed_dims}. "
            f"Either change config.embed_dims or fix the provider."
        )

    norm = math.sqrt(sum(x * x for x in vec))
    if abs(norm - 1.0) > 0.05:
        _log.info(
            "Embedding vector is not L2-normalized (norm=%.4f). Cosine "
            "similarity is scale-invariant, but thresholds were tuned on "
            "normalized vectors.",
            norm,
        )
