"""
Embedding text preparation, single-item embedding, and backfill.

The vectors themselves always come from the injected EmbedProvider.
"""

import logging
from typing import Optional

from lorekit.protocols import EmbedProvider
from lorekit.types import Item

logger = logging.getLogger(__name__)

# Longer content is truncated before embedding
MAX_EMBED_CONTENT_LENGTH = 500
DELIMITER = " | "


def prepare_text_for_embedding(item: Item) -> str:
    """
    Build the document text for an item's embedding.

    The summary is repeated to weight it above the body; content is cut at
    MAX_EMBED_CONTENT_LENGTH characters.
    """
    parts = [
        f"Summary: {item.summary}",
        f"Summary: {item.summary}",
        f"Type: {item.category.value}",
    ]
    if item.tags:
        parts.append(f"Tags: {', '.join(item.tags)}")
    parts.append(f"Content: {item.content[:MAX_EMBED_CONTENT_LENGTH]}")
    if item.decision_rationale:
        parts.append(f"Rationale: {item.decision_rationale}")
    if item.alternatives_considered:
        parts.append(f"Alternatives: {', '.join(item.alternatives_considered)}")
    return DELIMITER.join(parts)


def prepare_query_for_embedding(text: str) -> str:
    return text.strip()


def embed_item(store, embed: EmbedProvider, item_id: str, model: str) -> bool:
    """Compute and store the embedding for one item.

    Returns False if the item no longer exists. Provider errors propagate.
    """
    item: Optional[Item] = store.get_item_by_id(item_id)
    if item is None:
        logger.warning("Embedding skipped: item %s not found", item_id)
        return False

    vector = embed.embed(prepare_text_for_embedding(item))
    store.update_item_embedding(item_id, vector, model)
    logger.debug("Embedded item %s (%d dims, model=%s)", item_id, len(vector), model)
    return True


def embed_pending_items(store, embed: EmbedProvider, model: str, limit: int = 50) -> dict:
    """
    Backfill embeddings for up to `limit` items that don't have one yet.

    Returns {"processed": n, "failed": n, "failed_ids": [...]}. One failing
    item doesn't stop the batch.
    """
    pending = store.get_items_without_vectors(limit=limit)
    processed = 0
    failed_ids = []

    for item in pending:
        try:
            vector = embed.embed(prepare_text_for_embedding(item))
            store.update_item_embedding(item.id, vector, model)
            processed += 1
        except Exception:
            logger.warning("Failed to embed item %s", item.id, exc_info=True)
            failed_ids.append(item.id)

    if pending:
        logger.info(
            "Embedding backfill: %d processed, %d failed", processed, len(failed_ids)
        )
    return {"processed": processed, "failed": len(failed_ids), "failed_ids": failed_ids}
