"""
Provider protocols for dependency injection.

Consumers pass implementations of these to TieredRetriever (and to the
background worker). lorekit never imports an embedding library directly.
"""

from typing import Optional, Protocol, runtime_checkable

from lorekit.types import Category, Item, ProjectFingerprint


@runtime_checkable
class EmbedProvider(Protocol):
    """Provider for text embeddings (item storage and query search)."""

    def embed(self, text: str) -> list[float]:
        """
        Get embedding vector for a knowledge item.

        Args:
            text: The text to embed

        Returns:
            Embedding vector as list of floats
        """
        ...

    def embed_query(self, text: str) -> list[float]:
        """
        Get embedding vector for a search query.

        Some models use different formatting for queries vs documents.
        Default implementation falls back to embed().
        """
        return self.embed(text)


@runtime_checkable
class ItemStore(Protocol):
    """The record store the retrieval pipeline reads from.

    SQLiteItemStore is the bundled implementation. Any object with these
    methods can be handed to TieredRetriever.
    """

    def get_aggregate_fingerprint(self, project: Optional[str] = None, top_n: int = 5) -> ProjectFingerprint:
        ...

    def get_recent_high_value_items(self, project: Optional[str] = None, limit: int = 5) -> list[Item]:
        ...

    def get_items_with_vectors(
        self,
        project: Optional[str] = None,
        category: Optional[Category] = None,
    ) -> list[tuple[Item, list[float]]]:
        ...

    def get_recent_items(
        self,
        project: Optional[str] = None,
        category: Optional[Category] = None,
        limit: int = 20,
    ) -> list[Item]:
        ...

    def get_item_by_id(self, item_id: str) -> Optional[Item]:
        ...

    def record_access(self, item_id: str) -> None:
        """Best-effort usage counter bump. Unknown ids are a no-op."""
        ...
