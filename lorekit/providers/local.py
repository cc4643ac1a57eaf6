"""In-process embeddings via sentence-transformers (optional `local` extra)."""

import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class SentenceTransformerEmbed:
    """
    EmbedProvider running a sentence-transformers model in-process.

    The model is loaded lazily on the first embed call; the default
    all-MiniLM-L6-v2 produces 384-dimensional normalized vectors.
    """

    def __init__(self, model: str = "sentence-transformers/all-MiniLM-L6-v2", dims: Optional[int] = None):
        self.model_name = model
        self.dims = dims
        self._model = None
        self._lock = threading.Lock()

    def _get_model(self):
        if self._model is not None:
            return self._model
        with self._lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer
                logger.info(f"Loading embedding model: {self.model_name}")
                self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed(self, text: str) -> list[float]:
        vector = self._get_model().encode(text, normalize_embeddings=True)
        values = vector.tolist() if hasattr(vector, "tolist") else list(vector)
        return values[: self.dims] if self.dims else values

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)
