"""Ollama embedding provider (all-minilm by default) with optional truncation."""

import json
import math
import urllib.request
from typing import Optional


class OllamaEmbed:
    """
    EmbedProvider backed by a local Ollama instance.

    Vectors are optionally truncated to `dims` (for Matryoshka-style models)
    and L2-normalized before return.
    """

    def __init__(
        self,
        model: str = "all-minilm",
        base_url: str = "http://localhost:11434",
        dims: Optional[int] = None,
        timeout: float = 30.0,
    ) -> None:
        self.model_name = model
        self.base_url = base_url.rstrip("/")
        self.dims = dims  # None = keep the model's native size
        self.timeout = timeout

    def _raw_embed(self, text: str) -> list[float]:
        """Call Ollama /api/embed and return the raw vector."""
        payload = json.dumps({"model": self.model_name, "input": text}).encode()
        req = urllib.request.Request(
            f"{self.base_url}/api/embed",
            data=payload,
            headers={"Content-Type": "application/json"},
        )
        with urllib.request.urlopen(req, timeout=self.timeout) as resp:
            data = json.loads(resp.read())
        return data["embeddings"][0]

    def _truncate_and_normalize(self, vec: list[float]) -> list[float]:
        truncated = vec[: self.dims] if self.dims else vec
        norm = math.sqrt(sum(x * x for x in truncated))
        if norm == 0:
            return truncated
        return [x / norm for x in truncated]

    def embed(self, text: str) -> list[float]:
        """Embed a knowledge item for storage."""
        return self._truncate_and_normalize(self._raw_embed(text))

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)
