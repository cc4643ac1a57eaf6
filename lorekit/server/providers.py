"""Embedding provider selection for lorekit-server."""

import logging

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "text-embedding-3-small"


class OpenAIEmbed:
    """EmbedProvider using the OpenAI embeddings endpoint.

    text-embedding-3 models accept a `dimensions` argument, so the vector
    size can be matched to LOREKIT_EMBED_DIMS instead of truncating locally.
    """

    def __init__(self, api_key: str, model: str = DEFAULT_OPENAI_MODEL, dims: int = 0):
        from openai import OpenAI
        self._client = OpenAI(api_key=api_key or None)
        self.model_name = model
        self.dims = dims

    def embed(self, text: str) -> list[float]:
        kwargs = {"input": text, "model": self.model_name}
        if self.dims:
            kwargs["dimensions"] = self.dims
        response = self._client.embeddings.create(**kwargs)
        return response.data[0].embedding

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)


def create_embed(provider: str, api_key: str = "", model: str = "", base_url: str = "", dims: int = 384):
    """Build the configured EmbedProvider. An empty model selects the provider's default."""
    kwargs = {"dims": dims}
    if model:
        kwargs["model"] = model

    if provider == "local":
        from lorekit.providers.local import SentenceTransformerEmbed
        embed = SentenceTransformerEmbed(**kwargs)
    elif provider == "ollama":
        from lorekit.providers.ollama import OllamaEmbed
        if base_url:
            kwargs["base_url"] = base_url
        embed = OllamaEmbed(**kwargs)
    elif provider == "openai":
        embed = OpenAIEmbed(api_key=api_key, **kwargs)
    else:
        raise ValueError(f"Unknown embed provider: {provider}. Use 'local', 'ollama', or 'openai'.")

    logger.debug("Embed provider: %s (%s, %d dims)", provider, embed.model_name, dims)
    return embed
