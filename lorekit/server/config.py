"""lorekit-server settings, read from LOREKIT_* environment variables or .env."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Server
    host: str = "127.0.0.1"
    port: int = 18791
    log_level: str = "info"

    # Comma-separated; empty = no auth required
    api_key: str = ""

    # Item store
    db_path: str = "knowledge.db"

    # Embeddings: "local", "ollama", or "openai"
    embed_provider: str = "local"
    embed_model: str = ""  # empty = the provider's default model
    embed_dims: int = 384
    embed_api_key: str = ""
    embed_base_url: str = ""

    # Retrieval defaults (LorekitConfig)
    token_budget: int = 8000
    diversify: str = "category"
    pool_limit: int = 50
    pool_threshold: float = 0.4
    boost_factor: float = 0.2
    time_decay_days: float = 30.0
    worker_queue_size: int = 200

    model_config = {"env_prefix": "LOREKIT_", "env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def db_path_resolved(self) -> Path:
        return Path(self.db_path).expanduser().resolve()

    @property
    def api_keys(self) -> list[str]:
        return [k.strip() for k in self.api_key.split(",") if k.strip()]


settings = Settings()
