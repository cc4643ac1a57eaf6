"""lorekit-server: HTTP API for tiered knowledge retrieval."""

import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI

from lorekit.server.auth import require_auth
from lorekit.server.config import settings

logger = logging.getLogger("lorekit_server")

_retriever = None


def get_retriever():
    """The process-wide TieredRetriever. Raises if the app hasn't started."""
    if _retriever is None:
        raise RuntimeError("lorekit not initialized. Start the server lifespan or call set_retriever().")
    return _retriever


def set_retriever(retriever) -> None:
    """Install a retriever (used by the lifespan and by tests)."""
    global _retriever
    _retriever = retriever


def _init_lorekit():
    """Initialize lorekit with configured providers."""
    import lorekit
    from lorekit.config import LorekitConfig
    from lorekit.server.providers import create_embed

    embed = create_embed(
        settings.embed_provider,
        api_key=settings.embed_api_key,
        model=settings.embed_model,
        base_url=settings.embed_base_url,
        dims=settings.embed_dims,
    )

    config = LorekitConfig(
        db_path=settings.db_path_resolved,
        embed_dims=settings.embed_dims,
        embed_model=embed.model_name,
        pool_limit=settings.pool_limit,
        pool_threshold=settings.pool_threshold,
        boost_factor=settings.boost_factor,
        time_decay_days=settings.time_decay_days,
        token_budget=settings.token_budget,
        diversify=settings.diversify,
        worker_queue_size=settings.worker_queue_size,
    )

    set_retriever(lorekit.create_retriever(config, embed))
    logger.info(
        "lorekit initialized: db=%s, embed_dims=%d, embed=%s/%s",
        config.db_path, config.embed_dims, settings.embed_provider, config.embed_model,
    )


def _shutdown_lorekit():
    worker = getattr(_retriever, "worker", None)
    if worker is not None:
        worker.stop()


@asynccontextmanager
async def lifespan(app: FastAPI):
    _init_lorekit()
    logger.info("lorekit-server ready on %s:%d", settings.host, settings.port)
    yield
    _shutdown_lorekit()
    logger.info("lorekit-server shutting down")


app = FastAPI(
    title="lorekit-server",
    description="HTTP API for tiered retrieval of institutional knowledge",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.api_key else None,
    openapi_url="/openapi.json" if not settings.api_key else None,
)


# --- Register routers ---

from lorekit.server.routers import retrieval, items, health  # noqa: E402

# Protected routers: auth enforced via dependency injection
app.include_router(
    retrieval.router, prefix="/v1", tags=["retrieval"],
    dependencies=[Depends(require_auth)],
)
app.include_router(
    items.router, prefix="/v1/items", tags=["items"],
    dependencies=[Depends(require_auth)],
)

# Health router: /health is public, /stats is protected at the route level
app.include_router(health.router, prefix="/v1", tags=["health"])


def run():
    """Entry point for `lorekit-server` CLI command."""
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    uvicorn.run(
        "lorekit.server.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    run()
