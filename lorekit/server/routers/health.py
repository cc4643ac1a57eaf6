"""Health and stats endpoints."""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Query

from lorekit.server.auth import require_auth

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
def health():
    """Health check: DB accessible."""
    from lorekit.core.db import connect
    from lorekit.server.main import get_retriever

    try:
        with connect(get_retriever().store.db_path) as db:
            db.execute("SELECT 1").fetchone()
        return {"status": "healthy"}
    except Exception:
        logger.exception("Health check failed")
        return {"status": "unhealthy"}


@router.get("/stats", dependencies=[Depends(require_auth)])
def stats(project: Optional[str] = Query(None, max_length=200)):
    """Fingerprint, embedding coverage, worker counters, fingerprint latency."""
    from lorekit.server.main import get_retriever

    retriever = get_retriever()
    store = retriever.store

    start = time.perf_counter()
    fingerprint = store.get_aggregate_fingerprint(project, top_n=retriever.config.fingerprint_top_n)
    latency_ms = round((time.perf_counter() - start) * 1000, 1)

    embedded = len(store.get_items_with_vectors(project))

    worker_stats = None
    if retriever.worker is not None:
        worker_stats = {
            "completed_jobs": retriever.worker.completed_jobs,
            "failed_jobs": retriever.worker.failed_jobs,
        }

    return {
        "fingerprint": fingerprint.to_dict(),
        "embeddings": {
            "embedded": embedded,
            "pending": fingerprint.total_items - embedded,
        },
        "worker": worker_stats,
        "fingerprint_latency_ms": latency_ms,
    }
