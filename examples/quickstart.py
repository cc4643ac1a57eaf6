"""
lorekit quickstart: capture a few knowledge items, embed them, and pull a
token-bounded context slice for a query.

This example uses a mock embedding provider so you can run it without any
model downloads. In production, swap it for a real provider (see
lorekit/providers/ and the EmbedProvider protocol in lorekit/protocols.py).

    python examples/quickstart.py
"""

import hashlib
import tempfile
from pathlib import Path

import lorekit
from lorekit.config import LorekitConfig
from lorekit.core.embeddings import embed_pending_items
from lorekit.report import format_retrieval_report
from lorekit.types import RetrievalOptions


# -- Step 0: Implement the provider protocol --------------------------------
# lorekit doesn't bundle an embedding model in its core. You bring your own.

class LocalEmbedProvider:
    """Hash-based embeddings for demo purposes. Not useful for real retrieval."""

    def __init__(self, dims: int = 64):
        self.dims = dims

    def embed(self, text: str) -> list[float]:
        h = hashlib.sha256(text.encode()).digest()
        vec = [b / 255.0 for b in h]
        while len(vec) < self.dims:
            vec.extend(vec)
        return vec[: self.dims]

    def embed_query(self, text: str) -> list[float]:
        return self.embed(text)


with tempfile.TemporaryDirectory() as tmp:
    # -- Step 1: Wire up store, worker and retriever ------------------------

    config = LorekitConfig(db_path=Path(tmp) / "demo.db", embed_dims=64, embed_model="demo-hash")
    embed = LocalEmbedProvider(dims=64)
    retriever = lorekit.create_retriever(config, embed)
    store = retriever.store

    # -- Step 2: Capture knowledge ------------------------------------------

    store.create_item(
        project="checkout",
        file_context="services/payments/retry.py",
        category="solution",
        summary="Idempotency keys stop double charges on retry",
        content="Send a UUID idempotency key with every charge request and reuse it on retry.",
        decision_rationale="The gateway dedups on the key for 24h.",
        alternatives_considered=["client-side locking", "charge reconciliation job"],
        tags=["payments", "retries"],
    )
    store.create_item(
        project="checkout",
        file_context="services/payments/webhooks.py",
        category="gotcha",
        summary="Webhooks arrive before the charge response",
        content="Persist the pending charge before calling the gateway, not after.",
        tags=["payments", "webhooks"],
    )
    store.create_item(
        project="checkout",
        file_context="ci/pipeline.yml",
        category="win",
        summary="CI time cut from 18 to 7 minutes",
        content="Split the integration suite across four runners and cached the Docker layers.",
    )

    # -- Step 3: Embed everything -------------------------------------------
    # create_item doesn't embed; the server queues this on the worker instead.

    print(embed_pending_items(store, embed, config.embed_model))

    # -- Step 4: Retrieve ---------------------------------------------------

    result = retriever.retrieve(
        "double charge when the payment request is retried",
        RetrievalOptions(project="checkout", token_budget=2000),
    )
    print(format_retrieval_report(result))

    # Usage-boosted search: same candidates, re-ranked by how often they're handed out
    retriever.worker.flush()
    boosted = retriever.retrieve(
        "payments", RetrievalOptions(project="checkout", include_tier3=True, diversify="none"),
    )
    for r in boosted.final_results:
        print(f"{r.boosted_similarity:.3f}  {r.item.summary}")

    retriever.worker.stop()
