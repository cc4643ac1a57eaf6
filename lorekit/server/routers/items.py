"""Knowledge item endpoints: create, list, get, update, delete, backfill."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

router = APIRouter()
logger = logging.getLogger(__name__)

CategoryName = Literal["solution", "pattern", "gotcha", "win", "troubleshooting"]


# --- Request/Response models ---

class CreateItemRequest(BaseModel):
    project: str = Field(..., min_length=1, max_length=200)
    file_context: str = Field("", max_length=1000, description="File or module the item concerns")
    category: CategoryName
    summary: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1, max_length=50000)
    decision_rationale: Optional[str] = Field(None, max_length=10000)
    alternatives_considered: Optional[list[str]] = Field(None, max_length=50)
    solution_verified: bool = False
    tags: Optional[list[str]] = Field(None, max_length=50)
    related_issues: Optional[list[str]] = Field(None, max_length=50)


class UpdateItemRequest(BaseModel):
    project: Optional[str] = Field(None, min_length=1, max_length=200)
    file_context: Optional[str] = Field(None, max_length=1000)
    category: Optional[CategoryName] = None
    summary: Optional[str] = Field(None, min_length=1, max_length=500)
    content: Optional[str] = Field(None, min_length=1, max_length=50000)
    decision_rationale: Optional[str] = Field(None, max_length=10000)
    alternatives_considered: Optional[list[str]] = Field(None, max_length=50)
    solution_verified: Optional[bool] = None
    tags: Optional[list[str]] = Field(None, max_length=50)
    related_issues: Optional[list[str]] = Field(None, max_length=50)


class BackfillRequest(BaseModel):
    limit: Optional[int] = Field(None, ge=1, le=500, description="Defaults to the configured batch size")


def _retriever():
    from lorekit.server.main import get_retriever
    return get_retriever()


# --- Endpoints ---

@router.post("")
def create_item(req: CreateItemRequest):
    """Store an item and queue its embedding."""
    retriever = _retriever()
    try:
        item = retriever.store.create_item(**req.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    queued = False
    if retriever.worker is not None:
        queued = retriever.worker.generate_embedding(item.id)
    return {"item": item.to_dict(), "embedding_queued": queued}


@router.get("")
def list_items(
    project: Optional[str] = Query(None, max_length=200),
    category: Optional[CategoryName] = None,
    limit: int = Query(50, ge=1, le=500),
):
    """Most recent items, optionally filtered."""
    from lorekit.types import Category

    items = _retriever().store.list_items(
        project=project,
        category=Category(category) if category else None,
        limit=limit,
    )
    return {"items": [i.to_dict() for i in items], "count": len(items)}


@router.post("/embeddings/backfill")
def backfill_embeddings(req: BackfillRequest):
    """Embed up to `limit` items that don't have a vector yet (synchronous)."""
    from lorekit.core.embeddings import embed_pending_items

    retriever = _retriever()
    return embed_pending_items(
        retriever.store, retriever.embed, retriever.config.embed_model,
        limit=req.limit or retriever.config.backfill_batch_size,
    )


@router.get("/{item_id}")
def get_item(item_id: str):
    item = _retriever().store.get_item_by_id(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    return item.to_dict()


@router.patch("/{item_id}")
def update_item(item_id: str, req: UpdateItemRequest):
    """Update fields; text changes re-queue the embedding."""
    retriever = _retriever()
    fields = req.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=422, detail="No fields to update")

    try:
        item = retriever.store.update_item(item_id, **fields)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if item is None:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")

    queued = False
    if {"summary", "content"} & set(fields) and retriever.worker is not None:
        queued = retriever.worker.generate_embedding(item_id)
    return {"item": item.to_dict(), "embedding_queued": queued}


@router.delete("/{item_id}")
def delete_item(item_id: str):
    """Permanently delete an item."""
    if not _retriever().store.delete_item(item_id):
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    return {"deleted": True, "item_id": item_id}
