"""Retrieval endpoints: the tiered pipeline and plain semantic search."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

router = APIRouter()
logger = logging.getLogger(__name__)


class RetrieveRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000, description="What the caller is working on")
    project: Optional[str] = Field(None, max_length=200, description="Restrict to one project")
    token_budget: int = Field(8000, ge=1000, le=50000, description="Approximate token ceiling for results")
    diversify: Literal["none", "category", "project", "both"] = Field("category")
    include_tier1: bool = Field(True, description="Include the project fingerprint")
    include_tier2: bool = Field(True, description="Run semantic search")
    include_tier3: bool = Field(False, description="Run usage-boosted search instead of plain semantic")
    tags: Optional[list[str]] = Field(None, max_length=50, description="Keep only items sharing a tag")
    format: Literal["json", "markdown"] = Field("json")


# Routes use `def` (not `async def`) because the pipeline is synchronous.
# FastAPI runs `def` routes in a threadpool, keeping the event loop free.

@router.post("/retrieve")
def retrieve(req: RetrieveRequest):
    """Tiered retrieval: fingerprint, search, dedup, diversify, budget-cap."""
    from lorekit.report import format_retrieval_report
    from lorekit.server.main import get_retriever
    from lorekit.types import RetrievalOptions

    try:
        options = RetrievalOptions(
            token_budget=req.token_budget,
            diversify=req.diversify,
            include_tier1=req.include_tier1,
            include_tier2=req.include_tier2,
            include_tier3=req.include_tier3,
            project=req.project,
            tags=req.tags,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    result = get_retriever().retrieve(req.query, options)

    if req.format == "markdown":
        return {"report": format_retrieval_report(result)}
    return result.to_dict()


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000, description="Search query")
    limit: Optional[int] = Field(None, ge=1, le=100, description="Max results (default: configured search_limit)")
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0, description="Minimum similarity (default: configured search_threshold)")
    project: Optional[str] = Field(None, max_length=200, description="Filter by project")
    category: Optional[Literal["solution", "pattern", "gotcha", "win", "troubleshooting"]] = None
    tags: Optional[list[str]] = Field(None, max_length=50)


@router.post("/search")
def search(req: SearchRequest):
    """Plain semantic search (Tier 2 only): no fingerprint, diversification or budget."""
    from lorekit.server.main import get_retriever
    from lorekit.types import Category

    tier2 = get_retriever().get_tier2_results(
        req.query,
        limit=req.limit,
        threshold=req.threshold,
        project=req.project or None,
        category=Category(req.category) if req.category else None,
        tags=req.tags or None,
    )
    return tier2.to_dict()
