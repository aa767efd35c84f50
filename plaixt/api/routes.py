"""
API routes for the plaixt HTTP service.

Read-only views over the loaded store plus query execution:
    GET  /schema             query schema (SDL) and definitions
    GET  /definitions/{kind} one definition with all its versions
    GET  /records            accepted records, optionally of one kind
    GET  /problems           everything the last load rejected
    POST /query              run a query
    POST /reload             reload the store from disk
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..errors import DefinitionStoreUnavailable, QueryCancelled, QueryError
from ..query import Adapter
from ..store import LoadResult
from .service import StoreNotLoaded, StoreService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["plaixt"])


# --- Request/Response Models ---


class QueryRequest(BaseModel):
    """Request to run a query."""

    query: str = Field(..., description="GraphQL-syntax query document")
    variables: Dict[str, Any] = Field(default_factory=dict, description="Values for $name operands")
    timeout_seconds: Optional[float] = Field(None, gt=0, description="Evaluation timeout")


class QueryResponse(BaseModel):
    """Query results."""

    results: List[Dict[str, Any]]
    count: int


class SchemaResponse(BaseModel):
    """Query schema and the definitions it was derived from."""

    sdl: str
    kinds: List[str]
    definitions: Dict[str, Dict[str, Any]]


class PaginatedResponse(BaseModel):
    """Paginated list response."""

    items: List[Dict[str, Any]]
    total: int
    offset: int
    limit: int
    has_more: bool


class ProblemsResponse(BaseModel):
    """Problems collected by the last load."""

    summary: Dict[str, Any]
    problems: List[Dict[str, Any]]


# --- Dependencies ---


def get_service(request: Request) -> StoreService:
    """Get the store service from app state."""
    return request.app.state.service


def get_snapshot(service: StoreService = Depends(get_service)) -> Tuple[LoadResult, Adapter]:
    """Get the current snapshot, or 503 if the store never loaded."""
    try:
        return service.snapshot()
    except StoreNotLoaded as e:
        raise HTTPException(status_code=503, detail=e.to_dict()) from e


# --- Schema Routes ---


@router.get("/schema", response_model=SchemaResponse)
async def get_schema(snapshot: Tuple[LoadResult, Adapter] = Depends(get_snapshot)):
    """
    Get the query schema.

    Returns the GraphQL SDL queries are checked against, and every loaded
    definition with its versions.
    """
    result, adapter = snapshot
    return {
        "sdl": adapter.schema_text(),
        "kinds": sorted(result.definitions),
        "definitions": {kind: d.to_dict() for kind, d in result.definitions.items()},
    }


@router.get("/definitions/{kind}")
async def get_definition(kind: str, snapshot: Tuple[LoadResult, Adapter] = Depends(get_snapshot)):
    """Get one definition with all its versions."""
    result, _ = snapshot
    definition = result.definitions.get(kind)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Kind '{kind}' not found")
    return definition.to_dict()


# --- Record Routes ---


@router.get("/records", response_model=PaginatedResponse)
async def list_records(
    kind: Optional[str] = Query(None, description="Only records of this kind"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    limit: int = Query(50, ge=1, le=500, description="Page size"),
    snapshot: Tuple[LoadResult, Adapter] = Depends(get_snapshot),
):
    """
    List accepted records in load order.

    Supports filtering by kind and pagination.
    """
    result, _ = snapshot
    if kind is not None:
        if kind not in result.definitions:
            raise HTTPException(status_code=404, detail=f"Kind '{kind}' not found")
        records = list(result.records.records_of(kind))
    else:
        records = list(result.records)

    page = records[offset : offset + limit]
    return {
        "items": [r.to_dict() for r in page],
        "total": len(records),
        "offset": offset,
        "limit": limit,
        "has_more": offset + limit < len(records),
    }


@router.get("/problems", response_model=ProblemsResponse)
async def list_problems(snapshot: Tuple[LoadResult, Adapter] = Depends(get_snapshot)):
    """List every parse, resolution, validation and check problem of the last load."""
    result, _ = snapshot
    return {"summary": result.summary(), "problems": result.problems()}


# --- Query Routes ---


@router.post("/query", response_model=QueryResponse)
def run_query(
    request: QueryRequest,
    snapshot: Tuple[LoadResult, Adapter] = Depends(get_snapshot),
):
    """
    Run a query against the current snapshot.

    Invalid queries return 400 with the error code; queries that run past
    their timeout return 408.
    """
    _, adapter = snapshot
    try:
        results = adapter.run(request.query, request.variables, timeout=request.timeout_seconds)
    except QueryCancelled as e:
        logger.warning(f"Query cancelled: {e}")
        raise HTTPException(status_code=408, detail=e.to_dict()) from e
    except QueryError as e:
        raise HTTPException(status_code=400, detail=e.to_dict()) from e
    return {"results": results, "count": len(results)}


@router.post("/reload")
def reload_store(service: StoreService = Depends(get_service)):
    """Reload definitions and records from disk and return the load summary."""
    try:
        result = service.reload()
    except DefinitionStoreUnavailable as e:
        logger.error(f"Reload failed: {e}")
        raise HTTPException(status_code=503, detail=e.to_dict()) from e
    return result.summary()
