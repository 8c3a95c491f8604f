# =============================================================================
# Search API - Agentic Teammate Search Endpoint
# =============================================================================
#
# POST /search/agentic runs orchestrate_search() and returns its
# OrchestrationResult (camelCase JSON).
#
# Error mapping:
#   - provider not configured (missing API key)  → 503 Service Unavailable
#   - candidate store / infrastructure failure   → 502 Bad Gateway
#   - no matches                                 → 200 with empty results
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from buildermatch.agents.orchestrator import (
    SearchServices,
    get_search_services,
    orchestrate_search,
)
from buildermatch.exceptions import ProviderUnavailableError
from buildermatch.models.requests import AgenticSearchRequest
from buildermatch.models.search import OrchestrationResult, SearchFilters, SearchOptions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["Search"])


def get_services() -> SearchServices:
    """Dependency: configured search services, 503 when unavailable."""
    try:
        return get_search_services()
    except ProviderUnavailableError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e


@router.post(
    "/agentic",
    response_model=OrchestrationResult,
    summary="Find builders matching a natural-language request",
    description=(
        "Plans the search, runs semantic and keyword retrieval, ranks the "
        "candidates, evaluates result quality and refines the plan up to "
        "two times when quality is low."
    ),
)
async def agentic_search_endpoint(
    request: AgenticSearchRequest,
    services: SearchServices = Depends(get_services),
) -> OrchestrationResult:
    options = SearchOptions(
        max_results=request.options.max_results if request.options else None,
        filters=(
            SearchFilters(**request.filters.model_dump())
            if request.filters else None
        ),
    )

    logger.info(
        "Agentic search request: query='%s', filters=%s",
        request.query[:80], request.filters is not None,
    )

    try:
        return await orchestrate_search(request.query, options, services=services)
    except ProviderUnavailableError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
    except Exception as e:
        logger.exception("Agentic search failed: %s", e)
        raise HTTPException(
            status_code=502,
            detail=f"Search backend error: {e}",
        ) from e
