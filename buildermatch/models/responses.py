# =============================================================================
# API Response Models - Pydantic V2 Schemas
# =============================================================================
#
# The search endpoint returns OrchestrationResult (models/search.py) as-is.
# Only the endpoint-specific envelopes live here.
# =============================================================================

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Response for GET /health - confirms the API is running."""

    status: str = "ok"
    version: str
    service: str
