# =============================================================================
# API Request Models - Pydantic V2 Schemas
# =============================================================================
#
# Shape of data coming INTO the API. Bodies use camelCase keys, matching the
# response side (see models/search.py).
# =============================================================================

from pydantic import ConfigDict, Field

from buildermatch.models.search import CamelModel


class RequestFilters(CamelModel):
    """Caller-supplied hard filters. These always win over planner filters."""

    roles: list[str] | None = None
    experience_levels: list[str] | None = None
    availability: list[str] | None = None
    location: str | None = None


class RequestOptions(CamelModel):
    max_results: int | None = Field(
        default=None,
        ge=1,
        le=200,
        description="Maximum number of ranked builders to return (default 20)",
    )


class AgenticSearchRequest(CamelModel):
    """
    Request body for POST /search/agentic.

    Example:
        {
            "query": "React developer with design skills",
            "filters": {"availability": ["available"]},
            "options": {"maxResults": 10}
        }
    """

    query: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Natural-language description of the teammate you need",
        examples=["React developer with design skills"],
    )
    filters: RequestFilters | None = None
    options: RequestOptions | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "query": "Backend engineer experienced in Python and ML",
                    "filters": {"experienceLevels": ["advanced", "expert"]},
                    "options": {"maxResults": 10},
                },
            ]
        }
    )
