# =============================================================================
# Planner Agent - Free Text to Structured Search Plan
# =============================================================================
#
# One schema-constrained model call turns the user's query into a
# SearchPlan: intent, retrieval approach, hard filters and ranking criteria.
# The prompt is seeded with two worked examples and the role / experience /
# availability vocabularies the store understands.
#
# plan() never raises:
#   - no model configured       -> heuristic plan (keyword for short lookups)
#   - any model failure         -> default plan (hybrid, confidence 0.5)
#
# "Any model failure" covers transport errors, timeouts, non-JSON output and
# schema violations alike; generate_structured() validates at the boundary
# so nothing malformed reaches the executor.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any

from buildermatch.config import settings
from buildermatch.models.search import (
    QueryIntent,
    RankingCriterion,
    SearchApproach,
    SearchFilters,
    SearchPlan,
    SearchStrategy,
)
from buildermatch.services.llm import LLMProvider, generate_structured

logger = logging.getLogger(__name__)

ROLES = ("frontend", "backend", "fullstack", "design", "product", "data", "ml")
EXPERIENCE_LEVELS = ("beginner", "intermediate", "advanced", "expert")
AVAILABILITY = ("available", "busy", "not_looking")

# Short lookups made only of letters, digits, spaces and hyphens
# ("rust", "go-kit", "figma") are treated as keyword searches.
_KEYWORD_QUERY_RE = re.compile(r"^[A-Za-z0-9 \-]+$")
_KEYWORD_QUERY_MAX_LENGTH = 20


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

PLANNER_SYSTEM = f"""You are a search planning agent for a teammate matching \
system. Your job is to analyse user queries and create structured search plans.

Analyse the query to extract:
1. Primary intent: the main thing they are looking for
2. Secondary requirements: additional skills or attributes mentioned
3. Implicit needs: things not stated but likely important (communication \
style, team fit, work style)

Choose the search approach:
- "semantic": conceptual queries (e.g. "creative problem solver")
- "keyword": specific tech stack lookups (e.g. "React developer")
- "hybrid": queries with both conceptual and concrete elements

Extract filters, using ONLY these values:
- roles: {", ".join(ROLES)}
- experienceLevels: {", ".join(EXPERIENCE_LEVELS)}
- availability: {", ".join(AVAILABILITY)}
- skills: specific technologies or skills mentioned
Leave a filter null when the query does not constrain it.

Set ranking criteria (factor + weight between 0 and 1) based on what \
matters most for this query."""

FEW_SHOT_EXAMPLES: list[dict[str, Any]] = [
    {
        "query": "React developer with design skills",
        "plan": {
            "queryIntent": {
                "primary": "Find frontend developer with React experience",
                "secondary": ["React", "design skills", "UI/UX"],
                "implicit": ["creative", "detail-oriented", "collaborative"],
            },
            "searchStrategy": {
                "approach": "hybrid",
                "filters": {"roles": ["frontend", "fullstack"], "skills": ["React"]},
                "rankingCriteria": [
                    {"factor": "React experience", "weight": 0.4},
                    {"factor": "Design skills", "weight": 0.3},
                    {"factor": "Profile completeness", "weight": 0.1},
                    {"factor": "Availability", "weight": 0.2},
                ],
            },
            "expectedResultCount": 10,
            "confidenceScore": 0.85,
        },
    },
    {
        "query": "Backend engineer experienced in Python and ML",
        "plan": {
            "queryIntent": {
                "primary": "Find backend developer with Python and ML expertise",
                "secondary": ["Python", "Machine Learning", "Backend"],
                "implicit": ["analytical", "data-driven", "problem-solving"],
            },
            "searchStrategy": {
                "approach": "hybrid",
                "filters": {"roles": ["backend", "data", "ml"], "skills": ["Python"]},
                "rankingCriteria": [
                    {"factor": "Python experience", "weight": 0.3},
                    {"factor": "ML expertise", "weight": 0.4},
                    {"factor": "Backend experience", "weight": 0.2},
                    {"factor": "Availability", "weight": 0.1},
                ],
            },
            "expectedResultCount": 12,
            "confidenceScore": 0.9,
        },
    },
]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def plan(
    query: str,
    context: dict[str, Any] | None = None,
    *,
    llm: LLMProvider | None,
) -> SearchPlan:
    """
    Build a search plan for `query`.

    Args:
        query: The user's free-text request.
        context: Optional {"previous_queries": [...], "user_profile": {...}}.
        llm: Model to plan with, or None for the heuristic plan.

    Returns:
        A validated SearchPlan. Never raises.
    """
    if llm is None:
        logger.info("No model configured, using heuristic plan")
        return heuristic_plan(query)

    start = time.perf_counter()
    try:
        result = await generate_structured(
            llm,
            _build_prompt(query, context),
            SearchPlan,
            system=PLANNER_SYSTEM,
        )
    except Exception as e:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.warning(
            "Planner failed after %dms (%s: %s), using default plan",
            elapsed_ms, type(e).__name__, e,
        )
        return default_plan(query)

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    logger.info(
        "Planner: approach=%s, confidence=%.2f (%dms)",
        result.search_strategy.approach, result.confidence_score, elapsed_ms,
    )
    if elapsed_ms > settings.agent_latency_warning_ms:
        logger.warning(
            "Planner latency (%dms) exceeds target (%dms)",
            elapsed_ms, settings.agent_latency_warning_ms,
        )
    return result


def default_plan(query: str, approach: SearchApproach = "hybrid") -> SearchPlan:
    return SearchPlan(
        query_intent=QueryIntent(primary=query, secondary=[], implicit=[]),
        search_strategy=SearchStrategy(
            approach=approach,
            filters=SearchFilters(),
            ranking_criteria=[RankingCriterion(factor="relevance", weight=1.0)],
        ),
        expected_result_count=10,
        confidence_score=0.5,
    )


def heuristic_plan(query: str) -> SearchPlan:
    """Default plan, except short plain lookups go to keyword search."""
    stripped = query.strip()
    if len(stripped) < _KEYWORD_QUERY_MAX_LENGTH and _KEYWORD_QUERY_RE.match(stripped):
        return default_plan(query, approach="keyword")
    return default_plan(query)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _build_prompt(query: str, context: dict[str, Any] | None) -> str:
    parts = [
        "Examples:",
        json.dumps(FEW_SHOT_EXAMPLES, indent=2),
        "",
        f'User query: "{query}"',
    ]
    previous = (context or {}).get("previous_queries") or []
    if previous:
        parts.append("Previous queries: " + ", ".join(previous))
    parts.append("")
    parts.append("Generate a search plan for this query.")
    return "\n".join(parts)
