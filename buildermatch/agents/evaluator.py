# =============================================================================
# Evaluator Agent - Result Quality & Refinement Decision
# =============================================================================
#
# Two layers:
#
# 1. DETERMINISTIC METRICS (always computed, always authoritative)
#      relevance  = mean final_score                      (0 when empty)
#      diversity  = min(1, distinct_roles / max(1, n/2))
#      coverage   = share of intent terms found in some bio or skill name
#      confidence = mean of the three
#
# 2. REFINEMENT DECISION (model, with a rule-based fallback)
#      The model sees the metrics and the top 5 results and answers only
#      "refine or not, why, and how". It never supplies the numbers.
#      Without a model, or when the call fails:
#        needs_refinement = relevance < 0.6 or diversity < 0.5
#        one suggestion: broaden (low relevance) else reweight
#
# An empty result set always needs refinement. A decision to refine that
# carries no suggestions takes the rule-based one (broaden by default).
# =============================================================================

from __future__ import annotations

import logging
import time

from pydantic import Field

from buildermatch.config import settings
from buildermatch.models.search import (
    CamelModel,
    EvaluationResult,
    ExecutionResult,
    RefinementSuggestion,
    ScoredCandidate,
    SearchPlan,
)
from buildermatch.services.llm import LLMProvider, generate_structured

logger = logging.getLogger(__name__)

RELEVANCE_FLOOR = 0.6
DIVERSITY_FLOOR = 0.5
_SUMMARY_SIZE = 5


class RefinementDecision(CamelModel):
    """The part of an evaluation the model is allowed to decide."""

    needs_refinement: bool
    refinement_reason: str | None = None
    refinement_suggestions: list[RefinementSuggestion] | None = Field(default=None)


EVALUATOR_SYSTEM = """You are an evaluation agent for a teammate search \
system. Assess the quality of a result set and decide whether the search \
should be refined.

The quality metrics are already computed; do not recompute them.

Guidelines:
- relevance below 0.6: refinement needed, usually "broaden"
- many results of the same role or low diversity: "reweight" or "narrow"
- coverage below 0.7: "broaden"
- more than 15 results with little variance: "narrow"

Refinement actions and their parameters:
- "broaden": {} (drop the experience filter, widen semantic to hybrid)
- "narrow": {} (restrict roles to those in the current top results)
- "reweight": {"weights": [{"factor": "...", "weight": 0.0-1.0}, ...]}
- "filter": {"filters": {"roles": [...], "experienceLevels": [...], \
"availability": [...], "skills": [...], "location": "..."}}"""


# ---------------------------------------------------------------------------
# Deterministic metrics
# ---------------------------------------------------------------------------


def relevance_score(candidates: list[ScoredCandidate]) -> float:
    if not candidates:
        return 0.0
    return min(1.0, sum(c.final_score for c in candidates) / len(candidates))


def diversity_score(candidates: list[ScoredCandidate]) -> float:
    distinct_roles = len({c.role for c in candidates})
    return min(1.0, distinct_roles / max(1.0, len(candidates) / 2))


def coverage_score(plan: SearchPlan, candidates: list[ScoredCandidate]) -> float:
    """
    Share of intent terms (primary + secondary) that appear, case-insensitively,
    in at least one candidate's bio or skill names. 0.5 with no terms.
    """
    terms = [t.lower() for t in [plan.query_intent.primary, *plan.query_intent.secondary] if t]
    if not terms:
        return 0.5

    haystacks = [
        ((c.bio or "").lower(), " ".join(s.name.lower() for s in c.skills))
        for c in candidates
    ]
    covered = sum(
        1 for term in terms
        if any(term in bio or term in skills for bio, skills in haystacks)
    )
    return covered / len(terms)


def compute_metrics(plan: SearchPlan, execution_result: ExecutionResult) -> dict[str, float]:
    candidates = execution_result.candidates
    relevance = relevance_score(candidates)
    diversity = diversity_score(candidates)
    coverage = coverage_score(plan, candidates)
    return {
        "relevance_score": relevance,
        "diversity_score": diversity,
        "coverage_score": coverage,
        "confidence_score": (relevance + diversity + coverage) / 3,
    }


def rule_based_decision(metrics: dict[str, float]) -> RefinementDecision:
    if metrics["relevance_score"] < RELEVANCE_FLOOR:
        return RefinementDecision(
            needs_refinement=True,
            refinement_reason="Low relevance scores",
            refinement_suggestions=[RefinementSuggestion(action="broaden")],
        )
    if metrics["diversity_score"] < DIVERSITY_FLOOR:
        return RefinementDecision(
            needs_refinement=True,
            refinement_reason="Low diversity",
            refinement_suggestions=[RefinementSuggestion(action="reweight")],
        )
    return RefinementDecision(needs_refinement=False)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def evaluate(
    plan: SearchPlan,
    execution_result: ExecutionResult,
    *,
    llm: LLMProvider | None,
) -> EvaluationResult:
    """
    Score a result set and decide whether to refine. Never raises.

    The four numeric fields of the result come from compute_metrics() and
    are identical for identical inputs, whatever the model does.
    """
    start = time.perf_counter()
    metrics = compute_metrics(plan, execution_result)

    decision: RefinementDecision | None = None
    if llm is not None:
        try:
            decision = await generate_structured(
                llm,
                _build_prompt(plan, execution_result, metrics),
                RefinementDecision,
                system=EVALUATOR_SYSTEM,
            )
        except Exception as e:
            logger.warning(
                "Evaluator model call failed (%s: %s), using rule-based decision",
                type(e).__name__, e,
            )
    if decision is None:
        decision = rule_based_decision(metrics)

    suggestions = list(decision.refinement_suggestions or [])
    needs_refinement = decision.needs_refinement
    reason = decision.refinement_reason

    if not execution_result.candidates:
        needs_refinement = True
        reason = reason or "No results found"

    if needs_refinement and not suggestions:
        suggestions = list(rule_based_decision(metrics).refinement_suggestions or []) or [
            RefinementSuggestion(action="broaden")
        ]

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    logger.info(
        "Evaluator: relevance=%.2f diversity=%.2f coverage=%.2f confidence=%.2f "
        "refine=%s (%dms)",
        metrics["relevance_score"], metrics["diversity_score"],
        metrics["coverage_score"], metrics["confidence_score"],
        needs_refinement, elapsed_ms,
    )
    if elapsed_ms > settings.agent_latency_warning_ms:
        logger.warning(
            "Evaluator latency (%dms) exceeds target (%dms)",
            elapsed_ms, settings.agent_latency_warning_ms,
        )

    return EvaluationResult(
        **metrics,
        needs_refinement=needs_refinement,
        refinement_reason=reason if needs_refinement else None,
        refinement_suggestions=suggestions if needs_refinement else [],
    )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _build_prompt(
    plan: SearchPlan,
    execution_result: ExecutionResult,
    metrics: dict[str, float],
) -> str:
    candidates = execution_result.candidates
    top = "\n".join(
        f"{i}. {c.name} ({c.role}) - Score: {c.final_score:.2f} - {c.match_explanation}"
        for i, c in enumerate(candidates[:_SUMMARY_SIZE], start=1)
    ) or "(none)"

    return (
        f'Original query: "{plan.query_intent.primary}"\n'
        f"Secondary requirements: {', '.join(plan.query_intent.secondary) or '(none)'}\n"
        f"Approach: {plan.search_strategy.approach}\n\n"
        f"Search results ({len(candidates)} found):\n{top}\n\n"
        "Calculated metrics:\n"
        f"- Relevance: {metrics['relevance_score']:.2f}\n"
        f"- Diversity: {metrics['diversity_score']:.2f}\n"
        f"- Coverage: {metrics['coverage_score']:.2f}\n"
        f"- Confidence: {metrics['confidence_score']:.2f}\n\n"
        "Decide whether these results need refinement."
    )
