# =============================================================================
# Search Pipeline Models - Pydantic V2
# =============================================================================
#
# Every object that flows between the planner, executor, evaluator and
# orchestrator is defined here.
#
# Attributes are snake_case in Python. The camelCase alias generator is used
# for everything that leaves the process: model prompts and schema-constrained
# model output, state snapshots, and HTTP responses.
#
# Ownership:
#   SearchPlan          - created by the planner, mutated only by refinement
#   Candidate           - hydrated once per iteration, read-only
#   ScoredCandidate     - frozen; each iteration builds a new generation
#   OrchestrationState  - owned by a single orchestrate_search() run
# =============================================================================

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SearchApproach = Literal["semantic", "keyword", "hybrid"]
RefinementAction = Literal["broaden", "narrow", "reweight", "filter"]


class CamelModel(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Search Plan
# ---------------------------------------------------------------------------


class SearchFilters(CamelModel):
    """
    Hard filters applied to the retrieval union.

    None means "no constraint". An empty list is treated the same way by
    the candidate store.
    """

    roles: list[str] | None = None
    experience_levels: list[str] | None = None
    skills: list[str] | None = None
    availability: list[str] | None = None
    location: str | None = None


class QueryIntent(CamelModel):
    primary: str
    secondary: list[str] = Field(default_factory=list)
    implicit: list[str] = Field(default_factory=list)


class RankingCriterion(CamelModel):
    factor: str
    weight: float = Field(ge=0.0, le=1.0)


class SearchStrategy(CamelModel):
    approach: SearchApproach = "hybrid"
    filters: SearchFilters = Field(default_factory=SearchFilters)
    ranking_criteria: list[RankingCriterion] = Field(default_factory=list)


class SearchPlan(CamelModel):
    """Structured search plan produced by the planner."""

    query_intent: QueryIntent
    search_strategy: SearchStrategy
    expected_result_count: int = Field(default=10, ge=1, le=50)
    confidence_score: float = Field(default=0.5, ge=0.0, le=1.0)

    def retrieval_text(self) -> str:
        """Text used for the query embedding: primary + secondary intent."""
        parts = [self.query_intent.primary, *self.query_intent.secondary]
        return " ".join(p for p in parts if p).strip()


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


class SkillRecord(CamelModel):
    name: str
    category: str = "language"
    proficiency_level: str = "intermediate"


class ProjectRecord(CamelModel):
    title: str
    description: str = ""
    tech_stack: list[str] = Field(default_factory=list)


class Candidate(CamelModel):
    """Denormalised builder profile snapshot, hydrated once per iteration."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    bio: str | None = None
    role: str
    experience_level: str = "intermediate"
    avatar_url: str | None = None
    location: str | None = None
    availability_status: str = "available"
    github: str | None = None
    updated_at: datetime
    skills: list[SkillRecord] = Field(default_factory=list)
    projects: list[ProjectRecord] = Field(default_factory=list)


class RankingFactors(CamelModel):
    """Raw per-candidate signals. Boosts are multiplicative, not [0,1]."""

    semantic_score: float = 0.0
    keyword_score: float = 0.0
    skill_match_score: float = 0.0
    availability_boost: float = 1.0
    recent_activity_boost: float = 0.8
    completeness_boost: float = 0.0


class RelevanceFactor(CamelModel):
    factor: str
    contribution: float


class ScoredCandidate(Candidate):
    """A candidate with its ranking factors and final score for one iteration."""

    semantic_score: float = 0.0
    keyword_score: float = 0.0
    skill_match_score: float = 0.0
    availability_boost: float = 1.0
    recent_activity_boost: float = 0.8
    completeness_boost: float = 0.0
    final_score: float = Field(ge=0.0, le=1.0)
    match_explanation: str = ""
    relevance_factors: list[RelevanceFactor] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Execution & Evaluation
# ---------------------------------------------------------------------------


class ExecutionStep(CamelModel):
    phase: str
    description: str
    result_count: int
    elapsed_ms: int


class ExecutionResult(CamelModel):
    """Ranked candidates for one iteration plus the step trace."""

    candidates: list[ScoredCandidate] = Field(default_factory=list)
    steps: list[ExecutionStep] = Field(default_factory=list)
    total_candidates: int = 0


class RefinementSuggestion(CamelModel):
    action: RefinementAction
    parameters: dict[str, Any] = Field(default_factory=dict)


class EvaluationResult(CamelModel):
    relevance_score: float = Field(ge=0.0, le=1.0)
    diversity_score: float = Field(ge=0.0, le=1.0)
    coverage_score: float = Field(ge=0.0, le=1.0)
    confidence_score: float = Field(ge=0.0, le=1.0)
    needs_refinement: bool
    refinement_reason: str | None = None
    refinement_suggestions: list[RefinementSuggestion] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


class Phase(str, enum.Enum):
    """
    Orchestration phases.

    planning -> executing -> evaluating -> {refining -> executing -> evaluating}* -> complete
    """

    PLANNING = "planning"
    EXECUTING = "executing"
    EVALUATING = "evaluating"
    REFINING = "refining"
    COMPLETE = "complete"


class OrchestrationState(CamelModel):
    session_id: str
    phase: Phase = Phase.PLANNING
    plan: SearchPlan | None = None
    execution_result: ExecutionResult | None = None
    evaluation: EvaluationResult | None = None
    refinement_count: int = 0
    total_iterations: int = 0


class Refinement(CamelModel):
    iteration: int
    reason: str
    plan: SearchPlan


class AgentReasoning(CamelModel):
    plan: SearchPlan
    execution_steps: list[ExecutionStep]
    evaluation: EvaluationResult
    refinements: list[Refinement] = Field(default_factory=list)
    total_iterations: int


class AgentTimings(CamelModel):
    planner_ms: int = 0
    executor_ms: int = 0
    evaluator_ms: int = 0
    total_evaluator_ms: int = 0


class ResultMetadata(CamelModel):
    total_results: int
    latency_ms: int
    model_call_count: int
    search_strategy: SearchApproach
    agent_timings: AgentTimings | None = None


class OrchestrationResult(CamelModel):
    session_id: str
    query: str
    agent_reasoning: AgentReasoning
    results: list[ScoredCandidate]
    metadata: ResultMetadata


class SearchOptions(CamelModel):
    """Caller options for orchestrate_search()."""

    max_results: int | None = Field(default=None, ge=1, le=200)
    filters: SearchFilters | None = None
    requester_id: str | None = None
