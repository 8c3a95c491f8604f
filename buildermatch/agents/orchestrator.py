# =============================================================================
# LangGraph Orchestrator - Plan / Execute / Evaluate / Refine
# =============================================================================
#
# orchestrate_search() is the only public entry point of the search core.
# It runs one search through a LangGraph StateGraph:
#
# GRAPH TOPOLOGY:
#
#   START ──▶ plan ──▶ execute ──▶ evaluate ──┬──▶ complete ──▶ END
#                         ▲                   │
#                         └────── refine ◀────┘
#
# The only branch is the conditional edge after evaluate, decided by the
# pure function next_phase() so the loop's termination rules can be tested
# without any I/O:
#
#   - first evaluation, confidence ≥ 0.85 and enough results -> complete
#   - needs_refinement, < 2 refinements, confidence < 0.7    -> refine
#   - otherwise                                              -> complete
#
# Every node records its phase to the state sink before doing its work, so
# the last snapshot of a crashed run names the phase it crashed in. On any
# error the state is marked complete, pending snapshots are flushed and the
# error is re-raised.
#
# Services (model, embedder, store, state recorder) travel in graph state,
# like the per-request provider override in a compare-style endpoint. The
# graph has no checkpointer, so non-serialisable values are fine there.
# =============================================================================

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass

from langgraph.graph import END, START, StateGraph
from pydantic import TypeAdapter, ValidationError
from typing_extensions import TypedDict

from buildermatch.agents.evaluator import evaluate
from buildermatch.agents.executor import execute_search
from buildermatch.agents.planner import plan as plan_search
from buildermatch.config import settings
from buildermatch.models.search import (
    AgentReasoning,
    AgentTimings,
    EvaluationResult,
    ExecutionResult,
    OrchestrationResult,
    OrchestrationState,
    Phase,
    RankingCriterion,
    Refinement,
    ResultMetadata,
    SearchFilters,
    SearchOptions,
    SearchPlan,
)
from buildermatch.services.cache import get_cache
from buildermatch.services.candidate_store import CandidateStore, PgCandidateStore
from buildermatch.services.embedder import (
    CachedEmbedder,
    EmbeddingProvider,
    OpenAIEmbeddingProvider,
)
from buildermatch.services.llm import CallCountingProvider, LLMProvider, get_llm_provider
from buildermatch.services.state_sink import (
    NullStateSink,
    PgStateSink,
    StateRecorder,
    StateSink,
)

logger = logging.getLogger(__name__)

_CALLER_FILTER_FIELDS = ("roles", "experience_levels", "availability", "location")
_NARROW_TOP_N = 5

_criteria_adapter = TypeAdapter(list[RankingCriterion])


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@dataclass
class SearchServices:
    """External collaborators for a search run."""

    llm: LLMProvider | None
    embedder: EmbeddingProvider
    store: CandidateStore
    sink: StateSink

    @classmethod
    def from_settings(cls) -> SearchServices:
        """
        Build production services from config.

        Raises:
            ProviderUnavailableError: a configured provider has no API key.
        """
        return cls(
            llm=get_llm_provider(),
            embedder=CachedEmbedder(OpenAIEmbeddingProvider(), get_cache()),
            store=PgCandidateStore(),
            sink=PgStateSink() if settings.state_snapshots_enabled else NullStateSink(),
        )


_services: SearchServices | None = None


def get_search_services() -> SearchServices:
    """Lazy singleton over SearchServices.from_settings()."""
    global _services
    if _services is None:
        _services = SearchServices.from_settings()
    return _services


# ---------------------------------------------------------------------------
# Graph State Schema
# ---------------------------------------------------------------------------


class SearchGraphState(TypedDict, total=False):
    """
    State flowing through the graph.

    total=False so nodes only return the keys they update. `run` is the
    OrchestrationState owned by this search; nodes update it in place.
    """

    # --- Input (set by orchestrate_search) ---
    query: str
    max_results: int
    caller_filters: SearchFilters | None

    # --- Per-run services ---
    llm: CallCountingProvider | None
    services: SearchServices
    recorder: StateRecorder
    run: OrchestrationState

    # --- Accumulated by nodes ---
    refinements: list[Refinement]
    next_phase: Phase
    planner_ms: int
    executor_ms: int
    evaluator_ms: int
    evaluator_calls: int


# ---------------------------------------------------------------------------
# Transition & Refinement (pure)
# ---------------------------------------------------------------------------


def next_phase(
    state: OrchestrationState,
    evaluation: EvaluationResult,
    candidate_count: int,
    requested: int,
) -> Phase:
    """Decide where to go after an evaluation. Either REFINING or COMPLETE."""
    if (
        state.refinement_count == 0
        and evaluation.confidence_score >= settings.early_termination_threshold
        and candidate_count >= requested
    ):
        return Phase.COMPLETE

    if (
        evaluation.needs_refinement
        and state.refinement_count < settings.max_refinement_iterations
        and evaluation.confidence_score < settings.quality_threshold
    ):
        return Phase.REFINING

    return Phase.COMPLETE


def merge_caller_filters(plan: SearchPlan, caller_filters: SearchFilters | None) -> None:
    """Copy caller-supplied filters onto the plan; caller values win."""
    if caller_filters is None:
        return
    filters = plan.search_strategy.filters
    for name in _CALLER_FILTER_FIELDS:
        value = getattr(caller_filters, name)
        if value is not None:
            setattr(filters, name, value)


def apply_refinement(
    plan: SearchPlan,
    evaluation: EvaluationResult,
    execution_result: ExecutionResult | None,
) -> None:
    """
    Mutate `plan` according to the evaluator's suggestions.

    broaden   drop the experience-level filter, widen semantic to hybrid
    narrow    restrict roles to those among the current top 5 results
    reweight  replace ranking criteria from parameters["weights"]
    filter    merge parameters["filters"] into the plan's filters

    Malformed parameters are logged and skipped.
    """
    strategy = plan.search_strategy
    candidates = execution_result.candidates if execution_result else []

    for suggestion in evaluation.refinement_suggestions:
        params = suggestion.parameters or {}

        if suggestion.action == "broaden":
            strategy.filters.experience_levels = None
            if strategy.approach == "semantic":
                strategy.approach = "hybrid"

        elif suggestion.action == "narrow":
            if candidates:
                strategy.filters.roles = list(
                    dict.fromkeys(c.role for c in candidates[:_NARROW_TOP_N])
                )

        elif suggestion.action == "reweight":
            weights = params.get("weights")
            if isinstance(weights, dict):
                weights = [{"factor": k, "weight": v} for k, v in weights.items()]
            if not weights:
                continue
            try:
                strategy.ranking_criteria = _criteria_adapter.validate_python(weights)
            except ValidationError as e:
                logger.warning("Ignoring invalid reweight payload: %s", e.error_count())

        elif suggestion.action == "filter":
            payload = params.get("filters")
            if not payload:
                continue
            try:
                incoming = SearchFilters.model_validate(payload)
            except ValidationError as e:
                logger.warning("Ignoring invalid filter payload: %s", e.error_count())
                continue
            for name in incoming.model_fields_set:
                setattr(strategy.filters, name, getattr(incoming, name))


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------
# Each node records its phase first, then does its work and returns a
# partial update.
# ---------------------------------------------------------------------------


def _enter(state: SearchGraphState, phase: Phase) -> OrchestrationState:
    run = state["run"]
    run.phase = phase
    state["recorder"].record(run)
    return run


def _ms_since(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


async def plan_node(state: SearchGraphState) -> dict:
    run = _enter(state, Phase.PLANNING)

    start = time.perf_counter()
    search_plan = await plan_search(state["query"], llm=state["llm"])
    merge_caller_filters(search_plan, state.get("caller_filters"))

    run.plan = search_plan
    run.total_iterations = 1
    return {"planner_ms": _ms_since(start)}


async def execute_node(state: SearchGraphState) -> dict:
    run = _enter(state, Phase.EXECUTING)
    services = state["services"]

    start = time.perf_counter()
    run.execution_result = await execute_search(
        run.plan,
        state["max_results"],
        store=services.store,
        embedder=services.embedder,
    )
    return {"executor_ms": state.get("executor_ms", 0) + _ms_since(start)}


async def evaluate_node(state: SearchGraphState) -> dict:
    run = _enter(state, Phase.EVALUATING)

    start = time.perf_counter()
    evaluation = await evaluate(run.plan, run.execution_result, llm=state["llm"])
    run.evaluation = evaluation

    decision = next_phase(
        run, evaluation, len(run.execution_result.candidates), state["max_results"],
    )
    logger.info(
        "Iteration %d evaluated: confidence=%.2f, next=%s",
        run.total_iterations, evaluation.confidence_score, decision.value,
    )
    return {
        "next_phase": decision,
        "evaluator_ms": state.get("evaluator_ms", 0) + _ms_since(start),
        "evaluator_calls": state.get("evaluator_calls", 0) + 1,
    }


async def refine_node(state: SearchGraphState) -> dict:
    run = state["run"]
    run.refinement_count += 1
    _enter(state, Phase.REFINING)

    apply_refinement(run.plan, run.evaluation, run.execution_result)
    refinement = Refinement(
        iteration=run.refinement_count,
        reason=run.evaluation.refinement_reason or "Low quality scores",
        plan=run.plan.model_copy(deep=True),
    )
    run.total_iterations += 1

    logger.info(
        "Refinement %d: %s (actions=%s)",
        refinement.iteration, refinement.reason,
        [s.action for s in run.evaluation.refinement_suggestions],
    )
    return {"refinements": [*state.get("refinements", []), refinement]}


async def complete_node(state: SearchGraphState) -> dict:
    _enter(state, Phase.COMPLETE)
    return {}


def _route_after_evaluate(state: SearchGraphState) -> str:
    return state["next_phase"].value


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(SearchGraphState)
_builder.add_node("plan", plan_node)
_builder.add_node("execute", execute_node)
_builder.add_node("evaluate", evaluate_node)
_builder.add_node("refine", refine_node)
_builder.add_node("complete", complete_node)

_builder.add_edge(START, "plan")
_builder.add_edge("plan", "execute")
_builder.add_edge("execute", "evaluate")
_builder.add_conditional_edges(
    "evaluate",
    _route_after_evaluate,
    {Phase.REFINING.value: "refine", Phase.COMPLETE.value: "complete"},
)
_builder.add_edge("refine", "execute")
_builder.add_edge("complete", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def orchestrate_search(
    query: str,
    options: SearchOptions | None = None,
    *,
    services: SearchServices | None = None,
) -> OrchestrationResult:
    """
    Run the full agentic search for `query`.

    Args:
        query: Free-text description of who the caller is looking for.
        options: max_results, caller filters, requester id.
        services: Collaborators to use; defaults to the configured ones.

    Returns:
        OrchestrationResult with ranked results and the reasoning trace.

    Raises:
        RetrievalError: the candidate store failed during filtering or
            hydration.
        ProviderUnavailableError: default services could not be built.
    """
    options = options or SearchOptions()
    services = services or get_search_services()
    max_results = options.max_results or settings.default_max_results

    run = OrchestrationState(session_id=str(uuid.uuid4()))
    recorder = StateRecorder(services.sink)
    llm = CallCountingProvider(services.llm) if services.llm is not None else None

    initial_state: SearchGraphState = {
        "query": query,
        "max_results": max_results,
        "caller_filters": options.filters,
        "llm": llm,
        "services": services,
        "recorder": recorder,
        "run": run,
        "refinements": [],
        "planner_ms": 0,
        "executor_ms": 0,
        "evaluator_ms": 0,
        "evaluator_calls": 0,
    }

    logger.info(
        "Orchestrating search: session=%s, query='%s', max_results=%d, requester=%s",
        run.session_id, query[:80], max_results, options.requester_id,
    )

    start = time.perf_counter()
    try:
        final = await graph.ainvoke(initial_state)
    except Exception:
        logger.exception(
            "Orchestration failed in phase %s (session=%s)", run.phase.value, run.session_id,
        )
        run.phase = Phase.COMPLETE
        recorder.record(run)
        await recorder.flush()
        raise

    await recorder.flush()
    latency_ms = _ms_since(start)

    refinements: list[Refinement] = final.get("refinements", [])
    execution_result = run.execution_result
    evaluator_calls = max(1, final.get("evaluator_calls", 1))
    timings = AgentTimings(
        planner_ms=final.get("planner_ms", 0),
        executor_ms=final.get("executor_ms", 0),
        evaluator_ms=final.get("evaluator_ms", 0) // evaluator_calls,
        total_evaluator_ms=final.get("evaluator_ms", 0),
    )

    logger.info(
        "Search complete: session=%s, results=%d, iterations=%d, total=%dms "
        "(planner=%dms, executor=%dms, evaluator=%dms)",
        run.session_id, len(execution_result.candidates), len(refinements) + 1,
        latency_ms, timings.planner_ms, timings.executor_ms, timings.total_evaluator_ms,
    )

    return OrchestrationResult(
        session_id=run.session_id,
        query=query,
        agent_reasoning=AgentReasoning(
            plan=run.plan,
            execution_steps=execution_result.steps,
            evaluation=run.evaluation,
            refinements=refinements,
            total_iterations=len(refinements) + 1,
        ),
        results=execution_result.candidates,
        metadata=ResultMetadata(
            total_results=len(execution_result.candidates),
            latency_ms=latency_ms,
            model_call_count=llm.call_count if llm is not None else 0,
            search_strategy=run.plan.search_strategy.approach,
            agent_timings=timings,
        ),
    )
