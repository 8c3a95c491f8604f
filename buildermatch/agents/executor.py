# =============================================================================
# Executor Agent - Retrieval Fusion
# =============================================================================
#
# Runs one search plan against the candidate store and returns ranked,
# diversity-capped ScoredCandidates plus a step trace.
#
# PIPELINE:
#
#   ┌─ semantic branch ──────────────────┐
#   │ embed(retrieval text) → vector     │
#   │ vector_search(floor 0.6, ≤100)     │──┐
#   └────────────────────────────────────┘  │   union ids   filter_ids   hydrate
#   ┌─ keyword branch ───────────────────┐  ├──▶ (dedup) ──▶ (1 query) ──▶ (1 query)
#   │ lexical_search(intent + skills)    │──┘                                │
#   └────────────────────────────────────┘                                   ▼
#                                     score → stable sort → diversity cap → truncate
#
# FAILURE MODEL:
#   - A branch that errors or times out contributes zero results; the other
#     branch is unaffected. An embedding failure empties the semantic branch.
#   - filter_ids failing is fatal (RetrievalError).
#   - If the batched hydrate fails, each branch's ids are hydrated on their
#     own and any branch that still fails is dropped. Only when every branch
#     fails does the error propagate, as RetrievalError.
#
# The plan is read, never modified.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from buildermatch.config import settings
from buildermatch.exceptions import RetrievalError
from buildermatch.models.search import (
    Candidate,
    ExecutionResult,
    ExecutionStep,
    SearchPlan,
)
from buildermatch.services.candidate_store import CandidateStore, LexicalHit, VectorHit
from buildermatch.services.embedder import EmbeddingProvider
from buildermatch.services.ranking import (
    ensure_diversity,
    extract_query_skills,
    rank,
    score_candidate,
    weights_from_criteria,
)

logger = logging.getLogger(__name__)

StepFactory = Callable[[str, str, int], ExecutionStep]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def execute_search(
    plan: SearchPlan,
    max_results: int,
    *,
    store: CandidateStore,
    embedder: EmbeddingProvider,
    timeout: float | None = None,
) -> ExecutionResult:
    """
    Retrieve, filter, hydrate, score and rank candidates for `plan`.

    Args:
        plan: The current search plan.
        max_results: Maximum number of candidates to return.
        store: Candidate store to query.
        embedder: Embedding provider (normally cache-fronted).
        timeout: Per-call bound for every store and embedding call.

    Returns:
        ExecutionResult with candidates sorted by final_score, descending.

    Raises:
        RetrievalError: filtering failed, or hydration failed for every branch.
    """
    timeout = timeout if timeout is not None else settings.external_call_timeout_seconds
    started = time.perf_counter()
    steps: list[ExecutionStep] = []

    def step(phase: str, description: str, result_count: int) -> ExecutionStep:
        return ExecutionStep(
            phase=phase,
            description=description,
            result_count=result_count,
            elapsed_ms=int((time.perf_counter() - started) * 1000),
        )

    approach = plan.search_strategy.approach
    filters = plan.search_strategy.filters

    # --- Retrieval: both branches concurrently ---
    (semantic_hits, semantic_steps), (keyword_hits, keyword_steps) = await asyncio.gather(
        _semantic_branch(plan, store, embedder, timeout, step)
        if approach in ("semantic", "hybrid") else _skipped(),
        _keyword_branch(plan, store, timeout, step)
        if approach in ("keyword", "hybrid") else _skipped(),
    )
    steps.extend(semantic_steps)
    steps.extend(keyword_steps)

    semantic_scores = {hit.id: hit.similarity for hit in semantic_hits}
    keyword_scores = {hit.id: hit.rank for hit in keyword_hits}

    # Semantic ids first, then keyword ids not already seen.
    union_ids = list(dict.fromkeys([*semantic_scores, *keyword_scores]))

    # --- Hard filters (fatal on failure) ---
    try:
        filtered_ids = await asyncio.wait_for(
            store.filter_ids(union_ids, filters), timeout=timeout,
        ) if union_ids else []
    except Exception as e:
        logger.exception("Candidate filtering failed for %d ids", len(union_ids))
        raise RetrievalError(f"Candidate filtering failed: {e}") from e
    steps.append(step(
        "filtering", f"Applied filters, {len(filtered_ids)} candidates remaining",
        len(filtered_ids),
    ))

    # --- Hydration ---
    candidates = await _hydrate(
        filtered_ids,
        branches={"semantic": semantic_scores.keys(), "keyword": keyword_scores.keys()},
        store=store,
        timeout=timeout,
    )
    steps.append(step("enrichment", f"Enriched {len(candidates)} profiles", len(candidates)))

    # --- Scoring ---
    intent = plan.query_intent
    query_skills = filters.skills or extract_query_skills(
        " ".join([intent.primary, *intent.secondary])
    )
    weights = weights_from_criteria(plan.search_strategy.ranking_criteria)
    now = datetime.now(timezone.utc)

    ranked = rank(
        score_candidate(
            candidate,
            semantic=semantic_scores.get(candidate.id, 0.0),
            keyword=keyword_scores.get(candidate.id, 0.0),
            query_skills=query_skills,
            weights=weights,
            primary_intent=intent.primary,
            now=now,
        )
        for candidate in candidates
    )
    steps.append(step("ranking", f"Scored and ranked {len(ranked)} candidates", len(ranked)))

    diverse = ensure_diversity(ranked, settings.diversity_max_per_role)
    final = diverse[:max_results]
    steps.append(step(
        "diversity", f"Applied diversity filter, {len(final)} final results", len(final),
    ))

    logger.info(
        "Executor: %d results from %d candidates (approach=%s, %dms)",
        len(final), len(union_ids), approach, steps[-1].elapsed_ms,
    )

    return ExecutionResult(candidates=final, steps=steps, total_candidates=len(union_ids))


# ---------------------------------------------------------------------------
# Retrieval branches
# ---------------------------------------------------------------------------
# Each branch returns (hits, steps) and never raises.
# ---------------------------------------------------------------------------


async def _skipped() -> tuple[list, list[ExecutionStep]]:
    return [], []


async def _semantic_branch(
    plan: SearchPlan,
    store: CandidateStore,
    embedder: EmbeddingProvider,
    timeout: float,
    step: StepFactory,
) -> tuple[list[VectorHit], list[ExecutionStep]]:
    try:
        vector = await asyncio.wait_for(embedder.embed(plan.retrieval_text()), timeout=timeout)
    except Exception as e:
        logger.warning("Query embedding failed, skipping semantic search: %r", e)
        return [], [step("embedding", f"Embedding failed ({type(e).__name__})", 0)]

    steps = [step("embedding", "Generated query embedding", 0)]
    try:
        hits = await asyncio.wait_for(
            store.vector_search(
                vector,
                limit=settings.semantic_search_limit,
                min_similarity=settings.semantic_similarity_floor,
            ),
            timeout=timeout,
        )
    except Exception as e:
        logger.warning("Semantic search failed, treating as empty: %r", e)
        steps.append(step("semantic_search", f"Semantic search failed ({type(e).__name__})", 0))
        return [], steps

    steps.append(step(
        "semantic_search", f"Found {len(hits)} candidates via semantic search", len(hits),
    ))
    return hits, steps


async def _keyword_branch(
    plan: SearchPlan,
    store: CandidateStore,
    timeout: float,
    step: StepFactory,
) -> tuple[list[LexicalHit], list[ExecutionStep]]:
    terms = [
        plan.query_intent.primary,
        *plan.query_intent.secondary,
        *(plan.search_strategy.filters.skills or []),
    ]
    try:
        hits = await asyncio.wait_for(
            store.lexical_search(terms, limit=settings.keyword_search_limit),
            timeout=timeout,
        )
    except Exception as e:
        logger.warning("Keyword search failed, treating as empty: %r", e)
        return [], [step("keyword_search", f"Keyword search failed ({type(e).__name__})", 0)]

    return hits, [step(
        "keyword_search", f"Found {len(hits)} candidates via keyword search", len(hits),
    )]


# ---------------------------------------------------------------------------
# Hydration
# ---------------------------------------------------------------------------


async def _hydrate(
    ids: list[str],
    *,
    branches: dict[str, Iterable[str]],
    store: CandidateStore,
    timeout: float,
) -> list[Candidate]:
    """
    One batched hydrate; on failure, one hydrate per branch.

    `branches` maps branch name to the ids that branch retrieved. A candidate
    found by both branches survives if either branch hydrates.
    """
    if not ids:
        return []

    try:
        return await asyncio.wait_for(store.hydrate(ids), timeout=timeout)
    except Exception as batch_error:
        logger.warning("Batched hydration of %d ids failed, retrying per branch: %r",
                       len(ids), batch_error)
        first_error = batch_error

    branch_ids: dict[str, list[str]] = {}
    for name, members in branches.items():
        wanted = set(members)
        selected = [i for i in ids if i in wanted]
        if selected:
            branch_ids[name] = selected

    results = await asyncio.gather(
        *(asyncio.wait_for(store.hydrate(members), timeout=timeout)
          for members in branch_ids.values()),
        return_exceptions=True,
    )

    by_id: dict[str, Candidate] = {}
    survived = 0
    for name, result in zip(branch_ids, results):
        if isinstance(result, BaseException):
            logger.warning("Hydration failed for %s branch, dropping it: %r", name, result)
            continue
        survived += 1
        for candidate in result:
            by_id.setdefault(candidate.id, candidate)

    if not survived:
        logger.error("Hydration failed for every retrieval branch")
        raise RetrievalError(f"Candidate hydration failed: {first_error}") from first_error

    return [by_id[i] for i in ids if i in by_id]
