# =============================================================================
# Unit Tests - Executor (Retrieval Fusion)
# =============================================================================
#
# Runs execute_search() against the in-memory candidate store from
# conftest.py, including branch failures and partial hydration failures.
# =============================================================================

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeCandidateStore, FakeEmbedder

from buildermatch.agents.executor import execute_search
from buildermatch.agents.planner import default_plan
from buildermatch.exceptions import RetrievalError
from buildermatch.models.search import SearchFilters
from buildermatch.services.candidate_store import LexicalHit, VectorHit


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _plan(query="React developer", approach="hybrid", **filters):
    p = default_plan(query, approach=approach)
    p.search_strategy.filters = SearchFilters(**filters)
    return p


@pytest.fixture
def store(make_candidate):
    return FakeCandidateStore(
        candidates=[
            make_candidate("s1", role="frontend"),
            make_candidate("s2", role="backend", skills=[("Python", "expert")]),
            make_candidate("both", role="fullstack"),
            make_candidate("k1", role="design", skills=[("Figma", "expert")]),
        ],
        vector_hits=[
            VectorHit(id="s1", similarity=0.9),
            VectorHit(id="both", similarity=0.8),
            VectorHit(id="s2", similarity=0.7),
            VectorHit(id="below-floor", similarity=0.4),
        ],
        lexical_hits=[
            LexicalHit(id="both", rank=1.0),
            LexicalHit(id="k1", rank=0.5),
        ],
    )


# ---------------------------------------------------------------------------
# Test: Retrieval Fusion
# ---------------------------------------------------------------------------


class TestRetrievalFusion:
    def test_hybrid_unions_both_branches(self, store, embedder):
        result = _run(execute_search(_plan(), 20, store=store, embedder=embedder))

        assert {c.id for c in result.candidates} == {"s1", "s2", "both", "k1"}
        assert result.total_candidates == 4
        # semantic ids first, then new keyword ids
        assert store.hydrate_requests == [["s1", "both", "s2", "k1"]]

    def test_scores_from_each_branch(self, store, embedder):
        result = _run(execute_search(_plan(), 20, store=store, embedder=embedder))
        by_id = {c.id: c for c in result.candidates}

        assert by_id["both"].semantic_score == 0.8
        assert by_id["both"].keyword_score == 1.0
        assert by_id["s1"].keyword_score == 0.0
        assert by_id["k1"].semantic_score == 0.0

    def test_semantic_only_skips_lexical(self, store, embedder):
        result = _run(execute_search(
            _plan(approach="semantic"), 20, store=store, embedder=embedder,
        ))
        assert "lexical_search" not in store.calls
        assert {c.id for c in result.candidates} == {"s1", "both", "s2"}

    def test_keyword_only_skips_embedding(self, store, embedder):
        result = _run(execute_search(
            _plan(approach="keyword"), 20, store=store, embedder=embedder,
        ))
        assert embedder.calls == []
        assert "vector_search" not in store.calls
        assert [c.id for c in result.candidates] == ["both", "k1"]

    def test_embeds_primary_and_secondary(self, store, embedder):
        p = _plan("Find a designer")
        p.query_intent.secondary = ["Figma", "UX"]
        _run(execute_search(p, 20, store=store, embedder=embedder))
        assert embedder.calls == ["Find a designer Figma UX"]

    def test_lexical_terms_include_filter_skills(self, store, embedder):
        p = _plan("Find a designer", skills=["Figma"])
        p.query_intent.secondary = ["UX"]
        _run(execute_search(p, 20, store=store, embedder=embedder))
        assert store.lexical_terms == [["Find a designer", "UX", "Figma"]]

    def test_step_trace(self, store, embedder):
        result = _run(execute_search(_plan(), 20, store=store, embedder=embedder))
        phases = [s.phase for s in result.steps]
        assert phases == [
            "embedding", "semantic_search", "keyword_search",
            "filtering", "enrichment", "ranking", "diversity",
        ]
        counts = {s.phase: s.result_count for s in result.steps}
        assert counts["semantic_search"] == 3
        assert counts["keyword_search"] == 2
        assert all(s.elapsed_ms >= 0 for s in result.steps)

    def test_plan_not_mutated(self, store, embedder):
        p = _plan(roles=["frontend"])
        before = p.model_dump()
        _run(execute_search(p, 20, store=store, embedder=embedder))
        assert p.model_dump() == before


# ---------------------------------------------------------------------------
# Test: Filtering, Ranking, Truncation
# ---------------------------------------------------------------------------


class TestRankingOutput:
    def test_filters_applied(self, store, embedder):
        result = _run(execute_search(
            _plan(roles=["frontend", "fullstack"]), 20, store=store, embedder=embedder,
        ))
        assert {c.role for c in result.candidates} <= {"frontend", "fullstack"}
        assert result.total_candidates == 4

    def test_sorted_and_bounded(self, store, embedder):
        result = _run(execute_search(_plan(), 20, store=store, embedder=embedder))
        scores = [c.final_score for c in result.candidates]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s <= 1.0 for s in scores)

    def test_truncated_to_max_results(self, store, embedder):
        result = _run(execute_search(_plan(), 2, store=store, embedder=embedder))
        assert len(result.candidates) == 2

    def test_diversity_cap(self, make_candidate, embedder):
        ids = [f"f{i}" for i in range(6)]
        store = FakeCandidateStore(
            candidates=[make_candidate(i, role="frontend") for i in ids],
            vector_hits=[VectorHit(id=i, similarity=0.9 - n * 0.01) for n, i in enumerate(ids)],
        )
        result = _run(execute_search(_plan(), 20, store=store, embedder=embedder))
        assert [c.id for c in result.candidates] == ["f0", "f1", "f2"]

    def test_query_skills_from_filters(self, store, embedder):
        result = _run(execute_search(
            _plan(skills=["Python"]), 20, store=store, embedder=embedder,
        ))
        by_id = {c.id: c for c in result.candidates}
        assert by_id["s2"].skill_match_score == 1.0
        assert by_id["s1"].skill_match_score == 0.0

    def test_query_skills_extracted_from_intent(self, store, embedder):
        result = _run(execute_search(
            _plan("figma wizard"), 20, store=store, embedder=embedder,
        ))
        by_id = {c.id: c for c in result.candidates}
        assert by_id["k1"].skill_match_score == 1.0

    def test_no_hits_is_empty_not_error(self, embedder):
        store = FakeCandidateStore()
        result = _run(execute_search(_plan("asdkjhasdkjh"), 20, store=store, embedder=embedder))
        assert result.candidates == []
        assert result.total_candidates == 0
        assert "hydrate" not in store.calls


# ---------------------------------------------------------------------------
# Test: Failure Handling
# ---------------------------------------------------------------------------


class RendezvousStore(FakeCandidateStore):
    """
    Each search call waits until the other one has started, so the two
    branches only both succeed when they are in flight together.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.arrived = 0
        self.both_started = asyncio.Event()

    async def _meet(self) -> None:
        self.arrived += 1
        if self.arrived == 2:
            self.both_started.set()
        await asyncio.wait_for(self.both_started.wait(), timeout=0.5)

    async def vector_search(self, vector, limit, min_similarity):
        await self._meet()
        return await super().vector_search(vector, limit, min_similarity)

    async def lexical_search(self, terms, limit):
        await self._meet()
        return await super().lexical_search(terms, limit)


class TestConcurrency:
    def test_hybrid_branches_run_concurrently(self, make_candidate, embedder):
        store = RendezvousStore(
            candidates=[make_candidate("sem"), make_candidate("kw", role="design")],
            vector_hits=[VectorHit(id="sem", similarity=0.9)],
            lexical_hits=[LexicalHit(id="kw", rank=1.0)],
        )
        result = _run(execute_search(_plan(), 20, store=store, embedder=embedder, timeout=2.0))

        assert store.both_started.is_set()
        assert {c.id for c in result.candidates} == {"sem", "kw"}
        counts = {s.phase: s.result_count for s in result.steps}
        assert counts["semantic_search"] == 1
        assert counts["keyword_search"] == 1


class TestBranchFailures:
    def test_vector_failure_keeps_keyword_branch(self, store, embedder):
        store.fail_vector = True
        result = _run(execute_search(_plan(), 20, store=store, embedder=embedder))

        assert [c.id for c in result.candidates] == ["both", "k1"]
        step = next(s for s in result.steps if s.phase == "semantic_search")
        assert step.result_count == 0

    def test_lexical_failure_keeps_semantic_branch(self, store, embedder):
        store.fail_lexical = True
        result = _run(execute_search(_plan(), 20, store=store, embedder=embedder))
        assert {c.id for c in result.candidates} == {"s1", "both", "s2"}

    def test_embedding_failure_empties_semantic_only(self, store):
        result = _run(execute_search(
            _plan(), 20, store=store, embedder=FakeEmbedder(fail=True),
        ))
        assert "vector_search" not in store.calls
        assert [c.id for c in result.candidates] == ["both", "k1"]

    def test_branch_timeout_is_a_failure(self, store, embedder):
        store.slow_vector = 1.0
        result = _run(execute_search(
            _plan(), 20, store=store, embedder=embedder, timeout=0.05,
        ))
        assert [c.id for c in result.candidates] == ["both", "k1"]

    def test_filter_failure_is_fatal(self, store, embedder):
        store.fail_filter = True
        with pytest.raises(RetrievalError):
            _run(execute_search(_plan(), 20, store=store, embedder=embedder))


class TestHydrationFailures:
    def test_one_branch_failing_keeps_the_other(self, make_candidate, embedder):
        store = FakeCandidateStore(
            candidates=[
                make_candidate("sem-only", role="backend"),
                make_candidate("kw-1", role="frontend"),
                make_candidate("kw-2", role="design"),
            ],
            vector_hits=[VectorHit(id="sem-only", similarity=0.9)],
            lexical_hits=[LexicalHit(id="kw-1", rank=1.0), LexicalHit(id="kw-2", rank=0.6)],
            poison_ids={"sem-only"},
        )
        result = _run(execute_search(_plan(), 20, store=store, embedder=embedder))

        assert [c.id for c in result.candidates] == ["kw-1", "kw-2"]
        # one batched attempt, then one per branch
        assert store.hydrate_requests[0] == ["sem-only", "kw-1", "kw-2"]
        assert sorted(store.hydrate_requests[1:]) == [["kw-1", "kw-2"], ["sem-only"]]

    def test_shared_candidate_survives_via_healthy_branch(self, make_candidate, embedder):
        store = FakeCandidateStore(
            candidates=[make_candidate("shared"), make_candidate("bad", role="backend")],
            vector_hits=[VectorHit(id="bad", similarity=0.9), VectorHit(id="shared", similarity=0.8)],
            lexical_hits=[LexicalHit(id="shared", rank=1.0)],
            poison_ids={"bad"},
        )
        result = _run(execute_search(_plan(), 20, store=store, embedder=embedder))
        assert [c.id for c in result.candidates] == ["shared"]
        assert result.candidates[0].semantic_score == 0.8

    def test_every_branch_failing_is_fatal(self, make_candidate, embedder):
        store = FakeCandidateStore(
            candidates=[make_candidate("a"), make_candidate("b")],
            vector_hits=[VectorHit(id="a", similarity=0.9)],
            lexical_hits=[LexicalHit(id="b", rank=1.0)],
            poison_ids={"a", "b"},
        )
        with pytest.raises(RetrievalError):
            _run(execute_search(_plan(), 20, store=store, embedder=embedder))
