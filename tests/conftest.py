# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# In-memory stand-ins for every external collaborator of the search core,
# so the whole pipeline runs without a database, Redis or API keys.
# =============================================================================

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import pytest

from buildermatch.agents.orchestrator import SearchServices
from buildermatch.models.search import Candidate, ProjectRecord, SearchFilters, SkillRecord
from buildermatch.services.candidate_store import LexicalHit, VectorHit
from buildermatch.services.llm import LLMResponse


# ---------------------------------------------------------------------------
# Candidate store
# ---------------------------------------------------------------------------


class FakeCandidateStore:
    """
    Candidate store over a fixed set of profiles and canned search hits.

    Failure knobs:
      fail_vector / fail_lexical / fail_filter - raise from that call
      slow_vector                              - sleep before answering
      poison_ids                               - hydrate() raises whenever a
                                                 requested id is in this set
    """

    def __init__(
        self,
        candidates: list[Candidate] = (),
        vector_hits: list[VectorHit] = (),
        lexical_hits: list[LexicalHit] = (),
        *,
        fail_vector: bool = False,
        fail_lexical: bool = False,
        fail_filter: bool = False,
        slow_vector: float = 0.0,
        poison_ids: set[str] = frozenset(),
    ) -> None:
        self.candidates = {c.id: c for c in candidates}
        self.vector_hits = list(vector_hits)
        self.lexical_hits = list(lexical_hits)
        self.fail_vector = fail_vector
        self.fail_lexical = fail_lexical
        self.fail_filter = fail_filter
        self.slow_vector = slow_vector
        self.poison_ids = set(poison_ids)
        self.calls: list[str] = []
        self.hydrate_requests: list[list[str]] = []
        self.lexical_terms: list[list[str]] = []

    async def vector_search(self, vector, limit, min_similarity):
        self.calls.append("vector_search")
        if self.slow_vector:
            await asyncio.sleep(self.slow_vector)
        if self.fail_vector:
            raise ConnectionError("vector index unavailable")
        return [h for h in self.vector_hits if h.similarity >= min_similarity][:limit]

    async def lexical_search(self, terms, limit):
        self.calls.append("lexical_search")
        self.lexical_terms.append(list(terms))
        if self.fail_lexical:
            raise ConnectionError("full-text index unavailable")
        return self.lexical_hits[:limit]

    async def filter_ids(self, ids, filters: SearchFilters):
        self.calls.append("filter_ids")
        if self.fail_filter:
            raise ConnectionError("database unreachable")
        kept = []
        for builder_id in ids:
            c = self.candidates.get(builder_id)
            if c is None:
                continue
            if filters.roles and c.role not in filters.roles:
                continue
            if filters.experience_levels and c.experience_level not in filters.experience_levels:
                continue
            if filters.availability and c.availability_status not in filters.availability:
                continue
            if filters.location and filters.location.lower() not in (c.location or "").lower():
                continue
            kept.append(builder_id)
        return kept

    async def hydrate(self, ids):
        self.calls.append("hydrate")
        self.hydrate_requests.append(list(ids))
        if self.poison_ids & set(ids):
            raise ConnectionError("hydration failed")
        return [self.candidates[i] for i in ids if i in self.candidates]


# ---------------------------------------------------------------------------
# Embedder, sink, LLM
# ---------------------------------------------------------------------------


class FakeEmbedder:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise ConnectionError("embedding provider down")
        return [0.1, 0.2, 0.3]


class RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.snapshots: list[tuple[str, dict]] = []

    async def upsert(self, session_id: str, state: dict) -> None:
        if self.fail:
            raise ConnectionError("agent_states table unavailable")
        self.snapshots.append((session_id, state))

    @property
    def phases(self) -> list[str]:
        return [state["phase"] for _, state in self.snapshots]


class RoutingLLM:
    """
    Fake model that answers planner and evaluator prompts differently.

    `plan` / `decision` are dicts serialised as the response, or exceptions
    to raise. Every call is counted.
    """

    def __init__(self, plan=None, decision=None) -> None:
        self.plan = plan
        self.decision = decision
        self.calls = 0

    async def complete(self, messages, system=None, temperature=None, max_tokens=None):
        self.calls += 1
        payload = self.plan if "search planning agent" in (system or "") else self.decision
        if isinstance(payload, Exception):
            raise payload
        return LLMResponse(
            content=json.dumps(payload),
            model="fake-model",
            input_tokens=10,
            output_tokens=10,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def build_candidate(
    builder_id: str,
    *,
    role: str = "frontend",
    skills: list[tuple[str, str]] = (("React", "advanced"),),
    availability: str = "available",
    experience_level: str = "intermediate",
    bio: str | None = None,
    avatar_url: str | None = None,
    github: str | None = None,
    projects: int = 0,
    location: str | None = None,
    updated_at: datetime | None = None,
) -> Candidate:
    return Candidate(
        id=builder_id,
        name=f"Builder {builder_id}",
        bio=bio,
        role=role,
        experience_level=experience_level,
        avatar_url=avatar_url,
        location=location,
        availability_status=availability,
        github=github,
        updated_at=updated_at or datetime.now(timezone.utc),
        skills=[
            SkillRecord(name=name, category="framework", proficiency_level=level)
            for name, level in skills
        ],
        projects=[
            ProjectRecord(title=f"Project {n}", description="demo", tech_stack=["React"])
            for n in range(projects)
        ],
    )


@pytest.fixture
def make_candidate():
    return build_candidate


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_services(embedder, sink):
    def _make(store: FakeCandidateStore, llm=None) -> SearchServices:
        return SearchServices(llm=llm, embedder=embedder, store=store, sink=sink)

    return _make
