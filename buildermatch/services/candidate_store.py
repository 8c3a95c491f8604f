# =============================================================================
# Candidate Store - Batched Retrieval over Builder Profiles
# =============================================================================
#
# The executor only ever talks to the store through four batched calls:
#
#   vector_search(vector, limit, min_similarity) -> [VectorHit]
#   lexical_search(terms, limit)                 -> [LexicalHit]
#   filter_ids(ids, filters)                     -> [id]
#   hydrate(ids)                                 -> [Candidate]
#
# None of them issue per-candidate queries. filter_ids and hydrate preserve
# the order of the ids they are given, so retrieval order survives into the
# stable ranking sort.
#
# ARCHITECTURE:
#   CandidateStore (Protocol)
#   └── PgCandidateStore - PostgreSQL + pgvector cosine distance + tsvector
#       ├── vector_search()  - 1 - cosine_distance as similarity, floor applied
#       ├── lexical_search() - ts_rank over prefix terms, normalised to [0,1]
#       ├── filter_ids()     - one IN (...) query with the hard filters
#       └── hydrate()        - selectinload skills + projects
# =============================================================================

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import Text, cast, func, select
from sqlalchemy.orm import selectinload

from buildermatch.config import settings
from buildermatch.db.engine import async_session_factory
from buildermatch.db.models import Builder
from buildermatch.models.search import (
    Candidate,
    ProjectRecord,
    SearchFilters,
    SkillRecord,
)

logger = logging.getLogger(__name__)

_TERM_RE = re.compile(r"[a-z0-9]+")
_MIN_TERM_LENGTH = 3


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class VectorHit:
    id: str
    similarity: float  # 1 - cosine distance


@dataclass
class LexicalHit:
    id: str
    rank: float  # normalised to [0, 1] within one result batch


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class CandidateStore(Protocol):
    async def vector_search(
        self, vector: list[float], limit: int, min_similarity: float,
    ) -> list[VectorHit]:
        """Nearest profiles by embedding, similarity descending, floor applied."""
        ...

    async def lexical_search(self, terms: list[str], limit: int) -> list[LexicalHit]:
        """Full-text matches for any of `terms`, rank descending."""
        ...

    async def filter_ids(self, ids: list[str], filters: SearchFilters) -> list[str]:
        """Subset of `ids` satisfying the hard filters, input order kept."""
        ...

    async def hydrate(self, ids: list[str]) -> list[Candidate]:
        """Full profiles for `ids`, input order kept, unknown ids skipped."""
        ...


def lexical_terms(terms: list[str]) -> list[str]:
    """
    Normalise free-text terms into distinct lowercase tokens for tsquery.

    "React Native, UI/UX" -> ["react", "native"]  (tokens < 3 chars dropped)
    """
    seen: dict[str, None] = {}
    for term in terms:
        for token in _TERM_RE.findall(term.lower()):
            if len(token) >= _MIN_TERM_LENGTH:
                seen.setdefault(token, None)
    return list(seen)


def normalise_ranks(rows: list[tuple[str, float]]) -> list[LexicalHit]:
    """Scale raw ts_rank values by the batch maximum into [0, 1]."""
    if not rows:
        return []
    top = max(rank for _, rank in rows)
    if top <= 0:
        return [LexicalHit(id=builder_id, rank=0.0) for builder_id, _ in rows]
    return [LexicalHit(id=builder_id, rank=round(rank / top, 4)) for builder_id, rank in rows]


# ---------------------------------------------------------------------------
# Implementation: PostgreSQL
# ---------------------------------------------------------------------------


class PgCandidateStore:
    """
    PostgreSQL-backed store.

    Enum columns (role, experience level, availability) are compared as
    text so the hard filters work with plain string values.
    """

    def __init__(self, max_projects: int | None = None) -> None:
        self._max_projects = (
            max_projects if max_projects is not None else settings.max_projects_per_candidate
        )

    async def vector_search(
        self, vector: list[float], limit: int, min_similarity: float,
    ) -> list[VectorHit]:
        distance = Builder.profile_embedding.cosine_distance(vector)
        stmt = (
            select(Builder.id, distance.label("distance"))
            .where(Builder.profile_embedding.is_not(None))
            .where(distance <= 1.0 - min_similarity)
            .order_by(distance)
            .limit(limit)
        )

        async with async_session_factory() as session:
            rows = (await session.execute(stmt)).all()

        logger.debug("Vector search returned %d rows (limit=%d)", len(rows), limit)
        return [
            VectorHit(id=builder_id, similarity=round(1.0 - float(dist), 4))
            for builder_id, dist in rows
        ]

    async def lexical_search(self, terms: list[str], limit: int) -> list[LexicalHit]:
        tokens = lexical_terms(terms)
        if not tokens:
            return []

        # Prefix match on every token, any token may match.
        query = func.to_tsquery("english", " | ".join(f"{t}:*" for t in tokens))
        document = func.coalesce(
            Builder.search_vector,
            func.to_tsvector(
                "english",
                func.concat_ws(" ", Builder.name, Builder.bio, cast(Builder.role, Text)),
            ),
        )
        rank = func.ts_rank(document, query)
        stmt = (
            select(Builder.id, rank.label("rank"))
            .where(document.op("@@")(query))
            .order_by(rank.desc())
            .limit(limit)
        )

        async with async_session_factory() as session:
            rows = (await session.execute(stmt)).all()

        logger.debug("Lexical search for %s returned %d rows", tokens, len(rows))
        return normalise_ranks([(builder_id, float(r)) for builder_id, r in rows])

    async def filter_ids(self, ids: list[str], filters: SearchFilters) -> list[str]:
        if not ids:
            return []

        stmt = select(Builder.id).where(Builder.id.in_(ids))
        if filters.roles:
            stmt = stmt.where(cast(Builder.role, Text).in_(filters.roles))
        if filters.experience_levels:
            stmt = stmt.where(
                cast(Builder.experience_level, Text).in_(filters.experience_levels)
            )
        if filters.availability:
            stmt = stmt.where(
                cast(Builder.availability_status, Text).in_(filters.availability)
            )
        if filters.location:
            stmt = stmt.where(Builder.location.ilike(f"%{filters.location}%"))

        async with async_session_factory() as session:
            allowed = set((await session.execute(stmt)).scalars().all())

        return [builder_id for builder_id in ids if builder_id in allowed]

    async def hydrate(self, ids: list[str]) -> list[Candidate]:
        if not ids:
            return []

        stmt = (
            select(Builder)
            .where(Builder.id.in_(ids))
            .options(selectinload(Builder.skills), selectinload(Builder.projects))
        )

        async with async_session_factory() as session:
            builders = (await session.execute(stmt)).scalars().all()
            by_id = {b.id: self._to_candidate(b) for b in builders}

        return [by_id[builder_id] for builder_id in ids if builder_id in by_id]

    def _to_candidate(self, builder: Builder) -> Candidate:
        return Candidate(
            id=builder.id,
            name=builder.name,
            bio=builder.bio,
            role=str(builder.role),
            experience_level=str(builder.experience_level),
            avatar_url=builder.avatar_url,
            location=builder.location,
            availability_status=str(builder.availability_status),
            github=builder.github,
            updated_at=builder.updated_at,
            skills=[
                SkillRecord(
                    name=s.name,
                    category=str(s.category),
                    proficiency_level=str(s.proficiency_level),
                )
                for s in builder.skills
            ],
            projects=[
                ProjectRecord(
                    title=p.title,
                    description=p.description,
                    tech_stack=[str(t) for t in (p.tech_stack or [])],
                )
                for p in builder.projects[: self._max_projects]
            ],
        )
