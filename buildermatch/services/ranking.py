# =============================================================================
# Ranking Engine - Multi-Factor Scoring & Diversity
# =============================================================================
#
# Pure functions over one candidate plus query context. No I/O, no clock
# reads except where a `now` default is taken, so every score can be
# reproduced in tests by passing `now` explicitly.
#
# FACTORS (each in [0,1] unless noted):
#   semantic_score         - cosine similarity from the vector branch
#   keyword_score          - normalised ts_rank from the lexical branch
#   skill_match_score      - matched fraction × mean proficiency of matches
#   availability_boost     - multiplicative: 1.2 / 0.9 / 0.5 (1.0 unknown)
#   recent_activity_boost  - exp(-days/30) * 0.2 + 0.8, floor 0.8
#   completeness_boost     - avatar .3 + project .3 + github .2 + long bio .2
#
# final_score = Σ factor × weight, clamped to [0,1].
# Default weights: .35 / .25 / .20 / .10 / .05 / .05 (order as above).
# =============================================================================

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import TypeVar

from buildermatch.models.search import (
    Candidate,
    RankingCriterion,
    RankingFactors,
    RelevanceFactor,
    ScoredCandidate,
    SkillRecord,
)

CandidateT = TypeVar("CandidateT", bound=Candidate)

DEFAULT_WEIGHTS: dict[str, float] = {
    "semantic": 0.35,
    "keyword": 0.25,
    "skill_match": 0.20,
    "availability": 0.10,
    "recent_activity": 0.05,
    "completeness": 0.05,
}

# Names a planner may use in ranking criteria, mapped to scoring factors.
# Criteria naming anything else ("React experience", "relevance") carry no
# scoring weight.
_FACTOR_ALIASES: dict[str, str] = {
    "semantic": "semantic",
    "semantic_match": "semantic",
    "semantic_similarity": "semantic",
    "keyword": "keyword",
    "keyword_match": "keyword",
    "skill": "skill_match",
    "skills": "skill_match",
    "skill_match": "skill_match",
    "availability": "availability",
    "recent_activity": "recent_activity",
    "recency": "recent_activity",
    "activity": "recent_activity",
    "completeness": "completeness",
    "profile_completeness": "completeness",
}

PROFICIENCY_WEIGHTS: dict[str, float] = {
    "beginner": 0.25,
    "intermediate": 0.5,
    "advanced": 0.75,
    "expert": 1.0,
}

AVAILABILITY_BOOSTS: dict[str, float] = {
    "available": 1.2,
    "busy": 0.9,
    "not_looking": 0.5,
}

COMMON_SKILLS: tuple[str, ...] = (
    "react", "vue", "angular", "node", "python", "java", "javascript",
    "typescript", "go", "rust", "php", "ruby", "swift", "kotlin", "django",
    "flask", "express", "next", "nuxt", "svelte", "mongodb", "postgresql",
    "mysql", "redis", "docker", "kubernetes", "aws", "gcp", "azure", "figma",
    "sketch", "adobe", "design", "ui", "ux",
)

_NEUTRAL_SKILL_SCORE = 0.5
_RELEVANCE_FACTOR_FLOOR = 0.1


# ---------------------------------------------------------------------------
# Individual factors
# ---------------------------------------------------------------------------


def _skill_matches(skill_name: str, query_skills: Sequence[str]) -> bool:
    name = skill_name.lower()
    return any(q.lower() in name or name in q.lower() for q in query_skills)


def matched_skills(skills: Sequence[SkillRecord], query_skills: Sequence[str]) -> list[SkillRecord]:
    """Candidate skills that match any query skill, in profile order."""
    return [s for s in skills if _skill_matches(s.name, query_skills)]


def skill_match_score(skills: Sequence[SkillRecord], query_skills: Sequence[str]) -> float:
    """
    Fraction of query skills found on the profile, times the mean
    proficiency of the candidate skills that matched. Always in [0, 1].

    Matching is a case-insensitive substring test in both directions, so
    "React" matches "React Native" and "Postgres" matches "PostgreSQL 16".
    Returns 0.5 when there is nothing to match against.
    """
    if not query_skills:
        return _NEUTRAL_SKILL_SCORE

    matched = matched_skills(skills, query_skills)
    if not matched:
        return 0.0

    found = sum(
        1 for q in query_skills if any(_skill_matches(s.name, [q]) for s in skills)
    )
    ratio = found / len(query_skills)
    proficiency = sum(
        PROFICIENCY_WEIGHTS.get(s.proficiency_level.lower(), 0.5) for s in matched
    ) / len(matched)
    return ratio * proficiency


def availability_boost(status: str) -> float:
    return AVAILABILITY_BOOSTS.get(status, 1.0)


def recent_activity_boost(updated_at: datetime, now: datetime | None = None) -> float:
    now = now or datetime.now(timezone.utc)
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    days = max(0.0, (now - updated_at).total_seconds() / 86400)
    return math.exp(-days / 30) * 0.2 + 0.8


def completeness_boost(candidate: Candidate) -> float:
    score = 0.0
    if candidate.avatar_url:
        score += 0.3
    if candidate.projects:
        score += 0.3
    if candidate.github:
        score += 0.2
    if candidate.bio and len(candidate.bio) > 100:
        score += 0.2
    return round(score, 4)


# ---------------------------------------------------------------------------
# Weights & final score
# ---------------------------------------------------------------------------


def _factor_key(name: str) -> str | None:
    key = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    return _FACTOR_ALIASES.get(key)


def weights_from_criteria(criteria: Iterable[RankingCriterion]) -> dict[str, float]:
    """Default weights with any criterion that names a known factor applied on top."""
    weights = dict(DEFAULT_WEIGHTS)
    for criterion in criteria:
        key = _factor_key(criterion.factor)
        if key is not None:
            weights[key] = criterion.weight
    return weights


def final_score(factors: RankingFactors, weights: dict[str, float] | None = None) -> float:
    w = DEFAULT_WEIGHTS if weights is None else {**DEFAULT_WEIGHTS, **weights}
    score = (
        factors.semantic_score * w["semantic"]
        + factors.keyword_score * w["keyword"]
        + factors.skill_match_score * w["skill_match"]
        + factors.availability_boost * w["availability"]
        + factors.recent_activity_boost * w["recent_activity"]
        + factors.completeness_boost * w["completeness"]
    )
    return min(1.0, max(0.0, score))


# ---------------------------------------------------------------------------
# Query skills
# ---------------------------------------------------------------------------


def extract_query_skills(text: str) -> list[str]:
    """Known skill names that appear as whole words in `text`."""
    lowered = text.lower()
    return [
        skill for skill in COMMON_SKILLS
        if re.search(rf"(?<![a-z0-9]){re.escape(skill)}(?![a-z0-9])", lowered)
    ]


# ---------------------------------------------------------------------------
# Explanation
# ---------------------------------------------------------------------------


def match_explanation(
    factors: RankingFactors,
    matched: Sequence[SkillRecord],
    primary_intent: str,
) -> str:
    reasons: list[str] = []
    if factors.semantic_score > 0.7:
        reasons.append("Strong semantic match with your query")
    if factors.skill_match_score > 0.6 and matched:
        reasons.append("Relevant skills: " + ", ".join(s.name for s in matched[:3]))
    if factors.availability_boost > 1.0:
        reasons.append("Currently available for projects")

    if not reasons:
        return f"Matches your search for {primary_intent}"
    return ". ".join(reasons) + "."


def relevance_factors(factors: RankingFactors) -> list[RelevanceFactor]:
    candidates = [
        ("Semantic match", factors.semantic_score),
        ("Keyword match", factors.keyword_score),
        ("Skill match", factors.skill_match_score),
        ("Availability", max(0.0, factors.availability_boost - 1.0)),
        ("Profile completeness", factors.completeness_boost),
    ]
    return [
        RelevanceFactor(factor=name, contribution=round(value, 4))
        for name, value in candidates
        if value > _RELEVANCE_FACTOR_FLOOR
    ]


# ---------------------------------------------------------------------------
# Candidate scoring
# ---------------------------------------------------------------------------


def score_candidate(
    candidate: Candidate,
    *,
    semantic: float,
    keyword: float,
    query_skills: Sequence[str],
    weights: dict[str, float],
    primary_intent: str,
    now: datetime | None = None,
) -> ScoredCandidate:
    """Compute all factors for one candidate and build its ScoredCandidate."""
    matched = matched_skills(candidate.skills, query_skills)
    factors = RankingFactors(
        semantic_score=semantic,
        keyword_score=keyword,
        skill_match_score=skill_match_score(candidate.skills, query_skills),
        availability_boost=availability_boost(candidate.availability_status),
        recent_activity_boost=recent_activity_boost(candidate.updated_at, now),
        completeness_boost=completeness_boost(candidate),
    )
    return ScoredCandidate(
        **candidate.model_dump(),
        **factors.model_dump(),
        final_score=final_score(factors, weights),
        match_explanation=match_explanation(factors, matched, primary_intent),
        relevance_factors=relevance_factors(factors),
    )


def rank(scored: Iterable[ScoredCandidate]) -> list[ScoredCandidate]:
    """Sort by final score, descending. Stable: ties keep retrieval order."""
    return sorted(scored, key=lambda c: c.final_score, reverse=True)


def ensure_diversity(ranked: Sequence[CandidateT], max_per_role: int = 3) -> list[CandidateT]:
    """
    Keep at most `max_per_role` candidates per role.

    Greedy single pass over an already-ranked list: the first candidates
    seen for a role win, and relative order is preserved.
    """
    counts: dict[str, int] = {}
    diverse: list[CandidateT] = []
    for candidate in ranked:
        seen = counts.get(candidate.role, 0)
        if seen < max_per_role:
            diverse.append(candidate)
            counts[candidate.role] = seen + 1
    return diverse
