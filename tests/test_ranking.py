# =============================================================================
# Unit Tests - Ranking Engine
# =============================================================================
#
# Pure scoring functions: no I/O, `now` passed explicitly where time matters.
# =============================================================================

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from buildermatch.models.search import RankingCriterion, RankingFactors, SkillRecord
from buildermatch.services.ranking import (
    DEFAULT_WEIGHTS,
    availability_boost,
    completeness_boost,
    ensure_diversity,
    extract_query_skills,
    final_score,
    rank,
    recent_activity_boost,
    relevance_factors,
    score_candidate,
    skill_match_score,
    weights_from_criteria,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _skill(name: str, level: str = "intermediate") -> SkillRecord:
    return SkillRecord(name=name, category="framework", proficiency_level=level)


# ---------------------------------------------------------------------------
# Test: Skill Match
# ---------------------------------------------------------------------------


class TestSkillMatchScore:
    def test_neutral_without_query_skills(self):
        assert skill_match_score([_skill("React")], []) == 0.5

    def test_full_match_at_expert(self):
        assert skill_match_score([_skill("React", "expert")], ["react"]) == 1.0

    def test_fraction_times_proficiency(self):
        skills = [_skill("React", "advanced")]
        # 1 of 2 query skills matched, proficiency 0.75
        assert skill_match_score(skills, ["React", "Rust"]) == pytest.approx(0.375)

    def test_substring_match_both_directions(self):
        assert skill_match_score([_skill("React Native", "expert")], ["react"]) == 1.0
        assert skill_match_score([_skill("Go", "expert")], ["golang"]) == 1.0

    def test_overlapping_skills_count_query_skill_once(self):
        skills = [
            _skill("React", "expert"),
            _skill("React Native", "expert"),
            _skill("React Query", "expert"),
        ]
        assert skill_match_score(skills, ["React"]) == 1.0

    def test_overlapping_skills_stay_bounded(self):
        skills = [_skill("React", "advanced"), _skill("React Native", "beginner")]
        # 1 of 2 query skills found, mean proficiency (0.75 + 0.25) / 2
        score = skill_match_score(skills, ["React", "Rust"])
        assert score == pytest.approx(0.25)
        assert 0.0 <= score <= 1.0

    def test_unknown_proficiency_counts_as_intermediate(self):
        assert skill_match_score([_skill("Vue", "guru")], ["vue"]) == 0.5

    def test_no_match_is_zero(self):
        assert skill_match_score([_skill("Figma")], ["kubernetes"]) == 0.0

    def test_no_candidate_skills_is_zero(self):
        assert skill_match_score([], ["react"]) == 0.0


# ---------------------------------------------------------------------------
# Test: Boosts
# ---------------------------------------------------------------------------


class TestBoosts:
    def test_availability_values(self):
        assert availability_boost("available") == 1.2
        assert availability_boost("busy") == 0.9
        assert availability_boost("not_looking") == 0.5
        assert availability_boost("on_sabbatical") == 1.0

    def test_recent_activity_fresh_profile(self):
        assert recent_activity_boost(NOW, now=NOW) == pytest.approx(1.0)

    def test_recent_activity_decays_over_30_days(self):
        boost = recent_activity_boost(NOW - timedelta(days=30), now=NOW)
        assert boost == pytest.approx(math.exp(-1) * 0.2 + 0.8)

    def test_recent_activity_floor(self):
        boost = recent_activity_boost(NOW - timedelta(days=3650), now=NOW)
        assert 0.8 <= boost < 0.801

    def test_naive_timestamp_treated_as_utc(self):
        naive = NOW.replace(tzinfo=None)
        assert recent_activity_boost(naive, now=NOW) == pytest.approx(1.0)

    def test_completeness_full_profile(self, make_candidate):
        c = make_candidate(
            "a", avatar_url="https://img", github="octo", projects=1, bio="x" * 101,
        )
        assert completeness_boost(c) == pytest.approx(1.0)

    def test_completeness_bio_must_exceed_100_chars(self, make_candidate):
        c = make_candidate("a", bio="x" * 100)
        assert completeness_boost(c) == 0.0

    def test_completeness_partial(self, make_candidate):
        c = make_candidate("a", avatar_url="https://img", projects=2)
        assert completeness_boost(c) == pytest.approx(0.6)


# ---------------------------------------------------------------------------
# Test: Weights & Final Score
# ---------------------------------------------------------------------------


class TestWeights:
    def test_defaults_without_criteria(self):
        assert weights_from_criteria([]) == DEFAULT_WEIGHTS

    def test_known_factors_override(self):
        weights = weights_from_criteria([
            RankingCriterion(factor="Availability", weight=0.2),
            RankingCriterion(factor="Profile completeness", weight=0.1),
        ])
        assert weights["availability"] == 0.2
        assert weights["completeness"] == 0.1
        assert weights["semantic"] == DEFAULT_WEIGHTS["semantic"]

    def test_unknown_factors_ignored(self):
        weights = weights_from_criteria([
            RankingCriterion(factor="React experience", weight=0.4),
            RankingCriterion(factor="relevance", weight=1.0),
        ])
        assert weights == DEFAULT_WEIGHTS

    def test_defaults_not_mutated(self):
        weights_from_criteria([RankingCriterion(factor="semantic", weight=0.9)])
        assert DEFAULT_WEIGHTS["semantic"] == 0.35


class TestFinalScore:
    def test_weighted_sum(self):
        factors = RankingFactors(
            semantic_score=0.8,
            keyword_score=0.5,
            skill_match_score=0.5,
            availability_boost=1.2,
            recent_activity_boost=1.0,
            completeness_boost=0.0,
        )
        # .28 + .125 + .10 + .12 + .05 + 0
        assert final_score(factors) == pytest.approx(0.675)

    def test_clamped_to_one(self):
        factors = RankingFactors(
            semantic_score=1.0, keyword_score=1.0, skill_match_score=1.0,
            availability_boost=1.2, recent_activity_boost=1.0, completeness_boost=1.0,
        )
        assert final_score(factors) == 1.0

    def test_never_negative(self):
        factors = RankingFactors(recent_activity_boost=0.0, availability_boost=0.0)
        assert final_score(factors, {"semantic": 0.0}) == 0.0

    def test_custom_weights_merge_over_defaults(self):
        factors = RankingFactors(
            semantic_score=1.0, availability_boost=0.0, recent_activity_boost=0.0,
        )
        assert final_score(factors, {"semantic": 0.5}) == pytest.approx(0.5)


# ---------------------------------------------------------------------------
# Test: Query Skill Extraction
# ---------------------------------------------------------------------------


class TestExtractQuerySkills:
    def test_finds_known_skills(self):
        assert extract_query_skills("React developer with design skills") == ["react", "design"]

    def test_whole_words_only(self):
        # "go" must not match inside "going", nor "ui" inside "build"
        assert extract_query_skills("going to build something") == []

    def test_punctuation_separates(self):
        assert extract_query_skills("Django/Flask + Redis") == ["django", "flask", "redis"]

    def test_nothing_found(self):
        assert extract_query_skills("asdkjhasdkjh") == []


# ---------------------------------------------------------------------------
# Test: Scoring a Candidate
# ---------------------------------------------------------------------------


class TestScoreCandidate:
    def test_explanation_lists_matched_skills(self, make_candidate):
        c = make_candidate(
            "a",
            skills=[("Figma", "expert"), ("React", "expert"), ("TypeScript", "advanced")],
        )
        scored = score_candidate(
            c, semantic=0.5, keyword=0.0, query_skills=["React"],
            weights=DEFAULT_WEIGHTS, primary_intent="React dev", now=NOW,
        )
        assert "Relevant skills: React" in scored.match_explanation
        assert "Figma" not in scored.match_explanation
        assert "Currently available for projects" in scored.match_explanation

    def test_strong_semantic_match(self, make_candidate):
        c = make_candidate("a", availability="busy", skills=[])
        scored = score_candidate(
            c, semantic=0.9, keyword=0.0, query_skills=[],
            weights=DEFAULT_WEIGHTS, primary_intent="anything", now=NOW,
        )
        assert scored.match_explanation == "Strong semantic match with your query."

    def test_fallback_explanation(self, make_candidate):
        c = make_candidate("a", availability="busy", skills=[])
        scored = score_candidate(
            c, semantic=0.2, keyword=0.1, query_skills=[],
            weights=DEFAULT_WEIGHTS, primary_intent="a designer", now=NOW,
        )
        assert scored.match_explanation == "Matches your search for a designer"

    def test_carries_profile_and_factors(self, make_candidate):
        c = make_candidate("a", role="backend")
        scored = score_candidate(
            c, semantic=0.7, keyword=0.3, query_skills=[],
            weights=DEFAULT_WEIGHTS, primary_intent="x", now=NOW,
        )
        assert scored.id == "a"
        assert scored.role == "backend"
        assert scored.semantic_score == 0.7
        assert scored.keyword_score == 0.3
        assert scored.skill_match_score == 0.5
        assert 0.0 <= scored.final_score <= 1.0

    def test_scored_candidate_is_frozen(self, make_candidate):
        scored = score_candidate(
            make_candidate("a"), semantic=0.7, keyword=0.3, query_skills=[],
            weights=DEFAULT_WEIGHTS, primary_intent="x", now=NOW,
        )
        with pytest.raises(Exception):
            scored.final_score = 0.1

    def test_relevance_factors_threshold(self):
        factors = RankingFactors(
            semantic_score=0.8, keyword_score=0.05, skill_match_score=0.5,
            availability_boost=1.2, completeness_boost=0.1,
        )
        names = [f.factor for f in relevance_factors(factors)]
        assert names == ["Semantic match", "Skill match", "Availability"]


# ---------------------------------------------------------------------------
# Test: Ordering & Diversity
# ---------------------------------------------------------------------------


def _scored(make_candidate, builder_id: str, role: str, semantic: float):
    return score_candidate(
        make_candidate(builder_id, role=role), semantic=semantic, keyword=0.0,
        query_skills=[], weights=DEFAULT_WEIGHTS, primary_intent="x", now=NOW,
    )


class TestRankAndDiversity:
    def test_rank_descending(self, make_candidate):
        items = [
            _scored(make_candidate, "low", "frontend", 0.1),
            _scored(make_candidate, "high", "frontend", 0.9),
        ]
        assert [c.id for c in rank(items)] == ["high", "low"]

    def test_rank_is_stable_on_ties(self, make_candidate):
        items = [_scored(make_candidate, str(i), "frontend", 0.5) for i in range(5)]
        assert [c.id for c in rank(items)] == ["0", "1", "2", "3", "4"]

    def test_cap_per_role(self, make_candidate):
        items = [_scored(make_candidate, f"f{i}", "frontend", 0.9 - i * 0.1) for i in range(5)]
        items.append(_scored(make_candidate, "b0", "backend", 0.2))
        diverse = ensure_diversity(rank(items), max_per_role=3)
        assert [c.id for c in diverse] == ["f0", "f1", "f2", "b0"]

    def test_preserves_order_across_roles(self, make_candidate):
        items = rank([
            _scored(make_candidate, "f0", "frontend", 0.9),
            _scored(make_candidate, "b0", "backend", 0.8),
            _scored(make_candidate, "f1", "frontend", 0.7),
        ])
        assert [c.id for c in ensure_diversity(items)] == ["f0", "b0", "f1"]

    def test_empty(self):
        assert ensure_diversity([]) == []
