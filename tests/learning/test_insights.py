"""Tests for InsightSynthesizer and InsightCache."""

from datetime import datetime

import pytest

from learning.insights import InsightCache, InsightSynthesizer
from learning.models import PatternAggregate, compute_confidence, strength_for
from learning.store import InMemoryPatternStore
from shared_types import InsightPriority, InsightType, PatternType

SEEN = datetime(2024, 1, 1, 8, 0)


def _agg(ptype, key, successes, failures, sentiment=0.0, xp=10.0, user_id="user-1", avoid=False):
    total = successes + failures
    return PatternAggregate(
        user_id=user_id,
        pattern_type=ptype,
        pattern_key=key,
        total_occurrences=total,
        successful_count=successes,
        failed_count=failures,
        average_xp=xp,
        average_sentiment=sentiment,
        confidence=compute_confidence(total),
        strength=strength_for(successes / total),
        should_avoid=avoid,
        first_observed=SEEN,
        last_observed=SEEN,
    )


@pytest.fixture
def synthesizer():
    return InsightSynthesizer(InMemoryPatternStore())


def _by_type(insights, insight_type):
    return next((i for i in insights if i.type == insight_type), None)


class TestOptimalTiming:
    def test_picks_highest_success_rate(self, synthesizer):
        insights = synthesizer.synthesize_from([
            _agg(PatternType.TIMING, "morning", 4, 1),
            _agg(PatternType.TIMING, "evening", 1, 3),
        ])
        timing = _by_type(insights, InsightType.OPTIMAL_TIMING)
        assert timing.supporting_context["pattern_key"] == "morning"
        assert timing.priority == InsightPriority.HIGH
        assert timing.evidence_count == 5
        assert timing.confidence_score == pytest.approx(0.5)
        assert "80%" in timing.description

    def test_requires_three_occurrences(self, synthesizer):
        insights = synthesizer.synthesize_from([
            _agg(PatternType.TIMING, "morning", 2, 0),
            _agg(PatternType.TIMING, "evening", 1, 2),
        ])
        timing = _by_type(insights, InsightType.OPTIMAL_TIMING)
        assert timing.supporting_context["pattern_key"] == "evening"

    def test_none_below_threshold(self, synthesizer):
        assert synthesizer.synthesize_from([_agg(PatternType.TIMING, "morning", 2, 0)]) == []

    def test_tie_broken_by_occurrences_then_key(self, synthesizer):
        insights = synthesizer.synthesize_from([
            _agg(PatternType.TIMING, "tuesday", 3, 0),
            _agg(PatternType.TIMING, "monday", 3, 0),
            _agg(PatternType.TIMING, "afternoon", 5, 0),
        ])
        assert _by_type(insights, InsightType.OPTIMAL_TIMING).supporting_context[
            "pattern_key"
        ] == "afternoon"

        insights = synthesizer.synthesize_from([
            _agg(PatternType.TIMING, "tuesday", 3, 0),
            _agg(PatternType.TIMING, "monday", 3, 0),
        ])
        assert _by_type(insights, InsightType.OPTIMAL_TIMING).supporting_context[
            "pattern_key"
        ] == "monday"

    def test_ignores_other_types(self, synthesizer):
        insights = synthesizer.synthesize_from([_agg(PatternType.DOMAIN, "fitness", 5, 0)])
        assert _by_type(insights, InsightType.OPTIMAL_TIMING) is None


class TestDomainPreference:
    def test_top_three_by_sentiment(self, synthesizer):
        insights = synthesizer.synthesize_from([
            _agg(PatternType.DOMAIN, "fitness", 2, 0, sentiment=0.9),
            _agg(PatternType.DOMAIN, "music", 2, 0, sentiment=0.5),
            _agg(PatternType.DOMAIN, "coding", 2, 0, sentiment=0.7),
            _agg(PatternType.DOMAIN, "cooking", 2, 0, sentiment=-0.2),
        ])
        domain = _by_type(insights, InsightType.DOMAIN_PREFERENCE)
        assert domain.supporting_context["pattern_keys"] == ["fitness", "coding", "music"]
        assert domain.supporting_context["average_sentiment"] == pytest.approx(0.7)
        assert domain.evidence_count == 6
        assert domain.priority == InsightPriority.MEDIUM
        assert domain.description == "You show strong engagement with: fitness, coding, music"

    def test_requires_two_occurrences(self, synthesizer):
        insights = synthesizer.synthesize_from([
            _agg(PatternType.DOMAIN, "fitness", 1, 0, sentiment=1.0),
            _agg(PatternType.DOMAIN, "music", 1, 1, sentiment=0.1),
        ])
        domain = _by_type(insights, InsightType.DOMAIN_PREFERENCE)
        assert domain.supporting_context["pattern_keys"] == ["music"]

    def test_sentiment_tie_broken_by_occurrences_then_key(self, synthesizer):
        insights = synthesizer.synthesize_from([
            _agg(PatternType.DOMAIN, "zumba", 2, 0, sentiment=0.5),
            _agg(PatternType.DOMAIN, "art", 2, 0, sentiment=0.5),
            _agg(PatternType.DOMAIN, "yoga", 4, 0, sentiment=0.5),
        ])
        domain = _by_type(insights, InsightType.DOMAIN_PREFERENCE)
        assert domain.supporting_context["pattern_keys"] == ["yoga", "art", "zumba"]

    def test_configurable_top_n(self):
        synthesizer = InsightSynthesizer(InMemoryPatternStore(), domain_top_n=1)
        insights = synthesizer.synthesize_from([
            _agg(PatternType.DOMAIN, "fitness", 2, 0, sentiment=0.2),
            _agg(PatternType.DOMAIN, "music", 2, 0, sentiment=0.6),
        ])
        assert _by_type(insights, InsightType.DOMAIN_PREFERENCE).supporting_context[
            "pattern_keys"
        ] == ["music"]


class TestAvoidance:
    def test_lists_curated_patterns(self, synthesizer):
        avoided = _agg(PatternType.TIMING, "night", 0, 2, avoid=True)
        avoided.recommendation = "Too tired"
        insights = synthesizer.synthesize_from([avoided, _agg(PatternType.TIMING, "morning", 1, 0)])
        avoidance = _by_type(insights, InsightType.AVOIDANCE)
        assert avoidance.priority == InsightPriority.LOW
        assert avoidance.supporting_context["patterns"] == ["timing/night"]
        assert avoidance.supporting_context["reasons"] == ["Too tired"]

    def test_none_without_curation(self, synthesizer):
        insights = synthesizer.synthesize_from([_agg(PatternType.TIMING, "night", 0, 5)])
        assert _by_type(insights, InsightType.AVOIDANCE) is None


def test_ordered_by_priority(synthesizer):
    insights = synthesizer.synthesize_from([
        _agg(PatternType.DOMAIN, "fitness", 2, 0, sentiment=0.4),
        _agg(PatternType.TIMING, "night", 0, 1, avoid=True),
        _agg(PatternType.TIMING, "morning", 3, 0),
    ])
    assert [i.type for i in insights] == [
        InsightType.OPTIMAL_TIMING,
        InsightType.DOMAIN_PREFERENCE,
        InsightType.AVOIDANCE,
    ]


def test_synthesis_is_idempotent(memory_engine, make_event):
    for i in range(4):
        memory_engine["updater"].record_outcome(
            make_event(activity_id=f"a{i}", domain_tags=frozenset({"fitness"}), feedback_text="fun")
        )
    synthesizer = memory_engine["synthesizer"]
    first = [i.to_dict() for i in synthesizer.synthesize("user-1")]
    second = [i.to_dict() for i in synthesizer.synthesize("user-1")]
    assert first == second
    assert len(first) == 2


def test_synthesize_reads_store_per_user(memory_engine, make_event):
    for i in range(3):
        memory_engine["updater"].record_outcome(make_event(activity_id=f"a{i}"))
    assert memory_engine["synthesizer"].synthesize("someone-else") == []
    assert len(memory_engine["synthesizer"].synthesize("user-1")) == 1


class TestInsightCache:
    def test_caches_until_invalidated(self, memory_engine, make_event):
        cache = InsightCache(memory_engine["synthesizer"])
        assert cache.get_or_synthesize("user-1") == []

        for i in range(3):
            memory_engine["updater"].record_outcome(make_event(activity_id=f"a{i}"))
        assert cache.get_or_synthesize("user-1") == []
        assert cache.active_count("user-1") == 0

        cache.invalidate("user-1")
        assert len(cache.get_or_synthesize("user-1")) == 1
        assert cache.active_count("user-1") == 1

    def test_refresh_replaces_entry(self, memory_engine, make_event):
        cache = InsightCache(memory_engine["synthesizer"])
        cache.refresh("user-1")
        for i in range(3):
            memory_engine["updater"].record_outcome(make_event(activity_id=f"a{i}"))
        assert len(cache.refresh("user-1")) == 1
