"""Tests for ContextAssembler."""

from datetime import datetime, timedelta

import pytest

from learning.context import ContextAssembler
from learning.store import InMemoryPatternStore
from shared_types import InsightType, PatternType

MONDAY_8AM = datetime(2024, 1, 1, 8, 0)
NOW = datetime(2024, 1, 10, 12, 0)


def _record_many(updater, make_event, n, **overrides):
    for i in range(n):
        updater.record_outcome(make_event(activity_id=f"act-{i}", **overrides))


class TestEmptyUser:
    def test_empty_context(self, engine):
        ctx = engine["assembler"].assemble_context("nobody", now=NOW)
        assert ctx.patterns == []
        assert ctx.insights == []
        assert ctx.avoidances == []
        assert ctx.preferences == {
            "optimal_timing": [],
            "preferred_categories": [],
            "preferred_domains": [],
        }
        assert ctx.auxiliary_context == {}

    def test_zero_safe_history_summary(self, engine):
        summary = engine["assembler"].assemble_context("nobody", now=NOW).task_history_summary
        assert summary["total_completions"] == 0
        assert summary["total_xp"] == 0
        assert summary["average_xp"] == 0.0
        assert summary["success_rate"] == 0.0


class TestPreferences:
    def test_strong_patterns_become_preferences(self, engine, make_event):
        _record_many(
            engine["updater"], make_event, 3,
            domain_tags=frozenset({"fitness"}), source_labels=frozenset({"quest"}),
        )
        ctx = engine["assembler"].assemble_context("user-1", now=NOW)
        prefs = ctx.preferences
        assert [p["pattern"] for p in prefs["optimal_timing"]] == ["monday", "morning"]
        assert [p["pattern"] for p in prefs["preferred_categories"]] == ["quest"]
        assert [p["pattern"] for p in prefs["preferred_domains"]] == ["fitness"]
        assert prefs["preferred_domains"][0]["success_rate"] == 1.0

    def test_weak_patterns_excluded(self, engine, make_event):
        _record_many(engine["updater"], make_event, 2, outcome="failed")
        ctx = engine["assembler"].assemble_context("user-1", now=NOW)
        assert ctx.preferences["optimal_timing"] == []
        assert len(ctx.patterns) == 2

    def test_avoided_patterns_not_preferred(self, engine, make_event):
        _record_many(engine["updater"], make_event, 2)
        engine["store"].set_curation(
            "user-1", PatternType.TIMING, "morning", should_avoid=True, recommendation="Nap time"
        )
        ctx = engine["assembler"].assemble_context("user-1", now=NOW)
        assert [p["pattern"] for p in ctx.preferences["optimal_timing"]] == ["monday"]
        assert ctx.avoidances == [
            {"pattern": "morning", "type": "timing", "reason": "Nap time", "confidence": 0.2}
        ]

    def test_default_avoidance_reason(self, engine, make_event):
        _record_many(engine["updater"], make_event, 1)
        engine["store"].set_curation("user-1", PatternType.TIMING, "monday", should_avoid=True)
        ctx = engine["assembler"].assemble_context("user-1", now=NOW)
        assert ctx.avoidances[0]["reason"] == "Low success rate"


class TestPatterns:
    def test_sorted_by_confidence(self, memory_engine, make_event):
        updater = memory_engine["updater"]
        _record_many(updater, make_event, 3, domain_tags=frozenset({"fitness"}))
        updater.record_outcome(make_event(activity_id="x", domain_tags=frozenset({"music"})))
        ctx = memory_engine["assembler"].assemble_context("user-1", now=NOW)
        keys = [p["key"] for p in ctx.patterns]
        assert keys == ["monday", "morning", "fitness", "music"]
        assert ctx.patterns[0]["confidence"] == pytest.approx(0.4)

    def test_capped(self, make_event):
        store = InMemoryPatternStore()
        from learning.updater import PatternUpdater

        updater = PatternUpdater(store)
        tags = frozenset(f"tag{i}" for i in range(10))
        updater.record_outcome(make_event(domain_tags=tags))
        assembler = ContextAssembler(store, max_patterns=5)
        assert len(assembler.assemble_context("user-1", now=NOW).patterns) == 5

    def test_insights_included(self, memory_engine, make_event):
        _record_many(memory_engine["updater"], make_event, 3)
        ctx = memory_engine["assembler"].assemble_context("user-1", now=NOW)
        assert [i.type for i in ctx.insights] == [InsightType.OPTIMAL_TIMING]


class TestHistoryWindow:
    def test_window_filters_events(self, engine, make_event):
        updater = engine["updater"]
        updater.record_outcome(make_event(activity_id="old", timestamp=NOW - timedelta(days=40)))
        updater.record_outcome(
            make_event(activity_id="a", xp_awarded=30, timestamp=NOW - timedelta(days=2))
        )
        updater.record_outcome(
            make_event(activity_id="b", xp_awarded=10, timestamp=NOW - timedelta(days=1))
        )
        updater.record_outcome(
            make_event(
                activity_id="c", outcome="skipped", xp_awarded=0,
                timestamp=NOW - timedelta(hours=3),
            )
        )
        summary = engine["assembler"].task_history_summary("user-1", 30, now=NOW)
        assert summary["total_completions"] == 2
        assert summary["total_xp"] == 40
        assert summary["average_xp"] == 20
        assert summary["success_rate"] == pytest.approx(2 / 3)
        assert summary["total_events"] == 3

        wide = engine["assembler"].task_history_summary("user-1", 60, now=NOW)
        assert wide["total_completions"] == 3

    def test_without_event_log(self, make_event):
        store = InMemoryPatternStore()
        from learning.updater import PatternUpdater

        PatternUpdater(store).record_outcome(make_event())
        ctx = ContextAssembler(store).assemble_context("user-1", now=NOW)
        assert ctx.task_history_summary["total_completions"] == 0
        assert len(ctx.patterns) == 2


class TestAuxiliaryContext:
    def test_passed_through_verbatim(self, memory_engine):
        aux = {"goals": ["run 5k"], "profile": {"level": 3}}
        ctx = memory_engine["assembler"].assemble_context("user-1", auxiliary_context=aux, now=NOW)
        assert ctx.auxiliary_context == aux

    def test_not_aliased(self, memory_engine):
        aux = {"goals": []}
        ctx = memory_engine["assembler"].assemble_context("user-1", auxiliary_context=aux, now=NOW)
        aux["extra"] = True
        assert "extra" not in ctx.auxiliary_context


def test_assembly_is_read_only(engine, make_event):
    _record_many(engine["updater"], make_event, 3, domain_tags=frozenset({"fitness"}))
    before = {
        (a.pattern_type, a.pattern_key): a.version
        for a in engine["store"].list_for_user("user-1")
    }
    engine["assembler"].assemble_context("user-1", now=NOW)
    engine["assembler"].pattern_summary("user-1", now=NOW)
    after = {
        (a.pattern_type, a.pattern_key): a.version
        for a in engine["store"].list_for_user("user-1")
    }
    assert before == after


def test_context_serializes(memory_engine, make_event):
    _record_many(memory_engine["updater"], make_event, 3)
    data = memory_engine["assembler"].assemble_context("user-1", now=NOW).to_dict()
    assert set(data) == {
        "patterns", "preferences", "avoidances", "insights",
        "task_history_summary", "auxiliary_context",
    }
    assert data["insights"][0]["type"] == "optimal_timing"
    assert data["patterns"][0]["last_observed"] == MONDAY_8AM.isoformat()


class TestPatternSummary:
    def test_counters(self, engine, make_event):
        _record_many(
            engine["updater"], make_event, 8,
            timestamp=NOW - timedelta(days=1), domain_tags=frozenset({"fitness"}),
        )
        engine["updater"].record_outcome(
            make_event(activity_id="m", timestamp=NOW - timedelta(days=1),
                       domain_tags=frozenset({"music"}))
        )
        summary = engine["assembler"].pattern_summary("user-1", now=NOW)
        assert summary["total_patterns"] == 4
        assert summary["strong_patterns"] == 3
        assert summary["recent_events"] == 9
        assert summary["active_insights"] == 2
        assert summary["last_updated"] == NOW.isoformat()

    def test_empty(self, engine):
        summary = engine["assembler"].pattern_summary("nobody", now=NOW)
        assert summary["total_patterns"] == 0
        assert summary["recent_events"] == 0
        assert summary["active_insights"] == 0
