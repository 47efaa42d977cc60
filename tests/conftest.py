"""Shared test fixtures for the pattern learning engine."""

import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from learning import (  # noqa: E402
    ContextAssembler,
    InMemoryEventLog,
    InMemoryPatternStore,
    InsightSynthesizer,
    OutcomeEvent,
    PatternUpdater,
    SQLiteEventLog,
    SQLitePatternStore,
)
from observability import metrics  # noqa: E402

# 2024-01-01 is a Monday
MONDAY_8AM = datetime(2024, 1, 1, 8, 0)
TUESDAY_8AM = datetime(2024, 1, 2, 8, 0)

FAST_RETRY = {"max_attempts": 5, "min_wait": 0.001, "max_wait": 0.01}


def _build_engine(store, event_log, retry=None):
    synthesizer = InsightSynthesizer(store)
    return {
        "store": store,
        "event_log": event_log,
        "updater": PatternUpdater(store, event_log=event_log, retry=retry or FAST_RETRY),
        "synthesizer": synthesizer,
        "assembler": ContextAssembler(store, event_log=event_log, synthesizer=synthesizer),
    }


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def memory_engine():
    """Engine wired to in-memory backends."""
    return _build_engine(InMemoryPatternStore(), InMemoryEventLog())


@pytest.fixture
def sqlite_engine(tmp_path):
    """Engine wired to SQLite backends in a temp database."""
    db = tmp_path / "patterns.db"
    return _build_engine(SQLitePatternStore(db), SQLiteEventLog(db))


@pytest.fixture(params=["memory", "sqlite"])
def engine(request, tmp_path):
    """Runs the test against both storage backends."""
    if request.param == "memory":
        return _build_engine(InMemoryPatternStore(), InMemoryEventLog())
    db = tmp_path / "patterns.db"
    return _build_engine(SQLitePatternStore(db), SQLiteEventLog(db))


@pytest.fixture
def make_event():
    """Factory for OutcomeEvents with sensible defaults."""

    def _make(**overrides) -> OutcomeEvent:
        data = {
            "user_id": "user-1",
            "activity_id": "act-1",
            "outcome": "completed",
            "timestamp": MONDAY_8AM,
            "xp_awarded": 10,
            "feedback_text": None,
            "domain_tags": frozenset(),
            "source_labels": frozenset(),
        }
        data.update(overrides)
        return OutcomeEvent(**data)

    return _make
