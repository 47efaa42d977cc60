"""Behavioral pattern learning — outcome events to aggregates, insights and context."""

from .context import ContextAssembler
from .errors import ConcurrencyConflict, InvariantViolation, LearningError, ValidationError
from .events import EventLog, InMemoryEventLog, SQLiteEventLog
from .insights import InsightCache, InsightSynthesizer
from .models import EventRecord, Insight, LearningContext, OutcomeEvent, PatternAggregate
from .normalizer import Dimension, derive_dimensions
from .sentiment import LexiconSentimentClassifier, SentimentResult, classify
from .store import InMemoryPatternStore, PatternStore, SQLitePatternStore
from .updater import PatternUpdater, apply_observation

__all__ = [
    "ConcurrencyConflict",
    "ContextAssembler",
    "Dimension",
    "EventLog",
    "EventRecord",
    "InMemoryEventLog",
    "InMemoryPatternStore",
    "Insight",
    "InsightCache",
    "InsightSynthesizer",
    "InvariantViolation",
    "LearningContext",
    "LearningError",
    "LexiconSentimentClassifier",
    "OutcomeEvent",
    "PatternAggregate",
    "PatternStore",
    "PatternUpdater",
    "SQLiteEventLog",
    "SQLitePatternStore",
    "SentimentResult",
    "ValidationError",
    "apply_observation",
    "classify",
    "derive_dimensions",
]
