"""Assemble the learning context handed to the recommendation layer."""

from datetime import datetime, timedelta
from typing import Any, Optional

import structlog

from shared_types import Outcome, PatternStrength, PatternType

from .events import EventLog
from .insights import InsightSynthesizer
from .models import LearningContext, PatternAggregate
from .store import PatternStore

logger = structlog.get_logger()

DEFAULT_HISTORY_WINDOW_DAYS = 30
MAX_CONTEXT_PATTERNS = 50
STRONG_CONFIDENCE = 0.7

_PREFERENCE_KEYS = {
    PatternType.TIMING: "optimal_timing",
    PatternType.CATEGORY: "preferred_categories",
    PatternType.DOMAIN: "preferred_domains",
}


def _preference_entry(a: PatternAggregate) -> dict:
    return {
        "pattern": a.pattern_key,
        "confidence": a.confidence,
        "success_rate": a.success_rate,
        "average_xp": a.average_xp,
    }


class ContextAssembler:
    """Read-only projection of patterns, insights and recent history for one user."""

    def __init__(
        self,
        store: PatternStore,
        event_log: Optional[EventLog] = None,
        synthesizer: Optional[InsightSynthesizer] = None,
        max_patterns: int = MAX_CONTEXT_PATTERNS,
    ):
        self.store = store
        self.event_log = event_log
        self.synthesizer = synthesizer or InsightSynthesizer(store)
        self.max_patterns = max_patterns

    def assemble_context(
        self,
        user_id: str,
        history_window_days: int = DEFAULT_HISTORY_WINDOW_DAYS,
        auxiliary_context: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> LearningContext:
        aggregates = self.store.list_for_user(user_id)
        insights = self.synthesizer.synthesize_from(aggregates)
        avoided = self.store.list_avoided(user_id)

        ranked = sorted(
            aggregates,
            key=lambda a: (-a.confidence, str(a.pattern_type), a.pattern_key),
        )[: self.max_patterns]

        preferences: dict[str, list[dict]] = {key: [] for key in _PREFERENCE_KEYS.values()}
        for a in ranked:
            if a.strength == PatternStrength.STRONG and not a.should_avoid:
                preferences[_PREFERENCE_KEYS[a.pattern_type]].append(_preference_entry(a))

        context = LearningContext(
            patterns=[a.to_view() for a in ranked],
            preferences=preferences,
            avoidances=[
                {
                    "pattern": a.pattern_key,
                    "type": str(a.pattern_type),
                    "reason": a.recommendation or "Low success rate",
                    "confidence": a.confidence,
                }
                for a in avoided
            ],
            insights=insights,
            task_history_summary=self.task_history_summary(user_id, history_window_days, now),
            auxiliary_context=dict(auxiliary_context or {}),
        )
        logger.debug(
            "learning_context_assembled",
            user_id=user_id,
            patterns=len(context.patterns),
            insights=len(insights),
            avoidances=len(context.avoidances),
        )
        return context

    def task_history_summary(
        self,
        user_id: str,
        window_days: int = DEFAULT_HISTORY_WINDOW_DAYS,
        now: Optional[datetime] = None,
    ) -> dict:
        """Completion counts and XP over the lookback window. Zero-safe."""
        events = []
        if self.event_log is not None:
            since = (now or datetime.now()) - timedelta(days=window_days)
            events = self.event_log.list_since(user_id, since)

        total_events = len(events)
        completions = sum(1 for e in events if e.outcome == Outcome.COMPLETED)
        total_xp = sum(e.xp_awarded for e in events)
        return {
            "total_completions": completions,
            "total_xp": total_xp,
            "average_xp": total_xp / completions if completions else 0.0,
            "success_rate": completions / total_events if total_events else 0.0,
            "total_events": total_events,
            "window_days": window_days,
        }

    def pattern_summary(self, user_id: str, now: Optional[datetime] = None) -> dict:
        """Dashboard counters: patterns, confident patterns, recent events, insights."""
        now = now or datetime.now()
        aggregates = self.store.list_for_user(user_id)
        recent = 0
        if self.event_log is not None:
            recent = len(
                self.event_log.list_since(
                    user_id, now - timedelta(days=DEFAULT_HISTORY_WINDOW_DAYS)
                )
            )
        return {
            "total_patterns": len(aggregates),
            "strong_patterns": sum(1 for a in aggregates if a.confidence > STRONG_CONFIDENCE),
            "recent_events": recent,
            "active_insights": len(self.synthesizer.synthesize_from(aggregates)),
            "last_updated": now.isoformat(),
        }
