"""Synthesize human-readable insights from a user's pattern aggregates."""

from typing import Optional

import structlog

from shared_types import InsightPriority, InsightType, PatternType

from .models import Insight, PatternAggregate
from .store import PatternStore

logger = structlog.get_logger()

TIMING_MIN_OCCURRENCES = 3
DOMAIN_MIN_OCCURRENCES = 2
DOMAIN_TOP_N = 3

_PRIORITY_ORDER = {
    InsightPriority.HIGH: 0,
    InsightPriority.MEDIUM: 1,
    InsightPriority.LOW: 2,
}


def _pct(rate: float) -> int:
    return round(rate * 100)


class InsightSynthesizer:
    """Read-only pass over the aggregate set. Same aggregates in, same insights out."""

    def __init__(
        self,
        store: PatternStore,
        timing_min_occurrences: int = TIMING_MIN_OCCURRENCES,
        domain_min_occurrences: int = DOMAIN_MIN_OCCURRENCES,
        domain_top_n: int = DOMAIN_TOP_N,
    ):
        self.store = store
        self.timing_min_occurrences = timing_min_occurrences
        self.domain_min_occurrences = domain_min_occurrences
        self.domain_top_n = domain_top_n

    def synthesize(self, user_id: str) -> list[Insight]:
        return self.synthesize_from(self.store.list_for_user(user_id))

    def synthesize_from(self, aggregates: list[PatternAggregate]) -> list[Insight]:
        """Build insights from an already-fetched aggregate list."""
        insights = []
        for builder in (self._optimal_timing, self._domain_preference, self._avoidance):
            insight = builder(aggregates)
            if insight:
                insights.append(insight)
        insights.sort(key=lambda i: _PRIORITY_ORDER[i.priority])
        return insights

    def _optimal_timing(self, aggregates: list[PatternAggregate]) -> Optional[Insight]:
        candidates = [
            a
            for a in aggregates
            if a.pattern_type == PatternType.TIMING
            and a.total_occurrences >= self.timing_min_occurrences
        ]
        if not candidates:
            return None

        best = min(candidates, key=lambda a: (-a.success_rate, -a.total_occurrences, a.pattern_key))
        return Insight(
            type=InsightType.OPTIMAL_TIMING,
            title="Peak Performance Time",
            description=(
                f"You perform best during {best.pattern_key} with "
                f"{_pct(best.success_rate)}% success rate over {best.total_occurrences} activities"
            ),
            confidence_score=best.confidence,
            evidence_count=best.total_occurrences,
            supporting_context={
                "pattern_key": best.pattern_key,
                "success_rate": best.success_rate,
                "average_xp": best.average_xp,
                "total_occurrences": best.total_occurrences,
            },
            priority=InsightPriority.HIGH,
        )

    def _domain_preference(self, aggregates: list[PatternAggregate]) -> Optional[Insight]:
        candidates = [
            a
            for a in aggregates
            if a.pattern_type == PatternType.DOMAIN
            and a.total_occurrences >= self.domain_min_occurrences
        ]
        if not candidates:
            return None

        candidates.sort(key=lambda a: (-a.average_sentiment, -a.total_occurrences, a.pattern_key))
        selected = candidates[: self.domain_top_n]
        keys = [a.pattern_key for a in selected]
        avg_sentiment = sum(a.average_sentiment for a in selected) / len(selected)

        return Insight(
            type=InsightType.DOMAIN_PREFERENCE,
            title="Favorite Skill Areas",
            description=f"You show strong engagement with: {', '.join(keys)}",
            confidence_score=sum(a.confidence for a in selected) / len(selected),
            evidence_count=sum(a.total_occurrences for a in selected),
            supporting_context={
                "pattern_keys": keys,
                "success_rates": [a.success_rate for a in selected],
                "average_xps": [a.average_xp for a in selected],
                "average_sentiments": [a.average_sentiment for a in selected],
                "average_sentiment": avg_sentiment,
            },
            priority=InsightPriority.MEDIUM,
        )

    def _avoidance(self, aggregates: list[PatternAggregate]) -> Optional[Insight]:
        avoided = [a for a in aggregates if a.should_avoid]
        if not avoided:
            return None

        labels = [f"{a.pattern_type}/{a.pattern_key}" for a in avoided]
        return Insight(
            type=InsightType.AVOIDANCE,
            title="Patterns to Avoid",
            description=f"Steer away from: {', '.join(labels)}",
            confidence_score=sum(a.confidence for a in avoided) / len(avoided),
            evidence_count=sum(a.total_occurrences for a in avoided),
            supporting_context={
                "patterns": labels,
                "pattern_keys": [a.pattern_key for a in avoided],
                "success_rates": [a.success_rate for a in avoided],
                "average_xps": [a.average_xp for a in avoided],
                "reasons": [a.recommendation or "Low success rate" for a in avoided],
            },
            priority=InsightPriority.LOW,
        )


class InsightCache:
    """Per-user cache of synthesized insights.

    Entries are replaced wholesale by ``refresh``; ``invalidate`` drops a user
    so the next ``get_or_synthesize`` recomputes. A PatternUpdater built with
    this cache invalidates the user after every recorded event; writes made
    any other way (curation, direct store access) must call ``invalidate``.
    """

    def __init__(self, synthesizer: InsightSynthesizer):
        self.synthesizer = synthesizer
        self._entries: dict[str, list[Insight]] = {}

    def refresh(self, user_id: str) -> list[Insight]:
        insights = self.synthesizer.synthesize(user_id)
        self._entries[user_id] = insights
        logger.debug("insights_refreshed", user_id=user_id, count=len(insights))
        return list(insights)

    def get_or_synthesize(self, user_id: str) -> list[Insight]:
        if user_id not in self._entries:
            return self.refresh(user_id)
        return list(self._entries[user_id])

    def invalidate(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    def active_count(self, user_id: str) -> int:
        return len(self._entries.get(user_id, []))
