"""Apply outcome events to pattern aggregates with all-or-nothing optimistic concurrency."""

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

import structlog

from cli.retry import retry_from_config
from observability import metrics
from shared_types import PatternType

from .errors import ConcurrencyConflict
from .events import EventLog
from .insights import InsightCache
from .models import (
    CONFIDENCE_SATURATION,
    EventRecord,
    OutcomeEvent,
    PatternAggregate,
    compute_confidence,
    strength_for,
)
from .normalizer import Dimension, day_of_week, derive_dimensions, time_of_day
from .sentiment import LexiconSentimentClassifier, SentimentClassifier
from .store import PatternStore

logger = structlog.get_logger()

PREVIOUS_COMPLETION_WINDOW = timedelta(hours=24)


def apply_observation(
    previous: Optional[PatternAggregate],
    *,
    user_id: str,
    pattern_type: PatternType,
    pattern_key: str,
    success: bool,
    xp: float,
    sentiment: float,
    observed_at: datetime,
    pattern_value: Optional[dict] = None,
    confidence_saturation: int = CONFIDENCE_SATURATION,
) -> PatternAggregate:
    """Fold one observation into an aggregate (online mean update).

    Pure function: returns a new aggregate and leaves `previous` untouched.
    """
    if previous is None:
        previous = PatternAggregate(
            user_id=user_id,
            pattern_type=pattern_type,
            pattern_key=pattern_key,
            pattern_value=dict(pattern_value or {}),
        )

    n = previous.total_occurrences
    total = n + 1
    successful = previous.successful_count + (1 if success else 0)
    failed = previous.failed_count + (0 if success else 1)

    return replace(
        previous,
        total_occurrences=total,
        successful_count=successful,
        failed_count=failed,
        average_xp=(previous.average_xp * n + xp) / total,
        average_sentiment=(previous.average_sentiment * n + sentiment) / total,
        confidence=compute_confidence(total, confidence_saturation),
        strength=strength_for(successful / total),
        first_observed=previous.first_observed or observed_at,
        last_observed=observed_at,
        pattern_value=previous.pattern_value or dict(pattern_value or {}),
    )


class PatternUpdater:
    """Records outcome events into the pattern store.

    All dimensions of one event are read, folded and written back through a
    single ``upsert_many`` call, so an event lands on every key or on none.
    A conflicting writer on any of those keys makes the whole cycle retry.
    """

    def __init__(
        self,
        store: PatternStore,
        event_log: Optional[EventLog] = None,
        classifier: Optional[SentimentClassifier] = None,
        retry: Optional[dict] = None,
        insight_cache: Optional[InsightCache] = None,
    ):
        self.store = store
        self.event_log = event_log
        self.classifier = classifier or LexiconSentimentClassifier()
        self.insight_cache = insight_cache
        self._retry = retry_from_config(retry or {}, exceptions=(ConcurrencyConflict,))

    def record_outcome(self, event: OutcomeEvent) -> list[PatternAggregate]:
        """Validate the event, then update every dimension it touches.

        Raises:
            ValidationError: malformed event; nothing is written.
            ConcurrencyConflict: retries exhausted; nothing is written.
        """
        event.validate()

        sentiment = self.classifier.classify(event.feedback_text)
        dimensions = derive_dimensions(event)

        previous_completion = False
        if self.event_log is not None:
            previous_completion = self.event_log.has_completion_since(
                event.user_id,
                event.timestamp - PREVIOUS_COMPLETION_WINDOW,
                until=event.timestamp,
            )

        with metrics.timer("record_outcome"):
            try:
                updated = self._retry(self._apply_event)(event, dimensions, sentiment.score)
            except ConcurrencyConflict as e:
                metrics.counter("pattern_conflicts_exhausted")
                logger.error(
                    "pattern_update_failed",
                    user_id=event.user_id,
                    activity_id=event.activity_id,
                    pattern_type=str(e.pattern_type),
                    pattern_key=e.pattern_key,
                )
                raise

        if self.event_log is not None:
            self.event_log.append(
                EventRecord(
                    user_id=event.user_id,
                    activity_id=event.activity_id,
                    completion_id=event.completion_id,
                    outcome=event.outcome,
                    timestamp=event.timestamp,
                    xp_awarded=event.xp_awarded,
                    sentiment=sentiment.score,
                    mood=str(sentiment.mood),
                    keywords=tuple(sentiment.keywords),
                    time_of_day=time_of_day(event.timestamp),
                    day_of_week=day_of_week(event.timestamp),
                    source_labels=tuple(sorted(event.source_labels)),
                    domain_tags=tuple(sorted(event.domain_tags)),
                    previous_completion=previous_completion,
                )
            )
        if self.insight_cache is not None:
            self.insight_cache.invalidate(event.user_id)

        metrics.counter("outcomes_recorded")
        logger.info(
            "outcome_recorded",
            user_id=event.user_id,
            activity_id=event.activity_id,
            outcome=str(event.outcome),
            dimensions=len(updated),
            sentiment=sentiment.score,
        )
        return updated

    def _apply_event(
        self, event: OutcomeEvent, dimensions: list[Dimension], sentiment: float
    ) -> list[PatternAggregate]:
        """One read-fold-write cycle over every dimension of the event."""
        writes = []
        for dim in dimensions:
            current = self.store.get(event.user_id, dim.pattern_type, dim.pattern_key)
            candidate = apply_observation(
                current,
                user_id=event.user_id,
                pattern_type=dim.pattern_type,
                pattern_key=dim.pattern_key,
                success=event.successful,
                xp=float(event.xp_awarded),
                sentiment=sentiment,
                observed_at=event.timestamp,
                pattern_value=dim.pattern_value,
                confidence_saturation=self.store.confidence_saturation,
            )
            writes.append((candidate, current.version if current else 0))

        try:
            stored = self.store.upsert_many(writes)
        except ConcurrencyConflict:
            metrics.counter("pattern_conflicts")
            raise

        for aggregate in stored:
            logger.debug(
                "pattern_updated",
                user_id=event.user_id,
                pattern_type=str(aggregate.pattern_type),
                pattern_key=aggregate.pattern_key,
                total=aggregate.total_occurrences,
                strength=str(aggregate.strength),
            )
        return stored
