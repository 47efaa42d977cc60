"""Data models for behavioral pattern learning."""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional

from shared_types import InsightPriority, InsightType, Outcome, PatternStrength, PatternType

from .errors import ValidationError

CONFIDENCE_SATURATION = 10
STRONG_THRESHOLD = 0.7
MODERATE_THRESHOLD = 0.4


def compute_confidence(total_occurrences: int, saturation: int = CONFIDENCE_SATURATION) -> float:
    """Saturating confidence: reaches 1.0 after `saturation` observations."""
    return min(total_occurrences / saturation, 1.0)


def strength_for(success_rate: float) -> PatternStrength:
    """Bucket a success rate. Thresholds are exclusive (0.7 is moderate)."""
    if success_rate > STRONG_THRESHOLD:
        return PatternStrength.STRONG
    if success_rate > MODERATE_THRESHOLD:
        return PatternStrength.MODERATE
    return PatternStrength.WEAK


def _normalize_labels(values) -> frozenset[str]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    return frozenset(v for v in values if isinstance(v, str))


@dataclass(frozen=True)
class OutcomeEvent:
    """One completed/skipped/failed activity, as reported by the producer."""

    user_id: str
    activity_id: str
    outcome: Optional[Outcome]
    timestamp: Optional[datetime]
    xp_awarded: float = 0
    feedback_text: Optional[str] = None
    domain_tags: frozenset[str] = field(default_factory=frozenset)
    source_labels: frozenset[str] = field(default_factory=frozenset)
    completion_id: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.outcome, str) and self.outcome in Outcome._value2member_map_:
            object.__setattr__(self, "outcome", Outcome(self.outcome))
        object.__setattr__(self, "domain_tags", _normalize_labels(self.domain_tags))
        object.__setattr__(self, "source_labels", _normalize_labels(self.source_labels))

    @property
    def successful(self) -> bool:
        return self.outcome == Outcome.COMPLETED

    def validate(self) -> None:
        """Raise ValidationError if the event cannot be applied."""
        if not isinstance(self.user_id, str) or not self.user_id.strip():
            raise ValidationError("user_id is required", field="user_id")
        if not isinstance(self.activity_id, str) or not self.activity_id.strip():
            raise ValidationError("activity_id is required", field="activity_id")
        if self.outcome is None:
            raise ValidationError("outcome is required", field="outcome")
        if not isinstance(self.outcome, Outcome):
            raise ValidationError(
                f"Invalid outcome: {self.outcome!r}. Must be one of {[o.value for o in Outcome]}",
                field="outcome",
            )
        if not isinstance(self.timestamp, datetime):
            raise ValidationError("timestamp must be a datetime", field="timestamp")
        if isinstance(self.xp_awarded, bool) or not isinstance(self.xp_awarded, (int, float)):
            raise ValidationError("xp_awarded must be a number", field="xp_awarded")
        if not math.isfinite(self.xp_awarded) or self.xp_awarded < 0:
            raise ValidationError(
                f"xp_awarded must be a finite number >= 0, got {self.xp_awarded}",
                field="xp_awarded",
            )
        if self.feedback_text is not None and not isinstance(self.feedback_text, str):
            raise ValidationError("feedback_text must be a string", field="feedback_text")

    @classmethod
    def from_dict(cls, data: dict) -> "OutcomeEvent":
        """Build an event from a loosely-typed dict (API payload, CLI input).

        Accepts ISO timestamps and a single ``source`` label in place of
        ``source_labels``. Shape errors raise ValidationError.
        """
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            try:
                timestamp = datetime.fromisoformat(timestamp)
            except ValueError:
                raise ValidationError(f"Invalid timestamp: {timestamp}", field="timestamp")

        labels = data.get("source_labels")
        if labels is None and data.get("source"):
            labels = [data["source"]]

        return cls(
            user_id=data.get("user_id", ""),
            activity_id=data.get("activity_id", ""),
            outcome=data.get("outcome"),
            timestamp=timestamp,
            xp_awarded=data.get("xp_awarded", 0),
            feedback_text=data.get("feedback_text"),
            domain_tags=data.get("domain_tags"),
            source_labels=labels,
            completion_id=data.get("completion_id"),
        )


@dataclass
class PatternAggregate:
    """Running statistics for one (user, pattern type, pattern key)."""

    user_id: str
    pattern_type: PatternType
    pattern_key: str
    total_occurrences: int = 0
    successful_count: int = 0
    failed_count: int = 0
    average_xp: float = 0.0
    average_sentiment: float = 0.0
    confidence: float = 0.0
    strength: PatternStrength = PatternStrength.WEAK
    should_avoid: bool = False
    first_observed: Optional[datetime] = None
    last_observed: Optional[datetime] = None
    pattern_value: dict = field(default_factory=dict)
    recommendation: Optional[str] = None
    version: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_occurrences <= 0:
            return 0.0
        return self.successful_count / self.total_occurrences

    def to_view(self) -> dict:
        """Read-only projection handed to downstream consumers."""
        return {
            "type": str(self.pattern_type),
            "key": self.pattern_key,
            "value": dict(self.pattern_value),
            "strength": str(self.strength),
            "confidence": self.confidence,
            "success_rate": self.success_rate,
            "total_occurrences": self.total_occurrences,
            "average_xp": self.average_xp,
            "average_sentiment": self.average_sentiment,
            "should_avoid": self.should_avoid,
            "last_observed": self.last_observed.isoformat() if self.last_observed else None,
        }


@dataclass(frozen=True)
class EventRecord:
    """An outcome event plus the context derived when it was recorded."""

    user_id: str
    activity_id: str
    outcome: Outcome
    timestamp: datetime
    xp_awarded: float
    sentiment: float = 0.0
    mood: Optional[str] = None
    keywords: tuple[str, ...] = ()
    time_of_day: str = ""
    day_of_week: str = ""
    source_labels: tuple[str, ...] = ()
    domain_tags: tuple[str, ...] = ()
    previous_completion: bool = False
    completion_id: Optional[str] = None


@dataclass
class Insight:
    type: InsightType
    title: str
    description: str
    confidence_score: float
    evidence_count: int
    supporting_context: dict = field(default_factory=dict)
    priority: InsightPriority = InsightPriority.MEDIUM

    def to_dict(self) -> dict:
        d = asdict(self)
        d["type"] = str(self.type)
        d["priority"] = str(self.priority)
        return d


@dataclass
class LearningContext:
    """Everything the recommender gets to know about a user's behavior."""

    patterns: list[dict] = field(default_factory=list)
    preferences: dict = field(
        default_factory=lambda: {
            "optimal_timing": [],
            "preferred_categories": [],
            "preferred_domains": [],
        }
    )
    avoidances: list[dict] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)
    task_history_summary: dict = field(default_factory=dict)
    auxiliary_context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "patterns": self.patterns,
            "preferences": self.preferences,
            "avoidances": self.avoidances,
            "insights": [i.to_dict() for i in self.insights],
            "task_history_summary": self.task_history_summary,
            "auxiliary_context": self.auxiliary_context,
        }
