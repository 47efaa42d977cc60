"""Map an outcome event onto the pattern dimensions it updates."""

from dataclasses import dataclass, field
from datetime import datetime

from shared_types import PatternType

from .models import OutcomeEvent

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(frozen=True)
class Dimension:
    pattern_type: PatternType
    pattern_key: str
    pattern_value: dict = field(default_factory=dict, compare=False, hash=False)


def time_of_day(dt: datetime) -> str:
    """Bucket the timestamp's own wall-clock hour."""
    hour = dt.hour
    if hour < 6:
        return "night"
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    return "evening"


def day_of_week(dt: datetime) -> str:
    return WEEKDAYS[dt.weekday()]


def _clean(label: str) -> str:
    return label.strip().lower()


def derive_dimensions(event: OutcomeEvent) -> list[Dimension]:
    """Timing (time of day + weekday), one category per source label, one domain per tag.

    Each (type, key) pair appears at most once; order is stable.
    """
    tod = time_of_day(event.timestamp)
    dow = day_of_week(event.timestamp)
    candidates = [
        Dimension(PatternType.TIMING, tod, {"time_of_day": tod}),
        Dimension(PatternType.TIMING, dow, {"day_of_week": dow}),
    ]
    for label in sorted(event.source_labels):
        key = _clean(label)
        if key:
            candidates.append(Dimension(PatternType.CATEGORY, key, {"source": key}))
    for tag in sorted(event.domain_tags):
        key = _clean(tag)
        if key:
            candidates.append(Dimension(PatternType.DOMAIN, key, {"domain": key}))

    seen: set[tuple[PatternType, str]] = set()
    dimensions = []
    for dim in candidates:
        ident = (dim.pattern_type, dim.pattern_key)
        if ident in seen:
            continue
        seen.add(ident)
        dimensions.append(dim)
    return dimensions
