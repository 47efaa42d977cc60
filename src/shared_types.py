"""Shared enums and types for the pattern learning engine."""

from enum import StrEnum


class Outcome(StrEnum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class PatternType(StrEnum):
    TIMING = "timing"
    CATEGORY = "category"
    DOMAIN = "domain"


class PatternStrength(StrEnum):
    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"


class Mood(StrEnum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class InsightType(StrEnum):
    OPTIMAL_TIMING = "optimal_timing"
    DOMAIN_PREFERENCE = "domain_preference"
    AVOIDANCE = "avoidance"


class InsightPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
