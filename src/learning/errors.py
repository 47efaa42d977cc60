"""Error taxonomy for the pattern learning engine."""


class LearningError(Exception):
    """Base pattern learning error."""


class ValidationError(LearningError, ValueError):
    """Malformed outcome event. Raised before any aggregate is touched."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class InvariantViolation(LearningError):
    """A write would break aggregate invariants. Indicates a bug, never retried."""


class ConcurrencyConflict(LearningError):
    """Another writer changed the aggregate between read and write."""

    def __init__(self, user_id: str, pattern_type: str, pattern_key: str, expected_version: int):
        super().__init__(
            f"Version conflict on {pattern_type}/{pattern_key} for user {user_id} "
            f"(expected version {expected_version})"
        )
        self.user_id = user_id
        self.pattern_type = pattern_type
        self.pattern_key = pattern_key
        self.expected_version = expected_version
