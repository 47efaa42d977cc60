"""Pydantic configuration models for the pattern learning engine."""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator


class PathsConfig(BaseModel):
    """File paths configuration."""

    patterns_db: Path = Path("~/.patterns/patterns.db")
    log_file: Path = Path("~/.patterns/patterns.log")

    @model_validator(mode="after")
    def expand_paths(self):
        """Expand ~ in all paths."""
        self.patterns_db = self.patterns_db.expanduser()
        self.log_file = self.log_file.expanduser()
        return self


class LearningConfig(BaseModel):
    """Aggregation and synthesis tunables."""

    confidence_saturation: int = 10
    history_window_days: int = 30
    max_context_patterns: int = 50
    timing_min_occurrences: int = 3
    domain_min_occurrences: int = 2
    domain_top_n: int = 3
    event_retention_days: int = 365

    @field_validator(
        "confidence_saturation",
        "history_window_days",
        "max_context_patterns",
        "timing_min_occurrences",
        "domain_min_occurrences",
        "domain_top_n",
        "event_retention_days",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v


class RetryConfig(BaseModel):
    """Retry/backoff for concurrent writes to the same pattern."""

    max_attempts: int = 5
    min_wait: float = 0.01
    max_wait: float = 0.5

    @model_validator(mode="after")
    def validate_waits(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.min_wait < 0 or self.max_wait < self.min_wait:
            raise ValueError(
                f"Invalid retry waits: min_wait={self.min_wait}, max_wait={self.max_wait}"
            )
        return self


VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    json_mode: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        v_upper = v.upper()
        if v_upper not in VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}. Must be one of {VALID_LOG_LEVELS}")
        return v_upper


class EngineConfig(BaseModel):
    """Main configuration model."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        """Create config from dict, accepting string paths."""
        if "paths" in data:
            for key in ["patterns_db", "log_file"]:
                if key in data["paths"] and isinstance(data["paths"][key], str):
                    data["paths"][key] = Path(data["paths"][key])
        return cls.model_validate(data)

    def to_dict(self) -> dict:
        """Convert to dict for components that take plain config."""
        return self.model_dump(mode="python")
