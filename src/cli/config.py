"""Configuration loading and management."""

from pathlib import Path
from typing import Optional

import yaml

from .config_models import EngineConfig
from .logging_config import setup_logging as _setup_structlog

# Default config dict
DEFAULT_CONFIG = EngineConfig().to_dict()


def find_config() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / "config.yaml",
        Path.home() / ".patterns" / "config.yaml",
    ]
    for loc in locations:
        if loc.exists():
            return loc
    return None


def load_config(config_path: Optional[Path] = None) -> dict:
    """Load configuration from file or defaults.

    Returns a plain dict. Use load_config_model() for typed access.
    """
    model = load_config_model(config_path)
    return model.to_dict()


def load_config_model(config_path: Optional[Path] = None) -> EngineConfig:
    """Load configuration as Pydantic model with validation."""
    base_config = {}

    path = config_path or find_config()
    if path and path.exists():
        try:
            with open(path) as f:
                base_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file: {e}")

    try:
        return EngineConfig.from_dict(base_config)
    except Exception as e:
        raise ValueError(f"Config validation failed: {e}")


def get_paths(config: dict) -> dict:
    """Get expanded paths from config."""
    paths = config.get("paths", DEFAULT_CONFIG["paths"])
    return {
        "patterns_db": Path(paths["patterns_db"]).expanduser(),
        "log_file": Path(paths.get("log_file", "~/.patterns/patterns.log")).expanduser(),
    }


def setup_logging(config: dict) -> None:
    """Configure logging based on config."""
    log_config = config.get("logging", {})
    _setup_structlog(
        json_mode=log_config.get("json_mode", False),
        level=log_config.get("level", "INFO"),
        log_file=get_paths(config).get("log_file"),
    )
