"""Shared CLI utilities."""

import structlog
from rich.console import Console

console = Console()
logger = structlog.get_logger()


def get_components(config: dict | None = None):
    """Initialize engine components from config (SQLite backends).

    Args:
        config: Plain config dict; loaded from the standard locations if None.
    """
    from cli.config import get_paths, load_config
    from learning import (
        ContextAssembler,
        InsightCache,
        InsightSynthesizer,
        PatternUpdater,
        SQLiteEventLog,
        SQLitePatternStore,
    )

    config = config or load_config()
    paths = get_paths(config)
    learning_cfg = config.get("learning", {})

    store = SQLitePatternStore(
        paths["patterns_db"],
        confidence_saturation=learning_cfg.get("confidence_saturation", 10),
    )
    event_log = SQLiteEventLog(paths["patterns_db"])
    synthesizer = InsightSynthesizer(
        store,
        timing_min_occurrences=learning_cfg.get("timing_min_occurrences", 3),
        domain_min_occurrences=learning_cfg.get("domain_min_occurrences", 2),
        domain_top_n=learning_cfg.get("domain_top_n", 3),
    )
    insight_cache = InsightCache(synthesizer)
    updater = PatternUpdater(
        store,
        event_log=event_log,
        retry=config.get("retry", {}),
        insight_cache=insight_cache,
    )
    assembler = ContextAssembler(
        store,
        event_log=event_log,
        synthesizer=synthesizer,
        max_patterns=learning_cfg.get("max_context_patterns", 50),
    )

    return {
        "config": config,
        "paths": paths,
        "store": store,
        "event_log": event_log,
        "updater": updater,
        "synthesizer": synthesizer,
        "insight_cache": insight_cache,
        "assembler": assembler,
    }
