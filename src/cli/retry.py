"""Retry utilities with exponential backoff."""

import logging
import structlog

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
    before_sleep_log,
)

logger = structlog.stdlib.get_logger(__name__)


def conflict_retry(
    max_attempts: int = 5,
    min_wait: float = 0.01,
    max_wait: float = 0.5,
    exceptions: tuple = (Exception,),
):
    """Retry decorator for optimistic-concurrency conflicts.

    Adds random jitter on top of the exponential wait so racing writers
    on the same key spread out instead of colliding again.

    Args:
        max_attempts: Max attempts including the first one
        min_wait: Min wait between retries (seconds)
        max_wait: Max wait between retries (seconds)
        exceptions: Exception types to retry on
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait)
        + wait_random(0, min_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def retry_from_config(config: dict, exceptions: tuple = (Exception,)):
    """Create a conflict retry decorator from a config dict.

    Args:
        config: Retry section (max_attempts, min_wait, max_wait)
        exceptions: Exception types to retry on
    """
    return conflict_retry(
        max_attempts=config.get("max_attempts", 5),
        min_wait=config.get("min_wait", 0.01),
        max_wait=config.get("max_wait", 0.5),
        exceptions=exceptions,
    )
