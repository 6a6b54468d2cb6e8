"""Bounded retry for provider calls rejected by a rate limit.

Backoff is exponential with jitter, capped, and honours ``Retry-After`` when
the provider sends one.
"""
from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional, TypeVar

from flask import current_app, has_app_context

from services.github_service import RateLimitError

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 2.0
DEFAULT_BACKOFF_CAP = 60.0


def _setting(name: str, default):
    if has_app_context():
        return current_app.config.get(name, default)
    return default


def backoff_delay(attempt: int, retry_after: Optional[float] = None) -> float:
    """Seconds to wait before retry number ``attempt`` (1-based)."""
    cap = float(_setting("RATE_LIMIT_BACKOFF_CAP", DEFAULT_BACKOFF_CAP))
    if retry_after is not None:
        return min(max(retry_after, 0.0), cap)
    base = float(_setting("RATE_LIMIT_BACKOFF_BASE", DEFAULT_BACKOFF_BASE))
    delay = base ** attempt
    return min(delay + random.uniform(0, delay * 0.1), cap)


def call_with_rate_limit_retry(func: Callable[..., T], *args, max_attempts: Optional[int] = None, **kwargs) -> T:
    """Call ``func`` and retry on RateLimitError up to ``max_attempts`` times."""
    attempts = max_attempts or int(_setting("RATE_LIMIT_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS))
    attempt = 1
    while True:
        try:
            return func(*args, **kwargs)
        except RateLimitError as error:
            if attempt >= attempts:
                logging.error("GitHub rate limit still exceeded after %s attempts", attempt)
                raise
            delay = backoff_delay(attempt, error.retry_after)
            logging.warning(
                "GitHub rate limit hit (attempt %s/%s); retrying in %.1fs", attempt, attempts, delay
            )
            time.sleep(delay)
            attempt += 1
