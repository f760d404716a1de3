# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Retry policy and backoff computation for provider requests.

A :class:`RetryPolicy` describes how many times a logical request may be
re-attempted and how long to wait in between. Waits follow exponential
backoff with jitter unless the server supplied an explicit retry hint, in
which case the hint is honoured exactly (capped by ``max_delay``).

Attributes:
    DEFAULT_MAX_RETRIES: Retries after the first attempt.
    DEFAULT_BASE_DELAY: Base backoff delay in seconds.
    DEFAULT_MAX_DELAY: Upper bound for any single wait, in seconds.
    DEFAULT_RETRY_ON: HTTP statuses considered transient.
    JITTER_RATIO: Fraction of the exponential delay used as jitter range.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0
DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRY_ON = frozenset({429, 500, 502, 503, 504})
JITTER_RATIO = 0.25


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration for one logical call.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum wait in seconds between two attempts.
        retry_on: HTTP statuses that trigger a retry.
        retry_on_timeout: Retry when an attempt times out.
        retry_on_network: Retry on connection failures.
        timeout: Per-attempt timeout in seconds.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    retry_on: frozenset[int] = field(default_factory=lambda: DEFAULT_RETRY_ON)
    retry_on_timeout: bool = True
    retry_on_network: bool = True
    timeout: float = DEFAULT_TIMEOUT

    def with_overrides(self, **overrides: Any) -> RetryPolicy:
        """Return a copy with the non-None overrides applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        if "retry_on" in values:
            values["retry_on"] = frozenset(values["retry_on"])
        return replace(self, **values)

    @classmethod
    def no_retry(cls, timeout: float = DEFAULT_TIMEOUT) -> RetryPolicy:
        return cls(max_retries=0, timeout=timeout)


def calculate_backoff(
    attempt: int,
    policy: RetryPolicy,
    retry_after: float | None = None,
    rng: Callable[[], float] = random.random,
) -> float:
    """Compute the wait before the next attempt.

    Args:
        attempt: Zero-based index of the attempt that just failed.
        policy: Active retry policy.
        retry_after: Server-provided hint in seconds, if any.
        rng: Source of uniform floats in ``[0, 1)``, injectable for tests.

    Returns:
        Delay in seconds, within ``[0, policy.max_delay]``.
    """
    if retry_after is not None and retry_after >= 0:
        return min(float(retry_after), policy.max_delay)

    exponential = policy.base_delay * (2 ** attempt)
    jitter = exponential * JITTER_RATIO * (rng() * 2 - 1)
    return max(0.0, min(exponential + jitter, policy.max_delay))


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Parse a ``Retry-After`` header given as seconds or as an HTTP-date."""
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def retry_hint_from_body(data: Any) -> float | None:
    """Extract a retry hint from a JSON error body.

    Recognizes ``retryAfter``/``retry_after`` at the top level and the Bot
    API shape ``{"parameters": {"retry_after": N}}``.
    """
    if not isinstance(data, dict):
        return None
    candidates = [data.get("retryAfter"), data.get("retry_after")]
    parameters = data.get("parameters")
    if isinstance(parameters, dict):
        candidates.append(parameters.get("retry_after"))
    for candidate in candidates:
        if candidate is None:
            continue
        try:
            return max(0.0, float(candidate))
        except (TypeError, ValueError):
            continue
    return None
