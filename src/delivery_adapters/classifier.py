# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Classification of provider failures into temporary and permanent outcomes.

Each adapter builds an :class:`ErrorClassifier` with the provider's own code
lists. Codes are checked before HTTP statuses, so a provider that returns a
400 with a "try again later" code is still retried by the orchestrator.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .errors import DeliveryError
from .idempotency import payload_fingerprint
from .models import DeliveryResult

TEMPORARY_STATUSES = frozenset({429, 500, 502, 503, 504})
DEFAULT_RATE_LIMIT_PAUSE = 60
CONCURRENT_ID_PREFIX = "concurrent_id_"


@dataclass(frozen=True)
class Classification:
    """Retry guidance for one failure."""

    is_temporary: bool
    pause_duration: int | None = None
    reason: str = ""
    is_duplicate: bool = False


class ErrorClassifier:
    """Provider-specific failure classifier.

    Args:
        temporary_codes: Provider codes that always warrant a retry.
        permanent_codes: Provider codes that never do, whatever the status.
        rate_limit_codes: Codes treated as throttling (pause applies).
        idempotency_conflict_codes: Codes meaning "same request already in
            flight"; these are reported as success.
        pause_by_code: Graduated pauses in seconds for specific throttling codes.
        default_pause: Provider default pause when no hint is available.
    """

    def __init__(
        self,
        *,
        temporary_codes: Iterable[str] = (),
        permanent_codes: Iterable[str] = (),
        rate_limit_codes: Iterable[str] = (),
        idempotency_conflict_codes: Iterable[str] = (),
        pause_by_code: Mapping[str, int] | None = None,
        default_pause: int | None = None,
    ):
        self.temporary_codes = frozenset(temporary_codes)
        self.permanent_codes = frozenset(permanent_codes)
        self.rate_limit_codes = frozenset(rate_limit_codes) | frozenset(pause_by_code or ())
        self.idempotency_conflict_codes = frozenset(idempotency_conflict_codes) | {"IDEMPOTENCY_CONFLICT"}
        self.pause_by_code = dict(pause_by_code or {})
        self.default_pause = default_pause

    def classify(
        self,
        status: int | None,
        code: str | None = None,
        retry_after: float | None = None,
        *,
        default_temporary: bool = True,
    ) -> Classification:
        """Decide whether a failure is worth retrying.

        Args:
            status: HTTP status, ``None``/0 for transport-level failures.
            code: Provider error code, if any.
            retry_after: Server retry hint in seconds.
            default_temporary: Outcome when neither code nor status decide.

        Returns:
            A :class:`Classification`.
        """
        if code is not None and code in self.idempotency_conflict_codes:
            return Classification(is_temporary=False, reason="duplicate request", is_duplicate=True)

        temporary_code = code is not None and code in self.temporary_codes
        if not temporary_code and code is not None and code in self.permanent_codes:
            return Classification(is_temporary=False, reason=f"permanent code {code}")

        if status == 429 or (code is not None and code in self.rate_limit_codes):
            return Classification(
                is_temporary=True,
                pause_duration=self._pause_for(code, retry_after),
                reason="rate limited",
            )
        if temporary_code:
            return Classification(is_temporary=True, reason=f"temporary code {code}")

        if status:
            if status in TEMPORARY_STATUSES:
                return Classification(is_temporary=True, reason=f"status {status}")
            if 400 <= status < 500:
                return Classification(is_temporary=False, reason=f"status {status}")
            if 500 <= status < 600:
                return Classification(is_temporary=True, reason=f"status {status}")
        return Classification(is_temporary=default_temporary, reason="unclassified")

    def _pause_for(self, code: str | None, retry_after: float | None) -> int:
        if code is not None and code in self.pause_by_code:
            return int(self.pause_by_code[code])
        if retry_after is not None:
            return max(1, math.ceil(retry_after))
        if self.default_pause is not None:
            return int(self.default_pause)
        return DEFAULT_RATE_LIMIT_PAUSE

    def to_result(self, error: DeliveryError, payload: Any = None) -> DeliveryResult:
        """Turn a classified exception into a :class:`DeliveryResult`."""
        if error.is_local:
            return DeliveryResult.failed(
                str(error),
                is_temporary=error.is_temporary,
                is_local_error=True,
                error_code=error.code,
            )
        verdict = self.classify(
            error.status_code,
            error.code,
            error.retry_after,
            default_temporary=error.is_temporary,
        )
        if verdict.is_duplicate:
            return DeliveryResult.ok(
                concurrent_id(payload),
                response={"duplicate": True, "detail": str(error)},
            )
        return DeliveryResult.failed(
            str(error),
            is_temporary=verdict.is_temporary,
            pause_duration=verdict.pause_duration,
            error_code=error.code,
            response=error.details,
        )


def concurrent_id(payload: Any) -> str:
    """Synthetic id reported when a duplicate in-flight request is detected."""
    return CONCURRENT_ID_PREFIX + payload_fingerprint(payload)
