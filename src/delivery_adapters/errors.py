# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exception taxonomy shared by the request engine and the adapters.

Every failure that can reach an adapter boundary is a :class:`DeliveryError`
subclass. The class decides the default retry guidance (``is_temporary``);
the error classifier may still override it with provider-specific knowledge.

Hierarchy::

    DeliveryError
    ├── ConfigurationError      permanent, required config missing/invalid
    ├── SecurityError           permanent, detected locally before any I/O
    ├── ValidationError         permanent, malformed request
    │   └── AttachmentTooLargeError
    ├── AuthError               permanent, 401/403
    ├── RateLimitError          temporary, carries retry_after
    ├── ServerError             temporary, 5xx
    ├── NetworkError            temporary, connection failures
    ├── RequestTimeoutError     temporary, per-attempt timeout
    ├── IdempotencyConflict     treated as success by the classifier
    └── UnknownError            temporary by default
"""

from __future__ import annotations

from typing import Any


class DeliveryError(Exception):
    """Base class for classified delivery failures.

    Attributes:
        status_code: HTTP status code, 0 for transport-level failures.
        code: Provider or engine error code (e.g. ``"TIMEOUT"``).
        retry_after: Server-suggested wait in seconds, if any.
        details: Parsed response body or extra diagnostic data.
        attempts: Number of attempts made before the error was raised.
        rate_limit: Last rate-limit snapshot observed, if any.
        payload: Request body that produced the error, when known.
    """

    is_temporary: bool = True
    is_local: bool = False
    default_code: str | None = None

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        code: str | None = None,
        retry_after: float | None = None,
        details: Any = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code or self.default_code
        self.retry_after = retry_after
        self.details = details
        self.headers = headers or {}
        self.attempts = 1
        self.rate_limit = None
        self.payload = None

    def __str__(self) -> str:
        return self.message

    def mark_exhausted(self, attempts: int, retries: int) -> None:
        """Annotate the error after the last retryable attempt failed."""
        self.attempts = attempts
        self.message = f"{self.message} (after {retries} retries)"
        self.args = (self.message,)


class ConfigurationError(DeliveryError):
    """Required adapter configuration is missing or invalid."""

    is_temporary = False
    is_local = True
    default_code = "CONFIGURATION_ERROR"


class SecurityError(DeliveryError):
    """A request was refused locally, before any network call (e.g. attachment scheme)."""

    is_temporary = False
    is_local = True
    default_code = "E_SECURITY"


class ValidationError(DeliveryError):
    """The request is malformed and will never succeed as-is."""

    is_temporary = False
    default_code = "VALIDATION_ERROR"


class AttachmentTooLargeError(ValidationError):
    """A remote attachment exceeded the configured size ceiling."""

    is_local = True
    default_code = "ATTACHMENT_TOO_LARGE"


class AuthError(DeliveryError):
    """Credentials were rejected by the provider."""

    is_temporary = False
    default_code = "AUTH_ERROR"


class RateLimitError(DeliveryError):
    """The provider throttled the request."""

    default_code = "RATE_LIMITED"


class ServerError(DeliveryError):
    """The provider failed with a 5xx status."""

    default_code = "SERVER_ERROR"


class NetworkError(DeliveryError):
    """The connection could not be established or was dropped."""

    default_code = "NETWORK_ERROR"


class RequestTimeoutError(DeliveryError):
    """A single attempt exceeded its timeout."""

    default_code = "TIMEOUT"


class IdempotencyConflict(DeliveryError):
    """A request with the same idempotency key is already being processed."""

    is_temporary = False
    default_code = "IDEMPOTENCY_CONFLICT"


class UnknownError(DeliveryError):
    """Unclassified failure; retrying is preferred over dropping the message."""

    default_code = "UNKNOWN_ERROR"


def error_for_status(
    status: int,
    message: str | None = None,
    code: str | None = None,
    retry_after: float | None = None,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> DeliveryError:
    """Build the error class matching an HTTP status code.

    Args:
        status: HTTP status of the failed response.
        message: Human-readable message; defaults to a generic one.
        code: Provider error code extracted from the body.
        retry_after: Server retry hint in seconds.
        details: Parsed response body.
        headers: Response headers.

    Returns:
        A ``DeliveryError`` subclass instance (not raised).
    """
    message = message or f"Request failed with status {status}"
    if status == 429:
        cls: type[DeliveryError] = RateLimitError
    elif status in (401, 403):
        cls = AuthError
    elif 400 <= status < 500:
        cls = ValidationError
    elif 500 <= status < 600:
        cls = ServerError
    else:
        cls = UnknownError
    return cls(
        message,
        status_code=status,
        code=code,
        retry_after=retry_after,
        details=details,
        headers=headers,
    )
