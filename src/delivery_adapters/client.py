# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Async client for submitting messages to a delivery API.

The client posts to ``/v1/send`` and ``/v1/send-batch`` through the shared
:class:`~delivery_adapters.http.RequestEngine`, so it gets the same retry,
backoff and rate-limit tracking as the adapters.

Usage:
    >>> from delivery_adapters.client import DeliveryClient
    >>> client = DeliveryClient("https://api.example.com", workspace_id="42", api_key="k")
    >>> await client.send({"to": "user@example.com", "subject": "Hi", "body": "<p>Hello</p>"})
    {'id': '...', 'status': 'queued'}
    >>> client.is_near_rate_limit()
    False
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict
from datetime import datetime
from typing import Any

from . import __version__
from .errors import ConfigurationError, DeliveryError, ValidationError
from .http import HttpRequest, RequestEngine
from .logger import get_logger
from .models import Message, RateLimitInfo
from .retry import DEFAULT_TIMEOUT, RetryPolicy

MAX_BATCH_SIZE = 500
NEAR_LIMIT_THRESHOLD = 10
CLIENT_SDK = f"delivery-adapters-python/{__version__}"


def _invalid(message: str, code: str = "VALIDATION_ERROR") -> ValidationError:
    return ValidationError(message, status_code=400, code=code)


def _check_recipient(value: Any, where: str = "") -> None:
    if not isinstance(value, str) or not value.strip():
        raise _invalid(f'Missing or invalid "to" field{where}')


def _check_scheduled_at(value: Any) -> None:
    if value is None or isinstance(value, datetime):
        return
    try:
        datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise _invalid('Invalid "scheduledAt" date format') from None


def _as_payload(message: Message | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(message, Message):
        return message.model_dump(mode="json", by_alias=True, exclude_none=True)
    if not isinstance(message, Mapping):
        raise _invalid("Payload must be an object")
    payload = dict(message)
    if isinstance(payload.get("scheduledAt"), datetime):
        payload["scheduledAt"] = payload["scheduledAt"].isoformat()
    return payload


class DeliveryClient:
    """Client for a delivery API workspace.

    Args:
        base_url: API root, trailing slashes are stripped.
        workspace_id: Workspace identifier sent as ``X-Workspace-ID``.
        api_key: Secret sent as ``X-API-Key``.
        timeout: Per-attempt timeout in seconds.
        retry: Optional :class:`RetryPolicy`; defaults to three retries.
        session: Optional shared ``aiohttp.ClientSession``.

    Raises:
        ConfigurationError: If a required argument is missing.
    """

    def __init__(
        self,
        base_url: str,
        workspace_id: str | int,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retry: RetryPolicy | None = None,
        session=None,
        logger=None,
        sleep=None,
    ):
        if not base_url:
            raise ConfigurationError("base_url is required")
        if workspace_id in (None, ""):
            raise ConfigurationError("workspace_id is required")
        if not api_key:
            raise ConfigurationError("api_key is required")
        self.base_url = base_url.rstrip("/")
        self.workspace_id = str(workspace_id)
        self._api_key = api_key
        self.retry = (retry or RetryPolicy()).with_overrides(timeout=timeout)
        self.logger = logger or get_logger("DeliveryClient")
        self._last_rate_limit: RateLimitInfo | None = None
        engine_kwargs: dict[str, Any] = {"session": session, "adapter_name": "client", "logger": self.logger}
        if sleep is not None:
            engine_kwargs["sleep"] = sleep
        self.engine = RequestEngine(self.retry, **engine_kwargs)
        self.logger.debug("Client initialized for %s (workspace %s)", self.base_url, self.workspace_id)

    @property
    def timeout(self) -> float:
        return self.retry.timeout

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Workspace-ID": self.workspace_id,
            "X-API-Key": self._api_key,
            "X-Client-SDK": CLIENT_SDK,
        }

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        request = HttpRequest("POST", f"{self.base_url}{path}", headers=self._headers(), json=payload)
        try:
            response = await self.engine.execute(request, self.retry)
        except DeliveryError as exc:
            if exc.rate_limit is not None:
                self._last_rate_limit = exc.rate_limit
            raise
        if response.rate_limit is not None:
            self._last_rate_limit = response.rate_limit
        return response.data

    async def send(self, message: Message | Mapping[str, Any]) -> Any:
        """Submit one message.

        Raises:
            ValidationError: Local validation failed (status 400) or the API
                rejected the request.
            DeliveryError: Any other classified API or transport failure.
        """
        payload = _as_payload(message)
        _check_recipient(payload.get("to"))
        _check_scheduled_at(payload.get("scheduledAt"))
        return await self._post("/v1/send", payload)

    async def send_batch(self, payload: Mapping[str, Any]) -> Any:
        """Submit one template to up to 500 recipients (``payload["emails"]``)."""
        if not isinstance(payload, Mapping):
            raise _invalid("Payload must be an object")
        emails = payload.get("emails")
        if not isinstance(emails, list):
            raise _invalid('Missing or invalid "emails" array')
        if not emails:
            raise _invalid('The "emails" array cannot be empty')
        if len(emails) > MAX_BATCH_SIZE:
            raise _invalid(
                f"Batch size {len(emails)} exceeds maximum of {MAX_BATCH_SIZE}",
                code="BATCH_SIZE_EXCEEDED",
            )
        for index, recipient in enumerate(emails):
            if not isinstance(recipient, Mapping):
                raise _invalid(f"Invalid recipient at index {index}")
            _check_recipient(recipient.get("to"), f" at index {index}")
        _check_scheduled_at(payload.get("scheduledAt"))
        return await self._post("/v1/send-batch", dict(payload))

    def configure(
        self,
        *,
        base_url: str | None = None,
        workspace_id: str | int | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        retry: Mapping[str, Any] | None = None,
    ) -> DeliveryClient:
        """Update settings in place. Returns ``self`` for chaining."""
        if base_url:
            self.base_url = base_url.rstrip("/")
        if workspace_id not in (None, ""):
            self.workspace_id = str(workspace_id)
        if api_key:
            self._api_key = api_key
        overrides = dict(retry or {})
        if timeout is not None:
            overrides["timeout"] = timeout
        if overrides:
            self.retry = self.retry.with_overrides(**overrides)
            self.engine.policy = self.retry
        return self

    def rate_limit_info(self) -> RateLimitInfo | None:
        """Last ``X-RateLimit-*`` snapshot seen, if any."""
        return self._last_rate_limit

    def is_near_rate_limit(self) -> bool:
        if self._last_rate_limit is None:
            return False
        return self._last_rate_limit.remaining <= NEAR_LIMIT_THRESHOLD

    def get_config(self) -> dict[str, Any]:
        """Current settings, without the API key."""
        retry = asdict(self.retry)
        retry["retry_on"] = sorted(retry["retry_on"])
        return {
            "base_url": self.base_url,
            "workspace_id": self.workspace_id,
            "timeout": self.timeout,
            "retry": retry,
        }

    def __repr__(self) -> str:
        return f"<DeliveryClient {self.base_url} workspace={self.workspace_id}>"
