# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Resilient HTTP request engine shared by the REST adapters.

The :class:`RequestEngine` executes one logical request as a sequence of
attempts governed by a :class:`~delivery_adapters.retry.RetryPolicy`. Every
failure is raised as a classified :class:`~delivery_adapters.errors.DeliveryError`
so adapters only deal with one exception family.

Example:
    Issuing a request with the default policy::

        engine = RequestEngine(adapter_name="resend")
        response = await engine.execute(
            HttpRequest("POST", "https://api.resend.com/emails", json=payload)
        )
        print(response.status, response.data)
"""

from __future__ import annotations

import asyncio
import json
import random
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from multidict import CIMultiDict

from .errors import DeliveryError, NetworkError, RequestTimeoutError, error_for_status
from .logger import get_logger
from .models import RateLimitInfo
from .retry import RetryPolicy, calculate_backoff, parse_retry_after, retry_hint_from_body


@dataclass
class HttpRequest:
    """A single provider request, replayed unchanged on every attempt."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    json: Any = None
    data: Any = None
    success_statuses: frozenset[int] | None = None

    def is_success(self, status: int) -> bool:
        if self.success_statuses:
            return status in self.success_statuses
        return 200 <= status < 300


@dataclass
class HttpResponse:
    """Final response of a successful logical request."""

    status: int
    headers: CIMultiDict[str]
    text: str
    data: Any
    rate_limit: RateLimitInfo | None = None
    attempts: int = 1


@dataclass
class RetryState:
    """Bookkeeping for one logical call."""

    policy: RetryPolicy
    attempt: int = 0
    rate_limit: RateLimitInfo | None = None


def parse_rate_limit(headers: Mapping[str, str]) -> RateLimitInfo | None:
    """Read the ``X-RateLimit-*`` headers into a snapshot, if present."""
    limit = headers.get("X-RateLimit-Limit")
    remaining = headers.get("X-RateLimit-Remaining")
    if limit is None or remaining is None:
        return None
    try:
        return RateLimitInfo(
            limit=int(limit),
            remaining=int(remaining),
            reset=int(headers.get("X-RateLimit-Reset") or 0),
        )
    except ValueError:
        return None


def parse_body(text: str) -> Any:
    """Decode a response body as JSON, wrapping non-JSON text."""
    if not text:
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return {"message": text}


def extract_error(data: Any, status: int) -> tuple[str, str | None]:
    """Pull a human message and a provider code out of an error body.

    Handles flat bodies (``{"message", "code"|"name"}``), nested bodies
    (``{"error": {...}}``), list bodies (``{"errors": [...]}``) and the Bot
    API ``description`` field.
    """
    message: str | None = None
    code: str | None = None
    if isinstance(data, dict):
        source = data.get("error") if isinstance(data.get("error"), dict) else data
        for key in ("message", "description", "error"):
            value = source.get(key)
            if isinstance(value, str) and value:
                message = value
                break
        for key in ("code", "name", "error_code", "type"):
            value = source.get(key)
            if isinstance(value, str) and value:
                code = value
                break
        errors = data.get("errors")
        if message is None and isinstance(errors, list) and errors:
            message = "; ".join(str(e) for e in errors)
    return message or f"Request failed with status {status}", code


class RequestEngine:
    """Execute HTTP requests with retries, backoff and per-attempt timeouts.

    Args:
        policy: Default retry policy for calls that do not pass one.
        session: Optional shared ``aiohttp.ClientSession``; when absent a
            session is opened per logical call.
        adapter_name: Label used for logs and metrics.
        logger: Optional logger, defaults to ``delivery_adapters.RequestEngine``.
        metrics: Optional :class:`~delivery_adapters.prometheus.AdapterMetrics`.
        classifier: Optional :class:`~delivery_adapters.classifier.ErrorClassifier`;
            a retryable status carrying a permanent provider code is not retried.
        sleep: Awaitable used for backoff waits.
        rng: Uniform random source used for jitter.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        adapter_name: str = "http",
        logger=None,
        metrics=None,
        classifier=None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.policy = policy or RetryPolicy()
        self.adapter_name = adapter_name
        self.logger = logger or get_logger("RequestEngine")
        self.metrics = metrics
        self.classifier = classifier
        self._session = session
        self._sleep = sleep
        self._rng = rng

    async def execute(self, request: HttpRequest, policy: RetryPolicy | None = None) -> HttpResponse:
        """Run ``request`` until it succeeds or the policy gives up.

        Raises:
            DeliveryError: Classified error of the last attempt. When retries
                were exhausted the message carries an ``(after N retries)`` suffix.
        """
        state = RetryState(policy or self.policy)
        if self._session is not None:
            return await self._run(self._session, request, state)
        async with aiohttp.ClientSession() as session:
            return await self._run(session, request, state)

    async def _run(
        self, session: aiohttp.ClientSession, request: HttpRequest, state: RetryState
    ) -> HttpResponse:
        policy = state.policy
        while True:
            attempt = state.attempt
            self.logger.debug(
                "%s %s %s (attempt %d/%d)",
                self.adapter_name, request.method, request.url, attempt + 1, policy.max_retries + 1,
            )
            try:
                response = await self._attempt(session, request, policy)
            except RequestTimeoutError as exc:
                error: DeliveryError = exc
                retryable = policy.retry_on_timeout
            except NetworkError as exc:
                error = exc
                retryable = policy.retry_on_network
            else:
                if response.rate_limit is not None:
                    state.rate_limit = response.rate_limit
                if request.is_success(response.status):
                    response.attempts = attempt + 1
                    response.rate_limit = state.rate_limit
                    return response
                error = self._error_from_response(response)
                retryable = response.status in policy.retry_on and self._retryable_code(error)

            error.attempts = attempt + 1
            error.rate_limit = state.rate_limit
            if not retryable:
                raise error
            if attempt >= policy.max_retries:
                if policy.max_retries > 0:
                    error.mark_exhausted(attempt + 1, policy.max_retries)
                raise error

            delay = calculate_backoff(attempt, policy, error.retry_after, self._rng)
            self.logger.warning(
                "%s request to %s failed (%s), retrying in %.2fs (attempt %d/%d)",
                self.adapter_name, request.url, error, delay, attempt + 1, policy.max_retries + 1,
            )
            if self.metrics is not None:
                self.metrics.inc_retry(self.adapter_name)
            await self._sleep(delay)
            state.attempt += 1

    async def _attempt(
        self, session: aiohttp.ClientSession, request: HttpRequest, policy: RetryPolicy
    ) -> HttpResponse:
        kwargs: dict[str, Any] = {
            "headers": request.headers,
            "timeout": aiohttp.ClientTimeout(total=policy.timeout),
        }
        if request.json is not None:
            kwargs["json"] = request.json
        elif request.data is not None:
            kwargs["data"] = request.data
        try:
            async with session.request(request.method, request.url, **kwargs) as resp:
                text = await resp.text()
                headers = CIMultiDict(resp.headers)
                status = resp.status
        except asyncio.TimeoutError as exc:
            raise RequestTimeoutError(f"Request timed out after {policy.timeout}s") from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(f"Network error: {exc}") from exc
        return HttpResponse(
            status=status,
            headers=headers,
            text=text,
            data=parse_body(text),
            rate_limit=parse_rate_limit(headers),
        )

    def _retryable_code(self, error: DeliveryError) -> bool:
        if self.classifier is None or error.code is None:
            return True
        return self.classifier.classify(error.status_code, error.code, error.retry_after).is_temporary

    def _error_from_response(self, response: HttpResponse) -> DeliveryError:
        message, code = extract_error(response.data, response.status)
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        if retry_after is None:
            retry_after = retry_hint_from_body(response.data)
        return error_for_status(
            response.status,
            message=message,
            code=code,
            retry_after=retry_after,
            details=response.data,
            headers=dict(response.headers),
        )
