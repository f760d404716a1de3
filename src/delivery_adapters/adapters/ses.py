# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Amazon SES v2 adapter built on aioboto3.

Messages without attachments or custom headers use the ``Simple`` content
form; anything richer is sent as a ``Raw`` MIME message. SES has no webhook
of its own here (notifications go through SNS), so :meth:`webhook` always
returns ``None``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Annotated, Any

import aioboto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ..classifier import ErrorClassifier
from ..errors import (
    DeliveryError,
    NetworkError,
    RequestTimeoutError,
    UnknownError,
    error_for_status,
)
from ..idempotency import IdempotencyFormat, derive_idempotency_key
from ..mime import build_mime_message
from ..models import AdapterMetadata, DeliveryResult, HealthStatus, Message, ValidationResult
from .base import AdapterConfig, DeliveryAdapter, config_field

IDEMPOTENCY_TAG = "Idempotency-Key"
IDEMPOTENCY_HEADER = "X-Idempotency-Key"
DAILY_QUOTA_CODE = "DailyQuotaExceeded"

TEMPORARY_CODES = (
    "ThrottlingException",
    "LimitExceededException",
    "ServiceUnavailable",
    "InternalFailure",
    "RequestTimeout",
    "NetworkingError",
    "TimeoutError",
    "TooManyRequestsException",
)
PERMANENT_CODES = (
    "MessageRejected",
    "MailFromDomainNotVerifiedException",
    "AccountSuspendedException",
    "SendingPausedException",
    "NotFoundException",
    "BadRequestException",
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
    "AccessDeniedException",
)


class SesConfig(AdapterConfig):
    region: Annotated[str, config_field("AWS Region", "us-east-1", group="main", placeholder="us-east-1", min_length=1)]
    access_key_id: Annotated[str, config_field("Access Key ID", group="authentication", placeholder="AKIA...", min_length=1)]
    secret_access_key: Annotated[str, config_field("Secret Access Key", type="password", group="authentication", min_length=1)]
    from_email: Annotated[str, config_field("From Email", group="defaults", placeholder="sender@example.com", min_length=3)]
    from_name: Annotated[str | None, config_field("From Name", None, group="defaults")]
    endpoint: Annotated[
        str | None,
        config_field("Custom Endpoint", None, hint="AWS-compatible endpoint, e.g. for local testing."),
    ]
    configuration_set: Annotated[str | None, config_field("Configuration Set", None)]


def error_from_boto(exc: Exception) -> DeliveryError:
    """Translate a botocore/aiobotocore exception into a :class:`DeliveryError`."""
    if isinstance(exc, (ConnectTimeoutError, ReadTimeoutError, asyncio.TimeoutError)):
        return RequestTimeoutError(f"SES request timed out: {exc}")
    if isinstance(exc, EndpointConnectionError):
        return NetworkError(f"Network error: {exc}")
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = error.get("Code") or "UnknownError"
        message = error.get("Message") or str(exc)
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
        if "daily message quota" in message.lower():
            code = DAILY_QUOTA_CODE
        text = f"{code}: {message}"
        if status:
            return error_for_status(status, text, code=code, details=exc.response)
        return UnknownError(text, code=code, details=exc.response)
    if isinstance(exc, BotoCoreError):
        return NetworkError(f"{type(exc).__name__}: {exc}", code="NetworkingError")
    return UnknownError(f"{type(exc).__name__}: {exc}")


class SesAdapter(DeliveryAdapter):
    """Send email through Amazon SES v2.

    Args:
        config: :class:`SesConfig` values.
        session: Optional ``aioboto3.Session``; one is created from the
            configured credentials otherwise (no network I/O).
    """

    key = "ses"
    config_model = SesConfig
    metadata = AdapterMetadata(
        name="Amazon SES",
        description="Send emails via Amazon Simple Email Service (SES) V2.",
        group="transactional",
    )
    idempotency_format = IdempotencyFormat.TAG

    def __init__(self, config: Mapping[str, Any] | SesConfig | None = None, *, session=None, **kwargs: Any):
        super().__init__(config, **kwargs)
        self.session = session or aioboto3.Session(
            aws_access_key_id=self.config.access_key_id,
            aws_secret_access_key=self.config.secret_access_key,
            region_name=self.config.region,
        )

    def build_classifier(self) -> ErrorClassifier:
        return ErrorClassifier(
            temporary_codes=TEMPORARY_CODES,
            permanent_codes=PERMANENT_CODES,
            rate_limit_codes=("ThrottlingException", "TooManyRequestsException"),
            pause_by_code={DAILY_QUOTA_CODE: 3600},
        )

    def _client(self):
        boto_config = BotoConfig(
            connect_timeout=self.config.timeout,
            read_timeout=self.config.timeout,
            retries={"total_max_attempts": self.config.max_retries + 1, "mode": "standard"},
        )
        kwargs: dict[str, Any] = {"config": boto_config}
        if self.config.endpoint and self.config.endpoint.strip():
            kwargs["endpoint_url"] = self.config.endpoint.strip()
        return self.session.client("sesv2", **kwargs)

    async def _get_account(self) -> dict[str, Any]:
        try:
            async with self._client() as ses:
                return await ses.get_account()
        except (BotoCoreError, ClientError, asyncio.TimeoutError) as exc:
            raise error_from_boto(exc) from exc

    async def _check_config(self) -> ValidationResult:
        await self._get_account()
        return ValidationResult(success=True, message="Successfully connected to Amazon SES v2.")

    async def _probe_health(self) -> HealthStatus:
        account = await self._get_account()
        if account.get("SendingEnabled") is False:
            return HealthStatus.UNHEALTHY
        if account.get("EnforcementStatus") == "PROBATION":
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def _sender(self) -> str:
        if self.config.from_name:
            return f'"{self.config.from_name}" <{self.config.from_email}>'
        return self.config.from_email

    async def build_request(self, message: Message) -> dict[str, Any]:
        data = message.data
        headers = dict(data.get("headers") or {})
        tags = [
            {"Name": str(t.get("Name") or t.get("name")), "Value": str(t.get("Value") or t.get("value"))}
            for t in data.get("tags") or []
            if isinstance(t, Mapping)
        ]
        if message.idempotency_key:
            tags.insert(0, {"Name": IDEMPOTENCY_TAG, "Value": self.idempotency_token(message)})
            headers[IDEMPOTENCY_HEADER] = derive_idempotency_key(message.idempotency_key, IdempotencyFormat.HEADER)

        destination: dict[str, Any] = {"ToAddresses": [message.to]}
        for field, key in (("cc", "CcAddresses"), ("bcc", "BccAddresses")):
            value = data.get(field)
            if value:
                destination[key] = value if isinstance(value, list) else [value]

        files = await self.resolver.resolve(message.attachments())
        if files or headers:
            mime = build_mime_message(
                sender=self._sender(),
                to=message.to,
                subject=message.subject,
                text=data.get("text"),
                html=message.body or "",
                attachments=files,
                cc=data.get("cc"),
                reply_to=self.option(message, "reply_to"),
                headers=headers,
            )
            content: dict[str, Any] = {"Raw": {"Data": mime.as_bytes()}}
        else:
            body: dict[str, Any] = {"Html": {"Data": message.body or "", "Charset": "UTF-8"}}
            if data.get("text"):
                body["Text"] = {"Data": data["text"], "Charset": "UTF-8"}
            content = {
                "Simple": {
                    "Subject": {"Data": message.subject or "", "Charset": "UTF-8"},
                    "Body": body,
                }
            }

        request: dict[str, Any] = {
            "FromEmailAddress": self._sender(),
            "Destination": destination,
            "Content": content,
        }
        reply_to = self.option(message, "reply_to")
        if reply_to:
            request["ReplyToAddresses"] = [reply_to]
        if tags:
            request["EmailTags"] = tags
        if self.config.configuration_set:
            request["ConfigurationSetName"] = self.config.configuration_set
        return request

    async def _send(self, message: Message) -> DeliveryResult:
        request = await self.build_request(message)
        try:
            async with self._client() as ses:
                result = await ses.send_email(**request)
        except (BotoCoreError, ClientError, asyncio.TimeoutError) as exc:
            error = error_from_boto(exc)
            error.payload = message.model_dump(mode="json")
            raise error from exc
        metadata = result.pop("ResponseMetadata", None)
        self.logger.debug("SES accepted message (request id %s)", (metadata or {}).get("RequestId"))
        return self.accepted(result.get("MessageId"), result)
