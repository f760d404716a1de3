# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Resend transactional email adapter (https://resend.com/docs/api-reference)."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any

from ..classifier import ErrorClassifier
from ..errors import ConfigurationError
from ..http import HttpRequest
from ..idempotency import IdempotencyFormat
from ..models import (
    AdapterMetadata,
    DeliveryResult,
    EventStatus,
    HealthStatus,
    Message,
    ValidationResult,
)
from ..webhooks.normalize import EventNormalizer
from ..webhooks.verify import SvixVerifier
from .base import AdapterConfig, DeliveryAdapter, WebhookOutcome, config_field, parse_json_payload

RESEND_API_URL = "https://api.resend.com"

PERMANENT_CODES = (
    "validation_error",
    "missing_api_key",
    "invalid_api_key",
    "restricted_api_key",
    "invalid_from_address",
    "invalid_attachment",
    "invalid_parameter",
    "invalid_region",
    "missing_required_field",
    "not_found",
    "method_not_allowed",
    "invalid_access",
    "security_error",
    "invalid_idempotent_request",
)
TEMPORARY_CODES = (
    "rate_limit_exceeded",
    "daily_quota_exceeded",
    "monthly_quota_exceeded",
    "application_error",
    "internal_server_error",
)
QUOTA_PAUSES = {"daily_quota_exceeded": 3600, "monthly_quota_exceeded": 86400}

EVENT_MAP: dict[str, EventStatus | None] = {
    "email.sent": None,
    "email.delivery_delayed": None,
    "email.delivered": EventStatus.DELIVERED,
    "email.bounced": EventStatus.HARD_REJECT,
    "email.complained": EventStatus.COMPLAINED,
    "email.clicked": EventStatus.CLICKED,
    "email.opened": EventStatus.OPENED,
}

EVENT_KEYWORDS = (
    ("bounce", EventStatus.HARD_REJECT),
    ("deliver", EventStatus.DELIVERED),
    ("complain", EventStatus.COMPLAINED),
    ("spam", EventStatus.COMPLAINED),
    ("open", EventStatus.OPENED),
    ("click", EventStatus.CLICKED),
)


class ResendConfig(AdapterConfig):
    api_key: Annotated[str, config_field("API Key", type="password", group="authentication", placeholder="re_123...", min_length=1)]
    from_email: Annotated[
        str,
        config_field(
            "From Email",
            group="defaults",
            placeholder="onboarding@resend.dev",
            hint="Must belong to a verified domain.",
            min_length=3,
        ),
    ]
    from_name: Annotated[str | None, config_field("From Name", None, group="defaults", placeholder="My App")]
    webhook_signing_secret: Annotated[
        str | None,
        config_field("Webhook Signing Secret", None, type="password", group="security", placeholder="whsec_..."),
    ]
    base_url: Annotated[str, config_field("API Base URL", RESEND_API_URL, group="advanced")]


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        flat: list[str] = []
        for item in value:
            flat.extend(_as_list(item))
        return flat
    return [str(value)]


class ResendAdapter(DeliveryAdapter):
    """Send email through the Resend REST API.

    Idempotency keys are sent as the SHA-1 hex ``Idempotency-Key`` header and
    webhooks are authenticated with the Svix signature scheme when a signing
    secret is configured.
    """

    key = "resend"
    config_model = ResendConfig
    metadata = AdapterMetadata(name="Resend", description="Send emails via Resend API.", group="transactional")
    idempotency_format = IdempotencyFormat.SHA1_HEX

    normalizer = EventNormalizer(
        EVENT_MAP,
        keywords=EVENT_KEYWORDS,
        id_paths=("data.email_id",),
        timestamp_paths=("created_at", "data.created_at"),
    )

    def __init__(self, config: Mapping[str, Any] | ResendConfig | None = None, **kwargs: Any):
        super().__init__(config, **kwargs)
        self.verifier = None
        if self.config.webhook_signing_secret:
            try:
                self.verifier = SvixVerifier(self.config.webhook_signing_secret, logger=self.logger)
            except ValueError as exc:
                raise ConfigurationError(f"Invalid webhook signing secret: {exc}") from exc

    def build_classifier(self) -> ErrorClassifier:
        return ErrorClassifier(
            temporary_codes=TEMPORARY_CODES,
            permanent_codes=PERMANENT_CODES,
            rate_limit_codes=("rate_limit_exceeded",),
            idempotency_conflict_codes=("concurrent_idempotent_requests",),
            pause_by_code=QUOTA_PAUSES,
        )

    def _headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        headers.update(extra or {})
        return headers

    def _sender(self) -> str:
        if self.config.from_name:
            return f'"{self.config.from_name}" <{self.config.from_email}>'
        return self.config.from_email

    async def _list_domains(self):
        return await self.request(HttpRequest("GET", f"{self.config.base_url}/domains", headers=self._headers()))

    async def _check_config(self) -> ValidationResult:
        response = await self._list_domains()
        domains = response.data.get("data") if isinstance(response.data, dict) else None
        sender_domain = self.config.from_email.rpartition("@")[2]
        if sender_domain and isinstance(domains, list):
            domain = next((d for d in domains if d.get("name") == sender_domain), None)
            if domain is None:
                return ValidationResult(
                    success=False,
                    message=f'Domain "{sender_domain}" is not registered in your Resend account.',
                )
            if domain.get("status") != "verified":
                return ValidationResult(
                    success=False,
                    message=f'Domain "{sender_domain}" is not verified (status: {domain.get("status")}).',
                )
        return ValidationResult(success=True, message="Successfully connected to Resend. Domain is verified.")

    async def _probe_health(self) -> HealthStatus:
        await self._list_domains()
        return HealthStatus.HEALTHY

    async def build_payload(self, message: Message) -> dict[str, Any]:
        data = message.data
        headers = dict(data.get("headers") or {})
        payload: dict[str, Any] = {
            "from": self._sender(),
            "to": _as_list(message.to),
            "subject": message.subject or "",
            "html": message.body or "",
            "headers": headers,
        }
        if data.get("text"):
            payload["text"] = data["text"]
        if data.get("cc"):
            payload["cc"] = _as_list(data["cc"])
        if data.get("bcc"):
            payload["bcc"] = _as_list(data["bcc"])
        reply_to = self.option(message, "reply_to") or headers.get("Reply-To")
        if reply_to:
            payload["reply_to"] = reply_to
        tags = [
            {"name": t.get("Name") or t.get("name"), "value": t.get("Value") or t.get("value")}
            for t in data.get("tags") or []
            if isinstance(t, Mapping)
        ]
        if tags:
            payload["tags"] = tags

        files = await self.resolver.resolve(message.attachments())
        payload["attachments"] = [
            {
                "filename": f.filename,
                "content": f.as_base64(),
                "content_type": f.content_type,
                **({"content_id": f.cid} if f.cid else {}),
            }
            for f in files
        ]
        return payload

    async def _send(self, message: Message) -> DeliveryResult:
        payload = await self.build_payload(message)
        extra = {}
        token = self.idempotency_token(message)
        if token:
            extra["Idempotency-Key"] = token
        response = await self.request(
            HttpRequest("POST", f"{self.config.base_url}/emails", headers=self._headers(extra), json=payload)
        )
        return self.accepted(response.data.get("id"), response.data)

    async def _webhook(self, payload: Any, headers: Mapping[str, str]) -> WebhookOutcome:
        if not self.verified(self.verifier, payload, headers):
            return None
        event = parse_json_payload(payload)
        if not isinstance(event, Mapping):
            return None
        return self.normalizer.normalize(event.get("type"), event)
