# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""OneSignal email adapter (https://documentation.onesignal.com/reference)."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Annotated, Any

from ..classifier import ErrorClassifier
from ..errors import ValidationError
from ..http import HttpRequest
from ..idempotency import IdempotencyFormat
from ..markup import plain_text_to_html
from ..models import (
    AdapterMetadata,
    DeliveryResult,
    EventStatus,
    HealthStatus,
    Message,
    ValidationResult,
)
from ..webhooks.normalize import EventNormalizer
from ..webhooks.verify import SharedHeaderVerifier
from .base import AdapterConfig, DeliveryAdapter, WebhookOutcome, config_field, parse_json_payload

ONESIGNAL_API_URL = "https://onesignal.com/api/v1"

# keys of message.data that never reach the notification payload
RESERVED_DATA_KEYS = frozenset({"html", "attachments", "_useProviderTemplate", "_templateId"})

EVENT_MAP: dict[str, EventStatus | None] = {
    "sent": EventStatus.ACCEPTED,
    "received": EventStatus.ACCEPTED,
    "delivered": EventStatus.ACCEPTED,
    "opened": EventStatus.OPENED,
    "clicked": EventStatus.CLICKED,
    "bounced": EventStatus.HARD_REJECT,
    "hardbounced": EventStatus.HARD_REJECT,
    "supressed": EventStatus.HARD_REJECT,
    "suppressed": EventStatus.HARD_REJECT,
    "failed": EventStatus.SOFT_REJECT,
    "errored": EventStatus.SOFT_REJECT,
    "spam_report": EventStatus.COMPLAINED,
    "reported_as_spam": EventStatus.COMPLAINED,
    "unsubscribed": EventStatus.HARD_REJECT,
}
EVENT_KEYWORDS = (
    ("opened", EventStatus.OPENED),
    ("clicked", EventStatus.CLICKED),
    ("sent", EventStatus.ACCEPTED),
    ("delivered", EventStatus.ACCEPTED),
    ("received", EventStatus.ACCEPTED),
    ("unsubscribed", EventStatus.HARD_REJECT),
    ("spam", EventStatus.COMPLAINED),
    ("boun", EventStatus.HARD_REJECT),
    ("fail", EventStatus.SOFT_REJECT),
)


class OneSignalConfig(AdapterConfig):
    app_id: Annotated[str, config_field("App ID", group="main", placeholder="00000000-0000-0000-0000-000000000000", min_length=1)]
    api_key: Annotated[str, config_field("REST API Key", type="password", group="main", min_length=1)]
    from_email: Annotated[str, config_field("From Email", group="defaults", placeholder="sender@domain.com", min_length=3)]
    from_name: Annotated[str | None, config_field("From Name", None, group="defaults")]
    webhook_header_key: Annotated[
        str | None,
        config_field("Webhook Header Key", None, group="security", placeholder="X-Webhook-Token"),
    ]
    webhook_header_value: Annotated[str | None, config_field("Webhook Header Value", None, type="password", group="security")]
    base_url: Annotated[str, config_field("API Base URL", ONESIGNAL_API_URL, group="advanced")]


class OneSignalAdapter(DeliveryAdapter):
    key = "onesignal"
    config_model = OneSignalConfig
    metadata = AdapterMetadata(
        name="OneSignal",
        description="Send transactional and marketing emails via OneSignal.",
        group="marketing",
    )
    idempotency_format = IdempotencyFormat.UUID

    normalizer = EventNormalizer(
        EVENT_MAP,
        keywords=EVENT_KEYWORDS,
        id_paths=("event.external_id", "message.id"),
        timestamp_paths=("event.timestamp", "event.created_at"),
    )

    def __init__(self, config: Mapping[str, Any] | OneSignalConfig | None = None, **kwargs: Any):
        super().__init__(config, **kwargs)
        self.verifier = None
        if self.config.webhook_header_key and self.config.webhook_header_value:
            self.verifier = SharedHeaderVerifier(
                self.config.webhook_header_key, self.config.webhook_header_value, logger=self.logger
            )

    def build_classifier(self) -> ErrorClassifier:
        return ErrorClassifier(default_pause=60)

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json; charset=utf-8",
            "Authorization": f"Basic {self.config.api_key}",
        }

    async def _get_app(self):
        return await self.request(
            HttpRequest("GET", f"{self.config.base_url}/apps/{self.config.app_id}", headers=self._headers())
        )

    async def _check_config(self) -> ValidationResult:
        await self._get_app()
        return ValidationResult(success=True, message="Successfully connected to OneSignal.")

    async def _probe_health(self) -> HealthStatus:
        await self._get_app()
        return HealthStatus.HEALTHY

    def build_payload(self, message: Message) -> dict[str, Any]:
        data = message.data
        payload: dict[str, Any] = {
            "app_id": self.config.app_id,
            "include_email_tokens": [message.to],
            "email_from_address": self.config.from_email,
        }
        if self.config.from_name:
            payload["email_from_name"] = self.config.from_name
        token = self.idempotency_token(message)
        if token:
            payload["idempotency_key"] = token

        template_id = data.get("_templateId") or message.template_id
        if data.get("_useProviderTemplate") and template_id:
            payload["template_id"] = template_id
        else:
            payload["email_subject"] = message.subject or ""
            body = message.body or ""
            if body and not body.strip().startswith("<"):
                body = plain_text_to_html(body)
            payload["email_body"] = body
        payload.update({k: v for k, v in data.items() if k not in RESERVED_DATA_KEYS})
        return payload

    async def _send(self, message: Message) -> DeliveryResult:
        payload = self.build_payload(message)
        response = await self.request(
            HttpRequest("POST", f"{self.config.base_url}/notifications", headers=self._headers(), json=payload)
        )
        data = response.data if isinstance(response.data, dict) else {}
        if data.get("errors") or not data.get("id"):
            errors = data.get("errors")
            detail = ", ".join(map(str, errors)) if isinstance(errors, list) else json.dumps(errors)
            raise ValidationError(
                f"OneSignal API Error: {detail if errors else 'notification was not created'}",
                status_code=response.status,
                code="NOTIFICATION_NOT_CREATED",
                details=data,
            )
        return self.accepted(data["id"], data)

    async def _webhook(self, payload: Any, headers: Mapping[str, str]) -> WebhookOutcome:
        if not self.verified(self.verifier, payload, headers):
            return None
        body = parse_json_payload(payload)
        if not isinstance(body, Mapping):
            return None
        event = body.get("event") if isinstance(body.get("event"), Mapping) else {}
        return self.normalizer.normalize(event.get("kind"), body)
