# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Mailchimp Transactional (Mandrill) adapter.

The API key travels in the JSON body of every call. Webhooks arrive as a
form post whose ``mandrill_events`` field is a JSON array; each call may
therefore produce several canonical events.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Annotated, Any

from ..classifier import ErrorClassifier
from ..errors import UnknownError, ValidationError
from ..http import HttpRequest, HttpResponse
from ..models import (
    AdapterMetadata,
    DeliveryResult,
    EventStatus,
    HealthStatus,
    Message,
    ValidationResult,
)
from ..webhooks.normalize import EventNormalizer
from ..webhooks.verify import SortedFieldHmacVerifier, body_fields
from .base import AdapterConfig, DeliveryAdapter, WebhookOutcome, config_field

MANDRILL_API_URL = "https://mandrillapp.com/api/1.0"

PERMANENT_CODES = (
    "ValidationError",
    "Invalid_Key",
    "Invalid_Reject",
    "Unknown_Message",
    "Unknown_Template",
    "Unknown_Subaccount",
    "Unknown_Sender",
    "Unknown_Url",
    "Unknown_TrackingDomain",
    "Unknown_Webhook",
    "Unknown_InboundDomain",
    "Unknown_InboundRoute",
    "Unknown_Export",
    "Invalid_CustomDNS",
    "Invalid_CustomDNSPending",
    "Invalid_Sender",
    "Invalid_Template",
    "Invalid_Tag_Name",
)
TEMPORARY_CODES = ("GeneralError", "ServiceUnavailable", "PaymentRequired")

EVENT_MAP: dict[str, EventStatus | None] = {
    "send": None,
    "deferral": None,
    "hard_bounce": EventStatus.HARD_REJECT,
    "soft_bounce": EventStatus.SOFT_REJECT,
    "delivered": EventStatus.DELIVERED,
    "open": EventStatus.OPENED,
    "click": EventStatus.CLICKED,
    "spam": EventStatus.COMPLAINED,
    "unsub": EventStatus.HARD_REJECT,
    "reject": EventStatus.HARD_REJECT,
}

EVENT_KEYWORDS = (
    ("soft", EventStatus.SOFT_REJECT),
    ("bounce", EventStatus.HARD_REJECT),
    ("reject", EventStatus.HARD_REJECT),
    ("deliver", EventStatus.DELIVERED),
    ("complain", EventStatus.COMPLAINED),
    ("spam", EventStatus.COMPLAINED),
)

PASSTHROUGH_OPTIONS = (
    "global_merge_vars",
    "merge_vars",
    "google_analytics_domains",
    "google_analytics_campaign",
)


class MandrillConfig(AdapterConfig):
    api_key: Annotated[str, config_field("API Key", type="password", group="authentication", min_length=1)]
    from_email: Annotated[
        str,
        config_field("From Email", group="defaults", placeholder="noreply@example.com", min_length=3),
    ]
    from_name: Annotated[str | None, config_field("From Name", None, group="defaults")]
    subaccount: Annotated[
        str | None,
        config_field("Subaccount ID", None, hint="Can be overridden per message via data.subaccount."),
    ]
    webhook_key: Annotated[str | None, config_field("Webhook Authentication Key", None, type="password", group="security")]
    webhook_url: Annotated[
        str | None,
        config_field("Webhook URL", None, group="security", hint="Exact URL registered in Mandrill, used for signatures."),
    ]
    track_opens: Annotated[bool, config_field("Track opens", True, type="boolean", group="tracking")]
    track_clicks: Annotated[bool, config_field("Track clicks", True, type="boolean", group="tracking")]
    auto_text: Annotated[bool, config_field("Generate text part", True, type="boolean", group="tracking")]
    base_url: Annotated[str, config_field("API Base URL", MANDRILL_API_URL, group="advanced")]


def _addresses(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for item in value for v in _addresses(item)]
    return [str(value)]


def utc_send_at(when: datetime) -> str:
    """Format ``when`` as Mandrill's UTC ``send_at``; naive values are taken as UTC."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _tag_name(tag: Any) -> str:
    if isinstance(tag, Mapping):
        return str(tag.get("name") or tag.get("Name") or tag)
    return str(tag)


class MandrillAdapter(DeliveryAdapter):
    """Send email through the Mandrill ``messages/send`` API.

    Rejected or invalid recipients come back with HTTP 200 and are reported as
    permanent failures; the provider id is kept in the error text.
    """

    key = "mandrill"
    config_model = MandrillConfig
    metadata = AdapterMetadata(
        name="Mandrill Email",
        description="Send transactional emails via Mailchimp Mandrill API.",
        group="transactional",
    )

    guess_inline_base64 = True

    normalizer = EventNormalizer(EVENT_MAP, keywords=EVENT_KEYWORDS, id_paths=("msg._id", "_id"), timestamp_paths=("ts",))

    def __init__(self, config: Mapping[str, Any] | MandrillConfig | None = None, **kwargs: Any):
        super().__init__(config, **kwargs)
        self.verifier = None
        if self.config.webhook_key and self.config.webhook_url:
            self.verifier = SortedFieldHmacVerifier(self.config.webhook_url, self.config.webhook_key, logger=self.logger)

    def build_classifier(self) -> ErrorClassifier:
        return ErrorClassifier(temporary_codes=TEMPORARY_CODES, permanent_codes=PERMANENT_CODES)

    async def _call(self, endpoint: str, body: dict[str, Any] | None = None) -> HttpResponse:
        payload = {"key": self.config.api_key, **(body or {})}
        response = await self.request(
            HttpRequest(
                "POST",
                f"{self.config.base_url}{endpoint}",
                headers={"Content-Type": "application/json"},
                json=payload,
            )
        )
        data = response.data
        if isinstance(data, dict) and data.get("status") == "error":
            name = data.get("name") or "Unknown"
            error = UnknownError(
                f"{name}: {data.get('message') or 'An unknown error occurred.'}",
                status_code=response.status,
                code=name,
                details=data,
            )
            error.payload = body
            raise error
        return response

    async def _check_config(self) -> ValidationResult:
        response = await self._call("/users/ping2.json")
        if isinstance(response.data, dict) and response.data.get("PING") == "PONG!":
            return ValidationResult(success=True, message="Successfully connected to Mandrill.")
        return ValidationResult(success=True, message="Connected to Mandrill API.")

    async def _probe_health(self) -> HealthStatus:
        await self._call("/users/ping.json")
        return HealthStatus.HEALTHY

    async def build_payload(self, message: Message) -> dict[str, Any]:
        data = message.data
        mail: dict[str, Any] = {
            "html": message.body or "",
            "subject": message.subject or "",
            "from_email": self.config.from_email,
            "from_name": self.config.from_name or "",
            "to": [{"email": addr, "type": "to"} for addr in _addresses(message.to)],
            "headers": {},
            "important": False,
            "track_opens": bool(self.option(message, "track_opens", self.config.track_opens)),
            "track_clicks": bool(self.option(message, "track_clicks", self.config.track_clicks)),
            "auto_text": bool(self.option(message, "auto_text", self.config.auto_text)),
            "auto_html": False,
            "inline_css": False,
            "url_strip_qs": False,
            "preserve_recipients": False,
            "view_content_link": False,
        }
        for kind in ("cc", "bcc"):
            mail["to"].extend({"email": addr, "type": kind} for addr in _addresses(data.get(kind)))

        reply_to = self.option(message, "reply_to")
        if reply_to:
            mail["headers"]["Reply-To"] = reply_to
        if isinstance(data.get("headers"), Mapping):
            mail["headers"].update(data["headers"])
        if data.get("text"):
            mail["text"] = data["text"]
            mail["auto_text"] = False

        subaccount = data.get("subaccount") or self.config.subaccount
        if subaccount:
            mail["subaccount"] = subaccount
        if isinstance(data.get("tags"), list):
            mail["tags"] = [_tag_name(t) for t in data["tags"]]
        if isinstance(data.get("metadata"), Mapping):
            mail["metadata"] = dict(data["metadata"])
        for option in PASSTHROUGH_OPTIONS:
            if data.get(option):
                mail[option] = data[option]

        files = await self.resolver.resolve(message.attachments())
        attachments = [{"type": f.content_type, "name": f.filename, "content": f.as_base64()} for f in files if not f.cid]
        images = [{"type": f.content_type, "name": f.cid, "content": f.as_base64()} for f in files if f.cid]
        if attachments:
            mail["attachments"] = attachments
        if images:
            mail["images"] = images

        payload: dict[str, Any] = {"message": mail, "async": False}
        if data.get("ip_pool"):
            payload["ip_pool"] = data["ip_pool"]
        send_at = data.get("send_at") or (utc_send_at(message.scheduled_at) if message.scheduled_at else None)
        if send_at:
            payload["send_at"] = send_at
        return payload

    async def _send(self, message: Message) -> DeliveryResult:
        payload = await self.build_payload(message)
        response = await self._call("/messages/send.json", payload)
        outcome = response.data[0] if isinstance(response.data, list) and response.data else response.data
        if not isinstance(outcome, dict):
            raise UnknownError("Unexpected Mandrill response", status_code=response.status, details=response.data)
        status = outcome.get("status")
        if status in ("rejected", "invalid"):
            raise ValidationError(
                f"Message {status}: {outcome.get('reject_reason') or 'Unknown reason'} (id {outcome.get('_id')})",
                status_code=response.status,
                code=f"MESSAGE_{str(status).upper()}",
                details=outcome,
            )
        others = response.data[1:] if isinstance(response.data, list) else []
        refused = [r for r in others if isinstance(r, Mapping) and r.get("status") in ("rejected", "invalid")]
        if refused:
            self.logger.warning(
                "Mandrill refused %d of %d recipients: %s",
                len(refused),
                len(response.data),
                ", ".join(f"{r.get('email')} ({r.get('reject_reason') or r.get('status')})" for r in refused),
            )
            outcome = {**outcome, "refused_recipients": refused}
        return self.accepted(outcome.get("_id"), outcome)

    async def _webhook(self, payload: Any, headers: Mapping[str, str]) -> WebhookOutcome:
        fields = body_fields(payload)
        raw_events = fields.get("mandrill_events")
        if not raw_events:
            self.logger.warning("Missing mandrill_events in webhook body")
            return None
        if not self.verified(self.verifier, fields, headers):
            return None
        try:
            events = json.loads(raw_events)
        except ValueError as exc:
            self.logger.warning("Failed to parse mandrill_events: %s", exc)
            return None
        if not isinstance(events, list):
            return None
        results = []
        for index, raw in enumerate(events):
            event = self.normalizer.normalize(raw.get("event"), raw) if isinstance(raw, Mapping) else None
            if event is None:
                kind = raw.get("event") if isinstance(raw, Mapping) else type(raw).__name__
                self.logger.warning("Skipping Mandrill webhook event #%d (%s): no status or message id", index, kind)
                continue
            results.append(event)
        return results or None
