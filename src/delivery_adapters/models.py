# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Pydantic models for the delivery adapter contract.

This module defines the data exchanged between the orchestrator and the
adapters: the inbound message, the delivery outcome, health and webhook
events, plus the declarative metadata each adapter publishes.

Models:
    - Message: Canonical message consumed by ``send_mail``
    - Attachment: Inline or remote attachment carried in ``Message.data``
    - DeliveryResult: Outcome of a send, success or classified failure
    - HealthStatus: Reachability probe result
    - EventStatus / WebhookEvent: Canonical delivery status taxonomy
    - ValidationResult: Outcome of ``validate_config``
    - AdapterMetadata / ConfigField: Registry and schema metadata
    - RateLimitInfo: Rate-limit snapshot parsed from response headers
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationError as DeliveryValidationError


class HealthStatus(str, Enum):
    """Reachability of a provider as seen by an adapter."""

    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    UNHEALTHY = "UNHEALTHY"


class EventStatus(str, Enum):
    """Canonical delivery statuses reported to the orchestrator."""

    ACCEPTED = "ACCEPTED"
    DELIVERED = "DELIVERED"
    OPENED = "OPENED"
    CLICKED = "CLICKED"
    SOFT_REJECT = "SOFT-REJECT"
    HARD_REJECT = "HARD-REJECT"
    COMPLAINED = "COMPLAINED"
    UNSUBSCRIBED = "UNSUBSCRIBED"


class Message(BaseModel):
    """Canonical message handed to an adapter.

    Attributes:
        to: Recipient identifier (email, chat id, device token...).
        subject: Optional subject or title.
        body: Optional HTML, text or template content.
        data: Adapter options and template variables.
        template_id: Optional stored template identifier.
        scheduled_at: Optional scheduled delivery instant.
        adapter_id: Optional routing override.
        idempotency_key: Opaque caller key used to deduplicate retries.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    to: Annotated[str, Field(min_length=1, description="Recipient identifier")]
    subject: Annotated[str | None, Field(default=None)]
    body: Annotated[str | None, Field(default=None)]
    data: Annotated[dict[str, Any], Field(default_factory=dict)]
    template_id: Annotated[str | None, Field(default=None)]
    scheduled_at: Annotated[datetime | None, Field(default=None)]
    adapter_id: Annotated[str | None, Field(default=None)]
    idempotency_key: Annotated[str | None, Field(default=None)]

    @field_validator("to")
    @classmethod
    def to_not_blank(cls, v: str) -> str:
        """Reject recipients made only of whitespace."""
        if not v.strip():
            raise ValueError("to must be a non-empty string")
        return v.strip()

    def attachments(self) -> list[Attachment]:
        """Parse ``data["attachments"]`` into :class:`Attachment` models."""
        raw = self.data.get("attachments") or []
        if not isinstance(raw, list):
            raise DeliveryValidationError("data.attachments must be a list")
        try:
            return [item if isinstance(item, Attachment) else Attachment.model_validate(item) for item in raw]
        except PydanticValidationError as exc:
            raise DeliveryValidationError(f"Invalid attachment: {exc.errors()[0].get('msg')}") from exc


class Attachment(BaseModel):
    """Attachment supplied inline (``content``) or by remote reference.

    A remote reference may be given as ``path``, ``href`` or ``url``. A ``cid``
    marks the attachment as an inline image referenced from the HTML body.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    filename: Annotated[
        str | None,
        Field(default=None, validation_alias=AliasChoices("filename", "name")),
    ]
    content: Annotated[str | bytes | None, Field(default=None)]
    encoding: Annotated[str | None, Field(default=None)]
    path: Annotated[str | None, Field(default=None)]
    href: Annotated[str | None, Field(default=None)]
    url: Annotated[str | None, Field(default=None)]
    content_type: Annotated[
        str | None,
        Field(default=None, validation_alias=AliasChoices("content_type", "contentType", "type")),
    ]
    cid: Annotated[
        str | None,
        Field(default=None, validation_alias=AliasChoices("cid", "content_id", "contentId")),
    ]

    @property
    def source(self) -> str | None:
        """The remote reference, whichever field carried it."""
        return self.path or self.href or self.url

    @property
    def is_inline(self) -> bool:
        return bool(self.cid)


class DeliveryResult(BaseModel):
    """Outcome of a single ``send_mail`` call.

    ``success`` is true if and only if ``id`` is present and ``error`` is absent.
    """

    success: bool
    id: str | None = None
    response: Any = None
    error: str | None = None
    error_code: str | None = None
    is_temporary: bool = False
    pause_duration: int | None = None
    is_local_error: bool = False

    @model_validator(mode="after")
    def check_outcome_consistency(self) -> DeliveryResult:
        if self.success:
            if not self.id or self.error is not None:
                raise ValueError("a successful result needs an id and no error")
        else:
            if self.id is not None or not self.error:
                raise ValueError("a failed result needs an error and no id")
        return self

    @classmethod
    def ok(cls, id: str, response: Any = None) -> DeliveryResult:
        return cls(success=True, id=str(id), response=response)

    @classmethod
    def failed(
        cls,
        error: str,
        *,
        is_temporary: bool,
        pause_duration: int | None = None,
        is_local_error: bool = False,
        error_code: str | None = None,
        response: Any = None,
    ) -> DeliveryResult:
        return cls(
            success=False,
            error=error,
            is_temporary=is_temporary,
            pause_duration=pause_duration,
            is_local_error=is_local_error,
            error_code=error_code,
            response=response,
        )


class WebhookEvent(BaseModel):
    """Canonical delivery event produced from a provider callback."""

    status: EventStatus
    message_id: Annotated[str, Field(min_length=1)]
    timestamp: datetime | None = None
    event: str | None = None


class ValidationResult(BaseModel):
    """Result of a lightweight connectivity/credentials check."""

    success: bool
    message: str
    can_validate: bool = True


class AdapterMetadata(BaseModel):
    """Display metadata published by each adapter."""

    name: str
    description: str
    group: str


class ConfigField(BaseModel):
    """One entry of an adapter's declarative configuration schema."""

    name: str
    label: str
    type: str = "text"
    required: bool = False
    placeholder: str | None = None
    hint: str | None = None
    group: str = "settings"
    default: Any = None
    options: list[str] | None = None


class RateLimitInfo(BaseModel):
    """Rate-limit snapshot parsed from ``X-RateLimit-*`` headers."""

    limit: int
    remaining: int
    reset: int
