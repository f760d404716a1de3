# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Provider adapters presenting one delivery contract to an orchestrator.

This package provides:

- Adapters for Resend, Mandrill, OneSignal, Amazon SES, SMTP, Telegram and
  arbitrary REST endpoints, selected through a registry
- A resilient HTTP request engine with retry, backoff and timeouts
- Per-provider classification of failures into temporary and permanent
- Deterministic idempotency tokens for each provider's key format
- Webhook signature verification and a canonical delivery-event taxonomy
- An async client for submitting messages to a delivery API

Example:
    Sending through a configured adapter::

        from delivery_adapters import Message, get_adapter

        adapter = get_adapter("resend", {"api_key": "re_...", "from_email": "no-reply@example.com"})
        result = await adapter.send_mail(Message(to="user@example.com", subject="Hi", body="<p>Hello</p>"))
        if not result.success and result.is_temporary:
            ...  # reschedule after result.pause_duration

Authors:
    Softwell S.r.l.
"""

__version__ = "0.1.0"

from .adapters import ADAPTERS, DeliveryAdapter, get_adapter
from .client import DeliveryClient
from .errors import DeliveryError
from .models import (
    DeliveryResult,
    EventStatus,
    HealthStatus,
    Message,
    ValidationResult,
    WebhookEvent,
)

__all__ = [
    "ADAPTERS",
    "DeliveryAdapter",
    "DeliveryClient",
    "DeliveryError",
    "DeliveryResult",
    "EventStatus",
    "HealthStatus",
    "Message",
    "ValidationResult",
    "WebhookEvent",
    "__version__",
    "get_adapter",
]
