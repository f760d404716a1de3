# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Unit tests for the delivery contract models."""

from __future__ import annotations

import pydantic
import pytest

from delivery_adapters.errors import ValidationError as DeliveryValidationError
from delivery_adapters.models import (
    DeliveryResult,
    EventStatus,
    Message,
    WebhookEvent,
)


class TestMessage:
    """Tests for the canonical Message model."""

    def test_minimal(self):
        msg = Message(to="user@example.com")
        assert msg.subject is None
        assert msg.data == {}

    def test_camel_case_aliases(self):
        """camelCase keys are accepted alongside snake_case."""
        msg = Message.model_validate(
            {"to": "u@example.com", "idempotencyKey": "k-1", "templateId": "t-1", "adapterId": "a"}
        )
        assert msg.idempotency_key == "k-1"
        assert msg.template_id == "t-1"
        assert msg.adapter_id == "a"

    def test_to_is_stripped(self):
        assert Message(to="  u@example.com ").to == "u@example.com"

    @pytest.mark.parametrize("to", ["", "   "])
    def test_blank_recipient_rejected(self, to):
        with pytest.raises(pydantic.ValidationError):
            Message(to=to)

    def test_attachments_parsed(self):
        """Attachment aliases (name, type, contentId) are recognized."""
        msg = Message(
            to="u@example.com",
            data={
                "attachments": [
                    {"name": "a.txt", "content": "aGVsbG8=", "type": "text/plain"},
                    {"filename": "logo.png", "href": "https://cdn.example.com/logo.png", "contentId": "logo"},
                ]
            },
        )
        first, second = msg.attachments()

        assert first.filename == "a.txt"
        assert first.content_type == "text/plain"
        assert second.source == "https://cdn.example.com/logo.png"
        assert second.is_inline

    def test_attachments_not_a_list(self):
        msg = Message(to="u@example.com", data={"attachments": "nope"})
        with pytest.raises(DeliveryValidationError):
            msg.attachments()

    def test_no_attachments(self):
        assert Message(to="u@example.com").attachments() == []


class TestDeliveryResult:
    """Tests for the success/id/error consistency rule."""

    def test_ok(self):
        result = DeliveryResult.ok("abc", response={"x": 1})
        assert result.success
        assert result.id == "abc"
        assert result.error is None

    def test_ok_coerces_id(self):
        assert DeliveryResult.ok(42).id == "42"

    def test_failed(self):
        result = DeliveryResult.failed("boom", is_temporary=True, pause_duration=60, error_code="X")
        assert not result.success
        assert result.id is None
        assert result.pause_duration == 60

    def test_success_without_id_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            DeliveryResult(success=True)

    def test_success_with_error_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            DeliveryResult(success=True, id="a", error="b")

    def test_failure_with_id_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            DeliveryResult(success=False, id="a", error="b")

    def test_failure_without_error_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            DeliveryResult(success=False)


class TestWebhookEvent:
    def test_status_values(self):
        assert EventStatus.SOFT_REJECT.value == "SOFT-REJECT"
        assert EventStatus.HARD_REJECT.value == "HARD-REJECT"

    def test_empty_message_id_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            WebhookEvent(status=EventStatus.DELIVERED, message_id="")
