# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Unit tests for the generic REST adapter."""

from __future__ import annotations

import pytest
from aioresponses import aioresponses
from yarl import URL

from delivery_adapters.adapters.generic_rest import GenericRestAdapter, render_template, response_id
from delivery_adapters.errors import ConfigurationError
from delivery_adapters.idempotency import IdempotencyFormat, derive_idempotency_key
from delivery_adapters.models import HealthStatus, Message

ENDPOINT = "https://hooks.example.com/v1/send"


def last_call(m: aioresponses, method: str = "POST"):
    return m.requests[(method, URL(ENDPOINT))][-1]


@pytest.fixture
def config():
    return {
        "base_url": ENDPOINT,
        "custom_headers": [{"key": "Authorization", "value": "Bearer t"}],
        "max_retries": 0,
    }


class TestConfig:
    def test_success_status_from_string(self, config):
        adapter = GenericRestAdapter({**config, "success_status": "200, 204"})
        assert adapter.success_statuses == frozenset({200, 204})

    def test_success_status_default(self, config):
        assert GenericRestAdapter(config).success_statuses == frozenset({200, 201, 202})

    def test_method_normalized(self, config):
        assert GenericRestAdapter({**config, "method": "put"}).config.method == "PUT"

    def test_unsupported_method(self, config):
        with pytest.raises(ConfigurationError):
            GenericRestAdapter({**config, "method": "DELETE"})

    def test_custom_headers_as_json(self, config):
        adapter = GenericRestAdapter({**config, "custom_headers": '{"X-Token": "abc"}'})
        assert adapter.custom_headers == {"X-Token": "abc"}


class TestSend:
    async def test_default_payload(self, config):
        adapter = GenericRestAdapter(config)
        message = Message(to="user@example.com", subject="Hi", body="Hello", data={"k": 1})
        with aioresponses() as m:
            m.post(ENDPOINT, status=201, payload={"messageId": "ext-9"})
            result = await adapter.send_mail(message)

            call = last_call(m)

        assert result.success
        assert result.id == "ext-9"
        assert call.kwargs["json"] == {"to": "user@example.com", "subject": "Hi", "content": "Hello", "data": {"k": 1}}
        assert call.kwargs["headers"]["Authorization"] == "Bearer t"
        assert call.kwargs["headers"]["Content-Type"] == "application/json"

    async def test_template(self, config):
        template = '{"recipient": "{{to}}", "text": "{{body}}", "priority": {{priority}}, "sender": "{{from_name}}"}'
        adapter = GenericRestAdapter({**config, "payload_template": template, "from_name": "Ops"})
        message = Message(to="user@example.com", body='He said "hi"\nbye', data={"priority": 2})
        with aioresponses() as m:
            m.post(ENDPOINT, status=200, payload={"id": "x"})
            await adapter.send_mail(message)

            body = last_call(m).kwargs["json"]

        assert body == {"recipient": "user@example.com", "text": 'He said "hi"\nbye', "priority": 2, "sender": "Ops"}

    async def test_non_json_template_sent_verbatim(self, config):
        adapter = GenericRestAdapter({**config, "payload_template": "to={{to}}&msg={{body}}"})
        with aioresponses() as m:
            m.post(ENDPOINT, status=200, payload={"id": "x"})
            await adapter.send_mail(Message(to="42", body="hi"))

            call = last_call(m)

        assert call.kwargs["data"] == "to=42&msg=hi"

    async def test_idempotency_headers(self, config):
        adapter = GenericRestAdapter(config)
        message = Message(to="u@example.com", idempotency_key="order-42", data={"headers": {"x-request-id": "mine"}})
        with aioresponses() as m:
            m.post(ENDPOINT, status=200, payload={"id": "x"})
            await adapter.send_mail(message)

            headers = last_call(m).kwargs["headers"]

        token = derive_idempotency_key("order-42", IdempotencyFormat.HEADER)
        assert headers["Idempotency-Key"] == token
        assert headers["X-Idempotency-Key"] == token
        assert headers["x-request-id"] == "mine"
        assert "X-Request-Id" not in headers

    async def test_generated_id(self, config):
        adapter = GenericRestAdapter(config)
        with aioresponses() as m:
            m.post(ENDPOINT, status=202, body="")
            result = await adapter.send_mail(Message(to="u@example.com"))

        assert result.success
        assert result.id.startswith("rest-")

    async def test_status_outside_success_list(self, config):
        adapter = GenericRestAdapter({**config, "success_status": "200"})
        with aioresponses() as m:
            m.post(ENDPOINT, status=201, payload={"id": "x"})
            result = await adapter.send_mail(Message(to="u@example.com"))

        assert not result.success

    async def test_client_error_permanent(self, config):
        adapter = GenericRestAdapter(config)
        with aioresponses() as m:
            m.post(ENDPOINT, status=400, payload={"error": "bad recipient"})
            result = await adapter.send_mail(Message(to="u@example.com"))

        assert result.is_temporary is False
        assert result.error == "bad recipient"


class TestProbes:
    async def test_health_uses_configured_method(self, config):
        adapter = GenericRestAdapter({**config, "method": "GET"})
        with aioresponses() as m:
            m.get(ENDPOINT, status=200, body="ok")
            assert await adapter.health_check() is HealthStatus.HEALTHY

            assert "json" not in last_call(m, "GET").kwargs

    async def test_validate_reports_status(self, config):
        adapter = GenericRestAdapter(config)
        with aioresponses() as m:
            m.post(ENDPOINT, status=200, payload={})
            result = await adapter.validate_config()

        assert result.message == "Successfully reached the endpoint (Status 200)."


class TestHelpers:
    def test_unknown_placeholder_kept(self):
        assert render_template("{{missing}} {{to}}", {"to": "a"}) == "{{missing}} a"

    def test_structured_values(self):
        assert render_template('{"d": {{data}}}', {"data": {"a": [1, True]}}) == {"d": {"a": [1, True]}}

    def test_response_id(self):
        assert response_id({"id": 5}) == "5"
        assert response_id({"result": {"id": "r"}}) == "r"
        assert response_id({"ok": True}) is None
        assert response_id("text") is None
