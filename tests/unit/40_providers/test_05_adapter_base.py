# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Unit tests for behavior shared by every adapter."""

from __future__ import annotations

import pytest

from delivery_adapters.adapters.base import (
    AdapterConfig,
    DeliveryAdapter,
    config_field,
    parse_custom_headers,
    parse_json_payload,
)
from delivery_adapters.adapters.resend import ResendAdapter
from delivery_adapters.errors import ConfigurationError, ServerError
from delivery_adapters.models import (
    AdapterMetadata,
    DeliveryResult,
    HealthStatus,
    Message,
    ValidationResult,
)
from delivery_adapters.prometheus import AdapterMetrics


class DummyConfig(AdapterConfig):
    token: str = config_field("Token", type="password", group="authentication", min_length=1)
    region: str = config_field("Region", "eu", type="select", options=["eu", "us"])


class DummyAdapter(DeliveryAdapter):
    """Adapter whose hooks are driven by the test."""

    key = "dummy"
    config_model = DummyConfig
    metadata = AdapterMetadata(name="Dummy", description="Test adapter", group="test")

    def __init__(self, config=None, *, outcome=None, **kwargs):
        super().__init__(config, **kwargs)
        self.outcome = outcome

    async def _send(self, message: Message) -> DeliveryResult:
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.accepted(self.outcome)

    async def _probe_health(self) -> HealthStatus:
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return HealthStatus.HEALTHY

    async def _check_config(self) -> ValidationResult:
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return ValidationResult(success=True, message="ok")


class TestConfiguration:
    """Tests for eager config validation and the schema."""

    def test_missing_required_field(self):
        with pytest.raises(ConfigurationError, match="token"):
            DummyAdapter({})

    def test_shared_defaults(self):
        adapter = DummyAdapter({"token": "t"})
        assert adapter.config.max_retries == 3
        assert adapter.config.timeout == 30.0
        assert adapter.engine.policy.max_retries == 3

    def test_camel_case_keys(self):
        adapter = ResendAdapter({"apiKey": "re_x", "fromEmail": "a@example.com", "maxRetries": 1})
        assert adapter.config.api_key == "re_x"
        assert adapter.config.max_retries == 1

    def test_out_of_range_retries(self):
        with pytest.raises(ConfigurationError):
            DummyAdapter({"token": "t", "max_retries": 99})

    def test_unknown_keys_ignored(self):
        assert DummyAdapter({"token": "t", "legacy": 1}).config.token == "t"

    def test_schema(self):
        fields = {f.name: f for f in DummyAdapter.get_config_schema()}

        assert fields["token"].required is True
        assert fields["token"].type == "password"
        assert fields["token"].group == "authentication"
        assert fields["region"].options == ["eu", "us"]
        assert fields["region"].default == "eu"
        assert fields["max_retries"].group == "advanced"
        assert fields["max_retries"].required is False


class TestSendMail:
    """send_mail never raises for delivery failures."""

    async def test_success(self):
        metrics = AdapterMetrics()
        result = await DummyAdapter({"token": "t"}, outcome="id-1", metrics=metrics).send_mail(
            {"to": "u@example.com"}
        )

        assert result.success
        assert result.id == "id-1"
        assert metrics.registry.get_sample_value("dla_sent_total", {"adapter": "dummy"}) == 1.0

    async def test_invalid_message(self):
        result = await DummyAdapter({"token": "t"}, outcome="id-1").send_mail({"to": "  "})

        assert not result.success
        assert result.is_local_error
        assert result.is_temporary is False
        assert result.error_code == "VALIDATION_ERROR"

    async def test_classified_error(self):
        metrics = AdapterMetrics()
        adapter = DummyAdapter({"token": "t"}, outcome=ServerError("down", status_code=503), metrics=metrics)
        result = await adapter.send_mail(Message(to="u@example.com"))

        assert not result.success
        assert result.is_temporary is True
        assert metrics.registry.get_sample_value(
            "dla_errors_total", {"adapter": "dummy", "kind": "temporary"}
        ) == 1.0

    async def test_unexpected_exception(self):
        adapter = DummyAdapter({"token": "t"}, outcome=RuntimeError("bug"))
        result = await adapter.send_mail(Message(to="u@example.com"))

        assert not result.success
        assert result.is_temporary is True
        assert result.error_code == "UNKNOWN_ERROR"

    async def test_missing_provider_id(self):
        adapter = DummyAdapter({"token": "t"}, outcome=None)
        result = await adapter.send_mail(Message(to="u@example.com"))

        assert not result.success
        assert result.id is None
        assert result.error_code == "UNKNOWN_ERROR"


class TestProbes:
    async def test_health_error_is_unhealthy(self):
        adapter = DummyAdapter({"token": "t"}, outcome=ServerError("down", status_code=503))
        assert await adapter.health_check() is HealthStatus.UNHEALTHY

    async def test_health_unexpected_is_unhealthy(self):
        adapter = DummyAdapter({"token": "t"}, outcome=RuntimeError("bug"))
        assert await adapter.health_check() is HealthStatus.UNHEALTHY

    async def test_validate_failure(self):
        adapter = DummyAdapter({"token": "t"}, outcome=ServerError("down", status_code=503))
        result = await adapter.validate_config()
        assert result.success is False
        assert result.message == "down"

    async def test_default_webhook(self):
        assert await DummyAdapter({"token": "t"}).webhook({"x": 1}) is None


class TestHelpers:
    def test_option_snake_and_camel(self):
        msg = Message(to="u@example.com", data={"replyTo": "r@example.com", "track_opens": False})
        assert DeliveryAdapter.option(msg, "reply_to") == "r@example.com"
        assert DeliveryAdapter.option(msg, "track_opens", True) is False
        assert DeliveryAdapter.option(msg, "missing", "d") == "d"

    def test_idempotency_token_absent(self):
        adapter = DummyAdapter({"token": "t"})
        assert adapter.idempotency_token(Message(to="u@example.com", idempotency_key="k")) is None

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, {}),
            ([{"key": "X-A", "value": "1"}, {"key": "", "value": "2"}], {"X-A": "1"}),
            ({"X-B": 2}, {"X-B": "2"}),
            ('{"X-C": "3"}', {"X-C": "3"}),
            ("not json", {}),
        ],
    )
    def test_parse_custom_headers(self, value, expected):
        assert parse_custom_headers(value) == expected

    def test_parse_json_payload(self):
        assert parse_json_payload(b'{"a": 1}') == {"a": 1}
        assert parse_json_payload({"a": 1}) == {"a": 1}
