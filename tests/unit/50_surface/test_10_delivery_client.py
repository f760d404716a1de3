# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Unit tests for DeliveryClient."""

from __future__ import annotations

import pytest
from aioresponses import aioresponses
from yarl import URL

from delivery_adapters.client import CLIENT_SDK, MAX_BATCH_SIZE, DeliveryClient
from delivery_adapters.errors import ConfigurationError, RateLimitError, ServerError, ValidationError
from delivery_adapters.models import Message
from delivery_adapters.retry import RetryPolicy

BASE_URL = "https://api.example.com"
SEND_URL = f"{BASE_URL}/v1/send"
BATCH_URL = f"{BASE_URL}/v1/send-batch"

RATE_HEADERS = {"X-RateLimit-Limit": "100", "X-RateLimit-Remaining": "5", "X-RateLimit-Reset": "1700000000"}


def posted(m: aioresponses, url: str = SEND_URL, index: int = 0):
    return m.requests[("POST", URL(url))][index]


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return DeliveryClient(
        BASE_URL + "/",
        workspace_id=42,
        api_key="secret-key",
        retry=RetryPolicy(max_retries=2),
        sleep=fake_sleep,
    )


class TestConstruction:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"base_url": "", "workspace_id": "1", "api_key": "k"},
            {"base_url": BASE_URL, "workspace_id": "", "api_key": "k"},
            {"base_url": BASE_URL, "workspace_id": "1", "api_key": ""},
        ],
    )
    def test_missing_argument(self, kwargs):
        with pytest.raises(ConfigurationError):
            DeliveryClient(**kwargs)

    def test_config_hides_key(self, client):
        config = client.get_config()

        assert config["base_url"] == BASE_URL
        assert config["workspace_id"] == "42"
        assert config["retry"]["max_retries"] == 2
        assert "secret-key" not in repr(config)
        assert "secret-key" not in repr(client)

    def test_configure_chains(self, client):
        assert client.configure(timeout=5, retry={"max_retries": 0}) is client
        assert client.timeout == 5
        assert client.get_config()["retry"]["max_retries"] == 0


class TestSend:
    async def test_send(self, client):
        with aioresponses() as m:
            m.post(SEND_URL, status=200, payload={"id": "m1", "status": "queued"}, headers=RATE_HEADERS)
            data = await client.send({"to": "user@example.com", "subject": "Hi", "body": "<p>Hello</p>"})

            call = posted(m)

        assert data == {"id": "m1", "status": "queued"}
        headers = call.kwargs["headers"]
        assert headers["X-Workspace-ID"] == "42"
        assert headers["X-API-Key"] == "secret-key"
        assert headers["X-Client-SDK"] == CLIENT_SDK
        assert call.kwargs["json"]["to"] == "user@example.com"

        info = client.rate_limit_info()
        assert (info.limit, info.remaining) == (100, 5)
        assert client.is_near_rate_limit()

    async def test_send_message_model(self, client):
        message = Message(to="user@example.com", idempotency_key="order-1")
        with aioresponses() as m:
            m.post(SEND_URL, status=200, payload={"id": "m1"})
            await client.send(message)

            body = posted(m).kwargs["json"]

        assert body["idempotencyKey"] == "order-1"
        assert "subject" not in body
        assert not client.is_near_rate_limit()

    async def test_missing_recipient(self, client):
        with aioresponses() as m:
            with pytest.raises(ValidationError, match='Missing or invalid "to" field'):
                await client.send({"subject": "Hi"})
            assert not m.requests

    async def test_invalid_schedule(self, client):
        with pytest.raises(ValidationError, match="scheduledAt"):
            await client.send({"to": "user@example.com", "scheduledAt": "tomorrow"})

    async def test_retries_exhausted(self, client, sleeps):
        with aioresponses() as m:
            m.post(SEND_URL, status=503, payload={"message": "unavailable"}, repeat=True)
            with pytest.raises(ServerError) as exc_info:
                await client.send({"to": "user@example.com"})

            assert len(m.requests[("POST", URL(SEND_URL))]) == 3
        assert str(exc_info.value) == "unavailable (after 2 retries)"
        assert len(sleeps) == 2

    async def test_rate_limit_recorded_on_error(self, client):
        client.configure(retry={"max_retries": 0})
        headers = {"X-RateLimit-Limit": "100", "X-RateLimit-Remaining": "0", "Retry-After": "30"}
        with aioresponses() as m:
            m.post(SEND_URL, status=429, payload={"message": "slow down"}, headers=headers)
            with pytest.raises(RateLimitError) as exc_info:
                await client.send({"to": "user@example.com"})

        assert exc_info.value.retry_after == 30
        assert client.rate_limit_info().remaining == 0


class TestSendBatch:
    async def test_batch(self, client):
        payload = {"templateId": "welcome", "emails": [{"to": "a@example.com"}, {"to": "b@example.com"}]}
        with aioresponses() as m:
            m.post(BATCH_URL, status=200, payload={"queued": 2})
            assert await client.send_batch(payload) == {"queued": 2}

            assert posted(m, BATCH_URL).kwargs["json"]["emails"][1] == {"to": "b@example.com"}

    async def test_batch_too_large(self, client):
        emails = [{"to": f"u{i}@example.com"} for i in range(MAX_BATCH_SIZE + 1)]
        with aioresponses() as m:
            with pytest.raises(ValidationError) as exc_info:
                await client.send_batch({"emails": emails})
            assert not m.requests

        assert exc_info.value.code == "BATCH_SIZE_EXCEEDED"
        assert exc_info.value.status_code == 400

    async def test_bad_recipient_index(self, client):
        with pytest.raises(ValidationError, match="at index 1"):
            await client.send_batch({"emails": [{"to": "a@example.com"}, {"to": ""}]})

    async def test_empty_batch(self, client):
        with pytest.raises(ValidationError, match="cannot be empty"):
            await client.send_batch({"emails": []})
