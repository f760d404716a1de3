# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Unit tests for the Telegram adapter."""

from __future__ import annotations

import pytest
from aioresponses import aioresponses
from yarl import URL

from delivery_adapters.adapters.telegram import TelegramAdapter, escape_markdown_v2
from delivery_adapters.models import HealthStatus, Message

TOKEN = "123456:ABC-DEF"
SEND_URL = f"https://api.telegram.org/bot{TOKEN}/sendMessage"
GET_ME_URL = f"https://api.telegram.org/bot{TOKEN}/getMe"


def sent_json(m: aioresponses, index: int = 0) -> dict:
    return m.requests[("POST", URL(SEND_URL))][index].kwargs["json"]


@pytest.fixture
def config():
    return {"bot_token": TOKEN, "max_retries": 0}


@pytest.fixture
def adapter(config):
    return TelegramAdapter(config)


class TestSend:
    async def test_html_with_subject(self, adapter):
        message = Message(to="-100123", subject="Alert <1>", body="<p>Disk <b>full</b></p><img src='x'>")
        with aioresponses() as m:
            m.post(SEND_URL, status=200, payload={"ok": True, "result": {"message_id": 42}})
            result = await adapter.send_mail(message)

            payload = sent_json(m)

        assert result.success
        assert result.id == "42"
        assert payload["chat_id"] == "-100123"
        assert payload["parse_mode"] == "HTML"
        assert payload["text"] == "<b>Alert &lt;1&gt;</b>\n\nDisk <b>full</b>"
        assert payload["disable_web_page_preview"] is False

    async def test_per_message_overrides(self, adapter):
        message = Message(to="-100123", body="plain", data={"chatId": "999", "disable_web_page_preview": True})
        with aioresponses() as m:
            m.post(SEND_URL, status=200, payload={"ok": True, "result": {"message_id": 1}})
            await adapter.send_mail(message)

            payload = sent_json(m)

        assert payload["chat_id"] == "999"
        assert payload["disable_web_page_preview"] is True

    async def test_markdown_falls_back_to_html(self, config):
        adapter = TelegramAdapter({**config, "parse_mode": "MarkdownV2"})
        assert adapter.build_payload(Message(to="1", body="<p>Hi</p>"))["parse_mode"] == "HTML"
        assert adapter.build_payload(Message(to="1", body="*Hi*"))["parse_mode"] == "MarkdownV2"

    async def test_markdown_v2_subject_escaped(self, config):
        adapter = TelegramAdapter({**config, "parse_mode": "MarkdownV2"})
        payload = adapter.build_payload(Message(to="1", subject="v1.2 ready!", body="done"))
        assert payload["text"] == "*v1\\.2 ready\\!*\n\ndone"

    async def test_parse_entities_fallback(self, adapter):
        """A markup rejection is retried once as plain text."""
        message = Message(to="-100123", subject="Hi", body="<b>broken <i>markup</b>")
        with aioresponses() as m:
            m.post(
                SEND_URL,
                status=400,
                payload={"ok": False, "error_code": 400, "description": "Bad Request: can't parse entities: Can't find end tag"},
            )
            m.post(SEND_URL, status=200, payload={"ok": True, "result": {"message_id": 7}})
            result = await adapter.send_mail(message)

            retry = sent_json(m, 1)

        assert result.success
        assert result.id == "7"
        assert "parse_mode" not in retry
        assert retry["text"] == "Hi\n\nbroken markup"

    async def test_rate_limited(self, adapter):
        with aioresponses() as m:
            m.post(
                SEND_URL,
                status=429,
                payload={"ok": False, "error_code": 429, "description": "Too Many Requests: retry after 5", "parameters": {"retry_after": 5}},
            )
            result = await adapter.send_mail(Message(to="-100123", body="x"))

        assert not result.success
        assert result.is_temporary is True
        assert result.pause_duration == 5

    async def test_chat_not_found(self, adapter):
        with aioresponses() as m:
            m.post(SEND_URL, status=400, payload={"ok": False, "error_code": 400, "description": "Bad Request: chat not found"})
            result = await adapter.send_mail(Message(to="-1", body="x"))

            assert len(m.requests[("POST", URL(SEND_URL))]) == 1
        assert result.is_temporary is False
        assert result.error == "Bad Request: chat not found"

    async def test_unexpected_response(self, adapter):
        with aioresponses() as m:
            m.post(SEND_URL, status=200, payload={"ok": True, "result": True})
            result = await adapter.send_mail(Message(to="-1", body="x"))

        assert not result.success


class TestProbes:
    async def test_validate(self, adapter):
        with aioresponses() as m:
            m.get(GET_ME_URL, status=200, payload={"ok": True, "result": {"id": 1, "username": "alerts_bot"}})
            result = await adapter.validate_config()

        assert result.success
        assert result.message == "Valid! Connected as @alerts_bot"

    async def test_health_invalid_token(self, adapter):
        with aioresponses() as m:
            m.get(GET_ME_URL, status=401, payload={"ok": False, "error_code": 401, "description": "Unauthorized"})
            assert await adapter.health_check() is HealthStatus.UNHEALTHY


def test_escape_markdown_v2():
    assert escape_markdown_v2("a_b*c.d!") == "a\\_b\\*c\\.d\\!"
