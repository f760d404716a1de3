# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Telegram Bot API adapter.

``message.to`` is the chat id. HTML bodies are reduced to the tag subset the
Bot API accepts; the subject, when present, becomes a bold first line.
"""

from __future__ import annotations

import html
import re
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from ..errors import DeliveryError, UnknownError, error_for_status
from ..http import HttpRequest, HttpResponse
from ..markup import looks_like_html, sanitize_telegram_html, strip_tags
from ..models import AdapterMetadata, DeliveryResult, HealthStatus, Message, ValidationResult
from .base import AdapterConfig, DeliveryAdapter, config_field

TELEGRAM_API_URL = "https://api.telegram.org"
PARSE_MODES = ["HTML", "MarkdownV2", "Markdown"]
PARSE_ENTITIES_ERROR = "can't parse entities"

_MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


class TelegramConfig(AdapterConfig):
    bot_token: Annotated[
        str,
        config_field(
            "Bot Token",
            type="password",
            group="authentication",
            placeholder="123456:ABC-DEF1234ghIkl-zyx57W2v1u123ew11",
            hint="Your Telegram Bot Token from @BotFather",
            min_length=1,
        ),
    ]
    parse_mode: Annotated[
        Literal["HTML", "MarkdownV2", "Markdown"],
        config_field("Parse mode", "HTML", type="select", options=PARSE_MODES),
    ]
    disable_web_page_preview: Annotated[
        bool,
        config_field("Disable link previews", False, type="boolean", hint="Can be overridden per message."),
    ]
    base_url: Annotated[str, config_field("API Base URL", TELEGRAM_API_URL, group="advanced")]


def escape_markdown_v2(text: str) -> str:
    return _MARKDOWN_V2_SPECIAL.sub(r"\\\1", text)


class TelegramAdapter(DeliveryAdapter):
    key = "telegram"
    config_model = TelegramConfig
    metadata = AdapterMetadata(name="Telegram", description="Send messages via Telegram Bot API", group="chat")

    @property
    def api_url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/bot{self.config.bot_token}"

    async def _call(self, method: str, payload: dict[str, Any] | None = None) -> HttpResponse:
        if payload is None:
            response = await self.request(HttpRequest("GET", f"{self.api_url}/{method}"))
        else:
            response = await self.request(HttpRequest("POST", f"{self.api_url}/{method}", json=payload))
        data = response.data
        if isinstance(data, dict) and data.get("ok") is False:
            status = data.get("error_code") if isinstance(data.get("error_code"), int) else response.status
            raise error_for_status(status, data.get("description"), details=data)
        return response

    async def _check_config(self) -> ValidationResult:
        response = await self._call("getMe")
        username = (response.data.get("result") or {}).get("username")
        return ValidationResult(success=True, message=f"Valid! Connected as @{username}")

    async def _probe_health(self) -> HealthStatus:
        await self._call("getMe")
        return HealthStatus.HEALTHY

    def parse_mode_for(self, message: Message) -> str:
        """Requested parse mode, falling back to HTML when the body is HTML."""
        mode = self.option(message, "parse_mode") or self.config.parse_mode
        if mode not in PARSE_MODES:
            mode = self.config.parse_mode
        if mode != "HTML" and looks_like_html(message.body):
            self.logger.debug("Body contains HTML, switching parse mode from %s to HTML", mode)
            return "HTML"
        return mode

    def render_text(self, message: Message, parse_mode: str) -> str:
        body = message.body or ""
        subject = message.subject or ""
        if parse_mode == "HTML":
            head = f"<b>{html.escape(subject, quote=False)}</b>\n\n" if subject else ""
            return head + sanitize_telegram_html(body)
        if parse_mode == "MarkdownV2":
            head = f"*{escape_markdown_v2(subject)}*\n\n" if subject else ""
            return head + body
        head = f"*{subject}*\n\n" if subject else ""
        return head + body

    def render_plain(self, message: Message) -> str:
        body = strip_tags(message.body or "")
        return f"{message.subject}\n\n{body}" if message.subject else body

    def build_payload(self, message: Message) -> dict[str, Any]:
        parse_mode = self.parse_mode_for(message)
        return {
            "chat_id": self.option(message, "chat_id") or message.to,
            "text": self.render_text(message, parse_mode),
            "parse_mode": parse_mode,
            "disable_web_page_preview": bool(
                self.option(message, "disable_web_page_preview", self.config.disable_web_page_preview)
            ),
        }

    async def _send(self, message: Message) -> DeliveryResult:
        payload = self.build_payload(message)
        try:
            response = await self._call("sendMessage", payload)
        except DeliveryError as exc:
            if exc.status_code != 400 or PARSE_ENTITIES_ERROR not in str(exc).lower():
                raise
            self.logger.warning("Telegram rejected %s markup (%s), resending as plain text", payload["parse_mode"], exc)
            payload = {key: value for key, value in payload.items() if key != "parse_mode"}
            payload["text"] = self.render_plain(message)
            response = await self._call("sendMessage", payload)

        result = response.data.get("result") if isinstance(response.data, Mapping) else None
        if not isinstance(result, Mapping):
            raise UnknownError("Unexpected Telegram response", status_code=response.status, details=response.data)
        return self.accepted(result.get("message_id"), response.data)
