# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Plain SMTP adapter built on aiosmtplib.

A fresh connection is opened for every call and closed afterwards. Port 465
with ``secure`` enabled uses implicit TLS; other ports upgrade with STARTTLS
when ``secure`` is set, or opportunistically when the server offers it.
"""

from __future__ import annotations

import asyncio
import ssl
from collections.abc import Mapping
from email.utils import make_msgid
from typing import Annotated, Any

import aiosmtplib

from ..errors import (
    AuthError,
    DeliveryError,
    NetworkError,
    RequestTimeoutError,
    ServerError,
    ValidationError,
)
from ..idempotency import IdempotencyFormat, derive_idempotency_key
from ..mime import build_mime_message
from ..models import AdapterMetadata, DeliveryResult, HealthStatus, Message, ValidationResult
from .base import AdapterConfig, DeliveryAdapter, config_field, parse_custom_headers

IMPLICIT_TLS_PORT = 465

TEMPORARY_PATTERNS = (
    "421",
    "450",
    "451",
    "452",
    "timeout",
    "connection refused",
    "connection reset",
    "temporarily unavailable",
    "try again",
    "throttl",
)
PERMANENT_PATTERNS = (
    "wrong_version_number",
    "certificate verify failed",
    "ssl handshake",
    "certificate_unknown",
    "unknown_ca",
    "certificate has expired",
    "self signed certificate",
    "authentication failed",
    "auth",
    "535",
    "534",
    "530",
)
AUTH_CODES = (530, 534, 535)


class SmtpConfig(AdapterConfig):
    host: Annotated[str, config_field("SMTP Host", group="main", placeholder="smtp.example.com", min_length=1)]
    port: Annotated[int, config_field("SMTP Port", 587, type="number", group="main", placeholder="587", gt=0, lt=65536)]
    secure: Annotated[
        bool,
        config_field(
            "Use TLS/SSL",
            False,
            type="boolean",
            group="security",
            hint="Implicit TLS on port 465, STARTTLS on other ports.",
        ),
    ]
    auth_user: Annotated[str | None, config_field("Username", None, group="authentication", placeholder="user@example.com")]
    auth_pass: Annotated[str | None, config_field("Password", None, type="password", group="authentication")]
    from_email: Annotated[str, config_field("From Email", group="defaults", placeholder="sender@example.com", min_length=3)]
    from_name: Annotated[str | None, config_field("From Name", None, group="defaults")]
    custom_headers: Annotated[
        Any,
        config_field("Custom Headers", None, type="customHeaders", hint="Extra headers added to every message."),
    ]
    custom_name: Annotated[str | None, config_field("Adapter Name", None, placeholder="My SMTP Server")]


def classify_smtp_exception(exc: BaseException) -> tuple[bool, int | None]:
    """Classify an SMTP failure.

    Returns:
        ``(is_temporary, smtp_code)``; unknown failures are temporary.
    """
    smtp_code = None
    if isinstance(exc, aiosmtplib.SMTPRecipientsRefused) and exc.recipients:
        smtp_code = exc.recipients[0].code
    elif isinstance(exc, aiosmtplib.SMTPException):
        smtp_code = getattr(exc, "smtp_code", None) or getattr(exc, "code", None)

    if isinstance(exc, ssl.SSLError):
        return False, smtp_code
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError, OSError)):
        return True, smtp_code

    if smtp_code:
        if 400 <= smtp_code < 500:
            return True, smtp_code
        if 500 <= smtp_code < 600:
            return False, smtp_code

    text = str(exc).lower()
    if any(pattern in text for pattern in TEMPORARY_PATTERNS):
        return True, smtp_code
    if any(pattern in text for pattern in PERMANENT_PATTERNS):
        return False, smtp_code
    return True, smtp_code


def error_from_smtp(exc: BaseException) -> DeliveryError:
    """Wrap an aiosmtplib or socket exception in a classified :class:`DeliveryError`."""
    is_temporary, smtp_code = classify_smtp_exception(exc)
    message = str(exc) or type(exc).__name__
    code = f"SMTP_{smtp_code}" if smtp_code else type(exc).__name__
    details = {"smtp_code": smtp_code} if smtp_code else None

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return RequestTimeoutError(f"SMTP timeout: {message}", code=code, details=details)
    if is_temporary:
        if isinstance(exc, (ConnectionError, OSError)):
            return NetworkError(f"SMTP connection failed: {message}", code=code, details=details)
        return ServerError(message, code=code, details=details)
    if isinstance(exc, aiosmtplib.SMTPAuthenticationError) or smtp_code in AUTH_CODES or "auth" in message.lower():
        return AuthError(message, code=code, details=details)
    return ValidationError(message, code=code, details=details)


SMTP_FAILURES = (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError)


class SmtpAdapter(DeliveryAdapter):
    key = "smtp"
    config_model = SmtpConfig
    metadata = AdapterMetadata(
        name="SMTP",
        description="Send emails using any standard SMTP server.",
        group="transactional",
    )
    idempotency_format = IdempotencyFormat.MESSAGE_ID

    def __init__(self, config: Mapping[str, Any] | SmtpConfig | None = None, **kwargs: Any):
        super().__init__(config, **kwargs)
        self.custom_headers = parse_custom_headers(self.config.custom_headers)

    @property
    def sender_domain(self) -> str:
        return self.config.from_email.rpartition("@")[2] or "localhost"

    def _client(self) -> aiosmtplib.SMTP:
        port = self.config.port
        if self.config.secure and port == IMPLICIT_TLS_PORT:
            use_tls, start_tls = True, False
        elif self.config.secure:
            use_tls, start_tls = False, True
        else:
            use_tls, start_tls = False, None
        return aiosmtplib.SMTP(
            hostname=self.config.host,
            port=port,
            use_tls=use_tls,
            start_tls=start_tls,
            timeout=self.config.timeout,
        )

    async def _open(self) -> aiosmtplib.SMTP:
        smtp = self._client()

        async def _do_connect():
            await smtp.connect()
            if self.config.auth_user and self.config.auth_pass:
                await smtp.login(self.config.auth_user, self.config.auth_pass)

        try:
            await asyncio.wait_for(_do_connect(), timeout=self.config.timeout + 5)
        except BaseException:
            await self._close(smtp)
            raise
        return smtp

    async def _close(self, smtp: aiosmtplib.SMTP) -> None:
        if not smtp.is_connected:
            return
        try:
            await smtp.quit()
        except SMTP_FAILURES as exc:
            self.logger.debug("Ignoring error on SMTP QUIT: %s", exc)
            smtp.close()

    async def _verify(self) -> None:
        try:
            smtp = await self._open()
        except SMTP_FAILURES as exc:
            raise error_from_smtp(exc) from exc
        await self._close(smtp)

    async def _check_config(self) -> ValidationResult:
        await self._verify()
        return ValidationResult(success=True, message="Successfully connected to SMTP server.")

    async def _probe_health(self) -> HealthStatus:
        await self._verify()
        return HealthStatus.HEALTHY

    def _sender(self) -> str:
        if self.config.from_name:
            return f'"{self.config.from_name}" <{self.config.from_email}>'
        return self.config.from_email

    def message_id(self, message: Message) -> str:
        if message.idempotency_key:
            return derive_idempotency_key(message.idempotency_key, IdempotencyFormat.MESSAGE_ID, domain=self.sender_domain)
        return make_msgid(domain=self.sender_domain)

    async def build_message(self, message: Message):
        data = message.data
        headers = dict(self.custom_headers)
        if isinstance(data.get("headers"), Mapping):
            headers.update(data["headers"])
        files = await self.resolver.resolve(message.attachments())
        return build_mime_message(
            sender=self._sender(),
            to=message.to,
            subject=message.subject,
            text=data.get("text"),
            html=message.body or "",
            attachments=files,
            cc=data.get("cc"),
            bcc=data.get("bcc"),
            reply_to=self.option(message, "reply_to"),
            message_id=self.message_id(message),
            headers=headers,
        )

    async def _send(self, message: Message) -> DeliveryResult:
        mime = await self.build_message(message)
        message_id = mime["Message-ID"]
        try:
            smtp = await self._open()
            try:
                errors, response = await asyncio.wait_for(smtp.send_message(mime), timeout=self.config.timeout)
            finally:
                await self._close(smtp)
        except SMTP_FAILURES as exc:
            raise error_from_smtp(exc) from exc
        self.logger.debug("SMTP server accepted %s: %s", message_id, response)
        result = {"response": response}
        if errors:
            refused = {str(addr): [code, str(text)] for addr, (code, text) in errors.items()}
            self.logger.warning(
                "SMTP server refused %d recipient(s) of %s: %s",
                len(refused),
                message_id,
                ", ".join(f"{addr} ({code} {text})" for addr, (code, text) in refused.items()),
            )
            result["refused_recipients"] = refused
        return self.accepted(message_id, result)
