# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Multi-part MIME message construction for SMTP and raw SES sends.

Layout produced by :func:`build_mime_message`::

    multipart/mixed                 (only when regular attachments exist)
    ├── multipart/alternative
    │   ├── text/plain
    │   └── multipart/related       (only when inline images exist)
    │       ├── text/html
    │       └── image/*  (Content-ID: <cid>)
    └── application/*               (regular attachments)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from email.message import EmailMessage
from typing import Any

from .attachments import ResolvedAttachment
from .markup import html_to_text


def format_addresses(value: Any) -> str | None:
    """Normalize a string, comma list or iterable of addresses into a header value."""
    if not value:
        return None
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",") if part.strip()]
        return ", ".join(items) if items else None
    if isinstance(value, (list, tuple, set)):
        items = [str(addr).strip() for addr in value if addr]
        return ", ".join(items) if items else None
    return str(value)


def build_mime_message(
    *,
    sender: str,
    to: Any,
    subject: str | None = None,
    text: str | None = None,
    html: str | None = None,
    attachments: Iterable[ResolvedAttachment] = (),
    cc: Any = None,
    bcc: Any = None,
    reply_to: str | None = None,
    message_id: str | None = None,
    headers: Mapping[str, Any] | None = None,
) -> EmailMessage:
    """Build an :class:`~email.message.EmailMessage` ready for transmission.

    Args:
        sender: ``From`` header value.
        to: Recipient(s), string or list.
        subject: Subject line.
        text: Plain-text body. Derived from ``html`` when missing.
        html: HTML body, optional.
        attachments: Resolved attachments; those with a ``cid`` become
            inline parts related to the HTML body.
        cc: Carbon-copy recipients.
        bcc: Blind carbon-copy recipients.
        reply_to: ``Reply-To`` header value.
        message_id: Explicit ``Message-ID`` (angle brackets included).
        headers: Extra headers; ``None`` values are skipped.

    Raises:
        ValueError: If no recipient is given.
    """
    to_value = format_addresses(to)
    if not to_value:
        raise ValueError("At least one recipient is required")

    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = to_value
    msg["Subject"] = subject or ""
    if cc_value := format_addresses(cc):
        msg["Cc"] = cc_value
    if bcc_value := format_addresses(bcc):
        msg["Bcc"] = bcc_value
    if reply_to:
        msg["Reply-To"] = reply_to
    if message_id:
        msg["Message-ID"] = message_id
    for header, value in (headers or {}).items():
        if value is None:
            continue
        value_str = str(value)
        if header in msg:
            msg.replace_header(header, value_str)
        else:
            msg[header] = value_str

    items = list(attachments)
    inline = [att for att in items if att.is_inline] if html else []
    regular = [att for att in items if att not in inline]

    if html:
        msg.set_content(text if text is not None else html_to_text(html))
        msg.add_alternative(html, subtype="html")
        if inline:
            html_part = msg.get_payload()[1]
            for att in inline:
                html_part.add_related(
                    att.content,
                    maintype=att.maintype,
                    subtype=att.subtype,
                    cid=f"<{att.cid.strip('<>')}>",
                    filename=att.filename,
                    disposition="inline",
                )
    else:
        msg.set_content(text or "")

    for att in regular:
        msg.add_attachment(att.content, maintype=att.maintype, subtype=att.subtype, filename=att.filename)
    return msg
