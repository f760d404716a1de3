# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Markup helpers used when a channel cannot take arbitrary HTML."""

from __future__ import annotations

import html
import re

TELEGRAM_ALLOWED_TAGS = frozenset({"b", "strong", "i", "em", "u", "ins", "s", "strike", "del", "a", "code", "pre"})
BLOCK_TAGS = ("p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "li", "tr", "ul", "ol", "table", "blockquote")

_HTML_RE = re.compile(r"<([a-z][a-z0-9]*)\b[^>]*>", re.IGNORECASE)
_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_BLOCK_CLOSE_RE = re.compile(r"</(?:%s)\s*>" % "|".join(BLOCK_TAGS), re.IGNORECASE)
_TAG_RE = re.compile(r"<(/?)([a-zA-Z][a-zA-Z0-9]*)\b([^>]*)>")
_HREF_RE = re.compile(r"""href\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))""", re.IGNORECASE)
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_MANY_NEWLINES_RE = re.compile(r"\n{3,}")


def looks_like_html(text: str | None) -> bool:
    return bool(text) and bool(_HTML_RE.search(text))


def plain_text_to_html(text: str) -> str:
    """Wrap plain text in a ``<div>``, escaping it and keeping line breaks."""
    escaped = html.escape(text, quote=False)
    return "<div>" + escaped.replace("\r\n", "\n").replace("\n", "<br>") + "</div>"


def html_to_text(markup: str) -> str:
    """Crude HTML to text conversion for plaintext alternatives."""
    text = _SCRIPT_STYLE_RE.sub("", markup)
    text = _BR_RE.sub("\n", text)
    text = _BLOCK_CLOSE_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    text = "\n".join(line.strip() for line in text.splitlines())
    return _MANY_NEWLINES_RE.sub("\n\n", text).strip()


def sanitize_telegram_html(markup: str) -> str:
    """Reduce HTML to the tag subset accepted by Telegram's HTML parse mode.

    Line breaks and block elements become newlines, whitelisted tags are
    kept without attributes (``<a>`` keeps its ``href``), everything else
    is dropped while its text survives.
    """
    text = _SCRIPT_STYLE_RE.sub("", markup)
    text = _BR_RE.sub("\n", text)
    text = _BLOCK_CLOSE_RE.sub("\n", text)

    def _replace(match: re.Match[str]) -> str:
        closing, name, attrs = match.group(1), match.group(2).lower(), match.group(3)
        if name not in TELEGRAM_ALLOWED_TAGS:
            return ""
        if closing:
            return f"</{name}>"
        if name == "a":
            href = _HREF_RE.search(attrs)
            if href:
                value = next(g for g in href.groups() if g is not None)
                return f'<a href="{html.escape(value, quote=True)}">'
        return f"<{name}>"

    text = _TAG_RE.sub(_replace, text)
    return _MANY_NEWLINES_RE.sub("\n\n", text).strip()


def strip_tags(markup: str) -> str:
    """Remove every tag, keeping line structure. Used for plain-text resends."""
    return html_to_text(markup)
