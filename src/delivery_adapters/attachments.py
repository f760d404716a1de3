# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Attachment validation and retrieval.

Attachments arrive either inline (``content``) or as a remote reference
(``path``/``href``/``url``). Remote references are restricted to http(s) and
are checked for *every* attachment of a message before any download starts,
so a single bad reference aborts the send without touching the network.

Downloads are streamed in fixed-size chunks and abort as soon as the
configured ceiling is exceeded.

Example:
    Resolving the attachments of a message::

        resolver = AttachmentResolver(max_bytes=5 * 1024 * 1024)
        files = await resolver.resolve(message.attachments())
        for item in files:
            print(item.filename, item.content_type, len(item.content))
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import mimetypes
import re
from dataclasses import dataclass
from posixpath import basename
from urllib.parse import unquote, urlsplit

import aiohttp

from .errors import (
    AttachmentTooLargeError,
    NetworkError,
    RequestTimeoutError,
    SecurityError,
    ValidationError,
    error_for_status,
)
from .logger import get_logger
from .models import Attachment

ALLOWED_SCHEMES = frozenset({"http", "https"})
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_FETCH_TIMEOUT = 30.0
CHUNK_SIZE = 64 * 1024

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")


@dataclass
class ResolvedAttachment:
    """Attachment bytes ready to be encoded for a channel."""

    filename: str
    content: bytes
    content_type: str
    cid: str | None = None

    @property
    def is_inline(self) -> bool:
        return bool(self.cid)

    @property
    def maintype(self) -> str:
        return self.content_type.split("/", 1)[0]

    @property
    def subtype(self) -> str:
        parts = self.content_type.split("/", 1)
        return parts[1] if len(parts) == 2 else "octet-stream"

    def as_base64(self) -> str:
        return base64.b64encode(self.content).decode("ascii")


def validate_source(source: str) -> None:
    """Reject any remote reference that is not an absolute http(s) URL.

    Raises:
        SecurityError: For ``file://``, bare paths, ``ftp://`` and the like.
    """
    parsed = urlsplit(source.strip())
    if parsed.scheme.lower() not in ALLOWED_SCHEMES or not parsed.netloc:
        raise SecurityError(f"Attachment source not allowed (only http/https URLs): {source!r}")


def validate_attachments(attachments: list[Attachment]) -> None:
    """Validate every remote reference of a message, before any fetch."""
    for attachment in attachments:
        if attachment.content is None and attachment.source:
            validate_source(attachment.source)


def guess_mime(filename: str) -> str:
    """Guess a MIME type from a filename, defaulting to ``application/octet-stream``."""
    mt, _ = mimetypes.guess_type(filename)
    return mt or "application/octet-stream"


def is_base64(value: str) -> bool:
    """Heuristic check that ``value`` is canonical base64 text."""
    compact = "".join(value.split())
    if not compact or len(compact) % 4 or not _BASE64_RE.match(compact):
        return False
    try:
        decoded = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError):
        return False
    return base64.b64encode(decoded).decode("ascii") == compact


def decode_inline(attachment: Attachment, guess_base64: bool = False) -> bytes:
    """Return the raw bytes of an inline attachment.

    Text content is UTF-8 unless ``encoding`` is ``base64``. With
    ``guess_base64`` unmarked text that is canonical base64 is decoded too.
    """
    content = attachment.content
    if isinstance(content, bytes):
        return content
    if content is None:
        return b""
    encoding = (attachment.encoding or "").lower()
    if encoding == "base64" or (guess_base64 and not encoding and is_base64(content)):
        try:
            return base64.b64decode("".join(content.split()))
        except (binascii.Error, ValueError) as exc:
            raise ValidationError(f"Invalid base64 content for attachment {attachment.filename!r}") from exc
    return content.encode("utf-8")


def filename_from_url(url: str) -> str | None:
    name = basename(unquote(urlsplit(url).path))
    return name or None


class AttachmentResolver:
    """Turn :class:`Attachment` models into :class:`ResolvedAttachment` bytes.

    Args:
        max_bytes: Ceiling for each remote download.
        timeout: Total timeout in seconds for each download.
        session: Optional shared ``aiohttp.ClientSession``.
        logger: Optional logger.
        guess_base64: Decode unmarked inline text that looks like base64.
    """

    def __init__(
        self,
        *,
        max_bytes: int = DEFAULT_MAX_BYTES,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        session: aiohttp.ClientSession | None = None,
        logger=None,
        guess_base64: bool = False,
    ):
        self.max_bytes = max_bytes
        self.guess_base64 = guess_base64
        self.timeout = timeout
        self._session = session
        self.logger = logger or get_logger("AttachmentResolver")

    async def resolve(self, attachments: list[Attachment]) -> list[ResolvedAttachment]:
        """Validate all references, then load every attachment in order.

        Raises:
            SecurityError: A reference uses a forbidden scheme (no fetch made).
            AttachmentTooLargeError: A download exceeded ``max_bytes``.
            ValidationError: An attachment carries neither content nor source.
        """
        validate_attachments(attachments)
        resolved: list[ResolvedAttachment] = []
        for index, attachment in enumerate(attachments, start=1):
            if attachment.content is not None:
                content = decode_inline(attachment, self.guess_base64)
                fetched_type = None
                fallback_name = None
            elif attachment.source:
                content, fetched_type = await self.fetch(attachment.source)
                fallback_name = filename_from_url(attachment.source)
            else:
                raise ValidationError(f"Attachment #{index} has neither content nor a source URL")

            filename = attachment.filename or fallback_name or f"attachment-{index}"
            resolved.append(
                ResolvedAttachment(
                    filename=filename,
                    content=content,
                    content_type=attachment.content_type or fetched_type or guess_mime(filename),
                    cid=attachment.cid,
                )
            )
        return resolved

    async def fetch(self, url: str) -> tuple[bytes, str | None]:
        """Download ``url`` with a byte ceiling.

        Returns:
            Tuple of (content, content type from the response or None).
        """
        validate_source(url)
        if self._session is not None:
            return await self._download(self._session, url)
        async with aiohttp.ClientSession() as session:
            return await self._download(session, url)

    async def _download(self, session: aiohttp.ClientSession, url: str) -> tuple[bytes, str | None]:
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
                if resp.status >= 400:
                    raise error_for_status(resp.status, f"Attachment download failed with HTTP {resp.status}: {url}")
                if resp.content_length is not None and resp.content_length > self.max_bytes:
                    raise AttachmentTooLargeError(
                        f"Attachment {url} is {resp.content_length} bytes, limit is {self.max_bytes}"
                    )
                buffer = bytearray()
                async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                    buffer.extend(chunk)
                    if len(buffer) > self.max_bytes:
                        raise AttachmentTooLargeError(f"Attachment {url} exceeds {self.max_bytes} bytes")
                content_type = resp.headers.get("Content-Type")
        except asyncio.TimeoutError as exc:
            raise RequestTimeoutError(f"Attachment download timed out: {url}") from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(f"Attachment download failed: {exc}") from exc

        self.logger.debug("Fetched attachment %s (%d bytes)", url, len(buffer))
        if content_type:
            content_type = content_type.split(";", 1)[0].strip() or None
        return bytes(buffer), content_type
