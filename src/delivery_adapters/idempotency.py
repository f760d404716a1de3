# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Deterministic idempotency-key derivation for provider-specific formats.

Providers disagree on what an idempotency token may look like: some want a
UUID, some a bounded header value, some a tag-safe string. The caller's
opaque key is mapped onto each format with pure functions, so a retried
message always produces the same token.
"""

from __future__ import annotations

import hashlib
import json
import re
from enum import Enum
from typing import Any


class IdempotencyFormat(str, Enum):
    UUID = "uuid"
    SHA1_HEX = "sha1_hex"
    HEADER = "header"
    TAG = "tag"
    MESSAGE_ID = "message_id"


UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
SHA1_HEX_PATTERN = re.compile(r"^[0-9a-f]{40}$")
HEADER_PATTERN = re.compile(r"^[\x21-\x7e]{1,255}$")
TAG_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,256}$")
MESSAGE_ID_PATTERN = re.compile(r"^<[0-9a-f]{32}@[^<>@\s]+>$")

FORMAT_PATTERNS = {
    IdempotencyFormat.UUID: UUID_PATTERN,
    IdempotencyFormat.SHA1_HEX: SHA1_HEX_PATTERN,
    IdempotencyFormat.HEADER: HEADER_PATTERN,
    IdempotencyFormat.TAG: TAG_PATTERN,
    IdempotencyFormat.MESSAGE_ID: MESSAGE_ID_PATTERN,
}

DEFAULT_MESSAGE_ID_DOMAIN = "delivery-adapters.local"


def _sha1_hex(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()


def _sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _uuid_from_digest(digest: str) -> str:
    # version 5 nibble and RFC 4122 variant, as uuid5 does
    chars = list(digest[:32])
    chars[12] = "5"
    chars[16] = "89ab"[int(chars[16], 16) & 0x3]
    digest = "".join(chars)
    return f"{digest[0:8]}-{digest[8:12]}-{digest[12:16]}-{digest[16:20]}-{digest[20:32]}"


def derive_idempotency_key(
    key: str,
    fmt: IdempotencyFormat,
    *,
    domain: str = DEFAULT_MESSAGE_ID_DOMAIN,
) -> str:
    """Map an opaque caller key onto a provider token format.

    Args:
        key: Caller-supplied idempotency key (non-empty).
        fmt: Target format.
        domain: Domain part for ``MESSAGE_ID`` tokens.

    Returns:
        A token matching ``FORMAT_PATTERNS[fmt]``. Equal inputs always give
        equal outputs.

    Raises:
        ValueError: If ``key`` is empty.
    """
    if not key:
        raise ValueError("idempotency key must be a non-empty string")
    fmt = IdempotencyFormat(fmt)

    if fmt is IdempotencyFormat.UUID:
        if UUID_PATTERN.match(key):
            return key
        return _uuid_from_digest(_sha1_hex(key))

    if fmt is IdempotencyFormat.SHA1_HEX:
        return _sha1_hex(key)

    if fmt is IdempotencyFormat.HEADER:
        return key if HEADER_PATTERN.match(key) else _sha256_hex(key)

    if fmt is IdempotencyFormat.TAG:
        return key if TAG_PATTERN.match(key) else _sha256_hex(key)

    return f"<{_sha256_hex(key)[:32]}@{domain}>"


def matches_format(token: str, fmt: IdempotencyFormat) -> bool:
    """Check whether ``token`` is a valid value for ``fmt``."""
    return bool(FORMAT_PATTERNS[IdempotencyFormat(fmt)].match(token or ""))


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def payload_fingerprint(payload: Any, length: int = 16) -> str:
    """Deterministic short hash of a request payload."""
    return _sha256_hex(canonical_json(payload))[:length]
