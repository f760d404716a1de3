# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Authentication of inbound provider webhooks.

Three schemes are supported:

- :class:`SvixVerifier`: timestamped multi-signature HMAC-SHA256 (Resend).
- :class:`SortedFieldHmacVerifier`: HMAC-SHA1 over the callback URL followed
  by the sorted form fields (Mandrill).
- :class:`SharedHeaderVerifier`: a static secret carried in a header
  (OneSignal custom webhooks).

Verifiers are configured once and never raise: any malformed input or
mismatch is logged at warning level and reported as ``False``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from collections.abc import Callable, Mapping
from typing import Any, Protocol
from urllib.parse import parse_qsl

from multidict import CIMultiDict

from ..logger import get_logger

SVIX_TOLERANCE_SECONDS = 300
SVIX_SECRET_PREFIX = "whsec_"


class WebhookVerifier(Protocol):
    def verify(self, body: Any, headers: Mapping[str, str]) -> bool: ...


def body_text(body: Any) -> str:
    """Textual form of a webhook body, as it was signed by the sender."""
    if isinstance(body, bytes):
        return body.decode("utf-8")
    if isinstance(body, str):
        return body
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def body_fields(body: Any) -> dict[str, str]:
    """Form fields of a webhook body (mapping or urlencoded text)."""
    if isinstance(body, Mapping):
        return {str(k): v if isinstance(v, str) else json.dumps(v, separators=(",", ":")) for k, v in body.items()}
    return dict(parse_qsl(body_text(body), keep_blank_values=True))


def _ci(headers: Mapping[str, str] | None) -> CIMultiDict[str]:
    return CIMultiDict(headers or {})


class SvixVerifier:
    """Verify ``svix-id``/``svix-timestamp``/``svix-signature`` headers.

    Args:
        secret: Signing secret, with or without the ``whsec_`` prefix.
        tolerance: Maximum clock skew accepted, in seconds.
        clock: Returns the current epoch seconds; injectable for tests.
    """

    def __init__(
        self,
        secret: str,
        tolerance: int = SVIX_TOLERANCE_SECONDS,
        *,
        clock: Callable[[], float] = time.time,
        logger=None,
    ):
        key = decode_secret_or_none(secret)
        if key is None:
            raise ValueError("Webhook signing secret is not valid base64")
        self._key = key
        self.tolerance = tolerance
        self._clock = clock
        self.logger = logger or get_logger("SvixVerifier")

    def sign(self, msg_id: str, timestamp: str, body: Any) -> str:
        content = f"{msg_id}.{timestamp}.{body_text(body)}".encode("utf-8")
        return base64.b64encode(hmac.new(self._key, content, hashlib.sha256).digest()).decode("ascii")

    def verify(self, body: Any, headers: Mapping[str, str]) -> bool:
        h = _ci(headers)
        msg_id = h.get("svix-id")
        timestamp = h.get("svix-timestamp")
        signatures = h.get("svix-signature")
        if not msg_id or not timestamp or not signatures:
            self.logger.warning("Missing Svix headers for webhook verification")
            return False
        try:
            ts = int(timestamp)
        except ValueError:
            self.logger.warning("Invalid Svix timestamp: %r", timestamp)
            return False
        if abs(self._clock() - ts) > self.tolerance:
            self.logger.warning("Webhook timestamp outside tolerance (%ss)", self.tolerance)
            return False
        try:
            expected = self.sign(msg_id, timestamp, body)
        except UnicodeDecodeError:
            self.logger.warning("Webhook body is not valid UTF-8")
            return False
        for candidate in signatures.split():
            scheme, _, value = candidate.partition(",")
            if scheme == "v1" and hmac.compare_digest(value.encode("utf-8"), expected.encode("ascii")):
                return True
        self.logger.warning("Invalid webhook signature")
        return False


class SortedFieldHmacVerifier:
    """Verify a signature computed over ``url + key1 + value1 + key2 + ...``.

    Args:
        url: The exact callback URL registered with the provider.
        key: Webhook authentication key.
        header: Header carrying the base64 HMAC-SHA1 signature.
    """

    def __init__(self, url: str, key: str, header: str = "X-Mandrill-Signature", *, logger=None):
        self.url = url
        self._key = key.encode("utf-8")
        self.header = header
        self.logger = logger or get_logger("SortedFieldHmacVerifier")

    def sign(self, fields: Mapping[str, str]) -> str:
        signed = self.url + "".join(f"{k}{fields[k]}" for k in sorted(fields))
        return base64.b64encode(hmac.new(self._key, signed.encode("utf-8"), hashlib.sha1).digest()).decode("ascii")

    def verify(self, body: Any, headers: Mapping[str, str]) -> bool:
        signature = _ci(headers).get(self.header)
        if not signature:
            self.logger.warning("Missing %s header", self.header)
            return False
        try:
            expected = self.sign(body_fields(body))
        except (UnicodeDecodeError, TypeError, ValueError) as exc:
            self.logger.warning("Unreadable webhook body: %s", exc)
            return False
        if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii")):
            self.logger.warning("Invalid %s", self.header)
            return False
        return True


class SharedHeaderVerifier:
    """Accept requests carrying a configured header with the expected value."""

    def __init__(self, name: str, value: str, *, logger=None):
        self.name = name
        self.value = value
        self.logger = logger or get_logger("SharedHeaderVerifier")

    def verify(self, body: Any, headers: Mapping[str, str]) -> bool:
        received = _ci(headers).get(self.name)
        if received is None or not hmac.compare_digest(received.encode("utf-8"), self.value.encode("utf-8")):
            self.logger.warning("Invalid or missing webhook header %s", self.name)
            return False
        return True


def decode_secret_or_none(secret: str) -> bytes | None:
    """Return the decoded Svix key, or None when the secret is not valid base64."""
    raw = secret[len(SVIX_SECRET_PREFIX):] if secret.startswith(SVIX_SECRET_PREFIX) else secret
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        return None
