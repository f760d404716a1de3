# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Webhook signature verification and event normalization."""

from .normalize import EventNormalizer, get_path, parse_timestamp
from .verify import (
    SharedHeaderVerifier,
    SortedFieldHmacVerifier,
    SvixVerifier,
    WebhookVerifier,
)

__all__ = [
    "EventNormalizer",
    "SharedHeaderVerifier",
    "SortedFieldHmacVerifier",
    "SvixVerifier",
    "WebhookVerifier",
    "get_path",
    "parse_timestamp",
]
