# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Unit tests for idempotency-key derivation."""

from __future__ import annotations

import uuid

import pytest

from delivery_adapters.idempotency import (
    IdempotencyFormat,
    derive_idempotency_key,
    matches_format,
    payload_fingerprint,
)

KEYS = ["order-42", "msg:2025-01-01:user@example.com", "ünïcødé key", "x" * 400]


class TestDeriveIdempotencyKey:
    """Every format yields a valid, deterministic token."""

    @pytest.mark.parametrize("fmt", list(IdempotencyFormat))
    @pytest.mark.parametrize("key", KEYS)
    def test_matches_format(self, fmt, key):
        token = derive_idempotency_key(key, fmt)
        assert matches_format(token, fmt)

    @pytest.mark.parametrize("fmt", list(IdempotencyFormat))
    def test_deterministic(self, fmt):
        assert derive_idempotency_key("order-42", fmt) == derive_idempotency_key("order-42", fmt)

    @pytest.mark.parametrize("fmt", list(IdempotencyFormat))
    def test_distinct_keys_differ(self, fmt):
        assert derive_idempotency_key("order-42", fmt) != derive_idempotency_key("order-43", fmt)

    def test_empty_key_rejected(self):
        with pytest.raises(ValueError):
            derive_idempotency_key("", IdempotencyFormat.UUID)


class TestUuidFormat:
    def test_existing_uuid_passes_through(self):
        value = str(uuid.uuid4())
        assert derive_idempotency_key(value, IdempotencyFormat.UUID) == value

    def test_hashed_uuid_is_version_5(self):
        token = uuid.UUID(derive_idempotency_key("order-42", IdempotencyFormat.UUID))
        assert token.version == 5
        assert token.variant == uuid.RFC_4122


class TestHeaderAndTagFormats:
    def test_header_safe_key_kept(self):
        assert derive_idempotency_key("order-42", IdempotencyFormat.HEADER) == "order-42"

    def test_header_unsafe_key_hashed(self):
        token = derive_idempotency_key("has space", IdempotencyFormat.HEADER)
        assert len(token) == 64

    def test_tag_safe_key_kept(self):
        assert derive_idempotency_key("order_42-a", IdempotencyFormat.TAG) == "order_42-a"

    def test_tag_unsafe_key_hashed(self):
        token = derive_idempotency_key("order:42", IdempotencyFormat.TAG)
        assert token != "order:42"
        assert matches_format(token, IdempotencyFormat.TAG)

    def test_sha1_hex_length(self):
        assert len(derive_idempotency_key("order-42", IdempotencyFormat.SHA1_HEX)) == 40


class TestMessageIdFormat:
    def test_domain(self):
        token = derive_idempotency_key("order-42", IdempotencyFormat.MESSAGE_ID, domain="example.com")
        assert token.startswith("<")
        assert token.endswith("@example.com>")


class TestPayloadFingerprint:
    def test_key_order_irrelevant(self):
        assert payload_fingerprint({"a": 1, "b": 2}) == payload_fingerprint({"b": 2, "a": 1})

    def test_length(self):
        assert len(payload_fingerprint({"a": 1})) == 16
