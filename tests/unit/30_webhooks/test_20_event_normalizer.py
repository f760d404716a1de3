# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Unit tests for provider event normalization."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from delivery_adapters.models import EventStatus
from delivery_adapters.webhooks.normalize import EventNormalizer, get_path, parse_timestamp


@pytest.fixture
def normalizer():
    return EventNormalizer(
        {"delivered": EventStatus.DELIVERED, "send": None},
        keywords=(("open", EventStatus.OPENED), ("boun", EventStatus.HARD_REJECT)),
        id_paths=("msg._id", "_id"),
        timestamp_paths=("ts",),
    )


class TestNormalize:
    def test_exact_mapping(self, normalizer):
        event = normalizer.normalize("delivered", {"_id": "abc", "ts": 1_700_000_000})

        assert event.status is EventStatus.DELIVERED
        assert event.message_id == "abc"
        assert event.timestamp == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
        assert event.event == "delivered"

    def test_dropped_event(self, normalizer):
        assert normalizer.normalize("send", {"_id": "abc"}) is None

    def test_unknown_event(self, normalizer):
        assert normalizer.normalize("mystery", {"_id": "abc"}) is None
        assert normalizer.normalize(None, {"_id": "abc"}) is None

    def test_keyword_fallback(self, normalizer):
        assert normalizer.normalize("Email Opened", {"_id": "a"}).status is EventStatus.OPENED
        assert normalizer.normalize("hard_bounce", {"_id": "a"}).status is EventStatus.HARD_REJECT

    def test_id_path_order(self, normalizer):
        event = normalizer.normalize("delivered", {"msg": {"_id": "inner"}, "_id": "outer"})
        assert event.message_id == "inner"

    def test_missing_id(self, normalizer):
        assert normalizer.normalize("delivered", {"ts": 1}) is None

    def test_numeric_id(self, normalizer):
        assert normalizer.normalize("delivered", {"_id": 42}).message_id == "42"

    def test_deterministic(self, normalizer):
        raw = {"_id": "abc", "ts": 1_700_000_000}
        assert normalizer.normalize("delivered", raw) == normalizer.normalize("delivered", raw)


class TestParseTimestamp:
    EXPECTED = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_seconds(self):
        assert parse_timestamp(1_700_000_000) == self.EXPECTED

    def test_milliseconds(self):
        assert parse_timestamp(1_700_000_000_000) == self.EXPECTED

    def test_numeric_string(self):
        assert parse_timestamp("1700000000") == self.EXPECTED

    def test_iso_zulu(self):
        assert parse_timestamp("2023-11-14T22:13:20Z") == self.EXPECTED

    @pytest.mark.parametrize("value", [None, "", "not a date", True, {"x": 1}])
    def test_unparseable(self, value):
        assert parse_timestamp(value) is None


def test_get_path():
    data = {"a": {"b": {"c": 1}}}
    assert get_path(data, "a.b.c") == 1
    assert get_path(data, "a.x") is None
    assert get_path("text", "a") is None
