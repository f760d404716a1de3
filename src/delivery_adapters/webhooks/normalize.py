# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Mapping of provider event vocabularies onto :class:`EventStatus`.

An :class:`EventNormalizer` is pure configuration: an exact table, an
ordered keyword fallback and the dotted paths where the message id and the
timestamp live. The same input always yields the same output.

Example:
    Resend-style normalizer::

        normalizer = EventNormalizer(
            {"email.delivered": EventStatus.DELIVERED, "email.sent": None},
            id_paths=("data.email_id",),
        )
        event = normalizer.normalize("email.delivered", payload)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from ..models import EventStatus, WebhookEvent


def get_path(data: Any, path: str) -> Any:
    """Resolve a dotted path such as ``"msg._id"`` inside nested mappings."""
    current = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def parse_timestamp(value: Any) -> datetime | None:
    """Parse epoch seconds (or milliseconds) and ISO-8601 strings."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    return None


class EventNormalizer:
    """Translate raw provider events into canonical :class:`WebhookEvent` objects.

    Args:
        mapping: Exact event-type table; a ``None`` value drops the event.
        keywords: Ordered ``(substring, status)`` fallbacks tried when the
            type is not in ``mapping``.
        id_paths: Dotted paths tried in order for the provider message id.
        timestamp_paths: Dotted paths tried in order for the event time.
    """

    def __init__(
        self,
        mapping: Mapping[str, EventStatus | None],
        *,
        keywords: Sequence[tuple[str, EventStatus]] = (),
        id_paths: Iterable[str] = ("message_id",),
        timestamp_paths: Iterable[str] = (),
    ):
        self.mapping = dict(mapping)
        self.keywords = tuple(keywords)
        self.id_paths = tuple(id_paths)
        self.timestamp_paths = tuple(timestamp_paths)

    def status_for(self, event_type: str | None) -> EventStatus | None:
        if not event_type or not isinstance(event_type, str):
            return None
        if event_type in self.mapping:
            return self.mapping[event_type]
        lowered = event_type.lower()
        for needle, status in self.keywords:
            if needle in lowered:
                return status
        return None

    def message_id(self, raw_event: Any) -> str | None:
        for path in self.id_paths:
            value = get_path(raw_event, path)
            if value not in (None, ""):
                return str(value)
        return None

    def timestamp(self, raw_event: Any) -> datetime | None:
        for path in self.timestamp_paths:
            parsed = parse_timestamp(get_path(raw_event, path))
            if parsed is not None:
                return parsed
        return None

    def normalize(self, event_type: str | None, raw_event: Any) -> WebhookEvent | None:
        """Return the canonical event, or None when it is dropped or lacks an id."""
        status = self.status_for(event_type)
        if status is None:
            return None
        message_id = self.message_id(raw_event)
        if message_id is None:
            return None
        return WebhookEvent(
            status=status,
            message_id=message_id,
            timestamp=self.timestamp(raw_event),
            event=event_type,
        )
