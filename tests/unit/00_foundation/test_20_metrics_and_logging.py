# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Unit tests for Prometheus metrics and logger naming."""

from __future__ import annotations

from delivery_adapters.logger import get_logger
from delivery_adapters.prometheus import AdapterMetrics


def test_metrics_exposed():
    metrics = AdapterMetrics()
    metrics.inc_sent("resend")
    metrics.inc_error("resend", "temporary")
    metrics.inc_retry("resend")
    metrics.inc_webhook_event("resend", "DELIVERED")
    metrics.inc_webhook_rejected("resend")

    output = metrics.generate_latest()

    assert b"dla_sent_total" in output
    assert b"dla_errors_total" in output
    assert b"dla_retries_total" in output
    assert b"dla_webhook_events_total" in output
    assert b"dla_webhook_rejected_total" in output


def test_instances_are_isolated():
    """Each instance owns a private registry."""
    first = AdapterMetrics()
    second = AdapterMetrics()
    first.inc_sent("smtp")

    assert first.registry.get_sample_value("dla_sent_total", {"adapter": "smtp"}) == 1.0
    assert second.registry.get_sample_value("dla_sent_total", {"adapter": "smtp"}) is None


def test_error_kind_label():
    metrics = AdapterMetrics()
    metrics.inc_error("ses", "local")
    assert b'kind="local"' in metrics.generate_latest()


def test_logger_namespace():
    assert get_logger().name == "delivery_adapters"
    assert get_logger("ResendAdapter").name == "delivery_adapters.ResendAdapter"
