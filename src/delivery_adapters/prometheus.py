# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for the delivery adapters.

All metrics use the ``dla_`` prefix (delivery-adapters) and are labeled by
the adapter registry key.

Metrics exposed:
    - ``dla_sent_total``: Counter of messages accepted by a provider.
    - ``dla_errors_total``: Counter of failed sends, by ``kind``
      (``temporary``, ``permanent``, ``local``).
    - ``dla_retries_total``: Counter of request retries issued by the engine.
    - ``dla_webhook_events_total``: Counter of normalized webhook events.
    - ``dla_webhook_rejected_total``: Counter of webhooks failing verification.
"""

from prometheus_client import CollectorRegistry, Counter, generate_latest


class AdapterMetrics:
    """Prometheus metrics collector for adapter operations.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        sent: Counter of successful sends.
        errors: Counter of failed sends.
        retries: Counter of engine retries.
        webhook_events: Counter of canonical webhook events produced.
        webhook_rejected: Counter of webhooks refused by verification.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry.

        Args:
            registry: Optional Prometheus CollectorRegistry. A private registry
                is created when omitted so that several instances can coexist.
        """
        self.registry = registry or CollectorRegistry()
        self.sent = Counter(
            "dla_sent_total",
            "Total messages accepted by providers",
            ["adapter"],
            registry=self.registry,
        )
        self.errors = Counter(
            "dla_errors_total",
            "Total failed sends",
            ["adapter", "kind"],
            registry=self.registry,
        )
        self.retries = Counter(
            "dla_retries_total",
            "Total request retries",
            ["adapter"],
            registry=self.registry,
        )
        self.webhook_events = Counter(
            "dla_webhook_events_total",
            "Total normalized webhook events",
            ["adapter", "status"],
            registry=self.registry,
        )
        self.webhook_rejected = Counter(
            "dla_webhook_rejected_total",
            "Total webhooks rejected by signature verification",
            ["adapter"],
            registry=self.registry,
        )

    def inc_sent(self, adapter: str) -> None:
        self.sent.labels(adapter=adapter or "default").inc()

    def inc_error(self, adapter: str, kind: str) -> None:
        """Increment the error counter.

        Args:
            adapter: Adapter registry key.
            kind: ``temporary``, ``permanent`` or ``local``.
        """
        self.errors.labels(adapter=adapter or "default", kind=kind).inc()

    def inc_retry(self, adapter: str) -> None:
        self.retries.labels(adapter=adapter or "default").inc()

    def inc_webhook_event(self, adapter: str, status: str) -> None:
        self.webhook_events.labels(adapter=adapter or "default", status=status).inc()

    def inc_webhook_rejected(self, adapter: str) -> None:
        self.webhook_rejected.labels(adapter=adapter or "default").inc()

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
