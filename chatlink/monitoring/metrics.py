"""Prometheus metrics for the linking protocol.

Counters are created once per process through ``get_registry()``; the
connector's hosting app exposes them with prometheus_client's usual exporters.
"""
from __future__ import annotations

from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter


class MetricsRegistry:
    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.links_completed = Counter(
            "chatlink_links_completed_total", "Chat principals successfully linked to a vendor user", registry=registry
        )
        self.links_removed = Counter(
            "chatlink_links_removed_total", "Links removed by unlink or failed refresh", registry=registry
        )
        self.authorization_denied = Counter(
            "chatlink_authorization_denied_total", "Denied capability checks", ["reason"], registry=registry
        )
        self.callback_failures = Counter(
            "chatlink_callback_failures_total", "OAuth callbacks rejected", ["reason"], registry=registry
        )
        self.token_refreshes = Counter(
            "chatlink_token_refreshes_total", "Vendor token refresh attempts", ["outcome"], registry=registry
        )
        self.provision_failures = Counter(
            "chatlink_provision_failures_total", "Failed per-principal artifact provisioning", registry=registry
        )

    def denied(self, reason: str) -> None:
        self.authorization_denied.labels(reason=reason).inc()

    def callback_failed(self, reason: str) -> None:
        self.callback_failures.labels(reason=reason).inc()

    def refreshed(self, outcome: str) -> None:
        self.token_refreshes.labels(outcome=outcome).inc()


_registry: Optional[MetricsRegistry] = None


def get_registry() -> MetricsRegistry:
    global _registry
    if _registry is None:
        _registry = MetricsRegistry()
    return _registry


__all__ = ["get_registry", "MetricsRegistry"]
