# SPDX-License-Identifier: MIT
"""Prometheus metrics for configuration retrieval."""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from prometheus_client import Counter, Gauge, Histogram, generate_latest, start_http_server


class RetrieverMetricsCollector:
    """Collectors describing poll cycles, store failures and publications."""

    def __init__(self, registry: Optional[Any] = None):
        """Initialize the collectors.

        Args:
            registry: Prometheus registry (uses the default registry if None)
        """
        self.registry = registry
        kwargs: Dict[str, Any] = {}
        if registry is not None:
            kwargs["registry"] = registry

        self.poll_total = Counter(
            "configpulse_poll_total",
            "Total number of poll cycles",
            ["status"],
            **kwargs,
        )
        self.poll_duration = Histogram(
            "configpulse_poll_duration_seconds",
            "Time spent fetching and merging all stores in a poll cycle",
            **kwargs,
        )
        self.store_fetch_errors = Counter(
            "configpulse_store_fetch_errors_total",
            "Store fetch failures by store type and error kind",
            ["store_type", "kind"],
            **kwargs,
        )
        self.snapshot_publications = Counter(
            "configpulse_snapshot_publications_total",
            "Number of changed snapshots published to subscribers",
            **kwargs,
        )
        self.snapshot_keys = Gauge(
            "configpulse_snapshot_keys",
            "Number of top-level keys in the current snapshot",
            **kwargs,
        )

    @contextmanager
    def measure_poll(self) -> Iterator[Dict[str, Any]]:
        """Time a poll cycle and count it under its final status.

        The status defaults to ``"success"``, becomes ``"error"`` when the block
        raises (``"cancelled"`` on cancellation), and a successful block may
        override it by setting ``ctx["status"]``.
        """
        start_time = time.perf_counter()
        ctx: Dict[str, Any] = {}
        status = "success"
        try:
            yield ctx
        except Exception:
            status = "error"
            raise
        except BaseException:
            status = "cancelled"
            raise
        finally:
            self.poll_duration.observe(time.perf_counter() - start_time)
            if status == "success" and ctx.get("status"):
                status = str(ctx["status"])
            self.poll_total.labels(status=status).inc()

    def record_store_error(self, store_type: str, kind: str) -> None:
        self.store_fetch_errors.labels(store_type=store_type, kind=kind).inc()

    def record_publication(self, key_count: int) -> None:
        self.snapshot_publications.inc()
        self.snapshot_keys.set(key_count)

    def render_prometheus(self) -> bytes:
        """Return the exposition text for the bound registry."""

        if self.registry is None:
            return generate_latest()
        return generate_latest(self.registry)


_collector: Optional[RetrieverMetricsCollector] = None


def get_metrics_collector(registry: Optional[Any] = None) -> RetrieverMetricsCollector:
    """Return the process-wide collector, creating it on first use.

    Passing *registry* always builds a fresh collector bound to it, which is
    what tests use to keep counters isolated.
    """
    global _collector
    if registry is not None:
        return RetrieverMetricsCollector(registry)
    if _collector is None:
        _collector = RetrieverMetricsCollector()
    return _collector


def start_metrics_server(port: int = 8000, addr: str = "") -> None:
    """Start the Prometheus metrics HTTP server.

    Args:
        port: Port to listen on
        addr: Address to bind to (empty string for all interfaces)
    """
    start_http_server(port, addr)


__all__ = [
    "RetrieverMetricsCollector",
    "get_metrics_collector",
    "start_metrics_server",
]
