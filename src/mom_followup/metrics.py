"""Gateway metrics: one event per generation request.

Label values are limited to the ``Provider`` values, the ``unsupported``
marker, a fixed status set, and the gateway's own error codes. The
caller-chosen model name is logged but never used as a Prometheus label.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional, Protocol

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server

from .models import Provider
from .retry import RetryState

UNSUPPORTED_PROVIDER = "unsupported"


def provider_label(value: Optional[str]) -> str:
    """Map a client-supplied provider name onto a bounded label value."""
    try:
        return Provider(value).value
    except ValueError:
        return UNSUPPORTED_PROVIDER


@dataclass(frozen=True)
class GenerationEvent:
    provider: str
    model: Optional[str]
    status: str
    duration_ms: float
    attempts: Optional[int] = None
    backoff_ms: float = 0.0
    retryable: Optional[bool] = None
    error_code: Optional[str] = None

    @classmethod
    def build(
        cls,
        *,
        provider: str,
        model: Optional[str],
        status: str,
        duration_ms: float,
        retry_state: Optional[RetryState] = None,
        retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> "GenerationEvent":
        """Fold the upstream retry bookkeeping into an event.

        ``retry_state`` is ``None`` when the request never reached a
        provider handler, e.g. validation or routing failed.
        """
        return cls(
            provider=provider,
            model=model,
            status=status,
            duration_ms=duration_ms,
            attempts=retry_state.attempts_made if retry_state is not None else None,
            backoff_ms=retry_state.waited * 1000 if retry_state is not None else 0.0,
            retryable=retryable,
            error_code=error_code,
        )


class MetricsCollector(Protocol):
    def record(self, event: GenerationEvent) -> None:
        """Persist or emit the metrics event."""


class LoggingMetricsCollector(MetricsCollector):
    """Default collector: one structured log line per event."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("mom_followup.metrics")

    def record(self, event: GenerationEvent) -> None:
        payload = asdict(event)
        payload["duration_ms"] = round(event.duration_ms, 3)
        self._logger.info("generation_metrics", extra={"metrics": payload})


class PrometheusMetricsCollector(MetricsCollector):
    def __init__(
        self,
        *,
        port: Optional[int] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self._registry = registry or CollectorRegistry()
        self._requests = Counter(
            "mom_generation_requests_total",
            "Generation requests handled by the gateway",
            ["provider", "status", "error_code"],
            registry=self._registry,
        )
        self._duration = Histogram(
            "mom_generation_duration_seconds",
            "Time from request receipt to result or error",
            ["provider", "status"],
            registry=self._registry,
        )
        self._attempts = Histogram(
            "mom_upstream_attempts",
            "Upstream attempts made per generation request",
            ["provider", "status"],
            registry=self._registry,
            buckets=(1, 2, 3, 4, 5, 10),
        )
        self._backoff = Counter(
            "mom_upstream_backoff_seconds_total",
            "Time spent waiting between upstream attempts",
            ["provider"],
            registry=self._registry,
        )
        if port is not None:
            start_http_server(port, registry=self._registry)

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record(self, event: GenerationEvent) -> None:
        provider = provider_label(event.provider)
        self._requests.labels(
            provider=provider,
            status=event.status,
            error_code=event.error_code or "none",
        ).inc()
        self._duration.labels(provider=provider, status=event.status).observe(
            max(event.duration_ms / 1000.0, 0.0)
        )
        if event.attempts is not None:
            self._attempts.labels(provider=provider, status=event.status).observe(event.attempts)
        if event.backoff_ms > 0:
            self._backoff.labels(provider=provider).inc(event.backoff_ms / 1000.0)


def create_metrics_collector(backend: str, port: Optional[int] = None) -> MetricsCollector:
    if backend == "prometheus":
        return PrometheusMetricsCollector(port=port)
    return LoggingMetricsCollector()
