"""Unit tests for metrics collectors."""

from prometheus_client import CollectorRegistry

from mom_followup.metrics import (
    GenerationEvent,
    LoggingMetricsCollector,
    PrometheusMetricsCollector,
    create_metrics_collector,
    provider_label,
)
from mom_followup.retry import RetryState


def test_logging_metrics_collector_logs():
    logs = {}

    class _Logger:
        def info(self, name, extra=None):
            logs["name"] = name
            logs["extra"] = extra

    collector = LoggingMetricsCollector(logger=_Logger())
    collector.record(
        GenerationEvent(
            provider="gemini",
            model="gemini-2.0-flash-exp",
            status="success",
            duration_ms=12.5,
            attempts=1,
        )
    )

    assert logs["name"] == "generation_metrics"
    assert logs["extra"]["metrics"]["status"] == "success"
    assert logs["extra"]["metrics"]["model"] == "gemini-2.0-flash-exp"
    assert logs["extra"]["metrics"]["backoff_ms"] == 0.0


def test_event_build_folds_retry_state():
    state = RetryState(delay=4.0, attempt=2, waits=[1.0, 2.0])

    event = GenerationEvent.build(
        provider="gemini",
        model="gemini-1.5-pro",
        status="success",
        duration_ms=3100.0,
        retry_state=state,
    )

    assert event.attempts == 3
    assert event.backoff_ms == 3000.0


def test_event_build_without_upstream_call():
    event = GenerationEvent.build(
        provider="unsupported",
        model=None,
        status="error",
        duration_ms=0.4,
        error_code="unsupported_provider",
    )

    assert event.attempts is None
    assert event.backoff_ms == 0.0


def test_provider_label_is_bounded():
    assert provider_label("gemini") == "gemini"
    assert provider_label("openrouter") == "openrouter"
    assert provider_label("anything-else") == "unsupported"
    assert provider_label(None) == "unsupported"


def test_prometheus_metrics_collector_records_values():
    registry = CollectorRegistry()
    collector = PrometheusMetricsCollector(registry=registry)

    collector.record(
        GenerationEvent(
            provider="gemini",
            model="gemini-2.0-flash-exp",
            status="success",
            duration_ms=100.0,
            attempts=1,
        )
    )
    collector.record(
        GenerationEvent(
            provider="openrouter",
            model="openai/gpt-4o",
            status="error",
            duration_ms=200.0,
            attempts=5,
            backoff_ms=15000.0,
            retryable=True,
            error_code="retries_exhausted",
        )
    )

    assert registry.get_sample_value(
        "mom_generation_requests_total",
        labels={"provider": "gemini", "status": "success", "error_code": "none"},
    ) == 1.0
    assert registry.get_sample_value(
        "mom_generation_requests_total",
        labels={"provider": "openrouter", "status": "error", "error_code": "retries_exhausted"},
    ) == 1.0
    assert registry.get_sample_value(
        "mom_generation_duration_seconds_sum",
        labels={"provider": "gemini", "status": "success"},
    ) == 0.1
    assert registry.get_sample_value(
        "mom_upstream_attempts_sum",
        labels={"provider": "openrouter", "status": "error"},
    ) == 5.0
    assert registry.get_sample_value(
        "mom_upstream_backoff_seconds_total",
        labels={"provider": "openrouter"},
    ) == 15.0
    assert registry.get_sample_value(
        "mom_upstream_backoff_seconds_total",
        labels={"provider": "gemini"},
    ) is None


def test_prometheus_collector_never_labels_raw_provider_names():
    registry = CollectorRegistry()
    collector = PrometheusMetricsCollector(registry=registry)

    for name in ("mistral-0", "mistral-1"):
        collector.record(GenerationEvent(provider=name, model=None, status="error", duration_ms=1.0))

    assert registry.get_sample_value(
        "mom_generation_requests_total",
        labels={"provider": "unsupported", "status": "error", "error_code": "none"},
    ) == 2.0


def test_create_metrics_collector_selects_backend():
    assert isinstance(create_metrics_collector("logging"), LoggingMetricsCollector)
    assert isinstance(create_metrics_collector("prometheus"), PrometheusMetricsCollector)
