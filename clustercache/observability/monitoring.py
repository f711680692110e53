"""
clustercache — Observability Monitoring

In-memory metrics collection plus structured JSON logging. Metrics can also be
pushed to a statsd server through a DogStatsd exporter.
An ObservabilityAdapter is created by the caller and passed explicitly to every
component; nothing here is a process-wide singleton.
"""

import contextvars
import json
import logging
import time
from collections import defaultdict
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from datadog.dogstatsd import DogStatsd

# Trace ID context variable, one per logical request
_trace_id_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar("trace_id", default=None)

DEFAULT_STATSD_PORT = 8125

TagKey = tuple[tuple[str, str], ...]


def _tag_key(tags: dict[str, str] | None) -> TagKey:
    return tuple(sorted((tags or {}).items()))


def _statsd_tags(tags: dict[str, str] | None) -> list[str] | None:
    if not tags:
        return None
    return [f"{k}:{v}" for k, v in sorted(tags.items())]


def create_statsd_client(address: str, prefix: str = "clustercache") -> DogStatsd:
    """
    Build a statsd exporter for a "host[:port]" address.

    Raises:
        ValueError: If the port is not a number
    """
    host, sep, port = address.rpartition(":")
    if not sep:
        host, port = address, str(DEFAULT_STATSD_PORT)
    return DogStatsd(host=host, port=int(port), namespace=prefix, disable_telemetry=True)


@dataclass
class HistogramSummary:
    """Running summary of a histogram metric."""

    count: int = 0
    total: float = 0.0
    minimum: float = float("inf")
    maximum: float = float("-inf")

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.minimum = min(self.minimum, value)
        self.maximum = max(self.maximum, value)

    def to_dict(self) -> dict[str, float]:
        return {
            "count": self.count,
            "avg": round(self.total / self.count, 3) if self.count else 0.0,
            "min": self.minimum if self.count else 0.0,
            "max": self.maximum if self.count else 0.0,
        }


@dataclass
class MetricsStore:
    """Counters, gauges and histograms keyed by metric name and tags."""

    counters: dict[str, dict[TagKey, float]] = field(default_factory=lambda: defaultdict(dict))
    gauges: dict[str, dict[TagKey, float]] = field(default_factory=lambda: defaultdict(dict))
    histograms: dict[str, dict[TagKey, HistogramSummary]] = field(default_factory=lambda: defaultdict(dict))

    def clear(self) -> None:
        self.counters.clear()
        self.gauges.clear()
        self.histograms.clear()


class ObservabilityAdapter:
    """
    Observability sink shared by the registry, pool, router and client.

    Provides:
    - Metrics (counters, gauges, histograms) kept in memory, and sent to
      statsd when an exporter is given
    - Named events logged with structured payloads
    - Span timing via trace()
    """

    def __init__(
        self,
        enable_metrics: bool = True,
        logger: logging.Logger | None = None,
        exporter: DogStatsd | None = None,
    ):
        """
        Initialize observability adapter.

        Args:
            enable_metrics: Enable metrics collection
            logger: Logger used for events (default: "clustercache.events")
            exporter: statsd client receiving every metric (see create_statsd_client)
        """
        self.enable_metrics = enable_metrics
        self.logger = logger or logging.getLogger("clustercache.events")
        self._metrics = MetricsStore()
        self.exporter = exporter

    def increment(
        self,
        metric: str,
        value: float = 1.0,
        tags: dict[str, str] | None = None,
    ) -> None:
        """
        Increment a counter metric.

        Args:
            metric: Metric name (e.g., "cache.hits")
            value: Value to increment by
            tags: Optional metric tags/labels
        """
        if not self.enable_metrics:
            return

        series = self._metrics.counters[metric]
        key = _tag_key(tags)
        series[key] = series.get(key, 0.0) + value
        if self.exporter is not None:
            self.exporter.increment(metric, value, tags=_statsd_tags(tags))

    def gauge(
        self,
        metric: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Set a gauge metric."""
        if not self.enable_metrics:
            return

        self._metrics.gauges[metric][_tag_key(tags)] = value
        if self.exporter is not None:
            self.exporter.gauge(metric, value, tags=_statsd_tags(tags))

    def histogram(
        self,
        metric: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Record a histogram metric (latencies, sizes)."""
        if not self.enable_metrics:
            return

        series = self._metrics.histograms[metric]
        key = _tag_key(tags)
        if key not in series:
            series[key] = HistogramSummary()
        series[key].observe(value)
        if self.exporter is not None:
            self.exporter.histogram(metric, value, tags=_statsd_tags(tags))

    def event(self, name: str, payload: dict[str, Any], level: int = logging.INFO) -> None:
        """
        Record an event.

        Events are logged and counted under "events.<name>".

        Args:
            name: Event name (e.g., "node.added")
            payload: Event data
            level: Log level for the event
        """
        self.increment(f"events.{name}")
        self.logger.log(
            level,
            f"Event: {name}",
            extra={
                "event_name": name,
                "event_payload": payload,
                "trace_id": self.get_trace_id(),
            },
        )

    @contextmanager
    def trace(self, span_name: str, tags: dict[str, str] | None = None) -> Generator[None, None, None]:
        """
        Context manager timing a span.

        Example:
            with observability.trace("cache.get"):
                value = await client.get(key)
        """
        start_time = time.perf_counter()
        tags = tags or {}

        try:
            yield
        except Exception as e:
            self.logger.debug(
                f"Span error: {span_name}",
                extra={"span_name": span_name, "trace_id": self.get_trace_id(), "error": str(e), "tags": tags},
            )
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.histogram("span.duration_ms", duration_ms, tags={"span_name": span_name, **tags})

    def get_trace_id(self) -> str | None:
        """Get current trace ID from context."""
        return _trace_id_ctx.get()

    def generate_trace_id(self) -> str:
        """Generate a new trace ID and set it in context."""
        trace_id = uuid4().hex
        _trace_id_ctx.set(trace_id)
        return trace_id

    def get_counter(self, metric: str, tags: dict[str, str] | None = None) -> float:
        """Return a counter value; without tags, the sum across all tag sets."""
        series = self._metrics.counters.get(metric, {})
        if tags is None:
            return sum(series.values())
        return series.get(_tag_key(tags), 0.0)

    def get_metrics(self) -> dict[str, Any]:
        """Snapshot all metrics as plain dictionaries."""

        def render(series: dict[TagKey, Any], convert: Any) -> list[dict[str, Any]]:
            return [{"tags": dict(key), "value": convert(value)} for key, value in series.items()]

        return {
            "counters": {name: render(series, float) for name, series in self._metrics.counters.items()},
            "gauges": {name: render(series, float) for name, series in self._metrics.gauges.items()},
            "histograms": {
                name: render(series, HistogramSummary.to_dict) for name, series in self._metrics.histograms.items()
            },
        }

    def clear_metrics(self) -> None:
        """Clear all metrics (testing/reset)."""
        self._metrics.clear()


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    _RESERVED = frozenset(
        (
            "args",
            "msg",
            "levelname",
            "levelno",
            "pathname",
            "filename",
            "module",
            "exc_info",
            "exc_text",
            "stack_info",
            "lineno",
            "funcName",
            "created",
            "msecs",
            "relativeCreated",
            "thread",
            "threadName",
            "processName",
            "process",
            "taskName",
            "name",
            "message",
        )
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        trace_id = _trace_id_ctx.get()
        if trace_id:
            log_data["trace_id"] = trace_id

        for key, value in record.__dict__.items():
            if key not in log_data and not key.startswith("_") and key not in self._RESERVED:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", pretty: bool = False) -> logging.Logger:
    """
    Configure the "clustercache" logger hierarchy.

    Args:
        level: Log level name
        pretty: Use a human-readable formatter instead of JSON

    Returns:
        The configured package logger
    """
    logger = logging.getLogger("clustercache")
    logger.handlers.clear()

    handler = logging.StreamHandler()
    if pretty:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s"))
    else:
        handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.setLevel(getattr(level, "value", level))

    return logger
