# =============================================================================
# ISSUE TRIAGE MONITOR - METRICS COLLECTION
# =============================================================================
"""
Metrics Collection Module

Records typed metric events into time-bucketed in-memory stores and
answers aggregate queries over arbitrary time ranges. Every recorded
event is also mirrored into a Prometheus registry for scraping.

Metric Categories:
    - Auto-labeling: accuracy, confidence, processing time, overrides
    - API usage: requests, success rate, latency, rate limit headroom
    - Performance: operation durations, throughput, memory
    - Errors: error rate, severity and component breakdowns
    - Engagement: issue/template interactions
    - System: lifecycle events and ad-hoc measurements

Maintenance (run periodically by the monitoring service):
    - Hourly and daily rollups recomputed from raw buckets
    - Raw events and rollups evicted past the retention horizon
"""

from __future__ import annotations

import csv
import io
import json
import logging
import math
import threading
import time
from collections import Counter as TallyCounter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import psutil
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from monitoring.events import (
    EVENT_TYPES,
    EventValidationError,
    Granularity,
    MetricCategory,
    MetricEvent,
    build_event,
    time_bucket,
)

logger = logging.getLogger(__name__)


DEFAULT_RETENTION_DAYS = 30
DEFAULT_AGGREGATION_INTERVAL = 300  # seconds
DEFAULT_QUERY_WINDOW = 24 * 3600  # seconds


# =============================================================================
# HELPERS
# =============================================================================


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def _percentile(values: List[float], pct: float) -> Optional[float]:
    """Nearest-rank percentile."""
    if not values:
        return None
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


def _minutes(start: float, end: float) -> float:
    return (end - start) / 60


def _process_memory() -> Optional[int]:
    try:
        return psutil.Process().memory_info().rss
    except psutil.Error as e:
        logger.debug(f"Could not sample process memory: {e}")
        return None


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


# =============================================================================
# SUMMARIES
# =============================================================================


@dataclass(frozen=True)
class TimeRange:
    """Inclusive query range in epoch seconds."""
    start: float
    end: float

    @classmethod
    def resolve(
        cls,
        start: Optional[float],
        end: Optional[float],
        now: float,
        window: float = DEFAULT_QUERY_WINDOW,
    ) -> "TimeRange":
        end = now if end is None else end
        start = end - window if start is None else start
        return cls(start, end)

    def to_dict(self) -> Dict[str, Any]:
        return {"start": _iso(self.start), "end": _iso(self.end)}


class _Summary:
    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["time_range"] = self.time_range.to_dict()
        return data


@dataclass
class AutoLabelingSummary(_Summary):
    time_range: TimeRange
    total_events: int = 0
    average_accuracy: Optional[float] = None
    average_confidence: Optional[float] = None
    average_processing_time_ms: Optional[float] = None
    component_detection_rate: Optional[float] = None
    security_detection_rate: Optional[float] = None
    manual_override_rate: Optional[float] = None


@dataclass
class ApiUsageSummary(_Summary):
    time_range: TimeRange
    total_requests: int = 0
    success_rate: Optional[float] = None
    average_response_time_ms: Optional[float] = None
    min_rate_limit_remaining: Optional[int] = None
    error_breakdown: Dict[str, int] = field(default_factory=dict)


@dataclass
class PerformanceSummary(_Summary):
    time_range: TimeRange
    total_operations: int = 0
    average_duration_ms: Optional[float] = None
    operation_breakdown: Dict[str, Dict[str, float]] = field(default_factory=dict)
    memory_stats: Optional[Dict[str, float]] = None
    throughput_per_minute: Optional[float] = None


@dataclass
class ErrorSummary(_Summary):
    time_range: TimeRange
    total_errors: int = 0
    error_rate_per_minute: Optional[float] = None
    severity_breakdown: Dict[str, int] = field(default_factory=dict)
    component_breakdown: Dict[str, int] = field(default_factory=dict)
    top_errors: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class EngagementSummary(_Summary):
    time_range: TimeRange
    total_events: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    unique_users: Optional[int] = None
    average_satisfaction: Optional[float] = None
    average_time_to_complete_ms: Optional[float] = None


@dataclass
class SystemSummary(_Summary):
    time_range: TimeRange
    total_events: int = 0
    by_metric: Dict[str, int] = field(default_factory=dict)
    latest: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MetricsSnapshot:
    """Summaries of the alert-relevant categories over one range."""
    time_range: TimeRange
    auto_labeling: AutoLabelingSummary
    api_usage: ApiUsageSummary
    performance: PerformanceSummary
    errors: ErrorSummary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time_range": self.time_range.to_dict(),
            "auto_labeling": self.auto_labeling.to_dict(),
            "api_usage": self.api_usage.to_dict(),
            "performance": self.performance.to_dict(),
            "error": self.errors.to_dict(),
        }


@dataclass
class Rollup:
    """Aggregate of one hour or day, recomputed from raw buckets."""
    granularity: Granularity
    bucket_start: int
    computed_at: float
    summary: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "granularity": self.granularity.name.lower(),
            "bucket_start": _iso(self.bucket_start),
            "computed_at": _iso(self.computed_at),
            "summary": self.summary,
        }


# =============================================================================
# SUMMARIZERS
# =============================================================================


def summarize_auto_labeling(events: List[MetricEvent], rng: TimeRange) -> AutoLabelingSummary:
    if not events:
        return AutoLabelingSummary(rng)
    total = len(events)
    return AutoLabelingSummary(
        time_range=rng,
        total_events=total,
        average_accuracy=_mean([e.accuracy for e in events if e.accuracy is not None]),
        average_confidence=_mean([e.confidence for e in events if e.confidence is not None]),
        average_processing_time_ms=_mean(
            [e.processing_time_ms for e in events if e.processing_time_ms is not None]
        ),
        component_detection_rate=sum(1 for e in events if e.components_detected) / total,
        security_detection_rate=sum(1 for e in events if e.security_detected) / total,
        manual_override_rate=sum(1 for e in events if e.manual_override) / total,
    )


def summarize_api_usage(events: List[MetricEvent], rng: TimeRange) -> ApiUsageSummary:
    if not events:
        return ApiUsageSummary(rng)
    remaining = [e.rate_limit_remaining for e in events if e.rate_limit_remaining is not None]
    breakdown = TallyCounter(e.error_type or "unknown" for e in events if not e.success)
    return ApiUsageSummary(
        time_range=rng,
        total_requests=len(events),
        success_rate=sum(1 for e in events if e.success) / len(events),
        average_response_time_ms=_mean(
            [e.response_time_ms for e in events if e.response_time_ms is not None]
        ),
        min_rate_limit_remaining=min(remaining) if remaining else None,
        error_breakdown=dict(breakdown),
    )


def summarize_performance(events: List[MetricEvent], rng: TimeRange) -> PerformanceSummary:
    if not events:
        return PerformanceSummary(rng)

    breakdown: Dict[str, Dict[str, float]] = {}
    for e in events:
        entry = breakdown.setdefault(e.operation, {"count": 0, "total_duration_ms": 0.0})
        entry["count"] += 1
        if e.duration_ms is not None:
            entry["total_duration_ms"] += e.duration_ms
    for entry in breakdown.values():
        entry["average_duration_ms"] = entry["total_duration_ms"] / entry["count"]

    memory = [e.memory_bytes for e in events if e.memory_bytes is not None]
    minutes = _minutes(rng.start, rng.end)

    return PerformanceSummary(
        time_range=rng,
        total_operations=len(events),
        average_duration_ms=_mean([e.duration_ms for e in events if e.duration_ms is not None]),
        operation_breakdown=breakdown,
        memory_stats={
            "average": _mean(memory),
            "min": min(memory),
            "max": max(memory),
            "p95": _percentile(memory, 95),
        } if memory else None,
        throughput_per_minute=len(events) / minutes if minutes > 0 else None,
    )


def summarize_errors(events: List[MetricEvent], rng: TimeRange) -> ErrorSummary:
    if not events:
        return ErrorSummary(rng)
    by_type = TallyCounter(e.error_type for e in events)
    return ErrorSummary(
        time_range=rng,
        total_errors=len(events),
        error_rate_per_minute=len(events) / max(1.0, _minutes(rng.start, rng.end)),
        severity_breakdown=dict(TallyCounter(e.severity for e in events)),
        component_breakdown=dict(TallyCounter(e.component for e in events)),
        top_errors=[
            {"error_type": error_type, "count": count}
            for error_type, count in by_type.most_common(10)
        ],
    )


def summarize_engagement(events: List[MetricEvent], rng: TimeRange) -> EngagementSummary:
    if not events:
        return EngagementSummary(rng)
    return EngagementSummary(
        time_range=rng,
        total_events=len(events),
        by_type=dict(TallyCounter(e.type for e in events)),
        unique_users=len({e.user_id for e in events if e.user_id is not None}),
        average_satisfaction=_mean([e.satisfaction for e in events if e.satisfaction is not None]),
        average_time_to_complete_ms=_mean(
            [e.time_to_complete_ms for e in events if e.time_to_complete_ms is not None]
        ),
    )


def summarize_system(events: List[MetricEvent], rng: TimeRange) -> SystemSummary:
    if not events:
        return SystemSummary(rng)
    latest: Dict[str, Any] = {}
    for e in events:  # sorted by timestamp, last write wins
        latest[e.metric] = e.value
    return SystemSummary(
        time_range=rng,
        total_events=len(events),
        by_metric=dict(TallyCounter(e.metric for e in events)),
        latest=latest,
    )


SUMMARIZERS: Dict[MetricCategory, Callable[[List[MetricEvent], TimeRange], Any]] = {
    MetricCategory.AUTO_LABELING: summarize_auto_labeling,
    MetricCategory.API_USAGE: summarize_api_usage,
    MetricCategory.PERFORMANCE: summarize_performance,
    MetricCategory.ERROR: summarize_errors,
    MetricCategory.ENGAGEMENT: summarize_engagement,
    MetricCategory.SYSTEM: summarize_system,
}


# =============================================================================
# EVENT STORE
# =============================================================================


class _EventStore:
    """Bucketed events of one category, guarded by its own lock."""

    def __init__(self, granularity: Granularity):
        self.granularity = granularity
        self._buckets: Dict[int, List[MetricEvent]] = {}
        self._lock = threading.Lock()

    def append(self, event: MetricEvent) -> None:
        key = time_bucket(event.timestamp, self.granularity)
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._buckets[key] = []
            bucket.append(event)

    def between(self, start: float, end: float) -> List[MetricEvent]:
        size = self.granularity.value
        with self._lock:
            candidates = [
                bucket for key, bucket in self._buckets.items()
                if key + size > start and key <= end
            ]
            events = [
                e for bucket in candidates for e in bucket
                if start <= e.timestamp <= end
            ]
        return sorted(events, key=lambda e: e.timestamp)

    def evict_before(self, cutoff: float) -> int:
        size = self.granularity.value
        removed = 0
        with self._lock:
            for key in list(self._buckets):
                if key >= cutoff:
                    continue
                bucket = self._buckets[key]
                if key + size <= cutoff:
                    removed += len(bucket)
                    del self._buckets[key]
                    continue
                kept = [e for e in bucket if e.timestamp >= cutoff]
                removed += len(bucket) - len(kept)
                if kept:
                    self._buckets[key] = kept
                else:
                    del self._buckets[key]
        return removed

    def count(self) -> int:
        with self._lock:
            return sum(len(b) for b in self._buckets.values())

    def oldest(self) -> Optional[float]:
        with self._lock:
            timestamps = [e.timestamp for b in self._buckets.values() for e in b]
        return min(timestamps) if timestamps else None

    def bucket_count(self) -> int:
        with self._lock:
            return len(self._buckets)


# =============================================================================
# METRICS COLLECTOR
# =============================================================================


class MetricsCollector:
    """
    Central metrics collector for the triage automation.

    Usage::

        metrics = MetricsCollector({"retention_days": 7})
        metrics.track_api_usage(endpoint="/repos/{repo}/issues", status_code=201,
                                response_time_ms=182.0)
        summary = metrics.query(MetricCategory.API_USAGE)
        summary.success_rate   # 1.0
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize stores and the Prometheus registry.

        Args:
            config: Optional ``metrics`` configuration section.
            clock: Wall clock returning epoch seconds.
        """
        self.config = config or {}
        self.retention_days = float(self.config.get("retention_days", DEFAULT_RETENTION_DAYS))
        self.aggregation_interval = float(
            self.config.get("aggregation_interval", DEFAULT_AGGREGATION_INTERVAL)
        )
        self.enable_performance_tracking = bool(
            self.config.get("enable_performance_tracking", True)
        )
        self._clock = clock
        self._start_time = time.monotonic()

        self._stores: Dict[MetricCategory, _EventStore] = {
            category: _EventStore(cls.bucket_granularity)
            for category, cls in EVENT_TYPES.items()
        }
        self._rollups: Dict[Tuple[Granularity, int], Rollup] = {}
        self._rollup_lock = threading.Lock()

        self.registry = CollectorRegistry()
        self._init_prometheus()

    # -----------------------------------------------------------------
    # Prometheus initialization
    # -----------------------------------------------------------------

    def _init_prometheus(self) -> None:
        self.events_total = Counter(
            "triage_metric_events_total",
            "Total metric events recorded",
            ["category"],
            registry=self.registry,
        )
        self.api_requests = Counter(
            "triage_api_requests_total",
            "Total ticketing API requests",
            ["endpoint", "method", "status"],
            registry=self.registry,
        )
        self.api_latency = Histogram(
            "triage_api_request_duration_seconds",
            "Ticketing API request duration",
            buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10],
            registry=self.registry,
        )
        self.api_rate_limit = Gauge(
            "triage_api_rate_limit_remaining",
            "Remaining ticketing API quota",
            registry=self.registry,
        )
        self.labeling_confidence = Histogram(
            "triage_labeling_confidence",
            "Confidence of automatic labeling",
            buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
            registry=self.registry,
        )
        self.operation_duration = Histogram(
            "triage_operation_duration_seconds",
            "Duration of tracked operations",
            ["operation"],
            buckets=[0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30],
            registry=self.registry,
        )
        self.errors_total = Counter(
            "triage_errors_total",
            "Total errors",
            ["component", "error_type"],
            registry=self.registry,
        )

    def _mirror(self, event: MetricEvent) -> None:
        self.events_total.labels(category=event.category.value).inc()
        category = event.category

        if category is MetricCategory.API_USAGE:
            self.api_requests.labels(
                endpoint=event.endpoint,
                method=event.method,
                status=str(event.status_code or "none"),
            ).inc()
            if event.response_time_ms is not None:
                self.api_latency.observe(event.response_time_ms / 1000)
            if event.rate_limit_remaining is not None:
                self.api_rate_limit.set(event.rate_limit_remaining)
        elif category is MetricCategory.AUTO_LABELING:
            if event.confidence is not None:
                self.labeling_confidence.observe(event.confidence)
        elif category is MetricCategory.PERFORMANCE:
            if event.duration_ms is not None:
                self.operation_duration.labels(operation=event.operation).observe(
                    event.duration_ms / 1000
                )
        elif category is MetricCategory.ERROR:
            self.errors_total.labels(
                component=event.component, error_type=event.error_type
            ).inc()

    # =====================================================================
    # RECORDING METHODS
    # =====================================================================

    def record(self, event: MetricEvent) -> bool:
        """
        Append an event to the bucket for its timestamp.

        Returns:
            True if stored; False if rejected or performance tracking is off.
        """
        if not isinstance(event, MetricEvent):
            logger.warning(
                f"Rejected metric record of type {type(event).__name__}: not a MetricEvent"
            )
            return False

        if event.category is MetricCategory.PERFORMANCE and not self.enable_performance_tracking:
            return False

        self._stores[event.category].append(event)
        self._mirror(event)
        return True

    def _track(self, category: MetricCategory, fields: Dict[str, Any]) -> Optional[MetricEvent]:
        fields.setdefault("timestamp", self._clock())
        try:
            event = build_event(category, **fields)
        except EventValidationError as e:
            logger.warning(f"Dropping {category.value} event: {e}")
            return None
        return event if self.record(event) else None

    def track_auto_labeling(self, **fields: Any) -> Optional[MetricEvent]:
        """Record a labeling outcome."""
        return self._track(MetricCategory.AUTO_LABELING, fields)

    def track_api_usage(self, **fields: Any) -> Optional[MetricEvent]:
        """Record a ticketing API call."""
        return self._track(MetricCategory.API_USAGE, fields)

    def track_performance(self, **fields: Any) -> Optional[MetricEvent]:
        """Record an operation timing; samples process memory when omitted."""
        if not self.enable_performance_tracking:
            return None
        if fields.get("memory_bytes") is None:
            fields["memory_bytes"] = _process_memory()
        return self._track(MetricCategory.PERFORMANCE, fields)

    def track_engagement(self, **fields: Any) -> Optional[MetricEvent]:
        """Record a user engagement event."""
        return self._track(MetricCategory.ENGAGEMENT, fields)

    def track_error(self, **fields: Any) -> Optional[MetricEvent]:
        """Record an error event."""
        return self._track(MetricCategory.ERROR, fields)

    def track_system(self, **fields: Any) -> Optional[MetricEvent]:
        """Record a system event."""
        return self._track(MetricCategory.SYSTEM, fields)

    # =====================================================================
    # QUERIES
    # =====================================================================

    def _range(self, start: Optional[float], end: Optional[float]) -> TimeRange:
        return TimeRange.resolve(start, end, self._clock())

    def query_events(
        self,
        category: Union[MetricCategory, str],
        start: Optional[float] = None,
        end: Optional[float] = None,
    ) -> List[MetricEvent]:
        """Return raw events of ``category`` in range, oldest first."""
        rng = self._range(start, end)
        return self._stores[MetricCategory(category)].between(rng.start, rng.end)

    def query(
        self,
        category: Union[MetricCategory, str],
        start: Optional[float] = None,
        end: Optional[float] = None,
    ):
        """
        Aggregate one category over a time range.

        Args:
            category: MetricCategory or its string value.
            start: Range start (epoch seconds); default ``end - 24h``.
            end: Range end (epoch seconds); default now.

        Returns:
            The category's summary dataclass. Derived fields are ``None``
            when the range holds no events.
        """
        category = MetricCategory(category)
        rng = self._range(start, end)
        events = self._stores[category].between(rng.start, rng.end)
        return SUMMARIZERS[category](events, rng)

    def get_snapshot(
        self, start: Optional[float] = None, end: Optional[float] = None
    ) -> MetricsSnapshot:
        """Summaries used for alert evaluation."""
        rng = self._range(start, end)
        return MetricsSnapshot(
            time_range=rng,
            auto_labeling=self.query(MetricCategory.AUTO_LABELING, rng.start, rng.end),
            api_usage=self.query(MetricCategory.API_USAGE, rng.start, rng.end),
            performance=self.query(MetricCategory.PERFORMANCE, rng.start, rng.end),
            errors=self.query(MetricCategory.ERROR, rng.start, rng.end),
        )

    def get_system_summary(
        self, start: Optional[float] = None, end: Optional[float] = None
    ) -> Dict[str, Any]:
        """Summaries of every category plus retention details."""
        rng = self._range(start, end)
        summary: Dict[str, Any] = {
            "time_range": rng.to_dict(),
            "uptime_seconds": round(self.get_uptime(), 1),
        }
        for category in MetricCategory:
            summary[category.value] = self.query(category, rng.start, rng.end).to_dict()
        summary["data_retention"] = {
            "total_events": self.get_total_event_count(),
            "oldest_event": _iso(self.get_oldest_event_timestamp()),
            "raw_buckets": sum(s.bucket_count() for s in self._stores.values()),
            "rollups": len(self._rollups),
        }
        return summary

    def get_total_event_count(self) -> int:
        return sum(store.count() for store in self._stores.values())

    def get_oldest_event_timestamp(self) -> Optional[float]:
        oldest = [s.oldest() for s in self._stores.values()]
        oldest = [t for t in oldest if t is not None]
        return min(oldest) if oldest else None

    def get_uptime(self) -> float:
        """Return seconds since this collector was created."""
        return time.monotonic() - self._start_time

    # =====================================================================
    # ROLLUPS AND RETENTION
    # =====================================================================

    def aggregate(self, now: Optional[float] = None) -> List[Rollup]:
        """
        Recompute hourly and daily rollups for the current and previous
        hour/day from raw buckets.
        """
        now = self._clock() if now is None else now
        computed = []
        for granularity in (Granularity.HOUR, Granularity.DAY):
            current = time_bucket(now, granularity)
            for bucket_start in (current - granularity.value, current):
                end = bucket_start + granularity.value - 0.001
                summary = {
                    category.value: self.query(category, bucket_start, end).to_dict()
                    for category in (
                        MetricCategory.AUTO_LABELING,
                        MetricCategory.API_USAGE,
                        MetricCategory.PERFORMANCE,
                        MetricCategory.ERROR,
                    )
                }
                rollup = Rollup(granularity, bucket_start, now, summary)
                with self._rollup_lock:
                    self._rollups[(granularity, bucket_start)] = rollup
                computed.append(rollup)
        return computed

    def get_rollups(
        self,
        granularity: Granularity,
        start: Optional[float] = None,
        end: Optional[float] = None,
    ) -> List[Rollup]:
        """Return stored rollups of one granularity whose bucket starts in range."""
        rng = self._range(start, end)
        with self._rollup_lock:
            rollups = [
                r for (g, bucket_start), r in self._rollups.items()
                if g is granularity and rng.start <= bucket_start <= rng.end
            ]
        return sorted(rollups, key=lambda r: r.bucket_start)

    def evict(self, now: Optional[float] = None) -> int:
        """
        Drop raw events and rollups older than the retention horizon.

        Returns:
            Number of raw events removed.
        """
        now = self._clock() if now is None else now
        cutoff = now - self.retention_days * 86400

        removed = sum(store.evict_before(cutoff) for store in self._stores.values())
        with self._rollup_lock:
            for key in [k for k in self._rollups if k[1] < cutoff]:
                del self._rollups[key]

        if removed:
            logger.debug(f"Evicted {removed} metric events older than {_iso(cutoff)}")
        return removed

    def run_maintenance(self, now: Optional[float] = None) -> Dict[str, int]:
        """Rollup then evict; called by the periodic maintenance task."""
        now = self._clock() if now is None else now
        rollups = self.aggregate(now)
        removed = self.evict(now)
        return {"rollups": len(rollups), "evicted": removed}

    # =====================================================================
    # EXPORT
    # =====================================================================

    def export_metrics(
        self,
        start: Optional[float] = None,
        end: Optional[float] = None,
        fmt: str = "json",
    ) -> Union[Dict[str, Any], str]:
        """
        Export raw events for external analysis.

        Args:
            fmt: ``"json"`` (dict) or ``"csv"`` (one row per event).
        """
        rng = self._range(start, end)
        events = {
            category.value: self._stores[category].between(rng.start, rng.end)
            for category in MetricCategory
        }

        if fmt == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer)
            writer.writerow(["category", "timestamp", "data"])
            for category, items in events.items():
                for e in items:
                    writer.writerow([category, _iso(e.timestamp),
                                     json.dumps(e.to_dict(), default=str)])
            return buffer.getvalue()

        if fmt != "json":
            raise ValueError(f"Unsupported export format: {fmt}")

        return {
            "metadata": {
                "exported_at": _iso(self._clock()),
                "time_range": rng.to_dict(),
                "format": fmt,
                "uptime_seconds": round(self.get_uptime(), 1),
            },
            **{category: [e.to_dict() for e in items] for category, items in events.items()},
        }

    def export_prometheus(self) -> bytes:
        """Prometheus text exposition of this collector's registry."""
        return generate_latest(self.registry)

    def start_http_server(self, port: int = 9100) -> None:
        """Start an HTTP server that exposes this collector's metrics."""
        start_http_server(port, registry=self.registry)
        logger.info(f"Metrics HTTP server started on port {port}")


# =============================================================================
# FACTORY
# =============================================================================


def create_metrics_collector(
    config: Optional[Dict[str, Any]] = None,
) -> MetricsCollector:
    """
    Create a MetricsCollector from configuration.

    Starts the Prometheus HTTP endpoint when ``metrics.port`` is set.
    """
    config = config or {}
    collector = MetricsCollector(config)

    port = config.get("port")
    if port:
        try:
            collector.start_http_server(int(port))
        except OSError as e:
            logger.warning(f"Could not start metrics server on port {port}: {e}")

    return collector


__all__ = [
    "MetricsCollector",
    "create_metrics_collector",
    "TimeRange",
    "MetricsSnapshot",
    "Rollup",
    "AutoLabelingSummary",
    "ApiUsageSummary",
    "PerformanceSummary",
    "ErrorSummary",
    "EngagementSummary",
    "SystemSummary",
]
