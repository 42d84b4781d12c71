# =============================================================================
# ISSUE TRIAGE MONITOR - METRIC EVENTS
# =============================================================================
"""
Metric Event Types

One immutable dataclass per metric category. Field values are validated
when the event is constructed, so anything that reaches the metrics
collector is well formed.

Categories:
    - auto_labeling: Labeling outcomes
    - api_usage: Ticketing API calls
    - performance: Operation timings and memory samples
    - error: Component errors
    - engagement: User interaction with issues and templates
    - system: Lifecycle and ad-hoc system measurements
"""

from __future__ import annotations

import math
import time
from dataclasses import asdict, dataclass, field
from dataclasses import fields as dataclass_fields
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple


class EventValidationError(ValueError):
    """Raised when a metric event carries malformed fields."""

    def __init__(self, category: str, message: str):
        super().__init__(f"Invalid {category} event: {message}")
        self.category = category


class MetricCategory(Enum):
    """Metric event categories."""
    AUTO_LABELING = "auto_labeling"
    API_USAGE = "api_usage"
    PERFORMANCE = "performance"
    ERROR = "error"
    ENGAGEMENT = "engagement"
    SYSTEM = "system"


class Granularity(Enum):
    """Time bucket sizes, in seconds."""
    MINUTE = 60
    HOUR = 3600
    DAY = 86400


def time_bucket(timestamp: float, granularity: Granularity) -> int:
    """Return the start (epoch seconds) of the bucket containing ``timestamp``."""
    size = granularity.value
    return int(timestamp // size) * size


SEVERITIES = ("info", "warning", "error", "critical")


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def _check_number(category: str, name: str, value: Any, minimum: float = None,
                  maximum: float = None, optional: bool = True) -> None:
    if value is None:
        if optional:
            return
        raise EventValidationError(category, f"{name} is required")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise EventValidationError(category, f"{name} must be a number")
    if math.isnan(value) or math.isinf(value):
        raise EventValidationError(category, f"{name} must be finite")
    if minimum is not None and value < minimum:
        raise EventValidationError(category, f"{name} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise EventValidationError(category, f"{name} must be <= {maximum}")


def _check_text(category: str, name: str, value: Any, optional: bool = False) -> None:
    if value is None and optional:
        return
    if not isinstance(value, str) or not value:
        raise EventValidationError(category, f"{name} must be a non-empty string")


# =============================================================================
# EVENTS
# =============================================================================


@dataclass(frozen=True)
class MetricEvent:
    """Base class for all metric events."""
    category: ClassVar[MetricCategory]
    bucket_granularity: ClassVar[Granularity] = Granularity.MINUTE

    def __post_init__(self) -> None:
        _check_number(self.category.value, "timestamp", self.timestamp,
                      minimum=0, optional=False)
        self.validate()

    def validate(self) -> None:
        """Category specific checks; raise EventValidationError."""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        return data


@dataclass(frozen=True)
class AutoLabelingEvent(MetricEvent):
    """Outcome of labeling one issue."""
    category: ClassVar[MetricCategory] = MetricCategory.AUTO_LABELING

    issue_id: Optional[int] = None
    accuracy: Optional[float] = None
    confidence: Optional[float] = None
    components_detected: Tuple[str, ...] = ()
    priority_detected: Optional[str] = None
    security_detected: bool = False
    processing_time_ms: Optional[float] = None
    labels_applied: Tuple[str, ...] = ()
    manual_override: bool = False
    timestamp: float = field(default_factory=time.time)

    def validate(self) -> None:
        name = self.category.value
        _check_number(name, "accuracy", self.accuracy, 0.0, 1.0)
        _check_number(name, "confidence", self.confidence, 0.0, 1.0)
        _check_number(name, "processing_time_ms", self.processing_time_ms, 0.0)


@dataclass(frozen=True)
class ApiUsageEvent(MetricEvent):
    """One call to the ticketing API."""
    category: ClassVar[MetricCategory] = MetricCategory.API_USAGE

    endpoint: str = ""
    method: str = "GET"
    status_code: Optional[int] = None
    response_time_ms: Optional[float] = None
    rate_limit_remaining: Optional[int] = None
    rate_limit_reset: Optional[float] = None
    success: bool = True
    error_type: Optional[str] = None
    retry_count: int = 0
    timestamp: float = field(default_factory=time.time)

    def validate(self) -> None:
        name = self.category.value
        _check_text(name, "endpoint", self.endpoint)
        _check_number(name, "status_code", self.status_code, 100, 599)
        _check_number(name, "response_time_ms", self.response_time_ms, 0.0)
        _check_number(name, "rate_limit_remaining", self.rate_limit_remaining, 0)
        _check_number(name, "retry_count", self.retry_count, 0, optional=False)


@dataclass(frozen=True)
class PerformanceEvent(MetricEvent):
    """Timing of one operation with a memory sample."""
    category: ClassVar[MetricCategory] = MetricCategory.PERFORMANCE

    operation: str = ""
    duration_ms: Optional[float] = None
    memory_bytes: Optional[int] = None
    concurrent_operations: int = 1
    success: bool = True
    error_type: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def validate(self) -> None:
        name = self.category.value
        _check_text(name, "operation", self.operation)
        _check_number(name, "duration_ms", self.duration_ms, 0.0)
        _check_number(name, "memory_bytes", self.memory_bytes, 0)
        _check_number(name, "concurrent_operations", self.concurrent_operations, 1,
                      optional=False)


@dataclass(frozen=True)
class ErrorEvent(MetricEvent):
    """An error raised inside one of the system's components."""
    category: ClassVar[MetricCategory] = MetricCategory.ERROR

    component: str = ""
    error_type: str = ""
    error_message: str = ""
    severity: str = "error"
    context: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    timestamp: float = field(default_factory=time.time)

    def validate(self) -> None:
        name = self.category.value
        _check_text(name, "component", self.component)
        _check_text(name, "error_type", self.error_type)
        if self.severity not in SEVERITIES:
            raise EventValidationError(
                name, f"severity must be one of {', '.join(SEVERITIES)}"
            )


@dataclass(frozen=True)
class EngagementEvent(MetricEvent):
    """User interaction with issues, templates or labels."""
    category: ClassVar[MetricCategory] = MetricCategory.ENGAGEMENT
    bucket_granularity: ClassVar[Granularity] = Granularity.HOUR

    type: str = ""
    user_id: Optional[str] = None
    repository: Optional[str] = None
    template: Optional[str] = None
    completed_fields: Tuple[str, ...] = ()
    time_to_complete_ms: Optional[float] = None
    satisfaction: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    def validate(self) -> None:
        name = self.category.value
        _check_text(name, "type", self.type)
        _check_number(name, "time_to_complete_ms", self.time_to_complete_ms, 0.0)
        _check_number(name, "satisfaction", self.satisfaction, 1, 5)


@dataclass(frozen=True)
class SystemEvent(MetricEvent):
    """Lifecycle or ad-hoc system measurement (startup, shutdown, ...)."""
    category: ClassVar[MetricCategory] = MetricCategory.SYSTEM

    metric: str = ""
    value: Any = None
    unit: Optional[str] = None
    tags: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)
    timestamp: float = field(default_factory=time.time)

    def validate(self) -> None:
        _check_text(self.category.value, "metric", self.metric)


EVENT_TYPES: Dict[MetricCategory, type] = {
    MetricCategory.AUTO_LABELING: AutoLabelingEvent,
    MetricCategory.API_USAGE: ApiUsageEvent,
    MetricCategory.PERFORMANCE: PerformanceEvent,
    MetricCategory.ERROR: ErrorEvent,
    MetricCategory.ENGAGEMENT: EngagementEvent,
    MetricCategory.SYSTEM: SystemEvent,
}


def build_event(category: MetricCategory, **fields: Any) -> MetricEvent:
    """
    Construct the event class for ``category`` from keyword fields.

    Sequences for tuple fields are converted to tuples; unknown fields
    raise EventValidationError.
    """
    event_cls = EVENT_TYPES[category]
    known = {f.name for f in dataclass_fields(event_cls)}
    unknown = set(fields) - known
    if unknown:
        raise EventValidationError(
            category.value, f"unknown fields: {', '.join(sorted(unknown))}"
        )
    for name in ("components_detected", "labels_applied", "completed_fields"):
        if name in fields and fields[name] is not None:
            fields[name] = tuple(fields[name])
    try:
        return event_cls(**fields)
    except TypeError as e:
        raise EventValidationError(category.value, str(e)) from e


__all__ = [
    "EventValidationError",
    "MetricCategory",
    "Granularity",
    "time_bucket",
    "MetricEvent",
    "AutoLabelingEvent",
    "ApiUsageEvent",
    "PerformanceEvent",
    "ErrorEvent",
    "EngagementEvent",
    "SystemEvent",
    "EVENT_TYPES",
    "build_event",
]
