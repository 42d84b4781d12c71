# =============================================================================
# ISSUE TRIAGE MONITOR - ALERTING
# =============================================================================
"""
Alerting Engine

Turns health snapshots and metric summaries into alerts and dispatches
them to notification channels.

Anti-flood controls:
    - Cooldown per (component, metric): repeats inside the window are
      suppressed; a cooldown lapses lazily on the engine clock
    - Hourly ceiling: once ``max_alerts_per_hour`` alerts were emitted in
      the current hour, further alerts are suppressed

All alert state (active map, cooldowns, hourly counters) is owned by one
engine instance and guarded by one asyncio lock. Channel dispatch happens
outside the lock, concurrently, and a failing channel never blocks the
others.

Usage:
    engine = AlertingEngine(AlertThresholds(), channels=[SlackChannel(url)])
    emitted = await engine.evaluate(health_snapshot)
    await engine.resolve("api", "response_time")
    await engine.resolve_recovered(health_snapshot, metrics_snapshot)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Set, Tuple, Union

from monitoring.health import HealthSnapshot, HealthStatus
from monitoring.metrics import MetricsSnapshot

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class AlertStateError(Exception):
    """Raised on an invalid alert state transition."""


# =============================================================================
# TYPES
# =============================================================================


class AlertLevel(Enum):
    """Alert levels, ordered by severity."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return ("info", "warning", "critical").index(self.value)


@dataclass
class AlertThresholds:
    """Breach thresholds used when building candidate alerts."""
    error_rate: float = 0.05                  # failed API calls / total
    response_time_ms: float = 5000
    rate_limit_remaining: int = 100
    accuracy: float = 0.85
    memory_bytes: int = 500 * 1024 * 1024
    processing_time_ms: float = 30000
    override_rate: float = 0.3
    operation_duration_ms: float = 10000
    system_errors_per_minute: float = 1.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AlertThresholds":
        """
        Build thresholds from a config mapping.

        Raises:
            ValueError: On unknown keys or non-numeric values
        """
        data = data or {}
        known = {f.name: f for f in fields(cls)}
        unknown = set(data) - set(known)
        if unknown:
            raise ValueError(f"Unknown alert thresholds: {', '.join(sorted(unknown))}")
        values = {}
        for name, value in data.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Alert threshold {name} must be a number")
            values[name] = value
        return cls(**values)


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


@dataclass
class Alert:
    """
    A threshold breach.

    Transitions ``active -> resolved`` exactly once, or lapses when its
    cooldown expires (``expired``).
    """
    level: AlertLevel
    component: str
    metric: str
    message: str
    value: Any = None
    threshold: Any = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: float = field(default_factory=time.time)
    resolved: bool = False
    resolved_at: Optional[float] = None
    expired: bool = False
    deliveries: Dict[str, bool] = field(default_factory=dict)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.component, self.metric)

    @property
    def resolution_seconds(self) -> Optional[float]:
        if self.resolved_at is None:
            return None
        return self.resolved_at - self.created_at

    def resolve(self, at: Optional[float] = None) -> None:
        """
        Mark the alert resolved.

        Raises:
            AlertStateError: If the alert was already resolved
        """
        if self.resolved:
            raise AlertStateError(f"Alert {self.id} is already resolved")
        self.resolved = True
        self.resolved_at = time.time() if at is None else at

    def to_payload(self) -> Dict[str, Any]:
        """Notification payload; alert fields only."""
        return {
            "id": self.id,
            "level": self.level.value,
            "component": self.component,
            "metric": self.metric,
            "message": self.message,
            "value": self.value,
            "threshold": self.threshold,
            "created_at": _iso(self.created_at),
            "resolved": self.resolved,
            "resolved_at": _iso(self.resolved_at),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_payload()
        data["expired"] = self.expired
        data["deliveries"] = dict(self.deliveries)
        return data


# =============================================================================
# CANDIDATE BUILDERS
# =============================================================================


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def candidates_from_health(
    snapshot: HealthSnapshot,
    thresholds: AlertThresholds,
    now: Optional[float] = None,
    measured: Optional[Set[Tuple[str, str]]] = None,
) -> List[Alert]:
    """
    Alerts for every component or metric of a health snapshot in breach.

    When *measured* is given, every (component, metric) pair the snapshot
    carries a value for is added to it, breached or not.
    """
    now = time.time() if now is None else now
    measured = set() if measured is None else measured
    alerts = []

    for health in snapshot.components:
        measured.add((health.name, "component_health"))
        if health.status is HealthStatus.UNHEALTHY:
            alerts.append(Alert(
                AlertLevel.CRITICAL, health.name, "component_health",
                f"{health.name} is unhealthy: {'; '.join(health.errors) or 'no details'}",
                value=health.status.value, threshold=HealthStatus.HEALTHY.value,
                created_at=now,
            ))
        elif health.status is HealthStatus.DEGRADED:
            alerts.append(Alert(
                AlertLevel.WARNING, health.name, "component_health",
                f"{health.name} is degraded: {'; '.join(health.errors) or 'no details'}",
                value=health.status.value, threshold=HealthStatus.HEALTHY.value,
                created_at=now,
            ))

        if health.name == "api":
            response_time = health.details.get("response_time_ms")
            if response_time is not None:
                measured.add(("api", "response_time"))
                if response_time > thresholds.response_time_ms:
                    alerts.append(Alert(
                        AlertLevel.WARNING, "api", "response_time",
                        f"API response time is {response_time:.0f}ms, above the "
                        f"{thresholds.response_time_ms:.0f}ms threshold",
                        value=response_time, threshold=thresholds.response_time_ms,
                        created_at=now,
                    ))
            remaining = health.details.get("rate_limit", {}).get("remaining")
            if remaining is not None:
                measured.add(("api", "rate_limit"))
                if remaining < thresholds.rate_limit_remaining:
                    alerts.append(Alert(
                        AlertLevel.CRITICAL, "api", "rate_limit",
                        f"API rate limit has {remaining} calls remaining, below the "
                        f"{thresholds.rate_limit_remaining} threshold",
                        value=remaining, threshold=thresholds.rate_limit_remaining,
                        created_at=now,
                    ))

        if health.name == "auto_labeling":
            accuracy = health.sampled_metric
            if accuracy is not None:
                measured.add(("auto_labeling", "accuracy"))
                if accuracy < thresholds.accuracy:
                    alerts.append(Alert(
                        AlertLevel.WARNING, "auto_labeling", "accuracy",
                        f"Labeling accuracy is {_pct(accuracy)}, below the "
                        f"{_pct(thresholds.accuracy)} threshold",
                        value=accuracy, threshold=thresholds.accuracy,
                        created_at=now,
                    ))

    return alerts


def candidates_from_metrics(
    summary: Dict[str, Any],
    thresholds: AlertThresholds,
    now: Optional[float] = None,
    measured: Optional[Set[Tuple[str, str]]] = None,
) -> List[Alert]:
    """
    Alerts for metric summaries in breach.

    Args:
        summary: ``MetricsSnapshot.to_dict()`` or
            ``MetricsCollector.get_system_summary()`` output
        measured: Filled with every (component, metric) pair that has data
    """
    now = time.time() if now is None else now
    measured = set() if measured is None else measured
    alerts = []

    def seen(component, metric, value):
        if value is not None:
            measured.add((component, metric))

    def add(level, component, metric, message, value, threshold):
        alerts.append(Alert(level, component, metric, message, value=value,
                            threshold=threshold, created_at=now))

    api = summary.get("api_usage") or {}
    success_rate = api.get("success_rate")
    seen("api", "error_rate", success_rate)
    if success_rate is not None:
        error_rate = 1 - success_rate
        if error_rate > thresholds.error_rate:
            add(AlertLevel.CRITICAL, "api", "error_rate",
                f"API error rate is {_pct(error_rate)}, above the "
                f"{_pct(thresholds.error_rate)} threshold",
                error_rate, thresholds.error_rate)
    response_time = api.get("average_response_time_ms")
    seen("api", "response_time", response_time)
    if response_time is not None and response_time > thresholds.response_time_ms:
        add(AlertLevel.WARNING, "api", "response_time",
            f"Average API response time is {response_time:.0f}ms, above the "
            f"{thresholds.response_time_ms:.0f}ms threshold",
            response_time, thresholds.response_time_ms)
    remaining = api.get("min_rate_limit_remaining")
    seen("api", "rate_limit", remaining)
    if remaining is not None and remaining < thresholds.rate_limit_remaining:
        add(AlertLevel.CRITICAL, "api", "rate_limit",
            f"API rate limit dropped to {remaining} calls remaining, below the "
            f"{thresholds.rate_limit_remaining} threshold",
            remaining, thresholds.rate_limit_remaining)

    labeling = summary.get("auto_labeling") or {}
    accuracy = labeling.get("average_accuracy")
    seen("auto_labeling", "accuracy", accuracy)
    if accuracy is not None and accuracy < thresholds.accuracy:
        add(AlertLevel.WARNING, "auto_labeling", "accuracy",
            f"Average labeling accuracy is {_pct(accuracy)}, below the "
            f"{_pct(thresholds.accuracy)} threshold",
            accuracy, thresholds.accuracy)
    processing = labeling.get("average_processing_time_ms")
    seen("auto_labeling", "processing_time", processing)
    if processing is not None and processing > thresholds.processing_time_ms:
        add(AlertLevel.WARNING, "auto_labeling", "processing_time",
            f"Average labeling time is {processing:.0f}ms, above the "
            f"{thresholds.processing_time_ms:.0f}ms threshold",
            processing, thresholds.processing_time_ms)
    overrides = labeling.get("manual_override_rate")
    seen("auto_labeling", "override_rate", overrides)
    if overrides is not None and overrides > thresholds.override_rate:
        add(AlertLevel.INFO, "auto_labeling", "override_rate",
            f"Manual label overrides are at {_pct(overrides)}, above the "
            f"{_pct(thresholds.override_rate)} threshold",
            overrides, thresholds.override_rate)

    performance = summary.get("performance") or {}
    memory = (performance.get("memory_stats") or {}).get("p95")
    seen("performance", "memory", memory)
    if memory is not None and memory > thresholds.memory_bytes:
        add(AlertLevel.WARNING, "performance", "memory",
            f"Memory usage (p95) is {memory / 1024 / 1024:.0f}MB, above the "
            f"{thresholds.memory_bytes / 1024 / 1024:.0f}MB threshold",
            memory, thresholds.memory_bytes)
    for operation, stats in sorted((performance.get("operation_breakdown") or {}).items()):
        duration = stats.get("average_duration_ms")
        seen("performance", f"{operation}_duration", duration)
        if duration is not None and duration > thresholds.operation_duration_ms:
            add(AlertLevel.WARNING, "performance", f"{operation}_duration",
                f"Operation {operation} averages {duration:.0f}ms, above the "
                f"{thresholds.operation_duration_ms:.0f}ms threshold",
                duration, thresholds.operation_duration_ms)

    errors = summary.get("error") or {}
    rate = errors.get("error_rate_per_minute")
    seen("system", "error_rate", rate)
    if rate is not None and rate > thresholds.system_errors_per_minute:
        add(AlertLevel.CRITICAL, "system", "error_rate",
            f"System error rate is {rate:.2f} errors/minute, above the "
            f"{thresholds.system_errors_per_minute:g} threshold",
            rate, thresholds.system_errors_per_minute)

    return alerts


# =============================================================================
# ENGINE
# =============================================================================


Subscriber = Callable[[Alert], Any]


class AlertingEngine:
    """
    Alert evaluation, suppression and dispatch.

    Attributes:
        thresholds: Breach thresholds
        channels: Notification channels alerts are dispatched to
        cooldown_seconds: Suppression window per (component, metric)
        max_alerts_per_hour: Hourly emission ceiling
    """

    def __init__(
        self,
        thresholds: Optional[AlertThresholds] = None,
        channels: Optional[Sequence[Any]] = None,
        cooldown_seconds: float = 300,
        max_alerts_per_hour: int = 10,
        max_history: int = 1000,
        clock: Callable[[], float] = time.time,
        audit=None,
    ):
        self.thresholds = thresholds or AlertThresholds()
        self.channels = list(channels or [])
        self.cooldown_seconds = cooldown_seconds
        self.max_alerts_per_hour = max_alerts_per_hour
        self._clock = clock
        self._audit = audit

        self._active: Dict[Tuple[str, str], Alert] = {}
        self._history: Deque[Alert] = deque(maxlen=max_history)
        self._cooldowns: Dict[Tuple[str, str], float] = {}
        self._hourly_counts: Dict[int, int] = {}
        self._suppressed = {"cooldown": 0, "rate_limit": 0}
        self._subscribers: List[Subscriber] = []
        self._lock = asyncio.Lock()

    # =====================================================================
    # EVALUATION
    # =====================================================================

    async def evaluate(
        self, snapshot: Union[HealthSnapshot, MetricsSnapshot, Dict[str, Any]]
    ) -> List[Alert]:
        """
        Build candidates from ``snapshot`` and process each.

        Returns:
            The alerts actually emitted (not suppressed)
        """
        emitted = []
        for alert in self._candidates(snapshot, self._clock()):
            if await self.process(alert):
                emitted.append(alert)
        return emitted

    async def resolve_recovered(
        self, *snapshots: Union[HealthSnapshot, MetricsSnapshot, Dict[str, Any]]
    ) -> List[Alert]:
        """
        Resolve active alerts whose metric is back within its threshold.

        A (component, metric) pair counts as recovered when at least one
        snapshot measures it and none of them breaches it. Pairs without
        data keep their alert until the cooldown lapses.

        Returns:
            The alerts resolved
        """
        now = self._clock()
        measured: Set[Tuple[str, str]] = set()
        breached: Set[Tuple[str, str]] = set()
        for snapshot in snapshots:
            breached.update(a.key for a in self._candidates(snapshot, now, measured))

        resolved = []
        for component, metric in sorted(measured - breached):
            alert = await self.resolve(component, metric)
            if alert is not None:
                resolved.append(alert)
        return resolved

    def _candidates(self, snapshot, now: float,
                    measured: Optional[Set[Tuple[str, str]]] = None) -> List[Alert]:
        if isinstance(snapshot, HealthSnapshot):
            return candidates_from_health(snapshot, self.thresholds, now, measured)
        if isinstance(snapshot, MetricsSnapshot):
            snapshot = snapshot.to_dict()
        if isinstance(snapshot, dict):
            return candidates_from_metrics(snapshot, self.thresholds, now, measured)
        raise TypeError(f"Cannot evaluate {type(snapshot).__name__}")

    async def process(self, alert: Alert) -> bool:
        """
        Apply cooldown and hourly ceiling, then record and dispatch.

        Returns:
            True if the alert was emitted
        """
        async with self._lock:
            now = self._clock()
            self._expire_cooldowns(now)

            if alert.key in self._cooldowns:
                self._suppressed["cooldown"] += 1
                logger.debug(f"Alert {alert.component}/{alert.metric} suppressed by cooldown")
                return False

            hour = int(now // 3600)
            if self._hourly_counts.get(hour, 0) >= self.max_alerts_per_hour:
                self._suppressed["rate_limit"] += 1
                logger.warning(
                    f"Alert rate limit exceeded ({self.max_alerts_per_hour}/hour); "
                    f"suppressed {alert.level.value} alert {alert.component}/{alert.metric}"
                )
                return False

            self._active[alert.key] = alert
            self._history.append(alert)
            self._cooldowns[alert.key] = now + self.cooldown_seconds
            self._hourly_counts[hour] = self._hourly_counts.get(hour, 0) + 1

        log = logger.error if alert.level is AlertLevel.CRITICAL else logger.warning
        log(f"ALERT [{alert.level.value.upper()}] {alert.component}/{alert.metric}: "
            f"{alert.message}")
        if self._audit is not None:
            self._audit.log_alert(alert.to_payload())

        await self._dispatch(alert)
        await self._notify_subscribers(alert)
        return True

    async def trigger(
        self,
        level: Union[AlertLevel, str],
        component: str,
        metric: str,
        message: str,
        value: Any = None,
        threshold: Any = None,
    ) -> Optional[Alert]:
        """Raise an alert directly. Returns it, or None if suppressed."""
        alert = Alert(AlertLevel(level), component, metric, message, value=value,
                      threshold=threshold, created_at=self._clock())
        return alert if await self.process(alert) else None

    async def resolve(self, component: str, metric: str) -> Optional[Alert]:
        """
        Resolve the active alert for (component, metric) and end its cooldown.

        Returns:
            The resolved alert, or None if none was active
        """
        key = (component, metric)
        async with self._lock:
            self._cooldowns.pop(key, None)
            alert = self._active.pop(key, None)
            if alert is None:
                return None
            alert.resolve(self._clock())

        logger.info(
            f"Alert resolved: {component}/{metric} after "
            f"{alert.resolution_seconds:.0f}s"
        )
        if self._audit is not None:
            self._audit.log_alert_resolved(alert.id, component, metric,
                                           alert.resolution_seconds)
        return alert

    def prune_counters(self, now: Optional[float] = None) -> int:
        """Drop hourly counters older than two hours. Returns how many."""
        now = self._clock() if now is None else now
        oldest_kept = int(now // 3600) - 1
        stale = [hour for hour in self._hourly_counts if hour < oldest_kept]
        for hour in stale:
            del self._hourly_counts[hour]
        return len(stale)

    def _expire_cooldowns(self, now: float) -> None:
        for key, expires_at in list(self._cooldowns.items()):
            if expires_at > now:
                continue
            del self._cooldowns[key]
            alert = self._active.pop(key, None)
            if alert is not None and not alert.resolved:
                alert.expired = True

    # =====================================================================
    # DISPATCH
    # =====================================================================

    async def _send(self, channel, alert: Alert) -> bool:
        try:
            return bool(await channel.send(alert))
        except Exception as e:
            logger.error(
                f"Notification via {channel.name} failed for alert {alert.id}: "
                f"{type(e).__name__}: {e}"
            )
            return False

    async def _dispatch(self, alert: Alert) -> Dict[str, bool]:
        channels = [c for c in self.channels if c.enabled and c.accepts(alert)]
        if not channels:
            return {}

        results = await asyncio.gather(*(self._send(c, alert) for c in channels))
        alert.deliveries = {c.name: ok for c, ok in zip(channels, results)}

        failed = [name for name, ok in alert.deliveries.items() if not ok]
        if failed:
            logger.warning(f"Alert {alert.id} not delivered via: {', '.join(failed)}")
        return alert.deliveries

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Call ``callback(alert)`` (sync or async) for every emitted alert.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def _notify_subscribers(self, alert: Alert) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(alert)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Alert subscriber {callback!r} failed: {type(e).__name__}: {e}")

    # =====================================================================
    # QUERIES
    # =====================================================================

    @property
    def alerts_this_hour(self) -> int:
        return self._hourly_counts.get(int(self._clock() // 3600), 0)

    def get_active_alerts(
        self,
        component: Optional[str] = None,
        level: Optional[Union[AlertLevel, str]] = None,
    ) -> List[Alert]:
        """Active alerts, oldest first."""
        self._expire_cooldowns(self._clock())
        level = AlertLevel(level) if level is not None else None
        alerts = [
            a for a in self._active.values()
            if (component is None or a.component == component)
            and (level is None or a.level is level)
        ]
        return sorted(alerts, key=lambda a: a.created_at)

    def get_alert_history(
        self,
        component: Optional[str] = None,
        level: Optional[Union[AlertLevel, str]] = None,
        start: Optional[float] = None,
        end: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[Alert]:
        """Emitted alerts matching the filters, newest first."""
        level = AlertLevel(level) if level is not None else None
        alerts = [
            a for a in reversed(self._history)
            if (component is None or a.component == component)
            and (level is None or a.level is level)
            and (start is None or a.created_at >= start)
            and (end is None or a.created_at <= end)
        ]
        return alerts[:limit] if limit else alerts

    def get_alert_stats(
        self,
        start: Optional[float] = None,
        end: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Counts by level and component plus average resolution time."""
        alerts = self.get_alert_history(start=start, end=end)
        resolved = [a for a in alerts if a.resolved]
        by_level: Dict[str, int] = {}
        by_component: Dict[str, int] = {}
        for a in alerts:
            by_level[a.level.value] = by_level.get(a.level.value, 0) + 1
            by_component[a.component] = by_component.get(a.component, 0) + 1

        return {
            "total": len(alerts),
            "active": len(self.get_active_alerts()),
            "resolved": len(resolved),
            "expired": sum(1 for a in alerts if a.expired),
            "by_level": by_level,
            "by_component": by_component,
            "average_resolution_seconds": (
                sum(a.resolution_seconds for a in resolved) / len(resolved)
                if resolved else None
            ),
            "alerts_this_hour": self.alerts_this_hour,
            "max_alerts_per_hour": self.max_alerts_per_hour,
            "suppressed": dict(self._suppressed),
        }


__all__ = [
    "AlertStateError",
    "AlertLevel",
    "AlertThresholds",
    "Alert",
    "AlertingEngine",
    "candidates_from_health",
    "candidates_from_metrics",
]
