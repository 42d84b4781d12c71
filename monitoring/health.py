# =============================================================================
# ISSUE TRIAGE MONITOR - HEALTH CHECKS
# =============================================================================
"""
Health Check Module

Runs named probes concurrently and reduces their results to one overall
status. A probe that raises or times out is reported as unhealthy; it
never aborts the cycle or hides the results of other probes.

Probes:
    - ApiProbe: GitHub API latency and quota headroom
    - AnalysisProbe: Measured labeling accuracy on a labeled corpus
    - ResourceProbe: Process memory

Usage:
    aggregator = HealthCheckAggregator(timeout_seconds=10)
    aggregator.register("api", ApiProbe(client))
    aggregator.register("auto_labeling", AnalysisProbe())
    snapshot = await aggregator.check_all()
    print(snapshot.overall)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Tuple

import psutil

from triage.analysis import SELF_TEST_CASES, AccuracyCase, analyze, evaluate_accuracy

logger = logging.getLogger(__name__)


# =============================================================================
# TYPES
# =============================================================================


class HealthStatus(Enum):
    """Component status, ordered by severity."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def worst(cls, statuses: Iterable["HealthStatus"]) -> "HealthStatus":
        return max(statuses, key=lambda s: s.severity, default=cls.HEALTHY)


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


@dataclass(frozen=True)
class ComponentHealth:
    """Result of one probe."""
    name: str
    status: HealthStatus
    errors: Tuple[str, ...] = ()
    sampled_metric: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "errors": list(self.errors),
            "sampled_metric": self.sampled_metric,
            "details": self.details,
        }


@dataclass(frozen=True)
class HealthSnapshot:
    """Outcome of one health cycle; components sorted by name."""
    timestamp: float
    overall: HealthStatus
    components: Tuple[ComponentHealth, ...]
    duration_ms: float
    uptime_seconds: float

    def component(self, name: str) -> Optional[ComponentHealth]:
        return next((c for c in self.components if c.name == name), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
            "overall": self.overall.value,
            "components": {c.name: c.to_dict() for c in self.components},
            "duration_ms": round(self.duration_ms, 1),
            "uptime_seconds": round(self.uptime_seconds, 1),
        }


Probe = Callable[[], Awaitable[ComponentHealth]]


# =============================================================================
# AGGREGATOR
# =============================================================================


class HealthCheckAggregator:
    """
    Concurrent probe runner with a bounded snapshot history.

    Attributes:
        timeout_seconds: Per-probe timeout
        history_size: Snapshots kept for trend queries
    """

    def __init__(
        self,
        timeout_seconds: float = 30,
        history_size: int = 100,
        clock: Callable[[], float] = time.time,
    ):
        self.timeout_seconds = timeout_seconds
        self.history_size = history_size
        self._clock = clock
        self._probes: Dict[str, Probe] = {}
        self._history: Deque[HealthSnapshot] = deque(maxlen=history_size)
        self._start_time = time.monotonic()

    def register(self, name: str, probe: Probe) -> None:
        """Register (or replace) the probe for ``name``."""
        if name in self._probes:
            logger.warning(f"Replacing health probe: {name}")
        self._probes[name] = probe

    def unregister(self, name: str) -> None:
        self._probes.pop(name, None)

    @property
    def probe_names(self) -> List[str]:
        return sorted(self._probes)

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._start_time

    async def _run_probe(self, name: str, probe: Probe) -> ComponentHealth:
        try:
            result = await asyncio.wait_for(probe(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            message = f"{name} probe timed out after {self.timeout_seconds:g}s"
            logger.warning(message)
            return ComponentHealth(name, HealthStatus.UNHEALTHY, (message,))
        except Exception as e:
            message = f"{name} probe failed: {type(e).__name__}: {e}"
            logger.error(message)
            return ComponentHealth(name, HealthStatus.UNHEALTHY, (message,))

        if not isinstance(result, ComponentHealth):
            return ComponentHealth(
                name,
                HealthStatus.UNHEALTHY,
                (f"{name} probe returned {type(result).__name__}, not ComponentHealth",),
            )
        if result.name != name:
            result = ComponentHealth(
                name, result.status, result.errors, result.sampled_metric, result.details
            )
        return result

    async def check_one(self, name: str) -> ComponentHealth:
        """
        Run a single registered probe.

        Raises:
            KeyError: If no probe is registered under ``name``
        """
        return await self._run_probe(name, self._probes[name])

    async def check_all(self) -> HealthSnapshot:
        """Run every probe concurrently and record the snapshot."""
        started = time.perf_counter()

        results = await asyncio.gather(
            *(self._run_probe(name, probe) for name, probe in self._probes.items())
        )
        components = tuple(sorted(results, key=lambda c: c.name))

        snapshot = HealthSnapshot(
            timestamp=self._clock(),
            overall=HealthStatus.worst(c.status for c in components),
            components=components,
            duration_ms=(time.perf_counter() - started) * 1000,
            uptime_seconds=self.uptime_seconds,
        )
        self._history.append(snapshot)

        if snapshot.overall is not HealthStatus.HEALTHY:
            failing = [f"{c.name}={c.status.value}" for c in components
                       if c.status is not HealthStatus.HEALTHY]
            logger.warning(f"Health check {snapshot.overall.value}: {', '.join(failing)}")
        else:
            logger.debug(f"Health check healthy ({snapshot.duration_ms:.0f}ms)")

        return snapshot

    # =====================================================================
    # QUERIES
    # =====================================================================

    @property
    def latest(self) -> Optional[HealthSnapshot]:
        return self._history[-1] if self._history else None

    def get_history(self, limit: Optional[int] = None) -> List[HealthSnapshot]:
        """Snapshots oldest first; ``limit`` keeps the most recent ones."""
        history = list(self._history)
        return history[-limit:] if limit else history

    def get_trend(self, component: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Status and sampled metric of one component across history."""
        trend = []
        for snapshot in self.get_history(limit):
            health = snapshot.component(component)
            if health is None:
                continue
            trend.append({
                "timestamp": snapshot.timestamp,
                "status": health.status.value,
                "sampled_metric": health.sampled_metric,
            })
        return trend


# =============================================================================
# PROBES
# =============================================================================


class ApiProbe:
    """Degraded when the API is slow or the quota reserve is being used."""

    def __init__(
        self,
        client=None,
        response_time_threshold_ms: float = 5000,
        rate_limit_buffer: float = 0.2,
    ):
        self.client = client
        self.response_time_threshold_ms = response_time_threshold_ms
        self.rate_limit_buffer = rate_limit_buffer

    async def __call__(self) -> ComponentHealth:
        if self.client is None:
            return ComponentHealth(
                "api", HealthStatus.DEGRADED, ("GitHub client not configured",)
            )

        started = time.perf_counter()
        state = await self.client.get_rate_limit()
        response_time_ms = (time.perf_counter() - started) * 1000

        errors = []
        if response_time_ms > self.response_time_threshold_ms:
            errors.append(
                f"API response time {response_time_ms:.0f}ms exceeds "
                f"{self.response_time_threshold_ms:.0f}ms"
            )
        if not state.is_within_buffer(self.rate_limit_buffer):
            errors.append(
                f"Rate limit usage {state.usage_fraction:.0%} reached the "
                f"{1 - self.rate_limit_buffer:.0%} threshold "
                f"({state.remaining}/{state.limit} remaining)"
            )

        return ComponentHealth(
            name="api",
            status=HealthStatus.DEGRADED if errors else HealthStatus.HEALTHY,
            errors=tuple(errors),
            sampled_metric=response_time_ms,
            details={
                "response_time_ms": round(response_time_ms, 1),
                "rate_limit": {
                    "limit": state.limit,
                    "remaining": state.remaining,
                    "reset_at": state.reset_at,
                    "usage_fraction": round(state.usage_fraction, 4),
                },
            },
        )


# Inputs that must be analyzed as plain text
HOSTILE_INPUTS: Tuple[Tuple[Any, Any], ...] = (
    ("<script>alert('xss')</script>", "<img src=x onerror=alert(1)>"),
    ("../../../../etc/passwd", "$(rm -rf /) `whoami`"),
    ("'; DROP TABLE issues; --", "1 OR 1=1"),
    ("A" * 10000, "B" * 10000),
    (None, None),
)


class AnalysisProbe:
    """Measures labeling accuracy on a labeled corpus plus hostile inputs."""

    def __init__(
        self,
        cases: Iterable[AccuracyCase] = SELF_TEST_CASES,
        accuracy_threshold: float = 0.85,
        processing_time_threshold_ms: float = 30000,
    ):
        self.cases = tuple(cases)
        self.accuracy_threshold = accuracy_threshold
        self.processing_time_threshold_ms = processing_time_threshold_ms

    async def __call__(self) -> ComponentHealth:
        started = time.perf_counter()
        report = evaluate_accuracy(self.cases)

        errors = []
        for title, body in HOSTILE_INPUTS:
            try:
                result = analyze(title, body)
            except Exception as e:
                errors.append(f"Analysis raised on hostile input: {type(e).__name__}")
                continue
            if not 0.0 <= result.confidence <= 1.0:
                errors.append(f"Confidence {result.confidence} out of range")

        processing_ms = (time.perf_counter() - started) * 1000

        if errors:
            status = HealthStatus.UNHEALTHY
        else:
            status = HealthStatus.HEALTHY
            if report.accuracy is not None and report.accuracy < self.accuracy_threshold:
                errors.append(
                    f"Labeling accuracy {report.accuracy:.0%} is below "
                    f"{self.accuracy_threshold:.0%}"
                )
                status = HealthStatus.DEGRADED
            if processing_ms > self.processing_time_threshold_ms:
                errors.append(
                    f"Self-test took {processing_ms:.0f}ms, over "
                    f"{self.processing_time_threshold_ms:.0f}ms"
                )
                status = HealthStatus.DEGRADED

        return ComponentHealth(
            name="auto_labeling",
            status=status,
            errors=tuple(errors),
            sampled_metric=report.accuracy,
            details={
                "accuracy": report.accuracy,
                "cases": report.total,
                "correct": report.correct,
                "processing_time_ms": round(processing_ms, 1),
                "failed_cases": [r["title"] for r in report.results if not r["correct"]],
            },
        )


class ResourceProbe:
    """Degraded when process RSS exceeds the memory threshold."""

    def __init__(self, memory_threshold_bytes: int = 500 * 1024 * 1024):
        self.memory_threshold_bytes = memory_threshold_bytes

    async def __call__(self) -> ComponentHealth:
        process = psutil.Process()
        rss = process.memory_info().rss

        errors = []
        if rss > self.memory_threshold_bytes:
            errors.append(
                f"Memory usage {rss / 1024 / 1024:.0f}MB exceeds "
                f"{self.memory_threshold_bytes / 1024 / 1024:.0f}MB"
            )

        return ComponentHealth(
            name="resources",
            status=HealthStatus.DEGRADED if errors else HealthStatus.HEALTHY,
            errors=tuple(errors),
            sampled_metric=float(rss),
            details={
                "rss_bytes": rss,
                "memory_percent": round(process.memory_percent(), 2),
                "threads": process.num_threads(),
            },
        )


__all__ = [
    "HealthStatus",
    "ComponentHealth",
    "HealthSnapshot",
    "HealthCheckAggregator",
    "Probe",
    "ApiProbe",
    "AnalysisProbe",
    "ResourceProbe",
    "HOSTILE_INPUTS",
]
