# =============================================================================
# ISSUE TRIAGE MONITOR - MONITORING SERVICE
# =============================================================================
"""
Monitoring Service

Wires the metrics collector, health check aggregator and alerting engine
together and owns their periodic background tasks.

Periodic tasks:
    - Monitoring cycle (``health.interval``): health check, metric
      summary of the last window, alert evaluation, recovery resolution
    - Metrics maintenance (``metrics.aggregation_interval``): rollups and
      retention eviction
    - Alert counter pruning (hourly)

Query/export surface for dashboards:
    - get_status()
    - get_monitoring_stats()
    - export_monitoring_data(start, end)

Usage:
    service = MonitoringService(config, client=client)
    await service.run()        # until stop() or a signal
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from monitoring.alerts import AlertingEngine, AlertLevel, AlertThresholds
from monitoring.channels import build_channels
from monitoring.health import (
    AnalysisProbe,
    ApiProbe,
    HealthCheckAggregator,
    HealthSnapshot,
    ResourceProbe,
)
from monitoring.metrics import MetricsCollector

logger = logging.getLogger(__name__)


COUNTER_PRUNE_INTERVAL = 3600  # seconds


class MonitoringService:
    """
    Owner of the monitoring components and their background tasks.

    Attributes:
        metrics: MetricsCollector
        health: HealthCheckAggregator
        alerts: AlertingEngine
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        client=None,
        metrics: Optional[MetricsCollector] = None,
        health: Optional[HealthCheckAggregator] = None,
        alerts: Optional[AlertingEngine] = None,
        audit=None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Build components from configuration unless given explicitly.

        Args:
            config: Merged configuration (see triage.config)
            client: GitHubClient used by the API probe
            metrics: Pre-built collector
            health: Pre-built aggregator
            alerts: Pre-built alerting engine
            audit: Optional AuditLogger
            clock: Wall clock returning epoch seconds
        """
        self.config = config or {}
        self.client = client
        self.audit = audit
        self._clock = clock

        health_cfg = self.config.get("health", {})
        metrics_cfg = self.config.get("metrics", {})
        alerts_cfg = self.config.get("alerts", {})

        thresholds = AlertThresholds.from_dict(alerts_cfg.get("thresholds"))

        self.metrics = metrics or MetricsCollector(metrics_cfg, clock=clock)
        self.health = health or self._build_health(health_cfg, thresholds)
        self.alerts = alerts or AlertingEngine(
            thresholds=thresholds,
            channels=build_channels(self.config.get("notifications")),
            cooldown_seconds=alerts_cfg.get("cooldown_seconds", 300),
            max_alerts_per_hour=alerts_cfg.get("max_alerts_per_hour", 10),
            max_history=alerts_cfg.get("max_history", 1000),
            clock=clock,
            audit=audit,
        )

        self.health_check_interval = health_cfg.get("interval", 60)
        self.aggregation_interval = self.metrics.aggregation_interval
        self.metrics_window = alerts_cfg.get("metrics_window", 3600)

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []
        self._start_time = time.monotonic()
        self._cycles = 0
        self._failed_cycles = 0
        self._last_cycle_at: Optional[float] = None

    def _build_health(self, health_cfg: Dict[str, Any],
                      thresholds: AlertThresholds) -> HealthCheckAggregator:
        aggregator = HealthCheckAggregator(
            timeout_seconds=health_cfg.get("timeout_seconds", 30),
            history_size=health_cfg.get("history_size", 100),
            clock=self._clock,
        )
        buffer = self.config.get("github", {}).get("rate_limit_buffer", 0.2)
        aggregator.register("api", ApiProbe(
            self.client,
            response_time_threshold_ms=thresholds.response_time_ms,
            rate_limit_buffer=buffer,
        ))
        aggregator.register("auto_labeling", AnalysisProbe(
            accuracy_threshold=thresholds.accuracy,
            processing_time_threshold_ms=thresholds.processing_time_ms,
        ))
        aggregator.register("resources", ResourceProbe(
            memory_threshold_bytes=thresholds.memory_bytes,
        ))
        return aggregator

    # =========================================================================
    # MONITORING CYCLE
    # =========================================================================

    async def run_cycle(self) -> Optional[HealthSnapshot]:
        """
        One monitoring cycle: health, metrics window, alerts.

        A failing cycle is tracked as an error and raised as a critical
        ``cycle_failure`` alert; it never propagates.

        Returns:
            The health snapshot, or None if the cycle failed
        """
        started = time.perf_counter()
        try:
            snapshot = await self.health.check_all()

            now = self._clock()
            window = self.metrics.get_snapshot(now - self.metrics_window, now)

            emitted = await self.alerts.evaluate(snapshot)
            emitted += await self.alerts.evaluate(window)
            await self.alerts.resolve_recovered(snapshot, window)

            duration_ms = (time.perf_counter() - started) * 1000
            self.metrics.track_performance(operation="monitoring_cycle", duration_ms=duration_ms)
            self.metrics.track_system(metric="health_status", value=snapshot.overall.value)

            if self.audit is not None:
                self.audit.log_health_check(
                    snapshot.overall.value,
                    {c.name: c.status.value for c in snapshot.components},
                    snapshot.duration_ms,
                )

            self._cycles += 1
            self._last_cycle_at = now
            logger.debug(
                f"Monitoring cycle {self._cycles}: {snapshot.overall.value}, "
                f"{len(emitted)} alerts, {duration_ms:.0f}ms"
            )
            return snapshot

        except Exception as e:
            self._failed_cycles += 1
            logger.error(f"Monitoring cycle failed: {type(e).__name__}: {e}", exc_info=True)
            self.metrics.track_error(
                component="monitoring",
                error_type=type(e).__name__,
                error_message=str(e),
                severity="critical",
            )
            await self.alerts.trigger(
                AlertLevel.CRITICAL,
                "monitoring",
                "cycle_failure",
                f"Monitoring cycle failed with {type(e).__name__}",
            )
            return None

    async def _run_maintenance(self) -> None:
        result = self.metrics.run_maintenance()
        logger.debug(f"Metrics maintenance: {result}")

    async def _prune_counters(self) -> None:
        pruned = self.alerts.prune_counters()
        if pruned:
            logger.debug(f"Pruned {pruned} alert hour counters")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def _periodic(self, name: str, interval: float,
                        func: Callable[[], Awaitable[Any]]) -> None:
        """Run ``func`` every ``interval`` seconds until shutdown."""
        while self._running:
            try:
                await func()
            except Exception as e:
                logger.error(f"Periodic task {name} failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                continue

    async def start(self) -> None:
        """Start the periodic tasks."""
        if self._running:
            return
        self._running = True
        self._shutdown_event.clear()

        port = self.config.get("metrics", {}).get("port")
        if port:
            try:
                self.metrics.start_http_server(int(port))
            except OSError as e:
                logger.warning(f"Could not start metrics server on port {port}: {e}")

        self.metrics.track_system(metric="service_started", value=1)

        self._tasks = [
            asyncio.create_task(
                self._periodic("monitoring_cycle", self.health_check_interval, self.run_cycle),
                name="monitoring-cycle",
            ),
            asyncio.create_task(
                self._periodic("metrics_maintenance", self.aggregation_interval,
                               self._run_maintenance),
                name="metrics-maintenance",
            ),
            asyncio.create_task(
                self._periodic("alert_counter_pruning", COUNTER_PRUNE_INTERVAL,
                               self._prune_counters),
                name="alert-counter-pruning",
            ),
        ]
        logger.info(
            f"Monitoring started (health every {self.health_check_interval}s, "
            f"maintenance every {self.aggregation_interval:g}s)"
        )

    async def run(self) -> None:
        """Start, then block until stop() is called."""
        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    def request_stop(self) -> None:
        """Ask run() to return; safe to call from a signal handler via the loop."""
        self._shutdown_event.set()

    async def stop(self) -> None:
        """Gracefully stop the periodic tasks."""
        if not self._running:
            return
        logger.info("Stopping monitoring...")
        self._running = False
        self._shutdown_event.set()

        for task in self._tasks:
            if not task.done():
                task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        self.metrics.track_system(metric="service_stopped", value=1)
        if self.client is not None:
            self.client.close()
        logger.info("Monitoring stopped")

    @property
    def running(self) -> bool:
        return self._running

    # =========================================================================
    # STATUS AND EXPORT
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        """Current health and active alerts."""
        latest = self.health.latest
        return {
            "running": self._running,
            "uptime_seconds": round(time.monotonic() - self._start_time, 1),
            "health": latest.to_dict() if latest else None,
            "active_alerts": [a.to_dict() for a in self.alerts.get_active_alerts()],
            "alerts_this_hour": self.alerts.alerts_this_hour,
            "cycles": {
                "completed": self._cycles,
                "failed": self._failed_cycles,
                "last_run": _iso(self._last_cycle_at),
            },
        }

    def get_monitoring_stats(self) -> Dict[str, Any]:
        """Volume and configuration of the monitoring components."""
        return {
            "metrics": {
                "total_events": self.metrics.get_total_event_count(),
                "oldest_event": _iso(self.metrics.get_oldest_event_timestamp()),
                "retention_days": self.metrics.retention_days,
            },
            "health": {
                "probes": self.health.probe_names,
                "snapshots": len(self.health.get_history()),
                "history_size": self.health.history_size,
                "interval_seconds": self.health_check_interval,
            },
            "alerts": self.alerts.get_alert_stats(),
            "tasks": [t.get_name() for t in self._tasks if not t.done()],
        }

    def export_monitoring_data(
        self,
        start: Optional[float] = None,
        end: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Everything a dashboard needs for one time range."""
        return {
            "exported_at": _iso(self._clock()),
            "status": self.get_status(),
            "summary": self.metrics.get_system_summary(start, end),
            "metrics": self.metrics.export_metrics(start, end),
            "health_history": [s.to_dict() for s in self.health.get_history()],
            "alerts": [
                a.to_dict() for a in self.alerts.get_alert_history(start=start, end=end)
            ],
        }


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


__all__ = ["MonitoringService"]
