# =============================================================================
# ISSUE TRIAGE MONITOR - MONITORING SERVICE TESTS
# =============================================================================
"""
Tests for the monitoring service: cycles, lifecycle, status and export.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from monitoring.alerts import AlertingEngine, AlertLevel
from monitoring.events import MetricCategory
from monitoring.health import ComponentHealth, HealthCheckAggregator, HealthStatus
from monitoring.service import MonitoringService

from tests.conftest import make_channel


class SwitchableProbe:
    """Probe whose status can be changed between cycles."""

    def __init__(self, name, status=HealthStatus.HEALTHY):
        self.name = name
        self.status = status

    async def __call__(self):
        errors = () if self.status is HealthStatus.HEALTHY else (f"{self.name} is struggling",)
        return ComponentHealth(self.name, self.status, errors)


@pytest.fixture
def probe():
    return SwitchableProbe("api")


@pytest.fixture
def service(clock, collector, probe, channel):
    health = HealthCheckAggregator(timeout_seconds=1, clock=clock)
    health.register("api", probe)
    health.register("auto_labeling", SwitchableProbe("auto_labeling"))
    alerts = AlertingEngine(channels=[channel], clock=clock)
    return MonitoringService(
        {"health": {"interval": 60}, "alerts": {"metrics_window": 3600}},
        client=MagicMock(),
        metrics=collector,
        health=health,
        alerts=alerts,
        audit=MagicMock(),
        clock=clock,
    )


class TestConstruction:
    """Tests for building components from configuration."""

    def test_default_probes(self, clock):
        service = MonitoringService({}, clock=clock)

        assert service.health.probe_names == ["api", "auto_labeling", "resources"]
        assert service.alerts.channels == []
        assert service.health_check_interval == 60

    def test_config_applied(self, clock):
        service = MonitoringService({
            "health": {"interval": 15, "timeout_seconds": 5},
            "metrics": {"retention_days": 7, "aggregation_interval": 120},
            "alerts": {"cooldown_seconds": 10, "max_alerts_per_hour": 3,
                       "thresholds": {"accuracy": 0.9}},
            "notifications": {"webhook": {"enabled": True, "url": "https://ops.example.com"}},
        }, clock=clock)

        assert service.health.timeout_seconds == 5
        assert service.metrics.retention_days == 7
        assert service.aggregation_interval == 120
        assert service.alerts.cooldown_seconds == 10
        assert service.alerts.max_alerts_per_hour == 3
        assert service.alerts.thresholds.accuracy == 0.9
        assert [c.name for c in service.alerts.channels] == ["webhook"]

    def test_invalid_thresholds(self, clock):
        with pytest.raises(ValueError):
            MonitoringService({"alerts": {"thresholds": {"bogus": 1}}}, clock=clock)


class TestRunCycle:
    """Tests for MonitoringService.run_cycle()."""

    @pytest.mark.asyncio
    async def test_healthy_cycle(self, service, collector):
        snapshot = await service.run_cycle()

        assert snapshot.overall is HealthStatus.HEALTHY
        system = collector.query(MetricCategory.SYSTEM)
        assert system.latest == {"health_status": "healthy"}
        performance = collector.query_events(MetricCategory.PERFORMANCE)
        assert [e.operation for e in performance] == ["monitoring_cycle"]
        assert service.get_status()["cycles"]["completed"] == 1
        service.audit.log_health_check.assert_called_once()

    @pytest.mark.asyncio
    async def test_degraded_then_recovered(self, service, probe, clock):
        """A degraded component alerts once and resolves when healthy again."""
        probe.status = HealthStatus.DEGRADED
        await service.run_cycle()

        active = service.alerts.get_active_alerts()
        assert [(a.component, a.metric, a.level) for a in active] == [
            ("api", "component_health", AlertLevel.WARNING)
        ]

        probe.status = HealthStatus.HEALTHY
        clock.advance(60)
        await service.run_cycle()

        assert service.alerts.get_active_alerts() == []
        assert service.alerts.get_alert_history()[0].resolved is True

    @pytest.mark.asyncio
    async def test_metric_alert_resolves_when_rate_recovers(self, service, collector, clock):
        collector.track_api_usage(endpoint="/user", status_code=500, success=False)
        collector.track_api_usage(endpoint="/user", status_code=200, success=True)
        await service.run_cycle()
        assert [a.key for a in service.alerts.get_active_alerts()] == [("api", "error_rate")]

        for _ in range(100):
            collector.track_api_usage(endpoint="/user", status_code=200, success=True)
        clock.advance(60)
        await service.run_cycle()

        assert service.alerts.get_active_alerts() == []
        stats = service.alerts.get_alert_stats()
        assert stats["resolved"] == 1
        assert stats["average_resolution_seconds"] == 60

    @pytest.mark.asyncio
    async def test_metrics_window_evaluated(self, service, collector):
        for i in range(10):
            collector.track_api_usage(endpoint="/user", status_code=200 if i else 500,
                                      success=bool(i))
        collector.track_api_usage(endpoint="/user", status_code=500, success=False)

        await service.run_cycle()

        metrics = [a.metric for a in service.alerts.get_alert_history(component="api")]
        assert metrics == ["error_rate"]

    @pytest.mark.asyncio
    async def test_cycle_failure_alerts(self, service, collector, channel):
        """An exception inside the cycle becomes a critical alert, not a crash."""
        service.health = MagicMock()
        service.health.check_all = AsyncMock(side_effect=RuntimeError("probe registry broken"))

        result = await service.run_cycle()

        assert result is None
        alert = service.alerts.get_alert_history()[0]
        assert (alert.component, alert.metric, alert.level) == (
            "monitoring", "cycle_failure", AlertLevel.CRITICAL
        )
        assert alert.message == "Monitoring cycle failed with RuntimeError"
        channel.send.assert_awaited_once_with(alert)
        errors = collector.query_events(MetricCategory.ERROR)
        assert errors[0].component == "monitoring"
        assert errors[0].severity == "critical"
        assert service.get_status()["cycles"]["failed"] == 1


class TestLifecycle:
    """Tests for start/stop/run."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, service, collector):
        await service.start()
        await asyncio.sleep(0.05)

        assert service.running is True
        assert sorted(service.get_monitoring_stats()["tasks"]) == [
            "alert-counter-pruning", "metrics-maintenance", "monitoring-cycle",
        ]
        assert service.health.latest is not None

        await service.stop()

        assert service.running is False
        assert service.get_monitoring_stats()["tasks"] == []
        service.client.close.assert_called_once()
        metrics = [e.metric for e in collector.query_events(MetricCategory.SYSTEM)]
        assert "service_started" in metrics
        assert metrics[-1] == "service_stopped"

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, service):
        await service.start()
        tasks = list(service._tasks)

        await service.start()

        assert service._tasks == tasks
        await service.stop()

    @pytest.mark.asyncio
    async def test_run_until_stop_requested(self, service):
        task = asyncio.create_task(service.run())
        await asyncio.sleep(0.05)

        service.request_stop()
        await asyncio.wait_for(task, timeout=2)

        assert service.running is False
        service.client.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, service):
        await service.stop()

        service.client.close.assert_not_called()


class TestStatusAndExport:
    """Tests for status, stats and export."""

    @pytest.mark.asyncio
    async def test_status(self, service, probe):
        probe.status = HealthStatus.UNHEALTHY
        await service.run_cycle()

        status = service.get_status()

        assert status["running"] is False
        assert status["health"]["overall"] == "unhealthy"
        assert status["active_alerts"][0]["metric"] == "component_health"
        assert status["alerts_this_hour"] == 1
        assert status["cycles"]["last_run"].startswith("2024-01-01T00:10:00")

    @pytest.mark.asyncio
    async def test_monitoring_stats(self, service):
        await service.run_cycle()

        stats = service.get_monitoring_stats()

        assert stats["health"]["probes"] == ["api", "auto_labeling"]
        assert stats["health"]["snapshots"] == 1
        assert stats["metrics"]["total_events"] == 2
        assert stats["alerts"]["total"] == 0

    @pytest.mark.asyncio
    async def test_export(self, service):
        await service.run_cycle()

        data = service.export_monitoring_data()

        assert set(data) == {
            "exported_at", "status", "summary", "metrics", "health_history", "alerts",
        }
        assert len(data["health_history"]) == 1
        assert data["metrics"]["system"][0]["metric"] == "health_status"
