# =============================================================================
# ISSUE TRIAGE MONITOR - ALERTING TESTS
# =============================================================================
"""
Tests for alert thresholds, candidate building and the alerting engine.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from monitoring.alerts import (
    Alert,
    AlertingEngine,
    AlertLevel,
    AlertStateError,
    AlertThresholds,
    candidates_from_health,
    candidates_from_metrics,
)
from monitoring.health import ComponentHealth, HealthSnapshot, HealthStatus

from tests.conftest import BASE_TIME, make_channel


def health_snapshot(*components):
    return HealthSnapshot(
        timestamp=BASE_TIME,
        overall=HealthStatus.worst(c.status for c in components),
        components=tuple(components),
        duration_ms=1.0,
        uptime_seconds=10.0,
    )


# =============================================================================
# THRESHOLD AND ALERT TESTS
# =============================================================================


class TestAlertThresholds:
    """Tests for AlertThresholds.from_dict()."""

    def test_defaults(self):
        thresholds = AlertThresholds.from_dict(None)

        assert thresholds.error_rate == 0.05
        assert thresholds.rate_limit_remaining == 100

    def test_overrides(self):
        assert AlertThresholds.from_dict({"accuracy": 0.9}).accuracy == 0.9

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="latency"):
            AlertThresholds.from_dict({"latency": 5})

    @pytest.mark.parametrize("value", ["high", True, None])
    def test_non_numeric(self, value):
        with pytest.raises(ValueError):
            AlertThresholds.from_dict({"error_rate": value})


class TestAlert:
    """Tests for the Alert lifecycle."""

    def test_resolve_once(self):
        alert = Alert(AlertLevel.WARNING, "api", "response_time", "slow",
                      created_at=BASE_TIME)

        alert.resolve(at=BASE_TIME + 30)

        assert alert.resolved is True
        assert alert.resolution_seconds == 30
        with pytest.raises(AlertStateError):
            alert.resolve(at=BASE_TIME + 60)

    def test_payload_has_alert_fields_only(self):
        alert = Alert(AlertLevel.CRITICAL, "api", "rate_limit", "low quota",
                      value=5, threshold=100, created_at=BASE_TIME)

        payload = alert.to_payload()

        assert set(payload) == {
            "id", "level", "component", "metric", "message", "value",
            "threshold", "created_at", "resolved", "resolved_at",
        }
        assert payload["level"] == "critical"
        assert payload["created_at"].startswith("2024-01-01T00:10:00")

    def test_level_severity_order(self):
        assert AlertLevel.INFO.severity < AlertLevel.WARNING.severity < AlertLevel.CRITICAL.severity


# =============================================================================
# CANDIDATE TESTS
# =============================================================================


class TestCandidates:
    """Tests for building candidate alerts."""

    def test_from_health(self):
        snapshot = health_snapshot(
            ComponentHealth(
                "api", HealthStatus.DEGRADED, ("slow",),
                details={"response_time_ms": 6000.0, "rate_limit": {"remaining": 50}},
            ),
            ComponentHealth("auto_labeling", HealthStatus.HEALTHY, sampled_metric=0.5),
            ComponentHealth("resources", HealthStatus.UNHEALTHY, ("probe timed out",)),
        )

        alerts = candidates_from_health(snapshot, AlertThresholds(), now=BASE_TIME)

        found = {(a.component, a.metric): a.level for a in alerts}
        assert found == {
            ("api", "component_health"): AlertLevel.WARNING,
            ("api", "response_time"): AlertLevel.WARNING,
            ("api", "rate_limit"): AlertLevel.CRITICAL,
            ("auto_labeling", "accuracy"): AlertLevel.WARNING,
            ("resources", "component_health"): AlertLevel.CRITICAL,
        }
        assert all(a.created_at == BASE_TIME for a in alerts)

    def test_from_healthy_snapshot(self):
        snapshot = health_snapshot(ComponentHealth("api", HealthStatus.HEALTHY))

        assert candidates_from_health(snapshot, AlertThresholds()) == []

    def test_from_metrics(self):
        summary = {
            "api_usage": {"success_rate": 0.8, "average_response_time_ms": 100.0,
                          "min_rate_limit_remaining": 4000},
            "auto_labeling": {"average_accuracy": 0.95, "average_processing_time_ms": 45000.0,
                              "manual_override_rate": 0.5},
            "performance": {"memory_stats": {"p95": 600 * 1024 * 1024},
                            "operation_breakdown": {
                                "label_issue": {"average_duration_ms": 20000.0},
                                "sync": {"average_duration_ms": 5.0},
                            }},
            "error": {"error_rate_per_minute": 2.5},
        }

        alerts = candidates_from_metrics(summary, AlertThresholds(), now=BASE_TIME)

        found = {(a.component, a.metric): a.level for a in alerts}
        assert found == {
            ("api", "error_rate"): AlertLevel.CRITICAL,
            ("auto_labeling", "processing_time"): AlertLevel.WARNING,
            ("auto_labeling", "override_rate"): AlertLevel.INFO,
            ("performance", "memory"): AlertLevel.WARNING,
            ("performance", "label_issue_duration"): AlertLevel.WARNING,
            ("system", "error_rate"): AlertLevel.CRITICAL,
        }

    def test_measured_pairs_reported(self):
        measured = set()
        summary = {
            "api_usage": {"success_rate": 1.0, "average_response_time_ms": None},
            "performance": {"operation_breakdown": {"sync": {"average_duration_ms": 5.0}}},
        }

        alerts = candidates_from_metrics(summary, AlertThresholds(), measured=measured)

        assert alerts == []
        assert measured == {("api", "error_rate"), ("performance", "sync_duration")}

    def test_empty_summaries_raise_nothing(self, collector):
        """None fields from an empty range never produce alerts."""
        summary = collector.get_snapshot().to_dict()

        assert candidates_from_metrics(summary, AlertThresholds()) == []


# =============================================================================
# ENGINE TESTS
# =============================================================================


class TestAlertingEngine:
    """Tests for AlertingEngine."""

    @pytest.mark.asyncio
    async def test_trigger_dispatches(self, engine, channel):
        alert = await engine.trigger("warning", "api", "response_time", "slow", 6000, 5000)

        assert alert is not None
        channel.send.assert_awaited_once_with(alert)
        assert alert.deliveries == {"webhook": True}
        assert engine.get_active_alerts() == [alert]

    @pytest.mark.asyncio
    async def test_cooldown_suppresses_repeat(self, engine, channel):
        """Two identical alerts inside the cooldown dispatch once."""
        first = await engine.trigger(AlertLevel.WARNING, "api", "response_time", "slow")
        second = await engine.trigger(AlertLevel.WARNING, "api", "response_time", "slow")

        assert first is not None
        assert second is None
        assert channel.send.await_count == 1
        assert engine.get_alert_stats()["suppressed"]["cooldown"] == 1

    @pytest.mark.asyncio
    async def test_cooldown_expires(self, engine, clock, channel):
        """After the cooldown the alert lapses and may fire again."""
        first = await engine.trigger(AlertLevel.WARNING, "api", "response_time", "slow")
        clock.advance(301)

        second = await engine.trigger(AlertLevel.WARNING, "api", "response_time", "slow")

        assert second is not None
        assert first.expired is True
        assert first.resolved is False
        assert channel.send.await_count == 2

    @pytest.mark.asyncio
    async def test_different_keys_not_suppressed(self, engine):
        assert await engine.trigger("warning", "api", "response_time", "slow")
        assert await engine.trigger("warning", "api", "rate_limit", "low")

    @pytest.mark.asyncio
    async def test_hourly_ceiling(self, engine, clock, caplog):
        for i in range(10):
            assert await engine.trigger("info", "test", f"metric_{i}", "x")

        assert await engine.trigger("info", "test", "metric_10", "x") is None
        assert engine.alerts_this_hour == 10
        assert "Alert rate limit exceeded" in caplog.text

        clock.advance(3600)
        assert await engine.trigger("info", "test", "metric_10", "x") is not None

    @pytest.mark.asyncio
    async def test_ten_thousand_and_first_suppressed(self, clock):
        """With a 10000/hour ceiling, alert number 10001 is suppressed."""
        engine = AlertingEngine(cooldown_seconds=0, max_alerts_per_hour=10000,
                                max_history=20000, clock=clock)

        results = [
            await engine.trigger("info", "load", f"m{i}", "x") for i in range(10001)
        ]

        assert all(r is not None for r in results[:10000])
        assert results[10000] is None
        assert engine.get_alert_stats()["suppressed"]["rate_limit"] == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_emit_once(self, engine, channel):
        results = await asyncio.gather(*(
            engine.trigger("critical", "api", "error_rate", "failing") for _ in range(20)
        ))

        assert sum(1 for r in results if r is not None) == 1
        assert channel.send.await_count == 1

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_block_others(self, clock):
        broken = make_channel("slack", side_effect=RuntimeError("webhook down"))
        refused = make_channel("email", result=False)
        working = make_channel("webhook")
        engine = AlertingEngine(channels=[broken, refused, working], clock=clock)

        alert = await engine.trigger("critical", "api", "error_rate", "failing")

        assert alert.deliveries == {"slack": False, "email": False, "webhook": True}
        working.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_channel_filtering(self, clock):
        picky = make_channel("email")
        picky.accepts.return_value = False
        disabled = make_channel("slack")
        disabled.enabled = False
        engine = AlertingEngine(channels=[picky, disabled], clock=clock)

        alert = await engine.trigger("info", "api", "x", "x")

        picky.send.assert_not_awaited()
        disabled.send.assert_not_awaited()
        assert alert.deliveries == {}

    @pytest.mark.asyncio
    async def test_resolve(self, engine, clock):
        await engine.trigger("warning", "api", "response_time", "slow")
        clock.advance(120)

        resolved = await engine.resolve("api", "response_time")

        assert resolved.resolved is True
        assert resolved.resolution_seconds == 120
        assert engine.get_active_alerts() == []
        assert await engine.resolve("api", "response_time") is None

    @pytest.mark.asyncio
    async def test_resolve_ends_cooldown(self, engine):
        await engine.trigger("warning", "api", "response_time", "slow")
        await engine.resolve("api", "response_time")

        assert await engine.trigger("warning", "api", "response_time", "slow") is not None

    @pytest.mark.asyncio
    async def test_evaluate_health_snapshot(self, engine):
        snapshot = health_snapshot(
            ComponentHealth("api", HealthStatus.UNHEALTHY, ("api probe timed out after 30s",))
        )

        emitted = await engine.evaluate(snapshot)

        assert [(a.component, a.metric, a.level) for a in emitted] == [
            ("api", "component_health", AlertLevel.CRITICAL)
        ]
        assert "timed out" in emitted[0].message

    @pytest.mark.asyncio
    async def test_evaluate_metrics_snapshot(self, engine, collector):
        for i in range(10):
            collector.track_api_usage(endpoint="/user", status_code=500 if i < 2 else 200,
                                      success=i >= 2)

        emitted = await engine.evaluate(collector.get_snapshot())

        assert [(a.component, a.metric) for a in emitted] == [("api", "error_rate")]
        assert emitted[0].value == pytest.approx(0.2)

    @pytest.mark.asyncio
    async def test_recovered_metric_resolved(self, engine, clock):
        """A metric alert resolves once the metric is measured within threshold."""
        await engine.evaluate({"api_usage": {"success_rate": 0.8}})
        clock.advance(120)

        resolved = await engine.resolve_recovered({"api_usage": {"success_rate": 1.0}})

        assert [(a.component, a.metric) for a in resolved] == [("api", "error_rate")]
        assert engine.get_active_alerts() == []
        assert engine.get_alert_stats()["average_resolution_seconds"] == 120

    @pytest.mark.asyncio
    async def test_unmeasured_metric_stays_active(self, engine):
        """No data in the window is not a recovery."""
        await engine.evaluate({"api_usage": {"success_rate": 0.8}})

        resolved = await engine.resolve_recovered({"api_usage": {"success_rate": None}})

        assert resolved == []
        assert [a.metric for a in engine.get_active_alerts()] == ["error_rate"]

    @pytest.mark.asyncio
    async def test_breach_in_any_snapshot_keeps_alert(self, engine):
        """Health says accuracy is fine but the metrics window still breaches."""
        await engine.evaluate({"auto_labeling": {"average_accuracy": 0.5}})
        healthy = health_snapshot(
            ComponentHealth("auto_labeling", HealthStatus.HEALTHY, sampled_metric=1.0)
        )

        resolved = await engine.resolve_recovered(
            healthy, {"auto_labeling": {"average_accuracy": 0.5}}
        )

        assert resolved == []
        assert [a.key for a in engine.get_active_alerts()] == [("auto_labeling", "accuracy")]

    @pytest.mark.asyncio
    async def test_recovered_component_resolved(self, engine):
        await engine.evaluate(health_snapshot(
            ComponentHealth("api", HealthStatus.DEGRADED, ("slow",))
        ))

        resolved = await engine.resolve_recovered(
            health_snapshot(ComponentHealth("api", HealthStatus.HEALTHY))
        )

        assert [a.key for a in resolved] == [("api", "component_health")]
        assert resolved[0].resolved is True

    @pytest.mark.asyncio
    async def test_evaluate_rejects_unknown_input(self, engine):
        with pytest.raises(TypeError):
            await engine.evaluate(["not", "a", "snapshot"])

    @pytest.mark.asyncio
    async def test_subscribers(self, engine):
        received = []
        async_callback = AsyncMock()

        def broken(alert):
            raise RuntimeError("subscriber bug")

        unsubscribe = engine.subscribe(received.append)
        engine.subscribe(async_callback)
        engine.subscribe(broken)

        alert = await engine.trigger("info", "api", "x", "x")
        unsubscribe()
        await engine.trigger("info", "api", "y", "y")

        assert received == [alert]
        assert async_callback.await_count == 2

    @pytest.mark.asyncio
    async def test_audit_trail(self, clock):
        audit = MagicMock()
        engine = AlertingEngine(clock=clock, audit=audit)

        alert = await engine.trigger("critical", "api", "rate_limit", "low", 5, 100)
        clock.advance(10)
        await engine.resolve("api", "rate_limit")

        audit.log_alert.assert_called_once_with(alert.to_payload() | {
            "resolved": False, "resolved_at": None,
        })
        audit.log_alert_resolved.assert_called_once_with(alert.id, "api", "rate_limit", 10)

    @pytest.mark.asyncio
    async def test_history_and_stats(self, engine, clock):
        first = await engine.trigger("warning", "api", "response_time", "slow")
        clock.advance(60)
        second = await engine.trigger("critical", "api", "error_rate", "failing")
        clock.advance(60)
        third = await engine.trigger("info", "auto_labeling", "override_rate", "overrides")
        await engine.resolve("api", "response_time")

        assert engine.get_alert_history() == [third, second, first]
        assert engine.get_alert_history(component="api", limit=1) == [second]
        assert engine.get_alert_history(level="info") == [third]
        assert engine.get_alert_history(start=BASE_TIME + 30, end=BASE_TIME + 90) == [second]
        assert [a.id for a in engine.get_active_alerts(component="api")] == [second.id]

        stats = engine.get_alert_stats()
        assert stats["total"] == 3
        assert stats["active"] == 2
        assert stats["resolved"] == 1
        assert stats["by_level"] == {"info": 1, "critical": 1, "warning": 1}
        assert stats["by_component"] == {"auto_labeling": 1, "api": 2}
        assert stats["average_resolution_seconds"] == 120

    def test_prune_counters(self, engine, clock):
        hour = int(clock.now // 3600)
        engine._hourly_counts.update({hour - 3: 4, hour - 2: 1, hour - 1: 2, hour: 1})

        assert engine.prune_counters() == 2
        assert sorted(engine._hourly_counts) == [hour - 1, hour]
