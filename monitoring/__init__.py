# =============================================================================
# ISSUE TRIAGE MONITOR - MONITORING PACKAGE
# =============================================================================
"""
Monitoring Package

Observability for the triage automation: metrics, health, alerting and
logging.

Components:
    - Events: Typed, validated metric events per category
    - Metrics: Time-bucketed collector with summaries, rollups and a
      Prometheus mirror
    - Health: Concurrent probes reduced to one overall status
    - Alerts: Threshold alerts with cooldown and an hourly ceiling
    - Channels: Slack, webhook and email delivery
    - Service: Periodic tasks and the dashboard query surface
    - Logger: structlog setup, masking and the audit trail

Usage:
    from monitoring import setup_logging, MonitoringService

    setup_logging(level="INFO", fmt="json", log_dir="./logs")
    service = MonitoringService(config, client=client)
    await service.run()
"""

# Logger
from monitoring.logger import (
    setup_logging,
    get_logger,
    AuditLogger,
    LogContext,
    log_context,
    JSONFormatter,
    ContextVarsFilter,
    mask_sensitive_data,
    mask_dict,
)

# Events and metrics
from monitoring.events import (
    MetricCategory,
    Granularity,
    MetricEvent,
    EventValidationError,
    build_event,
)
from monitoring.metrics import (
    MetricsCollector,
    MetricsSnapshot,
    create_metrics_collector,
)

# Health
from monitoring.health import (
    HealthStatus,
    ComponentHealth,
    HealthSnapshot,
    HealthCheckAggregator,
    ApiProbe,
    AnalysisProbe,
    ResourceProbe,
)

# Alerting
from monitoring.alerts import (
    Alert,
    AlertLevel,
    AlertThresholds,
    AlertingEngine,
    AlertStateError,
)
from monitoring.channels import (
    NotificationChannel,
    SlackChannel,
    WebhookChannel,
    EmailChannel,
    build_channels,
)

# Service
from monitoring.service import MonitoringService


__all__ = [
    # Logger
    "setup_logging",
    "get_logger",
    "AuditLogger",
    "LogContext",
    "log_context",
    "JSONFormatter",
    "ContextVarsFilter",
    "mask_sensitive_data",
    "mask_dict",
    # Events and metrics
    "MetricCategory",
    "Granularity",
    "MetricEvent",
    "EventValidationError",
    "build_event",
    "MetricsCollector",
    "MetricsSnapshot",
    "create_metrics_collector",
    # Health
    "HealthStatus",
    "ComponentHealth",
    "HealthSnapshot",
    "HealthCheckAggregator",
    "ApiProbe",
    "AnalysisProbe",
    "ResourceProbe",
    # Alerting
    "Alert",
    "AlertLevel",
    "AlertThresholds",
    "AlertingEngine",
    "AlertStateError",
    "NotificationChannel",
    "SlackChannel",
    "WebhookChannel",
    "EmailChannel",
    "build_channels",
    # Service
    "MonitoringService",
]
