# =============================================================================
# ISSUE TRIAGE MONITOR - STRUCTURED LOGGING
# =============================================================================
"""
Structured Logging Module

Consistent, structured logging for the triage and monitoring packages.
structlog renders JSON (or console) output; the stdlib root logger
carries module loggers and the rotating log file.

Features:
    - JSON-formatted logs for easy parsing
    - Contextual fields bound per issue or per cycle
    - Credential and webhook URL masking
    - File output with rotation
    - Audit trail of API calls, labeling, alerts and health checks
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from structlog.contextvars import (
    bind_contextvars,
    get_contextvars,
    merge_contextvars,
    unbind_contextvars,
)


# =============================================================================
# SENSITIVE DATA MASKING
# =============================================================================

# Key fragments whose values are masked
SENSITIVE_KEYS = frozenset([
    "token", "api_key", "password", "secret", "credential",
    "authorization", "webhook_url", "smtp_password", "private_key",
])


def _is_sensitive(key: Any) -> bool:
    """Check if a key name indicates sensitive data."""
    key_lower = str(key).lower().replace("-", "_")
    return any(s in key_lower for s in SENSITIVE_KEYS)


def _mask_value(value: Any) -> str:
    """Mask a sensitive value entirely."""
    return "****"


def _mask(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: _mask_value(v) if _is_sensitive(k) else _mask(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_mask(v) for v in value)
    return value


def mask_sensitive_data(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Structlog processor that masks sensitive data in log events.

    Nested dicts and lists are processed recursively.
    """
    return _mask(event_dict)


def mask_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Mask sensitive values in an arbitrary dict (config dumps, audit events)."""
    return _mask(data)


# =============================================================================
# STDLIB FORMATTER AND CONTEXT FILTER
# =============================================================================


class ContextVarsFilter(logging.Filter):
    """Copy fields bound with :class:`LogContext` onto stdlib log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = get_contextvars()
        record.log_context = context
        for key, value in context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """JSON log formatter for the rotating log file."""

    EXTRA_FIELDS = ("issue_number", "component", "operation", "alert_id", "cycle")

    def __init__(self, mask_sensitive: bool = True):
        super().__init__()
        self.mask_sensitive = mask_sensitive

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }

        for key in self.EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        for key, val in getattr(record, "log_context", {}).items():
            log_entry.setdefault(key, val)

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        if self.mask_sensitive:
            log_entry = mask_dict(log_entry)

        return json.dumps(log_entry, default=str)


# =============================================================================
# LOGGING SETUP
# =============================================================================


def setup_logging(
    level: str = "INFO",
    fmt: str = "json",
    log_file: Optional[str] = None,
    log_dir: Optional[str] = None,
    mask_sensitive: bool = True,
    max_bytes: int = 50 * 1024 * 1024,  # 50 MB
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: Output format, ``"json"`` or ``"text"``.
        log_file: Explicit log file path. Overrides *log_dir*.
        log_dir: Directory for log files. When set (and *log_file* is
            ``None``), logs are written to ``<log_dir>/triage.log``.
        mask_sensitive: Mask sensitive values in logs.
        max_bytes: Max file size before rotation.
        backup_count: Number of rotated files to keep.

    Returns:
        Root logger instance.
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)

    resolved_log_file: Optional[str] = log_file
    if resolved_log_file is None and log_dir is not None:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        resolved_log_file = str(Path(log_dir) / "triage.log")

    # ------------------------------------------------------------------
    # structlog
    # ------------------------------------------------------------------
    processors: list = [
        merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if mask_sensitive:
        processors.append(mask_sensitive_data)

    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # ------------------------------------------------------------------
    # stdlib logging (module loggers)
    # ------------------------------------------------------------------
    root = logging.getLogger()
    root.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates on re-init
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(numeric_level)
    if fmt == "json":
        console.setFormatter(JSONFormatter(mask_sensitive=mask_sensitive))
    else:
        console.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    console.addFilter(ContextVarsFilter())
    root.addHandler(console)

    if resolved_log_file:
        Path(resolved_log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            resolved_log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter(mask_sensitive=mask_sensitive))
        file_handler.addFilter(ContextVarsFilter())
        root.addHandler(file_handler)

    # Suppress noisy third-party loggers
    for name in ("urllib3", "aiohttp.access", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def get_logger(name: Optional[str] = None, **initial_values: Any):
    """Return a structlog logger with optional bound values."""
    return structlog.get_logger(name, **initial_values)


# =============================================================================
# LOG CONTEXT MANAGER
# =============================================================================


class LogContext:
    """
    Context manager that binds key-value pairs to all structlog events
    emitted inside the block.

    Usage::

        with LogContext(issue_number=123, component="labeler"):
            log.info("labeling")
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs

    def __enter__(self) -> "LogContext":
        bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_contextvars(*self.context.keys())


@contextmanager
def log_context(**kwargs: Any):
    """Functional alias for :class:`LogContext`."""
    with LogContext(**kwargs) as ctx:
        yield ctx


# =============================================================================
# AUDIT LOGGER
# =============================================================================


class AuditLogger:
    """
    Audit trail writer.

    Records structured events to a JSONL file (one JSON object per line)
    for debugging and post-mortem analysis.

    Event categories:
        - ``api_call``: GitHub API calls
        - ``labeling``: Labels applied to an issue
        - ``alert``: Alerts emitted
        - ``alert_resolved``: Alerts resolved
        - ``health_check``: Health cycle outcomes
        - ``error``: Component errors

    Usage::

        audit = AuditLogger("./logs/audit.jsonl")
        audit.log_labeling(42, ["component:installation", "priority:high"], 0.7)
    """

    def __init__(
        self,
        output_path: str = "./logs/audit.jsonl",
        max_bytes: int = 100 * 1024 * 1024,  # 100 MB
        backup_count: int = 10,
    ):
        self.output_path = output_path
        self._logger = logging.getLogger(f"audit.{output_path}")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False  # don't echo to root logger

        if not self._logger.handlers:
            Path(output_path).parent.mkdir(parents=True, exist_ok=True)
            handler = logging.handlers.RotatingFileHandler(
                output_path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(handler)

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)

    # -----------------------------------------------------------------
    # Event writers
    # -----------------------------------------------------------------

    def _write_event(self, event_type: str, data: Dict[str, Any]) -> None:
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            **mask_dict(data),
        }
        self._logger.info(json.dumps(event, default=str))

    def log_api_call(
        self,
        operation: str,
        method: str,
        endpoint: str,
        status: Optional[int],
        issue_number: Optional[int] = None,
    ) -> None:
        """Log a GitHub API call."""
        self._write_event("api_call", {
            "operation": operation,
            "method": method,
            "endpoint": endpoint,
            "status": status,
            "issue_number": issue_number,
        })

    def log_labeling(
        self,
        issue_number: int,
        labels: List[str],
        confidence: float,
        security_flag: bool = False,
    ) -> None:
        """Log labels applied to an issue."""
        self._write_event("labeling", {
            "issue_number": issue_number,
            "labels": sorted(labels),
            "confidence": round(confidence, 3),
            "security_flag": security_flag,
        })

    def log_alert(self, alert: Dict[str, Any]) -> None:
        """Log an emitted alert (its payload dict)."""
        self._write_event("alert", alert)

    def log_alert_resolved(self, alert_id: str, component: str, metric: str,
                           resolution_seconds: Optional[float]) -> None:
        """Log an alert resolution."""
        self._write_event("alert_resolved", {
            "alert_id": alert_id,
            "component": component,
            "metric": metric,
            "resolution_seconds": resolution_seconds,
        })

    def log_health_check(self, overall: str, components: Dict[str, str],
                         duration_ms: float) -> None:
        """Log the outcome of a health cycle."""
        self._write_event("health_check", {
            "overall": overall,
            "components": components,
            "duration_ms": round(duration_ms, 1),
        })

    def log_error(
        self,
        component: str,
        error_type: str,
        message: str,
        issue_number: Optional[int] = None,
    ) -> None:
        """Log an error event."""
        self._write_event("error", {
            "component": component,
            "error_type": error_type,
            "message": message,
            "issue_number": issue_number,
        })


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    # Setup
    "setup_logging",
    "get_logger",
    # Data masking
    "mask_sensitive_data",
    "mask_dict",
    # Context
    "LogContext",
    "log_context",
    # Formatters
    "JSONFormatter",
    "ContextVarsFilter",
    # Audit
    "AuditLogger",
]
