# =============================================================================
# ISSUE TRIAGE MONITOR - MAIN ENTRY POINT
# =============================================================================
"""
Command Line Entry Point

Commands:
    run          Start the monitoring service until SIGINT/SIGTERM
    analyze      Analyze a title/body and print the result as JSON
    health       Run one health check; exit 0/1/2 for healthy/degraded/unhealthy
    sync-labels  Create or update the repository's triage labels

Usage:
    python -m triage.main run --config config/monitoring.yaml
    python -m triage.main analyze "Crash in scripts/install.sh" "fails on setup"
    python -m triage.main health
    python -m triage.main --debug sync-labels --labels config/labels.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional

from monitoring.health import HealthStatus
from monitoring.logger import AuditLogger, setup_logging
from monitoring.metrics import MetricsCollector
from monitoring.service import MonitoringService
from triage.analysis import analyze, explain_labels, load_label_definitions
from triage.config import ConfigError, github_client_kwargs, load_config
from triage.github.client import GitHubClient
from triage.labeler import IssueLabeler

logger = logging.getLogger(__name__)


EXIT_CODES = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


# =============================================================================
# HELPERS
# =============================================================================


def create_client(config, metrics=None, required: bool = False) -> Optional[GitHubClient]:
    """Build a GitHubClient, or None when credentials are missing and optional."""
    try:
        return GitHubClient(metrics=metrics, **github_client_kwargs(config))
    except ValueError as e:
        if required:
            raise
        logger.warning(f"GitHub client unavailable: {e}")
        return None


def create_service(config) -> MonitoringService:
    log_cfg = config["logging"]
    audit = AuditLogger(log_cfg["audit_file"]) if log_cfg.get("audit_file") else None
    metrics = MetricsCollector(config["metrics"])
    client = create_client(config, metrics=metrics)
    return MonitoringService(config, client=client, metrics=metrics, audit=audit)


# =============================================================================
# COMMANDS
# =============================================================================


async def cmd_run(config) -> int:
    service = create_service(config)

    loop = asyncio.get_running_loop()
    setup_signal_handlers(service, loop)

    try:
        await service.run()
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        await service.stop()
        raise
    return 0


def cmd_analyze(title: str, body: str) -> int:
    result = analyze(title, body)
    output = result.to_dict()
    output["explanation"] = explain_labels(result)
    print(json.dumps(output, indent=2))
    return 0


async def cmd_health(config) -> int:
    service = create_service(config)
    try:
        snapshot = await service.health.check_all()
    finally:
        if service.client is not None:
            service.client.close()
    print(json.dumps(snapshot.to_dict(), indent=2, default=str))
    return EXIT_CODES[snapshot.overall]


async def cmd_sync_labels(config, labels_path: Optional[str]) -> int:
    client = create_client(config, required=True)
    try:
        definitions = load_label_definitions(labels_path) if labels_path else None
        results = await IssueLabeler(client).sync_taxonomy(definitions)
    finally:
        client.close()
    print(json.dumps(results, indent=2))
    return 1 if results["failed"] else 0


# =============================================================================
# CLI ARGUMENT PARSING
# =============================================================================


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Issue Triage Monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--config",
        default="config/monitoring.yaml",
        help="Path to configuration file (default: config/monitoring.yaml)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Start the monitoring service")

    analyze_parser = subparsers.add_parser("analyze", help="Analyze issue text")
    analyze_parser.add_argument("title", help="Issue title")
    analyze_parser.add_argument("body", nargs="?", default="", help="Issue body")

    subparsers.add_parser("health", help="Run one health check")

    sync_parser = subparsers.add_parser("sync-labels", help="Sync repository labels")
    sync_parser.add_argument(
        "--labels",
        default=None,
        help="YAML label definitions (default: built-in taxonomy)",
    )

    return parser.parse_args(argv)


# =============================================================================
# SIGNAL HANDLING
# =============================================================================


def setup_signal_handlers(service: MonitoringService, loop: asyncio.AbstractEventLoop) -> None:
    """Setup signal handlers for graceful shutdown."""

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, initiating shutdown...")
        loop.call_soon_threadsafe(service.request_stop)

    # Only set signal handlers if running on Unix-like systems
    if sys.platform != "win32":
        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "analyze":
        return cmd_analyze(args.title, args.body)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    log_cfg = config["logging"]
    setup_logging(
        level="DEBUG" if args.debug else log_cfg["level"],
        fmt=log_cfg["format"],
        log_dir=log_cfg.get("log_dir"),
    )

    try:
        if args.command == "run":
            return asyncio.run(cmd_run(config))
        if args.command == "health":
            return asyncio.run(cmd_health(config))
        return asyncio.run(cmd_sync_labels(config, args.labels))
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        return 0
    except Exception as e:
        logger.critical(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
