# =============================================================================
# ISSUE TRIAGE MONITOR - TEST PACKAGE
# =============================================================================
"""
Test Package

Test Structure:
    tests/
    ├── conftest.py            # Shared fixtures (clock, collector, mocks)
    ├── test_labeling.py       # Content analysis and taxonomy
    ├── test_github_client.py  # Quota guard and error mapping
    ├── test_labeler.py        # Labeling workflow
    ├── test_metrics.py        # Events, collector, rollups, eviction
    ├── test_health.py         # Aggregator and probes
    ├── test_alerts.py         # Alerting engine
    ├── test_channels.py       # Notification channels
    ├── test_service.py        # Monitoring service
    ├── test_config.py         # Configuration loading
    ├── test_logger.py         # Masking and audit trail
    └── test_main.py           # Command line entry point

Running Tests:
    pytest tests/ -v
    pytest tests/ --cov=triage --cov=monitoring

No test touches the network: HTTP sessions, SMTP and sleeps are mocked
and clocks are injected.
"""
