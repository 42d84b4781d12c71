# =============================================================================
# ISSUE TRIAGE MONITOR - CLI TESTS
# =============================================================================
"""
Tests for the command line entry point.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from triage import main as main_module
from triage.config import CHANNEL_ENV, ENV_MAPPINGS
from triage.main import main, parse_args


@pytest.fixture(autouse=True)
def isolated(monkeypatch):
    """No credentials from the environment and no global log setup."""
    for name in list(ENV_MAPPINGS) + list(CHANNEL_ENV):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(main_module, "setup_logging", MagicMock())


class TestParseArgs:
    """Tests for parse_args()."""

    def test_analyze(self):
        args = parse_args(["analyze", "Crash in install.sh"])

        assert args.command == "analyze"
        assert args.body == ""
        assert args.config == "config/monitoring.yaml"

    def test_sync_labels_options(self):
        args = parse_args(["--debug", "--config", "x.yaml", "sync-labels", "--labels", "l.yaml"])

        assert args.debug is True
        assert args.config == "x.yaml"
        assert args.labels == "l.yaml"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


class TestMain:
    """Tests for main()."""

    def test_analyze_prints_json(self, capsys):
        code = main(["analyze", "scripts/install.sh fails", "crash on setup"])

        output = json.loads(capsys.readouterr().out)
        assert code == 0
        assert output["labels"] == ["component:installation", "priority:critical"]
        assert output["explanation"] == (
            "Detected component: installation; Priority level: critical"
        )

    def test_config_error(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("health:\n  interval: 0\n", encoding="utf-8")

        code = main(["--config", str(path), "health"])

        assert code == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_health_without_credentials(self, tmp_path, capsys):
        """No client configured: the API probe degrades the overall status."""
        code = main(["--config", str(tmp_path / "missing.yaml"), "health"])

        output = json.loads(capsys.readouterr().out)
        assert output["components"]["api"]["status"] == "degraded"
        assert code >= 1

    def test_sync_labels_requires_credentials(self, tmp_path):
        assert main(["--config", str(tmp_path / "missing.yaml"), "sync-labels"]) == 1

    def test_sync_labels(self, tmp_path, monkeypatch, capsys):
        client = MagicMock()
        client.sync_labels = AsyncMock(
            return_value={"created": ["priority:low"], "updated": [], "failed": []}
        )
        monkeypatch.setattr(main_module, "create_client", lambda *a, **kw: client)

        code = main(["--config", str(tmp_path / "missing.yaml"), "sync-labels"])

        assert code == 0
        assert json.loads(capsys.readouterr().out)["created"] == ["priority:low"]
        client.close.assert_called_once()

    def test_sync_labels_partial_failure(self, tmp_path, monkeypatch, capsys):
        client = MagicMock()
        client.sync_labels = AsyncMock(return_value={
            "created": [], "updated": [], "failed": [{"name": "x", "error": "boom"}],
        })
        monkeypatch.setattr(main_module, "create_client", lambda *a, **kw: client)

        assert main(["--config", str(tmp_path / "missing.yaml"), "sync-labels"]) == 1
