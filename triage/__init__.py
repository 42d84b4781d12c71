# =============================================================================
# ISSUE TRIAGE MONITOR - TRIAGE PACKAGE
# =============================================================================
"""
Triage Package

Categorizes incoming issues and applies labels through the GitHub API.

Package Structure:
    - analysis/: Pure content analysis and the label taxonomy
    - github/: Rate-limit aware GitHub API client
    - labeler.py: Analyze-and-label workflow
    - config.py: YAML + environment configuration
    - main.py: Command line entry point

Usage:
    python -m triage.main analyze "Crash in scripts/install.sh"
    python -m triage.main run --config config/monitoring.yaml
"""

__version__ = "1.0.0"
