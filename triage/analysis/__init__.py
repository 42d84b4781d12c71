# =============================================================================
# ISSUE TRIAGE MONITOR - CONTENT ANALYSIS PACKAGE
# =============================================================================
"""
Content Analysis Package

Pure, I/O-free categorization of issue text.

Usage:
    from triage.analysis import analyze

    result = analyze("Crash in scripts/install.sh", "")
    print(result.labels, result.confidence)
"""

from triage.analysis.labeling import (
    Priority,
    AnalysisResult,
    AccuracyCase,
    AccuracyReport,
    analyze,
    detect_components,
    detect_priority,
    is_security_related,
    explain_labels,
    evaluate_accuracy,
    SECURITY_LABEL,
    SELF_TEST_CASES,
)

from triage.analysis.taxonomy import (
    LabelDefinition,
    LabelConfigError,
    DEFAULT_LABELS,
    load_label_definitions,
    validate_label_definitions,
)

__all__ = [
    "Priority",
    "AnalysisResult",
    "AccuracyCase",
    "AccuracyReport",
    "analyze",
    "detect_components",
    "detect_priority",
    "is_security_related",
    "explain_labels",
    "evaluate_accuracy",
    "SECURITY_LABEL",
    "SELF_TEST_CASES",
    "LabelDefinition",
    "LabelConfigError",
    "DEFAULT_LABELS",
    "load_label_definitions",
    "validate_label_definitions",
]
