# =============================================================================
# ISSUE TRIAGE MONITOR - CONTENT ANALYSIS TESTS
# =============================================================================
"""
Tests for the content analysis engine and label taxonomy.
"""

import pytest

from triage.analysis import (
    AccuracyCase,
    DEFAULT_LABELS,
    LabelConfigError,
    Priority,
    SECURITY_LABEL,
    SELF_TEST_CASES,
    analyze,
    detect_components,
    detect_priority,
    evaluate_accuracy,
    explain_labels,
    is_security_related,
    load_label_definitions,
    validate_label_definitions,
)


# =============================================================================
# ANALYSIS TESTS
# =============================================================================


class TestAnalyze:
    """Tests for analyze()."""

    def test_path_and_keyword_labels(self):
        """Install script crash maps to installation and critical."""
        result = analyze("scripts/install.sh fails", "Crash on Ubuntu 22.04")

        assert result.labels == frozenset({"component:installation", "priority:critical"})
        assert result.components == ("component:installation",)
        assert result.priority is Priority.CRITICAL
        assert result.security_flag is False
        assert result.confidence == pytest.approx(0.7)

    def test_file_path_beats_keywords(self):
        """A file path literal wins over an earlier keyword match."""
        result = analyze(
            "Installation guide mentions framework/validate-framework.sh", ""
        )

        assert result.components == ("component:validation",)
        assert "component:installation" not in result.labels

    def test_single_component(self):
        """At most one component label is applied."""
        result = analyze("docs/ and scripts/install.sh and spec-init.md", "")

        components = [l for l in result.labels if l.startswith("component:")]
        assert len(components) == 1

    def test_security_raises_normal_to_high(self):
        """Security content without a priority keyword becomes high."""
        result = analyze("SQL injection in login form", "")

        assert result.security_flag is True
        assert SECURITY_LABEL in result.labels
        assert result.priority is Priority.HIGH
        assert "priority:high" in result.labels
        assert result.confidence == pytest.approx(0.3)

    def test_security_raises_low_to_high(self):
        """A low priority keyword is overridden by security content."""
        result = analyze("Minor XSS in footer", "")

        assert result.priority is Priority.HIGH
        assert result.confidence == pytest.approx(0.6)

    def test_security_keeps_critical(self):
        """Critical security issues stay critical."""
        result = analyze("Security breach causes data loss", "")

        assert result.priority is Priority.CRITICAL
        assert SECURITY_LABEL in result.labels

    def test_default_priority_has_no_confidence(self):
        """The default normal priority adds nothing to confidence."""
        result = analyze("Question about behaviour", "")

        assert result.labels == frozenset({"priority:normal"})
        assert result.confidence == 0.0

    def test_exactly_one_priority_label(self):
        """Every result carries exactly one priority label."""
        for title in ("crash", "minor", "blocker", "", "security"):
            result = analyze(title, "")
            priorities = [l for l in result.labels if l.startswith("priority:")]
            assert len(priorities) == 1

    def test_none_inputs(self):
        """None title and body produce a well-formed result."""
        result = analyze(None, None)

        assert result.labels == frozenset({"priority:normal"})
        assert result.components == ()
        assert result.confidence == 0.0

    def test_non_string_inputs(self):
        """Numbers and bytes are coerced to text."""
        result = analyze(12345, b"fatal error")

        assert result.priority is Priority.CRITICAL

    def test_very_large_input(self):
        """Multi-megabyte bodies are analyzed without error."""
        body = "lorem ipsum " * 500_000 + " cosmetic"

        result = analyze("Large body", body)

        assert result.priority is Priority.LOW

    def test_hostile_input_is_not_evaluated(self):
        """Template and shell syntax is treated as plain text."""
        result = analyze("{{7*7}} $(rm -rf /) <script>alert(1)</script>", "%s%n" * 100)

        assert 0.0 <= result.confidence <= 1.0
        assert "priority:normal" in result.labels

    def test_confidence_bounded(self):
        """Confidence stays within [0, 1] for a saturated input."""
        result = analyze(
            "Critical security vulnerability in scripts/install.sh",
            "exploit allows privilege escalation, data loss",
        )

        assert 0.0 <= result.confidence <= 1.0
        assert result.confidence == pytest.approx(1.0)

    def test_to_dict(self):
        """to_dict() exposes sorted labels and the priority label."""
        data = analyze("scripts/install.sh fails", "crash").to_dict()

        assert data["labels"] == ["component:installation", "priority:critical"]
        assert data["priority"] == "priority:critical"
        assert data["security"] is False


class TestDetectors:
    """Tests for the individual detectors."""

    def test_priority_word_boundaries(self):
        """Single-word keywords match whole words only."""
        assert detect_priority("the app crashes on start") == (Priority.NORMAL, False)
        assert detect_priority("the app will crash") == (Priority.CRITICAL, True)
        assert detect_priority("minority report") == (Priority.NORMAL, False)

    def test_priority_tier_order(self):
        """Critical keywords are checked before low ones."""
        priority, matched = detect_priority("minor crash")

        assert priority is Priority.CRITICAL
        assert matched is True

    def test_priority_phrase(self):
        """Multi-word keywords use substring search."""
        assert detect_priority("this is a nice to have")[0] is Priority.LOW

    def test_detect_components_empty(self):
        """Unmatched content yields no component."""
        assert detect_components("nothing relevant here") == []

    def test_is_security_related(self):
        assert is_security_related("leaked credentials in log")
        assert not is_security_related("typo in heading")


class TestExplainLabels:
    """Tests for explain_labels()."""

    def test_full_explanation(self):
        """Component, priority and security parts are joined."""
        result = analyze("Exploit in scripts/install.sh", "")

        text = explain_labels(result)

        assert text == (
            "Detected component: installation; Priority level: high; "
            "Security-related issue detected"
        )

    def test_priority_only(self):
        assert explain_labels(analyze("", "")) == "Priority level: normal"


class TestEvaluateAccuracy:
    """Tests for the labeled-corpus accuracy check."""

    def test_self_test_corpus_passes(self):
        """The built-in corpus is labeled fully correctly."""
        report = evaluate_accuracy(SELF_TEST_CASES)

        assert report.total == len(SELF_TEST_CASES)
        assert report.correct == report.total
        assert report.accuracy == 1.0

    def test_incorrect_case(self):
        """A case missing an expected label counts as incorrect."""
        cases = [
            AccuracyCase(title="fatal crash", expected=("priority:critical",)),
            AccuracyCase(title="fatal crash", expected=("priority:low",)),
        ]

        report = evaluate_accuracy(cases)

        assert report.accuracy == 0.5
        assert [r["correct"] for r in report.results] == [True, False]

    def test_empty_corpus(self):
        """No cases gives an undefined accuracy."""
        report = evaluate_accuracy([])

        assert report.accuracy is None
        assert report.total == 0


# =============================================================================
# TAXONOMY TESTS
# =============================================================================


class TestTaxonomy:
    """Tests for label definitions."""

    def test_default_labels_cover_engine_output(self):
        """Every priority and the security label have a definition."""
        names = {label.name for label in DEFAULT_LABELS}

        for priority in Priority:
            assert priority.label in names
        assert SECURITY_LABEL in names
        assert "component:installation" in names
        assert len(names) == len(DEFAULT_LABELS)

    def test_default_labels_are_valid(self):
        raw = [label.to_dict() for label in DEFAULT_LABELS]
        assert validate_label_definitions(raw) == []

    def test_validate_rejects_non_list(self):
        assert validate_label_definitions({"name": "x"}) == [
            "Labels configuration must be a list"
        ]

    def test_validate_reports_each_problem(self):
        """Bad names, colors and descriptions are all reported."""
        errors = validate_label_definitions([
            {"name": "", "color": "zzzzzz", "description": ""},
            "not-a-mapping",
        ])

        assert len(errors) == 4
        assert "Label 1: must be a mapping" in errors

    def test_load_from_yaml(self, tmp_path):
        """Labels load from YAML and colors lose their '#' prefix."""
        path = tmp_path / "labels.yaml"
        path.write_text(
            '- name: "priority:critical"\n'
            '  color: "#b60205"\n'
            '  description: "Urgent"\n',
            encoding="utf-8",
        )

        labels = load_label_definitions(str(path))

        assert len(labels) == 1
        assert labels[0].name == "priority:critical"
        assert labels[0].color == "b60205"

    def test_load_invalid_yaml_content(self, tmp_path):
        path = tmp_path / "labels.yaml"
        path.write_text("- name: x\n  color: red\n", encoding="utf-8")

        with pytest.raises(LabelConfigError) as exc_info:
            load_label_definitions(str(path))

        assert len(exc_info.value.errors) == 2

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(LabelConfigError):
            load_label_definitions(str(tmp_path / "missing.yaml"))
