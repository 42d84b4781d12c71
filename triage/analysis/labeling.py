# =============================================================================
# ISSUE TRIAGE MONITOR - CONTENT ANALYSIS ENGINE
# =============================================================================
"""
Content Analysis Engine

Maps issue title and body text to categorization labels:
component, priority and a security flag, with a confidence score.

Detection order:
    1. File path literals (highest confidence, first match wins)
    2. Component keywords (only when no path matched)
    3. Priority keywords (critical -> high -> low, default normal)
    4. Security keywords (forces type:security, raises normal/low to high)

Everything in this module is pure: no I/O, no logging, and text is only
ever compared, never evaluated.

Usage:
    result = analyze("scripts/install.sh fails", "Crash on Ubuntu 22.04")
    result.labels       # frozenset({'component:installation', 'priority:critical'})
    result.confidence   # 0.7
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Pattern, Tuple


# =============================================================================
# DETECTION TABLES
# =============================================================================

# File path literals per component (checked before keywords)
FILE_PATH_MAPPINGS: Dict[str, Tuple[str, ...]] = {
    "component:agent-spec-analyst": (
        "framework/agents/spec-analyst.md", "agents/spec-analyst", "spec-analyst.md",
    ),
    "component:agent-test-designer": (
        "framework/agents/test-designer.md", "agents/test-designer", "test-designer.md",
    ),
    "component:agent-arch-designer": (
        "framework/agents/arch-designer.md", "agents/arch-designer", "arch-designer.md",
    ),
    "component:agent-impl-specialist": (
        "framework/agents/impl-specialist.md", "agents/impl-specialist",
        "impl-specialist.md",
    ),
    "component:agent-qa-validator": (
        "framework/agents/qa-validator.md", "agents/qa-validator", "qa-validator.md",
    ),
    "component:command-spec-init": (
        "framework/commands/spec-init.md", "commands/spec-init", "spec-init.md",
    ),
    "component:command-spec-review": (
        "framework/commands/spec-review.md", "commands/spec-review", "spec-review.md",
    ),
    "component:command-impl-plan": (
        "framework/commands/impl-plan.md", "commands/impl-plan", "impl-plan.md",
    ),
    "component:command-qa-check": (
        "framework/commands/qa-check.md", "commands/qa-check", "qa-check.md",
    ),
    "component:command-spec-workflow": (
        "framework/commands/spec-workflow.md", "commands/spec-workflow",
        "spec-workflow.md",
    ),
    "component:installation": (
        "scripts/install.sh", "scripts/update.sh", "scripts/uninstall.sh", "install.sh",
    ),
    "component:validation": (
        "framework/validate-framework.sh", "validate-framework.sh", "validate-framework",
    ),
    "component:docs": (
        "readme.md", "docs/", "contributing.md", "documentation",
    ),
}

# Keyword lists per component (fallback when no path matched)
COMPONENT_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "component:agent-spec-analyst": (
        "spec-analyst", "specification analysis", "requirements analysis",
        "spec analyst", "requirement parsing", "specification parsing",
    ),
    "component:agent-test-designer": (
        "test-designer", "test design", "test creation", "test designer",
        "testing framework", "test cases", "test planning",
    ),
    "component:agent-arch-designer": (
        "arch-designer", "architecture", "system design", "arch designer",
        "architectural", "design patterns", "system architecture",
    ),
    "component:agent-impl-specialist": (
        "impl-specialist", "implementation", "code generation", "impl specialist",
        "code implementation", "implementation specialist", "coding",
    ),
    "component:agent-qa-validator": (
        "qa-validator", "quality assurance", "validation", "qa validator",
        "quality validation", "qa check", "quality control",
    ),
    "component:command-spec-init": (
        "/spec-init", "spec-init", "initialize specification", "spec init",
        "specification initialization",
    ),
    "component:command-spec-review": (
        "/spec-review", "spec-review", "review specification", "spec review",
        "specification review",
    ),
    "component:command-impl-plan": (
        "/impl-plan", "impl-plan", "implementation plan", "impl plan",
        "implementation planning",
    ),
    "component:command-qa-check": (
        "/qa-check", "qa-check", "quality check", "qa check",
    ),
    "component:command-spec-workflow": (
        "/spec-workflow", "spec-workflow", "complete workflow", "spec workflow",
        "workflow automation",
    ),
    "component:installation": (
        "install.sh", "installation", "install", "setup", "scripts/install",
        "framework installation", "setup script",
    ),
    "component:validation": (
        "validate-framework.sh", "validation", "validate", "framework/validate",
        "framework validation", "validation script",
    ),
    "component:docs": (
        "documentation", "readme", "docs/", "guide", ".md",
        "documentation update", "docs improvement",
    ),
}

SECURITY_KEYWORDS: Tuple[str, ...] = (
    "security", "vulnerability", "exploit", "cve", "xss", "injection",
    "authentication", "authorization", "privilege escalation", "malicious",
    "attack", "breach", "sensitive data", "credentials",
)

SECURITY_LABEL = "type:security"

# Confidence contributions
COMPONENT_WEIGHT = 0.4
PRIORITY_WEIGHT = 0.3
SECURITY_WEIGHT = 0.3


# =============================================================================
# RESULT TYPES
# =============================================================================


class Priority(Enum):
    """Issue priority levels."""
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def label(self) -> str:
        return f"priority:{self.value}"


# Keyword tiers, in evaluation order
PRIORITY_KEYWORDS: Dict[Priority, Tuple[str, ...]] = {
    Priority.CRITICAL: (
        "critical", "urgent", "breaking", "system down", "production down",
        "security breach", "data loss", "corruption", "crash", "fatal",
    ),
    Priority.HIGH: (
        "important", "high priority", "significantly", "blocking", "blocker",
        "major bug", "serious", "affects many", "productivity impact",
    ),
    Priority.LOW: (
        "low priority", "nice to have", "minor", "convenience", "cosmetic",
        "trivial", "small improvement", "polish",
    ),
}


def _compile_matcher(keyword: str) -> Optional[Pattern[str]]:
    # Phrases use plain substring search; single words need word boundaries
    if " " in keyword:
        return None
    return re.compile(rf"\b{re.escape(keyword)}\b")


_PRIORITY_MATCHERS: Dict[Priority, List[Tuple[str, Optional[Pattern[str]]]]] = {
    priority: [(kw, _compile_matcher(kw)) for kw in keywords]
    for priority, keywords in PRIORITY_KEYWORDS.items()
}


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of analyzing one issue. Immutable."""
    labels: FrozenSet[str] = frozenset()
    components: Tuple[str, ...] = ()
    priority: Priority = Priority.NORMAL
    security_flag: bool = False
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "labels": sorted(self.labels),
            "components": list(self.components),
            "priority": self.priority.label,
            "security": self.security_flag,
            "confidence": round(self.confidence, 4),
        }


@dataclass
class AccuracyCase:
    """A labeled example: the labels a correct analysis must contain."""
    title: str
    body: str = ""
    expected: Tuple[str, ...] = ()


@dataclass
class AccuracyReport:
    """Result of running the engine over labeled cases."""
    accuracy: Optional[float]
    total: int
    correct: int
    results: List[Dict[str, Any]] = field(default_factory=list)


# =============================================================================
# DETECTORS
# =============================================================================


def _normalize(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if not isinstance(value, str):
        try:
            return str(value)
        except Exception:
            return ""
    return value


def detect_components(content: str) -> List[str]:
    """
    Detect the component label for lowercased content.

    File path literals are checked first; the first table entry with a
    hit wins and keyword matching is skipped entirely.
    """
    for label, paths in FILE_PATH_MAPPINGS.items():
        if any(path in content for path in paths):
            return [label]

    for label, keywords in COMPONENT_KEYWORDS.items():
        if any(keyword in content for keyword in keywords):
            return [label]

    return []


def detect_priority(content: str) -> Tuple[Priority, bool]:
    """
    Detect priority for lowercased content.

    Returns:
        (priority, matched) where ``matched`` is False when the default
        ``Priority.NORMAL`` was used.
    """
    for priority, matchers in _PRIORITY_MATCHERS.items():
        for keyword, pattern in matchers:
            if pattern is None:
                if keyword in content:
                    return priority, True
            elif pattern.search(content):
                return priority, True
    return Priority.NORMAL, False


def is_security_related(content: str) -> bool:
    """Check lowercased content for security keywords."""
    return any(keyword in content for keyword in SECURITY_KEYWORDS)


# =============================================================================
# ANALYSIS
# =============================================================================


def analyze(title: Any, body: Any = "") -> AnalysisResult:
    """
    Analyze issue content and return labels with a confidence score.

    Total over its inputs: ``None``, non-string and very large values
    all produce a well-formed result.

    Args:
        title: Issue title
        body: Issue body

    Returns:
        AnalysisResult
    """
    content = f"{_normalize(title)} {_normalize(body)}".lower()
    confidence = 0.0

    components = detect_components(content)
    if components:
        confidence += COMPONENT_WEIGHT

    priority, priority_matched = detect_priority(content)
    # A defaulted normal priority is a guess and adds no confidence
    if priority_matched:
        confidence += PRIORITY_WEIGHT

    security = is_security_related(content)
    if security:
        if priority in (Priority.NORMAL, Priority.LOW):
            priority = Priority.HIGH
        confidence += SECURITY_WEIGHT

    labels = set(components)
    labels.add(priority.label)
    if security:
        labels.add(SECURITY_LABEL)

    return AnalysisResult(
        labels=frozenset(labels),
        components=tuple(components),
        priority=priority,
        security_flag=security,
        confidence=min(round(confidence, 10), 1.0),
    )


def explain_labels(result: AnalysisResult) -> str:
    """Build a one-line human readable explanation of a result."""
    parts = []
    if result.components:
        name = result.components[0].replace("component:", "").replace("-", " ")
        parts.append(f"Detected component: {name}")
    parts.append(f"Priority level: {result.priority.value}")
    if result.security_flag:
        parts.append("Security-related issue detected")
    return "; ".join(parts)


def evaluate_accuracy(cases: Iterable[AccuracyCase]) -> AccuracyReport:
    """
    Measure labeling accuracy against labeled cases.

    A case counts as correct when every expected label was detected.
    """
    results = []
    correct = 0

    for case in cases:
        result = analyze(case.title, case.body)
        is_correct = all(label in result.labels for label in case.expected)
        if is_correct:
            correct += 1
        results.append({
            "title": case.title,
            "expected": list(case.expected),
            "detected": sorted(result.labels),
            "correct": is_correct,
            "confidence": result.confidence,
        })

    total = len(results)
    return AccuracyReport(
        accuracy=correct / total if total else None,
        total=total,
        correct=correct,
        results=results,
    )


# Labeled corpus for the analysis health probe
SELF_TEST_CASES: Tuple[AccuracyCase, ...] = (
    AccuracyCase(
        title="Bug in spec-analyst component",
        body="The framework/agents/spec-analyst.md file crashes on load",
        expected=("component:agent-spec-analyst", "priority:normal"),
    ),
    AccuracyCase(
        title="Security vulnerability in authentication",
        body="Found XSS vulnerability in user input validation",
        expected=(SECURITY_LABEL, "priority:high"),
    ),
    AccuracyCase(
        title="High priority installation issue",
        body="Installation script fails with critical error on setup",
        expected=("component:installation", "priority:critical"),
    ),
    AccuracyCase(
        title="Typo in README.md",
        body="Minor cosmetic fix for the docs/ guide",
        expected=("component:docs", "priority:low"),
    ),
    AccuracyCase(
        title="Validation script reports wrong exit code",
        body="framework/validate-framework.sh exits 0 on failure",
        expected=("component:validation", "priority:normal"),
    ),
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
    "FILE_PATH_MAPPINGS",
    "COMPONENT_KEYWORDS",
    "PRIORITY_KEYWORDS",
    "SECURITY_KEYWORDS",
    "SECURITY_LABEL",
    "SELF_TEST_CASES",
]
