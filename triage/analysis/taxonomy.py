# =============================================================================
# ISSUE TRIAGE MONITOR - LABEL TAXONOMY
# =============================================================================
"""
Label Taxonomy

Definitions of every label the analysis engine can apply, used to keep
the repository's label set in sync.

Definitions can be loaded from a YAML file shaped like::

    - name: "priority:critical"
      color: "b60205"
      description: "System down, data loss or security breach"
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from triage.analysis.labeling import FILE_PATH_MAPPINGS, Priority, SECURITY_LABEL


_COLOR_RE = re.compile(r"^[0-9A-Fa-f]{6}$")


class LabelConfigError(Exception):
    """Raised when label definitions are missing or invalid."""

    def __init__(self, message: str, errors: List[str] = None):
        super().__init__(message)
        self.errors = errors or []


@dataclass(frozen=True)
class LabelDefinition:
    """A repository label."""
    name: str
    color: str
    description: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


PRIORITY_COLORS = {
    Priority.CRITICAL: "b60205",
    Priority.HIGH: "d93f0b",
    Priority.NORMAL: "fbca04",
    Priority.LOW: "0e8a16",
}

PRIORITY_DESCRIPTIONS = {
    Priority.CRITICAL: "System down, data loss or security breach",
    Priority.HIGH: "Blocking or significant impact",
    Priority.NORMAL: "Standard priority",
    Priority.LOW: "Minor or cosmetic",
}

COMPONENT_COLOR = "1d76db"


def _component_definitions() -> Tuple[LabelDefinition, ...]:
    return tuple(
        LabelDefinition(
            name=label,
            color=COMPONENT_COLOR,
            description=f"Relates to {label.split(':', 1)[1].replace('-', ' ')}",
        )
        for label in FILE_PATH_MAPPINGS
    )


DEFAULT_LABELS: Tuple[LabelDefinition, ...] = (
    _component_definitions()
    + tuple(
        LabelDefinition(p.label, PRIORITY_COLORS[p], PRIORITY_DESCRIPTIONS[p])
        for p in Priority
    )
    + (LabelDefinition(SECURITY_LABEL, "ee0701", "Security-related issue"),)
)


def validate_label_definitions(raw: Any) -> List[str]:
    """
    Validate raw label configuration.

    Returns:
        List of error messages (empty when valid)
    """
    errors: List[str] = []

    if not isinstance(raw, list):
        return ["Labels configuration must be a list"]

    for index, label in enumerate(raw):
        if not isinstance(label, dict):
            errors.append(f"Label {index}: must be a mapping")
            continue
        name = label.get("name")
        if not name or not isinstance(name, str):
            errors.append(f"Label {index}: missing or invalid name")
        color = label.get("color")
        if not isinstance(color, str) or not _COLOR_RE.match(color.lstrip("#")):
            errors.append(
                f"Label {index} ({name}): missing or invalid color (must be 6-digit hex)"
            )
        description = label.get("description")
        if not description or not isinstance(description, str):
            errors.append(f"Label {index} ({name}): missing or invalid description")

    return errors


def load_label_definitions(path: str) -> List[LabelDefinition]:
    """
    Load and validate label definitions from a YAML file.

    Raises:
        LabelConfigError: If the file is missing or invalid
    """
    label_file = Path(path)
    if not label_file.exists():
        raise LabelConfigError(f"Label configuration not found: {path}")

    with open(label_file, encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    errors = validate_label_definitions(raw)
    if errors:
        raise LabelConfigError("Label configuration is invalid", errors)

    return [
        LabelDefinition(
            name=item["name"],
            color=item["color"].lstrip("#"),
            description=item["description"],
        )
        for item in raw
    ]


__all__ = [
    "LabelDefinition",
    "LabelConfigError",
    "DEFAULT_LABELS",
    "validate_label_definitions",
    "load_label_definitions",
]
