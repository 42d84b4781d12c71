# =============================================================================
# ISSUE TRIAGE MONITOR - ISSUE LABELER
# =============================================================================
"""
Issue Labeler

Applies content analysis to an issue and pushes the resulting labels to
GitHub, recording labeling, performance and error metrics along the way.

Usage:
    labeler = IssueLabeler(client, metrics)
    result = await labeler.label_issue(42, issue["title"], issue["body"])
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from monitoring.logger import log_context
from triage.analysis import DEFAULT_LABELS, AnalysisResult, analyze, explain_labels
from triage.github.client import GitHubAPIError

logger = logging.getLogger(__name__)


class IssueLabeler:
    """
    Labels issues from their title and body.

    Attributes:
        client: GitHubClient
        metrics: Optional MetricsCollector
        post_comment: Post an explanation comment after labeling
    """

    def __init__(self, client, metrics=None, audit=None, post_comment: bool = False):
        self.client = client
        self.metrics = metrics
        self.audit = audit
        self.post_comment = post_comment

    async def label_issue(
        self,
        issue_number: int,
        title: Any,
        body: Any = "",
    ) -> AnalysisResult:
        """
        Analyze an issue and apply its labels.

        Raises:
            GitHubAPIError: If applying labels fails (recorded as an error first)
        """
        with log_context(issue_number=issue_number):
            started = time.perf_counter()
            result = analyze(title, body)

            try:
                if result.labels:
                    await self.client.add_labels(issue_number, sorted(result.labels))
                if self.post_comment:
                    await self.client.create_comment(issue_number, explain_labels(result))
            except GitHubAPIError as e:
                self._record_failure(issue_number, e, started)
                raise

            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(
                f"Labeled issue #{issue_number}: {', '.join(sorted(result.labels))} "
                f"(confidence {result.confidence:.2f})"
            )

            if self.metrics is not None:
                self.metrics.track_auto_labeling(
                    issue_id=issue_number,
                    confidence=result.confidence,
                    components_detected=list(result.components),
                    priority_detected=result.priority.value,
                    security_detected=result.security_flag,
                    processing_time_ms=elapsed_ms,
                    labels_applied=sorted(result.labels),
                )
                self.metrics.track_performance(
                    operation="label_issue", duration_ms=elapsed_ms
                )
            if self.audit is not None:
                self.audit.log_labeling(
                    issue_number, list(result.labels), result.confidence, result.security_flag
                )

            return result

    def _record_failure(self, issue_number: int, error: GitHubAPIError, started: float) -> None:
        logger.error(f"Labeling issue #{issue_number} failed: {error}")
        if self.metrics is not None:
            self.metrics.track_error(
                component="auto_labeling",
                error_type=type(error).__name__,
                error_message=str(error),
                severity="error",
                context={"issue_number": issue_number, "operation": error.operation},
            )
            self.metrics.track_performance(
                operation="label_issue",
                duration_ms=(time.perf_counter() - started) * 1000,
                success=False,
                error_type=type(error).__name__,
            )
        if self.audit is not None:
            self.audit.log_error("auto_labeling", type(error).__name__, str(error), issue_number)

    async def sync_taxonomy(self, definitions: Optional[Iterable[Any]] = None) -> Dict[str, List]:
        """Create or update every label the analysis can emit."""
        return await self.client.sync_labels(list(definitions or DEFAULT_LABELS))

    async def record_override(
        self,
        issue_number: int,
        applied: Iterable[str],
        corrected: Iterable[str],
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Record a maintainer correcting automatically applied labels.

        The fraction of applied labels that survived the correction is
        recorded as the labeling accuracy for that issue.
        """
        applied = set(applied)
        corrected = set(corrected)
        kept = applied & corrected
        accuracy = len(kept) / len(applied) if applied else None

        if self.metrics is not None:
            self.metrics.track_auto_labeling(
                issue_id=issue_number,
                accuracy=accuracy,
                labels_applied=sorted(corrected),
                manual_override=applied != corrected,
            )
            self.metrics.track_engagement(
                type="label_override",
                user_id=user_id,
                repository=getattr(self.client, "repo", None),
            )

        logger.info(
            f"Label override on #{issue_number}: removed {sorted(applied - corrected)}, "
            f"added {sorted(corrected - applied)}"
        )
        return {
            "issue_number": issue_number,
            "removed": sorted(applied - corrected),
            "added": sorted(corrected - applied),
            "accuracy": accuracy,
        }


__all__ = ["IssueLabeler"]
