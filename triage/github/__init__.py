# =============================================================================
# ISSUE TRIAGE MONITOR - GITHUB INTEGRATION PACKAGE
# =============================================================================
"""
GitHub Integration Package

Rate-limit aware access to the GitHub REST API.

Components:
    - GitHubClient: Guarded API client
    - RateLimitState: Quota snapshot
    - Operation: The fixed set of guarded operations

Usage:
    from triage.github import GitHubClient, Operation

    client = GitHubClient(token="ghp_xxx", repo="owner/repo")
    issue = await client.call(Operation.GET_ISSUE, issue_number=123)
"""

from triage.github.client import (
    GitHubClient,
    Operation,
    RateLimitState,
    GitHubAPIError,
    AuthenticationError,
    PermissionDeniedError,
    QuotaExceededError,
    AbuseDetectedError,
    NotFoundError,
    UnprocessableEntityError,
    TransientNetworkError,
)

__all__ = [
    "GitHubClient",
    "Operation",
    "RateLimitState",
    "GitHubAPIError",
    "AuthenticationError",
    "PermissionDeniedError",
    "QuotaExceededError",
    "AbuseDetectedError",
    "NotFoundError",
    "UnprocessableEntityError",
    "TransientNetworkError",
]
