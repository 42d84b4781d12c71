# =============================================================================
# ISSUE TRIAGE MONITOR - GITHUB API CLIENT
# =============================================================================
"""
GitHub API Client

Rate-limit aware client for the GitHub REST API.

Every operation is guarded: the client fetches the current quota first
and, when it is nearly exhausted, suspends the calling coroutine until
the quota window resets. Blocking HTTP runs in a worker thread so the
event loop stays responsive while one call waits.

Features:
    - Token authentication (never logged, never in error messages)
    - Quota guard with a bounded, cancellable wait
    - Retry with exponential backoff on 5xx responses
    - Typed errors for auth, permission, quota, abuse and network failures
    - Per-request API usage metrics

Usage:
    client = GitHubClient(token="ghp_xxx", repo="owner/repo")
    issue = await client.call(Operation.GET_ISSUE, issue_number=123)
    await client.add_labels(123, ["priority:high"])
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class GitHubAPIError(Exception):
    """Base exception for GitHub API errors."""

    def __init__(
        self,
        message: str,
        status_code: int = None,
        operation: str = None,
        response: dict = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.operation = operation
        self.response = response or {}

    def __str__(self):
        message = super().__str__()
        if self.operation:
            message = f"{self.operation}: {message}"
        if self.status_code:
            return f"[{self.status_code}] {message}"
        return message


class AuthenticationError(GitHubAPIError):
    """Raised when the credential is rejected (401). Not retried."""

    def __init__(self, message: str, operation: str = None):
        super().__init__(message, status_code=401, operation=operation)


class PermissionDeniedError(GitHubAPIError):
    """Raised when the credential lacks access (403). Not retried."""

    def __init__(self, message: str, operation: str = None):
        super().__init__(message, status_code=403, operation=operation)


class QuotaExceededError(GitHubAPIError):
    """Raised when the rate limit is exhausted; back off until ``reset_at``."""

    def __init__(self, message: str, reset_at: float = None, status_code: int = 403,
                 operation: str = None):
        super().__init__(message, status_code=status_code, operation=operation)
        self.reset_at = reset_at


class AbuseDetectedError(GitHubAPIError):
    """Raised on secondary rate limits; may be retried once after ``retry_after``."""

    def __init__(self, message: str, retry_after: float = None, status_code: int = 403,
                 operation: str = None):
        super().__init__(message, status_code=status_code, operation=operation)
        self.retry_after = retry_after


class NotFoundError(GitHubAPIError):
    """Raised when resource is not found."""

    def __init__(self, message: str, operation: str = None):
        super().__init__(message, status_code=404, operation=operation)


class UnprocessableEntityError(GitHubAPIError):
    """Raised when request validation fails (422)."""

    def __init__(self, message: str, errors: list = None, operation: str = None):
        super().__init__(message, status_code=422, operation=operation)
        self.errors = errors or []


class TransientNetworkError(GitHubAPIError):
    """Raised on timeouts, connection failures and exhausted retries."""


# =============================================================================
# RATE LIMIT STATE
# =============================================================================

@dataclass(frozen=True)
class RateLimitState:
    """Quota snapshot reported by the provider."""
    limit: int
    remaining: int
    reset_at: float

    def __post_init__(self):
        if self.limit < 0 or self.remaining < 0:
            raise ValueError("Rate limit values must be non-negative")
        if self.remaining > self.limit:
            object.__setattr__(self, "remaining", self.limit)

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "RateLimitState":
        core = data.get("resources", {}).get("core") or data.get("rate") or {}
        return cls(
            limit=int(core.get("limit", 0)),
            remaining=int(core.get("remaining", 0)),
            reset_at=float(core.get("reset", 0)),
        )

    @property
    def used(self) -> int:
        return self.limit - self.remaining

    @property
    def usage_fraction(self) -> float:
        return self.used / self.limit if self.limit else 1.0

    def seconds_until_reset(self, now: float = None) -> float:
        now = time.time() if now is None else now
        return max(0.0, self.reset_at - now)

    def is_within_buffer(self, buffer_fraction: float) -> bool:
        """True while usage stays below ``1 - buffer_fraction`` of the limit."""
        # Exact arithmetic keeps the boundary inclusive for any decimal buffer
        return self.remaining > self.limit * Fraction(str(buffer_fraction))


# =============================================================================
# OPERATIONS
# =============================================================================

class Operation(Enum):
    """The fixed set of guarded operations."""
    CREATE_ISSUE = "create_issue"
    GET_ISSUE = "get_issue"
    ADD_LABELS = "add_labels"
    REMOVE_LABELS = "remove_labels"
    CREATE_COMMENT = "create_comment"
    LIST_COMMENTS = "list_comments"
    CLOSE_ISSUE = "close_issue"
    SYNC_LABELS = "sync_labels"
    ASSIGN_MILESTONE = "assign_milestone"
    GET_AUTHENTICATED_USER = "get_authenticated_user"


_ABUSE_MARKERS = ("secondary rate limit", "abuse")


# =============================================================================
# GITHUB CLIENT CLASS
# =============================================================================

class GitHubClient:
    """
    Rate-limit aware GitHub API client.

    Attributes:
        repo: Repository in owner/repo format
        base_url: GitHub API base URL
        rate_limit_buffer: Fraction of quota kept in reserve
        low_water_mark: Remaining calls below which operations wait
        metrics: Optional MetricsCollector receiving ApiUsageEvents
    """

    DEFAULT_BASE_URL = "https://api.github.com"
    DEFAULT_TIMEOUT = 30
    DEFAULT_RETRY_COUNT = 3
    DEFAULT_BACKOFF_FACTOR = 0.5
    DEFAULT_RATE_LIMIT_BUFFER = 0.2
    DEFAULT_LOW_WATER_MARK = 10
    DEFAULT_RESET_BUFFER_SECONDS = 1.0
    DEFAULT_MAX_WAIT_SECONDS = 3600

    def __init__(
        self,
        token: str = None,
        repo: str = None,
        base_url: str = None,
        timeout: int = None,
        retry_count: int = None,
        backoff_factor: float = None,
        rate_limit_buffer: float = DEFAULT_RATE_LIMIT_BUFFER,
        low_water_mark: int = DEFAULT_LOW_WATER_MARK,
        reset_buffer_seconds: float = DEFAULT_RESET_BUFFER_SECONDS,
        max_wait_seconds: float = DEFAULT_MAX_WAIT_SECONDS,
        metrics=None,
    ):
        """
        Initialize GitHub client.

        Args:
            token: GitHub API token (default: from GITHUB_TOKEN env)
            repo: Repository name (default: from GITHUB_REPO env)
            base_url: API base URL (default: github.com)
            timeout: Request timeout in seconds
            retry_count: Number of retries on 5xx responses
            backoff_factor: Backoff multiplier for retries
            rate_limit_buffer: Fraction of quota kept unused (0-1)
            low_water_mark: Wait for reset when fewer calls remain
            reset_buffer_seconds: Added to the wait past the reset time
            max_wait_seconds: Longest acceptable wait before failing fast
            metrics: Optional MetricsCollector

        Raises:
            ValueError: If token or repo not provided
        """
        self._token = token or os.environ.get("GITHUB_TOKEN")
        self.repo = repo or os.environ.get("GITHUB_REPO")
        self.base_url = (base_url or os.environ.get("GITHUB_API_URL") or
                         self.DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.retry_count = retry_count if retry_count is not None else self.DEFAULT_RETRY_COUNT
        self.backoff_factor = backoff_factor or self.DEFAULT_BACKOFF_FACTOR
        self.rate_limit_buffer = rate_limit_buffer
        self.low_water_mark = low_water_mark
        self.reset_buffer_seconds = reset_buffer_seconds
        self.max_wait_seconds = max_wait_seconds
        self.metrics = metrics

        if not self._token:
            raise ValueError(
                "GitHub token required. Set GITHUB_TOKEN environment variable "
                "or pass token parameter."
            )

        if not self.repo:
            raise ValueError(
                "GitHub repository required. Set GITHUB_REPO environment variable "
                "or pass repo parameter (format: owner/repo)."
            )

        if "/" not in self.repo:
            raise ValueError(
                f"Invalid repository format: {self.repo}. "
                "Expected format: owner/repo"
            )

        if not 0 <= rate_limit_buffer < 1:
            raise ValueError("rate_limit_buffer must be in [0, 1)")

        self._session = self._create_session()
        self._last_rate_limit: Optional[RateLimitState] = None

        logger.info(f"GitHubClient initialized for {self.repo}")

    def __repr__(self):
        return f"GitHubClient(repo={self.repo!r}, base_url={self.base_url!r})"

    def _create_session(self) -> requests.Session:
        """Create configured HTTP session with retry logic."""
        session = requests.Session()

        session.headers.update({
            "Authorization": f"token {self._token}",
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "issue-triage-monitor/1.0",
        })

        # 4xx responses are never retried
        retry_strategy = Retry(
            total=self.retry_count,
            backoff_factor=self.backoff_factor,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        return session

    def _scrub(self, text: Any) -> str:
        """Remove the credential from text bound for logs or errors."""
        text = str(text)
        if self._token:
            text = text.replace(self._token, "***")
        return text

    # =========================================================================
    # DISPATCH
    # =========================================================================

    async def call(self, operation, **kwargs) -> Any:
        """
        Run one of the fixed operations by name.

        Args:
            operation: Operation member or its string value
            **kwargs: Arguments of the matching method
        """
        op = Operation(operation)
        return await getattr(self, op.value)(**kwargs)

    # =========================================================================
    # ISSUE OPERATIONS
    # =========================================================================

    async def get_issue(self, issue_number: int) -> dict:
        """
        Get issue by number.

        Raises:
            NotFoundError: If issue doesn't exist
            GitHubAPIError: If request fails
        """
        endpoint = f"/repos/{self.repo}/issues/{issue_number}"
        return await self._call("get_issue", "GET", endpoint)

    async def create_issue(
        self,
        title: str,
        body: str = None,
        labels: List[str] = None,
        assignees: List[str] = None,
        milestone: int = None,
    ) -> dict:
        """
        Create a new issue.

        Args:
            title: Issue title
            body: Issue body (markdown)
            labels: List of label names
            assignees: List of GitHub usernames
            milestone: Milestone number

        Returns:
            Created issue data
        """
        endpoint = f"/repos/{self.repo}/issues"
        data = {"title": title}

        if body is not None:
            data["body"] = body
        if labels:
            data["labels"] = labels
        if assignees:
            data["assignees"] = assignees
        if milestone is not None:
            data["milestone"] = milestone

        return await self._call("create_issue", "POST", endpoint, data=data)

    async def close_issue(self, issue_number: int) -> dict:
        """Close an issue."""
        endpoint = f"/repos/{self.repo}/issues/{issue_number}"
        return await self._call("close_issue", "PATCH", endpoint, data={"state": "closed"})

    # =========================================================================
    # LABEL OPERATIONS
    # =========================================================================

    async def add_labels(self, issue_number: int, labels: List[str]) -> List[dict]:
        """
        Add labels to an issue.

        Returns:
            List of all labels on the issue
        """
        endpoint = f"/repos/{self.repo}/issues/{issue_number}/labels"
        return await self._call("add_labels", "POST", endpoint, data={"labels": list(labels)})

    async def remove_labels(self, issue_number: int, labels: List[str]) -> List[str]:
        """
        Remove labels from an issue.

        Returns:
            Names of the labels that were actually removed
        """
        removed = []
        for label in labels:
            endpoint = (
                f"/repos/{self.repo}/issues/{issue_number}/labels/{quote(label, safe='')}"
            )
            try:
                await self._call("remove_labels", "DELETE", endpoint)
                removed.append(label)
            except NotFoundError:
                # Label wasn't on issue, that's fine
                logger.debug(f"Label {label} not present on #{issue_number}")
        return removed

    async def sync_labels(self, definitions: Iterable[Any]) -> Dict[str, List[Any]]:
        """
        Make the repository's labels match ``definitions``.

        Each label is updated in place, or created when it does not
        exist yet. Failures of single labels are collected, except for
        credential and quota errors, which abort the sync.

        Args:
            definitions: LabelDefinition objects or dicts with
                name, color and description

        Returns:
            {"created": [...], "updated": [...], "failed": [{"name", "error"}]}
        """
        results: Dict[str, List[Any]] = {"created": [], "updated": [], "failed": []}

        for definition in definitions:
            label = definition.to_dict() if hasattr(definition, "to_dict") else dict(definition)
            name = label["name"]
            data = {
                "color": str(label.get("color", "ededed")).lstrip("#"),
                "description": label.get("description", ""),
            }
            endpoint = f"/repos/{self.repo}/labels/{quote(name, safe='')}"

            try:
                try:
                    await self._call("sync_labels", "PATCH", endpoint, data=data)
                    results["updated"].append(name)
                except NotFoundError:
                    await self._call(
                        "sync_labels", "POST", f"/repos/{self.repo}/labels",
                        data={"name": name, **data},
                    )
                    results["created"].append(name)
            except (AuthenticationError, QuotaExceededError, AbuseDetectedError):
                raise
            except GitHubAPIError as e:
                logger.warning(f"Failed to sync label {name}: {e}")
                results["failed"].append({"name": name, "error": str(e)})

        logger.info(
            f"Label sync: {len(results['created'])} created, "
            f"{len(results['updated'])} updated, {len(results['failed'])} failed"
        )
        return results

    # =========================================================================
    # COMMENT OPERATIONS
    # =========================================================================

    async def create_comment(self, issue_number: int, body: str) -> dict:
        """
        Add a comment to an issue.

        Returns:
            Created comment data
        """
        endpoint = f"/repos/{self.repo}/issues/{issue_number}/comments"
        return await self._call("create_comment", "POST", endpoint, data={"body": body})

    async def list_comments(
        self,
        issue_number: int,
        since: str = None,
        per_page: int = 30,
        page: int = 1,
    ) -> List[dict]:
        """
        Get comments on an issue.

        Args:
            issue_number: Issue number
            since: Only comments updated after this ISO 8601 timestamp
            per_page: Results per page (max 100)
            page: Page number
        """
        endpoint = f"/repos/{self.repo}/issues/{issue_number}/comments"
        params = {"per_page": min(per_page, 100), "page": page}
        if since:
            params["since"] = since

        return await self._call("list_comments", "GET", endpoint, params=params)

    # =========================================================================
    # MILESTONE AND USER OPERATIONS
    # =========================================================================

    async def assign_milestone(self, issue_number: int, title: str) -> dict:
        """
        Assign an issue to the open milestone named ``title``.

        Raises:
            NotFoundError: If no open milestone has that title
        """
        milestones = await self._call(
            "assign_milestone", "GET", f"/repos/{self.repo}/milestones",
            params={"state": "open", "per_page": 100},
        )
        milestone = next((m for m in milestones if m.get("title") == title), None)
        if milestone is None:
            raise NotFoundError(f"Milestone not found: {title}", operation="assign_milestone")

        endpoint = f"/repos/{self.repo}/issues/{issue_number}"
        return await self._call(
            "assign_milestone", "PATCH", endpoint, data={"milestone": milestone["number"]}
        )

    async def get_authenticated_user(self) -> dict:
        """Get the user the credential belongs to."""
        return await self._call("get_authenticated_user", "GET", "/user")

    # =========================================================================
    # RATE LIMIT HANDLING
    # =========================================================================

    async def get_rate_limit(self) -> RateLimitState:
        """Fetch current quota from ``/rate_limit``. Never guarded."""
        data = await asyncio.to_thread(
            self._request, "get_rate_limit", "GET", "/rate_limit", record_usage=False
        )
        state = RateLimitState.from_response(data)
        self._last_rate_limit = state
        return state

    @property
    def last_rate_limit(self) -> Optional[RateLimitState]:
        """Most recently fetched quota, if any."""
        return self._last_rate_limit

    async def is_within_buffer(self) -> bool:
        """
        Report whether quota usage is still below the reserve buffer.

        Returns False exactly when the used fraction reaches
        ``1 - rate_limit_buffer``.
        """
        state = await self.get_rate_limit()
        return state.is_within_buffer(self.rate_limit_buffer)

    async def _wait_for_quota(self, operation: str) -> None:
        """
        Suspend the calling coroutine until the quota resets, if low.

        Raises:
            QuotaExceededError: If the wait would exceed max_wait_seconds
        """
        state = await self.get_rate_limit()
        if state.remaining >= self.low_water_mark:
            return

        wait_time = state.seconds_until_reset() + self.reset_buffer_seconds
        if wait_time > self.max_wait_seconds:
            raise QuotaExceededError(
                f"Rate limit low ({state.remaining} remaining) and reset is "
                f"{wait_time:.0f}s away",
                reset_at=state.reset_at,
                operation=operation,
            )

        logger.warning(
            f"Rate limit low ({state.remaining} remaining). "
            f"Waiting {wait_time:.0f} seconds before {operation}..."
        )
        await asyncio.sleep(wait_time)

    # =========================================================================
    # HTTP METHODS
    # =========================================================================

    async def _call(
        self,
        operation: str,
        method: str,
        endpoint: str,
        data: dict = None,
        params: dict = None,
    ) -> Any:
        """Guarded request: quota check, then the call in a worker thread."""
        await self._wait_for_quota(operation)
        return await asyncio.to_thread(self._request, operation, method, endpoint, data, params)

    def _endpoint_template(self, endpoint: str) -> str:
        template = endpoint.replace(f"/repos/{self.repo}", "/repos/{repo}")
        return re.sub(r"/\d+(?=/|$)", "/{id}", template)

    def _request(
        self,
        operation: str,
        method: str,
        endpoint: str,
        data: dict = None,
        params: dict = None,
        record_usage: bool = True,
    ) -> Any:
        """
        Make authenticated API request.

        Handles:
        - Authentication headers
        - Error responses
        - Retry logic
        - API usage metrics
        """
        url = f"{self.base_url}{endpoint}"

        logger.debug(f"GitHub API: {method} {endpoint}")

        started = time.perf_counter()
        response = None
        error_type = None
        try:
            response = self._session.request(
                method=method,
                url=url,
                json=data,
                params=params,
                timeout=self.timeout,
            )

            if response.status_code >= 400:
                self._handle_error(response, operation)

            # Return empty dict for 204 No Content
            if response.status_code == 204:
                return {}

            return response.json()

        except GitHubAPIError as e:
            error_type = type(e).__name__
            raise
        except requests.exceptions.Timeout as e:
            error_type = "Timeout"
            raise TransientNetworkError(
                f"Request timed out: {method} {endpoint}", operation=operation
            ) from e
        except requests.exceptions.ConnectionError as e:
            error_type = "ConnectionError"
            raise TransientNetworkError(
                f"Connection error: {self._scrub(e)}", operation=operation
            ) from e
        except requests.exceptions.RequestException as e:
            error_type = type(e).__name__
            raise TransientNetworkError(
                f"Request failed: {self._scrub(e)}", operation=operation
            ) from e
        finally:
            if record_usage:
                self._record_usage(method, endpoint, response, started, error_type)

    def _record_usage(
        self,
        method: str,
        endpoint: str,
        response: Optional[requests.Response],
        started: float,
        error_type: Optional[str],
    ) -> None:
        if self.metrics is None:
            return

        remaining = reset = None
        status_code = None
        if response is not None:
            status_code = response.status_code
            remaining = _header_number(response, "X-RateLimit-Remaining", int)
            reset = _header_number(response, "X-RateLimit-Reset", float)

        self.metrics.track_api_usage(
            endpoint=self._endpoint_template(endpoint),
            method=method,
            status_code=status_code,
            response_time_ms=(time.perf_counter() - started) * 1000,
            rate_limit_remaining=remaining,
            rate_limit_reset=reset,
            success=error_type is None,
            error_type=error_type,
            retry_count=_retry_count(response),
        )

    def _handle_error(self, response: requests.Response, operation: str) -> None:
        """
        Handle error response from API.

        Raises appropriate exception based on status code.
        """
        status_code = response.status_code

        try:
            error_data = response.json()
            message = error_data.get("message", response.text)
            errors = error_data.get("errors", [])
        except ValueError:
            error_data = {}
            message = response.text
            errors = []

        message = self._scrub(message)
        lowered = message.lower()

        logger.error(f"GitHub API error [{status_code}] during {operation}: {message}")

        if status_code == 401:
            raise AuthenticationError(
                "Authentication failed. Check your GitHub token.", operation=operation
            )

        if status_code in (403, 429):
            retry_after = _header_number(response, "Retry-After", float)
            if retry_after is not None or any(m in lowered for m in _ABUSE_MARKERS):
                raise AbuseDetectedError(
                    message,
                    retry_after=retry_after if retry_after is not None else 60.0,
                    status_code=status_code,
                    operation=operation,
                )
            if (_header_number(response, "X-RateLimit-Remaining", int) == 0
                    or "rate limit" in lowered or status_code == 429):
                raise QuotaExceededError(
                    message,
                    reset_at=_header_number(response, "X-RateLimit-Reset", float),
                    status_code=status_code,
                    operation=operation,
                )
            raise PermissionDeniedError(message, operation=operation)

        if status_code == 404:
            raise NotFoundError(f"Resource not found: {message}", operation=operation)

        if status_code == 422:
            raise UnprocessableEntityError(message, errors, operation=operation)

        raise GitHubAPIError(message, status_code, operation, error_data)

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close session."""
        self.close()

    def close(self):
        """Close the HTTP session."""
        if self._session:
            self._session.close()
            logger.debug("GitHubClient session closed")


def _header_number(response: requests.Response, name: str, cast):
    value = response.headers.get(name)
    if value is None:
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        return None


def _retry_count(response: Optional[requests.Response]) -> int:
    retries = getattr(getattr(response, "raw", None), "retries", None)
    history = getattr(retries, "history", None)
    return len(history) if isinstance(history, tuple) else 0


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
