"""GitHub API client for publishing fixes.

This module provides an async wrapper around the GitHub REST API for:
- Resolving a repository's default branch and branch heads
- Creating branches
- Creating or updating files through the Contents API
- Creating and merging pull requests

Only read requests are retried. A mutating request that timed out may
already have taken effect on GitHub, so POST/PUT failures are raised
immediately and left to the caller.
"""

import asyncio
import base64
import logging
import random
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from site_surgeon.github.models import PullRequest


logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class RateLimitError(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded.

    Attributes:
        reset_at: Unix timestamp when the rate limit resets.
        retry_after: Seconds to wait before retrying.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


class GitHubClient:
    """Async GitHub API client with rate limiting and read retries.

    Implements:

    - Retry with exponential backoff and jitter for transient failures
      of GET requests
    - Rate limit detection from X-RateLimit-* headers
    - Support for both github.com and GitHub Enterprise Server

    Attributes:
        token: GitHub API token (PAT or GitHub App token).
        base_url: Base URL for GitHub API (default: https://api.github.com).
        max_retries: Maximum number of retry attempts for GET requests.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> async with GitHubClient(token="ghp_xxx") as client:
        ...     branch = await client.get_default_branch("acme", "shop")
    """

    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}
    RETRYABLE_METHODS = {"GET"}

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the GitHub client.

        Args:
            token: GitHub API token for authentication.
            base_url: Base URL for GitHub API. Use this to support
                      GitHub Enterprise Server endpoints.
            max_retries: Maximum number of retry attempts.
            base_delay: Base delay in seconds for exponential backoff.
            max_delay: Maximum delay in seconds between retries.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, used by tests.
        """
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self.transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "SiteSurgeon/1.0",
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(
        self,
        exc_type: Any,
        exc_val: Any,
        exc_tb: Any,
    ) -> None:
        await self.close()

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate backoff delay with full jitter.

        Args:
            attempt: The current retry attempt (0-indexed).

        Returns:
            Delay in seconds before the next retry.
        """
        exponential_delay = self.base_delay * (2 ** attempt)
        capped_delay = min(exponential_delay, self.max_delay)
        return random.uniform(0, capped_delay)

    def _parse_int_header(
        self,
        headers: httpx.Headers,
        name: str,
    ) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return None

    def _rate_limit_error(self, response: httpx.Response) -> RateLimitError:
        """Build a RateLimitError from a rate-limited response."""
        reset_at = self._parse_int_header(response.headers, "x-ratelimit-reset")

        retry_after = None
        if reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))

        retry_after_header = self._parse_int_header(response.headers, "retry-after")
        if retry_after_header is not None:
            retry_after = retry_after_header

        logger.warning(
            "GitHub API rate limit exceeded",
            extra={
                "reset_at": reset_at,
                "retry_after": retry_after,
                "limit": self._parse_int_header(response.headers, "x-ratelimit-limit"),
                "used": self._parse_int_header(response.headers, "x-ratelimit-used"),
            },
        )

        return RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
            request_url=str(response.url),
        )

    def _is_rate_limited(self, response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        if response.status_code == 403:
            remaining = self._parse_int_header(
                response.headers, "x-ratelimit-remaining"
            )
            return remaining == 0
        return False

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        allowed_statuses: frozenset = frozenset(),
    ) -> httpx.Response:
        """Make an HTTP request, retrying transient failures of reads.

        Args:
            method: HTTP method (GET, POST, PUT).
            path: API path (e.g., /repos/owner/repo/pulls).
            json_data: Optional JSON body for the request.
            params: Optional query parameters.
            allowed_statuses: Error statuses returned to the caller
                instead of raised (e.g. 404 for "file does not exist").

        Returns:
            The HTTP response from GitHub.

        Raises:
            GitHubAPIError: If the request fails.
            RateLimitError: If rate limit is exceeded.
        """
        retries = self.max_retries if method in self.RETRYABLE_METHODS else 0
        last_exception: Optional[Exception] = None

        for attempt in range(retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    json=json_data,
                    params=params,
                )
            except httpx.RequestError as e:
                last_exception = e
                if attempt < retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "Request error, retrying",
                        extra={
                            "error": str(e),
                            "attempt": attempt + 1,
                            "max_retries": retries,
                            "delay": delay,
                            "path": path,
                        },
                    )
                    await asyncio.sleep(delay)
                    continue
                break

            if response.status_code in allowed_statuses:
                return response

            if self._is_rate_limited(response):
                raise self._rate_limit_error(response)

            if (
                response.status_code in self.RETRYABLE_STATUS_CODES
                and attempt < retries
            ):
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    "Retryable error from GitHub API",
                    extra={
                        "status_code": response.status_code,
                        "attempt": attempt + 1,
                        "max_retries": retries,
                        "delay": delay,
                        "path": path,
                    },
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code >= 400:
                error_body = response.text
                logger.error(
                    "GitHub API error",
                    extra={
                        "status_code": response.status_code,
                        "path": path,
                        "method": method,
                        "response_body": error_body[:500],
                    },
                )
                raise GitHubAPIError(
                    message=f"GitHub API error: {response.status_code}",
                    status_code=response.status_code,
                    response_body=error_body,
                    request_url=str(response.url),
                )

            return response

        logger.error(
            "GitHub API request failed",
            extra={
                "path": path,
                "method": method,
                "attempts": retries + 1,
                "last_error": str(last_exception),
            },
        )
        raise GitHubAPIError(
            message=f"Request failed after {retries + 1} attempt(s): {last_exception}",
            request_url=f"{self.base_url}{path}",
        )

    async def get_default_branch(self, owner: str, repo: str) -> str:
        """Get a repository's default branch name.

        Raises:
            GitHubAPIError: If the request fails.
        """
        response = await self._request("GET", f"/repos/{owner}/{repo}")
        return str(response.json().get("default_branch") or "main")

    async def get_branch_head_sha(self, owner: str, repo: str, branch: str) -> str:
        """Get the commit SHA at the head of a branch.

        Raises:
            GitHubAPIError: If the request fails or the branch is missing.
        """
        response = await self._request(
            "GET", f"/repos/{owner}/{repo}/git/ref/heads/{quote(branch)}"
        )
        sha = (response.json().get("object") or {}).get("sha")
        if not sha:
            raise GitHubAPIError(
                message=f"No head commit for branch {branch}",
                status_code=response.status_code,
                request_url=str(response.url),
            )
        return str(sha)

    async def create_branch(
        self,
        owner: str,
        repo: str,
        branch: str,
        from_sha: str,
    ) -> None:
        """Create a branch pointing at the given commit.

        Raises:
            GitHubAPIError: If the request fails.
        """
        logger.info(
            "Creating branch",
            extra={"owner": owner, "repo": repo, "branch": branch},
        )
        await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/refs",
            json_data={"ref": f"refs/heads/{branch}", "sha": from_sha},
        )

    async def get_file_sha(
        self,
        owner: str,
        repo: str,
        path: str,
        ref: str,
    ) -> Optional[str]:
        """Get the blob SHA of a file on a ref, or None if it does not exist.

        Raises:
            GitHubAPIError: If the request fails for any reason but 404.
        """
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/contents/{quote(path.lstrip('/'))}",
            params={"ref": ref},
            allowed_statuses=frozenset({404}),
        )
        if response.status_code == 404:
            return None
        data = response.json()
        if isinstance(data, dict) and data.get("sha"):
            return str(data["sha"])
        return None

    async def upsert_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        branch: str,
        message: str,
        sha: Optional[str] = None,
    ) -> None:
        """Create or update a file on a branch, producing one commit.

        Args:
            sha: Blob SHA of the existing file; required to update one.

        Raises:
            GitHubAPIError: If the request fails.
        """
        payload: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if sha:
            payload["sha"] = sha

        logger.info(
            "Committing file",
            extra={
                "owner": owner,
                "repo": repo,
                "branch": branch,
                "path": path,
                "update": bool(sha),
            },
        )
        await self._request(
            "PUT",
            f"/repos/{owner}/{repo}/contents/{quote(path.lstrip('/'))}",
            json_data=payload,
        )

    async def create_pr(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
    ) -> PullRequest:
        """Create a pull request.

        Raises:
            GitHubAPIError: If the request fails.
        """
        logger.info(
            "Creating pull request",
            extra={
                "owner": owner,
                "repo": repo,
                "title": title,
                "head": head,
                "base": base,
            },
        )

        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json_data={"title": title, "body": body, "head": head, "base": base},
        )
        pr = PullRequest.from_github_response(response.json(), head_branch=head)

        logger.info(
            "Pull request created successfully",
            extra={
                "owner": owner,
                "repo": repo,
                "pr_number": pr.number,
                "pr_url": pr.url,
            },
        )
        return pr

    async def merge_pr(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        commit_title: Optional[str] = None,
        merge_method: str = "squash",
    ) -> bool:
        """Merge a pull request.

        Returns:
            True if GitHub reports the PR as merged.

        Raises:
            GitHubAPIError: If the request fails (e.g. 405 when the PR is
                not mergeable).
        """
        payload: Dict[str, Any] = {"merge_method": merge_method}
        if commit_title:
            payload["commit_title"] = commit_title

        response = await self._request(
            "PUT",
            f"/repos/{owner}/{repo}/pulls/{pr_number}/merge",
            json_data=payload,
        )
        merged = bool(response.json().get("merged"))

        logger.info(
            "Pull request merge attempted",
            extra={
                "owner": owner,
                "repo": repo,
                "pr_number": pr_number,
                "merged": merged,
            },
        )
        return merged
