"""GitHub API client and pull-request submission of fixes.

Includes rate limit handling and read retries for API resilience.
"""

from site_surgeon.github.client import (
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
)
from site_surgeon.github.models import PullRequest, SubmissionFile, SubmissionResult
from site_surgeon.github.submitter import PRSubmitter, SubmissionError

__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "PRSubmitter",
    "PullRequest",
    "RateLimitError",
    "SubmissionError",
    "SubmissionFile",
    "SubmissionResult",
]
