"""Publish a fix as a GitHub pull request.

The PRSubmitter turns the files re-read from a sandbox into a branch, one
Contents API commit per file, and a pull request, and optionally merges it.
"""

import logging
import time
from typing import Optional, Sequence

from site_surgeon.github.client import GitHubAPIError, GitHubClient
from site_surgeon.github.models import SubmissionFile, SubmissionResult
from site_surgeon.sandbox.base import parse_github_repo
from site_surgeon.state.models import IssueRecord


logger = logging.getLogger(__name__)

BRANCH_PREFIX = "site-surgeon"
PR_TITLE_PREFIX = "[Site Surgeon] Fix:"


class SubmissionError(Exception):
    """Raised when a fix cannot be published.

    Attributes:
        issue_id: The issue whose fix failed to publish.
        cause: The underlying exception, if any.
    """

    def __init__(
        self,
        issue_id: str,
        message: str,
        cause: Optional[Exception] = None,
    ):
        self.issue_id = issue_id
        self.cause = cause
        super().__init__(message)


def build_branch_name(issue_id: str, timestamp: Optional[int] = None) -> str:
    """Branch name for an issue's fix, e.g. site-surgeon/1a2b3c4d-1700000000."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"{BRANCH_PREFIX}/{issue_id[:8]}-{ts}"


def build_pr_title(issue: IssueRecord) -> str:
    return f"{PR_TITLE_PREFIX} {issue.title}"


def build_pr_body(
    issue: IssueRecord,
    patch_summary: str,
    files: Sequence[SubmissionFile],
) -> str:
    """Render the markdown body of the fix PR."""
    changed = "\n".join(f"- `{f.path}`" for f in files)
    return f"""## Automated fix for issue `{issue.id}`

**Severity:** {issue.severity.value}

### Description
{issue.description}

### Steps to Reproduce
{issue.steps_to_reproduce}

### AI Triage
{issue.ai_reason or "n/a"}

### Changed Files
{changed}

### Patch
{patch_summary or "n/a"}

---
_Opened automatically by Site Surgeon._"""


class PRSubmitter:
    """Publishes fixes to GitHub.

    Attributes:
        client: GitHub API client.
        default_branch: Base branch override; when None the repository's
            default branch is looked up.
    """

    def __init__(
        self,
        client: GitHubClient,
        default_branch: Optional[str] = None,
    ):
        self.client = client
        self.default_branch = default_branch

    async def submit(
        self,
        issue: IssueRecord,
        files: Sequence[SubmissionFile],
        commit_message: str,
        patch_summary: str,
        auto_merge: bool,
    ) -> SubmissionResult:
        """Commit the files to a new branch and open a PR.

        Args:
            issue: The issue being fixed.
            files: Files to commit, with full content.
            commit_message: Message for every commit.
            patch_summary: Markdown description included in the PR body.
            auto_merge: Whether to squash-merge the PR after opening it.

        Returns:
            SubmissionResult with the branch, PR reference and merge outcome.
            A failed merge leaves the PR open and reports merged=False.

        Raises:
            SubmissionError: If the branch, a commit, or the PR cannot be
                created.
        """
        if not files:
            raise SubmissionError(issue.id, "No files to submit")

        try:
            owner, repo = parse_github_repo(issue.repo_url)
        except ValueError as e:
            raise SubmissionError(issue.id, str(e), cause=e) from e

        branch_name = build_branch_name(issue.id)

        try:
            base = self.default_branch or await self.client.get_default_branch(
                owner, repo
            )
            head_sha = await self.client.get_branch_head_sha(owner, repo, base)
            await self.client.create_branch(owner, repo, branch_name, head_sha)

            for f in files:
                sha = await self.client.get_file_sha(owner, repo, f.path, branch_name)
                await self.client.upsert_file(
                    owner,
                    repo,
                    path=f.path,
                    content=f.content,
                    branch=branch_name,
                    message=commit_message,
                    sha=sha,
                )

            pr = await self.client.create_pr(
                owner,
                repo,
                title=build_pr_title(issue),
                body=build_pr_body(issue, patch_summary, files),
                head=branch_name,
                base=base,
            )
        except GitHubAPIError as e:
            logger.error(
                "Failed to publish fix",
                extra={
                    "issue_id": issue.id,
                    "branch": branch_name,
                    "status_code": e.status_code,
                    "error": e.message,
                },
            )
            raise SubmissionError(
                issue.id, f"GitHub submission failed: {e.message}", cause=e
            ) from e

        merged = False
        if auto_merge:
            merged = await self._try_merge(issue, owner, repo, pr.number, commit_message)

        logger.info(
            "Fix submitted",
            extra={
                "issue_id": issue.id,
                "branch": branch_name,
                "pr_number": pr.number,
                "pr_url": pr.url,
                "merged": merged,
            },
        )

        return SubmissionResult(
            branch_name=branch_name,
            pr_number=pr.number,
            pr_url=pr.url,
            merged=merged,
        )

    async def _try_merge(
        self,
        issue: IssueRecord,
        owner: str,
        repo: str,
        pr_number: int,
        commit_message: str,
    ) -> bool:
        try:
            return await self.client.merge_pr(
                owner, repo, pr_number, commit_title=commit_message
            )
        except GitHubAPIError as e:
            logger.warning(
                "Auto-merge failed, leaving PR open",
                extra={
                    "issue_id": issue.id,
                    "pr_number": pr_number,
                    "status_code": e.status_code,
                    "error": e.message,
                },
            )
            return False
