"""GitHub submission data models.

This module defines the models exchanged between the orchestrator, the
PRSubmitter and the GitHubClient when a fix is published as a pull
request.
"""

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class SubmissionFile(BaseModel):
    """One file to commit, with its full post-fix content.

    Attributes:
        path: Repository-relative path.
        content: Complete file content as re-read from the sandbox.
    """

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., min_length=1)
    content: str


class PullRequest(BaseModel):
    """A pull request created on GitHub.

    Attributes:
        number: The PR number.
        url: HTML URL of the PR.
        head_branch: Source branch of the PR.
    """

    number: int = Field(..., gt=0)
    url: str
    head_branch: str

    @classmethod
    def from_github_response(
        cls, response: Dict[str, Any], head_branch: str
    ) -> "PullRequest":
        """Create from a GitHub create-pull-request API response.

        Args:
            response: JSON body returned by POST /repos/{owner}/{repo}/pulls.
            head_branch: The branch the PR was opened from.
        """
        return cls(
            number=int(response["number"]),
            url=str(response["html_url"]),
            head_branch=head_branch,
        )


class SubmissionResult(BaseModel):
    """Outcome of publishing a fix.

    Attributes:
        branch_name: Branch the fix was committed to.
        pr_number: Number of the opened PR.
        pr_url: HTML URL of the opened PR.
        merged: Whether the PR was merged.
    """

    branch_name: str
    pr_number: int = Field(..., gt=0)
    pr_url: str
    merged: bool = False
