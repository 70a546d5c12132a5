"""Coding agent data models.

FilePatch and FixProposal validate the fix-generation response; AgentResult
is what the agent hands back to the orchestrator.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FilePatch(BaseModel):
    """Full replacement content for one repository file."""

    path: str = Field(..., min_length=1)
    content: str


class FixProposal(BaseModel):
    """Parsed fix-generation response.

    Accepts both camelCase (as the model is prompted to answer) and
    snake_case field names.
    """

    model_config = ConfigDict(populate_by_name=True)

    commit_message: str = Field(..., min_length=1, alias="commitMessage")
    patch_summary: str = Field(default="", alias="patchSummary")
    files: List[FilePatch] = Field(default_factory=list)


@dataclass
class AgentResult:
    """Outcome of one coding agent run.

    Attributes:
        success: True when a patch was written into the sandbox.
        patch: Human-readable description of the patch.
        commit_message: Commit message proposed for the patch.
        files_changed: Repository-relative paths that were written.
        logs: Transcript of the run, in order.
        error: Failure description when success is False.
    """

    success: bool
    patch: str = ""
    commit_message: str = ""
    files_changed: List[str] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)
    error: Optional[str] = None
