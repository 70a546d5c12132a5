"""Issue record models and the pipeline status transition map.

This module defines the data models tracked for every submitted bug report:
- Severity: Reporter-assigned severity of the bug
- AIDecision: Triage outcome (AUTOMATED or MANUAL)
- IssueStatus: Enum of every pipeline status
- IssueRecord: Complete state of an issue as it moves through the pipeline
- VALID_TRANSITIONS: Map defining allowed status transitions

Status flow:
    received → classifying → notified
    received → classifying → sandboxing → fixing → pr_opened → merged
    fixing → notified (agent could not produce a fix)
    any non-terminal status → failed

The models use Pydantic for validation, consistent with intake/models.py
and config.py.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    """Severity assigned by the reporter of a bug."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AIDecision(str, Enum):
    """Triage decision for an issue.

    Attributes:
        AUTOMATED: The coding agent should attempt a fix.
        MANUAL: The issue is escalated to a human reviewer.
    """

    AUTOMATED = "AUTOMATED"
    MANUAL = "MANUAL"


class IssueStatus(str, Enum):
    """Pipeline statuses that an issue progresses through.

    Attributes:
        RECEIVED: Record created, pipeline not yet started.
        CLASSIFYING: Waiting for the triage decision.
        SANDBOXING: Creating the sandbox, cloning and installing.
        FIXING: Coding agent is working inside the sandbox.
        PR_OPENED: Pull request opened. Final when the PR was not merged.
        MERGED: Pull request merged. Terminal.
        NOTIFIED: Escalated to a human and notification attempted. Terminal.
        FAILED: Pipeline aborted on an unhandled error. Terminal.
    """

    RECEIVED = "received"
    CLASSIFYING = "classifying"
    SANDBOXING = "sandboxing"
    FIXING = "fixing"
    PR_OPENED = "pr_opened"
    MERGED = "merged"
    NOTIFIED = "notified"
    FAILED = "failed"


# Valid status transitions map
#
# - Any non-terminal status can transition to FAILED
# - MERGED, NOTIFIED and FAILED are terminal (no outgoing transitions)
# - PR_OPENED is the final status when the pull request was not merged
VALID_TRANSITIONS: Dict[IssueStatus, List[IssueStatus]] = {
    IssueStatus.RECEIVED: [
        IssueStatus.CLASSIFYING,
        IssueStatus.FAILED,
    ],
    IssueStatus.CLASSIFYING: [
        IssueStatus.NOTIFIED,
        IssueStatus.SANDBOXING,
        IssueStatus.FAILED,
    ],
    IssueStatus.SANDBOXING: [
        IssueStatus.FIXING,
        IssueStatus.FAILED,
    ],
    IssueStatus.FIXING: [
        IssueStatus.PR_OPENED,
        IssueStatus.NOTIFIED,
        IssueStatus.FAILED,
    ],
    IssueStatus.PR_OPENED: [
        IssueStatus.MERGED,
        IssueStatus.FAILED,
    ],
    IssueStatus.MERGED: [],
    IssueStatus.NOTIFIED: [],
    IssueStatus.FAILED: [],
}


def is_valid_transition(from_status: IssueStatus, to_status: IssueStatus) -> bool:
    """Check if a status transition is allowed.

    Example:
        >>> is_valid_transition(IssueStatus.RECEIVED, IssueStatus.CLASSIFYING)
        True
        >>> is_valid_transition(IssueStatus.NOTIFIED, IssueStatus.SANDBOXING)
        False
    """
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def is_terminal_status(status: IssueStatus) -> bool:
    """Check if a status has no outgoing transitions."""
    return len(VALID_TRANSITIONS.get(status, [])) == 0


def is_pipeline_complete(record: "IssueRecord") -> bool:
    """Check whether no further automatic progress will happen for a record.

    A record is complete when its status is terminal, or when it sits in
    PR_OPENED with a pull request awaiting a human merge.
    """
    if is_terminal_status(record.status):
        return True
    return record.status == IssueStatus.PR_OPENED and record.pr_url is not None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IssueRecord(BaseModel):
    """Complete state of a bug report in the resolution pipeline.

    Records are immutable snapshots. Every mutation produces a new record
    that replaces the previous one in the store, so readers never observe
    a half-applied update.

    Attributes:
        id: Opaque unique identifier generated at submission.
        title: Short summary of the bug.
        description: Full description of the bug.
        steps_to_reproduce: How to trigger the bug.
        severity: Reporter-assigned severity.
        repo_url: URL of the target repository.
        status: Current pipeline status.
        ai_decision: Triage decision once classified.
        ai_reason: Explanation for the triage decision or escalation.
        sandbox_id: Identifier of the sandbox used for the fix attempt.
        sandbox_logs: Append-only execution trace.
        branch_name: Branch holding the submitted fix.
        pr_url: URL of the opened pull request.
        pr_number: Number of the opened pull request.
        patch_summary: Human-readable summary of the fix.
        commit_message: Commit message used for the fix.
        created_at: When the record was created (UTC).
        updated_at: When the record was last mutated (UTC).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        min_length=1,
        description="Opaque unique issue identifier",
    )

    title: str = Field(..., min_length=1, description="Short summary of the bug")

    description: str = Field(..., min_length=1, description="Full bug description")

    steps_to_reproduce: str = Field(
        ...,
        min_length=1,
        description="Steps that reproduce the bug",
    )

    severity: Severity = Field(..., description="Reporter-assigned severity")

    repo_url: str = Field(..., min_length=1, description="Target repository URL")

    status: IssueStatus = Field(
        default=IssueStatus.RECEIVED,
        description="Current pipeline status",
    )

    ai_decision: Optional[AIDecision] = None

    ai_reason: Optional[str] = None

    sandbox_id: Optional[str] = None

    sandbox_logs: List[str] = Field(
        default_factory=list,
        description="Append-only execution trace",
    )

    branch_name: Optional[str] = None

    pr_url: Optional[str] = None

    pr_number: Optional[int] = Field(default=None, gt=0)

    patch_summary: Optional[str] = None

    commit_message: Optional[str] = None

    created_at: datetime = Field(default_factory=_utcnow)

    updated_at: datetime = Field(default_factory=_utcnow)
