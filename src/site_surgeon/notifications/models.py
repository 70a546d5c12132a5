"""Notification models and the Notifier interface."""

from enum import Enum
from typing import Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from site_surgeon.state.models import IssueRecord


class NotificationKind(str, Enum):
    """Kinds of notification the pipeline sends."""

    MANUAL_REVIEW = "manual_review"
    AUTOMATED_FIX = "automated_fix"


class Notification(BaseModel):
    """A rendered notification ready to send.

    Attributes:
        kind: What the notification is about.
        issue_id: The issue it concerns.
        subject: Subject line.
        body: Plain-text body.
    """

    model_config = ConfigDict(frozen=True)

    kind: NotificationKind
    issue_id: str
    subject: str
    body: str


class NotificationError(Exception):
    """Raised when a notification cannot be delivered.

    Attributes:
        issue_id: The issue the notification concerned.
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


@runtime_checkable
class Notifier(Protocol):
    """Sends pipeline notifications to a fixed recipient."""

    async def notify_manual_review(self, issue: IssueRecord) -> None:
        """Alert that an issue needs human review."""
        ...

    async def notify_automated_fix(
        self,
        issue: IssueRecord,
        pr_url: str,
        merged: bool,
        patch_summary: str,
    ) -> None:
        """Summarize an automated fix and its PR."""
        ...
