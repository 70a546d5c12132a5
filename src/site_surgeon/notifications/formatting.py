"""Plain-text rendering of pipeline notifications."""

from site_surgeon.notifications.models import Notification, NotificationKind
from site_surgeon.state.models import IssueRecord


SUBJECT_PREFIX = "[Site Surgeon]"

FOOTER = "This notification was sent by Site Surgeon, the self-healing web system."


def format_manual_review(issue: IssueRecord) -> Notification:
    """Render the alert sent when an issue needs human review."""
    body = f"""Manual Review Required

The bug report below was routed to human review.

Issue ID:    {issue.id}
Title:       {issue.title}
Severity:    {issue.severity.value.upper()}
Repository:  {issue.repo_url}
AI Reason:   {issue.ai_reason or "-"}
Reported At: {issue.created_at.isoformat()}

Description
-----------
{issue.description}

Steps to Reproduce
------------------
{issue.steps_to_reproduce}

--
{FOOTER}
"""
    return Notification(
        kind=NotificationKind.MANUAL_REVIEW,
        issue_id=issue.id,
        subject=f"{SUBJECT_PREFIX} Manual Review Required: {issue.title}",
        body=body,
    )


def format_automated_fix(
    issue: IssueRecord,
    pr_url: str,
    merged: bool,
    patch_summary: str,
) -> Notification:
    """Render the summary sent after a fix PR was opened."""
    outcome = "Merged" if merged else "PR Opened"
    status_label = "Merged" if merged else "PR opened (pending review)"
    decision = issue.ai_decision.value if issue.ai_decision else "-"

    body = f"""Automated Fix Applied

Site Surgeon analysed and fixed the bug report below.
Status: {status_label}

Issue ID:     {issue.id}
Title:        {issue.title}
Severity:     {issue.severity.value.upper()}
Repository:   {issue.repo_url}
Pull Request: {pr_url}
AI Decision:  {decision}

What Was Fixed
--------------
{patch_summary or "See the pull request for the full diff."}

--
{FOOTER}
"""
    return Notification(
        kind=NotificationKind.AUTOMATED_FIX,
        issue_id=issue.id,
        subject=f"{SUBJECT_PREFIX} Automated Fix {outcome}: {issue.title}",
        body=body,
    )
