"""Pipeline event models for observability.

This module defines the data models for pipeline events, including:
- EventType: Enum of all event types emitted by the pipeline
- PipelineEvent: Structured event with all required metadata

Events are emitted for monitoring, alerting, and debugging purposes.
They provide visibility into pipeline health and issue progression.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the resolution pipeline.

    Event Categories:
        STATE_TRANSITION: An issue moved between statuses. The first event
            of every issue has no from_status and carries the severity.

        ERROR: A run ended in FAILED, or a non-fatal stage (sandbox
            destroy, notification) reported an error.

        ESCALATION: An issue was routed to human review, either by the
            classifier or because the coding agent could not fix it.

        COMPLETION: A run reached a pipeline-complete status.

        TIMEOUT: A sandbox exceeded its lifetime.
    """

    STATE_TRANSITION = "state_transition"
    ERROR = "error"
    ESCALATION = "escalation"
    COMPLETION = "completion"
    TIMEOUT = "timeout"


class PipelineEvent(BaseModel):
    """Structured event emitted by the resolution pipeline.

    Attributes:
        event_type: The category of event (state transition, error, etc.).
        issue_id: The issue's UUID.
        repository: The target repository URL.
        timestamp: When the event occurred (UTC timezone).
        details: Additional context specific to the event type.

    Example:
        >>> event = PipelineEvent(
        ...     event_type=EventType.STATE_TRANSITION,
        ...     issue_id="5b0c...",
        ...     repository="https://github.com/acme/shop",
        ...     details={"from_status": "received", "to_status": "classifying"},
        ... )

    Details Field Conventions:
        For STATE_TRANSITION events:
            - from_status: Previous status (None for a new issue)
            - to_status: New status
            - severity: Reported severity (new issues only)

        For ERROR events:
            - error_message: Human-readable error description
            - error_type: Exception class name
            - stage: Status the issue was in when the error occurred

        For ESCALATION events:
            - source: "classifier" or "agent"
            - reason: Why the issue needs a human

        For COMPLETION events:
            - outcome: Final status (merged, pr_opened, notified)
            - duration_seconds: Total processing time
            - pr_url: URL of the PR, when one was opened

        For TIMEOUT events:
            - stage: Status the issue was in when the sandbox expired
            - timeout_seconds: Configured sandbox lifetime
    """

    event_type: EventType = Field(
        ...,
        description="The category of event being emitted",
    )

    issue_id: str = Field(
        ...,
        min_length=1,
        description="Issue identifier",
    )

    repository: str = Field(
        ...,
        min_length=1,
        description="Target repository URL",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Convert event to a flat dictionary for structured logging.

        Example:
            >>> event.to_log_dict()["event_type"]
            'error'
        """
        return {
            "event_type": self.event_type.value,
            "issue_id": self.issue_id,
            "repository": self.repository,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
