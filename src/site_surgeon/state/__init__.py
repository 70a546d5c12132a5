"""Issue records, status state machine and persistence.

This module manages issue progression through pipeline statuses:
- received → classifying → notified
- received → classifying → sandboxing → fixing → pr_opened → merged
- any non-terminal status → failed

Records live behind the IssueStore protocol; the in-memory store is the
default backend.
"""

from site_surgeon.state.machine import (
    InvalidTransitionError,
    IssueNotFoundError,
    IssueStateMachine,
)
from site_surgeon.state.models import (
    VALID_TRANSITIONS,
    AIDecision,
    IssueRecord,
    IssueStatus,
    Severity,
    is_pipeline_complete,
    is_terminal_status,
    is_valid_transition,
)
from site_surgeon.state.stats import IssueStats, compute_stats
from site_surgeon.state.store import (
    ImmutableFieldError,
    InMemoryIssueStore,
    IssueStore,
)

__all__ = [
    # Models
    "AIDecision",
    "IssueRecord",
    "IssueStatus",
    "Severity",
    "VALID_TRANSITIONS",
    "is_pipeline_complete",
    "is_terminal_status",
    "is_valid_transition",
    # State machine
    "InvalidTransitionError",
    "IssueNotFoundError",
    "IssueStateMachine",
    # Store
    "ImmutableFieldError",
    "InMemoryIssueStore",
    "IssueStore",
    # Projections
    "IssueStats",
    "compute_stats",
]
