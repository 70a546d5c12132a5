"""Issue status state machine.

This module implements the IssueStateMachine class, the only path through
which the pipeline mutates issue records. It validates every status change
against VALID_TRANSITIONS, applies the accompanying field changes in the
same store update, and provides append-only log accumulation.

The state machine depends on the IssueStore protocol for persistence, so
the in-memory store can be replaced by a durable one at composition time.
"""

import logging
from typing import Any, Iterable, List, Optional

from site_surgeon.state.models import (
    IssueRecord,
    IssueStatus,
    Severity,
    is_valid_transition,
)
from site_surgeon.state.store import IssueStore


logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """Raised when an invalid status transition is attempted.

    Attributes:
        issue_id: The issue whose transition was rejected.
        from_status: The current status.
        to_status: The attempted target status.
    """

    def __init__(
        self,
        issue_id: str,
        from_status: IssueStatus,
        to_status: IssueStatus,
    ):
        self.issue_id = issue_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for issue {issue_id} "
            f"from {from_status.value} to {to_status.value}"
        )


class IssueNotFoundError(Exception):
    """Raised when an issue record does not exist.

    Attributes:
        issue_id: The issue ID that was not found.
    """

    def __init__(self, issue_id: str):
        self.issue_id = issue_id
        super().__init__(f"Issue record not found: {issue_id}")


class IssueStateMachine:
    """State machine for managing issue status progression.

    Enforces the following invariants:
    - Only transitions listed in VALID_TRANSITIONS are applied
    - Status and its accompanying fields are written in one store update
    - Field updates outside a transition can never change the status
    - Log lines are only ever appended, never reordered or dropped

    Attributes:
        store: The issue store used for persistence.

    Example:
        >>> machine = IssueStateMachine(InMemoryIssueStore())
        >>> record = await machine.create(**report.model_dump())
        >>> record = await machine.transition(record.id, IssueStatus.CLASSIFYING)
    """

    def __init__(self, store: IssueStore):
        self.store = store

    async def create(
        self,
        title: str,
        description: str,
        steps_to_reproduce: str,
        severity: Severity,
        repo_url: str,
    ) -> IssueRecord:
        """Create and persist a new record in the RECEIVED status.

        Args:
            title: Short summary of the bug.
            description: Full bug description.
            steps_to_reproduce: Steps that reproduce the bug.
            severity: Reporter-assigned severity.
            repo_url: Target repository URL.

        Returns:
            The newly created record.
        """
        record = IssueRecord(
            title=title,
            description=description,
            steps_to_reproduce=steps_to_reproduce,
            severity=severity,
            repo_url=repo_url,
            status=IssueStatus.RECEIVED,
        )

        logger.info(
            "Creating issue record",
            extra={
                "issue_id": record.id,
                "severity": record.severity.value,
                "repo_url": record.repo_url,
            },
        )

        await self.store.save(record)
        return record

    async def get(self, issue_id: str) -> Optional[IssueRecord]:
        """Get the current record for an issue, or None."""
        return await self.store.find_by_id(issue_id)

    async def list_all(self) -> List[IssueRecord]:
        """List every record, newest first."""
        return await self.store.list_all()

    async def transition(
        self,
        issue_id: str,
        to_status: IssueStatus,
        **fields: Any,
    ) -> IssueRecord:
        """Move an issue to a new status.

        Args:
            issue_id: The issue identifier.
            to_status: The target status.
            **fields: Additional record fields written together with the
                status (e.g. pr_url when entering PR_OPENED).

        Returns:
            The updated record.

        Raises:
            IssueNotFoundError: If the issue doesn't exist.
            InvalidTransitionError: If the transition is not allowed.
        """
        record = await self._require(issue_id)
        from_status = record.status

        if not is_valid_transition(from_status, to_status):
            logger.warning(
                "Invalid status transition attempted",
                extra={
                    "issue_id": issue_id,
                    "from_status": from_status.value,
                    "to_status": to_status.value,
                },
            )
            raise InvalidTransitionError(issue_id, from_status, to_status)

        logger.info(
            "Transitioning issue status",
            extra={
                "issue_id": issue_id,
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )

        return await self._apply(issue_id, {**fields, "status": to_status})

    async def set_fields(self, issue_id: str, **fields: Any) -> IssueRecord:
        """Update record fields without changing the status.

        Raises:
            IssueNotFoundError: If the issue doesn't exist.
            ValueError: If a status change is smuggled into the fields.
        """
        if "status" in fields:
            raise ValueError("status can only be changed through transition()")
        return await self._apply(issue_id, fields)

    async def append_logs(
        self,
        issue_id: str,
        lines: Iterable[str],
    ) -> IssueRecord:
        """Append trace lines to the end of an issue's log.

        Raises:
            IssueNotFoundError: If the issue doesn't exist.
        """
        new_lines = [str(line) for line in lines]
        record = await self._require(issue_id)
        if not new_lines:
            return record
        return await self._apply(
            issue_id,
            {"sandbox_logs": [*record.sandbox_logs, *new_lines]},
        )

    async def _require(self, issue_id: str) -> IssueRecord:
        record = await self.store.find_by_id(issue_id)
        if record is None:
            raise IssueNotFoundError(issue_id)
        return record

    async def _apply(self, issue_id: str, partial: dict) -> IssueRecord:
        updated = await self.store.update(issue_id, partial)
        if updated is None:
            raise IssueNotFoundError(issue_id)
        return updated
