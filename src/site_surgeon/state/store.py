"""Issue record persistence.

Defines the IssueStore protocol the pipeline depends on and the in-memory
implementation used by default. A durable backend only needs to satisfy
the same four operations; nothing in the orchestrator changes.

Consistency rules:
- update() is all-or-nothing: the merged record is validated before it
  replaces the stored one, so an invalid field leaves the record untouched
- update() always refreshes updated_at, even for an empty partial
- update() never creates a record for an unknown id
- identity and input fields cannot be changed after creation
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from site_surgeon.state.models import IssueRecord


logger = logging.getLogger(__name__)


IMMUTABLE_FIELDS = frozenset(
    {
        "id",
        "created_at",
        "title",
        "description",
        "steps_to_reproduce",
        "severity",
        "repo_url",
    }
)


class ImmutableFieldError(ValueError):
    """Raised when an update tries to change an identity or input field.

    Attributes:
        fields: The immutable field names present in the update.
    """

    def __init__(self, fields: List[str]):
        self.fields = fields
        super().__init__(f"Cannot update immutable fields: {', '.join(fields)}")


@runtime_checkable
class IssueStore(Protocol):
    """Protocol defining the interface for issue record persistence."""

    async def save(self, record: IssueRecord) -> None:
        """Save a record, replacing any record with the same id."""
        ...

    async def find_by_id(self, issue_id: str) -> Optional[IssueRecord]:
        """Get a record by id, or None if it does not exist."""
        ...

    async def update(
        self,
        issue_id: str,
        partial: Mapping[str, Any],
    ) -> Optional[IssueRecord]:
        """Merge fields into a record and refresh its updated_at.

        Returns:
            The updated record, or None if the id does not exist.
        """
        ...

    async def list_all(self) -> List[IssueRecord]:
        """List every record, newest first."""
        ...


class InMemoryIssueStore:
    """Process-local IssueStore backed by a dictionary.

    Records are immutable, so handing them out to readers is safe; each
    update swaps in a freshly validated record under the store lock.
    Contents are lost when the process exits.
    """

    def __init__(self) -> None:
        self._records: Dict[str, IssueRecord] = {}
        self._lock = asyncio.Lock()

    async def save(self, record: IssueRecord) -> None:
        async with self._lock:
            self._records[record.id] = record

    async def find_by_id(self, issue_id: str) -> Optional[IssueRecord]:
        return self._records.get(issue_id)

    async def update(
        self,
        issue_id: str,
        partial: Mapping[str, Any],
    ) -> Optional[IssueRecord]:
        forbidden = sorted(IMMUTABLE_FIELDS.intersection(partial))
        if forbidden:
            raise ImmutableFieldError(forbidden)

        async with self._lock:
            existing = self._records.get(issue_id)
            if existing is None:
                logger.debug(
                    "Update ignored for unknown issue",
                    extra={"issue_id": issue_id},
                )
                return None

            data = existing.model_dump()
            data.update(partial)
            data["updated_at"] = _next_timestamp(existing.updated_at)

            # Raises before the stored record is touched
            updated = IssueRecord.model_validate(data)
            self._records[issue_id] = updated
            return updated

    async def list_all(self) -> List[IssueRecord]:
        return sorted(
            self._records.values(),
            key=lambda record: record.created_at,
            reverse=True,
        )

    def __len__(self) -> int:
        return len(self._records)


def _next_timestamp(previous: datetime) -> datetime:
    """Current UTC time, strictly later than the previous timestamp."""
    now = datetime.now(timezone.utc)
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now
