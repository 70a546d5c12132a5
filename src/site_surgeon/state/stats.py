"""Read-only projections over the issue store for dashboards."""

from typing import Dict, List

from pydantic import BaseModel, Field

from site_surgeon.state.models import AIDecision, IssueRecord, IssueStatus


class IssueStats(BaseModel):
    """Aggregate counts across all issue records.

    Attributes:
        total: Number of records.
        by_status: Count per pipeline status (every status present, zero
            included).
        automated: Records whose current decision is AUTOMATED.
        manual: Records whose current decision is MANUAL.
    """

    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    automated: int = 0
    manual: int = 0

    def to_flat_dict(self) -> Dict[str, int]:
        """Flatten into a single mapping of counter name to value."""
        return {
            "total": self.total,
            **self.by_status,
            "automated": self.automated,
            "manual": self.manual,
        }


def compute_stats(records: List[IssueRecord]) -> IssueStats:
    """Count records by status and by AI decision."""
    by_status = {status.value: 0 for status in IssueStatus}
    automated = 0
    manual = 0

    for record in records:
        by_status[record.status.value] += 1
        if record.ai_decision == AIDecision.AUTOMATED:
            automated += 1
        elif record.ai_decision == AIDecision.MANUAL:
            manual += 1

    return IssueStats(
        total=len(records),
        by_status=by_status,
        automated=automated,
        manual=manual,
    )
