"""Bug report intake and validation."""

from site_surgeon.intake.handler import ReportHandler, ReportValidationError
from site_surgeon.intake.models import IssueReport

__all__ = [
    "IssueReport",
    "ReportHandler",
    "ReportValidationError",
]
