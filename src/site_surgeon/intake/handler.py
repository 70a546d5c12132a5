"""Parsing of raw bug report payloads.

The handler turns an untrusted JSON payload into an IssueReport or raises
ReportValidationError describing every problem found. Nothing is persisted
and no pipeline run starts for a rejected payload.

Payload structure:
{
  "title": "Checkout button does nothing",
  "description": "Clicking checkout on the cart page has no effect",
  "stepsToReproduce": "1. Add an item 2. Open cart 3. Click checkout",
  "severity": "medium",
  "repoUrl": "https://github.com/acme/shop"
}
"""

import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from site_surgeon.intake.models import IssueReport

logger = logging.getLogger(__name__)


class ReportValidationError(Exception):
    """Raised when a submitted bug report is malformed.

    Attributes:
        errors: Human-readable validation messages, one per problem.
    """

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("Invalid bug report: " + "; ".join(errors))


class ReportHandler:
    """Validates raw bug report payloads."""

    def parse_report(self, payload: Any) -> IssueReport:
        """Parse a bug report from a request payload.

        Args:
            payload: The decoded request body.

        Returns:
            The validated IssueReport.

        Raises:
            ReportValidationError: If the payload is not an object or any
                field is missing or invalid.
        """
        if not isinstance(payload, dict):
            logger.warning("Invalid payload: expected dict, got %s", type(payload))
            raise ReportValidationError(["payload must be a JSON object"])

        try:
            report = IssueReport.model_validate(payload)
        except ValidationError as exc:
            errors = _format_errors(exc.errors())
            logger.info(
                "Rejected bug report",
                extra={"validation_errors": errors},
            )
            raise ReportValidationError(errors) from exc

        logger.debug(
            "Parsed bug report",
            extra={"title": report.title[:100], "severity": report.severity.value},
        )
        return report


def _format_errors(errors: List[Dict[str, Any]]) -> List[str]:
    messages = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ())) or "payload"
        messages.append(f"{location}: {error.get('msg', 'invalid value')}")
    return messages
