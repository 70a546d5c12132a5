"""Triage classification models.

This module defines the result of classifying a bug report as suitable
for automated fixing (AUTOMATED) or requiring human review (MANUAL).

The models use Pydantic for validation, consistent with the pipeline's
approach in intake/models.py and state/models.py.
"""

from pydantic import BaseModel, Field

from site_surgeon.state.models import AIDecision


class ClassificationResult(BaseModel):
    """Result of triaging a bug report.

    Attributes:
        decision: AUTOMATED or MANUAL.
        confidence: Confidence in the decision, 0-100.
        reason: One-paragraph explanation of the decision.
    """

    decision: AIDecision = Field(
        ...,
        description="Whether the coding agent should attempt a fix",
    )

    confidence: int = Field(
        default=0,
        ge=0,
        le=100,
        description="Confidence in the decision (0-100)",
    )

    reason: str = Field(
        default="",
        description="Explanation of the decision",
    )

    @property
    def is_automated(self) -> bool:
        """True when the issue should go to the coding agent."""
        return self.decision == AIDecision.AUTOMATED

    @classmethod
    def manual_fallback(cls, reason: str) -> "ClassificationResult":
        """Create a MANUAL decision with zero confidence.

        Used whenever the classifier fails or its output cannot be
        parsed, so an unclassifiable issue always goes to a human.

        Args:
            reason: Explanation of why classification failed.
        """
        return cls(
            decision=AIDecision.MANUAL,
            confidence=0,
            reason=reason,
        )
