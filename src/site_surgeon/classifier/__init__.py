"""LLM-based AUTOMATED/MANUAL triage of bug reports."""

from site_surgeon.classifier.agent import ClassificationError, IssueClassifier
from site_surgeon.classifier.models import ClassificationResult

__all__ = [
    "ClassificationError",
    "ClassificationResult",
    "IssueClassifier",
]
