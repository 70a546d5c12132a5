"""LLM-based triage classifier for the resolution pipeline.

This module implements the IssueClassifier that asks an LLM whether a bug
report can be fixed automatically by the coding agent (AUTOMATED) or must
go to a human reviewer (MANUAL).

The classifier uses LangChain with an OpenAI-compatible endpoint for
inference. It never raises: any invocation or parsing failure degrades to
a MANUAL decision with zero confidence, so a classification problem can
only ever route an issue to human review.
"""

import json
import logging
from typing import Any, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from site_surgeon.classifier.models import ClassificationResult
from site_surgeon.llm import (
    LLMResponseError,
    create_chat_model,
    invoke_for_text,
    parse_llm_json,
)
from site_surgeon.state.models import AIDecision, IssueRecord


logger = logging.getLogger(__name__)


CLASSIFICATION_SYSTEM_PROMPT = """You are a senior software engineering triage assistant for Site Surgeon, a self-healing web system.

Classify each incoming bug report as one of:
1. AUTOMATED - simple enough that an AI coding agent can likely fix it automatically.
2. MANUAL - too complex, risky or ambiguous for automated fixing; needs human review.

Lean AUTOMATED for:
- Typos, text changes, small CSS/style fixes
- Simple logic errors with a clear expected behaviour
- Missing null checks or guard clauses
- Small configuration changes
- Bugs with a clear reproduction path in a well-known framework
- Severity "low" or "medium"

Lean MANUAL for:
- Security vulnerabilities (SQL injection, XSS, auth bypass, etc.)
- Data-loss risks
- Required architecture changes
- Critical severity bugs with unclear reproduction
- Bugs requiring business-logic decisions
- Anything involving payments, PII or sensitive data

You MUST respond with valid JSON only. Do not include any text before or after the JSON object.

Respond with this exact JSON structure:
{
  "decision": "AUTOMATED" | "MANUAL",
  "reason": "<one paragraph explanation>",
  "confidence": <integer 0-100>
}"""


def _build_classification_prompt(issue: IssueRecord) -> str:
    """Build the user prompt for triage classification."""
    return f"""Bug Report:
- Title: {issue.title}
- Severity: {issue.severity.value}
- Description: {issue.description}
- Steps to Reproduce: {issue.steps_to_reproduce}
- Repository: {issue.repo_url}

Please classify this bug report."""


def _validate_and_normalize_response(data: Any) -> ClassificationResult:
    """Validate the parsed LLM response and build a result.

    Raises:
        ValueError: If the response is not an object or the decision is
            missing or not one of AUTOMATED / MANUAL.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")

    decision_str = str(data.get("decision", "")).strip().upper()
    valid_decisions = {d.value for d in AIDecision}
    if decision_str not in valid_decisions:
        raise ValueError(f"Invalid decision: {decision_str or '(missing)'}")

    confidence = data.get("confidence", 0)
    try:
        confidence = int(round(float(confidence)))
    except (ValueError, TypeError):
        confidence = 0
    confidence = max(0, min(100, confidence))

    reason = data.get("reason")
    reason = str(reason) if reason is not None else ""

    return ClassificationResult(
        decision=AIDecision(decision_str),
        confidence=confidence,
        reason=reason,
    )


class ClassificationError(Exception):
    """Raised internally when classification cannot produce a decision.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception that caused the failure.
    """

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class IssueClassifier:
    """LLM-based AUTOMATED/MANUAL triage for bug reports.

    Attributes:
        llm_url: URL of the OpenAI-compatible endpoint.
        model_name: Name of the model to use for inference.
        api_key: API key sent to the endpoint.
        timeout: Request timeout in seconds.
        temperature: Sampling temperature for the LLM.

    Example:
        >>> classifier = IssueClassifier(
        ...     llm_url="http://localhost:8000/v1",
        ...     model_name="Qwen/Qwen2.5-Coder-14B-Instruct",
        ... )
        >>> result = await classifier.classify(issue)
        >>> result.decision
        <AIDecision.AUTOMATED: 'AUTOMATED'>
    """

    def __init__(
        self,
        llm_url: str,
        model_name: str,
        api_key: str = "not-needed",
        timeout: float = 30.0,
        temperature: float = 0.1,
    ):
        self.llm_url = llm_url
        self.model_name = model_name
        self.api_key = api_key
        self.timeout = timeout
        self.temperature = temperature
        self._llm: Optional[ChatOpenAI] = None

    @property
    def llm(self) -> ChatOpenAI:
        """Get the LLM client, creating it if necessary."""
        if self._llm is None:
            self._llm = create_chat_model(
                llm_url=self.llm_url,
                model_name=self.model_name,
                api_key=self.api_key,
                timeout=self.timeout,
                temperature=self.temperature,
                max_tokens=512,
            )
        return self._llm

    async def classify(self, issue: IssueRecord) -> ClassificationResult:
        """Classify a bug report.

        Args:
            issue: The issue record to triage.

        Returns:
            The classification. If classification fails for any reason,
            a MANUAL decision with confidence 0 explaining the failure.
        """
        logger.info(
            "Classifying issue",
            extra={
                "issue_id": issue.id,
                "severity": issue.severity.value,
                "title": issue.title[:100],
            },
        )

        try:
            result = await self._perform_classification(issue)
        except Exception as e:
            logger.error(
                "Issue classification failed",
                extra={
                    "issue_id": issue.id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            return ClassificationResult.manual_fallback(
                reason=f"Classification failed: {e}"
            )

        logger.info(
            "Issue classified successfully",
            extra={
                "issue_id": issue.id,
                "decision": result.decision.value,
                "confidence": result.confidence,
            },
        )
        return result

    async def _perform_classification(
        self, issue: IssueRecord
    ) -> ClassificationResult:
        """Perform the actual LLM classification.

        Raises:
            ClassificationError: If the LLM call or parsing fails.
        """
        messages = [
            SystemMessage(content=CLASSIFICATION_SYSTEM_PROMPT),
            HumanMessage(content=_build_classification_prompt(issue)),
        ]

        try:
            response_text = await invoke_for_text(self.llm, messages)
        except LLMResponseError as e:
            raise ClassificationError(e.message, cause=e)
        except Exception as e:
            raise ClassificationError(f"LLM invocation failed: {e}", cause=e)

        try:
            parsed_data = parse_llm_json(response_text)
        except json.JSONDecodeError as e:
            logger.warning(
                "Failed to parse LLM response as JSON",
                extra={
                    "response_preview": response_text[:200],
                    "error": str(e),
                },
            )
            raise ClassificationError("Failed to parse AI response.", cause=e)

        try:
            return _validate_and_normalize_response(parsed_data)
        except ValueError as e:
            raise ClassificationError(f"Response validation failed: {e}", cause=e)
