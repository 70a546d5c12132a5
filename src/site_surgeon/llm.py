"""Shared LLM client construction and response parsing.

Both the triage classifier and the coding agent talk to an
OpenAI-compatible chat endpoint through LangChain and expect bare JSON
back. This module holds the pieces they share.
"""

import json
import logging
from typing import Any, Optional

from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI


logger = logging.getLogger(__name__)


class LLMResponseError(Exception):
    """Raised when an LLM response cannot be used.

    Attributes:
        message: Human-readable error description.
        response_preview: Leading part of the offending response text.
    """

    def __init__(self, message: str, response_preview: Optional[str] = None):
        self.message = message
        self.response_preview = response_preview
        super().__init__(message)


def create_chat_model(
    llm_url: str,
    model_name: str,
    api_key: str = "not-needed",
    timeout: float = 60.0,
    temperature: float = 0.1,
    max_tokens: Optional[int] = None,
) -> ChatOpenAI:
    """Build a ChatOpenAI client for an OpenAI-compatible endpoint.

    Args:
        llm_url: Base URL of the endpoint (e.g. http://localhost:8000/v1).
        model_name: Name of the model to use for inference.
        api_key: API key; self-hosted endpoints usually ignore it.
        timeout: Request timeout in seconds.
        temperature: Sampling temperature.
        max_tokens: Optional cap on generated tokens.
    """
    return ChatOpenAI(
        base_url=llm_url,
        model=model_name,
        temperature=temperature,
        timeout=timeout,
        max_tokens=max_tokens,
        api_key=api_key,
    )


def parse_llm_json(response_text: str) -> Any:
    """Parse a JSON document out of LLM response text.

    Handles common LLM response quirks like markdown code fences.

    Raises:
        json.JSONDecodeError: If the response is not valid JSON.
    """
    text = response_text.strip()

    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]

    if text.endswith("```"):
        text = text[:-3]

    return json.loads(text.strip())


async def invoke_for_text(llm: ChatOpenAI, messages: list[BaseMessage]) -> str:
    """Invoke the model and return its text content.

    Raises:
        LLMResponseError: If the response content is not a string.
    """
    response = await llm.ainvoke(messages)
    content = response.content
    if not isinstance(content, str):
        raise LLMResponseError(f"Unexpected response type: {type(content)}")
    return content
