"""LLM coding agent that writes a fix into a sandbox."""

from site_surgeon.agent.coding_agent import AgentStepError, CodingAgent
from site_surgeon.agent.models import AgentResult, FilePatch, FixProposal

__all__ = [
    "AgentResult",
    "AgentStepError",
    "CodingAgent",
    "FilePatch",
    "FixProposal",
]
