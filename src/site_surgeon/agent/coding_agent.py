"""LLM coding agent that proposes and applies a fix inside a sandbox.

The agent runs a bounded, five-step loop against one sandbox:

1. List the repository's files.
2. Ask the LLM which files (at most five) most likely contain the bug.
3. Read those files from the sandbox.
4. Ask the LLM for complete replacement content, a commit message and a
   summary.
5. Write the replacements into the sandbox and, when enabled, run the
   repository's verification command.

Every failure is caught and reported as an unsuccessful AgentResult with
the transcript so far. The one exception is sandbox expiry, which
propagates so the run ends in the failed status.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import ValidationError

from site_surgeon.agent.models import AgentResult, FixProposal
from site_surgeon.llm import create_chat_model, invoke_for_text, parse_llm_json
from site_surgeon.sandbox.base import Sandbox, SandboxExpiredError, SandboxFileError
from site_surgeon.state.models import IssueRecord


logger = logging.getLogger(__name__)

MAX_SELECTED_FILES = 5
FILE_LIST_PROMPT_LIMIT = 300
FALLBACK_FILE_COUNT = 3
PATCH_PREVIEW_CHARS = 500

SOURCE_FILE_PATTERN = re.compile(r"\.(ts|js|tsx|jsx|py)$")


FILE_SELECTION_SYSTEM_PROMPT = """You are a senior software engineer.
Given a bug report and the list of files in a repository, identify which files (up to 5) are most likely to contain the bug.

Respond with valid JSON only. No markdown. Schema:
{"files": ["path/to/file1.ts", "path/to/file2.ts"]}"""


FIX_SYSTEM_PROMPT = """You are an expert software engineer performing automated bug fixing.
You will receive a bug description, reproduction steps and the relevant source files.
Produce fixed versions of the files that need changes.

Rules:
- Only change what is necessary to fix the reported bug.
- Do not refactor unrelated code.
- Do not change import paths or package names.
- Always provide the COMPLETE file content, not a diff, so it can be written directly.
- Omit files that do not need changes.

Respond with valid JSON only. No markdown. Schema:
{
  "commitMessage": "<imperative commit message, max 72 chars>",
  "patchSummary": "<one-paragraph explanation of the fix>",
  "files": [
    {"path": "relative/path/from/repo/root.ts", "content": "<full file content>"}
  ]
}"""


class AgentStepError(Exception):
    """Raised inside the agent loop when a step cannot continue.

    Attributes:
        step: Number of the step that failed.
    """

    def __init__(self, step: int, message: str):
        self.step = step
        super().__init__(message)


def _build_selection_prompt(issue: IssueRecord, files: List[str]) -> str:
    file_list = "\n".join(files[:FILE_LIST_PROMPT_LIMIT])
    return f"""Bug Title: {issue.title}
Description: {issue.description}
Steps to Reproduce: {issue.steps_to_reproduce}

Repository files:
{file_list}"""


def _build_fix_prompt(issue: IssueRecord, contents: Dict[str, str]) -> str:
    file_blocks = "\n\n".join(
        f"=== FILE: {path} ===\n{content}" for path, content in contents.items()
    )
    return f"""Bug Report:
Title: {issue.title}
Severity: {issue.severity.value}
Description: {issue.description}
Steps to Reproduce: {issue.steps_to_reproduce}

Source Files:
{file_blocks}"""


def fallback_file_selection(files: List[str]) -> List[str]:
    """First few source files by extension, used when selection fails."""
    return [f for f in files if SOURCE_FILE_PATTERN.search(f)][:FALLBACK_FILE_COUNT]


def parse_file_selection(data: Any) -> List[str]:
    """Extract the selected paths from a parsed selection response.

    Raises:
        ValueError: If the response does not carry a list of paths.
    """
    if not isinstance(data, dict) or not isinstance(data.get("files"), list):
        raise ValueError("Selection response must be an object with a files list")

    selected: List[str] = []
    for path in data["files"]:
        if isinstance(path, str) and path.strip() and path not in selected:
            selected.append(path.strip())
    return selected[:MAX_SELECTED_FILES]


def render_patch(proposal: FixProposal) -> str:
    """Render a markdown description of a fix for the PR body."""
    blocks = [
        f"## {patch.path}\n```\n{patch.content[:PATCH_PREVIEW_CHARS]}"
        f"{'...' if len(patch.content) > PATCH_PREVIEW_CHARS else ''}\n```"
        for patch in proposal.files
    ]
    sections = [proposal.patch_summary.strip()] if proposal.patch_summary.strip() else []
    sections.extend(blocks)
    return "\n\n".join(sections)


class CodingAgent:
    """Generates and applies a bug fix inside a sandbox.

    Attributes:
        llm_url: URL of the OpenAI-compatible endpoint.
        model_name: Name of the model to use.
        api_key: API key sent to the endpoint.
        timeout: Request timeout in seconds.
        verify: Whether to run the repository's tests or build after
            writing the fix. The outcome is recorded in the transcript
            and never changes the result's success flag.
    """

    def __init__(
        self,
        llm_url: str,
        model_name: str,
        api_key: str = "not-needed",
        timeout: float = 120.0,
        verify: bool = False,
    ):
        self.llm_url = llm_url
        self.model_name = model_name
        self.api_key = api_key
        self.timeout = timeout
        self.verify = verify
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
                temperature=0.1,
            )
        return self._llm

    async def run(self, issue: IssueRecord, sandbox: Sandbox) -> AgentResult:
        """Run the fix loop for an issue against a prepared sandbox.

        Args:
            issue: The issue being fixed.
            sandbox: Sandbox with the repository already cloned.

        Returns:
            AgentResult; success is False with ``error`` set on failure.

        Raises:
            SandboxExpiredError: If the sandbox lifetime runs out.
        """
        transcript: List[str] = []

        try:
            return await self._run_steps(issue, sandbox, transcript)
        except SandboxExpiredError:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            transcript.append(f"Agent error: {message}")
            logger.error(
                "Coding agent failed",
                extra={
                    "issue_id": issue.id,
                    "sandbox_id": sandbox.sandbox_id,
                    "error": message,
                    "error_type": type(e).__name__,
                },
            )
            return AgentResult(success=False, logs=transcript, error=message)

    async def _run_steps(
        self,
        issue: IssueRecord,
        sandbox: Sandbox,
        transcript: List[str],
    ) -> AgentResult:
        transcript.append("Step 1: Listing repository files...")
        all_files = await sandbox.list_files()
        transcript.append(f"Found {len(all_files)} files.")
        logger.info(
            "Agent listed repository files",
            extra={"issue_id": issue.id, "count": len(all_files)},
        )

        transcript.append("Step 2: Identifying relevant files...")
        selected = await self._select_files(issue, all_files, transcript)
        transcript.append(f"Relevant files: {', '.join(selected) or '(none)'}")

        transcript.append("Step 3: Reading relevant files...")
        contents: Dict[str, str] = {}
        for path in selected:
            try:
                contents[path] = await sandbox.read_file(path)
                transcript.append(f"Read: {path} ({len(contents[path])} chars)")
            except SandboxFileError:
                transcript.append(f"Skipped (read error): {path}")
        if not contents:
            raise AgentStepError(3, "Could not read any relevant files from the sandbox.")

        transcript.append("Step 4: Generating fix...")
        proposal = await self._generate_fix(issue, contents)
        transcript.append(f"Fix generated. Files changed: {len(proposal.files)}")
        transcript.append(f"Commit message: {proposal.commit_message}")
        logger.info(
            "Fix generated",
            extra={"issue_id": issue.id, "files_changed": len(proposal.files)},
        )

        transcript.append("Step 5: Writing fixed files to sandbox...")
        written: List[str] = []
        for patch in proposal.files:
            await sandbox.write_file(patch.path, patch.content)
            written.append(patch.path)
            transcript.append(f"Written: {patch.path}")

        if self.verify and written:
            await self._verify(sandbox, transcript)

        return AgentResult(
            success=True,
            patch=render_patch(proposal),
            commit_message=proposal.commit_message,
            files_changed=written,
            logs=transcript,
        )

    async def _select_files(
        self,
        issue: IssueRecord,
        all_files: List[str],
        transcript: List[str],
    ) -> List[str]:
        messages = [
            SystemMessage(content=FILE_SELECTION_SYSTEM_PROMPT),
            HumanMessage(content=_build_selection_prompt(issue, all_files)),
        ]
        response_text = await invoke_for_text(self.llm, messages)

        try:
            return parse_file_selection(parse_llm_json(response_text))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(
                "File selection response unusable, falling back to source files",
                extra={
                    "issue_id": issue.id,
                    "response_preview": response_text[:200],
                    "error": str(e),
                },
            )
            transcript.append("File selection unparseable, using fallback selection")
            return fallback_file_selection(all_files)

    async def _generate_fix(
        self,
        issue: IssueRecord,
        contents: Dict[str, str],
    ) -> FixProposal:
        messages = [
            SystemMessage(content=FIX_SYSTEM_PROMPT),
            HumanMessage(content=_build_fix_prompt(issue, contents)),
        ]
        response_text = await invoke_for_text(self.llm, messages)

        try:
            return FixProposal.model_validate(parse_llm_json(response_text))
        except (json.JSONDecodeError, ValidationError) as e:
            raise AgentStepError(
                4, f"Invalid fix response from model: {e}"
            ) from e

    async def _verify(self, sandbox: Sandbox, transcript: List[str]) -> None:
        transcript.append("Verifying fix...")
        try:
            result = await sandbox.run_verification()
        except SandboxExpiredError:
            raise
        except Exception as e:
            transcript.append(f"Verification could not run: {e}")
            return

        if result.skipped:
            transcript.append("Verification skipped: no test or build command found")
        elif result.passed:
            transcript.append(f"Verification passed: {result.command}")
        else:
            transcript.append(
                f"Verification failed (exit {result.exit_code}): {result.command}"
            )
            if result.output:
                transcript.append(result.output)
