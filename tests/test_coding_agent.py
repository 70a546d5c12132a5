"""Unit tests for the CodingAgent fix loop.

The LLM is mocked with a queue of responses (file selection first, fix
second) and the sandbox is an in-memory FakeSandbox.
"""

import asyncio
import json
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

from fakes import FakeSandbox, llm_message, make_record
from site_surgeon.agent.coding_agent import (
    MAX_SELECTED_FILES,
    CodingAgent,
    fallback_file_selection,
    parse_file_selection,
    render_patch,
)
from site_surgeon.agent.models import FilePatch, FixProposal
from site_surgeon.sandbox.base import SandboxExpiredError, VerificationResult


def run_async(coro):
    return asyncio.run(coro)


REPO_FILES = {
    "README.md": "# Shop\n",
    "src/cart.js": "export function checkout() {}\n",
    "src/util.js": "export const noop = () => {};\n",
    "styles/main.css": "body { margin: 0; }\n",
}

FIXED_CART = "export function checkout() { submitOrder(); }\n"


def _fix_response(files=None, commit="Fix checkout button handler") -> str:
    if files is None:
        files = [{"path": "src/cart.js", "content": FIXED_CART}]
    return json.dumps(
        {
            "commitMessage": commit,
            "patchSummary": "Wire the checkout button to submitOrder.",
            "files": files,
        }
    )


def _agent(responses: List, verify: bool = False) -> CodingAgent:
    agent = CodingAgent(
        llm_url="http://localhost:8000/v1",
        model_name="test-model",
        verify=verify,
    )
    llm = MagicMock()
    llm.ainvoke = AsyncMock(
        side_effect=[
            r if isinstance(r, Exception) else llm_message(r) for r in responses
        ]
    )
    agent._llm = llm
    return agent


# =============================================================================
# Helpers
# =============================================================================


class TestFileSelection:
    def test_parse_dedupes_and_caps(self):
        paths = [f"src/f{i}.js" for i in range(8)]
        selected = parse_file_selection({"files": ["src/f0.js", *paths, ""]})

        assert selected == paths[:MAX_SELECTED_FILES]

    @pytest.mark.parametrize("data", [["a.js"], {"paths": ["a.js"]}, {"files": "a.js"}])
    def test_parse_rejects_wrong_shape(self, data):
        with pytest.raises(ValueError):
            parse_file_selection(data)

    def test_fallback_picks_first_source_files(self):
        files = ["README.md", "a.ts", "b.css", "c.py", "d.jsx", "e.js"]
        assert fallback_file_selection(files) == ["a.ts", "c.py", "d.jsx"]


class TestRenderPatch:
    def test_includes_summary_and_files(self):
        proposal = FixProposal(
            commit_message="Fix",
            patch_summary="Summary here",
            files=[FilePatch(path="a.js", content="x" * 600)],
        )

        rendered = render_patch(proposal)

        assert rendered.startswith("Summary here")
        assert "## a.js" in rendered
        assert "x" * 500 + "..." in rendered
        assert "x" * 501 not in rendered

    def test_fix_proposal_accepts_snake_case(self):
        proposal = FixProposal.model_validate(
            {"commit_message": "Fix", "patch_summary": "S", "files": []}
        )
        assert proposal.commit_message == "Fix"


# =============================================================================
# Agent loop
# =============================================================================


class TestCodingAgentRun:
    def test_successful_fix_is_written_to_sandbox(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        agent = _agent([json.dumps({"files": ["src/cart.js"]}), _fix_response()])

        result = run_async(agent.run(make_record(), sandbox))

        assert result.success
        assert result.error is None
        assert result.files_changed == ["src/cart.js"]
        assert result.commit_message == "Fix checkout button handler"
        assert "Wire the checkout button" in result.patch
        assert sandbox.files["src/cart.js"] == FIXED_CART
        assert result.logs[0] == "Step 1: Listing repository files..."
        assert "Written: src/cart.js" in result.logs

    def test_fix_prompt_contains_file_contents(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        agent = _agent([json.dumps({"files": ["src/cart.js"]}), _fix_response()])

        run_async(agent.run(make_record(), sandbox))

        fix_messages = agent._llm.ainvoke.call_args_list[1].args[0]
        assert "=== FILE: src/cart.js ===" in fix_messages[1].content
        assert REPO_FILES["src/cart.js"] in fix_messages[1].content

    def test_unparseable_selection_uses_fallback(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        agent = _agent(["cart.js probably", _fix_response()])

        result = run_async(agent.run(make_record(), sandbox))

        assert result.success
        assert "File selection unparseable, using fallback selection" in result.logs
        assert "Read: src/cart.js (30 chars)" in result.logs

    def test_unreadable_files_are_skipped(self):
        sandbox = FakeSandbox(files=REPO_FILES, unreadable={"src/util.js"})
        agent = _agent(
            [json.dumps({"files": ["src/util.js", "src/cart.js"]}), _fix_response()]
        )

        result = run_async(agent.run(make_record(), sandbox))

        assert result.success
        assert "Skipped (read error): src/util.js" in result.logs

    def test_no_readable_files_fails(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        agent = _agent([json.dumps({"files": ["missing.js"]})])

        result = run_async(agent.run(make_record(), sandbox))

        assert not result.success
        assert result.error == "Could not read any relevant files from the sandbox."
        assert result.logs[-1].startswith("Agent error:")
        assert agent._llm.ainvoke.call_count == 1

    def test_invalid_fix_response_fails(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        agent = _agent([json.dumps({"files": ["src/cart.js"]}), "here is the fix!"])

        result = run_async(agent.run(make_record(), sandbox))

        assert not result.success
        assert result.error.startswith("Invalid fix response from model")
        assert sandbox.files == REPO_FILES

    def test_fix_without_commit_message_fails(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        agent = _agent(
            [json.dumps({"files": ["src/cart.js"]}), json.dumps({"files": []})]
        )

        result = run_async(agent.run(make_record(), sandbox))

        assert not result.success

    def test_llm_error_fails_without_raising(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        agent = _agent([ConnectionError("endpoint down")])

        result = run_async(agent.run(make_record(), sandbox))

        assert not result.success
        assert result.error == "endpoint down"

    def test_expired_sandbox_propagates(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        sandbox.expire()
        agent = _agent([])

        with pytest.raises(SandboxExpiredError):
            run_async(agent.run(make_record(), sandbox))

    def test_expiry_during_write_propagates(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        sandbox.write_file = AsyncMock(
            side_effect=SandboxExpiredError(sandbox.sandbox_id, 300)
        )
        agent = _agent([json.dumps({"files": ["src/cart.js"]}), _fix_response()])

        with pytest.raises(SandboxExpiredError):
            run_async(agent.run(make_record(), sandbox))

    def test_empty_fix_is_successful_with_no_files(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        agent = _agent([json.dumps({"files": ["src/cart.js"]}), _fix_response(files=[])])

        result = run_async(agent.run(make_record(), sandbox))

        assert result.success
        assert result.files_changed == []


class TestVerification:
    def test_verification_disabled_by_default(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        agent = _agent([json.dumps({"files": ["src/cart.js"]}), _fix_response()])

        run_async(agent.run(make_record(), sandbox))

        assert sandbox.verification_calls == 0

    def test_failed_verification_does_not_change_success(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        sandbox.verification = VerificationResult(
            command="npm test", exit_code=1, output="1 failing"
        )
        agent = _agent(
            [json.dumps({"files": ["src/cart.js"]}), _fix_response()], verify=True
        )

        result = run_async(agent.run(make_record(), sandbox))

        assert result.success
        assert "Verification failed (exit 1): npm test" in result.logs
        assert "1 failing" in result.logs

    def test_passed_verification_is_logged(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        sandbox.verification = VerificationResult(command="npm test", exit_code=0)
        agent = _agent(
            [json.dumps({"files": ["src/cart.js"]}), _fix_response()], verify=True
        )

        result = run_async(agent.run(make_record(), sandbox))

        assert "Verification passed: npm test" in result.logs

    def test_verification_error_is_logged(self):
        sandbox = FakeSandbox(files=REPO_FILES)
        sandbox.run_verification = AsyncMock(side_effect=RuntimeError("no npm"))
        agent = _agent(
            [json.dumps({"files": ["src/cart.js"]}), _fix_response()], verify=True
        )

        result = run_async(agent.run(make_record(), sandbox))

        assert result.success
        assert "Verification could not run: no npm" in result.logs
