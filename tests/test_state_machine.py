"""Unit and property tests for the IssueStateMachine.

Covers creation, validated transitions, field updates that can never change
the status, and append-only log accumulation.
"""

import asyncio
from typing import List

import pytest
from hypothesis import given, settings, strategies as st

from site_surgeon.state.machine import (
    InvalidTransitionError,
    IssueNotFoundError,
    IssueStateMachine,
)
from site_surgeon.state.models import AIDecision, IssueStatus, Severity
from site_surgeon.state.store import InMemoryIssueStore


def run_async(coro):
    return asyncio.run(coro)


def _machine() -> IssueStateMachine:
    return IssueStateMachine(InMemoryIssueStore())


async def _create(machine: IssueStateMachine):
    return await machine.create(
        title="Broken footer link",
        description="The privacy link in the footer returns 404",
        steps_to_reproduce="Scroll to the footer and click Privacy",
        severity=Severity.MEDIUM,
        repo_url="https://github.com/acme/shop",
    )


# =============================================================================
# Creation and lookup
# =============================================================================


class TestCreate:
    def test_create_persists_received_record(self):
        machine = _machine()

        async def scenario():
            record = await _create(machine)
            return record, await machine.get(record.id)

        record, stored = run_async(scenario())

        assert record.status == IssueStatus.RECEIVED
        assert stored == record
        assert record.severity == Severity.MEDIUM

    def test_get_unknown_returns_none(self):
        assert run_async(_machine().get("nope")) is None

    def test_list_all(self):
        machine = _machine()

        async def scenario():
            await _create(machine)
            await _create(machine)
            return await machine.list_all()

        assert len(run_async(scenario())) == 2


# =============================================================================
# Transitions
# =============================================================================


class TestTransition:
    def test_valid_transition_with_fields(self):
        machine = _machine()

        async def scenario():
            record = await _create(machine)
            await machine.transition(record.id, IssueStatus.CLASSIFYING)
            await machine.transition(record.id, IssueStatus.SANDBOXING)
            await machine.transition(record.id, IssueStatus.FIXING)
            return await machine.transition(
                record.id,
                IssueStatus.PR_OPENED,
                pr_url="https://github.com/acme/shop/pull/3",
                pr_number=3,
                branch_name="site-surgeon/abc",
            )

        updated = run_async(scenario())

        assert updated.status == IssueStatus.PR_OPENED
        assert updated.pr_number == 3
        assert updated.branch_name == "site-surgeon/abc"

    def test_invalid_transition_raises_and_keeps_status(self):
        machine = _machine()

        async def scenario():
            record = await _create(machine)
            with pytest.raises(InvalidTransitionError) as exc_info:
                await machine.transition(record.id, IssueStatus.MERGED)
            return exc_info.value, await machine.get(record.id)

        error, stored = run_async(scenario())

        assert error.from_status == IssueStatus.RECEIVED
        assert error.to_status == IssueStatus.MERGED
        assert stored.status == IssueStatus.RECEIVED

    def test_terminal_status_rejects_everything(self):
        machine = _machine()

        async def scenario():
            record = await _create(machine)
            await machine.transition(record.id, IssueStatus.FAILED)
            for status in IssueStatus:
                with pytest.raises(InvalidTransitionError):
                    await machine.transition(record.id, status)

        run_async(scenario())

    def test_transition_unknown_issue(self):
        with pytest.raises(IssueNotFoundError):
            run_async(_machine().transition("nope", IssueStatus.CLASSIFYING))

    @settings(max_examples=50, deadline=None)
    @given(targets=st.lists(st.sampled_from(list(IssueStatus)), max_size=10))
    def test_status_only_changes_on_valid_transitions(
        self, targets: List[IssueStatus]
    ):
        machine = _machine()

        async def scenario():
            record = await _create(machine)
            current = record.status
            for target in targets:
                try:
                    updated = await machine.transition(record.id, target)
                except InvalidTransitionError:
                    assert (await machine.get(record.id)).status == current
                else:
                    assert updated.status == target
                    current = target

        run_async(scenario())


# =============================================================================
# Field updates and logs
# =============================================================================


class TestSetFields:
    def test_set_fields_keeps_status(self):
        machine = _machine()

        async def scenario():
            record = await _create(machine)
            await machine.transition(record.id, IssueStatus.CLASSIFYING)
            return await machine.set_fields(
                record.id, ai_decision=AIDecision.AUTOMATED, ai_reason="typo fix"
            )

        updated = run_async(scenario())

        assert updated.status == IssueStatus.CLASSIFYING
        assert updated.ai_decision == AIDecision.AUTOMATED

    def test_set_fields_refuses_status(self):
        machine = _machine()

        async def scenario():
            record = await _create(machine)
            with pytest.raises(ValueError):
                await machine.set_fields(record.id, status=IssueStatus.MERGED)
            return await machine.get(record.id)

        assert run_async(scenario()).status == IssueStatus.RECEIVED

    def test_set_fields_unknown_issue(self):
        with pytest.raises(IssueNotFoundError):
            run_async(_machine().set_fields("nope", sandbox_id="sbx"))


class TestAppendLogs:
    def test_logs_are_appended_in_order(self):
        machine = _machine()

        async def scenario():
            record = await _create(machine)
            await machine.append_logs(record.id, ["one", "two"])
            await machine.append_logs(record.id, [])
            return await machine.append_logs(record.id, ["three"])

        assert run_async(scenario()).sandbox_logs == ["one", "two", "three"]

    @settings(max_examples=50, deadline=None)
    @given(batches=st.lists(st.lists(st.text(max_size=20), max_size=4), max_size=6))
    def test_log_is_concatenation_of_batches(self, batches: List[List[str]]):
        machine = _machine()

        async def scenario():
            record = await _create(machine)
            for batch in batches:
                await machine.append_logs(record.id, batch)
            return await machine.get(record.id)

        record = run_async(scenario())

        assert record.sandbox_logs == [line for batch in batches for line in batch]

    def test_append_unknown_issue(self):
        with pytest.raises(IssueNotFoundError):
            run_async(_machine().append_logs("nope", ["x"]))
