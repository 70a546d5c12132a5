"""Pipeline orchestrator driving bug reports to resolution.

Accepts a validated report, records it, and runs it in the background
through the full pipeline:
classify → (notify | sandbox → fix → submit PR → merge) → notify.

The orchestrator is the only writer of issue status. Each run owns at most
one sandbox, destroyed exactly once on every exit path. A single guard at
the top of each run turns any unhandled error into the FAILED status;
classification and coding-agent problems instead degrade to human review.

Collaborators:
- state/machine.py (IssueStateMachine)
- classifier/agent.py (IssueClassifier)
- sandbox/base.py (SandboxProvider, Sandbox)
- agent/coding_agent.py (CodingAgent)
- github/submitter.py (PRSubmitter)
- notifications/models.py (Notifier)
- events/emitter.py (EventEmitter)
"""

import asyncio
import logging
import time
from typing import Any, List, Optional, Set

from site_surgeon.agent.coding_agent import CodingAgent
from site_surgeon.classifier.agent import IssueClassifier
from site_surgeon.classifier.models import ClassificationResult
from site_surgeon.events.emitter import EventEmitter, NullEventEmitter
from site_surgeon.events.models import EventType, PipelineEvent
from site_surgeon.github.models import SubmissionFile, SubmissionResult
from site_surgeon.github.submitter import PRSubmitter
from site_surgeon.intake.models import IssueReport
from site_surgeon.notifications.models import Notifier
from site_surgeon.sandbox.base import (
    Sandbox,
    SandboxExpiredError,
    SandboxFileError,
    SandboxProvider,
)
from site_surgeon.state.machine import IssueNotFoundError, IssueStateMachine
from site_surgeon.state.models import (
    AIDecision,
    IssueRecord,
    IssueStatus,
    is_terminal_status,
)

logger = logging.getLogger(__name__)


class RunAlreadyActiveError(Exception):
    """Raised when a second run is started for an issue already in flight.

    Attributes:
        issue_id: The issue with an active run.
    """

    def __init__(self, issue_id: str):
        self.issue_id = issue_id
        super().__init__(f"A pipeline run is already active for issue {issue_id}")


class PipelineOrchestrator:
    """Orchestrates the bug-report-to-fix pipeline.

    Accepts all dependencies via constructor injection.

    Attributes:
        state_machine: Validates and applies every record mutation.
        classifier: LLM triage (AUTOMATED or MANUAL).
        sandbox_provider: Creates one sandbox per automated run.
        coding_agent: Writes a fix into the sandbox.
        submitter: Publishes the fix as a pull request.
        notifier: Sends manual-review and automated-fix notifications.
        event_emitter: Emits pipeline events for observability.
        auto_merge: Whether fix PRs are merged right after opening.
    """

    def __init__(
        self,
        state_machine: IssueStateMachine,
        classifier: IssueClassifier,
        sandbox_provider: SandboxProvider,
        coding_agent: CodingAgent,
        submitter: PRSubmitter,
        notifier: Notifier,
        event_emitter: Optional[EventEmitter] = None,
        auto_merge: bool = True,
    ):
        self.state_machine = state_machine
        self.classifier = classifier
        self.sandbox_provider = sandbox_provider
        self.coding_agent = coding_agent
        self.submitter = submitter
        self.notifier = notifier
        self.event_emitter = event_emitter or NullEventEmitter()
        self.auto_merge = auto_merge
        self._active_runs: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def submit(self, report: IssueReport) -> IssueRecord:
        """Record a bug report and start its pipeline run in the background.

        Returns as soon as the record exists; the returned record is
        always in the RECEIVED status.

        Args:
            report: The validated bug report.
        """
        record = await self.state_machine.create(**report.model_dump())

        await self._emit(
            record,
            EventType.STATE_TRANSITION,
            from_status=None,
            to_status=IssueStatus.RECEIVED.value,
            severity=record.severity.value,
        )

        self.start(record.id)
        return record

    def start(self, issue_id: str) -> asyncio.Task:
        """Start a background run for an issue.

        Raises:
            RunAlreadyActiveError: If the issue already has an active run.
        """
        self._claim(issue_id)
        task = asyncio.create_task(
            self._run_guarded(issue_id),
            name=f"site-surgeon-run-{issue_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def process_issue(self, issue_id: str) -> None:
        """Run the pipeline for an issue in the caller's task.

        Never raises for pipeline failures; those end in FAILED. An issue
        that has already left RECEIVED is left untouched.

        Raises:
            RunAlreadyActiveError: If the issue already has an active run.
        """
        self._claim(issue_id)
        await self._run_guarded(issue_id)

    @property
    def active_tasks(self) -> List[asyncio.Task]:
        return list(self._tasks)

    def is_active(self, issue_id: str) -> bool:
        return issue_id in self._active_runs

    async def wait_for_idle(self) -> None:
        """Wait until every background run has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _claim(self, issue_id: str) -> None:
        if issue_id in self._active_runs:
            logger.warning(
                "Refusing to start a second run",
                extra={"issue_id": issue_id},
            )
            raise RunAlreadyActiveError(issue_id)
        self._active_runs.add(issue_id)

    async def _run_guarded(self, issue_id: str) -> None:
        started_at = time.monotonic()
        try:
            await self._run(issue_id, started_at)
        except Exception as exc:
            logger.exception(
                "Pipeline run failed",
                extra={"issue_id": issue_id, "error_type": type(exc).__name__},
            )
            await self._mark_failed(issue_id, exc, started_at)
        finally:
            self._active_runs.discard(issue_id)

    async def _run(self, issue_id: str, started_at: float) -> None:
        record = await self.state_machine.get(issue_id)
        if record is None:
            raise IssueNotFoundError(issue_id)

        # Runs are one-shot: only a freshly received issue may start
        if record.status != IssueStatus.RECEIVED:
            logger.warning(
                "Ignoring run for issue that was already processed",
                extra={"issue_id": issue_id, "status": record.status.value},
            )
            return

        logger.info(
            "Starting pipeline for issue",
            extra={"issue_id": issue_id, "severity": record.severity.value},
        )

        record = await self._transition(record, IssueStatus.CLASSIFYING)
        classification = await self._classify(record)

        record = await self.state_machine.set_fields(
            issue_id,
            ai_decision=classification.decision,
            ai_reason=classification.reason,
        )
        record = await self.state_machine.append_logs(
            issue_id,
            [
                f"Classified as {classification.decision.value} "
                f"(confidence {classification.confidence}): {classification.reason}"
            ],
        )

        if not classification.is_automated:
            await self._escalate(record, "classifier", started_at)
            return

        await self._run_automated(record, started_at)

    async def _classify(self, record: IssueRecord) -> ClassificationResult:
        """Classify the issue; any failure means MANUAL."""
        try:
            return await self.classifier.classify(record)
        except Exception as exc:
            logger.exception(
                "Classifier raised, routing issue to manual review",
                extra={"issue_id": record.id},
            )
            return ClassificationResult.manual_fallback(
                reason=f"Classification failed: {exc}"
            )

    async def _run_automated(self, record: IssueRecord, started_at: float) -> None:
        """Sandbox, fix, and submit an AUTOMATED issue."""
        issue_id = record.id
        record = await self._transition(record, IssueStatus.SANDBOXING)

        sandbox = await self.sandbox_provider.create()
        try:
            record = await self.state_machine.set_fields(
                issue_id, sandbox_id=sandbox.sandbox_id
            )
            try:
                await sandbox.clone_repo(record.repo_url)
                await sandbox.install_dependencies()
            finally:
                record = await self._flush_sandbox_logs(issue_id, sandbox)

            record = await self._transition(record, IssueStatus.FIXING)

            try:
                result = await self.coding_agent.run(record, sandbox)
            finally:
                record = await self._flush_sandbox_logs(issue_id, sandbox)
            record = await self.state_machine.append_logs(issue_id, result.logs)

            if not result.success:
                await self._escalate(
                    record,
                    "agent",
                    started_at,
                    reason=f"Agent failed: {result.error}",
                )
                return

            files = await self._collect_changed_files(
                record, sandbox, result.files_changed
            )
            if not files:
                await self._escalate(
                    record,
                    "agent",
                    started_at,
                    reason="Agent failed: no changed files to submit",
                )
                return

            submission = await self.submitter.submit(
                record,
                files,
                commit_message=result.commit_message,
                patch_summary=result.patch,
                auto_merge=self.auto_merge,
            )
            await self._finish_submission(
                record, submission, result.patch, result.commit_message, started_at
            )
        finally:
            await self._destroy_sandbox(issue_id, sandbox)

    async def _collect_changed_files(
        self,
        record: IssueRecord,
        sandbox: Sandbox,
        paths: List[str],
    ) -> List[SubmissionFile]:
        """Re-read the agent's files from the sandbox.

        Unreadable files are dropped with a warning; expiry propagates.
        """
        files: List[SubmissionFile] = []
        for path in paths:
            try:
                content = await sandbox.read_file(path)
            except SandboxFileError as exc:
                logger.warning(
                    "Dropping unreadable changed file",
                    extra={"issue_id": record.id, "path": path, "error": str(exc)},
                )
                continue
            files.append(SubmissionFile(path=path, content=content))
        return files

    async def _finish_submission(
        self,
        record: IssueRecord,
        submission: SubmissionResult,
        patch_summary: str,
        commit_message: str,
        started_at: float,
    ) -> None:
        record = await self._transition(
            record,
            IssueStatus.PR_OPENED,
            branch_name=submission.branch_name,
            pr_url=submission.pr_url,
            pr_number=submission.pr_number,
            patch_summary=patch_summary,
            commit_message=commit_message,
        )
        record = await self.state_machine.append_logs(
            record.id,
            [f"Opened PR #{submission.pr_number}: {submission.pr_url}"],
        )

        if submission.merged:
            record = await self._transition(record, IssueStatus.MERGED)
            record = await self.state_machine.append_logs(
                record.id, [f"Merged PR #{submission.pr_number}"]
            )

        try:
            await self.notifier.notify_automated_fix(
                record,
                pr_url=submission.pr_url,
                merged=submission.merged,
                patch_summary=patch_summary,
            )
        except Exception as exc:
            await self._notification_failed(record, exc)

        await self._emit_completion(
            record, started_at, pr_url=submission.pr_url
        )

    async def _escalate(
        self,
        record: IssueRecord,
        source: str,
        started_at: float,
        reason: Optional[str] = None,
    ) -> None:
        """Notify a human and move the issue to NOTIFIED.

        When a reason is given (agent escalation) the decision is
        overwritten to MANUAL with that reason.
        """
        fields: dict = {}
        if reason is not None:
            fields = {"ai_decision": AIDecision.MANUAL, "ai_reason": reason}

        await self._emit(
            record,
            EventType.ESCALATION,
            source=source,
            reason=reason if reason is not None else record.ai_reason,
        )

        try:
            await self.notifier.notify_manual_review(record.model_copy(update=fields))
        except Exception as exc:
            await self._notification_failed(record, exc)

        record = await self._transition(record, IssueStatus.NOTIFIED, **fields)
        await self._emit_completion(record, started_at)

    async def _destroy_sandbox(self, issue_id: str, sandbox: Sandbox) -> None:
        """Destroy the run's sandbox; failures are logged only."""
        try:
            await sandbox.destroy()
        except Exception as exc:
            logger.exception(
                "Failed to destroy sandbox",
                extra={"issue_id": issue_id, "sandbox_id": sandbox.sandbox_id},
            )
            await self._emit_for_id(
                issue_id,
                EventType.ERROR,
                stage="sandbox_destroy",
                error_type=type(exc).__name__,
                error_message=str(exc),
                fatal=False,
            )

    async def _flush_sandbox_logs(self, issue_id: str, sandbox: Sandbox) -> IssueRecord:
        return await self.state_machine.append_logs(issue_id, sandbox.drain_logs())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _transition(
        self,
        record: IssueRecord,
        to_status: IssueStatus,
        **fields: Any,
    ) -> IssueRecord:
        """Transition state and emit a state-transition event."""
        updated = await self.state_machine.transition(record.id, to_status, **fields)
        await self._emit(
            updated,
            EventType.STATE_TRANSITION,
            from_status=record.status.value,
            to_status=to_status.value,
        )
        return updated

    async def _mark_failed(
        self,
        issue_id: str,
        exc: Exception,
        started_at: float,
    ) -> None:
        """Move a run to FAILED after an unhandled error.

        Only the status is written; error details go to logs and events.
        """
        try:
            record = await self.state_machine.get(issue_id)
            if record is None:
                return

            stage = record.status.value
            if not is_terminal_status(record.status):
                record = await self._transition(record, IssueStatus.FAILED)

            if isinstance(exc, SandboxExpiredError):
                await self._emit(
                    record,
                    EventType.TIMEOUT,
                    stage=stage,
                    timeout_seconds=exc.timeout_seconds,
                )

            await self._emit(
                record,
                EventType.ERROR,
                stage=stage,
                error_type=type(exc).__name__,
                error_message=str(exc),
                fatal=True,
                duration_seconds=time.monotonic() - started_at,
            )
        except Exception:
            logger.exception(
                "Failed to transition to FAILED state",
                extra={"issue_id": issue_id},
            )

    async def _notification_failed(self, record: IssueRecord, exc: Exception) -> None:
        logger.error(
            "Notification failed",
            extra={
                "issue_id": record.id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        await self._emit(
            record,
            EventType.ERROR,
            stage="notify",
            error_type=type(exc).__name__,
            error_message=str(exc),
            fatal=False,
        )

    async def _emit_completion(
        self,
        record: IssueRecord,
        started_at: float,
        pr_url: Optional[str] = None,
    ) -> None:
        duration = time.monotonic() - started_at
        logger.info(
            "Pipeline completed",
            extra={
                "issue_id": record.id,
                "outcome": record.status.value,
                "duration_seconds": round(duration, 3),
            },
        )
        details: dict = {"outcome": record.status.value, "duration_seconds": duration}
        if pr_url:
            details["pr_url"] = pr_url
        await self._emit(record, EventType.COMPLETION, **details)

    async def _emit(
        self,
        record: IssueRecord,
        event_type: EventType,
        **details: Any,
    ) -> None:
        await self._safe_emit(
            PipelineEvent(
                event_type=event_type,
                issue_id=record.id,
                repository=record.repo_url,
                details=details,
            )
        )

    async def _emit_for_id(
        self,
        issue_id: str,
        event_type: EventType,
        **details: Any,
    ) -> None:
        record = await self.state_machine.get(issue_id)
        if record is not None:
            await self._emit(record, event_type, **details)

    async def _safe_emit(self, event: PipelineEvent) -> None:
        """Emit an event, swallowing exceptions to avoid disrupting the pipeline."""
        try:
            await self.event_emitter.emit(event)
        except Exception:
            logger.exception(
                "Failed to emit pipeline event",
                extra={
                    "event_type": event.event_type.value,
                    "issue_id": event.issue_id,
                },
            )
