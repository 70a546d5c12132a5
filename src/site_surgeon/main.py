"""FastAPI application entry point for Site Surgeon.

Exposes bug report submission, issue queries and dashboard projections
over HTTP, wires the pipeline dependencies at startup, and serves
Prometheus metrics.
"""

import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from site_surgeon.agent.coding_agent import CodingAgent
from site_surgeon.classifier.agent import IssueClassifier
from site_surgeon.config import SurgeonSettings, get_settings
from site_surgeon.events.emitter import build_event_emitter
from site_surgeon.events.metrics import generate_metrics_output
from site_surgeon.github.client import GitHubClient
from site_surgeon.github.submitter import PRSubmitter
from site_surgeon.intake.handler import ReportHandler, ReportValidationError
from site_surgeon.logging_config import configure_logging
from site_surgeon.notifications.smtp import EmailNotifier
from site_surgeon.orchestrator import PipelineOrchestrator
from site_surgeon.sandbox.local import LocalSandboxProvider
from site_surgeon.state.machine import IssueStateMachine
from site_surgeon.state.stats import compute_stats
from site_surgeon.state.store import InMemoryIssueStore

logger = structlog.get_logger()


def _log_configuration(settings: SurgeonSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("Site Surgeon configuration", **settings.redacted())


def _build_orchestrator(
    cfg: SurgeonSettings,
    gh_client: GitHubClient,
    sandbox_provider: LocalSandboxProvider,
) -> PipelineOrchestrator:
    """Wire all pipeline dependencies into a PipelineOrchestrator."""
    state_machine = IssueStateMachine(InMemoryIssueStore())

    classifier = IssueClassifier(
        llm_url=cfg.llm_url,
        model_name=cfg.llm_model,
        api_key=cfg.llm_api_key,
        timeout=cfg.llm_timeout_seconds,
    )

    coding_agent = CodingAgent(
        llm_url=cfg.llm_url,
        model_name=cfg.llm_model,
        api_key=cfg.llm_api_key,
        timeout=cfg.llm_timeout_seconds,
        verify=cfg.verify_fixes,
    )

    notifier = EmailNotifier(
        smtp_host=cfg.smtp_host,
        smtp_port=cfg.smtp_port,
        smtp_user=cfg.smtp_user,
        smtp_password=cfg.smtp_password,
        recipient=cfg.notification_recipient,
    )

    return PipelineOrchestrator(
        state_machine=state_machine,
        classifier=classifier,
        sandbox_provider=sandbox_provider,
        coding_agent=coding_agent,
        submitter=PRSubmitter(gh_client, default_branch=cfg.github_default_branch),
        notifier=notifier,
        event_emitter=build_event_emitter(),
        auto_merge=cfg.auto_merge,
    )


def create_app(orchestrator: Optional[PipelineOrchestrator] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        orchestrator: Pre-built orchestrator. When None, settings are
            loaded from the environment at startup and the full pipeline
            is wired from them.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Load configuration, wire dependencies, and clean up on shutdown."""
        github_client: Optional[GitHubClient] = None

        logger.info("Site Surgeon starting up...")

        if orchestrator is not None:
            app.state.orchestrator = orchestrator
        else:
            settings = get_settings()
            configure_logging(settings.log_level, json_output=settings.log_json)
            _log_configuration(settings)

            github_client = GitHubClient(
                token=settings.github_token,
                base_url=settings.github_base_url,
            )
            sandbox_provider = LocalSandboxProvider(
                base_path=Path(settings.sandbox_base_path),
                timeout_seconds=settings.sandbox_timeout_seconds,
                retention_days=settings.sandbox_retention_days,
            )
            await sandbox_provider.cleanup_stale_sandboxes()
            app.state.orchestrator = _build_orchestrator(
                settings, github_client, sandbox_provider
            )

        logger.info("Site Surgeon started successfully")

        yield

        logger.info("Site Surgeon shutting down...")

        await app.state.orchestrator.wait_for_idle()
        if github_client is not None:
            await github_client.close()

        logger.info("Site Surgeon shutdown complete")

    app = FastAPI(
        title="Site Surgeon",
        description="Autonomous triage and repair of reported website bugs",
        version="1.0.0",
        lifespan=lifespan,
    )
    report_handler = ReportHandler()

    @app.get("/health")
    async def health():
        """Liveness probe endpoint."""
        return {"status": "healthy"}

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(
            content=generate_metrics_output(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    @app.post("/api/issues/report", status_code=201)
    async def submit_report(request: Request):
        """Accept a bug report and start its pipeline run.

        Responds before the pipeline runs; the issue is always reported
        in the received status.
        """
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return JSONResponse(
                status_code=400,
                content={"error": "Invalid bug report", "details": ["body must be valid JSON"]},
            )

        try:
            report = report_handler.parse_report(payload)
        except ReportValidationError as exc:
            return JSONResponse(
                status_code=400,
                content={"error": "Invalid bug report", "details": exc.errors},
            )

        record = await request.app.state.orchestrator.submit(report)
        return {"issue_id": record.id, "status": record.status.value}

    @app.get("/api/issues/{issue_id}")
    async def get_issue(issue_id: str, request: Request):
        """Return the full current record of an issue."""
        record = await request.app.state.orchestrator.state_machine.get(issue_id)
        if record is None:
            return JSONResponse(status_code=404, content={"error": "Issue not found"})
        return record.model_dump(mode="json")

    @app.get("/api/dashboard/issues")
    async def list_issues(request: Request):
        """List every issue, newest first."""
        records = await request.app.state.orchestrator.state_machine.list_all()
        return {
            "total": len(records),
            "issues": [r.model_dump(mode="json") for r in records],
        }

    @app.get("/api/dashboard/stats")
    async def dashboard_stats(request: Request):
        """Counts by status and by AI decision."""
        records = await request.app.state.orchestrator.state_machine.list_all()
        return compute_stats(records).to_flat_dict()

    return app


configure_logging()

app = create_app()


if __name__ == "__main__":
    import uvicorn

    dev_settings = get_settings()
    uvicorn.run(
        "site_surgeon.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
        reload=True,
    )
