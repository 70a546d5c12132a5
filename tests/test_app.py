"""HTTP API tests using FastAPI's TestClient.

The app is built around an injected orchestrator wired to fakes. Leaving
a TestClient context runs the shutdown hook, which waits for background
runs, so a second context observes their final state.
"""

from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

from fakes import FakeSandboxProvider, make_report
from site_surgeon.classifier.models import ClassificationResult
from site_surgeon.main import create_app
from site_surgeon.orchestrator import PipelineOrchestrator
from site_surgeon.state.machine import IssueStateMachine
from site_surgeon.state.models import AIDecision
from site_surgeon.state.store import InMemoryIssueStore


VALID_REPORT = {
    "title": "Footer link is broken",
    "description": "The privacy link in the footer returns 404",
    "stepsToReproduce": "Scroll down and click Privacy",
    "severity": "critical",
    "repoUrl": "https://github.com/acme/shop",
}


def _orchestrator() -> PipelineOrchestrator:
    classifier = MagicMock()
    classifier.classify = AsyncMock(
        return_value=ClassificationResult(
            decision=AIDecision.MANUAL, confidence=80, reason="Legal page content"
        )
    )
    notifier = MagicMock()
    notifier.notify_manual_review = AsyncMock()
    notifier.notify_automated_fix = AsyncMock()
    return PipelineOrchestrator(
        state_machine=IssueStateMachine(InMemoryIssueStore()),
        classifier=classifier,
        sandbox_provider=FakeSandboxProvider(),
        coding_agent=MagicMock(),
        submitter=MagicMock(),
        notifier=notifier,
    )


class TestHealthAndMetrics:
    def test_health(self):
        with TestClient(create_app(_orchestrator())) as client:
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_metrics_endpoint(self):
        with TestClient(create_app(_orchestrator())) as client:
            response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")


class TestSubmitReport:
    def test_accepts_valid_report(self):
        orchestrator = _orchestrator()
        app = create_app(orchestrator)

        with TestClient(app) as client:
            response = client.post("/api/issues/report", json=VALID_REPORT)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "received"
        assert body["issue_id"]

        with TestClient(app) as client:
            issue = client.get(f"/api/issues/{body['issue_id']}").json()

        assert issue["status"] == "notified"
        assert issue["ai_decision"] == "MANUAL"
        assert issue["severity"] == "critical"

    def test_rejects_invalid_report(self):
        orchestrator = _orchestrator()

        with TestClient(create_app(orchestrator)) as client:
            response = client.post(
                "/api/issues/report", json={**VALID_REPORT, "severity": "urgent"}
            )
            listing = client.get("/api/dashboard/issues").json()

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid bug report"
        assert response.json()["details"]
        assert listing["total"] == 0
        orchestrator.classifier.classify.assert_not_awaited()

    def test_rejects_non_json_body(self):
        with TestClient(create_app(_orchestrator())) as client:
            response = client.post(
                "/api/issues/report",
                content=b"not json",
                headers={"content-type": "application/json"},
            )

        assert response.status_code == 400
        assert response.json()["details"] == ["body must be valid JSON"]

    def test_rejects_non_object_body(self):
        with TestClient(create_app(_orchestrator())) as client:
            response = client.post("/api/issues/report", json=["a", "b"])

        assert response.status_code == 400
        assert response.json()["details"] == ["payload must be a JSON object"]


class TestQueries:
    def test_unknown_issue(self):
        with TestClient(create_app(_orchestrator())) as client:
            response = client.get("/api/issues/does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"error": "Issue not found"}

    def test_dashboard_list_and_stats(self):
        orchestrator = _orchestrator()
        app = create_app(orchestrator)

        with TestClient(app) as client:
            for title in ("First bug", "Second bug"):
                client.post("/api/issues/report", json={**VALID_REPORT, "title": title})

        with TestClient(app) as client:
            listing = client.get("/api/dashboard/issues").json()
            stats = client.get("/api/dashboard/stats").json()

        assert listing["total"] == 2
        assert [i["title"] for i in listing["issues"]] == ["Second bug", "First bug"]
        assert stats["total"] == 2
        assert stats["notified"] == 2
        assert stats["manual"] == 2
        assert stats["automated"] == 0
        assert stats["failed"] == 0

    def test_issue_record_shape(self):
        orchestrator = _orchestrator()
        app = create_app(orchestrator)
        report = make_report()

        with TestClient(app) as client:
            issue_id = client.post(
                "/api/issues/report", json=report.model_dump(mode="json")
            ).json()["issue_id"]
            issue = client.get(f"/api/issues/{issue_id}").json()

        assert issue["id"] == issue_id
        assert issue["steps_to_reproduce"] == report.steps_to_reproduce
        for field in ("sandbox_logs", "pr_url", "created_at", "updated_at"):
            assert field in issue
