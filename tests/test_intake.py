"""Tests for bug report validation and dashboard statistics."""

import pytest

from fakes import make_record
from site_surgeon.intake.handler import ReportHandler, ReportValidationError
from site_surgeon.state.models import AIDecision, IssueStatus, Severity
from site_surgeon.state.stats import compute_stats


def _payload(**overrides):
    payload = {
        "title": "Checkout button does nothing",
        "description": "Clicking checkout on the cart page has no effect",
        "stepsToReproduce": "1. Add an item 2. Open cart 3. Click checkout",
        "severity": "medium",
        "repoUrl": "https://github.com/acme/shop",
    }
    payload.update(overrides)
    return payload


class TestReportHandler:
    def test_parses_camel_case_payload(self):
        report = ReportHandler().parse_report(_payload())

        assert report.steps_to_reproduce.startswith("1. Add an item")
        assert report.repo_url == "https://github.com/acme/shop"
        assert report.severity == Severity.MEDIUM

    def test_parses_snake_case_payload(self):
        payload = _payload()
        payload["steps_to_reproduce"] = payload.pop("stepsToReproduce")
        payload["repo_url"] = payload.pop("repoUrl")

        report = ReportHandler().parse_report(payload)

        assert report.repo_url == "https://github.com/acme/shop"

    def test_severity_is_case_insensitive(self):
        report = ReportHandler().parse_report(_payload(severity="CRITICAL"))
        assert report.severity == Severity.CRITICAL

    def test_unknown_severity_is_rejected(self):
        with pytest.raises(ReportValidationError) as exc_info:
            ReportHandler().parse_report(_payload(severity="urgent"))
        assert any(e.startswith("severity") for e in exc_info.value.errors)

    @pytest.mark.parametrize("field", ["title", "description", "stepsToReproduce"])
    def test_blank_text_fields_are_rejected(self, field):
        with pytest.raises(ReportValidationError):
            ReportHandler().parse_report(_payload(**{field: "   "}))

    def test_missing_fields_are_all_reported(self):
        with pytest.raises(ReportValidationError) as exc_info:
            ReportHandler().parse_report({"title": "only a title"})
        assert len(exc_info.value.errors) == 4

    @pytest.mark.parametrize(
        "url",
        ["ftp://github.com/acme/shop", "github.com/acme/shop", "https://github.com/"],
    )
    def test_bad_repo_urls_are_rejected(self, url):
        with pytest.raises(ReportValidationError):
            ReportHandler().parse_report(_payload(repoUrl=url))

    @pytest.mark.parametrize("payload", [None, [], "text", 42])
    def test_non_object_payload(self, payload):
        with pytest.raises(ReportValidationError) as exc_info:
            ReportHandler().parse_report(payload)
        assert exc_info.value.errors == ["payload must be a JSON object"]


class TestComputeStats:
    def test_empty(self):
        stats = compute_stats([])

        assert stats.total == 0
        assert set(stats.by_status) == {s.value for s in IssueStatus}
        assert all(count == 0 for count in stats.by_status.values())

    def test_counts_by_status_and_decision(self):
        records = [
            make_record(status=IssueStatus.MERGED, ai_decision=AIDecision.AUTOMATED),
            make_record(status=IssueStatus.PR_OPENED, ai_decision=AIDecision.AUTOMATED),
            make_record(status=IssueStatus.NOTIFIED, ai_decision=AIDecision.MANUAL),
            make_record(status=IssueStatus.RECEIVED),
        ]

        flat = compute_stats(records).to_flat_dict()

        assert flat["total"] == 4
        assert flat["merged"] == 1
        assert flat["pr_opened"] == 1
        assert flat["notified"] == 1
        assert flat["received"] == 1
        assert flat["failed"] == 0
        assert flat["automated"] == 2
        assert flat["manual"] == 1
