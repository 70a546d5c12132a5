"""Prometheus metrics for pipeline observability.

Metrics are exposed at the `/metrics` endpoint in Prometheus format.

Metrics Defined:
- surgeon_issues_submitted_total: Counter of accepted bug reports
- surgeon_issues_resolved_total: Counter of runs reaching a final status
- surgeon_issues_failed_total: Counter of failures by stage
- surgeon_escalations_total: Counter of issues routed to human review
- surgeon_pipeline_duration_seconds: Histogram of run duration
- surgeon_issues_by_status: Gauge of current issues per status

The MetricsEventEmitter updates these from pipeline events.
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from site_surgeon.events.emitter import EventEmitter
from site_surgeon.events.models import EventType, PipelineEvent
from site_surgeon.state.models import IssueStatus


logger = logging.getLogger(__name__)


# A run is bounded by the sandbox lifetime plus LLM and GitHub calls
DEFAULT_DURATION_BUCKETS = (
    1.0,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    1800.0,
)

ISSUE_STATUSES = tuple(status.value for status in IssueStatus)


class PipelineMetrics:
    """Container for all pipeline Prometheus metrics.

    Supports custom registries for testing.

    Metrics:
        issues_submitted_total: Labels: severity
        issues_resolved_total: Labels: outcome (merged, pr_opened,
            notified, failed)
        issues_failed_total: Labels: stage
        escalations_total: Labels: source (classifier, agent)
        pipeline_duration_seconds: Labels: outcome
        issues_by_status: Labels: status

    Example:
        >>> metrics = PipelineMetrics(registry=CollectorRegistry())
        >>> metrics.record_submitted("low")
        >>> metrics.record_resolved("merged", duration_seconds=42.0)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize pipeline metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.issues_submitted_total = Counter(
            "surgeon_issues_submitted_total",
            "Total number of bug reports accepted",
            labelnames=["severity"],
            registry=self.registry,
        )

        self.issues_resolved_total = Counter(
            "surgeon_issues_resolved_total",
            "Total number of pipeline runs that reached a final status",
            labelnames=["outcome"],
            registry=self.registry,
        )

        self.issues_failed_total = Counter(
            "surgeon_issues_failed_total",
            "Total number of pipeline failures by stage",
            labelnames=["stage"],
            registry=self.registry,
        )

        self.escalations_total = Counter(
            "surgeon_escalations_total",
            "Total number of issues routed to human review",
            labelnames=["source"],
            registry=self.registry,
        )

        self.pipeline_duration_seconds = Histogram(
            "surgeon_pipeline_duration_seconds",
            "Time from pipeline start to final status in seconds",
            labelnames=["outcome"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.issues_by_status = Gauge(
            "surgeon_issues_by_status",
            "Current number of issues in each status",
            labelnames=["status"],
            registry=self.registry,
        )

        for status in ISSUE_STATUSES:
            self.issues_by_status.labels(status=status).set(0)

    def record_submitted(self, severity: str) -> None:
        self.issues_submitted_total.labels(severity=severity).inc()

    def record_resolved(
        self,
        outcome: str,
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Record that a run reached a final status.

        Args:
            outcome: The final status.
            duration_seconds: Time taken by the run, if known.
        """
        self.issues_resolved_total.labels(outcome=outcome).inc()
        if duration_seconds is not None:
            self.pipeline_duration_seconds.labels(outcome=outcome).observe(
                duration_seconds
            )

    def record_failure(self, stage: str) -> None:
        self.issues_failed_total.labels(stage=stage).inc()

    def record_escalation(self, source: str) -> None:
        self.escalations_total.labels(source=source).inc()

    def update_status_count(self, status: str, delta: int) -> None:
        """Move the per-status gauge by delta, never below zero."""
        if status in ISSUE_STATUSES:
            current = self.issues_by_status.labels(status=status)._value.get()
            self.issues_by_status.labels(status=status).set(max(0, current + delta))


_default_metrics: Optional[PipelineMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> PipelineMetrics:
    """Get or create the pipeline metrics instance.

    Args:
        registry: Optional Prometheus registry. If None, returns the
                  global metrics instance for the default registry.
    """
    global _default_metrics

    if registry is not None:
        return PipelineMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = PipelineMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus text output for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    - STATE_TRANSITION: moves the issues_by_status gauge; a transition
      without from_status counts as a submission
    - ERROR: increments issues_failed by stage; a run that ended in
      FAILED also counts as resolved with outcome "failed"
    - ESCALATION: increments escalations by source
    - COMPLETION: increments issues_resolved and records duration
    - TIMEOUT: increments issues_failed with the stage

    Attributes:
        metrics: The PipelineMetrics instance to update.
    """

    def __init__(
        self,
        metrics: Optional[PipelineMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        if metrics is not None:
            self._metrics = metrics
        else:
            self._metrics = get_metrics(registry)

    @property
    def metrics(self) -> PipelineMetrics:
        return self._metrics

    async def emit(self, event: PipelineEvent) -> None:
        try:
            if event.event_type == EventType.STATE_TRANSITION:
                self._handle_state_transition(event)
            elif event.event_type == EventType.ERROR:
                self._handle_error(event)
            elif event.event_type == EventType.ESCALATION:
                self._metrics.record_escalation(event.details.get("source", "unknown"))
            elif event.event_type == EventType.COMPLETION:
                self._handle_completion(event)
            elif event.event_type == EventType.TIMEOUT:
                self._metrics.record_failure(event.details.get("stage", "unknown"))
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={
                    "event_type": event.event_type.value,
                    "issue_id": event.issue_id,
                    "error": str(e),
                },
            )

    def _handle_state_transition(self, event: PipelineEvent) -> None:
        from_status = event.details.get("from_status")
        to_status = event.details.get("to_status")

        if from_status:
            self._metrics.update_status_count(from_status, -1)
        else:
            self._metrics.record_submitted(event.details.get("severity", "unknown"))

        if to_status:
            self._metrics.update_status_count(to_status, +1)

    def _handle_error(self, event: PipelineEvent) -> None:
        self._metrics.record_failure(event.details.get("stage", "unknown"))
        if event.details.get("fatal"):
            duration = event.details.get("duration_seconds")
            self._metrics.record_resolved(
                IssueStatus.FAILED.value,
                float(duration) if duration is not None else None,
            )

    def _handle_completion(self, event: PipelineEvent) -> None:
        duration = event.details.get("duration_seconds")
        self._metrics.record_resolved(
            event.details.get("outcome", "unknown"),
            float(duration) if duration is not None else None,
        )
