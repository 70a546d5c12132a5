"""Event sinks for the resolution pipeline.

The orchestrator hands every PipelineEvent to a single EventEmitter. The
service wires a FanOutEmitter that feeds the issue log and the Prometheus
metrics; tests plug in recorders or NullEventEmitter.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from site_surgeon.events.models import EventType, PipelineEvent


logger = logging.getLogger(__name__)


class EventEmitter(ABC):
    """Destination for pipeline events.

    emit() is awaited inline by the orchestrator, so implementations
    should be quick and must not block the event loop.
    """

    @abstractmethod
    async def emit(self, event: PipelineEvent) -> None:
        """Deliver one event."""

    async def close(self) -> None:
        """Release any resources held by the sink."""


def describe_event(event: PipelineEvent) -> str:
    """Render a one-line summary of what happened to the issue.

    Example:
        >>> describe_event(transition_event)
        'Issue moved classifying -> sandboxing'
    """
    details = event.details

    if event.event_type == EventType.STATE_TRANSITION:
        if details.get("from_status") is None:
            return f"Issue received ({details.get('severity', 'unknown')} severity)"
        return f"Issue moved {details['from_status']} -> {details.get('to_status')}"

    if event.event_type == EventType.ESCALATION:
        source = details.get("source", "unknown")
        reason = details.get("reason")
        if reason:
            return f"Issue escalated to manual review by {source}: {reason}"
        return f"Issue escalated to manual review by {source}"

    if event.event_type == EventType.COMPLETION:
        text = f"Issue finished as {details.get('outcome', 'unknown')}"
        duration = details.get("duration_seconds")
        if duration is not None:
            text += f" after {duration:.1f}s"
        if details.get("pr_url"):
            text += f" ({details['pr_url']})"
        return text

    if event.event_type == EventType.TIMEOUT:
        return (
            f"Sandbox expired during {details.get('stage', 'unknown')} "
            f"after {details.get('timeout_seconds', '?')}s"
        )

    prefix = "Run failed" if details.get("fatal", True) else "Non-fatal error"
    return (
        f"{prefix} during {details.get('stage', 'unknown')}: "
        f"{details.get('error_type', 'Error')}"
    )


class IssueEventLogger(EventEmitter):
    """Writes each event as one log line keyed by issue.

    The message is the describe_event() summary; the flattened event goes
    into ``extra`` so the JSON renderer emits issue_id, status and stage
    fields. Escalations, timeouts and non-fatal errors log at WARNING,
    fatal errors at ERROR, everything else at INFO.
    """

    def __init__(self, logger_name: Optional[str] = None):
        self._logger = logging.getLogger(logger_name) if logger_name else logger

    @staticmethod
    def level_for(event: PipelineEvent) -> int:
        if event.event_type == EventType.ERROR:
            return logging.ERROR if event.details.get("fatal", True) else logging.WARNING
        if event.event_type in (EventType.ESCALATION, EventType.TIMEOUT):
            return logging.WARNING
        return logging.INFO

    async def emit(self, event: PipelineEvent) -> None:
        self._logger.log(
            self.level_for(event),
            describe_event(event),
            extra=event.to_log_dict(),
        )


class FanOutEmitter(EventEmitter):
    """Delivers every event to each sink in order.

    A failing sink is logged and skipped so the others still see the
    event. Failed deliveries are counted per sink class in ``dropped``.
    """

    def __init__(self, sinks: Iterable[EventEmitter]):
        self._sinks: List[EventEmitter] = list(sinks)
        self.dropped: Dict[str, int] = {}

    @property
    def sinks(self) -> List[EventEmitter]:
        return list(self._sinks)

    async def emit(self, event: PipelineEvent) -> None:
        for sink in self._sinks:
            try:
                await sink.emit(event)
            except Exception as e:
                name = type(sink).__name__
                self.dropped[name] = self.dropped.get(name, 0) + 1
                logger.error(
                    "Dropped %s event for issue %s in %s",
                    event.event_type.value,
                    event.issue_id,
                    name,
                    extra={
                        "sink": name,
                        "event_type": event.event_type.value,
                        "issue_id": event.issue_id,
                        "error": str(e),
                    },
                )

    async def close(self) -> None:
        for sink in self._sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.error("Failed to close %s: %s", type(sink).__name__, e)


class NullEventEmitter(EventEmitter):
    """Discards all events."""

    async def emit(self, event: PipelineEvent) -> None:
        pass


def build_event_emitter(metrics=None, logger_name: Optional[str] = None) -> FanOutEmitter:
    """Wire the service's sinks: the issue log, then Prometheus.

    Args:
        metrics: PipelineMetrics to update; the process-wide instance when None.
        logger_name: Logger for the issue log sink.
    """
    # metrics.py imports EventEmitter from this module
    from site_surgeon.events.metrics import MetricsEventEmitter

    return FanOutEmitter(
        [IssueEventLogger(logger_name=logger_name), MetricsEventEmitter(metrics=metrics)]
    )
