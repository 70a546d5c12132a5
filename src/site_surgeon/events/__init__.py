"""Pipeline event emission and metrics.

Event sinks:
- EventEmitter: Abstract destination for pipeline events
- IssueEventLogger: One log line per event, keyed by issue
- MetricsEventEmitter: Updates Prometheus metrics
- FanOutEmitter: Delivers to several sinks, isolating failures
- NullEventEmitter: Discards events

Metrics:
- PipelineMetrics: Container for all Prometheus metrics
- get_metrics: Get or create the metrics instance
- generate_metrics_output: Generate Prometheus format output for /metrics
"""

from site_surgeon.events.emitter import (
    EventEmitter,
    FanOutEmitter,
    IssueEventLogger,
    NullEventEmitter,
    build_event_emitter,
    describe_event,
)
from site_surgeon.events.metrics import (
    MetricsEventEmitter,
    PipelineMetrics,
    generate_metrics_output,
    get_metrics,
)
from site_surgeon.events.models import EventType, PipelineEvent

__all__ = [
    # Event models
    "EventType",
    "PipelineEvent",
    # Event sinks
    "EventEmitter",
    "IssueEventLogger",
    "FanOutEmitter",
    "MetricsEventEmitter",
    "NullEventEmitter",
    "build_event_emitter",
    "describe_event",
    # Metrics
    "PipelineMetrics",
    "get_metrics",
    "generate_metrics_output",
]
