"""Status event emission and metrics.

Event Emitters:
- EventEmitter: Abstract base class for event emission
- LoggingEventEmitter: Emits events as structured log entries
- CompositeEventEmitter: Emits to multiple sinks simultaneously
- MetricsEventEmitter: Emits events as Prometheus metrics
- NullEventEmitter: Discards events

Metrics:
- StatusMetrics: Container for all Prometheus metrics
- get_metrics: Get or create the metrics instance
- generate_metrics_output: Generate Prometheus format output for /metrics
"""

from src.content_pipeline.events.emitter import (
    CompositeEventEmitter,
    EventEmitter,
    EventSinkType,
    LoggingEventEmitter,
    NullEventEmitter,
    create_event_emitter,
)
from src.content_pipeline.events.metrics import (
    MetricsEventEmitter,
    StatusMetrics,
    generate_metrics_output,
    get_metrics,
)
from src.content_pipeline.events.models import EventType, StatusEvent

__all__ = [
    # Event models
    "EventType",
    "StatusEvent",
    # Event emitters
    "EventEmitter",
    "LoggingEventEmitter",
    "CompositeEventEmitter",
    "MetricsEventEmitter",
    "NullEventEmitter",
    # Metrics
    "StatusMetrics",
    "get_metrics",
    "generate_metrics_output",
    # Factory and configuration
    "EventSinkType",
    "create_event_emitter",
]
