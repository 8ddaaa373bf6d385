"""Prometheus metrics for content status tracking.

Metrics Defined:
- content_status_transitions_total: Counter of committed transitions by edge
- content_status_forced_transitions_total: Counter of operator overrides
- content_status_rejections_total: Counter of refused transitions by kind
- content_status_batches_aborted_total: Counter of rolled back batches
- content_items_by_stage: Gauge of current items per stage

The MetricsEventEmitter updates the counters from status events. The gauge
is refreshed from the query layer's stage distribution when /metrics is
scraped, since only storage knows the absolute counts.
"""

import logging
from typing import Mapping, Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)

from src.content_pipeline.events.emitter import EventEmitter
from src.content_pipeline.events.models import EventType, StatusEvent
from src.content_pipeline.status.models import Stage


logger = logging.getLogger(__name__)


class StatusMetrics:
    """Container for all content status Prometheus metrics.

    Pass a custom CollectorRegistry in tests to avoid duplicate
    registration against the process-wide default registry.

    Attributes:
        registry: The Prometheus registry for these metrics.
        transitions_total: Counter of committed transitions.
            Labels: from_stage, to_stage
        forced_transitions_total: Counter of forced transitions.
            Labels: to_stage
        rejections_total: Counter of refused transitions.
            Labels: kind
        batches_aborted_total: Counter of aborted batches.
        items_by_stage: Gauge of items currently in each stage.
            Labels: stage
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.transitions_total = Counter(
            "content_status_transitions_total",
            "Total number of committed stage transitions",
            labelnames=["from_stage", "to_stage"],
            registry=self.registry,
        )

        self.forced_transitions_total = Counter(
            "content_status_forced_transitions_total",
            "Total number of forced (validation-bypassing) transitions",
            labelnames=["to_stage"],
            registry=self.registry,
        )

        self.rejections_total = Counter(
            "content_status_rejections_total",
            "Total number of transitions refused without mutation",
            labelnames=["kind"],
            registry=self.registry,
        )

        self.batches_aborted_total = Counter(
            "content_status_batches_aborted_total",
            "Total number of transition batches rolled back",
            registry=self.registry,
        )

        self.items_by_stage = Gauge(
            "content_items_by_stage",
            "Current number of content items in each stage",
            labelnames=["stage"],
            registry=self.registry,
        )

        for stage in Stage:
            self.items_by_stage.labels(stage=stage.value).set(0)

    def record_transition(self, from_stage: str, to_stage: str) -> None:
        self.transitions_total.labels(
            from_stage=from_stage,
            to_stage=to_stage,
        ).inc()

    def record_forced(self, to_stage: str) -> None:
        self.forced_transitions_total.labels(to_stage=to_stage).inc()

    def record_rejection(self, kind: str) -> None:
        self.rejections_total.labels(kind=kind).inc()

    def record_batch_aborted(self) -> None:
        self.batches_aborted_total.inc()

    def set_stage_distribution(self, distribution: Mapping[Stage, int]) -> None:
        """Set the items_by_stage gauge from an absolute distribution.

        Args:
            distribution: Count of items per stage. Stages missing from
                          the mapping are set to 0.
        """
        for stage in Stage:
            self.items_by_stage.labels(stage=stage.value).set(
                max(0, distribution.get(stage, 0))
            )


# Metrics instance for the default registry
_default_metrics: Optional[StatusMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> StatusMetrics:
    """Get the default metrics instance, or a new one for a custom registry.

    Example:
        >>> metrics = get_metrics()
        >>> metrics.record_transition("assets_ready", "rendering")
    """
    global _default_metrics

    if registry is not None:
        return StatusMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = StatusMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus text format output for the /metrics endpoint."""
    target_registry = registry or REGISTRY
    return generate_latest(target_registry)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    - STATUS_TRANSITION: Increments transitions_total for the edge
    - FORCED_TRANSITION: Increments transitions_total and forced_transitions_total
    - TRANSITION_REJECTED: Increments rejections_total by error kind
    - BATCH_ABORTED: Increments batches_aborted_total

    Attributes:
        metrics: The StatusMetrics instance to update.
    """

    def __init__(
        self,
        metrics: Optional[StatusMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        """Initialize the metrics event emitter.

        Args:
            metrics: Optional StatusMetrics instance. If None, uses
                     get_metrics(registry).
            registry: Optional Prometheus registry. Only used if metrics
                      is None.
        """
        if metrics is not None:
            self._metrics = metrics
        else:
            self._metrics = get_metrics(registry)

    @property
    def metrics(self) -> StatusMetrics:
        return self._metrics

    async def emit(self, event: StatusEvent) -> None:
        try:
            if event.event_type in (
                EventType.STATUS_TRANSITION,
                EventType.FORCED_TRANSITION,
            ):
                self._metrics.record_transition(
                    event.details.get("from_stage", "unknown"),
                    event.details.get("to_stage", "unknown"),
                )
                if event.event_type == EventType.FORCED_TRANSITION:
                    self._metrics.record_forced(
                        event.details.get("to_stage", "unknown")
                    )
            elif event.event_type == EventType.TRANSITION_REJECTED:
                self._metrics.record_rejection(
                    event.details.get("error_kind", "unknown")
                )
            elif event.event_type == EventType.BATCH_ABORTED:
                self._metrics.record_batch_aborted()
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={
                    "event_type": event.event_type.value,
                    "item_id": event.item_id,
                    "error": str(e),
                },
            )
