"""Unit tests for status event emitters and Prometheus metrics."""

import asyncio
import logging

import pytest

from src.content_pipeline.events import (
    CompositeEventEmitter,
    EventEmitter,
    EventSinkType,
    EventType,
    LoggingEventEmitter,
    MetricsEventEmitter,
    NullEventEmitter,
    StatusEvent,
    StatusMetrics,
    create_event_emitter,
    generate_metrics_output,
)
from src.content_pipeline.status import Stage


def run_async(coro):
    return asyncio.run(coro)


def _transition_event(event_type: EventType = EventType.STATUS_TRANSITION) -> StatusEvent:
    return StatusEvent(
        event_type=event_type,
        item_id="item-1",
        details={"from_stage": "assets_ready", "to_stage": "rendering"},
    )


class ExplodingEmitter(EventEmitter):
    async def emit(self, event: StatusEvent) -> None:
        raise RuntimeError("sink unavailable")

    async def close(self) -> None:
        raise RuntimeError("already closed")


class CountingEmitter(EventEmitter):
    def __init__(self) -> None:
        self.count = 0
        self.closed = False

    async def emit(self, event: StatusEvent) -> None:
        self.count += 1

    async def close(self) -> None:
        self.closed = True


class TestStatusEvent:

    def test_to_log_dict_flattens_details(self):
        log_dict = _transition_event().to_log_dict()

        assert log_dict["event_type"] == "status_transition"
        assert log_dict["item_id"] == "item-1"
        assert log_dict["to_stage"] == "rendering"
        assert "timestamp" in log_dict


class TestLoggingEventEmitter:

    def test_transition_logged_at_info(self, caplog):
        emitter = LoggingEventEmitter(logger_name="test.status.events")

        with caplog.at_level(logging.INFO, logger="test.status.events"):
            run_async(emitter.emit(_transition_event()))

        (record,) = caplog.records
        assert record.levelno == logging.INFO
        assert record.to_stage == "rendering"

    @pytest.mark.parametrize(
        "event_type",
        [EventType.FORCED_TRANSITION, EventType.BATCH_ABORTED],
    )
    def test_overrides_and_aborts_logged_at_warning(self, caplog, event_type):
        emitter = LoggingEventEmitter(logger_name="test.status.events")

        with caplog.at_level(logging.INFO, logger="test.status.events"):
            run_async(emitter.emit(_transition_event(event_type)))

        assert caplog.records[0].levelno == logging.WARNING


class TestCompositeEventEmitter:

    def test_failing_child_does_not_block_others(self):
        counting = CountingEmitter()
        composite = CompositeEventEmitter([ExplodingEmitter(), counting])

        run_async(composite.emit(_transition_event()))
        run_async(composite.close())

        assert counting.count == 1
        assert counting.closed

    def test_add_emitter(self):
        composite = CompositeEventEmitter()
        composite.add_emitter(NullEventEmitter())

        assert len(composite.emitters) == 1


class TestStatusMetrics:

    def test_transition_counters(self, registry):
        emitter = MetricsEventEmitter(registry=registry)

        run_async(emitter.emit(_transition_event()))
        run_async(emitter.emit(_transition_event(EventType.FORCED_TRANSITION)))

        assert registry.get_sample_value(
            "content_status_transitions_total",
            {"from_stage": "assets_ready", "to_stage": "rendering"},
        ) == 2
        assert registry.get_sample_value(
            "content_status_forced_transitions_total",
            {"to_stage": "rendering"},
        ) == 1

    def test_rejection_and_abort_counters(self, registry):
        emitter = MetricsEventEmitter(registry=registry)

        run_async(
            emitter.emit(
                StatusEvent(
                    event_type=EventType.TRANSITION_REJECTED,
                    item_id="item-1",
                    details={"error_kind": "not_found"},
                )
            )
        )
        run_async(emitter.emit(StatusEvent(event_type=EventType.BATCH_ABORTED)))

        assert registry.get_sample_value(
            "content_status_rejections_total", {"kind": "not_found"}
        ) == 1
        assert registry.get_sample_value("content_status_batches_aborted_total") == 1

    def test_stage_distribution_gauge(self, registry):
        metrics = StatusMetrics(registry=registry)

        metrics.set_stage_distribution({Stage.RENDERING: 3})

        assert registry.get_sample_value(
            "content_items_by_stage", {"stage": "rendering"}
        ) == 3
        assert registry.get_sample_value(
            "content_items_by_stage", {"stage": "completed"}
        ) == 0

    def test_metrics_output_is_prometheus_text(self, registry):
        StatusMetrics(registry=registry).record_batch_aborted()

        output = generate_metrics_output(registry).decode()

        assert "content_status_batches_aborted_total 1.0" in output


class TestCreateEventEmitter:

    def test_default_is_logging(self):
        assert isinstance(create_event_emitter(), LoggingEventEmitter)

    def test_single_sink(self, registry):
        metrics = StatusMetrics(registry=registry)

        emitter = create_event_emitter([EventSinkType.METRICS], metrics=metrics)

        assert isinstance(emitter, MetricsEventEmitter)
        assert emitter.metrics is metrics

    def test_multiple_sinks(self, registry):
        emitter = create_event_emitter(
            [EventSinkType.LOGGING, EventSinkType.METRICS],
            metrics=StatusMetrics(registry=registry),
        )

        assert isinstance(emitter, CompositeEventEmitter)
        assert len(emitter.emitters) == 2
