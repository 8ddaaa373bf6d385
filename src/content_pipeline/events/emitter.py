"""Event emitter implementations for status events.

This module defines an abstract EventEmitter interface and the concrete
sinks the status subsystem ships with:

- LoggingEventEmitter: Emits events as structured log entries
- CompositeEventEmitter: Emits to multiple sinks simultaneously
- NullEventEmitter: Discards events (the default notifier)

A caller that needs real-time notifications (websocket fan-out, message
queue, ...) implements EventEmitter and injects it into the transition
service. The status subsystem only ever calls emit().
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, List, Optional

from src.content_pipeline.events.models import EventType, StatusEvent


logger = logging.getLogger(__name__)


class EventSinkType(str, Enum):
    """Types of event sinks that can be configured.

    Attributes:
        LOGGING: Emit events as structured log entries.
        METRICS: Emit events as Prometheus metrics.
    """

    LOGGING = "logging"
    METRICS = "metrics"


class EventEmitter(ABC):
    """Abstract base class for status event emitters.

    Implementations should be:
    - Async-safe: emit() is called from async contexts
    - Non-blocking: emit() should not hold up the caller
    - Fault-tolerant: emit() failures should be logged, not raised

    Example:
        >>> class WebSocketEmitter(EventEmitter):
        ...     async def emit(self, event: StatusEvent) -> None:
        ...         await hub.broadcast("item_status_update", event.to_log_dict())
    """

    @abstractmethod
    async def emit(self, event: StatusEvent) -> None:
        """Emit a status event.

        Args:
            event: The status event to emit.
        """
        pass

    async def close(self) -> None:
        """Close the emitter and release resources.

        The default implementation does nothing.
        """
        pass


class LoggingEventEmitter(EventEmitter):
    """Event emitter that logs events using structured logging.

    Events are logged at different levels based on event type:

    - STATUS_TRANSITION: INFO level
    - FORCED_TRANSITION: WARNING level
    - TRANSITION_REJECTED: INFO level
    - BATCH_ABORTED: WARNING level

    Example:
        >>> emitter = LoggingEventEmitter()
        >>> await emitter.emit(event)
        # Logs: INFO - Status event: status_transition for item-1
    """

    def __init__(self, logger_name: Optional[str] = None):
        """Initialize the logging event emitter.

        Args:
            logger_name: Optional logger name. If not provided, uses
                         the module logger.
        """
        self._logger = (
            logging.getLogger(logger_name)
            if logger_name
            else logger
        )
        self._log_level_map = {
            EventType.STATUS_TRANSITION: logging.INFO,
            EventType.FORCED_TRANSITION: logging.WARNING,
            EventType.TRANSITION_REJECTED: logging.INFO,
            EventType.BATCH_ABORTED: logging.WARNING,
        }

    async def emit(self, event: StatusEvent) -> None:
        log_level = self._log_level_map.get(event.event_type, logging.INFO)

        self._logger.log(
            log_level,
            "Status event: %s for %s",
            event.event_type.value,
            event.item_id,
            extra=event.to_log_dict(),
        )


class CompositeEventEmitter(EventEmitter):
    """Event emitter that delegates to multiple child emitters.

    Each child emitter is called independently; a failing child is logged
    and does not prevent delivery to the others.

    Attributes:
        emitters: List of child emitters to delegate to.

    Example:
        >>> composite = CompositeEventEmitter(
        ...     [LoggingEventEmitter(), MetricsEventEmitter()]
        ... )
        >>> await composite.emit(event)  # Emits to both sinks
    """

    def __init__(self, emitters: Optional[List[EventEmitter]] = None):
        self._emitters: List[EventEmitter] = emitters or []

    def add_emitter(self, emitter: EventEmitter) -> None:
        self._emitters.append(emitter)

    @property
    def emitters(self) -> List[EventEmitter]:
        """Get the list of child emitters (copy)."""
        return list(self._emitters)

    async def emit(self, event: StatusEvent) -> None:
        """Emit event to all child emitters.

        Args:
            event: The status event to emit.
        """
        for emitter in self._emitters:
            try:
                await emitter.emit(event)
            except Exception as e:
                logger.error(
                    "Failed to emit event to %s: %s",
                    type(emitter).__name__,
                    str(e),
                    extra={
                        "emitter_type": type(emitter).__name__,
                        "event_type": event.event_type.value,
                        "item_id": event.item_id,
                        "error": str(e),
                    },
                )

    async def close(self) -> None:
        """Close all child emitters, logging failures."""
        for emitter in self._emitters:
            try:
                await emitter.close()
            except Exception as e:
                logger.error(
                    "Failed to close emitter %s: %s",
                    type(emitter).__name__,
                    str(e),
                )


class NullEventEmitter(EventEmitter):
    """Event emitter that discards all events."""

    async def emit(self, event: StatusEvent) -> None:
        pass


def create_event_emitter(
    sink_types: Optional[List[EventSinkType]] = None,
    logger_name: Optional[str] = None,
    metrics: Optional[Any] = None,
) -> EventEmitter:
    """Create an event emitter for the requested sinks.

    Args:
        sink_types: Event sink types to enable. If None or empty, returns
                    a LoggingEventEmitter.
        logger_name: Optional logger name for the LoggingEventEmitter.
        metrics: Optional StatusMetrics for the MetricsEventEmitter. If
                 None, the default registry's metrics are used.

    Returns:
        A single emitter, or a CompositeEventEmitter when more than one
        sink is requested.

    Example:
        >>> emitter = create_event_emitter([
        ...     EventSinkType.LOGGING,
        ...     EventSinkType.METRICS,
        ... ])
        >>> isinstance(emitter, CompositeEventEmitter)
        True
    """
    if not sink_types:
        return LoggingEventEmitter(logger_name=logger_name)

    emitters: List[EventEmitter] = []

    for sink_type in sink_types:
        if sink_type == EventSinkType.LOGGING:
            emitters.append(LoggingEventEmitter(logger_name=logger_name))
        elif sink_type == EventSinkType.METRICS:
            # metrics.py imports this module
            from src.content_pipeline.events.metrics import MetricsEventEmitter
            emitters.append(MetricsEventEmitter(metrics=metrics))
        else:
            logger.warning(
                "Unknown event sink type: %s, skipping",
                sink_type,
            )

    if not emitters:
        return LoggingEventEmitter(logger_name=logger_name)

    if len(emitters) == 1:
        return emitters[0]

    return CompositeEventEmitter(emitters)
