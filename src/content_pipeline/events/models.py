"""Status event models.

This module defines the events published after the status subsystem acts:
- EventType: Enum of event categories
- StatusEvent: Structured event with item identifier, timestamp and details

Events are the logical "something happened" boundary. Callers that want to
push real-time notifications plug an emitter in; the status subsystem never
talks to a transport itself.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the status subsystem.

    Attributes:
        STATUS_TRANSITION: A validated stage change was committed.
        FORCED_TRANSITION: An operator override was committed.
        TRANSITION_REJECTED: A transition was refused (not found, invalid
            edge, storage failure, ...). Nothing was written.
        BATCH_ABORTED: A batch was rolled back because one request failed.
    """

    STATUS_TRANSITION = "status_transition"
    FORCED_TRANSITION = "forced_transition"
    TRANSITION_REJECTED = "transition_rejected"
    BATCH_ABORTED = "batch_aborted"


class StatusEvent(BaseModel):
    """Structured event emitted by the status subsystem.

    Details Field Conventions:
        For STATUS_TRANSITION and FORCED_TRANSITION events:
            - from_stage: Previous stage
            - to_stage: New stage
            - trigger_event: Classifier from the request
            - audit_entry_id: Identifier of the audit entry written
            - actor: Initiator, if known
            - reason: Override reason (FORCED_TRANSITION only)

        For TRANSITION_REJECTED events:
            - error_kind: TransitionErrorKind value
            - error: Human-readable message
            - from_stage / to_stage: The rejected edge, when known

        For BATCH_ABORTED events:
            - index: Position of the failing request
            - error_kind / error: Failure of that request
            - batch_size: Number of requests in the batch
    """

    event_type: EventType = Field(
        ...,
        description="The category of event being emitted",
    )

    item_id: Optional[str] = Field(
        default=None,
        description="The item the event concerns",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Flatten the event into a dictionary for structured logging.

        Example:
            >>> event = StatusEvent(
            ...     event_type=EventType.STATUS_TRANSITION,
            ...     item_id="item-1",
            ...     details={"from_stage": "assets_ready", "to_stage": "rendering"},
            ... )
            >>> event.to_log_dict()["event_type"]
            'status_transition'
        """
        return {
            "event_type": self.event_type.value,
            "item_id": self.item_id,
            "timestamp": self.timestamp.isoformat(),
            **self.details,
        }
