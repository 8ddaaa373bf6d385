"""Status transition service.

Executes one requested stage change as a single durable unit combining
validation, mutation, and audit:

1. Validate the request shape.
2. Lock the item's current stage and normalize it.
3. Ask the status graph whether (current, target) is an allowed edge.
4. Update the stage and insert exactly one audit entry in the same
   transaction.
5. After commit, hand an event to the injected emitter.

Rejected requests (unknown item, disallowed edge, malformed request) write
nothing. Storage failures roll the whole transaction back, so callers may
retry the same request.

force_transition() skips step 3 for operator recovery. Forced changes are
still transactional, and their audit entries always carry
{"forced": True, "reason": ...} so they stay distinguishable in history.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional
from uuid import uuid4

from src.content_pipeline.events.emitter import EventEmitter, NullEventEmitter
from src.content_pipeline.events.models import EventType, StatusEvent
from src.content_pipeline.status import graph
from src.content_pipeline.status.models import (
    AuditEntry,
    Stage,
    TransitionErrorKind,
    TransitionRequest,
    TransitionResult,
)
from src.content_pipeline.status.normalizer import UnknownStageError, normalize
from src.content_pipeline.status.repository import (
    ItemStore,
    StorageError,
    StoreTransaction,
)


logger = logging.getLogger(__name__)


# Trigger event recorded for forced transitions. Reserved: normal
# transitions may not use it.
FORCE_TRIGGER_EVENT = "force_update"

# Metadata key marking forced transitions. Reserved: normal transitions
# may not set it.
FORCED_METADATA_KEY = "forced"


class TransitionError(Exception):
    """Base class for transitions refused before anything is written.

    Attributes:
        item_id: The item the request referenced.
        kind: Classification used in TransitionResult.error_kind.
    """

    kind: TransitionErrorKind = TransitionErrorKind.VALIDATION

    def __init__(self, item_id: Optional[str], message: str):
        self.item_id = item_id
        self.message = message
        super().__init__(message)


class ItemNotFoundError(TransitionError):
    """Raised when the referenced item does not exist."""

    kind = TransitionErrorKind.NOT_FOUND

    def __init__(self, item_id: str):
        super().__init__(item_id, f"Item with ID {item_id} not found")


class InvalidTransitionError(TransitionError):
    """Raised when the status graph rejects the requested edge.

    Attributes:
        from_stage: The item's current stage.
        to_stage: The requested target stage.
        allowed: Stages that are reachable from from_stage.
    """

    kind = TransitionErrorKind.INVALID_TRANSITION

    def __init__(
        self,
        item_id: Optional[str],
        from_stage: Stage,
        to_stage: Stage,
    ):
        self.from_stage = from_stage
        self.to_stage = to_stage
        self.allowed = graph.allowed_next_stages(from_stage)
        allowed = ", ".join(sorted(stage.value for stage in self.allowed))
        super().__init__(
            item_id,
            f'Invalid transition from "{from_stage.value}" to '
            f'"{to_stage.value}". Allowed: [{allowed}]',
        )


class StoredStageError(TransitionError):
    """Raised when an item's stored stage cannot be normalized.

    Attributes:
        raw_value: The stored value.
    """

    kind = TransitionErrorKind.UNKNOWN_STAGE

    def __init__(self, item_id: str, raw_value: str):
        self.raw_value = raw_value
        super().__init__(
            item_id,
            f"Item {item_id} has unrecognized stored stage {raw_value!r}",
        )


class TransitionValidationError(TransitionError):
    """Raised when a request is malformed.

    Attributes:
        errors: One message per problem found.
    """

    kind = TransitionErrorKind.VALIDATION

    def __init__(self, item_id: Optional[str], errors: List[str]):
        self.errors = errors
        super().__init__(item_id, "Invalid transition request: " + "; ".join(errors))


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def validate_request(
    request: TransitionRequest,
    forced: bool = False,
    reason: Optional[str] = None,
) -> List[str]:
    """Check a request's shape without touching storage.

    Args:
        request: The request to check.
        forced: Whether the request is an operator override.
        reason: The override reason (forced requests only).

    Returns:
        A list of problems; empty if the request is well formed.
    """
    errors: List[str] = []

    if _is_blank(request.item_id):
        errors.append("item_id is required")

    if not isinstance(request.target_stage, Stage):
        errors.append(
            f"target_stage must be a canonical stage, got {request.target_stage!r}"
        )

    if _is_blank(request.trigger_event):
        errors.append("trigger_event is required")
    elif not forced and request.trigger_event == FORCE_TRIGGER_EVENT:
        errors.append(f'trigger_event "{FORCE_TRIGGER_EVENT}" is reserved')

    if request.actor is not None and _is_blank(request.actor):
        errors.append("actor cannot be blank")

    if request.metadata is not None:
        if not isinstance(request.metadata, dict):
            errors.append("metadata must be a key/value mapping")
        else:
            if not forced and FORCED_METADATA_KEY in request.metadata:
                errors.append(f'metadata key "{FORCED_METADATA_KEY}" is reserved')
            if not all(isinstance(key, str) for key in request.metadata):
                errors.append("metadata keys must be strings")
            try:
                json.dumps(request.metadata)
            except (TypeError, ValueError):
                errors.append("metadata must be JSON serializable")

    if forced and _is_blank(reason):
        errors.append("reason is required for forced transitions")

    return errors


class StatusTransitionService:
    """Validated, audited stage changes for content items.

    Attributes:
        store: The item store.
        event_emitter: Receives one event per committed or refused
            transition.

    Example:
        >>> service = StatusTransitionService(store, LoggingEventEmitter())
        >>> result = await service.transition(
        ...     "item-1",
        ...     Stage.RENDERING,
        ...     trigger_event="system_process",
        ... )
        >>> result.old_stage, result.new_stage
        (<Stage.ASSETS_READY: 'assets_ready'>, <Stage.RENDERING: 'rendering'>)
    """

    def __init__(
        self,
        store: ItemStore,
        event_emitter: Optional[EventEmitter] = None,
    ):
        self.store = store
        self.event_emitter = event_emitter or NullEventEmitter()

    async def transition(
        self,
        item_id: str,
        target_stage: Stage,
        trigger_event: str,
        metadata: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult:
        """Move an item to target_stage if the status graph allows it.

        Args:
            item_id: The item to transition.
            target_stage: Canonical target stage.
            trigger_event: Free-form classifier of why the change happens.
            metadata: Optional structured context for the audit entry.
            actor: Optional identifier of who or what initiated the change.

        Returns:
            A successful result with old/new stage and the audit entry id,
            or a failed result with error and error_kind. For
            INVALID_TRANSITION, old_stage/new_stage carry the rejected edge.
        """
        request = TransitionRequest.model_construct(
            item_id=item_id,
            target_stage=target_stage,
            trigger_event=trigger_event,
            metadata=metadata,
            actor=actor,
        )
        return await self.execute(request)

    async def execute(self, request: TransitionRequest) -> TransitionResult:
        """Run transition() for a prepared request."""
        return await self._run(request, forced=False)

    async def force_transition(
        self,
        item_id: str,
        target_stage: Stage,
        reason: str,
        actor: Optional[str] = None,
    ) -> TransitionResult:
        """Move an item to target_stage without consulting the status graph.

        Intended for operator recovery, e.g. moving a failed render back to
        assets_ready. The audit entry uses trigger event "force_update" and
        metadata {"forced": True, "reason": reason}.

        Args:
            item_id: The item to transition.
            target_stage: Canonical target stage.
            reason: Why the override is needed. Required.
            actor: Optional identifier of the operator.

        Returns:
            The transition result. Never fails with INVALID_TRANSITION.
        """
        logger.warning(
            "Forced status update requested",
            extra={
                "item_id": item_id,
                "to_stage": getattr(target_stage, "value", target_stage),
                "reason": reason,
                "actor": actor,
            },
        )
        request = TransitionRequest.model_construct(
            item_id=item_id,
            target_stage=target_stage,
            trigger_event=FORCE_TRIGGER_EVENT,
            metadata=None,
            actor=actor,
        )
        return await self._run(request, forced=True, reason=reason)

    async def allowed_next_stages(self, item_id: str) -> FrozenSet[Stage]:
        """Stages an item may move to next under normal flow.

        Raises:
            ItemNotFoundError: If the item does not exist.
            StoredStageError: If the stored stage is unrecognized.
            StorageError: If the read fails.
        """
        raw = await self.store.get_stage(item_id)
        if raw is None:
            raise ItemNotFoundError(item_id)
        try:
            current = normalize(raw)
        except UnknownStageError as e:
            raise StoredStageError(item_id, raw) from e
        return graph.allowed_next_stages(current)

    async def apply_in_transaction(
        self,
        tx: StoreTransaction,
        request: TransitionRequest,
        forced: bool = False,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        """Validate and apply one request inside an open transaction.

        Nothing is written unless every check passes. The caller owns the
        transaction; raising from here rolls back everything it contains.

        Raises:
            TransitionValidationError: If the request is malformed.
            ItemNotFoundError: If the item does not exist.
            StoredStageError: If the stored stage is unrecognized.
            InvalidTransitionError: If the edge is not allowed (not forced).
            StorageError: If a write fails.
        """
        errors = validate_request(request, forced=forced, reason=reason)
        if errors:
            raise TransitionValidationError(
                request.item_id if isinstance(request.item_id, str) else None,
                errors,
            )

        item_id = request.item_id
        raw = await tx.lock_item_stage(item_id)
        if raw is None:
            raise ItemNotFoundError(item_id)

        try:
            current = normalize(raw)
        except UnknownStageError as e:
            raise StoredStageError(item_id, raw) from e

        target = request.target_stage
        if not forced and not graph.is_valid_transition(current, target):
            raise InvalidTransitionError(item_id, current, target)

        metadata = dict(request.metadata or {})
        if forced:
            metadata[FORCED_METADATA_KEY] = True
            metadata["reason"] = reason

        now = datetime.now(timezone.utc)
        entry = AuditEntry(
            id=str(uuid4()),
            item_id=item_id,
            old_stage=current,
            new_stage=target,
            trigger_event=request.trigger_event,
            metadata=metadata,
            created_at=now,
            created_by=request.actor,
        )

        await tx.update_stage(item_id, target, now)
        await tx.insert_audit_entry(entry)

        return TransitionResult(
            success=True,
            item_id=item_id,
            old_stage=current,
            new_stage=target,
            audit_entry_id=entry.id,
        )

    async def _run(
        self,
        request: TransitionRequest,
        forced: bool,
        reason: Optional[str] = None,
    ) -> TransitionResult:
        try:
            async with self.store.transaction() as tx:
                result = await self.apply_in_transaction(
                    tx, request, forced=forced, reason=reason
                )
        except TransitionError as e:
            result = failure_result(request, e)
            logger.warning(
                "Status transition rejected",
                extra={
                    "item_id": result.item_id,
                    "to_stage": _stage_value(request.target_stage),
                    "error_kind": e.kind.value,
                    "error": e.message,
                },
            )
            await self._emit_rejected(result)
            return result
        except StorageError as e:
            result = storage_failure_result(request, e)
            logger.error(
                "Status transition failed in storage",
                extra={
                    "item_id": request.item_id,
                    "to_stage": _stage_value(request.target_stage),
                    "error": str(e),
                },
            )
            await self._emit_rejected(result)
            return result

        logger.info(
            "Status transition committed",
            extra={
                "item_id": result.item_id,
                "from_stage": result.old_stage.value,
                "to_stage": result.new_stage.value,
                "trigger_event": request.trigger_event,
                "forced": forced,
                "audit_entry_id": result.audit_entry_id,
            },
        )
        await self.publish_committed(result, request, forced=forced, reason=reason)
        return result

    async def publish_committed(
        self,
        result: TransitionResult,
        request: TransitionRequest,
        forced: bool = False,
        reason: Optional[str] = None,
    ) -> None:
        """Emit the event for a committed transition."""
        details: Dict[str, Any] = {
            "from_stage": result.old_stage.value,
            "to_stage": result.new_stage.value,
            "trigger_event": request.trigger_event,
            "audit_entry_id": result.audit_entry_id,
            "actor": request.actor,
        }
        if forced:
            details["reason"] = reason
        await self.publish(
            StatusEvent(
                event_type=(
                    EventType.FORCED_TRANSITION if forced
                    else EventType.STATUS_TRANSITION
                ),
                item_id=result.item_id,
                details=details,
            )
        )

    async def _emit_rejected(self, result: TransitionResult) -> None:
        details: Dict[str, Any] = {
            "error_kind": result.error_kind.value,
            "error": result.error,
        }
        if result.old_stage is not None:
            details["from_stage"] = result.old_stage.value
        if result.new_stage is not None:
            details["to_stage"] = result.new_stage.value
        await self.publish(
            StatusEvent(
                event_type=EventType.TRANSITION_REJECTED,
                item_id=result.item_id,
                details=details,
            )
        )

    async def publish(self, event: StatusEvent) -> None:
        """Send an event to the emitter, logging rather than raising on failure."""
        # Notification is best effort; the transition already committed
        try:
            await self.event_emitter.emit(event)
        except Exception as e:
            logger.error(
                "Failed to emit status event",
                extra={
                    "event_type": event.event_type.value,
                    "item_id": event.item_id,
                    "error": str(e),
                },
            )


def _stage_value(stage: Any) -> Any:
    return stage.value if isinstance(stage, Stage) else stage


def failure_result(
    request: TransitionRequest,
    error: TransitionError,
) -> TransitionResult:
    """Convert a refused transition into a failed TransitionResult."""
    old_stage: Optional[Stage] = None
    new_stage: Optional[Stage] = None
    validation_errors: List[str] = []

    if isinstance(error, InvalidTransitionError):
        old_stage = error.from_stage
        new_stage = error.to_stage
    elif isinstance(error, TransitionValidationError):
        validation_errors = list(error.errors)

    item_id = error.item_id
    if item_id is None and isinstance(request.item_id, str):
        item_id = request.item_id

    return TransitionResult.failure(
        item_id=item_id,
        error=error.message,
        error_kind=error.kind,
        old_stage=old_stage,
        new_stage=new_stage,
        validation_errors=validation_errors,
    )


def storage_failure_result(
    request: TransitionRequest,
    error: StorageError,
) -> TransitionResult:
    """Convert a storage failure into a failed TransitionResult."""
    return TransitionResult.failure(
        item_id=request.item_id if isinstance(request.item_id, str) else None,
        error=f"Status transition failed: {error.message}",
        error_kind=TransitionErrorKind.STORAGE_FAILURE,
    )
