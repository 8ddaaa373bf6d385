"""Content status models.

This module defines the data models for content status tracking, including:
- Stage: Enum of every lifecycle stage a content item can occupy
- Item: A content item as seen by the status subsystem
- AuditEntry: Immutable record of one executed stage change
- TransitionRequest / TransitionResult: Request and result contracts for
  the transition service and batch coordinator
- ItemPage / ExistenceCheck: Read-side result shapes

The models use Pydantic for validation, consistent with config.py and the
event models.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field


class Stage(str, Enum):
    """Lifecycle stages of a content item.

    Stage Flow:
        discovered → idea_selected → script_generating → script_generated
        → script_approved → assets_ready → rendering → completed

    Script generation may fail (script_generation_failed) and be retried.
    Ideas and scripts may be rejected; a rejected item can be re-selected.
    Rendering may fail; leaving `failed` requires a forced transition.

    Attributes:
        DISCOVERED: Item found by ingestion, awaiting review.
        IDEA_SELECTED: Item approved as an idea for script generation.
        SCRIPT_GENERATING: Script generation in progress.
        SCRIPT_GENERATED: Script generated, awaiting review.
        SCRIPT_APPROVED: Script approved by a reviewer.
        SCRIPT_GENERATION_FAILED: Script generation failed; may be retried.
        REJECTED: Item or script rejected by a reviewer.
        ASSETS_READY: Media assets gathered for rendering.
        RENDERING: Video rendering in progress.
        COMPLETED: Video completed successfully.
        FAILED: Rendering failed.
    """

    DISCOVERED = "discovered"
    IDEA_SELECTED = "idea_selected"
    SCRIPT_GENERATING = "script_generating"
    SCRIPT_GENERATED = "script_generated"
    SCRIPT_APPROVED = "script_approved"
    SCRIPT_GENERATION_FAILED = "script_generation_failed"
    REJECTED = "rejected"
    ASSETS_READY = "assets_ready"
    RENDERING = "rendering"
    COMPLETED = "completed"
    FAILED = "failed"


class TransitionErrorKind(str, Enum):
    """Classification of a failed transition.

    Attributes:
        NOT_FOUND: The referenced item does not exist.
        INVALID_TRANSITION: The status graph rejects the requested edge.
        STORAGE_FAILURE: The underlying transaction failed; safe to retry.
        UNKNOWN_STAGE: A stored stage value could not be normalized.
        VALIDATION: The request itself is malformed.
    """

    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    STORAGE_FAILURE = "storage_failure"
    UNKNOWN_STAGE = "unknown_stage"
    VALIDATION = "validation"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Item(BaseModel):
    """A content item tracked through the production pipeline.

    Only the stage field is owned by this subsystem. Title and content are
    written by the ingestion collaborator and are opaque here.

    Attributes:
        id: Unique item identifier.
        title: Item title.
        content: Item body text.
        stage: Current lifecycle stage.
        created_at: When the item was ingested (UTC).
        updated_at: When the item's stage last changed (UTC).
    """

    id: str = Field(..., min_length=1, description="Unique item identifier")

    title: str = Field(default="", description="Item title")

    content: str = Field(default="", description="Item body text")

    stage: Stage = Field(
        default=Stage.DISCOVERED,
        description="Current lifecycle stage",
    )

    created_at: datetime = Field(
        default_factory=_utcnow,
        description="When the item was ingested (UTC)",
    )

    updated_at: datetime = Field(
        default_factory=_utcnow,
        description="When the item's stage last changed (UTC)",
    )


class AuditEntry(BaseModel):
    """Immutable record of one executed stage change.

    Audit entries are append-only: they are never updated or deleted.

    Attributes:
        id: Unique audit entry identifier (UUID4 string).
        item_id: The item whose stage changed.
        old_stage: Stage before the change.
        new_stage: Stage after the change.
        trigger_event: Free-form classifier of why the change happened.
        metadata: Structured context, preserved verbatim.
        created_at: When the change was committed (UTC).
        created_by: Optional identifier of who or what initiated the change.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    item_id: str = Field(..., min_length=1)
    old_stage: Stage
    new_stage: Stage
    trigger_event: str = Field(..., min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    created_by: Optional[str] = None

    @property
    def forced(self) -> bool:
        """Whether this entry was produced by a forced transition."""
        return bool(self.metadata.get("forced"))


class TransitionRequest(BaseModel):
    """Request to move one item to a new stage.

    Attributes:
        item_id: The item to transition.
        target_stage: Canonical target stage.
        trigger_event: Free-form classifier, e.g. "api_call",
            "system_process", "user_action".
        metadata: Optional structured context copied into the audit entry.
        actor: Optional identifier of who or what initiated the change.
    """

    item_id: str
    target_stage: Stage
    trigger_event: str
    metadata: Optional[Dict[str, Any]] = None
    actor: Optional[str] = None


class TransitionResult(BaseModel):
    """Outcome of a single transition attempt.

    Successful results carry the old and new stage and the identifier of
    the audit entry written. Failed results carry a human-readable error,
    an error kind, and for rejected edges the edge itself as
    old_stage/new_stage.
    """

    success: bool
    item_id: Optional[str] = None
    old_stage: Optional[Stage] = None
    new_stage: Optional[Stage] = None
    audit_entry_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[TransitionErrorKind] = None
    validation_errors: List[str] = Field(default_factory=list)

    @classmethod
    def failure(
        cls,
        item_id: Optional[str],
        error: str,
        error_kind: TransitionErrorKind,
        old_stage: Optional[Stage] = None,
        new_stage: Optional[Stage] = None,
        validation_errors: Optional[List[str]] = None,
    ) -> "TransitionResult":
        return cls(
            success=False,
            item_id=item_id,
            old_stage=old_stage,
            new_stage=new_stage,
            error=error,
            error_kind=error_kind,
            validation_errors=validation_errors or [],
        )


class ItemPage(BaseModel):
    """One page of items in a given stage."""

    items: List[Item]
    total_count: int = Field(..., ge=0)
    has_more: bool
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)


class ExistenceCheck(BaseModel):
    """Partition of candidate item identifiers into existing and missing."""

    valid: Set[str] = Field(default_factory=set)
    invalid: Set[str] = Field(default_factory=set)
