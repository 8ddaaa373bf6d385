"""Content status tracking.

This module tracks content items through the production stages:
- discovered → idea_selected → script_generating → script_generated
- → script_approved → assets_ready → rendering → completed

Every stage change is validated against the status graph and recorded in
an append-only audit log in the same PostgreSQL transaction.
"""

from src.content_pipeline.status.models import (
    AuditEntry,
    ExistenceCheck,
    Item,
    ItemPage,
    Stage,
    TransitionErrorKind,
    TransitionRequest,
    TransitionResult,
)
from src.content_pipeline.status.graph import (
    PROCESSING_STAGES,
    STAGE_CATEGORIES,
    VALID_TRANSITIONS,
    allowed_next_stages,
    display_name,
    is_processing_stage,
    is_terminal_stage,
    is_valid_transition,
    transition_table,
)
from src.content_pipeline.status.normalizer import (
    LEGACY_ALIASES,
    UnknownStageError,
    normalize,
    raw_values_for,
)
from src.content_pipeline.status.repository import (
    ItemStore,
    PostgresItemStore,
    StorageError,
    StoreTransaction,
)
from src.content_pipeline.status.memory import InMemoryItemStore
from src.content_pipeline.status.service import (
    InvalidTransitionError,
    ItemNotFoundError,
    StatusTransitionService,
    StoredStageError,
    TransitionError,
    TransitionValidationError,
)
from src.content_pipeline.status.batch import BatchAbortError, BatchCoordinator
from src.content_pipeline.status.queries import StatusQueryService

__all__ = [
    # Models
    "AuditEntry",
    "ExistenceCheck",
    "Item",
    "ItemPage",
    "Stage",
    "TransitionErrorKind",
    "TransitionRequest",
    "TransitionResult",
    # Status graph
    "PROCESSING_STAGES",
    "STAGE_CATEGORIES",
    "VALID_TRANSITIONS",
    "allowed_next_stages",
    "display_name",
    "is_processing_stage",
    "is_terminal_stage",
    "is_valid_transition",
    "transition_table",
    # Normalizer
    "LEGACY_ALIASES",
    "UnknownStageError",
    "normalize",
    "raw_values_for",
    # Storage
    "InMemoryItemStore",
    "ItemStore",
    "PostgresItemStore",
    "StorageError",
    "StoreTransaction",
    # Services
    "BatchAbortError",
    "BatchCoordinator",
    "InvalidTransitionError",
    "ItemNotFoundError",
    "StatusQueryService",
    "StatusTransitionService",
    "StoredStageError",
    "TransitionError",
    "TransitionValidationError",
]
