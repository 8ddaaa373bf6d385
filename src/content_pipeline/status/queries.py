"""Read-side queries over persisted status state.

StatusQueryService answers operational questions without mutating
anything: an item's audit history, paginated listings per stage, the
stage distribution, items stuck in processing stages, and bulk existence
checks. Every stage filter is expanded through the normalizer so rows
still holding a legacy spelling are counted under their canonical stage.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Collection, Dict, FrozenSet, Iterable, List, Optional

from src.content_pipeline.status.graph import PROCESSING_STAGES
from src.content_pipeline.status.models import (
    AuditEntry,
    ExistenceCheck,
    Item,
    ItemPage,
    Stage,
)
from src.content_pipeline.status.normalizer import (
    UnknownStageError,
    normalize,
    raw_values_for,
)
from src.content_pipeline.status.repository import ItemStore


logger = logging.getLogger(__name__)


DEFAULT_HISTORY_LIMIT = 50
DEFAULT_PAGE_SIZE = 50
DEFAULT_STUCK_THRESHOLD_HOURS = 24.0


class StatusQueryService:
    """Read-only status queries.

    Attributes:
        store: The item store to read from.
        processing_stages: Stages in which an item is considered to be
            actively worked on, for stuck_items().
    """

    def __init__(
        self,
        store: ItemStore,
        processing_stages: Iterable[Stage] = PROCESSING_STAGES,
    ):
        self.store = store
        self.processing_stages: FrozenSet[Stage] = frozenset(processing_stages)

    async def history(
        self,
        item_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> List[AuditEntry]:
        """Audit entries for an item, newest first.

        An unknown item has an empty history.

        Raises:
            ValueError: If limit is not positive.
        """
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        return await self.store.list_audit_entries(item_id, limit)

    async def list_by_stage(
        self,
        stage: Stage,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> ItemPage:
        """One page of items currently in stage.

        Items are ordered by most recently updated first. has_more is true
        exactly when further items exist beyond this page.

        Raises:
            ValueError: If page or page_size is not positive.
        """
        if page < 1:
            raise ValueError(f"page must be at least 1, got {page}")
        if page_size < 1:
            raise ValueError(f"page_size must be at least 1, got {page_size}")

        offset = (page - 1) * page_size
        items, total = await self.store.list_items_by_stage(
            raw_values_for(stage), offset, page_size
        )
        return ItemPage(
            items=items,
            total_count=total,
            has_more=offset + page_size < total,
            page=page,
            page_size=page_size,
        )

    async def stage_distribution(self) -> Dict[Stage, int]:
        """Item counts for every stage.

        Every Stage is present (zero when empty). Legacy spellings are
        added to their canonical stage's count. Stored values that cannot
        be normalized are logged and left out.
        """
        distribution: Dict[Stage, int] = {stage: 0 for stage in Stage}
        for raw_value, count in (await self.store.count_by_stage()).items():
            try:
                stage = normalize(raw_value)
            except UnknownStageError:
                logger.warning(
                    "Skipping unrecognized stage in distribution",
                    extra={"raw_value": raw_value, "count": count},
                )
                continue
            distribution[stage] += count
        return distribution

    async def stuck_items(
        self,
        threshold_hours: float = DEFAULT_STUCK_THRESHOLD_HOURS,
        now: Optional[datetime] = None,
    ) -> List[Item]:
        """Items in a processing stage not updated for threshold_hours.

        Args:
            threshold_hours: Minimum time since the last stage change.
            now: Reference time; defaults to the current UTC time.

        Returns:
            Matching items, oldest update first.

        Raises:
            ValueError: If threshold_hours is negative or not finite.
        """
        if not math.isfinite(threshold_hours) or threshold_hours < 0:
            raise ValueError(
                f"threshold_hours must be a finite non-negative number, "
                f"got {threshold_hours}"
            )

        reference = now or datetime.now(timezone.utc)
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=timezone.utc)
        try:
            cutoff = reference - timedelta(hours=threshold_hours)
        except OverflowError:
            # Threshold reaches past datetime.min; nothing can be that old
            return []

        raw_values = set()
        for stage in self.processing_stages:
            raw_values.update(raw_values_for(stage))

        if not raw_values:
            return []
        return await self.store.list_items_updated_before(raw_values, cutoff)

    async def check_items_exist(self, item_ids: Collection[str]) -> ExistenceCheck:
        """Partition item_ids into existing and missing identifiers."""
        candidates = set(item_ids)
        if not candidates:
            return ExistenceCheck()
        existing = await self.store.find_existing_ids(candidates)
        return ExistenceCheck(
            valid=candidates & existing,
            invalid=candidates - existing,
        )
