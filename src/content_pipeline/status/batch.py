"""All-or-nothing batches of stage transitions.

A batch applies its requests in order inside one storage transaction, each
validated against the state produced by the earlier requests in the same
batch. The first request that fails aborts the batch: the transaction is
rolled back and no item in the batch changes stage.
"""

import logging
from typing import List, Optional, Sequence

from src.content_pipeline.events.models import EventType, StatusEvent
from src.content_pipeline.status.models import TransitionRequest, TransitionResult
from src.content_pipeline.status.repository import StorageError
from src.content_pipeline.status.service import (
    StatusTransitionService,
    TransitionError,
    failure_result,
    storage_failure_result,
)


logger = logging.getLogger(__name__)


class BatchAbortError(Exception):
    """Raised when a batch is rolled back.

    Attributes:
        index: Position of the failing request in the batch. When the
            commit itself fails this is the last request.
        item_id: Item referenced by the failing request.
        result: Failed TransitionResult describing the cause.
    """

    def __init__(self, index: int, item_id: Optional[str], result: TransitionResult):
        self.index = index
        self.item_id = item_id
        self.result = result
        self.error_kind = result.error_kind
        super().__init__(
            f"Batch aborted at request {index} (item {item_id}): {result.error}"
        )


class BatchCoordinator:
    """Applies ordered transition batches atomically.

    Attributes:
        service: The transition service whose rules each request follows.
        max_batch_size: Largest accepted batch, or None for no limit.
    """

    def __init__(
        self,
        service: StatusTransitionService,
        max_batch_size: Optional[int] = None,
    ):
        self.service = service
        self.max_batch_size = max_batch_size

    async def apply_batch(
        self,
        requests: Sequence[TransitionRequest],
    ) -> List[TransitionResult]:
        """Apply every request, or none of them.

        Args:
            requests: Transition requests in application order.

        Returns:
            One successful result per request, in input order. An empty
            batch returns an empty list without touching storage.

        Raises:
            ValueError: If the batch exceeds max_batch_size.
            BatchAbortError: If any request fails; nothing was committed.
        """
        requests = list(requests)
        if not requests:
            return []

        if self.max_batch_size is not None and len(requests) > self.max_batch_size:
            raise ValueError(
                f"Batch of {len(requests)} requests exceeds the limit of "
                f"{self.max_batch_size}"
            )

        results: List[TransitionResult] = []
        index = 0

        try:
            async with self.service.store.transaction() as tx:
                for index, request in enumerate(requests):
                    try:
                        result = await self.service.apply_in_transaction(tx, request)
                    except TransitionError as e:
                        raise BatchAbortError(
                            index,
                            request.item_id,
                            failure_result(request, e),
                        ) from e
                    results.append(result)
        except BatchAbortError as e:
            await self._abort(e, len(requests))
            raise
        except StorageError as e:
            abort = BatchAbortError(
                index,
                requests[index].item_id,
                storage_failure_result(requests[index], e),
            )
            await self._abort(abort, len(requests))
            raise abort from e

        logger.info(
            "Status batch committed",
            extra={"batch_size": len(requests)},
        )
        for request, result in zip(requests, results):
            await self.service.publish_committed(result, request)

        return results

    async def _abort(self, error: BatchAbortError, batch_size: int) -> None:
        logger.warning(
            "Status batch rolled back",
            extra={
                "batch_size": batch_size,
                "index": error.index,
                "item_id": error.item_id,
                "error_kind": error.error_kind.value if error.error_kind else None,
                "error": error.result.error,
            },
        )
        await self.service.publish(
            StatusEvent(
                event_type=EventType.BATCH_ABORTED,
                item_id=error.item_id,
                details={
                    "index": error.index,
                    "batch_size": batch_size,
                    "error_kind": (
                        error.error_kind.value if error.error_kind else None
                    ),
                    "error": error.result.error,
                },
            )
        )
