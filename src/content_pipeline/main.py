"""FastAPI application entry point for the content status service.

This module exposes the status services over HTTP for the pipeline's
workers and review UI. Raw stage strings from requests are normalized at
this boundary; the services below only see Stage values.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CollectorRegistry
from pydantic import BaseModel, Field

from src.content_pipeline.config import ContentPipelineSettings, get_settings
from src.content_pipeline.events.emitter import (
    EventEmitter,
    EventSinkType,
    create_event_emitter,
)
from src.content_pipeline.events.metrics import (
    StatusMetrics,
    generate_metrics_output,
    get_metrics,
)
from src.content_pipeline.status import graph
from src.content_pipeline.status.batch import BatchAbortError, BatchCoordinator
from src.content_pipeline.status.memory import InMemoryItemStore
from src.content_pipeline.status.models import (
    Stage,
    TransitionErrorKind,
    TransitionRequest,
    TransitionResult,
)
from src.content_pipeline.status.normalizer import UnknownStageError, normalize
from src.content_pipeline.status.queries import StatusQueryService
from src.content_pipeline.status.repository import (
    ItemStore,
    PostgresItemStore,
    StorageError,
)
from src.content_pipeline.status.service import (
    ItemNotFoundError,
    StatusTransitionService,
    StoredStageError,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


_ERROR_STATUS_CODES: Dict[TransitionErrorKind, int] = {
    TransitionErrorKind.NOT_FOUND: 404,
    TransitionErrorKind.INVALID_TRANSITION: 409,
    TransitionErrorKind.VALIDATION: 422,
    TransitionErrorKind.UNKNOWN_STAGE: 500,
    TransitionErrorKind.STORAGE_FAILURE: 503,
}


class ServiceContainer:
    """Explicitly wired services for one application instance.

    Attributes:
        settings: The application settings.
        store: The item store.
        event_emitter: The notifier injected into the transition service.
        metrics: Prometheus metrics, or None when the metrics sink is off.
        transitions: The transition service.
        batches: The batch coordinator.
        queries: The query service.
    """

    def __init__(
        self,
        settings: ContentPipelineSettings,
        store: ItemStore,
        event_emitter: EventEmitter,
        metrics: Optional[StatusMetrics] = None,
    ):
        self.settings = settings
        self.store = store
        self.event_emitter = event_emitter
        self.metrics = metrics
        self.transitions = StatusTransitionService(store, event_emitter)
        self.batches = BatchCoordinator(
            self.transitions,
            max_batch_size=settings.max_batch_size,
        )
        self.queries = StatusQueryService(store)

    async def startup(self) -> None:
        if isinstance(self.store, PostgresItemStore):
            await self.store.connect()

    async def shutdown(self) -> None:
        await self.event_emitter.close()
        if isinstance(self.store, PostgresItemStore):
            await self.store.disconnect()


def build_container(
    settings: ContentPipelineSettings,
    store: Optional[ItemStore] = None,
    registry: Optional[CollectorRegistry] = None,
) -> ServiceContainer:
    """Wire the status services from settings.

    Args:
        settings: Validated settings.
        store: Store to use. If None, a PostgresItemStore when database_url
               is set, otherwise an InMemoryItemStore.
        registry: Prometheus registry for the metrics sink. If None, the
                  default registry is used.
    """
    if store is None:
        if settings.database_url:
            store = PostgresItemStore(
                settings.database_url,
                min_pool_size=settings.db_min_pool_size,
                max_pool_size=settings.db_max_pool_size,
            )
        else:
            logger.warning(
                "No database_url configured, using the in-memory item store"
            )
            store = InMemoryItemStore()

    metrics = None
    if EventSinkType.METRICS in settings.sink_types:
        metrics = get_metrics(registry)

    event_emitter = create_event_emitter(settings.sink_types, metrics=metrics)
    return ServiceContainer(settings, store, event_emitter, metrics)


def _redact_secret(value: str, visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters."""
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: ContentPipelineSettings) -> None:
    """Log configuration values with secrets redacted."""
    database_url = (
        _redact_secret(settings.database_url, visible_chars=13)
        if settings.database_url
        else "(in-memory)"
    )
    logger.info("Content pipeline configuration:")
    logger.info(f"  Database URL: {database_url}")
    logger.info(
        f"  DB Pool Size: {settings.db_min_pool_size}-{settings.db_max_pool_size}"
    )
    logger.info(f"  Stuck Threshold Hours: {settings.stuck_threshold_hours}")
    logger.info(f"  History Limit: {settings.history_limit}")
    logger.info(f"  Page Size: {settings.page_size} (max {settings.max_page_size})")
    logger.info(f"  Max Batch Size: {settings.max_batch_size}")
    logger.info(f"  Event Sinks: {settings.event_sinks}")
    logger.info(f"  Log Level: {settings.log_level}")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown.

    Builds the service container from settings unless one was passed to
    create_app(), connects storage, and closes everything on shutdown.
    """
    logger.info("Content status service starting up...")

    container: Optional[ServiceContainer] = app.state.container
    if container is None:
        settings = get_settings()
        container = build_container(settings)
        app.state.container = container

    logging.getLogger().setLevel(container.settings.log_level)
    _log_configuration(container.settings)

    await container.startup()
    logger.info("Content status service started successfully")

    yield

    logger.info("Content status service shutting down...")
    await container.shutdown()
    logger.info("Content status service shutdown complete")


# -----------------------------------------------------------------------------
# Request bodies
# -----------------------------------------------------------------------------


class TransitionBody(BaseModel):
    target_stage: str
    trigger_event: str = "api_call"
    metadata: Optional[Dict[str, Any]] = None
    actor: Optional[str] = None


class ForceTransitionBody(BaseModel):
    target_stage: str
    reason: str
    actor: Optional[str] = None


class BatchTransitionBody(TransitionBody):
    item_id: str


class BatchBody(BaseModel):
    transitions: List[BatchTransitionBody] = Field(default_factory=list)


class ExistsBody(BaseModel):
    item_ids: List[str] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------


def get_container(request: Request) -> ServiceContainer:
    container = request.app.state.container
    if container is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return container


def get_transition_service(
    container: ServiceContainer = Depends(get_container),
) -> StatusTransitionService:
    return container.transitions


def get_batch_coordinator(
    container: ServiceContainer = Depends(get_container),
) -> BatchCoordinator:
    return container.batches


def get_query_service(
    container: ServiceContainer = Depends(get_container),
) -> StatusQueryService:
    return container.queries


def _parse_stage(raw_value: str) -> Stage:
    try:
        return normalize(raw_value)
    except UnknownStageError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


def _result_response(result: TransitionResult) -> JSONResponse:
    status_code = 200
    if not result.success:
        status_code = _ERROR_STATUS_CODES.get(result.error_kind, 500)
    return JSONResponse(
        status_code=status_code,
        content=result.model_dump(mode="json"),
    )


def _stage_list(stages) -> List[str]:
    return sorted(stage.value for stage in stages)


# -----------------------------------------------------------------------------
# Application
# -----------------------------------------------------------------------------


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        container: Pre-wired services. If None, services are built from
                   environment settings during startup.
    """
    app = FastAPI(
        title="Content Status Pipeline",
        description="Validated, audited stage tracking for content items",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.container = container

    @app.get("/health")
    async def health():
        """Liveness probe endpoint."""
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready(container: ServiceContainer = Depends(get_container)):
        """Readiness probe endpoint.

        Returns 503 when the item store is not reachable.
        """
        healthy = await container.store.health_check()
        database_status = "healthy" if healthy else "unhealthy"
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "ready" if healthy else "not_ready",
                "dependencies": {"database": database_status},
            },
        )

    @app.get("/metrics")
    async def metrics(container: ServiceContainer = Depends(get_container)):
        """Prometheus metrics endpoint.

        Refreshes the items-by-stage gauge from storage before rendering.
        """
        if container.metrics is None:
            return Response(content=b"", media_type="text/plain")
        try:
            distribution = await container.queries.stage_distribution()
            container.metrics.set_stage_distribution(distribution)
        except StorageError as e:
            logger.warning(
                "Failed to refresh stage distribution gauge",
                extra={"error": str(e)},
            )
        return Response(
            content=generate_metrics_output(container.metrics.registry),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    @app.post("/items/{item_id}/transitions")
    async def transition_item(
        item_id: str,
        body: TransitionBody,
        service: StatusTransitionService = Depends(get_transition_service),
    ):
        """Move an item to a new stage if the status graph allows it."""
        result = await service.transition(
            item_id,
            _parse_stage(body.target_stage),
            trigger_event=body.trigger_event,
            metadata=body.metadata,
            actor=body.actor,
        )
        return _result_response(result)

    @app.post("/items/{item_id}/force-transition")
    async def force_transition_item(
        item_id: str,
        body: ForceTransitionBody,
        service: StatusTransitionService = Depends(get_transition_service),
    ):
        """Operator override: move an item regardless of the status graph."""
        result = await service.force_transition(
            item_id,
            _parse_stage(body.target_stage),
            reason=body.reason,
            actor=body.actor,
        )
        return _result_response(result)

    @app.get("/items/{item_id}/allowed-transitions")
    async def allowed_transitions(
        item_id: str,
        service: StatusTransitionService = Depends(get_transition_service),
    ):
        try:
            allowed = await service.allowed_next_stages(item_id)
        except ItemNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message) from e
        except StoredStageError as e:
            raise HTTPException(status_code=500, detail=e.message) from e
        except StorageError as e:
            raise HTTPException(status_code=503, detail=e.message) from e
        return {"item_id": item_id, "allowed": _stage_list(allowed)}

    @app.get("/items/{item_id}/history")
    async def item_history(
        item_id: str,
        limit: Optional[int] = Query(default=None, ge=1),
        container: ServiceContainer = Depends(get_container),
    ):
        """Audit history for an item, newest first."""
        settings = container.settings
        limit = min(limit or settings.history_limit, settings.max_history_limit)
        try:
            entries = await container.queries.history(item_id, limit=limit)
        except StorageError as e:
            raise HTTPException(status_code=503, detail=e.message) from e
        return {
            "item_id": item_id,
            "entries": [entry.model_dump(mode="json") for entry in entries],
        }

    @app.post("/transitions/batch")
    async def batch_transitions(
        body: BatchBody,
        coordinator: BatchCoordinator = Depends(get_batch_coordinator),
    ):
        """Apply a list of transitions atomically."""
        requests: List[TransitionRequest] = []
        for index, item in enumerate(body.transitions):
            try:
                target = normalize(item.target_stage)
            except UnknownStageError as e:
                raise HTTPException(
                    status_code=422,
                    detail={"index": index, "item_id": item.item_id, "error": str(e)},
                ) from e
            requests.append(
                TransitionRequest(
                    item_id=item.item_id,
                    target_stage=target,
                    trigger_event=item.trigger_event,
                    metadata=item.metadata,
                    actor=item.actor,
                )
            )

        try:
            results = await coordinator.apply_batch(requests)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        except BatchAbortError as e:
            return JSONResponse(
                status_code=_ERROR_STATUS_CODES.get(e.error_kind, 500),
                content={
                    "error": str(e),
                    "index": e.index,
                    "item_id": e.item_id,
                    "result": e.result.model_dump(mode="json"),
                },
            )
        return {"results": [result.model_dump(mode="json") for result in results]}

    @app.get("/items/stuck")
    async def stuck_items(
        threshold_hours: Optional[float] = Query(
            default=None, ge=0, allow_inf_nan=False
        ),
        container: ServiceContainer = Depends(get_container),
    ):
        """Items in a processing stage with no stage change for a while."""
        if threshold_hours is None:
            threshold_hours = container.settings.stuck_threshold_hours
        try:
            items = await container.queries.stuck_items(threshold_hours)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        except StorageError as e:
            raise HTTPException(status_code=503, detail=e.message) from e
        return {
            "threshold_hours": threshold_hours,
            "items": [item.model_dump(mode="json") for item in items],
        }

    @app.post("/items/exists")
    async def items_exist(
        body: ExistsBody,
        queries: StatusQueryService = Depends(get_query_service),
    ):
        try:
            check = await queries.check_items_exist(body.item_ids)
        except StorageError as e:
            raise HTTPException(status_code=503, detail=e.message) from e
        return {"valid": sorted(check.valid), "invalid": sorted(check.invalid)}

    @app.get("/stages/graph")
    async def stage_graph():
        """The published status graph."""
        return {
            "transitions": graph.transition_table(),
            "terminal": _stage_list(s for s in Stage if graph.is_terminal_stage(s)),
            "processing": _stage_list(graph.PROCESSING_STAGES),
            "display_names": {s.value: graph.display_name(s) for s in Stage},
        }

    @app.get("/stages/distribution")
    async def stage_distribution(
        queries: StatusQueryService = Depends(get_query_service),
    ):
        try:
            distribution = await queries.stage_distribution()
        except StorageError as e:
            raise HTTPException(status_code=503, detail=e.message) from e
        return {stage.value: count for stage, count in distribution.items()}

    @app.get("/stages/{stage}/items")
    async def items_in_stage(
        stage: str,
        page: int = Query(default=1, ge=1),
        page_size: Optional[int] = Query(default=None, ge=1),
        container: ServiceContainer = Depends(get_container),
    ):
        """One page of items currently in a stage, most recently updated first."""
        settings = container.settings
        page_size = min(page_size or settings.page_size, settings.max_page_size)
        try:
            result = await container.queries.list_by_stage(
                _parse_stage(stage), page=page, page_size=page_size
            )
        except StorageError as e:
            raise HTTPException(status_code=503, detail=e.message) from e
        return result.model_dump(mode="json")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # For local development, load settings to get host/port
    dev_settings = get_settings()
    uvicorn.run(
        "src.content_pipeline.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
        reload=True,
    )
