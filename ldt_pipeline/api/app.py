"""
FastAPI application for the LDT ingestion pipeline.

Routes:
    POST /api/v1/ldt/messages                               webhook
    GET  /api/v1/admin/quarantine                           list entries
    GET  /api/v1/admin/quarantine/statistics                counts per status
    GET  /api/v1/admin/quarantine/{entry_id}                one entry
    POST /api/v1/admin/quarantine/{entry_id}/assign-owner   forced retry
    GET  /metrics, GET /health
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response

from ldt_pipeline import __version__
from ldt_pipeline.api.endpoints import admin_router, ldt_router
from ldt_pipeline.config.settings import PipelineSettings, load_settings
from ldt_pipeline.core.errors import (
    EntryNotRetryable,
    MessageIdConflict,
    OwnerNotFound,
    QuarantineEntryNotFound,
    StoreFailure,
)
from ldt_pipeline.ingest.factory import PipelineComponents, build_components
from ldt_pipeline.observability import metrics
from ldt_pipeline.observability.logger import configure_logging, get_logger
from ldt_pipeline.utils.validation import ValidationError

logger = get_logger(__name__)

API_PREFIX = "/api/v1"


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map pipeline errors to HTTP responses.

    StoreFailure answers 503 so the broker redelivers later. A
    MessageIdConflict answers 409; redelivering the same request cannot
    succeed.
    """

    @app.exception_handler(StoreFailure)
    async def store_failure_handler(request: Request, exc: StoreFailure):
        logger.error(f"Store unavailable: {exc}", extra={"path": request.url.path})
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Store unavailable, retry later")

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(QuarantineEntryNotFound)
    async def entry_not_found_handler(request: Request, exc: QuarantineEntryNotFound):
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(OwnerNotFound)
    async def owner_not_found_handler(request: Request, exc: OwnerNotFound):
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(EntryNotRetryable)
    async def not_retryable_handler(request: Request, exc: EntryNotRetryable):
        return _error(status.HTTP_409_CONFLICT, str(exc))

    @app.exception_handler(MessageIdConflict)
    async def message_id_conflict_handler(request: Request, exc: MessageIdConflict):
        logger.warning(str(exc), extra={"message_id": exc.message_id, "idempotency_key": exc.idempotency_key})
        return _error(status.HTTP_409_CONFLICT, str(exc))


def create_app(
    components: PipelineComponents | None = None,
    settings: PipelineSettings | None = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        components: Prebuilt pipeline (tests pass an in-memory one); built
            from settings at startup when None
        settings: Settings used to build components (loaded from the
            environment when None)

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = components is None
        if owned:
            resolved = settings or load_settings()
            configure_logging(resolved.log_level, resolved.log_format)
            app.state.components = build_components(resolved)
        else:
            app.state.components = components

        logger.info("LDT ingestion API started", extra={"version": __version__})
        yield

        if owned:
            app.state.components.close()
        logger.info("LDT ingestion API stopped")

    app = FastAPI(
        title="LDT Ingestion Pipeline",
        description="Webhook and quarantine administration for LDT lab messages",
        version=__version__,
        lifespan=lifespan,
    )
    if components is not None:
        app.state.components = components

    register_exception_handlers(app)
    app.include_router(ldt_router, prefix=f"{API_PREFIX}/ldt", tags=["ldt"])
    app.include_router(admin_router, prefix=f"{API_PREFIX}/admin", tags=["admin"])

    @app.get("/metrics", include_in_schema=False)
    async def metrics_endpoint():
        return Response(content=metrics.generate_metrics(), media_type=metrics.get_content_type())

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok", "version": __version__}

    return app
