"""
FastAPI Application Module

Application factory wiring the telephony webhooks and the management
API onto one set of engine components.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, Optional, Type

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import Settings, get_settings
from ..errors import (
    AudioJobNotFound,
    AudioJobStateError,
    DuplicateCall,
    ExecutionNotFound,
    IVRError,
    NodeNotFound,
    NodeValidationError,
    RevisionConflict,
    SynthesisError,
    TenantNotResolved,
    UploadError,
    WorkflowInvalid,
    WorkflowNotFound,
)
from ..logging import configure_logging
from .dependencies import Components, build_components
from .routes import router as management_router
from .webhooks import router as webhooks_router

logger = structlog.get_logger(__name__)


ERROR_STATUS: Dict[Type[IVRError], int] = {
    WorkflowNotFound: 404,
    NodeNotFound: 404,
    ExecutionNotFound: 404,
    AudioJobNotFound: 404,
    TenantNotResolved: 404,
    RevisionConflict: 409,
    DuplicateCall: 409,
    AudioJobStateError: 409,
    NodeValidationError: 422,
    WorkflowInvalid: 422,
    SynthesisError: 502,
    UploadError: 502,
}


def status_for(exc: IVRError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return 400


# =============================================================================
# Exception Handlers
# =============================================================================


async def ivr_exception_handler(request: Request, exc: IVRError):
    """Map engine errors onto HTTP status codes."""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.code, message=exc.message)

    return JSONResponse(
        status_code=status_code,
        content={**exc.to_dict(), "timestamp": datetime.utcnow().isoformat()},
    )


# =============================================================================
# Background maintenance
# =============================================================================


async def run_maintenance(components: Components) -> None:
    """End stale executions and drop old audio jobs on a fixed interval."""
    interval = components.settings.execution.stale_cleanup_interval_s
    while True:
        await asyncio.sleep(interval)
        try:
            await components.store.cleanup_stale()
            components.audio_queue.cleanup_old_jobs()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("maintenance_failed", error=str(e))


# =============================================================================
# Application Factory
# =============================================================================


def create_app(
    settings: Optional[Settings] = None,
    components: Optional[Components] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings (environment when omitted)
        components: Pre-built components, mainly for tests

    Returns:
        Configured FastAPI application
    """
    settings = settings or (components.settings if components else get_settings())
    components = components or build_components(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level, settings.log_format)
        logger.info("service_starting", service=settings.service_name, version=__version__)

        maintenance = asyncio.create_task(run_maintenance(components))

        yield

        logger.info("service_stopping", service=settings.service_name)
        maintenance.cancel()
        try:
            await maintenance
        except asyncio.CancelledError:
            pass
        await components.close()

    app = FastAPI(
        title="IVR Workflow Engine",
        description="Executes visual IVR call flows against telephony webhooks",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.components = components

    app.add_exception_handler(IVRError, ivr_exception_handler)

    app.include_router(webhooks_router)
    app.include_router(management_router)

    return app

