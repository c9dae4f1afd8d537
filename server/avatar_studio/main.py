"""FastAPI application entrypoint for the avatar studio."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import settings
from .errors import (
    AggregateFailure,
    ConfigurationError,
    ErrorClass,
    InvalidRequestError,
    PipelineError,
    ProviderError,
)
from .routers import avatars, images
from .services.container import ServiceContainer, build_container

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


def _status_for(exc: PipelineError) -> int:
    if isinstance(exc, InvalidRequestError):
        return 400
    if isinstance(exc, ConfigurationError):
        return 503
    if isinstance(exc, (AggregateFailure, ProviderError)) and exc.classification is ErrorClass.TERMINAL:
        return 402
    return 500


async def _pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    status = _status_for(exc)
    if status >= 500:
        logger.error("Request to %s failed: %s", request.url.path, exc)
    else:
        logger.warning("Request to %s rejected: %s", request.url.path, exc)
    return JSONResponse(status_code=status, content={"error": str(exc)})


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()) if part != 'body')}: {error.get('msg')}"
        for error in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": details or "Invalid request"})


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Instantiate and configure the FastAPI application.

    Tests pass a prebuilt ``container``; otherwise one is wired from the
    environment when the app starts.
    """

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        services = container or build_container(settings)
        application.state.services = services
        try:
            yield
        finally:
            if container is None:
                await services.aclose()

    application = FastAPI(
        title="Coach Avatar Studio",
        description="Generates stylised coach avatars and user images through an external model provider.",
        version="0.1.0",
        lifespan=lifespan,
    )
    if container is not None:
        application.state.services = container

    application.add_exception_handler(PipelineError, _pipeline_error_handler)
    application.add_exception_handler(RequestValidationError, _validation_error_handler)
    application.add_exception_handler(Exception, _unhandled_error_handler)
    application.include_router(avatars.router)
    application.include_router(images.router)

    @application.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
