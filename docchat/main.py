from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from docchat.config.logging import setup_logging
from docchat.config.settings import settings
from docchat.v1.core.exceptions import (
    DocChatException,
    RequestContextMiddleware,
    docchat_exception_handler,
    general_exception_handler,
    http_exception_handler,
)
from docchat.v1.core.registries import job_registry, pipeline_registry
from docchat.v1.events.routes import router as events_router
from docchat.v1.healthz import router as health_router
from docchat.v1.infra.jobs.routes import router as jobs_router
from docchat.v1.webhooks.routes import router as webhooks_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    # Initialize structured logging
    setup_logging()

    app = FastAPI(
        title=settings.app_name,
        description="Background job engine with signed webhook delivery",
        version=settings.version,
        debug=settings.debug,
        # All endpoints live under the /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(DocChatException, docchat_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(events_router, prefix="/v1")
    app.include_router(webhooks_router, prefix="/v1")

    # Freeze registries in non-development environments to prevent runtime modifications
    if settings.environment != "development":
        job_registry.freeze()
        pipeline_registry.freeze()

    return app


# Create the app instance
app = create_app()


def run() -> None:
    """Entry point for the docchat-api script."""
    import uvicorn

    uvicorn.run(
        "docchat.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
