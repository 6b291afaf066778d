"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from patrulha.api.v1 import router as v1_router
from patrulha.core.config import settings
from patrulha.core.errors import setup_error_handlers
from patrulha.core.middleware import MetricsMiddleware, RequestIDMiddleware

logger = logging.getLogger(__name__)

CORS_ALLOWED_METHODS = ["POST", "GET", "OPTIONS", "PUT", "DELETE"]
CORS_ALLOWED_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting property import service...")
    yield
    logger.info("Shutting down property import service...")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    configure_logging()

    app = FastAPI(
        title="Patrulha Rural Import API",
        description="""
Rural property CSV import for the community patrol unit.

## Features
- **Analyze**: separator detection, header-to-field suggestions, sample rows
- **Import**: row-by-row import streamed as newline-delimited JSON events
- **Diagnose**: dry-run validation of every row

## Error Codes
- `AUTH_REQUIRED`, `AUTH_INVALID_TOKEN`, `AUTH_FORBIDDEN`: Authentication
- `IMPORT_EMPTY_INPUT`, `IMPORT_MISSING_MAPPING`, `IMPORT_INVALID_MAPPING`: Import setup
- Row errors (in the stream): `MISSING_FIELDS`, `INVALID_COORDINATES`,
  `DATABASE_ERROR`, `CRITICAL_ERROR`
        """.strip(),
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/docs" if settings.environment == "development" else None,
        redoc_url="/api/redoc" if settings.environment == "development" else None,
        openapi_tags=[
            {"name": "health", "description": "Health checks and metrics"},
            {"name": "import", "description": "Property CSV analyze, import and diagnose"},
        ],
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=CORS_ALLOWED_METHODS,
        allow_headers=CORS_ALLOWED_HEADERS,
        expose_headers=["X-Request-ID", "X-Import-Session-ID"],
    )

    # Metrics middleware (collect metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    # Request ID middleware (added last so it runs first on requests)
    app.add_middleware(RequestIDMiddleware)

    # Error handlers
    setup_error_handlers(app)

    # API routes
    app.include_router(v1_router, prefix="/api/v1")

    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""
    uvicorn.run(
        "patrulha.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
