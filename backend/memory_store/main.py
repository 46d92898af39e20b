"""FastAPI application entry point."""

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from memory_store.auth import TokenVerifier
from memory_store.config import get_settings
from memory_store.db.database import close_database, init_database
from memory_store.errors import StoreError, ValidationError

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown."""
    # Startup
    await init_database(settings.database_path, busy_timeout_ms=settings.busy_timeout_ms)
    if not settings.api_tokens and not settings.allow_anonymous_writes:
        logger.warning("No MEMORY_API_TOKENS configured; all writes will be rejected")

    yield

    # Shutdown
    await close_database()


app = FastAPI(
    title="Agent Memory Store",
    description="Tasks, runs, append-only run events and a versioned knowledge library",
    version="0.1.0",
    lifespan=lifespan,
)

app.state.token_verifier = TokenVerifier(
    settings.api_tokens, allow_anonymous=settings.allow_anonymous_writes
)

# CORS middleware - allow any localhost port for local dashboards
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=settings.cors_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Map typed store errors to stable status codes and bodies."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    else:
        logger.info(
            "%s %s rejected (%s): %s",
            request.method,
            request.url.path,
            exc.code,
            exc.detail,
        )
    return JSONResponse(
        status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed requests with the same body as store-level validation."""
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )
    return await store_error_handler(request, ValidationError(problems or "Invalid request"))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected failures without exposing internals to the caller."""
    logger.exception("Unhandled error in %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"code": "internal_error", "detail": "Internal server error"},
    )


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Import and include routers after app is created to avoid circular imports
from memory_store.api import library, runs, tasks  # noqa: E402

app.include_router(tasks.router, prefix="/api/v1", tags=["tasks"])
app.include_router(runs.router, prefix="/api/v1", tags=["runs"])
app.include_router(library.router, prefix="/api/v1", tags=["library"])
