from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import asyncio

from genbi.config import settings
from genbi.routers import datasets, health, storage
from genbi.core.database import init_db, close_db
from genbi.core.structured_logging import setup_logging, APP_VERSION
from genbi.core.errors import GenBIError
from genbi.core.errors.registry import error_registry
from genbi.core.errors.middleware import genbi_error_handler
from genbi.core.log_middleware import CorrelationMiddleware
from genbi.dependencies import get_provisioner

# Structured logging before any logger calls
setup_logging(log_dir=settings.log_directory, debug=settings.debug)

logger = logging.getLogger(__name__)

API_TITLE = "GenBI Ingest API"
API_DESCRIPTION = """
Upload tabular files (CSV, JSON, Excel), infer their column schema, store
them in object storage and get an instant preview sample back.
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("Starting %s v%s (storage=%s)", API_TITLE, APP_VERSION, settings.storage_backend)

    error_registry.load()

    # Thread pool for run_sync() / asyncio.to_thread()
    executor = ThreadPoolExecutor(max_workers=16)
    loop = asyncio.get_running_loop()
    loop.set_default_executor(executor)

    init_db()

    # Best effort: uploads re-check buckets on their own
    try:
        ready = await get_provisioner().ensure_buckets()
        logger.info("Storage buckets ready: %s", ready)
    except GenBIError as e:
        logger.error("Storage not configured: %s", e)

    yield

    logger.info("Shutting down %s...", API_TITLE)
    close_db()
    executor.shutdown(wait=False)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # request_id + correlation_id in every log line
    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(GenBIError, genbi_error_handler)

    # Catch-all handler so unhandled exceptions return JSON (not bare text)
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": {"code": "GBI-SYS-001", "message": "An unexpected error occurred."}},
        )

    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(datasets.router, prefix="/api/datasets", tags=["datasets"])
    app.include_router(storage.router, prefix="/api/storage", tags=["storage"])

    @app.get("/", tags=["health"])
    async def root():
        return {
            "name": API_TITLE,
            "version": APP_VERSION,
            "status": "running",
            "docs": {"swagger": "/docs", "redoc": "/redoc", "openapi": "/openapi.json"},
        }

    return app


app = create_app()
