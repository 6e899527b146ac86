"""
FastAPI Application Entry Point
"""
import os
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crm_dialer.api.v1 import dependencies
from crm_dialer.api.v1.routes import api_router
from crm_dialer.core.config import get_settings
from crm_dialer.domain.errors import DialerError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Startup:
    - Validates provider configurations
    - Builds the dialer runtime (Supabase store, Twilio gateway, Redis publisher)
    - Starts session garbage collection

    Shutdown:
    - Stops session garbage collection
    - Closes the Redis connection
    """
    logger.info("Starting CRM Dialer...")

    environment = os.getenv("ENVIRONMENT", "development")
    strict_validation = environment == "production"

    try:
        from crm_dialer.core.validation import validate_providers_on_startup
        validate_providers_on_startup(strict=strict_validation)
    except RuntimeError as e:
        if strict_validation:
            logger.error(f"Startup failed: {e}")
            raise
        logger.warning(f"Configuration warnings (non-fatal in {environment}): {e}")

    runtime = None
    try:
        from crm_dialer.core.runtime import build_runtime
        runtime = await build_runtime(dependencies.get_supabase(), settings=get_settings())
        await runtime.start()
        dependencies.set_runtime(runtime)
    except Exception as e:
        if strict_validation:
            raise
        logger.warning(f"Dialer runtime not started: {e}")

    logger.info("CRM Dialer started")

    yield

    logger.info("Shutting down CRM Dialer...")
    if runtime is not None:
        try:
            await runtime.shutdown()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")
        dependencies.set_runtime(None)
    logger.info("CRM Dialer shutdown complete")


app = FastAPI(
    title="CRM Dialer",
    description="Power dialer orchestration for the mortgage CRM",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DialerError)
async def dialer_error_handler(request: Request, exc: DialerError):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.kind,
            "message": exc.message,
            "details": exc.details,
        },
    )


app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    return {"message": "CRM Dialer API", "status": "running"}


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Reports whether the dialer runtime is up, Redis publishing is enabled,
    how many dialing sessions are live and how many calls wait for an agent.
    """
    health = {"status": "healthy"}

    try:
        runtime = dependencies.get_runtime()
        health["runtime"] = "running"
        health["redis_enabled"] = runtime.publisher.enabled
        health["active_sessions"] = runtime.sessions.get_active_session_count()
        health["queue_depth"] = await runtime.queue.get_queue_depth()
        health["status_buffer_keys"] = runtime.ingest.buffer.key_count
    except Exception as e:
        health["runtime"] = f"unavailable: {e}"

    return health


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
