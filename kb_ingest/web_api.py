"""FastAPI application for the knowledge base ingestion reconciler."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kb_ingest.api.routes import files
from kb_ingest.api.models.responses import HealthResponse
from kb_ingest.dependencies import apply_schema, build_controller
from kb_ingest.settings import load_settings
import asyncpg

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# ============================================================================
# LIFESPAN CONTEXT MANAGER
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("=" * 50)
    logger.info("Starting ingestion reconciler")
    logger.info("=" * 50)

    # Startup
    pool = None
    try:
        settings = load_settings()
        logger.info(f"Loaded settings: database={settings.database_name}")

        pool = await asyncpg.create_pool(
            settings.database_url, min_size=2, max_size=10, command_timeout=60
        )
        await apply_schema(pool)
        logger.info("Database connection successful")

    except Exception as e:
        logger.error(f"Startup error: {e}")
        if pool is not None:
            await pool.close()
        raise

    app.state.pool = pool
    app.state.controller = build_controller(settings, pool)

    result = await app.state.controller.refresh()
    if not result.ok:
        logger.warning(f"Initial refresh incomplete: {[e.message for e in result.errors]}")

    yield

    # Shutdown
    logger.info("Shutting down ingestion reconciler")
    app.state.controller = None
    await pool.close()


# ============================================================================
# CREATE FASTAPI APP
# ============================================================================

app = FastAPI(
    title="Knowledge Base Ingestion Reconciler",
    description="File ingestion status tracking and dashboard metrics",
    version="1.0.0",
    lifespan=lifespan
)

# ============================================================================
# CORS MIDDLEWARE
# ============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5174",  # Vite dev server
        "http://localhost:3000",  # Alternative dev port
        "http://127.0.0.1:5174",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# GLOBAL ERROR HANDLERS
# ============================================================================

@app.exception_handler(status.HTTP_500_INTERNAL_SERVER_ERROR)
async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle internal server errors."""
    logger.exception(f"Internal server error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "error": str(exc)}
    )


# ============================================================================
# HEALTH CHECK
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(request: Request) -> HealthResponse:
    """
    Health check endpoint.

    Returns:
        HealthResponse: Service status
    """
    db_connected = False
    pool = getattr(request.app.state, "pool", None)
    if pool is not None:
        try:
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            db_connected = True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")

    controller = getattr(request.app.state, "controller", None)
    stale = controller.stale_sources if controller else []

    return HealthResponse(
        status="healthy" if db_connected and not stale else "degraded",
        database_connected=db_connected,
        stale_sources=stale,
        version="1.0.0"
    )


# ============================================================================
# INCLUDE ROUTERS
# ============================================================================

app.include_router(files.router)


# ============================================================================
# ROOT ENDPOINT
# ============================================================================

@app.get("/", tags=["root"])
async def root() -> dict:
    """Root endpoint."""
    return {
        "message": "Knowledge Base Ingestion Reconciler API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "kb_ingest.web_api:app",
        host="0.0.0.0",
        port=8888,
        reload=True,
        log_level="info"
    )
