"""FastAPI application setup"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from progress_engine import __version__
from progress_engine.api.routes import router
from progress_engine.api.middleware import setup_cors, setup_rate_limiting
from progress_engine.config import LOG_LEVEL, STORAGE_BACKEND, validate_config
from progress_engine.observability.metrics import init_metrics
from progress_engine.observability.metrics_middleware import setup_metrics_middleware
from progress_engine.services.container import create_store, init_container, reset_container

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO)
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application"""
    # Startup
    logger.info("Starting progress engine API...")
    validate_config()

    store = create_store()
    await store.open()
    if STORAGE_BACKEND == "postgres":
        await store.apply_schema()
    logger.info(f"Storage opened ({STORAGE_BACKEND})")

    container = init_container(store)
    # Load the achievement catalog now so a bad catalog fails startup
    container.progress_service
    init_metrics()

    yield

    # Shutdown
    logger.info("Shutting down progress engine API...")
    await store.close()
    reset_container()
    logger.info("Storage closed")


def create_api_application() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Progress Engine API",
        description="Points, streaks, achievements and impact leaderboard",
        version=__version__,
        lifespan=lifespan
    )

    # Setup middleware
    setup_cors(app)
    setup_rate_limiting(app)
    setup_metrics_middleware(app)

    # Include routes
    app.include_router(router)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)}
        )

    logger.info("FastAPI application created")

    return app


app = create_api_application()
