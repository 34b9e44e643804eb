"""Main FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI

from mev_bundler.api.health import router as health_router
from mev_bundler.api.opportunities import router as opportunities_router
from mev_bundler.config.settings import Settings, get_settings
from mev_bundler.engine import BundleConstructionEngine

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO"):
    """Configure root logging for the service process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_app(engine: Optional[BundleConstructionEngine] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        engine: Construction engine to serve; one is built from settings when omitted
        settings: Settings used to build the engine
    """
    engine = engine or BundleConstructionEngine(settings or get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Start the construction engine with the app and stop it on shutdown."""
        logger.info("Starting MEV bundle construction service")
        await engine.start()

        yield

        logger.info("Shutting down MEV bundle construction service")
        await engine.stop()

    app = FastAPI(
        title="MEV Bundle Construction API",
        description="Risk-aware bundle construction and scheduling for MEV opportunities",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    # Include API routers
    app.include_router(health_router, tags=["health"])
    app.include_router(opportunities_router, tags=["engine"])

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)

    uvicorn.run(
        create_app(settings=settings),
        host=settings.host,
        port=settings.port,
        log_level="info" if not settings.debug else "debug",
    )
