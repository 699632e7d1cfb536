"""
Main FastAPI application entry point.

Creates the arcpay API, registers the routers, and runs the maintenance
sweep and the restart recovery of in-flight jobs for the app's lifetime.

    uvicorn arcpay.main:app
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from dotenv import load_dotenv
from fastapi import FastAPI

# Load environment variables from .env file
load_dotenv()
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config.networks import as_dict
from .config.settings import settings
from .container import get_container
from .links.routes import router as links_router
from .merchants.routes import router as merchants_router
from .orchestrator.routes import router as payments_router
from .subscriptions.routes import router as subscriptions_router

SERVICE_NAME = "arcpay-backend"

logger = logging.getLogger(__name__)


def configure_logging(level: str = settings.log_level) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Resume interrupted jobs, run the sweep, and release clients on shutdown."""
    container = get_container()
    await container.orchestrator.resume_incomplete()

    sweep_task = None
    if container.settings.maintenance_enabled:
        sweep_task = asyncio.create_task(container.sweep.run_forever())
    try:
        yield
    finally:
        if sweep_task is not None:
            sweep_task.cancel()
            await asyncio.gather(sweep_task, return_exceptions=True)
        await container.close()


def create_app(run_background: bool = True) -> FastAPI:
    """Create and configure the main FastAPI application.

    Args:
        run_background: Attach the lifespan that resumes jobs and runs the sweep

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="arcpay API",
        description="Cross-chain stablecoin payments settled on Arc",
        version=__version__,
        lifespan=lifespan if run_background else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint for monitoring and load balancers."""
        return JSONResponse(
            content={
                "status": "healthy",
                "service": SERVICE_NAME,
                "version": __version__,
            }
        )

    @app.get("/config")
    async def network_config() -> dict:
        """Active chain, contract and bridge configuration."""
        return as_dict(get_container().network)

    app.include_router(payments_router)
    app.include_router(merchants_router)
    app.include_router(links_router)
    app.include_router(subscriptions_router)

    return app


configure_logging()

# Create the application instance
app = create_app()
