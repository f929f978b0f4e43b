"""FastAPI application for the Mission Control memory graph.

Serves the load / save / publish contract from an agent workspace, plus a
view endpoint that runs the whole pipeline server-side.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mission_control import __version__
from mission_control.api.routes import health_router, router
from mission_control.config import Settings, settings
from mission_control.storage.graph_store import GraphStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifespan - startup and shutdown."""
    store: GraphStore = app.state.store
    logger.info("Starting Mission Control memory graph API...")
    logger.info(f"Workspace: {store.settings.workspace_dir}")
    if not store.settings.workspace_dir.is_dir():
        logger.warning("Workspace directory does not exist yet; it is created on first save")

    yield

    logger.info("Shutting down Mission Control memory graph API...")
    await store.close()


def create_app(config: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or settings
    app = FastAPI(
        title="Mission Control Memory Graph",
        description="Memory graph load/save/publish and view pipeline",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.store = GraphStore(config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix=config.api_prefix)
    app.include_router(health_router)

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "mission_control.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
    )
