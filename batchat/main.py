"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from batchat.config import settings
from batchat.api.routes import router as api_router
from batchat.core.store import DocumentStore, InMemoryDocumentStore
from batchat.core.uploads import HttpBlobUploader

logger = logging.getLogger(__name__)


async def build_store() -> DocumentStore:
    """Build the DocumentStore adapter selected by ``store_backend``."""
    if settings.store_backend == "sql":
        from batchat.db.database import create_engine
        from batchat.db.sql_store import SqlDocumentStore

        store = SqlDocumentStore(create_engine(settings.database_url, echo=settings.debug))
        await store.initialize()
        return store
    if settings.store_backend != "memory":
        raise ValueError(f"Unknown store backend: {settings.store_backend!r}")
    return InMemoryDocumentStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}, store: {settings.store_backend}")

    # Tests may install their own store before startup
    if getattr(app.state, "store", None) is None:
        app.state.store = await build_store()
    if getattr(app.state, "uploader", None) is None:
        app.state.uploader = HttpBlobUploader()

    yield

    # Shutdown
    logger.info("Shutting down...")
    await app.state.store.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Real-time messaging core: conversations, DMs, chat lists and search.",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routes
    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "batchat.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
