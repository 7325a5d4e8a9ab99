"""Application factory and CLI entry point.

``create_app()`` builds the FastAPI application with:
  - Lifespan handler that loads the question bank, the crisis classifier
    and the storage backend once and builds the engine registry
  - CORS middleware
  - Global exception handlers (SDK ValueError -> 404/409/410/503/400)
  - All API routes mounted under ``/api/v1``
  - A ``/health`` endpoint for readiness probes

The ``cli()`` function is the ``intake-server`` console-script entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from intake_db.backend import SqlStorageBackend
from intake_db.engine import dispose_engine, get_engine
from intake_engine.crisis import KeywordCrisisClassifier
from intake_engine.errors import MutationError
from intake_engine.question_bank import QuestionBank
from intake_engine.remote import GraphQLClient
from intake_engine.storage import InMemoryBackend, SessionStore

from intake_server.config import ServerSettings, load_settings
from intake_server.errors import (
    generic_error_handler,
    mutation_error_handler,
    value_error_handler,
)
from intake_server.registry import EngineRegistry
from intake_server.routes import register_routes

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Lifespan: runs once at startup/shutdown
# ------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialise shared resources at startup, tear down on shutdown.

    Startup:
      1. Load the question bank and crisis keywords
      2. Build the session store over the configured backend
      3. Build the GraphQL client when an endpoint is configured
      4. Stash everything on ``app.state`` for dependency injection

    Shutdown:
      1. Flush pending form auto-saves
      2. Close the GraphQL client and dispose the database pool
    """
    settings: ServerSettings = app.state.settings

    bank = QuestionBank(settings.question_bank_path)
    bank.load()
    classifier = KeywordCrisisClassifier.from_yaml(settings.crisis_keywords_path)

    if settings.storage_backend == "sql":
        backend = SqlStorageBackend()
    else:
        backend = InMemoryBackend()
    store = SessionStore(backend)
    logger.info("Session store ready (backend=%s)", settings.storage_backend)

    remote = None
    if settings.graphql_url:
        remote = GraphQLClient(settings.graphql_url, timeout=settings.graphql_timeout)
        logger.info("GraphQL client configured")

    registry = EngineRegistry(
        store=store,
        bank=bank,
        classifier=classifier,
        responder=remote,
        mutations=remote,
        idle_ttl=settings.engine_idle_ttl,
    )

    app.state.bank = bank
    app.state.store = store
    app.state.registry = registry

    yield

    # --- Shutdown ---
    await registry.close()
    if remote is not None:
        await remote.aclose()
    if settings.storage_backend == "sql":
        await dispose_engine()
        logger.info("Database engine disposed")


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------

def create_app(settings: ServerSettings | None = None) -> FastAPI:
    """Build and return the configured FastAPI application."""
    if settings is None:
        settings = load_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title="Assessment Intake API",
        description="REST API for the assessment intake engines",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store settings so the lifespan handler can read them
    app.state.settings = settings

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Exception handlers ---
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(MutationError, mutation_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)

    # --- Health check (outside /api/v1 prefix) ---
    @app.get("/health")
    async def health() -> dict:
        """Readiness probe — verifies DB connectivity in ``sql`` mode."""
        if settings.storage_backend != "sql":
            return {"status": "ok", "storage": settings.storage_backend}
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "ok", "storage": "sql"}
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Health check failed: %s", exc)
            return {"status": "error", "detail": type(exc).__name__}

    register_routes(app)

    return app


# ------------------------------------------------------------------
# Module-level ASGI export (for uvicorn intake_server.app:app)
# ------------------------------------------------------------------
app = create_app()


# ------------------------------------------------------------------
# CLI entry point
# ------------------------------------------------------------------

def cli() -> None:
    """Console-script entry point: ``intake-server``."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "intake_server.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
