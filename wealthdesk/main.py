"""FastAPI application entry point — wires everything together.

Usage:
    python -m wealthdesk.main

Serves the proposal pipeline API. Extraction, analysis and page generation
run as background tasks owned by the orchestrator.
"""

from __future__ import annotations

import contextlib
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import structlog
import uvicorn
from fastapi import FastAPI

from wealthdesk.api.routes import pipeline_error_handler, router
from wealthdesk.audit.events import start_event_system, stop_event_system, subscribe, unsubscribe
from wealthdesk.audit.logger import audit_on_event
from wealthdesk.config import settings
from wealthdesk.db.engine import create_redis, db_lifespan
from wealthdesk.errors import PipelineError
from wealthdesk.integrations.catalog import CatalogClient, ProductCatalog, StaticCatalog
from wealthdesk.integrations.renderer.client import PageRendererClient
from wealthdesk.integrations.storage.client import BlobStorageClient
from wealthdesk.llm.client import llm_client
from wealthdesk.pipeline.orchestrator import PipelineOrchestrator
from wealthdesk.pipeline.page_cache import PageCache
from wealthdesk.pipeline.store import IllustrationStore, InMemoryIllustrationStore
from wealthdesk.pipeline.store_sql import SqlIllustrationStore

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)


# ── Wiring ───────────────────────────────────────────────────────────


def build_catalog() -> ProductCatalog:
    """Static JSON catalog when CATALOG_FILE is set, else the catalog API."""
    if settings.catalog.catalog_file:
        return StaticCatalog.from_json_file(settings.catalog.catalog_file)
    return CatalogClient()


def build_store() -> IllustrationStore:
    if settings.db.store_backend == "memory":
        logger.warning("Using in-memory illustration store — data is lost on restart")
        return InMemoryIllustrationStore()
    return SqlIllustrationStore()


def build_orchestrator(redis: aioredis.Redis) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        store=build_store(),
        catalog=build_catalog(),
        blob_storage=BlobStorageClient(),
        renderer=PageRendererClient(),
        page_cache=PageCache(redis),
    )


# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting WealthDesk pipeline (env=%s, store=%s)", settings.environment, settings.db.store_backend)

    async with contextlib.AsyncExitStack() as stack:
        # 1. Database (SQL backend only) + audit logging
        use_sql = settings.db.store_backend == "sql"
        if use_sql:
            await stack.enter_async_context(db_lifespan())
            logger.info("Database initialized")

        # 2. Event system
        await start_event_system()

        if use_sql:
            subscribe(audit_on_event)
            logger.info("Audit logging subscriber registered")

        # 3. Page cache + orchestrator
        redis = create_redis()
        stack.push_async_callback(redis.aclose)
        orchestrator = build_orchestrator(redis)
        app.state.orchestrator = orchestrator
        logger.info("Pipeline orchestrator ready")

        # 4. Resume work interrupted by the last shutdown
        await orchestrator.recover()

        try:
            yield
        finally:
            # Shutdown in reverse order
            logger.info("Shutting down WealthDesk pipeline...")

            await orchestrator.shutdown()

            await llm_client.close()
            logger.info("LLM client closed")

            if use_sql:
                unsubscribe(audit_on_event)
            await stop_event_system()

    logger.info("WealthDesk pipeline shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="WealthDesk Proposal Pipeline",
    description="Policy illustration extraction, product matching and proposal generation",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_exception_handler(PipelineError, pipeline_error_handler)
app.include_router(router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "store_backend": settings.db.store_backend,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "wealthdesk.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
