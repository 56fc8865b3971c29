"""
Application Entry Point

Defines the FastAPI application, its lifespan (cache connect / close) and
router registration. Downstream chat handlers obtain the shared
``RagContextBuilder`` from ``app.state``.

Design Goals
------------
- Explicitly constructed, injected cache client (no module-level connection)
- Deterministic startup and teardown
- Test-friendly via create_app()
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from .api import health_routes
from .cache.client import CacheBackend, CacheClient
from .cache.rag_cache import EmbeddingCache, SearchResultCache
from .core.errors import unhandled_exception_handler
from .core.log_config import configure_logging
from .embeddings.embedder import Embedder
from .rag.context import RagContextBuilder
from .rag.retrieval import RetrievalService

logger = logging.getLogger("rag.app")


def build_context_builder(
    cache: CacheBackend,
    embedder: Optional[Embedder] = None,
) -> RagContextBuilder:
    """Wire the retrieval core over one cache backend."""
    retrieval = RetrievalService(
        embedder=embedder or Embedder(),
        embedding_cache=EmbeddingCache(cache),
        search_cache=SearchResultCache(cache),
    )
    return RagContextBuilder(retrieval)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    logger.info("Starting party-rag")

    cache = CacheClient()
    result = await cache.connect()
    if not result.connected:
        logger.warning(
            "Running without cache after %d attempts: %s", result.attempts, result.error
        )

    app.state.cache = cache
    app.state.started_at = time.time()
    app.state.context_builder = build_context_builder(cache)

    try:
        yield
    finally:
        await cache.close()
        logger.info("Shut down party-rag")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns
    -------
    FastAPI
        Fully configured FastAPI application.
    """
    app = FastAPI(
        title="party-rag",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_routes.router)

    return app


app = create_app()
