"""
Standalone FastAPI app wiring for Recall.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

import recall.config as config
from recall.mcp import mcp_stream_app, MCPRouteNormalizerASGI
from recall.services import memory as memory_service
from recall.storage import close_storage, init_storage
from app.middleware import configure_middleware
from app.routes.health import router as health_router
from app.routes.root import router as root_router


embedding_backfill_task = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    global embedding_backfill_task
    init_storage()
    memory_service.init_http_client()
    if config.EMBEDDING_BACKFILL_ENABLED:
        await asyncio.to_thread(memory_service._run_embedding_backfill)
        if config.EMBEDDING_BACKFILL_INTERVAL_SECONDS > 0:
            embedding_backfill_task = asyncio.create_task(memory_service._embedding_backfill_loop())
    try:
        async with mcp_stream_app.lifespan(mcp_stream_app):
            yield
    finally:
        if embedding_backfill_task:
            embedding_backfill_task.cancel()
            try:
                await embedding_backfill_task
            except asyncio.CancelledError:
                pass
            embedding_backfill_task = None
        memory_service.cleanup_http_client()
        close_storage()


app = FastAPI(title="Recall", redirect_slashes=False, lifespan=lifespan)
configure_middleware(app)

app.include_router(health_router)
app.include_router(root_router)

app.mount("/mcp/", mcp_stream_app)


# =============================================================================
# ASGI Application (module-level for production deployment)
# =============================================================================

asgi_app = MCPRouteNormalizerASGI(app)
