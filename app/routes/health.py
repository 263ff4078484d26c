"""
Health and dependency endpoints.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, HTTPException

import recall
import recall.config as config
from recall.context import default_scope
from recall.errors import EmbeddingProviderError
from recall.mcp import tool_inventory_status
from recall.services import memory_shared
from recall.services.memory_index import count_memories
from recall.storage import Storage, ping


router = APIRouter()


def _check_storage_health() -> dict:
    if Storage.client is None:
        return {"ok": False, "error": "storage_not_initialized"}
    if not ping():
        return {"ok": False, "error": "ping_failed"}
    scope = default_scope()
    return {
        "ok": True,
        "workspace_id": scope.workspace_id,
        "workspace_mode": scope.mode.value,
        "memory_count": count_memories(Storage.client, scope),
    }


def _check_embedding_health(check_external: bool) -> dict:
    breaker_status = memory_shared.embedding_circuit_breaker.status()
    embedding_status = {
        "status": "unknown",
        "provider": memory_shared.EMBEDDING_PROVIDER,
        "circuit_breaker": breaker_status,
        "checked": False,
    }

    if not memory_shared.embedding_enabled():
        embedding_status["status"] = "disabled"
        return embedding_status

    if breaker_status.get("open"):
        embedding_status["status"] = "cooldown"
        return embedding_status

    if check_external and config.EMBEDDING_HEALTHCHECK_ENABLED:
        embedding_status["checked"] = True
        start = time.time()
        try:
            memory_shared.embed_text_sync("healthcheck")
            embedding_status["status"] = "ok"
            embedding_status["latency_ms"] = int((time.time() - start) * 1000)
        except EmbeddingProviderError as exc:
            embedding_status["status"] = "error"
            embedding_status["error"] = str(exc)
        return embedding_status

    embedding_status["status"] = "skipped" if check_external else "ready"
    return embedding_status


@router.get("/health")
async def health():
    """Health check endpoint."""
    storage_health = _check_storage_health()
    embedding_status = _check_embedding_health(check_external=False)
    if not storage_health.get("ok"):
        raise HTTPException(
            status_code=503,
            detail={"storage": storage_health, "embedding_provider": embedding_status},
        )

    return {
        "status": "healthy",
        "service": "Recall",
        "version": recall.__version__,
        "storage": storage_health,
        "embedding_provider": embedding_status,
    }


@router.get("/health/tools")
async def health_tools():
    """Tool inventory health check."""
    tool_inventory = await tool_inventory_status()
    if tool_inventory.get("tool_count", 0) == 0:
        raise HTTPException(status_code=503, detail={"tool_inventory": tool_inventory})

    return {
        "status": "healthy",
        "service": "Recall",
        "tool_inventory": tool_inventory,
    }


@router.get("/health/deps")
async def health_deps():
    """Dependency health checks (optionally embeds a test string)."""
    storage_health = _check_storage_health()
    if not storage_health.get("ok"):
        raise HTTPException(status_code=503, detail={"storage": storage_health})

    embedding_status = _check_embedding_health(check_external=True)

    return {
        "status": "healthy",
        "service": "Recall",
        "storage": storage_health,
        "embedding_provider": embedding_status,
    }
