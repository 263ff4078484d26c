"""
Embedding maintenance tasks.
"""

from __future__ import annotations

import asyncio

from recall.context import default_scope
from recall.errors import EmbeddingProviderError
from recall.services.memory_index import recent_in_namespace, set_embedding
from recall.services import memory_shared
from recall.services.memory_shared import (
    EMBEDDING_BACKFILL_INTERVAL_SECONDS,
    embedding_circuit_breaker,
    logger,
)
from recall.storage import Storage


def _run_embedding_backfill(client=None, scope=None, batch_limit=None) -> dict:
    """Embed recent memories stored without a vector, workspace first."""
    client = client or Storage.client
    if client is None:
        return {"status": "skipped", "reason": "storage_not_initialized"}
    if not memory_shared.embedding_enabled():
        return {"status": "skipped", "reason": "embedding_disabled"}
    if embedding_circuit_breaker.is_open():
        return {"status": "skipped", "reason": "circuit_open"}
    if batch_limit is None:
        batch_limit = memory_shared.EMBEDDING_BACKFILL_BATCH_LIMIT
    if batch_limit <= 0:
        return {"status": "skipped", "reason": "batch_limit_disabled"}

    scope = scope or default_scope()
    processed = 0
    backfilled = 0
    skipped = 0
    for is_global in (False, True):
        if processed >= batch_limit:
            break
        missing = [
            memory
            for memory in recent_in_namespace(client, scope.namespace(is_global), batch_limit * 4)
            if not memory.embedding
        ]
        for memory in missing:
            if processed >= batch_limit:
                break
            if embedding_circuit_breaker.is_open():
                return {
                    "status": "skipped",
                    "reason": "circuit_open",
                    "processed": processed,
                    "backfilled": backfilled,
                    "skipped_count": skipped,
                }
            processed += 1
            try:
                vector = memory_shared.embed_text_sync(memory.content)
            except EmbeddingProviderError:
                skipped += 1
                continue
            if set_embedding(client, memory, vector):
                backfilled += 1
            else:
                skipped += 1
    return {
        "status": "ok",
        "processed": processed,
        "backfilled": backfilled,
        "skipped_count": skipped,
    }


async def _embedding_backfill_loop() -> None:
    if EMBEDDING_BACKFILL_INTERVAL_SECONDS <= 0:
        return
    while True:
        await asyncio.sleep(EMBEDDING_BACKFILL_INTERVAL_SECONDS)
        try:
            stats = await asyncio.to_thread(_run_embedding_backfill)
            if stats.get("status") == "ok" and stats.get("backfilled", 0) > 0:
                logger.debug("embedding_backfill_complete", extra=stats)
        except Exception as exc:
            logger.warning(f"Embedding backfill error: {exc}")
