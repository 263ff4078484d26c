"""
Export and import of memories as JSON documents.

An export is ``{"version", "exported_at", "memory_count", "memories"}`` where
each memory is the same dict the tools return. Importing keeps the original
id and creation time; a TTL keeps counting from that time, so memories that
would already have expired are skipped.
"""

from __future__ import annotations

import json
from typing import Optional, List, Union

from recall.context import RequestContext, WorkspaceScope
from recall.errors import ValidationIssue
from recall.models import ContextType, new_id, now_ms
from recall.services.memory_index import (
    get_memory,
    restore_memory,
    scope_memories,
    update_memory,
    validate_memory_item,
)
from recall.services.memory_shared import (
    _tool_scope,
    embed_or_none,
    service_tool,
    logger,
    MAX_SHORT_TEXT_LENGTH,
)
from recall.validators import coerce_enum, validate_importance

EXPORT_FORMAT_VERSION = "1.2.0"
MAX_REPORTED_ERRORS = 10

_IMPORT_FIELDS = (
    "content",
    "context_type",
    "tags",
    "importance",
    "summary",
    "session_id",
    "ttl_seconds",
    "is_global",
    "category",
)
_OVERWRITE_FIELDS = (
    "content",
    "context_type",
    "tags",
    "importance",
    "summary",
    "session_id",
    "category",
)


def export_memories(
    client,
    scope: WorkspaceScope,
    include_embeddings: bool = False,
    context_types: Optional[List] = None,
    min_importance: Optional[int] = None,
) -> dict:
    """Every memory visible to the scope, newest first, as an export document."""
    types = [coerce_enum(ContextType, value, "filter_by_type") for value in context_types or []]
    if min_importance is not None:
        validate_importance(min_importance, "min_importance")

    memories = [memory for memory, _ in scope_memories(client, scope, types or None)]
    if min_importance is not None:
        memories = [memory for memory in memories if memory.importance >= min_importance]
    memories.sort(key=lambda memory: (memory.timestamp, memory.id), reverse=True)
    return {
        "version": EXPORT_FORMAT_VERSION,
        "exported_at": now_ms(),
        "memory_count": len(memories),
        "memories": [memory.to_dict(include_embedding=include_embeddings) for memory in memories],
    }


def _parse_document(data: Union[str, dict]) -> list:
    if isinstance(data, str):
        try:
            document = json.loads(data)
        except json.JSONDecodeError as exc:
            raise ValidationIssue(f"Invalid JSON data: {exc.msg}", field="data", error_type="invalid_json") from exc
    else:
        document = data
    if not isinstance(document, dict) or not isinstance(document.get("memories"), list):
        raise ValidationIssue(
            "Invalid import format: missing memories array",
            field="data",
            error_type="invalid_format",
        )
    return document["memories"]


def _import_id(entry: dict) -> str:
    memory_id = entry.get("id")
    if memory_id is None:
        return new_id()
    if (
        not isinstance(memory_id, str)
        or not memory_id.strip()
        or len(memory_id) > MAX_SHORT_TEXT_LENGTH
        or ":" in memory_id
        or memory_id != memory_id.strip()
    ):
        raise ValidationIssue("id must be a plain identifier", field="id", error_type="invalid_id")
    return memory_id


def _import_timestamp(entry: dict) -> int:
    timestamp = entry.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, int) or timestamp <= 0:
        return now_ms()
    return timestamp


def import_memories(
    client,
    scope: WorkspaceScope,
    data: Union[str, dict],
    overwrite_existing: bool = False,
    regenerate_embeddings: bool = True,
) -> dict:
    """
    Load an export document into the store.

    A malformed document is a validation error. A malformed entry is
    reported in ``errors`` and does not stop the others. Existing ids are
    skipped unless overwrite_existing is set, in which case their fields
    are updated in place.
    """
    entries = _parse_document(data)
    results = {"imported": 0, "overwritten": 0, "skipped": 0, "errors": []}

    for position, entry in enumerate(entries):
        label = entry.get("id", position) if isinstance(entry, dict) else position
        try:
            if not isinstance(entry, dict):
                raise ValidationIssue("memory entry must be an object", field="memories", error_type="invalid_type")
            memory_id = _import_id(entry)
            item = {name: entry[name] for name in _IMPORT_FIELDS if entry.get(name) is not None}

            existing = get_memory(client, scope, memory_id)
            if existing is not None:
                if not overwrite_existing:
                    results["skipped"] += 1
                    continue
                validate_memory_item(item)
                updates = {name: item[name] for name in _OVERWRITE_FIELDS if name in item}
                update_memory(client, scope, memory_id, updates)
                results["overwritten"] += 1
                continue

            validate_memory_item(item)
            if regenerate_embeddings:
                embedding = embed_or_none(item["content"])
            elif entry.get("embedding"):
                embedding = [float(value) for value in entry["embedding"]]
            else:
                embedding = None
            restored = restore_memory(
                client,
                scope,
                item,
                memory_id,
                _import_timestamp(entry),
                embedding,
            )
            if restored is None:
                results["skipped"] += 1
            else:
                results["imported"] += 1
        except (ValidationIssue, TypeError, ValueError) as exc:
            results["errors"].append(f"Failed to import memory {label}: {exc}")

    logger.info(
        "memories_imported",
        extra={
            "imported": results["imported"],
            "overwritten": results["overwritten"],
            "skipped": results["skipped"],
            "errors": len(results["errors"]),
        },
    )
    return results


@service_tool
def export_memories_tool(
    include_embeddings: bool = False,
    filter_by_type: Optional[List[str]] = None,
    min_importance: Optional[int] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Export memories as a JSON document, optionally filtered by type and importance."""
    client, scope = _tool_scope(context)
    document = export_memories(
        client,
        scope,
        include_embeddings=include_embeddings,
        context_types=filter_by_type,
        min_importance=min_importance,
    )
    return {"status": "ok", "export": document}


@service_tool
def import_memories_tool(
    data: str,
    overwrite_existing: bool = False,
    regenerate_embeddings: bool = True,
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Import memories from an export document.

    Args:
        data: JSON string produced by export_memories
        overwrite_existing: Update memories whose id already exists
        regenerate_embeddings: Embed content again instead of using exported vectors

    Returns:
        Counts of imported, overwritten and skipped memories plus the first errors
    """
    client, scope = _tool_scope(context)
    results = import_memories(
        client,
        scope,
        data,
        overwrite_existing=overwrite_existing,
        regenerate_embeddings=regenerate_embeddings,
    )
    errors = results.pop("errors")
    return {
        "status": "ok",
        **results,
        "error_count": len(errors),
        "errors": errors[:MAX_REPORTED_ERRORS],
    }
