"""
Memory CRUD, listing and session services.
"""

from __future__ import annotations

from typing import Optional, List

from recall.context import RequestContext
from recall.errors import MemoryNotFoundError, NotFoundError, ValidationIssue
from recall.models import Memory, OutputMode, iso_timestamp, now_ms
from recall.services.memory_index import (
    convert_scope,
    create_memories,
    create_memory,
    create_session,
    delete_memory,
    get_memory,
    get_session,
    list_by_category,
    list_by_tag,
    list_by_time_window,
    list_by_type,
    list_categories,
    list_important,
    list_recent,
    list_sessions,
    session_memories,
    summary_stats,
    update_memory,
)
from recall.services.memory_shared import (
    _tool_scope,
    serialize_memory,
    service_tool,
    EMBEDDING_MODEL,
    EMBEDDING_PROVIDER,
    MAX_SHORT_TEXT_LENGTH,
)
from recall.validators import coerce_enum, validate_required_text


def _output_mode(value: str) -> str:
    return coerce_enum(OutputMode, value, "output_mode").value


def _listing(memories: List[Memory], output_mode: str, **extra) -> dict:
    payload = {"status": "ok", **extra, "count": len(memories)}
    payload["memories"] = [serialize_memory(memory, output_mode) for memory in memories]
    return payload


def _not_found(memory_id: str) -> MemoryNotFoundError:
    return MemoryNotFoundError(f"Memory not found: {memory_id}", field="memory_id", item_id=memory_id)


@service_tool
def memory_store(
    content: str,
    context_type: str = "information",
    tags: Optional[List[str]] = None,
    importance: int = 5,
    summary: Optional[str] = None,
    session_id: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
    is_global: bool = False,
    category: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Store a new memory with its embedding.

    Args:
        content: The memory text
        context_type: directive, information, heading, decision, code_pattern,
            requirement, error, todo, insight or preference
        tags: Tags used for lookup
        importance: 1-10; 8 and above are indexed as important
        summary: Short summary (derived from content when omitted)
        session_id: Optional session grouping
        ttl_seconds: Expire the memory after this many seconds (minimum 60)
        is_global: Store across all workspaces instead of the current one
        category: Optional category name

    Returns:
        The stored memory
    """
    client, scope = _tool_scope(context)
    memory = create_memory(
        client,
        scope,
        content=content,
        context_type=context_type,
        tags=tags,
        importance=importance,
        summary=summary,
        session_id=session_id,
        ttl_seconds=ttl_seconds,
        is_global=is_global,
        category=category,
    )
    return {"status": "stored", "memory": serialize_memory(memory, "full")}


@service_tool
def memory_store_batch(
    memories: List[dict],
    context: Optional[RequestContext] = None,
) -> dict:
    """Store several memories; every item is validated before anything is written."""
    if not isinstance(memories, list) or not all(isinstance(item, dict) for item in memories):
        raise ValidationIssue("memories must be a list of objects", field="memories", error_type="invalid_type")
    client, scope = _tool_scope(context)
    created = create_memories(client, scope, memories)
    return {
        "status": "stored",
        "count": len(created),
        "memory_ids": [memory.id for memory in created],
    }


@service_tool
def memory_get(
    memory_id: str,
    output_mode: str = "full",
    context: Optional[RequestContext] = None,
) -> dict:
    """Fetch one memory by id from the workspace or global store."""
    validate_required_text(memory_id, "memory_id", MAX_SHORT_TEXT_LENGTH)
    mode = _output_mode(output_mode)
    client, scope = _tool_scope(context)
    memory = get_memory(client, scope, memory_id)
    if memory is None:
        raise _not_found(memory_id)
    return {"status": "found", "memory": serialize_memory(memory, mode)}


@service_tool
def memory_update(
    memory_id: str,
    content: Optional[str] = None,
    context_type: Optional[str] = None,
    tags: Optional[List[str]] = None,
    importance: Optional[int] = None,
    summary: Optional[str] = None,
    session_id: Optional[str] = None,
    category: Optional[str] = None,
    is_global: Optional[bool] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Update fields of an existing memory.

    Content changes regenerate the embedding. Pass an empty string for
    category or session_id to clear it.
    """
    validate_required_text(memory_id, "memory_id", MAX_SHORT_TEXT_LENGTH)
    provided = {
        "content": content,
        "context_type": context_type,
        "tags": tags,
        "importance": importance,
        "summary": summary,
        "session_id": session_id,
        "category": category,
        "is_global": is_global,
    }
    updates = {name: value for name, value in provided.items() if value is not None}
    if not updates:
        raise ValidationIssue("No fields to update", field="memory_id", error_type="required")
    client, scope = _tool_scope(context)
    memory = update_memory(client, scope, memory_id, updates)
    if memory is None:
        raise _not_found(memory_id)
    return {"status": "updated", "memory": serialize_memory(memory, "full")}


@service_tool
def memory_delete(
    memory_id: str,
    context: Optional[RequestContext] = None,
) -> dict:
    """Delete a memory and its index entries."""
    validate_required_text(memory_id, "memory_id", MAX_SHORT_TEXT_LENGTH)
    client, scope = _tool_scope(context)
    if not delete_memory(client, scope, memory_id):
        raise _not_found(memory_id)
    return {"status": "deleted", "memory_id": memory_id}


@service_tool
def memory_recent(
    limit: int = 10,
    output_mode: str = "summary",
    context: Optional[RequestContext] = None,
) -> dict:
    """Most recent memories, newest first."""
    mode = _output_mode(output_mode)
    client, scope = _tool_scope(context)
    return _listing(list_recent(client, scope, limit), mode, workspace_mode=scope.mode.value)


@service_tool
def memory_by_type(
    context_type: str,
    limit: int = 10,
    output_mode: str = "summary",
    context: Optional[RequestContext] = None,
) -> dict:
    """Memories of one context type, newest first."""
    mode = _output_mode(output_mode)
    client, scope = _tool_scope(context)
    return _listing(list_by_type(client, scope, context_type, limit), mode, context_type=context_type)


@service_tool
def memory_by_tag(
    tag: str,
    limit: int = 10,
    output_mode: str = "summary",
    context: Optional[RequestContext] = None,
) -> dict:
    """Memories carrying a tag, newest first."""
    mode = _output_mode(output_mode)
    client, scope = _tool_scope(context)
    return _listing(list_by_tag(client, scope, tag, limit), mode, tag=tag)


@service_tool
def memory_important(
    min_importance: int = 8,
    limit: int = 10,
    output_mode: str = "summary",
    context: Optional[RequestContext] = None,
) -> dict:
    """Important memories ordered by importance."""
    mode = _output_mode(output_mode)
    client, scope = _tool_scope(context)
    memories = list_important(client, scope, limit=limit, min_importance=min_importance)
    return _listing(memories, mode, min_importance=min_importance)


@service_tool
def memory_time_window(
    hours: Optional[float] = None,
    minutes: Optional[float] = None,
    start_timestamp: Optional[int] = None,
    end_timestamp: Optional[int] = None,
    min_importance: Optional[int] = None,
    context_types: Optional[List[str]] = None,
    limit: Optional[int] = None,
    output_mode: str = "summary",
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Memories created inside a time window, oldest first.

    Args:
        hours: Look back this many hours from now
        minutes: Look back this many minutes from now
        start_timestamp: Window start in epoch milliseconds (with end_timestamp)
        end_timestamp: Window end in epoch milliseconds (with start_timestamp)
        min_importance: Drop memories below this importance
        context_types: Restrict to these context types
        limit: Maximum results

    Returns:
        The window bounds and the memories inside it. Defaults to the last hour.
    """
    mode = _output_mode(output_mode)
    if start_timestamp is not None and end_timestamp is not None:
        start_ms, end_ms = start_timestamp, end_timestamp
    else:
        end_ms = now_ms()
        if hours is not None:
            lookback_ms = hours * 60 * 60 * 1000
        elif minutes is not None:
            lookback_ms = minutes * 60 * 1000
        else:
            lookback_ms = 60 * 60 * 1000
        if lookback_ms <= 0:
            raise ValidationIssue("lookback must be positive", field="hours", error_type="out_of_range")
        start_ms = max(0, end_ms - int(lookback_ms))

    client, scope = _tool_scope(context)
    memories = list_by_time_window(
        client,
        scope,
        start_ms,
        end_ms,
        min_importance=min_importance,
        context_types=context_types,
        limit=limit,
    )
    return _listing(
        memories,
        mode,
        start_time=iso_timestamp(start_ms),
        end_time=iso_timestamp(end_ms),
    )


@service_tool
def memory_categories(context: Optional[RequestContext] = None) -> dict:
    """Known categories with their memory counts."""
    client, scope = _tool_scope(context)
    categories = list_categories(client, scope)
    return {"status": "ok", "count": len(categories), "categories": categories}


@service_tool
def memory_by_category(
    category: str,
    limit: int = 10,
    output_mode: str = "summary",
    context: Optional[RequestContext] = None,
) -> dict:
    """Memories filed under a category, newest first."""
    mode = _output_mode(output_mode)
    client, scope = _tool_scope(context)
    return _listing(list_by_category(client, scope, category, limit), mode, category=category)


@service_tool
def memory_convert_to_global(
    memory_id: str,
    context: Optional[RequestContext] = None,
) -> dict:
    """Move a workspace memory into the global store."""
    validate_required_text(memory_id, "memory_id", MAX_SHORT_TEXT_LENGTH)
    client, scope = _tool_scope(context)
    memory = convert_scope(client, scope, memory_id, target_global=True)
    if memory is None:
        raise _not_found(memory_id)
    return {"status": "converted", "memory": serialize_memory(memory, "summary")}


@service_tool
def memory_convert_to_workspace(
    memory_id: str,
    workspace_id: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Move a global memory into a workspace (the current one by default)."""
    validate_required_text(memory_id, "memory_id", MAX_SHORT_TEXT_LENGTH)
    client, scope = _tool_scope(context)
    memory = convert_scope(client, scope, memory_id, target_global=False, target_workspace=workspace_id)
    if memory is None:
        raise _not_found(memory_id)
    return {"status": "converted", "memory": serialize_memory(memory, "summary")}


@service_tool
def memory_stats(context: Optional[RequestContext] = None) -> dict:
    """
    Get memory system statistics.

    Returns:
        Counts for the current workspace and the global store
    """
    client, scope = _tool_scope(context)
    stats = summary_stats(client, scope)
    return {
        "status": "healthy",
        "embedding_provider": EMBEDDING_PROVIDER,
        "embedding_model": EMBEDDING_MODEL,
        **stats,
    }


@service_tool
def organize_session(
    session_name: str,
    memory_ids: List[str],
    summary: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Create a session snapshot grouping related memories."""
    client, scope = _tool_scope(context)
    session = create_session(client, scope, session_name, memory_ids, summary)
    return {
        "status": "created",
        "session_id": session.session_id,
        "session_name": session.session_name,
        "memory_count": session.memory_count,
        "created_at": session.created_at,
    }


@service_tool
def session_list(context: Optional[RequestContext] = None) -> dict:
    """Sessions of the current workspace, newest first."""
    client, scope = _tool_scope(context)
    sessions = list_sessions(client, scope)
    return {
        "status": "ok",
        "count": len(sessions),
        "sessions": [session.to_dict() for session in sessions],
    }


@service_tool
def session_get(
    session_id: str,
    output_mode: str = "summary",
    context: Optional[RequestContext] = None,
) -> dict:
    """A session and the memories in it that still exist."""
    validate_required_text(session_id, "session_id", MAX_SHORT_TEXT_LENGTH)
    mode = _output_mode(output_mode)
    client, scope = _tool_scope(context)
    session = get_session(client, scope, session_id)
    if session is None:
        raise NotFoundError(f"Session not found: {session_id}", field="session_id", item_id=session_id)
    return _listing(
        session_memories(client, scope, session_id),
        mode,
        session=session.to_dict(),
    )
