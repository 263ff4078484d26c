"""
MCP server wiring and tool registration.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Optional

from fastmcp import FastMCP

import recall.config as config
from recall.services import memory as memory_service
from recall.mcp.scope_middleware import get_current_context, MCPScopeMiddleware

READ_ONLY_TOOL_ANNOTATIONS = {"readOnlyHint": True}
DESTRUCTIVE_TOOL_ANNOTATIONS = {"destructiveHint": True}

mcp = FastMCP("Recall")

_REGISTERED_TOOLS: list[tuple[Callable[..., dict], tuple[Any, ...], dict[str, Any]]] = []
_TOOL_REGISTRY_LOCK = threading.Lock()
_LAST_TOOL_COUNT: Optional[int] = None


def mcp_tool(*args, **kwargs):
    """Register a tool with FastMCP and keep a local registry for rebinding."""
    def decorator(fn: Callable[..., dict]):
        _REGISTERED_TOOLS.append((fn, args, kwargs))
        mcp.tool(*args, **kwargs)(fn)
        return fn
    return decorator


def registered_tool_names() -> list[str]:
    return sorted(fn.__name__ for fn, _, _ in _REGISTERED_TOOLS)


def _record_tool_inventory_count(tool_count: int) -> None:
    global _LAST_TOOL_COUNT
    with _TOOL_REGISTRY_LOCK:
        if tool_count == 0 and (_LAST_TOOL_COUNT is None or _LAST_TOOL_COUNT > 0):
            config.logger.warning("tool_inventory_empty", extra={"tool_count": tool_count})
        elif tool_count > 0 and _LAST_TOOL_COUNT == 0:
            config.logger.info("tool_inventory_restored", extra={"tool_count": tool_count})
        _LAST_TOOL_COUNT = tool_count


def _rebind_tool_registry(reason: str) -> None:
    with _TOOL_REGISTRY_LOCK:
        for fn, args, kwargs in _REGISTERED_TOOLS:
            mcp.tool(*args, **kwargs)(fn)
        config.logger.warning(
            "tool_registry_rebind",
            extra={"reason": reason, "tool_count": len(_REGISTERED_TOOLS)},
        )


async def tool_inventory_status(refresh_if_empty: bool = False, reason: str = "") -> dict:
    """Return tool inventory details and optionally rebind when empty."""
    tools = await mcp.get_tools()
    tool_names = sorted(tools.keys())

    refreshed = False
    if refresh_if_empty and not tool_names:
        refreshed = True
        _rebind_tool_registry(reason or "inventory_empty")
        tools = await mcp.get_tools()
        tool_names = sorted(tools.keys())

    tool_count = len(tool_names)
    _record_tool_inventory_count(tool_count)

    return {
        "tool_count": tool_count,
        "tools": tool_names,
        "refreshed": refreshed,
        "retry_after_seconds": config.TOOL_INVENTORY_RETRY_SECONDS if tool_count == 0 else None,
    }


@mcp.resource(
    "recall://tool-inventory",
    name="recall_tool_inventory",
    mime_type="application/json",
)
async def tool_inventory_resource() -> dict:
    """Expose tool inventory as a resource for discovery fallbacks."""
    return await tool_inventory_status(refresh_if_empty=True, reason="resource_read")


# Memory CRUD

@mcp_tool()
def memory_store(
    content: str,
    context_type: str = "information",
    tags: Optional[list[str]] = None,
    importance: int = 5,
    summary: Optional[str] = None,
    session_id: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
    is_global: bool = False,
    category: Optional[str] = None,
) -> dict:
    return memory_service.memory_store(
        content=content,
        context_type=context_type,
        tags=tags,
        importance=importance,
        summary=summary,
        session_id=session_id,
        ttl_seconds=ttl_seconds,
        is_global=is_global,
        category=category,
        context=get_current_context(),
    )


@mcp_tool()
def memory_store_batch(memories: list[dict]) -> dict:
    return memory_service.memory_store_batch(memories=memories, context=get_current_context())


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_get(memory_id: str, output_mode: str = "full") -> dict:
    return memory_service.memory_get(
        memory_id=memory_id,
        output_mode=output_mode,
        context=get_current_context(),
    )


@mcp_tool()
def memory_update(
    memory_id: str,
    content: Optional[str] = None,
    context_type: Optional[str] = None,
    tags: Optional[list[str]] = None,
    importance: Optional[int] = None,
    summary: Optional[str] = None,
    session_id: Optional[str] = None,
    category: Optional[str] = None,
    is_global: Optional[bool] = None,
) -> dict:
    return memory_service.memory_update(
        memory_id=memory_id,
        content=content,
        context_type=context_type,
        tags=tags,
        importance=importance,
        summary=summary,
        session_id=session_id,
        category=category,
        is_global=is_global,
        context=get_current_context(),
    )


@mcp_tool(annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def memory_delete(memory_id: str) -> dict:
    return memory_service.memory_delete(memory_id=memory_id, context=get_current_context())


# Search and listings

@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_search(
    query: str,
    limit: int = 10,
    min_importance: Optional[int] = None,
    context_types: Optional[list[str]] = None,
    category: Optional[str] = None,
    exact: bool = False,
    fuzzy: bool = False,
    regex: Optional[str] = None,
    output_mode: str = "summary",
) -> dict:
    return memory_service.memory_search(
        query=query,
        limit=limit,
        min_importance=min_importance,
        context_types=context_types,
        category=category,
        exact=exact,
        fuzzy=fuzzy,
        regex=regex,
        output_mode=output_mode,
        context=get_current_context(),
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_recent(limit: int = 10, output_mode: str = "summary") -> dict:
    return memory_service.memory_recent(
        limit=limit,
        output_mode=output_mode,
        context=get_current_context(),
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_by_type(context_type: str, limit: int = 10, output_mode: str = "summary") -> dict:
    return memory_service.memory_by_type(
        context_type=context_type,
        limit=limit,
        output_mode=output_mode,
        context=get_current_context(),
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_by_tag(tag: str, limit: int = 10, output_mode: str = "summary") -> dict:
    return memory_service.memory_by_tag(
        tag=tag,
        limit=limit,
        output_mode=output_mode,
        context=get_current_context(),
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_important(
    min_importance: int = config.IMPORTANT_THRESHOLD,
    limit: int = 10,
    output_mode: str = "summary",
) -> dict:
    return memory_service.memory_important(
        min_importance=min_importance,
        limit=limit,
        output_mode=output_mode,
        context=get_current_context(),
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_time_window(
    hours: Optional[float] = None,
    minutes: Optional[float] = None,
    start_timestamp: Optional[int] = None,
    end_timestamp: Optional[int] = None,
    min_importance: Optional[int] = None,
    context_types: Optional[list[str]] = None,
    limit: Optional[int] = None,
    output_mode: str = "summary",
) -> dict:
    return memory_service.memory_time_window(
        hours=hours,
        minutes=minutes,
        start_timestamp=start_timestamp,
        end_timestamp=end_timestamp,
        min_importance=min_importance,
        context_types=context_types,
        limit=limit,
        output_mode=output_mode,
        context=get_current_context(),
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_categories() -> dict:
    return memory_service.memory_categories(context=get_current_context())


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_by_category(category: str, limit: int = 10, output_mode: str = "summary") -> dict:
    return memory_service.memory_by_category(
        category=category,
        limit=limit,
        output_mode=output_mode,
        context=get_current_context(),
    )


@mcp_tool()
def memory_convert_to_global(memory_id: str) -> dict:
    return memory_service.memory_convert_to_global(memory_id=memory_id, context=get_current_context())


@mcp_tool()
def memory_convert_to_workspace(memory_id: str, workspace_id: Optional[str] = None) -> dict:
    return memory_service.memory_convert_to_workspace(
        memory_id=memory_id,
        workspace_id=workspace_id,
        context=get_current_context(),
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def memory_stats() -> dict:
    return memory_service.memory_stats(context=get_current_context())


# Sessions

@mcp_tool()
def organize_session(session_name: str, memory_ids: list[str], summary: Optional[str] = None) -> dict:
    return memory_service.organize_session(
        session_name=session_name,
        memory_ids=memory_ids,
        summary=summary,
        context=get_current_context(),
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def session_list() -> dict:
    return memory_service.session_list(context=get_current_context())


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def session_get(session_id: str, output_mode: str = "summary") -> dict:
    return memory_service.session_get(
        session_id=session_id,
        output_mode=output_mode,
        context=get_current_context(),
    )


# Export / import

@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def export_memories(
    include_embeddings: bool = False,
    filter_by_type: Optional[list[str]] = None,
    min_importance: Optional[int] = None,
) -> dict:
    return memory_service.export_memories(
        include_embeddings=include_embeddings,
        filter_by_type=filter_by_type,
        min_importance=min_importance,
        context=get_current_context(),
    )


@mcp_tool()
def import_memories(data: str, overwrite_existing: bool = False, regenerate_embeddings: bool = True) -> dict:
    return memory_service.import_memories(
        data=data,
        overwrite_existing=overwrite_existing,
        regenerate_embeddings=regenerate_embeddings,
        context=get_current_context(),
    )


# Relationship graph

@mcp_tool()
def link_memories(
    from_memory_id: str,
    to_memory_id: str,
    relationship_type: str = "relates_to",
    metadata: Optional[dict] = None,
) -> dict:
    return memory_service.link_memories(
        from_memory_id=from_memory_id,
        to_memory_id=to_memory_id,
        relationship_type=relationship_type,
        metadata=metadata,
        context=get_current_context(),
    )


@mcp_tool(annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def unlink_memories(relationship_id: str) -> dict:
    return memory_service.unlink_memories(
        relationship_id=relationship_id,
        context=get_current_context(),
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def get_related_memories(
    memory_id: str,
    relationship_types: Optional[list[str]] = None,
    depth: int = 1,
    direction: str = "both",
    output_mode: str = "summary",
) -> dict:
    return memory_service.get_related_memories(
        memory_id=memory_id,
        relationship_types=relationship_types,
        depth=depth,
        direction=direction,
        output_mode=output_mode,
        context=get_current_context(),
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def get_memory_relationships(memory_id: str, direction: str = "both") -> dict:
    return memory_service.get_memory_relationships(
        memory_id=memory_id,
        direction=direction,
        context=get_current_context(),
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def get_memory_graph(memory_id: str, max_depth: int = 2, max_nodes: int = 50) -> dict:
    return memory_service.get_memory_graph(
        memory_id=memory_id,
        max_depth=max_depth,
        max_nodes=max_nodes,
        context=get_current_context(),
    )


# Consolidation

@mcp_tool()
def auto_consolidate(
    similarity_threshold: Optional[float] = None,
    min_cluster_size: Optional[int] = None,
    max_age_days: Optional[int] = None,
    max_memories: Optional[int] = None,
    memory_count_threshold: Optional[int] = None,
) -> dict:
    return memory_service.auto_consolidate(
        similarity_threshold=similarity_threshold,
        min_cluster_size=min_cluster_size,
        max_age_days=max_age_days,
        max_memories=max_memories,
        memory_count_threshold=memory_count_threshold,
        context=get_current_context(),
    )


@mcp_tool()
def force_consolidate(
    similarity_threshold: Optional[float] = None,
    min_cluster_size: Optional[int] = None,
    max_age_days: Optional[int] = None,
    max_memories: Optional[int] = None,
) -> dict:
    return memory_service.force_consolidate(
        similarity_threshold=similarity_threshold,
        min_cluster_size=min_cluster_size,
        max_age_days=max_age_days,
        max_memories=max_memories,
        context=get_current_context(),
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def consolidation_status(memory_count_threshold: Optional[int] = None) -> dict:
    return memory_service.consolidation_status(
        memory_count_threshold=memory_count_threshold,
        context=get_current_context(),
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def consolidation_history(limit: int = 10) -> dict:
    return memory_service.consolidation_history(limit=limit, context=get_current_context())


@mcp_tool(annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def find_duplicates(
    similarity_threshold: float = 0.85,
    auto_merge: bool = False,
    keep_highest_importance: bool = True,
) -> dict:
    return memory_service.find_duplicates(
        similarity_threshold=similarity_threshold,
        auto_merge=auto_merge,
        keep_highest_importance=keep_highest_importance,
        context=get_current_context(),
    )


@mcp_tool(annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def consolidate_memories(memory_ids: list[str], keep_id: Optional[str] = None) -> dict:
    return memory_service.consolidate_memories(
        memory_ids=memory_ids,
        keep_id=keep_id,
        context=get_current_context(),
    )


mcp_stream_app = MCPScopeMiddleware(mcp.http_app(
    path="/",
    transport="streamable-http",
    stateless_http=True,
    json_response=True,
))


class MCPRouteNormalizerASGI:
    """Pure ASGI middleware - no response buffering, SSE-safe."""
    def __init__(self, wrapped_app):
        self.wrapped_app = wrapped_app

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope.get("path") == "/mcp":
            scope = dict(scope)
            scope["path"] = "/mcp/"
        await self.wrapped_app(scope, receive, send)
