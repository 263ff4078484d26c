import asyncio

from recall.mcp import mcp, registered_tool_names, tool_inventory_status

EXPECTED_TOOLS = {
    "memory_store",
    "memory_store_batch",
    "memory_get",
    "memory_update",
    "memory_delete",
    "memory_search",
    "memory_recent",
    "memory_by_type",
    "memory_by_tag",
    "memory_important",
    "memory_time_window",
    "memory_categories",
    "memory_by_category",
    "memory_convert_to_global",
    "memory_convert_to_workspace",
    "memory_stats",
    "organize_session",
    "session_list",
    "session_get",
    "export_memories",
    "import_memories",
    "link_memories",
    "unlink_memories",
    "get_related_memories",
    "get_memory_relationships",
    "get_memory_graph",
    "auto_consolidate",
    "force_consolidate",
    "consolidation_status",
    "consolidation_history",
    "find_duplicates",
    "consolidate_memories",
}


def test_every_tool_is_registered():
    assert set(registered_tool_names()) == EXPECTED_TOOLS
    tools = asyncio.run(mcp.get_tools())
    assert set(tools) == EXPECTED_TOOLS


def test_tool_inventory_status():
    status = asyncio.run(tool_inventory_status())
    assert status["tool_count"] == len(EXPECTED_TOOLS)
    assert status["refreshed"] is False
    assert status["retry_after_seconds"] is None


def test_registered_tool_uses_request_context(store, scope):
    from recall.context import RequestContext, reset_current_request_context, set_current_request_context
    from recall.mcp import server

    token = set_current_request_context(RequestContext(scope=scope, source="mcp"))
    try:
        stored = server.memory_store(content="stored through the tool layer")
        fetched = server.memory_get(memory_id=stored["memory"]["id"])
    finally:
        reset_current_request_context(token)
    assert fetched["status"] == "found"
    assert fetched["memory"]["workspace_id"] == scope.workspace_id
