import json

from recall.context import RequestContext, WorkspaceScope
from recall.services import memory as memory_service


def test_service_tools_smoke(store, tool_context):
    stored = memory_service.memory_store(
        content="Service tool smoke memory about request retries",
        context_type="decision",
        tags=["smoke"],
        importance=9,
        category="smoke",
        context=tool_context,
    )
    assert stored["status"] == "stored"
    memory_id = stored["memory"]["id"]
    assert "embedding" not in stored["memory"]
    assert stored["memory"]["has_embedding"] is True

    other = memory_service.memory_store(content="Second smoke memory", context=tool_context)
    other_id = other["memory"]["id"]

    batch = memory_service.memory_store_batch(
        memories=[{"content": "batch one"}, {"content": "batch two", "context_type": "todo"}],
        context=tool_context,
    )
    assert batch["status"] == "stored"
    assert batch["count"] == 2

    fetched = memory_service.memory_get(memory_id=memory_id, context=tool_context)
    assert fetched["status"] == "found"
    assert fetched["memory"]["content"].startswith("Service tool smoke")

    search = memory_service.memory_search(query="request retries", limit=5, context=tool_context)
    assert search["status"] == "ok"
    assert search["results"][0]["id"] == memory_id
    assert "content" not in search["results"][0]
    assert "similarity" in search["results"][0]

    compact = memory_service.memory_search(query="request retries", output_mode="compact", context=tool_context)
    assert set(compact["results"][0]) == {"id", "summary", "context_type", "similarity"}

    assert memory_service.memory_recent(limit=10, context=tool_context)["count"] == 4
    assert memory_service.memory_by_type(context_type="todo", context=tool_context)["count"] == 1
    assert memory_service.memory_by_tag(tag="smoke", context=tool_context)["count"] == 1
    assert memory_service.memory_important(context=tool_context)["count"] == 1
    assert memory_service.memory_time_window(hours=1, context=tool_context)["count"] == 4
    assert memory_service.memory_categories(context=tool_context)["categories"] == [
        {"category": "smoke", "count": 1}
    ]
    assert memory_service.memory_by_category(category="smoke", context=tool_context)["count"] == 1

    updated = memory_service.memory_update(memory_id=memory_id, importance=4, context=tool_context)
    assert updated["status"] == "updated"
    assert updated["memory"]["importance"] == 4

    link = memory_service.link_memories(
        from_memory_id=memory_id,
        to_memory_id=other_id,
        relationship_type="references",
        context=tool_context,
    )
    assert link["status"] == "ok"
    rel_id = link["relationship"]["id"]

    related = memory_service.get_related_memories(memory_id=memory_id, context=tool_context)
    assert related["count"] == 1
    assert related["related"][0]["memory"]["id"] == other_id

    relationships = memory_service.get_memory_relationships(memory_id=other_id, context=tool_context)
    assert relationships["count"] == 1

    graph = memory_service.get_memory_graph(memory_id=memory_id, context=tool_context)
    assert graph["status"] == "ok"
    assert graph["total_nodes"] == 2
    assert len(graph["edges"]) == 1

    unlinked = memory_service.unlink_memories(relationship_id=rel_id, context=tool_context)
    assert unlinked["status"] == "deleted"

    converted = memory_service.memory_convert_to_global(memory_id=other_id, context=tool_context)
    assert converted["status"] == "converted"
    assert converted["memory"]["is_global"] is True
    restored = memory_service.memory_convert_to_workspace(memory_id=other_id, context=tool_context)
    assert restored["memory"]["is_global"] is False

    stats = memory_service.memory_stats(context=tool_context)
    assert stats["status"] == "healthy"
    assert stats["total"] == 4

    status = memory_service.consolidation_status(context=tool_context)
    assert status["status"] == "ok"
    assert status["total_memories"] == 4
    assert status["last_run"] is None

    auto = memory_service.auto_consolidate(context=tool_context)
    assert auto["needed"] is False

    forced = memory_service.force_consolidate(context=tool_context)
    assert forced["status"] == "ok"
    assert "report" in forced["result"]

    history = memory_service.consolidation_history(context=tool_context)
    assert history["count"] == 1

    deleted = memory_service.memory_delete(memory_id=memory_id, context=tool_context)
    assert deleted["status"] == "deleted"


def test_validation_errors_become_payloads(store, tool_context):
    result = memory_service.memory_store(content="", context=tool_context)
    assert result["status"] == "error"
    assert result["error_type"] == "validation_error"
    assert result["field"] == "content"

    bad_regex = memory_service.memory_search(query="x", regex="(", context=tool_context)
    assert bad_regex["status"] == "error"
    assert bad_regex["field"] == "regex"

    bad_mode = memory_service.memory_recent(output_mode="verbose", context=tool_context)
    assert bad_mode["field"] == "output_mode"

    empty_update = memory_service.memory_update(memory_id="abc", context=tool_context)
    assert empty_update["status"] == "error"


def test_missing_items_become_not_found_payloads(store, tool_context):
    missing = memory_service.memory_get(memory_id="missing", context=tool_context)
    assert missing["status"] == "not_found"
    assert missing["id"] == "missing"

    assert memory_service.memory_delete(memory_id="missing", context=tool_context)["status"] == "not_found"
    assert memory_service.unlink_memories(relationship_id="nope", context=tool_context)["status"] == "not_found"
    assert memory_service.get_memory_graph(memory_id="missing", context=tool_context)["status"] == "not_found"

    stored = memory_service.memory_store(content="exists", context=tool_context)
    link = memory_service.link_memories(
        from_memory_id=stored["memory"]["id"],
        to_memory_id="missing",
        context=tool_context,
    )
    assert link["status"] == "not_found"
    assert link["field"] == "to_memory_id"


def test_cross_scope_link_payload(store, tool_context):
    shared = memory_service.memory_store(content="global memory", is_global=True, context=tool_context)
    local = memory_service.memory_store(content="workspace memory", context=tool_context)
    result = memory_service.link_memories(
        from_memory_id=shared["memory"]["id"],
        to_memory_id=local["memory"]["id"],
        context=tool_context,
    )
    assert result["status"] == "error"
    assert result["field"] == "to_memory_id"


def test_tools_use_ambient_request_context(store, monkeypatch):
    from recall.context import reset_current_request_context, set_current_request_context

    monkeypatch.delenv("WORKSPACE_MODE", raising=False)
    scope = WorkspaceScope.for_path("/work/ambient")
    token = set_current_request_context(RequestContext(scope=scope))
    try:
        stored = memory_service.memory_store(content="ambient scope memory")
    finally:
        reset_current_request_context(token)
    assert stored["memory"]["workspace_id"] == scope.workspace_id


def test_batch_tool_reports_unknown_fields(store, tool_context):
    result = memory_service.memory_store_batch(
        memories=[{"content": "first valid memory"}, {"content": "second", "priority": 3}],
        context=tool_context,
    )
    assert result["status"] == "error"
    assert result["field"] == "priority"
    assert memory_service.memory_recent(context=tool_context)["count"] == 0


def test_session_and_transfer_tools_smoke(store, tool_context):
    first = memory_service.memory_store(content="Deploy checklist lives in the wiki", context=tool_context)
    second = memory_service.memory_store(content="Deploys happen on Tuesdays", context=tool_context)
    ids = [first["memory"]["id"], second["memory"]["id"]]

    organized = memory_service.organize_session(
        session_name="deploy notes",
        memory_ids=ids + ["missing-id"],
        summary="what we learned about deploys",
        context=tool_context,
    )
    assert organized["status"] == "created"
    assert organized["memory_count"] == 2

    listed = memory_service.session_list(context=tool_context)
    assert listed["count"] == 1
    assert listed["sessions"][0]["session_name"] == "deploy notes"

    fetched = memory_service.session_get(session_id=organized["session_id"], context=tool_context)
    assert fetched["session"]["memory_ids"] == ids
    assert [memory["id"] for memory in fetched["memories"]] == ids

    missing = memory_service.session_get(session_id="nope", context=tool_context)
    assert missing["status"] == "not_found"

    exported = memory_service.export_memories(context=tool_context)
    assert exported["status"] == "ok"
    assert exported["export"]["memory_count"] == 2

    imported = memory_service.import_memories(data=json.dumps(exported["export"]), context=tool_context)
    assert imported["status"] == "ok"
    assert imported["skipped"] == 2
    assert imported["imported"] == 0

    bad = memory_service.import_memories(data="{not json", context=tool_context)
    assert bad["status"] == "error"
    assert bad["field"] == "data"

    duplicates = memory_service.find_duplicates(context=tool_context)
    assert duplicates["status"] == "ok"
    assert "merged_count" not in duplicates

    merged = memory_service.consolidate_memories(memory_ids=ids, context=tool_context)
    assert merged["status"] == "consolidated"
    assert memory_service.memory_recent(context=tool_context)["count"] == 1

    gone = memory_service.consolidate_memories(memory_ids=["x1", "x2"], context=tool_context)
    assert gone["status"] == "not_found"
