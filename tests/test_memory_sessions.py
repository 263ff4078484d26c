import pytest

import recall.keys as keys
from recall.errors import ValidationIssue
from recall.services.memory_index import (
    create_memory,
    create_session,
    delete_memory,
    get_session,
    list_sessions,
    session_memories,
    summary_stats,
)


def test_session_snapshot_keeps_only_existing_ids(store, scope):
    a = create_memory(store, scope, content="first note")
    b = create_memory(store, scope, content="shared note", is_global=True)
    session = create_session(store, scope, "  sprint 12  ", [a.id, "unknown", b.id, a.id], "planning")

    assert session.session_name == "sprint 12"
    assert session.memory_ids == [a.id, b.id]
    assert session.memory_count == 2

    raw = store.hgetall(keys.session(scope.workspace_id, session.session_id))
    assert raw["session_name"] == "sprint 12"
    assert raw["memory_count"] == "2"
    assert store.sismember(keys.sessions_all(scope.workspace_id), session.session_id)

    loaded = get_session(store, scope, session.session_id)
    assert loaded == session


def test_session_memories_skip_deleted(store, scope):
    a = create_memory(store, scope, content="kept")
    b = create_memory(store, scope, content="removed later")
    session = create_session(store, scope, "cleanup", [a.id, b.id])
    delete_memory(store, scope, b.id)
    assert [memory.id for memory in session_memories(store, scope, session.session_id)] == [a.id]
    assert session_memories(store, scope, "unknown") == []


def test_sessions_listed_newest_first_per_workspace(store, scope, make_scope):
    memory = create_memory(store, scope, content="anything")
    older = create_session(store, scope, "older", [memory.id])
    newer = create_session(store, scope, "newer", [memory.id])
    other = make_scope("/work/beta")

    assert [s.session_id for s in list_sessions(store, scope)] == [newer.session_id, older.session_id]
    assert list_sessions(store, other) == []
    assert get_session(store, other, older.session_id) is None
    assert summary_stats(store, scope)["sessions"] == 2


def test_session_validation(store, scope):
    with pytest.raises(ValidationIssue) as exc:
        create_session(store, scope, "empty", [])
    assert exc.value.field == "memory_ids"
    with pytest.raises(ValidationIssue):
        create_session(store, scope, "   ", ["id"])
    assert store.dbsize() == 0
