import pytest

import recall.keys as keys
from recall.errors import MemoryNotFoundError, ValidationIssue
from recall.models import RelationshipType
from recall.services.memory_index import (
    convert_scope,
    create_memory,
    delete_memory,
    get_memory,
    update_memory,
)
from recall.services.memory_relationships import (
    get_relationship,
    link_memories,
    list_memory_relationships,
    memory_graph,
    related_memories,
    unlink_memories,
)


def _memories(client, scope, count, **kwargs):
    return [create_memory(client, scope, content=f"memory {i}", **kwargs) for i in range(count)]


def test_link_writes_edge_and_indexes(store, scope):
    a, b = _memories(store, scope, 2)
    rel = link_memories(store, scope, a.id, b.id, "references", {"note": "see also"})
    ns = scope.namespace(False)
    assert rel.relationship_type == RelationshipType.references
    assert store.sismember(keys.relationships_all(ns), rel.id)
    assert store.sismember(keys.memory_relationships(ns, a.id), rel.id)
    assert store.sismember(keys.memory_relationships_out(ns, a.id), rel.id)
    assert store.sismember(keys.memory_relationships_in(ns, b.id), rel.id)
    assert get_relationship(store, scope, rel.id).metadata == {"note": "see also"}
    assert rel.created_at.endswith("Z")


def test_link_is_idempotent_per_type(store, scope):
    a, b = _memories(store, scope, 2)
    first = link_memories(store, scope, a.id, b.id)
    again = link_memories(store, scope, a.id, b.id, "relates_to")
    other = link_memories(store, scope, a.id, b.id, "parent_of")
    assert again.id == first.id
    assert other.id != first.id
    assert len(list_memory_relationships(store, scope, a.id)) == 2


def test_self_link_rejected_without_reads(store, scope, monkeypatch):
    from recall.services import memory_relationships

    monkeypatch.setattr(
        memory_relationships,
        "get_memory",
        lambda *args, **kwargs: pytest.fail("self-link must be rejected before reading"),
    )
    with pytest.raises(ValidationIssue) as exc:
        link_memories(store, scope, "same", "same")
    assert exc.value.error_type == "self_reference"


def test_link_requires_both_endpoints(store, scope):
    (a,) = _memories(store, scope, 1)
    with pytest.raises(MemoryNotFoundError) as exc:
        link_memories(store, scope, a.id, "missing")
    assert exc.value.field == "to_memory_id"
    with pytest.raises(MemoryNotFoundError) as exc:
        link_memories(store, scope, "missing", a.id)
    assert exc.value.field == "from_memory_id"


def test_link_rejects_unknown_type(store, scope):
    a, b = _memories(store, scope, 2)
    with pytest.raises(ValidationIssue):
        link_memories(store, scope, a.id, b.id, "loves")


@pytest.mark.parametrize("global_first", [True, False])
def test_cross_scope_link_rejected(store, scope, global_first):
    shared = create_memory(store, scope, content="global", is_global=True)
    local = create_memory(store, scope, content="local")
    pair = (shared.id, local.id) if global_first else (local.id, shared.id)
    with pytest.raises(ValidationIssue) as exc:
        link_memories(store, scope, *pair)
    assert exc.value.error_type == "cross_scope"
    assert store.scard(keys.relationships_all(scope.namespace(False))) == 0
    assert store.scard(keys.relationships_all("global")) == 0


def test_global_edges_live_in_global_store(store, make_scope):
    scope = make_scope(mode="global")
    a = create_memory(store, scope, content="a", is_global=True)
    b = create_memory(store, scope, content="b", is_global=True)
    rel = link_memories(store, scope, a.id, b.id)
    assert rel.is_global
    assert store.sismember(keys.relationships_all("global"), rel.id)
    assert [r.id for r in list_memory_relationships(store, scope, a.id)] == [rel.id]
    assert list_memory_relationships(store, scope.with_mode("isolated"), a.id) == []


def test_unlink_leaves_memories(store, scope):
    a, b = _memories(store, scope, 2)
    rel = link_memories(store, scope, a.id, b.id)
    assert unlink_memories(store, scope, rel.id) is True
    assert related_memories(store, scope, a.id) == []
    assert list_memory_relationships(store, scope, b.id) == []
    assert get_memory(store, scope, a.id) is not None
    assert get_memory(store, scope, b.id) is not None
    assert unlink_memories(store, scope, rel.id) is False


def test_direction_filters(store, scope):
    a, b, c = _memories(store, scope, 3)
    out_rel = link_memories(store, scope, b.id, c.id)
    in_rel = link_memories(store, scope, a.id, b.id)
    assert [r.id for r in list_memory_relationships(store, scope, b.id, "outgoing")] == [out_rel.id]
    assert [r.id for r in list_memory_relationships(store, scope, b.id, "incoming")] == [in_rel.id]
    assert [r.id for r in list_memory_relationships(store, scope, b.id)] == sorted([out_rel.id, in_rel.id])
    related = related_memories(store, scope, b.id, direction="outgoing")
    assert [item.memory.id for item in related] == [c.id]


def test_traversal_terminates_on_cycles(store, scope):
    a, b, c = _memories(store, scope, 3)
    link_memories(store, scope, a.id, b.id)
    link_memories(store, scope, b.id, c.id)
    link_memories(store, scope, c.id, a.id)
    related = related_memories(store, scope, a.id, depth=5)
    assert sorted(item.memory.id for item in related) == sorted([b.id, c.id])
    assert all(item.depth == 1 for item in related)


def test_traversal_depth_is_bounded(store, scope):
    a, b, c, d = _memories(store, scope, 4)
    link_memories(store, scope, a.id, b.id)
    link_memories(store, scope, b.id, c.id)
    link_memories(store, scope, c.id, d.id)
    related = related_memories(store, scope, a.id, depth=2)
    assert [(item.memory.id, item.depth) for item in related] == [(b.id, 1), (c.id, 2)]
    with pytest.raises(ValidationIssue):
        related_memories(store, scope, a.id, depth=6)
    with pytest.raises(ValidationIssue):
        related_memories(store, scope, a.id, depth=0)


def test_traversal_filters_relationship_types(store, scope):
    a, b, c = _memories(store, scope, 3)
    link_memories(store, scope, a.id, b.id, "implements")
    link_memories(store, scope, a.id, c.id, "references")
    related = related_memories(store, scope, a.id, relationship_types=["references"])
    assert [item.memory.id for item in related] == [c.id]


def test_traversal_skips_deleted_endpoints(store, scope):
    a, b = _memories(store, scope, 2)
    link_memories(store, scope, a.id, b.id)
    delete_memory(store, scope, b.id)
    assert related_memories(store, scope, a.id) == []


def test_graph_includes_root_and_depth(store, scope):
    a, b, c, d = _memories(store, scope, 4)
    link_memories(store, scope, a.id, b.id)
    link_memories(store, scope, b.id, c.id)
    link_memories(store, scope, c.id, d.id)
    graph = memory_graph(store, scope, a.id, max_depth=2)
    assert set(graph.nodes) == {a.id, b.id, c.id}
    assert graph.nodes[a.id].depth == 0
    assert graph.nodes[c.id].depth == 2
    assert graph.max_depth_reached == 2
    assert len(graph.edges()) == 2


def test_graph_caps_node_count(store, scope):
    root, *children = _memories(store, scope, 6)
    for child in children:
        link_memories(store, scope, root.id, child.id)
    graph = memory_graph(store, scope, root.id, max_depth=1, max_nodes=3)
    assert graph.total_nodes == 3
    assert root.id in graph.nodes


def test_graph_validates_bounds(store, scope):
    (a,) = _memories(store, scope, 1)
    with pytest.raises(ValidationIssue):
        memory_graph(store, scope, a.id, max_depth=4)
    with pytest.raises(ValidationIssue):
        memory_graph(store, scope, a.id, max_nodes=101)
    assert memory_graph(store, scope, "missing") is None


def test_scope_conversion_drops_edges(store, scope, make_scope):
    a, b, c = _memories(store, scope, 3)
    dropped_edge = link_memories(store, scope, a.id, b.id)
    kept_edge = link_memories(store, scope, b.id, c.id)

    convert_scope(store, scope, a.id, target_global=True)

    ns = scope.namespace(False)
    assert get_relationship(store, scope, dropped_edge.id) is None
    assert not store.sismember(keys.relationships_all(ns), dropped_edge.id)
    assert not store.sismember(keys.memory_relationships_in(ns, b.id), dropped_edge.id)
    assert store.exists(keys.memory_relationships_out(ns, a.id)) == 0
    assert get_relationship(store, scope, kept_edge.id) is not None

    hybrid = make_scope(mode="hybrid")
    assert list_memory_relationships(store, hybrid, a.id) == []
    assert [rel.id for rel in list_memory_relationships(store, hybrid, b.id)] == [kept_edge.id]


def test_scope_change_through_update_drops_edges(store, scope):
    a, b = _memories(store, scope, 2)
    rel = link_memories(store, scope, a.id, b.id)
    update_memory(store, scope, b.id, {"is_global": True})
    assert get_relationship(store, scope, rel.id) is None
    assert list_memory_relationships(store, scope, a.id) == []
