"""
Memory relationship services for typed, directed edges between memories.

Supports:
- Idempotent linking of two memories in the same scope
- Lookup and removal of single edges
- Breadth-first traversal and graph extraction with cycle protection
"""

from __future__ import annotations

from typing import Optional, Sequence

import recall.keys as keys
from recall.context import RequestContext, WorkspaceScope
from recall.errors import MemoryNotFoundError, RelationshipNotFoundError, ValidationIssue
from recall.models import (
    Direction,
    GraphNode,
    Memory,
    MemoryGraph,
    OutputMode,
    RelatedMemory,
    Relationship,
    RelationshipType,
    iso_timestamp,
    new_id,
)
from recall.services.memory_index import get_memory
from recall.services.memory_shared import (
    _tool_scope,
    serialize_memory,
    service_tool,
    logger,
    MAX_GRAPH_DEPTH,
    MAX_GRAPH_NODES,
    MAX_RELATED_DEPTH,
    MAX_SHORT_TEXT_LENGTH,
)
from recall.validators import (
    coerce_enum,
    validate_int_range,
    validate_metadata,
    validate_required_text,
)


def _index_keys(ns: str, rel: Relationship) -> list[str]:
    return keys.relationship_indexes(ns, rel.from_memory_id, rel.to_memory_id)


def _coerce_types(relationship_types: Optional[Sequence]) -> Optional[set[RelationshipType]]:
    if not relationship_types:
        return None
    return {
        coerce_enum(RelationshipType, value, "relationship_types")
        for value in relationship_types
    }


def _fetch_relationships(client, ns: str, is_global: bool, rel_ids: Sequence[str]) -> list[Relationship]:
    if not rel_ids:
        return []
    pipe = client.pipeline(transaction=False)
    for rel_id in rel_ids:
        pipe.hgetall(keys.relationship(ns, rel_id))
    relationships = []
    for data in pipe.execute():
        rel = Relationship.from_hash(data, is_global=is_global) if data else None
        if rel is not None:
            relationships.append(rel)
    return relationships


def _find_relationship(
    client,
    ns: str,
    is_global: bool,
    from_id: str,
    to_id: str,
    rel_type: RelationshipType,
) -> Optional[Relationship]:
    rel_ids = sorted(client.smembers(keys.memory_relationships_out(ns, from_id)))
    for rel in _fetch_relationships(client, ns, is_global, rel_ids):
        if rel.to_memory_id == to_id and rel.relationship_type == rel_type:
            return rel
    return None


def link_memories(
    client,
    scope: WorkspaceScope,
    from_memory_id: str,
    to_memory_id: str,
    relationship_type=RelationshipType.relates_to,
    metadata: Optional[dict] = None,
) -> Relationship:
    """Create a typed edge, or return the existing one for the same (from, to, type)."""
    rel_type = coerce_enum(RelationshipType, relationship_type, "relationship_type")
    validate_required_text(from_memory_id, "from_memory_id", MAX_SHORT_TEXT_LENGTH)
    validate_required_text(to_memory_id, "to_memory_id", MAX_SHORT_TEXT_LENGTH)
    if from_memory_id == to_memory_id:
        raise ValidationIssue(
            "Cannot create relationship to self",
            field="to_memory_id",
            error_type="self_reference",
        )
    validate_metadata(metadata, "metadata")

    from_memory = get_memory(client, scope, from_memory_id)
    if from_memory is None:
        raise MemoryNotFoundError(
            f"Source memory not found: {from_memory_id}",
            field="from_memory_id",
            item_id=from_memory_id,
        )
    to_memory = get_memory(client, scope, to_memory_id)
    if to_memory is None:
        raise MemoryNotFoundError(
            f"Target memory not found: {to_memory_id}",
            field="to_memory_id",
            item_id=to_memory_id,
        )
    if from_memory.is_global != to_memory.is_global:
        raise ValidationIssue(
            "Cannot link a global memory with a workspace memory",
            field="to_memory_id",
            error_type="cross_scope",
        )

    is_global = from_memory.is_global
    ns = scope.namespace(is_global)
    existing = _find_relationship(client, ns, is_global, from_memory_id, to_memory_id, rel_type)
    if existing is not None:
        return existing

    rel = Relationship(
        id=new_id(),
        from_memory_id=from_memory_id,
        to_memory_id=to_memory_id,
        relationship_type=rel_type,
        created_at=iso_timestamp(),
        metadata=metadata or None,
        is_global=is_global,
    )
    pipe = client.pipeline(transaction=False)
    pipe.hset(keys.relationship(ns, rel.id), mapping=rel.to_hash())
    for key in _index_keys(ns, rel):
        pipe.sadd(key, rel.id)
    pipe.execute()

    logger.info(
        "relationship_linked",
        extra={
            "relationship_id": rel.id,
            "from_memory_id": from_memory_id,
            "to_memory_id": to_memory_id,
            "relationship_type": rel_type.value,
            "is_global": is_global,
        },
    )
    return rel


def get_relationship(client, scope: WorkspaceScope, relationship_id: str) -> Optional[Relationship]:
    """Look up an edge in the workspace store, then the global one."""
    if not relationship_id:
        return None
    for is_global in (False, True):
        data = client.hgetall(keys.relationship(scope.namespace(is_global), relationship_id))
        if data:
            return Relationship.from_hash(data, is_global=is_global)
    return None


def list_memory_relationships(
    client,
    scope: WorkspaceScope,
    memory_id: str,
    direction=Direction.both,
    relationship_types: Optional[Sequence] = None,
) -> list[Relationship]:
    """Edges touching a memory through the index families the scope mode reads."""
    direction = coerce_enum(Direction, direction, "direction")
    types = _coerce_types(relationship_types)
    relationships: dict[str, Relationship] = {}
    for ns, is_global in scope.read_namespaces():
        index_keys = []
        if direction in (Direction.outgoing, Direction.both):
            index_keys.append(keys.memory_relationships_out(ns, memory_id))
        if direction in (Direction.incoming, Direction.both):
            index_keys.append(keys.memory_relationships_in(ns, memory_id))
        rel_ids = sorted(client.sunion(index_keys))
        for rel in _fetch_relationships(client, ns, is_global, rel_ids):
            if types is None or rel.relationship_type in types:
                relationships.setdefault(rel.id, rel)
    return [relationships[rel_id] for rel_id in sorted(relationships)]


def unlink_memories(client, scope: WorkspaceScope, relationship_id: str) -> bool:
    """Remove an edge and its index entries; endpoint memories are untouched."""
    rel = get_relationship(client, scope, relationship_id)
    if rel is None:
        return False
    ns = scope.namespace(rel.is_global)
    pipe = client.pipeline(transaction=False)
    pipe.delete(keys.relationship(ns, rel.id))
    for key in _index_keys(ns, rel):
        pipe.srem(key, rel.id)
    pipe.execute()
    logger.info(
        "relationship_unlinked",
        extra={"relationship_id": rel.id, "is_global": rel.is_global},
    )
    return True


def _neighbor(rel: Relationship, memory_id: str) -> str:
    return rel.to_memory_id if rel.from_memory_id == memory_id else rel.from_memory_id


def related_memories(
    client,
    scope: WorkspaceScope,
    memory_id: str,
    depth: int = 1,
    direction=Direction.both,
    relationship_types: Optional[Sequence] = None,
) -> list[RelatedMemory]:
    """Breadth-first walk from memory_id; each memory is reported once, at its shortest depth."""
    validate_int_range(depth, "depth", 1, MAX_RELATED_DEPTH)
    direction = coerce_enum(Direction, direction, "direction")
    types = _coerce_types(relationship_types)

    results: list[RelatedMemory] = []
    visited = {memory_id}
    frontier = [memory_id]
    for level in range(1, depth + 1):
        next_frontier = []
        for node_id in frontier:
            for rel in list_memory_relationships(client, scope, node_id, direction, types):
                other_id = _neighbor(rel, node_id)
                if other_id in visited:
                    continue
                memory = get_memory(client, scope, other_id)
                if memory is None:
                    continue
                visited.add(other_id)
                results.append(RelatedMemory(memory=memory, relationship=rel, depth=level))
                next_frontier.append(other_id)
        if not next_frontier:
            break
        frontier = next_frontier
    return results


def memory_graph(
    client,
    scope: WorkspaceScope,
    root_memory_id: str,
    max_depth: int = 2,
    max_nodes: int = 50,
) -> Optional[MemoryGraph]:
    """Node map around a root memory, capped at max_nodes; None when the root is missing."""
    validate_int_range(max_depth, "max_depth", 1, MAX_GRAPH_DEPTH)
    validate_int_range(max_nodes, "max_nodes", 1, MAX_GRAPH_NODES)

    root = get_memory(client, scope, root_memory_id)
    if root is None:
        return None

    nodes: dict[str, GraphNode] = {
        root.id: GraphNode(
            memory=root,
            relationships=list_memory_relationships(client, scope, root.id),
            depth=0,
        )
    }
    frontier = [root.id]
    level = 0
    while frontier and level < max_depth and len(nodes) < max_nodes:
        level += 1
        next_frontier = []
        for node_id in frontier:
            for rel in nodes[node_id].relationships:
                if len(nodes) >= max_nodes:
                    break
                other_id = _neighbor(rel, node_id)
                if other_id in nodes:
                    continue
                memory = get_memory(client, scope, other_id)
                if memory is None:
                    continue
                nodes[other_id] = GraphNode(
                    memory=memory,
                    relationships=list_memory_relationships(client, scope, other_id),
                    depth=level,
                )
                next_frontier.append(other_id)
        frontier = next_frontier

    return MemoryGraph(
        root_memory_id=root.id,
        nodes=nodes,
        max_depth_reached=max(node.depth for node in nodes.values()),
    )


def _serialize_related(item: RelatedMemory, output_mode: str = "summary") -> dict:
    return {
        "memory": serialize_memory(item.memory, output_mode),
        "relationship": item.relationship.to_dict(),
        "depth": item.depth,
    }


def _require_memory(client, scope: WorkspaceScope, memory_id: str) -> Memory:
    validate_required_text(memory_id, "memory_id", MAX_SHORT_TEXT_LENGTH)
    memory = get_memory(client, scope, memory_id)
    if memory is None:
        raise MemoryNotFoundError(f"Memory not found: {memory_id}", field="memory_id", item_id=memory_id)
    return memory


@service_tool
def link_memories_tool(
    from_memory_id: str,
    to_memory_id: str,
    relationship_type: str = "relates_to",
    metadata: Optional[dict] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Link two memories with a typed relationship (idempotent)."""
    client, scope = _tool_scope(context)
    rel = link_memories(client, scope, from_memory_id, to_memory_id, relationship_type, metadata)
    return {"status": "ok", "relationship": rel.to_dict()}


@service_tool
def unlink_memories_tool(
    relationship_id: str,
    context: Optional[RequestContext] = None,
) -> dict:
    """Remove a relationship; both memories are kept."""
    validate_required_text(relationship_id, "relationship_id", MAX_SHORT_TEXT_LENGTH)
    client, scope = _tool_scope(context)
    if not unlink_memories(client, scope, relationship_id):
        raise RelationshipNotFoundError(
            f"Relationship not found: {relationship_id}",
            field="relationship_id",
            item_id=relationship_id,
        )
    return {"status": "deleted", "relationship_id": relationship_id}


@service_tool
def get_related_memories(
    memory_id: str,
    relationship_types: Optional[list[str]] = None,
    depth: int = 1,
    direction: str = "both",
    output_mode: str = "summary",
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Find memories reachable from a memory through relationships.

    Args:
        memory_id: Starting memory
        relationship_types: Only follow these relationship types
        depth: Traversal depth, 1-5 (default 1)
        direction: outgoing, incoming or both
        output_mode: full, summary or compact

    Returns:
        Related memories with the edge that reached them and their depth
    """
    mode = coerce_enum(OutputMode, output_mode, "output_mode").value
    client, scope = _tool_scope(context)
    _require_memory(client, scope, memory_id)
    related = related_memories(client, scope, memory_id, depth, direction, relationship_types)
    return {
        "status": "ok",
        "memory_id": memory_id,
        "count": len(related),
        "related": [_serialize_related(item, mode) for item in related],
    }


@service_tool
def get_memory_relationships(
    memory_id: str,
    direction: str = "both",
    context: Optional[RequestContext] = None,
) -> dict:
    """List the relationships attached to a memory."""
    client, scope = _tool_scope(context)
    _require_memory(client, scope, memory_id)
    relationships = list_memory_relationships(client, scope, memory_id, direction)
    return {
        "status": "ok",
        "memory_id": memory_id,
        "count": len(relationships),
        "relationships": [rel.to_dict() for rel in relationships],
    }


@service_tool
def get_memory_graph(
    memory_id: str,
    max_depth: int = 2,
    max_nodes: int = 50,
    context: Optional[RequestContext] = None,
) -> dict:
    """Extract the relationship graph around a memory for visualization."""
    validate_required_text(memory_id, "memory_id", MAX_SHORT_TEXT_LENGTH)
    client, scope = _tool_scope(context)
    graph = memory_graph(client, scope, memory_id, max_depth, max_nodes)
    if graph is None:
        raise MemoryNotFoundError(f"Memory not found: {memory_id}", field="memory_id", item_id=memory_id)
    payload = graph.to_dict()
    payload["status"] = "ok"
    payload["edges"] = [rel.to_dict() for rel in graph.edges()]
    return payload
