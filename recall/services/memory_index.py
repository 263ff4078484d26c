"""
Memory entity storage and the derived indexes kept consistent with it.

Every memory lives in exactly one namespace (its workspace or ``global``)
and belongs to the all-ids set, the timeline, its type set, one set per tag,
the importance index when importance >= 8, and its category set. All
membership changes for one operation go out in a single non-transactional
pipeline. Index sets can outlive the primary record (TTL expiry, partial
writes), so every reader skips ids whose record is gone.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

import recall.keys as keys
from recall.context import WorkspaceScope
from recall.errors import ValidationIssue
from recall.models import (
    ContextType,
    Memory,
    Session,
    generate_summary,
    new_id,
    normalize_tags,
    now_ms,
)
from recall.services.memory_shared import (
    logger,
    embed_or_none,
    MAX_BATCH_ITEMS,
    MAX_RESULT_LIMIT,
    MAX_SHORT_TEXT_LENGTH,
    MAX_SUMMARY_LENGTH,
    MAX_TAG_ITEMS,
    MAX_TAG_LENGTH,
    MAX_TEXT_LENGTH,
)
from recall.validators import (
    coerce_enum,
    validate_importance,
    validate_int_range,
    validate_limit,
    validate_optional_text,
    validate_required_text,
    validate_string_list,
    validate_ttl,
)

_CREATE_FIELDS = {
    "content",
    "context_type",
    "tags",
    "importance",
    "summary",
    "session_id",
    "ttl_seconds",
    "is_global",
    "category",
}

_UPDATABLE_FIELDS = {
    "content",
    "summary",
    "context_type",
    "tags",
    "importance",
    "session_id",
    "category",
    "is_global",
}


# =============================================================================
# Index membership
# =============================================================================

def _index_entries(memory: Memory) -> dict[tuple[str, str], object]:
    """Map (kind, key) -> value for every index the memory's fields imply."""
    ns = keys.namespace(memory.workspace_id, memory.is_global)
    entries: dict[tuple[str, str], object] = {
        ("set", keys.memories_all(ns)): None,
        ("zset", keys.memories_timeline(ns)): memory.timestamp,
        ("set", keys.memories_by_type(ns, memory.context_type.value)): None,
    }
    for tag in memory.tags:
        entries[("set", keys.memories_by_tag(ns, tag))] = None
    if memory.is_important:
        entries[("zset", keys.memories_important(ns))] = memory.importance
    if memory.category:
        entries[("string", keys.memory_category(ns, memory.id))] = memory.category
        entries[("set", keys.category(ns, memory.category))] = None
    return entries


def _add_entries(pipe, memory: Memory, entries: dict[tuple[str, str], object]) -> None:
    for (kind, key), value in entries.items():
        if kind == "set":
            pipe.sadd(key, memory.id)
        elif kind == "zset":
            pipe.zadd(key, {memory.id: value})
        else:
            pipe.set(key, value)
    if memory.category:
        # The category registry is shared by every memory in the namespace and never pruned.
        ns = keys.namespace(memory.workspace_id, memory.is_global)
        pipe.zadd(keys.categories_all(ns), {memory.category: memory.timestamp}, nx=True)


def _remove_entries(pipe, memory_id: str, entries: Iterable[tuple[str, str]]) -> None:
    for kind, key in entries:
        if kind == "set":
            pipe.srem(key, memory_id)
        elif kind == "zset":
            pipe.zrem(key, memory_id)
        else:
            pipe.delete(key)


def _primary_key(memory: Memory) -> str:
    return keys.memory(keys.namespace(memory.workspace_id, memory.is_global), memory.id)


def _write_primary(pipe, memory: Memory, ttl_ms: Optional[int] = None) -> None:
    key = _primary_key(memory)
    pipe.hset(key, mapping=memory.to_hash())
    if ttl_ms:
        pipe.pexpire(key, ttl_ms)
        if memory.category:
            ns = keys.namespace(memory.workspace_id, memory.is_global)
            pipe.pexpire(keys.memory_category(ns, memory.id), ttl_ms)


def index_memberships(client, memory: Memory) -> dict[str, bool]:
    """Report whether the memory's id is present in each index it should belong to."""
    result = {}
    for (kind, key), value in _index_entries(memory).items():
        if kind == "set":
            result[key] = bool(client.sismember(key, memory.id))
        elif kind == "zset":
            result[key] = client.zscore(key, memory.id) is not None
        else:
            result[key] = client.get(key) == value
    return result


# =============================================================================
# Validation
# =============================================================================

def _validate_fields(
    *,
    content: Optional[str] = None,
    summary: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
    importance: Optional[int] = None,
    session_id: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
    category: Optional[str] = None,
    require_content: bool = False,
) -> None:
    if require_content or content is not None:
        validate_required_text(content, "content", MAX_TEXT_LENGTH)
    validate_optional_text(summary, "summary", MAX_SUMMARY_LENGTH)
    validate_string_list(tags, "tags", MAX_TAG_ITEMS, MAX_TAG_LENGTH)
    if importance is not None:
        validate_importance(importance)
    validate_optional_text(session_id, "session_id", MAX_SHORT_TEXT_LENGTH)
    validate_ttl(ttl_seconds)
    validate_optional_text(category, "category", MAX_SHORT_TEXT_LENGTH)
    if category is not None and not category.strip():
        raise ValidationIssue("category must not be blank", field="category", error_type="required")


# =============================================================================
# Create / read
# =============================================================================

def validate_memory_item(item) -> ContextType:
    """Check one create payload (as accepted by create_memory) without writing anything."""
    if not isinstance(item, dict):
        raise ValidationIssue("each memory must be an object", field="memories", error_type="invalid_type")
    unknown = set(item) - _CREATE_FIELDS
    if unknown:
        raise ValidationIssue(
            f"Unsupported memory fields: {sorted(unknown)}",
            field=sorted(unknown)[0],
            error_type="invalid_field",
        )
    ctx_type = coerce_enum(ContextType, item.get("context_type", ContextType.information), "context_type")
    _validate_fields(
        content=item.get("content"),
        summary=item.get("summary"),
        tags=item.get("tags"),
        importance=item.get("importance", 5),
        session_id=item.get("session_id"),
        ttl_seconds=item.get("ttl_seconds"),
        category=item.get("category"),
        require_content=True,
    )
    return ctx_type


def _build_memory(
    scope: WorkspaceScope,
    ctx_type: ContextType,
    item: dict,
    memory_id: str,
    timestamp: int,
    embedding: Optional[list[float]],
) -> Memory:
    content = item["content"]
    ttl_seconds = item.get("ttl_seconds")
    is_global = bool(item.get("is_global", False))
    category = item.get("category")
    return Memory(
        id=memory_id,
        timestamp=timestamp,
        context_type=ctx_type,
        content=content,
        summary=item.get("summary") or generate_summary(content),
        tags=normalize_tags(item.get("tags")),
        importance=item.get("importance", 5),
        session_id=item.get("session_id") or None,
        embedding=embedding,
        ttl_seconds=ttl_seconds,
        expires_at=timestamp + ttl_seconds * 1000 if ttl_seconds else None,
        is_global=is_global,
        workspace_id="" if is_global else scope.workspace_id,
        category=category.strip() if category else None,
    )


def _insert(client, memory: Memory, ttl_ms: Optional[int]) -> None:
    pipe = client.pipeline(transaction=False)
    _write_primary(pipe, memory, ttl_ms)
    _add_entries(pipe, memory, _index_entries(memory))
    pipe.execute()


def create_memory(
    client,
    scope: WorkspaceScope,
    *,
    content: str,
    context_type=ContextType.information,
    tags: Optional[Sequence[str]] = None,
    importance: int = 5,
    summary: Optional[str] = None,
    session_id: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
    is_global: bool = False,
    category: Optional[str] = None,
) -> Memory:
    """Store a new memory and add it to every index for its scope."""
    item = {
        "content": content,
        "context_type": context_type,
        "tags": tags,
        "importance": importance,
        "summary": summary,
        "session_id": session_id,
        "ttl_seconds": ttl_seconds,
        "is_global": is_global,
        "category": category,
    }
    ctx_type = validate_memory_item(item)
    memory = _build_memory(scope, ctx_type, item, new_id(), now_ms(), embed_or_none(content))
    _insert(client, memory, ttl_seconds * 1000 if ttl_seconds else None)

    logger.info(
        "memory_created",
        extra={"memory_id": memory.id, "is_global": memory.is_global, "context_type": ctx_type.value},
    )
    return memory


def create_memories(client, scope: WorkspaceScope, items: Sequence[dict]) -> list[Memory]:
    """Create several memories; every item is validated before the first write."""
    if not items:
        raise ValidationIssue("memories must not be empty", field="memories", error_type="required")
    if len(items) > MAX_BATCH_ITEMS:
        raise ValidationIssue(
            f"memories exceeds max items {MAX_BATCH_ITEMS}",
            field="memories",
            error_type="max_items",
        )
    for item in items:
        validate_memory_item(item)
    return [create_memory(client, scope, **item) for item in items]


def restore_memory(
    client,
    scope: WorkspaceScope,
    item: dict,
    memory_id: str,
    timestamp: int,
    embedding: Optional[list[float]] = None,
) -> Optional[Memory]:
    """
    Write a memory that already has an id and creation time (the import path).

    A TTL keeps counting from the original timestamp; None is returned when
    the memory would already have expired.
    """
    ctx_type = validate_memory_item(item)
    memory = _build_memory(scope, ctx_type, item, memory_id, timestamp, embedding)
    ttl_ms = None
    if memory.expires_at is not None:
        ttl_ms = memory.expires_at - now_ms()
        if ttl_ms <= 0:
            return None
    _insert(client, memory, ttl_ms)
    logger.info("memory_restored", extra={"memory_id": memory.id, "is_global": memory.is_global})
    return memory


def get_memory(
    client,
    scope: WorkspaceScope,
    memory_id: str,
    is_global: Optional[bool] = None,
) -> Optional[Memory]:
    """Look up a memory in the workspace, then the global store."""
    if not memory_id:
        return None
    if is_global is not True:
        data = client.hgetall(keys.memory(scope.namespace(False), memory_id))
        if data:
            return Memory.from_hash(data)
        if is_global is False:
            return None
    data = client.hgetall(keys.memory(scope.namespace(True), memory_id))
    return Memory.from_hash(data) if data else None


def get_memories(client, scope: WorkspaceScope, memory_ids: Sequence[str]) -> list[Memory]:
    """Fetch many memories in one round trip; missing or expired ids are dropped."""
    unique_ids = list(dict.fromkeys(mid for mid in memory_ids if mid))
    if not unique_ids:
        return []
    pipe = client.pipeline(transaction=False)
    for memory_id in unique_ids:
        pipe.hgetall(keys.memory(scope.namespace(False), memory_id))
        pipe.hgetall(keys.memory(scope.namespace(True), memory_id))
    raw = pipe.execute()
    memories = []
    for index in range(len(unique_ids)):
        data = raw[2 * index] or raw[2 * index + 1]
        memory = Memory.from_hash(data) if data else None
        if memory is not None:
            memories.append(memory)
    return memories


def _fetch_namespace(client, ns: str, memory_ids: Sequence[str]) -> list[Memory]:
    if not memory_ids:
        return []
    pipe = client.pipeline(transaction=False)
    for memory_id in memory_ids:
        pipe.hgetall(keys.memory(ns, memory_id))
    memories = []
    for data in pipe.execute():
        memory = Memory.from_hash(data) if data else None
        if memory is not None:
            memories.append(memory)
    return memories


def set_embedding(client, memory: Memory, embedding: list[float]) -> bool:
    """Write only the embedding field, leaving indexes untouched."""
    key = _primary_key(memory)
    if not client.exists(key):
        return False
    memory.embedding = embedding
    client.hset(key, "embedding", memory.to_hash()["embedding"])
    return True


# =============================================================================
# Update / delete / scope conversion
# =============================================================================

def _drop_edges(client, pipe, ns: str, memory_id: str) -> int:
    """Queue removal of every edge touching memory_id in ns; returns how many were found."""
    memory_sets = [
        keys.memory_relationships(ns, memory_id),
        keys.memory_relationships_out(ns, memory_id),
        keys.memory_relationships_in(ns, memory_id),
    ]
    rel_ids = sorted(client.sunion(memory_sets[1:]))
    if rel_ids:
        read = client.pipeline(transaction=False)
        for rel_id in rel_ids:
            read.hgetall(keys.relationship(ns, rel_id))
        for rel_id, data in zip(rel_ids, read.execute()):
            pipe.delete(keys.relationship(ns, rel_id))
            if data:
                for key in keys.relationship_indexes(ns, data["from_memory_id"], data["to_memory_id"]):
                    pipe.srem(key, rel_id)
            else:
                pipe.srem(keys.relationships_all(ns), rel_id)
    pipe.delete(*memory_sets)
    return len(rel_ids)


def _rewrite(client, old: Memory, new: Memory) -> int:
    """
    Persist new in place of old, applying only the index differences.

    Edges never span namespaces, so a memory that changes namespace loses
    its relationships. Returns the number of edges dropped.
    """
    old_entries = _index_entries(old)
    new_entries = _index_entries(new)
    moved = _primary_key(old) != _primary_key(new)

    ttl_ms = None
    if moved:
        remaining = client.pttl(_primary_key(old))
        if remaining and remaining > 0:
            ttl_ms = remaining

    pipe = client.pipeline(transaction=False)
    dropped = 0
    if moved:
        pipe.delete(_primary_key(old))
        dropped = _drop_edges(client, pipe, keys.namespace(old.workspace_id, old.is_global), old.id)
    _remove_entries(pipe, old.id, [entry for entry in old_entries if entry not in new_entries])
    _write_primary(pipe, new, ttl_ms)
    changed = {
        entry: value
        for entry, value in new_entries.items()
        if entry not in old_entries or old_entries[entry] != value
    }
    _add_entries(pipe, new, changed)
    pipe.execute()
    return dropped


def update_memory(
    client,
    scope: WorkspaceScope,
    memory_id: str,
    updates: dict,
) -> Optional[Memory]:
    """Merge updates into an existing memory; returns None when it does not exist."""
    unknown = set(updates) - _UPDATABLE_FIELDS
    if unknown:
        raise ValidationIssue(
            f"Unsupported update fields: {sorted(unknown)}",
            field=sorted(unknown)[0],
            error_type="invalid_field",
        )
    ctx_type = None
    if updates.get("context_type") is not None:
        ctx_type = coerce_enum(ContextType, updates["context_type"], "context_type")
    _validate_fields(
        content=updates.get("content"),
        summary=updates.get("summary"),
        tags=updates.get("tags"),
        importance=updates.get("importance"),
        session_id=updates.get("session_id"),
        category=updates.get("category") or None,
    )

    existing = get_memory(client, scope, memory_id)
    if existing is None:
        return None

    updated = Memory(**{name: getattr(existing, name) for name in existing.__dataclass_fields__})
    updated.tags = list(existing.tags)
    content_changed = "content" in updates and updates["content"] != existing.content
    if content_changed:
        updated.content = updates["content"]
        updated.embedding = embed_or_none(updated.content)
        if "summary" not in updates:
            updated.summary = generate_summary(updated.content)
    if updates.get("summary") is not None:
        updated.summary = updates["summary"]
    if ctx_type is not None:
        updated.context_type = ctx_type
    if updates.get("tags") is not None:
        updated.tags = normalize_tags(updates["tags"])
    if updates.get("importance") is not None:
        updated.importance = updates["importance"]
    if "session_id" in updates:
        updated.session_id = updates["session_id"] or None
    if "category" in updates:
        updated.category = updates["category"].strip() if updates["category"] else None
    if updates.get("is_global") is not None:
        updated.is_global = bool(updates["is_global"])
        updated.workspace_id = "" if updated.is_global else (existing.workspace_id or scope.workspace_id)

    dropped = _rewrite(client, existing, updated)
    logger.info(
        "memory_updated",
        extra={
            "memory_id": memory_id,
            "fields": sorted(updates),
            "reembedded": content_changed,
            "relationships_dropped": dropped,
        },
    )
    return updated


def delete_memory(client, scope: WorkspaceScope, memory_id: str) -> bool:
    """Remove the primary record and every index membership; False when absent."""
    memory = get_memory(client, scope, memory_id)
    if memory is None:
        return False
    pipe = client.pipeline(transaction=False)
    pipe.delete(_primary_key(memory))
    _remove_entries(pipe, memory.id, _index_entries(memory))
    pipe.execute()
    logger.info("memory_deleted", extra={"memory_id": memory_id, "is_global": memory.is_global})
    return True


def convert_scope(
    client,
    scope: WorkspaceScope,
    memory_id: str,
    target_global: bool,
    target_workspace: Optional[str] = None,
) -> Optional[Memory]:
    """Move a memory between workspace and global scope; None when it does not exist."""
    if target_global and target_workspace:
        raise ValidationIssue(
            "target_workspace is only valid when converting to workspace scope",
            field="target_workspace",
            error_type="invalid_target",
        )
    validate_optional_text(target_workspace, "target_workspace", MAX_SHORT_TEXT_LENGTH)
    if target_workspace is not None and (not target_workspace.strip() or ":" in target_workspace):
        raise ValidationIssue(
            "target_workspace must be a workspace id",
            field="target_workspace",
            error_type="invalid_target",
        )

    existing = get_memory(client, scope, memory_id)
    if existing is None:
        return None

    workspace_id = "" if target_global else (target_workspace or scope.workspace_id)
    if existing.is_global == bool(target_global) and existing.workspace_id == workspace_id:
        return existing

    converted = Memory(**{name: getattr(existing, name) for name in existing.__dataclass_fields__})
    converted.is_global = bool(target_global)
    converted.workspace_id = workspace_id
    dropped = _rewrite(client, existing, converted)
    logger.info(
        "memory_scope_converted",
        extra={
            "memory_id": memory_id,
            "is_global": converted.is_global,
            "workspace_id": workspace_id,
            "relationships_dropped": dropped,
        },
    )
    return converted


# =============================================================================
# Listings
# =============================================================================

def _merge(
    groups: Sequence[list[Memory]],
    sort_key,
    limit: Optional[int] = None,
    reverse: bool = False,
) -> list[Memory]:
    """Union listings workspace-first, drop duplicate ids, re-sort, and cut to limit."""
    seen: dict[str, Memory] = {}
    for group in groups:
        for memory in group:
            seen.setdefault(memory.id, memory)
    merged = sorted(seen.values(), key=sort_key, reverse=reverse)
    return merged if limit is None else merged[:limit]


def _recency_key(memory: Memory):
    return (memory.timestamp, memory.id)


def recent_in_namespace(client, ns: str, limit: int) -> list[Memory]:
    ids = client.zrevrange(keys.memories_timeline(ns), 0, limit - 1)
    return _fetch_namespace(client, ns, ids)


def list_recent(client, scope: WorkspaceScope, limit: int = 10) -> list[Memory]:
    validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    groups = [recent_in_namespace(client, ns, limit) for ns, _ in scope.read_namespaces()]
    return _merge(groups, _recency_key, limit, reverse=True)


def list_by_type(client, scope: WorkspaceScope, context_type, limit: int = 10) -> list[Memory]:
    ctx_type = coerce_enum(ContextType, context_type, "context_type")
    validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    groups = [
        _fetch_namespace(client, ns, sorted(client.smembers(keys.memories_by_type(ns, ctx_type.value))))
        for ns, _ in scope.read_namespaces()
    ]
    return _merge(groups, _recency_key, limit, reverse=True)


def list_by_tag(client, scope: WorkspaceScope, tag: str, limit: int = 10) -> list[Memory]:
    validate_required_text(tag, "tag", MAX_TAG_LENGTH)
    validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    groups = [
        _fetch_namespace(client, ns, sorted(client.smembers(keys.memories_by_tag(ns, tag.strip()))))
        for ns, _ in scope.read_namespaces()
    ]
    return _merge(groups, _recency_key, limit, reverse=True)


def list_important(
    client,
    scope: WorkspaceScope,
    limit: int = 10,
    min_importance: int = 8,
) -> list[Memory]:
    validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    validate_importance(min_importance, "min_importance")
    groups = []
    for ns, _ in scope.read_namespaces():
        ids = client.zrevrangebyscore(keys.memories_important(ns), "+inf", min_importance, start=0, num=limit)
        groups.append(_fetch_namespace(client, ns, ids))
    return _merge(groups, lambda m: (-m.importance, -m.timestamp, m.id), limit)


def list_by_time_window(
    client,
    scope: WorkspaceScope,
    start_ms: int,
    end_ms: int,
    min_importance: Optional[int] = None,
    context_types: Optional[Sequence] = None,
    limit: Optional[int] = None,
) -> list[Memory]:
    """Memories created inside [start_ms, end_ms], oldest first."""
    validate_int_range(start_ms, "start", 0)
    validate_int_range(end_ms, "end", 0)
    if end_ms < start_ms:
        raise ValidationIssue("end must not be before start", field="end", error_type="out_of_range")
    if min_importance is not None:
        validate_importance(min_importance, "min_importance")
    if limit is not None:
        validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    types = {coerce_enum(ContextType, value, "context_types") for value in context_types or []}

    groups = []
    for ns, _ in scope.read_namespaces():
        ids = client.zrangebyscore(keys.memories_timeline(ns), start_ms, end_ms)
        groups.append(_fetch_namespace(client, ns, ids))
    merged = _merge(groups, lambda m: (m.timestamp, m.id))
    filtered = [
        memory
        for memory in merged
        if (min_importance is None or memory.importance >= min_importance)
        and (not types or memory.context_type in types)
    ]
    return filtered if limit is None else filtered[:limit]


def list_by_category(client, scope: WorkspaceScope, category: str, limit: int = 10) -> list[Memory]:
    validate_required_text(category, "category", MAX_SHORT_TEXT_LENGTH)
    validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    groups = [
        _fetch_namespace(client, ns, sorted(client.smembers(keys.category(ns, category.strip()))))
        for ns, _ in scope.read_namespaces()
    ]
    return _merge(groups, _recency_key, limit, reverse=True)


def list_categories(client, scope: WorkspaceScope) -> list[dict]:
    """Registered category names with the number of memories currently filed under each."""
    counts: dict[str, int] = {}
    for ns, _ in scope.read_namespaces():
        for name in client.zrange(keys.categories_all(ns), 0, -1):
            counts[name] = counts.get(name, 0) + client.scard(keys.category(ns, name))
    return [
        {"category": name, "count": count}
        for name, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    ]


def scope_memories(
    client,
    scope: WorkspaceScope,
    context_types: Optional[Sequence[ContextType]] = None,
) -> list[tuple[Memory, bool]]:
    """Every live memory visible to the scope's mode, tagged with whether it is global."""
    results = []
    seen = set()
    for ns, is_global in scope.read_namespaces():
        if context_types:
            ids = client.sunion([keys.memories_by_type(ns, t.value) for t in context_types])
        else:
            ids = client.smembers(keys.memories_all(ns))
        for memory in _fetch_namespace(client, ns, sorted(ids)):
            if memory.id in seen:
                continue
            seen.add(memory.id)
            results.append((memory, is_global))
    return results


# =============================================================================
# Counts
# =============================================================================

def count_memories(client, scope: WorkspaceScope) -> int:
    """Total indexed memories in the current workspace plus the global store."""
    pipe = client.pipeline(transaction=False)
    pipe.scard(keys.memories_all(scope.namespace(False)))
    pipe.scard(keys.memories_all(scope.namespace(True)))
    workspace_count, global_count = pipe.execute()
    return int(workspace_count) + int(global_count)


def _namespace_stats(client, ns: str) -> dict:
    pipe = client.pipeline(transaction=False)
    pipe.scard(keys.memories_all(ns))
    pipe.zcard(keys.memories_important(ns))
    pipe.zcard(keys.categories_all(ns))
    for ctx_type in ContextType:
        pipe.scard(keys.memories_by_type(ns, ctx_type.value))
    values = pipe.execute()
    return {
        "total": int(values[0]),
        "important": int(values[1]),
        "categories": int(values[2]),
        "by_type": {
            ctx_type.value: int(count)
            for ctx_type, count in zip(ContextType, values[3:])
            if count
        },
    }


def summary_stats(client, scope: WorkspaceScope) -> dict:
    workspace = _namespace_stats(client, scope.namespace(False))
    global_ = _namespace_stats(client, scope.namespace(True))
    return {
        "workspace_id": scope.workspace_id,
        "workspace_path": scope.workspace_path,
        "mode": scope.mode.value,
        "workspace": workspace,
        "global": global_,
        "total": workspace["total"] + global_["total"],
        "sessions": int(client.scard(keys.sessions_all(scope.workspace_id))),
    }


# =============================================================================
# Sessions
# =============================================================================

def create_session(
    client,
    scope: WorkspaceScope,
    session_name: str,
    memory_ids: Sequence[str],
    summary: Optional[str] = None,
) -> Session:
    """Snapshot a named group of memories; ids that do not resolve are left out."""
    validate_required_text(session_name, "session_name", MAX_SHORT_TEXT_LENGTH)
    if not memory_ids:
        raise ValidationIssue("memory_ids must not be empty", field="memory_ids", error_type="required")
    validate_string_list(memory_ids, "memory_ids", MAX_BATCH_ITEMS, MAX_SHORT_TEXT_LENGTH)
    validate_optional_text(summary, "summary", MAX_SUMMARY_LENGTH)

    found = {memory.id for memory in get_memories(client, scope, memory_ids)}
    session = Session(
        session_id=new_id(),
        session_name=session_name.strip(),
        created_at=now_ms(),
        memory_ids=[memory_id for memory_id in dict.fromkeys(memory_ids) if memory_id in found],
        summary=summary or None,
    )
    pipe = client.pipeline(transaction=False)
    pipe.hset(keys.session(scope.workspace_id, session.session_id), mapping=session.to_hash())
    pipe.sadd(keys.sessions_all(scope.workspace_id), session.session_id)
    pipe.execute()
    logger.info(
        "session_created",
        extra={"session_id": session.session_id, "memory_count": session.memory_count},
    )
    return session


def get_session(client, scope: WorkspaceScope, session_id: str) -> Optional[Session]:
    if not session_id:
        return None
    return Session.from_hash(client.hgetall(keys.session(scope.workspace_id, session_id)))


def list_sessions(client, scope: WorkspaceScope) -> list[Session]:
    """Every session of the workspace, newest first."""
    session_ids = sorted(client.smembers(keys.sessions_all(scope.workspace_id)))
    if not session_ids:
        return []
    pipe = client.pipeline(transaction=False)
    for session_id in session_ids:
        pipe.hgetall(keys.session(scope.workspace_id, session_id))
    sessions = [session for session in map(Session.from_hash, pipe.execute()) if session is not None]
    return sorted(sessions, key=lambda s: (s.created_at, s.session_id), reverse=True)


def session_memories(client, scope: WorkspaceScope, session_id: str) -> list[Memory]:
    """Memories of a session still alive, in snapshot order; [] for an unknown session."""
    session = get_session(client, scope, session_id)
    if session is None:
        return []
    return get_memories(client, scope, session.memory_ids)
