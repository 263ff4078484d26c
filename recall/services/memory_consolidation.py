"""
Consolidation of near-duplicate memories.

Recent workspace and global memories are grouped greedily: each unvisited
memory seeds a cluster and pulls in every other unvisited memory of the same
scope whose embedding is within the similarity threshold of the seed. Each
cluster becomes one new memory that supersedes its members; the members are
tagged and kept. Duplicate detection and manual merging, which delete the
redundant copies instead, live here as well.
"""

from __future__ import annotations

from typing import Optional

import recall.config as config
import recall.keys as keys
from recall.context import RequestContext, WorkspaceScope
from recall.errors import MemoryNotFoundError, ValidationIssue
from recall.models import (
    ConsolidationConfig,
    ConsolidationResult,
    ConsolidationRun,
    ContextType,
    DuplicateGroup,
    Memory,
    RelationshipType,
    new_id,
    normalize_tags,
    now_ms,
)
from recall.services.memory_index import (
    count_memories,
    create_memory,
    delete_memory,
    get_memories,
    recent_in_namespace,
    update_memory,
)
from recall.services.memory_relationships import link_memories
from recall.services.memory_shared import (
    _tool_scope,
    cosine_similarity,
    service_tool,
    logger,
    serialize_memory,
    MAX_BATCH_ITEMS,
    MAX_RESULT_LIMIT,
    MAX_SHORT_TEXT_LENGTH,
    MAX_TAG_ITEMS,
    MAX_TEXT_LENGTH,
)
from recall.validators import (
    validate_confidence,
    validate_int_range,
    validate_limit,
    validate_optional_text,
    validate_string_list,
)

CONSOLIDATED_TAG = config.CONSOLIDATED_TAG
COOLDOWN_MS = config.CONSOLIDATION_COOLDOWN_SECONDS * 1000
DAY_MS = 24 * 60 * 60 * 1000


def default_config() -> ConsolidationConfig:
    return ConsolidationConfig(
        similarity_threshold=config.CONSOLIDATION_SIMILARITY_THRESHOLD,
        min_cluster_size=config.CONSOLIDATION_MIN_CLUSTER_SIZE,
        memory_count_threshold=config.CONSOLIDATION_MEMORY_COUNT_THRESHOLD,
        max_memories=config.CONSOLIDATION_MAX_MEMORIES,
    )


def build_config(
    similarity_threshold: Optional[float] = None,
    min_cluster_size: Optional[int] = None,
    max_age_days: Optional[int] = None,
    memory_count_threshold: Optional[int] = None,
    max_memories: Optional[int] = None,
) -> ConsolidationConfig:
    """Defaults overridden by whichever values are given; all validated."""
    cfg = default_config()
    if similarity_threshold is not None:
        validate_confidence(similarity_threshold, "similarity_threshold")
        cfg.similarity_threshold = float(similarity_threshold)
    if min_cluster_size is not None:
        validate_int_range(min_cluster_size, "min_cluster_size", 2)
        cfg.min_cluster_size = min_cluster_size
    if max_age_days is not None:
        validate_int_range(max_age_days, "max_age_days", 1)
        cfg.max_age_days = max_age_days
    if memory_count_threshold is not None:
        validate_int_range(memory_count_threshold, "memory_count_threshold", 1)
        cfg.memory_count_threshold = memory_count_threshold
    if max_memories is not None:
        validate_int_range(max_memories, "max_memories", 1, 10000)
        cfg.max_memories = max_memories
    return cfg


def greedy_cluster(
    memories: list[Memory],
    threshold: float,
    min_size: int,
) -> list[list[Memory]]:
    """Seed-similarity clustering; members are only guaranteed close to their seed."""
    visited: set[str] = set()
    clusters = []
    for seed in memories:
        if seed.id in visited:
            continue
        visited.add(seed.id)
        cluster = [seed]
        for other in memories:
            if other.id in visited or other.is_global != seed.is_global:
                continue
            if cosine_similarity(seed.embedding, other.embedding) >= threshold:
                cluster.append(other)
                visited.add(other.id)
        if len(cluster) >= min_size:
            clusters.append(cluster)
    return clusters


def _load_candidates(client, scope: WorkspaceScope, cfg: ConsolidationConfig) -> list[Memory]:
    seen: dict[str, Memory] = {}
    for is_global in (False, True):
        for memory in recent_in_namespace(client, scope.namespace(is_global), cfg.max_memories):
            seen.setdefault(memory.id, memory)
    candidates = list(seen.values())
    if cfg.max_age_days:
        cutoff = now_ms() - cfg.max_age_days * DAY_MS
        candidates = [memory for memory in candidates if memory.timestamp <= cutoff]
    return candidates


def _tags_with_marker(tags: list[str]) -> list[str]:
    """Source tags plus the consolidated marker, trimmed so the marker always fits."""
    if CONSOLIDATED_TAG in tags:
        return tags
    return tags[:MAX_TAG_ITEMS - 1] + [CONSOLIDATED_TAG]


def _consolidate_cluster(
    client,
    scope: WorkspaceScope,
    cluster: list[Memory],
    min_size: int,
) -> tuple[Optional[Memory], int, int]:
    """
    Merge one cluster into a superseding memory.

    Members are re-read first; ones that expired or were deleted since the
    candidates were loaded are skipped. Returns the new memory (None when
    fewer than min_size members remain), the number of members it
    supersedes, and the number skipped.
    """
    live = [
        member
        for member in get_memories(client, scope, [member.id for member in cluster])
        if member.is_global == cluster[0].is_global
    ]
    missing = len(cluster) - len(live)
    if len(live) < min_size:
        return None, 0, missing

    parts = [member.summary or member.content for member in live]
    content = f"## Consolidated from {len(live)} memories\n\n" + "\n\n".join(parts)
    tags = [CONSOLIDATED_TAG]
    for member in live:
        for tag in member.tags:
            if tag not in tags:
                tags.append(tag)
    retagged = {member.id: _tags_with_marker(member.tags) for member in live}

    consolidated = create_memory(
        client,
        scope,
        content=content[:MAX_TEXT_LENGTH],
        context_type=ContextType.information,
        importance=max(member.importance for member in live),
        tags=tags[:MAX_TAG_ITEMS],
        is_global=live[0].is_global,
    )
    superseded = 0
    for member in live:
        try:
            link_memories(client, scope, consolidated.id, member.id, RelationshipType.supersedes)
        except MemoryNotFoundError:
            missing += 1
            continue
        superseded += 1
        if retagged[member.id] is not member.tags:
            update_memory(client, scope, member.id, {"tags": retagged[member.id]})
    return consolidated, superseded, missing


def _build_report(clusters: int, consolidated: int, skipped: int, ids: list[str], missing: int = 0) -> str:
    lines = [
        f"Consolidation complete: {clusters} cluster{'' if clusters == 1 else 's'} found, "
        f"{consolidated} memories consolidated."
    ]
    if skipped:
        lines.append(f"{skipped} memories skipped (no embeddings).")
    if missing:
        lines.append(f"{missing} memories skipped (no longer stored).")
    if ids:
        lines.append(f"New consolidated memory IDs: {', '.join(ids)}")
    return " ".join(lines)


def _store_run(client, scope: WorkspaceScope, run: ConsolidationRun) -> None:
    pipe = client.pipeline(transaction=False)
    pipe.hset(keys.consolidation(scope.workspace_id, run.id), mapping=run.to_hash())
    pipe.zadd(keys.consolidations_all(scope.workspace_id), {run.id: run.timestamp})
    pipe.set(keys.consolidations_last_run(scope.workspace_id), str(run.timestamp))
    pipe.execute()


def run_consolidation(
    client,
    scope: WorkspaceScope,
    cfg: Optional[ConsolidationConfig] = None,
) -> ConsolidationResult:
    """Cluster similar memories, merge each cluster, and record the run."""
    cfg = cfg or default_config()
    candidates = _load_candidates(client, scope, cfg)
    embedded = [memory for memory in candidates if memory.embedding]
    skipped = len(candidates) - len(embedded)

    if len(embedded) < cfg.min_cluster_size:
        result = ConsolidationResult(
            skipped_no_embedding=skipped,
            report=(
                f"No clusters found. {len(embedded)} memories with embeddings "
                f"({skipped} skipped without embeddings)."
            ),
        )
    else:
        clusters = greedy_cluster(embedded, cfg.similarity_threshold, cfg.min_cluster_size)
        ids = []
        total = 0
        missing = 0
        for cluster in clusters:
            consolidated, superseded, skipped_members = _consolidate_cluster(
                client, scope, cluster, cfg.min_cluster_size
            )
            missing += skipped_members
            if consolidated is None:
                continue
            ids.append(consolidated.id)
            total += superseded
        result = ConsolidationResult(
            clusters_found=len(clusters),
            memories_consolidated=total,
            consolidated_memory_ids=ids,
            skipped_no_embedding=skipped,
            skipped_missing=missing,
            report=_build_report(len(clusters), total, skipped, ids, missing),
        )

    run = ConsolidationRun(id=new_id(), timestamp=now_ms(), config=cfg, result=result)
    _store_run(client, scope, run)
    logger.info(
        "consolidation_complete",
        extra={
            "run_id": run.id,
            "clusters_found": result.clusters_found,
            "memories_consolidated": result.memories_consolidated,
            "skipped_no_embedding": result.skipped_no_embedding,
        },
    )
    return result


def last_run_timestamp(client, scope: WorkspaceScope) -> Optional[int]:
    raw = client.get(keys.consolidations_last_run(scope.workspace_id))
    return int(raw) if raw else None


def should_consolidate(client, scope: WorkspaceScope, threshold: Optional[int] = None) -> bool:
    """True when enough memories exist and no run finished in the last 24 hours."""
    if threshold is None:
        threshold = config.CONSOLIDATION_MEMORY_COUNT_THRESHOLD
    if count_memories(client, scope) < threshold:
        return False
    last_run = last_run_timestamp(client, scope)
    return last_run is None or last_run <= now_ms() - COOLDOWN_MS


def get_consolidation_history(client, scope: WorkspaceScope, limit: int = 10) -> list[ConsolidationRun]:
    """Recorded runs, newest first."""
    validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    run_ids = client.zrevrange(keys.consolidations_all(scope.workspace_id), 0, limit - 1)
    if not run_ids:
        return []
    pipe = client.pipeline(transaction=False)
    for run_id in run_ids:
        pipe.hgetall(keys.consolidation(scope.workspace_id, run_id))
    runs = []
    for data in pipe.execute():
        run = ConsolidationRun.from_hash(data) if data else None
        if run is not None:
            runs.append(run)
    return runs


def consolidation_status(client, scope: WorkspaceScope, threshold: Optional[int] = None) -> dict:
    if threshold is None:
        threshold = config.CONSOLIDATION_MEMORY_COUNT_THRESHOLD
    history = get_consolidation_history(client, scope, 1)
    last_run = history[0] if history else None
    return {
        "total_memories": count_memories(client, scope),
        "threshold": threshold,
        "should_consolidate": should_consolidate(client, scope, threshold),
        "last_run": {
            "id": last_run.id,
            "timestamp": last_run.timestamp,
            "clusters_found": last_run.result.clusters_found,
            "memories_consolidated": last_run.result.memories_consolidated,
        } if last_run else None,
    }


def find_duplicate_groups(
    client,
    scope: WorkspaceScope,
    similarity_threshold: float = 0.85,
) -> list[DuplicateGroup]:
    """Groups of near-identical memories; the score is the best match against the group's seed."""
    validate_confidence(similarity_threshold, "similarity_threshold")
    candidates = [
        memory
        for memory in _load_candidates(client, scope, default_config())
        if memory.embedding
    ]
    groups = []
    for cluster in greedy_cluster(candidates, similarity_threshold, 2):
        seed = cluster[0]
        score = max(cosine_similarity(seed.embedding, other.embedding) for other in cluster[1:])
        groups.append(DuplicateGroup(memories=cluster, similarity_score=score))
    return groups


def merge_memories(
    client,
    scope: WorkspaceScope,
    memory_ids: list[str],
    keep_id: Optional[str] = None,
    merge_content: bool = True,
) -> Optional[Memory]:
    """
    Fold several memories into one and delete the rest.

    The kept memory is keep_id, or the most important one (first wins on a
    tie). It receives the union of tags, the highest importance and, when
    merge_content is set, the other memories' content appended below its
    own. Returns None when none of the ids exist or keep_id is not among
    them.
    """
    if not memory_ids or len(memory_ids) < 2:
        raise ValidationIssue(
            "memory_ids must contain at least 2 ids",
            field="memory_ids",
            error_type="min_items",
        )
    validate_string_list(memory_ids, "memory_ids", MAX_BATCH_ITEMS, MAX_SHORT_TEXT_LENGTH)
    validate_optional_text(keep_id, "keep_id", MAX_SHORT_TEXT_LENGTH)

    memories = get_memories(client, scope, memory_ids)
    if not memories:
        return None
    if keep_id:
        keep = next((memory for memory in memories if memory.id == keep_id), None)
        if keep is None:
            return None
    else:
        keep = max(memories, key=lambda memory: memory.importance)
    others = [memory for memory in memories if memory.id != keep.id]

    updates = {
        "tags": normalize_tags(tag for memory in memories for tag in memory.tags)[:MAX_TAG_ITEMS],
        "importance": max(memory.importance for memory in memories),
    }
    if merge_content and others:
        merged = f"{keep.content}\n\n--- Merged content ---\n" + "\n\n".join(m.content for m in others)
        updates["content"] = merged[:MAX_TEXT_LENGTH]
    updated = update_memory(client, scope, keep.id, updates)
    if updated is None:
        return None
    for memory in others:
        delete_memory(client, scope, memory.id)
    logger.info(
        "memories_merged",
        extra={"memory_id": keep.id, "merged_ids": [memory.id for memory in others]},
    )
    return updated


@service_tool
def auto_consolidate(
    similarity_threshold: Optional[float] = None,
    min_cluster_size: Optional[int] = None,
    max_age_days: Optional[int] = None,
    max_memories: Optional[int] = None,
    memory_count_threshold: Optional[int] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Consolidate similar memories only when the count threshold and cooldown allow it."""
    cfg = build_config(
        similarity_threshold=similarity_threshold,
        min_cluster_size=min_cluster_size,
        max_age_days=max_age_days,
        memory_count_threshold=memory_count_threshold,
        max_memories=max_memories,
    )
    client, scope = _tool_scope(context)
    if not should_consolidate(client, scope, cfg.memory_count_threshold):
        return {
            "status": "ok",
            "needed": False,
            "message": "Consolidation not needed at this time.",
        }
    result = run_consolidation(client, scope, cfg)
    return {"status": "ok", "needed": True, "result": result.to_dict()}


@service_tool
def force_consolidate(
    similarity_threshold: Optional[float] = None,
    min_cluster_size: Optional[int] = None,
    max_age_days: Optional[int] = None,
    max_memories: Optional[int] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Consolidate similar memories regardless of thresholds."""
    cfg = build_config(
        similarity_threshold=similarity_threshold,
        min_cluster_size=min_cluster_size,
        max_age_days=max_age_days,
        max_memories=max_memories,
    )
    client, scope = _tool_scope(context)
    result = run_consolidation(client, scope, cfg)
    return {"status": "ok", "result": result.to_dict()}


@service_tool
def consolidation_status_tool(
    memory_count_threshold: Optional[int] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Memory count, threshold, recommendation, and the last run."""
    if memory_count_threshold is not None:
        validate_int_range(memory_count_threshold, "memory_count_threshold", 1)
    client, scope = _tool_scope(context)
    payload = consolidation_status(client, scope, memory_count_threshold)
    payload["status"] = "ok"
    return payload


@service_tool
def consolidation_history(
    limit: int = 10,
    context: Optional[RequestContext] = None,
) -> dict:
    """Past consolidation runs, newest first."""
    validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    client, scope = _tool_scope(context)
    runs = get_consolidation_history(client, scope, limit)
    return {
        "status": "ok",
        "count": len(runs),
        "runs": [run.to_dict() for run in runs],
    }


@service_tool
def find_duplicates(
    similarity_threshold: float = 0.85,
    auto_merge: bool = False,
    keep_highest_importance: bool = True,
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Find groups of near-duplicate memories, optionally merging each group.

    Args:
        similarity_threshold: Minimum cosine similarity to the group seed (0-1)
        auto_merge: Keep one memory per group and delete the others
        keep_highest_importance: When merging, keep the most important memory
            instead of the group seed

    Returns:
        The groups found and, when merging, how many memories were removed
    """
    client, scope = _tool_scope(context)
    groups = find_duplicate_groups(client, scope, similarity_threshold)
    payload = {
        "status": "ok",
        "groups_found": len(groups),
        "groups": [group.to_dict() for group in groups],
    }
    if auto_merge:
        merged_count = 0
        for group in groups:
            if keep_highest_importance:
                keep = max(group.memories, key=lambda memory: memory.importance)
            else:
                keep = group.memories[0]
            ids = [memory.id for memory in group.memories]
            if merge_memories(client, scope, ids, keep_id=keep.id, merge_content=False) is not None:
                merged_count += len(ids) - 1
        payload["merged_count"] = merged_count
    return payload


@service_tool
def consolidate_memories(
    memory_ids: list[str],
    keep_id: Optional[str] = None,
    context: Optional[RequestContext] = None,
) -> dict:
    """Merge the given memories into one; the others are deleted."""
    client, scope = _tool_scope(context)
    merged = merge_memories(client, scope, memory_ids, keep_id=keep_id)
    if merged is None:
        missing = keep_id or ", ".join(memory_ids)
        raise MemoryNotFoundError(
            f"Memories not found: {missing}",
            field="keep_id" if keep_id else "memory_ids",
            item_id=missing,
        )
    return {
        "status": "consolidated",
        "memory_ids": memory_ids,
        "memory": serialize_memory(merged, "summary"),
    }
