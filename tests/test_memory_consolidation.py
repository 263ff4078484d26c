import pytest

import recall.keys as keys
from recall.errors import ValidationIssue
from recall.models import RelationshipType, now_ms
from recall.services import memory as memory_service
from recall.services import memory_consolidation
from recall.services.memory_consolidation import (
    build_config,
    find_duplicate_groups,
    get_consolidation_history,
    greedy_cluster,
    merge_memories,
    run_consolidation,
    should_consolidate,
)
from recall.services.memory_index import count_memories, create_memory, get_memory
from recall.services.memory_relationships import list_memory_relationships
from recall.services.memory_shared import cosine_similarity

BASE = "always run the schema migrations before deploying the billing api service to staging"


def _near_duplicates(client, scope, count=3, **kwargs):
    return [
        create_memory(client, scope, content=f"{BASE} variant{i}", tags=[f"tag{i}"], importance=3 + i, **kwargs)
        for i in range(count)
    ]


def test_similar_memories_merge_into_one(store, scope):
    originals = _near_duplicates(store, scope)
    for left in originals:
        for right in originals:
            assert cosine_similarity(left.embedding, right.embedding) >= 0.9
    create_memory(store, scope, content="frontend theme uses dark colors")

    result = run_consolidation(store, scope, build_config(min_cluster_size=2))

    assert result.clusters_found == 1
    assert result.memories_consolidated == 3
    (merged_id,) = result.consolidated_memory_ids
    merged = get_memory(store, scope, merged_id)
    assert merged.content.startswith("## Consolidated from 3 memories\n\n")
    assert merged.tags[0] == "consolidated"
    assert {"tag0", "tag1", "tag2"} <= set(merged.tags)
    assert merged.importance == 5
    assert merged.context_type.value == "information"
    assert not merged.is_global

    edges = list_memory_relationships(store, scope, merged_id, "outgoing")
    assert len(edges) == 3
    assert {edge.to_memory_id for edge in edges} == {memory.id for memory in originals}
    assert all(edge.relationship_type == RelationshipType.supersedes for edge in edges)

    for original in originals:
        kept = get_memory(store, scope, original.id)
        assert kept is not None
        assert kept.tags.count("consolidated") == 1


def test_originals_tagged_once_across_runs(store, scope):
    originals = _near_duplicates(store, scope)
    run_consolidation(store, scope)
    run_consolidation(store, scope)
    for original in originals:
        assert get_memory(store, scope, original.id).tags.count("consolidated") == 1


def test_min_cluster_size_is_respected(store, scope):
    _near_duplicates(store, scope)
    create_memory(store, scope, content="unrelated observation about logging")
    before = count_memories(store, scope)
    result = run_consolidation(store, scope, build_config(min_cluster_size=4))
    assert result.clusters_found == 0
    assert result.consolidated_memory_ids == []
    assert count_memories(store, scope) == before


def test_too_few_embedded_memories_still_records_run(redis_client, fake_embedder, scope, monkeypatch):
    from recall.services import memory_shared

    create_memory(redis_client, scope, content="one embedded memory")
    monkeypatch.setattr(memory_shared, "EMBEDDING_PROVIDER", "none")
    create_memory(redis_client, scope, content="stored without a vector")

    result = run_consolidation(redis_client, scope)
    assert result.clusters_found == 0
    assert result.skipped_no_embedding == 1
    assert result.report.startswith("No clusters found. 1 memories with embeddings")
    assert len(get_consolidation_history(redis_client, scope)) == 1


def test_clusters_do_not_mix_scopes(store, scope):
    local = create_memory(store, scope, content=BASE)
    shared = create_memory(store, scope, content=BASE, is_global=True)
    clusters = greedy_cluster([local, shared], 0.5, 2)
    assert clusters == []


def test_global_clusters_produce_global_memory(store, scope):
    _near_duplicates(store, scope, is_global=True)
    result = run_consolidation(store, scope)
    merged = get_memory(store, scope, result.consolidated_memory_ids[0])
    assert merged.is_global


def test_max_age_keeps_only_older_memories(store, scope):
    _near_duplicates(store, scope)
    result = run_consolidation(store, scope, build_config(max_age_days=1))
    assert result.clusters_found == 0


def test_should_consolidate_threshold_and_cooldown(store, scope):
    _near_duplicates(store, scope)
    assert should_consolidate(store, scope, threshold=10) is False
    assert should_consolidate(store, scope, threshold=3) is True

    run_consolidation(store, scope)
    assert should_consolidate(store, scope, threshold=3) is False

    store.set(keys.consolidations_last_run(scope.workspace_id), str(now_ms() - 25 * 60 * 60 * 1000))
    assert should_consolidate(store, scope, threshold=3) is True


def test_history_is_newest_first(store, scope):
    _near_duplicates(store, scope)
    first = run_consolidation(store, scope)
    second = run_consolidation(store, scope)
    history = get_consolidation_history(store, scope)
    assert len(history) == 2
    assert history[0].timestamp >= history[1].timestamp
    assert history[0].id > history[1].id
    assert history[1].result.consolidated_memory_ids == first.consolidated_memory_ids
    assert history[0].result.consolidated_memory_ids == second.consolidated_memory_ids
    assert len(get_consolidation_history(store, scope, limit=1)) == 1


def test_build_config_validates(store):
    with pytest.raises(ValidationIssue):
        build_config(similarity_threshold=1.5)
    with pytest.raises(ValidationIssue):
        build_config(min_cluster_size=1)
    cfg = build_config(similarity_threshold=0.9, max_age_days=7)
    assert cfg.similarity_threshold == 0.9
    assert cfg.max_age_days == 7


def test_source_at_tag_limit_is_retagged_within_limit(store, scope):
    crowded = create_memory(store, scope, content=f"{BASE} crowded", tags=[f"t{i}" for i in range(50)])
    create_memory(store, scope, content=f"{BASE} plain")

    result = run_consolidation(store, scope)

    assert result.clusters_found == 1
    assert result.memories_consolidated == 2
    assert count_memories(store, scope) == 3
    assert len(get_consolidation_history(store, scope)) == 1
    retagged = get_memory(store, scope, crowded.id)
    assert len(retagged.tags) == 50
    assert retagged.tags[-1] == "consolidated"
    assert retagged.tags[:49] == [f"t{i}" for i in range(49)]
    merged = get_memory(store, scope, result.consolidated_memory_ids[0])
    assert len(merged.tags) == 50
    assert merged.tags[0] == "consolidated"


def test_source_vanishing_mid_run_is_skipped(store, scope, monkeypatch):
    originals = _near_duplicates(store, scope)
    victim = originals[0]
    load = memory_consolidation._load_candidates

    def _load_then_expire(client, run_scope, cfg):
        candidates = load(client, run_scope, cfg)
        client.delete(keys.memory(run_scope.namespace(False), victim.id))
        return candidates

    monkeypatch.setattr(memory_consolidation, "_load_candidates", _load_then_expire)
    result = run_consolidation(store, scope)

    assert result.clusters_found == 1
    assert result.memories_consolidated == 2
    assert result.skipped_missing == 1
    merged = get_memory(store, scope, result.consolidated_memory_ids[0])
    assert merged.content.startswith("## Consolidated from 2 memories")
    edges = list_memory_relationships(store, scope, merged.id, "outgoing")
    assert {edge.to_memory_id for edge in edges} == {m.id for m in originals[1:]}
    assert len(get_consolidation_history(store, scope)) == 1


def test_cluster_shrinking_below_minimum_is_not_merged(store, scope, monkeypatch):
    originals = _near_duplicates(store, scope, count=2)
    load = memory_consolidation._load_candidates

    def _load_then_expire(client, run_scope, cfg):
        candidates = load(client, run_scope, cfg)
        client.delete(keys.memory(run_scope.namespace(False), originals[1].id))
        return candidates

    monkeypatch.setattr(memory_consolidation, "_load_candidates", _load_then_expire)
    result = run_consolidation(store, scope)

    assert result.clusters_found == 1
    assert result.consolidated_memory_ids == []
    assert result.skipped_missing == 1
    assert count_memories(store, scope) == 2
    assert get_consolidation_history(store, scope)[0].result.skipped_missing == 1


def test_history_limit_is_validated(store, scope):
    _near_duplicates(store, scope)
    run_consolidation(store, scope)
    with pytest.raises(ValidationIssue):
        get_consolidation_history(store, scope, limit=0)
    with pytest.raises(ValidationIssue):
        get_consolidation_history(store, scope, limit=-1)


def test_find_duplicate_groups(store, scope):
    originals = _near_duplicates(store, scope)
    create_memory(store, scope, content="frontend theme uses dark colors")

    groups = find_duplicate_groups(store, scope, similarity_threshold=0.85)

    assert len(groups) == 1
    assert {memory.id for memory in groups[0].memories} == {memory.id for memory in originals}
    assert groups[0].similarity_score >= 0.9
    assert count_memories(store, scope) == 4


def test_merge_keeps_most_important_and_deletes_the_rest(store, scope):
    originals = _near_duplicates(store, scope)
    keep = originals[2]

    merged = merge_memories(store, scope, [memory.id for memory in originals])

    assert merged.id == keep.id
    assert merged.importance == 5
    assert merged.content.startswith(f"{keep.content}\n\n--- Merged content ---\n")
    assert originals[0].content in merged.content
    assert set(merged.tags) == {"tag0", "tag1", "tag2"}
    assert count_memories(store, scope) == 1
    assert get_memory(store, scope, originals[0].id) is None


def test_merge_with_explicit_keep_id(store, scope):
    originals = _near_duplicates(store, scope, count=2)
    merged = merge_memories(store, scope, [m.id for m in originals], keep_id=originals[0].id, merge_content=False)
    assert merged.id == originals[0].id
    assert merged.content == originals[0].content
    assert merged.importance == 4

    assert merge_memories(store, scope, [originals[0].id, "gone"], keep_id="gone") is None
    assert merge_memories(store, scope, ["gone-1", "gone-2"]) is None
    with pytest.raises(ValidationIssue):
        merge_memories(store, scope, [originals[0].id])


def test_find_duplicates_auto_merge(store, tool_context):
    originals = _near_duplicates(store, tool_context.scope)

    result = memory_service.find_duplicates(auto_merge=True, context=tool_context)

    assert result["groups_found"] == 1
    assert result["merged_count"] == 2
    survivors = memory_service.memory_recent(context=tool_context)["memories"]
    assert [memory["id"] for memory in survivors] == [originals[2].id]
    assert set(survivors[0]["tags"]) == {"tag0", "tag1", "tag2"}
