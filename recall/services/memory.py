"""
Facade over the memory services used by the tool layer and the HTTP app.
"""

from recall.services.memory_shared import (
    cleanup_http_client,
    cosine_similarity,
    embed_text_sync,
    embedding_circuit_breaker,
    init_http_client,
)
from recall.services.memory_embeddings import (
    _embedding_backfill_loop,
    _run_embedding_backfill,
)
from recall.services.memory_service import (
    memory_by_category,
    memory_by_tag,
    memory_by_type,
    memory_categories,
    memory_convert_to_global,
    memory_convert_to_workspace,
    memory_delete,
    memory_get,
    memory_important,
    memory_recent,
    memory_stats,
    memory_store,
    memory_store_batch,
    memory_time_window,
    memory_update,
    organize_session,
    session_get,
    session_list,
)
from recall.services.memory_transfer import (
    export_memories_tool as export_memories,
    import_memories_tool as import_memories,
)
from recall.services.memory_search import memory_search
from recall.services.memory_relationships import (
    get_memory_graph,
    get_memory_relationships,
    get_related_memories,
    link_memories_tool as link_memories,
    unlink_memories_tool as unlink_memories,
)
from recall.services.memory_consolidation import (
    auto_consolidate,
    consolidation_history,
    consolidate_memories,
    consolidation_status_tool as consolidation_status,
    find_duplicates,
    force_consolidate,
)

__all__ = [
    "cleanup_http_client",
    "cosine_similarity",
    "embed_text_sync",
    "embedding_circuit_breaker",
    "init_http_client",
    "_embedding_backfill_loop",
    "_run_embedding_backfill",
    "memory_by_category",
    "memory_by_tag",
    "memory_by_type",
    "memory_categories",
    "memory_convert_to_global",
    "memory_convert_to_workspace",
    "memory_delete",
    "memory_get",
    "memory_important",
    "memory_recent",
    "memory_stats",
    "memory_store",
    "memory_store_batch",
    "memory_time_window",
    "memory_update",
    "organize_session",
    "session_get",
    "session_list",
    "export_memories",
    "import_memories",
    "memory_search",
    "get_memory_graph",
    "get_memory_relationships",
    "get_related_memories",
    "link_memories",
    "unlink_memories",
    "auto_consolidate",
    "consolidation_history",
    "consolidate_memories",
    "consolidation_status",
    "find_duplicates",
    "force_consolidate",
]
