from concurrent.futures import ThreadPoolExecutor

from recall.services import memory as memory_service
from recall.services.memory_index import count_memories, index_memberships, get_memory


def test_memory_store_concurrency(store, tool_context):
    texts = [f"Concurrent memory {i}" for i in range(8)]

    def _store(text):
        return memory_service.memory_store(content=text, tags=["concurrency"], context=tool_context)

    with ThreadPoolExecutor(max_workers=4) as executor:
        results = list(executor.map(_store, texts))

    assert all(result["status"] == "stored" for result in results)
    ids = [result["memory"]["id"] for result in results]
    assert len(set(ids)) == len(ids)
    assert count_memories(store, tool_context.scope) == len(texts)
    for memory_id in ids:
        memory = get_memory(store, tool_context.scope, memory_id)
        assert all(index_memberships(store, memory).values())

    listed = memory_service.memory_by_tag(tag="concurrency", limit=20, context=tool_context)
    assert listed["count"] == len(texts)
