import httpx
import pytest

from recall.errors import EmbeddingProviderError
from recall.services import memory_shared
from recall.services.memory_embeddings import _run_embedding_backfill
from recall.services.memory_index import create_memory, get_memory


@pytest.fixture
def provider(monkeypatch):
    """Route provider calls through a mock transport and record the requests."""
    state = {"responses": [], "requests": []}

    def handler(request):
        state["requests"].append(request)
        status, body = state["responses"].pop(0)
        return httpx.Response(status, json=body)

    monkeypatch.setattr(memory_shared, "http_client", httpx.Client(transport=httpx.MockTransport(handler)))
    monkeypatch.setattr(memory_shared, "EMBEDDING_PROVIDER", "openai")
    monkeypatch.setattr(memory_shared, "_sleep_backoff", lambda attempt: None)
    memory_shared.embedding_circuit_breaker.reset()
    yield state
    memory_shared.embedding_circuit_breaker.reset()


def test_openai_embedding_is_extracted(provider):
    provider["responses"].append((200, {"data": [{"embedding": [0.1, 0.2, 0.3]}]}))
    assert memory_shared.embed_text_sync("hello") == [0.1, 0.2, 0.3]
    assert provider["requests"][0].url.path.endswith("/embeddings")


def test_ollama_embedding_is_extracted(provider, monkeypatch):
    monkeypatch.setattr(memory_shared, "EMBEDDING_PROVIDER", "ollama")
    provider["responses"].append((200, {"embedding": [1, 2]}))
    assert memory_shared.embed_text_sync("hello") == [1.0, 2.0]
    assert provider["requests"][0].url.path == "/api/embeddings"


def test_retryable_status_is_retried(provider, monkeypatch):
    monkeypatch.setattr(memory_shared, "EMBEDDING_RETRY_MAX", 2)
    provider["responses"].extend([
        (503, {}),
        (429, {}),
        (200, {"data": [{"embedding": [0.5]}]}),
    ])
    assert memory_shared.embed_text_sync("hello") == [0.5]
    assert len(provider["requests"]) == 3


def test_client_error_raises(provider):
    provider["responses"].append((400, {"error": "bad"}))
    with pytest.raises(EmbeddingProviderError):
        memory_shared.embed_text_sync("hello")


def test_disabled_provider_raises(monkeypatch):
    monkeypatch.setattr(memory_shared, "EMBEDDING_PROVIDER", "none")
    with pytest.raises(EmbeddingProviderError):
        memory_shared.embed_text_sync("hello")
    assert memory_shared.embed_or_none("hello") is None


def test_circuit_breaker_opens_after_failures():
    breaker = memory_shared.EmbeddingCircuitBreaker(failure_threshold=2, cooldown_seconds=60)
    breaker.record_failure("boom")
    assert not breaker.is_open()
    breaker.record_failure("boom")
    assert breaker.is_open()
    assert breaker.status()["last_error"] == "boom"
    breaker.record_success()
    assert not breaker.is_open()


def test_cosine_similarity_edges():
    assert memory_shared.cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert memory_shared.cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert memory_shared.cosine_similarity([0, 0], [1, 1]) == 0.0
    assert memory_shared.cosine_similarity([1, 0, 5], [1, 0]) == pytest.approx(1.0)
    assert memory_shared.cosine_similarity(None, [1]) == 0.0


def test_backfill_embeds_memories_stored_without_vectors(redis_client, scope, monkeypatch):
    monkeypatch.setattr(memory_shared, "EMBEDDING_PROVIDER", "none")
    memory = create_memory(redis_client, scope, content="stored while the provider was off")
    assert _run_embedding_backfill(redis_client, scope)["reason"] == "embedding_disabled"

    monkeypatch.setattr(memory_shared, "EMBEDDING_PROVIDER", "openai")
    monkeypatch.setattr(memory_shared, "embed_text_sync", lambda text: [1.0, 0.0])
    memory_shared.embedding_circuit_breaker.reset()
    stats = _run_embedding_backfill(redis_client, scope, batch_limit=10)
    assert stats["status"] == "ok"
    assert stats["backfilled"] == 1
    assert get_memory(redis_client, scope, memory.id).embedding == [1.0, 0.0]

    again = _run_embedding_backfill(redis_client, scope, batch_limit=10)
    assert again["processed"] == 0
