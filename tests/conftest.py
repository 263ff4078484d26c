import os
import re
import zlib

os.environ.setdefault("EMBEDDING_PROVIDER", "none")
os.environ.setdefault("WORKSPACE_PATH", "/tmp/recall-tests")

import fakeredis
import pytest

from recall.context import RequestContext, WorkspaceScope
from recall.services import memory_shared
from recall.storage import Storage, init_storage

EMBEDDING_DIM = 256


def fake_embed(text: str) -> list[float]:
    """Bag-of-words vector; texts sharing most words score close to 1."""
    vector = [0.0] * EMBEDDING_DIM
    for word in re.findall(r"[a-z0-9]+", text.lower()):
        vector[zlib.crc32(word.encode("utf-8")) % EMBEDDING_DIM] += 1.0
    return vector


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    client.flushall()
    previous = Storage.client
    init_storage(client)
    try:
        yield client
    finally:
        Storage.client = previous
        client.flushall()


@pytest.fixture
def fake_embedder(monkeypatch):
    calls = []

    def _embed(text):
        calls.append(text)
        return fake_embed(text)

    monkeypatch.setattr(memory_shared, "EMBEDDING_PROVIDER", "openai")
    monkeypatch.setattr(memory_shared, "embed_text_sync", _embed)
    memory_shared.embedding_circuit_breaker.reset()
    return calls


@pytest.fixture
def make_scope():
    def _make(path: str = "/work/alpha", mode: str = "isolated") -> WorkspaceScope:
        return WorkspaceScope.for_path(path, mode)
    return _make


@pytest.fixture
def scope(make_scope):
    return make_scope()


@pytest.fixture
def tool_context(scope):
    return RequestContext(scope=scope, source="test")


@pytest.fixture
def store(redis_client, fake_embedder):
    """Substrate plus embedder, ready for service calls."""
    return redis_client
