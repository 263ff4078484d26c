"""
Shared helpers and configuration for memory services.
"""

from __future__ import annotations

import random
import threading
import time
from functools import wraps
from typing import Optional, List, Callable

import httpx
import numpy as np

import recall.config as config
from recall.context import RequestContext, WorkspaceScope, resolve_scope
from recall.errors import EmbeddingProviderError, NotFoundError, ValidationIssue
from recall.storage import get_client
from recall.validators import (
    validate_embedding_text as _validate_embedding_text,
)

# =============================================================================
# Configuration
# =============================================================================

logger = config.logger

OPENAI_API_KEY = config.OPENAI_API_KEY
EMBEDDING_MODEL = config.EMBEDDING_MODEL

MAX_RESULT_LIMIT = config.MAX_RESULT_LIMIT
MAX_TEXT_LENGTH = config.MAX_TEXT_LENGTH
MAX_QUERY_LENGTH = config.MAX_QUERY_LENGTH
MAX_SHORT_TEXT_LENGTH = config.MAX_SHORT_TEXT_LENGTH
MAX_SUMMARY_LENGTH = config.MAX_SUMMARY_LENGTH
MAX_TAG_ITEMS = config.MAX_TAG_ITEMS
MAX_TAG_LENGTH = config.MAX_TAG_LENGTH
MAX_BATCH_ITEMS = config.MAX_BATCH_ITEMS

HYBRID_GLOBAL_WEIGHT = config.HYBRID_GLOBAL_WEIGHT
FUZZY_BOOST_MAX = config.FUZZY_BOOST_MAX
MAX_RELATED_DEPTH = config.MAX_RELATED_DEPTH
MAX_GRAPH_DEPTH = config.MAX_GRAPH_DEPTH
MAX_GRAPH_NODES = config.MAX_GRAPH_NODES

EMBEDDING_TIMEOUT_SECONDS = config.EMBEDDING_TIMEOUT_SECONDS
EMBEDDING_RETRY_MAX = config.EMBEDDING_RETRY_MAX
EMBEDDING_RETRY_BACKOFF_SECONDS = config.EMBEDDING_RETRY_BACKOFF_SECONDS
EMBEDDING_RETRY_JITTER_SECONDS = config.EMBEDDING_RETRY_JITTER_SECONDS
EMBEDDING_FAILURE_THRESHOLD = config.EMBEDDING_FAILURE_THRESHOLD
EMBEDDING_COOLDOWN_SECONDS = config.EMBEDDING_COOLDOWN_SECONDS
EMBEDDING_PROVIDER = config.EMBEDDING_PROVIDER
EMBEDDING_BACKFILL_INTERVAL_SECONDS = config.EMBEDDING_BACKFILL_INTERVAL_SECONDS
EMBEDDING_BACKFILL_BATCH_LIMIT = config.EMBEDDING_BACKFILL_BATCH_LIMIT

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}

http_client = None  # Reusable HTTP client for embedding provider calls
_local_model = None
_local_model_lock = threading.Lock()


def init_http_client():
    """Initialize HTTP client for embedding provider calls."""
    global http_client
    headers = {"Content-Type": "application/json"}
    if EMBEDDING_PROVIDER == "openai" and OPENAI_API_KEY:
        headers["Authorization"] = f"Bearer {OPENAI_API_KEY}"
    http_client = httpx.Client(
        timeout=httpx.Timeout(EMBEDDING_TIMEOUT_SECONDS),
        limits=httpx.Limits(max_keepalive_connections=10, max_connections=100),
        headers=headers,
    )
    logger.info("HTTP client initialized")


def cleanup_http_client():
    """Clean up HTTP client on shutdown."""
    global http_client
    if http_client:
        http_client.close()
        http_client = None
        logger.info("HTTP client closed")


def embedding_enabled() -> bool:
    return EMBEDDING_PROVIDER != "none"


def _embed_text_local_sync(text: str) -> List[float]:
    """Embed in-process with sentence-transformers (installed via the `local` extra)."""
    global _local_model
    with _local_model_lock:
        if _local_model is None:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading local embedding model %s", EMBEDDING_MODEL)
            _local_model = SentenceTransformer(EMBEDDING_MODEL)
        model = _local_model
    vector = model.encode([text])[0]
    return [float(value) for value in vector]


def _provider_request(text: str) -> tuple[str, dict, Callable[[dict], List[float]]]:
    if EMBEDDING_PROVIDER == "ollama":
        return (
            f"{config.OLLAMA_BASE_URL}/api/embeddings",
            {"model": EMBEDDING_MODEL, "prompt": text},
            lambda data: data["embedding"],
        )
    return (
        f"{config.OPENAI_BASE_URL}/embeddings",
        {"model": EMBEDDING_MODEL, "input": text},
        lambda data: data["data"][0]["embedding"],
    )


def embed_text_sync(text: str) -> List[float]:
    """Generate an embedding with the configured provider using the pooled HTTP client."""
    _validate_embedding_text(text)
    if EMBEDDING_PROVIDER == "none":
        _raise_embedding_unavailable("embedding provider disabled")
    if EMBEDDING_PROVIDER == "local":
        return _embed_text_local_sync(text)
    if embedding_circuit_breaker.is_open():
        _raise_embedding_unavailable("circuit breaker open")
    global http_client
    if http_client is None:
        init_http_client()

    url, payload, extract = _provider_request(text)
    for attempt in range(EMBEDDING_RETRY_MAX + 1):
        try:
            response = http_client.post(url, json=payload)
        except httpx.RequestError:
            if attempt >= EMBEDDING_RETRY_MAX:
                embedding_circuit_breaker.record_failure("request error")
                _raise_embedding_unavailable("request error")
            _sleep_backoff(attempt)
            continue

        if response.status_code in _RETRYABLE_STATUS:
            if attempt >= EMBEDDING_RETRY_MAX:
                embedding_circuit_breaker.record_failure(
                    f"status {response.status_code}"
                )
                _raise_embedding_unavailable(f"status {response.status_code}")
            _sleep_backoff(attempt)
            continue
        if response.status_code >= 400:
            embedding_circuit_breaker.record_failure(
                f"status {response.status_code}"
            )
            _raise_embedding_unavailable(f"status {response.status_code}")

        data = response.json()
        embedding_circuit_breaker.record_success()
        return [float(value) for value in extract(data)]


def embed_or_none(text: str) -> Optional[List[float]]:
    """Embedding for text, or None when no provider is configured. Provider failures propagate."""
    if not embedding_enabled():
        return None
    return embed_text_sync(text)


def cosine_similarity(a, b) -> float:
    """Cosine similarity in [-1, 1]; vectors of different length are truncated to the shorter."""
    if not a or not b:
        return 0.0
    if len(a) != len(b):
        logger.warning(
            "embedding_dimension_mismatch",
            extra={"left": len(a), "right": len(b)},
        )
        size = min(len(a), len(b))
        a, b = a[:size], b[:size]
    left = np.asarray(a, dtype=float)
    right = np.asarray(b, dtype=float)
    denom = float(np.linalg.norm(left) * np.linalg.norm(right))
    if denom == 0.0:
        return 0.0
    return float(np.dot(left, right) / denom)


# =============================================================================
# Helper Functions
# =============================================================================

def _tool_error_payload(tool_name: str, exc: ValidationIssue) -> dict:
    return {
        "status": "error",
        "error_type": "validation_error",
        "tool": tool_name,
        "field": exc.field,
        "message": str(exc),
    }


def _not_found_payload(tool_name: str, exc: NotFoundError) -> dict:
    return {
        "status": "not_found",
        "tool": tool_name,
        "field": exc.field,
        "id": exc.item_id,
        "message": str(exc),
    }


def _log_validation_issue(tool_name: str, exc: ValidationIssue, warn: bool = False) -> None:
    payload = {
        "tool": tool_name,
        "field": exc.field,
        "error_type": exc.error_type,
        "detail": str(exc),
    }
    if warn:
        logger.warning("tool_validation_error", extra=payload)
    else:
        logger.info("tool_validation_error", extra=payload)


def _tool_error_handler(fn: Callable[..., dict]) -> Callable[..., dict]:
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ValidationIssue as exc:
            _log_validation_issue(fn.__name__, exc, warn=False)
            return _tool_error_payload(fn.__name__, exc)
        except NotFoundError as exc:
            logger.info("tool_not_found", extra={"tool": fn.__name__, "id": exc.item_id})
            return _not_found_payload(fn.__name__, exc)
        except ValueError as exc:
            issue = ValidationIssue(str(exc), field="unknown", error_type="value_error")
            _log_validation_issue(fn.__name__, issue, warn=True)
            return _tool_error_payload(fn.__name__, issue)
    return wrapper


def service_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    return _tool_error_handler(fn)


def _tool_scope(context: Optional[RequestContext]) -> tuple[object, WorkspaceScope]:
    return get_client(), resolve_scope(context)


class EmbeddingCircuitBreaker:
    def __init__(self, failure_threshold: int, cooldown_seconds: int):
        self._failure_threshold = max(1, failure_threshold)
        self._cooldown_seconds = max(1, cooldown_seconds)
        self._lock = threading.Lock()
        self._consecutive_failures = 0
        self._cooldown_until = 0.0
        self._last_error: Optional[str] = None
        self._last_failure_ts: Optional[float] = None
        self._last_success_ts: Optional[float] = None

    def is_open(self) -> bool:
        with self._lock:
            return time.time() < self._cooldown_until

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._cooldown_until = 0.0
            self._last_success_ts = time.time()

    def record_failure(self, error: str) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_error = error
            self._last_failure_ts = time.time()
            if self._consecutive_failures >= self._failure_threshold:
                self._cooldown_until = time.time() + self._cooldown_seconds

    def reset(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._cooldown_until = 0.0
            self._last_error = None

    def status(self) -> dict:
        with self._lock:
            return {
                "open": time.time() < self._cooldown_until,
                "consecutive_failures": self._consecutive_failures,
                "cooldown_until_epoch": int(self._cooldown_until) if self._cooldown_until else None,
                "last_error": self._last_error,
                "last_failure_epoch": int(self._last_failure_ts) if self._last_failure_ts else None,
                "last_success_epoch": int(self._last_success_ts) if self._last_success_ts else None,
            }


embedding_circuit_breaker = EmbeddingCircuitBreaker(
    failure_threshold=EMBEDDING_FAILURE_THRESHOLD,
    cooldown_seconds=EMBEDDING_COOLDOWN_SECONDS,
)


def _raise_embedding_unavailable(detail: str) -> None:
    logger.warning("Embedding provider unavailable: %s", detail)
    raise EmbeddingProviderError(f"embedding provider unavailable: {detail}")


def _sleep_backoff(attempt: int) -> None:
    base = EMBEDDING_RETRY_BACKOFF_SECONDS * (2 ** attempt)
    jitter = random.uniform(0, EMBEDDING_RETRY_JITTER_SECONDS)
    time.sleep(base + jitter)


# =============================================================================
# Serialization
# =============================================================================

def serialize_memory(memory, output_mode: str = "full", similarity: Optional[float] = None) -> dict:
    """Tool payload for a memory; the embedding vector is never returned."""
    if output_mode == "compact":
        payload = {
            "id": memory.id,
            "summary": memory.summary,
            "context_type": memory.context_type.value,
        }
    else:
        payload = memory.to_dict()
        if output_mode == "summary":
            payload.pop("content", None)
    if similarity is not None:
        payload["similarity"] = round(similarity, 6)
    return payload
