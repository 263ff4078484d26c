"""
Shared configuration for Recall.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("recall")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


WORKSPACE_MODES = {"isolated", "global", "hybrid"}
EMBEDDING_PROVIDERS = {"openai", "ollama", "local", "none"}

# Key-value substrate
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
REDIS_SOCKET_TIMEOUT_SECONDS = _get_float("REDIS_SOCKET_TIMEOUT_SECONDS", 5.0)

# Workspace scoping
WORKSPACE_PATH = os.environ.get("WORKSPACE_PATH") or os.getcwd()
DEFAULT_WORKSPACE_MODE = "isolated"


def get_workspace_mode() -> str:
    """Read WORKSPACE_MODE at call time so a running process can be switched."""
    value = os.environ.get("WORKSPACE_MODE", DEFAULT_WORKSPACE_MODE).strip().lower()
    if value not in WORKSPACE_MODES:
        return DEFAULT_WORKSPACE_MODE
    return value


# Embedding settings
EMBEDDING_PROVIDER = os.environ.get("EMBEDDING_PROVIDER", "openai").strip().lower()
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_BASE_URL = os.environ.get("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
OLLAMA_BASE_URL = os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434").rstrip("/")
_DEFAULT_MODELS = {
    "openai": "text-embedding-3-small",
    "ollama": "nomic-embed-text",
    "local": "all-MiniLM-L6-v2",
}
EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL") or _DEFAULT_MODELS.get(
    EMBEDDING_PROVIDER, "text-embedding-3-small"
)
MAX_EMBEDDING_TEXT_LENGTH = _get_int("RECALL_MAX_EMBEDDING_TEXT_LENGTH", 32000)

# Embedding retry/backoff
EMBEDDING_TIMEOUT_SECONDS = _get_float("EMBEDDING_TIMEOUT_SECONDS", 30.0)
EMBEDDING_RETRY_MAX = _get_int("EMBEDDING_RETRY_MAX", 2)
EMBEDDING_RETRY_BACKOFF_SECONDS = _get_float("EMBEDDING_RETRY_BACKOFF_SECONDS", 0.5)
EMBEDDING_RETRY_JITTER_SECONDS = _get_float("EMBEDDING_RETRY_JITTER_SECONDS", 0.25)
EMBEDDING_FAILURE_THRESHOLD = _get_int("EMBEDDING_FAILURE_THRESHOLD", 5)
EMBEDDING_COOLDOWN_SECONDS = _get_int("EMBEDDING_COOLDOWN_SECONDS", 60)
EMBEDDING_HEALTHCHECK_ENABLED = _get_bool("EMBEDDING_HEALTHCHECK_ENABLED", True)
EMBEDDING_BACKFILL_ENABLED = _get_bool("EMBEDDING_BACKFILL_ENABLED", False)
EMBEDDING_BACKFILL_INTERVAL_SECONDS = _get_int("EMBEDDING_BACKFILL_INTERVAL_SECONDS", 300)
EMBEDDING_BACKFILL_BATCH_LIMIT = _get_int("EMBEDDING_BACKFILL_BATCH_LIMIT", 50)

# Request/input limits
MAX_RESULT_LIMIT = _get_int("RECALL_MAX_RESULT_LIMIT", 100)
MAX_TEXT_LENGTH = _get_int("RECALL_MAX_TEXT_LENGTH", 20000)
MAX_QUERY_LENGTH = _get_int("RECALL_MAX_QUERY_LENGTH", 4000)
MAX_SHORT_TEXT_LENGTH = _get_int("RECALL_MAX_SHORT_TEXT_LENGTH", 255)
MAX_SUMMARY_LENGTH = _get_int("RECALL_MAX_SUMMARY_LENGTH", 500)
MAX_TAG_ITEMS = _get_int("RECALL_MAX_TAG_ITEMS", 50)
MAX_TAG_LENGTH = _get_int("RECALL_MAX_TAG_LENGTH", 100)
MAX_METADATA_BYTES = _get_int("RECALL_MAX_METADATA_BYTES", 20000)
MAX_BATCH_ITEMS = _get_int("RECALL_MAX_BATCH_ITEMS", 100)
MIN_TTL_SECONDS = 60

# Memory semantics
IMPORTANT_THRESHOLD = 8
SUMMARY_PREVIEW_LENGTH = 100
HYBRID_GLOBAL_WEIGHT = 0.9
FUZZY_BOOST_MAX = 0.2

# Relationship traversal bounds
MAX_RELATED_DEPTH = 5
MAX_GRAPH_DEPTH = 3
MAX_GRAPH_NODES = 100

# Consolidation
CONSOLIDATION_SIMILARITY_THRESHOLD = _get_float("CONSOLIDATION_SIMILARITY_THRESHOLD", 0.75)
CONSOLIDATION_MIN_CLUSTER_SIZE = _get_int("CONSOLIDATION_MIN_CLUSTER_SIZE", 2)
CONSOLIDATION_MEMORY_COUNT_THRESHOLD = _get_int("CONSOLIDATION_MEMORY_COUNT_THRESHOLD", 100)
CONSOLIDATION_MAX_MEMORIES = _get_int("CONSOLIDATION_MAX_MEMORIES", 1000)
CONSOLIDATION_COOLDOWN_SECONDS = 24 * 60 * 60
CONSOLIDATED_TAG = "consolidated"

# HTTP surface
CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ALLOWED_ORIGINS", "").split(",")
    if origin.strip()
]
TRUSTED_HOSTS = [
    host.strip()
    for host in os.environ.get("TRUSTED_HOSTS", "").split(",")
    if host.strip()
]
TOOL_INVENTORY_RETRY_SECONDS = _get_int("RECALL_TOOL_INVENTORY_RETRY_SECONDS", 5)


def validate_and_prepare_config() -> None:
    """Validate configuration at startup."""
    errors = []
    if EMBEDDING_PROVIDER not in EMBEDDING_PROVIDERS:
        errors.append("EMBEDDING_PROVIDER must be 'openai', 'ollama', 'local', or 'none'")
    if EMBEDDING_PROVIDER == "openai" and not OPENAI_API_KEY:
        errors.append("OPENAI_API_KEY is required when EMBEDDING_PROVIDER=openai")
    if not REDIS_URL:
        errors.append("REDIS_URL environment variable is required")

    raw_mode = os.environ.get("WORKSPACE_MODE")
    if raw_mode is not None and raw_mode.strip().lower() not in WORKSPACE_MODES:
        logger.warning(
            "WORKSPACE_MODE=%s is not recognized; falling back to %s.",
            raw_mode,
            DEFAULT_WORKSPACE_MODE,
        )

    if not 0.0 <= CONSOLIDATION_SIMILARITY_THRESHOLD <= 1.0:
        errors.append("CONSOLIDATION_SIMILARITY_THRESHOLD must be between 0 and 1")
    if CONSOLIDATION_MIN_CLUSTER_SIZE < 2:
        errors.append("CONSOLIDATION_MIN_CLUSTER_SIZE must be at least 2")

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
