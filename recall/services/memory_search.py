"""
Search and recall services.
"""

from __future__ import annotations

import re
from typing import Optional, Sequence

from recall.context import RequestContext, WorkspaceScope
from recall.errors import ValidationIssue
from recall.models import ContextType, OutputMode, SearchHit, WorkspaceMode
from recall.services.memory_index import scope_memories
from recall.services.memory_shared import (
    _tool_scope,
    cosine_similarity,
    embed_or_none,
    serialize_memory,
    service_tool,
    FUZZY_BOOST_MAX,
    HYBRID_GLOBAL_WEIGHT,
    MAX_QUERY_LENGTH,
    MAX_RESULT_LIMIT,
    MAX_SHORT_TEXT_LENGTH,
)
from recall.validators import (
    coerce_enum,
    validate_importance,
    validate_limit,
    validate_optional_text,
    validate_required_text,
)


def validate_memory_search_inputs(
    *,
    query: str,
    limit: int,
    min_importance: Optional[int],
    category: Optional[str],
    regex: Optional[str],
) -> Optional[re.Pattern]:
    validate_required_text(query, "query", MAX_QUERY_LENGTH)
    validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    if min_importance is not None:
        validate_importance(min_importance, "min_importance")
    validate_optional_text(category, "category", MAX_SHORT_TEXT_LENGTH)
    validate_optional_text(regex, "regex", MAX_QUERY_LENGTH)
    if not regex:
        return None
    try:
        return re.compile(regex, re.IGNORECASE)
    except re.error as exc:
        raise ValidationIssue(
            f"regex is not a valid pattern: {exc}",
            field="regex",
            error_type="invalid_pattern",
        ) from exc


def fuzzy_boost(query: str, content: str) -> float:
    """Up to FUZZY_BOOST_MAX, proportional to the query words found inside content words."""
    query_words = query.lower().split()
    if not query_words:
        return 0.0
    content_words = content.lower().split()
    matched = sum(
        1 for word in query_words if any(word in candidate for candidate in content_words)
    )
    return (matched / len(query_words)) * FUZZY_BOOST_MAX


def search_memories(
    client,
    scope: WorkspaceScope,
    query: str,
    limit: int = 10,
    min_importance: Optional[int] = None,
    context_types: Optional[Sequence] = None,
    category: Optional[str] = None,
    exact: bool = False,
    fuzzy: bool = False,
    regex: Optional[str] = None,
) -> list[SearchHit]:
    """Rank memories in scope by cosine similarity to the query."""
    pattern = validate_memory_search_inputs(
        query=query,
        limit=limit,
        min_importance=min_importance,
        category=category,
        regex=regex,
    )
    types = [coerce_enum(ContextType, value, "context_types") for value in context_types or []]

    query_embedding = embed_or_none(query)
    candidates = scope_memories(client, scope, types or None)
    if not candidates:
        return []

    needle = query.lower()
    hits: list[SearchHit] = []
    for memory, is_global in candidates:
        if min_importance is not None and memory.importance < min_importance:
            continue
        if category and memory.category != category:
            continue
        if exact and needle not in memory.content.lower():
            continue
        if pattern is not None and not pattern.search(memory.content):
            continue

        score = 0.0
        if query_embedding and memory.embedding:
            score = cosine_similarity(query_embedding, memory.embedding)
        if fuzzy:
            score = min(1.0, score + fuzzy_boost(query, memory.content))
        if scope.mode == WorkspaceMode.hybrid and is_global:
            score *= HYBRID_GLOBAL_WEIGHT
        hits.append(SearchHit(memory=memory, similarity=score))

    hits.sort(key=lambda hit: (-hit.similarity, hit.memory.id))
    return hits[:limit]


@service_tool
def memory_search(
    query: str,
    limit: int = 10,
    min_importance: Optional[int] = None,
    context_types: Optional[list[str]] = None,
    category: Optional[str] = None,
    exact: bool = False,
    fuzzy: bool = False,
    regex: Optional[str] = None,
    output_mode: str = "summary",
    context: Optional[RequestContext] = None,
) -> dict:
    """
    Semantic search over stored memories.

    Args:
        query: Free-text query
        limit: Maximum results (default 10)
        min_importance: Drop memories below this importance
        context_types: Restrict to these context types
        category: Restrict to one category
        exact: Require the query as a case-insensitive substring of the content
        fuzzy: Boost results whose content contains the query words
        regex: Case-insensitive pattern the content must match
        output_mode: full, summary or compact

    Returns:
        Ranked memories with their similarity scores
    """
    mode = coerce_enum(OutputMode, output_mode, "output_mode")
    client, scope = _tool_scope(context)
    hits = search_memories(
        client,
        scope,
        query,
        limit=limit,
        min_importance=min_importance,
        context_types=context_types,
        category=category,
        exact=exact,
        fuzzy=fuzzy,
        regex=regex,
    )
    return {
        "status": "ok",
        "query": query,
        "mode": scope.mode.value,
        "count": len(hits),
        "results": [serialize_memory(hit.memory, mode.value, hit.similarity) for hit in hits],
    }
