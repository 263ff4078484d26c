"""
Entity types for Recall and their flat-hash serialization.
"""

from __future__ import annotations

import json
import secrets
import threading
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional

from recall.config import IMPORTANT_THRESHOLD, SUMMARY_PREVIEW_LENGTH


class ContextType(str, PyEnum):
    directive = "directive"
    information = "information"
    heading = "heading"
    decision = "decision"
    code_pattern = "code_pattern"
    requirement = "requirement"
    error = "error"
    todo = "todo"
    insight = "insight"
    preference = "preference"


class RelationshipType(str, PyEnum):
    relates_to = "relates_to"
    parent_of = "parent_of"
    child_of = "child_of"
    references = "references"
    supersedes = "supersedes"
    implements = "implements"
    example_of = "example_of"


class WorkspaceMode(str, PyEnum):
    isolated = "isolated"
    global_ = "global"
    hybrid = "hybrid"


class Direction(str, PyEnum):
    outgoing = "outgoing"
    incoming = "incoming"
    both = "both"


class OutputMode(str, PyEnum):
    full = "full"
    summary = "summary"
    compact = "compact"


_ID_LOCK = threading.Lock()
_last_id_ms = 0


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    """Time-sortable id: 12 hex digits of milliseconds plus 12 random hex digits."""
    global _last_id_ms
    with _ID_LOCK:
        current = now_ms()
        if current <= _last_id_ms:
            current = _last_id_ms + 1
        _last_id_ms = current
    return f"{current:012x}{secrets.token_hex(6)}"


def iso_timestamp(ms: Optional[int] = None) -> str:
    value = now_ms() if ms is None else ms
    dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value % 1000:03d}Z"


def generate_summary(content: str) -> str:
    if len(content) > SUMMARY_PREVIEW_LENGTH:
        return content[:SUMMARY_PREVIEW_LENGTH] + "..."
    return content


def normalize_tags(tags) -> list[str]:
    """Strip and de-duplicate tags, keeping first-seen order."""
    seen: list[str] = []
    for tag in tags or []:
        value = tag.strip()
        if value and value not in seen:
            seen.append(value)
    return seen


def _opt_int(raw: Optional[str]) -> Optional[int]:
    if raw in (None, ""):
        return None
    return int(float(raw))


@dataclass
class Memory:
    id: str
    timestamp: int
    context_type: ContextType
    content: str
    summary: str
    tags: list[str] = field(default_factory=list)
    importance: int = 5
    session_id: Optional[str] = None
    embedding: Optional[list[float]] = None
    ttl_seconds: Optional[int] = None
    expires_at: Optional[int] = None
    is_global: bool = False
    workspace_id: str = ""
    category: Optional[str] = None

    @property
    def is_important(self) -> bool:
        return self.importance >= IMPORTANT_THRESHOLD

    def to_hash(self) -> dict[str, str]:
        return {
            "id": self.id,
            "timestamp": str(self.timestamp),
            "context_type": self.context_type.value,
            "content": self.content,
            "summary": self.summary or "",
            "tags": json.dumps(self.tags),
            "importance": str(self.importance),
            "session_id": self.session_id or "",
            "embedding": json.dumps(self.embedding or []),
            "ttl_seconds": "" if self.ttl_seconds is None else str(self.ttl_seconds),
            "expires_at": "" if self.expires_at is None else str(self.expires_at),
            "is_global": "true" if self.is_global else "false",
            "workspace_id": self.workspace_id or "",
            "category": self.category or "",
        }

    @classmethod
    def from_hash(cls, data: dict[str, str]) -> Optional["Memory"]:
        if not data or "id" not in data:
            return None
        embedding = json.loads(data.get("embedding") or "[]")
        return cls(
            id=data["id"],
            timestamp=int(float(data.get("timestamp") or 0)),
            context_type=ContextType(data.get("context_type") or ContextType.information.value),
            content=data.get("content", ""),
            summary=data.get("summary", ""),
            tags=json.loads(data.get("tags") or "[]"),
            importance=int(float(data.get("importance") or 5)),
            session_id=data.get("session_id") or None,
            embedding=[float(v) for v in embedding] if embedding else None,
            ttl_seconds=_opt_int(data.get("ttl_seconds")),
            expires_at=_opt_int(data.get("expires_at")),
            is_global=data.get("is_global") == "true",
            workspace_id=data.get("workspace_id", ""),
            category=data.get("category") or None,
        )

    def to_dict(self, include_embedding: bool = False) -> dict:
        payload = asdict(self)
        payload["context_type"] = self.context_type.value
        payload["has_embedding"] = bool(self.embedding)
        if not include_embedding:
            payload.pop("embedding")
        return payload


@dataclass
class Relationship:
    id: str
    from_memory_id: str
    to_memory_id: str
    relationship_type: RelationshipType
    created_at: str
    metadata: Optional[dict] = None
    is_global: bool = False

    def to_hash(self) -> dict[str, str]:
        return {
            "id": self.id,
            "from_memory_id": self.from_memory_id,
            "to_memory_id": self.to_memory_id,
            "relationship_type": self.relationship_type.value,
            "created_at": self.created_at,
            "metadata": json.dumps(self.metadata) if self.metadata else "",
        }

    @classmethod
    def from_hash(cls, data: dict[str, str], is_global: bool = False) -> Optional["Relationship"]:
        if not data or "id" not in data:
            return None
        raw_metadata = data.get("metadata")
        return cls(
            id=data["id"],
            from_memory_id=data["from_memory_id"],
            to_memory_id=data["to_memory_id"],
            relationship_type=RelationshipType(data["relationship_type"]),
            created_at=data.get("created_at", ""),
            metadata=json.loads(raw_metadata) if raw_metadata else None,
            is_global=is_global,
        )

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["relationship_type"] = self.relationship_type.value
        return payload


@dataclass
class RelatedMemory:
    memory: Memory
    relationship: Relationship
    depth: int

    def to_dict(self) -> dict:
        return {
            "memory": self.memory.to_dict(),
            "relationship": self.relationship.to_dict(),
            "depth": self.depth,
        }


@dataclass
class GraphNode:
    memory: Memory
    relationships: list[Relationship]
    depth: int

    def to_dict(self) -> dict:
        return {
            "memory": self.memory.to_dict(),
            "relationships": [rel.to_dict() for rel in self.relationships],
            "depth": self.depth,
        }


@dataclass
class MemoryGraph:
    root_memory_id: str
    nodes: dict[str, GraphNode]
    max_depth_reached: int

    @property
    def total_nodes(self) -> int:
        return len(self.nodes)

    def edges(self) -> list[Relationship]:
        """Unique edges whose endpoints are both present in the node map."""
        seen: dict[str, Relationship] = {}
        for node in self.nodes.values():
            for rel in node.relationships:
                if rel.from_memory_id in self.nodes and rel.to_memory_id in self.nodes:
                    seen.setdefault(rel.id, rel)
        return [seen[key] for key in sorted(seen)]

    def to_dict(self) -> dict:
        return {
            "root_memory_id": self.root_memory_id,
            "nodes": {node_id: node.to_dict() for node_id, node in self.nodes.items()},
            "total_nodes": self.total_nodes,
            "max_depth_reached": self.max_depth_reached,
        }


@dataclass
class Session:
    session_id: str
    session_name: str
    created_at: int
    memory_ids: list[str] = field(default_factory=list)
    summary: Optional[str] = None

    @property
    def memory_count(self) -> int:
        return len(self.memory_ids)

    def to_hash(self) -> dict[str, str]:
        return {
            "session_id": self.session_id,
            "session_name": self.session_name,
            "created_at": str(self.created_at),
            "memory_count": str(self.memory_count),
            "summary": self.summary or "",
            "memory_ids": json.dumps(self.memory_ids),
        }

    @classmethod
    def from_hash(cls, data: dict[str, str]) -> Optional["Session"]:
        if not data or "session_id" not in data:
            return None
        return cls(
            session_id=data["session_id"],
            session_name=data.get("session_name", ""),
            created_at=int(float(data.get("created_at") or 0)),
            memory_ids=json.loads(data.get("memory_ids") or "[]"),
            summary=data.get("summary") or None,
        )

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["memory_count"] = self.memory_count
        return payload


@dataclass
class DuplicateGroup:
    memories: list[Memory]
    similarity_score: float

    def to_dict(self) -> dict:
        return {
            "similarity_score": round(self.similarity_score, 6),
            "memory_ids": [memory.id for memory in self.memories],
            "memories": [
                {
                    "id": memory.id,
                    "importance": memory.importance,
                    "summary": memory.summary or memory.content[:50],
                }
                for memory in self.memories
            ],
        }


@dataclass
class SearchHit:
    memory: Memory
    similarity: float


@dataclass
class ConsolidationConfig:
    similarity_threshold: float = 0.75
    min_cluster_size: int = 2
    max_age_days: Optional[int] = None
    memory_count_threshold: int = 100
    max_memories: int = 1000

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ConsolidationConfig":
        return cls(**{key: data[key] for key in cls.__dataclass_fields__ if key in data})


@dataclass
class ConsolidationResult:
    clusters_found: int = 0
    memories_consolidated: int = 0
    consolidated_memory_ids: list[str] = field(default_factory=list)
    skipped_no_embedding: int = 0
    skipped_missing: int = 0
    report: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ConsolidationResult":
        return cls(**{key: data[key] for key in cls.__dataclass_fields__ if key in data})


@dataclass
class ConsolidationRun:
    id: str
    timestamp: int
    config: ConsolidationConfig
    result: ConsolidationResult

    def to_hash(self) -> dict[str, str]:
        return {
            "id": self.id,
            "timestamp": str(self.timestamp),
            "config": json.dumps(self.config.to_dict()),
            "result": json.dumps(self.result.to_dict()),
        }

    @classmethod
    def from_hash(cls, data: dict[str, str]) -> Optional["ConsolidationRun"]:
        if not data or "id" not in data:
            return None
        return cls(
            id=data["id"],
            timestamp=int(float(data.get("timestamp") or 0)),
            config=ConsolidationConfig.from_dict(json.loads(data.get("config") or "{}")),
            result=ConsolidationResult.from_dict(json.loads(data.get("result") or "{}")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "config": self.config.to_dict(),
            "result": self.result.to_dict(),
        }
