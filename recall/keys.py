"""
Persisted key naming for the key-value substrate.

Workspace-scoped keys live under ``ws:{workspace_id}:``; global keys live
under ``global:``. The layout is shared with existing stores and must not
change.
"""

from __future__ import annotations

GLOBAL_NAMESPACE = "global"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def create_workspace_id(path: str) -> str:
    """Deterministic 32-bit rolling hash of the path over UTF-16 code units."""
    h = 0
    encoded = path.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        code_unit = encoded[i] | (encoded[i + 1] << 8)
        h = _to_int32((h << 5) - h + code_unit)
    return _base36(abs(h))


def namespace(workspace_id: str, is_global: bool) -> str:
    return GLOBAL_NAMESPACE if is_global else f"ws:{workspace_id}"


# Memories

def memory(ns: str, memory_id: str) -> str:
    return f"{ns}:memory:{memory_id}"


def memories_all(ns: str) -> str:
    return f"{ns}:memories:all"


def memories_by_type(ns: str, context_type: str) -> str:
    return f"{ns}:memories:type:{context_type}"


def memories_by_tag(ns: str, tag: str) -> str:
    return f"{ns}:memories:tag:{tag}"


def memories_timeline(ns: str) -> str:
    return f"{ns}:memories:timeline"


def memories_important(ns: str) -> str:
    return f"{ns}:memories:important"


# Categories

def memory_category(ns: str, memory_id: str) -> str:
    return f"{ns}:memory:{memory_id}:category"


def category(ns: str, name: str) -> str:
    return f"{ns}:category:{name}"


def categories_all(ns: str) -> str:
    return f"{ns}:categories:all"


# Relationships

def relationship_indexes(ns: str, from_memory_id: str, to_memory_id: str) -> list[str]:
    """Every set an edge id is a member of."""
    return [
        relationships_all(ns),
        memory_relationships(ns, from_memory_id),
        memory_relationships_out(ns, from_memory_id),
        memory_relationships_in(ns, to_memory_id),
    ]


def relationship(ns: str, relationship_id: str) -> str:
    return f"{ns}:relationship:{relationship_id}"


def relationships_all(ns: str) -> str:
    return f"{ns}:relationships:all"


def memory_relationships(ns: str, memory_id: str) -> str:
    return f"{ns}:memory:{memory_id}:relationships"


def memory_relationships_out(ns: str, memory_id: str) -> str:
    return f"{ns}:memory:{memory_id}:relationships:out"


def memory_relationships_in(ns: str, memory_id: str) -> str:
    return f"{ns}:memory:{memory_id}:relationships:in"


# Consolidation runs (workspace only)

def consolidation(workspace_id: str, run_id: str) -> str:
    return f"ws:{workspace_id}:consolidation:{run_id}"


def consolidations_all(workspace_id: str) -> str:
    return f"ws:{workspace_id}:consolidations:all"


def consolidations_last_run(workspace_id: str) -> str:
    return f"ws:{workspace_id}:consolidations:last_run"


# Sessions (workspace only)

def session(workspace_id: str, session_id: str) -> str:
    return f"ws:{workspace_id}:session:{session_id}"


def sessions_all(workspace_id: str) -> str:
    return f"ws:{workspace_id}:sessions:all"
