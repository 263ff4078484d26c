"""
Request-scoped context objects for Recall services.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional
import contextvars

import recall.config as config
from recall.keys import create_workspace_id, namespace
from recall.models import WorkspaceMode


@dataclass(frozen=True)
class WorkspaceScope:
    workspace_path: str
    workspace_id: str
    mode: WorkspaceMode = WorkspaceMode.isolated

    @staticmethod
    def for_path(path: str, mode: Optional[str] = None) -> "WorkspaceScope":
        return WorkspaceScope(
            workspace_path=path,
            workspace_id=create_workspace_id(path),
            mode=WorkspaceMode(mode or config.get_workspace_mode()),
        )

    def with_mode(self, mode) -> "WorkspaceScope":
        return replace(self, mode=WorkspaceMode(mode))

    def namespace(self, is_global: bool) -> str:
        return namespace(self.workspace_id, is_global)

    @property
    def read_workspace(self) -> bool:
        return self.mode in (WorkspaceMode.isolated, WorkspaceMode.hybrid)

    @property
    def read_global(self) -> bool:
        return self.mode in (WorkspaceMode.global_, WorkspaceMode.hybrid)

    def read_namespaces(self) -> list[tuple[str, bool]]:
        """(namespace, is_global) pairs consulted by listings, workspace first."""
        spaces = []
        if self.read_workspace:
            spaces.append((self.namespace(False), False))
        if self.read_global:
            spaces.append((self.namespace(True), True))
        return spaces


@dataclass(frozen=True)
class RequestContext:
    scope: Optional[WorkspaceScope] = None
    request_id: Optional[str] = None
    source: Optional[str] = None


_CURRENT_REQUEST_CONTEXT: contextvars.ContextVar[Optional["RequestContext"]] = contextvars.ContextVar(
    "recall_request_context",
    default=None,
)


def get_current_request_context() -> Optional["RequestContext"]:
    return _CURRENT_REQUEST_CONTEXT.get()


def set_current_request_context(context: Optional["RequestContext"]) -> contextvars.Token:
    return _CURRENT_REQUEST_CONTEXT.set(context)


def reset_current_request_context(token: contextvars.Token) -> None:
    _CURRENT_REQUEST_CONTEXT.reset(token)


def default_scope() -> WorkspaceScope:
    return WorkspaceScope.for_path(config.WORKSPACE_PATH)


def resolve_scope(context: Optional["RequestContext"] = None) -> WorkspaceScope:
    """Scope from the explicit context, then the ambient one, then the environment."""
    if context is None:
        context = get_current_request_context()
    if context is not None and context.scope is not None:
        return context.scope
    return default_scope()


__all__ = [
    "WorkspaceScope",
    "RequestContext",
    "get_current_request_context",
    "set_current_request_context",
    "reset_current_request_context",
    "default_scope",
    "resolve_scope",
]
