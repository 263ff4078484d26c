"""
MCP workspace-scope middleware.

Reads the workspace path and scope mode from request headers and sets the
request context for the duration of the request using contextvars
(async-safe). Requests without the headers fall back to the server's
configured workspace.
"""

from __future__ import annotations

import json
from typing import Optional

import recall.config as config
from recall.context import (
    RequestContext,
    WorkspaceScope,
    get_current_request_context,
    reset_current_request_context,
    set_current_request_context,
)

WORKSPACE_HEADER = "x-recall-workspace"
MODE_HEADER = "x-recall-workspace-mode"


def get_current_context() -> Optional[RequestContext]:
    """Current request context, or None to use the configured workspace."""
    return get_current_request_context()


class MCPScopeMiddleware:
    """ASGI middleware that binds a WorkspaceScope to each MCP request."""

    def __init__(self, app):
        self.app = app

    def __getattr__(self, name):
        return getattr(self.app, name)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = {}
        for header_name, header_value in scope.get("headers", []):
            headers[header_name.decode("latin1").lower()] = header_value.decode("latin1")

        workspace_path = headers.get(WORKSPACE_HEADER, "").strip() or config.WORKSPACE_PATH
        mode = headers.get(MODE_HEADER, "").strip().lower() or config.get_workspace_mode()
        if mode not in config.WORKSPACE_MODES:
            await self._send_error(send, 400, f"Unsupported workspace mode: {mode}")
            return

        req_ctx = RequestContext(
            scope=WorkspaceScope.for_path(workspace_path, mode),
            request_id=headers.get("x-request-id"),
            source="mcp",
        )
        token = set_current_request_context(req_ctx)
        try:
            await self.app(scope, receive, send)
        finally:
            reset_current_request_context(token)

    async def _send_error(self, send, status_code: int, detail: str):
        """Send JSON error response."""
        body = json.dumps({"error": detail}).encode("utf-8")

        await send({
            "type": "http.response.start",
            "status": status_code,
            "headers": [
                [b"content-type", b"application/json"],
                [b"content-length", str(len(body)).encode("latin1")],
            ],
        })

        await send({
            "type": "http.response.body",
            "body": body,
        })
