"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import recall
import recall.config as config


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "Recall",
        "version": recall.__version__,
        "description": "Workspace-scoped semantic memory for AI coding assistants",
        "workspace_mode": config.get_workspace_mode(),
        "embedding_provider": config.EMBEDDING_PROVIDER,
        "embedding_model": config.EMBEDDING_MODEL,
        "endpoints": {
            "health": "/health",
            "health_deps": "/health/deps",
            "health_tools": "/health/tools",
            "mcp": "/mcp",
        },
    }
