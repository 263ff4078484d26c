"""
Recall - workspace-scoped semantic memory for AI coding assistants.

Runs the MCP server over stdio by default, or the HTTP app with --http.
"""

import argparse
import os

import uvicorn

import recall.config as config
from recall.mcp import mcp
from recall.services import memory as memory_service
from recall.storage import close_storage, init_storage


def main(argv=None):
    parser = argparse.ArgumentParser(description="Recall memory server")
    parser.add_argument("--http", action="store_true", help="serve MCP over HTTP instead of stdio")
    parser.add_argument("--host", default=os.environ.get("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", "8080")))
    args = parser.parse_args(argv)

    if args.http:
        uvicorn.run("app.main:asgi_app", host=args.host, port=args.port)
        return

    init_storage()
    memory_service.init_http_client()
    config.logger.info(
        "recall_stdio_start",
        extra={"workspace_path": config.WORKSPACE_PATH, "workspace_mode": config.get_workspace_mode()},
    )
    try:
        mcp.run()
    finally:
        memory_service.cleanup_http_client()
        close_storage()


if __name__ == "__main__":
    main()
