#!/usr/bin/env python3
"""Test Recall MCP protocol against a running server (integration)."""
import os

import pytest
import requests

BASE_URL = os.getenv("RECALL_MCP_BASE_URL")

if not BASE_URL:
    pytest.skip(
        "Set RECALL_MCP_BASE_URL to run MCP integration tests",
        allow_module_level=True,
    )

HEADERS = {
    "Accept": "application/json, text/event-stream",
    "x-recall-workspace": "/tmp/recall-integration",
}


def mcp_call(method, params=None):
    """Call MCP tool via JSON-RPC."""
    payload = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "tools/call",
        "params": {"name": method, "arguments": params or {}},
    }

    resp = requests.post(f"{BASE_URL}/mcp", json=payload, headers=HEADERS, timeout=10)
    resp.raise_for_status()
    return resp.json()


def test_service_info_and_health():
    resp = requests.get(f"{BASE_URL}/", timeout=10)
    resp.raise_for_status()
    assert resp.json()["service"] == "Recall"

    resp = requests.get(f"{BASE_URL}/health", timeout=10)
    resp.raise_for_status()
    assert resp.json()["status"] == "healthy"


def test_mcp_protocol():
    result = mcp_call(
        "memory_store",
        {
            "content": "Test memory via MCP protocol",
            "tags": ["mcp_test"],
            "importance": 6,
        },
    )
    assert result["jsonrpc"] == "2.0"

    result = mcp_call("memory_by_tag", {"tag": "mcp_test", "limit": 10})
    assert result["jsonrpc"] == "2.0"

    result = mcp_call("memory_search", {"query": "MCP protocol", "limit": 5})
    assert result["jsonrpc"] == "2.0"

    result = mcp_call("memory_stats", {})
    assert result["jsonrpc"] == "2.0"
