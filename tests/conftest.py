"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path
from typing import List

import pytest

from mcp_http_bridge.config import Config, PeerConfig, ServerConfig


STUB_PEER = Path(__file__).parent / "stub_peer.py"


@pytest.fixture
def stub_command() -> List[str]:
    """Command line that runs the stub MCP server."""
    return [sys.executable, "-u", str(STUB_PEER)]


@pytest.fixture
def bridge_config(stub_command) -> Config:
    """Bridge configuration wrapping the stub MCP server."""
    return Config(
        server=ServerConfig(port=6123, call_timeout=5.0, log_level="DEBUG"),
        peer=PeerConfig(command=stub_command[0], args=stub_command[1:]),
    )


@pytest.fixture
def sample_tool_definition():
    """Sample tool definition for testing."""
    return {
        "name": "test_tool",
        "description": "A test tool",
        "inputSchema": {
            "type": "object",
            "properties": {
                "param1": {"type": "string"},
                "param2": {"type": "integer"}
            },
            "required": ["param1"]
        },
        "annotations": {"category": "demo", "readOnlyHint": True}
    }


@pytest.fixture
def sample_initialize_result():
    """Sample initialize result for testing."""
    return {
        "protocolVersion": "2024-11-05",
        "capabilities": {"tools": {}},
        "serverInfo": {
            "name": "test-server",
            "version": "1.0.0"
        }
    }
