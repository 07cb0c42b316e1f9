"""Integration tests running the bridge as a real process."""

import os
import socket
import subprocess
import sys

import pytest

from mcp_http_bridge.supervisor import StopResult, Supervisor, SupervisorConfig


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestBackgroundBridge:
    """Complete workflow: start -> list tools -> call tool -> stop."""

    @pytest.fixture
    def supervisor(self, tmp_path, stub_command):
        config = SupervisorConfig(
            command=stub_command,
            slug="integration",
            port=free_port(),
            state_root=str(tmp_path),
            startup_timeout=30.0,
            poll_interval=0.2,
            call_timeout=10.0,
        )
        supervisor = Supervisor(config)
        yield supervisor
        supervisor.stop()
        supervisor.close()

    def test_complete_workflow(self, supervisor):
        result = supervisor.start()
        assert result.healthy, supervisor.read_log()

        status = supervisor.status()
        assert status.running
        assert status.responding
        assert status.pid == result.pid

        tools = supervisor.list_tools()
        assert [tool.name for tool in tools.tools] == ["ping"]

        body = supervisor.call_tool("ping")
        assert Supervisor.tool_text(body) == "pong"

        body = supervisor.call_tool("missing")
        assert body["error"]["code"] == -32602

        assert supervisor.stop() is StopResult.STOPPED
        assert not supervisor.config.pid_file.exists()

    def test_log_file_captures_bridge_output(self, supervisor):
        assert supervisor.start().healthy
        supervisor.list_tools()

        log = supervisor.read_log()
        assert log is not None
        assert "Bridge ready on" in log


class TestBridgeProcess:
    """Test the mcp-http-bridge process exit behaviour."""

    def run_bridge(self, stub_command, env=None, timeout=60):
        return subprocess.run(
            [sys.executable, "-m", "mcp_http_bridge.main", "--port", str(free_port()), "--", *stub_command],
            env={**os.environ, **(env or {})},
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
        )

    def test_rejected_handshake_exits_nonzero(self, stub_command):
        completed = self.run_bridge(stub_command, env={"STUB_REJECT_INIT": "1"})

        assert completed.returncode != 0
        assert "unsupported protocol version" in completed.stderr

    def test_missing_command_exits_nonzero(self):
        completed = subprocess.run(
            [sys.executable, "-m", "mcp_http_bridge.main"],
            capture_output=True,
            text=True,
            timeout=60,
        )

        assert completed.returncode == 1
        assert "MCP server command is required" in completed.stderr
