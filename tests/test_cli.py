"""Tests for the mcp-bridge-ctl command line."""

import io
import json
import os

import httpx
import pytest
from unittest.mock import MagicMock, patch

from mcp_http_bridge import cli
from mcp_http_bridge.supervisor import StartResult, Supervisor


TOOLS_BODY = {"result": {"tools": [
    {"name": "new_page", "description": "Open a new page.\nMore details here.", "inputSchema": {"type": "object"}},
    {"name": "close_page", "inputSchema": {"type": "object"}},
]}}


@pytest.fixture(autouse=True)
def environment(tmp_path, monkeypatch):
    monkeypatch.setenv("MCP_BRIDGE_STATE_DIR", str(tmp_path))
    monkeypatch.setenv("MCP_BRIDGE_SLUG", "cli-test")
    monkeypatch.setenv("MCP_BRIDGE_PORT", "6125")
    monkeypatch.setenv("MCP_BRIDGE_COMMAND", "chrome-devtools-mcp -e /path/to/chrome")
    monkeypatch.setattr(cli, "setup_logging", MagicMock())


@pytest.fixture
def bridge(monkeypatch):
    """Route the supervisor's HTTP client to a handler chosen by the test."""
    state = {"handler": lambda request: httpx.Response(200, json=TOOLS_BODY), "requests": []}

    def handler(request):
        state["requests"].append(request)
        return state["handler"](request)

    def factory(config):
        client = httpx.Client(base_url=config.base_url, transport=httpx.MockTransport(handler))
        return Supervisor(config, http_client=client)

    monkeypatch.setattr(cli, "Supervisor", factory)
    return state


class TestBuildConfig:
    """Test environment and flag handling."""

    def test_environment(self, tmp_path):
        args = cli.build_parser().parse_args(["status"])
        config = cli.build_config(args)

        assert config.slug == "cli-test"
        assert config.port == 6125
        assert config.command == ["chrome-devtools-mcp", "-e", "/path/to/chrome"]
        assert config.state_dir == tmp_path / "cli-test"

    def test_flags_override_environment(self):
        args = cli.build_parser().parse_args(["--slug", "other", "--port", "7000", "--command", "srv --stdio", "status"])
        config = cli.build_config(args)

        assert config.slug == "other"
        assert config.port == 7000
        assert config.command == ["srv", "--stdio"]

    def test_invalid_port(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--port", "abc", "status"])
        assert exc_info.value.code == 1
        assert "Invalid port number" in capsys.readouterr().err

    def test_action_required(self):
        with pytest.raises(SystemExit):
            cli.main([])


class TestCommands:
    """Test each mcp-bridge-ctl action."""

    def test_status_not_running(self, bridge, capsys):
        assert cli.main(["status"]) == 1
        assert "not running" in capsys.readouterr().out

    def test_status_running(self, bridge, tmp_path, capsys):
        state_dir = tmp_path / "cli-test"
        state_dir.mkdir()
        (state_dir / "server.pid").write_text(str(os.getpid()))

        assert cli.main(["status"]) == 0
        out = capsys.readouterr().out
        assert f"running (PID: {os.getpid()})" in out
        assert "responding" in out

    def test_status_running_not_responding(self, bridge, tmp_path, capsys):
        state_dir = tmp_path / "cli-test"
        state_dir.mkdir()
        (state_dir / "server.pid").write_text(str(os.getpid()))
        bridge["handler"] = lambda request: httpx.Response(502, json={"error": "No response from MCP server"})

        assert cli.main(["status"]) == 1
        assert "not responding" in capsys.readouterr().out

    def test_stop_not_running(self, bridge, capsys):
        assert cli.main(["stop"]) == 0
        assert "not running" in capsys.readouterr().out

    def test_start(self, bridge, tmp_path, capsys):
        with patch.object(Supervisor, "start", return_value=StartResult(pid=999, healthy=True)):
            assert cli.main(["start"]) == 0
        out = capsys.readouterr().out
        assert "port 6125" in out
        assert "PID: 999" in out
        assert str(tmp_path / "cli-test" / "server.log") in out

    def test_start_unhealthy(self, bridge, capsys):
        with patch.object(Supervisor, "start", return_value=StartResult(pid=999, healthy=False)):
            assert cli.main(["start"]) == 1
        assert "may have failed" in capsys.readouterr().out

    def test_start_without_command(self, bridge, monkeypatch, capsys):
        monkeypatch.delenv("MCP_BRIDGE_COMMAND")
        assert cli.main(["start"]) == 1
        assert "MCP_BRIDGE_COMMAND" in capsys.readouterr().err

    def test_tools(self, bridge, capsys):
        assert cli.main(["tools"]) == 0
        assert capsys.readouterr().out.splitlines() == ["new_page\tOpen a new page.", "close_page"]
        assert bridge["requests"][0].url.path == "/tools/list"

    def test_tools_json(self, bridge, capsys):
        assert cli.main(["tools", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert [tool["name"] for tool in data["tools"]] == ["new_page", "close_page"]

    def test_tools_rpc_error(self, bridge, capsys):
        bridge["handler"] = lambda request: httpx.Response(
            400, json={"error": {"code": -32601, "message": "Method not found"}})

        assert cli.main(["tools"]) == 1
        assert "MCP server error -32601: Method not found" in capsys.readouterr().err

    def test_tools_unreachable(self, bridge, capsys):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)
        bridge["handler"] = refuse

        assert cli.main(["tools"]) == 1
        assert "not reachable" in capsys.readouterr().err

    def test_tool_with_piped_arguments(self, bridge, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO('{"url": "https://example.com"}'))
        bridge["handler"] = lambda request: httpx.Response(
            200, json={"result": {"content": [{"type": "text", "text": "Page opened"}]}})

        assert cli.main(["tool", "new_page"]) == 0
        assert capsys.readouterr().out == "Page opened\n"
        assert json.loads(bridge["requests"][0].content) == {
            "name": "new_page", "arguments": {"url": "https://example.com"}
        }

    def test_tool_prints_raw_body_without_text(self, bridge, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO(""))
        body = {"result": {"content": [{"type": "text", "text": "null"}]}}
        bridge["handler"] = lambda request: httpx.Response(200, json=body)

        assert cli.main(["tool", "close_page"]) == 0
        assert json.loads(capsys.readouterr().out) == body
        assert json.loads(bridge["requests"][0].content)["arguments"] == {}

    def test_tool_error_body(self, bridge, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO("{}"))
        body = {"error": {"code": -32602, "message": "Unknown tool"}}
        bridge["handler"] = lambda request: httpx.Response(400, json=body)

        assert cli.main(["tool", "nope"]) == 1
        assert json.loads(capsys.readouterr().out) == body

    @pytest.mark.parametrize("stdin", ["[1, 2]", "{broken"])
    def test_tool_invalid_arguments(self, bridge, monkeypatch, capsys, stdin):
        monkeypatch.setattr("sys.stdin", io.StringIO(stdin))

        assert cli.main(["tool", "new_page"]) == 1
        assert "Invalid tool arguments" in capsys.readouterr().err
        assert bridge["requests"] == []

    def test_logs(self, bridge, tmp_path, capsys):
        assert cli.main(["logs"]) == 1
        assert "No log file" in capsys.readouterr().err

        state_dir = tmp_path / "cli-test"
        state_dir.mkdir()
        (state_dir / "server.log").write_text("INFO bridge started\n")
        assert cli.main(["logs"]) == 0
        assert capsys.readouterr().out == "INFO bridge started\n"


class TestReadArguments:
    """Test read_arguments."""

    def test_terminal_means_no_arguments(self):
        stream = MagicMock()
        stream.isatty.return_value = True
        assert cli.read_arguments(stream) == {}
        stream.read.assert_not_called()

    def test_object(self):
        assert cli.read_arguments(io.StringIO(' {"a": 1}\n')) == {"a": 1}
