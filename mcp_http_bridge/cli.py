"""mcp-bridge-ctl: manage a background MCP HTTP bridge from the shell.

Examples::

    export MCP_BRIDGE_COMMAND="chrome-devtools-mcp -e /path/to/chrome"
    mcp-bridge-ctl start
    mcp-bridge-ctl tools
    echo '{"url": "https://example.com"}' | mcp-bridge-ctl tool new_page
    mcp-bridge-ctl stop
"""

import argparse
import json
import shlex
import sys
from typing import List, Optional, TextIO

from .config import validate_port
from .exceptions import BridgeError, RpcError
from .logging_config import setup_logging
from .supervisor import StopResult, Supervisor, SupervisorConfig


def cmd_start(supervisor: Supervisor, args: argparse.Namespace) -> int:
    config = supervisor.config
    print(f"Starting bridge on port {config.port} in the background...")
    result = supervisor.start()
    print(f"Bridge started (PID: {result.pid})")
    print(f"Log: {config.log_file}")
    if result.healthy:
        print("✅ Bridge is up and answering")
        return 0
    print("❌ Bridge may have failed to start")
    print("Check the log: mcp-bridge-ctl logs")
    return 1


def cmd_stop(supervisor: Supervisor, args: argparse.Namespace) -> int:
    pid = supervisor.read_pid()
    result = supervisor.stop()
    if result is StopResult.STOPPED:
        print(f"✅ Bridge stopped (PID: {pid})")
    elif result is StopResult.STALE:
        print(f"Recorded process {pid} was already gone; removed PID file")
    else:
        print("No PID file found; bridge is not running")
    return 0


def cmd_status(supervisor: Supervisor, args: argparse.Namespace) -> int:
    status = supervisor.status()
    if not status.running:
        if status.pid is not None:
            print(f"❌ PID file pointed at {status.pid}, but that process is gone")
        else:
            print("❌ Bridge is not running")
        return 1

    print(f"✅ Bridge is running (PID: {status.pid})")
    if status.responding:
        print("✅ Bridge is responding")
        return 0
    print("❌ Bridge is not responding")
    return 1


def cmd_tools(supervisor: Supervisor, args: argparse.Namespace) -> int:
    tools = supervisor.list_tools()
    if args.json:
        print(tools.model_dump_json(indent=2, exclude_none=True))
        return 0
    for tool in tools.tools:
        summary = tool.description.strip().splitlines()[0] if tool.description.strip() else ""
        print(f"{tool.name}\t{summary}" if summary else tool.name)
    return 0


def read_arguments(stream: TextIO) -> dict:
    """Tool arguments from piped stdin, or {} when stdin is a terminal."""
    if stream.isatty():
        return {}
    text = stream.read().strip()
    if not text:
        return {}
    arguments = json.loads(text)
    if not isinstance(arguments, dict):
        raise ValueError("Tool arguments must be a JSON object")
    return arguments


def cmd_tool(supervisor: Supervisor, args: argparse.Namespace) -> int:
    try:
        arguments = read_arguments(sys.stdin)
    except ValueError as e:
        print(f"❌ Invalid tool arguments: {e}", file=sys.stderr)
        return 1

    body = supervisor.call_tool(args.name, arguments)
    text = supervisor.tool_text(body)
    print(text if text is not None else json.dumps(body, ensure_ascii=False))
    return 1 if "error" in body else 0


def cmd_logs(supervisor: Supervisor, args: argparse.Namespace) -> int:
    log = supervisor.read_log()
    if log is None:
        print(f"No log file at {supervisor.config.log_file}", file=sys.stderr)
        return 1
    sys.stdout.write(log)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-bridge-ctl",
        description="Manage an MCP HTTP bridge running in the background",
    )
    parser.add_argument("--slug", help="Instance name; selects the state directory (env: MCP_BRIDGE_SLUG)")
    parser.add_argument("--port", help="Bridge port (env: MCP_BRIDGE_PORT, default: 6000)")
    parser.add_argument("--command", dest="mcp_command",
                        help="MCP server command line (env: MCP_BRIDGE_COMMAND)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log supervisor activity")

    subparsers = parser.add_subparsers(dest="action", required=True)
    subparsers.add_parser("start", help="Start the bridge in the background").set_defaults(func=cmd_start)
    subparsers.add_parser("stop", help="Stop the background bridge").set_defaults(func=cmd_stop)
    subparsers.add_parser("status", help="Show whether the bridge is running").set_defaults(func=cmd_status)

    tools = subparsers.add_parser("tools", help="List the MCP server's tools")
    tools.add_argument("--json", action="store_true", help="Print the raw tools/list result")
    tools.set_defaults(func=cmd_tools)

    tool = subparsers.add_parser("tool", help="Call a tool; JSON arguments are read from stdin")
    tool.add_argument("name", help="Tool name")
    tool.set_defaults(func=cmd_tool)

    subparsers.add_parser("logs", help="Print the bridge log").set_defaults(func=cmd_logs)
    return parser


def build_config(args: argparse.Namespace) -> SupervisorConfig:
    config = SupervisorConfig.from_env()
    if args.slug:
        config.slug = args.slug
    if args.port:
        config.port = validate_port(args.port)
    if args.mcp_command:
        config.command = shlex.split(args.mcp_command)
    return config


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(log_level="DEBUG" if args.verbose else "WARNING")

    try:
        config = build_config(args)
    except ValueError as e:
        parser.exit(1, f"{parser.prog}: error: {e}\n")

    supervisor = Supervisor(config)
    try:
        return args.func(supervisor, args)
    except RpcError as e:
        print(f"❌ MCP server error {e.code}: {e.message}", file=sys.stderr)
        return 1
    except BridgeError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    finally:
        supervisor.close()


if __name__ == "__main__":
    sys.exit(main())
