"""Command line entry point for the MCP HTTP bridge.

Usage::

    mcp-http-bridge --port 6000 -- chrome-devtools-mcp -e /path/to/chrome

Everything after ``--`` is the MCP server command line.
"""

import argparse
import sys
from typing import List, Optional, Tuple

import uvicorn

from .config import Config, PeerConfig, load_config, validate_port
from .server import create_app


EXAMPLE = "Example: mcp-http-bridge --port 6000 -- chrome-devtools-mcp -e /path/to/chrome"


def split_command_line(argv: List[str]) -> Tuple[List[str], List[str]]:
    """Split argv at the first ``--`` into bridge options and the MCP server command."""
    if "--" in argv:
        index = argv.index("--")
        return argv[:index], argv[index + 1:]
    return argv, []


def port_type(value: str) -> int:
    try:
        return validate_port(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-http-bridge",
        description="Expose an MCP stdio server as POST /{method} over HTTP",
        epilog=EXAMPLE,
    )
    parser.add_argument("--host", help="Host to bind (default: 127.0.0.1)")
    parser.add_argument("--port", type=port_type, help="Port to bind (default: 6000)")
    parser.add_argument("--config", help="Path to a JSON config file")
    parser.add_argument("--timeout", type=float,
                        help="Seconds to wait for each MCP reply; 0 waits forever (default: 120)")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        type=str.upper, help="Logging level (default: INFO)")
    parser.add_argument("--log-file", help="Also log to this file, with rotation")
    parser.add_argument("--peer-log-file", help="Also write the MCP server's stderr to this file")
    return parser


def build_config(args: argparse.Namespace, command: List[str]) -> Config:
    """Merge the config file (if any) with command line overrides."""
    config = load_config(args.config) if args.config else Config()

    if args.host is not None:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.timeout is not None:
        config.server.call_timeout = args.timeout
    if args.log_level is not None:
        config.server.log_level = args.log_level
    if args.log_file is not None:
        config.server.log_file = args.log_file
    if args.peer_log_file is not None:
        config.server.peer_log_file = args.peer_log_file
    if command:
        config.peer = PeerConfig(command=command[0], args=command[1:])
    return config


def main(argv: Optional[List[str]] = None) -> None:
    """Run the bridge until interrupted."""
    if argv is None:
        argv = sys.argv[1:]
    own_args, command = split_command_line(argv)

    parser = build_parser()
    args = parser.parse_args(own_args)

    try:
        config = build_config(args, command)
    except ValueError as e:
        parser.exit(1, f"{parser.prog}: error: {e}\n")

    if config.peer is None:
        parser.exit(1, f"{parser.prog}: error: MCP server command is required after --\n{EXAMPLE}\n")

    app = create_app(config)
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
