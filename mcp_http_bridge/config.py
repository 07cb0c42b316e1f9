"""Configuration management for the MCP HTTP bridge."""

import json
import os
import shlex
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field


DEFAULT_PORT = 6000
DEFAULT_PROTOCOL_VERSION = "2024-11-05"


@dataclass
class PeerConfig:
    """MCP server (child process) configuration."""
    command: str
    args: List[str] = field(default_factory=list)
    cwd: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> List[str]:
        return [self.command, *self.args]


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    log_file: Optional[str] = None
    peer_log_file: Optional[str] = None
    call_timeout: float = 120.0


@dataclass
class ClientConfig:
    """Identity presented to the MCP server during the handshake."""
    name: str = "mcp-http-server"
    version: str = "1.0.0"
    protocol_version: str = DEFAULT_PROTOCOL_VERSION


@dataclass
class Config:
    """Main configuration."""
    server: ServerConfig = field(default_factory=ServerConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    peer: Optional[PeerConfig] = None

    def to_dict(self) -> Dict:
        """Convert configuration to dictionary for logging setup."""
        return {
            "log_level": self.server.log_level,
            "host": self.server.host,
            "port": self.server.port,
            "log_file": self.server.log_file,
            "peer_log_file": self.server.peer_log_file,
        }


def validate_port(value: Any) -> int:
    """Return value as a TCP port number, or raise ValueError."""
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid port number: {value}")
    if not 0 < port < 65536:
        raise ValueError(f"Invalid port number: {value}")
    return port


def parse_peer(data: Dict[str, Any]) -> PeerConfig:
    """Build a PeerConfig from its JSON form.

    ``command`` may be a full command line string or a list; ``args`` are
    appended after whatever the command line already contains.
    """
    command = data.get("command")
    if isinstance(command, str):
        argv = shlex.split(command)
    elif isinstance(command, list):
        argv = [str(part) for part in command]
    else:
        raise KeyError("peer.command must be a string or a list")
    if not argv:
        raise KeyError("peer.command is empty")

    return PeerConfig(
        command=argv[0],
        args=argv[1:] + [str(arg) for arg in data.get("args", [])],
        cwd=data.get("cwd"),
        env={str(k): str(v) for k, v in data.get("env", {}).items()},
    )


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from file."""
    if config_path is None:
        for path in ["config.json", "../config.json"]:
            if os.path.exists(path):
                config_path = path
                break
        else:
            return Config()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        server_config = ServerConfig(**data.get("server", {}))
        server_config.port = validate_port(server_config.port)
        client_config = ClientConfig(**data.get("client", {}))
        peer_config = parse_peer(data["peer"]) if "peer" in data else None

        return Config(
            server=server_config,
            client=client_config,
            peer=peer_config,
        )

    except (FileNotFoundError, json.JSONDecodeError, KeyError, TypeError) as e:
        raise ValueError(f"Failed to load config from {config_path}: {e}")
