"""Background process supervision for the MCP HTTP bridge."""

import logging
import os
import shlex
import signal
import subprocess
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import httpx
from pydantic import ValidationError

from .config import DEFAULT_PORT, validate_port
from .exceptions import PeerUnavailable, ProtocolError, RpcError, SupervisorError
from .models import CallToolRequest, ToolsListResult


@dataclass
class SupervisorConfig:
    """Where the bridge runs and where its state lives."""
    command: List[str] = field(default_factory=list)
    slug: str = "default"
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    state_root: str = "/tmp/mcp-bridge"
    startup_timeout: float = 10.0
    poll_interval: float = 0.5
    probe_timeout: float = 5.0
    call_timeout: float = 300.0

    @property
    def state_dir(self) -> Path:
        return Path(self.state_root) / self.slug

    @property
    def pid_file(self) -> Path:
        return self.state_dir / "server.pid"

    @property
    def log_file(self) -> Path:
        return self.state_dir / "server.log"

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SupervisorConfig":
        """Read MCP_BRIDGE_COMMAND, MCP_BRIDGE_SLUG, MCP_BRIDGE_PORT and MCP_BRIDGE_STATE_DIR."""
        if environ is None:
            environ = os.environ
        config = cls(command=shlex.split(environ.get("MCP_BRIDGE_COMMAND", "")))
        if environ.get("MCP_BRIDGE_SLUG"):
            config.slug = environ["MCP_BRIDGE_SLUG"]
        if environ.get("MCP_BRIDGE_PORT"):
            config.port = validate_port(environ["MCP_BRIDGE_PORT"])
        if environ.get("MCP_BRIDGE_STATE_DIR"):
            config.state_root = environ["MCP_BRIDGE_STATE_DIR"]
        return config


@dataclass
class StartResult:
    pid: int
    healthy: bool


@dataclass
class SupervisorStatus:
    running: bool
    pid: Optional[int] = None
    responding: bool = False


class StopResult(str, Enum):
    STOPPED = "stopped"
    STALE = "stale"
    NOT_RUNNING = "not_running"


class Supervisor:
    """Starts, stops and queries a bridge running in the background."""

    def __init__(self, config: SupervisorConfig, http_client: Optional[httpx.Client] = None):
        self.config = config
        self._client = http_client
        self.logger = logging.getLogger("supervisor")

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(base_url=self.config.base_url, timeout=self.config.call_timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def read_pid(self) -> Optional[int]:
        """PID recorded in the PID file, if any."""
        try:
            return int(self.config.pid_file.read_text().strip())
        except FileNotFoundError:
            return None
        except ValueError:
            self.logger.warning(f"Ignoring corrupt PID file {self.config.pid_file}")
            return None

    @staticmethod
    def is_alive(pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def _remove_pid_file(self) -> None:
        self.config.pid_file.unlink(missing_ok=True)

    def is_responding(self) -> bool:
        """True if the bridge answers POST /tools/list."""
        try:
            response = self.client.post("/tools/list", json={}, timeout=self.config.probe_timeout)
        except httpx.HTTPError as e:
            self.logger.debug(f"Bridge probe failed: {e}")
            return False
        return response.status_code == 200

    def wait_until_responding(self, process: Optional[subprocess.Popen] = None) -> bool:
        deadline = time.monotonic() + self.config.startup_timeout
        while True:
            if process is not None and process.poll() is not None:
                self.logger.error(f"Bridge exited during startup with status {process.returncode}")
                return False
            if self.is_responding():
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.config.poll_interval)

    def bridge_argv(self) -> List[str]:
        return [
            sys.executable, "-m", "mcp_http_bridge.main",
            "--host", self.config.host,
            "--port", str(self.config.port),
            "--", *self.config.command,
        ]

    def start(self) -> StartResult:
        """Launch the bridge in the background and wait for it to answer."""
        if not self.config.command:
            raise SupervisorError("No MCP server command configured (set MCP_BRIDGE_COMMAND)")

        pid = self.read_pid()
        if pid is not None and self.is_alive(pid):
            raise SupervisorError(f"Bridge is already running (PID: {pid})")

        self.config.state_dir.mkdir(parents=True, exist_ok=True)
        argv = self.bridge_argv()
        self.logger.info(f"Starting bridge: {' '.join(argv)}")
        with open(self.config.log_file, "ab") as log:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        self.config.pid_file.write_text(str(process.pid))

        healthy = self.wait_until_responding(process)
        return StartResult(pid=process.pid, healthy=healthy)

    def stop(self) -> StopResult:
        """Send SIGTERM to the recorded bridge process."""
        pid = self.read_pid()
        if pid is None:
            return StopResult.NOT_RUNNING

        if not self.is_alive(pid):
            self._remove_pid_file()
            return StopResult.STALE

        self.logger.info(f"Stopping bridge (PID: {pid})")
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            self._remove_pid_file()
            return StopResult.STALE
        self._remove_pid_file()
        return StopResult.STOPPED

    def status(self) -> SupervisorStatus:
        pid = self.read_pid()
        if pid is None:
            return SupervisorStatus(running=False)
        if not self.is_alive(pid):
            self._remove_pid_file()
            return SupervisorStatus(running=False, pid=pid)
        return SupervisorStatus(running=True, pid=pid, responding=self.is_responding())

    def _post(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.client.post(f"/{method}", json=payload)
        except httpx.HTTPError as e:
            raise PeerUnavailable(f"Bridge is not reachable at {self.config.base_url}: {e}")
        try:
            return response.json()
        except ValueError:
            raise ProtocolError(f"Bridge returned non-JSON response ({response.status_code}): {response.text[:200]}")

    def list_tools(self) -> ToolsListResult:
        body = self._post("tools/list", {})
        error = body.get("error")
        if isinstance(error, dict):
            raise RpcError(error.get("code", 0), error.get("message", ""), error.get("data"))
        if error is not None:
            raise SupervisorError(str(error))
        try:
            return ToolsListResult.model_validate(body.get("result"))
        except ValidationError as e:
            raise ProtocolError(f"Unexpected tools/list result: {e}")

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Invoke tools/call and return the raw bridge response body."""
        request = CallToolRequest(name=name, arguments=arguments or {})
        return self._post("tools/call", request.model_dump())

    @staticmethod
    def tool_text(body: Dict[str, Any]) -> Optional[str]:
        """First text content of a tools/call result, when there is a useful one."""
        result = body.get("result")
        if not isinstance(result, dict):
            return None
        content = result.get("content")
        if not isinstance(content, list) or not content or not isinstance(content[0], dict):
            return None
        text = content[0].get("text")
        if not isinstance(text, str) or text.strip() in ("", "null", "{}"):
            return None
        return text

    def read_log(self) -> Optional[str]:
        try:
            return self.config.log_file.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return None
