"""JSON-RPC session with an MCP server running as a child process."""

import asyncio
import contextlib
import logging
import os
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union

from pydantic import ValidationError

from . import models
from .config import Config, ClientConfig
from .exceptions import HandshakeFailure, PeerTimeout, PeerUnavailable, ProtocolError, RpcError
from .framer import StreamFramer
from .logging_config import PEER_STDERR_LOGGER
from .models import RpcMessage, ToolsListResult


# asyncio's 64KiB default is too small for large tool results
STREAM_LIMIT = 16 * 1024 * 1024
CLOSE_GRACE_PERIOD = 5.0
METHOD_NOT_FOUND = -32601

CLIENT_CAPABILITIES = {
    "roots": {"listChanged": True},
    "sampling": {},
    "tools": {"listChanged": True},
}


class SessionStatus(str, Enum):
    """Lifecycle of an RpcSession."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


class RpcSession:
    """Owns one MCP server process and speaks JSON-RPC with it over stdio.

    A background task reads the server's stdout continuously and hands each
    response to the caller waiting on its id, so any number of calls may be
    in flight at once. Writes go through a lock so frames never interleave.
    """

    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = 120.0,
        client: Optional[ClientConfig] = None,
    ):
        self.command = command
        self.args = list(args or [])
        self.cwd = cwd
        self.env = dict(env or {})
        self.timeout = timeout
        self.client = client or ClientConfig()

        self.status = SessionStatus.UNINITIALIZED
        self.process: Optional[asyncio.subprocess.Process] = None
        self.framer: Optional[StreamFramer] = None
        self.server_info: Optional[Dict[str, Any]] = None

        self._next_id = 1
        self._pending: Dict[Union[int, str], asyncio.Future] = {}
        self._start_lock = asyncio.Lock()
        self._handshake_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self.logger = logging.getLogger("rpc_session")

    @classmethod
    def from_config(cls, config: Config) -> "RpcSession":
        """Create a session for the MCP server named in config."""
        if config.peer is None:
            raise ValueError("No MCP server command configured")
        return cls(
            command=config.peer.command,
            args=config.peer.args,
            cwd=config.peer.cwd,
            env=config.peer.env,
            timeout=config.server.call_timeout,
            client=config.client,
        )

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def is_ready(self) -> bool:
        return self.status is SessionStatus.READY

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def start(self) -> None:
        """Spawn the MCP server process if it is not running yet."""
        async with self._start_lock:
            if self.status is SessionStatus.CLOSED:
                raise PeerUnavailable("Session is closed")
            if self.process is not None:
                return

            argv = [self.command, *self.args]
            env = {**os.environ, **self.env} if self.env else None
            self.logger.info(f"Starting MCP server: {' '.join(argv)}")
            try:
                self.process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=self.cwd,
                    env=env,
                    limit=STREAM_LIMIT,
                )
            except OSError as e:
                self.logger.error(f"Failed to start MCP server {self.command!r}: {e}")
                raise PeerUnavailable(f"Failed to start MCP server {self.command!r}: {e}")

            self.framer = StreamFramer(self.process.stdout, self.process.stdin)
            self._reader_task = asyncio.create_task(self._read_loop())
            self._stderr_task = asyncio.create_task(self._drain_stderr())
            self.logger.info(f"MCP server started with PID {self.process.pid}")

    def _initialize_params(self) -> Dict[str, Any]:
        params = models.InitializeParams(
            protocolVersion=self.client.protocol_version,
            capabilities=CLIENT_CAPABILITIES,
            clientInfo=models.ClientInfo(name=self.client.name, version=self.client.version),
        )
        return params.model_dump()

    async def initialize(self) -> bool:
        """Perform the initialize handshake once.

        Concurrent callers wait for the handshake already in flight instead of
        starting a second one. Raises HandshakeFailure, carrying the raw
        response, if the server does not answer with a result.
        """
        async with self._handshake_lock:
            if self.status is SessionStatus.READY:
                return True
            if self.status is SessionStatus.CLOSED:
                raise PeerUnavailable("Session is closed")

            self.status = SessionStatus.INITIALIZING
            try:
                response = await self._request("initialize", self._initialize_params())
                if not response.has_result or response.result is None:
                    self.logger.error(f"Initialization failed: {response.to_wire()}")
                    raise HandshakeFailure("MCP server did not accept initialize", response=response)

                self.logger.info(f"Initialization succeeded: {response.result}")
                if isinstance(response.result, dict):
                    self.server_info = response.result.get("serverInfo")

                await self.notify("notifications/initialized")
            except BaseException:
                if self.status is SessionStatus.INITIALIZING:
                    self.status = SessionStatus.UNINITIALIZED
                raise

            self.status = SessionStatus.READY
            return True

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> RpcMessage:
        """Send a request and return the server's response message.

        The caller inspects ``result``/``error`` on the returned message.
        """
        if self.status is not SessionStatus.READY:
            await self.initialize()
        return await self._request(method, params)

    async def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a notification; no reply is expected."""
        await self.start()
        self._ensure_open()
        await self._send(models.notification(method, params))

    async def list_tools(self) -> Optional[ToolsListResult]:
        """Return the server's tools, or None if the reply has no tools array."""
        response = await self.call("tools/list")
        if response.has_error:
            raise RpcError.from_message(response)
        try:
            return ToolsListResult.model_validate(response.result)
        except ValidationError as e:
            self.logger.warning(f"Unexpected tools/list result: {e}")
            return None

    async def close(self) -> None:
        """Close stdin, wait for the process to exit and stop the readers."""
        if self.status is SessionStatus.CLOSED:
            return
        self.status = SessionStatus.CLOSED
        if self.process is None:
            return

        self.logger.info(f"Closing MCP server session (PID {self.process.pid})")
        await self.framer.close()
        returncode = await self._wait_for_exit()

        for task in (self._reader_task, self._stderr_task):
            await self._stop_task(task)
        for task in list(self._background):
            await self._stop_task(task)

        self._fail_pending("MCP server session closed")
        self.logger.info(f"MCP server exited with status {returncode}")

    async def __aenter__(self) -> "RpcSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _allocate_id(self) -> int:
        request_id = self._next_id
        self._next_id += 1
        return request_id

    def _ensure_open(self) -> None:
        if self.status is SessionStatus.CLOSED:
            raise PeerUnavailable("Session is closed")
        if self._reader_task is None or self._reader_task.done():
            raise PeerUnavailable("MCP server is not running")

    async def _request(self, method: str, params: Optional[Dict[str, Any]]) -> RpcMessage:
        await self.start()
        self._ensure_open()

        request_id = self._allocate_id()
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        self.logger.info(f"RPC request: {method} - ID: {request_id}")
        try:
            await self._send(models.request(request_id, method, params))
            if self.timeout is not None and self.timeout > 0:
                response = await asyncio.wait_for(future, self.timeout)
            else:
                response = await future
        except asyncio.TimeoutError:
            self.logger.error(f"RPC timeout: {method} - ID: {request_id} after {self.timeout}s")
            raise PeerTimeout(f"No response to {method} within {self.timeout}s")
        finally:
            self._pending.pop(request_id, None)

        self.logger.info(f"RPC response: {method} - ID: {request_id} - {'error' if response.has_error else 'ok'}")
        return response

    async def _send(self, message: RpcMessage) -> None:
        async with self._write_lock:
            try:
                await self.framer.write(message)
            except OSError as e:
                self.logger.error(f"Failed to write to MCP server: {e}")
                raise PeerUnavailable(f"Failed to write to MCP server: {e}")

    async def _read_loop(self) -> None:
        try:
            while True:
                try:
                    message = await self.framer.read()
                except ProtocolError as e:
                    self.logger.error(f"Discarding message from MCP server: {e}")
                    self._fail_response(e)
                    continue
                if message is None:
                    self.logger.warning("MCP server closed its output stream")
                    break
                self._dispatch(message)
        finally:
            self._fail_pending("MCP server closed its output stream before replying")

    def _dispatch(self, message: RpcMessage) -> None:
        if message.is_request:
            self._spawn(self._answer_peer_request(message))
            return
        if message.is_notification:
            self.logger.info(f"Notification from MCP server: {message.method}")
            return
        if message.id is None:
            self.logger.error(f"Uncorrelated message from MCP server: {message.to_wire()}")
            return

        future = self._pending.get(message.id)
        if future is None or future.done():
            self.logger.warning(f"Dropping response with unknown id {message.id!r}")
            return
        if not message.is_well_formed_response:
            future.set_exception(ProtocolError(
                f"Response {message.id!r} must carry exactly one of result and error"
            ))
            return
        future.set_result(message)

    async def _answer_peer_request(self, message: RpcMessage) -> None:
        self.logger.info(f"Request from MCP server: {message.method} - ID: {message.id}")
        if message.method == "ping":
            reply = models.response(message.id, result={})
        elif message.method == "roots/list":
            reply = models.response(message.id, result={"roots": []})
        else:
            reply = models.response(message.id, error={
                "code": METHOD_NOT_FOUND,
                "message": f"Method not found: {message.method}",
            })
        try:
            await self._send(reply)
        except PeerUnavailable as e:
            self.logger.warning(f"Could not answer {message.method}: {e}")

    async def _drain_stderr(self) -> None:
        stderr_logger = logging.getLogger(PEER_STDERR_LOGGER)
        while True:
            try:
                line = await self.process.stderr.readline()
            except ValueError:
                stderr_logger.warning("Dropped an overlong stderr line")
                continue
            if not line:
                break
            stderr_logger.info(line.decode("utf-8", errors="replace").rstrip())

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _fail_response(self, error: ProtocolError) -> None:
        """Fail the caller an unreadable response was addressed to, if any."""
        if error.response_id is None:
            return
        future = self._pending.get(error.response_id)
        if future is not None and not future.done():
            future.set_exception(error)

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(PeerUnavailable(reason))

    async def _wait_for_exit(self) -> Optional[int]:
        try:
            return await asyncio.wait_for(self.process.wait(), CLOSE_GRACE_PERIOD)
        except asyncio.TimeoutError:
            self.logger.warning(f"MCP server (PID {self.process.pid}) did not exit, terminating")

        with contextlib.suppress(ProcessLookupError):
            self.process.terminate()
        try:
            return await asyncio.wait_for(self.process.wait(), CLOSE_GRACE_PERIOD)
        except asyncio.TimeoutError:
            self.logger.warning(f"MCP server (PID {self.process.pid}) ignored SIGTERM, killing")

        with contextlib.suppress(ProcessLookupError):
            self.process.kill()
        return await self.process.wait()

    @staticmethod
    async def _stop_task(task: Optional[asyncio.Task]) -> None:
        if task is None or task.done():
            return
        await asyncio.wait({task}, timeout=1.0)
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
