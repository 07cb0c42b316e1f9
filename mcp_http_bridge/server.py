"""HTTP adapter exposing an MCP server's JSON-RPC methods."""

import json
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Config
from .exceptions import (
    HandshakeFailure, InvalidRequestError, PeerTimeout, PeerUnavailable, ProtocolError
)
from .logging_config import setup_bridge_logging
from .session import RpcSession


__version__ = "0.1.0"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

ROUTE_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class BridgeState(str, Enum):
    """Lifecycle of the bridge as a whole."""
    STARTING = "starting"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


def json_response(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=data, status_code=status_code, headers=CORS_HEADERS)


def error_response(message: str, status_code: int = 400) -> JSONResponse:
    return json_response({"error": message}, status_code)


def parse_params(body: bytes) -> Optional[Dict[str, Any]]:
    """Turn a request body into RPC params.

    An empty body means no params. Anything else must be a JSON object.
    """
    try:
        text = body.decode("utf-8").strip()
    except UnicodeDecodeError:
        raise InvalidRequestError("Invalid JSON in request body")
    if not text:
        return None
    try:
        params = json.loads(text)
    except json.JSONDecodeError:
        raise InvalidRequestError("Invalid JSON in request body")
    if not isinstance(params, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return params


class BridgeServer:
    """HTTP front end for a single RpcSession."""

    def __init__(self, config: Config, session: Optional[RpcSession] = None, configure_logging: bool = True):
        self.config = config
        if configure_logging:
            setup_bridge_logging(self.config.to_dict())
        self.logger = logging.getLogger("bridge_server")

        self.session = session if session is not None else RpcSession.from_config(config)
        self.state = BridgeState.STARTING

        self.app = FastAPI(title="MCP HTTP Bridge", version=__version__, lifespan=self.lifespan)
        self.setup_routes()

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        """Handshake on startup; the session is closed on every exit path."""
        self.state = BridgeState.STARTING
        try:
            await self.start()
            yield
        finally:
            self.state = BridgeState.SHUTTING_DOWN
            self.logger.info("Shutting down bridge")
            await self.session.close()
            self.state = BridgeState.STOPPED
            self.logger.info("Bridge stopped")

    async def start(self) -> None:
        """Connect to the MCP server; raises HandshakeFailure if it cannot."""
        self.logger.info("Connecting to MCP server...")
        try:
            await self.session.initialize()
        except HandshakeFailure:
            self.logger.error("MCP initialization failed")
            raise
        except (PeerUnavailable, PeerTimeout, ProtocolError) as e:
            self.logger.error(f"MCP initialization failed: {e}")
            raise HandshakeFailure(f"MCP initialization failed: {e}")

        self.state = BridgeState.READY
        self.logger.info(
            f"Bridge ready on http://{self.config.server.host}:{self.config.server.port}"
        )

    def setup_routes(self):
        """Setup FastAPI routes."""

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            """Routing errors (e.g. unlisted verbs) in the bridge's error shape."""
            message = "Method not allowed" if exc.status_code == 405 else str(exc.detail)
            return error_response(message, exc.status_code)

        @self.app.api_route("/{method:path}", methods=ROUTE_METHODS)
        async def bridge_route(request: Request, method: str):
            """Forward POST /{method} to the MCP server."""
            try:
                return await self.handle_request(request, method)
            except Exception:
                self.logger.exception("Request handling error")
                return error_response("Internal server error", 500)

    async def handle_request(self, request: Request, method: str) -> Response:
        """Map one HTTP request to one RPC call."""
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)

        if request.method != "POST":
            return error_response("Method not allowed", 405)

        try:
            if not method:
                raise InvalidRequestError("Method name is required in URL path")
            params = parse_params(await request.body())
        except InvalidRequestError as e:
            self.logger.warning(f"Rejected request for {method!r}: {e}")
            return error_response(str(e), 400)

        if params is None:
            self.logger.info(f"MCP method call: {method} without params")
        else:
            self.logger.info(f"MCP method call: {method} with params: {json.dumps(params)}")

        try:
            response = await self.session.call(method, params)
        except PeerUnavailable as e:
            self.logger.error(f"No response for {method}: {e}")
            return error_response("No response from MCP server", 502)
        except PeerTimeout as e:
            self.logger.error(f"Timeout for {method}: {e}")
            return error_response("Timed out waiting for MCP server", 504)
        except ProtocolError as e:
            self.logger.error(f"Protocol error for {method}: {e}")
            return error_response(f"Invalid response from MCP server: {e}", 502)
        except HandshakeFailure as e:
            self.logger.error(f"Handshake failed before {method}: {e}")
            return error_response("MCP server handshake failed", 502)

        if response.has_error:
            return json_response({"error": response.error.to_wire()}, 400)

        return json_response({"result": response.result})


def create_app(config: Config, session: Optional[RpcSession] = None) -> FastAPI:
    """Create and return the FastAPI app."""
    server = BridgeServer(config, session=session)
    return server.app
