"""MCP protocol models."""

from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict


JSONRPC_VERSION = "2.0"


class RpcErrorObject(BaseModel):
    """JSON-RPC error object."""
    code: int
    message: str
    data: Optional[Any] = None

    def to_wire(self) -> Dict[str, Any]:
        data = {"code": self.code, "message": self.message}
        if "data" in self.model_fields_set:
            data["data"] = self.data
        return data


class RpcMessage(BaseModel):
    """A JSON-RPC 2.0 message: request, notification or response."""
    jsonrpc: str = JSONRPC_VERSION
    id: Optional[Union[int, str]] = None
    method: Optional[str] = None
    params: Optional[Union[Dict[str, Any], List[Any]]] = None
    result: Optional[Any] = None
    error: Optional[RpcErrorObject] = None

    @property
    def is_request(self) -> bool:
        return self.method is not None and self.id is not None

    @property
    def is_notification(self) -> bool:
        return self.method is not None and self.id is None

    @property
    def has_result(self) -> bool:
        # A null result is still a result
        return "result" in self.model_fields_set

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def is_response(self) -> bool:
        return self.method is None and self.id is not None

    @property
    def is_well_formed_response(self) -> bool:
        """True if this response carries exactly one of result and error."""
        return self.is_response and self.has_result != self.has_error

    def to_wire(self) -> Dict[str, Any]:
        """Dictionary for the wire, without absent members.

        Nulls nested inside params and result are kept as sent.
        """
        data: Dict[str, Any] = {"jsonrpc": self.jsonrpc}
        if self.id is not None:
            data["id"] = self.id
        if self.method is not None:
            data["method"] = self.method
        if self.params is not None:
            data["params"] = self.params
        if self.has_result:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error.to_wire()
        return data


class ClientInfo(BaseModel):
    """Client identity sent during the handshake."""
    name: str
    version: str


class InitializeParams(BaseModel):
    """Params of the initialize request."""
    protocolVersion: str
    capabilities: Dict[str, Any]
    clientInfo: ClientInfo


class Tool(BaseModel):
    """Tool definition as reported by the MCP server."""
    model_config = ConfigDict(extra="allow")

    name: str
    description: str = ""
    inputSchema: Dict[str, Any]
    annotations: Optional[Dict[str, Any]] = None


class ToolsListResult(BaseModel):
    """Result of tools/list."""
    model_config = ConfigDict(extra="allow")

    tools: List[Tool]


class CallToolRequest(BaseModel):
    """Params of tools/call."""
    name: str
    arguments: Dict[str, Any] = {}


def request(request_id: Union[int, str], method: str, params: Optional[Dict[str, Any]] = None) -> RpcMessage:
    """Build a request message."""
    return RpcMessage(id=request_id, method=method, params=params)


def notification(method: str, params: Optional[Dict[str, Any]] = None) -> RpcMessage:
    """Build a notification message (never has an id)."""
    return RpcMessage(method=method, params=params)


def response(request_id: Union[int, str], result: Any = None, error: Optional[Dict[str, Any]] = None) -> RpcMessage:
    """Build a response message."""
    if error is not None:
        return RpcMessage(id=request_id, error=RpcErrorObject(**error))
    return RpcMessage(id=request_id, result=result)
