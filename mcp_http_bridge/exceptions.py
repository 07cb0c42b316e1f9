"""Error kinds raised by the MCP HTTP bridge."""

from typing import Any, Optional, Union


class BridgeError(Exception):
    """Base class for bridge errors."""
    pass


class ProtocolError(BridgeError):
    """Malformed or unexpected JSON on the MCP server stream.

    ``response_id`` is the id of the response the bad message was meant to be,
    when that much could still be read from it.
    """

    def __init__(self, message: str, response_id: Optional[Union[int, str]] = None):
        super().__init__(message)
        self.response_id = response_id


class PeerUnavailable(BridgeError):
    """The MCP server stream closed, or the process exited, before a reply arrived."""
    pass


class PeerTimeout(BridgeError):
    """The MCP server did not reply within the configured time."""
    pass


class InvalidRequestError(BridgeError):
    """Malformed HTTP request; never forwarded to the MCP server."""
    pass


class RpcError(BridgeError):
    """Structured JSON-RPC error reported by the MCP server."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data

    @classmethod
    def from_message(cls, message) -> "RpcError":
        """Build from an RpcMessage carrying an error."""
        error = message.error
        return cls(error.code, error.message, error.data)


class SupervisorError(BridgeError):
    """The background bridge process could not be managed as requested."""
    pass


class HandshakeFailure(BridgeError):
    """The initialize handshake did not succeed."""

    def __init__(self, message: str, response: Optional[Any] = None):
        super().__init__(message)
        self.response = response
