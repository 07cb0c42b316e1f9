"""Newline-delimited JSON framing over the MCP server's standard streams."""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from .exceptions import ProtocolError
from .models import RpcMessage


def response_id_of(data: Dict[str, Any]) -> Optional[Union[int, str]]:
    """Id of a raw message that looks like a response, else None."""
    if "method" in data:
        return None
    response_id = data.get("id")
    if isinstance(response_id, bool) or not isinstance(response_id, (int, str)):
        return None
    return response_id


class StreamFramer:
    """Reads and writes one JSON-RPC message per line.

    Partial reads are buffered by the underlying ``asyncio.StreamReader`` until
    a newline is seen, so a single OS-level read may carry any number of
    messages, or part of one.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self._closed = False
        self.logger = logging.getLogger("stream_framer")

    @property
    def is_closed(self) -> bool:
        return self._closed or self.writer.is_closing()

    async def write(self, message: RpcMessage) -> None:
        """Serialize message as compact JSON plus newline and flush it."""
        if self.is_closed:
            raise IOError("MCP server input stream is closed")

        line = json.dumps(message.to_wire(), separators=(",", ":"), ensure_ascii=False)
        self.logger.debug(f"Send: {line}")
        self.writer.write(line.encode("utf-8") + b"\n")
        await self.writer.drain()

    async def read(self) -> Optional[RpcMessage]:
        """Return the next message, or None once the stream has ended.

        Raises ProtocolError for a line that is not a JSON-RPC object; the
        stream stays usable and the next call returns the following line.
        """
        while True:
            try:
                raw = await self.reader.readline()
            except ValueError as e:
                # Line longer than the reader limit; the buffer has been discarded
                raise ProtocolError(f"Message exceeds stream buffer limit: {e}")

            if not raw:
                return None

            text = raw.decode("utf-8", errors="replace").strip()
            if not text:
                continue

            self.logger.debug(f"Receive: {text}")
            return self.decode(text)

    @staticmethod
    def decode(text: str) -> RpcMessage:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid JSON from MCP server: {e}: {text[:200]!r}")

        if not isinstance(data, dict):
            raise ProtocolError(f"Expected a JSON object from MCP server, got {type(data).__name__}")

        try:
            return RpcMessage.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(f"Malformed JSON-RPC message: {e}", response_id=response_id_of(data))

    async def close(self) -> None:
        """Close the write side. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if not self.writer.is_closing():
            self.writer.close()
        try:
            await self.writer.wait_closed()
        except (BrokenPipeError, ConnectionResetError) as e:
            self.logger.debug(f"Input stream already broken on close: {e}")
