"""Newline-delimited JSON-RPC framing and parsing."""

from __future__ import annotations

import json
from typing import Any, Optional

from loguru import logger

from mining_engine.rpc.messages import RpcError, RpcMessage, RpcRequest, RpcResponse


class RpcProtocolError(Exception):
    """Error in RPC protocol handling."""

    pass


class RpcProtocol:
    """
    Handles parsing and building of JSON-RPC messages.

    Messages are newline-delimited JSON objects over a byte stream.
    """

    ENCODING = "utf-8"
    DELIMITER = b"\n"
    MAX_BUFFER_SIZE = 1024 * 1024  # 1MB max buffer to prevent DoS

    def __init__(self):
        """Initialize the protocol handler."""
        self._buffer = b""

    def feed_data(self, data: bytes) -> list[RpcMessage]:
        """
        Feed raw data into the buffer and extract complete messages.

        Args:
            data: Raw bytes received from the socket.

        Returns:
            List of parsed messages. Unparseable lines are logged and skipped.

        Raises:
            RpcProtocolError: If the buffer would exceed its maximum size.
        """
        if len(self._buffer) + len(data) > self.MAX_BUFFER_SIZE:
            self._buffer = b""
            raise RpcProtocolError(
                f"Buffer would exceed max size ({self.MAX_BUFFER_SIZE} bytes), dropping data"
            )

        self._buffer += data
        messages = []

        while self.DELIMITER in self._buffer:
            line, self._buffer = self._buffer.split(self.DELIMITER, 1)
            if line.strip():
                try:
                    messages.append(self.parse_message(line))
                except RpcProtocolError as e:
                    logger.warning(f"Failed to parse message: {e}")

        return messages

    def parse_message(self, data: bytes) -> RpcMessage:
        """
        Parse a single JSON-RPC message.

        Raises:
            RpcProtocolError: If the message cannot be parsed.
        """
        try:
            obj = json.loads(data.decode(self.ENCODING).strip())
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise RpcProtocolError(f"Invalid JSON: {e}") from e

        if not isinstance(obj, dict):
            raise RpcProtocolError(f"Expected JSON object, got {type(obj).__name__}")

        return self._parse_object(obj)

    def _parse_object(self, obj: dict) -> RpcMessage:
        msg_id = obj.get("id")
        method = obj.get("method")

        if method is not None:
            if not isinstance(method, str):
                raise RpcProtocolError(f"Method must be a string, got {type(method).__name__}")
            params = obj.get("params") or {}
            if not isinstance(params, dict):
                raise RpcProtocolError("Params must be a JSON object")
            return RpcRequest(id=msg_id, method=method, params=params)

        if "result" in obj or "error" in obj:
            error = obj.get("error")
            parsed_error = None
            if error is not None:
                if isinstance(error, dict):
                    try:
                        code = int(error.get("code", -32603))
                    except (TypeError, ValueError) as e:
                        raise RpcProtocolError(f"Invalid error code: {error.get('code')!r}") from e
                    parsed_error = RpcError(
                        code=code,
                        message=str(error.get("message", "Unknown error")),
                    )
                else:
                    parsed_error = RpcError(code=-32603, message=str(error))
            return RpcResponse(id=msg_id, result=obj.get("result"), error=parsed_error)

        raise RpcProtocolError(f"Cannot determine message type: {obj}")

    def build_request(self, id: int, method: str, params: Optional[dict] = None) -> bytes:
        """Build an encoded request."""
        return self._encode(RpcRequest(id=id, method=method, params=params or {}).to_dict())

    def build_response(self, id: Optional[int], result: Any) -> bytes:
        """Build an encoded success response."""
        return self._encode(RpcResponse(id=id, result=result).to_dict())

    def build_error(self, id: Optional[int], code: int, message: str) -> bytes:
        """Build an encoded error response."""
        return self._encode(RpcResponse(id=id, error=RpcError(code, message)).to_dict())

    def _encode(self, obj: dict) -> bytes:
        try:
            return json.dumps(obj, separators=(",", ":")).encode(self.ENCODING) + self.DELIMITER
        except (TypeError, ValueError) as e:
            raise RpcProtocolError(f"Failed to encode message: {e}") from e

    def reset_buffer(self) -> None:
        """Clear the internal buffer."""
        self._buffer = b""
