"""JSON-RPC message dataclasses for the mining protocol."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union


@dataclass
class RpcRequest:
    """A JSON-RPC request from client to service."""

    id: int
    method: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "jsonrpc": "2.0",
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }


@dataclass
class RpcError:
    """JSON-RPC 2.0 error object."""

    code: int
    message: str

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


@dataclass
class RpcResponse:
    """A JSON-RPC response from service to client."""

    id: Optional[int]
    result: Any = None
    error: Optional[RpcError] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        obj: Dict[str, Any] = {"jsonrpc": "2.0", "id": self.id}
        if self.error is not None:
            obj["error"] = self.error.to_dict()
        else:
            obj["result"] = self.result
        return obj

    @property
    def is_error(self) -> bool:
        """Check if this is an error response."""
        return self.error is not None


# Union type for any message on the wire
RpcMessage = Union[RpcRequest, RpcResponse]


class MiningMethods:
    """Constants for mining method names."""

    CONNECT = "mining.connect"
    GET_WORK = "mining.getWork"
    SUBMIT_SHARE = "mining.submitShare"
    GET_STATS = "mining.getStats"
    DISCONNECT = "mining.disconnect"
    GET_POOL_STATS = "mining.getPoolStats"


class RpcErrors:
    """JSON-RPC 2.0 error codes plus mining-specific ones."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    UNKNOWN_SESSION = -32001
