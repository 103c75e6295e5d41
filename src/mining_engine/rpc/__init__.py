"""JSON-RPC protocol handling module."""

from mining_engine.rpc.messages import (
    MiningMethods,
    RpcError,
    RpcErrors,
    RpcMessage,
    RpcRequest,
    RpcResponse,
)
from mining_engine.rpc.protocol import RpcProtocol, RpcProtocolError

__all__ = [
    "MiningMethods",
    "RpcError",
    "RpcErrors",
    "RpcMessage",
    "RpcProtocol",
    "RpcProtocolError",
    "RpcRequest",
    "RpcResponse",
]
