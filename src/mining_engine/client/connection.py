"""JSON-RPC work source over TCP."""

from __future__ import annotations

import asyncio
import errno
import ssl
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from loguru import logger

from mining_engine.client.source import SubmitResult, WorkSource
from mining_engine.constants import DISCONNECT_TIMEOUT, SOCKET_READ_BUFFER_SIZE
from mining_engine.engine.models import Share, Work
from mining_engine.errors import MiningError, WorkSourceConnectionError
from mining_engine.rpc.messages import MiningMethods, RpcErrors, RpcResponse
from mining_engine.rpc.protocol import RpcProtocol, RpcProtocolError

if TYPE_CHECKING:
    from mining_engine.config.models import WorkSourceConfig


class RpcCallError(MiningError):
    """The service answered a request with a JSON-RPC error."""

    def __init__(self, code: int, message: str):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code


def describe_connect_error(e: OSError) -> str:
    """Human-readable message for common connection failures."""
    if e.errno == errno.ECONNREFUSED:
        return "connection refused (is the work service running?)"
    if e.errno == errno.EHOSTUNREACH:
        return "host unreachable (check network connectivity)"
    if e.errno == errno.ENETUNREACH:
        return "network unreachable (check network configuration)"
    if e.errno in (errno.ENOENT, getattr(errno, "EAI_NONAME", -2)):
        return "DNS resolution failed (check hostname)"
    if "getaddrinfo failed" in str(e).lower():
        return f"DNS resolution failed: {e}"
    return str(e)


class RpcWorkSource(WorkSource):
    """
    Talks to a remote work service with newline-delimited JSON-RPC.

    Requests are issued one at a time by the session loop; a lock keeps
    concurrent callers (e.g. a stats poller) from interleaving reads.
    """

    # Maximum request ID before wrapping (32-bit unsigned max)
    MAX_REQUEST_ID = 0xFFFFFFFF

    def __init__(self, config: WorkSourceConfig):
        """
        Initialize the work source.

        Args:
            config: Host, port, SSL and timeout settings.
        """
        self.config = config
        self.name = f"{config.host}:{config.port}"

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._protocol = RpcProtocol()
        self._request_id = 0
        self._lock = asyncio.Lock()
        self._backlog: List[RpcResponse] = []

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    def _next_id(self) -> int:
        self._request_id = (self._request_id % self.MAX_REQUEST_ID) + 1
        return self._request_id

    async def open(self) -> None:
        """
        Open the TCP connection.

        Raises:
            WorkSourceConnectionError: On timeout or socket error.
        """
        if self.connected:
            return

        ssl_context = None
        server_hostname = None
        if self.config.ssl:
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = True
            server_hostname = self.config.host

        logger.info(f"Connecting to work service {self.name}")
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self.config.host,
                    self.config.port,
                    ssl=ssl_context,
                    server_hostname=server_hostname,
                ),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError as e:
            raise WorkSourceConnectionError(f"Connection to {self.name} timed out") from e
        except OSError as e:
            raise WorkSourceConnectionError(
                f"Connection to {self.name} failed: {describe_connect_error(e)}"
            ) from e

        self._protocol.reset_buffer()
        self._backlog.clear()
        logger.info(f"Connected to work service {self.name}")

    async def close(self) -> None:
        """Close the TCP connection. Safe to call when already closed."""
        writer = self._writer
        self._reader = None
        self._writer = None
        self._backlog.clear()
        if writer is None:
            return
        try:
            writer.close()
            await asyncio.wait_for(writer.wait_closed(), timeout=DISCONNECT_TIMEOUT)
        except asyncio.TimeoutError:
            logger.debug(f"Timeout waiting for {self.name} socket to close")
        except OSError as e:
            logger.debug(f"Error closing connection to {self.name}: {e}")

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Send a request and wait for its response.

        Returns:
            The ``result`` member of the response.

        Raises:
            WorkSourceConnectionError: Transport failure or timeout.
            RpcCallError: The service returned an error response.
        """
        async with self._lock:
            if not self.connected or self._reader is None or self._writer is None:
                raise WorkSourceConnectionError(f"Not connected to {self.name}")

            req_id = self._next_id()
            data = self._protocol.build_request(req_id, method, params)
            logger.debug(f"Sending to {self.name}: {data.decode().strip()}")
            try:
                self._writer.write(data)
                await asyncio.wait_for(self._writer.drain(), timeout=self.config.timeout)
                response = await asyncio.wait_for(
                    self._read_response(req_id), timeout=self.config.timeout
                )
            except asyncio.TimeoutError as e:
                await self.close()
                raise WorkSourceConnectionError(
                    f"{method} to {self.name} timed out after {self.config.timeout}s"
                ) from e
            except (OSError, RpcProtocolError) as e:
                await self.close()
                raise WorkSourceConnectionError(f"{method} to {self.name} failed: {e}") from e

        if response.error is not None:
            if response.error.code == RpcErrors.UNKNOWN_SESSION:
                # The service forgot us (restart); a fresh session is needed
                raise WorkSourceConnectionError(f"Session lost: {response.error.message}")
            raise RpcCallError(response.error.code, response.error.message)
        return response.result

    async def _read_response(self, req_id: int) -> RpcResponse:
        while True:
            for i, pending in enumerate(self._backlog):
                if pending.id == req_id:
                    return self._backlog.pop(i)

            data = await self._reader.read(SOCKET_READ_BUFFER_SIZE)
            if not data:
                await self.close()
                raise WorkSourceConnectionError(f"Connection closed by {self.name}")
            for message in self._protocol.feed_data(data):
                if isinstance(message, RpcResponse):
                    self._backlog.append(message)
                else:
                    logger.debug(f"Ignoring unsolicited message from {self.name}: {message}")

    async def connect(self, address: str) -> str:
        await self.open()
        result = await self._checked_call(MiningMethods.CONNECT, {"address": address})
        if not isinstance(result, dict) or not result.get("sessionId"):
            await self.close()
            raise WorkSourceConnectionError(f"Invalid connect response from {self.name}: {result}")
        return str(result["sessionId"])

    async def get_work(self, session_id: str) -> Work:
        result = await self._checked_call(MiningMethods.GET_WORK, {"sessionId": session_id})
        try:
            return Work.from_rpc(result)
        except (TypeError, ValueError) as e:
            raise WorkSourceConnectionError(f"Invalid work from {self.name}: {e}") from e

    async def submit_share(self, session_id: str, share: Share) -> SubmitResult:
        result = await self._checked_call(
            MiningMethods.SUBMIT_SHARE,
            {
                "sessionId": session_id,
                "jobId": share.job_id,
                "nonce": share.nonce,
                "hash": share.hash,
            },
        )
        try:
            return SubmitResult.from_rpc(result)
        except ValueError as e:
            raise WorkSourceConnectionError(f"Invalid submit result from {self.name}: {e}") from e

    async def get_stats(self, session_id: str) -> Dict[str, Any]:
        result = await self._checked_call(MiningMethods.GET_STATS, {"sessionId": session_id})
        return result if isinstance(result, dict) else {}

    async def disconnect(self, session_id: str) -> None:
        try:
            if self.connected:
                await self.call(MiningMethods.DISCONNECT, {"sessionId": session_id})
        except (WorkSourceConnectionError, RpcCallError) as e:
            logger.debug(f"Disconnect request to {self.name} failed: {e}")
        finally:
            await self.close()

    async def _checked_call(self, method: str, params: Dict[str, Any]) -> Any:
        # Any error response means the session is unusable: treat as transient
        try:
            return await self.call(method, params)
        except RpcCallError as e:
            raise WorkSourceConnectionError(f"{method} rejected by {self.name}: {e}") from e
