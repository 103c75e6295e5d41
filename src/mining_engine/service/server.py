"""JSON-RPC TCP server for the reference work service."""

from __future__ import annotations

import asyncio
import itertools
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Set

from loguru import logger

from mining_engine.constants import DISCONNECT_TIMEOUT, SOCKET_READ_BUFFER_SIZE
from mining_engine.rpc.messages import MiningMethods, RpcErrors, RpcRequest
from mining_engine.rpc.protocol import RpcProtocol, RpcProtocolError
from mining_engine.service.pool import MiningService, UnknownSessionError

if TYPE_CHECKING:
    from mining_engine.config.models import Config


def _log_task_exception(task: asyncio.Task, task_name: str) -> None:
    """Add exception logging callback to a task."""

    def _callback(t: asyncio.Task) -> None:
        if t.cancelled():
            return
        exc = t.exception()
        if exc:
            logger.error(f"{task_name} failed with exception: {exc}")

    task.add_done_callback(_callback)


class WorkServer:
    """
    Serves a :class:`MiningService` over newline-delimited JSON-RPC.

    Each connection may open any number of sessions; all of them are closed
    when the connection drops.
    """

    def __init__(self, config: Config, service: Optional[MiningService] = None):
        """
        Initialize the server.

        Args:
            config: Application configuration.
            service: Service to expose (a new one is built from config if omitted).
        """
        self.config = config
        self.service = service or MiningService(config)

        self._server: Optional[asyncio.Server] = None
        self._connections: Dict[int, asyncio.StreamWriter] = {}
        self._conn_ids = itertools.count(1)
        self._cleanup_stop = asyncio.Event()
        self._cleanup_task: Optional[asyncio.Task] = None

        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Any]]] = {
            MiningMethods.CONNECT: lambda p: self.service.connect(p.get("address")),
            MiningMethods.GET_WORK: lambda p: self.service.get_work(str(p["sessionId"])),
            MiningMethods.SUBMIT_SHARE: lambda p: self.service.submit_share(
                str(p["sessionId"]), str(p["jobId"]), str(p["nonce"]), str(p["hash"])
            ),
            MiningMethods.GET_STATS: lambda p: self.service.get_stats(str(p["sessionId"])),
            MiningMethods.DISCONNECT: lambda p: self.service.disconnect(str(p["sessionId"])),
            MiningMethods.GET_POOL_STATS: lambda p: self.service.get_pool_stats(),
        }

    @property
    def port(self) -> Optional[int]:
        """Bound port, once started."""
        if self._server is None or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    async def start(self) -> None:
        """Bind and start accepting connections."""
        if self._server is not None:
            return
        self._server = await asyncio.start_server(
            self._handle_connection,
            self.config.service.bind_host,
            self.config.service.bind_port,
        )
        addr = self._server.sockets[0].getsockname()
        logger.info(f"Work service listening on {addr[0]}:{addr[1]}")

        if self.config.service.cleanup_interval > 0:
            self._cleanup_stop.clear()
            self._cleanup_task = asyncio.create_task(self.service.run_cleanup(self._cleanup_stop))
            _log_task_exception(self._cleanup_task, "Idle session cleanup")

    async def serve_forever(self) -> None:
        """Start (if needed) and serve until cancelled."""
        await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def stop(self) -> None:
        """Stop accepting connections and close existing ones."""
        if self._server is None:
            return
        logger.info("Stopping work service...")
        self._server.close()

        if self._cleanup_task is not None:
            self._cleanup_stop.set()
            await self._cleanup_task
            self._cleanup_task = None

        writers = list(self._connections.values())
        for writer in writers:
            writer.close()
        if writers:
            logger.info(f"Closing {len(writers)} active connections...")
            results = await asyncio.gather(
                *(asyncio.wait_for(w.wait_closed(), timeout=DISCONNECT_TIMEOUT) for w in writers),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, Exception):
                    logger.debug(f"Error closing connection: {result}")

        await self._server.wait_closed()
        self._server = None
        logger.info("Work service stopped")

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        peer_str = f"{peer[0]}:{peer[1]}" if peer else "unknown"

        if len(self._connections) >= self.config.service.max_connections:
            logger.warning(f"Max connections reached, rejecting {peer_str}")
            writer.close()
            await writer.wait_closed()
            return

        conn_id = next(self._conn_ids)
        self._connections[conn_id] = writer
        protocol = RpcProtocol()
        sessions: Set[str] = set()
        logger.debug(f"Connection {conn_id} from {peer_str}")

        try:
            while True:
                try:
                    data = await asyncio.wait_for(
                        reader.read(SOCKET_READ_BUFFER_SIZE),
                        timeout=self.config.service.read_timeout,
                    )
                except asyncio.TimeoutError:
                    logger.info(f"Connection {conn_id} idle for {self.config.service.read_timeout}s, closing")
                    break
                if not data:
                    break

                try:
                    messages = protocol.feed_data(data)
                except RpcProtocolError as e:
                    logger.warning(f"Connection {conn_id}: {e}")
                    writer.write(protocol.build_error(None, RpcErrors.PARSE_ERROR, str(e)))
                    await writer.drain()
                    break

                for message in messages:
                    if not isinstance(message, RpcRequest):
                        continue
                    writer.write(await self._dispatch(protocol, message, sessions))
                await writer.drain()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Connection {conn_id} error: {e}")
        finally:
            for session_id in sessions:
                await self.service.disconnect(session_id)
            self._connections.pop(conn_id, None)
            if not writer.is_closing():
                writer.close()
            try:
                await asyncio.wait_for(writer.wait_closed(), timeout=DISCONNECT_TIMEOUT)
            except (asyncio.TimeoutError, ConnectionError, OSError) as e:
                logger.debug(f"Connection {conn_id} close error: {e}")
            logger.debug(f"Connection {conn_id} closed")

    async def _dispatch(
        self, protocol: RpcProtocol, request: RpcRequest, sessions: Set[str]
    ) -> bytes:
        handler = self._handlers.get(request.method)
        if handler is None:
            return protocol.build_error(
                request.id, RpcErrors.METHOD_NOT_FOUND, f"Unknown method: {request.method}"
            )

        try:
            result = await handler(request.params)
        except UnknownSessionError as e:
            return protocol.build_error(request.id, RpcErrors.UNKNOWN_SESSION, str(e))
        except KeyError as e:
            return protocol.build_error(request.id, RpcErrors.INVALID_PARAMS, f"Missing parameter {e}")
        except (TypeError, ValueError) as e:
            return protocol.build_error(request.id, RpcErrors.INVALID_PARAMS, str(e))
        except Exception as e:
            logger.error(f"Error handling {request.method}: {type(e).__name__}: {e}")
            return protocol.build_error(request.id, RpcErrors.INTERNAL_ERROR, "Internal error")

        if request.method == MiningMethods.CONNECT:
            sessions.add(result["sessionId"])
        elif request.method == MiningMethods.DISCONNECT:
            sessions.discard(str(request.params.get("sessionId")))
        return protocol.build_response(request.id, result)


async def run_service(config: Config, stop_event: Optional[asyncio.Event] = None) -> None:
    """
    Run the work service until cancelled or ``stop_event`` is set.

    Args:
        config: Application configuration.
        stop_event: Optional event to signal shutdown.
    """
    server = WorkServer(config)
    stop_task: Optional[asyncio.Task] = None

    if stop_event:

        async def wait_for_stop():
            await stop_event.wait()
            await server.stop()

        stop_task = asyncio.create_task(wait_for_stop())
        _log_task_exception(stop_task, "Stop signal handler")

    try:
        await server.serve_forever()
    except asyncio.CancelledError:
        pass
    finally:
        if stop_task and not stop_task.done():
            stop_task.cancel()
            try:
                await stop_task
            except asyncio.CancelledError:
                pass
        await server.stop()
