"""
Integration tests for the JSON-RPC server and client transport over loopback TCP.
"""

import asyncio
import errno
import socket

import pytest

from mining_engine.client.connection import RpcCallError, RpcWorkSource, describe_connect_error
from mining_engine.client.session import MiningSessionClient
from mining_engine.client.states import SessionState
from mining_engine.config.models import WorkSourceConfig
from mining_engine.engine.sink import MemorySink
from mining_engine.errors import WorkSourceConnectionError
from mining_engine.rpc.messages import MiningMethods, RpcErrors
from mining_engine.service.pool import MiningService
from mining_engine.service.server import WorkServer
from tests.conftest import make_config


def _config():
    return make_config(
        mining={"min_poll_interval": 0},
        validation={"enforce_rate_limit": False},
        service={"bind_host": "127.0.0.1", "bind_port": 0},
        work_source={"host": "127.0.0.1", "timeout": 5},
    )


async def _start(config, sink=None):
    server = WorkServer(config, MiningService(config, sink=sink or MemorySink()))
    await server.start()
    config.work_source.port = server.port
    return server


class BrokenStatsService(MiningService):
    async def get_stats(self, session_id):
        raise RuntimeError("stats store unavailable")


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestWorkServer:
    @pytest.mark.asyncio
    async def test_session_over_tcp(self):
        config = _config()
        sink = MemorySink()
        server = await _start(config, sink)
        try:
            source = RpcWorkSource(config.work_source)
            client = MiningSessionClient(config, source)
            state = await client.run(max_shares=2)

            assert state.valid_share_count == 2
            assert client.session_state is SessionState.DISCONNECTED
            assert len(sink.shares) == 2
            assert server.service.session_count == 0
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_unknown_method(self):
        config = _config()
        server = await _start(config)
        try:
            source = RpcWorkSource(config.work_source)
            await source.open()
            with pytest.raises(RpcCallError) as exc_info:
                await source.call("mining.bogus", {})
            assert exc_info.value.code == RpcErrors.METHOD_NOT_FOUND
            await source.close()
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_missing_params(self):
        config = _config()
        server = await _start(config)
        try:
            source = RpcWorkSource(config.work_source)
            await source.open()
            with pytest.raises(RpcCallError) as exc_info:
                await source.call(MiningMethods.GET_WORK, {})
            assert exc_info.value.code == RpcErrors.INVALID_PARAMS
            await source.close()
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_unknown_session_is_connection_error(self):
        config = _config()
        server = await _start(config)
        try:
            source = RpcWorkSource(config.work_source)
            await source.open()
            with pytest.raises(WorkSourceConnectionError, match="Session lost"):
                await source.get_work("no-such-session")
            await source.close()
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_sessions_closed_with_connection(self):
        config = _config()
        server = await _start(config)
        try:
            source = RpcWorkSource(config.work_source)
            session_id = await source.connect("test-miner")
            assert server.service.session_count == 1
            stats = await source.get_stats(session_id)
            assert stats["validShares"] == 0

            await source.close()
            for _ in range(100):
                if server.service.session_count == 0:
                    break
                await asyncio.sleep(0.01)
            assert server.service.session_count == 0
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_non_string_address(self):
        config = _config()
        server = await _start(config)
        try:
            source = RpcWorkSource(config.work_source)
            await source.open()
            with pytest.raises(RpcCallError) as exc_info:
                await source.call(MiningMethods.CONNECT, {"address": 123})
            assert exc_info.value.code == RpcErrors.INVALID_PARAMS

            # The connection survives the bad request
            result = await source.call(MiningMethods.CONNECT, {"address": "test-miner"})
            assert result["sessionId"]
            await source.close()
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_handler_failure_is_internal_error(self):
        config = _config()
        server = WorkServer(config, BrokenStatsService(config, sink=MemorySink()))
        await server.start()
        config.work_source.port = server.port
        try:
            source = RpcWorkSource(config.work_source)
            session_id = await source.connect("test-miner")
            with pytest.raises(RpcCallError) as exc_info:
                await source.call(MiningMethods.GET_STATS, {"sessionId": session_id})
            assert exc_info.value.code == RpcErrors.INTERNAL_ERROR
            await source.close()
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_pool_stats(self):
        config = _config()
        server = await _start(config)
        try:
            source = RpcWorkSource(config.work_source)
            await source.connect("test-miner")
            stats = await source.call(MiningMethods.GET_POOL_STATS, {})
            assert stats["sessions"] == 1
            assert stats["activeMiners"] == 0
            await source.close()
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        config = WorkSourceConfig(host="127.0.0.1", port=_free_port(), timeout=5)
        source = RpcWorkSource(config)
        with pytest.raises(WorkSourceConnectionError, match="failed"):
            await source.connect("test-miner")
        assert not source.connected


class TestDescribeConnectError:
    def test_refused(self):
        message = describe_connect_error(OSError(errno.ECONNREFUSED, "refused"))
        assert "connection refused" in message

    def test_other(self):
        assert describe_connect_error(OSError("boom")) == "boom"
