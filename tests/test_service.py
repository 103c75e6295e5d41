"""
Tests for the in-process work service.
"""

import asyncio

import pytest

from mining_engine.engine.hashing import Sha256dHash, compute_hash, format_nonce
from mining_engine.engine.models import Work
from mining_engine.engine.sink import MemorySink
from mining_engine.service.pool import MiningService, UnknownSessionError
from tests.conftest import make_config

ADDRESS = "test-miner"


def _solve(work: Work, nonce: int = 1) -> dict:
    digest = compute_hash(Sha256dHash(), work, ADDRESS, nonce)
    return {"job_id": work.job_id, "nonce": format_nonce(nonce), "hash": digest.hex()}


@pytest.fixture
def sink():
    return MemorySink()


@pytest.fixture
def service(config, clock, sink):
    return MiningService(config, sink=sink, clock=clock)


async def _session(service):
    result = await service.connect(ADDRESS)
    return result["sessionId"]


class TestMiningService:
    @pytest.mark.asyncio
    async def test_connect_and_get_work(self, service):
        session_id = await _session(service)
        assert len(session_id) == 16
        assert service.session_count == 1

        first = Work.from_rpc(await service.get_work(session_id))
        second = Work.from_rpc(await service.get_work(session_id))
        assert first.job_id != second.job_id
        assert first.difficulty == 1.0

    @pytest.mark.asyncio
    async def test_valid_share_accepted(self, service, sink, clock):
        session_id = await _session(service)
        work = Work.from_rpc(await service.get_work(session_id))
        clock.advance(10.0)

        result = await service.submit_share(session_id, **_solve(work))

        assert result["accepted"] is True
        assert result["reward"] >= 0
        assert "newDifficulty" not in result
        assert len(sink.shares) == 1
        assert sink.shares[0].job_id == work.job_id

        # The accepted share becomes the chain tip
        next_work = Work.from_rpc(await service.get_work(session_id))
        assert next_work.block_height == work.block_height + 1
        assert next_work.prev_hash == sink.shares[0].hash

    @pytest.mark.asyncio
    async def test_hash_not_matching_nonce_rejected(self, service):
        session_id = await _session(service)
        work = Work.from_rpc(await service.get_work(session_id))
        share = _solve(work, nonce=1)
        share["nonce"] = format_nonce(2)

        result = await service.submit_share(session_id, **share)

        assert result == {"accepted": False, "reason": "invalid-proof"}
        stats = await service.get_stats(session_id)
        assert stats["rejectedShares"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_and_stale_shares(self, service, clock):
        session_id = await _session(service)
        work = Work.from_rpc(await service.get_work(session_id))
        share = _solve(work)
        assert (await service.submit_share(session_id, **share))["accepted"]

        clock.advance(5.0)
        result = await service.submit_share(session_id, **share)
        assert result["reason"] == "duplicate-nonce"

        result = await service.submit_share(session_id, "unknown-job", share["nonce"], share["hash"])
        assert result["reason"] == "stale-job"

    @pytest.mark.asyncio
    async def test_malformed_nonce_rejected(self, service):
        session_id = await _session(service)
        work = Work.from_rpc(await service.get_work(session_id))
        result = await service.submit_share(session_id, work.job_id, "not-hex", "00")
        assert result == {"accepted": False, "reason": "insufficient-difficulty"}

    @pytest.mark.asyncio
    async def test_malformed_nonce_on_unknown_job_is_stale(self, service):
        session_id = await _session(service)
        await service.get_work(session_id)
        result = await service.submit_share(session_id, "unknown-job", "not-hex", "00")
        assert result == {"accepted": False, "reason": "stale-job"}
        stats = await service.get_stats(session_id)
        assert stats["rejectedShares"] == 1

    @pytest.mark.asyncio
    async def test_unknown_session(self, service):
        with pytest.raises(UnknownSessionError):
            await service.get_work("nope")
        with pytest.raises(UnknownSessionError):
            await service.get_stats("nope")

    @pytest.mark.asyncio
    async def test_stats_shape(self, service, clock):
        session_id = await _session(service)
        clock.advance(30.0)
        stats = await service.get_stats(session_id)
        assert set(stats) == {
            "hashRate",
            "validShares",
            "rejectedShares",
            "totalReward",
            "currentDifficulty",
            "humanScore",
            "uptime",
        }
        assert stats["uptime"] == pytest.approx(30.0)
        assert stats["currentDifficulty"] == "1.000000"

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, service):
        session_id = await _session(service)
        assert await service.disconnect(session_id) == {}
        assert await service.disconnect(session_id) == {}
        assert service.session_count == 0

    @pytest.mark.asyncio
    async def test_anonymous_address(self, service):
        await service.connect(None)
        assert service.session_count == 1

    @pytest.mark.asyncio
    async def test_non_string_address_rejected(self, service):
        with pytest.raises(TypeError, match="address must be a string"):
            await service.connect(123)
        assert service.session_count == 0

    @pytest.mark.asyncio
    async def test_retarget_reported(self, clock, sink):
        config = make_config(difficulty={"retarget_window": 2})
        service = MiningService(config, sink=sink, clock=clock)
        session_id = await _session(service)

        results = []
        for _ in range(2):
            clock.advance(5.0)
            work = Work.from_rpc(await service.get_work(session_id))
            results.append(await service.submit_share(session_id, **_solve(work)))

        assert "newDifficulty" not in results[0]
        # Shares arrive twice as fast as the 10s target
        assert results[1]["newDifficulty"] == "2.000000"
        stats = await service.get_stats(session_id)
        assert stats["currentDifficulty"] == "2.000000"
        assert stats["validShares"] == 2


class TestPoolStats:
    @pytest.mark.asyncio
    async def test_counts_only_recent_sharers(self, service, clock):
        miner = await _session(service)
        await _session(service)
        work = Work.from_rpc(await service.get_work(miner))
        clock.advance(10.0)
        assert (await service.submit_share(miner, **_solve(work)))["accepted"]

        stats = await service.get_pool_stats()
        assert stats["sessions"] == 2
        assert stats["activeMiners"] == 1
        assert stats["totalHashRate"] == pytest.approx(0.1)
        assert stats["sharesAccepted"] == 1
        assert stats["blockHeight"] == 1
        assert stats["difficulty"] == "1.000000"

        clock.advance(301.0)
        stats = await service.get_pool_stats()
        assert stats["activeMiners"] == 0
        assert stats["totalHashRate"] == 0

    @pytest.mark.asyncio
    async def test_average_ignores_inactive_sessions(self, service, clock):
        first = await _session(service)
        work = Work.from_rpc(await service.get_work(first))
        clock.advance(10.0)
        await service.submit_share(first, **_solve(work))

        clock.advance(400.0)
        second = await _session(service)
        work = Work.from_rpc(await service.get_work(second))
        clock.advance(20.0)
        await service.submit_share(second, **_solve(work))

        stats = await service.get_pool_stats()
        assert stats["activeMiners"] == 1
        assert stats["averageHashRate"] == pytest.approx(0.05)


class TestIdleCleanup:
    @pytest.mark.asyncio
    async def test_idle_sessions_evicted(self, clock, sink):
        config = make_config(service={"session_idle_timeout": 60})
        service = MiningService(config, sink=sink, clock=clock)
        idle = await _session(service)
        clock.advance(30.0)
        busy = await _session(service)
        clock.advance(40.0)
        await service.get_work(busy)

        assert service.cleanup_inactive() == 1
        assert service.session_count == 1
        with pytest.raises(UnknownSessionError):
            await service.get_work(idle)
        assert (await service.get_stats(busy))["validShares"] == 0
        assert (await service.get_pool_stats())["evictedSessions"] == 1

    @pytest.mark.asyncio
    async def test_requests_keep_session_alive(self, clock, sink):
        config = make_config(service={"session_idle_timeout": 60})
        service = MiningService(config, sink=sink, clock=clock)
        session_id = await _session(service)
        for _ in range(3):
            clock.advance(50.0)
            await service.get_stats(session_id)

        assert service.cleanup_inactive() == 0
        assert service.session_count == 1

    @pytest.mark.asyncio
    async def test_cleanup_loop_stops(self, service):
        stop_event = asyncio.Event()
        task = asyncio.create_task(service.run_cleanup(stop_event))
        await asyncio.sleep(0)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1.0)
        assert task.done()
