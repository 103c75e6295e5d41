"""In-process work source backed by a :class:`MiningService`."""

from __future__ import annotations

from typing import Any, Dict

from mining_engine.client.source import SubmitResult, WorkSource
from mining_engine.engine.models import Share, Work
from mining_engine.errors import WorkSourceConnectionError
from mining_engine.service.pool import MiningService, UnknownSessionError


class LocalWorkSource(WorkSource):
    """Calls the service directly, without a transport. Used by ``mine --local``."""

    name = "local"

    def __init__(self, service: MiningService):
        self.service = service

    async def connect(self, address: str) -> str:
        result = await self.service.connect(address)
        return result["sessionId"]

    async def get_work(self, session_id: str) -> Work:
        try:
            return Work.from_rpc(await self.service.get_work(session_id))
        except UnknownSessionError as e:
            raise WorkSourceConnectionError(f"Session lost: {e}") from e

    async def submit_share(self, session_id: str, share: Share) -> SubmitResult:
        try:
            result = await self.service.submit_share(
                session_id, share.job_id, share.nonce, share.hash
            )
        except UnknownSessionError as e:
            raise WorkSourceConnectionError(f"Session lost: {e}") from e
        return SubmitResult.from_rpc(result)

    async def get_stats(self, session_id: str) -> Dict[str, Any]:
        try:
            return await self.service.get_stats(session_id)
        except UnknownSessionError as e:
            raise WorkSourceConnectionError(f"Session lost: {e}") from e

    async def disconnect(self, session_id: str) -> None:
        await self.service.disconnect(session_id)
