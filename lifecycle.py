import asyncio
from typing import List, Optional

from backend import EvictedRoom, RoomStore
from constants import ROOM_TTL_SECONDS, SWEEP_INTERVAL_SECONDS
from logging_config import get_logger
from signaling import SignalingRouter

logger = get_logger(__name__)


class LifecycleSupervisor:
    """Background sweeper that reclaims idle rooms.

    Explicit leaves and disconnects delete empty rooms immediately; this only
    catches rooms whose members went quiet, e.g. connections that died without
    the transport noticing.
    """

    def __init__(
        self,
        store: RoomStore,
        router: SignalingRouter,
        ttl: float = ROOM_TTL_SECONDS,
        interval: Optional[float] = SWEEP_INTERVAL_SECONDS,
    ):
        self.store = store
        self.router = router
        self.ttl = ttl
        self.interval = interval if interval else max(ttl / 60, 1.0)
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Lifecycle supervisor started: ttl={self.ttl}s, interval={self.interval}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Lifecycle supervisor stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Room sweep failed: {e}", exc_info=True)

    async def sweep(self, now: Optional[float] = None) -> List[EvictedRoom]:
        """Run one sweep and tell the members of every evicted room."""
        evicted = await self.store.expire_idle(self.ttl, now=now)
        for room in evicted:
            await self.router.broadcast(room.members, {"type": "room-timeout", "code": room.code})
        if evicted:
            logger.info(f"Sweep evicted {len(evicted)} room(s), {len(self.store)} still live")
        else:
            logger.debug(f"Sweep found no idle rooms among {len(self.store)}")
        return evicted
