from __future__ import annotations

from typing import Optional, Tuple

from loguru import logger

from .builder import SnapshotBuilder
from .errors import CacheStoreUnavailable
from .schemas import LiveSnapshot, LiveStatus
from .store import LiveSnapshotCache


class SnapshotReader:
    """Cache-aside accessor: cached snapshot if present, else one synchronous rebuild."""

    def __init__(self, *, cache: LiveSnapshotCache, builder: SnapshotBuilder):
        self.cache = cache
        self.builder = builder

    async def _try_cache(self, video_id: str, t: float) -> Optional[LiveSnapshot]:
        try:
            return await self.cache.read(video_id, t)
        except CacheStoreUnavailable as e:
            logger.warning(f"Live cache read failed, treating as miss video_id={video_id} t={t}: {e}")
            return None

    async def lookup(self, video_id: str, t: float) -> Tuple[Optional[LiveSnapshot], Optional[LiveStatus]]:
        snap = await self._try_cache(video_id, t)
        if snap is not None:
            return snap, "hit"

        # durable-store and cache-write failures propagate to the caller
        built = await self.builder.build(video_id, t)
        if built is None:
            return None, None

        # the video is analyzed; a failed re-read is a cache outage, not "no data"
        try:
            snap = await self.cache.read(video_id, t)
        except CacheStoreUnavailable as e:
            e.result = built
            raise
        if snap is None:
            raise CacheStoreUnavailable(f"snapshot missing after rebuild video_id={video_id} t={t}", result=built)
        return snap, "built"

    async def read(self, video_id: str, t: float) -> Optional[LiveSnapshot]:
        snap, _ = await self.lookup(video_id, t)
        return snap
