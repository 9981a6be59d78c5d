from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Optional

from loguru import logger
from redis.asyncio import Redis

from .builder import AnnotationSource, SnapshotBuilder
from .prewarm import PrewarmDriver
from .reader import SnapshotReader
from .schemas import PrewarmReport
from .scoreboard import ScoreboardParser
from .settings import Settings
from .store import LiveSnapshotCache


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=str(level).upper())


@dataclass
class LiveStateEngine:
    source: AnnotationSource
    cache: LiveSnapshotCache
    builder: SnapshotBuilder
    reader: SnapshotReader
    prewarm: PrewarmDriver

    async def prime(self, video_id: str) -> Optional[PrewarmReport]:
        """Fire-and-forget prewarm: failures are logged, never raised."""
        try:
            return await self.prewarm.prewarm(video_id)
        except Exception:
            logger.exception(f"Priming live state failed video_id={video_id}")
            return None


def build_engine(*, source: AnnotationSource, redis: Redis, settings: Settings) -> LiveStateEngine:
    cache = LiveSnapshotCache(
        redis=redis,
        key_prefix=settings.live_cache_prefix,
        ttl_sec=settings.live_ttl_sec,
    )
    builder = SnapshotBuilder(
        source=source,
        cache=cache,
        parser=ScoreboardParser(team_tokens=settings.team_tokens),
        player_label=settings.player_label,
        min_player_duration_sec=settings.min_player_duration_sec,
        max_player_count=settings.max_player_count,
        top_labels=settings.top_labels,
    )
    return LiveStateEngine(
        source=source,
        cache=cache,
        builder=builder,
        reader=SnapshotReader(cache=cache, builder=builder),
        prewarm=PrewarmDriver(
            source=source,
            builder=builder,
            step_sec=settings.prewarm_step_sec,
            max_horizon_sec=settings.prewarm_max_horizon_sec,
            concurrency=settings.prewarm_concurrency,
        ),
    )


def create_redis(settings: Settings) -> Redis:
    return Redis.from_url(
        settings.cache_redis_url,
        decode_responses=False,
        socket_timeout=settings.redis_socket_timeout_sec,
        socket_connect_timeout=settings.redis_connect_timeout_sec,
    )
