from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import orjson
from loguru import logger
from redis.asyncio import Redis
from redis.exceptions import RedisError

from .errors import CacheStoreUnavailable
from .schemas import LiveSnapshot, RankedLabel

_CACHE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


def second_of(t: float) -> int:
    """Cache-key granularity: sub-second queries collapse onto one snapshot."""
    return int(math.floor(float(t or 0.0)))


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8")
    return "" if value is None else str(value)


@dataclass
class LiveCacheKeys:
    prefix: str = "live:video"

    def snapshot_key(self, video_id: str, t: float) -> str:
        return f"{self.prefix}:{video_id}:t:{second_of(t)}"

    def labels_key(self, video_id: str, t: float) -> str:
        return f"{self.snapshot_key(video_id, t)}:labels"


class LiveSnapshotCache:
    """Redis hash + label list per ``(video_id, second)``, both expiring after ``ttl_sec``.

    Writes and reads go through MULTI/EXEC so a reader never sees fields of
    one build mixed with labels of another.
    """

    def __init__(self, *, redis: Redis, key_prefix: str = "live:video", ttl_sec: int = 360):
        self.redis = redis
        self.keys = LiveCacheKeys(prefix=key_prefix)
        self.ttl_sec = int(ttl_sec)

    @staticmethod
    def encode_fields(snap: LiveSnapshot) -> Dict[str, str]:
        return {
            "videoId": snap.video_id,
            "t": str(snap.t),
            "playerCount": str(snap.player_count),
            "scoreboard": snap.scoreboard_text,
            "score": snap.score,
            "lastUpdated": snap.last_updated.isoformat(),
        }

    @staticmethod
    def encode_labels(labels: List[RankedLabel]) -> List[bytes]:
        return [orjson.dumps({"name": lbl.name, "confidence": lbl.confidence}) for lbl in labels]

    async def write(self, snap: LiveSnapshot) -> None:
        k = self.keys.snapshot_key(snap.video_id, snap.t)
        lk = self.keys.labels_key(snap.video_id, snap.t)
        labels = self.encode_labels(snap.top_labels)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(k)
                pipe.hset(k, mapping=self.encode_fields(snap))
                pipe.expire(k, self.ttl_sec)
                pipe.delete(lk)
                if labels:
                    pipe.rpush(lk, *labels)
                    pipe.expire(lk, self.ttl_sec)
                await pipe.execute()
        except _CACHE_ERRORS as e:
            raise CacheStoreUnavailable(f"write {k}: {type(e).__name__}: {e}") from e

    async def read(self, video_id: str, t: float) -> Optional[LiveSnapshot]:
        """Return the cached snapshot, or None when absent or expired."""
        k = self.keys.snapshot_key(video_id, t)
        lk = self.keys.labels_key(video_id, t)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.hgetall(k)
                pipe.lrange(lk, 0, -1)
                raw_fields, raw_labels = await pipe.execute()
        except _CACHE_ERRORS as e:
            raise CacheStoreUnavailable(f"read {k}: {type(e).__name__}: {e}") from e

        fields = {_text(key): _text(val) for key, val in (raw_fields or {}).items()}
        if not fields.get("videoId"):
            return None
        return self.decode(fields, raw_labels or [])

    @staticmethod
    def decode(fields: Dict[str, str], raw_labels: List[Any]) -> Optional[LiveSnapshot]:
        labels: List[RankedLabel] = []
        for raw in raw_labels:
            try:
                labels.append(RankedLabel.model_validate(orjson.loads(raw)))
            except (orjson.JSONDecodeError, ValueError) as e:
                logger.warning(f"Dropping malformed cached label entry: {e}")
        try:
            return LiveSnapshot(
                videoId=fields["videoId"],
                t=int(fields.get("t") or 0),
                playerCount=int(fields.get("playerCount") or 0),
                scoreboard=fields.get("scoreboard", ""),
                score=fields.get("score", ""),
                lastUpdated=datetime.fromisoformat(fields["lastUpdated"]),
                topLabels=labels,
            )
        except (KeyError, ValueError) as e:
            # unreadable entry behaves like a miss; the next build overwrites it
            logger.warning(f"Ignoring malformed cached snapshot video_id={fields.get('videoId')}: {e}")
            return None
