"""In-memory stand-ins for the annotation database and the Redis cache."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from redis.exceptions import ConnectionError as RedisConnectionError

from app.errors import DurableStoreUnavailable
from app.schemas import AnalysisRecord, ClassificationLabel, ObjectDetection, RecognizedText, TimeRange

FIXED_NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


def person(start: float, end: Optional[float], confidence: float = 0.9) -> ObjectDetection:
    return ObjectDetection(name="person", confidence=confidence, time=TimeRange(start=start, end=end))


def ocr(text: str, start: float, end: Optional[float] = None, confidence: float = 0.8) -> RecognizedText:
    return RecognizedText(text=text, confidence=confidence, time=TimeRange(start=start, end=end))


def label(name: str, confidence: float) -> ClassificationLabel:
    return ClassificationLabel(name=name, confidence=confidence)


class FakeAnnotationSource:
    def __init__(self) -> None:
        self.analyses: Dict[str, AnalysisRecord] = {}
        self.events: Dict[str, Tuple[list, list, list]] = {}
        self.fail = False
        self.latest_calls = 0
        self.fetch_calls = 0

    def add_analysis(
        self,
        video_id: str,
        *,
        analysis_id: str = "1",
        objects: Optional[List[ObjectDetection]] = None,
        texts: Optional[List[RecognizedText]] = None,
        labels: Optional[List[ClassificationLabel]] = None,
    ) -> AnalysisRecord:
        rec = AnalysisRecord(analysis_id=analysis_id, video_id=video_id, analyzed_at=FIXED_NOW)
        self.analyses[video_id] = rec
        self.events[analysis_id] = (list(objects or []), list(texts or []), list(labels or []))
        return rec

    def _check(self) -> None:
        if self.fail:
            raise DurableStoreUnavailable("fake: database down")

    async def latest_analysis(self, video_id: str) -> Optional[AnalysisRecord]:
        self._check()
        self.latest_calls += 1
        return self.analyses.get(video_id)

    async def fetch_events(self, analysis_id: str):
        self._check()
        self.fetch_calls += 1
        objects, texts, labels = self.events.get(analysis_id, ([], [], []))
        return list(objects), list(texts), list(labels)

    async def latest_object_end(self, analysis_id: str) -> float:
        self._check()
        objects, _, _ = self.events.get(analysis_id, ([], [], []))
        ends = [o.time.end for o in objects if o.time.end is not None]
        return max(ends) if ends else 0.0


class FakePipeline:
    def __init__(self, redis: "FakeRedis", transaction: bool):
        self._redis = redis
        self.transaction = transaction
        self._ops: List[Tuple[str, tuple, dict]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc: Any) -> bool:
        self._ops.clear()
        return False

    def _queue(self, name: str, *args: Any, **kwargs: Any) -> "FakePipeline":
        self._ops.append((name, args, kwargs))
        return self

    def delete(self, *keys):
        return self._queue("delete", *keys)

    def hset(self, key, mapping=None):
        return self._queue("hset", key, mapping=mapping)

    def expire(self, key, seconds):
        return self._queue("expire", key, seconds)

    def rpush(self, key, *values):
        return self._queue("rpush", key, *values)

    def hgetall(self, key):
        return self._queue("hgetall", key)

    def lrange(self, key, start, end):
        return self._queue("lrange", key, start, end)

    async def execute(self) -> List[Any]:
        if self._redis.fail:
            raise RedisConnectionError("fake: redis down")
        self._redis.transactions.append([op for op, _, _ in self._ops])
        results = [getattr(self._redis, f"_{op}")(*args, **kwargs) for op, args, kwargs in self._ops]
        self._ops.clear()
        return results


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the live snapshot cache (bytes in, bytes out)."""

    def __init__(self) -> None:
        self.now = 0.0
        self.data: Dict[str, Any] = {}
        self.expires_at: Dict[str, float] = {}
        self.fail = False
        self.transactions: List[List[str]] = []

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self, transaction)

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def ttl(self, key: str) -> Optional[float]:
        if key not in self.expires_at:
            return None
        return self.expires_at[key] - self.now

    def _alive(self, key: str) -> bool:
        deadline = self.expires_at.get(key)
        if deadline is not None and self.now >= deadline:
            self.data.pop(key, None)
            self.expires_at.pop(key, None)
        return key in self.data

    @staticmethod
    def _b(value: Any) -> bytes:
        return value if isinstance(value, bytes) else str(value).encode("utf-8")

    def _delete(self, *keys: str) -> int:
        n = 0
        for key in keys:
            if self._alive(key):
                n += 1
            self.data.pop(key, None)
            self.expires_at.pop(key, None)
        return n

    def _hset(self, key: str, mapping: Optional[Dict[str, Any]] = None) -> int:
        self._alive(key)
        h = self.data.setdefault(key, {})
        for k, v in (mapping or {}).items():
            h[self._b(k)] = self._b(v)
        return len(mapping or {})

    def _expire(self, key: str, seconds: int) -> bool:
        if not self._alive(key):
            return False
        self.expires_at[key] = self.now + seconds
        return True

    def _rpush(self, key: str, *values: Any) -> int:
        self._alive(key)
        lst = self.data.setdefault(key, [])
        lst.extend(self._b(v) for v in values)
        return len(lst)

    def _hgetall(self, key: str) -> Dict[bytes, bytes]:
        return dict(self.data[key]) if self._alive(key) else {}

    def _lrange(self, key: str, start: int, end: int) -> List[bytes]:
        if not self._alive(key):
            return []
        lst = self.data[key]
        return list(lst[start:] if end == -1 else lst[start:end + 1])
