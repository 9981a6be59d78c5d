from __future__ import annotations

import asyncio
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, Tuple

import asyncpg
from loguru import logger

from .errors import DurableStoreUnavailable
from .schemas import AnalysisRecord, ClassificationLabel, ObjectDetection, RecognizedText, TimeRange


_SAFE_IDENT = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
def _safe_ident(name: str) -> str:
    if not _SAFE_IDENT.match(name or ""):
        raise ValueError(f"unsafe_identifier:{name}")
    return name


_DDL = """
CREATE TABLE IF NOT EXISTS {videos} (
    video_id      TEXT PRIMARY KEY,
    source        TEXT,
    sport         TEXT,
    duration_sec  DOUBLE PRECISION,
    created_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS {analyses} (
    analysis_id   BIGSERIAL PRIMARY KEY,
    video_id      TEXT NOT NULL REFERENCES {videos} (video_id),
    summary       JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    analyzed_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS ix_{analyses}_video_latest ON {analyses} (video_id, analyzed_at DESC);

CREATE TABLE IF NOT EXISTS {objects} (
    analysis_id   BIGINT NOT NULL REFERENCES {analyses} (analysis_id),
    video_id      TEXT NOT NULL,
    name          TEXT NOT NULL,
    confidence    DOUBLE PRECISION NOT NULL DEFAULT 0,
    start_sec     DOUBLE PRECISION,
    end_sec       DOUBLE PRECISION,
    track_id      TEXT
);
CREATE INDEX IF NOT EXISTS ix_{objects}_analysis ON {objects} (analysis_id);

CREATE TABLE IF NOT EXISTS {ocr} (
    analysis_id   BIGINT NOT NULL REFERENCES {analyses} (analysis_id),
    video_id      TEXT NOT NULL,
    text          TEXT NOT NULL,
    confidence    DOUBLE PRECISION NOT NULL DEFAULT 0,
    start_sec     DOUBLE PRECISION,
    end_sec       DOUBLE PRECISION
);
CREATE INDEX IF NOT EXISTS ix_{ocr}_analysis ON {ocr} (analysis_id);

CREATE TABLE IF NOT EXISTS {labels} (
    analysis_id   BIGINT NOT NULL REFERENCES {analyses} (analysis_id),
    video_id      TEXT NOT NULL,
    name          TEXT NOT NULL,
    confidence    DOUBLE PRECISION NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS ix_{labels}_analysis ON {labels} (analysis_id);
"""

_BACKEND_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


def _opt_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


class AnnotationRepository:
    """Read-only query surface over the annotation tables.

    Every backend failure (including pool/command timeouts) is raised as
    DurableStoreUnavailable.
    """

    def __init__(
        self,
        pool: asyncpg.Pool,
        *,
        videos_table: str = "videos",
        analyses_table: str = "analyses",
        objects_table: str = "object_segments",
        ocr_table: str = "ocr_events",
        labels_table: str = "label_events",
        acquire_timeout_sec: float = 5.0,
    ):
        self.pool = pool
        self.acquire_timeout_sec = acquire_timeout_sec
        self.videos_table = _safe_ident(videos_table)
        self.analyses_table = _safe_ident(analyses_table)
        self.objects_table = _safe_ident(objects_table)
        self.ocr_table = _safe_ident(ocr_table)
        self.labels_table = _safe_ident(labels_table)

    @asynccontextmanager
    async def _conn(self, op: str) -> AsyncIterator[asyncpg.Connection]:
        try:
            async with self.pool.acquire(timeout=self.acquire_timeout_sec) as conn:
                yield conn
        except _BACKEND_ERRORS as e:
            raise DurableStoreUnavailable(f"{op}: {type(e).__name__}: {e}") from e

    async def latest_analysis(self, video_id: str) -> Optional[AnalysisRecord]:
        sql = (
            f"SELECT analysis_id, video_id, analyzed_at FROM {self.analyses_table} "
            "WHERE video_id = $1 ORDER BY analyzed_at DESC, analysis_id DESC LIMIT 1"
        )
        async with self._conn("latest_analysis") as conn:
            row = await conn.fetchrow(sql, video_id)
        if row is None:
            return None
        return AnalysisRecord(
            analysis_id=str(row["analysis_id"]),
            video_id=row["video_id"],
            analyzed_at=row["analyzed_at"],
        )

    async def fetch_objects(self, analysis_id: str) -> List[ObjectDetection]:
        sql = (
            f"SELECT name, confidence, start_sec, end_sec, track_id FROM {self.objects_table} "
            "WHERE analysis_id = $1"
        )
        async with self._conn("fetch_objects") as conn:
            rows = await conn.fetch(sql, int(analysis_id))
        return [
            ObjectDetection(
                name=r["name"],
                confidence=float(r["confidence"] or 0.0),
                time=TimeRange(start=float(r["start_sec"] or 0.0), end=_opt_float(r["end_sec"])),
                track_id=r["track_id"],
            )
            for r in rows
        ]

    async def fetch_texts(self, analysis_id: str) -> List[RecognizedText]:
        sql = f"SELECT text, confidence, start_sec, end_sec FROM {self.ocr_table} WHERE analysis_id = $1"
        async with self._conn("fetch_texts") as conn:
            rows = await conn.fetch(sql, int(analysis_id))
        return [
            RecognizedText(
                text=r["text"] or "",
                confidence=float(r["confidence"] or 0.0),
                time=TimeRange(start=float(r["start_sec"] or 0.0), end=_opt_float(r["end_sec"])),
            )
            for r in rows
        ]

    async def fetch_labels(self, analysis_id: str) -> List[ClassificationLabel]:
        sql = f"SELECT name, confidence FROM {self.labels_table} WHERE analysis_id = $1"
        async with self._conn("fetch_labels") as conn:
            rows = await conn.fetch(sql, int(analysis_id))
        return [ClassificationLabel(name=r["name"], confidence=float(r["confidence"] or 0.0)) for r in rows]

    async def fetch_events(
        self, analysis_id: str
    ) -> Tuple[List[ObjectDetection], List[RecognizedText], List[ClassificationLabel]]:
        # no time filter here: legacy rows with degenerate ranges are filtered in memory
        objects, texts, labels = await asyncio.gather(
            self.fetch_objects(analysis_id),
            self.fetch_texts(analysis_id),
            self.fetch_labels(analysis_id),
        )
        return objects, texts, labels

    async def latest_object_end(self, analysis_id: str) -> float:
        sql = f"SELECT MAX(end_sec) FROM {self.objects_table} WHERE analysis_id = $1"
        async with self._conn("latest_object_end") as conn:
            value = await conn.fetchval(sql, int(analysis_id))
        return float(value or 0.0)

    async def ensure_video(
        self,
        video_id: str,
        *,
        source: Optional[str] = None,
        sport: Optional[str] = None,
        duration_sec: Optional[float] = None,
    ) -> bool:
        """Insert the video row if absent; True only for the caller that inserted it."""
        sql = (
            f"INSERT INTO {self.videos_table} (video_id, source, sport, duration_sec) "
            "VALUES ($1, $2, $3, $4) ON CONFLICT (video_id) DO NOTHING RETURNING video_id"
        )
        async with self._conn("ensure_video") as conn:
            inserted = await conn.fetchval(sql, video_id, source, sport, duration_sec)
        return inserted is not None

    async def ensure_schema(self) -> None:
        sql = _DDL.format(
            videos=self.videos_table,
            analyses=self.analyses_table,
            objects=self.objects_table,
            ocr=self.ocr_table,
            labels=self.labels_table,
        )
        async with self._conn("ensure_schema") as conn:
            await conn.execute(sql)
        logger.info(f"Annotation schema ensured analyses={self.analyses_table}")


async def create_pool(
    *,
    postgres_uri: str,
    min_size: int,
    max_size: int,
    connect_timeout_sec: float,
    command_timeout_sec: float,
) -> asyncpg.Pool:
    try:
        return await asyncpg.create_pool(
            dsn=postgres_uri,
            min_size=min_size,
            max_size=max_size,
            timeout=connect_timeout_sec,
            command_timeout=command_timeout_sec,
        )
    except _BACKEND_ERRORS as e:
        raise DurableStoreUnavailable(f"create_pool: {type(e).__name__}: {e}") from e
