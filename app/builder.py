from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from loguru import logger

from .errors import CacheStoreUnavailable
from .schemas import (
    AnalysisRecord,
    BuildResult,
    ClassificationLabel,
    LiveSnapshot,
    ObjectDetection,
    RankedLabel,
    RecognizedText,
)
from .scoreboard import ScoreboardParser
from .store import LiveSnapshotCache, second_of
from .window import duration, is_active, time_range


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnnotationSource(Protocol):
    async def latest_analysis(self, video_id: str) -> Optional[AnalysisRecord]: ...

    async def fetch_events(
        self, analysis_id: str
    ) -> Tuple[List[ObjectDetection], List[RecognizedText], List[ClassificationLabel]]: ...

    async def latest_object_end(self, analysis_id: str) -> float: ...


def count_players(
    objects: Sequence[ObjectDetection],
    t: float,
    *,
    label: str = "person",
    min_duration_sec: float = 2.0,
    cap: int = 14,
) -> int:
    on_scene = [
        o for o in objects
        if o.name == label and duration(o) >= min_duration_sec and is_active(o, t)
    ]
    return min(len(on_scene), cap)


def _scoreboard_rank(ev: RecognizedText) -> Tuple[float, float, float]:
    start, end = time_range(ev)
    return (start, float(ev.confidence), end)


def select_scoreboard(
    texts: Sequence[RecognizedText],
    t: float,
    *,
    parser: ScoreboardParser,
) -> Optional[RecognizedText]:
    """Latest-starting active reading wins; then confidence, then later end."""
    candidates = [ev for ev in texts if parser.is_candidate(ev.text) and is_active(ev, t)]
    if not candidates:
        return None
    # stable: equal keys keep durable-store order
    return sorted(candidates, key=_scoreboard_rank, reverse=True)[0]


def rank_labels(labels: Sequence[ClassificationLabel], *, limit: int = 5) -> List[RankedLabel]:
    ordered = sorted(labels, key=lambda lbl: float(lbl.confidence), reverse=True)
    return [RankedLabel(name=lbl.name, confidence=float(lbl.confidence)) for lbl in ordered[:limit]]


class SnapshotBuilder:
    """Derives the live snapshot of a video at ``t`` and caches it."""

    def __init__(
        self,
        *,
        source: AnnotationSource,
        cache: LiveSnapshotCache,
        parser: Optional[ScoreboardParser] = None,
        player_label: str = "person",
        min_player_duration_sec: float = 2.0,
        max_player_count: int = 14,
        top_labels: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.source = source
        self.cache = cache
        self.parser = parser or ScoreboardParser()
        self.player_label = player_label
        self.min_player_duration_sec = float(min_player_duration_sec)
        self.max_player_count = int(max_player_count)
        self.top_labels = int(top_labels)
        self.clock = clock

    async def compute(self, video_id: str, t: float) -> Optional[LiveSnapshot]:
        """Derive the snapshot without touching the cache; None if never analyzed."""
        analysis = await self.source.latest_analysis(video_id)
        if analysis is None:
            return None

        objects, texts, labels = await self.source.fetch_events(analysis.analysis_id)

        # window checks use the whole second, matching the cache key
        sec = second_of(t)
        player_count = count_players(
            objects,
            sec,
            label=self.player_label,
            min_duration_sec=self.min_player_duration_sec,
            cap=self.max_player_count,
        )
        best = select_scoreboard(texts, sec, parser=self.parser)
        scoreboard_text = best.text if best is not None else ""
        score = (self.parser.extract_score(scoreboard_text) or "") if scoreboard_text else ""

        return LiveSnapshot(
            videoId=video_id,
            t=sec,
            playerCount=player_count,
            scoreboard=scoreboard_text,
            score=score,
            lastUpdated=self.clock(),
            topLabels=rank_labels(labels, limit=self.top_labels),
        )

    async def build(self, video_id: str, t: float) -> Optional[BuildResult]:
        snap = await self.compute(video_id, t)
        if snap is None:
            logger.debug(f"No analysis for video_id={video_id}; nothing to build")
            return None

        result = BuildResult(score=snap.score, scoreboard=snap.scoreboard_text)
        try:
            await self.cache.write(snap)
        except CacheStoreUnavailable as e:
            e.result = result
            raise

        logger.debug(
            f"Built live snapshot video_id={video_id} t={snap.t} "
            f"players={snap.player_count} score={snap.score!r} labels={len(snap.top_labels)}"
        )
        return result
