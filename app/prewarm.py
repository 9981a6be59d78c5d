from __future__ import annotations

import asyncio
from typing import List

from loguru import logger

from .builder import AnnotationSource, SnapshotBuilder
from .errors import LiveStateError
from .schemas import PrewarmReport


def plan_timestamps(duration_sec: float, *, step_sec: float, max_horizon_sec: float) -> List[float]:
    """``0, step, 2*step, ...`` up to and including the clamped duration."""
    if step_sec <= 0:
        raise ValueError("step_sec must be positive")
    limit = max(0.0, min(float(duration_sec), float(max_horizon_sec)))
    out: List[float] = []
    i = 0
    while i * step_sec <= limit:
        out.append(i * step_sec)
        i += 1
    return out


class PrewarmDriver:
    """Builds snapshots ahead of playback so reads hit the cache."""

    def __init__(
        self,
        *,
        source: AnnotationSource,
        builder: SnapshotBuilder,
        step_sec: float = 5.0,
        max_horizon_sec: float = 600.0,
        concurrency: int = 4,
    ):
        self.source = source
        self.builder = builder
        self.step_sec = float(step_sec)
        self.max_horizon_sec = float(max_horizon_sec)
        self.concurrency = max(1, int(concurrency))

    async def approximate_duration(self, video_id: str) -> float:
        """Latest-ending object detection of the newest analysis; -1 when never analyzed."""
        analysis = await self.source.latest_analysis(video_id)
        if analysis is None:
            return -1.0
        return await self.source.latest_object_end(analysis.analysis_id)

    async def prewarm(self, video_id: str) -> PrewarmReport:
        duration = await self.approximate_duration(video_id)
        if duration < 0:
            logger.info(f"Prewarm skipped video_id={video_id}: not analyzed")
            return PrewarmReport(video_id=video_id, skipped=True)

        stamps = plan_timestamps(duration, step_sec=self.step_sec, max_horizon_sec=self.max_horizon_sec)
        logger.info(
            f"Prewarming live cache video_id={video_id} duration={duration:.1f}s "
            f"steps={len(stamps)} concurrency={self.concurrency}"
        )

        sem = asyncio.Semaphore(self.concurrency)
        report = PrewarmReport(video_id=video_id, planned=len(stamps))

        async def _one(t: float) -> None:
            async with sem:
                try:
                    built = await self.builder.build(video_id, t)
                except LiveStateError as e:
                    report.failed += 1
                    logger.warning(f"Prewarm step failed video_id={video_id} t={t}: {e}")
                    return
                except Exception:
                    report.failed += 1
                    logger.exception(f"Prewarm step crashed video_id={video_id} t={t}")
                    return
                if built is not None:
                    report.built += 1

        await asyncio.gather(*(_one(t) for t in stamps))
        logger.info(
            f"Prewarm complete video_id={video_id} built={report.built} failed={report.failed}"
        )
        return report
