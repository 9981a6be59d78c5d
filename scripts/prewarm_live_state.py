#!/usr/bin/env python3
"""Prewarm the live-state cache for one video.

    python scripts/prewarm_live_state.py "match_final.mp4" --step 5 --horizon 600
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from loguru import logger

from app.engine import build_engine, configure_logging, create_redis
from app.errors import LiveStateError
from app.pg import AnnotationRepository, create_pool
from app.schemas import PrewarmReport
from app.settings import Settings, get_settings


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build live snapshots ahead of playback.")
    parser.add_argument("video_id", help="Video identifier, e.g. the uploaded file name")
    parser.add_argument("--step", type=float, default=None, help="Seconds between snapshots")
    parser.add_argument("--horizon", type=float, default=None, help="Maximum seconds to prewarm")
    parser.add_argument("--concurrency", type=int, default=None, help="Parallel builds")
    args = parser.parse_args(argv)
    if args.step is not None and args.step <= 0:
        parser.error("--step must be positive")
    if args.horizon is not None and args.horizon < 0:
        parser.error("--horizon must not be negative")
    if args.concurrency is not None and args.concurrency < 1:
        parser.error("--concurrency must be at least 1")
    return args


def _apply_overrides(base: Settings, args: argparse.Namespace) -> Settings:
    updates = {}
    if args.step is not None:
        updates["prewarm_step_sec"] = args.step
    if args.horizon is not None:
        updates["prewarm_max_horizon_sec"] = args.horizon
    if args.concurrency is not None:
        updates["prewarm_concurrency"] = args.concurrency
    return base.model_copy(update=updates)


async def run(video_id: str, cfg: Settings) -> PrewarmReport:
    pool = await create_pool(
        postgres_uri=cfg.postgres_uri,
        min_size=cfg.postgres_pool_min,
        max_size=cfg.postgres_pool_max,
        connect_timeout_sec=cfg.postgres_connect_timeout_sec,
        command_timeout_sec=cfg.postgres_command_timeout_sec,
    )
    redis = create_redis(cfg)
    try:
        repo = AnnotationRepository(
            pool,
            videos_table=cfg.videos_table,
            analyses_table=cfg.analyses_table,
            objects_table=cfg.objects_table,
            ocr_table=cfg.ocr_table,
            labels_table=cfg.labels_table,
            acquire_timeout_sec=cfg.postgres_connect_timeout_sec,
        )
        engine = build_engine(source=repo, redis=redis, settings=cfg)
        return await engine.prewarm.prewarm(video_id)
    finally:
        await redis.aclose()
        await pool.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    cfg = _apply_overrides(get_settings(), args)
    configure_logging(cfg.log_level)
    try:
        report = asyncio.run(run(args.video_id, cfg))
    except LiveStateError as e:
        logger.error(f"Prewarm aborted video_id={args.video_id}: {e}")
        return 2
    if report.skipped:
        logger.error(f"Video {args.video_id!r} has no analysis yet")
        return 1
    print(f"built={report.built} failed={report.failed} planned={report.planned}")
    return 0 if report.failed == 0 else 3


if __name__ == "__main__":
    raise SystemExit(main())
