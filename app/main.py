from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from loguru import logger

from .engine import LiveStateEngine, build_engine, configure_logging, create_redis
from .errors import LiveStateError
from .pg import AnnotationRepository, create_pool
from .schemas import BuildResult, LiveStateReply, PrimeReply
from .settings import Settings, settings as default_settings


def _unavailable(e: LiveStateError) -> HTTPException:
    return HTTPException(status_code=503, detail=e.code)


def create_app(*, settings: Optional[Settings] = None, engine: Optional[LiveStateEngine] = None) -> FastAPI:
    """Build the HTTP app; an injected engine skips backend wiring in the lifespan."""
    cfg = settings or default_settings
    state: Dict[str, Any] = {"engine": engine}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(cfg.log_level)
        pool = None
        redis = None
        if state["engine"] is None:
            pool = await create_pool(
                postgres_uri=cfg.postgres_uri,
                min_size=cfg.postgres_pool_min,
                max_size=cfg.postgres_pool_max,
                connect_timeout_sec=cfg.postgres_connect_timeout_sec,
                command_timeout_sec=cfg.postgres_command_timeout_sec,
            )
            repo = AnnotationRepository(
                pool,
                videos_table=cfg.videos_table,
                analyses_table=cfg.analyses_table,
                objects_table=cfg.objects_table,
                ocr_table=cfg.ocr_table,
                labels_table=cfg.labels_table,
                acquire_timeout_sec=cfg.postgres_connect_timeout_sec,
            )
            redis = create_redis(cfg)
            state["engine"] = build_engine(source=repo, redis=redis, settings=cfg)
            logger.info(
                f"Live state engine ready cache_prefix={cfg.live_cache_prefix} ttl={cfg.live_ttl_sec}s"
            )

        primes = [asyncio.create_task(state["engine"].prime(vid)) for vid in cfg.prime_on_startup]
        if primes:
            logger.info(f"Priming {len(primes)} video(s) in background")
        try:
            yield
        finally:
            for task in primes:
                task.cancel()
            if primes:
                await asyncio.gather(*primes, return_exceptions=True)
            if redis is not None:
                await redis.aclose()
            if pool is not None:
                await pool.close()

    app = FastAPI(title="video-live-state", lifespan=lifespan)

    def _engine() -> LiveStateEngine:
        eng = state["engine"]
        if eng is None:
            raise HTTPException(status_code=503, detail="engine_not_ready")
        return eng

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"ok": True, "service": cfg.service_name, "node": cfg.node_name, "version": cfg.service_version}

    @app.get("/live/{video_id}")
    async def get_live_state(
        video_id: str,
        t: float = Query(0.0, ge=0.0, allow_inf_nan=False),
    ) -> JSONResponse:
        try:
            snap, status = await _engine().reader.lookup(video_id, t)
        except LiveStateError as e:
            logger.warning(f"Live state unavailable video_id={video_id} t={t}: {e}")
            raise _unavailable(e) from e
        if snap is None:
            raise HTTPException(status_code=404, detail="not_analyzed")
        reply = LiveStateReply(status=status, snapshot=snap)
        return JSONResponse(reply.model_dump(mode="json", by_alias=True))

    @app.post("/live/{video_id}/build")
    async def build_live_state(
        video_id: str,
        t: float = Query(0.0, ge=0.0, allow_inf_nan=False),
    ) -> JSONResponse:
        try:
            result: Optional[BuildResult] = await _engine().builder.build(video_id, t)
        except LiveStateError as e:
            logger.warning(f"Live state build failed video_id={video_id} t={t}: {e}")
            raise _unavailable(e) from e
        if result is None:
            raise HTTPException(status_code=404, detail="not_analyzed")
        return JSONResponse(result.model_dump(mode="json", by_alias=True))

    @app.post("/live/{video_id}/prime", status_code=202)
    async def prime_live_state(video_id: str, background: BackgroundTasks) -> Dict[str, Any]:
        background.add_task(_engine().prime, video_id)
        return PrimeReply(video_id=video_id).model_dump(mode="json")

    return app


app = create_app()
