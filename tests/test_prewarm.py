import asyncio
import unittest
from unittest.mock import AsyncMock

from app.builder import SnapshotBuilder
from app.errors import DurableStoreUnavailable
from app.prewarm import PrewarmDriver, plan_timestamps
from app.store import LiveSnapshotCache

from fakes import FakeAnnotationSource, FakeRedis, fixed_clock, ocr, person


class TestPlanTimestamps(unittest.TestCase):
    def test_steps_include_clamped_end(self) -> None:
        self.assertEqual(plan_timestamps(20.0, step_sec=5, max_horizon_sec=600), [0, 5, 10, 15, 20])
        self.assertEqual(plan_timestamps(23.0, step_sec=5, max_horizon_sec=600), [0, 5, 10, 15, 20])

    def test_horizon_bounds_work(self) -> None:
        stamps = plan_timestamps(5000.0, step_sec=5, max_horizon_sec=600)
        self.assertEqual(len(stamps), 121)
        self.assertEqual(stamps[-1], 600)

    def test_zero_duration_still_builds_start(self) -> None:
        self.assertEqual(plan_timestamps(0.0, step_sec=5, max_horizon_sec=600), [0])

    def test_step_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            plan_timestamps(10.0, step_sec=0, max_horizon_sec=600)


class TestPrewarmDriver(unittest.TestCase):
    def setUp(self) -> None:
        self.source = FakeAnnotationSource()
        self.source.add_analysis(
            "match.mp4",
            objects=[person(0.0, 23.0), person(2.0, 12.0)],
            texts=[ocr("ARG 0 1 POR", 4.0)],
        )
        self.redis = FakeRedis()
        self.cache = LiveSnapshotCache(redis=self.redis, ttl_sec=360)
        self.builder = SnapshotBuilder(source=self.source, cache=self.cache, clock=fixed_clock)

    def _driver(self, **kwargs) -> PrewarmDriver:
        return PrewarmDriver(source=self.source, builder=self.builder, **kwargs)

    def test_builds_every_step(self) -> None:
        report = asyncio.run(self._driver(step_sec=5).prewarm("match.mp4"))
        self.assertEqual((report.planned, report.built, report.failed), (5, 5, 0))
        for t in (0, 5, 10, 15, 20):
            self.assertIn(f"live:video:match.mp4:t:{t}", self.redis.data)
        self.assertNotIn("live:video:match.mp4:t:25", self.redis.data)

        snap = asyncio.run(self.cache.read("match.mp4", 10))
        self.assertEqual(snap.player_count, 2)
        self.assertEqual(snap.score, "0-1")

    def test_horizon_clamps_long_videos(self) -> None:
        self.source.add_analysis("long.mp4", analysis_id="9", objects=[person(0.0, 4000.0)])
        report = asyncio.run(self._driver(step_sec=60, max_horizon_sec=600).prewarm("long.mp4"))
        self.assertEqual(report.planned, 11)
        self.assertIn("live:video:long.mp4:t:600", self.redis.data)
        self.assertNotIn("live:video:long.mp4:t:660", self.redis.data)

    def test_not_analyzed_does_nothing(self) -> None:
        report = asyncio.run(self._driver().prewarm("missing.mp4"))
        self.assertTrue(report.skipped)
        self.assertEqual(report.planned, 0)
        self.assertEqual(self.redis.data, {})

    def test_failed_step_does_not_abort_run(self) -> None:
        real_build = self.builder.build

        async def flaky_build(video_id, t):
            if t == 10:
                raise DurableStoreUnavailable("timeout")
            return await real_build(video_id, t)

        self.builder.build = flaky_build
        report = asyncio.run(self._driver(step_sec=5).prewarm("match.mp4"))
        self.assertEqual((report.built, report.failed), (4, 1))
        self.assertNotIn("live:video:match.mp4:t:10", self.redis.data)
        self.assertIn("live:video:match.mp4:t:15", self.redis.data)

    def test_unexpected_step_error_does_not_abort_run(self) -> None:
        real_build = self.builder.build

        async def broken_build(video_id, t):
            if t == 5:
                raise RuntimeError("bad row")
            return await real_build(video_id, t)

        self.builder.build = broken_build
        report = asyncio.run(self._driver(step_sec=5).prewarm("match.mp4"))
        self.assertEqual((report.built, report.failed), (4, 1))
        self.assertIn("live:video:match.mp4:t:20", self.redis.data)

    def test_concurrency_is_bounded(self) -> None:
        in_flight = 0
        peak = 0

        async def slow_build(video_id, t):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return None

        self.builder.build = AsyncMock(side_effect=slow_build)
        self.source.add_analysis("long.mp4", analysis_id="9", objects=[person(0.0, 100.0)])
        report = asyncio.run(self._driver(step_sec=5, concurrency=3).prewarm("long.mp4"))
        self.assertEqual(self.builder.build.await_count, 21)
        self.assertEqual(report.planned, 21)
        self.assertLessEqual(peak, 3)
        self.assertGreater(peak, 1)


if __name__ == "__main__":
    unittest.main()
