"""
Tests for precomputing probability caches.
"""

from unittest.mock import patch

import pytest

from range_backtest.backtest.cache_builder import ProbabilityCacheBuilder
from range_backtest.backtest.oracle import LiveOracle, ReplayOracle, StubOracle
from range_backtest.models import OracleEstimate

MINUTE = 60_000
T0 = 1_757_030_400_000


def answer_all(probability=0.9, fail_every=None):
    """fetch_batch replacement answering a fixed probability."""
    async def _fetch(requests, progress_callback=None):
        estimates = []
        for request in requests:
            minute = (request.timestamp - T0) // MINUTE
            if fail_every and minute % fail_every == 0:
                estimates.append(OracleEstimate.failure("HTTP 502"))
            else:
                estimates.append(OracleEstimate(probability, request.lower, request.upper))
        return estimates
    return _fetch


@pytest.fixture
def builder_factory():
    def _create(store, batch_size=4, **overrides):
        settings = {"steps": 1, "delta_multiplier": 1, "ltma_multiplier": 1, "warmup_minutes": 1}
        settings.update(overrides)
        return ProbabilityCacheBuilder(store, LiveOracle(), batch_size=batch_size, **settings)
    return _create


@pytest.mark.unit
class TestPlanRequests:

    def test_one_request_per_idle_tick(self, store_factory, builder_factory):
        requests = builder_factory(store_factory(minutes=10)).plan_requests(0.01)

        assert [r.timestamp for r in requests] == [T0 + m * MINUTE for m in range(1, 10)]
        assert requests[0].lower == pytest.approx(99.0)
        assert requests[0].range == 0.01

    def test_skips_zero_prices(self, store_factory, builder_factory):
        requests = builder_factory(store_factory({3: 0.0}, minutes=10)).plan_requests(0.01)

        assert T0 + 3 * MINUTE not in [r.timestamp for r in requests]
        assert len(requests) == 8

    def test_skips_ticks_without_history(self, store_factory, builder_factory):
        requests = builder_factory(store_factory(minutes=10), ltma_multiplier=4).plan_requests(0.01)

        assert requests[0].timestamp == T0 + 4 * MINUTE


@pytest.mark.unit
class TestBuild:

    @pytest.mark.asyncio
    async def test_batches_and_progress(self, store_factory, builder_factory):
        builder = builder_factory(store_factory(minutes=10), batch_size=4)
        progress = []

        with patch.object(builder.oracle, "fetch_batch", side_effect=answer_all()) as fetch:
            cache = await builder.build_async(
                0.01, "2025-09-05", "2025-09-05", lambda d, t: progress.append((d, t))
            )

        assert fetch.call_count == 3
        assert progress == [(4, 9), (8, 9), (9, 9)]
        assert len(cache.records) == 9
        assert cache.range == 0.01
        assert cache.error_count == 0

    @pytest.mark.asyncio
    async def test_failures_stored_with_zero_probability(self, store_factory, builder_factory):
        builder = builder_factory(store_factory(minutes=10))

        with patch.object(builder.oracle, "fetch_batch", side_effect=answer_all(fail_every=3)):
            cache = await builder.build_async(0.01, "2025-09-05", "2025-09-05")

        failed = [r for r in cache.records if r.error]
        assert [(r.timestamp - T0) // MINUTE for r in failed] == [3, 6, 9]
        assert all(r.probability == 0.0 for r in failed)

    def test_replayed_cache_matches_direct_oracle(
        self, store_factory, builder_factory, engine_factory, base_params
    ):
        store = store_factory({2: 99.4, 3: (99.8, 99.8, 99.6), 14: 100.7})
        builder = builder_factory(store)

        with patch.object(builder.oracle, "fetch_batch", side_effect=answer_all(0.9)):
            cache = builder.build(0.01, "2025-09-05", "2025-09-05")

        replayed = engine_factory(store, ReplayOracle(cache)).run(base_params)
        direct = engine_factory(store, StubOracle(0.9)).run(base_params)

        assert [t.to_dict() for t in replayed.trades] == [t.to_dict() for t in direct.trades]
        assert replayed.counters == direct.counters
