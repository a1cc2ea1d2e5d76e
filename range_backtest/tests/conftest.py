"""
Shared pytest fixtures for range backtester testing.
Provides factory fixtures for candles, candle stores, engines and caches.
"""
import pytest

from range_backtest.backtest.candle_store import CandleStore
from range_backtest.backtest.engine import CycleEngine
from range_backtest.backtest.oracle import StubOracle
from range_backtest.backtest.pnl import PnLModel
from range_backtest.backtest.probability_cache import ProbabilityCache
from range_backtest.models import Candle, ParameterSet, ProbabilityRecord, TakeProfitPolicy

MINUTE = 60_000
T0 = 1_757_030_400_000  # 2025-09-05 00:00:00 UTC


@pytest.fixture
def candle_factory():
    """
    Factory fixture for building candle lists.

    Each price is either a float (close = high = low) or a
    (close, high, low) tuple.

    Usage:
        def test_example(candle_factory):
            candles = candle_factory([100.0, (99.0, 99.5, 98.5)])
    """
    def _create(prices, start_ts: int = T0, step_ms: int = MINUTE):
        candles = []
        for i, price in enumerate(prices):
            if isinstance(price, tuple):
                close, high, low = price
            else:
                close = high = low = price
            candles.append(Candle(timestamp=start_ts + i * step_ms, close=close, high=high, low=low))
        return candles

    return _create


@pytest.fixture
def store_factory(candle_factory):
    """
    Factory fixture for a CandleStore with one fine candle per minute.

    Coarse candles sit flat at ``base``; fine candles follow ``path``
    (minute offset -> price or (close, high, low)) and ``base`` elsewhere.

    Usage:
        def test_example(store_factory):
            store = store_factory({2: 99.4, 3: (99.8, 99.8, 99.6)})
    """
    def _create(path=None, minutes: int = 30, base: float = 100.0):
        path = path or {}
        fine_prices = [path.get(m, base) for m in range(minutes + 1)]
        coarse_prices = [base] * (minutes + 1)
        return CandleStore(candle_factory(fine_prices), candle_factory(coarse_prices))

    return _create


@pytest.fixture
def pnl_model():
    """0.5 margin, 3x leverage, 0.045% taker fee."""
    return PnLModel(position_margin=0.5, leverage=3, taker_fee=0.00045)


@pytest.fixture
def base_params():
    """1% band, 10 minute cycle, 0.25/0.75 entries, 0.35% take-profit."""
    return ParameterSet(
        range=0.01,
        cycle_time_minutes=10,
        entry_long=0.25,
        entry_short=0.75,
        min_probability=0.75,
        lock_before_end_seconds=60,
        take_profit=TakeProfitPolicy("fixed_percent", tp_percent=0.35),
    )


@pytest.fixture
def engine_factory(pnl_model):
    """
    Factory fixture for a CycleEngine with one-sample metric windows and a
    one minute warmup, so the first cycle can start at minute 1.
    """
    def _create(store, oracle=None, **overrides):
        settings = {
            "steps": 1,
            "delta_multiplier": 1,
            "ltma_multiplier": 1,
            "warmup_minutes": 1,
        }
        settings.update(overrides)
        return CycleEngine(store, oracle or StubOracle(0.9), pnl_model, **settings)

    return _create


@pytest.fixture
def cache_factory():
    """
    Factory fixture for a ProbabilityCache with one record per minute.

    Usage:
        def test_example(cache_factory):
            cache = cache_factory([0.9, 0.5, 0.8], range_=0.01)
    """
    def _create(probabilities, range_: float = 0.01, start_ts: int = T0, price: float = 100.0):
        records = [
            ProbabilityRecord(
                timestamp=start_ts + i * MINUTE,
                price=price,
                probability=p,
                lower=price * (1 - range_),
                upper=price * (1 + range_),
                delta=0.0001,
                ltma=price,
            )
            for i, p in enumerate(probabilities)
        ]
        return ProbabilityCache(
            range=range_,
            steps=10,
            from_date="2025-09-05",
            to_date="2025-09-05",
            records=records,
        )

    return _create
