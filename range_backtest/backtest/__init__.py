"""Backtesting Module - Range strategy replay, sweeps and reporting.

Components:
- CandleStore: Read-only fine/coarse candle series with time lookups
- HistoricalDataLoader: Per-day candle files into a CandleStore
- ProbabilityOracle: Replay, stub and live (HTTP) probability sources
- ProbabilityCache / ProbabilityCacheBuilder: Precomputed oracle answers
- CloseStrategy: cycle_timeout, no_sl and no_cycle exit rules
- PnLModel: Take-profit placement, slippage, fees and PnL
- CycleEngine: Minute-by-minute state machine for one parameter set
- SweepRunner / SweepConfig: Grid runs with ranking and sensitivity
- BacktestReport: Markdown, text table, CSV and JSON output

Example Usage:
    ```python
    from pathlib import Path
    from range_backtest.backtest import (
        CycleEngine, HistoricalDataLoader, PnLModel, ProbabilityCache, ReplayOracle,
    )
    from range_backtest.models import ParameterSet

    store, _ = HistoricalDataLoader(Path("data/raw/ETHUSDT")).load("2025-09-05", "2025-09-11")
    oracle = ReplayOracle(ProbabilityCache.load(Path("rm-cache/cache_0_7pct_2025-09-05_2025-09-11.json")))
    engine = CycleEngine(store, oracle, PnLModel(position_margin=0.5, leverage=3, taker_fee=0.00045))

    run = engine.run(ParameterSet(range=0.007, cycle_time_minutes=10, entry_long=0.25,
                                  entry_short=0.75, min_probability=0.8,
                                  lock_before_end_seconds=60))
    print(f"Total P&L: {run.stats.total_pnl:.4f}")
    print(f"Win Rate: {run.stats.win_rate:.1f}%")
    ```
"""

from .candle_store import CandleStore
from .data_loader import HistoricalDataLoader, LoadReport
from .oracle import LiveOracle, ProbabilityOracle, ReplayOracle, StubOracle
from .probability_cache import ProbabilityCache, cache_filename
from .cache_builder import ProbabilityCacheBuilder
from .strategies import CloseStrategy, available_strategies, create_strategy
from .pnl import PnLModel
from .engine import CycleEngine, EngineRun, RunCounters, StatsSummary
from .sweep import SweepConfig, SweepReport, SweepResult, SweepRunner
from .reports import BacktestReport

__all__ = [
    # Data
    "CandleStore",
    "HistoricalDataLoader",
    "LoadReport",
    # Oracles
    "ProbabilityOracle",
    "ReplayOracle",
    "StubOracle",
    "LiveOracle",
    "ProbabilityCache",
    "ProbabilityCacheBuilder",
    "cache_filename",
    # Simulation
    "CloseStrategy",
    "available_strategies",
    "create_strategy",
    "PnLModel",
    "CycleEngine",
    "EngineRun",
    "RunCounters",
    "StatsSummary",
    # Sweeps
    "SweepConfig",
    "SweepReport",
    "SweepResult",
    "SweepRunner",
    "BacktestReport",
]
