"""Range backtester.

Replays a range-bound leveraged strategy over historical candles. A risk
module (the probability oracle) decides when a trading cycle may start;
inside a cycle the position in the frozen price band decides entries.

Main components:
    - BacktestConfig: Settings from defaults, environment and JSON files
    - CycleEngine: Simulates one parameter set
    - SweepRunner: Simulates a grid of parameter sets
    - ProbabilityCacheBuilder: Precomputes oracle answers for replay

Example usage:
    >>> from range_backtest import BacktestConfig
    >>> config = BacktestConfig.from_env()
    >>> config.parameter_set().label
    'range=0.005 cycle=10m entry=0.25/0.75 prob>=0.8 lock=60s tp=fixed_percent:0.35 close=cycle_timeout'
"""

from .config import BacktestConfig
from .backtest import CycleEngine, SweepRunner, ProbabilityCacheBuilder

__all__ = [
    "BacktestConfig",
    "CycleEngine",
    "SweepRunner",
    "ProbabilityCacheBuilder",
]

__version__ = "1.0.0"
