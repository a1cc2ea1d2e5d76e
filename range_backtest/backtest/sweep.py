"""Parameter Sweep - Runs a grid of parameter sets over one candle store.

Every combination is simulated independently, optionally on a thread pool
sharing the read-only CandleStore. A failing combination is logged and
recorded with an empty summary; the sweep always returns one result per
combination.
"""

import itertools
import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from ..exceptions import ConfigurationError
from ..models.parameters import ParameterSet, TakeProfitKind, TakeProfitPolicy
from ..models.trades import Trade
from ..validation import ValidationError, validate_choice, validate_limit
from .candle_store import CandleStore
from .engine import DEFAULT_WARMUP_MINUTES, CycleEngine, StatsSummary
from .oracle import ProbabilityOracle
from .pnl import PnLModel
from .strategies import DEFAULT_MAX_HOLD_MS, validate_strategy_name

# Grouping columns for sensitivity analysis
SENSITIVITY_DIMENSIONS = (
    "entry_pair",
    "range",
    "cycle_time_minutes",
    "min_probability",
    "lock_before_end_seconds",
    "take_profit",
    "close_strategy",
)


@dataclass
class SweepConfig:
    """Grid of values to combine into parameter sets.

    Mirrors the matrix file:

        {
          "entryPairs": [[0.2, 0.8], [0.25, 0.75]],
          "minProbability": [0.8, 0.9],
          "lockBeforeEnd": [30, 60],
          "tpPercent": [0.25, 0.35],
          "ranges": [0.007],
          "cycleTimes": [10],
          "closeStrategies": ["cycle_timeout"]
        }
    """

    entry_pairs: List[Tuple[float, float]]
    min_probabilities: List[float]
    lock_before_ends: List[int]
    ranges: List[float]
    cycle_times: List[int]
    tp_percents: List[float] = field(default_factory=lambda: [0.35])
    close_strategies: List[str] = field(default_factory=lambda: ["cycle_timeout"])
    tp_strategy: str = TakeProfitKind.FIXED_PERCENT.value
    tp_risk_rewards: List[float] = field(default_factory=lambda: [2.0])

    @classmethod
    def from_dict(
        cls,
        data: dict,
        default_range: float = 0.005,
        default_cycle_time: int = 10,
        default_tp_strategy: str = TakeProfitKind.FIXED_PERCENT.value,
    ) -> "SweepConfig":
        """Build from a parsed matrix document.

        ``ranges`` and ``cycleTimes`` are optional and fall back to the single
        values of the simulation settings.

        Raises:
            ConfigurationError: If a required key is missing or malformed
        """
        try:
            config = cls(
                entry_pairs=[(float(pair[0]), float(pair[1])) for pair in data["entryPairs"]],
                min_probabilities=[float(v) for v in _as_list(data["minProbability"])],
                lock_before_ends=[int(v) for v in _as_list(data["lockBeforeEnd"])],
                ranges=[float(v) for v in _as_list(data.get("ranges", default_range))],
                cycle_times=[int(v) for v in _as_list(data.get("cycleTimes", default_cycle_time))],
                tp_percents=[float(v) for v in _as_list(data.get("tpPercent", 0.35))],
                close_strategies=[
                    str(v) for v in _as_list(data.get("closeStrategies", "cycle_timeout"))
                ],
                tp_strategy=str(data.get("tpStrategy", default_tp_strategy)),
                tp_risk_rewards=[float(v) for v in _as_list(data.get("tpRiskReward", 2.0))],
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid sweep configuration: {e!r}") from e

        config.validate()
        return config

    @classmethod
    def from_file(cls, path: Path, **defaults) -> "SweepConfig":
        """Load a matrix file (JSON)."""
        path = Path(path)
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read sweep configuration {path}: {e}") from e

        return cls.from_dict(data, **defaults)

    def validate(self) -> None:
        """Check names and non-empty dimensions.

        Raises:
            UnknownCloseStrategyError: If a close strategy is not registered
            ValidationError: If a dimension is empty or the TP strategy is unknown
        """
        for name, values in (
            ("entryPairs", self.entry_pairs),
            ("minProbability", self.min_probabilities),
            ("lockBeforeEnd", self.lock_before_ends),
            ("ranges", self.ranges),
            ("cycleTimes", self.cycle_times),
            ("closeStrategies", self.close_strategies),
        ):
            if not values:
                raise ValidationError(f"{name} must contain at least one value")

        validate_choice(self.tp_strategy, tuple(k.value for k in TakeProfitKind), "tpStrategy")

        for name in self.close_strategies:
            validate_strategy_name(name)

    def take_profit_policies(self) -> List[TakeProfitPolicy]:
        kind = TakeProfitKind(self.tp_strategy)

        if kind is TakeProfitKind.FIXED_PERCENT:
            return [TakeProfitPolicy(kind, tp_percent=p) for p in self.tp_percents]
        if kind is TakeProfitKind.FIXED_RR:
            return [TakeProfitPolicy(kind, risk_reward=rr) for rr in self.tp_risk_rewards]
        return [TakeProfitPolicy(kind)]

    def combinations(self) -> List[ParameterSet]:
        """Cartesian product of every dimension.

        Every grid point is kept. A lock at or past the cycle length leaves
        an empty entry window, so that set starts cycles but never trades.
        """
        param_sets = []

        for (entry_long, entry_short), range_, cycle_time, min_prob, lock, tp, close in itertools.product(
            self.entry_pairs,
            self.ranges,
            self.cycle_times,
            self.min_probabilities,
            self.lock_before_ends,
            self.take_profit_policies(),
            self.close_strategies,
        ):
            param_sets.append(
                ParameterSet(
                    range=range_,
                    cycle_time_minutes=cycle_time,
                    entry_long=entry_long,
                    entry_short=entry_short,
                    min_probability=min_prob,
                    lock_before_end_seconds=lock,
                    take_profit=tp,
                    close_strategy=close,
                )
            )

        return param_sets


def _as_list(value) -> list:
    return list(value) if isinstance(value, (list, tuple)) else [value]


@dataclass
class SweepResult:
    """Outcome of one parameter set."""

    params: ParameterSet
    stats: StatsSummary
    trades: List[Trade] = field(default_factory=list)
    error: Optional[str] = None
    execution_time_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self, include_trades: bool = False) -> dict:
        data = {
            "params": self.params.to_dict(),
            "stats": self.stats.to_dict(),
            "error": self.error,
        }
        if include_trades:
            data["trades"] = [t.to_dict() for t in self.trades]
        return data

    def to_row(self) -> dict:
        """Flat record for tables and CSV export."""
        tp = self.params.take_profit
        return {
            "entry_pair": self.params.entry_pair,
            "range": self.params.range,
            "cycle_time_minutes": self.params.cycle_time_minutes,
            "min_probability": self.params.min_probability,
            "lock_before_end_seconds": self.params.lock_before_end_seconds,
            "take_profit": tp.label,
            "close_strategy": self.params.close_strategy,
            "total_trades": self.stats.total_trades,
            "wins": self.stats.wins,
            "losses": self.stats.losses,
            "win_rate": self.stats.win_rate,
            "total_pnl": self.stats.total_pnl,
            "total_fees": self.stats.total_fees,
            "avg_pnl": self.stats.avg_pnl,
            "max_drawdown": self.stats.max_drawdown,
            "cycles_started": self.stats.cycles_started,
            "oracle_rejected": self.stats.oracle_rejected,
            "tp_count": self.stats.by_reason.get("tp", {}).get("count", 0),
            "sl_count": self.stats.by_reason.get("sl", {}).get("count", 0),
            "timeout_count": self.stats.by_reason.get("timeout", {}).get("count", 0),
            "max_hold_count": self.stats.by_reason.get("max_hold", {}).get("count", 0),
            "error": self.error,
        }


@dataclass
class SweepReport:
    """Ranked results of a sweep."""

    results: List[SweepResult]  # All combinations, best first, failures last
    top: List[SweepResult]
    bottom: List[SweepResult]
    sensitivity: Dict[str, List[dict]]
    failures: List[SweepResult]
    elapsed_seconds: float = 0.0

    @property
    def total_combinations(self) -> int:
        return len(self.results)

    def to_frame(self) -> pd.DataFrame:
        """One row per parameter set, in ranked order."""
        return pd.DataFrame([r.to_row() for r in self.results])


class SweepRunner:
    """Runs many parameter sets against one store.

    Example:
        >>> runner = SweepRunner(store, lambda r: ReplayOracle(caches[r]), pnl_model)
        >>> report = runner.run(SweepConfig.from_file("matrix.config.json").combinations())
        >>> report.top[0].stats.total_pnl
        1.8734
    """

    def __init__(
        self,
        store: CandleStore,
        oracle_for: Callable[[float], ProbabilityOracle],
        pnl_model: PnLModel,
        steps: int = 10,
        delta_multiplier: int = 2,
        ltma_multiplier: int = 15,
        warmup_minutes: int = DEFAULT_WARMUP_MINUTES,
        max_hold_ms: int = DEFAULT_MAX_HOLD_MS,
        max_workers: int = 1,
    ):
        """Initialize sweep runner.

        Args:
            store: Shared read-only candle store
            oracle_for: Returns the oracle for a band range; called once per
                distinct range
            pnl_model: Trade economics shared by every run
            steps: Oracle horizon in coarse steps
            delta_multiplier: Delta window multiplier
            ltma_multiplier: LTMA window multiplier
            warmup_minutes: Minutes skipped at the start of the data
            max_hold_ms: Horizon of the no_cycle strategy
            max_workers: Threads used to run combinations (1 = sequential)
        """
        self.store = store
        self.oracle_for = oracle_for
        self.pnl_model = pnl_model
        self.engine_settings = {
            "steps": steps,
            "delta_multiplier": delta_multiplier,
            "ltma_multiplier": ltma_multiplier,
            "warmup_minutes": warmup_minutes,
            "max_hold_ms": max_hold_ms,
        }
        self.max_workers = max(1, int(max_workers))
        self.logger = logging.getLogger(__name__)

        self._oracles: Dict[float, ProbabilityOracle] = {}
        self._oracle_lock = threading.Lock()

    def run(
        self,
        param_sets: Sequence[ParameterSet],
        top_n: int = 20,
        bottom_n: int = 10,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> SweepReport:
        """Run every parameter set.

        Args:
            param_sets: Combinations to simulate
            top_n: Number of best results to surface
            bottom_n: Number of worst results to surface
            progress_callback: Called with (done, total) after each set

        Returns:
            SweepReport with exactly len(param_sets) results

        Raises:
            UnknownCloseStrategyError: If any set names an unknown strategy
        """
        top_n = validate_limit(top_n)
        bottom_n = validate_limit(bottom_n)

        for params in param_sets:
            validate_strategy_name(params.close_strategy)

        total = len(param_sets)
        started = time.perf_counter()
        self.logger.info(
            f"Starting sweep: {total} combinations",
            extra={"combinations": total, "max_workers": self.max_workers},
        )

        results: List[Optional[SweepResult]] = [None] * total
        done = 0

        def _record(index: int, result: SweepResult) -> None:
            nonlocal done
            results[index] = result
            done += 1
            if progress_callback:
                progress_callback(done, total)

        if self.max_workers == 1:
            for i, params in enumerate(param_sets):
                _record(i, self._run_one(params))
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = [executor.submit(self._run_one, p) for p in param_sets]
                for i, future in enumerate(futures):
                    _record(i, future.result())

        elapsed = time.perf_counter() - started
        report = self._build_report(results, top_n, bottom_n, elapsed)

        self.logger.info(
            f"Sweep complete: {total} combinations in {elapsed:.1f}s, "
            f"{len(report.failures)} failed",
            extra={
                "combinations": total,
                "failures": len(report.failures),
                "execution_time_seconds": round(elapsed, 2),
            },
        )

        return report

    def _get_oracle(self, range_: float) -> ProbabilityOracle:
        with self._oracle_lock:
            oracle = self._oracles.get(range_)
            if oracle is None:
                oracle = self.oracle_for(range_)
                self._oracles[range_] = oracle
            return oracle

    def _run_one(self, params: ParameterSet) -> SweepResult:
        """Run one set; any failure becomes a recorded result."""
        try:
            engine = CycleEngine(
                self.store, self._get_oracle(params.range), self.pnl_model, **self.engine_settings
            )
            run = engine.run(params)
        except Exception as e:
            self.logger.error(
                f"Combination failed: {e}",
                extra={"params": params.to_dict(), "error": str(e)},
            )
            return SweepResult(params=params, stats=StatsSummary.empty(), error=str(e) or type(e).__name__)

        return SweepResult(
            params=params,
            stats=run.stats,
            trades=run.trades,
            execution_time_seconds=run.execution_time_seconds,
        )

    @staticmethod
    def _build_report(
        results: List[SweepResult], top_n: int, bottom_n: int, elapsed: float
    ) -> SweepReport:
        succeeded = [r for r in results if r.succeeded]
        failures = [r for r in results if not r.succeeded]

        # Stable: equal PnL keeps submission order
        ranked = sorted(succeeded, key=lambda r: r.stats.total_pnl, reverse=True)

        return SweepReport(
            results=ranked + failures,
            top=ranked[:top_n],
            bottom=list(reversed(ranked[-bottom_n:] if bottom_n else ranked)),
            sensitivity=sensitivity_analysis(succeeded),
            failures=failures,
            elapsed_seconds=elapsed,
        )


def sensitivity_analysis(results: Sequence[SweepResult]) -> Dict[str, List[dict]]:
    """Mean PnL and win rate grouped by each tested value of every dimension.

    Returns:
        {dimension: [{"value", "avg_pnl", "avg_win_rate", "count"}, ...]}
        with values in ascending order
    """
    if not results:
        return {}

    df = pd.DataFrame([r.to_row() for r in results])
    analysis: Dict[str, List[dict]] = {}

    for dimension in SENSITIVITY_DIMENSIONS:
        grouped = (
            df.groupby(dimension, sort=True)
            .agg(
                avg_pnl=("total_pnl", "mean"),
                avg_win_rate=("win_rate", "mean"),
                count=("total_pnl", "size"),
            )
            .reset_index()
        )
        analysis[dimension] = [
            {
                "value": _plain(row[dimension]),
                "avg_pnl": float(row["avg_pnl"]),
                "avg_win_rate": float(row["avg_win_rate"]),
                "count": int(row["count"]),
            }
            for _, row in grouped.iterrows()
        ]

    return analysis


def _plain(value):
    """numpy scalar -> Python scalar for JSON output."""
    return value.item() if hasattr(value, "item") else value
