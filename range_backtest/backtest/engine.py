"""Cycle Engine - Minute-by-minute replay of the range strategy.

The engine walks the run window one minute at a time through four states:

1. Idle: ask the oracle whether price will stay inside a band around the
   current price. Below ``min_probability`` the tick is rejected.
2. Cycle active: the band is frozen for ``cycle_time`` minutes. The first
   tick before the lock time whose normalized position reaches an entry
   threshold opens a position; a price outside the band breaks the cycle.
3. Position open: stop-loss sits on the band edge, take-profit comes from
   the parameter set's policy, and the close strategy resolves the exit.
4. Closed: the next idle tick is the cycle end.

Runs are synchronous and deterministic for a given store, oracle and
parameter set.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from ..models.parameters import ParameterSet
from ..models.probability import OracleRequest
from ..models.trades import CloseReason, Trade, TradeSide
from .candle_store import CandleStore
from .oracle import ProbabilityOracle
from .pnl import PnLModel
from .strategies import DEFAULT_MAX_HOLD_MS, CloseStrategy, create_strategy

TICK_MS = 60 * 1000
DEFAULT_WARMUP_MINUTES = 200


@dataclass(frozen=True)
class Cycle:
    """An active trading window with bounds frozen at its start."""

    cycle_start: int
    cycle_end: int
    lock_time: int
    lower: float
    upper: float
    probability: float


@dataclass
class RunCounters:
    """Event counts of one engine run."""

    oracle_checks: int = 0
    oracle_rejected: int = 0
    cycles_started: int = 0
    cycles_broken: int = 0
    position_checks: int = 0
    long_signals: int = 0
    short_signals: int = 0
    trades_opened: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StatsSummary:
    """Aggregate performance of one parameter set."""

    # Activity
    cycles_started: int = 0
    oracle_checks: int = 0
    oracle_rejected: int = 0

    # Trade stats
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0  # Percent
    long_trades: int = 0
    short_trades: int = 0

    # P&L metrics
    total_pnl: float = 0.0
    total_fees: float = 0.0
    avg_pnl: float = 0.0
    max_win: float = 0.0
    max_loss: float = 0.0
    profit_factor: float = 0.0

    # Risk metrics
    max_drawdown: float = 0.0

    # Execution stats
    avg_trade_duration_minutes: float = 0.0
    by_reason: Dict[str, Dict[str, float]] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "StatsSummary":
        return cls()

    @classmethod
    def from_trades(
        cls, trades: List[Trade], counters: Optional[RunCounters] = None
    ) -> "StatsSummary":
        """Calculate summary metrics from closed trades.

        Args:
            trades: Finalized trades of one run
            counters: Event counts of the same run

        Returns:
            StatsSummary
        """
        counters = counters or RunCounters()
        summary = cls(
            cycles_started=counters.cycles_started,
            oracle_checks=counters.oracle_checks,
            oracle_rejected=counters.oracle_rejected,
        )

        if not trades:
            return summary

        pnls = [t.net_pnl for t in trades]
        winning = [p for p in pnls if p > 0]
        losing = [p for p in pnls if p <= 0]

        summary.total_trades = len(trades)
        summary.wins = len(winning)
        summary.losses = len(losing)
        summary.win_rate = len(winning) / len(trades) * 100
        summary.long_trades = sum(1 for t in trades if t.side is TradeSide.LONG)
        summary.short_trades = summary.total_trades - summary.long_trades

        summary.total_pnl = sum(pnls)
        summary.total_fees = sum(t.fees for t in trades)
        summary.avg_pnl = summary.total_pnl / len(trades)
        summary.max_win = max(pnls)
        summary.max_loss = min(pnls)

        total_losses = abs(sum(losing))
        summary.profit_factor = (sum(winning) / total_losses) if total_losses > 0 else 0.0

        # Drawdown of the cumulative PnL curve, measured from a flat start
        cumulative = pd.Series(pnls).cumsum()
        running_max = cumulative.cummax().clip(lower=0.0)
        summary.max_drawdown = float((running_max - cumulative).max())

        durations = [t.duration_ms for t in trades if t.duration_ms is not None]
        if durations:
            summary.avg_trade_duration_minutes = sum(durations) / len(durations) / TICK_MS

        for reason in CloseReason:
            reason_pnls = [t.net_pnl for t in trades if t.close_reason is reason]
            if reason_pnls:
                summary.by_reason[reason.value] = {
                    "count": len(reason_pnls),
                    "pnl": sum(reason_pnls),
                }

        return summary

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["by_reason"] = {k: dict(v) for k, v in self.by_reason.items()}
        return data


@dataclass
class EngineRun:
    """Output of one engine run."""

    params: ParameterSet
    trades: List[Trade]
    counters: RunCounters
    stats: StatsSummary
    execution_time_seconds: float = 0.0

    def to_dict(self, include_trades: bool = True) -> dict:
        data = {
            "params": self.params.to_dict(),
            "counters": self.counters.to_dict(),
            "stats": self.stats.to_dict(),
            "execution_time_seconds": self.execution_time_seconds,
        }
        if include_trades:
            data["trades"] = [t.to_dict() for t in self.trades]
        return data


class CycleEngine:
    """Replays the range strategy over a candle store for one parameter set.

    The store and oracle are only read, so one engine instance per thread
    can share them.

    Example:
        >>> engine = CycleEngine(store, ReplayOracle(cache), PnLModel(0.5, 3, 0.00045))
        >>> run = engine.run(ParameterSet(range=0.007, cycle_time_minutes=10,
        ...                               entry_long=0.25, entry_short=0.75,
        ...                               min_probability=0.8,
        ...                               lock_before_end_seconds=60))
        >>> print(f"PnL: {run.stats.total_pnl:.4f}, win rate: {run.stats.win_rate:.1f}%")
    """

    def __init__(
        self,
        store: CandleStore,
        oracle: ProbabilityOracle,
        pnl_model: PnLModel,
        steps: int = 10,
        delta_multiplier: int = 2,
        ltma_multiplier: int = 15,
        warmup_minutes: int = DEFAULT_WARMUP_MINUTES,
        max_hold_ms: int = DEFAULT_MAX_HOLD_MS,
    ):
        """Initialize cycle engine.

        Args:
            store: Shared read-only candle store
            oracle: Probability source for the parameter set's range
            pnl_model: Take-profit placement and trade economics
            steps: Oracle horizon in coarse steps
            delta_multiplier: Delta window multiplier (window = steps * multiplier)
            ltma_multiplier: LTMA window multiplier (window = steps * multiplier)
            warmup_minutes: Minutes skipped at the start of the data
            max_hold_ms: Horizon of strategies that ignore the cycle end
        """
        self.store = store
        self.oracle = oracle
        self.pnl_model = pnl_model
        self.steps = steps
        self.delta_multiplier = delta_multiplier
        self.ltma_multiplier = ltma_multiplier
        self.warmup_minutes = warmup_minutes
        self.max_hold_ms = max_hold_ms
        self.logger = logging.getLogger(__name__)

    def run(self, params: ParameterSet) -> EngineRun:
        """Run one parameter set over the whole store.

        Args:
            params: Parameter set to simulate

        Returns:
            EngineRun with trades, counters and summary

        Raises:
            UnknownCloseStrategyError: If the close strategy is not registered
        """
        strategy = create_strategy(params.close_strategy, self.max_hold_ms)
        started = time.perf_counter()

        counters = RunCounters()
        trades: List[Trade] = []

        if self.store.coarse_start is None or self.store.fine_start is None:
            self.logger.warning("Candle store is empty, nothing to simulate")
            return EngineRun(params, trades, counters, StatsSummary.from_trades(trades, counters))

        now = self.store.coarse_start + self.warmup_minutes * TICK_MS
        run_end = self.store.coarse_end

        self.logger.debug(f"Simulating {params.label}")

        while now < run_end:
            cycle = self._evaluate_tick(now, params, counters)
            if cycle is None:
                now += TICK_MS
                continue

            trade = self._seek_entry(cycle, params, run_end, counters, strategy)
            if trade is not None:
                trades.append(trade)

            now = cycle.cycle_end

        stats = StatsSummary.from_trades(trades, counters)
        elapsed = time.perf_counter() - started

        self.logger.info(
            f"Run complete: {stats.total_trades} trades, "
            f"Win Rate: {stats.win_rate:.1f}%, PnL: {stats.total_pnl:.4f}",
            extra={
                "params": params.label,
                "cycles": counters.cycles_started,
                "oracle_checks": counters.oracle_checks,
                "oracle_rejected": counters.oracle_rejected,
                "execution_time_seconds": round(elapsed, 3),
            },
        )

        return EngineRun(params, trades, counters, stats, execution_time_seconds=elapsed)

    def _evaluate_tick(
        self, now: int, params: ParameterSet, counters: RunCounters
    ) -> Optional[Cycle]:
        """Idle state: query the oracle and start a cycle if it agrees."""
        price = self.store.price_at(now)
        metrics = self.store.metrics_at(
            now, self.steps, self.delta_multiplier, self.ltma_multiplier
        )
        if price is None or price <= 0 or metrics is None:
            return None

        lower = price * (1 - params.range)
        upper = price * (1 + params.range)

        estimate = self.oracle.estimate(
            OracleRequest(
                timestamp=now,
                price=price,
                delta=metrics.delta,
                ltma=metrics.ltma,
                steps=self.steps,
                range=params.range,
                lower=lower,
                upper=upper,
            )
        )
        if estimate is None:
            return None

        counters.oracle_checks += 1
        if estimate.probability < params.min_probability:
            counters.oracle_rejected += 1
            return None

        counters.cycles_started += 1
        cycle_end = now + params.cycle_ms

        return Cycle(
            cycle_start=now,
            cycle_end=cycle_end,
            lock_time=cycle_end - params.lock_ms,
            lower=lower,
            upper=upper,
            probability=estimate.probability,
        )

    def _seek_entry(
        self,
        cycle: Cycle,
        params: ParameterSet,
        run_end: int,
        counters: RunCounters,
        strategy: CloseStrategy,
    ) -> Optional[Trade]:
        """Cycle active state: open at the first tick reaching an entry threshold."""
        width = cycle.upper - cycle.lower
        t = cycle.cycle_start

        while t < cycle.lock_time and t < run_end:
            price = self.store.price_at(t)
            if price is None or price <= 0:
                t += TICK_MS
                continue

            if price < cycle.lower or price > cycle.upper:
                counters.cycles_broken += 1
                return None

            position = (price - cycle.lower) / width
            counters.position_checks += 1

            side = None
            if position <= params.entry_long:
                side = TradeSide.LONG
                counters.long_signals += 1
            elif position >= params.entry_short:
                side = TradeSide.SHORT
                counters.short_signals += 1

            if side is not None:
                counters.trades_opened += 1
                return self._open_and_close(cycle, params, side, t, price, position, strategy)

            t += TICK_MS

        return None

    def _open_and_close(
        self,
        cycle: Cycle,
        params: ParameterSet,
        side: TradeSide,
        timestamp: int,
        price: float,
        position: float,
        strategy: CloseStrategy,
    ) -> Trade:
        """Position open state: place levels, resolve the exit, price it."""
        trade = Trade(
            side=side,
            entry_timestamp=timestamp,
            entry_price=price,
            stop_loss=self.pnl_model.stop_loss(side, cycle.lower, cycle.upper),
            take_profit=self.pnl_model.take_profit(
                side, price, cycle.lower, cycle.upper, params.take_profit
            ),
            cycle_start=cycle.cycle_start,
            cycle_end=cycle.cycle_end,
            lower_bound=cycle.lower,
            upper_bound=cycle.upper,
            position=position,
            probability=cycle.probability,
        )

        closed = trade.with_close(strategy.check_close(trade, self.store))
        return self.pnl_model.finalize(closed)
