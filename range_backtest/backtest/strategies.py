"""Close Strategies - Rules that decide how an open position terminates.

Each strategy scans the fine candle series after entry for stop-loss and
take-profit hits and falls back to a forced close. Strategies are looked up
by name once per parameter set, before any simulation work starts.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple, Type

from ..exceptions import UnknownCloseStrategyError
from ..models.trades import CloseReason, CloseResult, HitDirection, Trade, TradeSide
from .candle_store import CandleStore

DEFAULT_MAX_HOLD_MS = 24 * 60 * 60 * 1000


def _hit_directions(side: TradeSide) -> Tuple[HitDirection, HitDirection]:
    """(stop-loss direction, take-profit direction) for a position side."""
    if side is TradeSide.LONG:
        return HitDirection.BELOW, HitDirection.ABOVE
    return HitDirection.ABOVE, HitDirection.BELOW


def _earliest(
    sl_hit: Optional[Tuple[int, float]],
    tp_hit: Optional[Tuple[int, float]],
) -> Optional[CloseResult]:
    """Pick the earlier of two hits; stop-loss wins a same-timestamp tie."""
    if sl_hit and (not tp_hit or sl_hit[0] <= tp_hit[0]):
        return CloseResult(sl_hit[0], sl_hit[1], CloseReason.STOP_LOSS)
    if tp_hit:
        return CloseResult(tp_hit[0], tp_hit[1], CloseReason.TAKE_PROFIT)
    return None


def _forced_close(
    trade: Trade, store: CandleStore, timestamp: int, reason: CloseReason
) -> CloseResult:
    price = store.price_at(timestamp)
    if price is None:
        price = trade.entry_price
    return CloseResult(timestamp, price, reason)


class CloseStrategy(ABC):
    """Interface for position close rules."""

    name: str = ""
    description: str = ""

    @abstractmethod
    def check_close(self, trade: Trade, store: CandleStore) -> CloseResult:
        """Determine when, at what price and why ``trade`` closes."""


class CycleTimeoutStrategy(CloseStrategy):
    """SL / TP / cycle timeout.

    Scans [entry, cycle end] for both levels. Whichever is hit first closes
    the trade; otherwise it is closed at the cycle end price.
    """

    name = "cycle_timeout"
    description = "SL / TP / Cycle Timeout"

    def check_close(self, trade: Trade, store: CandleStore) -> CloseResult:
        sl_direction, tp_direction = _hit_directions(trade.side)
        start, end = trade.entry_timestamp, trade.cycle_end

        sl_hit = store.find_first_hit(start, end, trade.stop_loss, sl_direction)
        tp_hit = store.find_first_hit(start, end, trade.take_profit, tp_direction)

        result = _earliest(sl_hit, tp_hit)
        if result is not None:
            return result

        return _forced_close(trade, store, end, CloseReason.TIMEOUT)


class NoStopLossStrategy(CloseStrategy):
    """TP / cycle timeout, stop-loss ignored."""

    name = "no_sl"
    description = "TP / Cycle Timeout (no SL)"

    def check_close(self, trade: Trade, store: CandleStore) -> CloseResult:
        _, tp_direction = _hit_directions(trade.side)

        tp_hit = store.find_first_hit(
            trade.entry_timestamp, trade.cycle_end, trade.take_profit, tp_direction
        )
        if tp_hit:
            return CloseResult(tp_hit[0], tp_hit[1], CloseReason.TAKE_PROFIT)

        return _forced_close(trade, store, trade.cycle_end, CloseReason.TIMEOUT)


class NoCycleStrategy(CloseStrategy):
    """SL / TP only, cycle end ignored.

    The position is held until a level is hit, up to ``max_hold_ms`` after
    entry, where it is force-closed.
    """

    name = "no_cycle"
    description = "SL / TP only (no cycle timeout)"

    def __init__(self, max_hold_ms: int = DEFAULT_MAX_HOLD_MS):
        self.max_hold_ms = int(max_hold_ms)

    def check_close(self, trade: Trade, store: CandleStore) -> CloseResult:
        sl_direction, tp_direction = _hit_directions(trade.side)
        start = trade.entry_timestamp
        horizon = start + self.max_hold_ms

        sl_hit = store.find_first_hit(start, horizon, trade.stop_loss, sl_direction)
        tp_hit = store.find_first_hit(start, horizon, trade.take_profit, tp_direction)

        result = _earliest(sl_hit, tp_hit)
        if result is not None:
            return result

        return _forced_close(trade, store, horizon, CloseReason.MAX_HOLD)


STRATEGIES: Dict[str, Type[CloseStrategy]] = {
    CycleTimeoutStrategy.name: CycleTimeoutStrategy,
    NoStopLossStrategy.name: NoStopLossStrategy,
    NoCycleStrategy.name: NoCycleStrategy,
}


def available_strategies() -> Tuple[str, ...]:
    return tuple(STRATEGIES)


def validate_strategy_name(name: str) -> str:
    """Raise UnknownCloseStrategyError unless ``name`` is registered."""
    if name not in STRATEGIES:
        raise UnknownCloseStrategyError(name, available_strategies())
    return name


def create_strategy(name: str, max_hold_ms: int = DEFAULT_MAX_HOLD_MS) -> CloseStrategy:
    """Instantiate a close strategy by name.

    Args:
        name: Registered strategy name (cycle_timeout, no_sl, no_cycle)
        max_hold_ms: Safety horizon for strategies that ignore the cycle end

    Raises:
        UnknownCloseStrategyError: If the name is not registered
    """
    strategy_class = STRATEGIES[validate_strategy_name(name)]

    if strategy_class is NoCycleStrategy:
        return NoCycleStrategy(max_hold_ms=max_hold_ms)

    return strategy_class()
