"""PnL Model - Take-profit placement, slippage, fees and profit/loss.

Position size is margin times leverage. Only stop-loss fills slip (they are
market orders going against the position); take-profit and timeout closes
fill at the reported price. Taker fees are charged on both legs.
"""

from dataclasses import replace
from typing import Sequence, Tuple

from ..exceptions import SimulationError
from ..models.parameters import TakeProfitKind, TakeProfitPolicy
from ..models.trades import CloseReason, Trade, TradeSide
from ..validation import validate_positive_number

# (max notional in USD, slippage fraction); the last tier has no ceiling
DEFAULT_SLIPPAGE_TIERS: Tuple[Tuple[float, float], ...] = (
    (10_000.0, 0.0001),
    (50_000.0, 0.0002),
    (100_000.0, 0.0003),
    (float("inf"), 0.0005),
)


class PnLModel:
    """Leverage-aware trade economics.

    Example:
        >>> model = PnLModel(position_margin=0.5, leverage=3, taker_fee=0.00045)
        >>> model.position_size
        1.5
        >>> model.take_profit(TradeSide.LONG, 99.4, 99.0, 101.0,
        ...                   TakeProfitPolicy("fixed_percent", tp_percent=0.35))
        99.7479
    """

    def __init__(
        self,
        position_margin: float,
        leverage: float,
        taker_fee: float,
        slippage_tiers: Sequence[Tuple[float, float]] = DEFAULT_SLIPPAGE_TIERS,
    ):
        """Initialize PnL model.

        Args:
            position_margin: Collateral in base currency units (e.g. 0.5 ETH)
            leverage: Leverage multiplier
            taker_fee: Taker fee as a fraction (0.00045 = 0.045%)
            slippage_tiers: Ascending (max notional, fraction) pairs
        """
        self.position_margin = validate_positive_number(position_margin, "positionSize")
        self.leverage = validate_positive_number(leverage, "leverage")
        self.taker_fee = float(taker_fee)
        self.slippage_tiers = tuple(slippage_tiers)

    @property
    def position_size(self) -> float:
        """Position size in base units (margin * leverage)."""
        return self.position_margin * self.leverage

    @staticmethod
    def stop_loss(side: TradeSide, lower: float, upper: float) -> float:
        """Stop-loss sits on the band boundary behind the entry."""
        return lower if side is TradeSide.LONG else upper

    @staticmethod
    def take_profit(
        side: TradeSide,
        entry_price: float,
        lower: float,
        upper: float,
        policy: TakeProfitPolicy,
    ) -> float:
        """Take-profit level for a new position.

        Args:
            side: Position side
            entry_price: Entry fill price
            lower: Frozen lower band boundary
            upper: Frozen upper band boundary
            policy: Take-profit rule

        Returns:
            Take-profit price
        """
        sign = side.sign

        if policy.kind is TakeProfitKind.FIXED_PERCENT:
            return entry_price * (1 + sign * policy.tp_percent / 100)

        if policy.kind is TakeProfitKind.FIXED_RR:
            stop = PnLModel.stop_loss(side, lower, upper)
            risk = abs(entry_price - stop)
            return entry_price + sign * risk * policy.risk_reward

        # Midpoint between entry and the far boundary
        target = upper if side is TradeSide.LONG else lower
        return entry_price + (target - entry_price) / 2

    def slippage_rate(self, notional: float) -> float:
        """Slippage fraction for a position of ``notional`` USD."""
        for ceiling, rate in self.slippage_tiers:
            if notional <= ceiling:
                return rate
        return self.slippage_tiers[-1][1]

    def finalize(self, trade: Trade) -> Trade:
        """Fill in fees, slippage and PnL of a closed trade.

        Args:
            trade: Trade carrying a close result

        Returns:
            New Trade with economics

        Raises:
            SimulationError: If the trade has not been closed
        """
        if not trade.closed:
            raise SimulationError(
                "Cannot compute PnL of an open trade", params={"entry_timestamp": trade.entry_timestamp}
            )

        size = self.position_size
        sign = trade.side.sign

        slippage = 0.0
        fill_price = trade.close_price
        if trade.close_reason is CloseReason.STOP_LOSS:
            slippage = self.slippage_rate(trade.entry_price * size)
            # Adverse: long stops fill lower, short stops fill higher
            fill_price = trade.close_price * (1 - sign * slippage)

        gross_pnl = sign * (fill_price - trade.entry_price) * size
        entry_fee = trade.entry_price * size * self.taker_fee
        exit_fee = fill_price * size * self.taker_fee
        fees = entry_fee + exit_fee

        return replace(
            trade,
            fill_price=fill_price,
            slippage=slippage,
            position_size=size,
            gross_pnl=gross_pnl,
            entry_fee=entry_fee,
            exit_fee=exit_fee,
            fees=fees,
            net_pnl=gross_pnl - fees,
        )
