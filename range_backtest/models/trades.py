"""Trade models.

A Trade is created when an entry signal fires inside an active cycle. The
close strategy decides how it ends and the PnL model fills in economics;
each step returns a new frozen instance.
"""

from dataclasses import dataclass, asdict, replace
from enum import Enum
from typing import Optional


class TradeSide(str, Enum):
    """Position direction."""
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        """+1 for long, -1 for short (profit direction)."""
        return 1 if self is TradeSide.LONG else -1


class CloseReason(str, Enum):
    """Why a position was closed."""
    STOP_LOSS = "sl"
    TAKE_PROFIT = "tp"
    TIMEOUT = "timeout"
    MAX_HOLD = "max_hold"


class HitDirection(str, Enum):
    """Which side of a price level a scan is looking for."""
    ABOVE = "above"
    BELOW = "below"


@dataclass(frozen=True)
class CloseResult:
    """Outcome of a close strategy for one trade."""

    close_timestamp: int
    close_price: float
    close_reason: CloseReason


@dataclass(frozen=True)
class Trade:
    """A single position opened inside a cycle."""

    # Entry
    side: TradeSide
    entry_timestamp: int
    entry_price: float
    stop_loss: float
    take_profit: float

    # Cycle context
    cycle_start: int
    cycle_end: int
    lower_bound: float
    upper_bound: float
    position: float  # Normalized location inside the band at entry
    probability: float

    # Close
    close_timestamp: Optional[int] = None
    close_price: Optional[float] = None
    close_reason: Optional[CloseReason] = None

    # Economics (filled by PnLModel)
    fill_price: Optional[float] = None  # close_price after slippage
    slippage: float = 0.0
    position_size: float = 0.0
    gross_pnl: float = 0.0
    entry_fee: float = 0.0
    exit_fee: float = 0.0
    fees: float = 0.0
    net_pnl: float = 0.0

    @property
    def closed(self) -> bool:
        return self.close_reason is not None

    @property
    def won(self) -> bool:
        return self.net_pnl > 0

    @property
    def duration_ms(self) -> Optional[int]:
        if self.close_timestamp is None:
            return None
        return self.close_timestamp - self.entry_timestamp

    def with_close(self, result: CloseResult) -> "Trade":
        """Return a copy carrying the close strategy's outcome."""
        return replace(
            self,
            close_timestamp=result.close_timestamp,
            close_price=result.close_price,
            close_reason=result.close_reason,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["side"] = self.side.value
        data["close_reason"] = self.close_reason.value if self.close_reason else None
        return data
