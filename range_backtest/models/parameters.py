"""Parameter set models.

One ParameterSet is one sweep iteration: everything that varies between
engine runs. Settings shared by every run (fees, sizing, metric windows)
live in BacktestConfig.
"""

from dataclasses import dataclass, field
from enum import Enum

from ..validation import (
    validate_fraction,
    validate_non_negative_int,
    validate_positive_number,
    validate_range,
)


class TakeProfitKind(str, Enum):
    """Take-profit placement rule."""
    MIDPOINT = "midpoint"
    FIXED_PERCENT = "fixed_percent"
    FIXED_RR = "fixed_rr"


@dataclass(frozen=True)
class TakeProfitPolicy:
    """Take-profit rule plus the number it needs.

    ``tp_percent`` is only read by FIXED_PERCENT and ``risk_reward`` only by
    FIXED_RR.
    """

    kind: TakeProfitKind = TakeProfitKind.MIDPOINT
    tp_percent: float = 0.5
    risk_reward: float = 2.0

    def __post_init__(self):
        # Accept plain strings from config files
        object.__setattr__(self, "kind", TakeProfitKind(self.kind))
        validate_positive_number(self.tp_percent, "tpPercent")
        validate_positive_number(self.risk_reward, "tpRiskReward")

    @property
    def label(self) -> str:
        if self.kind is TakeProfitKind.FIXED_PERCENT:
            return f"{self.kind.value}:{self.tp_percent}"
        if self.kind is TakeProfitKind.FIXED_RR:
            return f"{self.kind.value}:{self.risk_reward}"
        return self.kind.value

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "tp_percent": self.tp_percent,
            "risk_reward": self.risk_reward,
        }


@dataclass(frozen=True)
class ParameterSet:
    """Configuration of a single backtest run."""

    range: float  # Band half-width as a fraction (0.005 = 0.5%)
    cycle_time_minutes: int
    entry_long: float  # Open long when position <= entry_long
    entry_short: float  # Open short when position >= entry_short
    min_probability: float
    lock_before_end_seconds: int
    take_profit: TakeProfitPolicy = field(default_factory=TakeProfitPolicy)
    close_strategy: str = "cycle_timeout"

    def __post_init__(self):
        validate_range(self.range, "range")
        validate_fraction(self.entry_long, "entryLong")
        validate_fraction(self.entry_short, "entryShort")
        validate_fraction(self.min_probability, "minProbability")
        cycle_minutes = validate_non_negative_int(self.cycle_time_minutes, "cycleTime")
        validate_non_negative_int(self.lock_before_end_seconds, "lockBeforeEnd")
        validate_positive_number(cycle_minutes, "cycleTime")

    @property
    def cycle_ms(self) -> int:
        return int(self.cycle_time_minutes) * 60 * 1000

    @property
    def lock_ms(self) -> int:
        return int(self.lock_before_end_seconds) * 1000

    @property
    def entry_pair(self) -> str:
        return f"{self.entry_long}/{self.entry_short}"

    @property
    def label(self) -> str:
        """Compact human readable identifier for logs and tables."""
        return (
            f"range={self.range} cycle={self.cycle_time_minutes}m "
            f"entry={self.entry_pair} prob>={self.min_probability} "
            f"lock={self.lock_before_end_seconds}s tp={self.take_profit.label} "
            f"close={self.close_strategy}"
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "range": self.range,
            "cycle_time_minutes": self.cycle_time_minutes,
            "entry_long": self.entry_long,
            "entry_short": self.entry_short,
            "min_probability": self.min_probability,
            "lock_before_end_seconds": self.lock_before_end_seconds,
            "take_profit": self.take_profit.to_dict(),
            "close_strategy": self.close_strategy,
        }
