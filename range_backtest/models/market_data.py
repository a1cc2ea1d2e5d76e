"""Market data models.

Candles at both resolutions share one structure; the metrics sample is the
pair of oracle input features derived from the coarse series.
"""

from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass(frozen=True)
class Candle:
    """Price candle as stored in the per-day JSON files.

    Fine (1s) and coarse (1m) series use the same shape. Open and volume are
    not part of the files and are not needed by the simulation.
    """

    timestamp: int  # Unix timestamp in milliseconds
    close: float
    high: float
    low: float

    @property
    def mid(self) -> float:
        """Mid price of the candle range, used for LTMA and delta."""
        return (self.high + self.low) / 2

    @property
    def datetime(self) -> datetime:
        """Convert timestamp to an aware UTC datetime (display only)."""
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)

    @classmethod
    def from_dict(cls, data: dict) -> "Candle":
        """Create from a candle file record.

        Args:
            data: Mapping with timestamp, close, high and low

        Returns:
            Candle instance

        Raises:
            KeyError, TypeError, ValueError: If a field is missing or not numeric

        Example:
            >>> Candle.from_dict({"timestamp": 1757030400000, "close": 4300.5,
            ...                   "high": 4301.0, "low": 4299.8}).mid
            4300.4
        """
        return cls(
            timestamp=int(data["timestamp"]),
            close=float(data["close"]),
            high=float(data["high"]),
            low=float(data["low"]),
        )

    def to_dict(self) -> dict:
        """Convert to the candle file record shape."""
        return {
            "timestamp": self.timestamp,
            "close": self.close,
            "high": self.high,
            "low": self.low,
        }


@dataclass(frozen=True)
class MetricsSample:
    """Oracle input features at one timestamp."""

    delta: float  # Mean relative step volatility over the delta window
    ltma: float  # Long-term moving average of mid prices

    def to_dict(self) -> dict:
        return {"delta": self.delta, "ltma": self.ltma}
