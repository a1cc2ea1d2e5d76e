"""Candle Store - Immutable, time-indexed price series for simulation.

Holds the fine (1s) and coarse (1m) candle series as read-only numpy arrays
and answers the three questions the engine asks: the price at a moment, the
oracle features at a moment, and when a price level is first crossed.
"""

import logging
from typing import Iterable, List, Optional, Tuple

import numpy as np

from ..models.market_data import Candle, MetricsSample
from ..models.trades import HitDirection


def parse_candle_records(records: Iterable[dict]) -> Tuple[List[Candle], int]:
    """Convert raw file records to candles.

    Records with a null or missing timestamp, or with non-numeric price
    fields, are dropped.

    Returns:
        (candles, number of dropped records)
    """
    candles = []
    dropped = 0

    for record in records:
        if not isinstance(record, dict) or record.get("timestamp") is None:
            dropped += 1
            continue
        try:
            candles.append(Candle.from_dict(record))
        except (KeyError, TypeError, ValueError):
            dropped += 1

    return candles, dropped


class _Series:
    """Sorted, de-duplicated columns of one candle resolution."""

    def __init__(self, candles: Iterable[Candle]):
        # Later records win on duplicate timestamps
        unique = {c.timestamp: c for c in candles if c.timestamp is not None}
        ordered = sorted(unique.values(), key=lambda c: c.timestamp)

        self.timestamps = np.array([c.timestamp for c in ordered], dtype=np.int64)
        self.close = np.array([c.close for c in ordered], dtype=np.float64)
        self.high = np.array([c.high for c in ordered], dtype=np.float64)
        self.low = np.array([c.low for c in ordered], dtype=np.float64)

        for column in (self.timestamps, self.close, self.high, self.low):
            column.flags.writeable = False

    def __len__(self) -> int:
        return len(self.timestamps)

    def candle(self, index: int) -> Candle:
        return Candle(
            timestamp=int(self.timestamps[index]),
            close=float(self.close[index]),
            high=float(self.high[index]),
            low=float(self.low[index]),
        )

    def bounds(self, start_ts: int, end_ts: int) -> Tuple[int, int]:
        """Index slice covering the closed interval [start_ts, end_ts]."""
        lo = int(np.searchsorted(self.timestamps, start_ts, side="left"))
        hi = int(np.searchsorted(self.timestamps, end_ts, side="right"))
        return lo, max(lo, hi)


class CandleStore:
    """Read-only candle storage with nearest-timestamp lookups.

    A single instance is shared by every engine run of a sweep. Nothing
    mutates it after construction, so runs on worker threads need no
    locking.

    Example:
        >>> store = CandleStore(fine_candles, coarse_candles)
        >>> store.price_at(1757030460000)
        4301.2
        >>> store.metrics_at(1757030460000, steps=10,
        ...                  delta_multiplier=2, ltma_multiplier=15)
        MetricsSample(delta=0.00031, ltma=4298.7)
    """

    def __init__(self, fine: Iterable[Candle], coarse: Iterable[Candle]):
        """Build the store.

        Args:
            fine: Fine-grained (1s) candles, any order, duplicates allowed
            coarse: Coarse-grained (1m) candles, any order, duplicates allowed
        """
        self.logger = logging.getLogger(__name__)
        self._fine = _Series(fine)
        self._coarse = _Series(coarse)

        self.logger.debug(
            f"Candle store ready: {len(self._fine):,} fine, {len(self._coarse):,} coarse"
        )

    @classmethod
    def from_records(cls, fine: Iterable[dict], coarse: Iterable[dict]) -> "CandleStore":
        """Build from raw file records, discarding malformed ones.

        Records without a timestamp or with non-numeric prices are skipped.
        """
        return cls(parse_candle_records(fine)[0], parse_candle_records(coarse)[0])

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def fine_count(self) -> int:
        return len(self._fine)

    @property
    def coarse_count(self) -> int:
        return len(self._coarse)

    @property
    def is_empty(self) -> bool:
        return len(self._fine) == 0 or len(self._coarse) == 0

    @property
    def coarse_start(self) -> Optional[int]:
        return int(self._coarse.timestamps[0]) if len(self._coarse) else None

    @property
    def coarse_end(self) -> Optional[int]:
        return int(self._coarse.timestamps[-1]) if len(self._coarse) else None

    @property
    def fine_start(self) -> Optional[int]:
        return int(self._fine.timestamps[0]) if len(self._fine) else None

    @property
    def fine_end(self) -> Optional[int]:
        return int(self._fine.timestamps[-1]) if len(self._fine) else None

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def price_at(self, timestamp: int) -> Optional[float]:
        """Close of the fine candle nearest in time to ``timestamp``.

        Between two samples the closer one wins; on an exact distance tie
        the earlier sample wins.

        Returns:
            Close price, or None if the fine series is empty
        """
        timestamps = self._fine.timestamps
        count = len(timestamps)
        if count == 0:
            return None

        index = int(np.searchsorted(timestamps, timestamp, side="left"))
        if index >= count:
            index = count - 1

        if index > 0:
            before = abs(int(timestamps[index - 1]) - timestamp)
            after = abs(int(timestamps[index]) - timestamp)
            if before <= after:
                index -= 1

        return float(self._fine.close[index])

    def metrics_at(
        self,
        timestamp: int,
        steps: int,
        delta_multiplier: int,
        ltma_multiplier: int,
    ) -> Optional[MetricsSample]:
        """Compute delta and LTMA from coarse candles strictly before ``timestamp``.

        Args:
            timestamp: Evaluation time (ms)
            steps: Oracle horizon in coarse steps
            delta_multiplier: Delta window = steps * delta_multiplier changes
            ltma_multiplier: LTMA window = steps * ltma_multiplier samples

        Returns:
            MetricsSample, or None when fewer than steps * ltma_multiplier
            coarse samples precede ``timestamp`` (the caller skips the tick)
        """
        window = steps * ltma_multiplier
        delta_window = steps * delta_multiplier
        if window <= 0:
            return None

        index = int(np.searchsorted(self._coarse.timestamps, timestamp, side="left"))
        if index < window:
            return None

        start = index - window
        mids = (self._coarse.high[start:index] + self._coarse.low[start:index]) / 2
        ltma = float(mids.mean())

        # delta_window + 1 prices give delta_window relative changes
        recent = mids[max(0, len(mids) - delta_window - 1):]
        if len(recent) > 1:
            changes = np.abs(np.diff(recent) / recent[:-1])
            delta = float(changes.mean())
        else:
            delta = 0.0

        return MetricsSample(delta=delta, ltma=ltma)

    def find_first_hit(
        self,
        start_ts: int,
        end_ts: int,
        level: float,
        direction: HitDirection,
    ) -> Optional[Tuple[int, float]]:
        """First fine candle in [start_ts, end_ts] that reaches ``level``.

        ABOVE matches on high >= level, BELOW on low <= level.

        Returns:
            (timestamp, level) of the first hit, or None
        """
        lo, hi = self._fine.bounds(start_ts, end_ts)
        if lo >= hi:
            return None

        if HitDirection(direction) is HitDirection.ABOVE:
            crossed = self._fine.high[lo:hi] >= level
        else:
            crossed = self._fine.low[lo:hi] <= level

        hits = np.flatnonzero(crossed)
        if len(hits) == 0:
            return None

        return int(self._fine.timestamps[lo + hits[0]]), level

    def price_extremes(
        self, start_ts: int, end_ts: int
    ) -> Tuple[Optional[float], Optional[float]]:
        """Lowest low and highest high of fine candles in [start_ts, end_ts]."""
        lo, hi = self._fine.bounds(start_ts, end_ts)
        if lo >= hi:
            return None, None
        return float(self._fine.low[lo:hi].min()), float(self._fine.high[lo:hi].max())

    def fine_candles(self, start_ts: int, end_ts: int) -> List[Candle]:
        """Fine candles in [start_ts, end_ts] as model objects."""
        lo, hi = self._fine.bounds(start_ts, end_ts)
        return [self._fine.candle(i) for i in range(lo, hi)]

    def coarse_candles(self, start_ts: int, end_ts: int) -> List[Candle]:
        """Coarse candles in [start_ts, end_ts] as model objects."""
        lo, hi = self._coarse.bounds(start_ts, end_ts)
        return [self._coarse.candle(i) for i in range(lo, hi)]
