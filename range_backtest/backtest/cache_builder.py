"""Probability Cache Builder - Precomputes oracle answers for one range.

Walks the same idle-tick grid as the engine (warmup, price and metrics
rules), queries the live oracle in bounded batches and collects the answers
into a ProbabilityCache. Sweeps then replay the cache without network calls.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional

from ..models.probability import OracleRequest, ProbabilityRecord
from .candle_store import CandleStore
from .engine import DEFAULT_WARMUP_MINUTES, TICK_MS
from .oracle import LiveOracle
from .probability_cache import ProbabilityCache

DEFAULT_BATCH_SIZE = 100


class ProbabilityCacheBuilder:
    """Builds probability caches from a candle store and a live oracle.

    Example:
        >>> builder = ProbabilityCacheBuilder(store, LiveOracle(timeout=15.0))
        >>> cache = builder.build(0.007, "2025-09-05", "2025-09-11")
        >>> cache.save(Path("rm-cache") / cache_filename(0.007, "2025-09-05", "2025-09-11"))
    """

    def __init__(
        self,
        store: CandleStore,
        oracle: LiveOracle,
        steps: int = 10,
        delta_multiplier: int = 2,
        ltma_multiplier: int = 15,
        warmup_minutes: int = DEFAULT_WARMUP_MINUTES,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.store = store
        self.oracle = oracle
        self.steps = steps
        self.delta_multiplier = delta_multiplier
        self.ltma_multiplier = ltma_multiplier
        self.warmup_minutes = warmup_minutes
        self.batch_size = max(1, int(batch_size))
        self.logger = logging.getLogger(__name__)

    def plan_requests(self, range_: float) -> List[OracleRequest]:
        """One request per idle tick that has both a positive price and metrics."""
        if self.store.coarse_start is None:
            return []

        requests = []
        now = self.store.coarse_start + self.warmup_minutes * TICK_MS
        end = self.store.coarse_end

        while now < end:
            price = self.store.price_at(now)
            metrics = self.store.metrics_at(
                now, self.steps, self.delta_multiplier, self.ltma_multiplier
            )
            if price is not None and price > 0 and metrics is not None:
                requests.append(
                    OracleRequest(
                        timestamp=now,
                        price=price,
                        delta=metrics.delta,
                        ltma=metrics.ltma,
                        steps=self.steps,
                        range=range_,
                        lower=price * (1 - range_),
                        upper=price * (1 + range_),
                    )
                )
            now += TICK_MS

        return requests

    def build(
        self,
        range_: float,
        from_date: str,
        to_date: str,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> ProbabilityCache:
        """Blocking wrapper around ``build_async``."""
        return asyncio.run(self.build_async(range_, from_date, to_date, progress_callback))

    async def build_async(
        self,
        range_: float,
        from_date: str,
        to_date: str,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> ProbabilityCache:
        """Query the oracle for every planned tick.

        Args:
            range_: Band half-width the cache is built for
            from_date: Period start recorded in the document
            to_date: Period end recorded in the document
            progress_callback: Called with (processed, total) after each batch

        Returns:
            ProbabilityCache; failed requests are stored with probability 0
            and their error
        """
        requests = self.plan_requests(range_)
        total = len(requests)
        cache = ProbabilityCache(
            range=range_, steps=self.steps, from_date=from_date, to_date=to_date
        )

        self.logger.info(
            f"Caching oracle answers: range {range_ * 100:.2f}%, {total:,} requests",
            extra={"range": range_, "requests": total, "batch_size": self.batch_size},
        )

        started = time.perf_counter()
        errors = 0

        for i in range(0, total, self.batch_size):
            batch = requests[i:i + self.batch_size]
            estimates = await self.oracle.fetch_batch(batch)

            for request, estimate in zip(batch, estimates):
                if estimate.failed:
                    errors += 1
                cache.records.append(
                    ProbabilityRecord(
                        timestamp=request.timestamp,
                        price=request.price,
                        probability=estimate.probability,
                        lower=request.lower,
                        upper=request.upper,
                        delta=request.delta,
                        ltma=request.ltma,
                        error=estimate.error,
                    )
                )

            processed = i + len(batch)
            if progress_callback:
                progress_callback(processed, total)
            self.logger.debug(f"Cached {processed}/{total} ({errors} errors)")

        elapsed = time.perf_counter() - started
        rate = total / elapsed if elapsed > 0 else 0.0

        self.logger.info(
            f"Cache built in {elapsed:.1f}s ({rate:.0f} req/sec), {errors} errors",
            extra={
                "records": len(cache.records),
                "errors": errors,
                "distribution": cache.probability_distribution(),
            },
        )

        return cache
