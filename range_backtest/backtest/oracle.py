"""Probability Oracles - Sources of the probability-within-range estimate.

The engine only depends on ``ProbabilityOracle.estimate``. Implementations:

- ReplayOracle answers from a precomputed ProbabilityCache (deterministic,
  used for sweeps).
- StubOracle answers a fixed probability (dry runs without a risk module).
- LiveOracle asks the risk module over HTTP with per-attempt timeouts,
  exponential backoff and memoization. When every attempt fails it answers
  probability 0 so a position is never opened on an unreliable estimate.
"""

import asyncio
import json
import logging
import math
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Sequence

import aiohttp

from ..exceptions import OracleError, OracleRequestError
from ..models.probability import OracleEstimate, OracleRequest
from ..utils.timeout import with_timeout_and_retry
from ..validation import validate_fraction
from .probability_cache import ProbabilityCache

DEFAULT_ORACLE_URL = "https://rm-stage.leechprotocol.com/calculate-probability-v2"


class ProbabilityOracle(ABC):
    """Interface: market features in, probability-within-range out."""

    name: str = "oracle"

    @abstractmethod
    def estimate(self, request: OracleRequest) -> Optional[OracleEstimate]:
        """Estimate the probability that price stays inside the band.

        Returns:
            OracleEstimate, or None when there is no data for this tick (the
            engine skips the tick instead of counting a rejection)
        """


class ReplayOracle(ProbabilityOracle):
    """Answers from a precomputed probability cache keyed by timestamp.

    Example:
        >>> oracle = ReplayOracle(ProbabilityCache.load(Path("rm-cache/cache_0_7pct_...json")))
        >>> oracle.estimate(request).probability
        0.91
    """

    name = "replay"

    def __init__(self, cache: ProbabilityCache):
        self.cache = cache
        self.range = cache.range
        self._index = cache.index()
        self.logger = logging.getLogger(__name__)

    def estimate(self, request: OracleRequest) -> Optional[OracleEstimate]:
        if not math.isclose(request.range, self.range, rel_tol=1e-9, abs_tol=1e-12):
            raise OracleError(
                f"Replay cache built for range {self.range}, requested {request.range}"
            )

        record = self._index.get(request.timestamp)
        if record is None:
            return None

        return record.to_estimate()

    def __len__(self) -> int:
        return len(self._index)


class StubOracle(ProbabilityOracle):
    """Answers the same probability for every tick.

    Used for dry runs of the cycle logic without a risk module.
    """

    name = "stub"

    def __init__(self, probability: float = 0.9):
        self.probability = validate_fraction(probability, "stubProbability")

    def estimate(self, request: OracleRequest) -> Optional[OracleEstimate]:
        return OracleEstimate(
            probability=self.probability,
            lower_bound=request.lower,
            upper_bound=request.upper,
            expected_price=request.price,
        )


class LiveOracle(ProbabilityOracle):
    """Risk module HTTP client.

    Memoizes successful answers by a rounded-parameter key. Failed requests
    are not memoized.

    Example:
        >>> oracle = LiveOracle(max_retries=3, timeout=5.0)
        >>> estimate = oracle.estimate(request)
        >>> estimate.probability
        0.87
    """

    name = "live"

    def __init__(
        self,
        url: str = DEFAULT_ORACLE_URL,
        max_retries: int = 3,
        timeout: float = 5.0,
        backoff_base: float = 0.5,
        concurrency: int = 100,
    ):
        """Initialize the risk module client.

        Args:
            url: Risk module endpoint
            max_retries: Retries after the first attempt
            timeout: Per-attempt timeout in seconds
            backoff_base: Delay before the first retry in seconds
            concurrency: Maximum requests in flight for batch fetches
        """
        self.url = url
        self.max_retries = max_retries
        self.timeout = timeout
        self.backoff_base = backoff_base
        self.concurrency = max(1, int(concurrency))
        self.logger = logging.getLogger(__name__)

        self.request_count = 0
        self.error_count = 0
        # Sweeps share one oracle across worker threads
        self._stats_lock = threading.Lock()
        self._cache: Dict[str, OracleEstimate] = {}

    def estimate(self, request: OracleRequest) -> Optional[OracleEstimate]:
        """Blocking single estimate for the synchronous engine.

        Must not be called from inside a running event loop; async callers
        use ``fetch_probability`` directly.
        """
        cached = self._cache.get(request.cache_key())
        if cached is not None:
            return cached

        return asyncio.run(self.fetch_probability(request))

    async def fetch_probability(
        self,
        request: OracleRequest,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> OracleEstimate:
        """Fetch one probability, retrying with exponential backoff.

        Args:
            request: Market features for the query
            session: Shared session for batch use; a private one is opened
                when omitted

        Returns:
            OracleEstimate; probability 0 with ``error`` set on exhaustion
        """
        key = request.cache_key()
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        if session is None:
            async with aiohttp.ClientSession() as own_session:
                return await self.fetch_probability(request, own_session)

        payload = request.to_payload()

        try:
            estimate = await with_timeout_and_retry(
                lambda: self._post(session, payload),
                timeout=self.timeout,
                retries=self.max_retries,
                base_delay=self.backoff_base,
                retry_on=(asyncio.TimeoutError, aiohttp.ClientError, OracleRequestError),
            )
        except (OracleError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            with self._stats_lock:
                self.error_count += 1
            self.logger.error(
                f"[RM] Failed after {self.max_retries} retries: {e}",
                extra={"tick": request.timestamp, "error": str(e)},
            )
            return OracleEstimate.failure(str(e) or type(e).__name__)

        self._cache[key] = estimate
        return estimate

    async def fetch_batch(
        self,
        requests: Sequence[OracleRequest],
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> List[OracleEstimate]:
        """Fetch many probabilities with at most ``concurrency`` in flight.

        Args:
            requests: Queries to send
            progress_callback: Called with (done, total) after each answer

        Returns:
            Estimates in the same order as ``requests``
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        total = len(requests)
        done = 0

        async with aiohttp.ClientSession() as session:

            async def _bounded(request: OracleRequest) -> OracleEstimate:
                nonlocal done
                async with semaphore:
                    estimate = await self.fetch_probability(request, session)
                done += 1
                if progress_callback:
                    progress_callback(done, total)
                return estimate

            return list(await asyncio.gather(*(_bounded(r) for r in requests)))

    async def _post(self, session: aiohttp.ClientSession, payload: dict) -> OracleEstimate:
        """Single HTTP attempt.

        Raises:
            OracleRequestError: On a non-2xx status or a malformed body
        """
        with self._stats_lock:
            self.request_count += 1

        async with session.post(self.url, json=payload) as response:
            body = await response.text()

            if not 200 <= response.status < 300:
                raise OracleRequestError(
                    f"HTTP {response.status}: {body[:200]}", status=response.status
                )

            try:
                return OracleEstimate.from_response(json.loads(body))
            except (KeyError, TypeError, ValueError) as e:
                raise OracleRequestError(f"Invalid JSON response: {body[:200]} ({e})")

    def stats(self) -> Dict[str, object]:
        """Request, error and memoization statistics."""
        with self._stats_lock:
            requests, errors = self.request_count, self.error_count
        cache_size = len(self._cache)
        hit_rate = 0.0
        if requests > 0 and cache_size > 0:
            hit_rate = max(0.0, (requests - cache_size) / requests * 100)

        return {
            "requests": requests,
            "errors": errors,
            "cache_size": cache_size,
            "hit_rate_pct": round(hit_rate, 1),
        }

    def clear_cache(self) -> None:
        self._cache.clear()
