"""Probability oracle data structures.

OracleRequest is what the engine asks for on an idle tick, OracleEstimate is
what any oracle answers, and ProbabilityRecord is one row of a precomputed
probability cache.
"""

from dataclasses import dataclass, asdict
from typing import Optional
import math


@dataclass(frozen=True)
class OracleRequest:
    """Market features for a single oracle query."""

    timestamp: int
    price: float
    delta: float
    ltma: float
    steps: int
    range: float
    lower: float
    upper: float

    def to_payload(self) -> dict:
        """Body of the risk module POST request."""
        return {
            "steps": self.steps,
            "range": self.range,
            "current_price": self.price,
            "lower": self.lower,
            "upper": self.upper,
            "delta": self.delta,
            "ltma": self.ltma,
        }

    def cache_key(self) -> str:
        """Memoization key with parameters rounded for cache hits."""
        return (
            f"{self.price:.2f}_{self.delta:.6f}_{self.ltma:.2f}"
            f"_{self.steps}_{self.range}"
        )


@dataclass(frozen=True)
class OracleEstimate:
    """Answer from a probability oracle.

    A non-empty ``error`` means the estimate is the fail-safe default
    (probability 0), never an optimistic guess.
    """

    probability: float
    lower_bound: Optional[float] = None
    upper_bound: Optional[float] = None
    expected_price: Optional[float] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(cls, error: str) -> "OracleEstimate":
        return cls(probability=0.0, error=error)

    @classmethod
    def from_response(cls, body: dict) -> "OracleEstimate":
        """Parse the risk module response body.

        Raises:
            KeyError, TypeError, ValueError: If the body is malformed
        """
        probability = float(body["probability_within_range"])
        if not math.isfinite(probability) or not 0.0 <= probability <= 1.0:
            raise ValueError(f"probability_within_range out of [0, 1]: {probability}")

        return cls(
            probability=probability,
            lower_bound=_optional_float(body.get("lower_bound")),
            upper_bound=_optional_float(body.get("upper_bound")),
            expected_price=_optional_float(body.get("expected_price")),
        )


@dataclass(frozen=True)
class ProbabilityRecord:
    """One precomputed oracle answer, keyed by its tick timestamp."""

    timestamp: int
    price: float
    probability: float
    lower: float
    upper: float
    delta: float
    ltma: float
    error: Optional[str] = None

    def to_estimate(self) -> OracleEstimate:
        return OracleEstimate(
            probability=self.probability,
            lower_bound=self.lower,
            upper_bound=self.upper,
            error=self.error,
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ProbabilityRecord":
        """Create from a cache document row.

        Raises:
            KeyError, TypeError, ValueError: If the row is malformed
        """
        probability = float(data["probability"])
        if not math.isfinite(probability) or not 0.0 <= probability <= 1.0:
            raise ValueError(f"probability out of [0, 1]: {probability}")

        error = data.get("error")

        return cls(
            timestamp=int(data["timestamp"]),
            price=float(data["price"]),
            probability=probability,
            lower=float(data["lower"]),
            upper=float(data["upper"]),
            delta=float(data["delta"]),
            ltma=float(data["ltma"]),
            error=str(error) if error is not None else None,
        )


def _optional_float(value) -> Optional[float]:
    return None if value is None else float(value)
