"""Probability Cache - Precomputed oracle answers for replay.

A cache document holds one oracle answer per idle tick of a period for a
single band range:

    {
      "range": 0.007,
      "steps": 10,
      "period": {"from": "2025-09-05", "to": "2025-09-11"},
      "createdAt": "2025-09-12T08:15:00+00:00",
      "data": [{"timestamp", "price", "probability", "delta", "ltma",
                "lower", "upper", "error"}, ...]
    }

Malformed rows are dropped on load and counted as anomalies.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from ..exceptions import MalformedCacheError
from ..models.probability import ProbabilityRecord

logger = logging.getLogger(__name__)


def cache_filename(range_: float, from_date: str, to_date: str) -> str:
    """Conventional cache file name, e.g. cache_0_7pct_2025-09-05_2025-09-11.json."""
    range_str = f"{range_ * 100:.1f}".replace(".", "_")
    return f"cache_{range_str}pct_{from_date}_{to_date}.json"


@dataclass
class ProbabilityCache:
    """In-memory probability cache document."""

    range: float
    steps: int
    from_date: str
    to_date: str
    records: List[ProbabilityRecord] = field(default_factory=list)
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    anomalies: int = 0  # Rows dropped on load

    @property
    def error_count(self) -> int:
        """Rows whose oracle call failed (stored with probability 0)."""
        return sum(1 for r in self.records if r.error is not None)

    def index(self) -> Dict[int, ProbabilityRecord]:
        """Timestamp -> record mapping; later rows win on duplicates."""
        return {r.timestamp: r for r in self.records}

    def probability_distribution(
        self, buckets: tuple = (0.5, 0.6, 0.7, 0.8, 0.9, 0.95, 0.98, 1.0)
    ) -> Dict[str, object]:
        """Summary of the non-zero probabilities in the cache.

        Returns:
            Dictionary with min/avg/max and counts per bucket upper edge
        """
        probabilities = [r.probability for r in self.records if r.probability > 0]
        if not probabilities:
            return {"count": 0, "min": None, "avg": None, "max": None, "buckets": {}}

        counts = {}
        lower = 0.0
        for upper in buckets:
            counts[f"{lower:.2f}-{upper:.2f}"] = sum(
                1 for p in probabilities if lower < p <= upper
            )
            lower = upper

        return {
            "count": len(probabilities),
            "min": min(probabilities),
            "avg": sum(probabilities) / len(probabilities),
            "max": max(probabilities),
            "buckets": counts,
        }

    def to_dict(self) -> dict:
        """Serialize to the cache document shape."""
        return {
            "range": self.range,
            "steps": self.steps,
            "period": {"from": self.from_date, "to": self.to_date},
            "createdAt": self.created_at,
            "data": [r.to_dict() for r in self.records],
        }

    @classmethod
    def from_dict(cls, document: dict) -> "ProbabilityCache":
        """Build from a parsed cache document.

        Raises:
            MalformedCacheError: If the header fields are missing or invalid
        """
        if not isinstance(document, dict):
            raise MalformedCacheError("Cache document must be a JSON object")

        try:
            range_ = float(document["range"])
            steps = int(document["steps"])
            period = document.get("period") or {}
            rows = document["data"]
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedCacheError(f"Invalid cache header: {e}") from e

        if not isinstance(rows, list):
            raise MalformedCacheError("Cache 'data' must be a list")

        records = []
        anomalies = 0
        for row in rows:
            try:
                records.append(ProbabilityRecord.from_dict(row))
            except (KeyError, TypeError, ValueError, AttributeError):
                anomalies += 1

        records.sort(key=lambda r: r.timestamp)

        return cls(
            range=range_,
            steps=steps,
            from_date=str(period.get("from", "")),
            to_date=str(period.get("to", "")),
            records=records,
            created_at=str(document.get("createdAt", "")),
            anomalies=anomalies,
        )

    @classmethod
    def load(cls, path: Path) -> "ProbabilityCache":
        """Load a cache document from disk.

        Raises:
            MalformedCacheError: If the file is unreadable or not a cache document
        """
        path = Path(path)
        try:
            with open(path, "r") as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise MalformedCacheError(f"Failed to read cache {path}: {e}") from e

        cache = cls.from_dict(document)

        if cache.anomalies:
            logger.warning(
                f"Dropped {cache.anomalies} malformed records from {path.name}",
                extra={"cache": str(path), "anomalies": cache.anomalies},
            )

        logger.info(f"Loaded probability cache {path.name}: {len(cache.records):,} records")

        return cache

    def save(self, path: Path, indent: Optional[int] = 2) -> Path:
        """Write the cache document to disk, creating parent directories."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=indent)

        logger.info(
            f"Probability cache saved: {path} ({path.stat().st_size / 1024:.1f} KB)"
        )

        return path
