"""Historical Data Loader - Reads per-day candle files into a CandleStore.

Candle files are JSON arrays of ``{timestamp, close, high, low}`` objects,
one file per day and resolution:

    <base_path>/<YYYY-MM-DD>.json      fine (1s) candles
    <base_path>/1m/<YYYY-MM-DD>.json   coarse (1m) candles

Missing days are tolerated and reported.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from ..exceptions import MissingDataError
from ..models.market_data import Candle
from ..validation import validate_date_range
from .candle_store import CandleStore, parse_candle_records

FINE_SUBFOLDER = ""
COARSE_SUBFOLDER = "1m"


@dataclass
class ResolutionReport:
    """Load statistics for one candle resolution."""

    days_loaded: int = 0
    days_missing: List[str] = field(default_factory=list)
    files_failed: List[str] = field(default_factory=list)
    records_dropped: int = 0
    candles: int = 0

    def to_dict(self) -> dict:
        return {
            "days_loaded": self.days_loaded,
            "days_missing": list(self.days_missing),
            "files_failed": list(self.files_failed),
            "records_dropped": self.records_dropped,
            "candles": self.candles,
        }


@dataclass
class LoadReport:
    """Outcome of loading a date range."""

    from_date: str
    to_date: str
    fine: ResolutionReport = field(default_factory=ResolutionReport)
    coarse: ResolutionReport = field(default_factory=ResolutionReport)

    def to_dict(self) -> dict:
        return {
            "from_date": self.from_date,
            "to_date": self.to_date,
            "fine": self.fine.to_dict(),
            "coarse": self.coarse.to_dict(),
        }


class HistoricalDataLoader:
    """Loads fine and coarse candles for a date range.

    Example:
        >>> loader = HistoricalDataLoader(Path("data/raw/ETHUSDT"))
        >>> store, report = loader.load("2025-09-05", "2025-09-11")
        >>> store.fine_count
        604800
    """

    def __init__(self, base_path: Path):
        """Initialize data loader.

        Args:
            base_path: Directory holding the daily fine files and the ``1m``
                subfolder with daily coarse files
        """
        self.base_path = Path(base_path)
        self.logger = logging.getLogger(__name__)

    def load(self, from_date: str, to_date: str) -> tuple[CandleStore, LoadReport]:
        """Load both resolutions for an inclusive date range.

        Args:
            from_date: First day, YYYY-MM-DD
            to_date: Last day, YYYY-MM-DD

        Returns:
            (CandleStore, LoadReport)

        Raises:
            ValidationError: If the dates are malformed or reversed
            MissingDataError: If either resolution produced no candles
        """
        validate_date_range(from_date, to_date)
        days = self.generate_date_range(from_date, to_date)
        report = LoadReport(from_date=from_date, to_date=to_date)

        self.logger.info(f"Loading data from {from_date} to {to_date} ({len(days)} days)")

        fine = self._load_resolution(days, FINE_SUBFOLDER, report.fine)
        coarse = self._load_resolution(days, COARSE_SUBFOLDER, report.coarse)

        if not fine or not coarse:
            raise MissingDataError(
                f"No candles found under {self.base_path} for {from_date}..{to_date} "
                f"(fine={len(fine)}, coarse={len(coarse)})"
            )

        store = CandleStore(fine, coarse)
        report.fine.candles = store.fine_count
        report.coarse.candles = store.coarse_count

        self.logger.info(
            f"Loaded: {store.fine_count:,} 1s candles, {store.coarse_count:,} 1m candles"
        )

        return store, report

    def _load_resolution(
        self,
        days: List[str],
        subfolder: str,
        report: ResolutionReport,
    ) -> List[Candle]:
        """Read every daily file of one resolution."""
        candles: List[Candle] = []
        label = subfolder or "1s"

        for day in days:
            filepath = self._get_day_filepath(day, subfolder)

            if not filepath.exists():
                report.days_missing.append(day)
                continue

            try:
                with open(filepath, "r") as f:
                    records = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                self.logger.error(f"Error loading {filepath}: {e}")
                report.files_failed.append(str(filepath))
                continue

            if not isinstance(records, list):
                self.logger.error(f"Error loading {filepath}: expected a JSON array")
                report.files_failed.append(str(filepath))
                continue

            parsed, dropped = self.parse_records(records)
            candles.extend(parsed)
            report.records_dropped += dropped
            report.days_loaded += 1

        if report.days_missing:
            self.logger.warning(
                f"{len(report.days_missing)} days missing for {label} candles",
                extra={"resolution": label, "missing": report.days_missing[:10]},
            )

        return candles

    @staticmethod
    def parse_records(records: List[dict]) -> tuple[List[Candle], int]:
        """Convert raw file records to candles, counting dropped ones."""
        return parse_candle_records(records)

    def _get_day_filepath(self, day: str, subfolder: str) -> Path:
        """Path of one daily candle file."""
        directory = self.base_path / subfolder if subfolder else self.base_path
        return directory / f"{day}.json"

    @staticmethod
    def generate_date_range(from_date: str, to_date: str) -> List[str]:
        """Inclusive list of YYYY-MM-DD strings between two dates."""
        current = date.fromisoformat(from_date)
        end = date.fromisoformat(to_date)

        days = []
        while current <= end:
            days.append(current.isoformat())
            current += timedelta(days=1)

        return days

    def get_data_info(self, from_date: Optional[str] = None, to_date: Optional[str] = None) -> Dict[str, object]:
        """Get information about the candle files on disk.

        Returns:
            Dictionary with file counts and total size per resolution
        """
        info: Dict[str, object] = {"base_path": str(self.base_path)}

        for name, subfolder in (("fine", FINE_SUBFOLDER), ("coarse", COARSE_SUBFOLDER)):
            directory = self.base_path / subfolder if subfolder else self.base_path
            files = sorted(directory.glob("*.json")) if directory.exists() else []

            if from_date and to_date:
                wanted = set(self.generate_date_range(from_date, to_date))
                files = [f for f in files if f.stem in wanted]

            info[name] = {
                "total_files": len(files),
                "total_size_mb": sum(f.stat().st_size for f in files) / (1024 * 1024),
                "first_day": files[0].stem if files else None,
                "last_day": files[-1].stem if files else None,
            }

        return info
