"""Backtester configuration management.

Settings come from three layers, later ones overriding earlier ones:
defaults in the dataclass, ``BACKTEST_*`` environment variables (a local
``.env`` file is loaded first), and an optional JSON settings file:

    {
      "range": 0.007, "cycleTime": 10, "positionSize": 0.5, "leverage": 3,
      "fromDate": "2025-09-05", "toDate": "2025-09-11",
      "entryLong": 0.25, "entryShort": 0.75, "minProbability": 0.8,
      "lockBeforeEnd": 60, "tpStrategy": "fixed_percent", "tpPercent": 0.35,
      "closeStrategy": "cycle_timeout", "useRealRM": false
    }

See .env.example for the environment variable template.
"""

import json
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from .backtest.oracle import DEFAULT_ORACLE_URL
from .backtest.pnl import PnLModel
from .backtest.probability_cache import cache_filename
from .backtest.strategies import available_strategies
from .exceptions import ConfigurationError
from .models.parameters import ParameterSet, TakeProfitKind, TakeProfitPolicy
from .validation import ValidationError, validate_choice, validate_date_range

ORACLE_MODES = ("live", "replay", "stub")

# Settings file key -> dataclass field
FILE_KEYS = {
    "dataPath": "data_path",
    "fromDate": "from_date",
    "toDate": "to_date",
    "makerFee": "maker_fee",
    "takerFee": "taker_fee",
    "positionSize": "position_size",
    "leverage": "leverage",
    "riskModuleSteps": "risk_module_steps",
    "deltaMultiplier": "delta_multiplier",
    "ltmaMultiplier": "ltma_multiplier",
    "warmupMinutes": "warmup_minutes",
    "maxHoldHours": "max_hold_hours",
    "range": "range",
    "cycleTime": "cycle_time",
    "entryLong": "entry_long",
    "entryShort": "entry_short",
    "minProbability": "min_probability",
    "lockBeforeEnd": "lock_before_end",
    "tpStrategy": "tp_strategy",
    "tpPercent": "tp_percent",
    "tpRiskReward": "tp_risk_reward",
    "closeStrategy": "close_strategy",
    "oracleMode": "oracle_mode",
    "rmStubProbability": "stub_probability",
    "oracleUrl": "oracle_url",
    "oracleMaxRetries": "oracle_max_retries",
    "oracleTimeoutSeconds": "oracle_timeout_seconds",
    "oracleConcurrency": "oracle_concurrency",
    "cacheDir": "cache_dir",
    "resultsDir": "results_dir",
    "maxWorkers": "max_workers",
}


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class BacktestConfig:
    """Backtester settings shared by simulations, sweeps and cache builds."""

    # Data
    data_path: str = "data/raw/ETHUSDT"
    from_date: Optional[str] = None
    to_date: Optional[str] = None

    # Exchange costs (Binance futures with BNB discount)
    maker_fee: float = 0.00018
    taker_fee: float = 0.00045

    # Position sizing
    position_size: float = 0.5  # Margin in base units
    leverage: float = 3.0

    # Oracle features
    risk_module_steps: int = 10
    delta_multiplier: int = 2
    ltma_multiplier: int = 15
    warmup_minutes: int = 200
    max_hold_hours: float = 24.0

    # Single simulation parameters
    range: float = 0.005
    cycle_time: int = 10  # Minutes
    entry_long: float = 0.25
    entry_short: float = 0.75
    min_probability: float = 0.8
    lock_before_end: int = 60  # Seconds
    tp_strategy: str = TakeProfitKind.FIXED_PERCENT.value
    tp_percent: float = 0.35
    tp_risk_reward: float = 2.0
    close_strategy: str = "cycle_timeout"

    # Oracle
    oracle_mode: str = "replay"  # live, replay or stub
    stub_probability: float = 0.9
    oracle_url: str = DEFAULT_ORACLE_URL
    oracle_max_retries: int = 3
    oracle_timeout_seconds: float = 5.0
    oracle_concurrency: int = 100

    # Output
    cache_dir: str = "rm-cache"
    results_dir: str = "results"
    max_workers: int = 1

    @classmethod
    def from_env(cls) -> "BacktestConfig":
        """Load configuration from environment variables.

        Every field maps to ``BACKTEST_<FIELD_NAME>``; unset variables keep
        the default.

        Raises:
            ConfigurationError: If a variable cannot be converted

        Example:
            >>> os.environ["BACKTEST_RANGE"] = "0.007"
            >>> BacktestConfig.from_env().range
            0.007
        """
        load_dotenv(find_dotenv(usecwd=True))

        values = {}
        for f in fields(cls):
            raw = os.getenv(f"BACKTEST_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            values[f.name] = _convert(f.name, raw)

        if "oracle_mode" not in values and os.getenv("BACKTEST_USE_REAL_RM") is not None:
            values["oracle_mode"] = "live" if _env_bool("BACKTEST_USE_REAL_RM", "false") else "stub"

        return cls(**values)

    @classmethod
    def from_file(cls, path: Path, base: Optional["BacktestConfig"] = None) -> "BacktestConfig":
        """Overlay a JSON settings file on ``base`` (environment by default).

        Raises:
            ConfigurationError: If the file is unreadable or has unknown keys
        """
        path = Path(path)
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read settings file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {path} must hold a JSON object")

        return cls.from_dict(data, base=base if base is not None else cls.from_env())

    @classmethod
    def from_dict(cls, data: dict, base: Optional["BacktestConfig"] = None) -> "BacktestConfig":
        """Overlay camelCase settings on ``base`` (defaults when omitted)."""
        data = dict(data)
        overrides = {}

        if "useRealRM" in data and "oracleMode" not in data:
            data["oracleMode"] = "live" if data["useRealRM"] else "stub"
        data.pop("useRealRM", None)
        data.pop("debug", None)

        unknown = sorted(set(data) - set(FILE_KEYS))
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(unknown)}")

        for key, value in data.items():
            name = FILE_KEYS[key]
            overrides[name] = _convert(name, value) if isinstance(value, str) else value

        return replace(base or cls(), **overrides)

    def validate(self) -> tuple[bool, Optional[str]]:
        """Validate settings.

        Returns:
            (is_valid, error_message) tuple
        """
        if self.position_size <= 0:
            return False, "position_size must be positive"

        if self.leverage <= 0:
            return False, "leverage must be positive"

        if not 0 <= self.taker_fee < 1 or not 0 <= self.maker_fee < 1:
            return False, "fees must be fractions between 0 and 1"

        if self.risk_module_steps <= 0 or self.delta_multiplier <= 0 or self.ltma_multiplier <= 0:
            return False, "risk_module_steps and window multipliers must be positive"

        if self.warmup_minutes < 0:
            return False, "warmup_minutes must be >= 0"

        if self.max_hold_hours <= 0:
            return False, "max_hold_hours must be positive"

        if self.oracle_max_retries < 0 or self.oracle_timeout_seconds <= 0:
            return False, "oracle retries must be >= 0 and timeout positive"

        if self.oracle_concurrency <= 0 or self.max_workers <= 0:
            return False, "oracle_concurrency and max_workers must be positive"

        try:
            validate_choice(self.oracle_mode, ORACLE_MODES, "oracle_mode")
            validate_choice(self.close_strategy, available_strategies(), "close_strategy")
            if self.from_date or self.to_date:
                validate_date_range(self.from_date, self.to_date)
            self.parameter_set()
        except ValidationError as e:
            return False, str(e)

        return True, None

    def ensure_valid(self) -> "BacktestConfig":
        """Raise ConfigurationError unless ``validate`` passes."""
        valid, error = self.validate()
        if not valid:
            raise ConfigurationError(error)
        return self

    @property
    def max_hold_ms(self) -> int:
        return int(self.max_hold_hours * 60 * 60 * 1000)

    def take_profit_policy(self) -> TakeProfitPolicy:
        return TakeProfitPolicy(
            kind=self.tp_strategy,
            tp_percent=self.tp_percent,
            risk_reward=self.tp_risk_reward,
        )

    def parameter_set(self) -> ParameterSet:
        """The single-simulation parameter set described by these settings."""
        try:
            policy = self.take_profit_policy()
        except ValueError as e:
            # Unknown TakeProfitKind
            raise ValidationError(f"Invalid tp_strategy: {self.tp_strategy}") from e

        return ParameterSet(
            range=self.range,
            cycle_time_minutes=self.cycle_time,
            entry_long=self.entry_long,
            entry_short=self.entry_short,
            min_probability=self.min_probability,
            lock_before_end_seconds=self.lock_before_end,
            take_profit=policy,
            close_strategy=self.close_strategy,
        )

    def pnl_model(self) -> PnLModel:
        return PnLModel(
            position_margin=self.position_size,
            leverage=self.leverage,
            taker_fee=self.taker_fee,
        )

    def engine_settings(self) -> dict:
        """Keyword arguments shared by CycleEngine and SweepRunner."""
        return {
            "steps": self.risk_module_steps,
            "delta_multiplier": self.delta_multiplier,
            "ltma_multiplier": self.ltma_multiplier,
            "warmup_minutes": self.warmup_minutes,
            "max_hold_ms": self.max_hold_ms,
        }

    def cache_path(self, range_: Optional[float] = None) -> Path:
        """Conventional probability cache location for a range and this period."""
        if not self.from_date or not self.to_date:
            raise ConfigurationError("from_date and to_date are required to locate a cache")

        range_ = self.range if range_ is None else range_
        return Path(self.cache_dir) / cache_filename(range_, self.from_date, self.to_date)

    def to_dict(self) -> dict:
        return asdict(self)


_FIELD_TYPES = {f.name: f.type for f in fields(BacktestConfig)}


def _convert(name: str, raw: str):
    """Convert a string setting to its field type."""
    kind = _FIELD_TYPES[name]
    try:
        if kind in (int, "int"):
            return int(raw)
        if kind in (float, "float"):
            return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {name}: {raw!r}") from e
    return raw
