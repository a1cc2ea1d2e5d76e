"""Data models shared by the store, oracles, engine and sweep runner."""

from .market_data import Candle, MetricsSample
from .probability import OracleEstimate, OracleRequest, ProbabilityRecord
from .parameters import ParameterSet, TakeProfitKind, TakeProfitPolicy
from .trades import CloseReason, CloseResult, HitDirection, Trade, TradeSide

__all__ = [
    "Candle",
    "MetricsSample",
    "OracleEstimate",
    "OracleRequest",
    "ProbabilityRecord",
    "ParameterSet",
    "TakeProfitKind",
    "TakeProfitPolicy",
    "CloseReason",
    "CloseResult",
    "HitDirection",
    "Trade",
    "TradeSide",
]
