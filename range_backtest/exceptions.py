"""
Custom exception hierarchy for the range backtester.

All backtester exceptions derive from BacktesterError for easy catching.
Organized by domain: Configuration, Data, Oracle, Simulation.
"""


class BacktesterError(Exception):
    """Base exception for all backtester errors."""
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(BacktesterError):
    """Configuration-related errors (env vars, settings files)."""
    pass


class InvalidConfigValueError(ConfigurationError):
    """Configuration value invalid or out of range."""
    pass


class UnknownCloseStrategyError(ConfigurationError):
    """Close strategy name not present in the strategy registry."""

    def __init__(self, name: str, available: tuple = ()):
        self.name = name
        self.available = tuple(available)

        message = f"Unknown close strategy: {name}"
        if self.available:
            message += f" (available: {', '.join(self.available)})"

        super().__init__(message)


# ============================================================================
# Data Errors (candle files, probability caches)
# ============================================================================

class DataError(BacktesterError):
    """Historical data loading errors."""
    pass


class MissingDataError(DataError):
    """No candles or cache records available for the requested period."""
    pass


class MalformedCacheError(DataError):
    """Probability cache document is unreadable or structurally invalid."""
    pass


# ============================================================================
# Oracle Errors (risk module communication)
# ============================================================================

class OracleError(BacktesterError):
    """Probability oracle errors."""
    pass


class OracleRequestError(OracleError):
    """Oracle returned a non-2xx status or a malformed body."""

    def __init__(self, message: str, status: int = None):
        self.status = status
        super().__init__(message)


class OracleTimeoutError(OracleError):
    """Oracle request exceeded its timeout on every attempt."""
    pass


# ============================================================================
# Simulation Errors
# ============================================================================

class SimulationError(BacktesterError):
    """Errors raised while running a parameter set through the engine."""

    def __init__(self, message: str, params: dict = None):
        self.params = params or {}
        super().__init__(message)
