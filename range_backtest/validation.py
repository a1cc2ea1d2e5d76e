"""Input validation utilities for configuration boundaries.

Settings files, environment variables and CLI flags are validated here so
that a bad value fails before any candle is loaded or any oracle request is
sent.
"""

from datetime import date
from typing import Any, Optional
import math
import re

from .exceptions import InvalidConfigValueError


class ValidationError(InvalidConfigValueError):
    """Raised when input validation fails.

    Subclass of InvalidConfigValueError so callers catching configuration
    errors also catch validation failures.
    """
    pass


_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def validate_positive_number(value: Any, name: str = "value") -> float:
    """Validate positive number (for sizes, leverage, prices).

    Args:
        value: Number to validate
        name: Parameter name for error messages

    Returns:
        Validated float value

    Raises:
        ValidationError: If not a positive finite number

    Examples:
        >>> validate_positive_number(3, "leverage")
        3.0
        >>> validate_positive_number(-0.5, "positionSize")  # Blocked
        ValidationError: positionSize must be positive
    """
    try:
        num = float(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"{name} must be a number, got: {type(value).__name__}"
        )

    if not math.isfinite(num):
        raise ValidationError(f"{name} must be finite, got: {num}")

    if num <= 0:
        raise ValidationError(f"{name} must be positive, got: {num}")

    return num


def validate_non_negative_int(value: Any, name: str = "value") -> int:
    """Validate a whole number >= 0 (seconds, minutes, counts)."""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer, got: bool")

    try:
        num = int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"{name} must be an integer, got: {type(value).__name__}"
        )

    if num != value and not isinstance(value, str):
        raise ValidationError(f"{name} must be a whole number, got: {value}")

    if num < 0:
        raise ValidationError(f"{name} must be >= 0, got: {num}")

    return num


def validate_fraction(value: Any, name: str = "value") -> float:
    """Validate a number in the closed interval [0, 1].

    Used for probabilities and entry thresholds, which are positions inside
    the normalized price band.

    Examples:
        >>> validate_fraction(0.75, "minProbability")
        0.75
        >>> validate_fraction(1.2, "entryShort")  # Blocked
        ValidationError: entryShort must be between 0 and 1
    """
    try:
        num = float(value)
    except (TypeError, ValueError):
        raise ValidationError(
            f"{name} must be a number, got: {type(value).__name__}"
        )

    if not 0.0 <= num <= 1.0:
        raise ValidationError(f"{name} must be between 0 and 1, got: {num}")

    return num


def validate_range(value: Any, name: str = "range") -> float:
    """Validate band half-width, a fraction strictly between 0 and 1."""
    num = validate_positive_number(value, name)

    if num >= 1.0:
        raise ValidationError(f"{name} must be below 1 (100%), got: {num}")

    return num


def validate_date(value: Any, name: str = "date") -> str:
    """Validate an ISO calendar date string (YYYY-MM-DD).

    Returns:
        The same string, unchanged

    Raises:
        ValidationError: If the string is not a real calendar date
    """
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValidationError(f"{name} must be formatted YYYY-MM-DD, got: {value!r}")

    try:
        date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"{name} is not a valid calendar date: {value}")

    return value


def validate_date_range(from_date: str, to_date: str) -> tuple[str, str]:
    """Validate that both dates parse and that from_date <= to_date."""
    validate_date(from_date, "fromDate")
    validate_date(to_date, "toDate")

    if date.fromisoformat(from_date) > date.fromisoformat(to_date):
        raise ValidationError(
            f"fromDate ({from_date}) must not be after toDate ({to_date})"
        )

    return from_date, to_date


def validate_choice(value: Any, choices: tuple, name: str = "value") -> str:
    """Validate that a string is one of a fixed set of names."""
    if value not in choices:
        raise ValidationError(
            f"Invalid {name}: {value}. Must be one of: {', '.join(choices)}"
        )

    return value


def validate_limit(limit: Optional[int], max_limit: int = 10000) -> Optional[int]:
    """Validate a result limit (top-N / bottom-N).

    Examples:
        >>> validate_limit(20)
        20
        >>> validate_limit(None)  # OK - means no limit
        None
    """
    if limit is None:
        return None

    try:
        limit = int(limit)
    except (TypeError, ValueError):
        raise ValidationError(
            f"Limit must be an integer, got: {type(limit).__name__}"
        )

    if limit < 1:
        raise ValidationError(f"Limit must be at least 1, got: {limit}")

    if limit > max_limit:
        raise ValidationError(f"Limit cannot exceed {max_limit}, got: {limit}")

    return limit
