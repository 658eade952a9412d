"""Rounding and numeric helpers shared by the price index and the ledger."""

import math
from datetime import date, datetime
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Any, Optional

import pandas as pd

from config import PRECISION


def round_to(value: float, decimals: int) -> float:
    """Round half away from zero on the decimal representation of ``value``.

    Working from ``repr`` keeps 1.005 -> 1.01 instead of the binary-float
    artefact 1.00, so repeated runs give the same cents.
    """
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


def floor_to(value: float, decimals: int) -> float:
    """Truncate towards negative infinity at ``decimals`` places."""
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_FLOOR))


def round_money(value: float) -> float:
    return round_to(value, PRECISION["money"])


def round_shares(value: float) -> float:
    return round_to(value, PRECISION["shares"])


def round_percent(value: float) -> float:
    return round_to(value, PRECISION["percent"])


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def is_finite_number(value: Any) -> bool:
    """True for real, finite numbers (bools excluded)."""
    if isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except TypeError:
        return False


def to_date(value: Any) -> date:
    """Normalize a date-like value (date, datetime, ISO string, Timestamp) to a calendar date.

    Raises:
        ValueError: if ``value`` is not a recognizable date.
    """
    if value is None or value is pd.NaT:
        raise ValueError("Missing date")
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        stamp = pd.Timestamp(value)
    except (TypeError, OverflowError) as e:
        raise ValueError(f"Invalid date: {value!r}") from e
    if pd.isna(stamp):
        raise ValueError(f"Invalid date: {value!r}")
    return stamp.date()


def parse_date(value: Any) -> Optional[date]:
    """Like :func:`to_date`, but ``None`` for anything that is not a date."""
    try:
        return to_date(value)
    except ValueError:
        return None
