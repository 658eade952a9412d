"""Historical price index.

Turns normalized daily OHLCV rows into an immutable, date-sorted
:class:`PriceSeries` and answers the temporal queries the ledger and the
front ends need: exact-date lookup, inclusive ranges, neighbouring trading
days, the trailing 52-week range and a moving-average trend signal.

Building is strict (any bad row rejects the whole load with
:class:`~errors.DataFormatError`); querying is lenient (out-of-range or unparseable input
gives ``None``, an empty list or a neutral trend, never an exception).
"""

import logging
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from config import INDICATORS
from errors import DataFormatError
from numeric import clamp, parse_date

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("date", "open", "high", "low", "close")
PRICE_FIELDS = ("open", "high", "low", "close", "adj_close")
_STRIP_CHARS = " \t\r\n\"'"


class MarketTrend(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class PricePoint:
    """One trading day."""
    date: date
    open: float
    high: float
    low: float
    close: float
    adj_close: float
    volume: int
    change: Optional[float] = None
    change_percent: Optional[float] = None

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


@dataclass(frozen=True)
class WeekRange52:
    """High/low over the trailing 52 weeks and where the close sits inside it."""
    high: float
    high_date: date
    low: float
    low_date: date
    range_percent: float


@dataclass(frozen=True)
class DateRange:
    min_date: date
    max_date: date
    total_days: int


def _clean_text(values: pd.Series) -> pd.Series:
    return values.astype(str).str.strip(_STRIP_CHARS)


def _parse_dates(values: pd.Series) -> pd.Series:
    cleaned = _clean_text(values)
    parsed = pd.to_datetime(cleaned, format="mixed", errors="coerce")
    bad = parsed.isna()
    if bad.any():
        row = int(bad.idxmax())
        raise DataFormatError(f"Invalid date format in row {row}: {values.iloc[row]!r}")
    if parsed.dt.tz is not None:
        parsed = parsed.dt.tz_localize(None)
    return parsed.dt.normalize()


def _parse_numbers(values: pd.Series, field: str) -> pd.Series:
    """Parse numbers that may carry thousands separators, quotes or padding."""
    cleaned = _clean_text(values).str.replace(",", "", regex=False)
    parsed = pd.to_numeric(cleaned, errors="coerce")
    bad = parsed.isna() | ~np.isfinite(parsed)
    if bad.any():
        row = int(bad.idxmax())
        raise DataFormatError(f"Non-numeric {field!r} in row {row}: {values.iloc[row]!r}")
    return parsed.astype(float)


def build(rows: Iterable[Mapping[str, Any]]) -> "PriceSeries":
    """Build a :class:`PriceSeries` from normalized rows.

    Each row needs ``date``, ``open``, ``high``, ``low`` and ``close``;
    ``adj_close`` defaults to ``close`` and ``volume`` to 0. Numbers may be
    strings with thousands separators. Duplicate dates keep the last row.

    Raises:
        DataFormatError: on empty input, a missing field, an unparseable date
            or number, or a negative price or volume.
    """
    records = [dict(row) for row in rows]
    if not records:
        raise DataFormatError("Invalid price data: expected a non-empty sequence of rows")

    raw = pd.DataFrame.from_records(records)
    missing = [field for field in REQUIRED_FIELDS if field not in raw.columns]
    if missing:
        raise DataFormatError(f"Price data is missing required field(s): {', '.join(missing)}")

    table = pd.DataFrame({"date": _parse_dates(raw["date"])})
    for field in ("open", "high", "low", "close"):
        table[field] = _parse_numbers(raw[field], field)

    if "adj_close" in raw.columns:
        adj = raw["adj_close"].where(raw["adj_close"].notna(), raw["close"])
        table["adj_close"] = _parse_numbers(adj, "adj_close")
    else:
        table["adj_close"] = table["close"]

    if "volume" in raw.columns:
        volume = raw["volume"].where(raw["volume"].notna(), 0)
        table["volume"] = _parse_numbers(volume, "volume").round().astype("int64")
    else:
        table["volume"] = 0

    negative = (table[list(PRICE_FIELDS) + ["volume"]] < 0).any(axis=1)
    if negative.any():
        row = int(negative.idxmax())
        raise DataFormatError(f"Negative price or volume in row {row}")

    table = table.sort_values("date", kind="mergesort")
    duplicated = table["date"].duplicated(keep="last")
    if duplicated.any():
        logger.warning("Dropping %d duplicate price rows (last row per date wins)", int(duplicated.sum()))
        table = table[~duplicated]

    series = PriceSeries(table)
    logger.info("Built price series: %d trading days %s to %s", len(series), series.min_date, series.max_date)
    return series


def _with_changes(table: pd.DataFrame) -> pd.DataFrame:
    table = table.reset_index(drop=True).copy()
    previous = table["close"].shift()
    valid = previous.notna() & (previous != 0) & (table["close"] != 0)
    change = table["close"] - previous
    table["change"] = change.where(valid)
    table["change_percent"] = (change / previous * 100).where(valid)
    return table


def _optional(value: float) -> Optional[float]:
    return None if pd.isna(value) else float(value)


class PriceSeries:
    """Immutable, ascending, de-duplicated daily price table.

    Use :func:`build` to construct one from raw rows. Instances are read-only
    and can be shared freely.
    """

    def __init__(self, table: pd.DataFrame):
        table = _with_changes(table)
        self._points: Tuple[PricePoint, ...] = tuple(
            PricePoint(
                date=row.date.date(),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                adj_close=float(row.adj_close),
                volume=int(row.volume),
                change=_optional(row.change),
                change_percent=_optional(row.change_percent),
            )
            for row in table.itertuples(index=False)
        )
        self._dates = self._frozen(np.array([p.date for p in self._points], dtype="datetime64[D]"))
        self._highs = self._frozen(np.array([p.high for p in self._points], dtype=float))
        self._lows = self._frozen(np.array([p.low for p in self._points], dtype=float))
        self._closes = self._frozen(np.array([p.close for p in self._points], dtype=float))
        self._positions = {p.date: i for i, p in enumerate(self._points)}

    build = staticmethod(build)

    @staticmethod
    def _frozen(array: np.ndarray) -> np.ndarray:
        array.flags.writeable = False
        return array

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[PricePoint]:
        return iter(self._points)

    def __contains__(self, value: Any) -> bool:
        return parse_date(value) in self._positions

    def __repr__(self) -> str:
        return f"PriceSeries({len(self)} days, {self.min_date} to {self.max_date})"

    @property
    def min_date(self) -> Optional[date]:
        return self._points[0].date if self._points else None

    @property
    def max_date(self) -> Optional[date]:
        return self._points[-1].date if self._points else None

    def date_range(self) -> Optional[DateRange]:
        if not self._points:
            return None
        return DateRange(min_date=self.min_date, max_date=self.max_date, total_days=len(self))

    def to_frame(self) -> pd.DataFrame:
        """Return a copy of the series as a DataFrame indexed by date."""
        frame = pd.DataFrame([p.to_dict() for p in self._points])
        if frame.empty:
            return frame
        frame["date"] = pd.to_datetime(frame["date"])
        return frame.set_index("date")

    # ------------------------------------------------------------------
    # Queries

    def _search(self, day: date, side: str = "left") -> int:
        return int(np.searchsorted(self._dates, np.datetime64(day, "D"), side=side))

    def _position(self, when: Any) -> Optional[int]:
        return self._positions.get(parse_date(when))

    def price_at(self, when: Any) -> Optional[PricePoint]:
        """Exact calendar-date match, no fallback."""
        position = self._position(when)
        return None if position is None else self._points[position]

    def range_at(self, start: Any, end: Any) -> List[PricePoint]:
        """Points with ``start <= date <= end``, ascending."""
        start, end = parse_date(start), parse_date(end)
        if start is None or end is None:
            return []
        lo = self._search(start, "left")
        hi = self._search(end, "right")
        if lo >= hi:
            return []
        return list(self._points[lo:hi])

    def recent(self, when: Any, count: int) -> List[PricePoint]:
        """Up to ``count`` points ending at ``when`` (inclusive), ascending."""
        day = parse_date(when)
        if day is None or count <= 0:
            return []
        hi = self._search(day, "right")
        return list(self._points[max(0, hi - count):hi])

    def previous_trading_day(self, when: Any) -> Optional[date]:
        """Latest trading day strictly before ``when``."""
        day = parse_date(when)
        if day is None:
            return None
        position = self._search(day, "left") - 1
        return self._points[position].date if position >= 0 else None

    def next_trading_day(self, when: Any) -> Optional[date]:
        """Earliest trading day strictly after ``when``."""
        day = parse_date(when)
        if day is None:
            return None
        position = self._search(day, "right")
        return self._points[position].date if position < len(self._points) else None

    def next_trading_day_at_or_after(self, when: Any) -> Optional[date]:
        day = parse_date(when)
        if day is None:
            return None
        position = self._search(day, "left")
        return self._points[position].date if position < len(self._points) else None

    def sma(self, when: Any, period: int) -> Optional[float]:
        """Simple moving average of ``period`` closes ending at ``when``.

        Uses every available close when fewer than ``period`` precede it.
        ``None`` when ``when`` is not a trading day.
        """
        position = self._position(when)
        if position is None or period <= 0:
            return None
        return float(self._closes[max(0, position + 1 - period):position + 1].mean())

    def window52(self, when: Any) -> Optional[WeekRange52]:
        day = parse_date(when)
        if day is None:
            return None
        start = day - timedelta(days=INDICATORS["window_52_days"])
        lo = self._search(start, "left")
        hi = self._search(day, "right")
        if lo >= hi:
            return None

        # argmax/argmin return the first occurrence, i.e. the earliest date
        high_at = lo + int(np.argmax(self._highs[lo:hi]))
        low_at = lo + int(np.argmin(self._lows[lo:hi]))
        high = float(self._highs[high_at])
        low = float(self._lows[low_at])

        current = self.price_at(day)
        close = current.close if current is not None else 0.0
        span = high - low
        range_percent = clamp((close - low) / span * 100, 0.0, 100.0) if span > 0 else 50.0

        return WeekRange52(
            high=high,
            high_date=self._points[high_at].date,
            low=low,
            low_date=self._points[low_at].date,
            range_percent=range_percent,
        )

    def trend(self, when: Any) -> MarketTrend:
        """Classify the market at ``when`` against its 20- and 50-day averages."""
        day = parse_date(when)
        position = self._positions.get(day)
        if position is None:
            return MarketTrend.NEUTRAL

        lookback = day - timedelta(days=INDICATORS["trend_lookback_days"])
        available = position + 1 - self._search(lookback, "left")
        if available < INDICATORS["trend_min_points"]:
            return MarketTrend.NEUTRAL

        current = float(self._closes[position])
        ma_short = self.sma(day, INDICATORS["ma_short"])
        ma_long = self.sma(day, INDICATORS["ma_long"])

        if current > ma_short and current > ma_long and ma_short > ma_long:
            return MarketTrend.BULLISH
        if current < ma_short and current < ma_long and ma_short < ma_long:
            return MarketTrend.BEARISH
        return MarketTrend.NEUTRAL
