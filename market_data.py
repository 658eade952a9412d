"""Price data ingestion: raw row normalization, file/URL readers and an on-disk cache."""

import json
import logging
import os
import random
import time
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd
import requests

from config import CACHE, DATA_DIR, STORAGE_VERSION
from errors import DataFormatError
from price_index import PriceSeries, build

logger = logging.getLogger(__name__)

# Keys produced by spreadsheet exports that mean the same column
KEY_ALIASES = {
    "adjclose": "adj_close",
    "adjusted_close": "adj_close",
    "vol": "volume",
}

# Request headers to mimic browser
HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Accept': 'application/json',
}


def normalize_key(key: Any) -> str:
    """Normalize a column name: ``' "Adj Close"'`` -> ``'adj_close'``."""
    cleaned = str(key).strip().strip("\"'").strip().lower()
    cleaned = cleaned.replace("*", "").replace("-", " ").replace(".", " ")
    cleaned = "_".join(cleaned.split())
    return KEY_ALIASES.get(cleaned, cleaned)


def normalize_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().strip("\"'").strip()
    return value


def normalize_row(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Return ``raw`` with normalized keys and stripped string values."""
    return {normalize_key(k): normalize_value(v) for k, v in raw.items()}


def normalize_rows(rows: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [normalize_row(row) for row in rows]


def read_csv_rows(path: str) -> List[Dict[str, Any]]:
    """Read a CSV export (e.g. ``date, "open", ...``) as a list of raw rows."""
    try:
        frame = pd.read_csv(path, dtype=str, skipinitialspace=True, keep_default_na=False)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise DataFormatError(f"Failed to read price data from {path}: {e}") from e
    return frame.to_dict(orient="records")


def read_json_rows(path: str) -> List[Dict[str, Any]]:
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise DataFormatError(f"Failed to read price data from {path}: {e}") from e
    return _expect_rows(data, path)


def fetch_json_rows(url: str, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
    """Fetch a JSON array of raw rows over HTTP."""
    timeout = CACHE["request_timeout"] if timeout is None else timeout
    try:
        resp = requests.get(url, headers=HEADERS, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except requests.exceptions.RequestException as e:
        raise DataFormatError(f"Failed to fetch price data: {e}") from e
    except ValueError as e:
        raise DataFormatError(f"Price data at {url} is not valid JSON: {e}") from e
    return _expect_rows(data, url)


def _expect_rows(data: Any, source: str) -> List[Dict[str, Any]]:
    if not isinstance(data, list) or not data:
        raise DataFormatError(f"Invalid price data format in {source}: expected non-empty array")
    if not all(isinstance(row, dict) for row in data):
        raise DataFormatError(f"Invalid price data format in {source}: every entry must be an object")
    return data


def read_rows(source: str) -> List[Dict[str, Any]]:
    """Read raw rows from a URL, a ``.json`` file or a CSV file."""
    if source.startswith(("http://", "https://")):
        return fetch_json_rows(source)
    if source.lower().endswith(".json"):
        return read_json_rows(source)
    return read_csv_rows(source)


def generate_sample_rows(days: int = 750, start: Any = "2018-01-02", base_price: float = 2700.0,
                         seed: int = 42) -> List[Dict[str, Any]]:
    """Generate a deterministic random-walk daily series over business days."""
    rng = random.Random(seed)
    dates = pd.bdate_range(start=start, periods=days)

    rows = []
    close = base_price
    for day in dates:
        open_ = close * rng.uniform(0.995, 1.005)
        close = close * (1 + rng.gauss(0.0004, 0.011))
        high = max(open_, close) * rng.uniform(1.0, 1.01)
        low = min(open_, close) * rng.uniform(0.99, 1.0)
        rows.append({
            "date": day.date().isoformat(),
            "open": round(open_, 2),
            "high": round(high, 2),
            "low": round(low, 2),
            "close": round(close, 2),
            "adj_close": round(close, 2),
            "volume": int(rng.uniform(2e9, 6e9)),
        })
    return rows


def _json_default(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class PriceDataLoader:
    """Loads a :class:`PriceSeries` from a source, caching normalized rows on disk.

    The cache is a versioned JSON document reused while it is younger than
    ``max_age`` seconds and was written from the same source.
    """

    def __init__(self, cache_dir: Optional[str] = None, max_age: Optional[float] = None,
                 clock=time.time):
        self.cache_dir = cache_dir or DATA_DIR
        self.cache_path = os.path.join(self.cache_dir, CACHE["file_name"])
        self.max_age = CACHE["max_age_seconds"] if max_age is None else max_age
        self._clock = clock

    def load(self, source: str, force_refresh: bool = False) -> PriceSeries:
        """Return a freshly built series for ``source``.

        Raises:
            DataFormatError: when the source cannot be read or fails validation.
        """
        if not force_refresh:
            cached = self._load_from_cache(source)
            if cached is not None:
                return build(cached)

        rows = normalize_rows(read_rows(source))
        logger.info("Loaded %d raw price entries from %s", len(rows), source)
        series = build(rows)
        self._save_to_cache(source, [p.to_dict() for p in series])
        return series

    def load_rows(self, rows: List[Mapping[str, Any]]) -> PriceSeries:
        """Build a series from in-memory raw rows (no caching)."""
        return build(normalize_rows(list(rows)))

    def _load_from_cache(self, source: str) -> Optional[List[Dict[str, Any]]]:
        if not os.path.exists(self.cache_path):
            return None
        try:
            with open(self.cache_path, 'r') as f:
                cached = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable price cache %s: %s", self.cache_path, e)
            return None

        if cached.get('version') != STORAGE_VERSION:
            logger.info("Price data cache version mismatch")
            return None
        if cached.get('source') != source:
            return None
        age = self._clock() - cached.get('timestamp', 0)
        if age > self.max_age:
            logger.info("Price data cache expired (%.0fs old)", age)
            return None

        logger.info("Loaded %d price entries from cache", len(cached.get('data', [])))
        return cached.get('data')

    def _save_to_cache(self, source: str, rows: List[Dict[str, Any]]):
        if not os.path.exists(self.cache_dir):
            os.makedirs(self.cache_dir)
        cached = {
            'version': STORAGE_VERSION,
            'source': source,
            'timestamp': self._clock(),
            'data': rows,
        }
        with open(self.cache_path, 'w') as f:
            json.dump(cached, f, default=_json_default)
        logger.info("Cached %d price entries", len(rows))

    def clear_cache(self):
        if os.path.exists(self.cache_path):
            os.remove(self.cache_path)
            logger.info("Price data cache cleared")

    def cache_status(self) -> Dict[str, Any]:
        if not os.path.exists(self.cache_path):
            return {"cached": False, "age_seconds": None, "source": None}
        try:
            with open(self.cache_path, 'r') as f:
                cached = json.load(f)
        except (OSError, json.JSONDecodeError):
            return {"cached": False, "age_seconds": None, "source": None}
        return {
            "cached": True,
            "age_seconds": round(self._clock() - cached.get('timestamp', 0), 1),
            "source": cached.get('source'),
            "entries": len(cached.get('data', [])),
        }
