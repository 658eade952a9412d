"""Configuration settings for SP500-Sim."""

import os

# Environment overrides
ENV_PREFIX = "SP500_SIM_"


def _env(name: str, default: str = "") -> str:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


# Game settings
GAME = {
    "starting_cash": float(_env("STARTING_CASH", "10000")),
    "default_user": "local",
    "default_name": "Untitled Game",
    "max_name_length": 100,
}
STARTING_CASH = GAME["starting_cash"]

# Rounding precision (decimal places)
PRECISION = {
    "money": 2,     # cash, prices, totals, P/L
    "shares": 4,    # fractional shares
    "percent": 2,
}

# Date advance units accepted by the ledger
ADVANCE_UNITS = ("day", "week", "month", "year")

# Technical indicators
INDICATORS = {
    "window_52_days": 52 * 7,       # trailing calendar days for the 52-week range
    "trend_lookback_days": 50,      # calendar days scanned for the sample guard
    "trend_min_points": 20,         # fewer points than this -> neutral
    "ma_short": 20,
    "ma_long": 50,
}

# Price data cache
CACHE = {
    "max_age_seconds": 24 * 60 * 60,
    "file_name": "price_data_cache.json",
    "request_timeout": 10,
}
STORAGE_VERSION = "1.0.0"

# Achievement thresholds (52-week range position, percent)
ACHIEVEMENT_THRESHOLDS = {
    "near_52_week_low_pct": 5.0,
    "near_52_week_high_pct": 95.0,
}

# Leaderboard defaults
LEADERBOARD = {
    "default_limit": 100,
    "default_username": "Player",
}

# Data paths
DATA_DIR = _env("DATA_DIR", "data")
DATA_SOURCE = _env("DATA_SOURCE", os.path.join(DATA_DIR, "sp500.csv"))
USE_SAMPLE_DATA = _env("SAMPLE_DATA").lower() in ("1", "true", "yes")
LOG_LEVEL = _env("LOG_LEVEL", "WARNING").upper()
