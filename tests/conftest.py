from __future__ import annotations

import itertools
from datetime import datetime, timezone

import pytest

from game_store import GameStore
from market_data import generate_sample_rows
from price_index import build
from trades import LedgerEngine

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_row(day: str, close: float, **overrides) -> dict:
    row = {
        "date": day,
        "open": close,
        "high": close,
        "low": close,
        "close": close,
        "adj_close": close,
        "volume": 1_000_000,
    }
    row.update(overrides)
    return row


@pytest.fixture
def two_day_series():
    return build([make_row("2020-01-02", 100.0), make_row("2020-01-03", 110.0)])


@pytest.fixture
def sample_series():
    return build(generate_sample_rows(days=400))


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def id_factory():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter):04d}"


@pytest.fixture
def engine(two_day_series, clock, id_factory):
    return LedgerEngine(two_day_series, clock=clock, id_factory=id_factory)


@pytest.fixture
def sample_engine(sample_series, clock, id_factory):
    return LedgerEngine(sample_series, clock=clock, id_factory=id_factory)


@pytest.fixture
def store(tmp_path):
    return GameStore(str(tmp_path / "data"))
