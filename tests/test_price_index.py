from __future__ import annotations

from datetime import date

import pandas as pd
import pytest

from conftest import make_row
from errors import DataFormatError
from price_index import MarketTrend, PriceSeries, build


def test_build_sorts_and_computes_changes() -> None:
    series = build([make_row("2020-01-03", 110.0), make_row("2020-01-02", 100.0)])

    points = list(series)
    assert [p.date for p in points] == [date(2020, 1, 2), date(2020, 1, 3)]
    assert points[0].change is None
    assert points[1].change == pytest.approx(10.0)
    assert points[1].change_percent == pytest.approx(10.0)


def test_build_accepts_formatted_strings() -> None:
    series = build([{
        "date": ' "2020-01-02" ',
        "open": '"3,244.67"',
        "high": " 3,258.14 ",
        "low": "3,235.53",
        "close": "3,257.85",
        "volume": "3,458,250,000",
    }])

    point = series.price_at("2020-01-02")
    assert point.close == pytest.approx(3257.85)
    assert point.adj_close == pytest.approx(3257.85)
    assert point.volume == 3_458_250_000


def test_build_defaults_volume_to_zero() -> None:
    row = make_row("2020-01-02", 100.0)
    del row["volume"]
    assert build([row]).price_at("2020-01-02").volume == 0


def test_build_keeps_last_duplicate() -> None:
    series = build([make_row("2020-01-02", 100.0), make_row("2020-01-02", 105.0)])
    assert len(series) == 1
    assert series.price_at("2020-01-02").close == 105.0


@pytest.mark.parametrize(
    "rows",
    [
        [],
        [{"date": "2020-01-02", "open": 1, "high": 1, "low": 1}],
        [make_row("not a date", 100.0)],
        [{**make_row("2020-01-02", 100.0), "close": "abc"}],
        [make_row("2020-01-02", 100.0, low=-1.0)],
    ],
)
def test_build_rejects_bad_input(rows) -> None:
    with pytest.raises(DataFormatError):
        build(rows)


def test_build_is_available_on_the_class() -> None:
    assert PriceSeries.build([make_row("2020-01-02", 1.0)]).min_date == date(2020, 1, 2)


def test_price_at_is_exact(two_day_series) -> None:
    assert two_day_series.price_at(date(2020, 1, 2)).close == 100.0
    assert two_day_series.price_at("2020-01-04") is None
    assert "2020-01-03" in two_day_series
    assert date(2020, 1, 1) not in two_day_series


def test_range_at_is_inclusive(two_day_series) -> None:
    assert [p.close for p in two_day_series.range_at("2020-01-02", "2020-01-03")] == [100.0, 110.0]
    assert [p.close for p in two_day_series.range_at("2020-01-03", "2020-02-01")] == [110.0]
    assert two_day_series.range_at("2020-02-01", "2020-03-01") == []
    assert two_day_series.range_at("2020-01-03", "2020-01-02") == []


def test_trading_day_navigation(two_day_series) -> None:
    assert two_day_series.previous_trading_day("2020-01-03") == date(2020, 1, 2)
    assert two_day_series.previous_trading_day("2020-01-02") is None
    assert two_day_series.next_trading_day("2020-01-02") == date(2020, 1, 3)
    assert two_day_series.next_trading_day("2020-01-03") is None
    assert two_day_series.next_trading_day_at_or_after("2020-01-01") == date(2020, 1, 2)
    assert two_day_series.next_trading_day_at_or_after("2020-01-03") == date(2020, 1, 3)
    assert two_day_series.next_trading_day_at_or_after("2020-01-04") is None


def test_date_range_and_frame(two_day_series) -> None:
    info = two_day_series.date_range()
    assert (info.min_date, info.max_date, info.total_days) == (date(2020, 1, 2), date(2020, 1, 3), 2)

    frame = two_day_series.to_frame()
    assert list(frame["close"]) == [100.0, 110.0]
    assert frame.index[0] == pd.Timestamp("2020-01-02")


def test_recent_returns_trailing_points(two_day_series) -> None:
    assert [p.close for p in two_day_series.recent("2020-01-03", 5)] == [100.0, 110.0]
    assert [p.close for p in two_day_series.recent("2020-01-03", 1)] == [110.0]
    assert two_day_series.recent("2020-01-03", 0) == []


def test_window52_uses_high_and_low_fields() -> None:
    series = build([
        make_row("2020-01-02", 100.0, high=120.0, low=90.0),
        make_row("2020-01-03", 105.0, high=108.0, low=80.0),
        make_row("2020-01-06", 100.0, high=101.0, low=99.0),
    ])

    window = series.window52("2020-01-06")
    assert window.high == 120.0
    assert window.high_date == date(2020, 1, 2)
    assert window.low == 80.0
    assert window.low_date == date(2020, 1, 3)
    assert window.range_percent == pytest.approx(50.0)


def test_window52_ties_break_on_earliest_date() -> None:
    series = build([
        make_row("2020-01-02", 100.0, high=110.0, low=90.0),
        make_row("2020-01-03", 100.0, high=110.0, low=90.0),
    ])
    window = series.window52("2020-01-03")
    assert window.high_date == date(2020, 1, 2)
    assert window.low_date == date(2020, 1, 2)


def test_window52_flat_range_and_empty_window(two_day_series) -> None:
    flat = build([make_row("2020-01-02", 100.0)])
    assert flat.window52("2020-01-02").range_percent == 50.0
    assert two_day_series.window52("2019-01-01") is None


def test_window52_excludes_points_older_than_52_weeks() -> None:
    series = build([
        make_row("2019-01-02", 500.0),
        make_row("2020-01-02", 100.0),
    ])
    assert series.window52("2020-01-02").high == 100.0


def _daily(closes):
    days = pd.bdate_range("2020-01-01", periods=len(closes))
    return build([make_row(d.date().isoformat(), c) for d, c in zip(days, closes)])


def test_trend_neutral_with_short_history() -> None:
    series = _daily([100.0 + i for i in range(15)])
    assert series.trend(series.max_date) is MarketTrend.NEUTRAL


def test_trend_neutral_when_recent_window_is_sparse() -> None:
    early = pd.bdate_range("2019-06-03", periods=60)
    late = pd.bdate_range("2019-11-01", periods=15)
    days = list(early) + list(late)
    series = build([make_row(d.date().isoformat(), 100.0 + i) for i, d in enumerate(days)])

    assert len(series) == 75
    assert series.trend(series.max_date) is MarketTrend.NEUTRAL


def test_trend_bullish_and_bearish() -> None:
    rising = _daily([100.0 + i for i in range(60)])
    falling = _daily([200.0 - i for i in range(60)])

    assert rising.trend(rising.max_date) is MarketTrend.BULLISH
    assert falling.trend(falling.max_date) is MarketTrend.BEARISH


def test_trend_neutral_off_series(two_day_series) -> None:
    assert two_day_series.trend("2020-01-04") is MarketTrend.NEUTRAL


def test_sma_uses_available_closes(two_day_series) -> None:
    assert two_day_series.sma("2020-01-03", 20) == pytest.approx(105.0)
    assert two_day_series.sma("2020-01-03", 1) == pytest.approx(110.0)
    assert two_day_series.sma("2020-01-04", 20) is None


@pytest.mark.parametrize("when", ["garbage", "2020-13-45", None, object()])
def test_queries_tolerate_unparseable_dates(two_day_series, when) -> None:
    assert when not in two_day_series
    assert two_day_series.price_at(when) is None
    assert two_day_series.range_at(when, "2020-01-03") == []
    assert two_day_series.range_at("2020-01-02", when) == []
    assert two_day_series.recent(when, 5) == []
    assert two_day_series.previous_trading_day(when) is None
    assert two_day_series.next_trading_day(when) is None
    assert two_day_series.next_trading_day_at_or_after(when) is None
    assert two_day_series.sma(when, 20) is None
    assert two_day_series.window52(when) is None
    assert two_day_series.trend(when) is MarketTrend.NEUTRAL
