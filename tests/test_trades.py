from __future__ import annotations

import math
from dataclasses import replace
from datetime import date

import pytest

from conftest import FIXED_NOW, make_row
from errors import (
    GameStateError,
    InsufficientFundsError,
    InsufficientSharesError,
    InvalidAdvanceError,
    InvalidShareAmountError,
    InvalidStartDateError,
    InvalidStartingCashError,
    InvalidTradeTypeError,
    MissingPriceError,
    NoMoreDataError,
)
from portfolio import ACTIVE, ENDED, PAUSED
from price_index import build
from trades import LedgerEngine, calendar_target


def _new(engine, start="2020-01-02", cash=10000.0):
    return engine.create_session(start, cash).unwrap()


def test_create_session(engine) -> None:
    session = _new(engine)

    assert session.game_id == "id-0001"
    assert session.status == ACTIVE
    assert session.start_date == session.current_date == date(2020, 1, 2)
    assert session.current_cash == session.starting_cash == 10000.0
    assert session.shares == 0 and session.average_holding_price == 0
    assert session.created_at == FIXED_NOW


@pytest.mark.parametrize("cash", [0, -5, 0.004, float("nan"), float("inf"), True])
def test_create_session_rejects_bad_cash(engine, cash) -> None:
    result = engine.create_session("2020-01-02", cash)
    assert result.failed
    assert isinstance(result.error, InvalidStartingCashError)


def test_create_session_requires_trading_day(engine) -> None:
    result = engine.create_session("2020-01-04", 1000)
    assert isinstance(result.error, InvalidStartDateError)


@pytest.mark.parametrize("start", ["not-a-date", "2020-13-45", None])
def test_create_session_rejects_unparseable_dates(engine, start) -> None:
    result = engine.create_session(start, 1000)
    assert result.failed
    assert isinstance(result.error, InvalidStartDateError)


def test_create_session_rounds_starting_cash(engine) -> None:
    session = engine.create_session("2020-01-02", 0.005).unwrap()
    assert session.starting_cash == session.current_cash == 0.01


def test_buy_advance_sell_round_trip(engine) -> None:
    session = _new(engine)

    preview = engine.preview_trade(session, "buy", 50).unwrap()
    assert (preview.price_per_share, preview.total_amount) == (100.0, 5000.0)
    assert (preview.new_cash, preview.new_shares, preview.new_avg_price) == (5000.0, 50.0, 100.0)

    bought = engine.buy_shares(session, 50).unwrap()
    session = bought.session
    assert (session.current_cash, session.shares, session.average_holding_price) == (5000.0, 50.0, 100.0)
    assert bought.transaction.profit_loss is None
    assert bought.transaction.profit_loss_percent is None
    assert session.total_invested == 5000.0
    assert (session.buy_count, session.transaction_count) == (1, 1)

    session = engine.advance_date(session, "day", 1).unwrap()
    assert session.current_date == date(2020, 1, 3)

    sold = engine.sell_shares(session, 50).unwrap()
    session = sold.session
    assert sold.transaction.total_amount == 5500.0
    assert sold.transaction.profit_loss == 500.0
    assert sold.transaction.profit_loss_percent == 10.0
    assert session.realized_profit_loss == 500.0
    assert session.shares == 0
    assert session.average_holding_price == 0
    assert session.current_cash == 10500.0
    assert (session.sell_count, session.transaction_count, session.total_divested) == (1, 2, 5500.0)


def test_trades_do_not_modify_input(engine) -> None:
    session = _new(engine)
    snapshot = session.to_dict()

    engine.buy_shares(session, 10)
    engine.advance_date(session, "day", 1)
    engine.pause_game(session)

    assert session.to_dict() == snapshot


def test_preview_matches_execution(engine) -> None:
    session = engine.buy_shares(_new(engine), 12.34567).unwrap().session

    for trade_type, shares in (("buy", 3.33333), ("sell", 7.5)):
        preview = engine.preview_trade(session, trade_type, shares).unwrap()
        run = engine.buy_shares if trade_type == "buy" else engine.sell_shares
        outcome = run(session, shares).unwrap()
        t = outcome.transaction

        assert t.shares == preview.shares
        assert t.price_per_share == preview.price_per_share
        assert t.total_amount == preview.total_amount
        assert t.cash_after == preview.new_cash == outcome.session.current_cash
        assert t.shares_after == preview.new_shares == outcome.session.shares
        assert t.avg_price_after == preview.new_avg_price == outcome.session.average_holding_price
        assert t.profit_loss == preview.profit_loss
        assert t.profit_loss_percent == preview.profit_loss_percent


def test_shares_rounded_to_four_decimals(engine) -> None:
    outcome = engine.buy_shares(_new(engine), 1.23456789).unwrap()
    assert outcome.transaction.shares == 1.2346
    assert outcome.transaction.total_amount == 123.46


def test_weighted_average_on_buys_only(sample_engine, sample_series) -> None:
    days = list(sample_series)
    session = _new(sample_engine, days[0].date)
    session = sample_engine.buy_shares(session, 1).unwrap().session
    session = sample_engine.advance_to(session, days[5].date).unwrap()
    session = sample_engine.buy_shares(session, 1).unwrap().session

    first, second = round(days[0].close, 2), round(days[5].close, 2)
    assert session.average_holding_price == pytest.approx((first + second) / 2, abs=0.01)

    avg = session.average_holding_price
    session = sample_engine.advance_to(session, days[10].date).unwrap()
    session = sample_engine.sell_shares(session, 0.5).unwrap().session
    assert session.average_holding_price == avg


def test_conservation_over_many_trades(sample_engine, sample_series) -> None:
    session = _new(sample_engine, sample_series.min_date, 25000.0)
    bought = sold = 0.0
    operations = 0

    for step in range(60):
        action = "sell" if step % 3 == 2 else "buy"
        shares = 0.7321 if action == "buy" else session.shares / 2
        run = sample_engine.buy_shares if action == "buy" else sample_engine.sell_shares
        result = run(session, shares)
        if result.ok:
            operations += 1
            session = result.value.session
            if action == "buy":
                bought += result.value.transaction.total_amount
            else:
                sold += result.value.transaction.total_amount
        session = sample_engine.advance_date(session, "day", 1).unwrap()

    assert session.current_cash >= 0
    assert session.current_cash == pytest.approx(
        session.starting_cash - bought + sold, abs=0.01 * max(operations, 1))
    assert session.current_cash == pytest.approx(
        session.starting_cash - session.total_invested + session.total_divested, abs=0.01 * max(operations, 1))


def test_sell_profit_loss_uses_average_price(engine) -> None:
    session = engine.buy_shares(_new(engine), 20).unwrap().session
    session = engine.advance_date(session, "day", 1).unwrap()
    sold = engine.sell_shares(session, 5).unwrap()

    assert sold.transaction.profit_loss == 50.0
    assert sold.transaction.profit_loss_percent == 10.0
    assert sold.session.average_holding_price == 100.0
    assert sold.session.shares == 15.0


@pytest.mark.parametrize("shares", [0, -1, 0.00001, float("nan"), float("inf"), "10"])
def test_invalid_share_amounts(engine, shares) -> None:
    result = engine.buy_shares(_new(engine), shares)
    assert isinstance(result.error, InvalidShareAmountError)


def test_insufficient_funds(engine) -> None:
    session = _new(engine, cash=1000.0)
    result = engine.buy_shares(session, 10.0001)
    assert isinstance(result.error, InsufficientFundsError)
    assert "Insufficient funds" in result.message
    assert engine.buy_shares(session, 10).ok


def test_insufficient_shares(engine) -> None:
    session = engine.buy_shares(_new(engine), 5).unwrap().session
    result = engine.sell_shares(session, 5.0001)
    assert isinstance(result.error, InsufficientSharesError)


def test_unknown_trade_type(engine) -> None:
    result = engine.preview_trade(_new(engine), "short", 1)
    assert isinstance(result.error, InvalidTradeTypeError)


def test_missing_price_on_current_date(engine) -> None:
    session = replace(_new(engine), current_date=date(2020, 1, 4))
    assert isinstance(engine.buy_shares(session, 1).error, MissingPriceError)
    assert engine.calculate_max_buy_shares(session) == 0.0


def test_calculate_max_buy_shares_floors(engine) -> None:
    session = _new(engine, cash=1000.0)
    assert engine.calculate_max_buy_shares(session) == 10.0

    session = engine.advance_date(session, "day", 1).unwrap()
    shares = engine.calculate_max_buy_shares(session)
    assert shares == 9.0909
    assert engine.buy_shares(session, shares).ok
    assert isinstance(engine.buy_shares(session, shares + 0.01).error, InsufficientFundsError)


def test_advance_is_monotonic(sample_engine, sample_series) -> None:
    session = _new(sample_engine, sample_series.min_date)
    for unit in ("day", "week", "month", "day", "week"):
        advanced = sample_engine.advance_date(session, unit, 1).unwrap()
        assert advanced.current_date > session.current_date
        assert advanced.current_date in sample_series
        session = advanced


def test_advance_snaps_over_weekend() -> None:
    series = build([make_row("2020-01-03", 100.0), make_row("2020-01-06", 101.0)])
    engine = LedgerEngine(series)
    session = engine.create_session("2020-01-03", 1000).unwrap()
    assert engine.advance_date(session, "day", 1).unwrap().current_date == date(2020, 1, 6)


def test_advance_past_end_leaves_session_unchanged(engine) -> None:
    session = engine.advance_date(_new(engine), "day", 1).unwrap()
    before = session.to_dict()

    result = engine.advance_date(session, "day", 1)
    assert isinstance(result.error, NoMoreDataError)
    assert session.to_dict() == before


@pytest.mark.parametrize("unit, count", [("decade", 1), ("day", 0), ("day", -2), ("day", 1.5), ("day", True)])
def test_advance_rejects_bad_requests(engine, unit, count) -> None:
    assert isinstance(engine.advance_date(_new(engine), unit, count).error, InvalidAdvanceError)


def test_advance_to_requires_future_date(engine) -> None:
    session = _new(engine)
    assert isinstance(engine.advance_to(session, "2020-01-02").error, InvalidAdvanceError)
    assert engine.advance_to(session, "2020-01-03").unwrap().current_date == date(2020, 1, 3)


@pytest.mark.parametrize("target", ["garbage", "2020-13-45"])
def test_advance_to_rejects_unparseable_dates(engine, target) -> None:
    session = _new(engine)
    result = engine.advance_to(session, target)
    assert isinstance(result.error, InvalidAdvanceError)
    assert session.current_date == date(2020, 1, 2)


@pytest.mark.parametrize(
    "start, unit, count, expected",
    [
        (date(2020, 1, 31), "month", 1, date(2020, 2, 29)),
        (date(2020, 2, 29), "year", 1, date(2021, 2, 28)),
        (date(2020, 1, 2), "week", 2, date(2020, 1, 16)),
        (date(2020, 12, 31), "day", 1, date(2021, 1, 1)),
    ],
)
def test_calendar_target(start, unit, count, expected) -> None:
    assert calendar_target(start, unit, count) == expected


def test_month_advance_can_land_past_naive_target() -> None:
    series = build([make_row("2020-01-31", 100.0), make_row("2020-03-02", 101.0)])
    engine = LedgerEngine(series)
    session = engine.create_session("2020-01-31", 1000).unwrap()
    assert engine.advance_date(session, "month", 1).unwrap().current_date == date(2020, 3, 2)


def test_state_transitions(engine) -> None:
    session = _new(engine)

    paused = engine.pause_game(session).unwrap()
    assert paused.status == PAUSED
    assert isinstance(engine.buy_shares(paused, 1).error, GameStateError)
    assert isinstance(engine.advance_date(paused, "day", 1).error, GameStateError)
    assert isinstance(engine.pause_game(paused).error, GameStateError)

    resumed = engine.resume_game(paused).unwrap()
    assert resumed.status == ACTIVE
    assert isinstance(engine.resume_game(resumed).error, GameStateError)

    ended = engine.end_game(paused).unwrap().session
    assert ended.status == ENDED
    assert ended.ended_at == FIXED_NOW
    for op in (engine.pause_game, engine.resume_game):
        assert isinstance(op(ended).error, GameStateError)
    assert isinstance(engine.end_game(ended).error, GameStateError)
    assert isinstance(engine.buy_shares(ended, 1).error, GameStateError)


def test_end_game_history(engine) -> None:
    session = engine.buy_shares(_new(engine), 50).unwrap().session
    session = engine.advance_date(session, "day", 1).unwrap()

    history = engine.end_game(session).unwrap().history
    assert history.end_date == date(2020, 1, 3)
    assert history.days_played == 1
    assert history.final_value == 10500.0
    assert history.unrealized_profit_loss == 500.0
    assert history.total_profit_loss == 500.0
    assert history.total_profit_loss_percent == 5.0
    assert (history.transaction_count, history.buy_count, history.sell_count) == (1, 1, 0)


def test_compute_stats(engine) -> None:
    session = engine.buy_shares(_new(engine), 50).unwrap().session
    session = engine.advance_date(session, "day", 1).unwrap()

    stats = engine.compute_stats(session)
    assert stats == engine.compute_stats(session)
    assert stats.current_price == 110.0
    assert stats.current_value == 10500.0
    assert stats.unrealized_profit_loss == 500.0
    assert stats.unrealized_profit_loss_percent == 10.0
    assert stats.total_profit_loss_percent == 5.0


def test_compute_stats_degrades_without_price(engine) -> None:
    session = engine.buy_shares(_new(engine), 50).unwrap().session
    stats = engine.compute_stats(replace(session, current_date=date(2020, 1, 4)))

    assert stats.current_price == 0.0
    assert stats.unrealized_profit_loss == 0.0
    assert stats.current_value == 5000.0
    assert not math.isnan(stats.total_profit_loss_percent)
