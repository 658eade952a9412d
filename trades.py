"""Trade execution and validation.

The :class:`LedgerEngine` owns the buy/sell/advance state machine of a game.
Every operation takes a :class:`~portfolio.GameSession` and returns a new one
inside a :class:`~errors.Result`; the input is never modified, and a failed
operation leaves it exactly as it was.
"""

import logging
import uuid
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

import pandas as pd

from config import ADVANCE_UNITS, GAME, STARTING_CASH
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
    Result,
)
from numeric import floor_to, is_finite_number, round_money, round_percent, round_shares, to_date
from portfolio import (
    ACTIVE,
    BUY,
    ENDED,
    PAUSED,
    SELL,
    GameHistory,
    GameOutcome,
    GameSession,
    GameSessionComputed,
    TradeOutcome,
    TradePreview,
    Transaction,
)
from price_index import PriceSeries

logger = logging.getLogger(__name__)

_OFFSETS = {
    "day": lambda n: pd.DateOffset(days=n),
    "week": lambda n: pd.DateOffset(weeks=n),
    "month": lambda n: pd.DateOffset(months=n),
    "year": lambda n: pd.DateOffset(years=n),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def calendar_target(current: date, unit: str, count: int) -> date:
    """Naive calendar arithmetic: month and year steps clamp to the month end."""
    return (pd.Timestamp(current) + _OFFSETS[unit](count)).date()


class LedgerEngine:
    """Applies trades and date advances to game sessions against one price series."""

    def __init__(self, series: PriceSeries, clock: Optional[Callable[[], datetime]] = None,
                 id_factory: Optional[Callable[[], str]] = None):
        self.series = series
        self._clock = clock or _utcnow
        self._new_id = id_factory or _new_id

    def _price(self, when: date) -> Optional[float]:
        point = self.series.price_at(when)
        return None if point is None else point.close

    # ------------------------------------------------------------------
    # Lifecycle

    def create_session(self, start_date: Any, starting_cash: float = STARTING_CASH,
                       game_name: str = GAME["default_name"],
                       user_id: str = GAME["default_user"]) -> Result[GameSession]:
        """Start a new active game on ``start_date`` with ``starting_cash``."""
        if not is_finite_number(starting_cash) or round_money(starting_cash) <= 0:
            return Result.failure(InvalidStartingCashError(
                f"Starting cash must be a positive amount, got {starting_cash!r}"))
        starting_cash = round_money(starting_cash)

        try:
            start = to_date(start_date)
        except ValueError:
            return Result.failure(InvalidStartDateError(f"{start_date!r} is not a valid date"))
        if self.series.price_at(start) is None:
            return Result.failure(InvalidStartDateError(
                f"{start.isoformat()} is not a trading day in the price data"))

        now = self._clock()
        session = GameSession(
            game_id=self._new_id(),
            user_id=user_id,
            game_name=(game_name or GAME["default_name"])[:GAME["max_name_length"]],
            status=ACTIVE,
            start_date=start,
            current_date=start,
            created_at=now,
            updated_at=now,
            starting_cash=starting_cash,
            current_cash=starting_cash,
        )
        logger.info("Created game %s starting %s with $%.2f", session.game_id, start, session.starting_cash)
        return Result.success(session)

    def _transition(self, session: GameSession, allowed_from, status: str) -> Result[GameSession]:
        if session.status not in allowed_from:
            return Result.failure(GameStateError(
                f"Cannot move game from {session.status} to {status}"))
        updated = replace(session, status=status, updated_at=self._clock())
        logger.info("Game %s is now %s", session.game_id, status)
        return Result.success(updated)

    def pause_game(self, session: GameSession) -> Result[GameSession]:
        return self._transition(session, (ACTIVE,), PAUSED)

    def resume_game(self, session: GameSession) -> Result[GameSession]:
        return self._transition(session, (PAUSED,), ACTIVE)

    def end_game(self, session: GameSession) -> Result[GameOutcome]:
        """Finalize a game and emit its history record. Ended games are terminal."""
        if session.status not in (ACTIVE, PAUSED):
            return Result.failure(GameStateError(f"Cannot move game from {session.status} to {ENDED}"))

        now = self._clock()
        computed = self.compute_stats(session)
        ended = replace(session, status=ENDED, ended_at=now, updated_at=now)
        history = GameHistory(
            game_id=session.game_id,
            game_name=session.game_name,
            user_id=session.user_id,
            start_date=session.start_date,
            end_date=session.current_date,
            days_played=computed.days_played,
            starting_cash=session.starting_cash,
            final_cash=session.current_cash,
            final_shares=session.shares,
            final_value=computed.current_value,
            total_profit_loss=computed.total_profit_loss,
            total_profit_loss_percent=computed.total_profit_loss_percent,
            realized_profit_loss=session.realized_profit_loss,
            unrealized_profit_loss=computed.unrealized_profit_loss,
            transaction_count=session.transaction_count,
            buy_count=session.buy_count,
            sell_count=session.sell_count,
            completed_at=now,
        )
        logger.info("Game %s ended with total P/L $%.2f", session.game_id, history.total_profit_loss)
        return Result.success(GameOutcome(session=ended, history=history))

    # ------------------------------------------------------------------
    # Trading

    def preview_trade(self, session: GameSession, trade_type: str, shares: float) -> Result[TradePreview]:
        """Project a trade without applying it.

        Shares are rounded to 4 decimals and the price to 2 before any amount
        is computed; every money figure is rounded to 2 decimals as soon as
        it is produced.
        """
        if trade_type not in (BUY, SELL):
            return Result.failure(InvalidTradeTypeError(f"Unknown trade type: {trade_type!r}. Use buy or sell."))
        if not session.is_active:
            return Result.failure(GameStateError(f"Cannot trade while the game is {session.status}"))

        close = self._price(session.current_date)
        if close is None:
            return Result.failure(MissingPriceError(
                f"No price data available for {session.current_date.isoformat()}"))

        if not is_finite_number(shares):
            return Result.failure(InvalidShareAmountError(f"Share amount must be a finite number, got {shares!r}"))
        shares = round_shares(shares)
        if shares <= 0:
            return Result.failure(InvalidShareAmountError("Share amount must be greater than 0"))

        price = round_money(close)
        total = round_money(shares * price)

        if trade_type == BUY:
            if total > session.current_cash:
                return Result.failure(InsufficientFundsError(
                    f"Insufficient funds. Need ${total:,.2f}, have ${session.current_cash:,.2f}"))
            new_cash = round_money(session.current_cash - total)
            new_shares = round_shares(session.shares + shares)
            new_avg = round_money((session.shares * session.average_holding_price + total) / new_shares)
            profit_loss = profit_loss_percent = None
        else:
            if shares > session.shares:
                return Result.failure(InsufficientSharesError(
                    f"Insufficient shares. Trying to sell {shares:g}, have {session.shares:g}"))
            new_cash = round_money(session.current_cash + total)
            new_shares = round_shares(session.shares - shares)
            new_avg = session.average_holding_price if new_shares > 0 else 0.0
            avg = session.average_holding_price
            profit_loss = round_money((price - avg) * shares)
            profit_loss_percent = round_percent(profit_loss / (avg * shares) * 100) if avg > 0 else 0.0

        return Result.success(TradePreview(
            type=trade_type,
            date=session.current_date,
            shares=shares,
            price_per_share=price,
            total_amount=total,
            new_cash=new_cash,
            new_shares=new_shares,
            new_avg_price=new_avg,
            new_portfolio_value=round_money(new_cash + new_shares * price),
            profit_loss=profit_loss,
            profit_loss_percent=profit_loss_percent,
        ))

    def _execute(self, session: GameSession, trade_type: str, shares: float) -> Result[TradeOutcome]:
        result = self.preview_trade(session, trade_type, shares)
        if result.failed:
            logger.debug("Rejected %s of %r shares in game %s: %s",
                         trade_type, shares, session.game_id, result.message)
            return Result.failure(result.error)
        preview = result.value

        now = self._clock()
        transaction = Transaction(
            transaction_id=self._new_id(),
            game_id=session.game_id,
            date=session.current_date,
            timestamp=now,
            type=trade_type,
            shares=preview.shares,
            price_per_share=preview.price_per_share,
            total_amount=preview.total_amount,
            cash_before=session.current_cash,
            shares_before=session.shares,
            avg_price_before=session.average_holding_price,
            cash_after=preview.new_cash,
            shares_after=preview.new_shares,
            avg_price_after=preview.new_avg_price,
            profit_loss=preview.profit_loss,
            profit_loss_percent=preview.profit_loss_percent,
        )

        if trade_type == BUY:
            counters = dict(
                total_invested=round_money(session.total_invested + preview.total_amount),
                buy_count=session.buy_count + 1,
            )
        else:
            counters = dict(
                total_divested=round_money(session.total_divested + preview.total_amount),
                realized_profit_loss=round_money(session.realized_profit_loss + preview.profit_loss),
                sell_count=session.sell_count + 1,
            )

        updated = replace(
            session,
            current_cash=preview.new_cash,
            shares=preview.new_shares,
            average_holding_price=preview.new_avg_price,
            transaction_count=session.transaction_count + 1,
            updated_at=now,
            **counters,
        )
        logger.info("%s %g shares at $%.2f in game %s (total $%.2f)", trade_type.upper(),
                    preview.shares, preview.price_per_share, session.game_id, preview.total_amount)
        return Result.success(TradeOutcome(session=updated, transaction=transaction))

    def buy_shares(self, session: GameSession, shares: float) -> Result[TradeOutcome]:
        return self._execute(session, BUY, shares)

    def sell_shares(self, session: GameSession, shares: float) -> Result[TradeOutcome]:
        return self._execute(session, SELL, shares)

    def calculate_max_buy_shares(self, session: GameSession) -> float:
        """Largest 4-decimal share amount the current cash can pay for."""
        close = self._price(session.current_date)
        if close is None:
            return 0.0
        price = round_money(close)
        if price <= 0:
            return 0.0
        return max(0.0, floor_to(session.current_cash / price, 4))

    # ------------------------------------------------------------------
    # Simulated clock

    def advance_date(self, session: GameSession, unit: str, count: int = 1) -> Result[GameSession]:
        """Move forward by ``count`` calendar units, then snap to the next trading day.

        Month and year steps use calendar arithmetic, so the landing day can
        be several calendar days past the naive target when markets were
        closed in between.
        """
        if unit not in ADVANCE_UNITS:
            return Result.failure(InvalidAdvanceError(
                f"Unknown advance unit {unit!r}. Use one of: {', '.join(ADVANCE_UNITS)}"))
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            return Result.failure(InvalidAdvanceError(f"Advance count must be a positive integer, got {count!r}"))
        return self._move_to(session, calendar_target(session.current_date, unit, count))

    def advance_to(self, session: GameSession, target: Any) -> Result[GameSession]:
        """Jump to the first trading day on or after ``target``."""
        try:
            target = to_date(target)
        except ValueError:
            return Result.failure(InvalidAdvanceError(f"{target!r} is not a valid date"))
        if target <= session.current_date:
            return Result.failure(InvalidAdvanceError(
                f"Target {target.isoformat()} is not after the current date {session.current_date.isoformat()}"))
        return self._move_to(session, target)

    def _move_to(self, session: GameSession, target: date) -> Result[GameSession]:
        if not session.is_active:
            return Result.failure(GameStateError(f"Cannot advance while the game is {session.status}"))

        landing = self.series.next_trading_day_at_or_after(target)
        if landing is None:
            return Result.failure(NoMoreDataError(
                "Cannot advance date further - reached end of available data "
                f"(last trading day {self.series.max_date})"))

        logger.debug("Game %s advanced %s -> %s (target %s)", session.game_id,
                     session.current_date, landing, target)
        return Result.success(replace(session, current_date=landing, updated_at=self._clock()))

    # ------------------------------------------------------------------
    # Read-only projections

    def compute_stats(self, session: GameSession) -> GameSessionComputed:
        """Derived portfolio figures at the session's current date. Never fails."""
        close = self._price(session.current_date)
        if close is None:
            logger.warning("No price for %s; valuing game %s with a zero price",
                           session.current_date, session.game_id)

        current_price = round_money(close) if close is not None else 0.0
        holding = session.shares > 0 and close is not None

        current_value = round_money(session.current_cash + session.shares * current_price)
        unrealized = round_money((current_price - session.average_holding_price) * session.shares) if holding else 0.0
        unrealized_pct = (
            round_percent((current_price - session.average_holding_price) / session.average_holding_price * 100)
            if holding and session.average_holding_price > 0 else 0.0
        )
        total = round_money(session.realized_profit_loss + unrealized)
        total_pct = round_percent(total / session.starting_cash * 100) if session.starting_cash > 0 else 0.0

        return GameSessionComputed(
            current_value=current_value,
            unrealized_profit_loss=unrealized,
            unrealized_profit_loss_percent=unrealized_pct,
            total_profit_loss=total,
            total_profit_loss_percent=total_pct,
            days_played=(session.current_date - session.start_date).days,
            current_price=current_price,
        )
