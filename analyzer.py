"""Plain-text summaries of a game and of the market at its simulated date."""

from typing import Dict, List, Optional

from config import INDICATORS
from portfolio import GameHistory, GameSession, GameSessionComputed, Transaction
from price_index import PriceSeries
from trades import LedgerEngine


def market_snapshot(series: PriceSeries, when) -> Optional[Dict]:
    """Price, change, 52-week range and trend at ``when``; ``None`` if it is not a trading day."""
    point = series.price_at(when)
    if point is None:
        return None

    window = series.window52(when)
    return {
        "date": point.date,
        "close": point.close,
        "open": point.open,
        "high": point.high,
        "low": point.low,
        "volume": point.volume,
        "change": point.change,
        "change_percent": point.change_percent,
        "sma_20": series.sma(when, INDICATORS["ma_short"]),
        "sma_50": series.sma(when, INDICATORS["ma_long"]),
        "trend": series.trend(when).value,
        "week52_high": window.high if window else None,
        "week52_low": window.low if window else None,
        "week52_position": window.range_percent if window else None,
    }


def format_market_summary(snapshot: Dict) -> str:
    change = snapshot["change"]
    change_pct = snapshot["change_percent"]
    change_str = f"{change:+,.2f} ({change_pct:+.2f}%)" if change is not None else "n/a"

    lines = [
        "=" * 50,
        f"MARKET ON {snapshot['date'].isoformat()}",
        "=" * 50,
        f"Close: ${snapshot['close']:,.2f}",
        f"Daily Change: {change_str}",
        f"SMA 20/50: ${snapshot['sma_20']:,.2f} / ${snapshot['sma_50']:,.2f}",
        f"Trend: {snapshot['trend'].upper()}",
    ]
    if snapshot["week52_high"] is not None:
        lines.append(
            f"52-Week Range: ${snapshot['week52_low']:,.2f} - ${snapshot['week52_high']:,.2f} "
            f"({snapshot['week52_position']:.0f}% of range)"
        )
    return "\n".join(lines)


def format_game_summary(session: GameSession, stats: GameSessionComputed, max_buy: float = 0.0) -> str:
    """Format game status for display."""
    lines = [
        "=" * 50,
        f"GAME: {session.game_name} [{session.status.upper()}]",
        "=" * 50,
        f"Date: {session.current_date.isoformat()} (day {stats.days_played} since {session.start_date.isoformat()})",
        f"Price: ${stats.current_price:,.2f}",
        f"Cash: ${session.current_cash:,.2f}",
        f"Shares: {session.shares:g} @ ${session.average_holding_price:,.2f} avg",
        f"Portfolio Value: ${stats.current_value:,.2f}",
        f"Unrealized P/L: ${stats.unrealized_profit_loss:+,.2f} ({stats.unrealized_profit_loss_percent:+.2f}%)",
        f"Realized P/L: ${session.realized_profit_loss:+,.2f}",
        f"Total P/L: ${stats.total_profit_loss:+,.2f} ({stats.total_profit_loss_percent:+.2f}%)",
        f"Trades: {session.transaction_count} ({session.buy_count} buys, {session.sell_count} sells)",
    ]
    if session.is_active:
        lines.append(f"Max Buy: {max_buy:g} shares")
    return "\n".join(lines)


def format_transactions(transactions: List[Transaction]) -> str:
    if not transactions:
        return "No transactions yet."
    lines = []
    for t in transactions:
        line = (f"  {t.date.isoformat()} | {t.type.upper():4} | {t.shares:g} shares @ "
                f"${t.price_per_share:,.2f} = ${t.total_amount:,.2f}")
        if t.profit_loss is not None:
            line += f" (P/L: ${t.profit_loss:+,.2f}, {t.profit_loss_percent:+.2f}%)"
        lines.append(line)
    return "\n".join(lines)


def format_history(history: GameHistory) -> str:
    return "\n".join([
        "=" * 50,
        f"FINAL RESULTS: {history.game_name}",
        "=" * 50,
        f"Period: {history.start_date.isoformat()} to {history.end_date.isoformat()} ({history.days_played} days)",
        f"Starting Cash: ${history.starting_cash:,.2f}",
        f"Final Value: ${history.final_value:,.2f}",
        f"Total P/L: ${history.total_profit_loss:+,.2f} ({history.total_profit_loss_percent:+.2f}%)",
        f"Realized / Unrealized: ${history.realized_profit_loss:+,.2f} / ${history.unrealized_profit_loss:+,.2f}",
        f"Trades: {history.transaction_count} ({history.buy_count} buys, {history.sell_count} sells)",
    ])


def generate_report(engine: LedgerEngine, session: GameSession) -> str:
    """Game summary followed by the market context at its current date."""
    stats = engine.compute_stats(session)
    sections = [format_game_summary(session, stats, engine.calculate_max_buy_shares(session))]
    snapshot = market_snapshot(engine.series, session.current_date)
    if snapshot is not None:
        sections.append(format_market_summary(snapshot))
    return "\n\n".join(sections)
