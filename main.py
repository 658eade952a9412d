#!/usr/bin/env python3
"""SP500-Sim: historical S&P 500 trading game CLI."""

import argparse
import logging
import sys
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

import achievements
from analyzer import format_history, format_market_summary, generate_report, market_snapshot
from config import ADVANCE_UNITS, DATA_DIR, DATA_SOURCE, LOG_LEVEL, STARTING_CASH, USE_SAMPLE_DATA
from errors import DataFormatError, Result, SimulatorError
from game_store import GameStore
from leaderboard import Leaderboard
from market_data import PriceDataLoader, generate_sample_rows
from portfolio import GameSession
from price_index import PriceSeries
from trades import LedgerEngine

logger = logging.getLogger(__name__)
console = Console()


def setup_logging(level: str = LOG_LEVEL):
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def print_header(text: str):
    console.print(Panel(text, style="bold blue"))


class App:
    """Wires the store, the price series and the ledger engine together for one CLI run."""

    def __init__(self, data_dir: str = DATA_DIR, source: str = DATA_SOURCE, sample: bool = USE_SAMPLE_DATA,
                 refresh: bool = False):
        self.store = GameStore(data_dir)
        self.series = self._load_series(data_dir, source, sample, refresh)
        self.engine = LedgerEngine(self.series)
        self.leaderboard = Leaderboard(self.store)

    @staticmethod
    def _load_series(data_dir: str, source: str, sample: bool, refresh: bool) -> PriceSeries:
        loader = PriceDataLoader(cache_dir=data_dir)
        if sample:
            logger.info("Using generated sample data")
            return loader.load_rows(generate_sample_rows())
        return loader.load(source, force_refresh=refresh)

    def active_game(self) -> GameSession:
        session = self.store.load_active_game()
        if session is None:
            raise SimulatorError("No active game. Start one with 'new [START_DATE] [CASH] [NAME]'.")
        return session

    def save(self, session: GameSession):
        self.store.save_game(session)

    def check_achievements(self, session: GameSession):
        context = achievements.build_context(
            self.store.list_games(),
            session,
            self.store.list_transactions(session.game_id),
            self.engine.compute_stats(session),
            self.series,
        )
        for a in achievements.record_unlocks(self.store, context, session.game_id):
            console.print(f"[bold magenta]Achievement unlocked:[/bold magenta] {a.name} - {a.description} (+{a.points})")


def unwrap(result: Result):
    """Return the result's value or stop the command with its error message."""
    if result.failed:
        console.print(f"[red]FAILED:[/red] {result.message}")
        sys.exit(1)
    return result.value


def cmd_status(app: App):
    print_header("Game Status")
    session = app.active_game()
    stats = app.engine.compute_stats(session)

    table = Table(title=f"{session.game_name} ({session.status})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Date", f"{session.current_date} (day {stats.days_played})")
    table.add_row("Price", f"${stats.current_price:,.2f}")
    table.add_row("Cash", f"${session.current_cash:,.2f}")
    table.add_row("Shares", f"{session.shares:g}")
    table.add_row("Avg Price", f"${session.average_holding_price:,.2f}")
    table.add_row("Portfolio Value", f"${stats.current_value:,.2f}")

    for label, amount, pct in (
        ("Unrealized P/L", stats.unrealized_profit_loss, stats.unrealized_profit_loss_percent),
        ("Total P/L", stats.total_profit_loss, stats.total_profit_loss_percent),
    ):
        style = "green" if amount >= 0 else "red"
        table.add_row(label, f"[{style}]${amount:+,.2f} ({pct:+.2f}%)[/{style}]")

    table.add_row("Realized P/L", f"${session.realized_profit_loss:+,.2f}")
    table.add_row("Trades", f"{session.transaction_count} ({session.buy_count} buys / {session.sell_count} sells)")
    if session.is_active:
        table.add_row("Max Buy", f"{app.engine.calculate_max_buy_shares(session):g} shares")
    console.print(table)


def cmd_report(app: App):
    print_header("Game Report")
    console.print(generate_report(app.engine, app.active_game()))


def cmd_new(app: App, args: List[str]):
    start = args[0] if args else app.series.min_date
    cash = float(args[1]) if len(args) > 1 else STARTING_CASH
    name = " ".join(args[2:]) if len(args) > 2 else None

    start_day = app.series.next_trading_day_at_or_after(start)
    if start_day is None:
        console.print(f"[red]FAILED:[/red] No trading days on or after {start}")
        sys.exit(1)

    session = unwrap(app.engine.create_session(start_day, cash, game_name=name or f"Game from {start_day}"))
    app.save(session)
    app.store.set_active_game_id(session.game_id)
    print_header(f"New game {session.game_id[:8]}")
    console.print(f"Starting on {session.current_date} with ${session.starting_cash:,.2f}")
    app.check_achievements(session)


def cmd_games(app: App):
    print_header("Games")
    games = app.store.list_games()
    if not games:
        console.print("No games yet.")
        return

    active_id = app.store.get_active_game_id()
    table = Table()
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Date")
    table.add_column("Value", justify="right")
    table.add_column("P/L %", justify="right")
    for g in games:
        stats = app.engine.compute_stats(g)
        marker = "*" if g.game_id == active_id else ""
        style = "green" if stats.total_profit_loss_percent >= 0 else "red"
        table.add_row(
            f"{marker}{g.game_id[:8]}",
            g.game_name,
            g.status,
            str(g.current_date),
            f"${stats.current_value:,.2f}",
            f"[{style}]{stats.total_profit_loss_percent:+.2f}%[/{style}]",
        )
    console.print(table)


def cmd_use(app: App, game_id: str):
    session = app.store.find_game(game_id)
    if session is None:
        console.print(f"[red]FAILED:[/red] No unique game matches {game_id!r}")
        sys.exit(1)
    app.store.set_active_game_id(session.game_id)
    console.print(f"Active game: {session.game_name} ({session.game_id[:8]})")


def _parse_shares(app: App, session: GameSession, action: str, amount: str) -> float:
    if amount == "max" and action == "buy":
        return app.engine.calculate_max_buy_shares(session)
    if amount == "all" and action == "sell":
        return session.shares
    return float(amount)


def cmd_preview(app: App, action: str, amount: str):
    print_header(f"Preview {action.upper()}")
    session = app.active_game()
    preview = unwrap(app.engine.preview_trade(session, action, _parse_shares(app, session, action, amount)))

    table = Table()
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Shares", f"{preview.shares:g}")
    table.add_row("Price", f"${preview.price_per_share:,.2f}")
    table.add_row("Total", f"${preview.total_amount:,.2f}")
    table.add_row("Cash After", f"${preview.new_cash:,.2f}")
    table.add_row("Shares After", f"{preview.new_shares:g}")
    table.add_row("Avg Price After", f"${preview.new_avg_price:,.2f}")
    table.add_row("Portfolio Value", f"${preview.new_portfolio_value:,.2f}")
    if preview.profit_loss is not None:
        style = "green" if preview.profit_loss >= 0 else "red"
        table.add_row("P/L", f"[{style}]${preview.profit_loss:+,.2f} ({preview.profit_loss_percent:+.2f}%)[/{style}]")
    console.print(table)


def cmd_trade(app: App, action: str, amount: str):
    print_header(f"Executing {action.upper()}")
    session = app.active_game()
    shares = _parse_shares(app, session, action, amount)
    trade = app.engine.buy_shares if action == "buy" else app.engine.sell_shares
    outcome = unwrap(trade(session, shares))

    t = outcome.transaction
    app.store.append_transaction(t)
    app.save(outcome.session)

    message = f"{'Bought' if t.type == 'buy' else 'Sold'} {t.shares:g} shares at ${t.price_per_share:,.2f}"
    if t.profit_loss is not None:
        message += f" (P/L: ${t.profit_loss:+,.2f})"
    console.print(f"[green]SUCCESS:[/green] {message}")
    console.print(f"Total: ${t.total_amount:,.2f}")
    app.check_achievements(outcome.session)


def cmd_max(app: App):
    session = app.active_game()
    console.print(f"Max buy: {app.engine.calculate_max_buy_shares(session):g} shares")


def cmd_advance(app: App, args: List[str]):
    unit = args[0] if args else "day"
    count = int(args[1]) if len(args) > 1 else 1
    session = app.active_game()
    updated = unwrap(app.engine.advance_date(session, unit, count))
    app.save(updated)
    print_header(f"{updated.current_date}")
    console.print(f"Advanced {count} {unit}(s): {session.current_date} -> {updated.current_date}")
    app.check_achievements(updated)


def cmd_jump(app: App, target: str):
    session = app.active_game()
    updated = unwrap(app.engine.advance_to(session, target))
    app.save(updated)
    console.print(f"Jumped {session.current_date} -> {updated.current_date}")
    app.check_achievements(updated)


def cmd_pause(app: App):
    app.save(unwrap(app.engine.pause_game(app.active_game())))
    console.print("Game paused.")


def cmd_resume(app: App):
    app.save(unwrap(app.engine.resume_game(app.active_game())))
    console.print("Game resumed.")


def cmd_end(app: App, username: Optional[str]):
    outcome = unwrap(app.engine.end_game(app.active_game()))
    app.save(outcome.session)
    app.store.save_history(outcome.history)
    print_header("Game Over")
    console.print(format_history(outcome.history))

    entry = app.leaderboard.submit(outcome.history, username or "Player")
    if entry is not None:
        rank = next((e.rank for e in app.leaderboard.top(limit=0) if e.entry_id == entry.entry_id), None)
        console.print(f"Leaderboard: ROI {entry.roi:+.2f}% (rank #{rank})")
    app.check_achievements(outcome.session)


def cmd_history(app: App, limit: int = 10):
    print_header("Transaction History")
    session = app.active_game()
    transactions = app.store.list_transactions(session.game_id)[-limit:]
    if not transactions:
        console.print("No transactions yet.")
        return

    table = Table(title=f"Last {len(transactions)} Transactions")
    table.add_column("Date", style="dim")
    table.add_column("Action", style="cyan")
    table.add_column("Shares", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("P/L", justify="right")
    for t in transactions:
        action_style = "green" if t.type == "buy" else "red"
        pnl = f"${t.profit_loss:+,.2f}" if t.profit_loss is not None else ""
        table.add_row(
            str(t.date),
            f"[{action_style}]{t.type.upper()}[/{action_style}]",
            f"{t.shares:g}",
            f"${t.price_per_share:,.2f}",
            f"${t.total_amount:,.2f}",
            pnl,
        )
    console.print(table)


def cmd_quote(app: App, when: Optional[str]):
    if when is None:
        session = app.store.load_active_game()
        when = session.current_date if session else app.series.max_date
    snapshot = market_snapshot(app.series, when)
    if snapshot is None:
        console.print(f"No trading on {when}.")
        return
    print_header("Quote")
    console.print(format_market_summary(snapshot))


def cmd_achievements(app: App):
    print_header("Achievements")
    rows = achievements.with_status(app.store)
    table = Table()
    table.add_column("", justify="center")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Points", justify="right")
    for row in rows:
        table.add_row("[green]✓[/green]" if row["unlocked"] else "", row["name"], row["description"],
                      str(row["points"]))
    console.print(table)
    unlocked_ids = [row["id"] for row in rows if row["unlocked"]]
    console.print(f"Unlocked {len(unlocked_ids)}/{len(rows)} - {achievements.total_points(unlocked_ids)} points")


def cmd_leaderboard(app: App, period: str = "all-time", sort_by: str = "roi"):
    print_header("Leaderboard")
    entries = app.leaderboard.top(period=period, sort_by=sort_by)
    if not entries:
        console.print("No completed games submitted yet.")
        return

    table = Table(title=f"{period} by {sort_by}")
    table.add_column("#", justify="right")
    table.add_column("Player", style="cyan")
    table.add_column("Game")
    table.add_column("ROI", justify="right")
    table.add_column("Profit", justify="right")
    table.add_column("Trades", justify="right")
    table.add_column("Days", justify="right")
    for e in entries:
        style = "green" if e.roi >= 0 else "red"
        table.add_row(str(e.rank), e.username, e.game_name, f"[{style}]{e.roi:+.2f}%[/{style}]",
                      f"${e.profit:+,.2f}", str(e.trades), str(e.days_played))
    console.print(table)


def cmd_delete(app: App, game_id: str):
    session = app.store.find_game(game_id)
    if session is None or not app.store.delete_game(session.game_id):
        console.print(f"[red]FAILED:[/red] No unique game matches {game_id!r}")
        sys.exit(1)
    console.print(f"Deleted game {session.game_name} ({session.game_id[:8]})")


def cmd_reset(app: App):
    print_header("Reset")
    confirm = input("This deletes every game, transaction, achievement and leaderboard entry. Confirm? (yes/no): ")
    if confirm.lower() == 'yes':
        app.store.reset()
        console.print("All data reset.")
    else:
        console.print("Reset cancelled.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SP500-Sim: trade the S&P 500 through history",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Commands:
  new [DATE] [CASH] [NAME]  Start a game (date snaps to the next trading day)
  status                    Show the active game
  report                    Game summary with market context
  games                     List games (* marks the active one)
  use GAME_ID               Switch the active game (id prefix is enough)
  preview buy|sell N        Show what a trade would do
  buy N|max                 Buy shares at today's close
  sell N|all                Sell shares at today's close
  max                       Largest affordable buy
  advance [UNIT] [COUNT]    Move forward; UNIT is one of {', '.join(ADVANCE_UNITS)}
  next-day                  Same as 'advance day 1'
  jump DATE                 Move to the first trading day on or after DATE
  pause | resume            Pause or resume the active game
  end [USERNAME]            End the game and submit it to the leaderboard
  history [N]               Last N transactions
  quote [DATE]              Price, trend and 52-week range
  achievements              Achievement list
  leaderboard [PERIOD] [BY] PERIOD: all-time|this-month|this-week, BY: roi|profit|trades
  delete GAME_ID            Delete a game
  reset                     Delete all stored data

Examples:
  python main.py new 2008-09-15 10000 Crash test
  python main.py buy 2.5
  python main.py advance month 3
  python main.py sell all
        """
    )
    parser.add_argument('command', nargs='?', default='status', help='Command to execute')
    parser.add_argument('args', nargs='*', help='Command arguments')
    parser.add_argument('--data', default=DATA_SOURCE, help='Price data CSV/JSON file or URL')
    parser.add_argument('--data-dir', default=DATA_DIR, help='Directory for saved games and caches')
    parser.add_argument('--sample', action='store_true', default=USE_SAMPLE_DATA,
                        help='Use generated sample prices instead of a data file')
    parser.add_argument('--refresh', action='store_true', help='Ignore the cached price data')
    parser.add_argument('--log-level', default=LOG_LEVEL, help='Logging level')
    return parser


def _require(args: List[str], count: int, usage: str):
    if len(args) < count:
        console.print(f"Usage: {usage}")
        sys.exit(1)


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level.upper())

    command = args.command.lower()
    rest = args.args

    try:
        app = App(data_dir=args.data_dir, source=args.data, sample=args.sample, refresh=args.refresh)

        if command == 'status':
            cmd_status(app)
        elif command == 'report':
            cmd_report(app)
        elif command == 'new':
            cmd_new(app, rest)
        elif command == 'games':
            cmd_games(app)
        elif command == 'use':
            _require(rest, 1, "use <GAME_ID>")
            cmd_use(app, rest[0])
        elif command == 'preview':
            _require(rest, 2, "preview <buy|sell> <SHARES>")
            cmd_preview(app, rest[0].lower(), rest[1].lower())
        elif command in ('buy', 'sell'):
            _require(rest, 1, f"{command} <SHARES|{'max' if command == 'buy' else 'all'}>")
            cmd_trade(app, command, rest[0].lower())
        elif command == 'max':
            cmd_max(app)
        elif command == 'advance':
            cmd_advance(app, rest)
        elif command == 'next-day':
            cmd_advance(app, ['day', '1'])
        elif command == 'jump':
            _require(rest, 1, "jump <DATE>")
            cmd_jump(app, rest[0])
        elif command == 'pause':
            cmd_pause(app)
        elif command == 'resume':
            cmd_resume(app)
        elif command == 'end':
            cmd_end(app, rest[0] if rest else None)
        elif command == 'history':
            cmd_history(app, int(rest[0]) if rest else 10)
        elif command == 'quote':
            cmd_quote(app, rest[0] if rest else None)
        elif command == 'achievements':
            cmd_achievements(app)
        elif command == 'leaderboard':
            cmd_leaderboard(app, *rest[:2])
        elif command == 'delete':
            _require(rest, 1, "delete <GAME_ID>")
            cmd_delete(app, rest[0])
        elif command == 'reset':
            cmd_reset(app)
        else:
            console.print(f"Unknown command: {command}")
            parser.print_help()
            sys.exit(1)

    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        sys.exit(0)
    except DataFormatError as e:
        console.print(f"[red]Could not load price data:[/red] {e}")
        sys.exit(1)
    except (SimulatorError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
