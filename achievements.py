"""Achievements as tagged rules evaluated against a freshly built context."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from config import ACHIEVEMENT_THRESHOLDS
from portfolio import BUY, ENDED, SELL, GameSession, GameSessionComputed, Transaction
from price_index import PriceSeries

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AchievementContext:
    total_trades: int = 0
    profitable_trades: int = 0
    current_roi: float = 0.0
    total_profit: float = 0.0
    games_played: int = 0
    games_completed: int = 0
    days_held: int = 0
    days_advanced: int = 0
    bought_at_52_week_low: bool = False
    sold_at_52_week_high: bool = False
    consecutive_profitable_trades: int = 0
    shares_held: float = 0.0


@dataclass(frozen=True)
class Achievement:
    id: str
    name: str
    description: str
    category: str  # trading, profit, milestone or special
    points: int
    predicate: Callable[[AchievementContext], bool]
    target: Optional[int] = None
    measure: Optional[Callable[[AchievementContext], float]] = None


def _trades(ctx: AchievementContext) -> float:
    return ctx.total_trades


def _games(ctx: AchievementContext) -> float:
    return ctx.games_played


ACHIEVEMENTS: Sequence[Achievement] = (
    # Trading
    Achievement("first-trade", "First Steps", "Complete your first trade", "trading", 10,
                lambda c: c.total_trades >= 1),
    Achievement("ten-trades", "Getting Started", "Complete 10 trades", "trading", 25,
                lambda c: c.total_trades >= 10, target=10, measure=_trades),
    Achievement("fifty-trades", "Active Trader", "Complete 50 trades", "trading", 50,
                lambda c: c.total_trades >= 50, target=50, measure=_trades),
    Achievement("hundred-trades", "Trading Pro", "Complete 100 trades", "trading", 100,
                lambda c: c.total_trades >= 100, target=100, measure=_trades),

    # Profit
    Achievement("first-profit", "In the Green", "Make your first profitable trade", "profit", 15,
                lambda c: c.profitable_trades >= 1),
    Achievement("ten-percent", "Double Digits", "Achieve 10% ROI in a game", "profit", 25,
                lambda c: c.current_roi >= 10),
    Achievement("fifty-percent", "Half Way There", "Achieve 50% ROI in a game", "profit", 75,
                lambda c: c.current_roi >= 50),
    Achievement("hundred-percent", "Doubled Up", "Achieve 100% ROI in a game", "profit", 150,
                lambda c: c.current_roi >= 100),
    Achievement("thousand-profit", "Big Winner", "Earn $1,000 profit in a single game", "profit", 50,
                lambda c: c.total_profit >= 1000),
    Achievement("five-thousand-profit", "Major Gains", "Earn $5,000 profit in a single game", "profit", 100,
                lambda c: c.total_profit >= 5000),

    # Milestones
    Achievement("first-game", "New Investor", "Start your first game", "milestone", 5,
                lambda c: c.games_played >= 1),
    Achievement("five-games", "Experienced", "Play 5 different games", "milestone", 30,
                lambda c: c.games_played >= 5, target=5, measure=_games),
    Achievement("complete-game", "Finisher", "Complete a game from start to end", "milestone", 25,
                lambda c: c.games_completed >= 1),
    Achievement("long-hold", "Patient Investor", "Hold shares for 30+ days", "milestone", 40,
                lambda c: c.days_held >= 30),
    Achievement("year-played", "Time Traveler", "Advance through 1 year of simulation", "milestone", 50,
                lambda c: c.days_advanced >= 365),

    # Special
    Achievement("buy-low", "Bottom Fisher", "Buy at a 52-week low", "special", 75,
                lambda c: c.bought_at_52_week_low),
    Achievement("sell-high", "Peak Seller", "Sell at a 52-week high", "special", 75,
                lambda c: c.sold_at_52_week_high),
    Achievement("perfect-timing", "Perfect Timing", "Buy low and sell high in the same game", "special", 200,
                lambda c: c.bought_at_52_week_low and c.sold_at_52_week_high),
    Achievement("win-streak", "Hot Streak", "5 profitable trades in a row", "special", 60,
                lambda c: c.consecutive_profitable_trades >= 5),
    Achievement("diamond-hands", "Diamond Hands", "Hold shares for 100+ days", "special", 100,
                lambda c: c.days_held >= 100),
)

_BY_ID = {a.id: a for a in ACHIEVEMENTS}


def get_achievement(achievement_id: str) -> Optional[Achievement]:
    return _BY_ID.get(achievement_id)


def by_category(category: str) -> List[Achievement]:
    return [a for a in ACHIEVEMENTS if a.category == category]


def _range_position(series: Optional[PriceSeries], transaction: Transaction) -> Optional[float]:
    if series is None:
        return None
    window = series.window52(transaction.date)
    return None if window is None else window.range_percent


def build_context(games: Iterable[GameSession], current: Optional[GameSession] = None,
                  transactions: Sequence[Transaction] = (), stats: Optional[GameSessionComputed] = None,
                  series: Optional[PriceSeries] = None) -> AchievementContext:
    """Build the evaluation context from the stored games and the current game's trades."""
    games = list(games)
    ordered = sorted(transactions, key=lambda t: (t.date, t.timestamp))
    sells = [t for t in ordered if t.type == SELL]

    streak = 0
    for t in reversed(sells):
        if t.profit_loss is not None and t.profit_loss > 0:
            streak += 1
        else:
            break

    days_held = 0
    days_advanced = 0
    shares_held = 0.0
    if current is not None:
        days_advanced = (current.current_date - current.start_date).days
        shares_held = current.shares
        if current.shares > 0:
            # the buy that opened the position still held
            openings = [t for t in ordered if t.type == BUY and t.shares_before == 0]
            if openings:
                days_held = (current.current_date - openings[-1].date).days

    buy_positions = [_range_position(series, t) for t in ordered if t.type == BUY]
    sell_positions = [_range_position(series, t) for t in sells]
    bought_low = any(p is not None and p <= ACHIEVEMENT_THRESHOLDS["near_52_week_low_pct"]
                     for p in buy_positions)
    sold_high = any(p is not None and p >= ACHIEVEMENT_THRESHOLDS["near_52_week_high_pct"]
                    for p in sell_positions)

    return AchievementContext(
        total_trades=len(ordered),
        profitable_trades=sum(1 for t in sells if t.profit_loss is not None and t.profit_loss > 0),
        current_roi=stats.total_profit_loss_percent if stats is not None else 0.0,
        total_profit=stats.total_profit_loss if stats is not None else 0.0,
        games_played=len(games),
        games_completed=sum(1 for g in games if g.status == ENDED),
        days_held=days_held,
        days_advanced=days_advanced,
        bought_at_52_week_low=bought_low,
        sold_at_52_week_high=sold_high,
        consecutive_profitable_trades=streak,
        shares_held=shares_held,
    )


def evaluate(context: AchievementContext, unlocked_ids: Iterable[str] = ()) -> List[Achievement]:
    """Achievements whose rule holds for ``context`` and that are not yet unlocked, in definition order."""
    unlocked = set(unlocked_ids)
    return [a for a in ACHIEVEMENTS if a.id not in unlocked and a.predicate(context)]


def progress(context: AchievementContext) -> Dict[str, float]:
    """Current value towards each target-based achievement."""
    return {a.id: min(a.measure(context), a.target) for a in ACHIEVEMENTS if a.target is not None}


def total_points(unlocked_ids: Iterable[str]) -> int:
    return sum(_BY_ID[i].points for i in set(unlocked_ids) if i in _BY_ID)


def record_unlocks(store, context: AchievementContext, game_id: Optional[str] = None,
                   now: Optional[datetime] = None) -> List[Achievement]:
    """Evaluate ``context``, persist any new unlocks in ``store`` and return them."""
    unlocked = store.load_achievements()
    fresh = evaluate(context, (u['id'] for u in unlocked))
    if not fresh:
        return []

    stamp = (now or datetime.now(timezone.utc)).isoformat()
    unlocked.extend({'id': a.id, 'unlocked_at': stamp, 'game_id': game_id} for a in fresh)
    store.save_achievements(unlocked)
    for a in fresh:
        logger.info("Achievement unlocked: %s (+%d points)", a.name, a.points)
    return fresh


def with_status(store) -> List[Dict]:
    """Every achievement with its unlock state, for display."""
    unlocked = {u['id']: u for u in store.load_achievements()}
    return [
        {
            "id": a.id,
            "name": a.name,
            "description": a.description,
            "category": a.category,
            "points": a.points,
            "unlocked": a.id in unlocked,
            "unlocked_at": unlocked.get(a.id, {}).get('unlocked_at'),
        }
        for a in ACHIEVEMENTS
    ]
