"""Leaderboard of completed games."""

import logging
import uuid
from dataclasses import asdict, dataclass, replace
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from config import LEADERBOARD
from numeric import round_money, round_percent
from portfolio import GameHistory

logger = logging.getLogger(__name__)

PERIODS = {
    "all-time": None,
    "this-month": timedelta(days=30),
    "this-week": timedelta(days=7),
}
SORT_KEYS = ("roi", "profit", "trades")


@dataclass(frozen=True)
class LeaderboardEntry:
    """A submitted game result."""
    entry_id: str
    username: str
    game_id: str
    game_name: str
    roi: float
    profit: float
    trades: int
    start_date: date
    end_date: date
    starting_cash: float
    final_value: float
    days_played: int
    submitted_at: datetime
    rank: int = 0

    def to_dict(self) -> Dict:
        data = asdict(self)
        for key in ("start_date", "end_date", "submitted_at"):
            data[key] = data[key].isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'LeaderboardEntry':
        data = dict(data)
        data["start_date"] = date.fromisoformat(data["start_date"])
        data["end_date"] = date.fromisoformat(data["end_date"])
        data["submitted_at"] = datetime.fromisoformat(data["submitted_at"])
        return cls(**data)


def make_entry(history: GameHistory, username: str = LEADERBOARD["default_username"],
               submitted_at: Optional[datetime] = None) -> LeaderboardEntry:
    """Build an entry from the history record of an ended game."""
    profit = round_money(history.final_value - history.starting_cash)
    roi = round_percent(profit / history.starting_cash * 100) if history.starting_cash > 0 else 0.0
    return LeaderboardEntry(
        entry_id=f"lb-{uuid.uuid4().hex[:12]}",
        username=username,
        game_id=history.game_id,
        game_name=history.game_name,
        roi=roi,
        profit=profit,
        trades=history.transaction_count,
        start_date=history.start_date,
        end_date=history.end_date,
        starting_cash=history.starting_cash,
        final_value=history.final_value,
        days_played=history.days_played,
        submitted_at=submitted_at or datetime.now(timezone.utc),
    )


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=timezone.utc) if moment.tzinfo is None else moment


def rank_entries(entries: List[LeaderboardEntry], period: str = "all-time", sort_by: str = "roi",
                 limit: int = LEADERBOARD["default_limit"],
                 now: Optional[datetime] = None) -> List[LeaderboardEntry]:
    """Filter by submission period, sort best-first and assign 1-based ranks.

    Naive timestamps are taken to be UTC.
    """
    if period not in PERIODS:
        raise ValueError(f"Unknown period: {period}. Use one of: {', '.join(PERIODS)}")
    if sort_by not in SORT_KEYS:
        raise ValueError(f"Unknown sort key: {sort_by}. Use one of: {', '.join(SORT_KEYS)}")

    window = PERIODS[period]
    if window is not None:
        cutoff = _as_utc(now or datetime.now(timezone.utc)) - window
        entries = [e for e in entries if _as_utc(e.submitted_at) >= cutoff]

    ordered = sorted(entries, key=lambda e: getattr(e, sort_by), reverse=True)
    ranked = [replace(e, rank=i + 1) for i, e in enumerate(ordered)]
    return ranked[:limit] if limit and limit > 0 else ranked


def user_rank(entries: List[LeaderboardEntry], username: str, period: str = "all-time",
              now: Optional[datetime] = None) -> Optional[int]:
    for entry in rank_entries(entries, period=period, limit=0, now=now):
        if entry.username == username:
            return entry.rank
    return None


def best_scores(entries: List[LeaderboardEntry], username: str, limit: int = 5) -> List[LeaderboardEntry]:
    mine = sorted((e for e in entries if e.username == username), key=lambda e: e.roi, reverse=True)
    return mine[:limit]


def stats(entries: List[LeaderboardEntry]) -> Dict:
    if not entries:
        return {"total_entries": 0, "average_roi": 0.0, "highest_roi": 0.0, "total_profit": 0.0}
    return {
        "total_entries": len(entries),
        "average_roi": round_percent(sum(e.roi for e in entries) / len(entries)),
        "highest_roi": max(e.roi for e in entries),
        "total_profit": round_money(sum(e.profit for e in entries)),
    }


class Leaderboard:
    """Leaderboard persisted through a :class:`~game_store.GameStore`."""

    def __init__(self, store):
        self.store = store

    def entries(self) -> List[LeaderboardEntry]:
        return [LeaderboardEntry.from_dict(e) for e in self.store.load_leaderboard()]

    def submit(self, history: GameHistory, username: str = LEADERBOARD["default_username"],
               now: Optional[datetime] = None) -> Optional[LeaderboardEntry]:
        """Submit an ended game once. Returns ``None`` if it was already submitted."""
        entries = self.entries()
        if any(e.game_id == history.game_id for e in entries):
            logger.warning("Game %s already submitted to leaderboard", history.game_id)
            return None

        entry = make_entry(history, username, now)
        entries.append(entry)
        self.store.save_leaderboard([e.to_dict() for e in entries])
        logger.info("Submitted game %s to leaderboard with ROI %.2f%%", history.game_id, entry.roi)
        return entry

    def delete(self, game_id: str) -> bool:
        entries = self.entries()
        remaining = [e for e in entries if e.game_id != game_id]
        if len(remaining) == len(entries):
            return False
        self.store.save_leaderboard([e.to_dict() for e in remaining])
        return True

    def top(self, period: str = "all-time", sort_by: str = "roi",
            limit: int = LEADERBOARD["default_limit"], now: Optional[datetime] = None) -> List[LeaderboardEntry]:
        return rank_entries(self.entries(), period, sort_by, limit, now)
