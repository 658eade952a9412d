"""Game session state and the immutable records derived from it."""

from dataclasses import asdict, dataclass, fields
from datetime import date, datetime
from typing import Any, Dict, Optional

ACTIVE = "active"
PAUSED = "paused"
ENDED = "ended"
GAME_STATUSES = (ACTIVE, PAUSED, ENDED)

BUY = "buy"
SELL = "sell"
TRADE_TYPES = (BUY, SELL)

_DATE_FIELDS = {"start_date", "current_date", "end_date", "date"}
_DATETIME_FIELDS = {"created_at", "updated_at", "ended_at", "timestamp", "completed_at"}


def _encode(data: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in data.items():
        if isinstance(value, (date, datetime)):
            data[key] = value.isoformat()
    return data


def _decode(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in fields(cls)}
    decoded = {}
    for key, value in data.items():
        if key not in known:
            continue
        if value is not None and key in _DATE_FIELDS and isinstance(value, str):
            value = date.fromisoformat(value[:10])
        elif value is not None and key in _DATETIME_FIELDS and isinstance(value, str):
            value = datetime.fromisoformat(value)
        decoded[key] = value
    return decoded


class _Record:
    """Mixin giving frozen dataclasses a JSON-friendly dict form."""

    def to_dict(self) -> Dict:
        return _encode(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict):
        return cls(**_decode(cls, data))


@dataclass(frozen=True)
class GameSession(_Record):
    """The ledger's unit of state. Replaced, never mutated."""
    game_id: str
    user_id: str
    game_name: str
    status: str
    start_date: date
    current_date: date
    created_at: datetime
    updated_at: datetime
    starting_cash: float
    current_cash: float
    shares: float = 0.0
    average_holding_price: float = 0.0
    total_invested: float = 0.0
    total_divested: float = 0.0
    realized_profit_loss: float = 0.0
    transaction_count: int = 0
    buy_count: int = 0
    sell_count: int = 0
    ended_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    @property
    def is_ended(self) -> bool:
        return self.status == ENDED

    @property
    def cost_basis(self) -> float:
        """Cost of the shares currently held, at the average holding price."""
        return self.shares * self.average_holding_price


@dataclass(frozen=True)
class Transaction(_Record):
    """One executed trade with the ledger state on either side of it."""
    transaction_id: str
    game_id: str
    date: date
    timestamp: datetime
    type: str  # buy or sell
    shares: float
    price_per_share: float
    total_amount: float
    cash_before: float
    shares_before: float
    avg_price_before: float
    cash_after: float
    shares_after: float
    avg_price_after: float
    profit_loss: Optional[float] = None           # sells only
    profit_loss_percent: Optional[float] = None   # sells only


@dataclass(frozen=True)
class TradePreview(_Record):
    """Projected effect of a trade. Execution re-derives and applies exactly this."""
    type: str
    date: date
    shares: float
    price_per_share: float
    total_amount: float
    new_cash: float
    new_shares: float
    new_avg_price: float
    new_portfolio_value: float
    profit_loss: Optional[float] = None
    profit_loss_percent: Optional[float] = None


@dataclass(frozen=True)
class GameSessionComputed(_Record):
    current_value: float
    unrealized_profit_loss: float
    unrealized_profit_loss_percent: float
    total_profit_loss: float
    total_profit_loss_percent: float
    days_played: int
    current_price: float


@dataclass(frozen=True)
class GameHistory(_Record):
    """Summary record emitted when a game ends."""
    game_id: str
    game_name: str
    user_id: str
    start_date: date
    end_date: date
    days_played: int
    starting_cash: float
    final_cash: float
    final_shares: float
    final_value: float
    total_profit_loss: float
    total_profit_loss_percent: float
    realized_profit_loss: float
    unrealized_profit_loss: float
    transaction_count: int
    buy_count: int
    sell_count: int
    completed_at: datetime


@dataclass(frozen=True)
class TradeOutcome:
    session: GameSession
    transaction: Transaction


@dataclass(frozen=True)
class GameOutcome:
    session: GameSession
    history: GameHistory
