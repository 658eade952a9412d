"""JSON-file persistence for games, transactions, history, achievements and the leaderboard."""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from config import DATA_DIR, STORAGE_VERSION
from errors import StorageError
from portfolio import GameHistory, GameSession, Transaction

logger = logging.getLogger(__name__)

GAMES_FILE = "games.json"
HISTORY_FILE = "history.json"
STATE_FILE = "state.json"
ACHIEVEMENTS_FILE = "achievements.json"
LEADERBOARD_FILE = "leaderboard.json"
TRANSACTIONS_DIR = "transactions"


class GameStore:
    """Stores simulator state as JSON documents under ``data_dir``.

    Each document is rewritten whole on save. Records are stored in their
    ``to_dict()`` form and rebuilt with ``from_dict()`` on load.
    """

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = data_dir or DATA_DIR

    def _path(self, *parts: str) -> str:
        return os.path.join(self.data_dir, *parts)

    def _ensure_dir(self, path: str):
        directory = os.path.dirname(path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory)

    def _read(self, path: str, default: Any) -> Any:
        if not os.path.exists(path):
            return default
        try:
            with open(path, 'r') as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Error loading {path}: {e}") from e
        if not isinstance(document, dict):
            raise StorageError(f"Error loading {path}: unexpected document layout")
        if document.get('version') != STORAGE_VERSION:
            logger.warning("%s was written by storage version %s", path, document.get('version'))
        return document.get('data', default)

    def _write(self, path: str, data: Any):
        self._ensure_dir(path)
        tmp_path = f"{path}.tmp"
        try:
            with open(tmp_path, 'w') as f:
                json.dump({'version': STORAGE_VERSION, 'data': data}, f, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Error saving {path}: {e}") from e

    # Games

    def _games(self) -> Dict[str, Dict]:
        return self._read(self._path(GAMES_FILE), {})

    def save_game(self, session: GameSession):
        games = self._games()
        games[session.game_id] = session.to_dict()
        self._write(self._path(GAMES_FILE), games)

    def load_game(self, game_id: str) -> Optional[GameSession]:
        data = self._games().get(game_id)
        return GameSession.from_dict(data) if data else None

    def list_games(self) -> List[GameSession]:
        games = [GameSession.from_dict(g) for g in self._games().values()]
        return sorted(games, key=lambda g: g.created_at)

    def delete_game(self, game_id: str) -> bool:
        games = self._games()
        if game_id not in games:
            return False
        del games[game_id]
        self._write(self._path(GAMES_FILE), games)

        transactions_path = self._transactions_path(game_id)
        if os.path.exists(transactions_path):
            os.remove(transactions_path)
        if self.get_active_game_id() == game_id:
            self.set_active_game_id(None)
        return True

    def find_game(self, prefix: str) -> Optional[GameSession]:
        """Look a game up by id or unique id prefix."""
        matches = [g for g in self.list_games() if g.game_id.startswith(prefix)]
        return matches[0] if len(matches) == 1 else None

    # Transactions

    def _transactions_path(self, game_id: str) -> str:
        return self._path(TRANSACTIONS_DIR, f"{game_id}.json")

    def append_transaction(self, transaction: Transaction):
        path = self._transactions_path(transaction.game_id)
        records = self._read(path, [])
        records.append(transaction.to_dict())
        self._write(path, records)

    def list_transactions(self, game_id: str) -> List[Transaction]:
        return [Transaction.from_dict(t) for t in self._read(self._transactions_path(game_id), [])]

    # History

    def save_history(self, history: GameHistory):
        records = [h for h in self._read(self._path(HISTORY_FILE), []) if h.get('game_id') != history.game_id]
        records.append(history.to_dict())
        self._write(self._path(HISTORY_FILE), records)

    def list_history(self) -> List[GameHistory]:
        return [GameHistory.from_dict(h) for h in self._read(self._path(HISTORY_FILE), [])]

    # Active game

    def get_active_game_id(self) -> Optional[str]:
        return self._read(self._path(STATE_FILE), {}).get('active_game_id')

    def set_active_game_id(self, game_id: Optional[str]):
        state = self._read(self._path(STATE_FILE), {})
        state['active_game_id'] = game_id
        self._write(self._path(STATE_FILE), state)

    def load_active_game(self) -> Optional[GameSession]:
        game_id = self.get_active_game_id()
        return self.load_game(game_id) if game_id else None

    # Achievements and leaderboard (plain dict records owned by their modules)

    def load_achievements(self) -> List[Dict]:
        return self._read(self._path(ACHIEVEMENTS_FILE), [])

    def save_achievements(self, unlocked: List[Dict]):
        self._write(self._path(ACHIEVEMENTS_FILE), unlocked)

    def load_leaderboard(self) -> List[Dict]:
        return self._read(self._path(LEADERBOARD_FILE), [])

    def save_leaderboard(self, entries: List[Dict]):
        self._write(self._path(LEADERBOARD_FILE), entries)

    def reset(self):
        """Remove every stored document."""
        for name in (GAMES_FILE, HISTORY_FILE, STATE_FILE, ACHIEVEMENTS_FILE, LEADERBOARD_FILE):
            path = self._path(name)
            if os.path.exists(path):
                os.remove(path)
        transactions_dir = self._path(TRANSACTIONS_DIR)
        if os.path.isdir(transactions_dir):
            for name in os.listdir(transactions_dir):
                os.remove(os.path.join(transactions_dir, name))
