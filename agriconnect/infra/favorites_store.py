"""Per-browser favourite listing ids."""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from threading import Lock
from typing import Dict, List

from .config import get_config


class FavoritesStore:
    def list(self, owner_id: str) -> List[str]:
        raise NotImplementedError

    def contains(self, owner_id: str, listing_id: str) -> bool:
        return listing_id in self.list(owner_id)

    def add(self, owner_id: str, listing_id: str) -> None:
        raise NotImplementedError

    def remove(self, owner_id: str, listing_id: str) -> None:
        raise NotImplementedError

    def toggle(self, owner_id: str, listing_id: str) -> bool:
        """Flip membership and return the new state."""
        if self.contains(owner_id, listing_id):
            self.remove(owner_id, listing_id)
            return False
        self.add(owner_id, listing_id)
        return True


class MemoryFavoritesStore(FavoritesStore):
    def __init__(self) -> None:
        self._items: Dict[str, List[str]] = {}
        self._lock = Lock()

    def list(self, owner_id: str) -> List[str]:
        with self._lock:
            return list(self._items.get(owner_id, []))

    def add(self, owner_id: str, listing_id: str) -> None:
        with self._lock:
            items = self._items.setdefault(owner_id, [])
            if listing_id not in items:
                items.append(listing_id)

    def remove(self, owner_id: str, listing_id: str) -> None:
        with self._lock:
            items = self._items.get(owner_id)
            if items and listing_id in items:
                items.remove(listing_id)


class SqliteFavoritesStore(FavoritesStore):
    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._path)

    def _init_db(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS favorites ("
                "owner_id TEXT NOT NULL, "
                "listing_id TEXT NOT NULL, "
                "created_at INTEGER NOT NULL, "
                "PRIMARY KEY (owner_id, listing_id))"
            )

    def list(self, owner_id: str) -> List[str]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT listing_id FROM favorites WHERE owner_id = ? "
                "ORDER BY created_at, rowid",
                (owner_id,),
            ).fetchall()
        return [row[0] for row in rows]

    def contains(self, owner_id: str, listing_id: str) -> bool:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM favorites WHERE owner_id = ? AND listing_id = ?",
                (owner_id, listing_id),
            ).fetchone()
        return row is not None

    def add(self, owner_id: str, listing_id: str) -> None:
        with self._lock, self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO favorites (owner_id, listing_id, created_at) "
                "VALUES (?, ?, ?)",
                (owner_id, listing_id, int(time.time())),
            )

    def remove(self, owner_id: str, listing_id: str) -> None:
        with self._lock, self._connect() as conn:
            conn.execute(
                "DELETE FROM favorites WHERE owner_id = ? AND listing_id = ?",
                (owner_id, listing_id),
            )


def build_favorites_store() -> FavoritesStore:
    cfg = get_config()
    store = (cfg.favorites_store or "memory").lower()
    if store == "sqlite":
        if cfg.favorites_store_path:
            path = Path(cfg.favorites_store_path)
        else:
            root = Path(__file__).resolve().parents[2]
            path = root / ".cache" / "favorites.sqlite3"
        return SqliteFavoritesStore(path=path)
    return MemoryFavoritesStore()
