import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from ..exceptions import DatabaseError
from ..models import Item, ItemType, TimeMode

# Columns an Item maps onto, in INSERT order
ITEM_COLUMNS = [
    'type', 'hash', 'directory', 'filename', 'lost', 'size', 'mtime', 'time', 'time_mode',
    'width', 'height', 'duration', 'thumbnail_base64', 'thumbnail_path', 'preview_video_path',
    'title', 'rating', 'memo',
]
_QUERYABLE = set(ITEM_COLUMNS) | {'id'}


@contextmanager
def _store_errors(action: str):
    """Turns driver errors into DatabaseError so passes can tell them apart."""
    try:
        yield
    except sqlite3.Error as e:
        raise DatabaseError(f"Failed to {action}: {e}") from e


def _to_db(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


def _where_clause(where: Optional[Dict[str, Any]]):
    if not where:
        return "", []
    parts, params = [], []
    for column, value in where.items():
        if column not in _QUERYABLE:
            raise ValueError(f"Unknown item column: {column}")
        if value is None:
            parts.append(f"{column} IS NULL")
        else:
            parts.append(f"{column} = ?")
            params.append(_to_db(value))
    return " WHERE " + " AND ".join(parts), params


def row_to_item(row: sqlite3.Row) -> Item:
    return Item(
        id=row['id'],
        type=ItemType(row['type']),
        hash=row['hash'],
        directory=row['directory'],
        filename=row['filename'],
        lost=bool(row['lost']),
        size=row['size'],
        mtime=row['mtime'],
        time=datetime.fromisoformat(row['time']),
        time_mode=TimeMode(row['time_mode']),
        width=row['width'],
        height=row['height'],
        duration=row['duration'],
        thumbnail_base64=row['thumbnail_base64'],
        thumbnail_path=row['thumbnail_path'],
        preview_video_path=row['preview_video_path'],
        title=row['title'],
        rating=row['rating'],
        memo=row['memo'],
    )


class ItemStore:
    """
    Typed access to the `items` table.
    Every write commits on its own; there are no multi-item transactions
    apart from a single bulk insert.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def find_all(self,
                 where: Optional[Dict[str, Any]] = None,
                 after_id: Optional[int] = None,
                 limit: Optional[int] = None) -> List[Item]:
        """Items matching `where` (column -> value, ANDed), ordered by id."""
        clause, params = _where_clause(where)
        if after_id is not None:
            clause += (" AND" if clause else " WHERE") + " id > ?"
            params.append(after_id)
        sql = f"SELECT * FROM items{clause} ORDER BY id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with _store_errors("query items"):
            rows = self.conn.execute(sql, params).fetchall()
        return [row_to_item(r) for r in rows]

    def find_by_id(self, item_id: int) -> Optional[Item]:
        with _store_errors("query item"):
            row = self.conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
        return row_to_item(row) if row else None

    def count(self, where: Optional[Dict[str, Any]] = None) -> int:
        clause, params = _where_clause(where)
        with _store_errors("count items"):
            return self.conn.execute(f"SELECT COUNT(*) FROM items{clause}", params).fetchone()[0]

    def create(self, item: Item) -> int:
        placeholders = ", ".join("?" for _ in ITEM_COLUMNS)
        with _store_errors("insert item"), self.conn:
            cur = self.conn.execute(
                f"INSERT INTO items ({', '.join(ITEM_COLUMNS)}) VALUES ({placeholders})",
                self._values(item),
            )
        if cur.lastrowid is None:
            raise DatabaseError("Database INSERT failed to return a row ID.")
        item.id = cur.lastrowid
        return item.id

    def bulk_create(self, items: Iterable[Item]):
        """Inserts all records in one transaction: one round-trip per batch."""
        placeholders = ", ".join("?" for _ in ITEM_COLUMNS)
        with _store_errors("bulk insert items"), self.conn:
            self.conn.executemany(
                f"INSERT INTO items ({', '.join(ITEM_COLUMNS)}) VALUES ({placeholders})",
                [self._values(item) for item in items],
            )

    def update(self, values: Dict[str, Any], where: Dict[str, Any]) -> int:
        """Partial update. Returns the number of rows changed."""
        if not where:
            raise ValueError("Refusing to update items without a condition")
        for column in values:
            if column not in _QUERYABLE or column == 'id':
                raise ValueError(f"Unknown item column: {column}")
        assignments = ", ".join(f"{column} = ?" for column in values)
        clause, params = _where_clause(where)
        with _store_errors("update items"), self.conn:
            cur = self.conn.execute(
                f"UPDATE items SET {assignments}, updated_at = CURRENT_TIMESTAMP{clause}",
                [_to_db(v) for v in values.values()] + params,
            )
        return cur.rowcount

    def all_relative_paths(self) -> Set[str]:
        """Every known location, lost or not."""
        with _store_errors("query item paths"):
            rows = self.conn.execute("SELECT directory, filename FROM items").fetchall()
        return {_join(d, f) for d, f in rows}

    def live_relative_paths(self) -> Set[str]:
        with _store_errors("query item paths"):
            rows = self.conn.execute("SELECT directory, filename FROM items WHERE lost = 0").fetchall()
        return {_join(d, f) for d, f in rows}

    def _values(self, item: Item) -> List[Any]:
        return [_to_db(getattr(item, column)) for column in ITEM_COLUMNS]


def _join(directory: str, filename: str) -> str:
    return filename if directory in ("", ".") else f"{directory}/{filename}"


class ConfigStore:
    """Gallery settings as key -> JSON text."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, key: str, default: Any = None) -> Any:
        with _store_errors("read config"):
            row = self.conn.execute("SELECT value FROM configs WHERE key = ?", (key,)).fetchone()
        return json.loads(row[0]) if row else default

    def set(self, key: str, value: Any):
        json_value = json.dumps(value, default=_to_db)
        with _store_errors("write config"), self.conn:
            self.conn.execute(
                "INSERT INTO configs (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, json_value),
            )

    def all(self) -> Dict[str, Any]:
        with _store_errors("read configs"):
            rows = self.conn.execute("SELECT key, value FROM configs").fetchall()
        return {key: json.loads(value) for key, value in rows}
