"""
SQLite key/value substrate shared by the task store and the worker registry.

Entries carry an optional expiry. Expired entries are invisible to reads
(lazy expiry); `purge_expired` deletes them for good.

None of these methods commit: callers own the transaction (`with conn:`),
so several writes can succeed or fail together.
"""
import sqlite3
import time
from typing import Callable, List, Optional


class KeyValueStore:
    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], float] = time.time):
        self.conn = conn
        self.clock = clock

    # ---------- Keys ----------
    def get(self, key: str) -> Optional[str]:
        row = self.conn.execute(
            "SELECT value FROM kv WHERE key=? AND (expires_at IS NULL OR expires_at > ?)",
            (key, self.clock()),
        ).fetchone()
        return row["value"] if row else None

    def put(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        expires_at = self.clock() + ttl_seconds if ttl_seconds is not None else None
        self.conn.execute(
            "INSERT INTO kv(key, value, expires_at) VALUES(?,?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, expires_at=excluded.expires_at",
            (key, value, expires_at),
        )

    def delete(self, key: str) -> bool:
        cur = self.conn.execute("DELETE FROM kv WHERE key=?", (key,))
        return cur.rowcount == 1

    def keys_with_prefix(self, prefix: str) -> List[str]:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        rows = self.conn.execute(
            "SELECT key FROM kv WHERE key LIKE ? ESCAPE '\\' "
            "AND (expires_at IS NULL OR expires_at > ?) ORDER BY key",
            (escaped + "%", self.clock()),
        ).fetchall()
        return [r["key"] for r in rows]

    # ---------- Ordered id index ----------
    def append_id(self, item_id: str) -> None:
        self.conn.execute("INSERT OR IGNORE INTO task_index(task_id) VALUES(?)", (item_id,))

    def remove_id(self, item_id: str) -> bool:
        cur = self.conn.execute("DELETE FROM task_index WHERE task_id=?", (item_id,))
        return cur.rowcount == 1

    def list_ids(self) -> List[str]:
        rows = self.conn.execute("SELECT task_id FROM task_index ORDER BY seq DESC").fetchall()
        return [r["task_id"] for r in rows]

    # ---------- Maintenance ----------
    def purge_expired(self, index_prefix: str) -> int:
        """Delete expired entries and index ids whose `index_prefix + id` entry is gone."""
        now = self.clock()
        cur = self.conn.execute(
            "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?", (now,)
        )
        removed = cur.rowcount
        self.conn.execute(
            "DELETE FROM task_index WHERE NOT EXISTS "
            "(SELECT 1 FROM kv WHERE kv.key = ? || task_index.task_id)",
            (index_prefix,),
        )
        return removed
