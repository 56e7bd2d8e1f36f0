"""
Dispatch channels backed by the `messages` table.

One channel per priority tier plus a retry channel. Messages are keyed by
task id, so publishing the same id twice on a channel replaces the queued
message instead of duplicating it. A message stays invisible until its
`visible_at` time, which is how retry backoff is enforced.
"""
import logging
import sqlite3
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .models import HIGH, LOW, NORMAL, PRIORITIES, URGENT, Task

logger = logging.getLogger(__name__)

TASK_TOPIC = "task-queue"
RETRY_CHANNEL = "task-retry"

PRIORITY_CHANNELS = {p: f"{TASK_TOPIC}-{p}" for p in PRIORITIES}
# Highest tier first
DRAIN_ORDER = tuple(PRIORITY_CHANNELS[p] for p in (URGENT, HIGH, NORMAL, LOW))
ALL_CHANNELS = DRAIN_ORDER + (RETRY_CHANNEL,)


@dataclass
class Message:
    id: int
    channel: str
    key: str
    body: str
    visible_at: float


class PriorityRouter:
    def channel_for(self, priority: str) -> str:
        try:
            return PRIORITY_CHANNELS[priority]
        except KeyError:
            raise ValueError(f"No channel for priority {priority!r}")

    def route(self, task: Task) -> str:
        return self.channel_for(task.priority)


class Dispatcher:
    """Publish/claim over SQLite. Callers own the transaction."""

    def __init__(self, conn: sqlite3.Connection, clock: Callable[[], float] = time.time):
        self.conn = conn
        self.clock = clock

    def publish(self, channel: str, key: str, body: str, delay_seconds: float = 0) -> None:
        if channel not in ALL_CHANNELS:
            raise ValueError(f"Unknown channel {channel!r}")
        now = self.clock()
        self.conn.execute(
            "INSERT INTO messages(channel, key, body, visible_at, created_at) VALUES(?,?,?,?,?) "
            "ON CONFLICT(channel, key) DO UPDATE SET body=excluded.body, visible_at=excluded.visible_at",
            (channel, key, body, now + max(0.0, delay_seconds), now),
        )

    def _oldest_visible(self, channels: Sequence[str]) -> Optional[sqlite3.Row]:
        placeholders = ",".join("?" for _ in channels)
        return self.conn.execute(
            f"""SELECT * FROM messages
                WHERE channel IN ({placeholders}) AND visible_at <= ?
                ORDER BY visible_at ASC, id ASC
                LIMIT 1""",
            (*channels, self.clock()),
        ).fetchone()

    def _take(self, row: sqlite3.Row) -> Optional[Message]:
        # Exactly one claimer wins the delete.
        cur = self.conn.execute("DELETE FROM messages WHERE id=?", (row["id"],))
        if cur.rowcount != 1:
            return None
        return Message(
            id=row["id"],
            channel=row["channel"],
            key=row["key"],
            body=row["body"],
            visible_at=row["visible_at"],
        )

    def claim(self, channels: Sequence[str]) -> Optional[Message]:
        """Remove and return the oldest visible message of the first non-empty channel."""
        for channel in channels:
            row = self._oldest_visible([channel])
            if row is None:
                continue
            msg = self._take(row)
            if msg is not None:
                return msg
        return None

    def claim_oldest(self, channels: Sequence[str]) -> Optional[Message]:
        """Remove and return the oldest visible message across all of `channels`."""
        row = self._oldest_visible(channels)
        if row is None:
            return None
        return self._take(row)

    def discard(self, key: str) -> int:
        cur = self.conn.execute("DELETE FROM messages WHERE key=?", (key,))
        return cur.rowcount

    def depth(self, channel: str, visible_only: bool = False) -> int:
        if visible_only:
            row = self.conn.execute(
                "SELECT COUNT(1) AS c FROM messages WHERE channel=? AND visible_at <= ?",
                (channel, self.clock()),
            ).fetchone()
        else:
            row = self.conn.execute(
                "SELECT COUNT(1) AS c FROM messages WHERE channel=?", (channel,)
            ).fetchone()
        return row["c"]
