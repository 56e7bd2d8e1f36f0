import os
import sqlite3
from typing import Optional

from .config import DEFAULT_CONFIG

DEFAULT_DB_FILE = "taskq.db"

SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at REAL
);
CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv(expires_at);
CREATE TABLE IF NOT EXISTS task_index (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    channel TEXT NOT NULL,
    key TEXT NOT NULL,
    body TEXT NOT NULL,
    visible_at REAL NOT NULL,
    created_at REAL NOT NULL,
    UNIQUE(channel, key)
);
CREATE INDEX IF NOT EXISTS idx_messages_channel_visible ON messages(channel, visible_at);
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def db_path() -> str:
    return os.environ.get("TASKQ_DB", DEFAULT_DB_FILE)


def connect_db(path: Optional[str] = None) -> sqlite3.Connection:
    # Worker threads each open their own connection.
    conn = sqlite3.connect(path or db_path(), timeout=30.0, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(path: Optional[str] = None) -> None:
    conn = connect_db(path)
    try:
        with conn:
            for stmt in SCHEMA.strip().split(";"):
                s = stmt.strip()
                if s:
                    conn.execute(s + ";")
            # seed defaults
            for k, v in DEFAULT_CONFIG.items():
                conn.execute(
                    "INSERT OR IGNORE INTO config(key, value) VALUES(?,?)", (k, v)
                )
    finally:
        conn.close()
