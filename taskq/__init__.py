"""taskq: priority task queue with retrying workers on SQLite."""

__version__ = "0.1.0"
