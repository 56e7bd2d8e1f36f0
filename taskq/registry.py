import logging
import sqlite3
import time
from typing import Callable, List

from .errors import SerializationError
from .models import WORKER_ACTIVE, WORKER_BUSY, WorkerEntry
from .store import KeyValueStore
from .utils import now_iso

logger = logging.getLogger(__name__)

WORKER_PREFIX = "worker:"


class WorkerRegistry:
    """
    Liveness hints for workers.

    Each entry expires `ttl_seconds` after its last refresh; an expired entry
    simply stops showing up in `list_active`. Bookkeeping failures are logged
    and swallowed so they never take a worker down.
    """

    def __init__(self, conn: sqlite3.Connection, ttl_seconds: float = 300,
                 clock: Callable[[], float] = time.time):
        self.conn = conn
        self.ttl_seconds = ttl_seconds
        self.kv = KeyValueStore(conn, clock=clock)

    def register(self, worker_id: str, status: str = WORKER_ACTIVE) -> bool:
        if status not in (WORKER_ACTIVE, WORKER_BUSY):
            raise ValueError(f"Unknown worker status {status!r}")
        entry = WorkerEntry(id=worker_id, status=status, last_seen=now_iso())
        try:
            with self.conn:
                self.kv.put(WORKER_PREFIX + worker_id, entry.to_json(), ttl_seconds=self.ttl_seconds)
        except sqlite3.Error:
            logger.exception("Failed to register worker %s as %s", worker_id, status)
            return False
        logger.debug("Worker %s -> %s", worker_id, status)
        return True

    def deregister(self, worker_id: str) -> bool:
        try:
            with self.conn:
                return self.kv.delete(WORKER_PREFIX + worker_id)
        except sqlite3.Error:
            logger.exception("Failed to deregister worker %s", worker_id)
            return False

    def list_active(self) -> List[WorkerEntry]:
        out = []
        for key in self.kv.keys_with_prefix(WORKER_PREFIX):
            raw = self.kv.get(key)
            if raw is None:
                # expired between the two reads
                continue
            try:
                out.append(WorkerEntry.from_json(raw))
            except SerializationError:
                logger.warning("Skipping corrupt worker entry %s", key)
        return out
