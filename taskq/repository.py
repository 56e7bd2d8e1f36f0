import logging
import sqlite3
import time
import uuid
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from .config import ALLOWED_CONFIG_KEYS, Settings, settings_from_dict, validate_config_value
from .errors import SerializationError, SubmissionError
from .models import (
    CANCELLED,
    FAILED,
    PAUSED,
    PENDING,
    PROCESSING,
    RETRYING,
    STATES,
    Task,
    can_transition,
    normalize_priority,
)
from .router import Dispatcher, PriorityRouter
from .stats import compute_statistics
from .store import KeyValueStore
from .utils import now_iso

logger = logging.getLogger(__name__)

TASK_PREFIX = "task:"


# ---------- Config ----------
def get_config(conn) -> Dict[str, str]:
    cur = conn.execute("SELECT key, value FROM config")
    return {r["key"]: r["value"] for r in cur.fetchall()}


def set_config(conn, key: str, value: str):
    if key not in ALLOWED_CONFIG_KEYS:
        raise ValueError(f"Allowed keys: {', '.join(sorted(ALLOWED_CONFIG_KEYS))}")
    validate_config_value(key, value)
    with conn:
        conn.execute(
            "INSERT INTO config(key,value) VALUES(?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, str(value)),
        )


def load_settings(conn) -> Settings:
    return settings_from_dict(get_config(conn))


# ---------- Tasks ----------
class TaskRepository:
    """
    Durable task records plus the control operations on them.

    Records live under `task:<id>` with a retention TTL; an ordered index
    keeps every known id. Writes are last-writer-wins: a control call racing
    a worker's write on the same task can lose one of the two updates.
    """

    def __init__(self, conn: sqlite3.Connection, settings: Optional[Settings] = None,
                 clock: Callable[[], float] = time.time):
        self.conn = conn
        self.settings = settings or load_settings(conn)
        self.kv = KeyValueStore(conn, clock=clock)
        self.dispatcher = Dispatcher(conn, clock=clock)
        self.router = PriorityRouter()

    # ---------- low-level ----------
    def _put(self, task: Task) -> None:
        self.kv.put(TASK_PREFIX + task.id, task.to_json(), ttl_seconds=self.settings.task_retention_seconds)

    def _publish(self, task: Task) -> None:
        self.dispatcher.publish(self.router.route(task), task.id, task.to_json())

    # ---------- Submission ----------
    def submit(self, task_type: str, payload: Optional[Dict[str, Any]] = None,
               priority: Optional[str] = None) -> Task:
        if not task_type or not task_type.strip():
            raise SubmissionError("Task type cannot be empty.")
        try:
            prio = normalize_priority(priority)
        except ValueError as e:
            raise SubmissionError(str(e)) from e

        task = Task(
            id=str(uuid.uuid4()),
            type=task_type.strip(),
            status=PENDING,
            payload=dict(payload or {}),
            retry_count=0,
            max_retries=self.settings.max_retries_default,
            priority=prio,
            created_at=now_iso(),
        )
        try:
            with self.conn:
                self._put(task)
                self.kv.append_id(task.id)
                self._publish(task)
        except (SerializationError, sqlite3.Error, ValueError) as e:
            logger.error("Failed to submit task %s: %s", task.id, e)
            raise SubmissionError(f"Failed to submit task: {e}") from e

        logger.info("Task submitted: %s type=%s priority=%s", task.id, task.type, task.priority)
        return task

    # ---------- Queries ----------
    def get(self, task_id: str) -> Optional[Task]:
        raw = self.kv.get(TASK_PREFIX + task_id)
        if raw is None:
            return None
        try:
            return Task.from_json(raw)
        except SerializationError:
            logger.exception("Failed to deserialize task: %s", task_id)
            return None

    def update(self, task: Task) -> bool:
        try:
            with self.conn:
                self._put(task)
        except (SerializationError, sqlite3.Error):
            logger.exception("Failed to update task: %s", task.id)
            return False
        logger.debug("Task updated: %s -> %s", task.id, task.status)
        return True

    def requeue(self, task: Task, channel: str, delay_seconds: float = 0) -> None:
        """Persist `task` and publish it on `channel` in one transaction."""
        with self.conn:
            self._put(task)
            self.dispatcher.publish(channel, task.id, task.to_json(), delay_seconds=delay_seconds)

    def list_all(self) -> List[Task]:
        tasks = []
        for task_id in self.kv.list_ids():
            task = self.get(task_id)
            if task is None:
                logger.warning("Task %s is indexed but missing or unreadable; skipping", task_id)
                continue
            tasks.append(task)
        tasks.sort(key=lambda t: t.created_at, reverse=True)
        return tasks

    def list_by_status(self, status: str) -> List[Task]:
        if status not in STATES:
            raise ValueError(f"Unknown status {status!r}. Use one of: {', '.join(STATES)}")
        return [t for t in self.list_all() if t.status == status]

    def statistics(self) -> Dict[str, Any]:
        return compute_statistics(self.list_all())

    # ---------- Control ----------
    def _transition(self, task_id: str, sources: tuple, target: str,
                    mutate: Optional[Callable[[Task], None]] = None,
                    republish: bool = False) -> bool:
        task = self.get(task_id)
        if task is None or task.status not in sources or not can_transition(task.status, target):
            return False
        updated = replace(task, status=target)
        if mutate is not None:
            mutate(updated)
        try:
            with self.conn:
                self._put(updated)
                # Drop any queued copy; a re-routed task is published fresh.
                self.dispatcher.discard(task_id)
                if republish:
                    self._publish(updated)
        except (SerializationError, sqlite3.Error, ValueError):
            logger.exception("Failed to move task %s from %s to %s", task_id, task.status, target)
            return False
        logger.info("Task %s: %s -> %s", task_id, task.status, target)
        return True

    def cancel(self, task_id: str) -> bool:
        return self._transition(task_id, (PENDING, PROCESSING, RETRYING), CANCELLED)

    def pause(self, task_id: str) -> bool:
        return self._transition(task_id, (PENDING, PROCESSING), PAUSED, _clear_owner)

    def resume(self, task_id: str) -> bool:
        return self._transition(task_id, (PAUSED,), PENDING, _clear_owner, republish=True)

    def retry(self, task_id: str) -> bool:
        return self._transition(task_id, (FAILED,), PENDING, _reset_for_retry, republish=True)

    def delete(self, task_id: str) -> bool:
        try:
            with self.conn:
                in_index = self.kv.remove_id(task_id)
                had_record = self.kv.delete(TASK_PREFIX + task_id)
                self.dispatcher.discard(task_id)
        except sqlite3.Error:
            logger.exception("Failed to delete task: %s", task_id)
            return False
        if in_index or had_record:
            logger.info("Task deleted: %s", task_id)
        return in_index or had_record

    def purge_expired(self) -> int:
        with self.conn:
            return self.kv.purge_expired(TASK_PREFIX)


def _clear_owner(task: Task) -> None:
    task.worker_id = None


def _reset_for_retry(task: Task) -> None:
    task.retry_count = 0
    task.worker_id = None
    task.result = None
    task.error = None
    task.started_at = None
    task.completed_at = None
    task.execution_time_ms = 0
