"""
Task update notifications.

The engine publishes every state change to a sink on a best-effort basis.
`QueuedNotifier` hands updates to a background thread through a bounded
queue, so a slow or failing sink can never stall a worker: a full queue
drops the update and logs a warning.
"""
import logging
import queue
import threading
from typing import Callable, Optional, Protocol

from .models import Task

logger = logging.getLogger(__name__)

TASK_UPDATES_TOPIC = "task-updates"


class Notifier(Protocol):
    def publish(self, topic: str, task: Task) -> None: ...


class LogNotifier:
    def publish(self, topic: str, task: Task) -> None:
        logger.info("[%s] task=%s status=%s worker=%s", topic, task.id, task.status, task.worker_id)


class QueuedNotifier:
    def __init__(self, sink: Callable[[str, Task], None], maxsize: int = 1000):
        self._sink = sink
        self._queue: "queue.Queue[Optional[tuple]]" = queue.Queue(maxsize=maxsize)
        self._thread = threading.Thread(target=self._drain, name="taskq-notifier", daemon=True)
        self._thread.start()

    def publish(self, topic: str, task: Task) -> None:
        try:
            self._queue.put_nowait((topic, task))
        except queue.Full:
            logger.warning("Notification queue full; dropping update for task %s", task.id)

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            topic, task = item
            try:
                self._sink(topic, task)
            except Exception:
                logger.exception("Notification sink failed for task %s", task.id)

    def close(self, timeout: float = 5.0) -> None:
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            logger.warning("Notification queue still full on close; abandoning pending updates")
            return
        self._thread.join(timeout)
