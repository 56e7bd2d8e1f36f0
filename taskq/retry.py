import logging
import sqlite3

from .errors import SerializationError
from .models import FAILED, RETRYING, Task
from .repository import TaskRepository
from .router import RETRY_CHANNEL
from .utils import now_iso

logger = logging.getLogger(__name__)


class RetryScheduler:
    """
    Decides between retry and permanent failure after a handler error.

    A retried task goes onto the retry channel with an exponential delay
    (`base ** retry_count * unit` seconds) and is not claimable before the
    delay has elapsed. If the retry cannot be queued the task is failed
    instead, so it is never left in `processing` without a message.
    """

    def __init__(self, repo: TaskRepository, base: int = 2, unit_seconds: float = 1.0):
        self.repo = repo
        self.base = base
        self.unit_seconds = unit_seconds

    def backoff_seconds(self, retry_count: int) -> float:
        return (self.base ** retry_count) * self.unit_seconds

    def handle_failure(self, task: Task, error: BaseException, elapsed_ms: int) -> Task:
        task.error = str(error) or type(error).__name__
        task.execution_time_ms = max(0, elapsed_ms)

        if task.retry_count < task.max_retries:
            task.retry_count += 1
            task.status = RETRYING
            delay = self.backoff_seconds(task.retry_count)
            try:
                self.repo.requeue(task, RETRY_CHANNEL, delay_seconds=delay)
            except (sqlite3.Error, SerializationError) as e:
                logger.exception("Could not schedule retry for task %s", task.id)
                return self._fail(task, f"{task.error}; retry not scheduled: {e}")
            logger.info(
                "Task scheduled for retry: %s (attempt %d/%d) in %.1fs",
                task.id, task.retry_count, task.max_retries, delay,
            )
            return task
        return self._fail(task, task.error)

    def _fail(self, task: Task, error: str) -> Task:
        task.status = FAILED
        task.error = error
        task.completed_at = now_iso()
        if not self.repo.update(task):
            logger.error("Could not store failure of task %s", task.id)
        logger.error("Task failed permanently: %s (%s)", task.id, task.error)
        return task
