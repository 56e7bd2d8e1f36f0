import importlib
import logging
import signal
import threading
import time
import uuid
from dataclasses import replace
from typing import Optional

from .db import connect_db
from .handlers import HandlerRegistry, default_registry
from .models import CLAIMABLE_STATES, COMPLETED, FAILED, PROCESSING, WORKER_ACTIVE, WORKER_BUSY, Task
from .notify import TASK_UPDATES_TOPIC, LogNotifier, Notifier, QueuedNotifier
from .registry import WorkerRegistry
from .repository import TaskRepository, load_settings
from .retry import RetryScheduler
from .router import DRAIN_ORDER, RETRY_CHANNEL, Message
from .utils import millis_between, now_utc, to_iso

logger = logging.getLogger(__name__)

_stop = threading.Event()


def setup_signal_handlers():
    def _handler(signum, frame):
        logger.info("Received signal %s. Stopping workers", signum)
        _stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _handler)
        except ValueError:
            # not on the main thread
            logger.debug("Cannot install handler for signal %s", sig)


def new_worker_id() -> str:
    return f"worker-{uuid.uuid4().hex[:8]}"


class Worker:
    """
    Claims tasks one at a time and runs them.

    Due retries are claimed first, then the priority channels from urgent
    down to low. Every `fairness_every`-th claim takes the oldest visible
    message across the priority channels instead, so a low-priority backlog
    still drains under constant high-priority load.
    """

    def __init__(
        self,
        worker_id: str,
        repo: TaskRepository,
        registry: WorkerRegistry,
        retry: RetryScheduler,
        handlers: HandlerRegistry = default_registry,
        notifier: Optional[Notifier] = None,
        poll_interval: float = 0.5,
        fairness_every: int = 5,
    ):
        self.worker_id = worker_id
        self.repo = repo
        self.registry = registry
        self.retry = retry
        self.handlers = handlers
        self.notifier = notifier or LogNotifier()
        self.poll_interval = poll_interval
        self.fairness_every = fairness_every
        self._claimed = 0

    # ---------- Claiming ----------
    def claim_next(self) -> Optional[Message]:
        dispatcher = self.repo.dispatcher
        fair_turn = self.fairness_every > 0 and (self._claimed + 1) % self.fairness_every == 0
        with self.repo.conn:
            msg = None
            if fair_turn:
                msg = dispatcher.claim_oldest(DRAIN_ORDER)
            if msg is None:
                msg = dispatcher.claim((RETRY_CHANNEL,) + DRAIN_ORDER)
        if msg is not None:
            self._claimed += 1
        return msg

    def _load(self, msg: Message) -> Optional[Task]:
        task = self.repo.get(msg.key)
        if task is None:
            logger.warning("[%s] Dropping message for unknown task %s", self.worker_id, msg.key)
            return None
        if task.status not in CLAIMABLE_STATES:
            logger.info("[%s] Dropping message for task %s in state %s", self.worker_id, task.id, task.status)
            return None
        return task

    # ---------- Execution ----------
    def process(self, msg: Message) -> Optional[Task]:
        task = self._load(msg)
        if task is None:
            return None
        return self.execute(task)

    def execute(self, task: Task) -> Task:
        started = now_utc()
        task.status = PROCESSING
        task.worker_id = self.worker_id
        task.started_at = to_iso(started)
        task.completed_at = None
        self.repo.update(task)
        self._notify(task)
        self.registry.register(self.worker_id, WORKER_BUSY)
        logger.info("[%s] Executing task %s (type=%s, attempt %d)",
                    self.worker_id, task.id, task.type, task.retry_count + 1)

        try:
            handler = self.handlers.resolve(task.type)
            value = handler(dict(task.payload))
        except Exception as e:
            elapsed = millis_between(started, now_utc())
            logger.warning("[%s] Task %s failed: %s", self.worker_id, task.id, e)
            self.retry.handle_failure(task, e, elapsed)
        else:
            finished = now_utc()
            task.status = COMPLETED
            task.result = "" if value is None else str(value)
            task.error = None
            task.completed_at = to_iso(finished)
            task.execution_time_ms = millis_between(started, finished)
            if self.repo.update(task):
                logger.info("[%s] Task completed: %s in %dms", self.worker_id, task.id, task.execution_time_ms)
            else:
                self._store_failed(task)
        finally:
            self.registry.register(self.worker_id, WORKER_ACTIVE)
            self._notify(task)
        return task

    def _store_failed(self, task: Task) -> None:
        # Result could not be written; the message is already consumed.
        task.status = FAILED
        task.result = None
        task.error = "handler succeeded but its result could not be stored"
        if not self.repo.update(task):
            logger.error("[%s] Could not store outcome of task %s", self.worker_id, task.id)
        else:
            logger.error("[%s] Task %s failed: %s", self.worker_id, task.id, task.error)

    def _notify(self, task: Task) -> None:
        try:
            self.notifier.publish(TASK_UPDATES_TOPIC, replace(task, payload=dict(task.payload)))
        except Exception:
            logger.exception("[%s] Failed to send task update for %s", self.worker_id, task.id)

    # ---------- Loop ----------
    def run_once(self) -> Optional[Task]:
        msg = self.claim_next()
        if msg is None:
            return None
        return self.process(msg)

    def run_forever(self, stop: threading.Event) -> None:
        self.registry.register(self.worker_id, WORKER_ACTIVE)
        logger.info("Worker initialized: %s", self.worker_id)
        try:
            while not stop.is_set():
                try:
                    msg = self.claim_next()
                    if msg is None:
                        stop.wait(self.poll_interval)
                        continue
                    self.process(msg)
                except Exception:
                    logger.exception("[%s] Unexpected error", self.worker_id)
                    stop.wait(self.poll_interval)
        finally:
            self.registry.deregister(self.worker_id)
            logger.info("[%s] Worker stopped.", self.worker_id)


def build_worker(conn, worker_id: str, handlers: HandlerRegistry = default_registry,
                 notifier: Optional[Notifier] = None) -> Worker:
    settings = load_settings(conn)
    repo = TaskRepository(conn, settings=settings)
    return Worker(
        worker_id=worker_id,
        repo=repo,
        registry=WorkerRegistry(conn, ttl_seconds=settings.worker_ttl_seconds),
        retry=RetryScheduler(repo, base=settings.backoff_base, unit_seconds=settings.backoff_unit_seconds),
        handlers=handlers,
        notifier=notifier,
        poll_interval=settings.poll_interval_seconds,
        fairness_every=settings.fairness_every,
    )


def worker_loop(worker_id: str, handlers: HandlerRegistry = default_registry,
                notifier: Optional[Notifier] = None, stop: threading.Event = _stop,
                db: Optional[str] = None):
    conn = connect_db(db)
    try:
        worker = build_worker(conn, worker_id, handlers=handlers, notifier=notifier)
        worker.run_forever(stop)
    finally:
        conn.close()


def import_handler_modules(modules) -> None:
    """Import modules that register extra handlers on the default registry."""
    for name in modules:
        importlib.import_module(name)
        logger.info("Loaded handler module %s", name)


def start_workers(count: int, handlers: HandlerRegistry = default_registry,
                  notifier: Optional[Notifier] = None, db: Optional[str] = None):
    """Start multiple worker threads."""
    setup_signal_handlers()
    queued = None
    if notifier is None:
        queued = notifier = QueuedNotifier(LogNotifier().publish)
    threads = []

    for _ in range(count):
        worker_id = new_worker_id()
        t = threading.Thread(target=worker_loop, args=(worker_id, handlers, notifier, _stop, db),
                             name=worker_id, daemon=True)
        t.start()
        threads.append(t)
        logger.info("Started %s", t.name)

    try:
        while any(t.is_alive() for t in threads):
            time.sleep(0.5)
    finally:
        _stop.set()
        for t in threads:
            t.join()
        if queued is not None:
            queued.close()
        logger.info("All workers stopped gracefully.")
