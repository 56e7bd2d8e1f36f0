from __future__ import annotations

from typing import List

import pytest

from taskq.config import Settings
from taskq.db import connect_db, init_db
from taskq.handlers import HandlerRegistry
from taskq.registry import WorkerRegistry
from taskq.repository import TaskRepository
from taskq.retry import RetryScheduler
from taskq.worker import Worker


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    def __init__(self) -> None:
        self.updates: List[tuple] = []

    def publish(self, topic, task) -> None:
        self.updates.append((topic, task))

    @property
    def statuses(self) -> List[str]:
        return [t.status for _, t in self.updates]


@pytest.fixture()
def db_file(tmp_path):
    path = str(tmp_path / "taskq.db")
    init_db(path)
    return path


@pytest.fixture()
def conn(db_file):
    c = connect_db(db_file)
    yield c
    c.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings() -> Settings:
    return Settings()


@pytest.fixture()
def repo(conn, settings, clock) -> TaskRepository:
    return TaskRepository(conn, settings=settings, clock=clock)


@pytest.fixture()
def handlers() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def make_worker(conn, repo, clock, handlers, notifier, settings):
    def _make(worker_id: str = "worker-test", fairness_every: int = 5) -> Worker:
        return Worker(
            worker_id=worker_id,
            repo=repo,
            registry=WorkerRegistry(conn, ttl_seconds=settings.worker_ttl_seconds, clock=clock),
            retry=RetryScheduler(repo, base=settings.backoff_base, unit_seconds=settings.backoff_unit_seconds),
            handlers=handlers,
            notifier=notifier,
            poll_interval=0.01,
            fairness_every=fairness_every,
        )

    return _make
