from taskq.models import CANCELLED, COMPLETED, FAILED, PAUSED, PENDING, PROCESSING, RETRYING, Task
from taskq.stats import compute_statistics


def _task(i, status, ms=0):
    return Task(id=str(i), type="T", status=status, execution_time_ms=ms)


def test_empty():
    stats = compute_statistics([])
    assert stats["total"] == 0
    assert stats["avg_execution_time_ms"] == 0.0


def test_counts_by_status():
    tasks = [
        _task(1, COMPLETED, 100),
        _task(2, COMPLETED, 300),
        _task(3, FAILED, 50),
        _task(4, PENDING),
        _task(5, PROCESSING),
        _task(6, RETRYING),
        _task(7, PAUSED),
        _task(8, CANCELLED),
    ]
    stats = compute_statistics(tasks)

    assert stats == {
        "total": 8,
        "completed": 2,
        "failed": 1,
        "pending": 1,
        "running": 2,
        "paused": 1,
        "cancelled": 1,
        "avg_execution_time_ms": 200.0,
    }


def test_average_ignores_failed_tasks():
    stats = compute_statistics([_task(1, FAILED, 900), _task(2, PENDING)])
    assert stats["avg_execution_time_ms"] == 0.0


def test_repository_statistics_reflect_store(repo):
    a = repo.submit("T")
    repo.submit("T")
    repo.cancel(a.id)

    stats = repo.statistics()
    assert stats["total"] == 2
    assert stats["pending"] == 1
    assert stats["cancelled"] == 1
