from typing import Any, Dict, Iterable

from .models import CANCELLED, COMPLETED, FAILED, PAUSED, PENDING, PROCESSING, RETRYING, Task


def compute_statistics(tasks: Iterable[Task]) -> Dict[str, Any]:
    """Counts by status and mean execution time of completed tasks. Nothing is cached."""
    tasks = list(tasks)
    completed = [t for t in tasks if t.status == COMPLETED]
    avg_ms = sum(t.execution_time_ms for t in completed) / len(completed) if completed else 0.0
    return {
        "total": len(tasks),
        "completed": len(completed),
        "failed": sum(1 for t in tasks if t.status == FAILED),
        "pending": sum(1 for t in tasks if t.status == PENDING),
        "running": sum(1 for t in tasks if t.status in (PROCESSING, RETRYING)),
        "paused": sum(1 for t in tasks if t.status == PAUSED),
        "cancelled": sum(1 for t in tasks if t.status == CANCELLED),
        "avg_execution_time_ms": float(avg_ms),
    }
