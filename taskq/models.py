import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional

from .errors import SerializationError

# Task states
PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
RETRYING = "retrying"
PAUSED = "paused"
CANCELLED = "cancelled"

STATES = (PENDING, PROCESSING, COMPLETED, FAILED, RETRYING, PAUSED, CANCELLED)
# States a queued message may still be executed from
CLAIMABLE_STATES = (PENDING, RETRYING)

TRANSITIONS = {
    PENDING: {PROCESSING, PAUSED, CANCELLED},
    PROCESSING: {COMPLETED, RETRYING, FAILED, PAUSED, CANCELLED},
    RETRYING: {PROCESSING, CANCELLED},
    FAILED: {PENDING},
    PAUSED: {PENDING},
    COMPLETED: set(),
    CANCELLED: set(),
}

# Priorities, lowest first
LOW = "low"
NORMAL = "normal"
HIGH = "high"
URGENT = "urgent"

PRIORITIES = (LOW, NORMAL, HIGH, URGENT)
PRIORITY_LEVELS = {p: i + 1 for i, p in enumerate(PRIORITIES)}

# Worker states
WORKER_ACTIVE = "active"
WORKER_BUSY = "busy"


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def normalize_priority(value: Optional[str]) -> str:
    if value is None:
        return NORMAL
    p = str(value).strip().lower()
    if p not in PRIORITY_LEVELS:
        raise ValueError(f"Unknown priority {value!r}. Use one of: {', '.join(PRIORITIES)}")
    return p


@dataclass
class Task:
    id: str
    type: str
    status: str = PENDING
    worker_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    result: Optional[str] = None
    error: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3
    priority: str = NORMAL
    created_at: str = ""
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    execution_time_ms: int = 0

    @property
    def priority_level(self) -> int:
        return PRIORITY_LEVELS[self.priority]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        try:
            return json.dumps(self.to_dict(), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Cannot encode task {self.id}: {e}") from e

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        if not isinstance(data, dict):
            raise SerializationError(f"Task record must be an object, got {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        missing = {"id", "type"} - data.keys()
        if missing:
            raise SerializationError(f"Task record missing fields: {', '.join(sorted(missing))}")
        task = cls(**{k: v for k, v in data.items() if k in known})
        if task.status not in STATES:
            raise SerializationError(f"Task {task.id} has unknown status {task.status!r}")
        if task.priority not in PRIORITY_LEVELS:
            raise SerializationError(f"Task {task.id} has unknown priority {task.priority!r}")
        return task

    @classmethod
    def from_json(cls, raw: str) -> "Task":
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Cannot decode task record: {e}") from e
        return cls.from_dict(data)


@dataclass
class WorkerEntry:
    id: str
    status: str = WORKER_ACTIVE
    last_seen: str = ""

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "WorkerEntry":
        try:
            data = json.loads(raw)
            return cls(id=data["id"], status=data["status"], last_seen=data.get("last_seen", ""))
        except (TypeError, ValueError, KeyError) as e:
            raise SerializationError(f"Cannot decode worker entry: {e}") from e
