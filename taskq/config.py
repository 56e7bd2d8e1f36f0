import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "backoff_base": "2",
    "backoff_unit_seconds": "1",
    "max_retries_default": "3",
    "timeout_seconds": "20",
    "task_retention_hours": "24",
    "worker_ttl_seconds": "300",
    "poll_interval_seconds": "0.5",
    "fairness_every": "5",
}

ALLOWED_CONFIG_KEYS = set(DEFAULT_CONFIG.keys())


@dataclass
class Settings:
    backoff_base: int = 2
    backoff_unit_seconds: float = 1.0
    max_retries_default: int = 3
    timeout_seconds: int = 20
    task_retention_hours: int = 24
    worker_ttl_seconds: int = 300
    poll_interval_seconds: float = 0.5
    fairness_every: int = 5

    @property
    def task_retention_seconds(self) -> int:
        return self.task_retention_hours * 3600


_CASTS = {
    "backoff_base": int,
    "backoff_unit_seconds": float,
    "max_retries_default": int,
    "timeout_seconds": int,
    "task_retention_hours": int,
    "worker_ttl_seconds": int,
    "poll_interval_seconds": float,
    "fairness_every": int,
}

# Keys that feed a TTL; 0 would expire entries on write
_MINIMUMS = {
    "worker_ttl_seconds": 1,
    "task_retention_hours": 1,
}


def validate_config_value(key: str, value: str) -> None:
    if key not in ALLOWED_CONFIG_KEYS:
        raise ValueError(f"Allowed keys: {', '.join(sorted(ALLOWED_CONFIG_KEYS))}")
    try:
        parsed = _CASTS[key](value)
    except ValueError:
        raise ValueError(f"{key} must be a {_CASTS[key].__name__}, got {value!r}")
    minimum = _MINIMUMS.get(key, 0)
    if parsed < minimum:
        raise ValueError(f"{key} must be at least {minimum}, got {value!r}")


def settings_from_dict(raw: dict) -> Settings:
    """Build typed settings from the raw config table, keeping defaults for bad values."""
    values = {}
    for key, cast in _CASTS.items():
        text = raw.get(key, DEFAULT_CONFIG[key])
        try:
            validate_config_value(key, text)
            values[key] = cast(text)
        except (TypeError, ValueError):
            logger.warning("Ignoring bad config value %s=%r; using default %s", key, text, DEFAULT_CONFIG[key])
            values[key] = cast(DEFAULT_CONFIG[key])
    return Settings(**values)
