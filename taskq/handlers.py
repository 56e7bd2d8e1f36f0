"""
Per-type task handlers.

A handler takes the task payload and returns a result; raising marks the
attempt as failed. Types without a registered handler run the generic one.
"""
import logging
import shlex
import subprocess
from typing import Any, Callable, Dict, Optional

from .errors import ExecutionError

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Any]


def generic_handler(payload: Dict[str, Any]) -> str:
    return f"Generic task processed with payload: {payload}"


def run_command(cmd: str, timeout: int = 20) -> subprocess.CompletedProcess:
    args = shlex.split(cmd)
    try:
        return subprocess.run(args, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise ExecutionError(f"Command timed out after {timeout}s: {cmd}")
    except FileNotFoundError:
        raise ExecutionError(f"Command not found: {cmd}")


def make_command_handler(timeout: int = 20) -> Handler:
    def command_handler(payload: Dict[str, Any]) -> str:
        cmd = payload.get("command")
        if not cmd or not str(cmd).strip():
            raise ExecutionError("payload.command is required")
        result = run_command(str(cmd), timeout=int(payload.get("timeout", timeout)))
        if result.stderr:
            logger.debug("command stderr: %s", result.stderr.strip())
        if result.returncode != 0:
            raise ExecutionError(f"exit_code={result.returncode}: {result.stderr.strip()[:500]}")
        return result.stdout.strip()

    return command_handler


class HandlerRegistry:
    def __init__(self, default: Handler = generic_handler):
        self._handlers: Dict[str, Handler] = {}
        self._default = default

    def register(self, task_type: str, handler: Optional[Handler] = None):
        """Register `handler` for `task_type`; usable as a decorator when `handler` is omitted."""
        if handler is None:
            def decorator(fn: Handler) -> Handler:
                self._handlers[task_type] = fn
                return fn
            return decorator
        self._handlers[task_type] = handler
        return handler

    def resolve(self, task_type: str) -> Handler:
        return self._handlers.get(task_type, self._default)

    def types(self):
        return sorted(self._handlers)


default_registry = HandlerRegistry()
default_registry.register("command", make_command_handler())
