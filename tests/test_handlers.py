import shlex
import sys

import pytest

from taskq.errors import ExecutionError
from taskq.handlers import HandlerRegistry, generic_handler, make_command_handler

PY = shlex.quote(sys.executable)


def test_generic_handler_echoes_payload():
    assert generic_handler({"a": 1}) == "Generic task processed with payload: {'a': 1}"


def test_registry_falls_back_to_generic():
    registry = HandlerRegistry()
    assert registry.resolve("anything") is generic_handler
    assert registry.types() == []


def test_registry_decorator():
    registry = HandlerRegistry()

    @registry.register("double")
    def _double(payload):
        return payload["n"] * 2

    assert registry.resolve("double")({"n": 2}) == 4
    assert registry.types() == ["double"]


def test_command_handler_returns_stdout():
    handler = make_command_handler(timeout=10)
    assert handler({"command": f'{PY} -c "print(42)"'}) == "42"


def test_command_handler_nonzero_exit_raises():
    handler = make_command_handler(timeout=10)
    with pytest.raises(ExecutionError, match="exit_code=3"):
        handler({"command": f'{PY} -c "import sys; sys.exit(3)"'})


def test_command_handler_requires_command():
    with pytest.raises(ExecutionError):
        make_command_handler()({})


def test_command_handler_missing_binary():
    with pytest.raises(ExecutionError, match="not found"):
        make_command_handler()({"command": "definitely-not-a-real-binary-xyz"})


def test_command_handler_timeout():
    handler = make_command_handler(timeout=1)
    with pytest.raises(ExecutionError, match="timed out"):
        handler({"command": f'{PY} -c "import time; time.sleep(5)"'})
