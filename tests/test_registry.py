import threading

import pytest

from taskq.db import connect_db
from taskq.models import WORKER_ACTIVE, WORKER_BUSY
from taskq.registry import WORKER_PREFIX, WorkerRegistry


@pytest.fixture()
def registry(conn, clock):
    return WorkerRegistry(conn, ttl_seconds=300, clock=clock)


def test_register_and_list(registry):
    assert registry.register("w1")
    assert registry.register("w2", WORKER_BUSY)

    entries = {e.id: e.status for e in registry.list_active()}
    assert entries == {"w1": WORKER_ACTIVE, "w2": WORKER_BUSY}


def test_register_overwrites_status(registry):
    registry.register("w1", WORKER_BUSY)
    registry.register("w1", WORKER_ACTIVE)
    assert [(e.id, e.status) for e in registry.list_active()] == [("w1", WORKER_ACTIVE)]


def test_register_rejects_unknown_status(registry):
    with pytest.raises(ValueError):
        registry.register("w1", "sleeping")


def test_entries_expire_independently(registry, clock):
    registry.register("w1")
    clock.advance(100)
    registry.register("w2")
    clock.advance(250)

    assert [e.id for e in registry.list_active()] == ["w2"]

    clock.advance(100)
    assert registry.list_active() == []


def test_refresh_extends_ttl(registry, clock):
    registry.register("w1")
    clock.advance(299)
    registry.register("w1", WORKER_BUSY)
    clock.advance(299)
    assert [e.id for e in registry.list_active()] == ["w1"]


def test_deregister(registry):
    registry.register("w1")
    assert registry.deregister("w1") is True
    assert registry.deregister("w1") is False
    assert registry.list_active() == []


def test_corrupt_entry_is_skipped(registry, conn):
    registry.register("w1")
    registry.register("w2")
    with conn:
        conn.execute("UPDATE kv SET value='garbage' WHERE key=?", (WORKER_PREFIX + "w1",))

    assert [e.id for e in registry.list_active()] == ["w2"]


def test_workers_register_from_separate_threads(db_file, conn):
    barrier = threading.Barrier(2)
    results = {}

    def _register(worker_id):
        own = connect_db(db_file)
        try:
            barrier.wait(5)
            results[worker_id] = WorkerRegistry(own).register(worker_id)
        finally:
            own.close()

    threads = [threading.Thread(target=_register, args=(w,)) for w in ("w1", "w2")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert results == {"w1": True, "w2": True}
    assert sorted(e.id for e in WorkerRegistry(conn).list_active()) == ["w1", "w2"]
