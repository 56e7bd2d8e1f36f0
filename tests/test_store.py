import pytest

from taskq.store import KeyValueStore


@pytest.fixture()
def kv(conn, clock):
    return KeyValueStore(conn, clock=clock)


def test_entry_expires_after_ttl(kv, clock):
    kv.put("k", "v", ttl_seconds=10)
    clock.advance(9)
    assert kv.get("k") == "v"
    clock.advance(1)
    assert kv.get("k") is None


def test_zero_ttl_is_not_permanent(kv, clock):
    kv.put("k", "v", ttl_seconds=0)
    assert kv.get("k") is None
    assert kv.keys_with_prefix("k") == []


def test_no_ttl_never_expires(kv, clock):
    kv.put("k", "v")
    clock.advance(10 ** 9)
    assert kv.get("k") == "v"


def test_prefix_scan_treats_wildcards_literally(kv):
    kv.put("a_b:1", "x")
    kv.put("axb:2", "y")
    kv.put("a%b:3", "z")
    assert kv.keys_with_prefix("a_b:") == ["a_b:1"]
    assert kv.keys_with_prefix("a%b:") == ["a%b:3"]


def test_id_index_is_newest_first(kv):
    for item in ("a", "b", "c"):
        kv.append_id(item)
    kv.append_id("a")

    assert kv.list_ids() == ["c", "b", "a"]
    assert kv.remove_id("b") is True
    assert kv.remove_id("b") is False
    assert kv.list_ids() == ["c", "a"]


def test_purge_drops_expired_entries_and_orphan_ids(kv, clock):
    kv.put("task:old", "{}", ttl_seconds=5)
    kv.append_id("old")
    kv.put("task:new", "{}", ttl_seconds=50)
    kv.append_id("new")
    clock.advance(10)

    assert kv.purge_expired("task:") == 1
    assert kv.list_ids() == ["new"]
