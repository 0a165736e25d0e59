import threading

from conftest import FakeConnection

from chatrelay.registry import Registry


def test_register_if_absent_rejects_duplicate_name() -> None:
    reg = Registry()
    first = FakeConnection("alice")
    second = FakeConnection("alice")

    assert reg.register_if_absent("alice", first)
    assert not reg.register_if_absent("alice", second)
    assert reg.lookup("alice") is first
    assert len(reg) == 1


def test_concurrent_registration_has_single_winner() -> None:
    reg = Registry()
    n = 32
    barrier = threading.Barrier(n)
    results: list[bool] = []
    results_lock = threading.Lock()

    def attempt() -> None:
        conn = FakeConnection()
        barrier.wait()
        ok = reg.register_if_absent("alice", conn)
        with results_lock:
            results.append(ok)

    threads = [threading.Thread(target=attempt) for _ in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5.0)

    assert len(results) == n
    assert results.count(True) == 1
    assert results.count(False) == n - 1


def test_unregister_requires_owner() -> None:
    reg = Registry()
    s1 = FakeConnection("a")
    s2 = FakeConnection("a")

    assert reg.register_if_absent("a", s1)
    assert reg.unregister_if_owner("a", s1)
    assert reg.register_if_absent("a", s2)

    # A delayed cleanup from the first session must not evict the second.
    assert not reg.unregister_if_owner("a", s1)
    assert reg.lookup("a") is s2


def test_unregister_unknown_name_is_noop() -> None:
    reg = Registry()
    assert not reg.unregister_if_owner("ghost", FakeConnection())


def test_lookup_missing_returns_none() -> None:
    assert Registry().lookup("nobody") is None


def test_snapshot_is_point_in_time() -> None:
    reg = Registry()
    reg.register_if_absent("a", FakeConnection("a"))
    snap = reg.snapshot()
    reg.register_if_absent("b", FakeConnection("b"))

    assert snap == frozenset({"a"})
    assert reg.snapshot() == frozenset({"a", "b"})


def test_for_each_except_skips_named_user() -> None:
    reg = Registry()
    conns = {name: FakeConnection(name) for name in ("a", "b", "c")}
    for name, conn in conns.items():
        reg.register_if_absent(name, conn)

    seen: list[str] = []
    count = reg.for_each_except("a", lambda c: seen.append(c.username))

    assert count == 2
    assert sorted(seen) == ["b", "c"]


def test_for_each_except_none_visits_everyone() -> None:
    reg = Registry()
    for name in ("a", "b"):
        reg.register_if_absent(name, FakeConnection(name))

    seen: list[str] = []
    reg.for_each_except(None, lambda c: seen.append(c.username))
    assert sorted(seen) == ["a", "b"]


def test_for_each_except_runs_callback_without_lock() -> None:
    reg = Registry()
    reg.register_if_absent("a", FakeConnection("a"))
    reg.register_if_absent("b", FakeConnection("b"))

    # The callback re-enters the registry; this would deadlock if the lock
    # were held during fan-out.
    reg.for_each_except("a", lambda c: reg.unregister_if_owner(c.username, c))
    assert reg.snapshot() == frozenset({"a"})
