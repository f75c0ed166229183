"""Unit tests for the client query cache."""

import pytest

from reppy.client.cache import QueryCache, stale_time_for


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return QueryCache(clock=clock)


@pytest.mark.unit
def test_stale_times_use_longest_prefix():
    assert stale_time_for(("friends", "u1")) == 15 * 60
    assert stale_time_for(("friendRequests", "pending", "u1")) == 5 * 60
    assert stale_time_for(("friendshipStatus", "u1", "u2")) == 10 * 60
    assert stale_time_for(("appLogs", "stats")) == 60
    assert stale_time_for(("appLogs", (), 1, 50)) == 30
    assert stale_time_for(("workouts", "u1")) == 0


@pytest.mark.unit
def test_fresh_data_is_not_refetched(cache, clock):
    calls = []
    fetch = lambda: calls.append(1) or ["a"]

    assert cache.fetch(("friends", "u1"), fetch) == ["a"]
    clock.now += 60
    assert cache.fetch(("friends", "u1"), fetch) == ["a"]
    assert len(calls) == 1

    clock.now += 15 * 60
    cache.fetch(("friends", "u1"), fetch)
    assert len(calls) == 2


@pytest.mark.unit
def test_invalidate_by_prefix(cache):
    cache.fetch(("friendRequests", "pending", "u1"), lambda: [1])
    cache.fetch(("friendRequests", "sent", "u1"), lambda: [2])
    cache.fetch(("friends", "u1"), lambda: [3])

    assert cache.invalidate(("friendRequests", "sent")) == 1
    assert cache.is_stale(("friendRequests", "sent", "u1"))
    assert not cache.is_stale(("friendRequests", "pending", "u1"))
    assert cache.invalidate("friendRequests") == 2
    assert not cache.is_stale(("friends", "u1"))


@pytest.mark.unit
def test_cancelled_fetch_does_not_overwrite(cache):
    key = ("favorite-exercises", "u1")
    cache.set_data(key, {"optimistic"})
    cache.invalidate(key)

    def slow_fetch():
        cache.cancel("favorite-exercises")
        return {"from-server"}

    assert cache.fetch(key, slow_fetch, stale_time=0) == {"from-server"}
    assert cache.get_data(key) == {"optimistic"}


@pytest.mark.unit
def test_set_data_with_updater(cache):
    cache.set_data(("profile", "u1"), {"name": "a"})
    cache.set_data(("profile", "u1"), lambda old: dict(old, name="b"))
    assert cache.get_data(("profile", "u1")) == {"name": "b"}


@pytest.mark.unit
def test_mutation_rolls_back_and_reraises(cache):
    key = ("favorite-exercises", "u1")
    cache.set_data(key, {"e1"})
    settled = []

    def on_mutate():
        context = cache.snapshot([key])
        cache.set_data(key, lambda old: old | {"e2"})
        return context

    def fail():
        assert cache.get_data(key) == {"e1", "e2"}
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        cache.mutate(
            fail,
            on_mutate=on_mutate,
            on_error=lambda e, context: cache.restore(context),
            on_settled=lambda: settled.append(True),
        )

    assert cache.get_data(key) == {"e1"}
    assert settled == [True]


@pytest.mark.unit
def test_successful_mutation_invalidates(cache):
    cache.fetch(("workouts", "u1"), lambda: [], stale_time=60)
    assert not cache.is_stale(("workouts", "u1"))

    assert cache.mutate(lambda: "ok", invalidate=["workouts"]) == "ok"
    assert cache.is_stale(("workouts", "u1"))


@pytest.mark.unit
def test_restore_removes_keys_that_did_not_exist(cache):
    context = cache.snapshot([("profile", "new")])
    cache.set_data(("profile", "new"), {"x": 1})
    cache.restore(context)
    assert cache.get_data(("profile", "new")) is None


@pytest.mark.unit
def test_clear_drops_everything(cache):
    cache.set_data(("friends", "u1"), [])
    cache.clear()
    assert cache.get_data(("friends", "u1")) is None
