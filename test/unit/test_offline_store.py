"""Unit tests for the local offline store, the sync queue and sync retries."""

import pytest

from reppy.client.offline import LOCAL_SCHEMA_VERSION, generate_offline_id, is_offline_id
from reppy.client.sync import SyncQueue, SyncResult, sync_with_retry


def _workout(workout_id, date="2024-05-01", user_id="u1"):
    return {"id": workout_id, "user_id": user_id, "date": date, "is_locked": False,
            "created_at": f"{date}T10:00:00Z", "updated_at": f"{date}T10:00:00Z"}


def _set(set_id, workout_id, exercise_id="e1", created_at="2024-05-01T10:00:00Z", **values):
    return dict(values, id=set_id, workout_id=workout_id, exercise_id=exercise_id, created_at=created_at)


@pytest.fixture
def queue(store):
    return SyncQueue(store)


@pytest.mark.unit
def test_store_is_migrated(store):
    assert store.version == LOCAL_SCHEMA_VERSION


@pytest.mark.unit
def test_offline_ids():
    offline_id = generate_offline_id()
    assert is_offline_id(offline_id)
    assert not is_offline_id("4f0e7c4e-0000-0000-0000-000000000000")
    assert not is_offline_id(None)


@pytest.mark.unit
def test_workouts_carry_sets_and_exercises(store):
    store.put("exercises", {"id": "e1", "name": "Bench Press", "type": "weighted", "is_preset": True})
    store.put("workouts", _workout("w1"))
    store.put("workout_sets", _set("s1", "w1", reps=5, weight=100), synced=False)

    [workout] = store.list_workouts("u1")
    assert workout["is_locked"] is False
    assert workout["workout_sets"][0]["exercise"]["name"] == "Bench Press"
    assert workout["workout_sets"][0]["_synced"] is False


@pytest.mark.unit
def test_recent_and_last_sets(store):
    store.put("workouts", _workout("w1", "2024-05-01"))
    store.put("workouts", _workout("w2", "2024-05-03"))
    store.put("workouts", _workout("w3", "2024-05-04", user_id="someone-else"))
    store.put("workout_sets", _set("s1", "w1", created_at="2024-05-01T10:00:00Z", reps=5, weight=90))
    store.put("workout_sets", _set("s2", "w2", created_at="2024-05-03T10:00:00Z", reps=5, weight=95))
    store.put("workout_sets", _set("s3", "w3", created_at="2024-05-04T10:00:00Z", reps=5, weight=200))

    recent = store.recent_sets_for_exercise("e1", "u1")
    assert [s["weight"] for s in recent] == [95, 90]
    assert recent[0]["date"] == "2024-05-03"
    assert store.last_set_for_exercise("e1", "u1")["weight"] == 95
    assert store.last_set_for_exercise("missing", "u1") is None


@pytest.mark.unit
def test_rekey_repoints_sets(store):
    offline_id = generate_offline_id()
    store.put("workouts", _workout(offline_id), synced=False)
    store.put("workout_sets", _set("s1", offline_id), synced=False)

    store.rekey("workouts", offline_id, "server-w1")

    assert store.get("workouts", offline_id) is None
    assert store.get("workouts", "server-w1")["_synced"] is True
    assert store.get("workout_sets", "s1")["workout_id"] == "server-w1"


@pytest.mark.unit
def test_deleting_workout_deletes_sets(store):
    store.put("workouts", _workout("w1"))
    store.put("workout_sets", _set("s1", "w1"))
    store.delete("workouts", "w1")
    assert store.get("workout_sets", "s1") is None


@pytest.mark.unit
def test_server_schema_change_clears_cache_but_keeps_queue(store, queue):
    assert store.check_server_schema(3) is False
    store.put("workouts", _workout("w1"))
    store.save_id_mapping("offline_x", "server_x", "workouts")
    store.set_last_sync_time("all")
    queue.enqueue("workouts", "create", "offline_y", {"date": "2024-05-01"})

    assert store.check_server_schema(3) is False
    assert store.get("workouts", "w1") is not None

    assert store.check_server_schema(4) is True
    assert store.get("workouts", "w1") is None
    assert store.get_id_mapping("offline_x") is None
    assert store.get_last_sync_time("all") is None
    assert queue.pending_count() == 1


@pytest.mark.unit
def test_clear_all(store, queue):
    store.put("workouts", _workout("w1"))
    store.set_meta("guest_user_id", "guest_1")
    queue.enqueue("workouts", "delete", "w1")

    store.clear_all()

    assert store.get("workouts", "w1") is None
    assert store.get_meta("guest_user_id") is None
    assert not queue.has_pending()


@pytest.mark.unit
def test_favorites(store):
    store.set_favorites("u1", ["e1", "e2"])
    store.set_favorite("u1", "e2", False)
    store.set_favorite("u1", "e3", True, synced=False)
    assert store.get_favorites("u1") == {"e1", "e3"}


@pytest.mark.unit
def test_profile_round_trip(store):
    store.put_profile({"user_id": "u1", "display_name": "A"}, synced=False)
    profile = store.get_profile("u1")
    assert profile["display_name"] == "A"
    assert profile["_synced"] is False
    assert store.get_profile("nobody") is None

    store.delete_profile("u1")
    assert store.get_profile("u1") is None


# ==================== Sync queue ====================


@pytest.mark.unit
def test_get_next_prefers_workout_creates(queue):
    queue.enqueue("exercises", "create", "offline_e")
    queue.enqueue("workouts", "update", "w1", {"notes": "x"})
    queue.enqueue("workouts", "create", "offline_w")

    assert queue.get_next()["entity_id"] == "offline_w"
    queue.mark_completed(queue.get_next()["id"])
    assert queue.get_next()["entity_id"] == "w1"
    queue.mark_completed(queue.get_next()["id"])
    assert queue.get_next()["entity_id"] == "offline_e"


@pytest.mark.unit
def test_mark_failed_and_remove_stale(queue):
    item_id = queue.enqueue("workout_sets", "create", "offline_s")
    for _ in range(5):
        queue.mark_failed(item_id, "nope")

    [item] = queue.get_by_entity("offline_s")
    assert item["retry_count"] == 5
    assert item["last_error"] == "nope"
    assert queue.remove_stale() == 1
    assert queue.pending_count() == 0


@pytest.mark.unit
def test_consolidate_create_then_delete_cancels(queue):
    queue.enqueue("workouts", "create", "offline_w", {"date": "2024-05-01"})
    queue.enqueue("workouts", "update", "offline_w", {"notes": "x"})
    queue.enqueue("workouts", "delete", "offline_w")

    queue.consolidate()

    assert queue.pending_count() == 0


@pytest.mark.unit
def test_consolidate_merges_into_create(queue):
    queue.enqueue("workouts", "create", "offline_w", {"date": "2024-05-01", "notes": None})
    queue.enqueue("workouts", "update", "offline_w", {"notes": "heavy day"})
    queue.enqueue("workouts", "update", "w2", {"notes": "a"})

    queue.consolidate()

    [item] = queue.get_by_entity("offline_w")
    assert item["operation"] == "create"
    assert item["data"] == {"date": "2024-05-01", "notes": "heavy day"}
    assert len(queue.get_by_table("workouts")) == 2


@pytest.mark.unit
def test_consolidate_keeps_last_operation(queue):
    queue.enqueue("workout_sets", "update", "s1", {"reps": 5})
    queue.enqueue("workout_sets", "delete", "s1")

    queue.consolidate()

    [item] = queue.get_all()
    assert item["operation"] == "delete"
    assert item["data"] == {"reps": 5}


class _FlakyService:
    def __init__(self, results):
        self.results = list(results)
        self.calls = 0

    def sync(self):
        self.calls += 1
        return self.results.pop(0)


@pytest.mark.unit
def test_sync_with_retry_backs_off():
    service = _FlakyService([SyncResult(success=False, failed=1)] * 3)
    delays = []

    result = sync_with_retry(service, sleep=delays.append)
    assert result.failed == 1
    assert service.calls == 3
    assert delays == [1, 5]


@pytest.mark.unit
def test_sync_with_retry_stops_on_success():
    service = _FlakyService([SyncResult(success=False, failed=2), SyncResult(synced=2)])
    delays = []

    assert sync_with_retry(service, sleep=delays.append).synced == 2
    assert service.calls == 2
    assert delays == [1]
