"""Guest sessions: a local identity that can later be folded into an account."""
import logging
import uuid
from typing import Dict, Optional

from .offline import OfflineStore

logger = logging.getLogger(__name__)

GUEST_ID_PREFIX = "guest_"
GUEST_ID_KEY = "guest_user_id"
GUEST_REMINDER_DISMISSED_KEY = "guest_reminder_dismissed"
REMINDER_WORKOUT_THRESHOLD = 5


def is_guest_user_id(user_id: Optional[str]) -> bool:
    return isinstance(user_id, str) and user_id.startswith(GUEST_ID_PREFIX)


def get_guest_id(store: OfflineStore) -> Optional[str]:
    return store.get_meta(GUEST_ID_KEY)


def get_or_create_guest_id(store: OfflineStore) -> str:
    guest_id = get_guest_id(store)
    if guest_id is None:
        guest_id = f"{GUEST_ID_PREFIX}{uuid.uuid4()}"
        store.set_meta(GUEST_ID_KEY, guest_id)
        logger.info("Started guest session %s", guest_id)
    return guest_id


def is_guest_mode(store: OfflineStore) -> bool:
    return get_guest_id(store) is not None


def dismiss_reminder(store: OfflineStore) -> None:
    store.set_meta(GUEST_REMINDER_DISMISSED_KEY, "1")


def should_show_reminder(store: OfflineStore) -> bool:
    """True once a guest has logged enough workouts and not dismissed the prompt."""
    guest_id = get_guest_id(store)
    if guest_id is None or store.get_meta(GUEST_REMINDER_DISMISSED_KEY) == "1":
        return False
    return store.count_workouts(guest_id) >= REMINDER_WORKOUT_THRESHOLD


def clear_guest_flags(store: OfflineStore) -> None:
    store.delete_meta(GUEST_ID_KEY)
    store.delete_meta(GUEST_REMINDER_DISMISSED_KEY)


def migrate_guest_data(store: OfflineStore, queue, user_id: str) -> Dict[str, int]:
    """Hand the guest's local rows to ``user_id`` and queue them for upload.

    Custom exercises are queued before workouts and sets so the sync
    service can resolve their server ids first.
    """
    counts = {"exercises": 0, "workouts": 0, "sets": 0, "favorites": 0}
    guest_id = get_guest_id(store)
    if guest_id is None:
        return counts

    with store.transaction() as conn:
        exercises = [dict(r) for r in conn.execute(
            "SELECT * FROM exercises WHERE user_id = ? AND is_preset = 0", (guest_id,))]
        workout_ids = [r["id"] for r in conn.execute(
            "SELECT id FROM workouts WHERE user_id = ? ORDER BY date, created_at", (guest_id,))]
        favorites = [r["exercise_id"] for r in conn.execute(
            "SELECT exercise_id FROM favorite_exercises WHERE user_id = ?", (guest_id,))]
        conn.execute("UPDATE exercises SET user_id = ?, _synced = 0 WHERE user_id = ?", (user_id, guest_id))
        conn.execute("UPDATE workouts SET user_id = ?, _synced = 0 WHERE user_id = ?", (user_id, guest_id))
        conn.execute("DELETE FROM favorite_exercises WHERE user_id = ?", (guest_id,))

    for exercise in exercises:
        exercise["user_id"] = user_id
        queue.enqueue("exercises", "create", exercise["id"], _data(exercise))
        counts["exercises"] += 1

    for workout_id in workout_ids:
        workout = store.get("workouts", workout_id)
        queue.enqueue("workouts", "create", workout_id, _data(workout))
        counts["workouts"] += 1
        for set_row in store.sets_for_workout(workout_id):
            store.update("workout_sets", set_row["id"], {}, synced=False)
            queue.enqueue("workout_sets", "create", set_row["id"], _data(set_row))
            counts["sets"] += 1

    for exercise_id in favorites:
        store.set_favorite(user_id, exercise_id, True, synced=False)
        queue.enqueue("favorite_exercises", "create", exercise_id, {"exercise_id": exercise_id})
        counts["favorites"] += 1

    clear_guest_flags(store)
    logger.info("Migrated guest data to %s: %s", user_id, counts)
    return counts


def discard_guest_data(store: OfflineStore) -> None:
    """Remove everything the guest created locally."""
    guest_id = get_guest_id(store)
    if guest_id is not None:
        with store.transaction() as conn:
            conn.execute("""
                DELETE FROM workout_sets
                WHERE workout_id IN (SELECT id FROM workouts WHERE user_id = ?)
            """, (guest_id,))
            conn.execute("DELETE FROM workouts WHERE user_id = ?", (guest_id,))
            conn.execute("DELETE FROM exercises WHERE user_id = ? AND is_preset = 0", (guest_id,))
            conn.execute("DELETE FROM favorite_exercises WHERE user_id = ?", (guest_id,))
    clear_guest_flags(store)


def _data(row: dict) -> dict:
    return {k: v for k, v in row.items() if not k.startswith("_") and k not in ("exercise", "workout_sets")}
