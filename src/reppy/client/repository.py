"""
Offline-first data access.

Reads come from the local store, refreshed from the server when it can be
reached. Writes land in the local store first, then go straight to the
server; if the server is unreachable they are queued for the sync service.
Guest sessions never talk to the server and never queue.
"""
import calendar
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

from reppy.limits import LIMITS, LimitExceeded, check_set_counts, validate_notes, validate_set_values
from .errors import ApiError, ConflictError, OfflineError
from .guest import is_guest_user_id
from .offline import OfflineStore, generate_offline_id, is_offline_id
from .sync import SyncQueue

logger = logging.getLogger(__name__)

HYDRATE_DAYS = 90
SET_FIELDS = ("set_number", "reps", "weight", "distance_km", "duration_minutes", "plank_seconds")

OFFLINE = object()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def month_range(month: str):
    year, mon = (int(part) for part in month.split("-"))
    first = date(year, mon, 1)
    last = first.replace(day=calendar.monthrange(year, mon)[1])
    return first.isoformat(), last.isoformat()


class OfflineRepository:
    """Local-first view of one user's workouts, exercises, profile and favorites."""

    def __init__(self, store: OfflineStore, client, queue: Optional[SyncQueue] = None,
                 user_id: Optional[str] = None):
        self.store = store
        self.client = client
        self.queue = queue or SyncQueue(store)
        self._user_id = user_id
        self.online = True

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id or self.client.user_id

    def set_user(self, user_id: Optional[str]) -> None:
        self._user_id = user_id

    @property
    def is_guest(self) -> bool:
        return is_guest_user_id(self.user_id)

    def set_online(self, online: bool) -> None:
        self.online = online

    # ==================== Server access ====================

    def _remote(self, fn: Callable[[], Any]) -> Any:
        """Call the server, or return ``OFFLINE`` when it cannot be reached."""
        if self.is_guest or not self.client.is_authenticated or not self.online:
            return OFFLINE
        try:
            return fn()
        except OfflineError as e:
            logger.info("Server unreachable, continuing offline: %s", e)
            self.online = False
            return OFFLINE

    def _enqueue(self, table: str, operation: str, entity_id: str, data: Optional[dict] = None) -> None:
        if not self.is_guest:
            self.queue.enqueue(table, operation, entity_id, data)

    def _forget(self, entity_id: str) -> None:
        """Drop queued work for an entity the server never saw."""
        self.queue.remove_by_entity(entity_id)

    def _restore(self, table: str, row: Optional[dict]) -> None:
        """Put back a row as it was before a write the server rejected."""
        if row is not None:
            self.store.put(table, row, synced=row["_synced"])

    def _ensure_unlocked(self, workout_id: str) -> None:
        workout = self.store.get("workouts", workout_id)
        if workout and workout["is_locked"]:
            raise ConflictError(409, "Workout is locked")

    def check_server_schema(self) -> bool:
        """Compare the server schema version with the cached one.

        Returns True if the local cache was cleared.
        """
        if not self.online:
            return False
        try:
            status = self.client.status()
        except OfflineError:
            self.online = False
            return False
        return self.store.check_server_schema(status["schemaVersion"])

    def needs_hydration(self) -> bool:
        return self.store.get_last_sync_time("hydrate") is None

    def hydrate(self, days: int = HYDRATE_DAYS, today: Optional[date] = None) -> bool:
        """Pull exercises, recent workouts, the profile and favorites into the store."""
        since = ((today or date.today()) - timedelta(days=days)).isoformat()
        fetched = self._remote(lambda: (
            self.client.exercises(),
            self.client.workouts(since=since),
            self.client.get_profile(),
            self.client.favorites(),
        ))
        if fetched is OFFLINE:
            return False

        exercises, workouts, profile, favorites = fetched
        self._store_exercises(exercises)
        self._store_workouts(workouts, since, None)
        self.store.put_profile(profile, synced=True)
        self.store.set_favorites(self.user_id, favorites)
        self.store.set_last_sync_time("hydrate")
        logger.info("Hydrated %d exercises and %d workouts since %s", len(exercises), len(workouts), since)
        return True

    # ==================== Local cache upkeep ====================

    def _store_exercises(self, exercises: List[dict]) -> None:
        for exercise in exercises:
            local = self.store.get("exercises", exercise["id"])
            if local is None or local["_synced"]:
                self.store.put("exercises", exercise, synced=True)

    def _store_workout(self, workout: dict) -> None:
        local = self.store.get("workouts", workout["id"])
        if local is not None and not local["_synced"]:
            return
        self.store.put("workouts", workout, synced=True)

        server_sets = workout.get("workout_sets") or []
        server_ids = {s["id"] for s in server_sets}
        for local_set in self.store.sets_for_workout(workout["id"]):
            if local_set["_synced"] and local_set["id"] not in server_ids:
                self.store.delete("workout_sets", local_set["id"])
        for set_row in server_sets:
            cached = self.store.get("workout_sets", set_row["id"])
            if cached is None or cached["_synced"]:
                self.store.put("workout_sets", set_row, synced=True)

    def _store_workouts(self, workouts: List[dict], start: Optional[str], end: Optional[str]) -> None:
        server_ids = {w["id"] for w in workouts}
        for local in self.store.list_workouts(self.user_id, start, end, with_sets=False):
            if local["_synced"] and local["id"] not in server_ids:
                self.store.delete("workouts", local["id"])
        for workout in workouts:
            self._store_workout(workout)

    def _workout_with_sets(self, workout_id: str) -> Optional[dict]:
        workout = self.store.get("workouts", workout_id)
        if workout is not None:
            workout["workout_sets"] = self.store.sets_for_workout(workout_id)
        return workout

    # ==================== Workouts ====================

    def get_workouts(self, month: Optional[str] = None) -> List[dict]:
        start, end = month_range(month) if month else (None, None)
        fetched = self._remote(lambda: self.client.workouts(month=month))
        if fetched is not OFFLINE:
            self._store_workouts(fetched, start, end)
        return self.store.list_workouts(self.user_id, start, end)

    def get_workout(self, workout_id: str) -> Optional[dict]:
        if not is_offline_id(workout_id):
            fetched = self._remote(lambda: self.client.get_workout(workout_id))
            if fetched is not OFFLINE:
                self._store_workout(fetched)
        return self._workout_with_sets(workout_id)

    def create_workout(self, date: Optional[str] = None, notes: Optional[str] = None,
                       photo_url: Optional[str] = None) -> dict:
        validate_notes(notes)
        workout_date = date or datetime.now().date().isoformat()
        same_day = self.store.list_workouts(self.user_id, workout_date, workout_date, with_sets=False)
        if len(same_day) >= LIMITS["MAX_WORKOUTS_PER_DAY"]:
            raise LimitExceeded(f"Maximum {LIMITS['MAX_WORKOUTS_PER_DAY']} workouts per day")

        now = _now()
        row = {
            "id": generate_offline_id(),
            "user_id": self.user_id,
            "date": workout_date,
            "notes": notes,
            "photo_url": photo_url,
            "is_locked": False,
            "created_at": now,
            "updated_at": now,
        }
        self.store.put("workouts", row, synced=False)

        try:
            created = self._remote(lambda: self.client.create_workout(workout_date, notes, photo_url))
        except ApiError:
            self.store.delete("workouts", row["id"])
            raise
        if created is OFFLINE:
            self._enqueue("workouts", "create", row["id"], row)
            return self._workout_with_sets(row["id"])

        self.store.rekey("workouts", row["id"], created["id"])
        self.store.put("workouts", created, synced=True)
        return self._workout_with_sets(created["id"])

    def update_workout(self, workout_id: str, **changes) -> Optional[dict]:
        if "notes" in changes:
            validate_notes(changes["notes"])
        local = self.store.get("workouts", workout_id)
        content = {k: v for k, v in changes.items() if k != "is_locked"}
        if local and local["is_locked"] and content and changes.get("is_locked") is not False:
            raise ConflictError(409, "Workout is locked")

        changes["updated_at"] = _now()
        self.store.update("workouts", workout_id, changes, synced=False)
        changes.pop("updated_at")

        if is_offline_id(workout_id):
            self._enqueue("workouts", "update", workout_id, changes)
        else:
            try:
                updated = self._remote(lambda: self.client.update_workout(workout_id, **changes))
            except ApiError:
                self._restore("workouts", local)
                raise
            if updated is OFFLINE:
                self._enqueue("workouts", "update", workout_id, changes)
            else:
                self.store.put("workouts", updated, synced=True)
        return self._workout_with_sets(workout_id)

    def delete_workout(self, workout_id: str) -> None:
        self._ensure_unlocked(workout_id)
        for set_row in self.store.sets_for_workout(workout_id):
            if is_offline_id(set_row["id"]):
                self._forget(set_row["id"])

        if is_offline_id(workout_id):
            self._forget(workout_id)
        elif self._remote(lambda: self.client.delete_workout(workout_id)) is OFFLINE:
            self._enqueue("workouts", "delete", workout_id)
        self.store.delete("workouts", workout_id)

    # ==================== Sets ====================

    def add_set(self, workout_id: str, exercise_id: str, **values) -> dict:
        validate_set_values(values)
        self._ensure_unlocked(workout_id)

        sets = self.store.sets_for_workout(workout_id)
        for_exercise = sum(1 for s in sets if s["exercise_id"] == exercise_id)
        check_set_counts(len(sets), len({s["exercise_id"] for s in sets}), for_exercise)

        row = {k: values.get(k) for k in SET_FIELDS}
        row.update({
            "id": generate_offline_id(),
            "workout_id": workout_id,
            "exercise_id": exercise_id,
            "set_number": values.get("set_number") or for_exercise + 1,
            "created_at": _now(),
        })
        self.store.put("workout_sets", row, synced=False)

        if is_offline_id(workout_id) or is_offline_id(exercise_id):
            self._enqueue("workout_sets", "create", row["id"], row)
            return self.store.get("workout_sets", row["id"])

        payload = {k: row[k] for k in SET_FIELDS if row[k] is not None}
        try:
            created = self._remote(lambda: self.client.add_set(workout_id, exercise_id, **payload))
        except ApiError:
            self.store.delete("workout_sets", row["id"])
            raise
        if created is OFFLINE:
            self._enqueue("workout_sets", "create", row["id"], row)
            return self.store.get("workout_sets", row["id"])

        self.store.rekey("workout_sets", row["id"], created["id"])
        return self.store.put("workout_sets", created, synced=True)

    def update_set(self, set_id: str, **values) -> Optional[dict]:
        validate_set_values(values)
        local = self.store.get("workout_sets", set_id)
        if local:
            self._ensure_unlocked(local["workout_id"])
        self.store.update("workout_sets", set_id, values, synced=False)
        if is_offline_id(set_id):
            self._enqueue("workout_sets", "update", set_id, values)
        else:
            try:
                updated = self._remote(lambda: self.client.update_set(set_id, **values))
            except ApiError:
                self._restore("workout_sets", local)
                raise
            if updated is OFFLINE:
                self._enqueue("workout_sets", "update", set_id, values)
            else:
                self.store.put("workout_sets", updated, synced=True)
        return self.store.get("workout_sets", set_id)

    def delete_set(self, set_id: str) -> None:
        local = self.store.get("workout_sets", set_id)
        if local:
            self._ensure_unlocked(local["workout_id"])
        if is_offline_id(set_id):
            self._forget(set_id)
        elif self._remote(lambda: self.client.delete_set(set_id)) is OFFLINE:
            self._enqueue("workout_sets", "delete", set_id)
        self.store.delete("workout_sets", set_id)

    def last_set(self, exercise_id: str) -> Optional[dict]:
        return self.store.last_set_for_exercise(exercise_id, self.user_id)

    def recent_sets(self, exercise_id: str, limit: int = 3) -> List[dict]:
        return self.store.recent_sets_for_exercise(exercise_id, self.user_id, limit)

    # ==================== Exercises ====================

    def get_exercises(self) -> List[dict]:
        fetched = self._remote(self.client.exercises)
        if fetched is not OFFLINE:
            self._store_exercises(fetched)
        return self.store.list_exercises(self.user_id)

    def create_exercise(self, name: str, type: str = "weighted", image_url: Optional[str] = None) -> dict:
        row = {
            "id": generate_offline_id(),
            "name": name,
            "type": type,
            "is_preset": False,
            "image_url": image_url,
            "user_id": self.user_id,
            "created_at": _now(),
        }
        self.store.put("exercises", row, synced=False)

        try:
            created = self._remote(lambda: self.client.create_exercise(name, type, image_url))
        except ApiError:
            self.store.delete("exercises", row["id"])
            raise
        if created is OFFLINE:
            self._enqueue("exercises", "create", row["id"], row)
            return self.store.get("exercises", row["id"])

        self.store.rekey("exercises", row["id"], created["id"])
        return self.store.put("exercises", created, synced=True)

    def delete_exercise(self, exercise_id: str) -> None:
        exercise = self.store.get("exercises", exercise_id)
        if exercise and exercise["is_preset"]:
            raise ApiError(403, "Preset exercises cannot be deleted")

        if is_offline_id(exercise_id):
            self._forget(exercise_id)
        elif self._remote(lambda: self.client.delete_exercise(exercise_id)) is OFFLINE:
            self._enqueue("exercises", "delete", exercise_id)

        with self.store.transaction() as conn:
            conn.execute("DELETE FROM workout_sets WHERE exercise_id = ?", (exercise_id,))
            conn.execute("DELETE FROM favorite_exercises WHERE exercise_id = ?", (exercise_id,))
            conn.execute("DELETE FROM exercises WHERE id = ?", (exercise_id,))

    # ==================== Favorites ====================

    def get_favorites(self) -> set:
        fetched = self._remote(self.client.favorites)
        if fetched is not OFFLINE and not self.queue.get_by_table("favorite_exercises"):
            self.store.set_favorites(self.user_id, fetched)
        return self.store.get_favorites(self.user_id)

    def toggle_favorite(self, exercise_id: str) -> bool:
        """Flip the favorite flag of an exercise. Returns the new state."""
        was_favorite = exercise_id in self.store.get_favorites(self.user_id)
        self.store.set_favorite(self.user_id, exercise_id, not was_favorite, synced=False)
        operation = "delete" if was_favorite else "create"

        if is_offline_id(exercise_id):
            self._enqueue("favorite_exercises", operation, exercise_id, {"exercise_id": exercise_id})
            return not was_favorite

        try:
            result = self._remote(lambda: self.client.toggle_favorite(exercise_id, was_favorite))
        except ApiError:
            self.store.set_favorite(self.user_id, exercise_id, was_favorite)
            raise
        if result is OFFLINE:
            self._enqueue("favorite_exercises", operation, exercise_id, {"exercise_id": exercise_id})
        else:
            self.store.set_favorite(self.user_id, exercise_id, not was_favorite, synced=True)
        return not was_favorite

    # ==================== Profile ====================

    def get_profile(self) -> Optional[dict]:
        fetched = self._remote(self.client.get_profile)
        if fetched is not OFFLINE:
            local = self.store.get_profile(self.user_id)
            if local is None or local["_synced"]:
                self.store.put_profile(fetched, synced=True)
        return self.store.get_profile(self.user_id)

    def update_profile(self, **changes) -> dict:
        previous = self.store.get_profile(self.user_id)
        profile = dict(previous or {"user_id": self.user_id})
        profile.pop("_synced", None)
        profile.update(changes)
        self.store.put_profile(profile, synced=False)

        try:
            updated = self._remote(lambda: self.client.update_profile(**changes))
        except ApiError:
            if previous is None:
                self.store.delete_profile(self.user_id)
            else:
                synced = previous.pop("_synced")
                self.store.put_profile(previous, synced=synced)
            raise
        if updated is OFFLINE:
            self._enqueue("profiles", "update", self.user_id, changes)
        else:
            self.store.put_profile(updated, synced=True)
        return self.store.get_profile(self.user_id)
