"""
Sync queue and sync service.

Offline writes are queued per entity and replayed against the server in
dependency order: workouts before sets, offline ids swapped for server ids.
"""
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .errors import ApiError, ConflictError, OfflineError
from .offline import OfflineStore, is_offline_id

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAYS = [1, 5, 15]  # seconds

LOCAL_FIELDS = {"_synced", "_last_modified", "_offline_id", "workout_sets", "exercise"}


class SyncItemError(Exception):
    """A queued item could not be applied to the server."""


@dataclass
class SyncResult:
    success: bool = True
    synced: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def _item(row) -> dict:
    item = dict(row)
    item["table"] = item.pop("table_name")
    item["data"] = json.loads(item["data"])
    return item


class SyncQueue:
    """Pending offline operations, stored in the offline store."""

    def __init__(self, store: OfflineStore):
        self.store = store

    def enqueue(self, table: str, operation: str, entity_id: str, data: Optional[dict] = None) -> int:
        with self.store.transaction() as conn:
            cursor = conn.execute("""
                INSERT INTO sync_queue (table_name, operation, entity_id, data, created_at, retry_count)
                VALUES (?, ?, ?, ?, ?, 0)
            """, (table, operation, entity_id, json.dumps(data or {}), time.time()))
            return cursor.lastrowid

    def get_all(self) -> List[dict]:
        with self.store.transaction() as conn:
            rows = conn.execute("SELECT * FROM sync_queue ORDER BY created_at, id").fetchall()
        return [_item(row) for row in rows]

    def get_next(self) -> Optional[dict]:
        """Oldest workout create, else oldest workout operation, else oldest item."""
        items = self.get_all()
        for item in items:
            if item["table"] == "workouts" and item["operation"] == "create":
                return item
        for item in items:
            if item["table"] == "workouts":
                return item
        return items[0] if items else None

    def get_by_table(self, table: str) -> List[dict]:
        return [item for item in self.get_all() if item["table"] == table]

    def get_by_entity(self, entity_id: str) -> List[dict]:
        return [item for item in self.get_all() if item["entity_id"] == entity_id]

    def mark_completed(self, item_id: int) -> None:
        with self.store.transaction() as conn:
            conn.execute("DELETE FROM sync_queue WHERE id = ?", (item_id,))

    def mark_failed(self, item_id: int, error: str) -> None:
        with self.store.transaction() as conn:
            conn.execute("""
                UPDATE sync_queue SET retry_count = retry_count + 1, last_error = ?
                WHERE id = ?
            """, (error, item_id))

    def pending_count(self) -> int:
        with self.store.transaction() as conn:
            return conn.execute("SELECT COUNT(*) FROM sync_queue").fetchone()[0]

    def has_pending(self) -> bool:
        return self.pending_count() > 0

    def remove_by_entity(self, entity_id: str) -> None:
        with self.store.transaction() as conn:
            conn.execute("DELETE FROM sync_queue WHERE entity_id = ?", (entity_id,))

    def remove_stale(self, max_retries: int = 5) -> int:
        with self.store.transaction() as conn:
            cursor = conn.execute("DELETE FROM sync_queue WHERE retry_count >= ?", (max_retries,))
            return cursor.rowcount

    def clear(self) -> None:
        with self.store.transaction() as conn:
            conn.execute("DELETE FROM sync_queue")

    def consolidate(self) -> None:
        """Collapse several operations on one entity into one.

        A create later deleted cancels out entirely. Otherwise the last item
        survives with the merged data, as a create if the first one was.
        """
        groups: Dict[tuple, List[dict]] = {}
        for item in self.get_all():
            groups.setdefault((item["table"], item["entity_id"]), []).append(item)

        with self.store.transaction() as conn:
            for items in groups.values():
                if len(items) <= 1:
                    continue
                first, last = items[0], items[-1]
                if first["operation"] == "create" and last["operation"] == "delete":
                    conn.executemany("DELETE FROM sync_queue WHERE id = ?", [(i["id"],) for i in items])
                    continue

                merged: Dict[str, Any] = {}
                for item in items:
                    merged.update(item["data"])
                operation = "create" if first["operation"] == "create" else last["operation"]
                conn.executemany("DELETE FROM sync_queue WHERE id = ?", [(i["id"],) for i in items[:-1]])
                conn.execute(
                    "UPDATE sync_queue SET operation = ?, data = ? WHERE id = ?",
                    (operation, json.dumps(merged), last["id"]),
                )


class SyncService:
    """Replays the sync queue through a ``ReppyClient``."""

    def __init__(self, store: OfflineStore, client, queue: Optional[SyncQueue] = None):
        self.store = store
        self.client = client
        self.queue = queue or SyncQueue(store)
        self._lock = threading.Lock()
        self._mappings: Dict[str, str] = {}
        self._mappings_loaded = False

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    # ==================== Id mappings ====================

    def _load_mappings(self):
        if not self._mappings_loaded:
            self._mappings.update(self.store.load_id_mappings())
            self._mappings_loaded = True

    def _save_mapping(self, offline_id: str, server_id: str, table: str):
        self._mappings[offline_id] = server_id
        self.store.save_id_mapping(offline_id, server_id, table)

    def server_id(self, offline_id: str) -> Optional[str]:
        if offline_id in self._mappings:
            return self._mappings[offline_id]
        server_id = self.store.get_id_mapping(offline_id)
        if server_id:
            self._mappings[offline_id] = server_id
        return server_id

    def clear_mappings(self) -> None:
        self._mappings.clear()
        self._mappings_loaded = False
        self.store.clear_id_mappings()

    def _replace_offline_ids(self, data: dict) -> dict:
        result = {}
        for key, value in data.items():
            if key in LOCAL_FIELDS:
                continue
            if is_offline_id(value):
                value = self.server_id(value) or value
            result[key] = value
        return result

    # ==================== Run ====================

    def sync(self) -> SyncResult:
        if not self._lock.acquire(blocking=False):
            return SyncResult(success=False, errors=["Sync already in progress"])

        result = SyncResult()
        try:
            self._load_mappings()
            self.queue.consolidate()

            item = self.queue.get_next()
            while item:
                try:
                    self._sync_item(item)
                except (ApiError, SyncItemError) as e:
                    self.queue.mark_failed(item["id"], str(e))
                    if item["retry_count"] >= MAX_RETRIES - 1:
                        result.failed += 1
                        result.errors.append(f"Failed to sync {item['table']} {item['operation']}: {e}")
                        logger.warning("Dropping %s %s %s: %s",
                                       item["table"], item["operation"], item["entity_id"], e)
                        self.queue.mark_completed(item["id"])
                else:
                    self.queue.mark_completed(item["id"])
                    result.synced += 1
                item = self.queue.get_next()

            self.store.set_last_sync_time("all")
            result.success = result.failed == 0
        except OfflineError as e:
            result.success = False
            result.errors.append(f"Offline: {e}")
        finally:
            self._lock.release()
        return result

    def _sync_item(self, item: dict) -> None:
        handler = {
            "workouts": self._sync_workout,
            "workout_sets": self._sync_set,
            "exercises": self._sync_exercise,
            "profiles": self._sync_profile,
            "favorite_exercises": self._sync_favorite,
        }.get(item["table"])
        if handler is None:
            raise SyncItemError(f"Unknown table: {item['table']}")
        handler(item["operation"], item["entity_id"], self._replace_offline_ids(item["data"]))

    def _real_id(self, entity_id: str) -> str:
        return self.server_id(entity_id) or entity_id

    def _sync_workout(self, operation, entity_id, data):
        if operation == "create":
            created = self.client.create_workout(
                date=data.get("date"), notes=data.get("notes"), photo_url=data.get("photo_url")
            )
            self._save_mapping(entity_id, created["id"], "workouts")
            self.store.rekey("workouts", entity_id, created["id"])
            if data.get("is_locked"):
                self.client.update_workout(created["id"], is_locked=True)
        elif operation == "update":
            real_id = self._real_id(entity_id)
            changes = {k: v for k, v in data.items() if k in ("notes", "photo_url", "is_locked")}
            self.client.update_workout(real_id, **changes)
            self.store.update("workouts", real_id, {}, synced=True)
        elif operation == "delete":
            real_id = self._real_id(entity_id)
            self.client.delete_workout(real_id)
            self.store.delete("workouts", real_id)
        else:
            raise SyncItemError(f"Unknown operation: {operation}")

    def _sync_set(self, operation, entity_id, data):
        if is_offline_id(data.get("workout_id")):
            raise SyncItemError("Waiting for workout to sync first")
        if is_offline_id(data.get("exercise_id")):
            raise SyncItemError("Waiting for exercise to sync first")

        values = {k: data.get(k) for k in
                  ("set_number", "reps", "weight", "distance_km", "duration_minutes", "plank_seconds")
                  if data.get(k) is not None}
        if operation == "create":
            created = self.client.add_set(data["workout_id"], data["exercise_id"], **values)
            self._save_mapping(entity_id, created["id"], "workout_sets")
            self.store.rekey("workout_sets", entity_id, created["id"])
        elif operation == "update":
            real_id = self._real_id(entity_id)
            self.client.update_set(real_id, **values)
            self.store.update("workout_sets", real_id, {}, synced=True)
        elif operation == "delete":
            real_id = self._real_id(entity_id)
            self.client.delete_set(real_id)
            self.store.delete("workout_sets", real_id)
        else:
            raise SyncItemError(f"Unknown operation: {operation}")

    def _sync_exercise(self, operation, entity_id, data):
        if operation == "create":
            created = self.client.create_exercise(
                data["name"], data.get("type") or "weighted", data.get("image_url")
            )
            self._save_mapping(entity_id, created["id"], "exercises")
            self.store.rekey("exercises", entity_id, created["id"])
        elif operation == "delete":
            real_id = self._real_id(entity_id)
            self.client.delete_exercise(real_id)
            self.store.delete("exercises", real_id)
        else:
            raise SyncItemError(f"Unknown operation: {operation}")

    def _sync_profile(self, operation, entity_id, data):
        if operation != "update":
            raise SyncItemError(f"Unknown operation: {operation}")
        changes = {k: v for k, v in data.items() if k not in ("id", "user_id", "created_at", "is_admin")}
        profile = self.client.update_profile(**changes)
        self.store.put_profile(profile, synced=True)

    def _sync_favorite(self, operation, entity_id, data):
        exercise_id = self._real_id(data.get("exercise_id") or entity_id)
        if operation == "create":
            try:
                self.client.add_favorite(exercise_id)
            except ConflictError:
                pass
        elif operation == "delete":
            self.client.remove_favorite(exercise_id)
        else:
            raise SyncItemError(f"Unknown operation: {operation}")


def sync_with_retry(service: SyncService, max_retries: int = MAX_RETRIES,
                    sleep: Callable[[float], None] = time.sleep) -> SyncResult:
    """Run ``service.sync`` until it succeeds or nothing failed, backing off between runs."""
    result = SyncResult(success=False)
    for attempt in range(max_retries):
        result = service.sync()
        if result.success or result.failed == 0:
            return result
        if attempt < max_retries - 1:
            delay = RETRY_DELAYS[attempt] if attempt < len(RETRY_DELAYS) else RETRY_DELAYS[-1]
            logger.info("Sync had %d failures, retrying in %ss", result.failed, delay)
            sleep(delay)
    return result
