"""
Local persistent store for offline use.

A SQLite file holding cached server rows, rows created offline, the sync
queue, key/value metadata and offline-to-server id mappings. The local
layout is versioned with ``PRAGMA user_version``.
"""
import json
import logging
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

OFFLINE_ID_PREFIX = "offline_"
LOCAL_SCHEMA_VERSION = 2

# table -> data columns (besides _synced and _last_modified)
TABLE_COLUMNS = {
    "workouts": [
        "id", "user_id", "date", "notes", "photo_url", "is_locked", "created_at", "updated_at",
    ],
    "workout_sets": [
        "id", "workout_id", "exercise_id", "set_number", "reps", "weight", "distance_km",
        "duration_minutes", "plank_seconds", "created_at",
    ],
    "exercises": ["id", "name", "type", "is_preset", "image_url", "user_id", "created_at"],
}
CACHED_TABLES = ("workouts", "workout_sets", "exercises", "profiles", "favorite_exercises")
BOOL_FIELDS = {"is_locked", "is_preset", "_synced"}

SERVER_SCHEMA_KEY = "server_schema_version"


def generate_offline_id() -> str:
    return f"{OFFLINE_ID_PREFIX}{uuid.uuid4()}"


def is_offline_id(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(OFFLINE_ID_PREFIX)


def _v1(conn):
    conn.executescript("""
        CREATE TABLE workouts (
            id TEXT PRIMARY KEY, user_id TEXT, date TEXT, notes TEXT, photo_url TEXT,
            is_locked INTEGER DEFAULT 0, created_at TEXT, updated_at TEXT,
            _synced INTEGER NOT NULL DEFAULT 1, _last_modified REAL
        );
        CREATE INDEX idx_local_workouts_user_date ON workouts(user_id, date);

        CREATE TABLE workout_sets (
            id TEXT PRIMARY KEY, workout_id TEXT, exercise_id TEXT, set_number INTEGER,
            reps INTEGER, weight REAL, distance_km REAL, duration_minutes REAL,
            plank_seconds INTEGER, created_at TEXT,
            _synced INTEGER NOT NULL DEFAULT 1, _last_modified REAL
        );
        CREATE INDEX idx_local_sets_workout ON workout_sets(workout_id);
        CREATE INDEX idx_local_sets_exercise ON workout_sets(exercise_id);

        CREATE TABLE exercises (
            id TEXT PRIMARY KEY, name TEXT, type TEXT, is_preset INTEGER DEFAULT 0,
            image_url TEXT, user_id TEXT, created_at TEXT,
            _synced INTEGER NOT NULL DEFAULT 1, _last_modified REAL
        );

        CREATE TABLE profiles (
            user_id TEXT PRIMARY KEY, data TEXT NOT NULL,
            _synced INTEGER NOT NULL DEFAULT 1, _last_modified REAL
        );

        CREATE TABLE favorite_exercises (
            user_id TEXT NOT NULL, exercise_id TEXT NOT NULL,
            _synced INTEGER NOT NULL DEFAULT 1,
            PRIMARY KEY (user_id, exercise_id)
        );

        CREATE TABLE sync_queue (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            table_name  TEXT NOT NULL,
            operation   TEXT NOT NULL CHECK (operation IN ('create', 'update', 'delete')),
            entity_id   TEXT NOT NULL,
            data        TEXT NOT NULL DEFAULT '{}',
            created_at  REAL NOT NULL,
            retry_count INTEGER NOT NULL DEFAULT 0,
            last_error  TEXT
        );
        CREATE INDEX idx_queue_entity ON sync_queue(entity_id);

        CREATE TABLE metadata (
            key   TEXT PRIMARY KEY,
            value TEXT
        );
    """)


def _v2(conn):
    conn.executescript("""
        CREATE TABLE id_mappings (
            offline_id TEXT PRIMARY KEY,
            server_id  TEXT NOT NULL,
            table_name TEXT NOT NULL,
            created_at REAL NOT NULL
        );
    """)


LOCAL_MIGRATIONS = {1: _v1, 2: _v2}


def _row(row) -> Optional[dict]:
    if row is None:
        return None
    data = dict(row)
    for key in BOOL_FIELDS & data.keys():
        if data[key] is not None:
            data[key] = bool(data[key])
    return data


class OfflineStore:
    """SQLite-backed local cache shared by the repository and the sync service."""

    def __init__(self, path: str = ":memory:"):
        self.path = str(path)
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._upgrade()

    def _upgrade(self):
        with self._lock:
            current = self._conn.execute("PRAGMA user_version").fetchone()[0]
            for version in range(current + 1, LOCAL_SCHEMA_VERSION + 1):
                LOCAL_MIGRATIONS[version](self._conn)
                self._conn.execute(f"PRAGMA user_version = {version}")
                logger.debug("Local store upgraded to v%d", version)
            self._conn.commit()

    @property
    def version(self) -> int:
        with self._lock:
            return self._conn.execute("PRAGMA user_version").fetchone()[0]

    @contextmanager
    def transaction(self):
        """Serialise access and commit on success, roll back on error."""
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ==================== Generic rows ====================

    def put(self, table: str, row: dict, synced: bool = True) -> dict:
        columns = TABLE_COLUMNS[table]
        values = {column: row.get(column) for column in columns}
        for flag in BOOL_FIELDS & values.keys():
            if values[flag] is not None:
                values[flag] = int(values[flag])
        values["_synced"] = int(synced)
        values["_last_modified"] = time.time()
        names = columns + ["_synced", "_last_modified"]
        with self.transaction() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {table} ({', '.join(names)}) "
                f"VALUES ({', '.join(':' + n for n in names)})",
                values,
            )
        return self.get(table, values["id"])

    def get(self, table: str, row_id: str) -> Optional[dict]:
        with self._lock:
            return _row(self._conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone())

    def update(self, table: str, row_id: str, changes: dict, synced: Optional[bool] = None) -> Optional[dict]:
        changes = {k: v for k, v in changes.items() if k in TABLE_COLUMNS[table] and k != "id"}
        changes["_last_modified"] = time.time()
        if synced is not None:
            changes["_synced"] = int(synced)
        assignments = ", ".join(f"{column} = ?" for column in changes)
        with self.transaction() as conn:
            conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", list(changes.values()) + [row_id])
        return self.get(table, row_id)

    def delete(self, table: str, row_id: str) -> None:
        with self.transaction() as conn:
            conn.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
            if table == "workouts":
                conn.execute("DELETE FROM workout_sets WHERE workout_id = ?", (row_id,))

    def rekey(self, table: str, old_id: str, new_id: str) -> None:
        """Replace a local id with its server id and re-point dependent rows."""
        with self.transaction() as conn:
            conn.execute(f"DELETE FROM {table} WHERE id = ?", (new_id,))
            conn.execute(f"UPDATE {table} SET id = ?, _synced = 1 WHERE id = ?", (new_id, old_id))
            if table == "workouts":
                conn.execute("UPDATE workout_sets SET workout_id = ? WHERE workout_id = ?", (new_id, old_id))
            elif table == "exercises":
                conn.execute("UPDATE workout_sets SET exercise_id = ? WHERE exercise_id = ?", (new_id, old_id))
                conn.execute(
                    "UPDATE favorite_exercises SET exercise_id = ? WHERE exercise_id = ?", (new_id, old_id)
                )

    # ==================== Workouts & sets ====================

    def list_workouts(self, user_id: str, start: Optional[str] = None, end: Optional[str] = None,
                      with_sets: bool = True) -> List[dict]:
        query = "SELECT * FROM workouts WHERE user_id = ?"
        params: List[Any] = [user_id]
        if start:
            query += " AND date >= ?"
            params.append(start)
        if end:
            query += " AND date <= ?"
            params.append(end)
        query += " ORDER BY date DESC, created_at DESC"
        with self._lock:
            workouts = [_row(r) for r in self._conn.execute(query, params).fetchall()]
            if with_sets:
                for workout in workouts:
                    workout["workout_sets"] = self.sets_for_workout(workout["id"])
        return workouts

    def count_workouts(self, user_id: str) -> int:
        with self._lock:
            return self._conn.execute(
                "SELECT COUNT(*) FROM workouts WHERE user_id = ?", (user_id,)
            ).fetchone()[0]

    def sets_for_workout(self, workout_id: str) -> List[dict]:
        """Sets of a workout, each with its cached ``exercise`` attached."""
        with self._lock:
            rows = self._conn.execute("""
                SELECT s.*, e.name AS exercise_name, e.type AS exercise_type, e.image_url AS exercise_image_url
                FROM workout_sets s
                LEFT JOIN exercises e ON e.id = s.exercise_id
                WHERE s.workout_id = ?
                ORDER BY s.created_at, s.set_number
            """, (workout_id,)).fetchall()
        sets = []
        for row in rows:
            set_row = _row(row)
            name = set_row.pop("exercise_name")
            exercise_type = set_row.pop("exercise_type")
            image_url = set_row.pop("exercise_image_url")
            set_row["exercise"] = None if name is None else {
                "id": set_row["exercise_id"], "name": name, "type": exercise_type, "image_url": image_url,
            }
            sets.append(set_row)
        return sets

    def recent_sets_for_exercise(self, exercise_id: str, user_id: str, limit: int = 3) -> List[dict]:
        """Newest sets of an exercise among the user's workouts, with the workout date."""
        with self._lock:
            rows = self._conn.execute("""
                SELECT s.weight, s.reps, s.distance_km, s.duration_minutes, s.plank_seconds,
                       w.date, s.created_at
                FROM workout_sets s
                JOIN workouts w ON w.id = s.workout_id
                WHERE s.exercise_id = ? AND w.user_id = ?
                ORDER BY s.created_at DESC
                LIMIT ?
            """, (exercise_id, user_id, limit)).fetchall()
        return [dict(row) for row in rows]

    def last_set_for_exercise(self, exercise_id: str, user_id: str) -> Optional[dict]:
        recent = self.recent_sets_for_exercise(exercise_id, user_id, 1)
        if not recent:
            return None
        return {k: recent[0][k] for k in ("weight", "reps", "distance_km", "duration_minutes", "plank_seconds")}

    # ==================== Exercises, profiles, favorites ====================

    def list_exercises(self, user_id: str) -> List[dict]:
        with self._lock:
            rows = self._conn.execute("""
                SELECT * FROM exercises
                WHERE is_preset = 1 OR user_id = ?
                ORDER BY is_preset DESC, name
            """, (user_id,)).fetchall()
        return [_row(row) for row in rows]

    def put_profile(self, profile: dict, synced: bool = True) -> None:
        with self.transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO profiles (user_id, data, _synced, _last_modified)
                VALUES (?, ?, ?, ?)
            """, (profile["user_id"], json.dumps(profile), int(synced), time.time()))

    def delete_profile(self, user_id: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM profiles WHERE user_id = ?", (user_id,))

    def get_profile(self, user_id: str) -> Optional[dict]:
        with self._lock:
            row = self._conn.execute(
                "SELECT data, _synced FROM profiles WHERE user_id = ?", (user_id,)
            ).fetchone()
        if not row:
            return None
        profile = json.loads(row["data"])
        profile["_synced"] = bool(row["_synced"])
        return profile

    def set_favorites(self, user_id: str, exercise_ids) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM favorite_exercises WHERE user_id = ?", (user_id,))
            conn.executemany(
                "INSERT INTO favorite_exercises (user_id, exercise_id, _synced) VALUES (?, ?, 1)",
                [(user_id, exercise_id) for exercise_id in exercise_ids],
            )

    def set_favorite(self, user_id: str, exercise_id: str, favorite: bool, synced: bool = True) -> None:
        with self.transaction() as conn:
            if favorite:
                conn.execute("""
                    INSERT OR REPLACE INTO favorite_exercises (user_id, exercise_id, _synced)
                    VALUES (?, ?, ?)
                """, (user_id, exercise_id, int(synced)))
            else:
                conn.execute(
                    "DELETE FROM favorite_exercises WHERE user_id = ? AND exercise_id = ?",
                    (user_id, exercise_id),
                )

    def get_favorites(self, user_id: str) -> set:
        with self._lock:
            rows = self._conn.execute(
                "SELECT exercise_id FROM favorite_exercises WHERE user_id = ?", (user_id,)
            ).fetchall()
        return {row["exercise_id"] for row in rows}

    # ==================== Metadata ====================

    def get_meta(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            row = self._conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else default

    def set_meta(self, key: str, value: str) -> None:
        with self.transaction() as conn:
            conn.execute("INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)", (key, str(value)))

    def delete_meta(self, key: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM metadata WHERE key = ?", (key,))

    def get_last_sync_time(self, scope: str = "all") -> Optional[float]:
        value = self.get_meta(f"last_sync:{scope}")
        return float(value) if value is not None else None

    def set_last_sync_time(self, scope: str = "all", timestamp: Optional[float] = None) -> None:
        self.set_meta(f"last_sync:{scope}", timestamp if timestamp is not None else time.time())

    # ==================== Id mappings ====================

    def save_id_mapping(self, offline_id: str, server_id: str, table: str) -> None:
        with self.transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO id_mappings (offline_id, server_id, table_name, created_at)
                VALUES (?, ?, ?, ?)
            """, (offline_id, server_id, table, time.time()))

    def get_id_mapping(self, offline_id: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute(
                "SELECT server_id FROM id_mappings WHERE offline_id = ?", (offline_id,)
            ).fetchone()
        return row["server_id"] if row else None

    def load_id_mappings(self) -> Dict[str, str]:
        with self._lock:
            rows = self._conn.execute("SELECT offline_id, server_id FROM id_mappings").fetchall()
        return {row["offline_id"]: row["server_id"] for row in rows}

    def clear_id_mappings(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM id_mappings")

    # ==================== Cache busting ====================

    def clear_cached_data(self) -> None:
        """Drop cached entity rows and id mappings; the sync queue survives."""
        with self.transaction() as conn:
            for table in CACHED_TABLES:
                conn.execute(f"DELETE FROM {table}")
            conn.execute("DELETE FROM id_mappings")
            conn.execute("DELETE FROM metadata WHERE key LIKE 'last_sync:%'")

    def check_server_schema(self, server_version: int) -> bool:
        """Record the server schema version; clear caches when it changed.

        Returns True if cached data was cleared.
        """
        stored = self.get_meta(SERVER_SCHEMA_KEY)
        self.set_meta(SERVER_SCHEMA_KEY, server_version)
        if stored is not None and int(stored) != int(server_version):
            logger.info("Server schema changed from %s to %s, clearing local cache", stored, server_version)
            self.clear_cached_data()
            return True
        return False

    def clear_all(self) -> None:
        with self.transaction() as conn:
            for table in CACHED_TABLES + ("sync_queue", "metadata", "id_mappings"):
                conn.execute(f"DELETE FROM {table}")
