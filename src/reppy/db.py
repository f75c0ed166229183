"""
SQLite storage for the Reppy server.
Schema creation, versioned migrations and connection helpers.
"""
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone

from .config import get_settings


# Bumped whenever the relational layout changes; clients compare it against
# their cached copy and drop stale caches on mismatch.
SCHEMA_VERSION = 3

# Module-level DATABASE_PATH so tests can monkeypatch it
DATABASE_PATH = get_settings().db_path

PRESET_EXERCISES = [
    ("Push-ups", "bodyweight"),
    ("Pull-ups", "bodyweight"),
    ("Squats", "bodyweight"),
    ("Bench Press", "weighted"),
    ("Deadlift", "weighted"),
    ("Running", "cardio"),
    ("Plank", "timed"),
]

BOOL_COLUMNS = {"is_preset", "is_admin", "is_locked", "is_active"}


def get_utc_now() -> str:
    """Return current UTC time as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id() -> str:
    return str(uuid.uuid4())


def _connect(path):
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = _connect(DATABASE_PATH)
    try:
        yield conn
    finally:
        conn.close()


def row_to_dict(row) -> dict:
    """Convert a sqlite3.Row into a plain dict with real booleans."""
    if row is None:
        return None
    data = dict(row)
    for key in BOOL_COLUMNS & data.keys():
        if data[key] is not None:
            data[key] = bool(data[key])
    return data


def _table_exists(cursor, name) -> bool:
    cursor.execute("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,))
    return cursor.fetchone() is not None


def get_schema_version(cursor) -> int:
    """Read the stored schema version; databases predating the meta table are v1."""
    if not _table_exists(cursor, "meta"):
        return 1
    cursor.execute("SELECT value FROM meta WHERE key = 'schema_version'")
    row = cursor.fetchone()
    return int(row[0]) if row else 1


def _set_schema_version(cursor, version):
    cursor.execute("""
        INSERT OR REPLACE INTO meta (key, value) VALUES ('schema_version', ?)
    """, (str(version),))


def _create_schema(cursor):
    # users - credentials, stand-in for the hosted auth service
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id            TEXT PRIMARY KEY,
            email         TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            created_at    TEXT NOT NULL
        )
    """)

    # profiles - account metadata, one per user
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            id             TEXT PRIMARY KEY,
            user_id        TEXT NOT NULL UNIQUE REFERENCES users(id),
            display_name   TEXT,
            username       TEXT,
            current_weight REAL,
            gender         TEXT,
            date_of_birth  TEXT,
            height         REAL,
            avatar         TEXT,
            is_admin       INTEGER NOT NULL DEFAULT 0,
            created_at     TEXT NOT NULL
        )
    """)
    cursor.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_profiles_username ON profiles(username)")

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS exercises (
            id         TEXT PRIMARY KEY,
            name       TEXT NOT NULL,
            type       TEXT NOT NULL DEFAULT 'weighted'
                       CHECK (type IN ('bodyweight', 'weighted', 'cardio', 'timed')),
            is_preset  INTEGER NOT NULL DEFAULT 0,
            image_url  TEXT,
            user_id    TEXT,
            created_at TEXT NOT NULL
        )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_exercises_user ON exercises(user_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_exercises_name ON exercises(name)")

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS favorite_exercises (
            id          TEXT PRIMARY KEY,
            user_id     TEXT NOT NULL,
            exercise_id TEXT NOT NULL,
            created_at  TEXT NOT NULL,
            UNIQUE(user_id, exercise_id)
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS workouts (
            id         TEXT PRIMARY KEY,
            user_id    TEXT NOT NULL,
            date       TEXT NOT NULL,
            notes      TEXT,
            photo_url  TEXT,
            is_locked  INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_workouts_user_date ON workouts(user_id, date)")

    # workout_sets - no foreign keys; orphans are removed by the cleanup function
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS workout_sets (
            id               TEXT PRIMARY KEY,
            workout_id       TEXT NOT NULL,
            exercise_id      TEXT NOT NULL,
            set_number       INTEGER NOT NULL DEFAULT 1,
            reps             INTEGER,
            weight           REAL,
            distance_km      REAL,
            duration_minutes REAL,
            plank_seconds    INTEGER,
            created_at       TEXT NOT NULL
        )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_sets_workout ON workout_sets(workout_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_sets_exercise ON workout_sets(exercise_id)")

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS friendships (
            id           TEXT PRIMARY KEY,
            requester_id TEXT NOT NULL,
            addressee_id TEXT NOT NULL,
            status       TEXT NOT NULL DEFAULT 'pending'
                         CHECK (status IN ('pending', 'accepted', 'rejected')),
            created_at   TEXT NOT NULL,
            updated_at   TEXT NOT NULL,
            UNIQUE(requester_id, addressee_id)
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS workout_shares (
            id          TEXT PRIMARY KEY,
            workout_id  TEXT NOT NULL,
            user_id     TEXT NOT NULL,
            share_token TEXT NOT NULL UNIQUE,
            is_active   INTEGER NOT NULL DEFAULT 1,
            created_at  TEXT NOT NULL,
            expires_at  TEXT
        )
    """)
    cursor.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_shares_active_workout
        ON workout_shares(workout_id) WHERE is_active = 1
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS body_weight_history (
            id         TEXT PRIMARY KEY,
            user_id    TEXT NOT NULL,
            date       TEXT NOT NULL,
            weight     REAL NOT NULL,
            created_at TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS app_logs (
            id         TEXT PRIMARY KEY,
            user_id    TEXT,
            level      TEXT NOT NULL CHECK (level IN ('error', 'warn', 'info')),
            message    TEXT NOT NULL,
            stack      TEXT,
            url        TEXT,
            user_agent TEXT,
            metadata   TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL
        )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_app_logs_created ON app_logs(created_at)")

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS meta (
            key   TEXT PRIMARY KEY,
            value TEXT
        )
    """)


def _migrate_v2(cursor):
    """Share links gained an expiry; existing links get 30 days from creation."""
    cursor.execute("ALTER TABLE workout_shares ADD COLUMN expires_at TEXT")
    cursor.execute("""
        UPDATE workout_shares
        SET expires_at = strftime('%Y-%m-%dT%H:%M:%SZ', created_at, '+30 days')
        WHERE expires_at IS NULL
    """)
    cursor.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_shares_active_workout
        ON workout_shares(workout_id) WHERE is_active = 1
    """)


def _migrate_v3(cursor):
    """Profiles gained usernames and the admin flag; app_logs was added."""
    cursor.execute("ALTER TABLE profiles ADD COLUMN username TEXT")
    cursor.execute("ALTER TABLE profiles ADD COLUMN is_admin INTEGER NOT NULL DEFAULT 0")
    cursor.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_profiles_username ON profiles(username)")
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS app_logs (
            id         TEXT PRIMARY KEY,
            user_id    TEXT,
            level      TEXT NOT NULL CHECK (level IN ('error', 'warn', 'info')),
            message    TEXT NOT NULL,
            stack      TEXT,
            url        TEXT,
            user_agent TEXT,
            metadata   TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL
        )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_app_logs_created ON app_logs(created_at)")


# version -> migration bringing a database from version - 1 to version
MIGRATIONS = {
    2: _migrate_v2,
    3: _migrate_v3,
}


def apply_migrations(cursor, target=SCHEMA_VERSION):
    """Run pending migrations in order. Returns the list of applied versions."""
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS meta (
            key   TEXT PRIMARY KEY,
            value TEXT
        )
    """)
    current = get_schema_version(cursor)
    applied = []
    for version in range(current + 1, target + 1):
        MIGRATIONS[version](cursor)
        _set_schema_version(cursor, version)
        applied.append(version)
    return applied


def seed_presets(cursor):
    """Insert the built-in exercise catalogue if it is missing."""
    now = get_utc_now()
    for name, exercise_type in PRESET_EXERCISES:
        cursor.execute(
            "SELECT 1 FROM exercises WHERE name = ? AND is_preset = 1", (name,)
        )
        if cursor.fetchone():
            continue
        cursor.execute("""
            INSERT INTO exercises (id, name, type, is_preset, user_id, created_at)
            VALUES (?, ?, ?, 1, NULL, ?)
        """, (new_id(), name, exercise_type, now))


def init_database(db_path=None):
    """Initialize the database with required tables.

    Args:
        db_path: Optional path override. If None, uses DATABASE_PATH.
    """
    path = db_path or DATABASE_PATH
    conn = _connect(path)
    cursor = conn.cursor()

    if _table_exists(cursor, "users"):
        apply_migrations(cursor)
    else:
        _create_schema(cursor)
        _set_schema_version(cursor, SCHEMA_VERSION)
    seed_presets(cursor)

    conn.commit()
    conn.close()
