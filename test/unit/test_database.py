"""Unit tests for database initialization and schema migrations."""

import importlib.util
import sqlite3
from pathlib import Path

import pytest

from reppy import db


V1_SCHEMA = """
    CREATE TABLE users (id TEXT PRIMARY KEY, email TEXT NOT NULL UNIQUE,
                        password_hash TEXT NOT NULL, created_at TEXT NOT NULL);
    CREATE TABLE profiles (id TEXT PRIMARY KEY, user_id TEXT NOT NULL UNIQUE, display_name TEXT,
                           current_weight REAL, gender TEXT, date_of_birth TEXT, height REAL,
                           avatar TEXT, created_at TEXT NOT NULL);
    CREATE TABLE workout_shares (id TEXT PRIMARY KEY, workout_id TEXT NOT NULL, user_id TEXT NOT NULL,
                                 share_token TEXT NOT NULL UNIQUE, is_active INTEGER NOT NULL DEFAULT 1,
                                 created_at TEXT NOT NULL);
"""


def _v1_database(path):
    conn = sqlite3.connect(path)
    conn.executescript(V1_SCHEMA)
    conn.execute("INSERT INTO users VALUES ('u1', 'a@b.c', 'x', '2024-01-01T00:00:00Z')")
    conn.execute("INSERT INTO profiles (id, user_id, display_name, created_at) "
                 "VALUES ('p1', 'u1', 'A', '2024-01-01T00:00:00Z')")
    conn.execute("INSERT INTO workout_shares VALUES ('s1', 'w1', 'u1', 'tok', 1, '2024-01-01T00:00:00Z')")
    conn.commit()
    conn.close()


@pytest.mark.unit
def test_database_tables_created(test_app, temp_db_path):
    """Test that all required tables are created."""
    conn = sqlite3.connect(temp_db_path)
    cursor = conn.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
    tables = [row[0] for row in cursor.fetchall()]
    conn.close()

    for table in ("users", "profiles", "exercises", "favorite_exercises", "workouts", "workout_sets",
                  "friendships", "workout_shares", "body_weight_history", "app_logs", "meta"):
        assert table in tables


@pytest.mark.unit
def test_new_database_is_current_version(test_app, temp_db_path):
    conn = sqlite3.connect(temp_db_path)
    assert db.get_schema_version(conn.cursor()) == db.SCHEMA_VERSION
    conn.close()


@pytest.mark.unit
def test_presets_seeded_once(test_app, temp_db_path):
    db.init_database()

    conn = sqlite3.connect(temp_db_path)
    rows = conn.execute("SELECT name, type FROM exercises WHERE is_preset = 1 ORDER BY name").fetchall()
    conn.close()

    assert sorted(rows) == sorted(db.PRESET_EXERCISES)


@pytest.mark.unit
def test_exercise_type_is_checked(test_app, temp_db_path):
    conn = sqlite3.connect(temp_db_path)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("""
            INSERT INTO exercises (id, name, type, created_at)
            VALUES ('x', 'Juggling', 'circus', '2024-01-01')
        """)
    conn.close()


@pytest.mark.unit
def test_one_active_share_per_workout(test_app, temp_db_path):
    conn = sqlite3.connect(temp_db_path)
    conn.execute("INSERT INTO workout_shares (id, workout_id, user_id, share_token, is_active, created_at) "
                 "VALUES ('a', 'w', 'u', 't1', 1, 'now')")
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("INSERT INTO workout_shares (id, workout_id, user_id, share_token, is_active, created_at) "
                     "VALUES ('b', 'w', 'u', 't2', 1, 'now')")
    conn.execute("INSERT INTO workout_shares (id, workout_id, user_id, share_token, is_active, created_at) "
                 "VALUES ('c', 'w', 'u', 't3', 0, 'now')")
    conn.close()


@pytest.mark.unit
def test_migrations_upgrade_v1_database(temp_db_path):
    _v1_database(temp_db_path)

    conn = sqlite3.connect(temp_db_path)
    cursor = conn.cursor()
    assert db.get_schema_version(cursor) == 1
    assert db.apply_migrations(cursor) == [2, 3]
    conn.commit()

    cursor.execute("PRAGMA table_info(profiles)")
    columns = {row[1] for row in cursor.fetchall()}
    assert {"username", "is_admin"} <= columns

    cursor.execute("SELECT expires_at FROM workout_shares WHERE id = 's1'")
    assert cursor.fetchone()[0].startswith("2024-01-31")

    cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='app_logs'")
    assert cursor.fetchone() is not None
    assert db.get_schema_version(cursor) == db.SCHEMA_VERSION
    assert db.apply_migrations(cursor) == []
    conn.close()


def _load_migrate_script():
    path = Path(__file__).parent.parent.parent / "bin" / "migrate_schema.py"
    spec = importlib.util.spec_from_file_location("migrate_schema", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.mark.unit
def test_migrate_script_dry_run_changes_nothing(temp_db_path):
    _v1_database(temp_db_path)
    script = _load_migrate_script()

    applied, issues = script.migrate(temp_db_path, dry_run=True)

    assert applied == [2, 3]
    assert issues == []
    conn = sqlite3.connect(temp_db_path)
    assert db.get_schema_version(conn.cursor()) == 1
    conn.close()


@pytest.mark.unit
def test_migrate_script_keeps_row_counts(temp_db_path):
    _v1_database(temp_db_path)
    script = _load_migrate_script()

    applied, issues = script.migrate(temp_db_path)

    assert applied == [2, 3]
    assert issues == []
    conn = sqlite3.connect(temp_db_path)
    assert db.get_schema_version(conn.cursor()) == db.SCHEMA_VERSION
    assert conn.execute("SELECT COUNT(*) FROM profiles").fetchone()[0] == 1
    conn.close()
