"""Unit tests for the read-only MCP helpers."""

import sqlite3
from datetime import date, timedelta

import pytest

from reppy_mcp.config import MCPConfig
from reppy_mcp.server import (
    create_mcp_server, exercise_history, find_users, get_user_workouts, monthly_report, workout_summary,
)

TODAY = date(2024, 6, 15)


@pytest.fixture
def seeded(mcp_config):
    conn = sqlite3.connect(mcp_config.db_path)
    conn.row_factory = sqlite3.Row
    presets = {r["name"]: r["id"] for r in conn.execute("SELECT id, name FROM exercises WHERE is_preset = 1")}
    conn.execute("INSERT INTO users VALUES ('u1', 'a@example.com', 'x', '2024-01-01T00:00:00Z')")
    conn.execute("""
        INSERT INTO profiles (id, user_id, display_name, username, current_weight, created_at)
        VALUES ('p1', 'u1', 'Ann Lifter', 'ann', 70, '2024-01-01T00:00:00Z')
    """)
    sets = [
        ("w1", (TODAY - timedelta(days=2)).isoformat(), [("Bench Press", 5, 80), ("Push-ups", 20, None)]),
        ("w2", (TODAY - timedelta(days=10)).isoformat(), [("Bench Press", 5, 75)]),
        ("w3", (TODAY - timedelta(days=60)).isoformat(), [("Bench Press", 5, 60)]),
    ]
    for workout_id, day, rows in sets:
        conn.execute("""
            INSERT INTO workouts (id, user_id, date, is_locked, created_at, updated_at)
            VALUES (?, 'u1', ?, 0, ?, ?)
        """, (workout_id, day, day, day))
        for number, (name, reps, weight) in enumerate(rows, start=1):
            conn.execute("""
                INSERT INTO workout_sets (id, workout_id, exercise_id, set_number, reps, weight, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (f"{workout_id}-{number}", workout_id, presets[name], number, reps, weight, day))
    conn.commit()
    conn.close()
    return "u1"


@pytest.mark.unit
def test_config_validation(tmp_path):
    with pytest.raises(ValueError, match="Database not found"):
        MCPConfig.from_db_path(tmp_path / "missing.db").validate()


@pytest.mark.unit
def test_server_requires_db_path(monkeypatch):
    monkeypatch.delenv("REPPY_DB_PATH", raising=False)
    with pytest.raises(ValueError, match="REPPY_DB_PATH"):
        create_mcp_server()


@pytest.mark.unit
def test_server_builds_with_config(mcp_config):
    assert create_mcp_server(mcp_config) is not None


@pytest.mark.unit
def test_find_users(db_manager, seeded):
    assert [u["username"] for u in find_users(db_manager, "@an")] == ["ann"]
    assert find_users(db_manager, "zzz") == []


@pytest.mark.unit
def test_workouts_in_range(db_manager, seeded):
    workouts = get_user_workouts(db_manager, seeded, (TODAY - timedelta(days=30)).isoformat(), TODAY.isoformat())
    assert [w["id"] for w in workouts] == ["w1", "w2"]
    assert workouts[0]["workout_sets"][0]["exercise"]["name"] == "Bench Press"


@pytest.mark.unit
def test_summary(db_manager, seeded):
    summary = workout_summary(db_manager, seeded, days=30, today=TODAY)

    assert summary["workouts"] == 2
    assert summary["total_sets"] == 3
    assert summary["total_reps"] == 30
    # push-ups count at body weight
    assert summary["total_volume_kg"] == 5 * 80 + 20 * 70 + 5 * 75
    assert summary["top_exercises"] == {"Bench Press": 2, "Push-ups": 1}


@pytest.mark.unit
def test_summary_rejects_long_periods(db_manager, seeded):
    with pytest.raises(ValueError, match="365"):
        workout_summary(db_manager, seeded, days=400)


@pytest.mark.unit
def test_exercise_history_newest_first(db_manager, seeded):
    history = exercise_history(db_manager, seeded, "Bench Press")
    assert [h["weight"] for h in history] == [80, 75, 60]


@pytest.mark.unit
def test_monthly_report(db_manager, seeded):
    report = monthly_report(db_manager, seeded, "2024-06")
    assert report["month"] == "2024-06"
    assert report["stats"]["workout_count"] == 2


@pytest.mark.unit
@pytest.mark.parametrize("month", ["2024-13", "June", ""])
def test_monthly_report_rejects_bad_month(db_manager, seeded, month):
    with pytest.raises(ValueError, match="Invalid month"):
        monthly_report(db_manager, seeded, month)


@pytest.mark.unit
def test_connections_are_read_only(db_manager, seeded):
    with pytest.raises(ValueError, match="Database error"):
        db_manager.execute_query("DELETE FROM workouts")
