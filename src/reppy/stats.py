"""
Usage statistics, cleanup candidates and cascading deletes.

Every function takes an open sqlite3 connection so the same queries back the
admin API, the account/cleanup functions and the MCP tools.
"""
import json
import logging
from datetime import date, timedelta
from functools import cmp_to_key
from typing import Any, Dict, List, Optional

from .db import row_to_dict

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 100
SCAN_PAGE_SIZE = 1000
TOP_EXERCISES_LIMIT = 10
LEADERBOARD_LIMIT = 10


# ==================== Admin statistics ====================


def admin_stats(conn, today: Optional[date] = None) -> Dict[str, Any]:
    """Dashboard counters for administrators."""
    today = today or date.today()
    seven_days_ago = (today - timedelta(days=7)).isoformat()
    thirty_days_ago = (today - timedelta(days=30)).isoformat()
    cursor = conn.cursor()

    cursor.execute("SELECT COUNT(*) FROM profiles")
    total_users = cursor.fetchone()[0]

    cursor.execute("SELECT COUNT(*) FROM workouts")
    total_workouts = cursor.fetchone()[0]

    cursor.execute("SELECT COUNT(*) FROM workouts WHERE date >= ?", (today.isoformat(),))
    workouts_today = cursor.fetchone()[0]

    cursor.execute(
        "SELECT COUNT(DISTINCT user_id) FROM workouts WHERE date >= ?", (seven_days_ago,)
    )
    active_users_7d = cursor.fetchone()[0]

    cursor.execute(
        "SELECT COUNT(DISTINCT user_id) FROM workouts WHERE date >= ?", (thirty_days_ago,)
    )
    active_users_30d = cursor.fetchone()[0]

    cursor.execute("SELECT COUNT(DISTINCT exercise_id) FROM workout_sets")
    total_exercises = cursor.fetchone()[0]

    cursor.execute("""
        SELECT COALESCE(e.name, 'Unknown') AS name, COUNT(*) AS count
        FROM workout_sets ws
        LEFT JOIN exercises e ON e.id = ws.exercise_id
        GROUP BY ws.exercise_id
        ORDER BY count DESC, name
        LIMIT ?
    """, (TOP_EXERCISES_LIMIT,))
    top_exercises = [dict(row) for row in cursor.fetchall()]

    avg_workouts_per_user = round(total_workouts / total_users, 1) if total_users else 0

    return {
        "total_users": total_users,
        "active_users_7d": active_users_7d,
        "active_users_30d": active_users_30d,
        "total_workouts": total_workouts,
        "workouts_today": workouts_today,
        "total_exercises": total_exercises,
        "avg_workouts_per_user": avg_workouts_per_user,
        "top_exercises": top_exercises,
    }


def admin_users(conn, search: str = "") -> List[Dict[str, Any]]:
    """Profiles, newest first, with workout count and last workout date."""
    cursor = conn.cursor()
    query = """
        SELECT p.user_id, p.display_name, p.username, p.avatar, p.is_admin, p.created_at,
               COUNT(w.id) AS workout_count, MAX(w.date) AS last_workout_date
        FROM profiles p
        LEFT JOIN workouts w ON w.user_id = p.user_id
    """
    params: List[Any] = []
    if search:
        query += " WHERE p.display_name LIKE ? OR p.username LIKE ?"
        params.extend([f"%{search}%", f"%{search}%"])
    query += " GROUP BY p.user_id ORDER BY p.created_at DESC"
    cursor.execute(query, params)
    return [row_to_dict(row) for row in cursor.fetchall()]


# ==================== Cleanup candidates ====================


def empty_workouts(conn) -> List[Dict[str, Any]]:
    """Workouts without any sets, newest first, with owner profile info."""
    cursor = conn.cursor()
    cursor.execute("""
        SELECT w.id, w.date, w.user_id, p.display_name, p.avatar
        FROM workouts w
        LEFT JOIN profiles p ON p.user_id = w.user_id
        WHERE NOT EXISTS (SELECT 1 FROM workout_sets s WHERE s.workout_id = w.id)
        ORDER BY w.date DESC
    """)
    return [dict(row) for row in cursor.fetchall()]


def inactive_users(conn, days: int = 30, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Users whose last workout predates the cutoff, or who never logged one."""
    cutoff = ((today or date.today()) - timedelta(days=days)).isoformat()
    cursor = conn.cursor()
    cursor.execute("""
        SELECT p.user_id, p.display_name, MAX(w.date) AS last_workout_date
        FROM profiles p
        LEFT JOIN workouts w ON w.user_id = p.user_id
        GROUP BY p.user_id
        HAVING last_workout_date IS NULL OR last_workout_date < ?
        ORDER BY p.display_name
    """, (cutoff,))
    return [dict(row) for row in cursor.fetchall()]


def orphaned_set_ids(conn, page_size: int = SCAN_PAGE_SIZE) -> List[str]:
    """Ids of sets whose workout no longer exists, scanned page by page."""
    cursor = conn.cursor()
    cursor.execute("SELECT id FROM workouts")
    valid_workout_ids = {row["id"] for row in cursor.fetchall()}

    orphaned = []
    offset = 0
    while True:
        cursor.execute(
            "SELECT id, workout_id FROM workout_sets ORDER BY id LIMIT ? OFFSET ?",
            (page_size, offset),
        )
        rows = cursor.fetchall()
        if not rows:
            break
        orphaned.extend(row["id"] for row in rows if row["workout_id"] not in valid_workout_ids)
        if len(rows) < page_size:
            break
        offset += page_size
    return orphaned


# ==================== Deletes ====================


def delete_in_batches(conn, table: str, ids: List[str], batch_size: int = DELETE_BATCH_SIZE) -> int:
    """Delete rows by id in fixed-size batches. Returns the number of ids requested."""
    cursor = conn.cursor()
    for start in range(0, len(ids), batch_size):
        batch = ids[start:start + batch_size]
        placeholders = ", ".join("?" for _ in batch)
        cursor.execute(f"DELETE FROM {table} WHERE id IN ({placeholders})", batch)
    return len(ids)


def delete_orphaned_sets(conn) -> int:
    ids = orphaned_set_ids(conn)
    if ids:
        delete_in_batches(conn, "workout_sets", ids)
    return len(ids)


def delete_exercise_cascade(conn, exercise_id: str) -> bool:
    """Remove an exercise with its sets and favorites. False if it did not exist."""
    cursor = conn.cursor()
    cursor.execute("DELETE FROM workout_sets WHERE exercise_id = ?", (exercise_id,))
    cursor.execute("DELETE FROM favorite_exercises WHERE exercise_id = ?", (exercise_id,))
    cursor.execute("DELETE FROM exercises WHERE id = ?", (exercise_id,))
    return cursor.rowcount > 0


def delete_workout_cascade(conn, workout_id: str) -> None:
    cursor = conn.cursor()
    cursor.execute("DELETE FROM workout_sets WHERE workout_id = ?", (workout_id,))
    cursor.execute("DELETE FROM workout_shares WHERE workout_id = ?", (workout_id,))
    cursor.execute("DELETE FROM workouts WHERE id = ?", (workout_id,))


def delete_account_cascade(conn, user_id: str) -> None:
    """Delete every row owned by a user, children before parents, then the user."""
    cursor = conn.cursor()
    cursor.execute("DELETE FROM workout_shares WHERE user_id = ?", (user_id,))
    cursor.execute("DELETE FROM favorite_exercises WHERE user_id = ?", (user_id,))
    cursor.execute("""
        DELETE FROM workout_sets
        WHERE workout_id IN (SELECT id FROM workouts WHERE user_id = ?)
    """, (user_id,))
    cursor.execute("DELETE FROM workouts WHERE user_id = ?", (user_id,))
    cursor.execute("DELETE FROM exercises WHERE user_id = ?", (user_id,))
    cursor.execute(
        "DELETE FROM friendships WHERE requester_id = ? OR addressee_id = ?",
        (user_id, user_id),
    )
    cursor.execute("DELETE FROM body_weight_history WHERE user_id = ?", (user_id,))
    cursor.execute("DELETE FROM profiles WHERE user_id = ?", (user_id,))
    cursor.execute("DELETE FROM users WHERE id = ?", (user_id,))
    logger.info("Deleted account %s", user_id)


# ==================== Leaderboard ====================


def _compare_entries(a, b):
    if a["max_distance"] > 0 or b["max_distance"] > 0:
        return b["max_distance"] - a["max_distance"]
    if a["max_weight"] > 0 and b["max_weight"] > 0:
        return b["max_weight"] - a["max_weight"]
    if a["max_weight"] == 0 and b["max_weight"] == 0:
        return b["max_reps"] - a["max_reps"]
    return b["max_weight"] - a["max_weight"]


def leaderboard(conn, exercise_name: str, period: str = "all",
                today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Top users for an exercise by distance, weight or reps."""
    cursor = conn.cursor()
    query = """
        SELECT w.user_id, ws.weight, ws.reps, ws.distance_km
        FROM workout_sets ws
        JOIN workouts w ON w.id = ws.workout_id
        JOIN exercises e ON e.id = ws.exercise_id
        WHERE e.name = ?
    """
    params: List[Any] = [exercise_name]
    if period == "month":
        month_start = (today or date.today()).replace(day=1).isoformat()
        query += " AND w.date >= ?"
        params.append(month_start)
    cursor.execute(query, params)

    user_stats: Dict[str, Dict[str, float]] = {}
    for row in cursor.fetchall():
        weight = row["weight"] or 0
        reps = row["reps"] or 0
        distance = row["distance_km"] or 0
        stats = user_stats.setdefault(row["user_id"], {
            "max_weight": 0, "max_reps": 0, "total_reps": 0,
            "max_distance": 0, "total_distance": 0,
        })
        stats["max_weight"] = max(stats["max_weight"], weight)
        stats["max_reps"] = max(stats["max_reps"], reps)
        stats["total_reps"] += reps
        stats["max_distance"] = max(stats["max_distance"], distance)
        stats["total_distance"] += distance

    if not user_stats:
        return []

    placeholders = ", ".join("?" for _ in user_stats)
    cursor.execute(f"""
        SELECT user_id, display_name, avatar, current_weight, height
        FROM profiles WHERE user_id IN ({placeholders})
    """, list(user_stats))

    entries = []
    for profile in cursor.fetchall():
        entry = dict(profile)
        entry["exercise_name"] = exercise_name
        entry.update(user_stats[profile["user_id"]])
        entries.append(entry)

    entries.sort(key=cmp_to_key(_compare_entries))
    return entries[:LEADERBOARD_LIMIT]


# ==================== App logs ====================


def _log_row(row) -> Dict[str, Any]:
    entry = dict(row)
    entry["metadata"] = json.loads(entry["metadata"] or "{}")
    return entry


def list_logs(conn, level: Optional[str] = None, user_id: Optional[str] = None,
              search: Optional[str] = None, date_from: Optional[str] = None,
              date_to: Optional[str] = None, page: int = 1, page_size: int = 50) -> Dict[str, Any]:
    """Filtered, paginated logs, newest first, with the author's profile attached."""
    clauses = []
    params: List[Any] = []
    if level and level != "all":
        clauses.append("level = ?")
        params.append(level)
    if user_id:
        clauses.append("user_id = ?")
        params.append(user_id)
    if search:
        clauses.append("(message LIKE ? OR url LIKE ?)")
        params.extend([f"%{search}%", f"%{search}%"])
    if date_from:
        clauses.append("created_at >= ?")
        params.append(date_from)
    if date_to:
        # whole day inclusive
        next_day = (date.fromisoformat(date_to) + timedelta(days=1)).isoformat()
        clauses.append("created_at < ?")
        params.append(next_day)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    cursor = conn.cursor()
    cursor.execute(f"SELECT COUNT(*) FROM app_logs {where}", params)
    total = cursor.fetchone()[0]

    cursor.execute(
        f"SELECT * FROM app_logs {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
        params + [page_size, (page - 1) * page_size],
    )
    logs = [_log_row(row) for row in cursor.fetchall()]

    user_ids = sorted({log["user_id"] for log in logs if log["user_id"]})
    profiles = {}
    if user_ids:
        placeholders = ", ".join("?" for _ in user_ids)
        cursor.execute(f"""
            SELECT user_id, display_name, username, avatar
            FROM profiles WHERE user_id IN ({placeholders})
        """, user_ids)
        profiles = {
            row["user_id"]: {
                "display_name": row["display_name"],
                "username": row["username"],
                "avatar": row["avatar"],
            }
            for row in cursor.fetchall()
        }
    for log in logs:
        log["profile"] = profiles.get(log["user_id"]) if log["user_id"] else None

    return {"logs": logs, "total": total}


def log_stats(conn, today: Optional[date] = None) -> Dict[str, int]:
    cursor = conn.cursor()
    cursor.execute("""
        SELECT
            COUNT(*) AS total,
            COALESCE(SUM(level = 'error'), 0) AS errors,
            COALESCE(SUM(level = 'warn'), 0) AS warnings,
            COALESCE(SUM(level = 'info'), 0) AS info,
            COALESCE(SUM(created_at >= ?), 0) AS today_count
        FROM app_logs
    """, ((today or date.today()).isoformat(),))
    return dict(cursor.fetchone())


def clear_old_logs(conn, days_old: int = 30, today: Optional[date] = None) -> int:
    cutoff = ((today or date.today()) - timedelta(days=days_old)).isoformat()
    cursor = conn.cursor()
    cursor.execute("DELETE FROM app_logs WHERE created_at < ?", (cutoff,))
    return cursor.rowcount
