"""Exercise catalogue, favorites and per-exercise set history."""
import logging
import sqlite3

from fastapi import APIRouter, Depends, HTTPException, Query

from reppy import db, stats
from reppy.auth import get_current_user
from .models import ExerciseCreate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["exercises"])

SET_VALUE_COLUMNS = "ws.weight, ws.reps, ws.distance_km, ws.duration_minutes, ws.plank_seconds"


@router.get("/exercises")
def list_exercises(user: dict = Depends(get_current_user)):
    """Presets plus the caller's custom exercises, presets first."""
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM exercises
            WHERE is_preset = 1 OR user_id = ?
            ORDER BY is_preset DESC, name
        """, (user["id"],))
        return [db.row_to_dict(row) for row in cursor.fetchall()]


@router.post("/exercises")
def create_exercise(payload: ExerciseCreate, user: dict = Depends(get_current_user)):
    exercise = {
        "id": db.new_id(),
        "name": payload.name.strip(),
        "type": payload.type,
        "is_preset": False,
        "image_url": payload.image_url,
        "user_id": user["id"],
        "created_at": db.get_utc_now(),
    }
    with db.get_db() as conn:
        conn.execute("""
            INSERT INTO exercises (id, name, type, is_preset, image_url, user_id, created_at)
            VALUES (:id, :name, :type, 0, :image_url, :user_id, :created_at)
        """, exercise)
        conn.commit()
    return exercise


@router.delete("/exercises/{exercise_id}")
def delete_exercise(exercise_id: str, user: dict = Depends(get_current_user)):
    """Delete one of the caller's custom exercises with its sets and favorites."""
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT user_id, is_preset FROM exercises WHERE id = ?", (exercise_id,))
        row = cursor.fetchone()
        if not row:
            raise HTTPException(status_code=404, detail="Exercise not found")
        if row["is_preset"] or row["user_id"] != user["id"]:
            raise HTTPException(status_code=403, detail="Only your own custom exercises can be deleted")
        stats.delete_exercise_cascade(conn, exercise_id)
        conn.commit()
    return {"success": True}


@router.get("/exercises/{exercise_id}/last-set")
def last_set(exercise_id: str, user: dict = Depends(get_current_user)):
    """Most recent set of an exercise among the caller's workouts, or null."""
    sets = _recent_sets(user["id"], exercise_id, 1)
    if not sets:
        return None
    entry = sets[0]
    return {key: entry[key] for key in ("weight", "reps", "distance_km", "duration_minutes", "plank_seconds")}


@router.get("/exercises/{exercise_id}/recent-sets")
def recent_sets(exercise_id: str, limit: int = Query(3, ge=1, le=50),
                user: dict = Depends(get_current_user)):
    return _recent_sets(user["id"], exercise_id, limit)


def _recent_sets(user_id: str, exercise_id: str, limit: int):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(f"""
            SELECT {SET_VALUE_COLUMNS}, w.date, ws.created_at
            FROM workout_sets ws
            JOIN workouts w ON w.id = ws.workout_id
            WHERE ws.exercise_id = ? AND w.user_id = ?
            ORDER BY ws.created_at DESC
            LIMIT ?
        """, (exercise_id, user_id, limit))
        return [dict(row) for row in cursor.fetchall()]


# ==================== Favorites ====================


@router.get("/favorites")
def list_favorites(user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT exercise_id FROM favorite_exercises WHERE user_id = ? ORDER BY created_at",
            (user["id"],),
        )
        return {"exercise_ids": [row["exercise_id"] for row in cursor.fetchall()]}


@router.post("/favorites/{exercise_id}")
def add_favorite(exercise_id: str, user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT 1 FROM exercises WHERE id = ?", (exercise_id,))
        if not cursor.fetchone():
            raise HTTPException(status_code=404, detail="Exercise not found")
        try:
            cursor.execute("""
                INSERT INTO favorite_exercises (id, user_id, exercise_id, created_at)
                VALUES (?, ?, ?, ?)
            """, (db.new_id(), user["id"], exercise_id, db.get_utc_now()))
        except sqlite3.IntegrityError:
            raise HTTPException(status_code=409, detail="Exercise is already a favorite")
        conn.commit()
    return {"success": True}


@router.delete("/favorites/{exercise_id}")
def remove_favorite(exercise_id: str, user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        conn.execute(
            "DELETE FROM favorite_exercises WHERE user_id = ? AND exercise_id = ?",
            (user["id"], exercise_id),
        )
        conn.commit()
    return {"success": True}
