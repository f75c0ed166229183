"""
Workouts, sets, share links, monthly reports and the leaderboard.
"""
import calendar
import logging
import secrets
import sqlite3
from datetime import date, datetime, timedelta, timezone
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from reppy import db, stats
from reppy.auth import get_current_user
from reppy.limits import LIMITS, LimitExceeded, check_set_counts, validate_notes, validate_set_values
from reppy.reports import calculate_monthly_report, render_monthly_report_pdf
from .models import SetCreate, SetUpdate, WorkoutCreate, WorkoutUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["workouts"])

SHARE_EXPIRATION_DAYS = 30
BASE62_CHARS = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"


# ==================== Helpers ====================


def month_bounds(month: Optional[str]):
    """First and last ISO day of a ``YYYY-MM`` month (current month if None)."""
    if month:
        try:
            year, mon = (int(part) for part in month.split("-"))
            first = date(year, mon, 1)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid month: {month}")
    else:
        first = date.today().replace(day=1)
    last = first.replace(day=calendar.monthrange(first.year, first.month)[1])
    return first, last


def attach_sets(conn, workouts):
    """Attach ``workout_sets`` (each with its ``exercise``) to workout dicts."""
    if not workouts:
        return workouts
    by_id = {w["id"]: w for w in workouts}
    for workout in workouts:
        workout["workout_sets"] = []

    placeholders = ", ".join("?" for _ in by_id)
    cursor = conn.cursor()
    cursor.execute(f"""
        SELECT ws.*, e.name AS exercise_name, e.type AS exercise_type, e.image_url AS exercise_image_url
        FROM workout_sets ws
        LEFT JOIN exercises e ON e.id = ws.exercise_id
        WHERE ws.workout_id IN ({placeholders})
        ORDER BY ws.created_at, ws.set_number
    """, list(by_id))
    for row in cursor.fetchall():
        set_row = dict(row)
        name = set_row.pop("exercise_name")
        exercise_type = set_row.pop("exercise_type")
        image_url = set_row.pop("exercise_image_url")
        set_row["exercise"] = None if name is None else {
            "id": set_row["exercise_id"], "name": name, "type": exercise_type, "image_url": image_url,
        }
        by_id[set_row["workout_id"]]["workout_sets"].append(set_row)
    return workouts


def fetch_workouts(conn, user_id: str, start: Optional[str] = None, end: Optional[str] = None):
    query = "SELECT * FROM workouts WHERE user_id = ?"
    params = [user_id]
    if start:
        query += " AND date >= ?"
        params.append(start)
    if end:
        query += " AND date <= ?"
        params.append(end)
    query += " ORDER BY date DESC, created_at DESC"
    cursor = conn.cursor()
    cursor.execute(query, params)
    return attach_sets(conn, [db.row_to_dict(row) for row in cursor.fetchall()])


def _owned_workout(conn, workout_id: str, user_id: str) -> dict:
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM workouts WHERE id = ?", (workout_id,))
    workout = db.row_to_dict(cursor.fetchone())
    if not workout:
        raise HTTPException(status_code=404, detail="Workout not found")
    if workout["user_id"] != user_id:
        raise HTTPException(status_code=403, detail="Not your workout")
    return workout


def _ensure_unlocked(workout: dict):
    if workout["is_locked"]:
        raise HTTPException(status_code=409, detail="Workout is locked")


def _touch(conn, workout_id: str):
    conn.execute("UPDATE workouts SET updated_at = ? WHERE id = ?", (db.get_utc_now(), workout_id))


def _owned_set(conn, set_id: str, user_id: str):
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM workout_sets WHERE id = ?", (set_id,))
    set_row = cursor.fetchone()
    if not set_row:
        raise HTTPException(status_code=404, detail="Set not found")
    workout = _owned_workout(conn, set_row["workout_id"], user_id)
    return dict(set_row), workout


def generate_share_token(nbytes: int = 8) -> str:
    num = int.from_bytes(secrets.token_bytes(nbytes), "big")
    result = ""
    while num > 0:
        num, rem = divmod(num, 62)
        result = BASE62_CHARS[rem] + result
    return result or "0"


def _active_share(conn, workout_id: str):
    cursor = conn.cursor()
    cursor.execute("""
        SELECT * FROM workout_shares
        WHERE workout_id = ? AND is_active = 1 AND expires_at > ?
    """, (workout_id, db.get_utc_now()))
    return db.row_to_dict(cursor.fetchone())


# ==================== Workouts ====================


@router.get("/workouts")
def list_workouts(month: Optional[str] = Query(None, description="YYYY-MM"),
                  since: Optional[str] = Query(None, description="YYYY-MM-DD"),
                  user: dict = Depends(get_current_user)):
    """Own workouts with nested sets, newest first, for one month or since a date."""
    start, end = since, None
    if month:
        first, last = month_bounds(month)
        start, end = first.isoformat(), last.isoformat()
    with db.get_db() as conn:
        return fetch_workouts(conn, user["id"], start, end)


@router.post("/workouts")
def create_workout(payload: WorkoutCreate, user: dict = Depends(get_current_user)):
    workout_date = payload.date or date.today().isoformat()
    try:
        validate_notes(payload.notes)
    except LimitExceeded as e:
        raise HTTPException(status_code=422, detail=str(e))

    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT COUNT(*) FROM workouts WHERE user_id = ? AND date = ?",
            (user["id"], workout_date),
        )
        if cursor.fetchone()[0] >= LIMITS["MAX_WORKOUTS_PER_DAY"]:
            raise HTTPException(
                status_code=422,
                detail=f"Maximum {LIMITS['MAX_WORKOUTS_PER_DAY']} workouts per day",
            )

        now = db.get_utc_now()
        workout = {
            "id": db.new_id(),
            "user_id": user["id"],
            "date": workout_date,
            "notes": payload.notes,
            "photo_url": payload.photo_url,
            "is_locked": False,
            "created_at": now,
            "updated_at": now,
        }
        cursor.execute("""
            INSERT INTO workouts (id, user_id, date, notes, photo_url, is_locked, created_at, updated_at)
            VALUES (:id, :user_id, :date, :notes, :photo_url, 0, :created_at, :updated_at)
        """, workout)
        conn.commit()
    workout["workout_sets"] = []
    return workout


@router.get("/workouts/{workout_id}")
def get_workout(workout_id: str, user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        workout = _owned_workout(conn, workout_id, user["id"])
        return attach_sets(conn, [workout])[0]


@router.patch("/workouts/{workout_id}")
def update_workout(workout_id: str, payload: WorkoutUpdate, user: dict = Depends(get_current_user)):
    """Update notes, photo or the lock flag. Locked workouts only accept unlocking."""
    changes = payload.model_dump(exclude_unset=True)
    try:
        validate_notes(changes.get("notes"))
    except LimitExceeded as e:
        raise HTTPException(status_code=422, detail=str(e))

    with db.get_db() as conn:
        workout = _owned_workout(conn, workout_id, user["id"])
        content_changes = {k: v for k, v in changes.items() if k != "is_locked"}
        if content_changes and workout["is_locked"] and changes.get("is_locked") is not False:
            raise HTTPException(status_code=409, detail="Workout is locked")

        if changes:
            changes["updated_at"] = db.get_utc_now()
            if "is_locked" in changes:
                changes["is_locked"] = int(changes["is_locked"])
            assignments = ", ".join(f"{column} = ?" for column in changes)
            conn.execute(
                f"UPDATE workouts SET {assignments} WHERE id = ?",
                list(changes.values()) + [workout_id],
            )
            conn.commit()
        updated = _owned_workout(conn, workout_id, user["id"])
        return attach_sets(conn, [updated])[0]


@router.delete("/workouts/{workout_id}")
def delete_workout(workout_id: str, user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        workout = _owned_workout(conn, workout_id, user["id"])
        _ensure_unlocked(workout)
        stats.delete_workout_cascade(conn, workout_id)
        conn.commit()
    return {"success": True}


# ==================== Sets ====================


@router.post("/workouts/{workout_id}/sets")
def add_set(workout_id: str, payload: SetCreate, user: dict = Depends(get_current_user)):
    """Add a set, enforcing the per-workout exercise and set limits."""
    values = payload.model_dump()
    try:
        validate_set_values(values)
    except LimitExceeded as e:
        raise HTTPException(status_code=422, detail=str(e))

    with db.get_db() as conn:
        workout = _owned_workout(conn, workout_id, user["id"])
        _ensure_unlocked(workout)
        cursor = conn.cursor()

        cursor.execute("SELECT 1 FROM exercises WHERE id = ?", (payload.exercise_id,))
        if not cursor.fetchone():
            raise HTTPException(status_code=404, detail="Exercise not found")

        cursor.execute("""
            SELECT COUNT(*) AS total,
                   COUNT(DISTINCT exercise_id) AS exercises,
                   COALESCE(SUM(exercise_id = ?), 0) AS for_exercise
            FROM workout_sets WHERE workout_id = ?
        """, (payload.exercise_id, workout_id))
        counts = cursor.fetchone()

        try:
            check_set_counts(counts["total"], counts["exercises"], counts["for_exercise"])
        except LimitExceeded as e:
            raise HTTPException(status_code=422, detail=str(e))

        set_row = dict(values)
        set_row.update({
            "id": db.new_id(),
            "workout_id": workout_id,
            "set_number": payload.set_number or counts["for_exercise"] + 1,
            "created_at": db.get_utc_now(),
        })
        cursor.execute("""
            INSERT INTO workout_sets
            (id, workout_id, exercise_id, set_number, reps, weight, distance_km,
             duration_minutes, plank_seconds, created_at)
            VALUES (:id, :workout_id, :exercise_id, :set_number, :reps, :weight, :distance_km,
                    :duration_minutes, :plank_seconds, :created_at)
        """, set_row)
        _touch(conn, workout_id)
        conn.commit()
    return set_row


@router.patch("/sets/{set_id}")
def update_set(set_id: str, payload: SetUpdate, user: dict = Depends(get_current_user)):
    changes = payload.model_dump(exclude_unset=True)
    try:
        validate_set_values(changes)
    except LimitExceeded as e:
        raise HTTPException(status_code=422, detail=str(e))

    with db.get_db() as conn:
        set_row, workout = _owned_set(conn, set_id, user["id"])
        _ensure_unlocked(workout)
        if changes:
            assignments = ", ".join(f"{column} = ?" for column in changes)
            conn.execute(
                f"UPDATE workout_sets SET {assignments} WHERE id = ?",
                list(changes.values()) + [set_id],
            )
            _touch(conn, workout["id"])
            conn.commit()
        set_row.update(changes)
    return set_row


@router.delete("/sets/{set_id}")
def delete_set(set_id: str, user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        _, workout = _owned_set(conn, set_id, user["id"])
        _ensure_unlocked(workout)
        conn.execute("DELETE FROM workout_sets WHERE id = ?", (set_id,))
        _touch(conn, workout["id"])
        conn.commit()
    return {"success": True}


# ==================== Shares ====================


@router.get("/workouts/{workout_id}/share")
def get_share(workout_id: str, user: dict = Depends(get_current_user)):
    """The active, unexpired share link of a workout, or null."""
    with db.get_db() as conn:
        _owned_workout(conn, workout_id, user["id"])
        return _active_share(conn, workout_id)


@router.post("/workouts/{workout_id}/share")
def create_share(workout_id: str, user: dict = Depends(get_current_user)):
    """Return the existing active share or create one valid for 30 days."""
    with db.get_db() as conn:
        _owned_workout(conn, workout_id, user["id"])
        existing = _active_share(conn, workout_id)
        if existing:
            return existing

        now = datetime.now(timezone.utc)
        share = {
            "id": db.new_id(),
            "workout_id": workout_id,
            "user_id": user["id"],
            "share_token": generate_share_token(),
            "is_active": True,
            "created_at": db.get_utc_now(),
            "expires_at": (now + timedelta(days=SHARE_EXPIRATION_DAYS)).isoformat().replace("+00:00", "Z"),
        }
        cursor = conn.cursor()
        # expired rows would still hold the active-workout index
        cursor.execute(
            "DELETE FROM workout_shares WHERE workout_id = ? AND expires_at <= ?",
            (workout_id, share["created_at"]),
        )
        try:
            cursor.execute("""
                INSERT INTO workout_shares
                (id, workout_id, user_id, share_token, is_active, created_at, expires_at)
                VALUES (:id, :workout_id, :user_id, :share_token, 1, :created_at, :expires_at)
            """, share)
            conn.commit()
        except sqlite3.IntegrityError:
            conn.rollback()
            winner = _active_share(conn, workout_id)
            if winner:
                return winner
            raise
    return share


@router.delete("/shares/{share_id}")
def deactivate_share(share_id: str, user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT user_id FROM workout_shares WHERE id = ?", (share_id,))
        row = cursor.fetchone()
        if not row:
            raise HTTPException(status_code=404, detail="Share not found")
        if row["user_id"] != user["id"]:
            raise HTTPException(status_code=403, detail="Not your share")
        cursor.execute("DELETE FROM workout_shares WHERE id = ?", (share_id,))
        conn.commit()
    return {"success": True}


@router.get("/shared/{share_token}")
def get_shared_workout(share_token: str):
    """Public view of a shared workout."""
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM workout_shares
            WHERE share_token = ? AND is_active = 1 AND expires_at > ?
        """, (share_token, db.get_utc_now()))
        share = db.row_to_dict(cursor.fetchone())
        if not share:
            raise HTTPException(status_code=404, detail="Shared workout not found")

        cursor.execute("SELECT * FROM workouts WHERE id = ?", (share["workout_id"],))
        workout = db.row_to_dict(cursor.fetchone())
        if not workout:
            raise HTTPException(status_code=404, detail="Shared workout not found")
        attach_sets(conn, [workout])

        cursor.execute(
            "SELECT display_name, avatar FROM profiles WHERE user_id = ?", (workout["user_id"],)
        )
        owner = cursor.fetchone()
        workout["owner"] = dict(owner) if owner else None
    return {"share": share, "workout": workout}


# ==================== Reports ====================


def _month_report(user: dict, month: Optional[str]):
    first, last = month_bounds(month)
    with db.get_db() as conn:
        workouts = fetch_workouts(conn, user["id"], first.isoformat(), last.isoformat())
    return first, calculate_monthly_report(workouts)


@router.get("/reports/monthly")
def monthly_report(month: Optional[str] = Query(None, description="YYYY-MM"),
                   user: dict = Depends(get_current_user)):
    first, report = _month_report(user, month)
    report["month"] = first.strftime("%Y-%m")
    return report


@router.get("/reports/monthly/pdf")
def monthly_report_pdf(month: Optional[str] = Query(None, description="YYYY-MM"),
                       user: dict = Depends(get_current_user)):
    first, report = _month_report(user, month)
    pdf = render_monthly_report_pdf(report, user["display_name"] or user["email"], first)
    filename = f"reppy-report-{first:%Y-%m}.pdf"
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ==================== Leaderboard ====================


@router.get("/leaderboard")
def get_leaderboard(exercise: str = Query(..., min_length=1),
                    period: Literal["all", "month"] = "all",
                    user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        return stats.leaderboard(conn, exercise, period)
