"""Profiles and body weight history."""
import logging
import sqlite3
from datetime import date

from fastapi import APIRouter, Depends, HTTPException

from reppy import db
from reppy.auth import get_current_user
from .models import BodyWeightCreate, ProfileUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["profiles"])

PROFILE_COLUMNS = """
    id, user_id, display_name, username, current_weight, gender,
    date_of_birth, height, avatar, is_admin, created_at
"""


def fetch_profile(conn, user_id: str):
    cursor = conn.cursor()
    cursor.execute(f"SELECT {PROFILE_COLUMNS} FROM profiles WHERE user_id = ?", (user_id,))
    return db.row_to_dict(cursor.fetchone())


@router.get("/profile")
def get_own_profile(user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        profile = fetch_profile(conn, user["id"])
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.patch("/profile")
def update_own_profile(payload: ProfileUpdate, user: dict = Depends(get_current_user)):
    """Update profile fields. The admin flag is not part of the payload."""
    changes = payload.model_dump(exclude_unset=True)
    with db.get_db() as conn:
        if changes:
            assignments = ", ".join(f"{column} = ?" for column in changes)
            try:
                conn.execute(
                    f"UPDATE profiles SET {assignments} WHERE user_id = ?",
                    list(changes.values()) + [user["id"]],
                )
            except sqlite3.IntegrityError:
                raise HTTPException(status_code=409, detail="Username already taken")
            conn.commit()
        profile = fetch_profile(conn, user["id"])
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.get("/profiles")
def list_profiles(user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT {PROFILE_COLUMNS} FROM profiles ORDER BY display_name")
        return [db.row_to_dict(row) for row in cursor.fetchall()]


@router.get("/profiles/{user_id}")
def get_profile(user_id: str, user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        profile = fetch_profile(conn, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.get("/body-weight")
def list_body_weight(user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT id, user_id, date, weight, created_at
            FROM body_weight_history
            WHERE user_id = ?
            ORDER BY date DESC, created_at DESC
        """, (user["id"],))
        return [dict(row) for row in cursor.fetchall()]


@router.post("/body-weight")
def add_body_weight(payload: BodyWeightCreate, user: dict = Depends(get_current_user)):
    """Record a body weight entry and make it the current weight."""
    entry = {
        "id": db.new_id(),
        "user_id": user["id"],
        "date": payload.date or date.today().isoformat(),
        "weight": payload.weight,
        "created_at": db.get_utc_now(),
    }
    with db.get_db() as conn:
        conn.execute("""
            INSERT INTO body_weight_history (id, user_id, date, weight, created_at)
            VALUES (:id, :user_id, :date, :weight, :created_at)
        """, entry)
        conn.execute(
            "UPDATE profiles SET current_weight = ? WHERE user_id = ?",
            (payload.weight, user["id"]),
        )
        conn.commit()
    return entry
