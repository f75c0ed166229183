"""Sign up, sign in and the current-user endpoint."""
import logging
import sqlite3

from fastapi import APIRouter, Depends, HTTPException

from reppy import db
from reppy.auth import (
    create_access_token, generate_username, get_current_user, hash_password,
    load_user, verify_password,
)
from .models import SignInRequest, SignUpRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

USERNAME_ATTEMPTS = 5


def _session(conn, user_id: str) -> dict:
    return {
        "access_token": create_access_token(user_id),
        "token_type": "bearer",
        "user": load_user(conn, user_id),
    }


@router.post("/signup")
def signup(payload: SignUpRequest):
    """Create a user and its profile, returning a session."""
    email = payload.email.strip().lower()
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT 1 FROM users WHERE email = ?", (email,))
        if cursor.fetchone():
            raise HTTPException(status_code=409, detail="User already registered")

        if payload.username:
            cursor.execute("SELECT 1 FROM profiles WHERE username = ?", (payload.username,))
            if cursor.fetchone():
                raise HTTPException(status_code=409, detail="Username already taken")
            candidates = [payload.username]
        else:
            candidates = [generate_username(email) for _ in range(USERNAME_ATTEMPTS)]

        now = db.get_utc_now()
        user_id = db.new_id()
        cursor.execute("""
            INSERT INTO users (id, email, password_hash, created_at)
            VALUES (?, ?, ?, ?)
        """, (user_id, email, hash_password(payload.password), now))

        display_name = payload.display_name or email.split("@")[0]
        for username in candidates:
            try:
                cursor.execute("""
                    INSERT INTO profiles (id, user_id, display_name, username, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (db.new_id(), user_id, display_name, username, now))
                break
            except sqlite3.IntegrityError:
                continue
        else:
            conn.rollback()
            raise HTTPException(status_code=409, detail="Username already taken")

        conn.commit()
        logger.info("Registered user %s", user_id)
        return _session(conn, user_id)


@router.post("/signin")
def signin(payload: SignInRequest):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT id, password_hash FROM users WHERE email = ?",
            (payload.email.strip().lower(),),
        )
        row = cursor.fetchone()
        if not row or not verify_password(payload.password, row["password_hash"]):
            raise HTTPException(status_code=401, detail="Invalid login credentials")
        return _session(conn, row["id"])


@router.get("/me")
def me(user: dict = Depends(get_current_user)):
    return user
