"""
Authentication: password hashing, bearer tokens and FastAPI dependencies.
"""
import logging
import random
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Header, HTTPException, Depends
from werkzeug.security import check_password_hash, generate_password_hash

from . import db
from .config import get_settings

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, stored: str) -> bool:
    return check_password_hash(stored, password)


def generate_username(email: str) -> str:
    """Username from the email local part: lowercase, [a-z0-9_] only, random suffix."""
    local = email.split("@")[0].lower()
    return re.sub(r"[^a-z0-9_]", "", local) + str(random.randrange(1000))


def create_access_token(user_id: str) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(hours=settings.token_ttl_hours),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=TOKEN_ALGORITHM)


def decode_access_token(token: str) -> Optional[str]:
    """Return the user id in a valid token, or None."""
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[TOKEN_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired access token")
        return None
    except jwt.InvalidTokenError:
        return None
    return payload.get("sub")


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def load_user(conn, user_id: str) -> Optional[dict]:
    """Fetch the auth user joined with its profile flags."""
    cursor = conn.cursor()
    cursor.execute("""
        SELECT u.id, u.email, p.display_name, p.username, COALESCE(p.is_admin, 0) AS is_admin
        FROM users u
        LEFT JOIN profiles p ON p.user_id = u.id
        WHERE u.id = ?
    """, (user_id,))
    return db.row_to_dict(cursor.fetchone())


def user_from_authorization(authorization: Optional[str]) -> Optional[dict]:
    """Resolve an Authorization header to a user dict, or None if invalid."""
    token = parse_bearer(authorization)
    if not token:
        return None
    user_id = decode_access_token(token)
    if not user_id:
        return None
    with db.get_db() as conn:
        return load_user(conn, user_id)


def get_current_user(authorization: Optional[str] = Header(None)) -> dict:
    """FastAPI dependency: the authenticated user, or 401."""
    if not authorization:
        raise HTTPException(status_code=401, detail="No authorization header")
    user = user_from_authorization(authorization)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token or user not found")
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    """FastAPI dependency: the authenticated admin, or 403."""
    if not user["is_admin"]:
        raise HTTPException(status_code=403, detail="Unauthorized: Admin access required")
    return user
