"""Friendships: requests, acceptance, search and status."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from reppy import db
from reppy.auth import get_current_user
from .models import FriendRequestCreate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["friends"])

SEARCH_LIMIT = 10


def _profiles_by_user(conn, user_ids):
    if not user_ids:
        return {}
    placeholders = ", ".join("?" for _ in user_ids)
    cursor = conn.cursor()
    cursor.execute(f"""
        SELECT user_id, display_name, username, avatar
        FROM profiles WHERE user_id IN ({placeholders})
    """, list(user_ids))
    return {row["user_id"]: dict(row) for row in cursor.fetchall()}


def _with_profiles(conn, friendships, key, other_id):
    """Attach the other party's profile to each friendship under ``key``."""
    profiles = _profiles_by_user(conn, {other_id(f) for f in friendships})
    for friendship in friendships:
        uid = other_id(friendship)
        friendship[key] = profiles.get(uid) or {
            "user_id": uid, "display_name": None, "username": None, "avatar": None,
        }
    return friendships


def _get_friendship(conn, friendship_id):
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM friendships WHERE id = ?", (friendship_id,))
    friendship = cursor.fetchone()
    if not friendship:
        raise HTTPException(status_code=404, detail="Friendship not found")
    return dict(friendship)


@router.get("/friends")
def list_friends(user: dict = Depends(get_current_user)):
    """Accepted friendships with the other party's profile as ``friend``."""
    uid = user["id"]
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM friendships
            WHERE status = 'accepted' AND (requester_id = ? OR addressee_id = ?)
        """, (uid, uid))
        friendships = [dict(row) for row in cursor.fetchall()]
        return _with_profiles(
            conn, friendships, "friend",
            lambda f: f["addressee_id"] if f["requester_id"] == uid else f["requester_id"],
        )


@router.get("/friends/requests/pending")
def pending_requests(user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM friendships
            WHERE addressee_id = ? AND status = 'pending'
            ORDER BY created_at DESC
        """, (user["id"],))
        requests = [dict(row) for row in cursor.fetchall()]
        return _with_profiles(conn, requests, "requester", lambda f: f["requester_id"])


@router.get("/friends/requests/sent")
def sent_requests(user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM friendships
            WHERE requester_id = ? AND status = 'pending'
            ORDER BY created_at DESC
        """, (user["id"],))
        requests = [dict(row) for row in cursor.fetchall()]
        return _with_profiles(conn, requests, "addressee", lambda f: f["addressee_id"])


@router.get("/friends/requests/count")
def pending_count(user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT COUNT(*) FROM friendships WHERE addressee_id = ? AND status = 'pending'",
            (user["id"],),
        )
        return {"count": cursor.fetchone()[0]}


@router.get("/users/search")
def search_users(q: str = Query(""), user: dict = Depends(get_current_user)):
    """Match display name or username; a leading @ is ignored."""
    if len(q) < 2:
        return []
    term = q[1:] if q.startswith("@") else q
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT user_id, display_name, username, avatar
            FROM profiles
            WHERE user_id != ?
              AND (display_name LIKE ? OR username LIKE ?)
            ORDER BY display_name
            LIMIT ?
        """, (user["id"], f"%{term}%", f"%{term}%", SEARCH_LIMIT))
        return [dict(row) for row in cursor.fetchall()]


@router.post("/friends/requests")
def send_request(payload: FriendRequestCreate, user: dict = Depends(get_current_user)):
    uid, target = user["id"], payload.addressee_id
    if uid == target:
        raise HTTPException(status_code=400, detail="Cannot send a friend request to yourself")

    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT 1 FROM profiles WHERE user_id = ?", (target,))
        if not cursor.fetchone():
            raise HTTPException(status_code=404, detail="User not found")

        cursor.execute("""
            SELECT 1 FROM friendships
            WHERE (requester_id = ? AND addressee_id = ?)
               OR (requester_id = ? AND addressee_id = ?)
        """, (uid, target, target, uid))
        if cursor.fetchone():
            raise HTTPException(status_code=409, detail="Friendship already exists")

        now = db.get_utc_now()
        friendship = {
            "id": db.new_id(),
            "requester_id": uid,
            "addressee_id": target,
            "status": "pending",
            "created_at": now,
            "updated_at": now,
        }
        cursor.execute("""
            INSERT INTO friendships (id, requester_id, addressee_id, status, created_at, updated_at)
            VALUES (:id, :requester_id, :addressee_id, :status, :created_at, :updated_at)
        """, friendship)
        conn.commit()
    return friendship


def _respond(friendship_id: str, user: dict, status: str):
    with db.get_db() as conn:
        friendship = _get_friendship(conn, friendship_id)
        if friendship["addressee_id"] != user["id"]:
            raise HTTPException(status_code=403, detail="Only the addressee can respond")
        friendship["status"] = status
        friendship["updated_at"] = db.get_utc_now()
        conn.execute(
            "UPDATE friendships SET status = ?, updated_at = ? WHERE id = ?",
            (status, friendship["updated_at"], friendship_id),
        )
        conn.commit()
    return friendship


@router.post("/friends/requests/{friendship_id}/accept")
def accept_request(friendship_id: str, user: dict = Depends(get_current_user)):
    return _respond(friendship_id, user, "accepted")


@router.post("/friends/requests/{friendship_id}/reject")
def reject_request(friendship_id: str, user: dict = Depends(get_current_user)):
    return _respond(friendship_id, user, "rejected")


@router.delete("/friends/{friendship_id}")
def remove_friendship(friendship_id: str, user: dict = Depends(get_current_user)):
    """Remove a friend or cancel a request; either party may do it."""
    with db.get_db() as conn:
        friendship = _get_friendship(conn, friendship_id)
        if user["id"] not in (friendship["requester_id"], friendship["addressee_id"]):
            raise HTTPException(status_code=403, detail="Not your friendship")
        conn.execute("DELETE FROM friendships WHERE id = ?", (friendship_id,))
        conn.commit()
    return {"success": True}


@router.get("/friends/status/{user_id}")
def friendship_status(user_id: str, user: dict = Depends(get_current_user)):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM friendships
            WHERE (requester_id = ? AND addressee_id = ?)
               OR (requester_id = ? AND addressee_id = ?)
        """, (user["id"], user_id, user_id, user["id"]))
        row = cursor.fetchone()
        return dict(row) if row else None
