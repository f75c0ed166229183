"""Administrator endpoints: statistics, users, cleanup candidates and logs."""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from reppy import db, stats
from reppy.auth import require_admin
from .models import AdminFlagUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

LOGS_PAGE_SIZE = 50


@router.get("/stats")
def get_stats(admin: dict = Depends(require_admin)):
    with db.get_db() as conn:
        return stats.admin_stats(conn)


@router.get("/users")
def list_users(search: str = "", admin: dict = Depends(require_admin)):
    with db.get_db() as conn:
        return stats.admin_users(conn, search)


@router.patch("/users/{user_id}/admin")
def set_admin_flag(user_id: str, payload: AdminFlagUpdate, admin: dict = Depends(require_admin)):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "UPDATE profiles SET is_admin = ? WHERE user_id = ?",
            (int(payload.is_admin), user_id),
        )
        if cursor.rowcount == 0:
            raise HTTPException(status_code=404, detail="User not found")
        conn.commit()
    logger.info("Admin %s set is_admin=%s for %s", admin["id"], payload.is_admin, user_id)
    return {"success": True}


@router.delete("/users/{user_id}")
def delete_user(user_id: str, admin: dict = Depends(require_admin)):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT 1 FROM users WHERE id = ?", (user_id,))
        if not cursor.fetchone():
            raise HTTPException(status_code=404, detail="User not found")
        stats.delete_account_cascade(conn, user_id)
        conn.commit()
    return {"success": True}


# ==================== Cleanup ====================


@router.get("/cleanup/empty-workouts")
def empty_workouts(admin: dict = Depends(require_admin)):
    with db.get_db() as conn:
        return stats.empty_workouts(conn)


@router.get("/cleanup/inactive-users")
def inactive_users(days: int = Query(30, ge=1), admin: dict = Depends(require_admin)):
    with db.get_db() as conn:
        return stats.inactive_users(conn, days)


@router.get("/cleanup/orphaned-sets")
def orphaned_sets(admin: dict = Depends(require_admin)):
    with db.get_db() as conn:
        return {"count": len(stats.orphaned_set_ids(conn))}


# ==================== Logs ====================


@router.get("/logs")
def list_logs(
    level: Optional[str] = None,
    user_id: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(LOGS_PAGE_SIZE, ge=1, le=500),
    admin: dict = Depends(require_admin),
):
    """Filtered logs, newest first. ``date_to`` includes the whole day."""
    if date_to:
        try:
            date.fromisoformat(date_to)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid date_to: {date_to}")
    with db.get_db() as conn:
        return stats.list_logs(conn, level, user_id, search, date_from, date_to, page, page_size)


@router.get("/logs/stats")
def get_log_stats(admin: dict = Depends(require_admin)):
    with db.get_db() as conn:
        return stats.log_stats(conn)


@router.delete("/logs/old")
def clear_old_logs(days_old: int = Query(30, ge=0), admin: dict = Depends(require_admin)):
    with db.get_db() as conn:
        count = stats.clear_old_logs(conn, days_old)
        conn.commit()
    logger.info("Cleared %d logs older than %d days", count, days_old)
    return {"count": count}


@router.delete("/logs/{log_id}")
def delete_log(log_id: str, admin: dict = Depends(require_admin)):
    with db.get_db() as conn:
        conn.execute("DELETE FROM app_logs WHERE id = ?", (log_id,))
        conn.commit()
    return {"success": True}


@router.delete("/logs")
def clear_all_logs(admin: dict = Depends(require_admin)):
    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM app_logs")
        count = cursor.rowcount
        conn.commit()
    return {"count": count}
