"""
Account and maintenance functions under /functions/v1.

These keep the plain ``{"error": ...}`` JSON contract instead of FastAPI's
``detail`` bodies.
"""
import json
import logging

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from reppy import db, stats
from reppy.auth import user_from_authorization

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["functions"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _read_body(request: Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


# ==================== Work ====================


def _run_cleanup(action: str, ids) -> int:
    with db.get_db() as conn:
        if action == "deleteEmptyWorkouts":
            count = stats.delete_in_batches(conn, "workouts", ids)
        elif action == "deleteOrphanedSets":
            count = stats.delete_orphaned_sets(conn)
        else:
            count = stats.delete_in_batches(conn, "exercises", ids)
        conn.commit()
    return count


def _run_delete_exercise(exercise_id: str) -> None:
    with db.get_db() as conn:
        stats.delete_exercise_cascade(conn, exercise_id)
        conn.commit()


def _run_delete_account(user_id: str) -> None:
    with db.get_db() as conn:
        stats.delete_account_cascade(conn, user_id)
        conn.commit()


# ==================== Endpoints ====================


@router.post("/admin-cleanup")
async def admin_cleanup(request: Request):
    authorization = request.headers.get("authorization")
    if not authorization:
        return _error(401, "No authorization header")

    body = await _read_body(request)
    action = body.get("action")
    if not action:
        return _error(400, "action is required")

    user = await run_in_threadpool(user_from_authorization, authorization)
    if not user:
        return _error(401, "Invalid token or user not found")
    if not user["is_admin"]:
        return _error(403, "Unauthorized: Admin access required")

    ids = body.get("ids")
    if action in ("deleteEmptyWorkouts", "deleteUnusedExercises"):
        if not isinstance(ids, list) or not ids:
            return _error(400, f"ids array is required for {action}")
    elif action != "deleteOrphanedSets":
        return _error(400, f"Unknown action: {action}")

    try:
        count = await run_in_threadpool(_run_cleanup, action, ids)
    except Exception as e:
        logger.exception("Error in admin-cleanup function")
        return _error(500, str(e) or "Internal server error")

    logger.info("admin-cleanup %s by %s removed %d rows", action, user["id"], count)
    return {"success": True, "count": count}


@router.post("/admin-delete-exercise")
async def admin_delete_exercise(request: Request):
    authorization = request.headers.get("authorization")
    if not authorization:
        return _error(401, "No authorization header")

    body = await _read_body(request)
    exercise_id = body.get("exerciseId")
    if not exercise_id:
        return _error(400, "exerciseId is required")

    user = await run_in_threadpool(user_from_authorization, authorization)
    if not user:
        return _error(401, "Invalid token or user not found")
    if not user["is_admin"]:
        return _error(403, "Unauthorized: Admin access required")

    try:
        await run_in_threadpool(_run_delete_exercise, exercise_id)
    except Exception as e:
        logger.exception("Error in admin-delete-exercise function")
        return _error(500, f"Failed to delete exercise: {e}")

    return {"success": True, "message": "Exercise deleted successfully"}


@router.post("/delete-account")
async def delete_account(request: Request):
    authorization = request.headers.get("authorization")
    if not authorization:
        return _error(401, "No authorization header")

    user = await run_in_threadpool(user_from_authorization, authorization)
    if not user:
        return _error(401, "Invalid token or user not found")

    try:
        await run_in_threadpool(_run_delete_account, user["id"])
    except Exception as e:
        logger.exception("Error in delete-account function")
        return _error(500, f"Failed to delete user account: {e}")

    return {"success": True, "message": "Account deleted successfully"}
