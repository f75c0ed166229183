"""Client error reports."""
import json
import logging

from fastapi import APIRouter, Depends

from reppy import db
from reppy.auth import get_current_user
from .models import LogBatch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["logs"])

MAX_MESSAGE_LENGTH = 1000
MAX_STACK_LENGTH = 5000
MAX_USER_AGENT_LENGTH = 500


def _truncate(value, limit):
    return value[:limit] if value else value


@router.post("/logs")
def insert_logs(batch: LogBatch, user: dict = Depends(get_current_user)):
    """Store a batch of client log entries for the caller."""
    now = db.get_utc_now()
    rows = [
        (
            db.new_id(),
            user["id"],
            entry.level,
            _truncate(entry.message, MAX_MESSAGE_LENGTH),
            _truncate(entry.stack, MAX_STACK_LENGTH),
            entry.url,
            _truncate(entry.user_agent, MAX_USER_AGENT_LENGTH),
            json.dumps(entry.metadata),
            now,
        )
        for entry in batch.entries
    ]
    with db.get_db() as conn:
        conn.executemany("""
            INSERT INTO app_logs
            (id, user_id, level, message, stack, url, user_agent, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, rows)
        conn.commit()
    return {"inserted": len(rows)}
