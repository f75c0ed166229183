"""
Reppy Workout Tracker Server - FastAPI backend with SQLite
Workouts, friends, reports and admin maintenance for the Reppy client
"""
import logging
import sys
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from reppy import __version__, db
from reppy.api import admin, auth as auth_api, exercises, friends, functions, logs, profiles, workouts
from reppy.auth import hash_password
from reppy.config import get_settings, reset_settings

logger = logging.getLogger(__name__)

# Cache busting: unique version generated on each server start
SERVER_VERSION = uuid.uuid4().hex[:8]


def is_pytest_running() -> bool:
    """Check if running under pytest (tests control their own data)."""
    return "pytest" in sys.modules


@asynccontextmanager
async def lifespan(app):
    # test fixtures patch db.DATABASE_PATH and initialise it themselves
    if not is_pytest_running():
        settings = get_settings()
        settings.validate()
        db.DATABASE_PATH = settings.db_path
        db.init_database()
        if settings.test_mode:
            seed_test_data()
    yield


app = FastAPI(title="Reppy Workout Tracker Server", version=__version__, lifespan=lifespan)

# CORS middleware - allow all origins for development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (auth_api, profiles, exercises, workouts, friends, logs, admin, functions):
    app.include_router(module.router)


class StatusResponse(BaseModel):
    serverVersion: str
    schemaVersion: int
    serverTime: str
    lastModified: Optional[str] = None


@app.get("/api/status", response_model=StatusResponse)
def status():
    """Server build id, schema version and the latest workout change."""
    with db.get_db() as conn:
        cursor = conn.cursor()
        schema_version = db.get_schema_version(cursor)
        cursor.execute("SELECT MAX(updated_at) FROM workouts")
        last_modified = cursor.fetchone()[0]
    return StatusResponse(
        serverVersion=SERVER_VERSION,
        schemaVersion=schema_version,
        serverTime=db.get_utc_now(),
        lastModified=last_modified,
    )


def seed_test_data():
    """Seed the test database with a demo user, an admin and a week of workouts."""
    today = datetime.now().date()
    now = db.get_utc_now()

    with db.get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT 1 FROM users WHERE email = 'demo@reppy.test'")
        if cursor.fetchone():
            return

        demo_id, admin_id = db.new_id(), db.new_id()
        for user_id, email, name, username, is_admin in [
            (demo_id, "demo@reppy.test", "Demo Lifter", "demo", 0),
            (admin_id, "admin@reppy.test", "Admin", "admin", 1),
        ]:
            cursor.execute("""
                INSERT INTO users (id, email, password_hash, created_at) VALUES (?, ?, ?, ?)
            """, (user_id, email, hash_password("password"), now))
            cursor.execute("""
                INSERT INTO profiles (id, user_id, display_name, username, current_weight, is_admin, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (db.new_id(), user_id, name, username, 80, is_admin, now))

        cursor.execute("SELECT id, name FROM exercises WHERE is_preset = 1")
        presets = {row["name"]: row["id"] for row in cursor.fetchall()}

        plan = [
            (6, [("Bench Press", {"reps": 8, "weight": 60}), ("Bench Press", {"reps": 8, "weight": 62.5})]),
            (4, [("Push-ups", {"reps": 20}), ("Plank", {"plank_seconds": 90})]),
            (2, [("Running", {"distance_km": 5, "duration_minutes": 28})]),
            (1, [("Deadlift", {"reps": 5, "weight": 100}), ("Pull-ups", {"reps": 10})]),
        ]
        for days_ago, sets in plan:
            workout_id = db.new_id()
            cursor.execute("""
                INSERT INTO workouts (id, user_id, date, notes, is_locked, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, ?)
            """, (workout_id, demo_id, (today - timedelta(days=days_ago)).isoformat(), None, now, now))
            for number, (exercise_name, values) in enumerate(sets, start=1):
                cursor.execute("""
                    INSERT INTO workout_sets
                    (id, workout_id, exercise_id, set_number, reps, weight, distance_km,
                     duration_minutes, plank_seconds, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    db.new_id(), workout_id, presets[exercise_name], number,
                    values.get("reps"), values.get("weight"), values.get("distance_km"),
                    values.get("duration_minutes"), values.get("plank_seconds"), now,
                ))

        conn.commit()

    logger.info("Seeded test data: demo@reppy.test and admin@reppy.test (password 'password')")


if __name__ == "__main__":
    import argparse
    import os
    import uvicorn

    parser = argparse.ArgumentParser(description="Reppy Workout Tracker Server")
    parser.add_argument("--test", action="store_true", help="Run in testing mode (port 8003, separate database)")
    parser.add_argument("--port", type=int, help="Override the port number")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # Configure for test mode via environment variable
    if args.test:
        os.environ["REPPY_TEST_MODE"] = "true"
        reset_settings()
        logger.info("Starting in TEST MODE")

    port = args.port if args.port else (8003 if args.test else 8002)
    uvicorn.run(app, host="0.0.0.0", port=port)
