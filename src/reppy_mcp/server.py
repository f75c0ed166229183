"""Reppy MCP Server implementation.

Exposes read-only workout analytics over the Reppy database through the
Model Context Protocol, for LLM-driven training review.
"""

import calendar
import logging
import os
import sqlite3
from collections import Counter
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from reppy import stats
from reppy.api.workouts import fetch_workouts
from reppy.reports import calculate_monthly_report
from reppy.volume import calculate_total_volume
from .config import MCPConfig

logger = logging.getLogger(__name__)

SUMMARY_MAX_DAYS = 365


class SQLiteConnection:
    """Read-only SQLite connection context manager."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn = None

    def __enter__(self):
        self.conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)
        self.conn.row_factory = sqlite3.Row
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.conn:
            self.conn.close()


class DatabaseManager:
    """Runs read-only queries against the configured database."""

    def __init__(self, config: MCPConfig):
        self.config = config

    def get_connection(self):
        return SQLiteConnection(self.config.db_path)

    def execute_query(self, query: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute a query and return at most ``max_rows`` results."""
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or [])
                return [dict(row) for row in cursor.fetchmany(self.config.max_rows)]
        except sqlite3.Error as e:
            raise ValueError(f"Database error: {str(e)}")


# ==================== Query helpers ====================


def find_users(db_manager: DatabaseManager, search: str = "", limit: int = 20) -> List[Dict[str, Any]]:
    pattern = f"%{search.lstrip('@')}%"
    return db_manager.execute_query("""
        SELECT user_id, username, display_name, current_weight, height
        FROM profiles
        WHERE username LIKE ? OR display_name LIKE ?
        ORDER BY username
        LIMIT ?
    """, [pattern, pattern, limit])


def get_user_workouts(db_manager: DatabaseManager, user_id: str,
                      start_date: str, end_date: str) -> List[Dict[str, Any]]:
    with db_manager.get_connection() as conn:
        workouts = fetch_workouts(conn, user_id, start_date, end_date)
    return workouts[:db_manager.config.max_rows]


def workout_summary(db_manager: DatabaseManager, user_id: str, days: int = 30,
                    today: Optional[date] = None) -> Dict[str, Any]:
    """Counts, volume and most-used exercises over the last ``days`` days."""
    if days > SUMMARY_MAX_DAYS:
        raise ValueError(f"Days cannot exceed {SUMMARY_MAX_DAYS}")

    end = today or date.today()
    start = end - timedelta(days=days)
    workouts = get_user_workouts(db_manager, user_id, start.isoformat(), end.isoformat())
    sets = [s for w in workouts for s in w["workout_sets"]]

    profile = db_manager.execute_query(
        "SELECT current_weight FROM profiles WHERE user_id = ?", [user_id]
    )
    body_weight = profile[0]["current_weight"] if profile else None

    exercise_counts = Counter(s["exercise"]["name"] for s in sets if s.get("exercise"))
    return {
        "analysis_period_days": days,
        "workouts": len(workouts),
        "total_sets": len(sets),
        "total_reps": sum(s["reps"] or 0 for s in sets),
        "total_volume_kg": round(calculate_total_volume(sets, body_weight), 1),
        "top_exercises": dict(exercise_counts.most_common(5)),
        "recent_workout_dates": [w["date"] for w in workouts[:7]],
    }


def exercise_history(db_manager: DatabaseManager, user_id: str, exercise_name: str,
                     limit: int = 20) -> List[Dict[str, Any]]:
    return db_manager.execute_query("""
        SELECT w.date, ws.set_number, ws.reps, ws.weight, ws.distance_km,
               ws.duration_minutes, ws.plank_seconds
        FROM workout_sets ws
        JOIN workouts w ON w.id = ws.workout_id
        JOIN exercises e ON e.id = ws.exercise_id
        WHERE w.user_id = ? AND e.name = ?
        ORDER BY w.date DESC, ws.created_at DESC
        LIMIT ?
    """, [user_id, exercise_name, limit])


def parse_month(month: str):
    """First and last day of a YYYY-MM month."""
    try:
        first = datetime.strptime(month, "%Y-%m").date()
    except (TypeError, ValueError):
        raise ValueError(f"Invalid month: {month}. Use YYYY-MM")
    return first, first.replace(day=calendar.monthrange(first.year, first.month)[1])


def monthly_report(db_manager: DatabaseManager, user_id: str, month: str) -> Dict[str, Any]:
    first, last = parse_month(month)
    workouts = get_user_workouts(db_manager, user_id, first.isoformat(), last.isoformat())
    report = calculate_monthly_report(workouts)
    report["month"] = first.strftime("%Y-%m")
    return report


# ==================== Server ====================


def create_mcp_server(config: Optional[MCPConfig] = None) -> FastMCP:
    """Create and configure the Reppy MCP server."""
    if config is None:
        if "REPPY_DB_PATH" not in os.environ:
            raise ValueError("REPPY_DB_PATH environment variable must be set")
        config = MCPConfig.from_db_path(os.environ["REPPY_DB_PATH"])

    config.validate()
    db_manager = DatabaseManager(config)
    mcp = FastMCP("Reppy Workout Analytics")

    @mcp.tool()
    def search_users(search: str = "", limit: int = 20) -> List[Dict[str, Any]]:
        """WHEN TO USE: When you need a user's id before looking at their training.

        Args:
            search: Part of a username or display name ("@" prefix is ignored)
            limit: Maximum number of users to return

        Returns:
            Matching profiles with user_id, username and display name
        """
        return find_users(db_manager, search, limit)

    @mcp.tool()
    def get_workouts(user_id: str, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """WHEN TO USE: When analyzing a user's workout history in detail.

        Args:
            user_id: Profile user id
            start_date: Start date (YYYY-MM-DD)
            end_date: End date (YYYY-MM-DD)

        Returns:
            Workouts newest first, each with its sets and their exercises
        """
        return get_user_workouts(db_manager, user_id, start_date, end_date)

    @mcp.tool()
    def get_workout_summary(user_id: str, days: int = 30) -> Dict[str, Any]:
        """WHEN TO USE: When you want a quick overview of recent training.

        Args:
            user_id: Profile user id
            days: Number of recent days to analyze (max 365, default: 30)
        """
        return workout_summary(db_manager, user_id, days)

    @mcp.tool()
    def get_exercise_history(user_id: str, exercise_name: str, limit: int = 20) -> List[Dict[str, Any]]:
        """WHEN TO USE: When judging progression on one exercise.

        Returns the newest sets of the exercise with their workout dates.
        """
        return exercise_history(db_manager, user_id, exercise_name, limit)

    @mcp.tool()
    def get_monthly_report(user_id: str, month: str) -> Dict[str, Any]:
        """Monthly totals, exercise breakdown and per-day data for a YYYY-MM month."""
        return monthly_report(db_manager, user_id, month)

    @mcp.tool()
    def get_leaderboard(exercise_name: str, period: str = "all") -> List[Dict[str, Any]]:
        """Top ten users for an exercise, for all time ("all") or this month ("month")."""
        with db_manager.get_connection() as conn:
            return stats.leaderboard(conn, exercise_name, period)

    @mcp.tool()
    def get_platform_stats() -> Dict[str, Any]:
        """User, workout and exercise totals plus the most used exercises."""
        with db_manager.get_connection() as conn:
            return stats.admin_stats(conn)

    return mcp


def main():
    """Main entry point for the Reppy MCP server."""
    logging.basicConfig(level=logging.INFO)
    try:
        mcp = create_mcp_server()
        mcp.run()
    except Exception:
        logger.exception("Failed to start MCP server")
        raise


if __name__ == "__main__":
    main()
