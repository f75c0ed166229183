#!/usr/bin/env python3
"""
Bring a Reppy database up to the current schema version.

Usage:
    python bin/migrate_schema.py [--db-path reppy.db] [--dry-run]

The script:
1. Reads the stored schema version
2. Applies each pending migration in order
3. Validates that no rows were lost
4. Commits, or rolls everything back in dry-run mode
"""

import argparse
import sqlite3
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from reppy import db  # noqa: E402

COUNTED_TABLES = (
    "users", "profiles", "exercises", "workouts", "workout_sets",
    "workout_shares", "friendships", "favorite_exercises", "body_weight_history",
)


def count_rows(cursor):
    counts = {}
    for table in COUNTED_TABLES:
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,))
        if cursor.fetchone():
            cursor.execute(f"SELECT COUNT(*) FROM {table}")
            counts[table] = cursor.fetchone()[0]
    return counts


def validate_migration(before, after):
    """Compare row counts taken before and after migrating."""
    issues = []
    for table, count in before.items():
        if after.get(table) != count:
            issues.append(f"{table}: {count} rows before, {after.get(table)} after")
    return issues


def migrate(db_path, dry_run=False):
    """Apply pending migrations. Returns (applied versions, validation issues)."""
    conn = sqlite3.connect(db_path, isolation_level=None)
    cursor = conn.cursor()
    # DDL must run inside the transaction for dry runs to roll back
    cursor.execute("BEGIN")
    try:
        before = count_rows(cursor)
        applied = db.apply_migrations(cursor)
        issues = validate_migration(before, count_rows(cursor))
        if dry_run or issues:
            conn.rollback()
        else:
            conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
    return applied, issues


def main():
    parser = argparse.ArgumentParser(description="Migrate a Reppy database to the current schema")
    parser.add_argument("--db-path", default="reppy.db", help="Path to SQLite database")
    parser.add_argument("--dry-run", action="store_true", help="Preview migration without making changes")
    args = parser.parse_args()

    db_path = Path(args.db_path)
    if not db_path.exists():
        print(f"ERROR: Database not found: {db_path}")
        sys.exit(1)

    conn = sqlite3.connect(db_path)
    current = db.get_schema_version(conn.cursor())
    conn.close()

    print(f"Database: {db_path}")
    print(f"Schema: v{current} -> v{db.SCHEMA_VERSION}")
    print(f"Mode: {'DRY RUN' if args.dry_run else 'LIVE'}")
    print()

    if current >= db.SCHEMA_VERSION:
        print("Already up to date.")
        return

    applied, issues = migrate(db_path, dry_run=args.dry_run)
    for version in applied:
        print(f"  Applied v{version}: {db.MIGRATIONS[version].__doc__}")

    if issues:
        print("\nVALIDATION ISSUES (rolled back):")
        for issue in issues:
            print(f"  - {issue}")
        sys.exit(1)

    if args.dry_run:
        print("\n--- DRY RUN COMPLETE (no changes made) ---")
    else:
        print("\nMigration complete.")


if __name__ == "__main__":
    main()
