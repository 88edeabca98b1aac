"""Task Store - household task documents and their next occurrence

Tasks are kept as opaque JSON documents keyed by (household_id, task_id).
Only two fields are lifted into columns: next_occurrence_at (when the task
should surface, prep window applied) and occurrence_at (when it actually
happens). Both are maintained by occurrence.sync_next_occurrence().

Components:
    occurrence.py: Household zone lookup, task upserts and the occurrence sync hook

Database: data/tasks.db
    - households: Household time zone
    - tasks: Task documents plus the derived occurrence columns
"""

import sqlite3
from pathlib import Path

from homecontrol import DATA_PATH

# Path constants
DB_PATH = DATA_PATH / "tasks.db"


def get_connection() -> sqlite3.Connection:
    """Get database connection, creating tables if needed."""
    db_path = Path(DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row

    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS households (
            id TEXT PRIMARY KEY,
            timezone TEXT
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            household_id TEXT NOT NULL,
            id TEXT NOT NULL,
            document TEXT NOT NULL,
            next_occurrence_at TEXT,
            occurrence_at TEXT,
            updated_at TEXT,
            PRIMARY KEY (household_id, id)
        )
    """)

    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_tasks_next_occurrence "
        "ON tasks(household_id, next_occurrence_at)"
    )

    conn.commit()
    return conn


__all__ = ["DB_PATH", "get_connection"]
