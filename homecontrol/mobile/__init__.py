"""Mobile Push Delivery - quiet hours, routing and the deferred push queue

Philosophy:
    A family app pings people who are asleep, at school, or at work. A push
    that arrives at 23:30 is worse than one that arrives at 07:00, and a push
    that silently vanishes is worse than both. Every notification is either
    delivered, deferred until the recipient's quiet hours end, or recorded
    as a dead letter an operator can inspect.

Components:
    push/: Expo transport, device-token cleanup, routing of composed pushes
    queue/: Quiet-hours evaluation, the push queue store and its worker

Database: data/mobile.db
    - push_queue: Deferred notifications awaiting delivery
    - push_dead_letters: Notifications that exhausted their retries
    - push_runs: Per-sweep delivery metrics
    - user_push_settings: Device token, quiet hours and opt-out per user
"""

import sqlite3
from pathlib import Path

from homecontrol import DATA_PATH

# Path constants
DB_PATH = DATA_PATH / "mobile.db"

# Dead letters for records with no known household land here
SYSTEM_BUCKET = "system"


def get_connection() -> sqlite3.Connection:
    """
    Get database connection, creating tables if needed.

    Returns:
        SQLite connection with row_factory set
    """
    db_path = Path(DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row

    cursor = conn.cursor()

    # Deferred notifications
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS push_queue (
            id TEXT PRIMARY KEY,
            household_id TEXT,
            recipient_tokens TEXT NOT NULL,
            recipient_ids TEXT NOT NULL,
            title TEXT NOT NULL,
            body TEXT NOT NULL,
            payload TEXT,
            scheduled_at TEXT NOT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT
        )
    """)

    # Terminal failures, one row per queue record per bucket
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS push_dead_letters (
            id TEXT NOT NULL,
            bucket TEXT NOT NULL,
            household_id TEXT,
            recipient_tokens TEXT NOT NULL,
            recipient_ids TEXT NOT NULL,
            title TEXT NOT NULL,
            body TEXT NOT NULL,
            payload TEXT,
            scheduled_at TEXT NOT NULL,
            attempts INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT,
            reason TEXT NOT NULL,
            dead_lettered_at TEXT NOT NULL,
            PRIMARY KEY (bucket, id)
        )
    """)

    # Per-sweep metrics
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS push_runs (
            run_id TEXT PRIMARY KEY,
            checked INTEGER NOT NULL DEFAULT 0,
            sent INTEGER NOT NULL DEFAULT 0,
            dropped INTEGER NOT NULL DEFAULT 0,
            retried INTEGER NOT NULL DEFAULT 0,
            dead_lettered INTEGER NOT NULL DEFAULT 0,
            started_at TEXT NOT NULL,
            finished_at TEXT
        )
    """)

    # Recipient settings
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS user_push_settings (
            user_id TEXT PRIMARY KEY,
            push_token TEXT,
            notifications_enabled BOOLEAN DEFAULT TRUE,
            quiet_hours TEXT,
            timezone TEXT,
            updated_at TEXT
        )
    """)

    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_push_queue_scheduled "
        "ON push_queue(scheduled_at)"
    )
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_push_settings_token "
        "ON user_push_settings(push_token)"
    )

    conn.commit()
    return conn


__all__ = ["DB_PATH", "SYSTEM_BUCKET", "get_connection"]
