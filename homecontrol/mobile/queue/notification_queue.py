"""
Tool: Push Queue Store
Purpose: Persist deferred pushes, dead letters and sweep metrics

Usage:
    from homecontrol.mobile.queue.notification_queue import (
        enqueue,
        claim_due,
        reschedule,
        delete,
        write_dead_letter,
        record_run,
    )

The store is the only durable state of a queued push. scheduled_at is both
the readiness gate (claim_due) and the retry point (reschedule); a record is
gone once delivered or dead-lettered, so repeating a crashed sweep only ever
sees what is still pending.
"""

import asyncio
import json
from datetime import datetime

from homecontrol.logging_config import get_logger
from homecontrol.mobile import SYSTEM_BUCKET, get_connection
from homecontrol.mobile.models import (
    DeadLetterRecord,
    DeliveryRunMetrics,
    QueuedNotification,
    to_db_time,
    utcnow,
)
from homecontrol.mobile.push.expo import dedupe_tokens

logger = get_logger(__name__)

_QUEUE_COLUMNS = (
    "id",
    "household_id",
    "recipient_tokens",
    "recipient_ids",
    "title",
    "body",
    "payload",
    "scheduled_at",
    "attempts",
    "created_at",
    "updated_at",
)


async def enqueue(
    household_id: str | None,
    tokens: list[str],
    title: str,
    body: str,
    scheduled_at: datetime,
    recipient_ids: list[str] | None = None,
    payload: dict | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Defer a push until scheduled_at.

    Tokens are de-duplicated (first wins) with recipient_ids kept aligned.

    Args:
        household_id: Owning household (dead letters are scoped to it)
        tokens: Device tokens to deliver to
        title: Push title
        body: Push body
        scheduled_at: Earliest delivery time
        recipient_ids: User ids aligned 1:1 with tokens (optional)
        payload: Data delivered with the push
        now: Creation time (defaults to now)

    Returns:
        {"success": True, "notification_id": str, "scheduled_at": str}
        or {"success": False, "error": str}
    """
    unique_tokens, unique_ids = dedupe_tokens(tokens, recipient_ids)
    if not unique_tokens:
        return {"success": False, "error": "No recipient tokens"}

    notification = QueuedNotification(
        id=QueuedNotification.generate_id(),
        household_id=household_id,
        recipient_tokens=unique_tokens,
        recipient_ids=unique_ids,
        title=title,
        body=body,
        payload=payload or {},
        scheduled_at=scheduled_at,
        attempts=0,
        created_at=now or utcnow(),
    )
    row = notification.to_dict()

    conn = get_connection()
    try:
        conn.execute(
            f"INSERT INTO push_queue ({', '.join(_QUEUE_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in _QUEUE_COLUMNS)})",
            tuple(row[c] for c in _QUEUE_COLUMNS),
        )
        conn.commit()
    finally:
        conn.close()

    logger.info(
        "push_enqueued",
        notification_id=notification.id,
        household_id=household_id,
        tokens=len(unique_tokens),
        scheduled_at=row["scheduled_at"],
    )

    return {
        "success": True,
        "notification_id": notification.id,
        "scheduled_at": row["scheduled_at"],
    }


async def claim_due(now: datetime | None = None, limit: int = 200) -> list[QueuedNotification]:
    """
    Get up to `limit` records whose scheduled_at is at or before now.

    No ordering is guaranteed.
    """
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT * FROM push_queue WHERE scheduled_at <= ? LIMIT ?",
            (to_db_time(now or utcnow()), limit),
        ).fetchall()
    finally:
        conn.close()

    return [QueuedNotification.from_dict(dict(row)) for row in rows]


async def get_notification(notification_id: str) -> QueuedNotification | None:
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT * FROM push_queue WHERE id = ?",
            (notification_id,),
        ).fetchone()
    finally:
        conn.close()

    return QueuedNotification.from_dict(dict(row)) if row else None


async def reschedule(
    notification_id: str,
    attempts: int,
    scheduled_at: datetime,
    now: datetime | None = None,
) -> bool:
    """
    Push a record's delivery time forward after a transient failure.

    Returns:
        True if the record still existed
    """
    conn = get_connection()
    try:
        cursor = conn.execute(
            "UPDATE push_queue SET attempts = ?, scheduled_at = ?, updated_at = ? WHERE id = ?",
            (attempts, to_db_time(scheduled_at), to_db_time(now or utcnow()), notification_id),
        )
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


async def delete(notification_id: str) -> bool:
    """Remove a record from the live queue. Deleting a missing record is a no-op."""
    conn = get_connection()
    try:
        cursor = conn.execute("DELETE FROM push_queue WHERE id = ?", (notification_id,))
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


async def write_dead_letter(record: DeadLetterRecord) -> None:
    """Store a terminal failure. Writing the same record twice keeps one row."""
    row = record.to_dict()
    columns = (*_QUEUE_COLUMNS, "bucket", "reason", "dead_lettered_at")

    conn = get_connection()
    try:
        conn.execute(
            f"INSERT OR REPLACE INTO push_dead_letters ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            tuple(row[c] for c in columns),
        )
        conn.commit()
    finally:
        conn.close()


def dead_letter_bucket(notification: QueuedNotification) -> str:
    """Household id when known, otherwise the global system bucket."""
    return notification.household_id or SYSTEM_BUCKET


async def get_dead_letters(bucket: str | None = None, limit: int = 100) -> list[DeadLetterRecord]:
    conn = get_connection()
    try:
        if bucket:
            rows = conn.execute(
                "SELECT * FROM push_dead_letters WHERE bucket = ? "
                "ORDER BY dead_lettered_at DESC LIMIT ?",
                (bucket, limit),
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM push_dead_letters ORDER BY dead_lettered_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
    finally:
        conn.close()

    return [DeadLetterRecord.from_dict(dict(row)) for row in rows]


async def record_run(metrics: DeliveryRunMetrics) -> None:
    """Persist one sweep's counters."""
    row = metrics.to_dict()
    columns = tuple(row.keys())

    conn = get_connection()
    try:
        conn.execute(
            f"INSERT OR REPLACE INTO push_runs ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            tuple(row.values()),
        )
        conn.commit()
    finally:
        conn.close()


async def get_runs(limit: int = 20) -> list[dict]:
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT * FROM push_runs ORDER BY started_at DESC LIMIT ?",
            (limit,),
        ).fetchall()
    finally:
        conn.close()

    return [dict(row) for row in rows]


async def get_queue_stats(now: datetime | None = None) -> dict:
    """
    Get queue statistics.

    Returns:
        {"pending": int, "due": int, "retrying": int, "dead_letters": int}
    """
    conn = get_connection()
    try:
        pending = conn.execute("SELECT COUNT(*) FROM push_queue").fetchone()[0]
        due = conn.execute(
            "SELECT COUNT(*) FROM push_queue WHERE scheduled_at <= ?",
            (to_db_time(now or utcnow()),),
        ).fetchone()[0]
        retrying = conn.execute(
            "SELECT COUNT(*) FROM push_queue WHERE attempts > 0"
        ).fetchone()[0]
        dead = conn.execute("SELECT COUNT(*) FROM push_dead_letters").fetchone()[0]
    finally:
        conn.close()

    return {
        "pending": pending,
        "due": due,
        "retrying": retrying,
        "dead_letters": dead,
    }


# CLI interface
if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Push queue inspection")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("stats", help="Get queue statistics")

    dlq_parser = subparsers.add_parser("dead-letters", help="List dead letters")
    dlq_parser.add_argument("--bucket", "-b", help="Household id or 'system'")
    dlq_parser.add_argument("--limit", "-l", type=int, default=20, help="Max rows")

    runs_parser = subparsers.add_parser("runs", help="List recent sweep metrics")
    runs_parser.add_argument("--limit", "-l", type=int, default=20, help="Max rows")

    args = parser.parse_args()

    if args.command == "stats":
        print(json.dumps(asyncio.run(get_queue_stats()), indent=2))

    elif args.command == "dead-letters":
        records = asyncio.run(get_dead_letters(args.bucket, args.limit))
        print(json.dumps([r.to_dict() for r in records], indent=2))

    elif args.command == "runs":
        print(json.dumps(asyncio.run(get_runs(args.limit)), indent=2))

    else:
        parser.print_help()
