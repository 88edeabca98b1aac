"""
Tool: Task Occurrence Sync
Purpose: Keep each task's next_occurrence_at in step with its recurrence data

Usage:
    python -m homecontrol.tasks.occurrence sync --household h1 --task t1
    python -m homecontrol.tasks.occurrence timezone --household h1

    from homecontrol.tasks.occurrence import save_task, sync_next_occurrence

    save_task("h1", "t1", {"rrule": "FREQ=DAILY", "start_at": "2025-03-10T07:00:00Z"})
    sync_next_occurrence("h1", "t1")

sync_next_occurrence() is the task-write hook: it runs after every write to a
task and only writes back when the notify time actually moved, so repeated
calls settle instead of looping.

Rotation:
    A task with a rotation_pool gets its next assignee when it gains a next
    occurrence it did not have before: assignee_ids = [pool[rotation_index]],
    rotation_index advances modulo the pool size.

Output:
    JSON result with success status and data
"""

import argparse
import json
import sys
from datetime import datetime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from homecontrol.config_models import load_push_config
from homecontrol.logging_config import get_logger
from homecontrol.mobile.models import to_db_time, utcnow
from homecontrol.recurrence import RecurrenceSpec, resolve
from homecontrol.recurrence.models import as_utc_datetime
from homecontrol.tasks import get_connection

logger = get_logger(__name__)

DEFAULT_TIMEZONE = "UTC"


# =============================================================================
# Households
# =============================================================================


def save_household(household_id: str, timezone: Optional[str] = None) -> Dict[str, Any]:
    """Create or update a household's time zone."""
    conn = get_connection()
    try:
        conn.execute(
            """
            INSERT INTO households (id, timezone) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET timezone = excluded.timezone
            """,
            (household_id, timezone),
        )
        conn.commit()
    finally:
        conn.close()

    return {"success": True, "data": {"household_id": household_id, "timezone": timezone}}


def get_household_timezone(household_id: str) -> str:
    """
    Get the household's IANA zone, or UTC.

    Only Area/City shaped names that zoneinfo can load are accepted; bare
    abbreviations like "CET" fall back to UTC.
    """
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT timezone FROM households WHERE id = ?",
            (household_id,),
        ).fetchone()
    finally:
        conn.close()

    zone = row["timezone"] if row else None
    if not isinstance(zone, str) or "/" not in zone:
        return DEFAULT_TIMEZONE

    try:
        ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("invalid_household_timezone", household_id=household_id, zone=zone)
        return DEFAULT_TIMEZONE
    return zone


# =============================================================================
# Tasks
# =============================================================================


def _row_to_task(row) -> Dict[str, Any]:
    return {
        "household_id": row["household_id"],
        "task_id": row["id"],
        "document": json.loads(row["document"]) if row["document"] else {},
        "next_occurrence_at": row["next_occurrence_at"],
        "occurrence_at": row["occurrence_at"],
        "updated_at": row["updated_at"],
    }


def save_task(household_id: str, task_id: str, document: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create or replace a task document.

    The derived occurrence columns are left alone; call
    sync_next_occurrence() afterwards.
    """
    if not isinstance(document, dict):
        return {"success": False, "error": "Task document must be an object"}

    conn = get_connection()
    try:
        conn.execute(
            """
            INSERT INTO tasks (household_id, id, document, updated_at) VALUES (?, ?, ?, ?)
            ON CONFLICT(household_id, id) DO UPDATE SET
                document = excluded.document,
                updated_at = excluded.updated_at
            """,
            (household_id, task_id, json.dumps(document, default=str), to_db_time(utcnow())),
        )
        conn.commit()
    finally:
        conn.close()

    return {"success": True, "data": {"household_id": household_id, "task_id": task_id}}


def get_task(household_id: str, task_id: str) -> Dict[str, Any]:
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT * FROM tasks WHERE household_id = ? AND id = ?",
            (household_id, task_id),
        ).fetchone()
    finally:
        conn.close()

    if not row:
        return {"success": False, "error": f"Task not found: {task_id}"}
    return {"success": True, "data": _row_to_task(row)}


def _next_assignee(document: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Document fields to merge for the next rotation turn, or None."""
    pool = document.get("rotation_pool")
    if not isinstance(pool, list) or not pool:
        return None

    try:
        index = int(document.get("rotation_index") or 0)
    except (TypeError, ValueError):
        index = 0
    index %= len(pool)

    return {
        "assignee_ids": [pool[index]],
        "rotation_index": (index + 1) % len(pool),
    }


def sync_next_occurrence(
    household_id: str,
    task_id: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Recompute a task's next occurrence and persist it if it moved.

    Args:
        household_id: Owning household
        task_id: Task to sync
        now: Reference instant (defaults to now)

    Returns:
        {
            "success": True,
            "changed": bool,
            "occurrence_at": datetime | None,
            "next_occurrence_at": datetime | None,
            "assignee_ids": list | None,
        }
    """
    found = get_task(household_id, task_id)
    if not found["success"]:
        return found

    task = found["data"]
    document = task["document"]
    zone = get_household_timezone(household_id)
    max_iterations = load_push_config().recurrence.max_iterations

    result = resolve(
        RecurrenceSpec.from_document(document),
        zone,
        now or utcnow(),
        max_iterations=max_iterations,
    )

    previous = as_utc_datetime(task["next_occurrence_at"])
    changed = previous != result.notify_at

    rotation = None
    if previous is None and result.notify_at is not None:
        rotation = _next_assignee(document)

    if changed or rotation:
        if rotation:
            document = {**document, **rotation}

        conn = get_connection()
        try:
            conn.execute(
                """
                UPDATE tasks
                SET document = ?, next_occurrence_at = ?, occurrence_at = ?, updated_at = ?
                WHERE household_id = ? AND id = ?
                """,
                (
                    json.dumps(document, default=str),
                    to_db_time(result.notify_at),
                    to_db_time(result.occurrence_at),
                    to_db_time(utcnow()),
                    household_id,
                    task_id,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        logger.info(
            "task_occurrence_synced",
            household_id=household_id,
            task_id=task_id,
            zone=zone,
            next_occurrence_at=to_db_time(result.notify_at),
            rotated=rotation is not None,
        )

    return {
        "success": True,
        "changed": changed,
        "occurrence_at": result.occurrence_at,
        "next_occurrence_at": result.notify_at,
        "assignee_ids": rotation["assignee_ids"] if rotation else None,
    }


def main():
    parser = argparse.ArgumentParser(description="Task occurrence sync")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    sync_parser = subparsers.add_parser("sync", help="Recompute a task's next occurrence")
    sync_parser.add_argument("--household", required=True, help="Household ID")
    sync_parser.add_argument("--task", required=True, help="Task ID")

    tz_parser = subparsers.add_parser("timezone", help="Show a household's effective zone")
    tz_parser.add_argument("--household", required=True, help="Household ID")

    args = parser.parse_args()

    if args.command == "sync":
        result = sync_next_occurrence(args.household, args.task)
    elif args.command == "timezone":
        result = {"success": True, "data": {"timezone": get_household_timezone(args.household)}}
    else:
        parser.print_help()
        sys.exit(0)

    print(json.dumps(result, indent=2, default=str))
    if not result.get("success"):
        sys.exit(1)


if __name__ == "__main__":
    main()
