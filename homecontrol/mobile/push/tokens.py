"""
Tool: Device Token Registry
Purpose: Store per-user push settings and clear tokens the push service rejects

Usage:
    from homecontrol.mobile.push.tokens import (
        register_push_token,
        set_quiet_hours,
        get_recipient,
        find_users_by_token,
        clear_token,
        invalidate_token,
    )
"""

import asyncio
import json
from datetime import datetime

from homecontrol.logging_config import get_logger
from homecontrol.mobile import get_connection
from homecontrol.mobile.models import QuietHoursWindow, RecipientSettings, to_db_time, utcnow

logger = get_logger(__name__)

# Reverse lookups are best-effort and bounded
DEFAULT_LOOKUP_LIMIT = 5


# =============================================================================
# Settings
# =============================================================================


async def register_push_token(
    user_id: str,
    token: str | None,
    timezone: str | None = None,
) -> dict:
    """
    Store (or replace) a user's device token.

    Returns:
        {"success": True, "user_id": str}
    """
    conn = get_connection()
    try:
        conn.execute(
            """
            INSERT INTO user_push_settings (user_id, push_token, timezone, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                push_token = excluded.push_token,
                timezone = COALESCE(excluded.timezone, user_push_settings.timezone),
                updated_at = excluded.updated_at
            """,
            (user_id, token, timezone, to_db_time(utcnow())),
        )
        conn.commit()
    finally:
        conn.close()

    return {"success": True, "user_id": user_id}


async def set_quiet_hours(user_id: str, window: QuietHoursWindow | None) -> dict:
    """Store a user's quiet window (None clears it)."""
    value = json.dumps(window.to_dict()) if window else None

    conn = get_connection()
    try:
        conn.execute(
            """
            INSERT INTO user_push_settings (user_id, quiet_hours, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                quiet_hours = excluded.quiet_hours,
                updated_at = excluded.updated_at
            """,
            (user_id, value, to_db_time(utcnow())),
        )
        conn.commit()
    finally:
        conn.close()

    return {"success": True, "user_id": user_id}


async def set_notifications_enabled(user_id: str, enabled: bool) -> dict:
    conn = get_connection()
    try:
        conn.execute(
            """
            INSERT INTO user_push_settings (user_id, notifications_enabled, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                notifications_enabled = excluded.notifications_enabled,
                updated_at = excluded.updated_at
            """,
            (user_id, enabled, to_db_time(utcnow())),
        )
        conn.commit()
    finally:
        conn.close()

    return {"success": True, "user_id": user_id}


async def get_recipient(user_id: str) -> RecipientSettings | None:
    """Load a user's push settings, or None if the user has none stored."""
    conn = get_connection()
    try:
        row = conn.execute(
            "SELECT * FROM user_push_settings WHERE user_id = ?",
            (user_id,),
        ).fetchone()
    finally:
        conn.close()

    if not row:
        return None
    return RecipientSettings.from_dict(dict(row))


async def get_recipients(user_ids: list[str]) -> list[RecipientSettings]:
    """Load settings for several users, preserving input order and skipping unknowns."""
    recipients = []
    for user_id in user_ids:
        recipient = await get_recipient(user_id)
        if recipient is not None:
            recipients.append(recipient)
    return recipients


# =============================================================================
# Token invalidation
# =============================================================================


async def find_users_by_token(token: str, limit: int = DEFAULT_LOOKUP_LIMIT) -> list[str]:
    """Reverse lookup: which users hold this device token (bounded)."""
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT user_id FROM user_push_settings WHERE push_token = ? LIMIT ?",
            (token, limit),
        ).fetchall()
    finally:
        conn.close()

    return [row["user_id"] for row in rows]


async def clear_token(user_id: str, updated_at: datetime | None = None) -> bool:
    """
    Remove a user's stored device token.

    Returns:
        True if a row was updated
    """
    conn = get_connection()
    try:
        cursor = conn.execute(
            "UPDATE user_push_settings SET push_token = NULL, updated_at = ? WHERE user_id = ?",
            (to_db_time(updated_at or utcnow()), user_id),
        )
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


async def invalidate_token(
    token: str,
    user_id: str | None = None,
    lookup_limit: int = DEFAULT_LOOKUP_LIMIT,
) -> list[str]:
    """
    Clear an unregistered device token from its owner(s).

    Uses the known owner when given, otherwise a bounded reverse lookup.
    Never raises: failures are logged and an empty list is returned.

    Returns:
        User ids whose token was cleared
    """
    try:
        owners = [user_id] if user_id else await find_users_by_token(token, limit=lookup_limit)
        cleared = []
        for owner in owners:
            if await clear_token(owner):
                cleared.append(owner)
        logger.info("push_token_cleared", users=cleared, by_lookup=user_id is None)
        return cleared
    except Exception as e:
        logger.warning("push_token_clear_failed", user_id=user_id, error=str(e))
        return []


def schedule_token_invalidation(
    token: str,
    user_id: str | None = None,
    lookup_limit: int = DEFAULT_LOOKUP_LIMIT,
) -> asyncio.Task:
    """Fire-and-forget invalidate_token(); the caller never awaits the outcome."""
    return asyncio.create_task(invalidate_token(token, user_id=user_id, lookup_limit=lookup_limit))
