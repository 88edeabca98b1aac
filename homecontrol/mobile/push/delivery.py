"""
Tool: Push Routing
Purpose: Decide per recipient whether a push goes out now, silently, or later

Usage:
    from homecontrol.mobile.push.delivery import (
        send_now,
        route_notification,
        notify_household,
    )

Routing per recipient:
    notifications disabled / no token  -> "skipped"
    hard quiet hours                   -> "queued" until the window ends
    soft quiet hours                   -> "silent" (now, no sound)
    otherwise                          -> "immediate"
"""

import asyncio
from datetime import datetime
from typing import Any

from homecontrol.config_models import load_push_config
from homecontrol.logging_config import get_logger
from homecontrol.mobile.models import (
    PushMessage,
    QuietMode,
    RecipientSettings,
    TicketOutcome,
    utcnow,
)
from homecontrol.mobile.push.expo import (
    ExpoTransport,
    chunk_messages,
    classify_ticket,
    coerce_tickets,
    is_expo_push_token,
    ticket_error_code,
)
from homecontrol.mobile.push.tokens import get_recipients, schedule_token_invalidation
from homecontrol.mobile.queue.notification_queue import enqueue
from homecontrol.mobile.queue.quiet_hours import is_quiet, next_allowed

logger = get_logger(__name__)

SILENT_CHANNEL = "silent"

DECISION_SKIPPED = "skipped"
DECISION_QUEUED = "queued"
DECISION_SILENT = "silent"
DECISION_IMMEDIATE = "immediate"


async def send_now(messages: list[PushMessage], transport: Any = None) -> dict:
    """
    Send messages immediately, bypassing the queue.

    Invalid tokens are filtered out before sending. Transport failures are
    logged and counted, never raised.

    Returns:
        {"success": bool, "sent": int, "failed": int, "invalid": int}
    """
    valid = [m for m in messages if is_expo_push_token(m.to)]
    summary = {"success": True, "sent": 0, "failed": 0, "invalid": len(messages) - len(valid)}
    if not valid:
        return summary

    transport = transport or ExpoTransport()
    cleanup_tasks: list[asyncio.Task] = []

    for chunk in chunk_messages(valid, getattr(transport, "chunk_size", None) or 100):
        try:
            tickets = coerce_tickets(await transport.send(chunk), len(chunk))
        except Exception as e:
            summary["failed"] += len(chunk)
            logger.warning(
                "push_send_failed",
                messages=len(chunk),
                error_type=type(e).__name__,
                error=str(e),
            )
            continue

        for message, ticket in zip(chunk, tickets):
            outcome = classify_ticket(ticket)
            if outcome == TicketOutcome.SENT:
                summary["sent"] += 1
                continue

            summary["failed"] += 1
            if outcome == TicketOutcome.PERMANENT:
                cleanup_tasks.append(schedule_token_invalidation(message.to))
            else:
                logger.warning(
                    "push_ticket_failed",
                    error=ticket_error_code(ticket) if ticket else "missing",
                )

    if cleanup_tasks:
        await asyncio.gather(*cleanup_tasks, return_exceptions=True)

    summary["success"] = summary["failed"] == 0
    return summary


def decide_route(
    recipient: RecipientSettings,
    now: datetime,
    fallback_zone: str | None = None,
) -> tuple[str, datetime | None]:
    """
    Pick the route for one recipient without side effects.

    Returns:
        (decision, scheduled_at); scheduled_at is set only for "queued"
    """
    if not recipient.notifications_enabled or not recipient.push_token:
        return DECISION_SKIPPED, None

    window = recipient.quiet_hours
    zone = recipient.timezone or fallback_zone or "UTC"

    if window is None or not is_quiet(now, window, zone):
        return DECISION_IMMEDIATE, None

    if window.mode == QuietMode.SOFT:
        return DECISION_SILENT, None

    return DECISION_QUEUED, next_allowed(now, window, zone)


def build_message(
    recipient: RecipientSettings,
    title: str,
    body: str,
    payload: dict | None,
    silent: bool = False,
) -> PushMessage:
    if silent:
        return PushMessage(
            to=recipient.push_token,
            title=title,
            body=body,
            data=payload,
            channel_id=SILENT_CHANNEL,
            sound=None,
            priority="normal",
        )
    return PushMessage(
        to=recipient.push_token,
        title=title,
        body=body,
        data=payload,
        priority="high",
    )


async def route_notification(
    recipient: RecipientSettings,
    title: str,
    body: str,
    payload: dict | None = None,
    household_id: str | None = None,
    now: datetime | None = None,
    fallback_zone: str | None = None,
    transport: Any = None,
) -> dict:
    """
    Route one push for one recipient.

    Args:
        recipient: Stored push settings of the recipient
        title: Push title
        body: Push body
        payload: Data delivered with the push
        household_id: Owning household, used for queued records
        now: Routing time (defaults to now)
        fallback_zone: Zone used when the recipient has none
        transport: Transport for immediate sends

    Returns:
        {"decision": str, "scheduled_at": datetime | None, ...}
    """
    now = now or utcnow()
    decision, scheduled_at = decide_route(recipient, now, fallback_zone)

    if decision == DECISION_SKIPPED:
        return {"decision": decision, "scheduled_at": None}

    if decision == DECISION_QUEUED:
        result = await enqueue(
            household_id,
            [recipient.push_token],
            title,
            body,
            scheduled_at,
            recipient_ids=[recipient.user_id],
            payload=payload,
            now=now,
        )
        return {
            "decision": decision,
            "scheduled_at": scheduled_at,
            "notification_id": result.get("notification_id"),
        }

    message = build_message(recipient, title, body, payload, silent=decision == DECISION_SILENT)
    summary = await send_now([message], transport=transport)
    return {"decision": decision, "scheduled_at": None, "send": summary}


async def notify_household(
    household_id: str,
    user_ids: list[str],
    title: str,
    body: str,
    payload: dict | None = None,
    exclude: str | None = None,
    now: datetime | None = None,
    fallback_zone: str | None = None,
    transport: Any = None,
) -> dict:
    """
    Fan a push out to household members, skipping `exclude` (usually the actor).

    Immediate and silent pushes go out in one transport call; quiet-hours
    recipients are queued individually.

    Returns:
        {"decisions": {user_id: decision}, "queued": int, "send": dict | None}
    """
    now = now or utcnow()
    fallback_zone = fallback_zone or load_push_config().defaults.timezone

    targets = [u for u in dict.fromkeys(user_ids) if u and u != exclude]
    recipients = await get_recipients(targets)

    decisions: dict[str, str] = {u: DECISION_SKIPPED for u in targets}
    messages: list[PushMessage] = []
    queued = 0

    for recipient in recipients:
        decision, scheduled_at = decide_route(recipient, now, fallback_zone)
        decisions[recipient.user_id] = decision

        if decision == DECISION_QUEUED:
            result = await enqueue(
                household_id,
                [recipient.push_token],
                title,
                body,
                scheduled_at,
                recipient_ids=[recipient.user_id],
                payload=payload,
                now=now,
            )
            if result.get("success"):
                queued += 1
        elif decision in (DECISION_IMMEDIATE, DECISION_SILENT):
            messages.append(
                build_message(recipient, title, body, payload, silent=decision == DECISION_SILENT)
            )

    summary = await send_now(messages, transport=transport) if messages else None

    logger.info(
        "household_notified",
        household_id=household_id,
        recipients=len(targets),
        immediate=len(messages),
        queued=queued,
    )
    return {"decisions": decisions, "queued": queued, "send": summary}
