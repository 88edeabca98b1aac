"""
Tool: Mobile Push Models
Purpose: Data structures for quiet hours, queued pushes and delivery outcomes

Usage:
    from homecontrol.mobile.models import (
        QuietHoursWindow,
        QuietMode,
        QueuedNotification,
        DeadLetterRecord,
        DeliveryRunMetrics,
        PushMessage,
        PushTicket,
        TicketOutcome,
        RecipientSettings,
    )
"""

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, time, timezone
from enum import Enum
from typing import Any

from homecontrol.logging_config import get_logger
from homecontrol.recurrence.models import as_utc_datetime

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime | None) -> str | None:
    """Serialize an instant as fixed-width UTC ISO-8601 so strings sort by time."""
    if value is None:
        return None
    return as_utc_datetime(value).isoformat(timespec="microseconds")


def _load_json(value: Any, default: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value) if value else default
        except json.JSONDecodeError:
            return default
    return default if value is None else value


# =============================================================================
# Quiet hours
# =============================================================================


class QuietMode(str, Enum):
    """How a quiet window treats non-urgent pushes."""

    HARD = "hard"  # Defer into the push queue until the window ends
    SOFT = "soft"  # Deliver now, silently


def _parse_clock(value: Any) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0, tzinfo=None)
    hours, minutes = str(value).strip().split(":")[:2]
    return time(int(hours), int(minutes))


@dataclass(frozen=True)
class QuietHoursWindow:
    """
    A recipient's daily quiet window.

    start == end means no quiet hours at all; start > end wraps midnight
    (22:00-07:00). zone falls back to the caller's zone when unset.
    """

    start: time
    end: time
    zone: str | None = None
    mode: QuietMode = QuietMode.HARD

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    @property
    def wraps_midnight(self) -> bool:
        return self.start > self.end

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "QuietHoursWindow | None":
        """
        Parse a stored preference like {"start": "22:00", "end": "07:00", "tz": "Europe/Oslo"}.

        Returns None for missing or malformed preferences.
        """
        if not data:
            return None
        try:
            mode = data.get("mode") or QuietMode.HARD
            return cls(
                start=_parse_clock(data["start"]),
                end=_parse_clock(data["end"]),
                zone=data.get("tz") or data.get("zone") or None,
                mode=QuietMode(mode),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("invalid_quiet_hours", value=data, error=str(e))
            return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.strftime("%H:%M"),
            "end": self.end.strftime("%H:%M"),
            "tz": self.zone,
            "mode": self.mode.value,
        }


# =============================================================================
# Queue records
# =============================================================================


@dataclass
class QueuedNotification:
    """
    A push deferred into the queue.

    recipient_ids is positionally aligned with recipient_tokens (or empty
    when the owners are unknown) so an unregistered token can be cleared on
    the right user.
    """

    id: str
    recipient_tokens: list[str]
    title: str
    body: str
    scheduled_at: datetime
    household_id: str | None = None
    recipient_ids: list[str] = field(default_factory=list)
    payload: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for database storage."""
        return {
            "id": self.id,
            "household_id": self.household_id,
            "recipient_tokens": json.dumps(self.recipient_tokens),
            "recipient_ids": json.dumps(self.recipient_ids),
            "title": self.title,
            "body": self.body,
            "payload": json.dumps(self.payload) if self.payload else None,
            "scheduled_at": to_db_time(self.scheduled_at),
            "attempts": self.attempts,
            "created_at": to_db_time(self.created_at),
            "updated_at": to_db_time(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueuedNotification":
        """Create from a database row."""
        tokens = _load_json(data.get("recipient_tokens"), [])
        ids = _load_json(data.get("recipient_ids"), [])
        payload = _load_json(data.get("payload"), {})

        return cls(
            id=data["id"],
            household_id=data.get("household_id") or None,
            recipient_tokens=[str(t) for t in tokens] if isinstance(tokens, list) else [],
            recipient_ids=[str(u) for u in ids] if isinstance(ids, list) else [],
            title=str(data.get("title") or ""),
            body=str(data.get("body") or ""),
            payload=payload if isinstance(payload, dict) else {},
            scheduled_at=as_utc_datetime(data.get("scheduled_at")) or utcnow(),
            attempts=int(data.get("attempts") or 0),
            created_at=as_utc_datetime(data.get("created_at")) or utcnow(),
            updated_at=as_utc_datetime(data.get("updated_at")),
        )

    @staticmethod
    def generate_id() -> str:
        """Generate a new queue record ID."""
        return f"pq_{uuid.uuid4().hex[:12]}"

    def owner_of(self, token: str) -> str | None:
        """User id aligned with a token, if the record carries one."""
        try:
            index = self.recipient_tokens.index(token)
        except ValueError:
            return None
        if index < len(self.recipient_ids):
            return self.recipient_ids[index] or None
        return None


@dataclass
class DeadLetterRecord:
    """A queue record that will never be retried, kept for diagnosis."""

    notification: QueuedNotification
    reason: str
    bucket: str
    dead_lettered_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.notification.to_dict(),
            "bucket": self.bucket,
            "reason": self.reason,
            "dead_lettered_at": to_db_time(self.dead_lettered_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeadLetterRecord":
        return cls(
            notification=QueuedNotification.from_dict(data),
            reason=data["reason"],
            bucket=data["bucket"],
            dead_lettered_at=as_utc_datetime(data.get("dead_lettered_at")) or utcnow(),
        )


@dataclass
class DeliveryRunMetrics:
    """Counters for one queue sweep."""

    run_id: str
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    checked: int = 0
    sent: int = 0
    dropped: int = 0
    retried: int = 0
    dead_lettered: int = 0

    @staticmethod
    def generate_run_id(at: datetime) -> str:
        """Timestamp-derived run id, e.g. 2025-03-10T22-30-00-000000Z."""
        stamp = as_utc_datetime(at).strftime("%Y-%m-%dT%H-%M-%S-%f")
        return f"{stamp}Z"

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "checked": self.checked,
            "sent": self.sent,
            "dropped": self.dropped,
            "retried": self.retried,
            "dead_lettered": self.dead_lettered,
            "started_at": to_db_time(self.started_at),
            "finished_at": to_db_time(self.finished_at),
        }


# =============================================================================
# Transport
# =============================================================================


class TicketOutcome(str, Enum):
    """Classification of one per-token push ticket."""

    SENT = "sent"
    PERMANENT = "permanent"  # Device is gone; clear the token
    TRANSIENT = "transient"  # Retry the whole record later
    IGNORED = "ignored"  # Failed, but retrying will not help


@dataclass
class PushMessage:
    """One push to one device token."""

    to: str
    title: str
    body: str
    data: dict[str, Any] | None = None
    channel_id: str | None = None
    sound: str | None = "default"
    priority: str = "default"
    category_id: str | None = None

    def to_expo(self) -> dict[str, Any]:
        """Wire format for the Expo push API."""
        message: dict[str, Any] = {
            "to": self.to,
            "title": self.title,
            "body": self.body,
            "priority": self.priority,
        }
        if self.data:
            message["data"] = self.data
        if self.sound:
            message["sound"] = self.sound
        if self.channel_id:
            message["channelId"] = self.channel_id
        if self.category_id:
            message["categoryId"] = self.category_id
        return message


@dataclass
class PushTicket:
    """Per-message result from the transport, aligned with the request."""

    status: str
    id: str | None = None
    message: str | None = None
    error_code: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def from_expo(cls, data: dict[str, Any]) -> "PushTicket":
        details = data.get("details") or {}
        return cls(
            status=str(data.get("status") or "error"),
            id=data.get("id"),
            message=data.get("message"),
            error_code=details.get("error") if isinstance(details, dict) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Recipients
# =============================================================================


@dataclass
class RecipientSettings:
    """A user's push settings, as stored in user_push_settings."""

    user_id: str
    push_token: str | None = None
    notifications_enabled: bool = True
    quiet_hours: QuietHoursWindow | None = None
    timezone: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecipientSettings":
        quiet = _load_json(data.get("quiet_hours"), None)
        enabled = data.get("notifications_enabled")
        return cls(
            user_id=data["user_id"],
            push_token=data.get("push_token") or None,
            notifications_enabled=True if enabled is None else bool(enabled),
            quiet_hours=quiet if isinstance(quiet, QuietHoursWindow) else QuietHoursWindow.from_dict(quiet),
            timezone=data.get("timezone") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "push_token": self.push_token,
            "notifications_enabled": self.notifications_enabled,
            "quiet_hours": json.dumps(self.quiet_hours.to_dict()) if self.quiet_hours else None,
            "timezone": self.timezone,
        }
