"""
Tool: Expo Push Transport
Purpose: Send pushes through the Expo push service and classify the tickets

Usage:
    from homecontrol.mobile.push.expo import ExpoTransport, PushTransportError

    transport = ExpoTransport()
    for chunk in chunk_messages(messages):
        tickets = await transport.send(chunk)

Expo fans out to FCM and APNs for us. A request carries at most 100
messages and the response holds one ticket per message, in order:
    {"data": [{"status": "ok", "id": "..."},
              {"status": "error", "message": "...",
               "details": {"error": "DeviceNotRegistered"}}]}

Dependencies:
    - aiohttp
"""

import asyncio
import re
from typing import Any, Iterable

import aiohttp

from homecontrol.config_models import load_push_config
from homecontrol.logging_config import get_logger
from homecontrol.mobile.models import PushMessage, PushTicket, TicketOutcome

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"

# Expo rejects requests with more than 100 messages
MAX_CHUNK_SIZE = 100

# Ticket error codes worth retrying later
TRANSIENT_ERROR_CODES = frozenset({
    "MessageRateExceeded",
    "ExpoRateLimitExceeded",
    "InternalServerError",
    "UnknownError",
    "unknown",
})

# The device uninstalled the app or revoked permission
PERMANENT_ERROR_CODES = frozenset({"DeviceNotRegistered"})

_EXPO_TOKEN_PATTERN = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[.+\]$")
_UUID_TOKEN_PATTERN = re.compile(
    r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE
)


class PushTransportError(Exception):
    """The push service could not be reached or returned an unusable response."""


# =============================================================================
# Helpers
# =============================================================================


def is_expo_push_token(token: Any) -> bool:
    """Check whether a value looks like an Expo push token."""
    if not isinstance(token, str):
        return False
    return bool(_EXPO_TOKEN_PATTERN.match(token) or _UUID_TOKEN_PATTERN.match(token))


def dedupe_tokens(
    tokens: Iterable[str],
    recipient_ids: list[str] | None = None,
) -> tuple[list[str], list[str]]:
    """
    Drop repeated tokens, first occurrence wins.

    When recipient_ids is given it is kept positionally aligned with the
    surviving tokens; otherwise the returned id list is empty.

    Returns:
        (tokens, recipient_ids)
    """
    seen: set[str] = set()
    unique_tokens: list[str] = []
    unique_ids: list[str] = []
    ids = recipient_ids if recipient_ids else None

    for index, token in enumerate(tokens):
        if token in seen:
            continue
        seen.add(token)
        unique_tokens.append(token)
        if ids is not None:
            unique_ids.append(ids[index] if index < len(ids) else "")

    return unique_tokens, unique_ids


def chunk_messages(messages: list[PushMessage], size: int = MAX_CHUNK_SIZE) -> list[list[PushMessage]]:
    """Split messages into provider-sized requests."""
    size = max(1, min(size, MAX_CHUNK_SIZE))
    return [messages[i:i + size] for i in range(0, len(messages), size)]


def ticket_error_code(ticket: PushTicket) -> str:
    return ticket.error_code or "unknown"


def coerce_tickets(tickets: Any, expected: int) -> list[PushTicket | None]:
    """
    Normalize whatever a transport returned into one slot per message.

    Raw Expo ticket dicts are parsed; short lists are padded with None
    (classified transient) and anything that is not a ticket becomes None.

    Raises:
        PushTransportError: the transport did not return a list of tickets
    """
    if not isinstance(tickets, (list, tuple)):
        raise PushTransportError(f"Transport returned {type(tickets).__name__}, not tickets")

    slots: list[PushTicket | None] = []
    for index in range(expected):
        item = tickets[index] if index < len(tickets) else None
        if isinstance(item, dict):
            item = PushTicket.from_expo(item)
        slots.append(item if isinstance(item, PushTicket) else None)
    return slots


def classify_ticket(ticket: PushTicket | None) -> TicketOutcome:
    """
    Classify one ticket.

    A missing ticket is treated like an unknown error: transient.
    """
    if ticket is None:
        return TicketOutcome.TRANSIENT
    if ticket.ok:
        return TicketOutcome.SENT

    code = ticket_error_code(ticket)
    if code in PERMANENT_ERROR_CODES:
        return TicketOutcome.PERMANENT
    if code in TRANSIENT_ERROR_CODES:
        return TicketOutcome.TRANSIENT
    return TicketOutcome.IGNORED


# =============================================================================
# Transport
# =============================================================================


class ExpoTransport:
    """Bulk sender for the Expo push API: send(messages) -> tickets."""

    def __init__(
        self,
        push_url: str | None = None,
        access_token: str | None = None,
        timeout_seconds: float | None = None,
        chunk_size: int | None = None,
    ):
        config = load_push_config()
        self.push_url = push_url or config.expo.push_url or EXPO_PUSH_URL
        self.access_token = access_token or config.expo_access_token()
        self.timeout_seconds = timeout_seconds or config.expo.timeout_seconds
        self.chunk_size = chunk_size or config.expo.chunk_size

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def send(self, messages: list[PushMessage]) -> list[PushTicket]:
        """
        Send one chunk of messages.

        Args:
            messages: At most chunk_size messages

        Returns:
            One ticket per message, aligned with the input. Tickets the
            service failed to return come back as "unknown" errors.

        Raises:
            PushTransportError: network failure, timeout, non-200 status or
                a response without ticket data
        """
        if not messages:
            return []

        body = [m.to_expo() for m in messages]
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.push_url, json=body, headers=self._headers()) as response:
                    if response.status != 200:
                        text = await response.text()
                        raise PushTransportError(f"Expo API error: {response.status} {text[:200]}")
                    try:
                        result = await response.json(content_type=None)
                    except ValueError as e:
                        raise PushTransportError(f"Invalid JSON from Expo: {e}") from e
        except aiohttp.ClientError as e:
            raise PushTransportError(f"Network error: {e}") from e
        except asyncio.TimeoutError as e:
            raise PushTransportError("Expo API request timed out") from e

        return self._parse_tickets(result, len(messages))

    @staticmethod
    def _parse_tickets(result: Any, expected: int) -> list[PushTicket]:
        if not isinstance(result, dict):
            raise PushTransportError("Unexpected response format")

        if result.get("errors") and "data" not in result:
            raise PushTransportError(f"Expo request rejected: {result['errors']}")

        data = result.get("data")
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise PushTransportError("Unexpected response format")

        tickets = [
            PushTicket.from_expo(item) if isinstance(item, dict) else PushTicket(status="error")
            for item in data[:expected]
        ]

        if len(tickets) < expected:
            logger.warning("expo_missing_tickets", expected=expected, received=len(tickets))
            tickets.extend(PushTicket(status="error") for _ in range(expected - len(tickets)))

        return tickets
