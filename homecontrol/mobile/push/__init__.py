"""Push transport and device-token components.

Routing (delivery.py) sits on top of the queue and is imported directly:
    from homecontrol.mobile.push.delivery import route_notification
"""

from homecontrol.mobile.push.expo import (
    ExpoTransport,
    PushTransportError,
    classify_ticket,
    dedupe_tokens,
    is_expo_push_token,
)
from homecontrol.mobile.push.tokens import (
    register_push_token,
    set_quiet_hours,
    get_recipient,
    find_users_by_token,
    clear_token,
    invalidate_token,
)

__all__ = [
    "ExpoTransport",
    "PushTransportError",
    "classify_ticket",
    "dedupe_tokens",
    "is_expo_push_token",
    "register_push_token",
    "set_quiet_hours",
    "get_recipient",
    "find_users_by_token",
    "clear_token",
    "invalidate_token",
]
