"""Push queue components: quiet hours, the queue store and its worker."""

from homecontrol.mobile.queue.quiet_hours import (
    parse_quiet_hours,
    is_quiet,
    next_allowed,
    should_defer,
)
from homecontrol.mobile.queue.notification_queue import (
    enqueue,
    claim_due,
    get_dead_letters,
    get_queue_stats,
)
from homecontrol.mobile.queue.worker import (
    compute_backoff,
    process_push_queue,
    PushQueueRunner,
)

__all__ = [
    "parse_quiet_hours",
    "is_quiet",
    "next_allowed",
    "should_defer",
    "enqueue",
    "claim_due",
    "get_dead_letters",
    "get_queue_stats",
    "compute_backoff",
    "process_push_queue",
    "PushQueueRunner",
]
