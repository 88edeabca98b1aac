"""
Tool: Push Queue Worker
Purpose: Periodically deliver due pushes with bounded retries and dead letters

Features:
- Claims due records (scheduled_at <= now), at most one batch per sweep
- Sends through the Expo transport in chunks of 100
- Clears device tokens the push service reports as unregistered
- Retries transient failures with exponential backoff capped at 6 hours
- Dead-letters records that exhaust their attempts
- Persists per-sweep metrics

Usage:
    python -m homecontrol.mobile.queue.worker run-once
    python -m homecontrol.mobile.queue.worker start
    python -m homecontrol.mobile.queue.worker stats
    python -m homecontrol.mobile.queue.worker dead-letters --bucket system

Lifecycle of a record:
    Pending -> Sent          delivered (or nothing deliverable): deleted
    Pending -> Rescheduled   transient failure, attempts left: pushed forward
    Pending -> DeadLettered  out of attempts: copied to push_dead_letters, deleted
                             (kept pending if the copy fails)

A sweep that crashes halfway is safe to repeat: records already handled are
gone from the queue, the rest are simply claimed again.

Dependencies:
    - aiohttp (via the Expo transport)
"""

import argparse
import asyncio
import json
import signal
import sys
from datetime import datetime, timedelta
from typing import Any

from homecontrol.config_models import PushConfig, load_push_config
from homecontrol.logging_config import (
    bind_run_context,
    clear_run_context,
    get_logger,
    setup_logging,
)
from homecontrol.mobile.models import (
    DeadLetterRecord,
    DeliveryRunMetrics,
    PushMessage,
    QueuedNotification,
    TicketOutcome,
    utcnow,
)
from homecontrol.mobile.push.expo import (
    ExpoTransport,
    chunk_messages,
    classify_ticket,
    coerce_tickets,
    dedupe_tokens,
    is_expo_push_token,
    ticket_error_code,
)
from homecontrol.mobile.push.tokens import schedule_token_invalidation
from homecontrol.mobile.queue.notification_queue import (
    claim_due,
    dead_letter_bucket,
    delete,
    get_dead_letters,
    get_queue_stats,
    record_run,
    reschedule,
    write_dead_letter,
)

logger = get_logger(__name__)

REASON_TRANSIENT = "transient_max_attempts"
REASON_MAX_ATTEMPTS = "max_attempts"


def compute_backoff(attempts: int, base_minutes: float = 5, cap_minutes: float = 360) -> timedelta:
    """
    Delay before the next attempt: base * 2^attempts, capped.

    attempts is the count *before* this failure, so the first retry waits
    one base delay.
    """
    minutes = min((2 ** max(attempts, 0)) * base_minutes, cap_minutes)
    return timedelta(minutes=minutes)


class _RecordOutcome:
    """What one sweep learned about one record."""

    def __init__(self):
        self.sent = 0
        self.dropped = 0
        self.ignored = 0
        self.transient = False

    @property
    def delivered_any(self) -> bool:
        return self.sent > 0


async def _deliver(
    notification: QueuedNotification,
    tokens: list[tuple[str, str | None]],
    transport: Any,
    chunk_size: int,
    lookup_limit: int,
    cleanup_tasks: list[asyncio.Task],
) -> _RecordOutcome:
    """Send one record's messages and classify every ticket."""
    outcome = _RecordOutcome()
    data = notification.payload or None
    messages = [
        PushMessage(to=token, title=notification.title, body=notification.body, data=data)
        for token, _ in tokens
    ]

    offset = 0
    for chunk in chunk_messages(messages, chunk_size):
        owners = tokens[offset:offset + len(chunk)]
        offset += len(chunk)

        try:
            tickets = coerce_tickets(await transport.send(chunk), len(chunk))
        except Exception as e:
            # Any send failure is transient for the record
            outcome.transient = True
            logger.warning(
                "push_send_failed",
                notification_id=notification.id,
                messages=len(chunk),
                error_type=type(e).__name__,
                error=str(e),
            )
            continue

        for (token, owner), ticket in zip(owners, tickets):
            result = classify_ticket(ticket)

            if result == TicketOutcome.SENT:
                outcome.sent += 1
            elif result == TicketOutcome.PERMANENT:
                outcome.dropped += 1
                cleanup_tasks.append(
                    schedule_token_invalidation(token, user_id=owner, lookup_limit=lookup_limit)
                )
            elif result == TicketOutcome.TRANSIENT:
                outcome.transient = True
            else:
                outcome.ignored += 1
                logger.warning(
                    "push_ticket_rejected",
                    notification_id=notification.id,
                    error=ticket_error_code(ticket),
                    message=ticket.message,
                )

    return outcome


async def _process_record(
    notification: QueuedNotification,
    now: datetime,
    transport: Any,
    config: PushConfig,
    metrics: DeliveryRunMetrics,
    cleanup_tasks: list[asyncio.Task],
) -> None:
    worker = config.worker

    unique_tokens, unique_ids = dedupe_tokens(
        notification.recipient_tokens, notification.recipient_ids
    )
    deliverable = [
        (token, (unique_ids[i] or None) if i < len(unique_ids) else None)
        for i, token in enumerate(unique_tokens)
        if is_expo_push_token(token)
    ]

    if not deliverable:
        await delete(notification.id)
        logger.info("push_queue_no_tokens", notification_id=notification.id)
        return

    chunk_size = getattr(transport, "chunk_size", None) or config.expo.chunk_size
    outcome = await _deliver(
        notification,
        deliverable,
        transport,
        chunk_size,
        worker.token_lookup_limit,
        cleanup_tasks,
    )
    metrics.sent += outcome.sent
    metrics.dropped += outcome.dropped

    attempts = notification.attempts
    exhausted = attempts + 1 >= worker.max_attempts

    if outcome.transient and not exhausted:
        delay = compute_backoff(attempts, worker.base_delay_minutes, worker.max_delay_minutes)
        await reschedule(notification.id, attempts + 1, now + delay, now=now)
        metrics.retried += 1
        logger.info(
            "push_rescheduled",
            notification_id=notification.id,
            attempts=attempts + 1,
            delay_minutes=delay.total_seconds() / 60,
        )
        return

    if outcome.transient or (exhausted and not outcome.delivered_any):
        reason = REASON_TRANSIENT if outcome.transient else REASON_MAX_ATTEMPTS
        try:
            await write_dead_letter(
                DeadLetterRecord(
                    notification=notification,
                    reason=reason,
                    bucket=dead_letter_bucket(notification),
                    dead_lettered_at=now,
                )
            )
            metrics.dead_lettered += 1
            logger.warning(
                "push_dead_lettered",
                notification_id=notification.id,
                household_id=notification.household_id,
                attempts=attempts + 1,
                reason=reason,
            )
        except Exception as e:
            # Keep the record live so the next sweep writes the dead letter
            logger.warning(
                "push_dead_letter_write_failed",
                notification_id=notification.id,
                error=str(e),
            )
            return

    await delete(notification.id)


async def process_push_queue(
    now: datetime | None = None,
    transport: Any = None,
    config: PushConfig | None = None,
) -> DeliveryRunMetrics:
    """
    Run one sweep over the push queue.

    Args:
        now: Sweep time (defaults to now); also the base for retry delays
        transport: Object with `async send(messages) -> tickets`
            (defaults to ExpoTransport)
        config: Push configuration (defaults to args/push.yaml)

    Returns:
        The sweep's DeliveryRunMetrics
    """
    config = config or load_push_config()
    now = now or utcnow()
    transport = transport or ExpoTransport()

    metrics = DeliveryRunMetrics(
        run_id=DeliveryRunMetrics.generate_run_id(now),
        started_at=now,
    )
    bind_run_context(run_id=metrics.run_id)
    try:
        await _sweep(now, transport, config, metrics)
    finally:
        clear_run_context("run_id")
    return metrics


async def _sweep(
    now: datetime,
    transport: Any,
    config: PushConfig,
    metrics: DeliveryRunMetrics,
) -> None:
    cleanup_tasks: list[asyncio.Task] = []

    due = await claim_due(now, limit=config.worker.batch_size)
    metrics.checked = len(due)

    for notification in due:
        try:
            await _process_record(notification, now, transport, config, metrics, cleanup_tasks)
        except Exception as e:
            logger.error("push_queue_record_failed", notification_id=notification.id, error=str(e))

    if cleanup_tasks:
        await asyncio.gather(*cleanup_tasks, return_exceptions=True)

    metrics.finished_at = utcnow()

    try:
        await record_run(metrics)
    except Exception as e:
        logger.warning("push_run_metrics_failed", error=str(e))

    logger.info(
        "push_queue_run",
        checked=metrics.checked,
        sent=metrics.sent,
        dropped=metrics.dropped,
        retried=metrics.retried,
        dead_lettered=metrics.dead_lettered,
    )


class PushQueueRunner:
    """Runs process_push_queue() on a fixed interval until stopped."""

    def __init__(
        self,
        interval_minutes: float | None = None,
        transport: Any = None,
        config: PushConfig | None = None,
    ):
        self.config = config or load_push_config()
        self.interval_minutes = interval_minutes or self.config.worker.interval_minutes
        self.transport = transport
        self.running = False
        self.runs = 0
        self.errors = 0
        self.last_run: DeliveryRunMetrics | None = None
        self._stop_event: asyncio.Event | None = None

    def _setup_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self.stop)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform / not in the main thread
                pass

    def stop(self):
        self.running = False
        if self._stop_event is not None:
            self._stop_event.set()

    async def run_once(self) -> DeliveryRunMetrics | None:
        try:
            self.last_run = await process_push_queue(transport=self.transport, config=self.config)
            self.runs += 1
            return self.last_run
        except Exception as e:
            self.errors += 1
            logger.error("push_queue_loop_error", error=str(e))
            return None

    async def start(self, handle_signals: bool = True):
        """Loop until stop() or SIGINT/SIGTERM."""
        self.running = True
        self._stop_event = asyncio.Event()
        if handle_signals:
            self._setup_signal_handlers()

        logger.info("push_queue_runner_started", interval_minutes=self.interval_minutes)

        while self.running:
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_minutes * 60)
            except asyncio.TimeoutError:
                pass

        logger.info("push_queue_runner_stopped", runs=self.runs, errors=self.errors)

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "interval_minutes": self.interval_minutes,
            "runs": self.runs,
            "errors": self.errors,
            "last_run": self.last_run.to_dict() if self.last_run else None,
        }


def main():
    parser = argparse.ArgumentParser(description="Push Queue Worker")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("run-once", help="Run a single sweep")

    start_parser = subparsers.add_parser("start", help="Sweep on an interval until stopped")
    start_parser.add_argument("--interval", type=float, help="Minutes between sweeps")

    subparsers.add_parser("stats", help="Show queue statistics")

    dlq_parser = subparsers.add_parser("dead-letters", help="List dead letters")
    dlq_parser.add_argument("--bucket", "-b", help="Household id or 'system'")
    dlq_parser.add_argument("--limit", "-l", type=int, default=20, help="Max rows")

    args = parser.parse_args()
    setup_logging(json_output=True if args.json_logs else None)
    result = None

    if args.command == "run-once":
        metrics = asyncio.run(process_push_queue())
        result = {"success": True, "run": metrics.to_dict()}

    elif args.command == "start":
        runner = PushQueueRunner(interval_minutes=args.interval)
        asyncio.run(runner.start())
        result = {"success": True, "status": runner.get_status()}

    elif args.command == "stats":
        result = {"success": True, "stats": asyncio.run(get_queue_stats())}

    elif args.command == "dead-letters":
        records = asyncio.run(get_dead_letters(args.bucket, args.limit))
        result = {"success": True, "dead_letters": [r.to_dict() for r in records]}

    else:
        parser.print_help()
        sys.exit(0)

    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
