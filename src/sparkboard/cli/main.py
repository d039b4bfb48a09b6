# src/sparkboard/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs one of:
- reconcile: a single reconciliation run, summary printed as JSON,
- run: reconciliation scheduler + notification consumer until SIGINT/SIGTERM,
- dead-letters: list messages parked in the dead-letter queue,
- redrive: move dead-lettered messages back to the main queue.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from datetime import datetime

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..core.state import AppState
from ..items.item_models import parse_ts
from ..items.reconciliation import handle_scheduled_event, run_reconciliation_scheduler
from ..logging_setup import setup_logging
from ..notifications.consumer import run_notification_consumer

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sparkboard", description="Sparkboard item lifecycle pipeline")
    sub = parser.add_subparsers(dest="command", required=True)

    p_rec = sub.add_parser("reconcile", help="run the reconciliation job once")
    p_rec.add_argument("--now", help="evaluate as of this ISO-8601 timestamp (default: current time)")

    p_run = sub.add_parser("run", help="run the scheduler and the notification consumer")
    p_run.add_argument("--no-scheduler", action="store_true", help="do not run the reconciliation scheduler")
    p_run.add_argument("--no-consumer", action="store_true", help="do not run the notification consumer")

    p_dlq = sub.add_parser("dead-letters", help="list dead-lettered notifications")
    p_dlq.add_argument("--limit", type=int, default=100)

    p_redrive = sub.add_parser("redrive", help="move dead-lettered notifications back to the queue")
    p_redrive.add_argument("--limit", type=int, default=None)

    return parser


def _cmd_reconcile(state: AppState, args: argparse.Namespace) -> int:
    now: datetime | None = None
    if args.now:
        now = parse_ts(args.now)
        if now is None:
            print(f"invalid --now timestamp: {args.now}", file=sys.stderr)
            return 2

    response = handle_scheduled_event(
        state.item_store,
        state.queue,
        now=now,
        page_size=state.settings.scan_page_size,
        time_budget_seconds=state.settings.job_time_budget_seconds,
    )
    print(response["body"])
    return 0 if response["statusCode"] == 200 else 1


def _cmd_dead_letters(state: AppState, args: argparse.Namespace) -> int:
    letters = state.queue.list_dead_letters(limit=args.limit)
    for letter in letters:
        print(
            json.dumps(
                {
                    "messageId": letter.message_id,
                    "receiveCount": letter.receive_count,
                    "sentAt": letter.sent_at,
                    "deadLetteredAt": letter.dead_lettered_at,
                    "body": letter.body,
                },
                ensure_ascii=False,
            )
        )
    logger.info("Listed %d dead-lettered message(s) from %s", len(letters), state.queue.dead_letter_queue_url)
    return 0


def _cmd_redrive(state: AppState, args: argparse.Namespace) -> int:
    moved = state.queue.redrive_dead_letters(limit=args.limit)
    print(json.dumps({"redriven": moved}))
    return 0


async def _run_services(state: AppState, *, scheduler: bool, consumer: bool) -> None:
    settings = state.settings
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_signal, sig)
        except (NotImplementedError, RuntimeError):
            # Some platforms may not support SIGTERM, etc.
            pass

    tasks: list[asyncio.Task[None]] = []
    if scheduler:
        tasks.append(
            asyncio.create_task(
                run_reconciliation_scheduler(
                    state.item_store,
                    state.queue,
                    interval_seconds=settings.reconcile_interval_seconds,
                    page_size=settings.scan_page_size,
                    time_budget_seconds=settings.job_time_budget_seconds,
                ),
                name="reconciliation-scheduler",
            )
        )
    if consumer:
        tasks.append(
            asyncio.create_task(
                run_notification_consumer(
                    state.queue,
                    state.dispatcher,
                    batch_size=settings.batch_size,
                    batch_wait_seconds=settings.batch_wait_seconds,
                    poll_interval_seconds=settings.poll_interval_seconds,
                ),
                name="notification-consumer",
            )
        )

    if not tasks:
        logger.warning("Nothing to run: both the scheduler and the consumer are disabled.")
        return

    logger.info("Running %s. Press Ctrl+C to stop.", ", ".join(t.get_name() for t in tasks))
    waiter = asyncio.create_task(stop.wait())
    try:
        done, _ = await asyncio.wait([waiter, *tasks], return_when=asyncio.FIRST_COMPLETED)
        for t in done:
            if t is not waiter and not t.cancelled() and t.exception() is not None:
                logger.error("Service %s stopped unexpectedly", t.get_name(), exc_info=t.exception())
    finally:
        for t in (waiter, *tasks):
            t.cancel()
        await asyncio.gather(waiter, *tasks, return_exceptions=True)
        await _shutdown(state)


async def _shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    # The stores use short-lived sqlite connections per call; no explicit close required.
    aclose = getattr(state.channel, "aclose", None)
    if aclose is not None:
        with contextlib.suppress(Exception):
            await aclose()


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(settings.log_level).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s (%s)...", settings.app_name, args.command)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    if args.command == "reconcile":
        return _cmd_reconcile(state, args)
    if args.command == "dead-letters":
        return _cmd_dead_letters(state, args)
    if args.command == "redrive":
        return _cmd_redrive(state, args)

    try:
        asyncio.run(_run_services(state, scheduler=not args.no_scheduler, consumer=not args.no_consumer))
    except KeyboardInterrupt:
        pass
    logger.info("Bye.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
