"""
Outbox Relay Entrypoint

Long-running process that claims outbox entries and enqueues them for the
dramatiq workers. Run one or more instances next to the API and the worker.

Usage:
    python -m app.relay
    python -m app.relay --batch-size 50 --poll-interval 1.0

Procfile Configuration:
    relay: python -m app.relay

SIGINT / SIGTERM stop claiming; the batch in progress is enqueued before exit.
"""

import argparse
import signal
import sys

import structlog

from app.config import settings

logger = structlog.get_logger()


def build_relay(batch_size=None, poll_interval=None):
    """Wire store, queue and relay from settings."""
    from app import database
    from app.actors import broker
    from app.services.dispatch_queue import DispatchQueue
    from app.services.outbox import OutboxStore
    from app.services.outbox_relay import OutboxRelay

    database.init_db()
    if database.SessionLocal is None:
        raise SystemExit("DATABASE_URL is required to run the outbox relay")

    return OutboxRelay(
        store=OutboxStore(database.SessionLocal),
        dispatch_queue=DispatchQueue(broker),
        batch_size=batch_size,
        poll_interval=poll_interval,
    )


def install_signal_handlers(relay) -> None:
    def _shutdown(signum, frame):
        logger.info("relay_signal_received", signal=signal.Signals(signum).name)
        relay.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Relay outbox entries to the dispatch queue")
    parser.add_argument("--batch-size", type=int, default=settings.outbox_batch_size)
    parser.add_argument("--poll-interval", type=float, default=settings.outbox_poll_interval_seconds,
                        help="Seconds to wait after an empty claim")
    args = parser.parse_args(argv)

    from app.services.monitoring import init_sentry, setup_logging

    setup_logging(service="outbox-relay")
    init_sentry(process="relay")

    relay = build_relay(batch_size=args.batch_size, poll_interval=args.poll_interval)
    install_signal_handlers(relay)
    relay.run_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
