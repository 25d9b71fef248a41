#!/usr/bin/env python3
"""
Standalone script to sync every connected mailbox
This script is meant to be run by Railway cron service
"""

import logging
import signal
import sys
import threading

from common.config import Config, configure_logging
from services import build_services

logger = logging.getLogger("run_sync")


def main() -> int:
    """Main entry point for cron job"""
    configure_logging()
    services = build_services(Config.from_env())

    # SIGTERM stops the run between messages; the current pass still logs
    cancel_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: cancel_event.set())

    logger.info("📊 Mailbox sync cron job")
    outcomes = services.orchestrator.run_all(cancel_event)

    failed = [outcome for outcome in outcomes if not outcome.ok]
    for outcome in failed:
        logger.error(f"❌ {outcome.user_id}: {outcome.message}")

    logger.info(
        f"✅ Synced {len(outcomes)} mailboxes, "
        f"{sum(outcome.processed for outcome in outcomes)} transactions, "
        f"{len(failed)} failures"
    )
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
