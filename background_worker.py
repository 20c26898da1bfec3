"""Background Worker for PillNow Schedule Service.

This module polls the database for doses that have come due and flags them.

The worker:
- Runs continuously, checking every WORKER_CHECK_INTERVAL seconds
- Selects Pending schedule records whose date and time have passed and whose
  alertSent flag is still false
- Sets alertSent on them and logs each due dose; devices poll
  /notifications/due and the flag for what to ring
- Logs errors and keeps running
"""

import asyncio
import signal
import sys
from datetime import datetime
from typing import Optional

import crud
import database
from config import settings
from logger_config import setup_logger
from reconciler import medication_names, resolve_pill_name

logger = setup_logger(__name__, 'worker.log')

# Global flag for graceful shutdown
shutdown_requested = False


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    global shutdown_requested
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_requested = True


def flag_due_doses(now: Optional[datetime] = None) -> int:
    """Flag every due, not yet alerted dose.

    Args:
        now: Naive local datetime to compare against (default: current time)

    Returns:
        int: Number of records flagged
    """
    now = now or datetime.now()
    db = database.SessionLocal()
    try:
        due = crud.get_due_unalerted_schedules(db, now)
        if not due:
            logger.debug("No due doses at this time")
            return 0

        names = medication_names(crud.list_medications(db))
        for record in due:
            logger.info(
                f"Dose due: schedule {record.schedule_id} user {record.user} "
                f"container {record.container} {resolve_pill_name(record.medication, names)} "
                f"at {record.date} {record.time}"
            )
        flagged = crud.mark_alert_sent(db, due)
        logger.info(f"Flagged {flagged} due dose(s)")
        return flagged
    finally:
        db.close()


async def worker_loop():
    """Main worker loop that runs until shutdown is requested."""
    logger.info("Alert worker started")
    logger.info(f"Worker enabled: {settings.WORKER_ENABLED}")
    logger.info(f"Check interval: {settings.WORKER_CHECK_INTERVAL} seconds")

    if not settings.WORKER_ENABLED:
        logger.warning("Worker is disabled in configuration. Exiting.")
        return

    iteration = 0
    while not shutdown_requested:
        try:
            iteration += 1
            logger.debug(f"Worker iteration {iteration} started")

            await asyncio.to_thread(flag_due_doses)

            # Sleep in 1-second steps to allow quick shutdown
            for _ in range(settings.WORKER_CHECK_INTERVAL):
                if shutdown_requested:
                    break
                await asyncio.sleep(1)

        except Exception as e:
            logger.error(f"Error in worker loop iteration {iteration}: {str(e)}", exc_info=True)
            await asyncio.sleep(5)

    logger.info("Alert worker shutting down gracefully")


def main():
    """Main entry point for the background worker."""
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info("=" * 60)
    logger.info("PillNow Schedule Service - Alert Worker")
    logger.info("=" * 60)

    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as e:
        logger.error(f"Fatal error in alert worker: {str(e)}", exc_info=True)
        sys.exit(1)

    logger.info("Alert worker stopped")
    sys.exit(0)


if __name__ == "__main__":
    main()
