"""APScheduler setup for the periodic mailbox cycle."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler

if TYPE_CHECKING:
    from mailwatch.agent.watcher import MailboxWatcher

logger = logging.getLogger(__name__)

CYCLE_JOB_ID = "mailbox-cycle"


def create_poll_scheduler(
    watcher: MailboxWatcher,
    interval_minutes: int,
) -> AsyncIOScheduler:
    """Return an AsyncIOScheduler that fires watcher.run_cycle() every N minutes.

    ``max_instances=1`` and ``coalesce`` keep a slow cycle from overlapping the
    next one; missed triggers collapse into a single run.

    The caller is responsible for calling scheduler.start() and scheduler.shutdown().
    """
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        watcher.run_cycle,
        "interval",
        minutes=interval_minutes,
        id=CYCLE_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    logger.info("Scheduler configured: every %d minute(s)", interval_minutes)
    return scheduler
