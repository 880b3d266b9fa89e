"""
APScheduler configuration for the weekly payout batch and the month-end TDS statement.

Each job runs in a background thread with its own database session, so it
never shares a transaction with request handlers.
"""
from __future__ import annotations

import logging

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from affiliate_desk.config import Settings, get_settings

logger = logging.getLogger(__name__)

WEEKLY_PAYOUT_JOB_ID = "weekly_payout"
MONTHLY_TDS_JOB_ID = "monthly_tds_statement"

job_defaults = {
    "coalesce": True,  # Combine missed runs into one
    "max_instances": 1,
    "misfire_grace_time": 3600,
}


def build_scheduler(settings: Settings | None = None) -> BackgroundScheduler:
    settings = settings or get_settings()
    return BackgroundScheduler(
        jobstores={"default": MemoryJobStore()},
        executors={"default": ThreadPoolExecutor(max_workers=1)},
        job_defaults=job_defaults,
        timezone=settings.TIMEZONE,
    )


scheduler = build_scheduler()


def weekly_payout_job() -> None:
    """Entry point called by APScheduler."""
    from affiliate_desk.payouts import run_weekly_payout

    try:
        outcome = run_weekly_payout()
        logger.info(
            "Job '%s' completed: %s (%s created, %s skipped, %s errors)",
            WEEKLY_PAYOUT_JOB_ID,
            outcome.outcome,
            outcome.created,
            outcome.skipped,
            outcome.errors,
        )
    except Exception:
        logger.exception("Job '%s' failed", WEEKLY_PAYOUT_JOB_ID)


def monthly_tds_job() -> None:
    """Month-end TDS statement, called by APScheduler on the last day of the month."""
    from affiliate_desk.tds import run_monthly_tds_report

    try:
        path = run_monthly_tds_report()
        logger.info("Job '%s' completed: %s", MONTHLY_TDS_JOB_ID, path.name if path else "nothing to report")
    except Exception:
        logger.exception("Job '%s' failed", MONTHLY_TDS_JOB_ID)


def register_jobs(target: BackgroundScheduler, settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    target.add_job(
        weekly_payout_job,
        trigger=CronTrigger(
            day_of_week=settings.PAYOUT_SCHEDULE_DAY,
            hour=settings.PAYOUT_SCHEDULE_HOUR,
            minute=0,
            timezone=settings.TIMEZONE,
        ),
        id=WEEKLY_PAYOUT_JOB_ID,
        name="Generate last week's affiliate payouts",
        replace_existing=True,
    )
    target.add_job(
        monthly_tds_job,
        trigger=CronTrigger(
            day="last",
            hour=settings.TDS_REPORT_HOUR,
            minute=settings.TDS_REPORT_MINUTE,
            timezone=settings.TIMEZONE,
        ),
        id=MONTHLY_TDS_JOB_ID,
        name="Write this month's TDS statement",
        replace_existing=True,
    )


def start_scheduler() -> None:
    """Start the background scheduler with the payout and TDS jobs."""
    if scheduler.running:
        return
    register_jobs(scheduler)
    scheduler.start()
    logger.info("Background scheduler started with %s job(s)", len(scheduler.get_jobs()))


def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")
