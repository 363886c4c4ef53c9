# app/scheduler.py
"""
Background task scheduler for device session housekeeping.

Uses APScheduler to run periodic background jobs for:
- Expiring device sessions idle past the TTL
- Deleting ended device sessions past the retention window
"""

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED

from app.background_tasks.device_session_tasks import (
    cleanup_old_device_sessions,
    sweep_stale_device_sessions,
)
from app.core.config import Settings
from app.services.session_lifecycle import SessionLifecycleManager

logger = logging.getLogger(__name__)


def _on_job_error(event):
    """Log scheduler job errors with full context."""
    job_id = event.job_id
    exc = event.exception
    tb = event.traceback
    logger.error(
        "Scheduled job FAILED: job_id=%s error=%s",
        job_id, exc,
        exc_info=(type(exc), exc, None) if exc else None,
    )
    if tb:
        logger.error("Traceback for job %s:\n%s", job_id, tb)


def _on_job_missed(event):
    """Log when a scheduled job misses its execution window."""
    logger.warning(
        "Scheduled job MISSED: job_id=%s scheduled_run_time=%s",
        event.job_id,
        event.scheduled_run_time,
    )


def create_scheduler(lifecycle: SessionLifecycleManager, settings: Settings) -> BackgroundScheduler:
    """
    Build the background scheduler with all periodic tasks. Not started.
    """
    scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={
            'coalesce': True,  # Combine missed executions
            'max_instances': 1,  # Only one instance of each job at a time
            'misfire_grace_time': 60  # Allow 60 seconds grace period
        }
    )

    # Job 1: Expire stale device sessions
    scheduler.add_job(
        func=sweep_stale_device_sessions,
        args=[lifecycle],
        trigger=IntervalTrigger(minutes=settings.STALE_SWEEP_INTERVAL_MINUTES),
        id='sweep_stale_device_sessions',
        name='Expire Stale Device Sessions',
        replace_existing=True
    )
    logger.info(
        f"Scheduled job: sweep_stale_device_sessions (every {settings.STALE_SWEEP_INTERVAL_MINUTES} minutes)"
    )

    # Job 2: Retention cleanup, once a day
    scheduler.add_job(
        func=cleanup_old_device_sessions,
        args=[lifecycle],
        trigger=CronTrigger(hour=settings.RETENTION_CLEANUP_HOUR_UTC, minute=0),
        id='cleanup_old_device_sessions',
        name='Delete Expired Device Session History',
        replace_existing=True
    )
    logger.info(
        f"Scheduled job: cleanup_old_device_sessions (daily at {settings.RETENTION_CLEANUP_HOUR_UTC:02d}:00 UTC)"
    )

    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)

    return scheduler


def shutdown_scheduler(scheduler: Optional[BackgroundScheduler]):
    """
    Gracefully shutdown the scheduler.
    """
    if scheduler is not None and scheduler.running:
        logger.info("Shutting down background scheduler...")
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler shutdown complete")
