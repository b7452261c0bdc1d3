"""
APScheduler configuration and run scheduling for twikoo-backup.

Manages:
- The daily scheduled backup (cron, UTC)
- Immediate execution of manually started runs
- A dispatcher that executes any queued runs (runs started by processes that
  do not own the scheduler, and runs requeued after a restart)
"""

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from twikoo_backup.events import log_event
from twikoo_backup.models import PipelineRun
from twikoo_backup.backup.pipeline import (
    create_run,
    execute_pipeline_run,
    queued_run_ids,
    requeue_interrupted_runs,
)

logger = logging.getLogger(__name__)

DAILY_JOB_ID = 'daily_backup'
DISPATCH_JOB_ID = 'dispatch_queued_runs'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app

    # Configure job stores and executors
    jobstores = {
        'default': SQLAlchemyJobStore(url=app.config['SQLALCHEMY_DATABASE_URI'])
    }

    executors = {
        'default': ThreadPoolExecutor(max_workers=3)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    # Create scheduler
    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone='UTC'
    )

    # Daily backup; a fire missed by more than a minute is dropped, not backfilled
    scheduler.add_job(
        func=scheduled_backup,
        trigger=CronTrigger.from_crontab(app.config.get('BACKUP_CRON', '0 0 * * *'), timezone='UTC'),
        id=DAILY_JOB_ID,
        name='Daily Twikoo Backup',
        misfire_grace_time=60,
        replace_existing=True
    )

    scheduler.add_job(
        func=dispatch_queued_runs,
        trigger=IntervalTrigger(seconds=app.config.get('DISPATCH_INTERVAL_SECONDS', 15)),
        id=DISPATCH_JOB_ID,
        name='Dispatch Queued Runs',
        replace_existing=True
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def recover_interrupted_runs():
    """
    Requeue runs a previous process left 'running'.

    Must be called inside an app context, before the scheduler starts.
    """
    run_ids = requeue_interrupted_runs()
    for run_id in run_ids:
        logger.warning(f"Requeued interrupted run {run_id}; it will resume at its first incomplete step")
    return run_ids


def start_run(trigger: str = 'manual') -> PipelineRun:
    """
    Start a pipeline run without waiting for it.

    The run is recorded as queued; when this process owns a running scheduler
    it is also handed to the scheduler for immediate execution, otherwise the
    dispatcher in the scheduler process picks it up.

    Args:
        trigger: 'manual' or 'scheduled'

    Returns:
        The queued PipelineRun (its id is the run handle)

    Raises:
        StorageError: If the run cannot be recorded
    """
    run = create_run(trigger)

    if scheduler is not None and scheduler.running:
        try:
            scheduler.add_job(
                func=_execute_run_wrapper,
                args=[run.id],
                trigger=DateTrigger(run_date=datetime.now(timezone.utc) + timedelta(seconds=1)),
                id=f"run_{run.id}",
                name=f"Backup run ({trigger})",
                misfire_grace_time=None,
                replace_existing=False
            )
        except Exception as e:
            # The run stays queued; the dispatcher will execute it
            logger.warning(f"Could not schedule run {run.id} immediately: {e}")
    else:
        logger.info(f"Run {run.id} queued for the dispatcher")

    return run


def scheduled_backup():
    """Cron entry point: start a run and log the outcome. Never raises."""
    with flask_app.app_context():
        try:
            run = start_run('scheduled')
            log_event('cron_backup', {'success': True, 'instanceId': run.id})
        except Exception as e:
            log_event('cron_backup', {'success': False, 'error': str(e)}, level=logging.ERROR)


def dispatch_queued_runs():
    """Execute every queued run, oldest first. Never raises."""
    with flask_app.app_context():
        try:
            run_ids = queued_run_ids()
        except Exception as e:
            logger.error(f"Failed to list queued runs: {e}")
            return

    for run_id in run_ids:
        _execute_run_wrapper(run_id)


def _execute_run_wrapper(run_id: str):
    """
    Wrapper for executing a run in scheduler context.

    Runs inside the app context and logs failures instead of raising, so a
    failed run never takes down a scheduler thread.

    Args:
        run_id: PipelineRun id
    """
    with flask_app.app_context():
        try:
            result = execute_pipeline_run(run_id)
            if result is not None:
                logger.info(f"Run {run_id} completed: {result}")
        except Exception as e:
            logger.error(f"Run {run_id} failed: {e}")


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    global scheduler

    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    """Check if the scheduler is running in this process."""
    return scheduler is not None and scheduler.running
