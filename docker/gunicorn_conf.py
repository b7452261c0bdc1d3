# Gunicorn configuration for twikoo-backup
# Exactly one live worker owns the APScheduler instance (daily backup and run dispatcher)
# Usage: gunicorn -c docker/gunicorn_conf.py "twikoo_backup:create_app()"

import os
import logging

logger = logging.getLogger('gunicorn.error')

bind = os.environ.get('BIND', '0.0.0.0:8000')
workers = int(os.environ.get('WEB_CONCURRENCY', 2))


def pre_fork(server, worker):
    """
    Called in the arbiter before a worker is forked.

    Hands scheduler ownership to the new worker when no live worker holds it, so
    a replacement for a killed or recycled owner takes over the scheduler.

    Args:
        server: Gunicorn arbiter
        worker: Gunicorn worker instance (not yet forked)
    """
    worker.owns_scheduler = getattr(server, 'scheduler_owner', None) is None
    if worker.owns_scheduler:
        server.scheduler_owner = worker


def post_fork(server, worker):
    """
    Called in each worker right after fork, before the app is loaded.

    Other workers only serve HTTP; runs they start stay queued until the owner's
    dispatcher executes them.
    """
    owns_scheduler = getattr(worker, 'owns_scheduler', False)
    os.environ['SCHEDULER_WORKER'] = 'true' if owns_scheduler else 'false'
    role = 'scheduler owner' if owns_scheduler else 'HTTP only'
    logger.info(f"Worker PID {worker.pid} (age={worker.age}): {role}")


def child_exit(server, worker):
    """Called in the arbiter after a worker exits; releases ownership if it held it."""
    if getattr(server, 'scheduler_owner', None) is worker:
        server.scheduler_owner = None
        logger.info(f"Scheduler owner PID {worker.pid} exited; the next worker takes over")


def on_reload(server):
    """
    Called in the arbiter on SIGHUP, before the new generation of workers is spawned.

    The old owner is retired after the new workers start, so ownership moves to the
    first new worker now.
    """
    server.scheduler_owner = None
