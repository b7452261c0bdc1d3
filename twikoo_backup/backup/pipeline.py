"""
Backup pipeline - fetches, persists and prunes comment snapshots.

Workflow (one PipelineRun):
1. fetch   - export comments from Twikoo
2. persist - insert a Snapshot row with the run's capture date
3. prune   - delete snapshots outside the retention window

Each step's outcome is written to the step log (pipeline_steps). A resumed
run skips completed steps and reuses their recorded output, so the Twikoo
export is never fetched twice for the same run and a persisted snapshot is
never written twice by a resume.
"""

import json
import time
import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from flask import current_app
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError

from twikoo_backup import db
from twikoo_backup.events import log_event
from twikoo_backup.models import PipelineRun, PipelineStep
from .remote import TwikooClient
from .retention import enforce_retention, parse_keep_count
from .storage import SnapshotStore, StorageError

logger = logging.getLogger(__name__)

STEP_FETCH = 'fetch'
STEP_PERSIST = 'persist'
STEP_PRUNE = 'prune'
STEPS = (STEP_FETCH, STEP_PERSIST, STEP_PRUNE)
FINISHED_STATUSES = ('success', 'failed')


def utc_today() -> str:
    """Current UTC date as YYYY-MM-DD."""
    return datetime.now(timezone.utc).date().isoformat()


def serialize_payload(payload: Any) -> str:
    """Serialize an export payload compactly, keeping non-ASCII text as is."""
    return json.dumps(payload, ensure_ascii=False, separators=(',', ':'))


def create_run(trigger: str, session=None) -> PipelineRun:
    """
    Create a queued pipeline run.

    The capture date is fixed here, so every step of the run (and every
    retry) uses the same date.

    Args:
        trigger: 'manual' or 'scheduled'
        session: SQLAlchemy session (defaults to db.session)

    Returns:
        The new PipelineRun

    Raises:
        StorageError: If the run cannot be recorded
    """
    session = session or db.session
    run = PipelineRun(
        id=uuid.uuid4().hex,
        trigger=trigger,
        status='queued',
        capture_date=utc_today()
    )
    try:
        session.add(run)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise StorageError(f"Failed to create pipeline run: {e}") from e
    return run


def claim_run(run_id: str, session=None) -> bool:
    """
    Move a run from queued to running.

    A single conditional UPDATE, so only one executor can claim a given run.

    Returns:
        True if this caller claimed the run
    """
    session = session or db.session
    result = session.execute(
        update(PipelineRun)
        .where(PipelineRun.id == run_id, PipelineRun.status == 'queued')
        .values(status='running', started_at=datetime.now(timezone.utc))
    )
    session.commit()
    return result.rowcount == 1


def requeue_interrupted_runs(session=None) -> List[str]:
    """
    Put runs left 'running' by a dead process back in the queue.

    Only call this from the process that owns the scheduler, before it starts
    executing runs.

    Returns:
        Ids of the requeued runs
    """
    session = session or db.session
    run_ids = list(session.scalars(select(PipelineRun.id).where(PipelineRun.status == 'running')))
    if run_ids:
        session.execute(
            update(PipelineRun)
            .where(PipelineRun.id.in_(run_ids), PipelineRun.status == 'running')
            .values(status='queued')
        )
        session.commit()
    return run_ids


def queued_run_ids(session=None) -> List[str]:
    """Ids of queued runs, oldest first."""
    session = session or db.session
    return list(session.scalars(
        select(PipelineRun.id).where(PipelineRun.status == 'queued').order_by(PipelineRun.created_at)
    ))


def fail_run(run: PipelineRun, error: Exception, session=None):
    """Mark a run as failed. Problems recording the failure are logged, not raised."""
    session = session or db.session
    try:
        session.rollback()
        run.status = 'failed'
        run.completed_at = datetime.now(timezone.utc)
        run.error_message = str(error)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Could not record failure of run {run.id}: {e}")


def prune_run_history(keep: int, exclude: Optional[str] = None, session=None) -> List[str]:
    """
    Delete finished runs beyond the newest ``keep``, together with their step logs.

    Queued and running runs are never touched.

    Args:
        keep: Number of finished runs to keep
        exclude: Run id that is always kept (the run doing the pruning)
        session: SQLAlchemy session (defaults to db.session)

    Returns:
        Ids of the deleted runs
    """
    session = session or db.session
    query = (
        select(PipelineRun.id)
        .where(PipelineRun.status.in_(FINISHED_STATUSES))
        .order_by(PipelineRun.created_at.desc(), PipelineRun.id.desc())
    )
    if exclude is not None:
        query = query.where(PipelineRun.id != exclude)
        keep -= 1
    try:
        run_ids = list(session.scalars(query.offset(max(keep, 0))))
        if run_ids:
            session.execute(delete(PipelineStep).where(PipelineStep.run_id.in_(run_ids)))
            session.execute(delete(PipelineRun).where(PipelineRun.id.in_(run_ids)))
            session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise StorageError(f"Failed to prune run history: {e}") from e
    return run_ids


class BackupPipeline:
    """
    Executes one pipeline run with per-step retries and a durable step log.
    """

    def __init__(self, run: PipelineRun, client: TwikooClient, store: SnapshotStore, keep_count: int,
                 max_attempts: int = 5, retry_delay: float = 10, run_history: int = 20, session=None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the pipeline.

        Args:
            run: PipelineRun to execute (already claimed)
            client: Twikoo export client
            store: Snapshot store
            keep_count: Number of snapshots retention keeps
            max_attempts: Attempts per step for retryable errors
            retry_delay: Base delay in seconds, doubled after each failed attempt
            run_history: Number of finished runs kept in the run history
            session: SQLAlchemy session for the step log (defaults to db.session)
            sleep: Sleep function used between attempts
        """
        self.run = run
        self.client = client
        self.store = store
        self.keep_count = keep_count
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.run_history = max(1, run_history)
        self.session = session or db.session
        self.sleep = sleep

    def execute(self) -> Dict[str, Any]:
        """
        Run fetch, persist and prune in order.

        Returns:
            {'status': 'success', 'date': capture date, 'rows_written': 1}

        Raises:
            Exception: The error of the first step that failed terminally
        """
        capture_date = self.run.capture_date
        logger.info(f"Starting pipeline run {self.run.id} ({self.run.trigger}, date {capture_date})")

        try:
            content = self._run_step(STEP_FETCH, self._fetch)
            persisted = json.loads(self._run_step(STEP_PERSIST, lambda: self._persist(content)))
            self._run_step(STEP_PRUNE, self._prune)
        except Exception as e:
            fail_run(self.run, e, self.session)
            log_event('auto_backup', {'success': False, 'error': str(e), 'date': capture_date,
                                      'run_id': self.run.id}, level=logging.ERROR)
            self._release()
            raise

        self.run.status = 'success'
        self.run.completed_at = datetime.now(timezone.utc)
        self.run.snapshot_id = persisted['snapshot_id']
        self.run.error_message = None
        self.session.commit()
        self._release()

        log_event('auto_backup', {'success': True, 'date': capture_date, 'run_id': self.run.id})
        return {'status': 'success', 'date': capture_date, 'rows_written': 1}

    # Steps. Each returns the text recorded as the step's output.

    def _fetch(self) -> str:
        return serialize_payload(self.client.export_comments())

    def _persist(self, content: str) -> str:
        snapshot = self.store.add(self.run.capture_date, content)
        return json.dumps({'snapshot_id': snapshot.id})

    def _prune(self) -> str:
        deleted = enforce_retention(self.store, self.keep_count)
        return json.dumps({'deleted': deleted})

    def _release(self):
        """
        Drop the fetched export from the step log and prune old run history.

        Only called once the run is finished; a run that is still resumable keeps its payload.
        Problems here are logged and do not change the run outcome.
        """
        try:
            self.session.execute(
                update(PipelineStep)
                .where(
                    PipelineStep.run_id.in_(
                        select(PipelineRun.id)
                        .where(PipelineRun.id == self.run.id, PipelineRun.status.in_(FINISHED_STATUSES))
                    ),
                    PipelineStep.name == STEP_FETCH
                )
                .values(output=None)
                .execution_options(synchronize_session='fetch')
            )
            self.session.commit()
            deleted = prune_run_history(self.run_history, exclude=self.run.id, session=self.session)
        except (SQLAlchemyError, StorageError) as e:
            self.session.rollback()
            logger.warning(f"Run {self.run.id}: could not clean up run history: {e}")
            return
        if deleted:
            logger.info(f"Pruned {len(deleted)} finished run(s) from the run history")

    # Step log

    def _run_step(self, name: str, func: Callable[[], str]) -> str:
        """
        Run a step unless the step log says it already completed.

        Retryable errors (``retryable = True`` on the exception) are retried
        with exponential backoff up to max_attempts; anything else fails the
        step immediately.
        """
        recorded = self._load_step(name)
        if recorded is not None and recorded.status == 'completed':
            logger.info(f"Run {self.run.id}: step '{name}' already completed, reusing its output")
            return recorded.output

        attempt = 0
        while True:
            attempt += 1
            try:
                output = func()
                self._record_step(name, 'completed', attempt, output=output)
                return output
            except Exception as e:
                if getattr(e, 'retryable', False) and attempt < self.max_attempts:
                    delay = self.retry_delay * 2 ** (attempt - 1)
                    logger.warning(
                        f"Run {self.run.id}: step '{name}' attempt {attempt}/{self.max_attempts} "
                        f"failed: {e}; retrying in {delay}s"
                    )
                    self.sleep(delay)
                    continue

                logger.error(f"Run {self.run.id}: step '{name}' failed after {attempt} attempt(s): {e}")
                try:
                    self._record_step(name, 'failed', attempt, error=str(e))
                except StorageError as record_error:
                    logger.error(f"Run {self.run.id}: could not record step failure: {record_error}")
                raise

    def _load_step(self, name: str) -> Optional[PipelineStep]:
        try:
            return self.session.scalar(
                select(PipelineStep).where(PipelineStep.run_id == self.run.id, PipelineStep.name == name)
            )
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"Failed to read step log: {e}") from e

    def _record_step(self, name: str, status: str, attempts: int,
                     output: Optional[str] = None, error: Optional[str] = None):
        try:
            step = self._load_step(name)
            if step is None:
                step = PipelineStep(run_id=self.run.id, name=name, attempts=0)
                self.session.add(step)
            step.status = status
            step.attempts = (step.attempts or 0) + attempts
            step.output = output
            step.error_message = error
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StorageError(f"Failed to record step '{name}': {e}") from e


def build_client(config) -> TwikooClient:
    """Create the Twikoo client from application config."""
    return TwikooClient(
        base_url=config.get('TWIKOO_URL'),
        password=config.get('TWIKOO_PASSWORD'),
        timeout=config.get('TWIKOO_TIMEOUT', 30)
    )


def execute_pipeline_run(run_id: str, client: Optional[TwikooClient] = None,
                         sleep: Callable[[float], None] = time.sleep) -> Optional[Dict[str, Any]]:
    """
    Claim and execute a queued run. Must be called inside an app context.

    Args:
        run_id: PipelineRun id
        client: Optional client (built from config otherwise)
        sleep: Sleep function used between retries

    Returns:
        The run result, or None if the run was not claimable (already taken or finished)

    Raises:
        Exception: Whatever terminally failed the run
    """
    if not claim_run(run_id):
        logger.info(f"Run {run_id} is not queued, skipping")
        return None

    run = db.session.get(PipelineRun, run_id)
    config = current_app.config

    try:
        client = client or build_client(config)
    except ValueError as e:
        fail_run(run, e)
        log_event('auto_backup', {'success': False, 'error': str(e), 'date': run.capture_date,
                                  'run_id': run.id}, level=logging.ERROR)
        raise

    pipeline = BackupPipeline(
        run=run,
        client=client,
        store=SnapshotStore(db.session),
        keep_count=parse_keep_count(config.get('BACKUP_KEEP_COUNT')),
        max_attempts=config.get('STEP_RETRY_LIMIT', 5),
        retry_delay=config.get('STEP_RETRY_DELAY', 10),
        run_history=config.get('RUN_HISTORY_LIMIT', 20),
        sleep=sleep
    )
    return pipeline.execute()
