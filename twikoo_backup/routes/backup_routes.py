"""
Backup routes - panel page, snapshot listing and download, run triggering.
"""

from flask import Blueprint, Response, jsonify, render_template, request
from flask_login import login_required

from twikoo_backup import db
from twikoo_backup.events import log_event
from twikoo_backup.models import PipelineRun
from twikoo_backup.backup.storage import SnapshotStore
from twikoo_backup.scheduler import start_run, get_scheduled_jobs, is_scheduler_running


bp = Blueprint('backup', __name__)


@bp.route('/')
@bp.route('/index.html')
@login_required
def panel():
    """Backup panel page."""
    log_event('page_view', {}, request)
    return render_template('panel.html')


@bp.route('/list', methods=['GET'])
@login_required
def list_snapshots():
    """
    List stored snapshots, newest first.

    Returns:
        JSON array of {id, date, size}; size is the payload length in bytes
    """
    return jsonify(SnapshotStore(db.session).list_summaries())


@bp.route('/download/<int:snapshot_id>', methods=['GET'])
@login_required
def download_snapshot(snapshot_id):
    """
    Download a snapshot's raw export.

    Args:
        snapshot_id: Snapshot ID

    Returns:
        The stored JSON as an attachment, or 404
    """
    snapshot = SnapshotStore(db.session).get(snapshot_id)

    if snapshot is None:
        log_event('download_backup', {'success': False, 'id': snapshot_id}, request)
        return Response('not found', status=404, mimetype='text/plain')

    log_event('download_backup', {'success': True, 'id': snapshot_id}, request)
    return Response(
        snapshot.content.encode('utf-8'),
        mimetype='application/json',
        headers={
            'Content-Disposition': f'attachment; filename="twikoo-comment-{snapshot.date}.json"'
        }
    )


@bp.route('/backup', methods=['POST'])
@login_required
def trigger_backup():
    """
    Start a backup run and return its handle without waiting for it.

    Returns:
        JSON {msg, id}, or 500 if the run could not be started
    """
    try:
        run = start_run('manual')
    except Exception as e:
        log_event('manual_backup', {'success': False, 'error': str(e)}, request)
        return Response('backup failed', status=500, mimetype='text/plain')

    log_event('manual_backup', {'success': True, 'instanceId': run.id}, request)
    return jsonify({'msg': 'backup started', 'id': run.id})


@bp.route('/runs/<run_id>', methods=['GET'])
@login_required
def get_run(run_id):
    """
    Get the status of a pipeline run and its step log (without payloads).

    Args:
        run_id: Run handle returned by POST /backup
    """
    run = db.session.get(PipelineRun, run_id)
    if run is None:
        return jsonify({'error': 'Run not found'}), 404

    return jsonify({
        'id': run.id,
        'trigger': run.trigger,
        'status': run.status,
        'date': run.capture_date,
        'created_at': run.created_at.isoformat(),
        'started_at': run.started_at.isoformat() if run.started_at else None,
        'completed_at': run.completed_at.isoformat() if run.completed_at else None,
        'snapshot_id': run.snapshot_id,
        'error_message': run.error_message,
        'steps': [
            {
                'name': step.name,
                'status': step.status,
                'attempts': step.attempts,
                'error_message': step.error_message
            }
            for step in run.steps
        ]
    })


@bp.route('/status', methods=['GET'])
@login_required
def get_status():
    """Scheduler state of this process and its scheduled jobs."""
    return jsonify({
        'scheduler_status': 'running' if is_scheduler_running() else 'stopped',
        'jobs': get_scheduled_jobs()
    })
