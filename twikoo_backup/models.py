from datetime import datetime, timezone
from twikoo_backup import db


def _utcnow():
    return datetime.now(timezone.utc)


class Snapshot(db.Model):
    """One stored comment export"""
    __tablename__ = 'comments_backup'
    __table_args__ = {'sqlite_autoincrement': True}  # ids are never reused after deletes

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    date = db.Column(db.String(10), nullable=False)  # UTC capture date, YYYY-MM-DD
    content = db.Column(db.Text, nullable=False)  # Verbatim serialized export

    def __repr__(self):
        return f'<Snapshot id={self.id} date={self.date}>'


class PipelineRun(db.Model):
    """One backup pipeline run; its id is the run handle returned to triggers"""
    __tablename__ = 'pipeline_runs'

    id = db.Column(db.String(32), primary_key=True)
    trigger = db.Column(db.String(20), nullable=False)  # manual, scheduled
    status = db.Column(db.String(20), nullable=False, default='queued')  # queued, running, success, failed
    capture_date = db.Column(db.String(10), nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow, nullable=False)
    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    snapshot_id = db.Column(db.Integer)
    error_message = db.Column(db.Text)

    # Relationship
    steps = db.relationship('PipelineStep', back_populates='run', cascade='all, delete-orphan',
                            order_by='PipelineStep.id')

    def __repr__(self):
        return f'<PipelineRun {self.id} status={self.status}>'


class PipelineStep(db.Model):
    """Step log entry: records a step's outcome and output for resumption"""
    __tablename__ = 'pipeline_steps'
    __table_args__ = (
        db.UniqueConstraint('run_id', 'name', name='uq_pipeline_steps_run_name'),
    )

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(db.String(32), db.ForeignKey('pipeline_runs.id'), nullable=False)
    name = db.Column(db.String(20), nullable=False)  # fetch, persist, prune
    status = db.Column(db.String(20), nullable=False)  # completed, failed
    attempts = db.Column(db.Integer, default=0, nullable=False)
    output = db.Column(db.Text)  # JSON text of the step result
    error_message = db.Column(db.Text)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    # Relationship
    run = db.relationship('PipelineRun', back_populates='steps')

    def __repr__(self):
        return f'<PipelineStep run={self.run_id} name={self.name} status={self.status}>'
