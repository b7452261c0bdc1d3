"""
Backup module for twikoo-backup.

This module handles the core backup functionality:
- Comment export from the Twikoo backend
- Snapshot storage
- Retention policy enforcement
- Pipeline orchestration with a durable step log
"""

from .remote import (
    TwikooClient,
    RemoteExportError,
    TransportError,
    RemoteHttpError,
    MalformedResponseError,
    RemoteApiError,
)
from .storage import SnapshotStore, StorageError
from .retention import select_expired_ids, enforce_retention, parse_keep_count
from .pipeline import BackupPipeline, create_run, execute_pipeline_run, prune_run_history

__all__ = [
    'TwikooClient',
    'RemoteExportError',
    'TransportError',
    'RemoteHttpError',
    'MalformedResponseError',
    'RemoteApiError',
    'SnapshotStore',
    'StorageError',
    'select_expired_ids',
    'enforce_retention',
    'parse_keep_count',
    'BackupPipeline',
    'create_run',
    'prune_run_history',
    'execute_pipeline_run'
]
