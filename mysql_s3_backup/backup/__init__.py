"""
Backup module for mysql-s3-backup.

This module handles the core backup functionality including:
- Host locking
- Signal driven cleanup
- Replica pause and resume
- Database enumeration
- Export pipelines (dump, compress, encrypt)
- S3 upload
- Execution orchestration
"""

from .executor import BackupExecutor, run_backup
from .lock import LockManager, AlreadyRunning
from .lifecycle import CleanupCoordinator, RunTerminated
from .replica import ReplicaController
from .schemas import SchemaEnumerator
from .pipeline import build_pipeline, run_pipeline
from .exporter import Exporter
from .storage import S3Storage

__all__ = [
    'BackupExecutor',
    'run_backup',
    'LockManager',
    'AlreadyRunning',
    'CleanupCoordinator',
    'RunTerminated',
    'ReplicaController',
    'SchemaEnumerator',
    'build_pipeline',
    'run_pipeline',
    'Exporter',
    'S3Storage'
]
