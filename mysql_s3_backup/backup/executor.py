"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Acquire the host lock
2. Check required tools and encryption settings
3. Create the local backup directory
4. Ensure the S3 bucket exists (or create it)
5. Stop the replica, if configured and running
6. Enumerate databases
7. Export every database (and table) through its pipeline
8. Upload the backup directory to S3
9. Cleanup: restart replica, remove local directory, release lock
"""

import os
import shutil
import logging
from typing import Optional, List

from mysql_s3_backup.config import RunConfig, ConfigError, check_dependencies
from .lock import LockManager, LockHandle, AlreadyRunning
from .lifecycle import CleanupCoordinator, RunTerminated
from .replica import ReplicaController, ReplicaState
from .schemas import SchemaEnumerator, EnumerationError
from .pipeline import PipelineError, validate_encryption
from .exporter import Exporter
from .storage import create_storage, StorageError


logger = logging.getLogger(__name__)

EXIT_ALREADY_RUNNING = 6

FATAL_ERRORS = (
    ConfigError,
    EnumerationError,
    PipelineError,
    StorageError,
    OSError,
)


class BackupExecutor:
    """
    Orchestrates a single backup run.
    """

    def __init__(self, config: RunConfig, coordinator: Optional[CleanupCoordinator] = None):
        """
        Initialize backup executor.

        Args:
            config: Resolved run configuration
            coordinator: Lifecycle coordinator (default: a new one)
        """
        self.config = config
        self.coordinator = coordinator or CleanupCoordinator()
        self.lock_manager = LockManager(config.lock_dir)
        self.replica = ReplicaController(config)
        self.enumerator = SchemaEnumerator(config)

        self.lock: Optional[LockHandle] = None
        self.replica_state: Optional[ReplicaState] = None
        self.backup_dir: Optional[str] = None
        self.storage = None
        self.exported: List[str] = []
        self.uploaded: List[str] = []
        self.upload_started = False
        self.upload_confirmed = False

        self.coordinator.add_action("Restart slave", self._resume_replica)
        self.coordinator.add_action("Deleting local backup directory", self._remove_backup_dir)
        self.coordinator.add_action("Removing lock file", self._release_lock)

    def execute(self) -> int:
        """
        Execute the backup run.

        Returns:
            Process exit code (0 success, 1 failure, 6 already running)
        """
        failed = True
        exit_code = None

        try:
            try:
                self.coordinator.install()
                self._execute_workflow()
                failed = False
            finally:
                # Nothing may interrupt the path from here to cleanup
                self.coordinator.hold_signals()
        except AlreadyRunning as e:
            logger.error(str(e))
            exit_code = EXIT_ALREADY_RUNNING
        except RunTerminated as e:
            logger.error(str(e))
        except FATAL_ERRORS as e:
            logger.error(str(e))
        except Exception as e:
            logger.exception(f"Backup failed: {e}")
        finally:
            code = self.coordinator.finish(failed=failed)

        return exit_code if exit_code is not None else code

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        # Step 1: Lock, with signals deferred until the handle is recorded
        with self.coordinator.signals_deferred():
            self.lock = self.lock_manager.acquire()

        # Step 2: Fail early on missing tools or settings
        check_dependencies(self.config)
        validate_encryption(self.config)

        # Step 3: Local backup directory
        self.backup_dir = self.config.backup_dir
        os.makedirs(self.backup_dir, exist_ok=True)

        # Step 4: Remote target
        if self.config.aws_enabled:
            logger.info("[Checks]")
            self.storage = create_storage(self.config)
            self.storage.ensure_target()
        else:
            logger.info("AWS upload disabled, local backup directory will be kept")

        logger.info("[Start MySQL Export]")

        # Step 5: Replica
        if self.config.mysql_slave:
            self.replica_state = self.replica.pause_if_running()

        # Step 6: Databases
        schemas = self.enumerator.list(self.config.mysql_exclude)

        # Step 7: Export
        exporter = Exporter(self.config, self.backup_dir, self.enumerator)
        try:
            exporter.run(schemas)
        finally:
            self.exported = list(exporter.produced)

        # Step 8: Upload
        if self.config.aws_enabled:
            self._upload()

    def _upload(self):
        destination = f"s3://{self.config.aws_bucket}/{self.config.aws_dir}"
        logger.info("[Start AWS S3 upload]")
        logger.info(f"Uploading {self.backup_dir} to {destination}")

        self.upload_started = True
        self.uploaded = self.storage.upload_tree(self.backup_dir, self.config.aws_dir)
        self.upload_confirmed = True
        logger.info(f"Uploaded {len(self.uploaded)} files ... Done")

    def _resume_replica(self):
        if self.replica_state is not None:
            self.replica.resume_if_owed(self.replica_state)

    def _remove_backup_dir(self):
        """Remove the local backup directory when retention allows it."""
        if not self.backup_dir or not os.path.exists(self.backup_dir):
            return

        if not self.config.remove_local_allowed:
            logger.warning("Deleting local backup directory ... Skipped")
            return

        if self.upload_started and not self.upload_confirmed:
            logger.warning(f"Upload not confirmed, keeping local backup directory {self.backup_dir}")
            return

        shutil.rmtree(self.backup_dir)
        logger.info("Deleting local backup directory ... Done")

    def _release_lock(self):
        self.lock_manager.release(self.lock)
        self.lock = None


def run_backup(config: RunConfig) -> int:
    """
    Run a backup with the given configuration.

    Returns:
        Process exit code
    """
    executor = BackupExecutor(config)
    return executor.execute()
