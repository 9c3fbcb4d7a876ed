"""
Replica handling around the export window.

When backing up from a replica, replication is stopped before exporting
and started again during cleanup, but only if this run stopped it.
"""

import logging
from dataclasses import dataclass
from typing import Dict

from mysql_s3_backup.config import RunConfig
from mysql_s3_backup.utils.shell import run_command


logger = logging.getLogger(__name__)


class ReplicaError(Exception):
    """Raised when replication cannot be restarted."""
    pass


@dataclass
class ReplicaState:
    was_running: bool = False
    stopped_by_us: bool = False


def parse_slave_status(output: str) -> Dict[str, str]:
    """Parse the vertical (``\\G``) output of SHOW SLAVE STATUS."""
    status = {}
    for line in output.splitlines():
        key, sep, value = line.partition(':')
        if sep:
            status[key.strip()] = value.strip()
    return status


class ReplicaController:
    def __init__(self, config: RunConfig):
        self.config = config

    def _mysqladmin(self, action: str):
        return run_command([self.config.mysqladmin_cmd, *self.config.mysql_args, action])

    def pause_if_running(self) -> ReplicaState:
        """
        Stop replication if either replication thread is running.

        A failing stop is only a warning; the export goes ahead.
        """
        state = ReplicaState()

        ok, output, error = run_command(
            [self.config.mysql_cmd, *self.config.mysql_args, '-e', 'SHOW SLAVE STATUS \\G']
        )
        if not ok:
            logger.warning(f"Could not read slave status: {error}")
            return state

        status = parse_slave_status(output)
        io_running = status.get('Slave_IO_Running') == 'Yes'
        sql_running = status.get('Slave_SQL_Running') == 'Yes'
        state.was_running = io_running or sql_running

        if not state.was_running:
            logger.warning("Stop slave ... Skipped (replication not running)")
            return state

        # Owed a restart whenever a stop was attempted
        state.stopped_by_us = True
        ok, _, error = self._mysqladmin('stop-slave')
        if ok:
            logger.info("Stop slave ... Done")
        else:
            logger.warning(f"Stop slave failed, continuing export: {error}")

        return state

    def resume_if_owed(self, state: ReplicaState):
        """
        Restart replication stopped by this run.

        Raises:
            ReplicaError: If the start command fails
        """
        if not state.stopped_by_us:
            logger.warning("Restart slave ... Skipped")
            return

        ok, _, error = self._mysqladmin('start-slave')
        if not ok:
            raise ReplicaError(f"Failed to restart slave: {error}")
        logger.info("Restart slave ... Done")
