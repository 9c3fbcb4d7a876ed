"""
Schema and table enumeration.
"""

import re
import logging
from typing import List

from mysql_s3_backup.config import RunConfig, ConfigError
from mysql_s3_backup.utils.shell import run_command


logger = logging.getLogger(__name__)


class EnumerationError(Exception):
    """Raised when schemas or tables cannot be listed."""
    pass


class NoSchemasToExport(EnumerationError):
    """Raised when every schema was excluded."""
    pass


def filter_schemas(names: List[str], exclusion_pattern: str) -> List[str]:
    """
    Drop names fully matching the exclusion pattern, preserving order.

    The pattern is a set of ``|`` separated alternatives anchored to the
    whole name, e.g. ``information_schema|mysql``.
    """
    if not exclusion_pattern:
        return list(names)

    try:
        excluded = re.compile(f"^(?:{exclusion_pattern})$")
    except re.error as e:
        raise ConfigError(f"Invalid mysql_exclude pattern {exclusion_pattern!r}: {e}")
    return [name for name in names if not excluded.fullmatch(name)]


class SchemaEnumerator:
    def __init__(self, config: RunConfig):
        self.config = config

    def _query(self, sql: str, schema: str = None) -> List[str]:
        command = [
            self.config.mysql_cmd,
            *self.config.mysql_args,
            '--batch',
            '--skip-column-names',
            '-e',
            sql,
        ]
        if schema:
            command.append(schema)

        ok, output, error = run_command(command)
        if not ok:
            raise EnumerationError(error or f"Command failed: {sql}")
        return [line for line in output.splitlines() if line]

    def list(self, exclusion_pattern: str) -> List[str]:
        """
        List exportable schemas.

        Raises:
            EnumerationError: If the schema listing fails
            NoSchemasToExport: If nothing is left after exclusion
        """
        try:
            names = self._query('SHOW DATABASES;')
        except EnumerationError as e:
            raise EnumerationError(f"Failed to list databases: {e}")

        schemas = filter_schemas(names, exclusion_pattern)
        if not schemas:
            raise NoSchemasToExport("No databases to export")

        logger.info(f"Generating database list ... {len(schemas)} found")
        return schemas

    def list_tables(self, schema: str) -> List[str]:
        """
        List the tables of a schema.

        Raises:
            EnumerationError: If the table listing fails
        """
        try:
            return self._query('SHOW TABLES;', schema)
        except EnumerationError as e:
            raise EnumerationError(f"Failed to list tables of {schema}: {e}")
