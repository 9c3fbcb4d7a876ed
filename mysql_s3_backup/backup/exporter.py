"""
Drives export pipelines over every schema, and optionally every table.

Layout under the backup directory:
- schema mode: <schema><ext>
- table mode:  <schema>/<schema>.<table><ext>
"""

import os
import logging
from fnmatch import fnmatchcase
from typing import List

from mysql_s3_backup.config import RunConfig
from .pipeline import ExportTask, build_pipeline, export_filename, file_extension, run_pipeline
from .schemas import SchemaEnumerator


logger = logging.getLogger(__name__)


def is_table_excluded(schema: str, table: str, patterns: List[str]) -> bool:
    """
    Check ``schema.table`` against exclusion patterns.

    Patterns are exact names or prefix wildcards, e.g. ``shop.sessions``,
    ``shop.*`` or ``shop.log_*``.
    """
    qualified = f"{schema}.{table}"
    return any(fnmatchcase(qualified, pattern) for pattern in patterns)


class Exporter:
    """
    Runs one export task at a time, strictly in enumeration order.

    The first failing pipeline aborts the whole export.
    """

    def __init__(self, config: RunConfig, backup_dir: str, enumerator: SchemaEnumerator):
        self.config = config
        self.backup_dir = backup_dir
        self.enumerator = enumerator
        self.produced: List[str] = []

    def run(self, schemas: List[str]) -> List[str]:
        """
        Export every schema.

        Returns:
            Paths of the files produced

        Raises:
            PipelineError: On the first failing pipeline
            EnumerationError: If table listing fails in table mode
        """
        destination = os.path.join(self.backup_dir, f"<db>{file_extension(self.config)}")
        noun = 'database' if len(schemas) == 1 else 'databases'
        logger.info(f"Exporting {len(schemas)} {noun} to {destination}")

        for schema in schemas:
            if self.config.mysql_per_table:
                self._export_tables(schema)
            else:
                self._export_unit(schema, None, self.backup_dir, schema)

        return self.produced

    def _export_tables(self, schema: str):
        tables = self.enumerator.list_tables(schema)
        schema_dir = os.path.join(self.backup_dir, schema)
        os.makedirs(schema_dir, exist_ok=True)

        for table in tables:
            if is_table_excluded(schema, table, self.config.excluded_tables):
                logger.warning(f"Skipping excluded table {schema}.{table}")
                continue
            self._export_unit(schema, table, schema_dir, f"{schema}.{table}")

    def _export_unit(self, schema: str, table, directory: str, name: str):
        variants = [False, True] if self.config.mysql_schema_only else [False]

        for schema_only in variants:
            task = ExportTask(
                schema=schema,
                table=table,
                schema_only=schema_only,
                destination=os.path.join(directory, export_filename(name, self.config, schema_only))
            )
            self.run_task(task)

    def run_task(self, task: ExportTask):
        pipeline = build_pipeline(self.config, task)
        run_pipeline(pipeline)
        self.produced.append(task.destination)
        logger.info(f"Exported {task.label} ... Done")
