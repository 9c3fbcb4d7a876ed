"""
Export pipelines.

An export is ``mysqldump | compress [| gpg]`` ending in a file. Pipelines
are built as typed stage lists from the RunConfig and an ExportTask, then
executed as real subprocesses connected with OS pipes.

File naming:
- <schema>.sql.gz                (encryption disabled)
- <schema>.sql.gz.gpg            (encryption enabled)
- <schema>.schema.sql.gz[.gpg]   (schema only, no data)
"""

import os
import shlex
import subprocess
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from mysql_s3_backup.config import RunConfig, ConfigError
from mysql_s3_backup.utils.shell import redact


logger = logging.getLogger(__name__)

BASE_EXTENSION = '.sql.gz'
ENCRYPTED_SUFFIX = '.gpg'
SCHEMA_ONLY_MARKER = '.schema'


class PipelineError(Exception):
    """Raised when any stage of an export pipeline fails."""
    pass


@dataclass(frozen=True)
class ExportTask:
    """One unit of export work: a schema, or one table of a schema."""

    schema: str
    destination: str
    table: Optional[str] = None
    schema_only: bool = False

    @property
    def label(self) -> str:
        name = f"{self.schema}.{self.table}" if self.table else self.schema
        return f"{name} (schema only)" if self.schema_only else name


@dataclass(frozen=True)
class Stage:
    name: str
    argv: Tuple[str, ...]


@dataclass(frozen=True)
class CommandPipeline:
    stages: Tuple[Stage, ...]
    destination: str
    # The last stage writes the destination itself (gpg --output)
    writes_own_output: bool = False

    def describe(self) -> str:
        parts = [' '.join(shlex.quote(arg) for arg in redact(list(stage.argv))) for stage in self.stages]
        command = ' | '.join(parts)
        if not self.writes_own_output:
            command += f" > {shlex.quote(self.destination)}"
        return command


def file_extension(config: RunConfig) -> str:
    """Extension of every produced file, fixed by the encryption flag."""
    return BASE_EXTENSION + ENCRYPTED_SUFFIX if config.gpg_enabled else BASE_EXTENSION


def export_filename(name: str, config: RunConfig, schema_only: bool = False) -> str:
    marker = SCHEMA_ONLY_MARKER if schema_only else ''
    return f"{name}{marker}{file_extension(config)}"


def validate_encryption(config: RunConfig):
    """
    Raises:
        ConfigError: If encryption is enabled without a recipient
    """
    if config.gpg_enabled and not config.gpg_recipient:
        raise ConfigError("'gpg_recipient' must be set if GPG is enabled.")


def build_dump_stage(config: RunConfig, task: ExportTask) -> Stage:
    argv = [config.mysqldump_cmd, *config.mysql_args, *shlex.split(config.mysqldump_args)]
    if task.schema_only:
        argv.append('--no-data')

    if task.table:
        argv.extend([task.schema, task.table])
    else:
        argv.extend(['--databases', task.schema])

    return Stage('dump', tuple(argv))


def build_encrypt_stage(config: RunConfig, destination: str) -> Stage:
    argv = [config.gpg_cmd, *shlex.split(config.gpg_args), '--recipient', config.gpg_recipient]
    if config.gpg_sign:
        argv.append('--sign')
        if config.gpg_signer:
            argv.extend(['--default-key', config.gpg_signer])
    argv.extend(['--output', destination])
    return Stage('encrypt', tuple(argv))


def build_pipeline(config: RunConfig, task: ExportTask) -> CommandPipeline:
    """
    Compose the stages for one export task.

    Raises:
        ConfigError: If encryption is enabled without a recipient
    """
    validate_encryption(config)

    stages = [build_dump_stage(config, task)]

    compress_argv = shlex.split(config.compress_cmd)
    if compress_argv:
        stages.append(Stage('compress', tuple(compress_argv)))

    if config.gpg_enabled:
        stages.append(build_encrypt_stage(config, task.destination))

    return CommandPipeline(
        stages=tuple(stages),
        destination=task.destination,
        writes_own_output=config.gpg_enabled
    )


def _remove_partial(path: str):
    if os.path.exists(path):
        try:
            os.remove(path)
            logger.debug(f"Removed partial output: {path}")
        except OSError as e:
            logger.warning(f"Could not remove partial output {path}: {e}")


def run_pipeline(pipeline: CommandPipeline):
    """
    Execute a pipeline and wait for every stage.

    Any failure, including an interruption while waiting, stops the
    remaining stages and removes the partial destination file.

    Raises:
        PipelineError: If a stage cannot start or exits non-zero
    """
    logger.debug(f"Running pipeline: {pipeline.describe()}")

    processes: List[Tuple[Stage, subprocess.Popen]] = []
    output = None
    completed = False

    try:
        if not pipeline.writes_own_output:
            output = open(pipeline.destination, 'wb')

        previous_stdout = None
        for index, stage in enumerate(pipeline.stages):
            is_last = index == len(pipeline.stages) - 1
            if is_last:
                stdout = output if output is not None else subprocess.DEVNULL
            else:
                stdout = subprocess.PIPE

            try:
                process = subprocess.Popen(stage.argv, stdin=previous_stdout, stdout=stdout)
            except OSError as e:
                raise PipelineError(f"{stage.name} stage could not start ({stage.argv[0]}): {e}")

            # Only the child keeps the read end, so upstream sees SIGPIPE
            if previous_stdout is not None:
                previous_stdout.close()
            previous_stdout = process.stdout
            processes.append((stage, process))

        failures = []
        for stage, process in processes:
            returncode = process.wait()
            if returncode != 0:
                failures.append(f"{stage.name} exited with status {returncode}")

        if failures:
            raise PipelineError(', '.join(failures))

        completed = True

    finally:
        if output is not None:
            output.close()

        if not completed:
            for _, process in processes:
                if process.stdout is not None:
                    process.stdout.close()
                if process.poll() is None:
                    process.kill()
                    process.wait()
            _remove_partial(pipeline.destination)
