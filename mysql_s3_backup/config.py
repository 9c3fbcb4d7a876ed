"""
Run configuration for mysql-s3-backup.

Values are resolved once per run, in order:
1. Built-in defaults (DEFAULTS)
2. Optional override file (shell-style ``key="value"`` lines)
3. Command line overrides

The result is an immutable RunConfig passed explicitly to every component.
"""

import os
import shutil
import logging
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Dict, Any, List, Optional

from dotenv import dotenv_values


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = '/etc/mysql-s3-backup/backup.cfg'
CONFIG_FILE_ENV = 'MYSQL_S3_BACKUP_CONFIG'

TIMESTAMP_FORMAT = '%Y-%m-%d_%H%M'

TRUE_VALUES = ('true', 'yes', '1', 'on')
FALSE_VALUES = ('false', 'no', '0', 'off', '')


class ConfigError(Exception):
    """Raised when the configuration is invalid or a required tool is missing."""
    pass


@dataclass(frozen=True)
class RunConfig:
    """Immutable snapshot of every tunable for a single backup run."""

    timestamp: str

    # Local backup directory
    backup_dir: str
    backup_dir_remove: bool = True
    lock_dir: str = '/tmp/mysql-s3-backup-lock'
    colors: bool = True
    log_file: str = ''

    # MySQL
    mysql_cmd: str = 'mysql'
    mysqladmin_cmd: str = 'mysqladmin'
    mysqldump_cmd: str = 'mysqldump'
    mysql_slave: bool = False
    mysql_use_defaults_file: bool = True
    mysql_defaults_file: str = ''
    mysql_user: str = ''
    mysql_password: str = ''
    mysql_host: str = ''
    mysql_exclude: str = 'information_schema|performance_schema|mysql|sys'
    mysql_per_table: bool = False
    mysql_exclude_tables: str = ''
    mysql_schema_only: bool = False
    mysqldump_args: str = '--triggers --routines --force --opt --add-drop-database'

    # GPG
    gpg_cmd: str = 'gpg'
    gpg_enabled: bool = False
    gpg_args: str = '--encrypt --batch --trust-model always'
    gpg_recipient: str = ''
    gpg_sign: bool = False
    gpg_signer: str = ''

    compress_cmd: str = 'gzip -c'

    # AWS S3
    aws_enabled: bool = True
    aws_profile: str = 'mysql-s3-backup'
    aws_bucket: str = 'mysql-s3-backups'
    aws_dir: str = ''
    aws_region: str = ''
    aws_endpoint_url: str = ''

    @property
    def mysql_args(self) -> List[str]:
        """Connection arguments shared by mysql, mysqladmin and mysqldump."""
        args = []
        if self.mysql_use_defaults_file:
            if self.mysql_defaults_file:
                args.append(f"--defaults-file={self.mysql_defaults_file}")
        else:
            if self.mysql_user:
                args.append(f"--user={self.mysql_user}")
            if self.mysql_password:
                args.append(f"--password={self.mysql_password}")
            if self.mysql_host:
                args.append(f"--host={self.mysql_host}")
        return args

    @property
    def excluded_tables(self) -> List[str]:
        return self.mysql_exclude_tables.split()

    @property
    def remove_local_allowed(self) -> bool:
        """Local copies are the only copies when upload is disabled."""
        return self.backup_dir_remove and self.aws_enabled


def _which(name: str) -> str:
    return shutil.which(name) or name


def default_values(timestamp: str) -> Dict[str, Any]:
    """Return the built-in defaults for a run started at ``timestamp``."""
    return {
        'timestamp': timestamp,
        'backup_dir': f"/tmp/mysql-s3-backups/{timestamp}",
        'aws_dir': timestamp,
        'mysql_cmd': _which('mysql'),
        'mysqladmin_cmd': _which('mysqladmin'),
        'mysqldump_cmd': _which('mysqldump'),
        'gpg_cmd': _which('gpg'),
    }


def parse_bool(key: str, value) -> bool:
    """
    Parse a boolean setting.

    Raises:
        ConfigError: If the value is not a recognised boolean
    """
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ConfigError(f"Invalid boolean for '{key}': {value!r} (use true or false)")


def _expand_timestamp(value: str, timestamp: str) -> str:
    return value.replace('${timestamp}', timestamp).replace('$timestamp', timestamp)


def config_file_path(config_file: Optional[str] = None) -> str:
    """Override file in effect: explicit path, then $MYSQL_S3_BACKUP_CONFIG, then /etc."""
    return config_file or os.environ.get(CONFIG_FILE_ENV) or DEFAULT_CONFIG_FILE


def read_config_file(path: str) -> Dict[str, str]:
    """
    Read overrides from a shell-style config file.

    A missing file is not an error and yields no overrides.
    """
    if not path or not os.path.isfile(path):
        logger.debug(f"No config file at {path}, using defaults")
        return {}

    logger.debug(f"Loading config overrides from {path}")
    values = dotenv_values(path, interpolate=False)
    return {key: value if value is not None else '' for key, value in values.items()}


def load_config(
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None
) -> RunConfig:
    """
    Build the RunConfig for this run.

    Args:
        config_file: Path of the override file (default: see config_file_path)
        overrides: Values from the command line, applied last
        now: Run start time (default: current local time)

    Returns:
        Frozen RunConfig

    Raises:
        ConfigError: If a value cannot be converted to its declared type
    """
    timestamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    field_types = {f.name: f.type for f in fields(RunConfig)}

    values = default_values(timestamp)

    file_values = read_config_file(config_file_path(config_file))
    for key, value in file_values.items():
        if key not in field_types or key == 'timestamp':
            logger.warning(f"Ignoring unknown config key: {key}")
            continue
        values[key] = value

    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value

    resolved = {}
    for key, value in values.items():
        if field_types[key] in (bool, 'bool'):
            resolved[key] = parse_bool(key, value)
        else:
            resolved[key] = _expand_timestamp(str(value), timestamp)

    return RunConfig(**resolved)


def check_dependencies(config: RunConfig):
    """
    Verify the external tools needed by enabled features are installed.

    Raises:
        ConfigError: If a required tool cannot be found
    """
    required = [
        ('mysql', config.mysql_cmd),
        ('mysqldump', config.mysqldump_cmd),
    ]
    if config.compress_cmd.split():
        required.append(('compression', config.compress_cmd.split()[0]))
    if config.mysql_slave:
        required.append(('mysqladmin', config.mysqladmin_cmd))
    if config.gpg_enabled:
        required.append(('GPG', config.gpg_cmd))

    for label, command in required:
        if not shutil.which(command):
            raise ConfigError(
                f"{label} command not found ({command}), install it or disable the feature that needs it."
            )
