"""
Shared pytest fixtures for mysql-s3-backup tests.

This module provides fixtures for:
- Fake MySQL client tools (mysql, mysqladmin, mysqldump) and gpg as shell scripts
- RunConfig construction pointing at the fake tools
- Mocked AWS S3 using moto
"""

import stat
from pathlib import Path

import pytest
import boto3
from moto import mock_aws

from mysql_s3_backup.config import RunConfig


TIMESTAMP = '2024-01-15_1200'


MYSQL_SCRIPT = """#!/bin/sh
data="{data}"
echo "mysql $*" >> "$data/calls.log"
query=""
prev=""
for arg in "$@"; do
  if [ "$prev" = "-e" ]; then query="$arg"; fi
  prev="$arg"
  last="$arg"
done
case "$query" in
  "SHOW SLAVE STATUS"*)
    [ -f "$data/fail_slave_status" ] && {{ echo "ERROR 1227: Access denied" >&2; exit 1; }}
    cat "$data/slave_status.txt" 2>/dev/null ;;
  "SHOW DATABASES;")
    [ -f "$data/fail_databases" ] && {{ echo "ERROR 2002: Can't connect to MySQL server" >&2; exit 1; }}
    cat "$data/databases.txt" ;;
  "SHOW TABLES;")
    [ -f "$data/fail_tables_$last" ] && {{ echo "ERROR 1049: Unknown database" >&2; exit 1; }}
    cat "$data/tables_$last.txt" 2>/dev/null ;;
esac
exit 0
"""

MYSQLADMIN_SCRIPT = """#!/bin/sh
data="{data}"
for arg in "$@"; do action="$arg"; done
echo "mysqladmin $action" >> "$data/calls.log"
[ -f "$data/fail_$action" ] && {{ echo "mysqladmin: $action failed" >&2; exit 1; }}
exit 0
"""

MYSQLDUMP_SCRIPT = """#!/bin/sh
data="{data}"
echo "mysqldump $*" >> "$data/calls.log"
for arg in "$@"; do last="$arg"; done
[ -f "$data/fail_dump_$last" ] && {{ echo "mysqldump: Got error: 1044" >&2; exit 2; }}
if [ -f "$data/signal_dump_$last" ]; then
  kill -USR1 $PPID
  sleep 5
fi
echo "-- MySQL dump: $*"
echo "CREATE TABLE example (id int);"
"""

GPG_SCRIPT = """#!/bin/sh
data="{data}"
echo "gpg $*" >> "$data/calls.log"
out=""
prev=""
for arg in "$@"; do
  if [ "$prev" = "--output" ]; then out="$arg"; fi
  prev="$arg"
done
cat > "$out"
"""


class FakeMySQL:
    """
    Controls the fake client tools.

    Scripts read their answers from files under ``data_dir`` at run time,
    so tests can change behaviour after the tools are installed.
    """

    def __init__(self, root: Path):
        self.bin_dir = root / 'bin'
        self.data_dir = root / 'fake_data'
        self.bin_dir.mkdir()
        self.data_dir.mkdir()

        self.mysql = self._write_script('mysql', MYSQL_SCRIPT)
        self.mysqladmin = self._write_script('mysqladmin', MYSQLADMIN_SCRIPT)
        self.mysqldump = self._write_script('mysqldump', MYSQLDUMP_SCRIPT)
        self.gpg = self._write_script('gpg', GPG_SCRIPT)

        self.set_databases(['a', 'b', 'information_schema'])

    def _write_script(self, name: str, template: str) -> str:
        path = self.bin_dir / name
        path.write_text(template.format(data=self.data_dir))
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    def set_databases(self, names):
        (self.data_dir / 'databases.txt').write_text(''.join(f"{name}\n" for name in names))

    def set_tables(self, schema, tables):
        (self.data_dir / f"tables_{schema}.txt").write_text(''.join(f"{t}\n" for t in tables))

    def set_slave_status(self, io_running='No', sql_running='No'):
        (self.data_dir / 'slave_status.txt').write_text(
            "*************************** 1. row ***************************\n"
            "               Slave_IO_State: Waiting for master to send event\n"
            "                  Master_Host: 10.0.0.1\n"
            f"             Slave_IO_Running: {io_running}\n"
            f"            Slave_SQL_Running: {sql_running}\n"
            "        Seconds_Behind_Master: 0\n"
        )

    def fail(self, marker: str):
        """Make a command fail, e.g. ``databases``, ``dump_b``, ``stop-slave``."""
        (self.data_dir / f"fail_{marker}").touch()

    def signal_on_dump(self, name: str):
        (self.data_dir / f"signal_dump_{name}").touch()

    @property
    def calls(self):
        log = self.data_dir / 'calls.log'
        if not log.exists():
            return []
        return log.read_text().splitlines()


@pytest.fixture
def fake_mysql(tmp_path):
    """Fake mysql, mysqladmin, mysqldump and gpg executables."""
    return FakeMySQL(tmp_path)


@pytest.fixture
def make_config(tmp_path, fake_mysql):
    """
    Factory for RunConfig instances wired to the fake tools.

    Upload is disabled unless overridden, so tests never touch AWS.
    """
    def _make_config(**overrides):
        values = {
            'timestamp': TIMESTAMP,
            'backup_dir': str(tmp_path / 'backups' / TIMESTAMP),
            'lock_dir': str(tmp_path / 'lock'),
            'colors': False,
            'mysql_cmd': fake_mysql.mysql,
            'mysqladmin_cmd': fake_mysql.mysqladmin,
            'mysqldump_cmd': fake_mysql.mysqldump,
            'gpg_cmd': fake_mysql.gpg,
            'mysql_exclude': 'information_schema|mysql',
            'aws_enabled': False,
            'aws_profile': '',
            'aws_bucket': 'test-bucket',
            'aws_dir': TIMESTAMP,
            'aws_region': 'us-east-1',
        }
        values.update(overrides)
        return RunConfig(**values)

    return _make_config


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never reads real ones."""
    monkeypatch.setenv('AWS_CONFIG_FILE', '/nonexistent/aws/config')
    monkeypatch.setenv('AWS_SHARED_CREDENTIALS_FILE', '/nonexistent/aws/credentials')
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.delenv('AWS_PROFILE', raising=False)


@pytest.fixture
def mock_s3(aws_credentials):
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def empty_s3(aws_credentials):
    """Mock AWS S3 service with no buckets."""
    with mock_aws():
        yield boto3.resource('s3', region_name='us-east-1')


def list_keys(s3, bucket='test-bucket'):
    return sorted(obj.key for obj in s3.Bucket(bucket).objects.all())


@pytest.fixture
def keys_in():
    return list_keys


@pytest.fixture(autouse=True)
def _no_config_file(monkeypatch, tmp_path):
    """Keep a host-wide backup.cfg out of tests."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv('MYSQL_S3_BACKUP_CONFIG', str(tmp_path / 'absent.cfg'))
