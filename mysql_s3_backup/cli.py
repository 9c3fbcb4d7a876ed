"""
Command line entry point.

Unknown options are reported as warnings and otherwise ignored.
"""

import os
import sys
import logging

import click

from mysql_s3_backup import configure_logging
from mysql_s3_backup.config import load_config, config_file_path, ConfigError
from mysql_s3_backup.backup.executor import run_backup


logger = logging.getLogger(__name__)


@click.command(context_settings={'ignore_unknown_options': True, 'allow_extra_args': True})
@click.option('--no-colors', is_flag=True, help='Disable coloured output')
@click.option('--backup-dir', default=None, help='Local backup directory for this run')
@click.option('--config', 'config_file', default=None, help='Path to the override config file')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def main(ctx, no_colors, backup_dir, config_file, verbose):
    """Export MySQL databases to compressed files and upload them to S3."""
    overrides = {'backup_dir': backup_dir}
    if no_colors:
        overrides['colors'] = False

    config_path = config_file_path(config_file)
    try:
        config = load_config(config_path, overrides)
    except ConfigError as e:
        configure_logging(colors=not no_colors, verbose=verbose)
        logger.error(str(e))
        sys.exit(1)

    configure_logging(colors=config.colors, verbose=verbose, log_file=config.log_file or None)

    if os.path.isfile(config_path):
        logger.info(f"Using config file {config_path}")
    else:
        logger.info(f"No config file at {config_path}, using defaults")

    for arg in ctx.args:
        logger.warning(f"Ignoring unrecognized argument: {arg}")

    sys.exit(run_backup(config))


if __name__ == '__main__':
    main()
