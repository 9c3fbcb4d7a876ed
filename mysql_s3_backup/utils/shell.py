"""
Subprocess helpers for the MySQL client tools.

Commands are always passed as argument lists, never through a shell.
There is no timeout, a hung client hangs the run.
"""

import subprocess
import logging
from typing import List, Tuple


logger = logging.getLogger(__name__)


def run_command(command: List[str]) -> Tuple[bool, str, str]:
    """
    Run a command to completion.

    Args:
        command: Program and arguments

    Returns:
        Tuple of (success, stdout, stderr)
    """
    logger.debug(f"Running command: {' '.join(redact(command))}")

    try:
        result = subprocess.run(command, capture_output=True, text=True)
    except OSError as e:
        logger.debug(f"Command could not be started: {e}")
        return False, "", str(e)

    stdout = result.stdout.strip() if result.stdout else ""
    stderr = result.stderr.strip() if result.stderr else ""

    if result.returncode != 0:
        logger.debug(f"Command failed with code {result.returncode}: {stderr}")
        return False, stdout, stderr

    return True, stdout, stderr


def redact(command: List[str]) -> List[str]:
    """Hide password arguments before a command line is logged."""
    return [
        '--password=****' if arg.startswith('--password=') else arg
        for arg in command
    ]
