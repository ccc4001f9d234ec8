"""
Subprocess helpers shared by the toolchain, sysroot and cargo layers.
"""

import logging
import shlex
import subprocess
from pathlib import Path
from typing import Mapping, Optional, Sequence, Type, Union

from cargo_hyperlight.core.exceptions import HyperlightCargoError

logger = logging.getLogger(__name__)

Command = Sequence[Union[str, Path]]


def format_command(cmd: Command) -> str:
    """Render a command for diagnostics."""
    return " ".join(shlex.quote(str(part)) for part in cmd)


def checked_output(
    cmd: Command,
    error: Type[HyperlightCargoError],
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Path] = None,
    timeout: Optional[float] = None,
) -> str:
    """
    Run a command to completion and return its stdout.

    Args:
        cmd: Command and arguments
        error: Exception type raised on failure
        env: Full environment for the child (default: inherited)
        cwd: Working directory
        timeout: Optional timeout in seconds

    Returns:
        Captured stdout as text

    Raises:
        error: If the command cannot be started or exits non-zero; the
            message includes the command line and the child's stderr
    """
    args = [str(part) for part in cmd]
    logger.debug(f"Running: {format_command(args)}")

    try:
        result = subprocess.run(
            args,
            env=dict(env) if env is not None else None,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise error(f"Failed to execute command (not found): {format_command(args)}") from e
    except subprocess.TimeoutExpired as e:
        raise error(f"Command timed out after {timeout}s: {format_command(args)}") from e
    except OSError as e:
        raise error(f"Failed to execute command: {format_command(args)}: {e}") from e

    if result.returncode != 0:
        if result.returncode < 0:
            status = f"terminated by signal {-result.returncode}"
        else:
            status = f"exited with code {result.returncode}"
        raise error(
            f"Command {status}:\n{format_command(args)}\n{result.stderr.strip()}"
        )

    return result.stdout
