"""External process boundary: every system command goes through run_command."""

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from typing import Callable, Dict, List, Optional, Sequence, Union

from .errors import ExecutionError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT: int = 1800
TEMP_PREFIX: str = "vps_bootstrap_"

Command = Union[List[str], str]
Runner = Callable[..., subprocess.CompletedProcess]


def _display(cmd: Command) -> str:
    return cmd if isinstance(cmd, str) else shlex.join(cmd)


def as_user(cmd: Command, user: str) -> List[str]:
    """Wrap a command so it runs in a login shell of ``user``."""
    return ["su", "-", user, "-s", "/bin/bash", "-c", _display(cmd)]


def run_command(
    cmd: Command,
    env: Optional[Dict[str, str]] = None,
    check: bool = True,
    capture_output: bool = True,
    timeout: Optional[int] = DEFAULT_TIMEOUT,
    user: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """
    Execute a system command.

    Args:
        cmd: Command to execute (list, or a string run through the shell)
        env: Environment variables (defaults to the current environment)
        check: Whether to raise on a non-zero exit status
        capture_output: Whether to capture stdout/stderr; interactive commands
            must pass False so they can use the terminal
        timeout: Command timeout in seconds
        user: Run inside a login shell of this user instead of as root

    Returns:
        subprocess.CompletedProcess object

    Raises:
        ExecutionError: If the command cannot start, times out, or exits
            non-zero while ``check`` is set
    """
    if user is not None:
        cmd = as_user(cmd, user)

    cmd_str = _display(cmd)
    logger.debug(f"Executing: {cmd_str}")

    try:
        result = subprocess.run(
            cmd,
            env=env or os.environ.copy(),
            shell=isinstance(cmd, str),
            text=True,
            capture_output=capture_output,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        raise ExecutionError(f"Command timed out after {timeout} seconds: {cmd_str}")
    except OSError as e:
        raise ExecutionError(f"Error executing command: {cmd_str}: {e}")

    if result.stdout:
        logger.debug(result.stdout.rstrip())
    if result.stderr:
        logger.debug(result.stderr.rstrip())

    if check and result.returncode != 0:
        error_msg = f"Command failed (code {result.returncode}): {cmd_str}"
        if result.stderr and result.stderr.strip():
            error_msg += f"\nError: {result.stderr.strip()}"
        raise ExecutionError(error_msg)

    return result


def command_exists(cmd: str) -> bool:
    """Check if a command exists in the system PATH."""
    return shutil.which(cmd) is not None


def package_manager() -> str:
    """Return nala when it is installed, apt-get otherwise."""
    return "nala" if command_exists("nala") else "apt-get"


def apt_env() -> Dict[str, str]:
    env = os.environ.copy()
    env["DEBIAN_FRONTEND"] = "noninteractive"
    return env


def run_installer_script(
    url: str,
    runner: Runner = run_command,
    args: Sequence[str] = (),
    timeout: Optional[int] = DEFAULT_TIMEOUT,
) -> None:
    """
    Download a remote installer script to a temp file and run it with sh.

    The temp file is removed whether or not the installer succeeds.
    """
    fd, script_path = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=".sh")
    os.close(fd)
    try:
        runner(["curl", "-fsSL", url, "-o", script_path], timeout=timeout)
        runner(["sh", script_path, *args], timeout=timeout)
    finally:
        try:
            os.remove(script_path)
        except FileNotFoundError:
            pass
