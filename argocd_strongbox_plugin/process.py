"""Run external tools (strongbox, kustomize) with a deadline."""
import logging
import subprocess
import time
from typing import Dict, List, Optional

from argocd_strongbox_plugin.secrets.domains.errors import (
    ExternalToolError,
    OperationCancelledError,
)

logger = logging.getLogger(__name__)


def run_command(
    cmd: List[str],
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    merge_output: bool = False,
) -> subprocess.CompletedProcess:
    """
    Run a command synchronously and fail on non-zero exit.

    The child process is killed if the timeout expires or the invocation is
    interrupted (SIGINT, or SIGTERM mapped to KeyboardInterrupt by the CLI).

    Args:
        cmd: Command and arguments
        cwd: Working directory for the command
        env: Full environment for the command (inherits ours if None)
        timeout: Deadline in seconds, None for no deadline
        merge_output: If True, stderr is merged into stdout

    Returns:
        CompletedProcess with bytes stdout/stderr

    Raises:
        ExternalToolError: If the command can't be started or exits non-zero
        OperationCancelledError: If the deadline expired or we were interrupted
    """
    start = time.monotonic()
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            env=env,
            timeout=timeout,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if merge_output else subprocess.PIPE,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise OperationCancelledError(
            f"{cmd[0]} cancelled: deadline of {timeout}s exceeded"
        ) from e
    except KeyboardInterrupt as e:
        raise OperationCancelledError(f"{cmd[0]} cancelled: invocation interrupted") from e
    except OSError as e:
        raise ExternalToolError(f"unable to start {cmd[0]}: {e}") from e

    duration = time.monotonic() - start
    if result.returncode != 0:
        output = result.stdout if merge_output else result.stderr
        output_text = (output or b"").decode("utf-8", errors="replace").strip()
        raise ExternalToolError(
            f"{cmd[0]} exited with code {result.returncode} after {duration:.2f}s: {output_text}",
            output=output_text,
        )

    logger.info(f"{cmd[0]} command finished, duration={duration:.2f}s")
    return result
