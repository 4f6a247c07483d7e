"""Shell execution for steps that carry a command."""

from __future__ import annotations

import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    success: bool
    exit_code: int


def execute_command(command: str, cwd: Path, *, timeout: float | None = None) -> ExecutionResult:
    """Run ``command`` through the platform shell with inherited stdio.

    Failing to spawn the shell, or running past ``timeout``, is reported as a
    failed result rather than raised.
    """

    shell = ["cmd", "/c", command] if sys.platform == "win32" else ["sh", "-c", command]
    logger.info("Executing step command", extra={"command": command, "cwd": str(cwd)})
    try:
        completed = subprocess.run(shell, cwd=cwd, check=False, timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning("Step command timed out", extra={"command": command, "timeout": timeout})
        return ExecutionResult(success=False, exit_code=1)
    except OSError as e:
        logger.warning("Step command could not be started: %s", e, extra={"command": command})
        return ExecutionResult(success=False, exit_code=1)

    return ExecutionResult(success=completed.returncode == 0, exit_code=completed.returncode)
