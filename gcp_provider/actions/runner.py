"""
Script runner for provider actions.
"""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Maximum output size to prevent memory issues
MAX_OUTPUT_SIZE = 100_000  # 100KB


class ActionError(Exception):
    """Base class for errors captured in an ExecutionResult."""


class ActionFailedError(ActionError):
    """The script ran but exited with a non-zero code."""

    def __init__(self, exit_code: int):
        self.exit_code = exit_code
        super().__init__(f"script exited with code {exit_code}")


class ActionTimeoutError(ActionError):
    """The script did not finish within the allotted time."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"script timed out after {timeout:g} seconds")


@dataclass
class ExecutionResult:
    """Result from running an action script. Always returned, never raised."""

    error: Exception | None
    stdout: str
    stderr: str
    exit_code: int | None = None
    truncated: bool = False

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, ActionTimeoutError)

    def to_dict(self) -> dict:
        return {
            "error": str(self.error) if self.error else None,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exitCode": self.exit_code,
        }


def _decode(data: bytes | None) -> tuple[str, bool]:
    text = (data or b"").decode("utf-8", errors="replace")
    if len(text) > MAX_OUTPUT_SIZE:
        return text[:MAX_OUTPUT_SIZE] + "\n...[output truncated]...", True
    return text, False


class ScriptRunner:
    """
    Run a script as a child process without blocking the event loop.

    The environment passed in typically holds secrets, so it is never logged;
    only the script path and the exit code are.
    """

    def __init__(self, timeout: float = 600.0):
        """
        Args:
            timeout: Maximum execution time in seconds.
        """
        self.timeout = timeout

    async def run(self, script: Path, env: dict[str, str], cwd: Path | None = None) -> ExecutionResult:
        """
        Execute a script.

        Args:
            script: Path to the script to execute.
            env: Complete environment for the child process.
            cwd: Working directory. Defaults to the script's directory.

        Returns:
            ExecutionResult with stdout, stderr, exit code and error, if any.
        """
        logger.info(f"Executing script: {script}")

        try:
            process = await asyncio.create_subprocess_exec(
                str(script),
                cwd=str(cwd or script.parent),
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Could not launch {script}: {e}")
            return ExecutionResult(error=e, stdout="", stderr=f"Execution error: {e}")

        try:
            stdout_data, stderr_data = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Script timed out after {self.timeout}s: {script}")
            _kill_process_group(process)
            try:
                stdout_data, stderr_data = await asyncio.wait_for(process.communicate(), timeout=5)
            except asyncio.TimeoutError:
                stdout_data, stderr_data = b"", b""
            stdout, _ = _decode(stdout_data)
            stderr, _ = _decode(stderr_data)
            return ExecutionResult(
                error=ActionTimeoutError(self.timeout),
                stdout=stdout,
                stderr=stderr,
                exit_code=process.returncode,
            )

        stdout, out_truncated = _decode(stdout_data)
        stderr, err_truncated = _decode(stderr_data)
        exit_code = process.returncode

        logger.info(f"Script {script.name} finished with exit code {exit_code}")

        return ExecutionResult(
            error=ActionFailedError(exit_code) if exit_code != 0 else None,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            truncated=out_truncated or err_truncated,
        )


def base_environment() -> dict[str, str]:
    """The server's own environment, inherited by every action."""
    return {**os.environ, "HOME": os.environ.get("HOME", "/tmp")}


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """Kill the script and anything it spawned (gcloud runs as a grandchild)."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
