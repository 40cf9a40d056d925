"""Process runner for Stackwright.

Every interaction with an external tool (compose CLI, container CLI, kubectl)
goes through this module. Commands are executed directly, never through a
shell, and each one runs in its own session so that its whole process group
can be terminated at once.

Example usage:
    >>> from stackwright.pipeline.process import RunMode, run_command, run_process
    >>>
    >>> result = await run_command("docker compose version")
    >>> print(result.stdout)
    >>>
    >>> # Long-running process with a per-line stderr handler
    >>> proc = await run_process(
    ...     ["kubectl", "port-forward", "service/web", "8080:8080"],
    ...     RunMode.CAPTURE,
    ...     on_stderr=print,
    ... )
    >>> await proc.terminate_tree()
"""

from __future__ import annotations

import asyncio
import os
import shlex
import signal
from collections import deque
from collections.abc import Callable, Sequence
from enum import Enum

from pydantic import BaseModel, Field

from stackwright.errors import LaunchError, ProcessFailedError
from stackwright.logging import get_logger

logger = get_logger(__name__)

LineHandler = Callable[[str], None]

# Lines kept per stream once a handler consumes them
HANDLED_TAIL_LINES = 200


class RunMode(str, Enum):
    """How a child process's output is handled.

    Attributes:
        INHERIT: Output goes straight to the parent's terminal
        CAPTURE: Output is collected and offered line by line to handlers
    """

    INHERIT = "inherit"
    CAPTURE = "capture"


class ProcessResult(BaseModel):
    """Outcome of a finished process.

    Attributes:
        command: The command line as executed
        stdout: Captured standard output (empty in inherit mode, only the
            last HANDLED_TAIL_LINES lines when a line handler was given)
        stderr: Captured standard error, bounded the same way
        exit_code: Process exit status
    """

    command: str = Field(description="Executed command line")
    stdout: str = Field(default="", description="Captured stdout")
    stderr: str = Field(default="", description="Captured stderr")
    exit_code: int = Field(description="Exit status")


def split_command(command: str | Sequence[str]) -> list[str]:
    """Turn a command string or sequence into an argv list."""
    if isinstance(command, str):
        return shlex.split(command)
    return [str(part) for part in command]


class RunningProcess:
    """Handle on a spawned child process.

    Attributes:
        command: The command line as executed
        mode: Output handling mode
    """

    def __init__(
        self,
        command: str,
        process: asyncio.subprocess.Process,
        mode: RunMode,
        on_stdout: LineHandler | None = None,
        on_stderr: LineHandler | None = None,
    ) -> None:
        self.command = command
        self.mode = mode
        self._process = process
        self._stdout: deque[str] = deque(maxlen=HANDLED_TAIL_LINES if on_stdout else None)
        self._stderr: deque[str] = deque(maxlen=HANDLED_TAIL_LINES if on_stderr else None)
        self._readers: list[asyncio.Task[None]] = []

        if mode == RunMode.CAPTURE:
            if process.stdout is not None:
                self._readers.append(
                    asyncio.create_task(self._pump(process.stdout, self._stdout, on_stdout))
                )
            if process.stderr is not None:
                self._readers.append(
                    asyncio.create_task(self._pump(process.stderr, self._stderr, on_stderr))
                )

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @staticmethod
    async def _pump(
        stream: asyncio.StreamReader,
        sink: deque[str],
        handler: LineHandler | None,
    ) -> None:
        while True:
            raw = await stream.readline()
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace")
            sink.append(line)
            if handler is not None:
                handler(line.rstrip("\r\n"))

    async def wait(self, check: bool = True) -> ProcessResult:
        """Wait for the process and its output readers to finish.

        Args:
            check: Raise when the exit status is non-zero

        Returns:
            ProcessResult with the captured output

        Raises:
            ProcessFailedError: If ``check`` is set and the process failed
        """
        if self._readers:
            await asyncio.gather(*self._readers)
        exit_code = await self._process.wait()

        result = ProcessResult(
            command=self.command,
            stdout="".join(self._stdout),
            stderr="".join(self._stderr),
            exit_code=exit_code,
        )

        if exit_code != 0:
            logger.warning(
                "process_failed",
                command=self.command,
                exit_code=exit_code,
                stderr=result.stderr[-500:],
            )
            if check:
                raise ProcessFailedError(result.command, result.stdout, result.stderr, exit_code)
        else:
            logger.debug("process_completed", command=self.command, pid=self.pid)

        return result

    def _signal_group(self, sig: signal.Signals) -> None:
        try:
            os.killpg(self._process.pid, sig)
        except ProcessLookupError:
            pass

    async def terminate_tree(self, grace_seconds: float = 5.0) -> None:
        """Terminate the process together with every child it spawned.

        Sends SIGTERM to the process group and escalates to SIGKILL when the
        group leader is still alive after ``grace_seconds``.
        """
        if self._process.returncode is not None:
            return

        logger.debug("terminating_process_tree", command=self.command, pid=self.pid)
        self._signal_group(signal.SIGTERM)
        try:
            await asyncio.wait_for(self._process.wait(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("process_tree_killed", command=self.command, pid=self.pid)
            self._signal_group(signal.SIGKILL)
            await self._process.wait()

        for reader in self._readers:
            reader.cancel()


async def run_process(
    command: str | Sequence[str],
    mode: RunMode = RunMode.CAPTURE,
    on_stdout: LineHandler | None = None,
    on_stderr: LineHandler | None = None,
) -> RunningProcess:
    """Spawn ``command`` without waiting for it.

    Args:
        command: Command string (split shell-style) or argv sequence
        mode: Output handling mode
        on_stdout: Called with each stdout line (capture mode only)
        on_stderr: Called with each stderr line (capture mode only)

    Returns:
        RunningProcess handle

    Raises:
        LaunchError: If the executable cannot be started
    """
    argv = split_command(command)
    display = shlex.join(argv)
    if not argv:
        raise LaunchError(display, "empty command")

    pipe = asyncio.subprocess.PIPE if mode == RunMode.CAPTURE else None

    logger.debug("spawning_process", command=display, mode=mode.value)
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=pipe,
            stderr=pipe,
            start_new_session=True,
        )
    except OSError as e:
        logger.error("process_launch_failed", command=display, error=str(e))
        raise LaunchError(display, e.strerror or str(e)) from e

    return RunningProcess(display, process, mode, on_stdout, on_stderr)


async def run_command(
    command: str | Sequence[str],
    mode: RunMode = RunMode.CAPTURE,
    check: bool = True,
) -> ProcessResult:
    """Run ``command`` to completion.

    Raises:
        LaunchError: If the executable cannot be started
        ProcessFailedError: If ``check`` is set and the command fails
    """
    process = await run_process(command, mode)
    return await process.wait(check=check)
