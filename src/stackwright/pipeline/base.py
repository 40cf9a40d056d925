"""Deployer interface shared by every stack target."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from pydantic import BaseModel, Field

from stackwright.config import StackwrightConfig
from stackwright.errors import DeploymentError, ProcessFailedError, StackwrightError
from stackwright.logging import get_logger
from stackwright.model.stack import StackDocument, Target
from stackwright.pipeline.process import ProcessResult, RunMode, run_command, split_command

logger = get_logger(__name__)

CommandRunner = Callable[..., Awaitable[ProcessResult]]

STDERR_TAIL_LINES = 20


class DeploymentResult(BaseModel):
    """Outcome of one deployer action.

    Attributes:
        target: Stack target the action ran against
        action: Action performed (deploy, status, drop)
        name: Stack name
        commands: Tool invocations in execution order
        output: Combined captured stdout of the invocations
        tunnels: Tunnels left running by the action
        duration_seconds: Time taken for the action
    """

    target: Target = Field(description="Stack target")
    action: str = Field(description="Action performed")
    name: str = Field(description="Stack name")
    commands: list[str] = Field(default_factory=list, description="Executed commands")
    output: str = Field(default="", description="Captured stdout")
    tunnels: list[str] = Field(default_factory=list, description="Running tunnels")
    duration_seconds: float = Field(default=0.0, ge=0.0, description="Action duration")


def stderr_tail(stderr: str, lines: int = STDERR_TAIL_LINES) -> str:
    """Last ``lines`` non-empty lines of ``stderr``."""
    kept = [line for line in stderr.splitlines() if line.strip()]
    return "\n".join(kept[-lines:])


class Deployer(ABC):
    """Drives an external orchestration tool for one stack target.

    Attributes:
        target: Stack target served by the deployer
        config: Application configuration
    """

    target: Target

    def __init__(self, config: StackwrightConfig, runner: CommandRunner = run_command) -> None:
        self.config = config
        self._runner = runner
        self._mode = RunMode.INHERIT if config.tools.inherit_output else RunMode.CAPTURE

    @staticmethod
    def artifact(document: StackDocument) -> Path:
        """Path of the written artifact.

        Raises:
            StackwrightError: If the document was never written to disk
        """
        if document.path is None:
            raise StackwrightError(f"stack '{document.name}' has not been written to disk")
        return document.path

    async def _run(self, tool: str, *args: str) -> ProcessResult:
        """Run ``tool`` with ``args`` and translate tool failures.

        Raises:
            DeploymentError: If the tool exits with non-zero status
            LaunchError: If the tool cannot be started
        """
        command = [*split_command(tool), *args]
        try:
            return await self._runner(command, self._mode)
        except ProcessFailedError as e:
            logger.error(
                "deployment_command_failed",
                target=self.target.value,
                command=e.command,
                exit_code=e.exit_code,
            )
            raise DeploymentError(e.command, e.exit_code, stderr_tail(e.stderr)) from e

    def _result(
        self,
        action: str,
        document: StackDocument,
        results: Sequence[ProcessResult],
        started: float,
        tunnels: list[str] | None = None,
    ) -> DeploymentResult:
        return DeploymentResult(
            target=self.target,
            action=action,
            name=document.name,
            commands=[r.command for r in results],
            output="".join(r.stdout for r in results),
            tunnels=tunnels or [],
            duration_seconds=time.monotonic() - started,
        )

    @abstractmethod
    async def deploy(self, document: StackDocument) -> DeploymentResult:
        """Bring the stack up."""

    @abstractmethod
    async def status(self, document: StackDocument) -> DeploymentResult:
        """Report what the tool knows about the stack."""

    @abstractmethod
    async def drop(self, document: StackDocument) -> DeploymentResult:
        """Tear the stack down."""
