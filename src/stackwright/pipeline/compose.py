"""Docker Compose deployer.

Wraps the compose CLI (``docker compose`` by default, ``podman compose`` and
friends via configuration) and uses the container CLI for status queries.
"""

from __future__ import annotations

import time

from stackwright.logging import get_logger
from stackwright.model.stack import StackDocument, Target
from stackwright.pipeline.base import Deployer, DeploymentResult

logger = get_logger(__name__)

PROJECT_LABEL = "com.docker.compose.project"


class ComposeDeployer(Deployer):
    """Deploys compose artifacts as a named compose project."""

    target = Target.COMPOSE

    def _compose_args(self, document: StackDocument, *args: str) -> tuple[str, ...]:
        return ("-f", str(self.artifact(document)), "-p", document.name, *args)

    async def deploy(self, document: StackDocument) -> DeploymentResult:
        started = time.monotonic()
        logger.info("compose_deploy_started", name=document.name, artifact=str(document.path))

        result = await self._run(
            self.config.tools.compose_cli, *self._compose_args(document, "up", "-d")
        )

        logger.info("compose_deploy_completed", name=document.name)
        return self._result("deploy", document, [result], started)

    async def status(self, document: StackDocument) -> DeploymentResult:
        started = time.monotonic()
        result = await self._run(
            self.config.tools.container_cli,
            "ps",
            "-a",
            "--filter",
            f"label={PROJECT_LABEL}={document.name}",
        )
        return self._result("status", document, [result], started)

    async def drop(self, document: StackDocument) -> DeploymentResult:
        started = time.monotonic()
        logger.info("compose_drop_started", name=document.name)

        result = await self._run(
            self.config.tools.compose_cli,
            *self._compose_args(document, "down", "--remove-orphans"),
        )

        logger.info("compose_drop_completed", name=document.name)
        return self._result("drop", document, [result], started)
