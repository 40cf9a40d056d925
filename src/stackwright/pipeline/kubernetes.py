"""Kubernetes deployer.

Applies the generated manifests with kubectl, waits for every deployment to
roll out and then forwards each published service port to localhost through
the tunnel supervisor. The tunnels stay up until ``drop`` (or the caller)
stops them.
"""

from __future__ import annotations

import time

from stackwright.compiler.generator import PUBLISHED_PORTS_ANNOTATION
from stackwright.config import StackwrightConfig
from stackwright.logging import get_logger
from stackwright.model.stack import StackDocument, Target
from stackwright.pipeline.base import CommandRunner, Deployer, DeploymentResult
from stackwright.pipeline.process import ProcessResult, run_command, run_process
from stackwright.pipeline.tunnel import Spawner, TunnelSpec, TunnelSupervisor

logger = get_logger(__name__)


def tunnel_specs(document: StackDocument) -> list[TunnelSpec]:
    """One tunnel per published port of the stack.

    Uses the generated services when available, otherwise the published-port
    annotations of the re-read Service documents.
    """
    specs: list[TunnelSpec] = []
    if document.services:
        for service in document.services:
            for port in service.ports:
                if port.source_port is not None:
                    specs.append(
                        TunnelSpec(
                            service_id=service.id,
                            local_port=port.source_port,
                            remote_port=port.target_port,
                        )
                    )
        return specs

    for doc in document.documents:
        if doc.get("kind") != "Service":
            continue
        metadata = doc.get("metadata", {})
        mappings = metadata.get("annotations", {}).get(PUBLISHED_PORTS_ANNOTATION, "")
        for mapping in filter(None, mappings.split(",")):
            local, _, remote = mapping.partition(":")
            specs.append(
                TunnelSpec(
                    service_id=metadata["name"],
                    local_port=int(local),
                    remote_port=int(remote),
                )
            )
    return specs


def deployment_names(document: StackDocument) -> list[str]:
    return [
        doc["metadata"]["name"] for doc in document.documents if doc.get("kind") == "Deployment"
    ]


class KubernetesDeployer(Deployer):
    """Deploys kubernetes artifacts into the stack's namespace.

    Attributes:
        supervisor: Tunnel supervisor of the last deploy, if any
    """

    target = Target.KUBERNETES

    def __init__(
        self,
        config: StackwrightConfig,
        runner: CommandRunner = run_command,
        spawn: Spawner = run_process,
    ) -> None:
        super().__init__(config, runner)
        self._spawn = spawn
        self.supervisor: TunnelSupervisor | None = None

    @staticmethod
    def namespace(document: StackDocument) -> str:
        return document.namespace or document.name

    async def deploy(self, document: StackDocument) -> DeploymentResult:
        started = time.monotonic()
        cli = self.config.tools.orchestrator_cli
        namespace = self.namespace(document)
        artifact = str(self.artifact(document))
        timeout = self.config.orchestrator.ready_timeout_seconds

        logger.info("kubernetes_deploy_started", name=document.name, namespace=namespace)

        results: list[ProcessResult] = [await self._run(cli, "apply", "-f", artifact)]
        for deployment in deployment_names(document):
            logger.debug("waiting_for_rollout", deployment=deployment, namespace=namespace)
            results.append(
                await self._run(
                    cli,
                    "rollout",
                    "status",
                    f"deployment/{deployment}",
                    "-n",
                    namespace,
                    "--timeout",
                    f"{timeout}s",
                )
            )

        specs = tunnel_specs(document)
        tunnels: list[str] = []
        if specs:
            self.supervisor = TunnelSupervisor(self.config, namespace, spawn=self._spawn)
            await self.supervisor.start(specs)
            tunnels = [f"localhost:{s.local_port} -> {s.service_id}:{s.remote_port}" for s in specs]

        logger.info(
            "kubernetes_deploy_completed",
            name=document.name,
            namespace=namespace,
            tunnels=len(tunnels),
        )
        return self._result("deploy", document, results, started, tunnels)

    async def status(self, document: StackDocument) -> DeploymentResult:
        started = time.monotonic()
        result = await self._run(
            self.config.tools.orchestrator_cli, "get", "all", "-n", self.namespace(document)
        )
        return self._result("status", document, [result], started)

    async def drop(self, document: StackDocument) -> DeploymentResult:
        started = time.monotonic()
        logger.info("kubernetes_drop_started", name=document.name)

        if self.supervisor is not None:
            await self.supervisor.stop()
            self.supervisor = None

        result = await self._run(
            self.config.tools.orchestrator_cli,
            "delete",
            "-f",
            str(self.artifact(document)),
            "--ignore-not-found",
        )

        logger.info("kubernetes_drop_completed", name=document.name)
        return self._result("drop", document, [result], started)
