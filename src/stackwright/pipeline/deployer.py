"""Deployer lookup.

The set of targets is closed, so deployers live in a static table keyed by
Target rather than in a runtime plugin registry.

Example usage:
    >>> from stackwright.config import StackwrightConfig
    >>> from stackwright.pipeline.deployer import create_deployer
    >>>
    >>> deployer = create_deployer("docker-compose", StackwrightConfig())
    >>> result = await deployer.deploy(document)
"""

from __future__ import annotations

from stackwright.config import StackwrightConfig
from stackwright.errors import UnknownTargetError
from stackwright.model.stack import Target
from stackwright.pipeline.base import Deployer
from stackwright.pipeline.compose import ComposeDeployer
from stackwright.pipeline.kubernetes import KubernetesDeployer

DEPLOYERS: dict[Target, type[Deployer]] = {
    Target.COMPOSE: ComposeDeployer,
    Target.KUBERNETES: KubernetesDeployer,
}


def parse_target(value: str | Target) -> Target:
    """Map a target identifier onto the Target enum.

    Raises:
        UnknownTargetError: If ``value`` names no known target
    """
    try:
        return Target(value)
    except ValueError as e:
        raise UnknownTargetError(str(value), [t.value for t in Target]) from e


def create_deployer(target: str | Target, config: StackwrightConfig) -> Deployer:
    """Instantiate the deployer serving ``target``.

    Raises:
        UnknownTargetError: If no deployer is registered for ``target``
    """
    return DEPLOYERS[parse_target(target)](config)
