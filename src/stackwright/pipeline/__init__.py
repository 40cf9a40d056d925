"""Deployment pipeline for Stackwright.

This package drives the external tools: the process runner, the compose and
kubernetes deployers, the port-forward tunnel supervisor and the
post-deployment checks.
"""

from __future__ import annotations

from stackwright.pipeline.base import Deployer, DeploymentResult
from stackwright.pipeline.checks import CheckResult, ServiceProbe, run_checks
from stackwright.pipeline.compose import ComposeDeployer
from stackwright.pipeline.deployer import DEPLOYERS, create_deployer, parse_target
from stackwright.pipeline.kubernetes import KubernetesDeployer
from stackwright.pipeline.process import (
    ProcessResult,
    RunMode,
    RunningProcess,
    run_command,
    run_process,
)
from stackwright.pipeline.tunnel import (
    VALID_TRANSITIONS,
    InvalidTransitionError,
    Tunnel,
    TunnelSpec,
    TunnelState,
    TunnelSupervisor,
)

__all__ = [
    # Process runner
    "ProcessResult",
    "RunMode",
    "RunningProcess",
    "run_command",
    "run_process",
    # Deployers
    "DEPLOYERS",
    "ComposeDeployer",
    "Deployer",
    "DeploymentResult",
    "KubernetesDeployer",
    "create_deployer",
    "parse_target",
    # Tunnels
    "VALID_TRANSITIONS",
    "InvalidTransitionError",
    "Tunnel",
    "TunnelSpec",
    "TunnelState",
    "TunnelSupervisor",
    # Checks
    "CheckResult",
    "ServiceProbe",
    "run_checks",
]
