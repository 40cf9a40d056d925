"""Port-forward tunnel supervision for Stackwright.

On the kubernetes target, every published service port is made reachable on
localhost through one ``kubectl port-forward`` child process. The tunnels of
one stack are supervised as a group: when any tunnel reports the failure
phrase on its stderr, the whole group is stopped, including the process tree
of the tunnel that failed.

Tunnel lifecycle:

    STARTING -> RUNNING -> FAILED -> RESTARTING -> RUNNING
                      \\-> STOPPED -> RESTARTING
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from functools import partial

from pydantic import BaseModel, ConfigDict, Field

from stackwright.config import StackwrightConfig
from stackwright.errors import LaunchError, TunnelError
from stackwright.logging import get_logger
from stackwright.pipeline.process import RunMode, RunningProcess, run_process, split_command

logger = get_logger(__name__)

Spawner = Callable[..., Awaitable[RunningProcess]]


class TunnelState(str, Enum):
    """Lifecycle state of one tunnel.

    Attributes:
        STARTING: Process is being spawned for the first time
        RUNNING: Process is forwarding
        FAILED: Process reported the failure phrase or could not start
        RESTARTING: Process is being respawned after a failure or stop
        STOPPED: Process tree has been terminated
    """

    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"
    RESTARTING = "restarting"
    STOPPED = "stopped"


VALID_TRANSITIONS: dict[TunnelState, set[TunnelState]] = {
    TunnelState.STARTING: {TunnelState.RUNNING, TunnelState.FAILED, TunnelState.STOPPED},
    TunnelState.RUNNING: {TunnelState.FAILED, TunnelState.STOPPED},
    TunnelState.FAILED: {TunnelState.RESTARTING},
    TunnelState.RESTARTING: {TunnelState.RUNNING, TunnelState.FAILED, TunnelState.STOPPED},
    TunnelState.STOPPED: {TunnelState.RESTARTING},
}

LIVE_STATES = frozenset({TunnelState.STARTING, TunnelState.RUNNING, TunnelState.RESTARTING})


class InvalidTransitionError(Exception):
    """Raised when a tunnel is moved along a transition the table forbids.

    Attributes:
        current: The current tunnel state.
        target: The attempted target state.
        tunnel: Name of the tunnel that failed to transition.
    """

    def __init__(self, current: TunnelState, target: TunnelState, tunnel: str | None = None):
        self.current = current
        self.target = target
        self.tunnel = tunnel
        msg = f"Invalid transition from {current.value} to {target.value}"
        if tunnel:
            msg += f" for tunnel {tunnel}"
        super().__init__(msg)


class TunnelSpec(BaseModel):
    """What to forward: a service port onto a local port."""

    model_config = ConfigDict(frozen=True)

    service_id: str
    local_port: int = Field(ge=1, le=65535)
    remote_port: int = Field(ge=1, le=65535)

    @property
    def name(self) -> str:
        return f"{self.service_id}:{self.local_port}"


class Tunnel:
    """One supervised port-forward process."""

    def __init__(self, spec: TunnelSpec) -> None:
        self.spec = spec
        self.state = TunnelState.STARTING
        self.process: RunningProcess | None = None

    def transition(self, target: TunnelState) -> None:
        """Move to ``target``.

        Raises:
            InvalidTransitionError: If the move is not in VALID_TRANSITIONS
        """
        if target not in VALID_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target, self.spec.name)
        logger.debug(
            "tunnel_transition",
            tunnel=self.spec.name,
            from_state=self.state.value,
            to_state=target.value,
        )
        self.state = target


class TunnelSupervisor:
    """Starts, watches and stops the port-forward tunnels of one stack.

    Attributes:
        namespace: Kubernetes namespace the services live in
        failure_phrase: stderr text marking a broken tunnel (case-insensitive)
    """

    def __init__(
        self,
        config: StackwrightConfig,
        namespace: str,
        spawn: Spawner = run_process,
    ) -> None:
        self.namespace = namespace
        self.failure_phrase = config.orchestrator.failure_phrase.lower()
        self._cli = split_command(config.tools.orchestrator_cli)
        self._grace = config.orchestrator.stop_grace_seconds
        self._spawn = spawn
        self._tunnels: dict[str, Tunnel] = {}
        self._stopped = asyncio.Event()
        self._stop_task: asyncio.Task[None] | None = None
        self.failure: str | None = None

    @property
    def tunnels(self) -> list[Tunnel]:
        return list(self._tunnels.values())

    def states(self) -> dict[str, TunnelState]:
        """Current state of every tunnel, keyed by tunnel name."""
        return {name: tunnel.state for name, tunnel in self._tunnels.items()}

    def command(self, spec: TunnelSpec) -> list[str]:
        """The port-forward invocation for ``spec``."""
        return [
            *self._cli,
            "port-forward",
            f"service/{spec.service_id}",
            f"{spec.local_port}:{spec.remote_port}",
            f"--namespace={self.namespace}",
        ]

    async def start(self, specs: Sequence[TunnelSpec]) -> None:
        """Start a tunnel per spec, restarting failed or stopped ones.

        Raises:
            TunnelError: If a tunnel process cannot be launched (the whole
                group is stopped first)
        """
        self._stopped.clear()
        self.failure = None

        for spec in specs:
            tunnel = self._tunnels.get(spec.name)
            if tunnel is None:
                tunnel = Tunnel(spec)
                self._tunnels[spec.name] = tunnel
            elif tunnel.state in (TunnelState.FAILED, TunnelState.STOPPED):
                tunnel.transition(TunnelState.RESTARTING)
            else:
                continue

            try:
                tunnel.process = await self._spawn(
                    self.command(spec),
                    RunMode.CAPTURE,
                    on_stdout=partial(self._on_stdout, tunnel),
                    on_stderr=partial(self._on_stderr, tunnel),
                )
            except LaunchError as e:
                tunnel.transition(TunnelState.FAILED)
                logger.error("tunnel_launch_failed", tunnel=spec.name, error=str(e))
                await self.stop()
                raise TunnelError(f"could not start tunnel {spec.name}: {e.reason}") from e

            if tunnel.state in (TunnelState.STARTING, TunnelState.RESTARTING):
                tunnel.transition(TunnelState.RUNNING)
            logger.info(
                "tunnel_started",
                tunnel=spec.name,
                local_port=spec.local_port,
                remote_port=spec.remote_port,
                namespace=self.namespace,
            )

    def _on_stdout(self, tunnel: Tunnel, line: str) -> None:
        logger.debug("tunnel_output", tunnel=tunnel.spec.name, line=line)

    def _on_stderr(self, tunnel: Tunnel, line: str) -> None:
        logger.debug("tunnel_stderr", tunnel=tunnel.spec.name, line=line)
        if self.failure_phrase not in line.lower() or tunnel.state not in LIVE_STATES:
            return

        tunnel.transition(TunnelState.FAILED)
        self.failure = f"tunnel {tunnel.spec.name} failed: {line.strip()}"
        logger.error("tunnel_failed", tunnel=tunnel.spec.name, line=line)

        if self._stop_task is None or self._stop_task.done():
            self._stop_task = asyncio.get_running_loop().create_task(self.stop())

    async def stop(self) -> None:
        """Terminate every tunnel's process tree and mark live tunnels stopped."""
        processes = [t.process for t in self._tunnels.values() if t.process is not None]
        await asyncio.gather(*(p.terminate_tree(self._grace) for p in processes))

        for tunnel in self._tunnels.values():
            if tunnel.state in LIVE_STATES:
                tunnel.transition(TunnelState.STOPPED)

        logger.info("tunnels_stopped", namespace=self.namespace, count=len(self._tunnels))
        self._stopped.set()

    async def join(self) -> None:
        """Wait until the tunnel group has been stopped."""
        await self._stopped.wait()
        if self._stop_task is not None:
            await self._stop_task

