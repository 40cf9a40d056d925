"""Main CLI entry point for Stackwright.

This module provides the Typer application with one command per pipeline
action. Every command takes the diagram identifier as its only argument.

Usage:
    stackwright compile shop --target kubernetes
    stackwright deploy shop -s ./diagrams
    stackwright test shop
    stackwright drop shop -t kubernetes
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stackwright import __version__
from stackwright.compiler.pipeline import compile_source, load_artifact
from stackwright.config import StackwrightConfig, load_config
from stackwright.errors import CheckFailedError, StackwrightError, TunnelError, ValidationError
from stackwright.logging import bind_run_context, new_run_id, setup_logging
from stackwright.model.stack import StackDocument, Target
from stackwright.pipeline.base import Deployer, DeploymentResult
from stackwright.pipeline.checks import CheckResult, run_checks
from stackwright.pipeline.deployer import create_deployer
from stackwright.pipeline.kubernetes import KubernetesDeployer

app = typer.Typer(
    name="stackwright",
    help="Stackwright: compile component diagrams into runnable stacks",
    no_args_is_help=True,
)

console = Console()

SourceArgument = Annotated[
    str, typer.Argument(help="Diagram identifier (file name without suffix)")
]
SourceFolderOption = Annotated[
    Optional[Path],
    typer.Option("--source-folder", "-s", help="Directory holding the diagram sources"),
]
TargetOption = Annotated[
    Target,
    typer.Option("--target", "-t", help="Stack target", case_sensitive=False),
]


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded Stackwright configuration
    """

    def __init__(self, config: StackwrightConfig):
        self.config = config

    def with_source_folder(self, source_folder: Path | None) -> StackwrightConfig:
        """Configuration with the command's source folder override applied."""
        if source_folder is None:
            return self.config
        paths = self.config.paths.model_copy(update={"source_folder": source_folder})
        return self.config.model_copy(update={"paths": paths})


def get_app_context(ctx: typer.Context) -> AppContext:
    """Get the application context stored on the root Typer context.

    Raises:
        RuntimeError: If the callback has not initialized the context
    """
    app_context = ctx.find_object(AppContext)
    if app_context is None:
        raise RuntimeError("Application context not initialized.")
    return app_context


def _fail(error: StackwrightError) -> typer.Exit:
    """Print ``error`` with its category prefix and build the exit to raise."""
    console.print(f"[red]{error.prefix}:[/red] {error}", highlight=False)
    if isinstance(error, ValidationError):
        for issue in error.issues:
            console.print(f"  [dim]-[/dim] [yellow]{issue.code}[/yellow] {issue.message}")
    return typer.Exit(code=1)


def _print_result(result: DeploymentResult) -> None:
    if result.output.strip():
        console.print(result.output.rstrip(), highlight=False, markup=False)
    if result.tunnels:
        table = Table(title="Tunnels", show_header=False)
        table.add_column("Tunnel", style="cyan")
        for tunnel in result.tunnels:
            table.add_row(tunnel)
        console.print(table)
    console.print(
        f"[green]{result.action} of '{result.name}' completed[/green] "
        f"[dim]({result.duration_seconds:.1f}s)[/dim]"
    )


def _print_checks(results: list[CheckResult]) -> None:
    table = Table(title="Checks")
    table.add_column("Service", style="cyan")
    table.add_column("URL")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="right")
    for result in results:
        status = "[green]pass[/green]" if result.passed else f"[red]fail[/red] {result.error or ''}"
        table.add_row(result.service_id, result.url, status, str(result.attempts))
    console.print(table)


def _compile(source: str, target: Target, config: StackwrightConfig) -> StackDocument:
    bind_run_context(source=source, target=target.value)
    document = compile_source(source, target, config)
    console.print(f"[green]Compiled[/green] {source} -> {document.path}")
    return document


async def _hold_tunnels(deployer: KubernetesDeployer) -> None:
    """Keep the tunnels up until interrupted or until the group stops itself.

    Raises:
        TunnelError: If the tunnel group stopped because a tunnel failed
    """
    supervisor = deployer.supervisor
    if supervisor is None:
        return

    shutdown_event = asyncio.Event()

    def signal_handler(sig, frame):
        console.print()
        console.print("[yellow]Shutdown signal received. Stopping tunnels...[/yellow]")
        shutdown_event.set()

    previous = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    for sig in previous:
        signal.signal(sig, signal_handler)

    console.print("[dim]Tunnels running, press Ctrl+C to stop[/dim]")
    join_task = asyncio.create_task(supervisor.join())
    try:
        while not shutdown_event.is_set() and not join_task.done():
            await asyncio.sleep(0.5)
    finally:
        try:
            if not join_task.done():
                await supervisor.stop()
                await join_task
        finally:
            for sig, handler in previous.items():
                if handler is not None:
                    signal.signal(sig, handler)
        console.print("[green]Tunnels stopped[/green]")

    if supervisor.failure:
        raise TunnelError(supervisor.failure)


async def _deploy(document: StackDocument, config: StackwrightConfig, hold: bool) -> None:
    deployer: Deployer = create_deployer(document.target, config)
    result = await deployer.deploy(document)
    _print_result(result)
    if hold and isinstance(deployer, KubernetesDeployer):
        await _hold_tunnels(deployer)


async def _test(document: StackDocument, config: StackwrightConfig) -> list[CheckResult]:
    deployer = create_deployer(document.target, config)
    result = await deployer.deploy(document)
    _print_result(result)
    try:
        return await run_checks(document, config.checks)
    finally:
        if isinstance(deployer, KubernetesDeployer) and deployer.supervisor is not None:
            await deployer.supervisor.stop()


@app.command("compile")
def compile_command(
    ctx: typer.Context,
    source: SourceArgument,
    source_folder: SourceFolderOption = None,
    target: TargetOption = Target.COMPOSE,
) -> None:
    """Compile a diagram into a stack artifact."""
    config = get_app_context(ctx).with_source_folder(source_folder)
    try:
        _compile(source, target, config)
    except StackwrightError as e:
        raise _fail(e)


@app.command()
def deploy(
    ctx: typer.Context,
    source: SourceArgument,
    source_folder: SourceFolderOption = None,
    target: TargetOption = Target.COMPOSE,
) -> None:
    """Compile a diagram and deploy the resulting stack.

    On the kubernetes target the published ports are forwarded to localhost
    until the command is interrupted with Ctrl+C.
    """
    config = get_app_context(ctx).with_source_folder(source_folder)
    try:
        document = _compile(source, target, config)
        asyncio.run(_deploy(document, config, hold=True))
    except StackwrightError as e:
        raise _fail(e)


@app.command("test")
def test_stack(
    ctx: typer.Context,
    source: SourceArgument,
    source_folder: SourceFolderOption = None,
    target: TargetOption = Target.COMPOSE,
) -> None:
    """Compile and deploy a diagram, then probe every published HTTP port."""
    config = get_app_context(ctx).with_source_folder(source_folder)
    try:
        document = _compile(source, target, config)
        results = asyncio.run(_test(document, config))
        if results:
            _print_checks(results)
        else:
            console.print("[yellow]No HTTP endpoints to check[/yellow]")
        if any(not r.passed for r in results):
            raise CheckFailedError(results)
    except StackwrightError as e:
        raise _fail(e)


@app.command()
def drop(
    ctx: typer.Context,
    source: SourceArgument,
    source_folder: SourceFolderOption = None,
    target: TargetOption = Target.COMPOSE,
) -> None:
    """Tear down a previously deployed stack using its stored artifact."""
    config = get_app_context(ctx).with_source_folder(source_folder)
    bind_run_context(source=source, target=target.value)
    try:
        document = load_artifact(source, target, config)
        deployer = create_deployer(target, config)
        _print_result(asyncio.run(deployer.drop(document)))
    except StackwrightError as e:
        raise _fail(e)


@app.command()
def status(
    ctx: typer.Context,
    source: SourceArgument,
    source_folder: SourceFolderOption = None,
    target: TargetOption = Target.COMPOSE,
) -> None:
    """Show what the orchestration tool reports for a stack."""
    config = get_app_context(ctx).with_source_folder(source_folder)
    bind_run_context(source=source, target=target.value)
    try:
        document = load_artifact(source, target, config)
        deployer = create_deployer(target, config)
        _print_result(asyncio.run(deployer.status(document)))
    except StackwrightError as e:
        raise _fail(e)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"stackwright {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show the version and exit",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Configure global options and initialize application context.

    Args:
        config_path: Optional path to TOML configuration file
        verbose: Enable debug-level logging
        version: Print the version and exit
    """
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    if verbose:
        logging_config = config.logging.model_copy(update={"level": "DEBUG"})
        config = config.model_copy(update={"logging": logging_config})

    setup_logging(config.logging)
    new_run_id()
    ctx.obj = AppContext(config)

    if verbose:
        console.print(
            Panel(
                f"[bold]Container CLI:[/bold] {config.tools.container_cli}\n"
                f"[bold]Compose CLI:[/bold] {config.tools.compose_cli}\n"
                f"[bold]Orchestrator CLI:[/bold] {config.tools.orchestrator_cli}\n"
                f"[bold]Output dir:[/bold] {config.paths.output_dir}",
                title="Stackwright",
                border_style="cyan",
            )
        )


if __name__ == "__main__":
    app()
