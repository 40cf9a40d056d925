"""Compile pipeline for Stackwright.

Runs the stages in order, stopping at the first failing one:

    parse -> validate_diagram -> resolve -> validate_deployable -> generate

Example usage:
    >>> from stackwright.config import StackwrightConfig
    >>> from stackwright.compiler.pipeline import compile_source
    >>> from stackwright.model import Target
    >>>
    >>> document = compile_source("shop", Target.COMPOSE, StackwrightConfig())
    >>> print(document.path)
    build/shop/docker-compose.yaml
"""

from __future__ import annotations

from pathlib import Path

from stackwright.compiler.generator import generate
from stackwright.compiler.parser import DiagramParser
from stackwright.compiler.registry import ManifestRegistry, default_registry
from stackwright.compiler.resolver import resolve
from stackwright.compiler.validator import validate_deployable, validate_diagram
from stackwright.config import StackwrightConfig
from stackwright.errors import StackwrightError, ValidationError
from stackwright.logging import get_logger
from stackwright.model.raw import RawSystem
from stackwright.model.stack import StackDocument, Target

logger = get_logger(__name__)


def source_path(config: StackwrightConfig, source: str) -> Path:
    """Location of the diagram named ``source``."""
    return config.paths.source_folder / f"{source}{config.paths.diagram_suffix}"


def artifact_path(config: StackwrightConfig, source: str, target: Target) -> Path:
    """Location of the generated artifact for ``source`` and ``target``."""
    return config.paths.output_dir / source / f"{Target(target).value}.yaml"


def compile_system(
    system: RawSystem,
    target: Target,
    config: StackwrightConfig,
    registry: ManifestRegistry | None = None,
) -> StackDocument:
    """Validate, resolve and generate an already parsed system.

    Raises:
        ValidationError: If either validation stage reports issues
        UnresolvedComponentError: If a component kind has no manifest
        ManifestError: If the registry cannot be loaded
    """
    issues = validate_diagram(system)
    if issues:
        raise ValidationError("diagram", issues)

    if registry is None:
        registry = default_registry(config.paths.manifest_dir)

    resolved = resolve(system, registry, base_port=config.compile.base_port)

    issues = validate_deployable(resolved, target)
    if issues:
        raise ValidationError("deployable", issues)

    return generate(resolved, target, namespace=config.orchestrator.namespace)


def compile_text(
    text: str,
    target: Target,
    config: StackwrightConfig,
    name: str = "diagram",
    registry: ManifestRegistry | None = None,
) -> StackDocument:
    """Compile diagram source text without touching the filesystem."""
    system = DiagramParser().parse(text, name=name)
    return compile_system(system, target, config, registry)


def compile_source(
    source: str,
    target: Target,
    config: StackwrightConfig,
    registry: ManifestRegistry | None = None,
) -> StackDocument:
    """Compile the diagram ``source`` and write its artifact.

    Args:
        source: Diagram identifier (file stem inside the source folder)
        target: Stack target to generate
        config: Application configuration
        registry: Registry override, loaded from config when omitted

    Returns:
        The written StackDocument (``path`` is set)

    Raises:
        StackwrightError: If the diagram is missing or any stage fails
    """
    target = Target(target)
    path = source_path(config, source)
    logger.info("compile_started", source=source, target=target.value, path=str(path))

    if not path.is_file():
        raise StackwrightError(f"diagram source not found: {path}")

    text = path.read_text(encoding="utf-8")
    document = compile_text(text, target, config, name=source, registry=registry)
    written = document.write(artifact_path(config, source, target))

    logger.info(
        "compile_completed",
        source=source,
        target=target.value,
        artifact=str(written.path),
        services=len(written.services),
    )
    return written


def load_artifact(source: str, target: Target, config: StackwrightConfig) -> StackDocument:
    """Re-read the artifact of a previous compile.

    Raises:
        ArtifactNotFoundError: If ``source`` was never compiled for ``target``
    """
    target = Target(target)
    return StackDocument.read(artifact_path(config, source, target), target)
