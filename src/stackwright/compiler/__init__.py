"""Diagram compiler: parse, validate, resolve and generate stack artifacts."""

from __future__ import annotations

from stackwright.compiler.generator import generate, to_stack_services
from stackwright.compiler.parser import DiagramParser, parse
from stackwright.compiler.pipeline import (
    artifact_path,
    compile_source,
    compile_system,
    compile_text,
    load_artifact,
)
from stackwright.compiler.registry import ManifestRegistry, default_registry
from stackwright.compiler.resolver import resolve
from stackwright.compiler.validator import validate_deployable, validate_diagram

__all__ = [
    "DiagramParser",
    "ManifestRegistry",
    "artifact_path",
    "compile_source",
    "compile_system",
    "compile_text",
    "default_registry",
    "generate",
    "load_artifact",
    "parse",
    "resolve",
    "to_stack_services",
    "validate_deployable",
    "validate_diagram",
]
