"""Shared pytest fixtures for Stackwright tests."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest
import structlog

from stackwright.compiler.parser import DiagramParser
from stackwright.compiler.registry import ManifestRegistry, default_registry
from stackwright.config import PathsConfig, StackwrightConfig
from stackwright.model.manifest import ComponentManifest, ManifestPort

CATALOG_DIAGRAM = textwrap.dedent(
    """\
    @startuml
    component "Catalog" <<service>>
    component "CatalogDb" <<database>>
    [Catalog] --> [CatalogDb] : jdbc
    @enduml
    """
)


@pytest.fixture(autouse=True)
def reset_structlog_context() -> None:
    """Keep bound context from leaking between tests."""
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def parser() -> DiagramParser:
    """Create a diagram parser."""
    return DiagramParser()


@pytest.fixture(scope="session")
def bundled_registry() -> ManifestRegistry:
    """Load the manifests shipped with Stackwright."""
    return default_registry()


@pytest.fixture
def small_registry() -> ManifestRegistry:
    """A registry with one web kind and one database kind.

    ``web`` accepts upstreams; ``db`` injects its host into linking services.
    """
    return ManifestRegistry.from_manifests(
        [
            ComponentManifest(
                kind="web",
                category="service",
                image="example/web:1",
                ports=(ManifestPort(port=8080, protocol="http-rest"),),
                environment={"PORT": "{{ port }}"},
                required_environment=("PORT",),
                accepts_upstreams=True,
                upstream_env="UPSTREAMS",
            ),
            ComponentManifest(
                kind="worker",
                category="service",
                image="example/worker:1",
                ports=(ManifestPort(port=9000, protocol="grpc"),),
            ),
            ComponentManifest(
                kind="db",
                category="database",
                image="example/db:1",
                ports=(ManifestPort(port=5432, protocol="jdbc", publish=False),),
                link_environment={"DB_HOST": "{{ target.host }}:{{ target.port }}"},
                aliases=("database",),
            ),
        ]
    )


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A scratch directory with an empty ``scenarios`` folder."""
    (tmp_path / "scenarios").mkdir()
    return tmp_path


@pytest.fixture
def test_config(workspace: Path) -> StackwrightConfig:
    """Configuration rooted in the scratch workspace."""
    return StackwrightConfig(
        paths=PathsConfig(
            source_folder=workspace / "scenarios",
            output_dir=workspace / "build",
        )
    )


@pytest.fixture
def catalog_source(workspace: Path) -> str:
    """Write the Catalog/CatalogDb diagram and return its identifier."""
    (workspace / "scenarios" / "catalog.puml").write_text(CATALOG_DIAGRAM, encoding="utf-8")
    return "catalog"
