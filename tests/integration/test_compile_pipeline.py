"""Integration tests for the compile pipeline against the bundled manifests.

Covers the whole path from diagram text to a written stack artifact:
parse, validate, resolve, validate again, generate, write and re-read.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from stackwright.compiler.pipeline import (
    artifact_path,
    compile_source,
    compile_text,
    load_artifact,
)
from stackwright.config import StackwrightConfig
from stackwright.errors import (
    ArtifactNotFoundError,
    ParseError,
    StackwrightError,
    UnresolvedComponentError,
    ValidationError,
)
from stackwright.model.stack import Target
from stackwright.pipeline.kubernetes import tunnel_specs

SCENARIOS = Path(__file__).resolve().parents[2] / "scenarios"


@pytest.mark.integration
class TestCatalogScenario:
    """A service calling its database."""

    def test_compose_artifact(self, test_config: StackwrightConfig, catalog_source: str) -> None:
        document = compile_source(catalog_source, Target.COMPOSE, test_config)

        expected_path = test_config.paths.output_dir / "catalog" / "docker-compose.yaml"
        assert document.path == expected_path
        assert expected_path.exists()

        compose = yaml.safe_load(expected_path.read_text(encoding="utf-8"))
        catalog = compose["services"]["catalog"]
        assert catalog["image"] == "stackwright/spring-boot-service:latest"
        assert catalog["depends_on"] == ["catalogdb"]
        assert catalog["ports"] == ["8080:8080"]
        assert catalog["environment"]["MICROZOO_DB_HOST"] == "catalogdb"
        assert catalog["environment"]["MICROZOO_DB_PORT"] == "5432"
        assert "MICROZOO_UPSTREAMSERVICES" not in catalog["environment"]

        database = compose["services"]["catalogdb"]
        assert database["image"] == "postgres:16-alpine"
        assert "ports" not in database

    def test_kubernetes_artifact(
        self, test_config: StackwrightConfig, catalog_source: str
    ) -> None:
        document = compile_source(catalog_source, Target.KUBERNETES, test_config)

        reread = load_artifact(catalog_source, Target.KUBERNETES, test_config)

        assert reread.namespace == "catalog"
        kinds = [d["kind"] for d in reread.documents]
        assert kinds.count("Deployment") == 2
        assert kinds.count("Service") == 2
        assert tunnel_specs(reread) == tunnel_specs(document)

    def test_load_before_compile(self, test_config: StackwrightConfig) -> None:
        with pytest.raises(ArtifactNotFoundError):
            load_artifact("catalog", Target.COMPOSE, test_config)

    def test_missing_source(self, test_config: StackwrightConfig) -> None:
        with pytest.raises(StackwrightError, match="diagram source not found"):
            compile_source("absent", Target.COMPOSE, test_config)

    def test_artifact_path_layout(self, test_config: StackwrightConfig) -> None:
        path = artifact_path(test_config, "shop", Target.KUBERNETES)
        assert path == test_config.paths.output_dir / "shop" / "kubernetes.yaml"


@pytest.mark.integration
class TestRejectedDiagrams:
    """Diagrams that must never produce an artifact."""

    def test_cycle(self, test_config: StackwrightConfig) -> None:
        text = """
        component "A" <<service>>
        component "B" <<service>>
        component "C" <<service>>
        [A] --> [B] : http/rest
        [B] --> [C] : http/rest
        [C] --> [A] : http/rest
        """
        with pytest.raises(ValidationError) as exc_info:
            compile_text(text, Target.COMPOSE, test_config, name="loop")

        assert exc_info.value.stage == "deployable"
        assert [i.code for i in exc_info.value.issues] == ["dependency_cycle"]
        assert not (test_config.paths.output_dir / "loop").exists()

    def test_unknown_endpoint(self, test_config: StackwrightConfig) -> None:
        with pytest.raises(ValidationError) as exc_info:
            compile_text('[A] <<service>>\n[A] --> [Nowhere]\n', Target.COMPOSE, test_config)
        assert exc_info.value.stage == "diagram"

    def test_unknown_kind(self, test_config: StackwrightConfig) -> None:
        with pytest.raises(UnresolvedComponentError):
            compile_text('[A] <<cobol-mainframe>>\n', Target.COMPOSE, test_config)

    def test_port_collision(self, test_config: StackwrightConfig) -> None:
        text = """
        component "A" <<service>> {
          port = 9000
        }
        component "B" <<go-service>> {
          port = 9000
        }
        """
        with pytest.raises(ValidationError) as exc_info:
            compile_text(text, Target.COMPOSE, test_config)
        assert [i.code for i in exc_info.value.issues] == ["port_collision"]

    def test_replicated_service_with_host_port(self, test_config: StackwrightConfig) -> None:
        text = """
        component "Orders" <<go-service>> {
          replicas = 2
        }
        """
        with pytest.raises(ValidationError) as exc_info:
            compile_text(text, Target.COMPOSE, test_config, name="shop")
        assert [i.code for i in exc_info.value.issues] == ["replicated_published_port"]

        document = compile_text(text, Target.KUBERNETES, test_config, name="shop")
        deployment = next(d for d in document.documents if d["kind"] == "Deployment")
        assert deployment["spec"]["replicas"] == 2

    def test_kubernetes_name_rules(self, test_config: StackwrightConfig) -> None:
        text = 'component "Order_Service" <<service>>\n'

        with pytest.raises(ValidationError) as exc_info:
            compile_text(text, Target.KUBERNETES, test_config, name="shop")

        assert exc_info.value.stage == "deployable"
        assert [i.subject for i in exc_info.value.issues] == ["order_service"]
        assert not (test_config.paths.output_dir / "shop").exists()

        document = compile_text(text, Target.COMPOSE, test_config, name="shop")
        assert "order_service" in document.documents[0]["services"]

    def test_parse_error(self, test_config: StackwrightConfig) -> None:
        with pytest.raises(ParseError):
            compile_text('component "A <<service>>\n', Target.COMPOSE, test_config)


@pytest.mark.integration
class TestShippedScenarios:
    """The example diagrams shipped in the repository compile on both targets."""

    @pytest.mark.parametrize("source", ["catalog", "shop"])
    @pytest.mark.parametrize("target", list(Target))
    def test_compiles(
        self, test_config: StackwrightConfig, source: str, target: Target
    ) -> None:
        text = (SCENARIOS / f"{source}.puml").read_text(encoding="utf-8")

        document = compile_text(text, target, test_config, name=source)

        assert document.name == source
        assert document.documents

    def test_shop_upstreams(self, test_config: StackwrightConfig) -> None:
        text = (SCENARIOS / "shop.puml").read_text(encoding="utf-8")

        document = compile_text(text, Target.COMPOSE, test_config, name="shop")

        services = {s.id: s for s in document.services}
        upstreams = services["gateway"].environment["MICROZOO_UPSTREAMSERVICES"]
        assert "http://catalog:8080" in upstreams.split(",")
