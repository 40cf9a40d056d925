"""Unit tests for the stack generator and stack artifacts."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from stackwright.compiler.generator import (
    DEPENDS_ON_ANNOTATION,
    PUBLISHED_PORTS_ANNOTATION,
    dns_label,
    generate,
    to_stack_services,
)
from stackwright.errors import ArtifactNotFoundError, StackwrightError
from stackwright.model.resolved import Address, PortBinding, ResolvedService, ResolvedSystem
from stackwright.model.stack import StackDocument, Target


@pytest.fixture
def system() -> ResolvedSystem:
    """A front end calling a back end and a gRPC worker."""
    return ResolvedSystem(
        name="shop",
        services=(
            ResolvedService(
                id="front",
                kind="web",
                image="example/web:1",
                ports=(
                    PortBinding(target_port=8080, protocol="http-rest", published=8080),
                    PortBinding(target_port=9090, protocol="grpc"),
                ),
                environment={"PORT": "8080"},
                upstreams=(
                    Address(service_id="back", host="back", port=8080, scheme="http"),
                    Address(service_id="jobs", host="jobs", port=9000, scheme="grpc"),
                ),
                upstream_env="UPSTREAMS",
                accepts_upstreams=True,
                depends_on=("back", "jobs"),
                replicas=2,
            ),
            ResolvedService(
                id="back",
                kind="web",
                image="example/web:1",
                ports=(PortBinding(target_port=8080, protocol="http-rest", published=8081),),
            ),
            ResolvedService(
                id="jobs",
                kind="worker",
                image="example/worker:1",
                ports=(PortBinding(target_port=9000, protocol="grpc"),),
            ),
        ),
    )


class TestStackServices:
    """Test the projection onto generation-ready services."""

    def test_upstreams_serialized_at_boundary(self, system: ResolvedSystem) -> None:
        front = to_stack_services(system)[0]
        assert front.environment["UPSTREAMS"] == "http://back:8080,grpc://jobs:9000"
        assert front.environment["PORT"] == "8080"

    def test_no_upstream_key_without_upstreams(self, system: ResolvedSystem) -> None:
        back = to_stack_services(system)[1]
        assert "UPSTREAM_SERVICES" not in back.environment


class TestCompose:
    """Test docker-compose generation."""

    def test_compose_document(self, system: ResolvedSystem) -> None:
        document = generate(system, Target.COMPOSE)

        assert document.namespace is None
        assert len(document.documents) == 1
        compose = document.documents[0]
        assert compose["name"] == "shop"
        assert list(compose["services"]) == ["front", "back", "jobs"]

        front = compose["services"]["front"]
        assert front["image"] == "example/web:1"
        assert front["ports"] == ["8080:8080"]
        assert front["depends_on"] == ["back", "jobs"]
        assert front["deploy"] == {"replicas": 2}
        assert "ports" not in compose["services"]["jobs"]
        assert "deploy" not in compose["services"]["back"]

    def test_render_is_valid_yaml(self, system: ResolvedSystem) -> None:
        rendered = generate(system, "docker-compose").render()
        loaded = yaml.safe_load(rendered)
        assert loaded["services"]["back"]["ports"] == ["8081:8080"]


class TestKubernetes:
    """Test kubernetes generation."""

    def test_one_workload_per_service_one_exposure_per_port(
        self, system: ResolvedSystem
    ) -> None:
        document = generate(system, Target.KUBERNETES)
        kinds = [d["kind"] for d in document.documents]

        assert kinds[0] == "Namespace"
        assert kinds.count("Deployment") == len(system.services)

        exposures = [
            port
            for d in document.documents
            if d["kind"] == "Service"
            for port in d["spec"]["ports"]
        ]
        declared = sum(len(s.ports) for s in system.services)
        assert len(exposures) == declared

    def test_independent_of_compose_generation(self, system: ResolvedSystem) -> None:
        before = generate(system, Target.KUBERNETES)
        generate(system, Target.COMPOSE)
        generate(system, Target.COMPOSE)
        after = generate(system, Target.KUBERNETES)
        assert before.documents == after.documents

    def test_deployment_shape(self, system: ResolvedSystem) -> None:
        document = generate(system, Target.KUBERNETES)
        deployment = next(
            d for d in document.documents
            if d["kind"] == "Deployment" and d["metadata"]["name"] == "front"
        )

        assert deployment["metadata"]["namespace"] == "shop"
        assert deployment["metadata"]["annotations"][DEPENDS_ON_ANNOTATION] == "back,jobs"
        assert deployment["spec"]["replicas"] == 2
        container = deployment["spec"]["template"]["spec"]["containers"][0]
        upstreams = {"name": "UPSTREAMS", "value": "http://back:8080,grpc://jobs:9000"}
        assert upstreams in container["env"]
        assert [p["containerPort"] for p in container["ports"]] == [8080, 9090]

    def test_published_ports_annotated(self, system: ResolvedSystem) -> None:
        document = generate(system, Target.KUBERNETES)
        services = {d["metadata"]["name"]: d for d in document.documents if d["kind"] == "Service"}

        annotations = services["front"]["metadata"]["annotations"]
        assert annotations[PUBLISHED_PORTS_ANNOTATION] == "8080:8080"
        assert "annotations" not in services["jobs"]["metadata"]

    def test_namespace_override(self, system: ResolvedSystem) -> None:
        document = generate(system, Target.KUBERNETES, namespace="My_Team Stack")
        assert document.namespace == "my-team-stack"
        assert document.documents[0]["metadata"]["name"] == "my-team-stack"

    @pytest.mark.parametrize(
        "value,expected",
        [("shop", "shop"), ("Shop_2", "shop-2"), ("--x--", "x"), ("___", "stackwright")],
    )
    def test_dns_label(self, value: str, expected: str) -> None:
        assert dns_label(value) == expected


class TestArtifacts:
    """Test writing and re-reading stack artifacts."""

    def test_write_then_read_compose(self, system: ResolvedSystem, tmp_path: Path) -> None:
        path = tmp_path / "out" / "shop" / "docker-compose.yaml"

        written = generate(system, Target.COMPOSE).write(path)
        reread = StackDocument.read(path, Target.COMPOSE)

        assert written.path == path
        assert reread.name == "shop"
        assert reread.documents == written.documents
        assert reread.services == ()

    def test_read_kubernetes_namespace(self, system: ResolvedSystem, tmp_path: Path) -> None:
        path = tmp_path / "kubernetes.yaml"
        generate(system, Target.KUBERNETES, namespace="team").write(path)

        reread = StackDocument.read(path, Target.KUBERNETES)

        assert reread.namespace == "team"
        assert len(reread.documents) == 1 + 3 + 3

    def test_read_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ArtifactNotFoundError) as exc_info:
            StackDocument.read(tmp_path / "nope.yaml", Target.COMPOSE)
        assert exc_info.value.prefix == "no artifact found"
        assert "run 'compile' first" in str(exc_info.value)

    def test_read_garbage(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("services: [unclosed\n", encoding="utf-8")
        with pytest.raises(StackwrightError, match="unreadable stack artifact"):
            StackDocument.read(path, Target.COMPOSE)
