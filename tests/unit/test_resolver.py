"""Unit tests for the model resolver."""

from __future__ import annotations

import pytest

from stackwright.compiler.parser import parse
from stackwright.compiler.registry import ManifestRegistry
from stackwright.compiler.resolver import allocate_published_ports, resolve
from stackwright.errors import ManifestError, UnresolvedComponentError
from stackwright.model.manifest import ComponentManifest, ManifestPort
from stackwright.model.raw import RawComponent, RawRelation, RawSystem


class TestResolve:
    """Test resolution against a small registry."""

    def test_seeds_from_manifest(self, small_registry: ManifestRegistry) -> None:
        system = parse('component "Web" <<web>>\n')

        resolved = resolve(system, small_registry)

        web = resolved.service("web")
        assert web is not None
        assert web.image == "example/web:1"
        assert web.environment == {"PORT": "8080"}
        assert web.ports[0].target_port == 8080
        assert web.ports[0].published == 8080
        assert web.required_environment == ("PORT",)
        assert web.replicas == 1

    def test_unresolved_kind(self, small_registry: ManifestRegistry) -> None:
        system = parse('component "Thing" <<mystery>>\n')
        with pytest.raises(UnresolvedComponentError) as exc_info:
            resolve(system, small_registry)
        assert exc_info.value.component_id == "thing"
        assert exc_info.value.kind == "mystery"

    def test_link_environment_and_dependency(self, small_registry: ManifestRegistry) -> None:
        system = parse(
            """
            component "Web" <<web>>
            database "Store" <<database>>
            [Web] --> [Store] : jdbc
            """
        )

        web = resolve(system, small_registry).service("web")

        assert web.environment["DB_HOST"] == "store:5432"
        assert web.depends_on == ("store",)
        assert web.upstreams == ()
        assert web.links[0].address.port == 5432

    def test_upstreams_deduplicated(self, small_registry: ManifestRegistry) -> None:
        system = parse(
            """
            component "Front" <<web>>
            component "Back" <<web>>
            [Front] --> [Back] : http/rest
            [Front] --> [Back] : http/rest second call
            """
        )

        front = resolve(system, small_registry).service("front")

        assert [a.url for a in front.upstreams] == ["http://back:8080"]
        assert len(front.links) == 1
        assert front.depends_on == ("back",)

    def test_distinct_protocols_give_distinct_links(
        self, small_registry: ManifestRegistry
    ) -> None:
        system = parse(
            """
            component "Front" <<web>>
            component "Jobs" <<worker>>
            [Front] --> [Jobs] : grpc
            [Front] --> [Jobs] : http
            """
        )

        front = resolve(system, small_registry).service("front")

        assert [(link.protocol, link.address.url) for link in front.links] == [
            ("grpc", "grpc://jobs:9000"),
            ("http", "http://jobs:9000"),
        ]

    def test_one_upstream_per_target(self, small_registry: ManifestRegistry) -> None:
        system = parse(
            """
            component "Front" <<web>>
            component "Jobs" <<worker>>
            [Front] --> [Jobs] : grpc
            [Front] --> [Jobs] : http
            """
        )

        front = resolve(system, small_registry).service("front")

        assert [a.url for a in front.upstreams] == ["grpc://jobs:9000"]

    def test_property_overrides(self, small_registry: ManifestRegistry) -> None:
        system = parse(
            """
            component "Web" <<web>> {
              image = "example/web:2"
              replicas = 3
              port = 9999
              env.PORT = 7000
              env.VERBOSE = true
            }
            """
        )

        web = resolve(system, small_registry).service("web")

        assert web.image == "example/web:2"
        assert web.replicas == 3
        assert web.ports[0].published == 9999
        assert web.environment["PORT"] == "7000"
        assert web.environment["VERBOSE"] == "true"

    def test_does_not_mutate_input(self, small_registry: ManifestRegistry) -> None:
        system = parse('component "Web" <<web>> {\n  env.X = 1\n}\n')
        before = system.model_dump()

        resolve(system, small_registry)

        assert system.model_dump() == before

    def test_bad_template(self) -> None:
        registry = ManifestRegistry.from_manifests(
            [
                ComponentManifest(
                    kind="broken",
                    category="service",
                    image="example/broken:1",
                    environment={"X": "{{ unclosed"},
                )
            ]
        )
        with pytest.raises(ManifestError, match="cannot render environment 'X'"):
            resolve(parse('[B] <<broken>>\n'), registry)


class TestDeterminism:
    """Resolution yields the same result however often it runs."""

    def test_same_result_twice(self, bundled_registry: ManifestRegistry) -> None:
        system = parse(
            """
            component "Gateway" <<service>>
            component "Catalog" <<spring-boot-service>>
            component "Orders" <<go-service>>
            database "Catalog DB" <<postgres>>
            [Gateway] --> [Catalog] : http/rest
            [Gateway] --> [Orders] : http/rest
            [Orders] --> [Catalog] : http/rest
            [Catalog] --> [Catalog DB] : jdbc
            """
        )

        first = resolve(system, bundled_registry)
        second = resolve(system, bundled_registry)

        assert first == second
        assert [s.id for s in first.services] == ["gateway", "catalog", "orders", "catalogdb"]
        assert [s.ports[0].published for s in first.services[:3]] == [8080, 8081, 8082]


class TestPortAllocation:
    """Test published port allocation."""

    def _manifests(self, *ids: str) -> dict[str, ComponentManifest]:
        manifest = ComponentManifest(
            kind="web",
            category="service",
            image="example/web:1",
            ports=(ManifestPort(port=8080), ManifestPort(port=8443, publish=False)),
        )
        return {component_id: manifest for component_id in ids}

    def test_sequential_from_base_skipping_pins(self) -> None:
        system = RawSystem(
            components=(
                RawComponent(id="a", name="a", kind="web"),
                RawComponent(id="b", name="b", kind="web", properties={"port": 9000}),
                RawComponent(id="c", name="c", kind="web", properties={"port": 9001}),
                RawComponent(id="d", name="d", kind="web"),
            )
        )

        published = allocate_published_ports(system, self._manifests("a", "b", "c", "d"), 9000)

        assert published == {
            ("a", 8080): 9002,
            ("b", 8080): 9000,
            ("c", 8080): 9001,
            ("d", 8080): 9003,
        }

    def test_pins_may_collide(self) -> None:
        system = RawSystem(
            components=(
                RawComponent(id="a", name="a", kind="web", properties={"port": 8080}),
                RawComponent(id="b", name="b", kind="web", properties={"port": 8080}),
            ),
            relations=(RawRelation(source_id="a", target_id="b"),),
        )

        published = allocate_published_ports(system, self._manifests("a", "b"), 8080)

        assert published[("a", 8080)] == published[("b", 8080)] == 8080
