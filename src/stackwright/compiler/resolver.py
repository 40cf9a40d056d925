"""Model resolver for Stackwright.

Merges a RawSystem with the manifest registry into a ResolvedSystem. The
resolution is a pure fold over the components in declaration order: it never
mutates its inputs and resolving the same system against the same registry
always yields an identical result.

Dependency cycles are not detected here; that is the job of the deployable
validator.
"""

from __future__ import annotations

from typing import Any

from jinja2 import Environment, TemplateError, Undefined

from stackwright.compiler.registry import ManifestRegistry
from stackwright.errors import ManifestError, UnresolvedComponentError
from stackwright.logging import get_logger
from stackwright.model.manifest import ComponentManifest
from stackwright.model.raw import RawComponent, RawSystem
from stackwright.model.resolved import (
    Address,
    Link,
    PortBinding,
    ResolvedService,
    ResolvedSystem,
    url_scheme,
)

logger = get_logger(__name__)

# Properties with this prefix set environment variables verbatim
ENV_PROPERTY_PREFIX = "env."

_templates = Environment(
    undefined=Undefined,
    autoescape=False,
    keep_trailing_newline=False,
)


def render_template(template: str, context: dict[str, Any], *, kind: str, key: str) -> str:
    """Render one environment template.

    Raises:
        ManifestError: If the template is invalid for the given context
    """
    try:
        return _templates.from_string(template).render(**context)
    except TemplateError as e:
        raise ManifestError(f"cannot render environment '{key}' of kind '{kind}': {e}") from e


def allocate_published_ports(
    system: RawSystem,
    manifests: dict[str, ComponentManifest],
    base_port: int,
) -> dict[tuple[str, int], int]:
    """Decide the published (source) port of every publishable container port.

    A ``port`` property pins the first publishable port of its component.
    Every other publishable port gets the next free port counting up from
    ``base_port``, in declaration order. Pinned ports are never handed out
    twice by the allocator, but two pins may still collide; the deployable
    validator reports that.

    Returns:
        Mapping of (component id, container port) to published port
    """
    published: dict[tuple[str, int], int] = {}

    for component in system.components:
        pin = component.properties.get("port")
        if isinstance(pin, int) and not isinstance(pin, bool):
            first = next((p for p in manifests[component.id].ports if p.publish), None)
            if first is not None:
                published[(component.id, first.port)] = pin

    taken = set(published.values())
    next_port = base_port
    for component in system.components:
        for port in manifests[component.id].ports:
            key = (component.id, port.port)
            if not port.publish or key in published:
                continue
            while next_port in taken:
                next_port += 1
            published[key] = next_port
            taken.add(next_port)
            next_port += 1

    return published


def _target_address(
    target_id: str,
    protocol: str,
    manifests: dict[str, ComponentManifest],
) -> Address:
    manifest = manifests.get(target_id)
    if manifest is None or not manifest.ports:
        return Address(service_id=target_id, host=target_id, scheme=url_scheme(protocol))

    port = next((p for p in manifest.ports if p.protocol == protocol), manifest.ports[0])
    return Address(
        service_id=target_id,
        host=target_id,
        port=port.port,
        scheme=url_scheme(protocol or port.protocol),
    )


def resolve_component(
    component: RawComponent,
    system: RawSystem,
    manifests: dict[str, ComponentManifest],
    published: dict[tuple[str, int], int],
) -> ResolvedService:
    """Resolve a single component against its manifest and relations."""
    manifest = manifests[component.id]

    ports: list[PortBinding] = []
    seen_ports: set[tuple[int, str]] = set()
    for port in manifest.ports:
        if (port.port, port.protocol) in seen_ports:
            continue
        seen_ports.add((port.port, port.protocol))
        ports.append(
            PortBinding(
                target_port=port.port,
                protocol=port.protocol,
                published=published.get((component.id, port.port)),
            )
        )

    context = {
        "service": component.id,
        "name": component.name,
        "kind": manifest.kind,
        "port": manifest.ports[0].port if manifest.ports else "",
        "ports": [p.port for p in manifest.ports],
        "properties": dict(component.properties),
    }
    environment = {
        key: render_template(template, context, kind=manifest.kind, key=key)
        for key, template in manifest.environment.items()
    }

    links: list[Link] = []
    upstreams: list[Address] = []
    depends_on: set[str] = set()
    seen_links: set[tuple[str, str]] = set()

    for relation in system.outgoing(component.id):
        depends_on.add(relation.target_id)
        link_key = (relation.target_id, relation.protocol)
        if link_key in seen_links:
            continue
        seen_links.add(link_key)

        address = _target_address(relation.target_id, relation.protocol, manifests)
        links.append(
            Link(target_id=relation.target_id, protocol=relation.protocol, address=address)
        )

        target_manifest = manifests.get(relation.target_id)
        if target_manifest is not None and target_manifest.link_environment:
            target = system.component(relation.target_id)
            link_context = {
                "target": address,
                "source": component.id,
                "service": relation.target_id,
                "properties": dict(target.properties) if target else {},
            }
            for key, template in target_manifest.link_environment.items():
                environment[key] = render_template(
                    template, link_context, kind=target_manifest.kind, key=key
                )
        elif all(existing.service_id != address.service_id for existing in upstreams):
            upstreams.append(address)

    for key, value in component.properties.items():
        if key.startswith(ENV_PROPERTY_PREFIX):
            env_key = key[len(ENV_PROPERTY_PREFIX) :]
            environment[env_key] = str(value).lower() if isinstance(value, bool) else str(value)

    replicas = component.properties.get("replicas", 1)

    return ResolvedService(
        id=component.id,
        kind=manifest.kind,
        image=str(component.properties.get("image", manifest.image)),
        ports=tuple(ports),
        environment=environment,
        upstreams=tuple(upstreams),
        upstream_env=manifest.upstream_env,
        accepts_upstreams=manifest.accepts_upstreams,
        links=tuple(links),
        depends_on=tuple(sorted(depends_on)),
        required_environment=manifest.required_environment,
        replicas=replicas if isinstance(replicas, int) and not isinstance(replicas, bool) else 1,
        health_path=manifest.health_path,
    )


def resolve(system: RawSystem, registry: ManifestRegistry, base_port: int = 8080) -> ResolvedSystem:
    """Resolve a raw system into a deployable one.

    Args:
        system: Parsed (and validated) diagram model
        registry: Manifest registry used to look up component kinds
        base_port: First host port for automatic port publishing

    Returns:
        ResolvedSystem with one service per component, in declaration order

    Raises:
        UnresolvedComponentError: If a component's kind has no manifest
        ManifestError: If a manifest template cannot be rendered
    """
    logger.info("resolving_system", name=system.name, components=len(system.components))

    manifests: dict[str, ComponentManifest] = {}
    for component in system.components:
        manifest = registry.get(component.kind)
        if manifest is None:
            logger.error("unresolved_component", component_id=component.id, kind=component.kind)
            raise UnresolvedComponentError(component.id, component.kind)
        manifests[component.id] = manifest

    published = allocate_published_ports(system, manifests, base_port)
    services = tuple(
        resolve_component(component, system, manifests, published)
        for component in system.components
    )

    logger.info(
        "system_resolved",
        name=system.name,
        services=len(services),
        published_ports=len(published),
    )

    return ResolvedSystem(name=system.name, services=services)
