"""Stack generator for Stackwright.

Turns a validated ResolvedSystem into the documents of one target:

- docker-compose: a single compose file with one service entry per service
- kubernetes: a Namespace followed by a Deployment and a Service per service

Generation is pure and deterministic. The typed upstream list of each
service is serialized into its environment here and nowhere earlier.
"""

from __future__ import annotations

import re
from typing import Any

from stackwright.logging import get_logger
from stackwright.model.resolved import ResolvedService, ResolvedSystem
from stackwright.model.stack import StackDocument, StackPort, StackService, Target

logger = get_logger(__name__)

DEPENDS_ON_ANNOTATION = "stackwright.io/depends-on"
PUBLISHED_PORTS_ANNOTATION = "stackwright.io/published-ports"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"

_DNS_INVALID = re.compile(r"[^a-z0-9-]+")


def dns_label(value: str) -> str:
    """Coerce ``value`` into an RFC 1123 label usable as a namespace."""
    label = _DNS_INVALID.sub("-", value.lower()).strip("-")[:63].rstrip("-")
    return label or "stackwright"


def to_stack_service(service: ResolvedService) -> StackService:
    """Project one resolved service onto its generation-ready shape."""
    environment = dict(service.environment)
    if service.upstreams:
        environment[service.upstream_env] = ",".join(a.url for a in service.upstreams)

    return StackService(
        id=service.id,
        image=service.image,
        environment=environment,
        ports=tuple(
            StackPort(source_port=p.published, target_port=p.target_port, protocol=p.protocol)
            for p in service.ports
        ),
        depends_on=service.depends_on,
        replicas=service.replicas,
        health_path=service.health_path,
    )


def to_stack_services(system: ResolvedSystem) -> tuple[StackService, ...]:
    """Project every resolved service, keeping declaration order."""
    return tuple(to_stack_service(s) for s in system.services)


def _compose_document(name: str, services: tuple[StackService, ...]) -> dict[str, Any]:
    entries: dict[str, Any] = {}
    for service in services:
        entry: dict[str, Any] = {"image": service.image}
        if service.environment:
            entry["environment"] = dict(service.environment)
        published = [f"{p.source_port}:{p.target_port}" for p in service.ports if p.source_port]
        if published:
            entry["ports"] = published
        if service.depends_on:
            entry["depends_on"] = list(service.depends_on)
        if service.replicas != 1:
            entry["deploy"] = {"replicas": service.replicas}
        entries[service.id] = entry

    return {"name": name, "services": entries}


def _port_name(port: StackPort) -> str:
    return f"p{port.target_port}"


def _kubernetes_documents(
    namespace: str, services: tuple[StackService, ...]
) -> list[dict[str, Any]]:
    documents: list[dict[str, Any]] = [
        {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": namespace, "labels": {MANAGED_BY_LABEL: "stackwright"}},
        }
    ]

    for service in services:
        labels = {"app": service.id, MANAGED_BY_LABEL: "stackwright"}
        annotations: dict[str, str] = {}
        if service.depends_on:
            annotations[DEPENDS_ON_ANNOTATION] = ",".join(service.depends_on)

        container: dict[str, Any] = {"name": service.id, "image": service.image}
        if service.environment:
            container["env"] = [
                {"name": key, "value": value} for key, value in service.environment.items()
            ]
        if service.ports:
            container["ports"] = [
                {"name": _port_name(p), "containerPort": p.target_port} for p in service.ports
            ]

        deployment_meta: dict[str, Any] = {
            "name": service.id,
            "namespace": namespace,
            "labels": labels,
        }
        if annotations:
            deployment_meta["annotations"] = annotations

        documents.append(
            {
                "apiVersion": "apps/v1",
                "kind": "Deployment",
                "metadata": deployment_meta,
                "spec": {
                    "replicas": service.replicas,
                    "selector": {"matchLabels": {"app": service.id}},
                    "template": {
                        "metadata": {"labels": labels},
                        "spec": {"containers": [container]},
                    },
                },
            }
        )

        if not service.ports:
            continue

        service_meta: dict[str, Any] = {
            "name": service.id,
            "namespace": namespace,
            "labels": labels,
        }
        published = [f"{p.source_port}:{p.target_port}" for p in service.ports if p.source_port]
        if published:
            service_meta["annotations"] = {PUBLISHED_PORTS_ANNOTATION: ",".join(published)}

        documents.append(
            {
                "apiVersion": "v1",
                "kind": "Service",
                "metadata": service_meta,
                "spec": {
                    "selector": {"app": service.id},
                    "ports": [
                        {
                            "name": _port_name(p),
                            "port": p.target_port,
                            "targetPort": p.target_port,
                        }
                        for p in service.ports
                    ],
                },
            }
        )

    return documents


def generate(
    system: ResolvedSystem,
    target: Target,
    namespace: str | None = None,
) -> StackDocument:
    """Generate the stack documents of ``system`` for ``target``.

    Args:
        system: Resolved and validated system
        target: Stack target to generate for
        namespace: Kubernetes namespace override (defaults to the system name)

    Returns:
        StackDocument holding the documents and the services they came from
    """
    target = Target(target)
    services = to_stack_services(system)

    if target == Target.COMPOSE:
        document = StackDocument(
            target=target,
            name=system.name,
            documents=(_compose_document(system.name, services),),
            services=services,
        )
    else:
        ns = dns_label(namespace or system.name)
        document = StackDocument(
            target=target,
            name=system.name,
            namespace=ns,
            documents=tuple(_kubernetes_documents(ns, services)),
            services=services,
        )

    logger.info(
        "stack_generated",
        name=system.name,
        target=target.value,
        services=len(services),
        documents=len(document.documents),
    )
    return document
