"""Validators for Stackwright models.

Two validation stages bracket the resolver:

- ``validate_diagram`` checks the structural well-formedness of a RawSystem.
- ``validate_deployable`` checks that a ResolvedSystem can actually be deployed.

Both are pure functions that collect every violation they find and return
them as a list; an empty list means the model is valid. Callers treat a
non-empty list as fatal for the compile.
"""

from __future__ import annotations

import re
from collections import Counter
from enum import Enum

from stackwright.logging import get_logger
from stackwright.model.issues import ValidationIssue
from stackwright.model.raw import RawSystem
from stackwright.model.resolved import ResolvedSystem
from stackwright.model.stack import Target

logger = get_logger(__name__)

# RFC 1123 label, required for Deployment and Service names
_KUBERNETES_NAME = re.compile(r"^[a-z0-9](?:[-a-z0-9]{0,61}[a-z0-9])?$")
_COMPOSE_SERVICE_NAME = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")
_COMPOSE_PROJECT_NAME = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


def _duplicates(ids: list[str]) -> list[str]:
    counts = Counter(ids)
    return [item for item, count in counts.items() if count > 1]


def validate_diagram(system: RawSystem) -> list[ValidationIssue]:
    """Check a raw system for structural problems.

    Checks (all independent, all reported):
    - every relation endpoint names a declared component
    - no relation is a self-loop
    - every component has a non-empty kind
    - no two components share an id
    - ``port`` and ``replicas`` properties, when present, are usable integers

    Args:
        system: Parsed diagram model

    Returns:
        List of issues, empty when the diagram is valid
    """
    logger.info("validating_diagram", name=system.name)

    issues: list[ValidationIssue] = []
    known = {c.id for c in system.components}

    for relation in system.relations:
        for role, endpoint in (("source", relation.source_id), ("target", relation.target_id)):
            if endpoint not in known:
                issues.append(
                    ValidationIssue(
                        code="unknown_endpoint",
                        message=(
                            f"relation on line {relation.line} references unknown "
                            f"{role} component '{endpoint}'"
                        ),
                        subject=endpoint,
                    )
                )
        if relation.source_id == relation.target_id:
            issues.append(
                ValidationIssue(
                    code="self_loop",
                    message=f"component '{relation.source_id}' has a relation to itself",
                    subject=relation.source_id,
                )
            )

    for component in system.components:
        if not component.kind.strip():
            issues.append(
                ValidationIssue(
                    code="missing_kind",
                    message=f"component '{component.id}' has no kind (add a <<stereotype>>)",
                    subject=component.id,
                )
            )

        port = component.properties.get("port")
        if port is not None and (
            isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535
        ):
            issues.append(
                ValidationIssue(
                    code="invalid_port",
                    message=f"component '{component.id}' has invalid port '{port}'",
                    subject=component.id,
                )
            )

        replicas = component.properties.get("replicas")
        if replicas is not None and (
            isinstance(replicas, bool) or not isinstance(replicas, int) or replicas < 0
        ):
            issues.append(
                ValidationIssue(
                    code="invalid_replicas",
                    message=f"component '{component.id}' has invalid replicas '{replicas}'",
                    subject=component.id,
                )
            )

    for duplicate in _duplicates([c.id for c in system.components]):
        issues.append(
            ValidationIssue(
                code="duplicate_id",
                message=f"component id '{duplicate}' is declared more than once",
                subject=duplicate,
            )
        )

    logger.info("diagram_validated", name=system.name, issues=len(issues))
    return issues


class _Mark(Enum):
    WHITE = 0
    GREY = 1
    BLACK = 2


def _rotated(nodes: list[str]) -> tuple[str, ...]:
    start = nodes.index(min(nodes))
    return tuple(nodes[start:] + nodes[:start])


def find_cycles(graph: dict[str, tuple[str, ...]]) -> list[list[str]]:
    """Find dependency cycles with a three-colour depth-first search.

    Edges to nodes missing from ``graph`` are ignored. Each cycle is reported
    once, as the path from its first visited node back to itself.

    Args:
        graph: Adjacency mapping of node id to the ids it depends on

    Returns:
        List of cycles, each a list of node ids ending with its first node
    """
    marks = {node: _Mark.WHITE for node in graph}
    cycles: list[list[str]] = []
    seen: set[tuple[str, ...]] = set()

    for root in graph:
        if marks[root] is not _Mark.WHITE:
            continue

        path: list[str] = [root]
        stack = [iter(graph[root])]
        marks[root] = _Mark.GREY

        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                stack.pop()
                marks[path.pop()] = _Mark.BLACK
                continue
            if nxt not in marks:
                continue
            if marks[nxt] is _Mark.GREY:
                cycle = path[path.index(nxt) :] + [nxt]
                key = _rotated(cycle[:-1])
                if key not in seen:
                    seen.add(key)
                    cycles.append(cycle)
            elif marks[nxt] is _Mark.WHITE:
                marks[nxt] = _Mark.GREY
                path.append(nxt)
                stack.append(iter(graph[nxt]))

    return cycles


def validate_deployable(
    system: ResolvedSystem, target: Target | None = None
) -> list[ValidationIssue]:
    """Check a resolved system for deployability problems.

    Checks (all independent, all reported):
    - service ids are unique
    - every dependency names another existing service
    - no two services publish the same source port
    - the dependency graph is acyclic
    - every required environment key has a non-empty value
    - every link's protocol is served by the target and resolves to a port
    - upstream links only originate from kinds that accept upstreams

    With a ``target``, that target's checks are added: service names the
    tool accepts, and for docker-compose no fixed host port on a service
    running more than one replica.

    Args:
        system: Resolved model
        target: Stack target the system is about to be generated for

    Returns:
        List of issues, empty when the system is deployable
    """
    logger.info("validating_deployable", name=system.name)

    issues: list[ValidationIssue] = []
    by_id = {s.id: s for s in system.services}

    for duplicate in _duplicates([s.id for s in system.services]):
        issues.append(
            ValidationIssue(
                code="duplicate_service",
                message=f"service id '{duplicate}' is used more than once",
                subject=duplicate,
            )
        )

    for service in system.services:
        for dependency in service.depends_on:
            if dependency == service.id:
                issues.append(
                    ValidationIssue(
                        code="self_dependency",
                        message=f"service '{service.id}' depends on itself",
                        subject=service.id,
                    )
                )
            elif dependency not in by_id:
                issues.append(
                    ValidationIssue(
                        code="unresolved_dependency",
                        message=f"service '{service.id}' depends on unknown service '{dependency}'",
                        subject=service.id,
                    )
                )

    owners: dict[int, list[str]] = {}
    for service in system.services:
        for port in service.ports:
            if port.published is not None:
                owners.setdefault(port.published, []).append(service.id)
    for published, services in owners.items():
        if len(services) > 1:
            issues.append(
                ValidationIssue(
                    code="port_collision",
                    message=f"source port {published} is published by {', '.join(services)}",
                    subject=str(published),
                )
            )

    graph = {
        s.id: tuple(d for d in s.depends_on if d != s.id and d in by_id) for s in system.services
    }
    for cycle in find_cycles(graph):
        issues.append(
            ValidationIssue(
                code="dependency_cycle",
                message=f"dependency cycle: {' -> '.join(cycle)}",
                subject=cycle[0],
            )
        )

    for service in system.services:
        for key in service.required_environment:
            if not service.environment.get(key, "").strip():
                issues.append(
                    ValidationIssue(
                        code="missing_environment",
                        message=f"service '{service.id}' requires environment variable '{key}'",
                        subject=service.id,
                    )
                )

        for link in service.links:
            linked = by_id.get(link.target_id)
            if linked is None:
                continue
            if link.address.port is None:
                issues.append(
                    ValidationIssue(
                        code="unreachable_target",
                        message=f"service '{link.target_id}' exposes no port for '{service.id}'",
                        subject=service.id,
                    )
                )
            elif link.protocol and all(p.protocol != link.protocol for p in linked.ports):
                served = ", ".join(sorted({p.protocol for p in linked.ports}))
                issues.append(
                    ValidationIssue(
                        code="protocol_mismatch",
                        message=(
                            f"service '{service.id}' talks {link.protocol} to "
                            f"'{link.target_id}', which serves {served}"
                        ),
                        subject=service.id,
                    )
                )

        if service.upstreams and not service.accepts_upstreams:
            issues.append(
                ValidationIssue(
                    code="upstreams_not_accepted",
                    message=(
                        f"service '{service.id}' (kind {service.kind}) cannot call upstream "
                        f"services: {', '.join(a.service_id for a in service.upstreams)}"
                    ),
                    subject=service.id,
                )
            )

    if target is not None:
        issues.extend(_target_issues(system, Target(target)))

    logger.info("deployable_validated", name=system.name, issues=len(issues))
    return issues


def _target_issues(system: ResolvedSystem, target: Target) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    if target == Target.COMPOSE and not _COMPOSE_PROJECT_NAME.match(system.name):
        issues.append(
            ValidationIssue(
                code="invalid_name",
                message=f"'{system.name}' is not a valid docker-compose project name",
                subject=system.name,
            )
        )

    pattern = _KUBERNETES_NAME if target == Target.KUBERNETES else _COMPOSE_SERVICE_NAME
    for service in system.services:
        if not pattern.match(service.id):
            issues.append(
                ValidationIssue(
                    code="invalid_name",
                    message=f"service id '{service.id}' is not a valid {target.value} name",
                    subject=service.id,
                )
            )

        if target == Target.COMPOSE and service.replicas > 1:
            published = [p.published for p in service.ports if p.published is not None]
            if published:
                issues.append(
                    ValidationIssue(
                        code="replicated_published_port",
                        message=(
                            f"service '{service.id}' runs {service.replicas} replicas but "
                            f"publishes fixed host port {published[0]}"
                        ),
                        subject=service.id,
                    )
                )

    return issues
