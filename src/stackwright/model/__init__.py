"""Typed models flowing through the Stackwright compile pipeline.

Each pipeline stage produces a new, frozen structure:
RawSystem (parser) -> ResolvedSystem (resolver) -> StackDocument (generator).
"""

from __future__ import annotations

from stackwright.model.issues import ValidationIssue
from stackwright.model.manifest import ComponentManifest, ManifestPort
from stackwright.model.raw import PropertyValue, RawComponent, RawRelation, RawSystem
from stackwright.model.resolved import (
    Address,
    Link,
    PortBinding,
    ResolvedService,
    ResolvedSystem,
)
from stackwright.model.stack import StackDocument, StackPort, StackService, Target

__all__ = [
    # Diagram model
    "PropertyValue",
    "RawComponent",
    "RawRelation",
    "RawSystem",
    # Manifests
    "ComponentManifest",
    "ManifestPort",
    # Resolved model
    "Address",
    "Link",
    "PortBinding",
    "ResolvedService",
    "ResolvedSystem",
    # Stack artifacts
    "StackDocument",
    "StackPort",
    "StackService",
    "Target",
    # Validation
    "ValidationIssue",
]
