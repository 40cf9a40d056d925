"""Manifest registry for Stackwright.

Loads reusable component descriptors from a two-level directory tree:

    <root>/<category>/<component>/manifest.yaml

Each descriptor is keyed by its component directory name and by any aliases
it declares. Loading is strict: a malformed descriptor aborts the load. After
loading, the registry is read-only and may be shared across a whole compile.

Example descriptor:

    image: stackwright/spring-boot-service:latest
    aliases: [service]
    ports:
      - port: 8080
        protocol: http-rest
    environment:
      SERVER_PORT: "{{ port }}"
    accepts_upstreams: true
    upstream_env: MICROZOO_UPSTREAMSERVICES
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from pathlib import Path
from types import MappingProxyType

import yaml
from pydantic import ValidationError as PydanticValidationError

from stackwright.errors import ManifestError
from stackwright.logging import get_logger
from stackwright.model.manifest import ComponentManifest

logger = get_logger(__name__)

DESCRIPTOR_NAME = "manifest.yaml"
BUNDLED_ROOT = Path(__file__).resolve().parent.parent / "components"


class ManifestRegistry:
    """Immutable lookup table from component kind to manifest.

    Attributes:
        root: Directory the registry was loaded from (None when built in memory)
    """

    def __init__(self, manifests: Mapping[str, ComponentManifest], root: Path | None = None):
        self.root = root
        self._by_kind: Mapping[str, ComponentManifest] = MappingProxyType(dict(manifests))

    @classmethod
    def from_manifests(cls, manifests: list[ComponentManifest]) -> ManifestRegistry:
        """Build a registry from already parsed manifests.

        Raises:
            ManifestError: If two manifests claim the same kind or alias
        """
        table: dict[str, ComponentManifest] = {}
        for manifest in manifests:
            for key in (manifest.kind, *manifest.aliases):
                key = key.lower()
                if key in table and table[key] is not manifest:
                    raise ManifestError(
                        f"kind '{key}' is declared by both '{table[key].kind}' "
                        f"and '{manifest.kind}'"
                    )
                table[key] = manifest
        return cls(table)

    @classmethod
    def load(cls, root: Path) -> ManifestRegistry:
        """Scan ``root`` and load every component descriptor.

        Args:
            root: Registry root directory

        Returns:
            Loaded, read-only registry

        Raises:
            ManifestError: If the root is missing, a descriptor is missing or
                malformed, or two components claim the same kind
        """
        logger.info("loading_manifests", root=str(root))

        if not root.is_dir():
            raise ManifestError(f"manifest directory not found: {root}")

        manifests: list[ComponentManifest] = []
        for category_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            if category_dir.name.startswith((".", "_")):
                continue
            for component_dir in sorted(p for p in category_dir.iterdir() if p.is_dir()):
                if component_dir.name.startswith((".", "_")):
                    continue
                manifests.append(load_descriptor(component_dir, category_dir.name))

        registry = cls.from_manifests(manifests)
        registry.root = root

        logger.info("manifests_loaded", root=str(root), count=len(manifests))
        return registry

    def lookup(self, kind: str) -> ComponentManifest:
        """Return the manifest for ``kind``.

        Raises:
            ManifestError: If no manifest is registered for the kind
        """
        manifest = self._by_kind.get(kind.lower())
        if manifest is None:
            raise ManifestError(f"no manifest registered for kind '{kind}'")
        return manifest

    def get(self, kind: str) -> ComponentManifest | None:
        """Return the manifest for ``kind`` or None."""
        return self._by_kind.get(kind.lower())

    def kinds(self) -> list[str]:
        """All registered kinds and aliases, sorted."""
        return sorted(self._by_kind)

    def __contains__(self, kind: object) -> bool:
        return isinstance(kind, str) and kind.lower() in self._by_kind

    def __iter__(self) -> Iterator[str]:
        return iter(self.kinds())

    def __len__(self) -> int:
        return len(self._by_kind)


def load_descriptor(component_dir: Path, category: str) -> ComponentManifest:
    """Parse the descriptor of one component directory.

    Raises:
        ManifestError: If the descriptor is missing, unparsable or invalid
    """
    descriptor = component_dir / DESCRIPTOR_NAME
    if not descriptor.is_file():
        raise ManifestError(f"missing {DESCRIPTOR_NAME} in {component_dir}")

    try:
        data = yaml.safe_load(descriptor.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ManifestError(f"unparsable descriptor {descriptor}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError(f"descriptor {descriptor} must contain a mapping")
    if not data.get("image"):
        raise ManifestError(f"descriptor {descriptor} is missing mandatory field 'image'")

    try:
        manifest = ComponentManifest(
            kind=component_dir.name.lower(),
            category=category,
            **data,
        )
    except (PydanticValidationError, TypeError) as e:
        raise ManifestError(f"invalid descriptor {descriptor}: {e}") from e

    logger.debug("manifest_loaded", kind=manifest.kind, category=category, image=manifest.image)
    return manifest


def default_registry(root: Path | None = None) -> ManifestRegistry:
    """Load the registry at ``root`` or the manifests bundled with Stackwright."""
    return ManifestRegistry.load(root if root is not None else BUNDLED_ROOT)
