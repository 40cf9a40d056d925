"""Target-specific stack model and its persisted YAML form."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from stackwright.errors import ArtifactNotFoundError, StackwrightError


class Target(str, Enum):
    """Closed set of stack targets.

    Attributes:
        COMPOSE: Docker Compose file driven by the compose CLI
        KUBERNETES: Kubernetes manifests driven by kubectl
    """

    COMPOSE = "docker-compose"
    KUBERNETES = "kubernetes"


class StackPort(BaseModel):
    """Port mapping of a stack service.

    Attributes:
        source_port: Externally reachable port (None when not published)
        target_port: Container-internal port
        protocol: Protocol served on the port
    """

    model_config = ConfigDict(frozen=True)

    source_port: int | None = None
    target_port: int
    protocol: str = "tcp"


class StackService(BaseModel):
    """Generation-ready shape of one resolved service."""

    model_config = ConfigDict(frozen=True)

    id: str
    image: str
    environment: dict[str, str] = Field(default_factory=dict)
    ports: tuple[StackPort, ...] = ()
    depends_on: tuple[str, ...] = ()
    replicas: int = 1
    health_path: str = "/"


class StackDocument(BaseModel):
    """A generated stack artifact.

    Attributes:
        target: Target the documents were generated for
        name: Stack (compose project) name
        namespace: Kubernetes namespace, None for compose
        documents: YAML-ready documents in output order
        services: Services the documents were generated from (empty after read)
        path: Where the artifact lives on disk, once written
    """

    model_config = ConfigDict(frozen=True)

    target: Target
    name: str
    namespace: str | None = None
    documents: tuple[dict[str, Any], ...] = ()
    services: tuple[StackService, ...] = ()
    path: Path | None = None

    def render(self) -> str:
        """Serialize all documents as (multi-document) YAML."""
        return yaml.safe_dump_all(
            list(self.documents),
            sort_keys=False,
            default_flow_style=False,
        )

    def write(self, path: Path) -> StackDocument:
        """Write the artifact to ``path`` and return a copy bound to it."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render(), encoding="utf-8")
        return self.model_copy(update={"path": path})

    @classmethod
    def read(cls, path: Path, target: Target) -> StackDocument:
        """Re-read a previously written artifact.

        Raises:
            ArtifactNotFoundError: If the artifact does not exist
            StackwrightError: If the artifact cannot be parsed
        """
        if not path.exists():
            raise ArtifactNotFoundError(path)

        try:
            documents = [d for d in yaml.safe_load_all(path.read_text(encoding="utf-8")) if d]
        except yaml.YAMLError as e:
            raise StackwrightError(f"unreadable stack artifact {path}: {e}") from e

        name = path.parent.name
        namespace = None
        if target == Target.COMPOSE:
            if documents and isinstance(documents[0], dict):
                name = str(documents[0].get("name", name))
        else:
            for doc in documents:
                if isinstance(doc, dict) and doc.get("kind") == "Namespace":
                    namespace = str(doc["metadata"]["name"])
                    break
            name = namespace or name

        return cls(
            target=target,
            name=name,
            namespace=namespace,
            documents=tuple(d for d in documents if isinstance(d, dict)),
            path=path,
        )
