"""Component manifest model held by the manifest registry."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ManifestPort(BaseModel):
    """A port exposed by a component kind.

    Attributes:
        port: Container-internal port number
        protocol: Protocol served on the port (e.g. "http-rest", "jdbc")
        publish: Whether the port is reachable from outside the stack
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    port: int = Field(ge=1, le=65535)
    protocol: str = Field(default="tcp")
    publish: bool = Field(default=True)


class ComponentManifest(BaseModel):
    """Reusable description of how a component kind maps to a runnable unit.

    Environment values are Jinja2 templates rendered by the resolver.

    Attributes:
        kind: Registry key (the component directory name)
        category: Parent directory name (e.g. "service", "database")
        image: Container image reference
        ports: Ports the unit listens on
        environment: Environment variable templates
        required_environment: Keys that must have a non-empty value after resolution
        accepts_upstreams: Whether the unit reads a list of upstream service URLs
        upstream_env: Environment key receiving the upstream list
        link_environment: Templates injected into services that link to this kind
        aliases: Additional kinds resolving to this manifest
        health_path: HTTP path probed by post-deployment checks
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: str
    category: str
    image: str = Field(min_length=1)
    ports: tuple[ManifestPort, ...] = ()
    environment: dict[str, str] = Field(default_factory=dict)
    required_environment: tuple[str, ...] = ()
    accepts_upstreams: bool = False
    upstream_env: str = "UPSTREAM_SERVICES"
    link_environment: dict[str, str] = Field(default_factory=dict)
    aliases: tuple[str, ...] = ()
    health_path: str = "/"

    @field_validator("environment", "link_environment", mode="before")
    @classmethod
    def stringify_values(cls, v: object) -> object:
        """YAML scalars such as 8080 or true become template strings."""
        if not isinstance(v, dict):
            return v
        result: dict[str, str] = {}
        for key, val in v.items():
            if val is None:
                result[str(key)] = ""
            elif isinstance(val, bool):
                result[str(key)] = "true" if val else "false"
            else:
                result[str(key)] = str(val)
        return result
