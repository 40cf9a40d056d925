"""Resolved, deployable system model produced by the resolver."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

URL_SCHEMES: dict[str, str] = {
    "http-rest": "http",
    "http": "http",
    "https-rest": "https",
    "https": "https",
    "grpc": "grpc",
}


def url_scheme(protocol: str) -> str | None:
    """Map a relation protocol to a URL scheme, None when it has none."""
    return URL_SCHEMES.get(protocol)


class Address(BaseModel):
    """Network address of a service as seen from inside the stack.

    Attributes:
        service_id: Id of the addressed service
        host: Hostname (the service id on both targets)
        port: Container port, None when the service exposes no port
        scheme: URL scheme derived from the protocol, if any
    """

    model_config = ConfigDict(frozen=True)

    service_id: str
    host: str
    port: int | None = None
    scheme: str | None = None

    @property
    def url(self) -> str:
        """Render as ``scheme://host:port`` or ``host:port``."""
        hostport = self.host if self.port is None else f"{self.host}:{self.port}"
        if self.scheme:
            return f"{self.scheme}://{hostport}"
        return hostport


class Link(BaseModel):
    """One distinct outgoing (target, protocol) connection of a service."""

    model_config = ConfigDict(frozen=True)

    target_id: str
    protocol: str = ""
    address: Address


class PortBinding(BaseModel):
    """A container port and the host port it is published on.

    Attributes:
        target_port: Container-internal port
        protocol: Protocol served on the port
        published: Externally reachable source port, None if not published
    """

    model_config = ConfigDict(frozen=True)

    target_port: int = Field(ge=1, le=65535)
    protocol: str = "tcp"
    published: int | None = Field(default=None, ge=1, le=65535)


class ResolvedService(BaseModel):
    """A component merged with its manifest and incident relations."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: str
    image: str
    ports: tuple[PortBinding, ...] = ()
    environment: dict[str, str] = Field(default_factory=dict)
    upstreams: tuple[Address, ...] = ()
    upstream_env: str = "UPSTREAM_SERVICES"
    accepts_upstreams: bool = False
    links: tuple[Link, ...] = ()
    depends_on: tuple[str, ...] = ()
    required_environment: tuple[str, ...] = ()
    replicas: int = Field(default=1, ge=0)
    health_path: str = "/"


class ResolvedSystem(BaseModel):
    """Ordered collection of resolved services."""

    model_config = ConfigDict(frozen=True)

    name: str = "diagram"
    services: tuple[ResolvedService, ...] = ()

    def service(self, service_id: str) -> ResolvedService | None:
        """Return the first service with the given id, if any."""
        return next((s for s in self.services if s.id == service_id), None)
