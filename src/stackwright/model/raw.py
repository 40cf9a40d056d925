"""Raw system model produced by the diagram parser."""

from __future__ import annotations

from typing import Union

from pydantic import BaseModel, ConfigDict, Field

PropertyValue = Union[str, int, float, bool]


class RawComponent(BaseModel):
    """A component declared in a diagram.

    Attributes:
        id: Normalized identity (lower-cased display name without whitespace)
        name: Display name as written in the diagram
        kind: Stereotype naming the manifest to use (may be empty)
        properties: Free-form settings from the component's property block
        line: Source line of the declaration (0 when built programmatically)
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    kind: str = ""
    properties: dict[str, PropertyValue] = Field(default_factory=dict)
    line: int = 0


class RawRelation(BaseModel):
    """A directed, protocol-tagged edge between two components.

    Attributes:
        source_id: Id of the calling component
        target_id: Id of the called component
        protocol: Normalized protocol (e.g. "http-rest", "jdbc"), empty if omitted
        label: Optional free-text label
        line: Source line of the declaration
    """

    model_config = ConfigDict(frozen=True)

    source_id: str
    target_id: str
    protocol: str = ""
    label: str | None = None
    line: int = 0


class RawSystem(BaseModel):
    """Components and relations of one diagram, in declaration order."""

    model_config = ConfigDict(frozen=True)

    name: str = "diagram"
    components: tuple[RawComponent, ...] = ()
    relations: tuple[RawRelation, ...] = ()

    def component(self, component_id: str) -> RawComponent | None:
        """Return the first component with the given id, if any."""
        return next((c for c in self.components if c.id == component_id), None)

    def outgoing(self, component_id: str) -> list[RawRelation]:
        """Return relations whose source is the given component."""
        return [r for r in self.relations if r.source_id == component_id]
