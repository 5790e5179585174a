from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Direction = Literal["input", "output"]


class PortSpec(BaseModel):
    name: str
    direction: Direction
    type: str


class ProvisionSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service: str
    as_: Optional[str] = Field(default=None, alias="as")
    # service port -> port of the providing model
    mapping: Dict[str, str] = Field(default_factory=dict)


class ServiceSpec(BaseModel):
    name: str
    ports: List[PortSpec] = Field(default_factory=list)
    provides: List[ProvisionSpec] = Field(default_factory=list)


class ComponentSpec(BaseModel):
    name: str
    parent: Optional[str] = None
    abstract: bool = False
    ports: List[PortSpec] = Field(default_factory=list)
    provides: List[ProvisionSpec] = Field(default_factory=list)


class ChildSpec(BaseModel):
    name: str
    models: List[str] = Field(default_factory=list)
    optional: bool = False
    main: bool = Field(default=False, description="The composition succeeds when this child does")
    arguments: Dict[str, Any] = Field(default_factory=dict)
    options: Dict[str, Any] = Field(default_factory=dict, description="Dependency options (success, failure, roles, ...)")


class ConnectionSpec(BaseModel):
    source: str = Field(description="slot.port")
    sink: str = Field(description="slot.port")
    policy: Dict[str, Any] = Field(default_factory=dict)


class ExportSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    port: str = Field(description="slot.port")
    as_: Optional[str] = Field(default=None, alias="as")


class SpecializationSpec(BaseModel):
    """A specialization and the customizations applied to the specialized model."""

    model_config = ConfigDict(populate_by_name=True)

    # slot name (or model name matching exactly one slot) -> models
    children: Dict[str, List[str]]
    not_: Dict[str, List[str]] = Field(default_factory=dict, alias="not")

    add: List[ChildSpec] = Field(default_factory=list)
    overload: List[ChildSpec] = Field(default_factory=list)
    connections: List[ConnectionSpec] = Field(default_factory=list)
    exports: List[ExportSpec] = Field(default_factory=list)
    conf: Dict[str, Dict[str, List[str]]] = Field(default_factory=dict)

    def has_customizations(self) -> bool:
        return bool(self.add or self.overload or self.connections or self.exports or self.conf)


class CompositionSpec(BaseModel):
    name: str
    parent: Optional[str] = None
    abstract: bool = False
    children: List[ChildSpec] = Field(default_factory=list)
    connections: List[ConnectionSpec] = Field(default_factory=list)
    exports: List[ExportSpec] = Field(default_factory=list)
    provides: List[ProvisionSpec] = Field(default_factory=list)
    conf: Dict[str, Dict[str, List[str]]] = Field(default_factory=dict)
    specializations: List[SpecializationSpec] = Field(default_factory=list)


class CatalogSpec(BaseModel):
    services: List[ServiceSpec] = Field(default_factory=list)
    components: List[ComponentSpec] = Field(default_factory=list)
    compositions: List[CompositionSpec] = Field(default_factory=list)
