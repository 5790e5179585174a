from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from cmpkit.core.models import BoundService, Model


@dataclass(eq=False)
class Task:
    id: int
    model: Model
    arguments: Dict[str, Any] = field(default_factory=dict)
    abstract: bool = False

    def fulfills(self, models) -> bool:
        return self.model.fulfills(models)

    def port_mappings_for(self, ancestor: Model):
        return self.model.port_mappings_for(ancestor)

    @property
    def name(self) -> str:
        return f"{self.model.name}#{self.id}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "model": self.model.name,
            "arguments": dict(self.arguments),
            "abstract": self.abstract,
        }


@dataclass(frozen=True)
class Dependency:
    parent: int
    child: int
    role: str
    options: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def to_dict(self) -> dict:
        return {"parent": self.parent, "child": self.child, "role": self.role, "options": dict(self.options)}


@dataclass(frozen=True)
class Connection:
    source: int
    source_port: str
    sink: int
    sink_port: str
    policy: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "source_port": self.source_port,
            "sink": self.sink,
            "sink_port": self.sink_port,
            "policy": dict(self.policy),
        }


@dataclass(frozen=True)
class SlotReference:
    """Selects whatever a sibling slot (or one of its children, "slot.child") resolved to."""

    path: str

    @property
    def slot(self) -> str:
        return self.path.split(".", 1)[0]

    @property
    def subpath(self) -> Optional[str]:
        parts = self.path.split(".", 1)
        return parts[1] if len(parts) > 1 else None


@dataclass
class Requirement:
    """A model together with arguments and selections for its own children."""

    model: Any
    arguments: Dict[str, Any] = field(default_factory=dict)
    selections: Dict[Any, Any] = field(default_factory=dict)

    def use(self, selections: Optional[Mapping[Any, Any]] = None, **by_name) -> "Requirement":
        merged = dict(self.selections)
        merged.update(selections or {})
        merged.update(by_name)
        return Requirement(self.model, dict(self.arguments), merged)

    def with_arguments(self, **arguments) -> "Requirement":
        return Requirement(self.model, {**self.arguments, **arguments}, dict(self.selections))

    def fulfills(self, models) -> bool:
        return self.model.fulfills(models)

    @property
    def component_model(self) -> Model:
        return self.model.component if isinstance(self.model, BoundService) else self.model
