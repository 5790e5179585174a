from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from cmpkit.core.errors import DeclarationError, InvalidChildPort, InvalidOverload
from cmpkit.core.models import (
    ComponentModel,
    IncompatibleModelSets,
    Model,
    Port,
    is_component,
    merge_model_sets,
    model_names,
)
from cmpkit.core.models import port_mappings
from cmpkit.core.models.port_mappings import PortMapping

if TYPE_CHECKING:
    from .composition import CompositionModel

# dependency options whose values are sets and get unioned on overload
SET_OPTIONS = ("success", "failure", "roles")


def merge_dependency_options(base: Dict[str, Any], new: Dict[str, Any], slot: str = "") -> Dict[str, Any]:
    result = dict(base)
    for key, value in new.items():
        if key in SET_OPTIONS:
            merged = list(result.get(key) or [])
            for v in value if isinstance(value, (list, tuple, set, frozenset)) else [value]:
                if v not in merged:
                    merged.append(v)
            result[key] = merged
        elif key in result and result[key] != value:
            raise InvalidOverload(
                f"conflicting dependency option {key} on {slot}: {result[key]!r} != {value!r}",
                slot=slot,
                option=key,
            )
        else:
            result[key] = value
    return result


@dataclass(frozen=True)
class ChildPort:
    child_name: str
    port: Port

    @property
    def name(self) -> str:
        return self.port.name

    def __str__(self) -> str:
        return f"{self.child_name}.{self.port.name}"


class CompositionChild:
    """Declaration of one slot of a composition.

    Overloading a slot creates a new child whose `parent` is the definition it
    refines; the required model set only ever narrows along that chain.
    """

    def __init__(
        self,
        composition: "CompositionModel",
        child_name: str,
        models: Iterable[Model],
        dependency_options: Optional[Dict[str, Any]] = None,
        parent: Optional["CompositionChild"] = None,
        arguments: Optional[Dict[str, Any]] = None,
    ):
        self.composition = composition
        self.child_name = child_name
        self.parent = parent
        try:
            self.models = merge_model_sets(models)
        except IncompatibleModelSets as e:
            raise InvalidOverload(str(e), slot=child_name, **e.data) from e
        if not self.models:
            raise DeclarationError(f"slot {child_name} requires at least one model", slot=child_name)
        self.dependency_options: Dict[str, Any] = dict(dependency_options or {})
        self.arguments: Dict[str, Any] = dict(arguments or {})
        self._optional: Optional[bool] = None
        self._frozen = False

    def __repr__(self) -> str:
        return f"<CompositionChild {self.composition.name}.{self.child_name} {model_names(self.models)}>"

    # ------------------------------------------------------------
    # Declaration
    # ------------------------------------------------------------
    def _check_mutable(self) -> None:
        if self._frozen:
            raise DeclarationError(
                f"slot {self.child_name} of {self.composition.name} is frozen",
                slot=self.child_name,
            )

    def freeze(self) -> None:
        self._frozen = True

    def optional(self) -> "CompositionChild":
        self._check_mutable()
        self._optional = True
        return self

    @property
    def is_optional(self) -> bool:
        if self._optional is not None:
            return self._optional
        return self.parent.is_optional if self.parent is not None else False

    def with_arguments(self, **arguments) -> "CompositionChild":
        self._check_mutable()
        self.arguments.update(arguments)
        return self

    def overload(
        self,
        composition: "CompositionModel",
        models: Iterable[Model],
        dependency_options: Optional[Dict[str, Any]] = None,
        arguments: Optional[Dict[str, Any]] = None,
    ) -> "CompositionChild":
        models = list(models)
        for new in models:
            if not is_component(new):
                continue
            for existing in self.models:
                if is_component(existing) and not (new.fulfills(existing) or existing.fulfills(new)):
                    raise InvalidOverload(
                        f"cannot overload {self.child_name} with {new.name}: "
                        f"it is unrelated to the required {existing.name}",
                        slot=self.child_name,
                        model=new.name,
                        required=existing.name,
                    )

        return CompositionChild(
            composition,
            self.child_name,
            list(self.models) + models,
            dependency_options=merge_dependency_options(
                self.dependency_options, dependency_options or {}, self.child_name
            ),
            parent=self,
            arguments={**self.arguments, **(arguments or {})},
        )

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------
    @property
    def component_model(self) -> Optional[ComponentModel]:
        for m in self.models:
            if is_component(m):
                return m
        return None

    @property
    def services(self) -> List[Model]:
        return [m for m in self.models if not is_component(m)]

    def fulfills(self, model: Model) -> bool:
        """Whether this slot is guaranteed to provide `model`."""
        return any(m.fulfills(model) for m in self.models)

    def accepts(self, selected) -> bool:
        return selected.fulfills(self.models)

    def find_port(self, name: str) -> Optional[Port]:
        ordered = sorted(self.models, key=lambda m: (not is_component(m), m.name))
        for m in ordered:
            port = m.find_port(name)
            if port is not None:
                return port
        return None

    def port(self, name: str) -> ChildPort:
        port = self.find_port(name)
        if port is None:
            raise InvalidChildPort(
                f"slot {self.child_name} ({', '.join(model_names(self.models))}) has no port called {name}",
                slot=self.child_name,
                port=name,
            )
        return ChildPort(self.child_name, port)

    @property
    def port_mappings(self) -> PortMapping:
        """Port renames from the parent slot definition to this one."""
        if self.parent is None:
            return {}
        result: PortMapping = {}
        for required in self.parent.models:
            if required in self.models:
                continue
            for m in sorted(self.models, key=lambda m: (not is_component(m), m.name)):
                if m.fulfills(required):
                    result = port_mappings.merge(result, m.port_mappings_for(required))
                    break
        return {k: v for k, v in result.items() if k != v}

    def selection_port_mappings(self, selected) -> PortMapping:
        """Renames from this slot's port names to the ports of `selected`."""
        result: PortMapping = {}
        for required in self.models:
            result = port_mappings.merge(result, selected.port_mappings_for(required))
        return result

    def to_dict(self) -> dict:
        return {
            "name": self.child_name,
            "models": model_names(self.models),
            "optional": self.is_optional,
            "arguments": dict(self.arguments),
            "dependency_options": dict(self.dependency_options),
            "overloads": self.parent is not None,
        }
