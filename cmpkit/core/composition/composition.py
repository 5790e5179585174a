from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from cmpkit.core.errors import (
    DeclarationError,
    InvalidOverload,
    InvalidSelection,
    PortAlreadyExists,
    PortMismatch,
)
from cmpkit.core.models import ComponentModel, Model, Port, model_names
from cmpkit.core.models import port_mappings

from .child import ChildPort, CompositionChild
from .manager import SpecializationManager
from .specialization import CompositionSpecialization, SpecializationBlock, describe

log = logging.getLogger("cmpkit.composition")

# (source slot, sink slot) -> {(source port, sink port): policy}
ConnectionMap = Dict[Tuple[str, str], Dict[Tuple[str, str], Dict[str, Any]]]


class CompositionModel(ComponentModel):
    """A component model defined by named slots, their connections and exported ports.

    Connections and exports are stored in terms of this model's own slot
    definitions: when a slot is overloaded, the ports it inherited are renamed
    through the overload's port mappings.
    """

    kind = "composition"

    def __init__(self, name, registry=None, supermodel=None, abstract: Optional[bool] = None):
        super().__init__(name, registry=registry, supermodel=supermodel, abstract=abstract)
        self._children: Dict[str, CompositionChild] = {}
        self._connections: ConnectionMap = {}
        self._exports: Dict[str, Tuple[str, str]] = {}
        self._confs: Dict[str, Dict[str, List[str]]] = {}
        self.specializations = SpecializationManager(self)
        self.root_model: CompositionModel = self
        self.specialized_children: Dict[str, frozenset] = {}
        self.applied_specializations: List[CompositionSpecialization] = []
        self.definition_blocks: List[Tuple[Optional[CompositionSpecialization], SpecializationBlock]] = []
        self.customization_errors: List[str] = []
        self.is_specialization = False
        self._main_child: Optional[str] = None

    @property
    def parent_composition(self) -> Optional["CompositionModel"]:
        return self.supermodel if isinstance(self.supermodel, CompositionModel) else None

    # ------------------------------------------------------------
    # Submodels
    # ------------------------------------------------------------
    def new_submodel(self, name: Optional[str] = None, **kwargs) -> "CompositionModel":
        """A plain (user-level) submodel. It re-declares this model's specializations."""
        root = self.root_model
        sub = CompositionModel(name, supermodel=self, **kwargs)
        for spec in root.specializations.each_specialization():
            children = {k: v for k, v in spec.specialized_children.items() if k not in self.specialized_children}
            if not children:
                continue
            for i, block in enumerate(spec.specialization_blocks or [None]):
                sub.specializations.specialize(
                    children,
                    not_=spec.excluded_children if i == 0 else None,
                    block=block,
                )
        return sub

    def new_specialized_submodel(
        self,
        specialized_children: Mapping[str, Iterable[Model]],
        applied: Sequence[CompositionSpecialization],
    ) -> "CompositionModel":
        root = self.root_model
        sub = CompositionModel(
            f"{root.name}/{describe(specialized_children)}",
            supermodel=self,
            abstract=self.abstract,
        )
        sub.root_model = root
        sub.is_specialization = True
        sub.specialized_children = {k: frozenset(v) for k, v in specialized_children.items()}
        sub.applied_specializations = list(applied)
        sub.specializations.observer = root.specializations.observer
        sub.specializations.config = root.specializations.config
        return sub

    def on_deregistered(self) -> None:
        if self.is_specialization:
            self.root_model.specializations.forget(self)

    def specialized_on(self, child_name: str) -> frozenset:
        return self.specialized_children.get(child_name, frozenset())

    def apply_specialization_block(
        self,
        block: SpecializationBlock,
        spec: Optional[CompositionSpecialization] = None,
    ) -> None:
        """Run `block` on this model, once per (specialization, block) pair."""
        if any(block is b and spec is s for s, b in self.definition_blocks):
            return
        block(self)
        self.definition_blocks.append((spec, block))

    # ------------------------------------------------------------
    # Children
    # ------------------------------------------------------------
    def find_child(self, name: str) -> Optional[CompositionChild]:
        for m in self._chain():
            child = getattr(m, "_children", {}).get(name)
            if child is not None:
                return child
        return None

    def child(self, name: str) -> CompositionChild:
        child = self.find_child(name)
        if child is None:
            raise DeclarationError(f"{self.name} has no child called {name}", model=self.name, slot=name)
        return child

    def each_child(self) -> List[Tuple[str, CompositionChild]]:
        result: Dict[str, CompositionChild] = {}
        for m in reversed(list(self._chain())):
            result.update(getattr(m, "_children", {}))
        return list(result.items())

    def child_names(self) -> List[str]:
        return [name for name, _ in self.each_child()]

    def add(
        self,
        models,
        as_: str,
        arguments: Optional[Dict[str, Any]] = None,
        **dependency_options,
    ) -> CompositionChild:
        if isinstance(models, Model):
            models = [models]
        existing = self.find_child(as_)
        if existing is not None:
            return self._overload(existing, list(models), dependency_options, arguments)

        child = CompositionChild(self, as_, models, dependency_options, arguments=arguments)
        self._children[as_] = child
        log.debug("%s: added child %s %s", self.name, as_, model_names(child.models))
        return child

    def overload(
        self,
        name: str,
        models,
        arguments: Optional[Dict[str, Any]] = None,
        **dependency_options,
    ) -> CompositionChild:
        existing = self.find_child(name)
        if existing is None:
            raise InvalidOverload(f"{self.name} has no child called {name} to overload", model=self.name, slot=name)
        if isinstance(models, Model):
            models = [models]
        return self._overload(existing, list(models), dependency_options, arguments)

    def add_main(
        self,
        models,
        as_: str,
        arguments: Optional[Dict[str, Any]] = None,
        **dependency_options,
    ) -> CompositionChild:
        """Add the child that performs the composition's goal.

        The composition succeeds when this child does. There is at most one
        main child along the model hierarchy.
        """
        main = self.main_child
        if main is not None:
            raise DeclarationError(
                f"{self.name} already has a main child ({main.child_name})",
                model=self.name,
                slot=as_,
                main=main.child_name,
            )
        child = self.add(models, as_, arguments, **dependency_options)
        self._main_child = as_
        return child

    @property
    def main_child(self) -> Optional[CompositionChild]:
        for m in self._chain():
            name = getattr(m, "_main_child", None)
            if name is not None:
                return self.find_child(name)
        return None

    def _overload(self, existing, models, dependency_options, arguments) -> CompositionChild:
        child = existing.overload(self, models, dependency_options, arguments)
        self._children[child.child_name] = child
        renames = child.port_mappings
        if renames:
            self._promote_ports(child.child_name, renames)
        log.debug("%s: overloaded %s with %s renames=%s", self.name, child.child_name, model_names(child.models), renames)
        return child

    def _promote_ports(self, child_name: str, renames: Mapping[str, str]) -> None:
        self._connections = _promote_connections(self._connections, child_name, renames)
        self._exports = _promote_exports(self._exports, child_name, renames)

    def _inherited_renames(self) -> Dict[str, Dict[str, str]]:
        """Port renames from the parent composition's slots to the slots overloaded here."""
        parent = self.parent_composition
        if parent is None:
            return {}
        result: Dict[str, Dict[str, str]] = {}
        for name, child in self._children.items():
            inherited = parent.find_child(name)
            if inherited is None:
                continue
            chain = []
            c = child
            while c is not None and c is not inherited:
                chain.append(c.port_mappings)
                c = c.parent
            renames: Dict[str, str] = {}
            for step in reversed(chain):
                renames = {k: port_mappings.apply(step, v) for k, v in renames.items()}
                for k, v in step.items():
                    renames.setdefault(k, v)
            if renames:
                result[name] = renames
        return result

    def verify_acceptable_selection(self, child_name: str, selected) -> None:
        child = self.child(child_name)
        if not child.accepts(selected):
            name = getattr(selected, "name", None) or getattr(getattr(selected, "model", None), "name", repr(selected))
            raise InvalidSelection(
                f"{name} is not a valid selection for {self.name}.{child_name}: "
                f"it must fulfill {', '.join(model_names(child.models))}",
                model=self.name,
                slot=child_name,
                selected=name,
                required=model_names(child.models),
            )

    def acceptable_selection(self, child_name: str, selected) -> bool:
        try:
            self.verify_acceptable_selection(child_name, selected)
        except InvalidSelection:
            return False
        return True

    # ------------------------------------------------------------
    # Connections & exports
    # ------------------------------------------------------------
    def connect(self, source: ChildPort, sink: ChildPort, policy: Optional[Dict[str, Any]] = None) -> None:
        for child_port in (source, sink):
            if self.find_child(child_port.child_name) is None:
                raise DeclarationError(
                    f"{self.name} has no child called {child_port.child_name}",
                    model=self.name,
                    slot=child_port.child_name,
                )
        if not source.port.is_output or sink.port.is_output:
            raise PortMismatch(
                f"cannot connect {source} to {sink}: the source must be an output and the sink an input",
                model=self.name,
                source=str(source),
                sink=str(sink),
            )
        if source.port.type_name != sink.port.type_name:
            raise PortMismatch(
                f"cannot connect {source} ({source.port.type_name}) to {sink} ({sink.port.type_name})",
                model=self.name,
                source=str(source),
                sink=str(sink),
            )
        ports = self._connections.setdefault((source.child_name, sink.child_name), {})
        ports[(source.name, sink.name)] = dict(policy or {})

    def connections(self) -> ConnectionMap:
        """All connections of this model, inherited ones renamed through this model's overloads."""
        parent = self.parent_composition
        result: ConnectionMap = parent.connections() if parent is not None else {}
        for child_name, renames in self._inherited_renames().items():
            result = _promote_connections(result, child_name, renames)
        for key, ports in self._connections.items():
            merged = result.setdefault(key, {})
            for port_pair, policy in ports.items():
                merged[port_pair] = dict(policy)
        return result

    def export(self, child_port: ChildPort, as_: Optional[str] = None) -> Port:
        name = as_ or child_port.name
        if self.find_port(name) is not None:
            raise PortAlreadyExists(
                f"cannot export {child_port} as {name}: {self.name} already has a port called {name}",
                model=self.name,
                port=name,
            )
        port = self._add_port(child_port.port.renamed(name))
        self._exports[name] = (child_port.child_name, child_port.name)
        return port

    def exports(self) -> Dict[str, Tuple[str, str]]:
        """Exported port name -> (slot, slot port), inherited ones renamed like connections."""
        parent = self.parent_composition
        result = parent.exports() if parent is not None else {}
        for child_name, renames in self._inherited_renames().items():
            result = _promote_exports(result, child_name, renames)
        result.update(self._exports)
        return result

    def each_exported_port(self) -> List[Tuple[Port, str, str]]:
        return [(self.find_port(name), slot, port) for name, (slot, port) in self.exports().items()]

    # ------------------------------------------------------------
    # Named configurations
    # ------------------------------------------------------------
    def conf(self, name: str, **child_confs) -> None:
        """Declare that configuration `name` selects the given child configurations."""
        for child_name, confs in child_confs.items():
            if self.find_child(child_name) is None:
                raise DeclarationError(f"{self.name} has no child called {child_name}", model=self.name, slot=child_name)
            self._confs.setdefault(name, {})[child_name] = [confs] if isinstance(confs, str) else list(confs)

    def find_conf(self, name: str) -> Optional[Dict[str, List[str]]]:
        for m in self._chain():
            confs = getattr(m, "_confs", {}).get(name)
            if confs is not None:
                return confs
        return None

    def child_conf(self, child_name: str, conf: Optional[Sequence[str]]) -> Optional[List[str]]:
        """Configuration names for a child, given the composition's own `conf` argument.

        Names this composition declares are translated, unknown names are
        passed through unchanged.
        """
        if not conf:
            return None
        result: List[str] = []
        for name in conf:
            declared = self.find_conf(name)
            if declared is None:
                selected = [name]
            else:
                selected = declared.get(child_name, [])
            for s in selected:
                if s not in result:
                    result.append(s)
        return result or None

    # ------------------------------------------------------------
    # Specializations
    # ------------------------------------------------------------
    def specialize(
        self,
        mappings: Optional[Mapping] = None,
        not_: Optional[Mapping] = None,
        block: Optional[SpecializationBlock] = None,
    ) -> CompositionSpecialization:
        return self.specializations.specialize(mappings, not_=not_, block=block)

    def narrow(self, context) -> "CompositionModel":
        """The specialized model a selection context points to, without failing on ambiguity."""
        selection = {name: context.resolve(name, child.models) for name, child in self.each_child()}
        return self.specializations.matching_specialized_model(selection, strict=False)

    # ------------------------------------------------------------
    # Instantiation
    # ------------------------------------------------------------
    def freeze(self) -> None:
        for _name, child in self.each_child():
            child.freeze()

    def instantiate(self, plan, context=None, arguments=None, **kwargs):
        from .instantiate import CompositionInstantiator

        return CompositionInstantiator(
            observer=kwargs.pop("observer", None),
            config=kwargs.pop("config", None),
        ).instantiate(self, plan, context, arguments, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["children"] = [child.to_dict() for _, child in self.each_child()]
        d["exports"] = {name: f"{slot}.{port}" for name, (slot, port) in self.exports().items()}
        d["connections"] = [
            {
                "source": f"{source}.{out_port}",
                "sink": f"{sink}.{in_port}",
                "policy": dict(policy),
            }
            for (source, sink), ports in self.connections().items()
            for (out_port, in_port), policy in ports.items()
        ]
        main = self.main_child
        d["main_child"] = main.child_name if main is not None else None
        d["root_model"] = self.root_model.name
        d["specialized_children"] = {k: model_names(v) for k, v in sorted(self.specialized_children.items())}
        d["customization_errors"] = list(self.customization_errors)
        return d


def _promote_connections(connections: ConnectionMap, child_name: str, renames: Mapping[str, str]) -> ConnectionMap:
    promoted: ConnectionMap = {}
    for (source, sink), ports in connections.items():
        new_ports = {}
        for (out_port, in_port), policy in ports.items():
            if source == child_name:
                out_port = port_mappings.apply(renames, out_port)
            if sink == child_name:
                in_port = port_mappings.apply(renames, in_port)
            new_ports[(out_port, in_port)] = policy
        promoted[(source, sink)] = new_ports
    return promoted


def _promote_exports(exports: Dict[str, Tuple[str, str]], child_name: str, renames: Mapping[str, str]) -> Dict[str, Tuple[str, str]]:
    return {
        name: (slot, port_mappings.apply(renames, port) if slot == child_name else port)
        for name, (slot, port) in exports.items()
    }
