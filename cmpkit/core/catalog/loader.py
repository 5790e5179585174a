from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from cmpkit.core.composition import CompositionModel
from cmpkit.core.errors import CatalogError, UnknownModel
from cmpkit.core.models import ComponentModel, Model, ModelRegistry, ServiceModel
from cmpkit.core.plan import Requirement, SlotReference

from .models import (
    CatalogSpec,
    ChildSpec,
    ComponentSpec,
    CompositionSpec,
    ConnectionSpec,
    ExportSpec,
    PortSpec,
    ProvisionSpec,
    ServiceSpec,
    SpecializationSpec,
)

log = logging.getLogger("cmpkit.catalog")

REFERENCE_PREFIX = "@"


class Catalog:
    """Models built from one catalog document, plus name-based lookups."""

    def __init__(self, registry: ModelRegistry, spec: CatalogSpec):
        self.registry = registry
        self.spec = spec

    def model(self, name: str) -> Model:
        return self.registry.require(name)

    def composition(self, name: str) -> CompositionModel:
        model = self.model(name)
        if not isinstance(model, CompositionModel):
            raise CatalogError(f"{name} is not a composition", name=name)
        return model

    def list_models(self, kind: Optional[str] = None) -> List[Model]:
        return [m for m in self.registry if kind is None or m.kind == kind]

    # ------------------------------------------------------------
    # Selections
    # ------------------------------------------------------------
    def selection(self, payload: Mapping[str, Any]) -> Dict[Any, Any]:
        """Turn a JSON selection into selection-context keys and values.

        Keys are slot names or dotted slot paths; a key naming a model selects
        for every slot requiring that model. Values are model names, "@slot"
        references, or objects {"model", "service", "arguments", "use"}.
        """
        result: Dict[Any, Any] = {}
        for key, value in payload.items():
            selected = self._selection_value(key, value)
            model_key = self.registry.find(key) if "." not in key else None
            result[model_key if model_key is not None else key] = selected
        return result

    def _selection_value(self, key: str, value: Any):
        if isinstance(value, str):
            if value.startswith(REFERENCE_PREFIX):
                return SlotReference(value[len(REFERENCE_PREFIX):])
            return self.model(value)
        if isinstance(value, dict):
            if "ref" in value:
                return SlotReference(str(value["ref"]))
            if "model" not in value:
                raise CatalogError(f"selection for {key} needs a model or a ref", key=key)
            model = self.model(value["model"])
            service = value.get("service")
            if service is not None:
                if not isinstance(model, ComponentModel):
                    raise CatalogError(f"{model.name} does not provide services", key=key)
                bound = model.find_data_service(service)
                if bound is None:
                    raise UnknownModel(f"{model.name} has no service called {service}", name=f"{model.name}.{service}")
                model = bound
            arguments = value.get("arguments") or {}
            use = value.get("use") or {}
            if not arguments and not use:
                return model
            return Requirement(model, dict(arguments), self.selection(use))
        raise CatalogError(f"invalid selection for {key}: {value!r}", key=key)


def load_catalog(payload: Union[CatalogSpec, Mapping[str, Any]], registry: Optional[ModelRegistry] = None) -> Catalog:
    spec = payload if isinstance(payload, CatalogSpec) else CatalogSpec.model_validate(payload)
    registry = registry or ModelRegistry()
    loader = _Loader(registry, spec)
    loader.load()
    log.debug(
        "loaded catalog services=%d components=%d compositions=%d",
        len(spec.services),
        len(spec.components),
        len(spec.compositions),
    )
    return Catalog(registry, spec)


class _Loader:
    def __init__(self, registry: ModelRegistry, spec: CatalogSpec):
        self.registry = registry
        self.spec = spec
        self._services_done: set = set()

    def load(self) -> None:
        services = {s.name: s for s in self.spec.services}
        for s in self.spec.services:
            model = self.registry.service(s.name)
            self._add_ports(model, s.ports)
        for s in self.spec.services:
            self._provide_service(s, services, [])

        for c in self.spec.components:
            self._load_component(c)
        for c in self.spec.compositions:
            self._load_composition(c)

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------
    def _require(self, name: str, kind=Model) -> Model:
        model = self.registry.find(name)
        if model is None:
            raise UnknownModel(f"unknown model {name} (models must be declared before they are used)", name=name)
        if not isinstance(model, kind):
            raise CatalogError(f"{name} is not a {kind.__name__}", name=name)
        return model

    def _add_ports(self, model: Model, ports: List[PortSpec]) -> None:
        for p in ports:
            if p.direction == "input":
                model.input_port(p.name, p.type)
            else:
                model.output_port(p.name, p.type)

    def _provide_service(self, s: ServiceSpec, services: Dict[str, ServiceSpec], stack: List[str]) -> None:
        if s.name in self._services_done:
            return
        if s.name in stack:
            raise CatalogError(f"circular service provision: {' -> '.join(stack + [s.name])}", name=s.name)
        model = self._require(s.name, ServiceModel)
        for p in s.provides:
            provided = services.get(p.service)
            if provided is not None:
                self._provide_service(provided, services, stack + [s.name])
            model.provides(self._require(p.service, ServiceModel), mapping=p.mapping)
        self._services_done.add(s.name)

    def _provide(self, model: ComponentModel, provisions: List[ProvisionSpec]) -> None:
        for p in provisions:
            model.provides(self._require(p.service, ServiceModel), as_=p.as_, mapping=p.mapping)

    def _load_component(self, c: ComponentSpec) -> None:
        if c.parent:
            parent = self._require(c.parent, ComponentModel)
            model = parent.new_submodel(c.name, abstract=c.abstract or None)
        else:
            model = self.registry.component(c.name, abstract=c.abstract)
        self._add_ports(model, c.ports)
        self._provide(model, c.provides)

    # ------------------------------------------------------------
    # Compositions
    # ------------------------------------------------------------
    def _load_composition(self, c: CompositionSpec) -> None:
        if c.parent:
            parent = self._require(c.parent, CompositionModel)
            model = parent.new_submodel(c.name, abstract=c.abstract or None)
        else:
            model = self.registry.composition(c.name, abstract=c.abstract)

        for child in c.children:
            self._add_child(model, child)
        for conn in c.connections:
            self._connect(model, conn)
        for export in c.exports:
            self._export(model, export)
        self._provide(model, c.provides)
        for name, confs in c.conf.items():
            model.conf(name, **confs)
        for i, s in enumerate(c.specializations):
            self._specialize(model, s, i)

    def _models(self, names: List[str]) -> List[Model]:
        return [self._require(n) for n in names]

    def _add_child(self, model: CompositionModel, c: ChildSpec, overload: bool = False) -> None:
        if overload:
            child = model.overload(c.name, self._models(c.models), arguments=c.arguments, **c.options)
        else:
            if not c.models:
                raise CatalogError(f"child {c.name} of {model.name} has no model", name=c.name)
            add = model.add_main if c.main else model.add
            child = add(self._models(c.models), as_=c.name, arguments=c.arguments, **c.options)
        if c.optional:
            child.optional()

    def _child_port(self, model: CompositionModel, ref: str):
        slot, sep, port = ref.partition(".")
        if not sep or not slot or not port:
            raise CatalogError(f"invalid port reference {ref!r}, expected slot.port", ref=ref)
        return model.child(slot).port(port)

    def _connect(self, model: CompositionModel, conn: ConnectionSpec) -> None:
        model.connect(self._child_port(model, conn.source), self._child_port(model, conn.sink), conn.policy)

    def _export(self, model: CompositionModel, export: ExportSpec) -> None:
        model.export(self._child_port(model, export.port), as_=export.as_)

    def _specialize(self, model: CompositionModel, s: SpecializationSpec, index: int) -> None:
        model.specialize(
            self._specialization_mapping(model, s.children),
            not_=self._specialization_mapping(model, s.not_) or None,
            block=self._specialization_block(model, s, index),
        )

    def _specialization_mapping(self, model: CompositionModel, children: Dict[str, List[str]]) -> Dict[Any, List[Model]]:
        mapping: Dict[Any, List[Model]] = {}
        for selector, names in children.items():
            key: Any = selector
            if model.find_child(selector) is None and self.registry.find(selector) is not None:
                key = self.registry.find(selector)
            mapping[key] = self._models(names)
        return mapping

    def _specialization_block(self, owner: CompositionModel, s: SpecializationSpec, index: int):
        if not s.has_customizations():
            return None

        def customize(model: CompositionModel) -> None:
            for c in s.add:
                self._add_child(model, c)
            for c in s.overload:
                self._add_child(model, c, overload=True)
            for conn in s.connections:
                self._connect(model, conn)
            for export in s.exports:
                self._export(model, export)
            for name, confs in s.conf.items():
                model.conf(name, **confs)

        customize.__name__ = f"{owner.name}.specializations[{index}]"
        return customize
