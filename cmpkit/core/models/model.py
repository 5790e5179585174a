from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional

from cmpkit.core.errors import (
    AmbiguousServiceSelection,
    DeclarationError,
    ModelCycle,
    PortAlreadyExists,
    PortCollision,
    PortMismatch,
    ServiceNotProvided,
)

from . import port_mappings
from .port_mappings import PortMapping
from .ports import INPUT, OUTPUT, Port
from .registry import ModelRegistry

log = logging.getLogger("cmpkit.models")


class IncompatibleModelSets(DeclarationError):
    code = "incompatible_models"


class Model:
    """Common behavior of services, components and compositions.

    Ports and provided-service tables are looked up through the supermodel
    chain, so a submodel sees everything its parents declared, including
    declarations made after the submodel was created.
    """

    kind = "model"
    abstract = False

    def __init__(
        self,
        name: Optional[str],
        registry: Optional[ModelRegistry] = None,
        supermodel: Optional["Model"] = None,
    ):
        if registry is None:
            if supermodel is None:
                raise ValueError("root models need a registry")
            registry = supermodel.registry
        self.name = name
        self.registry = registry
        self.supermodel = supermodel
        self._ports: Dict[str, Port] = {}
        # ancestor service -> {service port -> port on this model}
        self._mappings: Dict["Model", PortMapping] = {}
        self.id = registry.register(self, supermodel)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    def on_deregistered(self) -> None:
        pass

    # ------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------
    def supermodels(self) -> Iterator["Model"]:
        m = self.supermodel
        while m is not None:
            yield m
            m = m.supermodel

    def new_submodel(self, name: Optional[str] = None, **kwargs) -> "Model":
        return type(self)(name, supermodel=self, **kwargs)

    def submodels(self, recursive: bool = True) -> List["Model"]:
        return self.registry.submodels(self, recursive=recursive)

    def provided_services(self) -> List["Model"]:
        seen: List[Model] = []
        for m in self._chain():
            for service in m._mappings:
                if service not in seen:
                    seen.append(service)
        return seen

    def ancestry(self) -> List["Model"]:
        return [self, *self.supermodels(), *self.provided_services()]

    def fulfills(self, models) -> bool:
        if isinstance(models, Model):
            models = (models,)
        ancestry = self.ancestry()
        return all(m in ancestry for m in models)

    def _chain(self) -> Iterator["Model"]:
        yield self
        yield from self.supermodels()

    # ------------------------------------------------------------
    # Ports
    # ------------------------------------------------------------
    def find_port(self, name: str) -> Optional[Port]:
        for m in self._chain():
            port = m._ports.get(name)
            if port is not None:
                return port
        return None

    def each_port(self) -> List[Port]:
        ports: Dict[str, Port] = {}
        for m in reversed(list(self._chain())):
            ports.update(m._ports)
        return list(ports.values())

    def port_names(self) -> List[str]:
        return [p.name for p in self.each_port()]

    def _add_port(self, port: Port) -> Port:
        if self.find_port(port.name) is not None:
            raise PortAlreadyExists(
                f"{self.name} already has a port called {port.name}",
                model=self.name,
                port=port.name,
            )
        self._ports[port.name] = port
        return port

    def input_port(self, name: str, type_name: str) -> Port:
        return self._add_port(Port(name, INPUT, type_name))

    def output_port(self, name: str, type_name: str) -> Port:
        return self._add_port(Port(name, OUTPUT, type_name))

    # ------------------------------------------------------------
    # Port mappings
    # ------------------------------------------------------------
    def mapping_tables(self) -> Dict["Model", PortMapping]:
        """Every recorded ancestor table plus this model's own identity table."""
        tables: Dict[Model, PortMapping] = {}
        for m in reversed(list(self._chain())):
            tables.update({k: dict(v) for k, v in m._mappings.items()})
        tables[self] = port_mappings.identity(self.port_names())
        return tables

    def port_mappings_for(self, ancestor: "Model") -> PortMapping:
        if ancestor is self or ancestor in self.supermodels():
            return port_mappings.identity(ancestor.port_names())
        for m in self._chain():
            mapping = m._mappings.get(ancestor)
            if mapping is not None:
                return dict(mapping)
        raise ServiceNotProvided(
            f"{self.name} does not provide {ancestor.name}",
            model=self.name,
            service=ancestor.name,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "abstract": self.abstract,
            "supermodel": self.supermodel.name if self.supermodel is not None else None,
            "ports": [p.to_dict() for p in self.each_port()],
            "provides": [s.name for s in self.provided_services()],
        }

    def instantiate(self, plan, context=None, arguments=None, **_kwargs):
        return plan.add_task(self, arguments)


class ServiceModel(Model):
    """A reusable interface. Its port set grows as it provides other services."""

    kind = "service"
    abstract = True

    def provides(self, service: "ServiceModel", mapping: Optional[Dict[str, str]] = None) -> None:
        mapping = dict(mapping or {})
        if not isinstance(service, ServiceModel):
            raise DeclarationError(f"{service.name} is not a service", model=self.name, service=service.name)
        if service is self or service.fulfills(self):
            raise ModelCycle(
                f"{self.name} cannot provide {service.name}: {service.name} already fulfills {self.name}",
                model=self.name,
                service=service.name,
            )

        service_ports = service.each_port()
        for p in service_ports:
            if p.name not in mapping and self.find_port(p.name) is not None:
                raise PortCollision(
                    f"{self.name}.{p.name} collides with {service.name}.{p.name}, an explicit mapping is required",
                    model=self.name,
                    service=service.name,
                    port=p.name,
                )
        _validate_explicit_mapping(self, service, mapping)

        full = {p.name: mapping.get(p.name, p.name) for p in service_ports}
        tables = {k: dict(v) for k, v in self._mappings.items()}
        port_mappings.rebase(service.mapping_tables(), full, tables)

        # all checks passed, commit
        for p in service_ports:
            if p.name not in mapping:
                self._ports[p.name] = p
        self._mappings = tables
        log.debug("service %s provides %s mapping=%s", self.name, service.name, full)


@dataclass
class BoundService:
    """A service as provided by one component, under a given name.

    `tables` maps the service and every service it provides to the
    component's ports, for this provision only.
    """

    component: "ComponentModel"
    service: ServiceModel
    name: str
    mapping: PortMapping = field(default_factory=dict)
    tables: Dict[Model, PortMapping] = field(default_factory=dict, compare=False, repr=False)

    @property
    def model(self) -> "ComponentModel":
        return self.component

    def fulfills(self, models) -> bool:
        if isinstance(models, Model):
            models = (models,)
        for m in models:
            if isinstance(m, ServiceModel):
                if not self.service.fulfills(m):
                    return False
            elif not self.component.fulfills(m):
                return False
        return True

    def port_mappings_for(self, ancestor: Model) -> PortMapping:
        if isinstance(ancestor, ServiceModel):
            mapping = self.tables.get(ancestor)
            if mapping is None:
                raise ServiceNotProvided(
                    f"{self.component.name}.{self.name} does not provide {ancestor.name}",
                    model=self.component.name,
                    service=ancestor.name,
                )
            return dict(mapping)
        return self.component.port_mappings_for(ancestor)

    def __hash__(self):
        return hash((self.component.id, self.name))

    def __repr__(self) -> str:
        return f"<BoundService {self.component.name}.{self.name}>"


class ComponentModel(Model):
    """A model with a fixed interface. Providing a service never adds ports."""

    kind = "component"

    def __init__(self, name, registry=None, supermodel=None, abstract: Optional[bool] = None):
        super().__init__(name, registry=registry, supermodel=supermodel)
        if abstract is None:
            abstract = supermodel.abstract if supermodel is not None else False
        self.abstract = abstract
        self._bound: Dict[str, BoundService] = {}

    def provides(
        self,
        service: ServiceModel,
        as_: Optional[str] = None,
        mapping: Optional[Dict[str, str]] = None,
    ) -> BoundService:
        mapping = dict(mapping or {})
        if not isinstance(service, ServiceModel):
            raise DeclarationError(f"{service.name} is not a service", model=self.name, service=service.name)
        name = as_ or service.name
        existing = self.find_data_service(name)
        if existing is not None:
            if existing.service is service and all(existing.mapping.get(k) == v for k, v in mapping.items()):
                return existing
            raise DeclarationError(
                f"{self.name} already provides a service called {name}",
                model=self.name,
                service=name,
            )

        _validate_explicit_mapping(self, service, mapping)
        full: PortMapping = {}
        for p in service.each_port():
            if p.name in mapping:
                full[p.name] = mapping[p.name]
                continue
            full[p.name] = self._default_target(service, p).name

        tables = port_mappings.rebase(service.mapping_tables(), full)

        bound = BoundService(component=self, service=service, name=name, mapping=full, tables=tables)
        self._bound[name] = bound
        log.debug("component %s provides %s as %s mapping=%s", self.name, service.name, name, full)
        return bound

    def provided_services(self) -> List[Model]:
        seen: List[Model] = []
        for bound in self.each_data_service():
            for service in bound.tables:
                if service not in seen:
                    seen.append(service)
        return seen

    def port_mappings_for(self, ancestor: Model) -> PortMapping:
        """Like `Model.port_mappings_for`, but a service provided under several
        names with different mappings has to be selected through its bound
        service."""
        if ancestor is self or ancestor in self.supermodels():
            return port_mappings.identity(ancestor.port_names())
        found: Dict[str, PortMapping] = {}
        for bound in self.each_data_service():
            mapping = bound.tables.get(ancestor)
            if mapping is not None:
                found[bound.name] = mapping
        if not found:
            raise ServiceNotProvided(
                f"{self.name} does not provide {ancestor.name}",
                model=self.name,
                service=ancestor.name,
            )
        distinct = {tuple(sorted(m.items())) for m in found.values()}
        if len(distinct) > 1:
            raise AmbiguousServiceSelection(
                f"{self.name} provides {ancestor.name} more than once ({', '.join(sorted(found))}), "
                "select one of its bound services",
                model=self.name,
                service=ancestor.name,
                candidates=sorted(found),
            )
        return dict(next(iter(found.values())))

    def _default_target(self, service: ServiceModel, port: Port) -> Port:
        same = self.find_port(port.name)
        if same is not None:
            if not same.compatible_with(port):
                raise PortMismatch(
                    f"{self.name}.{same.name} does not match {service.name}.{port.name}",
                    model=self.name,
                    service=service.name,
                    port=port.name,
                )
            return same
        candidates = [p for p in self.each_port() if p.compatible_with(port)]
        if len(candidates) != 1:
            raise PortMismatch(
                f"cannot map {service.name}.{port.name} on {self.name}: "
                f"{len(candidates)} candidate ports, an explicit mapping is required",
                model=self.name,
                service=service.name,
                port=port.name,
                candidates=sorted(p.name for p in candidates),
            )
        return candidates[0]

    def find_data_service(self, name: str) -> Optional[BoundService]:
        for m in self._chain():
            bound = getattr(m, "_bound", {}).get(name)
            if bound is not None:
                return bound
        return None

    def each_data_service(self) -> List[BoundService]:
        result: Dict[str, BoundService] = {}
        for m in reversed(list(self._chain())):
            result.update(getattr(m, "_bound", {}))
        return list(result.values())

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["services"] = {b.name: {"service": b.service.name, "mapping": dict(b.mapping)} for b in self.each_data_service()}
        return d


def _validate_explicit_mapping(model: Model, service: ServiceModel, mapping: Dict[str, str]) -> None:
    for src, dst in mapping.items():
        source = service.find_port(src)
        if source is None:
            raise PortMismatch(f"{service.name} has no port called {src}", service=service.name, port=src)
        target = model.find_port(dst)
        if target is None:
            raise PortMismatch(f"{model.name} has no port called {dst}", model=model.name, port=dst)
        if not source.compatible_with(target):
            raise PortMismatch(
                f"{service.name}.{src} ({source.direction} {source.type_name}) does not match "
                f"{model.name}.{dst} ({target.direction} {target.type_name})",
                model=model.name,
                service=service.name,
                port=src,
            )


# ------------------------------------------------------------
# Model sets
# ------------------------------------------------------------
def is_component(model: Model) -> bool:
    return isinstance(model, ComponentModel)


def merge_model_sets(*sets: Iterable[Model]) -> frozenset:
    """Union of model sets, keeping only the most specific models.

    Two component models can only be merged if one is a submodel of the other.
    """
    union: List[Model] = []
    for s in sets:
        for m in s:
            if m not in union:
                union.append(m)

    components = [m for m in union if is_component(m)]
    for i, a in enumerate(components):
        for b in components[i + 1:]:
            if not (a.fulfills(b) or b.fulfills(a)):
                raise IncompatibleModelSets(
                    f"{a.name} and {b.name} are unrelated component models",
                    models=sorted([a.name, b.name]),
                )

    return frozenset(m for m in union if not any(n is not m and n.fulfills(m) for n in union))


def model_names(models: Iterable[Model]) -> List[str]:
    return sorted(m.name for m in models)
