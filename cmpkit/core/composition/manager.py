from __future__ import annotations

import itertools
import threading
from typing import TYPE_CHECKING, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from cmpkit.core.config import EngineConfig
from cmpkit.core.errors import (
    AmbiguousSlotSelector,
    AmbiguousSpecialization,
    NonSymmetricConstraint,
    NotASpecialization,
)
from cmpkit.core.models import BoundService, IncompatibleModelSets, Model, merge_model_sets, model_names

from .observer import InstantiationObserver, default_observer, spec_log
from .specialization import (
    CompositionSpecialization,
    SpecializationBlock,
    SpecializationKey,
    describe,
)

if TYPE_CHECKING:
    from .composition import CompositionModel

Candidate = Tuple[CompositionSpecialization, List[CompositionSpecialization]]
Constraint = Callable[[CompositionSpecialization, CompositionSpecialization], bool]


# ------------------------------------------------------------
# Default compatibility predicates
# ------------------------------------------------------------
def children_mergeable(a: CompositionSpecialization, b: CompositionSpecialization) -> bool:
    """Specializations of a shared slot must not require two unrelated components."""
    for name, models in a.specialized_children.items():
        other = b.specialized_children.get(name)
        if other is None:
            continue
        try:
            merge_model_sets(models, other)
        except IncompatibleModelSets:
            return False
    return True


def _excludes(a: CompositionSpecialization, b: CompositionSpecialization) -> bool:
    for name, excluded in a.excluded_children.items():
        for m in b.specialized_children.get(name, ()):
            if any(m.fulfills(x) for x in excluded):
                return True
    return False


def exclusions_respected(a: CompositionSpecialization, b: CompositionSpecialization) -> bool:
    return not (_excludes(a, b) or _excludes(b, a))


def selected_model(value):
    """The model or bound service a selection value stands for, None for references."""
    if isinstance(value, (Model, BoundService)):
        return value
    inner = getattr(value, "model", None)
    if inner is None:
        return None
    return selected_model(inner)


def component_of(value):
    selected = selected_model(value)
    if isinstance(selected, BoundService):
        return selected.component
    return selected


def matching_selection(selection: Mapping[str, object]) -> Dict[str, object]:
    """Keep the selections that can be matched against specializations."""
    result = {}
    for name, value in selection.items():
        selected = selected_model(value)
        if selected is not None:
            result[name] = selected
    return result


class SpecializationManager:
    """All specializations declared on one composition model.

    Only the manager of a specialization root (a composition that is not
    itself a specialized submodel) holds the cache of materialized models;
    the managers of specialized submodels delegate to it.
    """

    def __init__(self, composition_model: "CompositionModel"):
        self.composition_model = composition_model
        self.specializations: Dict[SpecializationKey, CompositionSpecialization] = {}
        self.specialization_constraints: List[Constraint] = [children_mergeable, exclusions_respected]
        self.observer: InstantiationObserver = default_observer()
        self.config: Optional[EngineConfig] = None
        self._instantiated: Dict[SpecializationKey, CompositionSpecialization] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------
    @property
    def root_manager(self) -> "SpecializationManager":
        return self.composition_model.root_model.specializations

    @property
    def instantiated_specializations(self) -> Dict[SpecializationKey, CompositionSpecialization]:
        return self.root_manager._instantiated

    def empty(self) -> bool:
        return not self.specializations

    def each_specialization(self) -> Iterator[CompositionSpecialization]:
        return iter(list(self.specializations.values()))

    def declaration_index(self, spec: CompositionSpecialization) -> int:
        for i, s in enumerate(self.root_manager.specializations.values()):
            if s is spec:
                return i
        return len(self.root_manager.specializations)

    def register(self, spec: CompositionSpecialization) -> CompositionSpecialization:
        spec.root_name = self.composition_model.root_model.name
        self.specializations[spec.key] = spec
        return spec

    def deregister(self, spec: CompositionSpecialization) -> None:
        if self.specializations.get(spec.key) is not spec:
            return
        del self.specializations[spec.key]
        for other in self.specializations.values():
            other.compatibilities.discard(spec)

        cache = self.instantiated_specializations
        stale = [
            entry.composition_model
            for entry in list(cache.values())
            if entry.composition_model is not None
            and (entry is spec or spec in entry.composition_model.applied_specializations)
        ]
        registry = self.composition_model.registry
        for model in stale:
            registry.deregister(model)
        spec.composition_model = None

    def forget(self, model: "CompositionModel") -> None:
        """Drop the cache entries that materialized `model`."""
        cache = self._instantiated
        for key, entry in list(cache.items()):
            if entry.composition_model is model:
                del cache[key]
                entry.composition_model = None

    # ------------------------------------------------------------
    # Compatibility
    # ------------------------------------------------------------
    def add_specialization_constraint(self, constraint: Constraint) -> Constraint:
        self.specialization_constraints.append(constraint)
        return constraint

    def compatible_specializations(self, a: CompositionSpecialization, b: CompositionSpecialization) -> bool:
        for constraint in self.specialization_constraints:
            result = bool(constraint(a, b))
            sym_result = bool(constraint(b, a))
            if result != sym_result:
                name = getattr(constraint, "__name__", repr(constraint))
                raise NonSymmetricConstraint(
                    f"{name} returned {result} on ({a},{b}) and {sym_result} on ({b},{a}). "
                    "Specialization constraints must be symmetric",
                    constraint=name,
                    specializations=[str(a), str(b)],
                )
            if not result:
                return False
        return True

    def compatible(self, a: CompositionSpecialization, b: CompositionSpecialization) -> bool:
        if a.compatible_with(b):
            return True
        return self.compatible_specializations(a, b)

    def _update_compatibilities(self, new_spec: CompositionSpecialization) -> None:
        for spec in self.each_specialization():
            if spec is new_spec:
                continue
            if self.compatible_specializations(spec, new_spec):
                spec.compatibilities.add(new_spec)
                new_spec.compatibilities.add(spec)
            else:
                spec.compatibilities.discard(new_spec)
                new_spec.compatibilities.discard(spec)

    # ------------------------------------------------------------
    # Declaration
    # ------------------------------------------------------------
    def normalize_specialization_mappings(self, mappings: Mapping) -> Dict[str, frozenset]:
        composition = self.composition_model
        result: Dict[str, frozenset] = {}
        for selector, models in mappings.items():
            if isinstance(selector, Model):
                matches = [name for name, child in composition.each_child() if child.fulfills(selector)]
                if len(matches) != 1:
                    raise AmbiguousSlotSelector(
                        f"invalid specialization selector {selector.name}: "
                        f"{len(matches)} children of {composition.name} fulfill it"
                        + (f" ({', '.join(sorted(matches))}), select one by name" if matches else ""),
                        selector=selector.name,
                        candidates=sorted(matches),
                    )
                child_name = matches[0]
            elif isinstance(selector, str):
                if composition.find_child(selector) is None:
                    raise AmbiguousSlotSelector(
                        f"there is no child called {selector} in {composition.name}",
                        selector=selector,
                        candidates=[],
                    )
                child_name = selector
            else:
                raise AmbiguousSlotSelector(f"invalid child selector {selector!r}", selector=repr(selector))

            if isinstance(models, Model):
                models = [models]
            models = list(models)
            for m in models:
                if not isinstance(m, Model):
                    raise NotASpecialization(
                        f"invalid specialization {child_name} => {m!r}: not a component or service model",
                        slot=child_name,
                    )
            result[child_name] = frozenset(models) | result.get(child_name, frozenset())
        return result

    def validate_specialization_mappings(self, mappings: Mapping[str, frozenset]) -> None:
        for child_name, models in mappings.items():
            child = self.composition_model.find_child(child_name)
            try:
                merged = merge_model_sets(child.models, models)
            except IncompatibleModelSets as e:
                raise NotASpecialization(
                    f"{', '.join(model_names(models))} cannot specialize {child_name}: {e}",
                    slot=child_name,
                    models=model_names(models),
                ) from e
            if merged == child.models:
                raise NotASpecialization(
                    f"{', '.join(model_names(models))} does not specify a specialization of "
                    f"{child_name} ({', '.join(model_names(child.models))})",
                    slot=child_name,
                    models=model_names(models),
                )

    def specialize(
        self,
        mappings: Optional[Mapping] = None,
        not_: Optional[Mapping] = None,
        block: Optional[SpecializationBlock] = None,
    ) -> CompositionSpecialization:
        spec_log.debug("trying to specialize %s with %s", self.composition_model.name, mappings)

        children = self.normalize_specialization_mappings(mappings or {})
        self.validate_specialization_mappings(children)
        excluded = self.normalize_specialization_mappings(not_ or {})

        with self.root_manager._lock:
            existing = self.specializations.get(CompositionSpecialization(children).key)
            if existing is not None:
                existing.add({}, [block] if block is not None else [], excluded)
                self._update_compatibilities(existing)
                if block is not None:
                    self._apply_to_materialized(existing, block)
                return existing

            spec = self.register(CompositionSpecialization(children, block, excluded))
            self._update_compatibilities(spec)
            self.specialized_model(spec, [spec])
            return spec

    def _apply_to_materialized(self, spec: CompositionSpecialization, block: SpecializationBlock) -> None:
        for entry in list(self.instantiated_specializations.values()):
            model = entry.composition_model
            if model is not None and spec in model.applied_specializations:
                self._run_block(model, block, entry, spec=spec)

    # ------------------------------------------------------------
    # Partition & matching
    # ------------------------------------------------------------
    def partition_specializations(self, specs: Iterable[CompositionSpecialization]) -> List[Candidate]:
        """Greedy partition of `specs` into clusters of mutually compatible specializations.

        Each input lands in exactly one cluster, the first (in declaration
        order) whose members are all compatible with it.
        """
        unique: List[CompositionSpecialization] = []
        for spec in specs:
            if not any(spec is u for u in unique):
                unique.append(spec)

        result: List[Candidate] = []
        for spec in unique:
            for merged, members in result:
                if merged.compatible_with(spec):
                    merged.merge(spec)
                    members.append(spec)
                    break
            else:
                result.append((CompositionSpecialization().merge(spec), [spec]))
        return result

    def find_matching_specializations(self, selection: Mapping[str, object]) -> List[Candidate]:
        if self.empty() or not selection:
            return [(CompositionSpecialization(), [])]

        matching = [spec for spec in self.each_specialization() if spec.weak_match(selection)]
        spec_log.debug(
            "%d matching specializations of %s for %s",
            len(matching),
            self.composition_model.name,
            {k: getattr(v, "name", v) for k, v in selection.items()},
        )
        if not matching:
            return [(CompositionSpecialization(), [])]
        return self.partition_specializations(matching)

    def matching_specialized_model(
        self,
        selection: Mapping[str, object],
        strict: bool = True,
        specialization_hints: Sequence[Mapping[str, object]] = (),
        config: Optional[EngineConfig] = None,
    ) -> "CompositionModel":
        selection = matching_selection(selection)
        component_selection = {k: component_of(v) for k, v in selection.items()}
        candidates = self.find_matching_specializations(component_selection)

        if len(candidates) > 1 and specialization_hints:
            filtered = [c for c in candidates if any(c[0].weak_match(hint) for hint in specialization_hints)]
            if filtered:
                candidates = filtered

        if len(candidates) > 1:
            # narrow using the selected services rather than the whole components
            filtered = [c for c in candidates if c[0].weak_match(selection)]
            if filtered:
                candidates = filtered

        if not candidates:
            return self.composition_model
        if len(candidates) > 1:
            if strict:
                selected = {k: getattr(v, "name", str(v)) for k, v in selection.items()}
                described = [describe(merged.specialized_children) for merged, _ in candidates]
                raise AmbiguousSpecialization(
                    f"more than one specialization of {self.composition_model.name} matches "
                    f"{selected}: {'; '.join(described)}",
                    model=self.composition_model.name,
                    selection=selected,
                    candidates=described,
                )
            candidates = [self.find_common_specialization_subset(candidates)]

        merged, applied = candidates[0]
        return self.specialized_model(merged, applied, config=config)

    def find_common_specialization_subset(self, candidates: Sequence[Candidate]) -> Candidate:
        common = list(candidates[0][1])
        for _merged, applied in candidates[1:]:
            common = [s for s in common if any(s is a for a in applied)]
        return CompositionSpecialization.merge_all(common), common

    # ------------------------------------------------------------
    # Materialization
    # ------------------------------------------------------------
    def specialized_model(
        self,
        composite: CompositionSpecialization,
        applied: Optional[Sequence[CompositionSpecialization]] = None,
        config: Optional[EngineConfig] = None,
    ) -> "CompositionModel":
        applied = list(applied) if applied is not None else [composite]
        if composite.empty():
            return self.composition_model

        model = self.composition_model
        if model.root_model is not model:
            merged = CompositionSpecialization().merge(composite)
            for spec in model.applied_specializations:
                merged.merge(spec)
                if not any(spec is a for a in applied):
                    applied.append(spec)
            return self.root_manager.specialized_model(merged, applied, config=config)

        key = composite.key
        # lookup, creation and commit must not interleave between threads
        with self._lock:
            cached = self._instantiated.get(key)
            if cached is not None and cached.composition_model is not None:
                return cached.composition_model

            applied.sort(key=self.declaration_index)
            sub = self.create_specialized_model(composite, applied)
            # committed before the customization blocks run
            composite.composition_model = sub
            self._instantiated[key] = composite
            self.observer.specialization_materialized(model, sub, applied)

            for spec in applied:
                for block in list(spec.specialization_blocks):
                    self._run_block(sub, block, composite, spec=spec, config=config)
            return sub

    def create_specialized_model(
        self,
        composite: CompositionSpecialization,
        applied: Sequence[CompositionSpecialization],
    ) -> "CompositionModel":
        sub = self.composition_model.new_specialized_submodel(composite.specialized_children, applied)
        for spec in composite.compatibilities:
            if spec.empty() or not any(spec is a for a in self.specializations.values()):
                continue
            sub.specializations.register(spec)
        for child_name, models in composite.specialized_children.items():
            sub.overload(child_name, models)
        return sub

    def _run_block(
        self,
        model: "CompositionModel",
        block: SpecializationBlock,
        entry: CompositionSpecialization,
        spec: Optional[CompositionSpecialization] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        try:
            model.apply_specialization_block(block, spec)
        except Exception as e:
            model.customization_errors.append(f"{getattr(block, '__name__', repr(block))}: {e}")
            self.observer.specialization_block_failed(model, block, e)
            config = config or self.config or EngineConfig.from_env()
            if config.evict_failed_specializations:
                model.registry.deregister(model)
                entry.composition_model = None
            raise

    def instantiate_all_possible_specializations(self) -> List["CompositionModel"]:
        result: List["CompositionModel"] = []
        done = set()
        for _merged, members in self.partition_specializations(self.each_specialization()):
            for size in range(1, len(members) + 1):
                for subset in itertools.combinations(members, size):
                    key = frozenset(id(s) for s in subset)
                    if key in done:
                        continue
                    done.add(key)
                    merged = CompositionSpecialization.merge_all(subset)
                    model = self.specialized_model(merged, list(subset))
                    if not any(model is r for r in result):
                        result.append(model)
        return result


