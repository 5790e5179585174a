from __future__ import annotations

from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from cmpkit.core.models import Model, merge_model_sets, model_names

SpecializationKey = FrozenSet[Tuple[str, FrozenSet[Model]]]
SpecializationBlock = Callable[..., None]


def key_for(children: Mapping[str, Iterable[Model]]) -> SpecializationKey:
    return frozenset((name, frozenset(models)) for name, models in children.items())


def describe(children: Mapping[str, Iterable[Model]]) -> str:
    return ",".join(
        f"{name}={'+'.join(model_names(models))}" for name, models in sorted(children.items())
    )


class CompositionSpecialization:
    """A conditional refinement of some slots of a composition.

    `specialized_children` is the identity of the specialization within its
    manager. Merged specializations (the result of `merge`) are throw-away
    values describing a set of specializations applied together.
    """

    def __init__(
        self,
        specialized_children: Optional[Mapping[str, Iterable[Model]]] = None,
        block: Optional[SpecializationBlock] = None,
        excluded_children: Optional[Mapping[str, Iterable[Model]]] = None,
    ):
        self.specialized_children: Dict[str, FrozenSet[Model]] = {
            k: frozenset(v) for k, v in (specialized_children or {}).items()
        }
        self.excluded_children: Dict[str, FrozenSet[Model]] = {
            k: frozenset(v) for k, v in (excluded_children or {}).items()
        }
        self.specialization_blocks: List[SpecializationBlock] = [block] if block is not None else []
        self.compatibilities: set = set()
        self.composition_model = None
        self.root_name: Optional[str] = None

    def __repr__(self) -> str:
        return f"<CompositionSpecialization {self}>"

    def __str__(self) -> str:
        return f"{self.root_name or ''}/{describe(self.specialized_children)}"

    @property
    def key(self) -> SpecializationKey:
        return key_for(self.specialized_children)

    def empty(self) -> bool:
        return not self.specialized_children

    def compatible_with(self, other: "CompositionSpecialization") -> bool:
        return self.empty() or other is self or other.empty() or other in self.compatibilities

    def has_specialization(self, child_name: str, model: Model) -> bool:
        return any(m.fulfills(model) for m in self.specialized_children.get(child_name, ()))

    def find_specialization(self, child_name: str, model: Model) -> List[Model]:
        return [m for m in self.specialized_children.get(child_name, ()) if m.fulfills(model)]

    # ------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------
    def add(
        self,
        children: Mapping[str, Iterable[Model]],
        blocks: Iterable[SpecializationBlock] = (),
        excluded: Optional[Mapping[str, Iterable[Model]]] = None,
    ) -> "CompositionSpecialization":
        for name, models in children.items():
            if name in self.specialized_children:
                self.specialized_children[name] = merge_model_sets(self.specialized_children[name], models)
            else:
                self.specialized_children[name] = frozenset(models)
        for name, models in (excluded or {}).items():
            self.excluded_children[name] = self.excluded_children.get(name, frozenset()) | frozenset(models)
        for block in blocks:
            self.specialization_blocks.append(block)
        return self

    def merge(self, other: "CompositionSpecialization") -> "CompositionSpecialization":
        if self.empty():
            self.compatibilities = set(other.compatibilities)
        else:
            self.compatibilities &= other.compatibilities
        self.compatibilities.add(other)
        return self.add(other.specialized_children, other.specialization_blocks, other.excluded_children)

    @classmethod
    def merge_all(cls, specs: Iterable["CompositionSpecialization"]) -> "CompositionSpecialization":
        merged = cls()
        for spec in specs:
            merged.merge(spec)
        return merged

    # ------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------
    def _excluded(self, child_name: str, selected) -> bool:
        return any(selected.fulfills(m) for m in self.excluded_children.get(child_name, ()))

    def weak_match(self, selection: Mapping[str, object]) -> bool:
        """True if at least one constrained slot is selected and every selected one matches."""
        has_match = False
        for child_name, models in self.specialized_children.items():
            selected = selection.get(child_name)
            if selected is None:
                continue
            if not selected.fulfills(models) or self._excluded(child_name, selected):
                return False
            has_match = True
        return has_match

    def strong_match(self, selection: Mapping[str, object]) -> bool:
        for child_name, models in self.specialized_children.items():
            selected = selection.get(child_name)
            if selected is None or not selected.fulfills(models) or self._excluded(child_name, selected):
                return False
        return True

    def to_dict(self) -> dict:
        return {
            "name": str(self),
            "children": {k: model_names(v) for k, v in sorted(self.specialized_children.items())},
            "excluded": {k: model_names(v) for k, v in sorted(self.excluded_children.items())},
            "blocks": len(self.specialization_blocks),
            "model": self.composition_model.name if self.composition_model is not None else None,
        }
