from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Set

from cmpkit.core.errors import DuplicateModel, UnknownModel

if TYPE_CHECKING:
    from .model import Model

log = logging.getLogger("cmpkit.registry")


class ModelRegistry:
    """Arena owning every model definition.

    Each entry has a stable integer id and a link to its parent id. Every
    ancestor keeps an append-only set of all of its descendants, so "is X a
    submodel of Y" and "enumerate Y's submodels" never walk the tree. Entries
    only leave the arena through `deregister`, which sweeps a whole subtree
    out of every ancestor.
    """

    def __init__(self):
        self._ids = itertools.count(1)
        self._models: Dict[int, "Model"] = {}
        self._names: Dict[str, int] = {}
        self._parents: Dict[int, Optional[int]] = {}
        self._direct: Dict[int, List[int]] = {}
        self._descendants: Dict[int, Set[int]] = {}

    # ------------------------------------------------------------
    # Model factories
    # ------------------------------------------------------------
    def service(self, name: str):
        from .model import ServiceModel

        return ServiceModel(name, registry=self)

    def component(self, name: str, abstract: bool = False):
        from .model import ComponentModel

        return ComponentModel(name, registry=self, abstract=abstract)

    def composition(self, name: str, abstract: bool = False):
        from cmpkit.core.composition.composition import CompositionModel

        return CompositionModel(name, registry=self, abstract=abstract)

    # ------------------------------------------------------------
    # Arena
    # ------------------------------------------------------------
    def register(self, model: "Model", parent: Optional["Model"] = None) -> int:
        model_id = next(self._ids)
        if model.name is None:
            base = parent.name if parent is not None else type(model).__name__
            model.name = f"{base}#{model_id}"
        if model.name in self._names:
            raise DuplicateModel(f"a model called {model.name} already exists", name=model.name)

        parent_id = parent.id if parent is not None else None
        if parent_id is not None and parent_id not in self._models:
            raise UnknownModel(f"{parent.name} is not registered", name=parent.name)

        self._models[model_id] = model
        self._names[model.name] = model_id
        self._parents[model_id] = parent_id
        self._direct[model_id] = []
        self._descendants[model_id] = set()

        if parent_id is not None:
            self._direct[parent_id].append(model_id)
        ancestor = parent_id
        while ancestor is not None:
            self._descendants[ancestor].add(model_id)
            ancestor = self._parents[ancestor]

        log.debug("registered model %s id=%s parent=%s", model.name, model_id, parent_id)
        return model_id

    def deregister(self, model: "Model") -> List["Model"]:
        """Remove `model` and all of its submodels. Safe to call repeatedly."""
        if self._models.get(model.id) is not model:
            return []

        removed_ids = [model.id] + sorted(self._descendants[model.id])
        for model_id in removed_ids:
            ancestor = self._parents.get(model_id)
            while ancestor is not None:
                self._descendants[ancestor].discard(model_id)
                direct = self._direct[ancestor]
                if model_id in direct:
                    direct.remove(model_id)
                ancestor = self._parents.get(ancestor)

        removed: List["Model"] = []
        for model_id in removed_ids:
            m = self._models.pop(model_id)
            self._names.pop(m.name, None)
            self._parents.pop(model_id, None)
            self._direct.pop(model_id, None)
            self._descendants.pop(model_id, None)
            removed.append(m)

        for m in removed:
            m.on_deregistered()

        log.debug("deregistered %s (%d models)", model.name, len(removed))
        return removed

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------
    def __contains__(self, model: object) -> bool:
        model_id = getattr(model, "id", None)
        return model_id is not None and self._models.get(model_id) is model

    def __iter__(self) -> Iterator["Model"]:
        return iter(list(self._models.values()))

    def __len__(self) -> int:
        return len(self._models)

    def get(self, model_id: int) -> Optional["Model"]:
        return self._models.get(model_id)

    def find(self, name: str) -> Optional["Model"]:
        model_id = self._names.get(name)
        return self._models.get(model_id) if model_id is not None else None

    def require(self, name: str) -> "Model":
        model = self.find(name)
        if model is None:
            raise UnknownModel(f"no model called {name}", name=name)
        return model

    def parent_of(self, model: "Model") -> Optional["Model"]:
        parent_id = self._parents.get(model.id)
        return self._models.get(parent_id) if parent_id is not None else None

    def submodels(self, model: "Model", recursive: bool = True) -> List["Model"]:
        if recursive:
            ids = sorted(self._descendants.get(model.id, ()))
        else:
            ids = list(self._direct.get(model.id, ()))
        return [self._models[i] for i in ids]

    def is_submodel(self, model: "Model", ancestor: "Model") -> bool:
        return model.id in self._descendants.get(ancestor.id, ())
