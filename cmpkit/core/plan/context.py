from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from cmpkit.core.models import Model, is_component

from .models import Requirement


class SelectionContext:
    """A stack of selection scopes, the last pushed scope wins.

    Keys are slot names, dotted slot paths ("child.slot") or models (any slot
    requiring that model). Within one scope a slot name takes precedence over
    a model key.
    """

    def __init__(self, *scopes: Mapping[Any, Any]):
        self._scopes: List[Dict[Any, Any]] = [dict(s) for s in scopes if s]

    def __repr__(self) -> str:
        return f"<SelectionContext {self._scopes!r}>"

    @property
    def scopes(self) -> List[Dict[Any, Any]]:
        return [dict(s) for s in self._scopes]

    def push(self, scope: Mapping[Any, Any]) -> None:
        self._scopes.append(dict(scope))

    def pop(self) -> Dict[Any, Any]:
        return self._scopes.pop()

    def resolve(self, slot_name: str, requirement: Iterable[Model] = ()) -> Optional[Any]:
        models = sorted(requirement, key=lambda m: (not is_component(m), m.name))
        for scope in reversed(self._scopes):
            if slot_name in scope:
                return scope[slot_name]
            for m in models:
                if m in scope:
                    return scope[m]
        return None

    def has_explicit(self, slot_name: str, requirement: Iterable[Model] = ()) -> bool:
        return self.resolve(slot_name, requirement) is not None

    def child_context(self, slot_name: str, selection: Any = None) -> "SelectionContext":
        """Context for the children of `slot_name`.

        Model-keyed selections are inherited as-is, "slot_name.x" entries
        become "x", and the selections attached to a Requirement are pushed
        on top.
        """
        prefix = slot_name + "."
        inherited = []
        top: Dict[Any, Any] = {}
        for scope in self._scopes:
            inherited.append({k: v for k, v in scope.items() if isinstance(k, Model)})
            for k, v in scope.items():
                if isinstance(k, str) and k.startswith(prefix):
                    top[k[len(prefix):]] = v
        if isinstance(selection, Requirement):
            top.update(selection.selections)

        ctx = SelectionContext(*inherited)
        ctx.push(top)
        return ctx

    @property
    def top_scope(self) -> Dict[Any, Any]:
        return dict(self._scopes[-1]) if self._scopes else {}

    def map_top(self, fn) -> "SelectionContext":
        """Copy of this context with `fn` applied to every value of the top scope."""
        ctx = SelectionContext()
        ctx._scopes = [dict(s) for s in self._scopes]
        if ctx._scopes:
            ctx._scopes[-1] = {k: fn(v) for k, v in ctx._scopes[-1].items()}
        return ctx
