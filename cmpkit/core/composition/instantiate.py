"""Turns a composition model and a selection context into a wired task graph.

Children may select "whatever sibling X resolved to" (`SlotReference`), so
children are materialized in passes until every reference is bound. A pass
that binds nothing means the references are circular.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from cmpkit.core.config import EngineConfig
from cmpkit.core.errors import (
    InvalidSelection,
    MissingRequiredModel,
    SpecializationRecursion,
    UnresolvableCircularReference,
)
from cmpkit.core.models import BoundService, Model, model_names
from cmpkit.core.models import port_mappings
from cmpkit.core.models.port_mappings import PortMapping
from cmpkit.core.plan import Plan, Requirement, SelectionContext, SlotReference, Task

from .child import CompositionChild
from .manager import component_of, selected_model
from .observer import InstantiationObserver, default_observer

# default options of the dependency between a composition and its children
DEFAULT_DEPENDENCY_OPTIONS = {"success": [], "failure": ["stop"]}


class _Deferred:
    def __repr__(self) -> str:
        return "<deferred>"


DEFERRED = _Deferred()


def _conf_names(conf) -> Optional[List[str]]:
    if conf is None:
        return None
    if isinstance(conf, str):
        return [conf]
    return list(conf)


class CompositionInstantiator:
    def __init__(self, observer: Optional[InstantiationObserver] = None, config: Optional[EngineConfig] = None):
        self.observer = observer or default_observer()
        self.config = config or EngineConfig.from_env()

    def instantiate(
        self,
        model,
        plan: Plan,
        context=None,
        arguments: Optional[Dict[str, Any]] = None,
        specialize: bool = True,
        specialization_hints: Sequence[Mapping[str, Any]] = (),
        _hops: int = 0,
    ) -> Task:
        if context is None:
            context = SelectionContext()
        elif not isinstance(context, SelectionContext):
            context = SelectionContext(context)
        arguments = dict(arguments or {})

        explicit, resolved = self.find_children_models(model, context)

        if specialize:
            specialized = model.specializations.matching_specialized_model(
                explicit,
                strict=self.config.strict_specialization,
                specialization_hints=specialization_hints,
                config=self.config,
            )
            if specialized is not model:
                if _hops >= self.config.max_specialization_hops:
                    raise SpecializationRecursion(
                        f"gave up specializing {model.root_model.name} after {_hops} hops",
                        model=model.name,
                        hops=_hops,
                    )
                self.observer.specialization_selected(model, specialized)
                return self.instantiate(
                    specialized,
                    plan,
                    context,
                    arguments,
                    specialize=specialize,
                    specialization_hints=specialization_hints,
                    _hops=_hops + 1,
                )

        model.freeze()
        root = plan.add_task(model, arguments)
        conf = _conf_names(arguments.get("conf"))

        tasks, mappings, removed = self._instantiate_children(model, plan, root, context, resolved, conf)
        self._instantiate_connections(model, plan, root, tasks, mappings, removed)

        self.observer.instantiated(model, root)
        return root

    # ------------------------------------------------------------
    # Slot resolution
    # ------------------------------------------------------------
    def find_children_models(self, model, context: SelectionContext) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Split the context into explicit selections and the effective selection of every slot."""
        explicit: Dict[str, Any] = {}
        resolved: Dict[str, Any] = {}
        for name, child in model.each_child():
            selected = context.resolve(name, child.models)
            if selected is None:
                resolved[name] = child
                continue
            if not isinstance(selected, (Model, BoundService, Task, Requirement, SlotReference)):
                raise InvalidSelection(
                    f"invalid selection {selected!r} for {model.name}.{name}",
                    model=model.name,
                    slot=name,
                )
            if not isinstance(selected, SlotReference):
                model.verify_acceptable_selection(name, selected)
            explicit[name] = selected
            resolved[name] = selected
        return explicit, resolved

    def _bind(self, value, siblings: Set[str], tasks: Dict[str, Task], removed: Set[str], plan: Plan):
        """Replace sibling references in `value` with the sibling's task.

        Returns DEFERRED if a referenced sibling is not materialized yet, and
        None when it was dropped. References to names that are not siblings
        are left for the nested composition to resolve.
        """
        if isinstance(value, SlotReference):
            if value.slot not in siblings:
                return value
            if value.slot in removed:
                return None
            task = tasks.get(value.slot)
            if task is None:
                return DEFERRED
            if value.subpath:
                target = plan.resolve_role_path(task, value.subpath)
                if target is None:
                    raise InvalidSelection(
                        f"{value.path} does not name a task: {task.name} has no child at {value.subpath}",
                        slot=value.slot,
                        reference=value.path,
                    )
                return target
            return task
        if isinstance(value, Requirement):
            selections = {}
            for key, selected in value.selections.items():
                bound = self._bind(selected, siblings, tasks, removed, plan)
                if bound is DEFERRED:
                    return DEFERRED
                if bound is not None:
                    selections[key] = bound
            return Requirement(value.model, dict(value.arguments), selections)
        return value

    def _bind_child(self, model, name, value, context, siblings, tasks, removed, plan):
        if isinstance(value, SlotReference) and value.slot not in siblings:
            raise InvalidSelection(
                f"{model.name}.{name} references {value.path}, but {model.name} has no child called {value.slot}",
                model=model.name,
                slot=name,
                reference=value.path,
            )
        selection = self._bind(value, siblings, tasks, removed, plan)
        if selection is DEFERRED:
            return DEFERRED
        if isinstance(value, SlotReference) and selection is not None:
            model.verify_acceptable_selection(name, selection)

        child_context = context.child_context(name, selection)
        pending = [v for v in child_context.top_scope.values() if self._bind(v, siblings, tasks, removed, plan) is DEFERRED]
        if pending:
            return DEFERRED
        child_context = child_context.map_top(lambda v: self._bind(v, siblings, tasks, removed, plan))
        if selection is None:
            selection = model.child(name)
        return selection, child_context

    # ------------------------------------------------------------
    # Children
    # ------------------------------------------------------------
    def _instantiate_children(self, model, plan, root, context, resolved, conf):
        siblings = set(resolved)
        tasks: Dict[str, Task] = {}
        mappings: Dict[str, PortMapping] = {}
        removed: Set[str] = set()

        pending = list(resolved)
        pass_number = 0
        while pending:
            pass_number += 1
            done: List[str] = []
            deferred: List[str] = []
            for name in pending:
                bound = self._bind_child(model, name, resolved[name], context, siblings, tasks, removed, plan)
                if bound is DEFERRED:
                    deferred.append(name)
                    continue
                selection, child_context = bound
                task = self._instantiate_child(model, plan, root, name, selection, child_context, conf)
                if task is None:
                    removed.add(name)
                else:
                    tasks[name] = task
                    provider = selected_model(selection)
                    if not isinstance(provider, BoundService):
                        provider = task
                    mappings[name] = model.child(name).selection_port_mappings(provider)
                done.append(name)

            self.observer.fixed_point_pass(model, pass_number, done, deferred)
            if deferred and not done:
                raise UnresolvableCircularReference(
                    f"cannot resolve the children {', '.join(sorted(deferred))} of {model.name}: "
                    "their selections reference each other",
                    model=model.name,
                    children=sorted(deferred),
                )
            pending = deferred
        return tasks, mappings, removed

    def _default_model(self, child: CompositionChild) -> Model:
        component = child.component_model
        if component is not None:
            return component
        return sorted(child.models, key=lambda m: m.name)[0]

    def _instantiate_child(self, model, plan, root, name, selection, child_context, conf) -> Optional[Task]:
        child = model.child(name)

        if isinstance(selection, Task):
            task = selection
            abstract = task.abstract
        else:
            if isinstance(selection, CompositionChild):
                selected = self._default_model(child)
                arguments = dict(child.arguments)
            elif isinstance(selection, Requirement):
                selected = component_of(selection)
                arguments = {**child.arguments, **selection.arguments}
            else:
                selected = component_of(selection)
                arguments = dict(child.arguments)
            abstract = selected.abstract
            task = None

        if abstract:
            if child.is_optional:
                self.observer.child_dropped(model, name)
                return None
            raise MissingRequiredModel(
                f"no concrete model selected for {model.name}.{name}, which requires "
                f"{', '.join(model_names(child.models))}",
                model=model.name,
                slot=name,
                required=model_names(child.models),
            )

        if task is None:
            child_conf = model.child_conf(name, conf)
            if child_conf is not None and "conf" not in arguments:
                arguments["conf"] = child_conf
            if getattr(selected, "kind", None) == "composition":
                task = self.instantiate(selected, plan, child_context, arguments)
            else:
                task = selected.instantiate(plan, child_context, arguments)

        options = dict(DEFAULT_DEPENDENCY_OPTIONS)
        options.update(child.dependency_options)
        roles = [name]
        for role in child.dependency_options.get("roles", []):
            if role not in roles:
                roles.append(role)
        options["roles"] = roles
        main = model.main_child
        if main is not None and main.child_name == name:
            # the composition succeeds when its main child does
            success = list(options.get("success", []))
            if "success" not in success:
                success.append("success")
            options["success"] = success
        options["model"] = model_names(child.models)
        options["arguments"] = {k: task.arguments[k] for k in child.arguments if k in task.arguments}
        plan.add_dependency(root, task, name, options)
        return task

    # ------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------
    def _instantiate_connections(self, model, plan, root, tasks, mappings, removed) -> None:
        for (source, sink), ports in model.connections().items():
            if source not in tasks or sink not in tasks:
                self.observer.connection_dropped(model, source, sink)
                continue
            for (out_port, in_port), policy in ports.items():
                plan.add_connection(
                    tasks[source],
                    port_mappings.apply(mappings[source], out_port),
                    tasks[sink],
                    port_mappings.apply(mappings[sink], in_port),
                    policy,
                )

        for port, slot, child_port in model.each_exported_port():
            if slot not in tasks:
                continue
            mapped = port_mappings.apply(mappings[slot], child_port)
            if port.is_output:
                plan.add_connection(tasks[slot], mapped, root, port.name, {"forward": True})
            else:
                plan.add_connection(root, port.name, tasks[slot], mapped, {"forward": True})
