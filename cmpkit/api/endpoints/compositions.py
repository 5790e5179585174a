from __future__ import annotations

from typing import Dict, List

from fastapi import APIRouter

from cmpkit.api.schemas.compositions import (
    InstantiateRequest,
    InstantiateResponse,
    ResolveRequest,
    ResolveResponse,
)
from cmpkit.api.workspace import get_workspace
from cmpkit.core.catalog import Catalog
from cmpkit.core.config import EngineConfig
from cmpkit.core.models import Model, model_names
from cmpkit.core.plan import Plan, SelectionContext

router = APIRouter(prefix="/api/v1/compositions", tags=["compositions"])


def _hints(catalog: Catalog, hints: List[Dict[str, str]]) -> List[Dict[str, Model]]:
    return [{slot: catalog.model(name) for slot, name in hint.items()} for hint in hints]


@router.get("/{name:path}/connections")
def connections(name: str):
    model = get_workspace().require().composition(name)
    return {"model": model.name, "connections": model.to_dict()["connections"]}


@router.get("/{name:path}/specializations")
def specializations(name: str):
    model = get_workspace().require().composition(name)
    manager = model.specializations
    return {
        "model": model.name,
        "declared": [s.to_dict() for s in manager.each_specialization()],
        "instantiated": [s.to_dict() for s in manager.instantiated_specializations.values()],
    }


@router.post("/{name:path}/resolve", response_model=ResolveResponse)
def resolve(name: str, req: ResolveRequest):
    catalog = get_workspace().require()
    model = catalog.composition(name)
    context = SelectionContext(catalog.selection(req.selection))

    selection = {}
    for child_name, child in model.each_child():
        selected = context.resolve(child_name, child.models)
        if selected is not None:
            selection[child_name] = selected

    strict = req.strict if req.strict is not None else EngineConfig.from_env().strict_specialization
    specialized = model.specializations.matching_specialized_model(
        selection,
        strict=strict,
        specialization_hints=_hints(catalog, req.hints),
    )
    return ResolveResponse(
        root=model.name,
        model=specialized.name,
        specialized=specialized is not model,
        specialized_children={k: model_names(v) for k, v in sorted(specialized.specialized_children.items())},
    )


@router.post("/{name:path}/instantiate", response_model=InstantiateResponse)
def instantiate(name: str, req: InstantiateRequest):
    catalog = get_workspace().require()
    model = catalog.composition(name)
    plan = Plan()
    task = model.instantiate(
        plan,
        SelectionContext(catalog.selection(req.selection)),
        req.arguments,
        specialize=req.specialize,
        specialization_hints=_hints(catalog, req.hints),
        config=EngineConfig.from_payload(req.config),
    )
    return InstantiateResponse(root=task.id, model=task.model.name, plan=plan.to_dict())
