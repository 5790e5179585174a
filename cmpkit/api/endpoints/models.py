from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query

from cmpkit.api.workspace import get_workspace

router = APIRouter(prefix="/api/v1/models", tags=["models"])


@router.get("")
def list_models(kind: Optional[str] = Query(default=None, description="service, component or composition")):
    catalog = get_workspace().require()
    return {"models": [m.to_dict() for m in catalog.list_models(kind)]}


# IMPORTANT: declared before /{name:path}, which would swallow the suffix
@router.get("/{name:path}/port-mappings")
def port_mappings(name: str, ancestor: str = Query(...)):
    catalog = get_workspace().require()
    model = catalog.model(name)
    return {
        "model": model.name,
        "ancestor": ancestor,
        "mapping": model.port_mappings_for(catalog.model(ancestor)),
    }


@router.get("/{name:path}")
def get_model(name: str):
    return get_workspace().require().model(name).to_dict()
