from __future__ import annotations

from fastapi import APIRouter

from cmpkit.api.workspace import get_workspace
from cmpkit.core.catalog import CatalogSpec
from cmpkit.core.observability.metrics import inc_named

router = APIRouter(prefix="/api/v1/catalog", tags=["catalog"])


@router.post("")
def load(spec: CatalogSpec):
    """Replace the workspace with the models declared by `spec`."""
    catalog = get_workspace().load(spec)
    inc_named("catalog_loaded")
    return {
        "status": "loaded",
        "services": [s.name for s in spec.services],
        "components": [c.name for c in spec.components],
        "compositions": [c.name for c in spec.compositions],
        "models": len(catalog.registry),
    }


@router.delete("")
def clear():
    get_workspace().clear()
    return {"status": "cleared"}
