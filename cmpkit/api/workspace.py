from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Optional, Union

from cmpkit.core.catalog import Catalog, CatalogSpec, load_catalog
from cmpkit.core.errors import CatalogError

log = logging.getLogger("cmpkit.workspace")


class NoCatalogLoaded(CatalogError):
    code = "no_catalog"
    status_code = 404


class Workspace:
    """Process-local holder of the catalog served by the API."""

    def __init__(self):
        self._lock = threading.Lock()
        self._catalog: Optional[Catalog] = None

    @property
    def loaded(self) -> bool:
        return self._catalog is not None

    def load(self, payload: Union[CatalogSpec, Mapping[str, Any]]) -> Catalog:
        # build outside the lock; a failing document leaves the current catalog in place
        catalog = load_catalog(payload)
        with self._lock:
            self._catalog = catalog
        log.info("catalog loaded models=%d", len(catalog.registry))
        return catalog

    def clear(self) -> None:
        with self._lock:
            self._catalog = None

    def require(self) -> Catalog:
        catalog = self._catalog
        if catalog is None:
            raise NoCatalogLoaded("no catalog loaded; POST one to /api/v1/catalog first")
        return catalog


_WORKSPACE = Workspace()


def get_workspace() -> Workspace:
    return _WORKSPACE
