from .loader import Catalog, load_catalog
from .models import CatalogSpec, ChildSpec, ComponentSpec, CompositionSpec, ServiceSpec, SpecializationSpec

__all__ = [
    "Catalog",
    "CatalogSpec",
    "ChildSpec",
    "ComponentSpec",
    "CompositionSpec",
    "ServiceSpec",
    "SpecializationSpec",
    "load_catalog",
]
