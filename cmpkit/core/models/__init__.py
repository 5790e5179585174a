from .model import (
    BoundService,
    ComponentModel,
    IncompatibleModelSets,
    Model,
    ServiceModel,
    is_component,
    merge_model_sets,
    model_names,
)
from .ports import INPUT, OUTPUT, Port
from .registry import ModelRegistry

__all__ = [
    "BoundService",
    "ComponentModel",
    "IncompatibleModelSets",
    "INPUT",
    "Model",
    "ModelRegistry",
    "OUTPUT",
    "Port",
    "ServiceModel",
    "is_component",
    "merge_model_sets",
    "model_names",
]
