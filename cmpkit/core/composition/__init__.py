from .child import ChildPort, CompositionChild
from .composition import CompositionModel
from .instantiate import CompositionInstantiator
from .manager import SpecializationManager, children_mergeable, exclusions_respected
from .observer import InstantiationObserver, LoggingObserver
from .specialization import CompositionSpecialization

__all__ = [
    "ChildPort",
    "CompositionChild",
    "CompositionInstantiator",
    "CompositionModel",
    "CompositionSpecialization",
    "InstantiationObserver",
    "LoggingObserver",
    "SpecializationManager",
    "children_mergeable",
    "exclusions_respected",
]
